"""
qfund.metrics
-------------

Prometheus metrics for the ledger.

Tracks:
- Projects submitted, contributions and votes recorded.
- Rejected operations by operation and error code.
- Decryption requests issued, callbacks by outcome, and outstanding requests.
- Latency between a reveal request and its committed callback.

Metric values never carry plaintext or ciphertext content; labels are limited
to operation names and stable error codes.
"""

from __future__ import annotations

import logging
import os
import time
from contextlib import contextmanager
from typing import Optional

from prometheus_client import Counter, Gauge, Histogram, start_http_server

log = logging.getLogger(__name__)

_NS = "qfund"
_SUB = "ledger"


def _m(name: str) -> str:
    return f"{_NS}_{_SUB}_{name}"


# Counters
PROJECTS_SUBMITTED_TOTAL = Counter(
    _m("projects_submitted_total"),
    "Projects submitted.",
)

CONTRIBUTIONS_TOTAL = Counter(
    _m("contributions_total"),
    "Encrypted contributions appended.",
)

VOTES_TOTAL = Counter(
    _m("votes_total"),
    "Encrypted endorsement votes recorded.",
)

OPERATION_REJECTED_TOTAL = Counter(
    _m("operation_rejected_total"),
    "Operations rejected by the ledger.",
    labelnames=("op", "code"),
)

REVEAL_REQUESTS_TOTAL = Counter(
    _m("reveal_requests_total"),
    "Decryption requests issued to the oracle.",
)

CALLBACKS_TOTAL = Counter(
    _m("decryption_callbacks_total"),
    "Decryption callbacks by outcome.",
    labelnames=("outcome",),  # committed|unknown|replay|bad_proof|malformed
)

EXPIRED_REQUESTS_TOTAL = Counter(
    _m("expired_requests_total"),
    "Decryption requests dropped by the reveal timeout.",
)

# Gauges
PENDING_REVEALS = Gauge(
    _m("pending_reveals"),
    "Decryption requests awaiting a callback.",
)

# Histograms
_LAT_BUCKETS = (0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0, 900.0, 3600.0)

REVEAL_LATENCY_SECONDS = Histogram(
    _m("reveal_latency_seconds"),
    "Time from reveal request to committed callback.",
    buckets=_LAT_BUCKETS,
)

OPERATION_SECONDS = Histogram(
    _m("operation_seconds"),
    "Wall time spent inside a ledger operation.",
    labelnames=("op",),
    buckets=(0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0),
)


# --- Helper API ---------------------------------------------------------------------


def record_rejection(op: str, code: str) -> None:
    OPERATION_REJECTED_TOTAL.labels(op=op, code=code).inc()


def record_callback(outcome: str, *, latency_s: Optional[float] = None) -> None:
    CALLBACKS_TOTAL.labels(outcome=outcome).inc()
    if latency_s is not None:
        REVEAL_LATENCY_SECONDS.observe(max(0.0, float(latency_s)))


@contextmanager
def time_operation(op: str):
    """
    Time a block and observe its duration under OPERATION_SECONDS{op}.
    """
    t0 = time.perf_counter()
    try:
        yield
    finally:
        OPERATION_SECONDS.labels(op=op).observe(time.perf_counter() - t0)


_server_started = False


def ensure_metrics_server(port: Optional[int] = None, addr: str = "0.0.0.0") -> bool:
    """
    Start a Prometheus /metrics HTTP server once.

    The port comes from `port`, else QFUND_METRICS_PORT. A missing or zero
    port leaves the server disabled. Returns True if a server is running.
    """
    global _server_started

    if _server_started:
        return True

    chosen_port: Optional[int] = port
    if chosen_port is None:
        env_port = os.getenv("QFUND_METRICS_PORT", "").strip()
        if env_port:
            try:
                chosen_port = int(env_port)
            except ValueError:
                log.warning("Invalid QFUND_METRICS_PORT=%r; metrics server disabled", env_port)
                return False

    if not chosen_port or chosen_port <= 0:
        return False

    try:
        start_http_server(chosen_port, addr=addr)
    except OSError as e:
        log.warning("Failed to start metrics server: %s", e)
        return False
    _server_started = True
    log.info("Metrics server started on http://%s:%d/metrics", addr, chosen_port)
    return True


__all__ = [
    "PROJECTS_SUBMITTED_TOTAL",
    "CONTRIBUTIONS_TOTAL",
    "VOTES_TOTAL",
    "OPERATION_REJECTED_TOTAL",
    "REVEAL_REQUESTS_TOTAL",
    "CALLBACKS_TOTAL",
    "EXPIRED_REQUESTS_TOTAL",
    "PENDING_REVEALS",
    "REVEAL_LATENCY_SECONDS",
    "OPERATION_SECONDS",
    "record_rejection",
    "record_callback",
    "time_operation",
    "ensure_metrics_server",
]
