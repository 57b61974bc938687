"""
qfund.oracle
------------

Decryption Oracle Protocol: the two-phase, proof-gated reveal.

Per project:

    HIDDEN ──request_reveal──▶ REQUEST_PENDING ──valid callback──▶ REVEALED (terminal)
       ▲                              │
       └──────── expire_stale ────────┘   (only when a reveal timeout is configured)

Phase 1, `request_reveal(project_id, actor)`:
  authorization → not revealed → no outstanding request. The four encrypted
  fields are batched into one `request_async_decryption` call and the
  returned request id is recorded as a `DecryptionRequest` together with a
  per-project pending marker.

Phase 2, `on_decryption_callback(request_id, payload, proof)`:
  1. resolve the request id (`UnknownRequest` if never issued, expired or
     already consumed);
  2. reject if the project is already revealed (`AlreadyRevealed`);
  3. verify the proof over (request id, payload) (`ProofVerificationFailed`)
     and decode the payload (`MalformedPayload`). Either failure discards
     the payload and leaves the request pending so a legitimate retry can
     still succeed;
  4. append `ProjectRevealed`, then in one store batch write the
     RevealedProject and delete both the request and the pending marker.
     If the append fails nothing is written and the request stays pending.

Duplicate or late callbacks therefore fail at step 1 and never alter
revealed state. Partial plaintext is never written.

Engines must deliver callbacks asynchronously (after
`request_async_decryption` returns). A callback racing with issuance waits
for the request to be recorded. The barrier is reentrant, so a callback made
synchronously on the issuing thread passes it before the request exists and
fails with `UnknownRequest`.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, List, Optional

from qfund import metrics
from qfund.cbor.codec import CBORError, loads
from qfund.errors import (
    AlreadyRevealed,
    LedgerError,
    MalformedPayload,
    NotFound,
    ProofVerificationFailed,
    RequestAlreadyPending,
    UnknownRequest,
)
from qfund.fhe.engine import FheEngine
from qfund.lifecycle import LifecycleGate
from qfund.locks import KeyedLocks
from qfund.store.events import EventKind, EventLog
from qfund.store.kv import CiphertextStore
from qfund.store.types import (
    REVEAL_FIELDS,
    DecryptionRequest,
    Project,
    RevealedProject,
    RevealState,
    pending_key,
    project_key,
    request_key,
    revealed_key,
)

log = logging.getLogger(__name__)

_PLAINTEXT_TYPES = (int, str, type(None))


class DecryptionOracleProtocol:
    """
    Parameters
    ----------
    engine : FheEngine
        Issues request ids, decrypts out of band, verifies proofs.
    store : CiphertextStore
        Holds projects, revealed mirrors, requests and pending markers.
    gate : LifecycleGate
        Authorizes reveal requests.
    events : EventLog
        Receives `ProjectRevealed`.
    locks : KeyedLocks
        Shared with the ledger so reveal transitions serialize with other
        mutations of the same project.
    timeout_s : float
        Age after which an unanswered request may be dropped (0 disables).
    max_payload_bytes : int
        Callbacks with larger payloads are rejected as malformed.
    clock : callable
        Unix-time source (seconds).
    """

    def __init__(
        self,
        engine: FheEngine,
        store: CiphertextStore,
        gate: LifecycleGate,
        events: EventLog,
        *,
        locks: Optional[KeyedLocks] = None,
        timeout_s: float = 0.0,
        max_payload_bytes: int = 1_048_576,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._engine = engine
        self._store = store
        self._gate = gate
        self._events = events
        self._locks = locks or KeyedLocks()
        self.timeout_s = float(timeout_s)
        self.max_payload_bytes = int(max_payload_bytes)
        self._clock = clock
        self._issue_lock = threading.RLock()

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    def get_revealed(self, project_id: int) -> RevealedProject:
        try:
            return RevealedProject.from_map(self._store.get(revealed_key(project_id)))
        except NotFound:
            return RevealedProject(project_id=project_id)

    def pending_request(self, project_id: int) -> Optional[DecryptionRequest]:
        try:
            rid = bytes(self._store.get(pending_key(project_id))["request_id"])
            return DecryptionRequest.from_map(self._store.get(request_key(rid)))
        except NotFound:
            return None

    def reveal_state(self, project_id: int) -> RevealState:
        if self._store.has(revealed_key(project_id)):
            return RevealState.REVEALED
        if self._store.has(pending_key(project_id)):
            return RevealState.REQUEST_PENDING
        return RevealState.HIDDEN

    def pending_count(self) -> int:
        return self._store.count(b"req:")

    def sync_pending_gauge(self) -> int:
        """Reset the pending-reveals gauge from the store (e.g. after a restart)."""
        n = self.pending_count()
        metrics.PENDING_REVEALS.set(n)
        return n

    # ------------------------------------------------------------------ #
    # Phase 1
    # ------------------------------------------------------------------ #

    def request_reveal(self, project_id: int, actor: str) -> bytes:
        try:
            return self._request_reveal(project_id, actor)
        except LedgerError as e:
            metrics.record_rejection("request_reveal", e.code)
            raise

    def _request_reveal(self, project_id: int, actor: str) -> bytes:
        with self._locks.lock(project_key(project_id)):
            project = Project.from_map(self._store.get(project_key(project_id)))
            self._gate.check_request_reveal(actor, project)
            if self._store.has(revealed_key(project_id)):
                raise AlreadyRevealed(project_id)

            outstanding = self.pending_request(project_id)
            if outstanding is not None:
                if not self._is_expired(outstanding, self._clock()):
                    raise RequestAlreadyPending(project_id, outstanding.request_id)
                self._drop(outstanding)

            fields = project.encrypted_fields()
            handles = [fields[name] for name in REVEAL_FIELDS]
            with self._issue_lock:
                request_id = bytes(self._engine.request_async_decryption(handles, self.on_decryption_callback))
                req = DecryptionRequest(
                    request_id=request_id,
                    project_id=project_id,
                    fields=REVEAL_FIELDS,
                    requested_at=int(self._clock()),
                    requested_by=actor,
                )
                self._store.write_batch(
                    {
                        request_key(request_id): req.to_map(),
                        pending_key(project_id): {"request_id": request_id},
                    }
                )

        metrics.REVEAL_REQUESTS_TOTAL.inc()
        metrics.PENDING_REVEALS.inc()
        log.info(
            "reveal requested for project %d (request %s)", project_id, request_id.hex()[:16],
            extra={"project_id": project_id, "request_id": request_id.hex()},
        )
        return request_id

    # ------------------------------------------------------------------ #
    # Phase 2
    # ------------------------------------------------------------------ #

    def _load_request(self, request_id: bytes) -> DecryptionRequest:
        try:
            return DecryptionRequest.from_map(self._store.get(request_key(request_id)))
        except NotFound:
            raise UnknownRequest(request_id) from None

    def on_decryption_callback(self, request_id: bytes, payload: bytes, proof: bytes) -> RevealedProject:
        """
        Commit the plaintext carried by a verified oracle callback.

        Returns the committed RevealedProject.
        """
        request_id = bytes(request_id)
        # Barrier: wait for any in-flight issuance to finish recording its request.
        with self._issue_lock:
            pass

        try:
            req = self._load_request(request_id)
        except UnknownRequest:
            metrics.record_callback("unknown")
            log.warning("callback for unknown or consumed request %s", request_id.hex()[:16])
            raise

        with self._locks.lock(project_key(req.project_id)):
            # A duplicate delivery may have committed while we waited.
            try:
                req = self._load_request(request_id)
            except UnknownRequest:
                metrics.record_callback("unknown")
                raise
            if self._store.has(revealed_key(req.project_id)):
                metrics.record_callback("replay")
                raise AlreadyRevealed(req.project_id)

            values = self._verified_values(req, payload, proof)
            now = self._clock()
            revealed = RevealedProject(
                project_id=req.project_id,
                revealed=True,
                request_id=request_id,
                revealed_at=int(now),
                **dict(zip(req.fields, values)),
            )
            self._events.append(
                EventKind.PROJECT_REVEALED,
                req.project_id,
                {"request_id": request_id, **dict(zip(req.fields, values))},
                timestamp=int(now),
            )
            self._store.write_batch(
                {revealed_key(req.project_id): revealed.to_map()},
                deletes=[request_key(request_id), pending_key(req.project_id)],
            )

        metrics.PENDING_REVEALS.dec()
        metrics.record_callback("committed", latency_s=now - req.requested_at)
        log.info(
            "project %d revealed (request %s)", req.project_id, request_id.hex()[:16],
            extra={"project_id": req.project_id, "request_id": request_id.hex()},
        )
        return revealed

    def _verified_values(self, req: DecryptionRequest, payload: bytes, proof: bytes) -> List[Any]:
        rid = req.request_id
        if not isinstance(payload, (bytes, bytearray)) or len(payload) > self.max_payload_bytes:
            metrics.record_callback("malformed")
            raise MalformedPayload(rid, reason="payload missing or too large")
        if not self._engine.verify_decryption_proof(rid, bytes(payload), bytes(proof or b"")):
            metrics.record_callback("bad_proof")
            log.warning(
                "proof verification failed for request %s; request stays pending", rid.hex()[:16],
                extra={"project_id": req.project_id},
            )
            raise ProofVerificationFailed(rid)
        try:
            values = loads(payload)
        except CBORError:
            values = None
        if (
            not isinstance(values, list)
            or len(values) != len(req.fields)
            or not all(isinstance(v, _PLAINTEXT_TYPES) for v in values)
        ):
            metrics.record_callback("malformed")
            raise MalformedPayload(rid, reason="payload does not match requested fields")
        return values

    # ------------------------------------------------------------------ #
    # Timeout handling
    # ------------------------------------------------------------------ #

    def _is_expired(self, req: DecryptionRequest, now: float) -> bool:
        return self.timeout_s > 0 and now - req.requested_at >= self.timeout_s

    def _drop(self, req: DecryptionRequest) -> None:
        self._store.write_batch({}, deletes=[request_key(req.request_id), pending_key(req.project_id)])
        metrics.PENDING_REVEALS.dec()
        metrics.EXPIRED_REQUESTS_TOTAL.inc()
        log.info(
            "decryption request %s for project %d expired", req.request_id.hex()[:16], req.project_id,
            extra={"project_id": req.project_id},
        )

    def expire_stale(self, now: Optional[float] = None) -> List[bytes]:
        """
        Drop requests older than `timeout_s`, re-opening HIDDEN for their
        projects. Late callbacks for dropped ids fail with UnknownRequest.
        """
        if self.timeout_s <= 0:
            return []
        now = self._clock() if now is None else now
        stale = [
            DecryptionRequest.from_map(rec)
            for _, rec in self._store.scan(b"req:", limit=self._store.count(b"req:"))
        ]
        dropped: List[bytes] = []
        for req in stale:
            if not self._is_expired(req, now):
                continue
            with self._locks.lock(project_key(req.project_id)):
                if not self._store.has(request_key(req.request_id)):
                    continue
                self._drop(req)
            dropped.append(req.request_id)
        return dropped

    # ------------------------------------------------------------------ #
    # Replay
    # ------------------------------------------------------------------ #

    def restore_revealed(self, revealed: RevealedProject) -> None:
        """Re-install a RevealedProject from the event log (replay only)."""
        self._store.put(revealed_key(revealed.project_id), revealed.to_map())


__all__ = ["DecryptionOracleProtocol"]
