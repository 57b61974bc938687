"""
qfund.errors
------------

Exception hierarchy for the encrypted contribution ledger.

Every error is raised synchronously by the operation that failed and leaves
previously committed state untouched. Callers (RPC layers, CLIs, schedulers)
catch `LedgerError` at their boundary and use `to_dict()` to produce a stable,
structured failure report.

Families
~~~~~~~~
- AuthorizationError: the actor lacks the capability for the operation.
  Always raised before any state is read for mutation.
- LifecycleError: the operation is illegal in the project's current state.
- CorrelationError: a decryption callback carries an unknown or already
  consumed request id (replay / duplicate delivery).
- IntegrityError: the decryption proof or payload failed verification. The
  payload is discarded and the request stays pending.
- NotFound: a Ciphertext Store key (project, request, ...) does not exist.

Codes are stable upper-snake ASCII identifiers. Nothing here is retryable by
the ledger itself; retry policy belongs to the caller.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


def _truncate(data: Any, max_len: int = 256) -> Any:
    """
    Truncate large strings/bytes for safe inclusion in diagnostics.
    Containers are shallowly summarized.
    """
    if isinstance(data, (bytes, bytearray)):
        if len(data) <= max_len:
            return bytes(data)
        return bytes(data[:max_len]) + b"..."
    if isinstance(data, str):
        if len(data) <= max_len:
            return data
        return data[:max_len] + "..."
    if isinstance(data, (list, tuple)):
        return [_truncate(x, max_len) for x in data[:16]] + (
            ["..."] if len(data) > 16 else []
        )
    if isinstance(data, dict):
        out: Dict[str, Any] = {}
        for i, (k, v) in enumerate(data.items()):
            if i >= 16:
                out["..."] = "truncated"
                break
            out[str(k)] = _truncate(v, max_len)
        return out
    return data


class LedgerError(Exception):
    """
    Base class for ledger errors.

    Attributes
    ----------
    code : str
        Stable, upper-snake identifier (e.g., 'INACTIVE_PROJECT').
    message : str
        Human-friendly explanation.
    details : dict
        Structured data safe to expose over RPC (never plaintext of ciphertexts).
    retryable : bool
        Always False for ledger errors; kept for parity with transport errors.
    """

    code: str = "LEDGER_ERROR"

    def __init__(
        self,
        message: str = "ledger error",
        *,
        details: Optional[Dict[str, Any]] = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = _truncate(details or {})
        self.retryable = bool(retryable)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "retryable": self.retryable,
        }

    def __str__(self) -> str:  # pragma: no cover - trivial
        return f"{self.code}: {self.message}"


# -----------------------------
# Families
# -----------------------------


class AuthorizationError(LedgerError):
    code = "AUTHORIZATION_ERROR"


class LifecycleError(LedgerError):
    code = "LIFECYCLE_ERROR"


class CorrelationError(LedgerError):
    code = "CORRELATION_ERROR"


class IntegrityError(LedgerError):
    code = "INTEGRITY_ERROR"


# -----------------------------
# Concrete errors
# -----------------------------


class NotFound(LedgerError):
    """Raised when reading an unknown Ciphertext Store key."""

    code = "NOT_FOUND"

    def __init__(self, key: bytes, *, what: str = "record") -> None:
        super().__init__(
            f"{what} not found",
            details={"key": bytes(key).decode("utf-8", "replace"), "what": what},
        )
        self.key = bytes(key)


class NotAuthorized(AuthorizationError):
    code = "NOT_AUTHORIZED"

    def __init__(self, *, actor: str, action: str, project_id: Optional[int] = None) -> None:
        super().__init__(
            f"{actor!r} may not {action}",
            details={"actor": actor, "action": action, "project_id": project_id},
        )


class InactiveProject(LifecycleError):
    """Contribution or vote against a project whose funding period is closed."""

    code = "INACTIVE_PROJECT"

    def __init__(self, project_id: int) -> None:
        super().__init__("project is not accepting contributions", details={"project_id": project_id})


class AlreadyInactive(LifecycleError):
    code = "ALREADY_INACTIVE"

    def __init__(self, project_id: int) -> None:
        super().__init__("project is already closed", details={"project_id": project_id})


class FundingStillActive(LifecycleError):
    """Matching requested while contributions can still change the score."""

    code = "FUNDING_STILL_ACTIVE"

    def __init__(self, project_id: int) -> None:
        super().__init__("funding period still open", details={"project_id": project_id})


class AlreadyRevealed(LifecycleError):
    code = "ALREADY_REVEALED"

    def __init__(self, project_id: int) -> None:
        super().__init__("project already revealed", details={"project_id": project_id})


class RequestAlreadyPending(LifecycleError):
    code = "REQUEST_ALREADY_PENDING"

    def __init__(self, project_id: int, request_id: bytes) -> None:
        super().__init__(
            "a decryption request is already outstanding",
            details={"project_id": project_id, "request_id": bytes(request_id).hex()},
        )


class AlreadyVoted(LifecycleError):
    code = "ALREADY_VOTED"

    def __init__(self, project_id: int, voter: str) -> None:
        super().__init__("voter already endorsed this project", details={"project_id": project_id, "voter": voter})


class AlreadyReviewed(LifecycleError):
    code = "ALREADY_REVIEWED"

    def __init__(self, project_id: int, status: str) -> None:
        super().__init__("project review is final", details={"project_id": project_id, "status": status})


class UnknownRequest(CorrelationError):
    """Callback for a request id that was never issued, expired or already consumed."""

    code = "UNKNOWN_REQUEST"

    def __init__(self, request_id: bytes) -> None:
        super().__init__("unknown or consumed decryption request", details={"request_id": bytes(request_id).hex()})


class ProofVerificationFailed(IntegrityError):
    code = "PROOF_VERIFICATION_FAILED"

    def __init__(self, request_id: bytes, *, reason: str = "proof rejected") -> None:
        super().__init__(reason, details={"request_id": bytes(request_id).hex()})


class MalformedPayload(IntegrityError):
    code = "MALFORMED_PAYLOAD"

    def __init__(self, request_id: bytes, *, reason: str) -> None:
        super().__init__(reason, details={"request_id": bytes(request_id).hex()})


class UninitializedAccumulator(LedgerError):
    """Accumulation into a running sum that was never initialized to zero()."""

    code = "UNINITIALIZED_ACCUMULATOR"

    def __init__(self, key: bytes) -> None:
        super().__init__("accumulator not initialized", details={"key": bytes(key).decode("utf-8", "replace")})


class EngineError(LedgerError):
    """The FHE engine rejected an operation (malformed handle, type mismatch)."""

    code = "ENGINE_ERROR"


class LimitExceeded(LedgerError):
    code = "LIMIT_EXCEEDED"

    def __init__(self, *, limit_name: str, limit_value: int, observed: Optional[int] = None) -> None:
        dd: Dict[str, Any] = {"limit": limit_name, "max": int(limit_value)}
        if observed is not None:
            dd["observed"] = int(observed)
        super().__init__(f"limit exceeded: {limit_name} (max {limit_value})", details=dd)


__all__ = [
    "LedgerError",
    "AuthorizationError",
    "LifecycleError",
    "CorrelationError",
    "IntegrityError",
    "NotFound",
    "NotAuthorized",
    "InactiveProject",
    "AlreadyInactive",
    "FundingStillActive",
    "AlreadyRevealed",
    "RequestAlreadyPending",
    "AlreadyVoted",
    "AlreadyReviewed",
    "UnknownRequest",
    "ProofVerificationFailed",
    "MalformedPayload",
    "UninitializedAccumulator",
    "EngineError",
    "LimitExceeded",
]
