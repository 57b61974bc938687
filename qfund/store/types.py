"""
qfund.store.types
-----------------

Entity records owned by the ledger and the Ciphertext Store key layout.

Ciphertexts are opaque `bytes` handles issued by the FHE engine; nothing in
this module looks inside them.

Key layout (ASCII prefixes, ids zero-padded so prefix scans are ordered):

    meta:next_project_id                  → {"next": int}
    proj:<pid20>                          → Project
    contrib:<pid20>:<idx20>               → Contribution
    contrib_count:<pid20>                 → {"count": int}
    acc:total:<pid20>                     → running encrypted total
    acc:sqrt:project:<pid20>              → Σ sqrt(amount) for the project
    acc:sqrt:contributor:<addr>           → Σ sqrt(amount) over all projects
    acc:votes:<pid20>                     → encrypted endorsement tally
    vote:<pid20>:<addr>                   → {"at": int}
    revealed:<pid20>                      → RevealedProject
    req:<request_id hex>                  → DecryptionRequest
    pending:<pid20>                       → {"request_id": bytes}
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

Ciphertext = bytes
UnixTime = int

# Order is the order in which fields are batched into a decryption request.
REVEAL_FIELDS: Tuple[str, ...] = ("title", "description", "location", "budget")


class ReviewStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class RevealState(str, Enum):
    HIDDEN = "hidden"
    REQUEST_PENDING = "request_pending"
    REVEALED = "revealed"


# -----------------------------------------------------------------------------
# Keys
# -----------------------------------------------------------------------------

NEXT_PROJECT_ID_KEY = b"meta:next_project_id"


def _pid(project_id: int) -> bytes:
    if project_id < 0:
        raise ValueError("project_id must be non-negative")
    return b"%020d" % project_id


def project_key(project_id: int) -> bytes:
    return b"proj:" + _pid(project_id)


def contribution_prefix(project_id: int) -> bytes:
    return b"contrib:" + _pid(project_id) + b":"


def contribution_key(project_id: int, index: int) -> bytes:
    return contribution_prefix(project_id) + (b"%020d" % index)


def contribution_count_key(project_id: int) -> bytes:
    return b"contrib_count:" + _pid(project_id)


def total_key(project_id: int) -> bytes:
    return b"acc:total:" + _pid(project_id)


def project_sqrt_key(project_id: int) -> bytes:
    return b"acc:sqrt:project:" + _pid(project_id)


def contributor_sqrt_key(contributor: str) -> bytes:
    return b"acc:sqrt:contributor:" + contributor.encode("utf-8")


def votes_key(project_id: int) -> bytes:
    return b"acc:votes:" + _pid(project_id)


def voter_key(project_id: int, voter: str) -> bytes:
    return b"vote:" + _pid(project_id) + b":" + voter.encode("utf-8")


def revealed_key(project_id: int) -> bytes:
    return b"revealed:" + _pid(project_id)


def request_key(request_id: bytes) -> bytes:
    return b"req:" + bytes(request_id).hex().encode("ascii")


def pending_key(project_id: int) -> bytes:
    return b"pending:" + _pid(project_id)


# -----------------------------------------------------------------------------
# Records
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Project:
    """
    An encrypted project proposal.

    Fields:
        project_id:   Monotonically assigned identifier (starts at 1).
        creator:      Identity of the submitting actor.
        title/description/location/budget: ciphertext handles.
        created_at:   Unix time of submission.
        active:       True while the funding period is open.
        review:       Review status (pending → approved | rejected).
        total:        Encrypted running total; filled from the accumulator on read.
    """

    project_id: int
    creator: str
    title: Ciphertext
    description: Ciphertext
    location: Ciphertext
    budget: Ciphertext
    created_at: UnixTime
    active: bool = True
    review: ReviewStatus = ReviewStatus.PENDING
    total: Ciphertext = b""

    def __post_init__(self) -> None:
        if self.project_id <= 0:
            raise ValueError("project_id must be positive")
        if not self.creator:
            raise ValueError("creator must be non-empty")

    def encrypted_fields(self) -> Dict[str, Ciphertext]:
        return {name: getattr(self, name) for name in REVEAL_FIELDS}

    def to_map(self) -> Dict[str, Any]:
        return {
            "project_id": self.project_id,
            "creator": self.creator,
            "title": self.title,
            "description": self.description,
            "location": self.location,
            "budget": self.budget,
            "created_at": self.created_at,
            "active": self.active,
            "review": self.review.value,
        }

    @classmethod
    def from_map(cls, m: Dict[str, Any]) -> "Project":
        return cls(
            project_id=int(m["project_id"]),
            creator=str(m["creator"]),
            title=bytes(m["title"]),
            description=bytes(m["description"]),
            location=bytes(m["location"]),
            budget=bytes(m["budget"]),
            created_at=int(m["created_at"]),
            active=bool(m["active"]),
            review=ReviewStatus(m.get("review", ReviewStatus.PENDING.value)),
        )


@dataclass(frozen=True, slots=True)
class Contribution:
    """Append-only contribution; `index` is its position in the project's log."""

    project_id: int
    index: int
    contributor: str
    amount: Ciphertext
    timestamp: UnixTime

    def to_map(self) -> Dict[str, Any]:
        return {
            "project_id": self.project_id,
            "index": self.index,
            "contributor": self.contributor,
            "amount": self.amount,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_map(cls, m: Dict[str, Any]) -> "Contribution":
        return cls(
            project_id=int(m["project_id"]),
            index=int(m["index"]),
            contributor=str(m["contributor"]),
            amount=bytes(m["amount"]),
            timestamp=int(m["timestamp"]),
        )


@dataclass(frozen=True, slots=True)
class RevealedProject:
    """Plaintext mirror of a project's encrypted fields, written exactly once."""

    project_id: int
    title: Optional[Any] = None
    description: Optional[Any] = None
    location: Optional[Any] = None
    budget: Optional[Any] = None
    revealed: bool = False
    request_id: bytes = b""
    revealed_at: Optional[UnixTime] = None

    def to_map(self) -> Dict[str, Any]:
        return {
            "project_id": self.project_id,
            "title": self.title,
            "description": self.description,
            "location": self.location,
            "budget": self.budget,
            "revealed": self.revealed,
            "request_id": self.request_id,
            "revealed_at": self.revealed_at,
        }

    @classmethod
    def from_map(cls, m: Dict[str, Any]) -> "RevealedProject":
        return cls(
            project_id=int(m["project_id"]),
            title=m.get("title"),
            description=m.get("description"),
            location=m.get("location"),
            budget=m.get("budget"),
            revealed=bool(m.get("revealed", False)),
            request_id=bytes(m.get("request_id") or b""),
            revealed_at=m.get("revealed_at"),
        )


@dataclass(frozen=True, slots=True)
class DecryptionRequest:
    """Correlates an oracle request id with the project it reveals."""

    request_id: bytes
    project_id: int
    fields: Tuple[str, ...] = REVEAL_FIELDS
    requested_at: UnixTime = 0
    requested_by: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.request_id, (bytes, bytearray)) or len(self.request_id) == 0:
            raise ValueError("request_id must be non-empty bytes")

    def to_map(self) -> Dict[str, Any]:
        return {
            "request_id": bytes(self.request_id),
            "project_id": self.project_id,
            "fields": list(self.fields),
            "requested_at": self.requested_at,
            "requested_by": self.requested_by,
        }

    @classmethod
    def from_map(cls, m: Dict[str, Any]) -> "DecryptionRequest":
        return cls(
            request_id=bytes(m["request_id"]),
            project_id=int(m["project_id"]),
            fields=tuple(m.get("fields") or REVEAL_FIELDS),
            requested_at=int(m.get("requested_at", 0)),
            requested_by=str(m.get("requested_by", "")),
        )


@dataclass(frozen=True, slots=True)
class LedgerStats:
    projects: int = 0
    active: int = 0
    revealed: int = 0
    pending_reveals: int = 0
    by_review: Dict[str, int] = field(default_factory=dict)


__all__ = [
    "Ciphertext",
    "UnixTime",
    "REVEAL_FIELDS",
    "ReviewStatus",
    "RevealState",
    "NEXT_PROJECT_ID_KEY",
    "project_key",
    "contribution_prefix",
    "contribution_key",
    "contribution_count_key",
    "total_key",
    "project_sqrt_key",
    "contributor_sqrt_key",
    "votes_key",
    "voter_key",
    "revealed_key",
    "request_key",
    "pending_key",
    "Project",
    "Contribution",
    "RevealedProject",
    "DecryptionRequest",
    "LedgerStats",
]
