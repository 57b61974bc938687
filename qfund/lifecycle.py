"""
qfund.lifecycle
---------------

Lifecycle Gate: decides which operations are legal for a project and which
actor may trigger state transitions.

Funding state is `OPEN → CLOSED` (one way). The reveal state
(`HIDDEN → REQUEST_PENDING → REVEALED`) is orthogonal and owned by
`qfund.oracle`.

Authorization is a capability check through an injected `AccessPolicy`, not a
cryptographic one. It always runs before lifecycle checks so an unauthorized
caller learns nothing about project state and never causes a mutation.

Policies
~~~~~~~~
- CreatorPolicy: only the project's creator may close it or request its
  reveal; nobody may review.
- RolePolicy: CreatorPolicy plus named roles. `admin` may close/reveal/review
  any project; `reviewer` may review.

Both identify actors by the identity string the transport layer hands to the
ledger. Authenticating that identity is the transport's job.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, Iterable, Optional, Protocol, Set

from qfund.errors import (
    AlreadyInactive,
    AlreadyReviewed,
    FundingStillActive,
    InactiveProject,
    NotAuthorized,
)
from qfund.store.types import Project, ReviewStatus

log = logging.getLogger(__name__)


class Action(str, Enum):
    CLOSE = "close"
    REQUEST_REVEAL = "request_reveal"
    REVIEW = "review"


class FundingState(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


ROLE_ADMIN = "admin"
ROLE_REVIEWER = "reviewer"


class AccessPolicy(Protocol):
    def allows(self, actor: str, action: Action, project: Project) -> bool: ...


class CreatorPolicy:
    """The submitter of a project holds the close and reveal capabilities for it."""

    def allows(self, actor: str, action: Action, project: Project) -> bool:
        if action in (Action.CLOSE, Action.REQUEST_REVEAL):
            return bool(actor) and actor == project.creator
        return False


class RolePolicy(CreatorPolicy):
    """
    CreatorPolicy extended with role membership.

    Granting an existing role or revoking a missing one is a no-op.
    """

    def __init__(self, roles: Optional[Dict[str, Iterable[str]]] = None) -> None:
        self._roles: Dict[str, Set[str]] = {k: set(v) for k, v in (roles or {}).items()}

    def grant(self, role: str, actor: str) -> None:
        self._roles.setdefault(role, set()).add(actor)

    def revoke(self, role: str, actor: str) -> None:
        self._roles.get(role, set()).discard(actor)

    def has_role(self, role: str, actor: str) -> bool:
        return actor in self._roles.get(role, ())

    def allows(self, actor: str, action: Action, project: Project) -> bool:
        if self.has_role(ROLE_ADMIN, actor):
            return True
        if action is Action.REVIEW:
            return self.has_role(ROLE_REVIEWER, actor)
        return super().allows(actor, action, project)


class LifecycleGate:
    def __init__(self, policy: Optional[AccessPolicy] = None) -> None:
        self.policy: AccessPolicy = policy or CreatorPolicy()

    @staticmethod
    def funding_state(project: Project) -> FundingState:
        return FundingState.OPEN if project.active else FundingState.CLOSED

    def authorize(self, actor: str, action: Action, project: Project) -> None:
        if not self.policy.allows(actor, action, project):
            log.info(
                "denied %s on project %d for %r", action.value, project.project_id, actor,
                extra={"project_id": project.project_id, "action": action.value},
            )
            raise NotAuthorized(actor=actor, action=action.value, project_id=project.project_id)

    def require_open(self, project: Project) -> None:
        if not project.active:
            raise InactiveProject(project.project_id)

    def require_closed(self, project: Project) -> None:
        if project.active:
            raise FundingStillActive(project.project_id)

    def check_close(self, actor: str, project: Project) -> None:
        self.authorize(actor, Action.CLOSE, project)
        if not project.active:
            raise AlreadyInactive(project.project_id)

    def check_request_reveal(self, actor: str, project: Project) -> None:
        self.authorize(actor, Action.REQUEST_REVEAL, project)

    def check_review(self, actor: str, project: Project) -> None:
        self.authorize(actor, Action.REVIEW, project)
        if project.review is not ReviewStatus.PENDING:
            raise AlreadyReviewed(project.project_id, project.review.value)


__all__ = [
    "Action",
    "FundingState",
    "ROLE_ADMIN",
    "ROLE_REVIEWER",
    "AccessPolicy",
    "CreatorPolicy",
    "RolePolicy",
    "LifecycleGate",
]
