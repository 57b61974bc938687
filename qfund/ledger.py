"""
qfund.ledger
------------

The boundary surface an external caller drives.

    submit_project        creator + 4 ciphertext handles   → ProjectSubmitted
    contribute            project, contributor, amount     → ContributionMade
    close_project         project, actor                   → FundingCompleted
    request_reveal        project, actor                   → (nothing until callback)
    on_decryption_callback request id, payload, proof      → ProjectRevealed
    get_matching          project                          → ciphertext score
    vote                  project, voter                   → VoteCast
    review_project        project, actor, approved         → ProjectReviewed

Every request passes the Lifecycle Gate first, then the Ciphertext Store
persists the record, then the Homomorphic Accumulator updates running sums.
The calculator and the oracle protocol are invoked on demand.

Each mutating call runs under its project's lock (contributions also take the
contributor's lock, always after the project lock). It appends its event
first and then writes all its records in a single store batch, so a failed
append leaves the store untouched and the log never misses a committed
transition. Public operations are
split into checks plus an `_apply_*` step; `Ledger.replay` re-runs the
`_apply_*` steps from an event log to rebuild all entity state.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import replace
from typing import Callable, Iterable, Iterator, List, Optional

from qfund import metrics
from qfund.accumulator import HomomorphicAccumulator
from qfund.config import Config
from qfund.errors import AlreadyVoted, EngineError, LedgerError, LimitExceeded, NotFound
from qfund.fhe.engine import Ciphertext, FheEngine
from qfund.lifecycle import AccessPolicy, LifecycleGate
from qfund.locks import KeyedLocks
from qfund.oracle import DecryptionOracleProtocol
from qfund.quadratic import QuadraticFundingCalculator
from qfund.store.events import Event, EventKind, EventLog, MemoryEventLog, open_event_log
from qfund.store.kv import CiphertextStore, MemoryStore, open_store
from qfund.store.types import (
    NEXT_PROJECT_ID_KEY,
    REVEAL_FIELDS,
    Contribution,
    LedgerStats,
    Project,
    RevealedProject,
    RevealState,
    ReviewStatus,
    contribution_count_key,
    contribution_key,
    contribution_prefix,
    contributor_sqrt_key,
    project_key,
    project_sqrt_key,
    total_key,
    voter_key,
    votes_key,
)

log = logging.getLogger(__name__)


class Ledger:
    """
    Encrypted contribution ledger.

    Parameters
    ----------
    engine : FheEngine
        External cryptographic engine.
    store : CiphertextStore
        Entity and accumulator storage.
    events : EventLog
        Append-only audit/replay log.
    policy : AccessPolicy, optional
        Capability checks for close/reveal/review (default: CreatorPolicy).
    config : Config, optional
        Limits and reveal timeout.
    clock : callable
        Unix-time source (seconds).
    """

    def __init__(
        self,
        engine: FheEngine,
        store: CiphertextStore,
        events: EventLog,
        *,
        policy: Optional[AccessPolicy] = None,
        config: Optional[Config] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.engine = engine
        self.store = store
        self.events = events
        self.config = config or Config()
        self._clock = clock
        self._locks = KeyedLocks()
        self.gate = LifecycleGate(policy)
        self.accumulator = HomomorphicAccumulator(engine, store, locks=self._locks)
        self.calculator = QuadraticFundingCalculator(self.accumulator, store, self.gate)
        self.oracle = DecryptionOracleProtocol(
            engine,
            store,
            self.gate,
            events,
            locks=self._locks,
            timeout_s=self.config.reveal.timeout_s,
            max_payload_bytes=self.config.limits.max_payload_bytes,
            clock=clock,
        )
        self.oracle.sync_pending_gauge()

    # ------------------------------------------------------------------ #
    # Construction helpers
    # ------------------------------------------------------------------ #

    @classmethod
    def in_memory(cls, engine: FheEngine, **kwargs) -> "Ledger":
        return cls(engine, MemoryStore(), MemoryEventLog(), **kwargs)

    @classmethod
    def from_config(
        cls,
        cfg: Config,
        engine: FheEngine,
        *,
        policy: Optional[AccessPolicy] = None,
    ) -> "Ledger":
        return cls(
            engine,
            open_store(cfg.store.store_url),
            open_event_log(cfg.store.events_url),
            policy=policy,
            config=cfg,
        )

    def close(self) -> None:
        self.store.close()
        self.events.close()

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    @contextmanager
    def _op(self, name: str) -> Iterator[None]:
        with metrics.time_operation(name):
            try:
                yield
            except LedgerError as e:
                metrics.record_rejection(name, e.code)
                raise

    def _now(self) -> int:
        return int(self._clock())

    def _check_handle(self, name: str, ct: Ciphertext) -> bytes:
        if not isinstance(ct, (bytes, bytearray)) or len(ct) == 0:
            raise EngineError(f"{name} must be a non-empty ciphertext handle")
        limit = self.config.limits.max_ciphertext_bytes
        if len(ct) > limit:
            raise LimitExceeded(limit_name=f"{name}_bytes", limit_value=limit, observed=len(ct))
        return bytes(ct)

    def _load_project(self, project_id: int) -> Project:
        return Project.from_map(self.store.get(project_key(project_id)))

    def _page(self, limit: int) -> int:
        return max(0, min(int(limit), self.config.limits.max_page_size))

    # ------------------------------------------------------------------ #
    # submit_project
    # ------------------------------------------------------------------ #

    def submit_project(
        self,
        creator: str,
        title: Ciphertext,
        description: Ciphertext,
        location: Ciphertext,
        budget: Ciphertext,
    ) -> int:
        """Create a project from four ciphertext handles; returns its id."""
        with self._op("submit_project"):
            if not creator:
                raise LedgerError("creator must be non-empty")
            handles = {
                "title": self._check_handle("title", title),
                "description": self._check_handle("description", description),
                "location": self._check_handle("location", location),
                "budget": self._check_handle("budget", budget),
            }
            with self._locks.lock(NEXT_PROJECT_ID_KEY):
                try:
                    project_id = int(self.store.get(NEXT_PROJECT_ID_KEY)["next"])
                except NotFound:
                    project_id = 1
                self._apply_submitted(project_id, creator, handles, self._now())
        metrics.PROJECTS_SUBMITTED_TOTAL.inc()
        log.info("project %d submitted by %s", project_id, creator, extra={"project_id": project_id})
        return project_id

    def _apply_submitted(self, project_id: int, creator: str, handles: dict, ts: int) -> Project:
        project = Project(project_id=project_id, creator=creator, created_at=ts, **handles)
        with self._locks.lock(project_key(project_id)):
            try:
                next_id = int(self.store.get(NEXT_PROJECT_ID_KEY)["next"])
            except NotFound:
                next_id = 1
            self.events.append(
                EventKind.PROJECT_SUBMITTED,
                project_id,
                {"creator": creator, **handles},
                timestamp=ts,
            )
            zero = self.accumulator.zero()
            self.store.write_batch(
                {
                    project_key(project_id): project.to_map(),
                    contribution_count_key(project_id): {"count": 0},
                    NEXT_PROJECT_ID_KEY: {"next": max(next_id, project_id + 1)},
                    # Running sums start at zero.
                    total_key(project_id): {"ct": zero},
                    project_sqrt_key(project_id): {"ct": zero},
                    votes_key(project_id): {"ct": zero},
                }
            )
        return project

    # ------------------------------------------------------------------ #
    # contribute
    # ------------------------------------------------------------------ #

    def contribute(self, project_id: int, contributor: str, amount: Ciphertext) -> Contribution:
        """Append an encrypted contribution and fold it into the running sums."""
        with self._op("contribute"):
            if not contributor:
                raise LedgerError("contributor must be non-empty")
            with self._locks.hold(project_key(project_id), contributor_sqrt_key(contributor)):
                project = self._load_project(project_id)
                self.gate.require_open(project)
                amount = self._check_handle("amount", amount)
                c = self._apply_contribution(project_id, contributor, amount, self._now())
        metrics.CONTRIBUTIONS_TOTAL.inc()
        log.debug(
            "contribution #%d to project %d from %s", c.index, project_id, contributor,
            extra={"project_id": project_id},
        )
        return c

    def _apply_contribution(self, project_id: int, contributor: str, amount: Ciphertext, ts: int) -> Contribution:
        ckey = contributor_sqrt_key(contributor)
        with self._locks.hold(project_key(project_id), ckey):
            root = self.accumulator.sqrt_approx(amount)
            new_total = self.accumulator.combine(total_key(project_id), amount)
            new_project_sqrt = self.accumulator.combine(project_sqrt_key(project_id), root)
            if self.accumulator.is_initialized(ckey):
                new_contributor_sqrt = self.accumulator.combine(ckey, root)
            else:
                # First contribution anywhere by this contributor.
                new_contributor_sqrt = self.accumulator.add(self.accumulator.zero(), root)

            index = int(self.store.get(contribution_count_key(project_id))["count"])
            c = Contribution(
                project_id=project_id,
                index=index,
                contributor=contributor,
                amount=amount,
                timestamp=ts,
            )
            self.events.append(
                EventKind.CONTRIBUTION_MADE,
                project_id,
                {"index": index, "contributor": contributor, "amount": amount},
                timestamp=ts,
            )
            self.store.write_batch(
                {
                    contribution_key(project_id, index): c.to_map(),
                    contribution_count_key(project_id): {"count": index + 1},
                    total_key(project_id): {"ct": new_total},
                    project_sqrt_key(project_id): {"ct": new_project_sqrt},
                    ckey: {"ct": new_contributor_sqrt},
                }
            )
        return c

    # ------------------------------------------------------------------ #
    # close_project
    # ------------------------------------------------------------------ #

    def close_project(self, project_id: int, actor: str) -> Project:
        """End the funding period. Only an authorized actor may close."""
        with self._op("close_project"):
            with self._locks.lock(project_key(project_id)):
                project = self._load_project(project_id)
                self.gate.check_close(actor, project)
                project = self._apply_closed(project, actor, self._now())
        log.info("project %d closed by %s", project_id, actor, extra={"project_id": project_id})
        return project

    def _apply_closed(self, project: Project, actor: str, ts: int) -> Project:
        closed = replace(project, active=False)
        self.events.append(EventKind.FUNDING_COMPLETED, project.project_id, {"closed_by": actor}, timestamp=ts)
        self.store.put(project_key(project.project_id), closed.to_map())
        return closed

    # ------------------------------------------------------------------ #
    # Reveal protocol
    # ------------------------------------------------------------------ #

    def request_reveal(self, project_id: int, actor: str) -> bytes:
        with metrics.time_operation("request_reveal"):
            return self.oracle.request_reveal(project_id, actor)

    def on_decryption_callback(self, request_id: bytes, payload: bytes, proof: bytes) -> RevealedProject:
        with metrics.time_operation("on_decryption_callback"):
            return self.oracle.on_decryption_callback(request_id, payload, proof)

    def expire_stale_requests(self, now: Optional[float] = None) -> List[bytes]:
        return self.oracle.expire_stale(now)

    def get_revealed(self, project_id: int) -> RevealedProject:
        self._load_project(project_id)
        return self.oracle.get_revealed(project_id)

    def reveal_state(self, project_id: int) -> RevealState:
        self._load_project(project_id)
        return self.oracle.reveal_state(project_id)

    # ------------------------------------------------------------------ #
    # Matching
    # ------------------------------------------------------------------ #

    def get_matching(self, project_id: int) -> Ciphertext:
        """Encrypted quadratic-funding score of a closed project."""
        with self._op("get_matching"):
            return self.calculator.matching(project_id)

    # ------------------------------------------------------------------ #
    # Votes & review
    # ------------------------------------------------------------------ #

    def vote(self, project_id: int, voter: str) -> Ciphertext:
        """Add an encrypted endorsement; one per voter per open project."""
        with self._op("vote"):
            if not voter:
                raise LedgerError("voter must be non-empty")
            with self._locks.lock(project_key(project_id)):
                project = self._load_project(project_id)
                self.gate.require_open(project)
                if self.store.has(voter_key(project_id, voter)):
                    raise AlreadyVoted(project_id, voter)
                tally = self._apply_vote(project_id, voter, self._now())
        metrics.VOTES_TOTAL.inc()
        return tally

    def _apply_vote(self, project_id: int, voter: str, ts: int) -> Ciphertext:
        with self._locks.lock(votes_key(project_id)):
            tally = self.accumulator.combine(votes_key(project_id), self.engine.encrypt(1))
            self.events.append(EventKind.VOTE_CAST, project_id, {"voter": voter}, timestamp=ts)
            self.store.write_batch(
                {
                    votes_key(project_id): {"ct": tally},
                    voter_key(project_id, voter): {"at": ts},
                }
            )
        return tally

    def votes(self, project_id: int) -> Ciphertext:
        return self.accumulator.read(votes_key(project_id))

    def review_project(self, project_id: int, actor: str, approved: bool) -> Project:
        with self._op("review_project"):
            with self._locks.lock(project_key(project_id)):
                project = self._load_project(project_id)
                self.gate.check_review(actor, project)
                status = ReviewStatus.APPROVED if approved else ReviewStatus.REJECTED
                project = self._apply_reviewed(project, actor, status, self._now())
        log.info("project %d %s by %s", project_id, status.value, actor, extra={"project_id": project_id})
        return project

    def _apply_reviewed(self, project: Project, actor: str, status: ReviewStatus, ts: int) -> Project:
        reviewed = replace(project, review=status)
        self.events.append(
            EventKind.PROJECT_REVIEWED,
            project.project_id,
            {"reviewer": actor, "status": status.value},
            timestamp=ts,
        )
        self.store.put(project_key(project.project_id), reviewed.to_map())
        return reviewed

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    def get_project(self, project_id: int) -> Project:
        """Project record with its encrypted running total attached."""
        project = self._load_project(project_id)
        return replace(project, total=self.total_contributions(project_id))

    def total_contributions(self, project_id: int) -> Ciphertext:
        return self.accumulator.read(total_key(project_id))

    def contributor_sqrt_sum(self, contributor: str) -> Ciphertext:
        return self.calculator.contributor_sqrt_sum(contributor)

    def contribution_count(self, project_id: int) -> int:
        return int(self.store.get(contribution_count_key(project_id))["count"])

    def list_contributions(self, project_id: int, *, limit: int = 50, offset: int = 0) -> List[Contribution]:
        self._load_project(project_id)
        rows = self.store.scan(contribution_prefix(project_id), limit=self._page(limit), offset=max(0, offset))
        return [Contribution.from_map(rec) for _, rec in rows]

    def list_projects(self, *, limit: int = 50, offset: int = 0) -> List[Project]:
        rows = self.store.scan(b"proj:", limit=self._page(limit), offset=max(0, offset))
        return [Project.from_map(rec) for _, rec in rows]

    def iter_projects(self) -> Iterator[Project]:
        page = self.config.limits.max_page_size
        offset = 0
        while True:
            batch = self.list_projects(limit=page, offset=offset)
            yield from batch
            if len(batch) < page:
                return
            offset += page

    def stats(self) -> LedgerStats:
        """Counts by review status, open and revealed projects; no plaintext involved."""
        by_review = {s.value: 0 for s in ReviewStatus}
        total = active = revealed = 0
        for p in self.iter_projects():
            total += 1
            active += int(p.active)
            by_review[p.review.value] += 1
            revealed += int(self.oracle.reveal_state(p.project_id) is RevealState.REVEALED)
        return LedgerStats(
            projects=total,
            active=active,
            revealed=revealed,
            pending_reveals=self.oracle.pending_count(),
            by_review=by_review,
        )

    # ------------------------------------------------------------------ #
    # Replay
    # ------------------------------------------------------------------ #

    @classmethod
    def replay(
        cls,
        events: Iterable[Event],
        engine: FheEngine,
        *,
        store: Optional[CiphertextStore] = None,
        target: Optional[EventLog] = None,
        policy: Optional[AccessPolicy] = None,
        config: Optional[Config] = None,
    ) -> "Ledger":
        """
        Rebuild a ledger by re-applying `events` in order.

        Checks are not re-run: the log only holds transitions that already
        passed them. Pending decryption requests are not part of the log and
        start out empty.
        """
        ledger = cls(
            engine,
            store if store is not None else MemoryStore(),
            target if target is not None else MemoryEventLog(),
            policy=policy,
            config=config,
        )
        n = 0
        for ev in events:
            ledger._apply_event(ev)
            n += 1
        log.info("replayed %d events", n)
        return ledger

    def _apply_event(self, ev: Event) -> None:
        d = ev.data
        pid = ev.project_id
        if ev.kind is EventKind.PROJECT_SUBMITTED:
            handles = {name: bytes(d[name]) for name in REVEAL_FIELDS}
            self._apply_submitted(pid, str(d["creator"]), handles, ev.timestamp)
        elif ev.kind is EventKind.CONTRIBUTION_MADE:
            self._apply_contribution(pid, str(d["contributor"]), bytes(d["amount"]), ev.timestamp)
        elif ev.kind is EventKind.FUNDING_COMPLETED:
            self._apply_closed(self._load_project(pid), str(d.get("closed_by", "")), ev.timestamp)
        elif ev.kind is EventKind.VOTE_CAST:
            self._apply_vote(pid, str(d["voter"]), ev.timestamp)
        elif ev.kind is EventKind.PROJECT_REVIEWED:
            self._apply_reviewed(self._load_project(pid), str(d["reviewer"]), ReviewStatus(d["status"]), ev.timestamp)
        elif ev.kind is EventKind.PROJECT_REVEALED:
            revealed = RevealedProject(
                project_id=pid,
                revealed=True,
                request_id=bytes(d["request_id"]),
                revealed_at=ev.timestamp,
                **{name: d.get(name) for name in REVEAL_FIELDS},
            )
            self.events.append(EventKind.PROJECT_REVEALED, pid, dict(d), timestamp=ev.timestamp)
            self.oracle.restore_revealed(revealed)


__all__ = ["Ledger"]
