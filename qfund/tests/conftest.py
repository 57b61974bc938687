from __future__ import annotations

from typing import Callable, List, Optional

import pytest

from qfund.config import Config, RevealPolicy, SecurityLimits, StoreConfig
from qfund.fhe.transparent import TransparentEngine
from qfund.ledger import Ledger
from qfund.lifecycle import AccessPolicy


class FakeClock:
    """Manually advanced unix clock."""

    def __init__(self, t: float = 1_700_000_000.0) -> None:
        self.t = float(t)

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds


@pytest.fixture
def engine() -> TransparentEngine:
    return TransparentEngine()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_ledger(engine: TransparentEngine, clock: FakeClock) -> Callable[..., Ledger]:
    def _make(
        *,
        policy: Optional[AccessPolicy] = None,
        timeout_s: float = 0.0,
        limits: Optional[SecurityLimits] = None,
    ) -> Ledger:
        cfg = Config(reveal=RevealPolicy(timeout_s=timeout_s), limits=limits or SecurityLimits())
        return Ledger.in_memory(engine, policy=policy, config=cfg, clock=clock)

    return _make


@pytest.fixture
def ledger(make_ledger) -> Ledger:
    return make_ledger()


@pytest.fixture
def submit(engine: TransparentEngine) -> Callable[..., int]:
    """Submit a project with plaintext fields encrypted by the dev engine."""

    def _submit(
        led: Ledger,
        creator: str = "alice",
        *,
        title: str = "Plaza",
        description: str = "Benches and shade trees",
        location: str = "Old Town",
        budget: int = 1000,
    ) -> int:
        return led.submit_project(
            creator,
            engine.encrypt(title),
            engine.encrypt(description),
            engine.encrypt(location),
            engine.encrypt(budget),
        )

    return _submit


@pytest.fixture
def fund(engine: TransparentEngine) -> Callable[[Ledger, int, List[int]], None]:
    """Contribute each amount from a distinct contributor."""

    def _fund(led: Ledger, project_id: int, amounts: List[int], prefix: str = "donor") -> None:
        for i, amount in enumerate(amounts):
            led.contribute(project_id, f"{prefix}-{i}", engine.encrypt(amount))

    return _fund


@pytest.fixture
def sqlite_config(tmp_path) -> Config:
    return Config(
        store=StoreConfig(
            store_url=f"sqlite:///{tmp_path / 'ledger.db'}",
            events_url=f"sqlite:///{tmp_path / 'events.db'}",
        )
    )
