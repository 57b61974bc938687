"""
qfund.quadratic
---------------

Quadratic Funding Calculator.

    matching(project) = square( Σ sqrt_approx(contribution) )

evaluated entirely on ciphertexts. Many small contributions outweigh a single
large one of the same total: [1, 4, 9] → (1 + 2 + 3)² = 36 whereas [14] →
14.

The score is only computed for closed projects; while a project is open,
further contributions would change a value a caller might already treat as
final (`FundingStillActive`).

Precision is that of the engine's `sqrt_approx`; the transparent engine keeps
`sqrt_precision_bits` fractional bits per term.
"""

from __future__ import annotations

from qfund.accumulator import HomomorphicAccumulator
from qfund.fhe.engine import Ciphertext
from qfund.lifecycle import LifecycleGate
from qfund.store.kv import CiphertextStore
from qfund.store.types import Project, contributor_sqrt_key, project_key, project_sqrt_key


class QuadraticFundingCalculator:
    def __init__(self, accumulator: HomomorphicAccumulator, store: CiphertextStore, gate: LifecycleGate) -> None:
        self._acc = accumulator
        self._store = store
        self._gate = gate

    def sqrt_sum(self, project_id: int) -> Ciphertext:
        return self._acc.read(project_sqrt_key(project_id))

    def contributor_sqrt_sum(self, contributor: str) -> Ciphertext:
        return self._acc.read(contributor_sqrt_key(contributor))

    def matching(self, project_id: int) -> Ciphertext:
        project = Project.from_map(self._store.get(project_key(project_id)))
        self._gate.require_closed(project)
        return self._acc.square(self.sqrt_sum(project_id))


__all__ = ["QuadraticFundingCalculator"]
