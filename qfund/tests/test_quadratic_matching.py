import itertools

import pytest

from qfund.errors import FundingStillActive, NotFound


@pytest.mark.parametrize("amounts", list(itertools.permutations([1, 4, 9])))
def test_matching_of_one_four_nine_is_36_in_any_order(ledger, engine, submit, fund, amounts):
    pid = submit(ledger)
    fund(ledger, pid, list(amounts))
    ledger.close_project(pid, "alice")

    assert engine.decrypt(ledger.get_matching(pid)) == 36


def test_single_large_contribution_matches_itself(ledger, engine, submit, fund):
    pid = submit(ledger)
    fund(ledger, pid, [14])
    ledger.close_project(pid, "alice")

    assert engine.decrypt(ledger.get_matching(pid)) == 14


def test_non_square_amounts_stay_within_precision(ledger, engine, submit, fund):
    pid = submit(ledger)
    fund(ledger, pid, [2, 2])
    ledger.close_project(pid, "alice")

    # (2 * sqrt(2))^2 = 8
    assert engine.decrypt(ledger.get_matching(pid)) == 8


def test_matching_without_contributions_is_zero(ledger, engine, submit):
    pid = submit(ledger)
    ledger.close_project(pid, "alice")

    assert engine.decrypt(ledger.get_matching(pid)) == 0


def test_matching_refused_while_open(ledger, submit, fund):
    pid = submit(ledger)
    fund(ledger, pid, [1, 4])

    with pytest.raises(FundingStillActive):
        ledger.get_matching(pid)


def test_matching_unknown_project(ledger):
    with pytest.raises(NotFound):
        ledger.get_matching(99)


def test_contributor_sqrt_sum_spans_projects(ledger, engine, submit):
    p1 = submit(ledger)
    p2 = submit(ledger, "bob")
    ledger.contribute(p1, "carol", engine.encrypt(4))
    ledger.contribute(p2, "carol", engine.encrypt(9))

    assert engine.decrypt(ledger.contributor_sqrt_sum("carol")) == 5
