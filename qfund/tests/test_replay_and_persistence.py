from prometheus_client import REGISTRY

from qfund.fhe.transparent import TransparentEngine
from qfund.ledger import Ledger
from qfund.lifecycle import RolePolicy
from qfund.store.events import SqliteEventLog
from qfund.store.types import RevealState, ReviewStatus


def _busy_ledger(led, engine, submit, fund):
    p1 = submit(led, "alice", title="Plaza", budget=1000)
    p2 = submit(led, "bob", title="Library", budget=250)
    p3 = submit(led, "carol")
    fund(led, p1, [1, 4, 9])
    fund(led, p2, [16, 25], prefix="patron")
    led.vote(p1, "v1")
    led.vote(p1, "v2")
    led.vote(p2, "v1")
    led.review_project(p1, "rita", approved=True)
    led.close_project(p1, "alice")
    engine.deliver(led.request_reveal(p1, "alice"))
    led.request_reveal(p3, "carol")  # left pending
    return p1, p2, p3


def test_replay_rebuilds_entity_state(make_ledger, engine, submit, fund):
    policy = RolePolicy({"reviewer": ["rita"]})
    led = make_ledger(policy=policy)
    p1, p2, p3 = _busy_ledger(led, engine, submit, fund)

    rebuilt = Ledger.replay(led.events.events(), engine, policy=policy)

    for pid in (p1, p2, p3):
        a, b = led.get_project(pid), rebuilt.get_project(pid)
        assert (a.creator, a.active, a.review, a.created_at) == (b.creator, b.active, b.review, b.created_at)
        assert a.encrypted_fields() == b.encrypted_fields()
        assert engine.decrypt(a.total) == engine.decrypt(b.total)
        assert engine.decrypt(led.votes(pid)) == engine.decrypt(rebuilt.votes(pid))
        assert led.list_contributions(pid) == rebuilt.list_contributions(pid)

    assert rebuilt.get_revealed(p1) == led.get_revealed(p1)
    assert engine.decrypt(rebuilt.get_matching(p1)) == 36
    assert engine.decrypt(rebuilt.contributor_sqrt_sum("patron-1")) == 5
    assert rebuilt.get_project(p1).review is ReviewStatus.APPROVED

    # Pending requests are transient.
    assert led.reveal_state(p3) is RevealState.REQUEST_PENDING
    assert rebuilt.reveal_state(p3) is RevealState.HIDDEN

    assert rebuilt.events.last_seq() == led.events.last_seq()
    assert [e.kind for e in rebuilt.events.events()] == [e.kind for e in led.events.events()]


def test_replayed_ledger_keeps_allocating_ids(ledger, engine, submit):
    submit(ledger)
    submit(ledger)
    rebuilt = Ledger.replay(ledger.events.events(), engine)
    assert submit(rebuilt) == 3


def test_sqlite_ledger_survives_restart(sqlite_config, submit, fund):
    engine = TransparentEngine.from_config(sqlite_config.engine)
    led = Ledger.from_config(sqlite_config, engine)
    pid = submit(led, "alice")
    fund(led, pid, [1, 4, 9])
    led.close_project(pid, "alice")
    rid = led.request_reveal(pid, "alice")
    led.close()

    reopened = Ledger.from_config(sqlite_config, engine)
    try:
        assert reopened.get_project(pid).active is False
        assert engine.decrypt(reopened.total_contributions(pid)) == 14
        assert engine.decrypt(reopened.get_matching(pid)) == 36
        assert reopened.oracle.pending_request(pid).request_id == rid

        # The oracle answers the request issued before the restart.
        reopened.on_decryption_callback(*engine.build_response(rid))
        assert reopened.get_revealed(pid).revealed is True
        assert reopened.events.last_seq() == 6
    finally:
        reopened.close()


def test_replay_from_sqlite_event_log(sqlite_config, submit, fund):
    engine = TransparentEngine()
    led = Ledger.from_config(sqlite_config, engine)
    pid = submit(led)
    fund(led, pid, [2, 3])
    led.close()

    path = sqlite_config.store.events_url[len("sqlite:///") :]
    with SqliteEventLog(path) as log:
        rebuilt = Ledger.replay(log.events(), engine)

    assert engine.decrypt(rebuilt.total_contributions(pid)) == 5
    assert rebuilt.contribution_count(pid) == 2


def test_pending_reveals_gauge_follows_store_on_restart(sqlite_config, submit):
    engine = TransparentEngine.from_config(sqlite_config.engine)
    led = Ledger.from_config(sqlite_config, engine)
    p1 = submit(led, "alice")
    p2 = submit(led, "bob")
    led.request_reveal(p1, "alice")
    led.request_reveal(p2, "bob")
    led.close()

    # Another ledger in the same process moves the shared gauge.
    Ledger.in_memory(engine)
    assert REGISTRY.get_sample_value("qfund_ledger_pending_reveals") == 0

    reopened = Ledger.from_config(sqlite_config, engine)
    try:
        assert reopened.oracle.pending_count() == 2
        assert REGISTRY.get_sample_value("qfund_ledger_pending_reveals") == 2
    finally:
        reopened.close()
