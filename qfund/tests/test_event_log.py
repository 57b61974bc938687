import pytest

from qfund.errors import LedgerError
from qfund.store.events import EventKind, MemoryEventLog, SqliteEventLog, open_event_log


@pytest.fixture(params=["memory", "sqlite"])
def event_log(request, tmp_path):
    if request.param == "memory":
        lg = MemoryEventLog()
    else:
        lg = SqliteEventLog(str(tmp_path / "events.db"))
    yield lg
    lg.close()


def test_append_assigns_sequence_from_one(event_log):
    e1 = event_log.append(EventKind.PROJECT_SUBMITTED, 1, {"creator": "alice"}, timestamp=10)
    e2 = event_log.append("ContributionMade", 1, {"index": 0, "amount": b"\x01"}, timestamp=11)

    assert (e1.seq, e2.seq) == (1, 2)
    assert e2.kind is EventKind.CONTRIBUTION_MADE
    assert event_log.last_seq() == 2


def test_events_roundtrip_and_paging(event_log):
    for i in range(5):
        event_log.append(EventKind.VOTE_CAST, 1 + i % 2, {"voter": f"v{i}", "raw": bytes([i])}, timestamp=100 + i)

    evs = list(event_log.events())
    assert [e.seq for e in evs] == [1, 2, 3, 4, 5]
    assert evs[3].data == {"voter": "v3", "raw": b"\x03"}
    assert evs[3].timestamp == 103

    assert [e.seq for e in event_log.events(after_seq=2, limit=2)] == [3, 4]
    assert [e.seq for e in event_log.for_project(2)] == [2, 4]


def test_empty_log(event_log):
    assert event_log.last_seq() == 0
    assert list(event_log.events()) == []
    assert event_log.for_project(1) == []


def test_unknown_kind_is_rejected(event_log):
    with pytest.raises(ValueError):
        event_log.append("ProjectDeleted", 1, {}, timestamp=0)
    assert event_log.last_seq() == 0


def test_sqlite_log_persists(tmp_path):
    path = str(tmp_path / "ev.db")
    with SqliteEventLog(path) as lg:
        lg.append(EventKind.FUNDING_COMPLETED, 3, {"closed_by": "alice"}, timestamp=5)
    with SqliteEventLog(path) as lg:
        (ev,) = list(lg.events())
        assert (ev.kind, ev.project_id, ev.data) == (EventKind.FUNDING_COMPLETED, 3, {"closed_by": "alice"})


def test_open_event_log_urls():
    assert isinstance(open_event_log("memory:"), MemoryEventLog)
    with pytest.raises(LedgerError):
        open_event_log("kafka://topic")
