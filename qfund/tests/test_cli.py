import json

import pytest
from typer.testing import CliRunner

from qfund.cli import get_app
from qfund.version import version

runner = CliRunner()


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("QFUND_CONFIG", "QFUND_STORE_URL", "QFUND_EVENTS_URL", "QFUND_LOG_LEVEL", "QFUND_METRICS_PORT"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def sqlite_env(tmp_path):
    return {
        "QFUND_STORE_URL": f"sqlite:///{tmp_path / 'ledger.db'}",
        "QFUND_EVENTS_URL": f"sqlite:///{tmp_path / 'events.db'}",
    }


def _invoke(args, env=None):
    result = runner.invoke(get_app(), args, env=env)
    assert result.exit_code == 0, result.output
    return result


def _json(args, env=None):
    # --json output is a single line; anything else on the stream is log noise.
    return json.loads(_invoke(args, env).output.strip().splitlines()[-1])


def test_version_flag():
    assert _invoke(["--version"]).output.strip() == version()


def test_simulate_default_amounts():
    out = _json(["simulate", "--json"])
    assert out["contributions"] == [1, 4, 9]
    assert out["total"] == 14
    assert out["matching"] == 36
    assert out["revealed"]["location"] == "Plaza"
    assert out["revealed"]["budget"] == 50_000
    assert len(bytes.fromhex(out["request_id"])) == 32


def test_simulate_single_contribution():
    out = _json(["simulate", "--amount", "14", "--title", "Library", "--json"])
    assert (out["total"], out["matching"]) == (14, 14)
    assert out["revealed"]["title"] == "Library"


def test_simulate_human_output():
    assert '"matching": 36' in _invoke(["simulate"]).output


def test_projects_contributions_stats_and_events_over_sqlite(sqlite_env):
    _invoke(["simulate", "--amount", "2", "--amount", "3"], env=sqlite_env)

    projects = _json(["projects", "--json"], env=sqlite_env)
    assert len(projects) == 1
    assert projects[0]["funding"] == "closed"
    assert projects[0]["reveal"] == "revealed"
    assert projects[0]["contributions"] == 2

    contribs = _json(["contributions", "1", "--json"], env=sqlite_env)
    assert [c["contributor"] for c in contribs] == ["contributor-0", "contributor-1"]

    stats = _json(["stats", "--json"], env=sqlite_env)
    assert stats["projects"] == 1
    assert stats["revealed"] == 1

    events = _json(["events", "--project", "1", "--json"], env=sqlite_env)
    assert [e["kind"] for e in events] == [
        "ProjectSubmitted",
        "ContributionMade",
        "ContributionMade",
        "FundingCompleted",
        "ProjectRevealed",
    ]

    table = _invoke(["projects"], env=sqlite_env).output
    assert "CREATOR" in table and "revealed" in table


def test_contributions_of_unknown_project_fails(sqlite_env):
    result = runner.invoke(get_app(), ["contributions", "9"], env=sqlite_env)
    assert result.exit_code == 1


def test_config_command_reflects_env(sqlite_env):
    out = _json(["config", "--json"], env={**sqlite_env, "QFUND_REVEAL_TIMEOUT": "90s"})
    assert out["store"]["store_url"] == sqlite_env["QFUND_STORE_URL"]
    assert out["reveal"]["timeout_s"] == 90.0


def test_log_level_flag():
    out = _json(["--log-level", "debug", "config", "--json"])
    assert out["log_level"] == "DEBUG"
