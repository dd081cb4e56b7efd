from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError
from typer.testing import CliRunner

from subsync import main
from subsync.config import Settings
from subsync.coordinator import build_coordinator
from tests.fakes import FakeRemoteStore

runner = CliRunner()


@pytest.fixture
def cli_remote(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> FakeRemoteStore:
    settings = Settings(_env_file=None, SUBSYNC_DATA_DIR=tmp_path, FREE_TIER_LIMIT=2, LOG_LEVEL="WARNING")
    remote = FakeRemoteStore()
    monkeypatch.setattr(main, "get_settings", lambda: settings)
    monkeypatch.setattr(main, "build_coordinator", lambda s: build_coordinator(s, remote=remote))
    return remote


def _add(name: str, *extra: str):
    return runner.invoke(main.app, ["add", name, "--amount", "9.99", "--next", "2030-05-01", *extra])


def test_info_prints_configuration(cli_remote: FakeRemoteStore) -> None:
    result = runner.invoke(main.app, ["info"])

    assert result.exit_code == 0
    assert "reminders=[3, 1, 0]d@17:30" in result.output


def test_add_persists_locally_and_remotely(cli_remote: FakeRemoteStore, tmp_path: Path) -> None:
    result = _add("Spotify", "--category", "music")

    assert result.exit_code == 0, result.output
    assert "Added Spotify" in result.output
    snapshot = json.loads((tmp_path / "snapshot.json").read_text(encoding="utf-8"))
    assert [item["service_name"] for item in snapshot["subscriptions"]] == ["Spotify"]
    assert [r.service_name for r in cli_remote.rows.values()] == ["Spotify"]
    assert (tmp_path / "reminders.json").exists()

    listing = runner.invoke(main.app, ["list"])
    assert "Spotify" in listing.output


def test_add_beyond_free_tier_fails(cli_remote: FakeRemoteStore) -> None:
    assert _add("Netflix").exit_code == 0
    assert _add("Spotify").exit_code == 0

    result = _add("Notion")

    assert result.exit_code == 1
    assert len(cli_remote.rows) == 2


def test_delete_by_prefix_then_reactivate(cli_remote: FakeRemoteStore) -> None:
    _add("Netflix")
    record_id = next(iter(cli_remote.rows))

    deleted = runner.invoke(main.app, ["delete", record_id[:8]])
    assert deleted.exit_code == 0, deleted.output
    assert cli_remote.rows[record_id].active is False

    restored = runner.invoke(main.app, ["reactivate", record_id[:8]])
    assert restored.exit_code == 0
    assert cli_remote.rows[record_id].active is True


def test_unknown_id_exits_with_error(cli_remote: FakeRemoteStore) -> None:
    result = runner.invoke(main.app, ["delete", "does-not-exist"])

    assert result.exit_code == 1


def test_purge_removes_remote_row(cli_remote: FakeRemoteStore) -> None:
    _add("Netflix")
    record_id = next(iter(cli_remote.rows))

    result = runner.invoke(main.app, ["purge", record_id, "--yes"])

    assert result.exit_code == 0
    assert cli_remote.rows == {}


def test_update_requires_a_change(cli_remote: FakeRemoteStore) -> None:
    _add("Netflix")
    record_id = next(iter(cli_remote.rows))

    assert runner.invoke(main.app, ["update", record_id]).exit_code == 1

    result = runner.invoke(main.app, ["update", record_id, "--amount", "15.49"])
    assert result.exit_code == 0
    assert cli_remote.rows[record_id].amount == 15.49


def test_reset_keeps_remote(cli_remote: FakeRemoteStore, tmp_path: Path) -> None:
    _add("Netflix")

    result = runner.invoke(main.app, ["reset", "--yes"])

    assert result.exit_code == 0
    assert len(cli_remote.rows) == 1
    snapshot = json.loads((tmp_path / "snapshot.json").read_text(encoding="utf-8"))
    assert snapshot["subscriptions"] == []


def test_add_with_negative_amount_fails_cleanly(cli_remote: FakeRemoteStore) -> None:
    result = runner.invoke(main.app, ["add", "Netflix", "--amount=-5", "--next", "2030-01-01"])

    assert result.exit_code == 1
    assert not isinstance(result.exception, ValidationError)
    assert "Invalid amount" in result.output
    assert cli_remote.rows == {}


def test_update_with_negative_amount_fails_cleanly(cli_remote: FakeRemoteStore) -> None:
    _add("Netflix")
    record_id = next(iter(cli_remote.rows))

    result = runner.invoke(main.app, ["update", record_id, "--amount=-1"])

    assert result.exit_code == 1
    assert "Invalid amount" in result.output
    assert cli_remote.rows[record_id].amount == 9.99


def test_usage_answers_lead_to_cancellation_suggestion(cli_remote: FakeRemoteStore, tmp_path: Path) -> None:
    _add("Netflix")
    record_id = next(iter(cli_remote.rows))

    first = runner.invoke(main.app, ["usage", record_id, "--not-used"])
    assert first.exit_code == 0, first.output
    assert "Consider cancelling" not in first.output

    second = runner.invoke(main.app, ["usage", record_id, "--not-used"])
    assert second.exit_code == 0
    assert "Consider cancelling: https://www.netflix.com/cancelplan" in second.output

    ledger = json.loads((tmp_path / "usage.json").read_text(encoding="utf-8"))
    assert ledger["not_used_counts"] == {record_id: 2}
    reminders = json.loads((tmp_path / "reminders.json").read_text(encoding="utf-8"))
    assert "cancel-suggestion-Netflix" in {item["identifier"] for item in reminders}


def test_usage_requires_an_answer(cli_remote: FakeRemoteStore) -> None:
    _add("Netflix")
    record_id = next(iter(cli_remote.rows))

    assert runner.invoke(main.app, ["usage", record_id]).exit_code == 1
