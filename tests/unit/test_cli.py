"""Unit tests for the ffa-calendar-etl command.

connect() and run_harvest() are patched out; the run report is written
under a temporary working directory.
"""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest
from click.testing import CliRunner

from ffa_calendar_etl import cli
from ffa_calendar_etl.catalog import CatalogUnavailable, PostgresProgressStore
from ffa_calendar_etl.progress import JsonProgressStore, ScrapingProgress


@pytest.fixture
def conn(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    connection = MagicMock()
    monkeypatch.setattr(cli, "connect", lambda dsn: connection)
    return connection


def _fake_harvest(calls, **counter_values):
    def run_harvest(client, catalog, store, config, counters, agent_name, dry_run=False):
        calls.append({"store": store, "config": config, "agent_name": agent_name, "dry_run": dry_run})
        for key, value in counter_values.items():
            setattr(counters, key, value)
        return ScrapingProgress(current_region="ARA", current_month="2025-03")
    return run_harvest


def _invoke(*args):
    return CliRunner().invoke(cli.main, ["--db-dsn", "postgresql://localhost/test", *args])


class TestMain:
    def test_successful_run(self, conn, monkeypatch, tmp_path):
        calls = []
        monkeypatch.setattr(cli, "run_harvest", _fake_harvest(
            calls, units_attempted=2, units_completed=2, proposals_created=3,
        ))
        result = _invoke("--run-id", "run-ok", "--regions-per-run", "1")

        assert result.exit_code == 0, result.output
        assert "=== FFA Calendar Harvest Run Report ===" in result.output
        assert "Cursor: ARA / 2025-03" in result.output
        assert isinstance(calls[0]["store"], PostgresProgressStore)
        assert calls[0]["config"].regions_per_run == 1
        assert calls[0]["agent_name"] == cli.DEFAULT_AGENT_NAME
        conn.close.assert_called_once()

        report = json.loads((tmp_path / "artifacts" / "reports" / "run-ok.json").read_text())
        assert report["mode"] == "ffa_calendar"
        assert report["config_version"] == "builtin"
        assert report["counters"]["proposals_created"] == 3

    def test_progress_file_store(self, conn, monkeypatch, tmp_path):
        calls = []
        monkeypatch.setattr(cli, "run_harvest", _fake_harvest(calls))
        result = _invoke("--progress-path", str(tmp_path / "progress.json"), "--dry-run")
        assert result.exit_code == 0, result.output
        assert isinstance(calls[0]["store"], JsonProgressStore)
        assert calls[0]["dry_run"] is True

    def test_invalid_config(self, conn, monkeypatch, tmp_path):
        monkeypatch.setattr(cli, "run_harvest", MagicMock())
        path = tmp_path / "harvest.yml"
        path.write_text("regions: [ARA]\n", encoding="utf-8")
        result = _invoke("--config-path", str(path))
        assert result.exit_code == 1
        assert "invalid harvest config" in result.output
        cli.run_harvest.assert_not_called()

    def test_invalid_override(self, conn, monkeypatch):
        monkeypatch.setattr(cli, "run_harvest", MagicMock())
        result = _invoke("--regions-per-run", "0")
        assert result.exit_code == 1
        cli.run_harvest.assert_not_called()

    def test_connect_failure(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)

        def refuse(dsn):
            raise CatalogUnavailable("cannot connect to catalog: refused")

        monkeypatch.setattr(cli, "connect", refuse)
        monkeypatch.setattr(cli, "run_harvest", MagicMock())
        result = _invoke()
        assert result.exit_code == 1
        assert "FATAL" in result.output
        cli.run_harvest.assert_not_called()

    def test_catalog_lost_mid_run(self, conn, monkeypatch, tmp_path):
        monkeypatch.setattr(
            cli, "run_harvest", MagicMock(side_effect=CatalogUnavailable("catalog connection lost")),
        )
        result = _invoke("--run-id", "run-lost")
        assert result.exit_code == 1
        assert "catalog connection lost" in result.output
        assert (tmp_path / "artifacts" / "reports" / "run-lost.json").exists()
        conn.close.assert_called_once()

    def test_db_errors_exit_non_zero(self, conn, monkeypatch):
        monkeypatch.setattr(cli, "run_harvest", _fake_harvest([], units_attempted=1, db_errors=2))
        assert _invoke().exit_code == 1

    def test_db_errors_tolerated_in_dry_run(self, conn, monkeypatch):
        monkeypatch.setattr(cli, "run_harvest", _fake_harvest([], units_attempted=1, db_errors=2))
        assert _invoke("--dry-run").exit_code == 0

    def test_every_unit_failed(self, conn, monkeypatch):
        monkeypatch.setattr(
            cli, "run_harvest", _fake_harvest([], units_attempted=2, units_failed=2),
        )
        assert _invoke().exit_code == 1

    def test_cooldown_is_success(self, conn, monkeypatch):
        monkeypatch.setattr(cli, "run_harvest", _fake_harvest([], cooldown_active=True))
        result = _invoke()
        assert result.exit_code == 0
        assert "cooldown_active  : True" in result.output
