"""Unit tests for the canvass-etl CLI."""

from __future__ import annotations

import csv
import json
from contextlib import contextmanager

import pytest
from click.testing import CliRunner

import canvass_etl.cli as cli
from canvass_etl.records import AddressRecord
from canvass_etl.shared import StoreConnectionError

HEADERS = [
    "donation_id", "donor_name", "address_id",
    "donation_date", "donation_amount", "volunteer_id",
]

CLEAN_ENV = {
    "TARGET_DB_DSN": None,
    "SOURCE_DB_DSN": None,
    "BATCH_SIZE": None,
    "COMMIT_EVERY": None,
    "REJECTS_DIR": None,
    "REPORTS_DIR": None,
}


def _env(**kw):
    return {**CLEAN_ENV, **kw}


def _write_donations(path, rows, headers=HEADERS):
    with path.open("w", newline="", encoding="utf-8") as fh:
        writer = csv.writer(fh)
        writer.writerow(headers)
        writer.writerows(rows)
    return path


@pytest.fixture
def fake_target(make_store, monkeypatch):
    """Route the CLI's target connection to an in-memory store."""
    store = make_store(
        addresses=[AddressRecord(street_number=100, street_name="Main St",
                                 street_type="ST", postal_code="12345", address_id=1)],
        volunteers={7: 3, 3: None},
    )
    opened = []

    @contextmanager
    def _open(dsn):
        opened.append(dsn)
        yield store

    monkeypatch.setattr(cli, "open_target_store", _open)
    store.opened = opened
    return store


# ---------------------------------------------------------------------------
# Configuration errors
# ---------------------------------------------------------------------------

class TestConfigErrors:
    def test_missing_target_dsn(self, tmp_path):
        result = CliRunner().invoke(
            cli.main, ["--mode", "donations", "--reports-dir", str(tmp_path)], env=_env()
        )
        assert result.exit_code == 1
        assert "Missing configuration for: TARGET_DB_DSN" in result.output

    def test_address_refresh_requires_source(self, tmp_path):
        result = CliRunner().invoke(
            cli.main, ["--mode", "address_refresh"], env=_env(TARGET_DB_DSN="postgresql://t")
        )
        assert result.exit_code == 1
        assert "SOURCE_DB_DSN" in result.output

    def test_zero_batch_size_is_usage_error(self):
        result = CliRunner().invoke(cli.main, ["--batch-size", "0"], env=_env())
        assert result.exit_code == 2

    def test_donations_require_csv(self):
        result = CliRunner().invoke(
            cli.main, ["--mode", "donations"], env=_env(TARGET_DB_DSN="postgresql://t")
        )
        assert result.exit_code == 1
        assert "--csv-path is required" in result.output

    def test_missing_headers_fail_before_connecting(self, tmp_path, fake_target):
        path = _write_donations(tmp_path / "bad.csv", [["1", "X"]], headers=["donation_id", "donor_name"])
        result = CliRunner().invoke(
            cli.main,
            ["--mode", "donations", "--csv-path", str(path)],
            env=_env(TARGET_DB_DSN="postgresql://t"),
        )
        assert result.exit_code == 1
        assert "missing required headers" in result.output
        assert fake_target.opened == []


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------

class TestRuns:
    def test_donations_run(self, tmp_path, fake_target):
        path = _write_donations(
            tmp_path / "donations.csv",
            [
                ["1", "Jane Doe", "1", "2024-03-09", "25.00", "7"],
                ["2", "John Roe", "1", "2024-03-10", "-5.00", "7"],
            ],
        )
        result = CliRunner().invoke(
            cli.main,
            [
                "--mode", "donations",
                "--csv-path", str(path),
                "--rejects-dir", str(tmp_path / "rejects"),
                "--reports-dir", str(tmp_path / "reports"),
                "--run-id", "run-42",
            ],
            env=_env(TARGET_DB_DSN="postgresql://t"),
        )
        assert result.exit_code == 0, result.output
        assert fake_target.opened == ["postgresql://t"]
        assert [d.donation_id for d in fake_target.committed_donations] == [1]
        rejected = (tmp_path / "rejects" / "rejected_3.csv").read_text(encoding="utf-8")
        assert rejected == "2,John Roe,1,2024-03-10,-5.00,7\n"
        report = json.loads((tmp_path / "reports" / "run-42.json").read_text())
        assert report["counters"]["donations_inserted"] == 1
        assert report["counters"]["reject_reasons"] == {"NonPositiveAmount": 1}

    def test_address_refresh_run(self, tmp_path, fake_target, monkeypatch):
        rows = [
            {"StreetNumber": "100", "StreetName": "Main St", "StreetType": "ST",
             "PostalCode": "12 345", "City": None, "Province": None,
             "UnitNumber": None, "StreetDirection": None},
            {"StreetNumber": "7", "StreetName": "Bay Rd", "StreetType": None,
             "PostalCode": "M5V 2T6", "City": "Toronto", "Province": "ON",
             "UnitNumber": None, "StreetDirection": None},
        ]
        sources = []

        class ListSource:
            def __init__(self, dsn):
                sources.append(dsn)

            def fetch_all(self):
                return rows

        monkeypatch.setattr(cli, "PgSourceReader", ListSource)
        result = CliRunner().invoke(
            cli.main,
            ["--source-dsn", "postgresql://s", "--reports-dir", str(tmp_path), "--run-id", "r1"],
            env=_env(TARGET_DB_DSN="postgresql://t"),
        )
        assert result.exit_code == 0, result.output
        assert sources == ["postgresql://s"]
        assert "Updated: 1, Inserted: 1, Errors: 0" in result.output
        assert fake_target.committed_addresses[1].postal_code == "12 345"
        assert fake_target.committed_addresses[2].street_type == "UNKNOWN"
        report = json.loads((tmp_path / "r1.json").read_text())
        assert report["mode"] == "address_refresh"

    def test_env_file_supplies_settings(self, tmp_path, fake_target, monkeypatch):
        env_file = tmp_path / "run.env"
        env_file.write_text("TARGET_DB_DSN=postgresql://from-file\nSOURCE_DB_DSN=postgresql://s\n")

        class EmptySource:
            def __init__(self, dsn):
                pass

            def fetch_all(self):
                return []

        monkeypatch.setattr(cli, "PgSourceReader", EmptySource)
        result = CliRunner().invoke(
            cli.main,
            ["--env-file", str(env_file), "--reports-dir", str(tmp_path)],
            env=_env(),
        )
        assert result.exit_code == 0, result.output
        assert fake_target.opened == ["postgresql://from-file"]

    def test_fatal_store_error_writes_report_and_exits(self, tmp_path, monkeypatch):
        @contextmanager
        def _unreachable(dsn):
            raise StoreConnectionError("cannot connect to target store: refused")
            yield  # pragma: no cover

        monkeypatch.setattr(cli, "open_target_store", _unreachable)
        path = _write_donations(
            tmp_path / "d.csv", [["1", "Jane Doe", "1", "2024-03-09", "25.00", "7"]]
        )
        result = CliRunner().invoke(
            cli.main,
            ["--mode", "donations", "--csv-path", str(path),
             "--reports-dir", str(tmp_path / "reports"), "--run-id", "dead"],
            env=_env(TARGET_DB_DSN="postgresql://t"),
        )
        assert result.exit_code == 1
        assert "[dead] FATAL: StoreConnectionError" in result.output
        report = json.loads((tmp_path / "reports" / "dead.json").read_text())
        assert report["counters"]["warnings"]
