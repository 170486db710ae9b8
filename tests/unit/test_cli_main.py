from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

import psycopg2
import pytest

from ledger_import.cli.__main__ import main as cli_main
from ledger_import.logging.init import reset_logging


@pytest.fixture(autouse=True)
def _mock_mode(monkeypatch):
    # Reset logging state so the handler binds to the captured stdout
    reset_logging()
    monkeypatch.setenv("DISABLE_DB_CONNECT", "1")
    yield
    reset_logging()


def test_cli_list(temp_workdir: Path, capsys):
    code = cli_main(["list"])
    out = capsys.readouterr().out
    assert code == 0
    assert 'INFO processor id=test_import order=-1 category=Testing formats=csv,txt,xlsx,xlsm required=false' in out
    assert "SUMMARY processors=4 required=2" in out


def test_cli_import_test_processor(temp_workdir: Path, csv_writer, capsys):
    p = csv_writer("a.csv", [{"a": 1}, {"a": 2}])
    code = cli_main(["import", "-p", "test_import", str(p)])
    out = capsys.readouterr().out
    assert code == 0
    assert "SUMMARY processor=test_import success=true state=post_processed rows=2 processed=2" in out


def test_cli_validate_missing_period(temp_workdir: Path, capsys):
    p = temp_workdir / "data" / "tb.csv"
    p.write_text(
        "FILETYPE,FILEVERSION,PROPCODE,BUSDATE,ACCTCODE,ACCTDESC,ENDINGBALANCE,ACTIVITY\nTB,1,LOC1,202407,4000,x,0,1\n",
        encoding="utf-8",
    )
    code = cli_main(["validate", "-p", "accpac_line_items", "--location-code", "LOC1", str(p)])
    out = capsys.readouterr().out
    assert code == 2
    assert "ERROR Import period (year and month) must be selected before validating" in out
    assert "state=validation_failed" in out


def test_cli_unknown_processor_is_fatal(temp_workdir: Path, csv_writer, capsys):
    p = csv_writer("a.csv", [{"a": 1}])
    code = cli_main(["import", "-p", "nope", str(p)])
    out = capsys.readouterr().out
    assert code == 1
    assert "ERROR Import processor not found: nope" in out
    assert "state=rejected" in out


def test_cli_row_failures_exit_2_and_write_error_log(temp_workdir: Path, csv_writer, capsys, monkeypatch):
    from ledger_import.processors.row_count import RowCountProcessor

    async def reject_second(self, row, index):
        return True if index != 1 else "row rejected"

    monkeypatch.setattr(RowCountProcessor, "validate_row", reject_second)
    p = csv_writer("a.csv", [{"a": 1}, {"a": 2}, {"a": 3}])
    code = cli_main(["import", "-p", "test_import", str(p)])
    out = capsys.readouterr().out
    assert code == 2
    assert "failed=1" in out
    logs = list((temp_workdir / "logs").glob("errors-*.log"))
    assert len(logs) == 1
    record = json.loads(logs[0].read_text(encoding="utf-8").splitlines()[0])
    assert record["row"] == 2
    assert record["processor"] == "test_import"
    assert record["file"] == "a.csv"
    assert record["message"] == "row rejected"


def test_cli_config_error_is_fatal(temp_workdir: Path, capsys):
    (temp_workdir / "config" / "import.yml").write_text("unknown_key: 1\n", encoding="utf-8")
    code = cli_main(["list"])
    out = capsys.readouterr().out
    assert code == 1
    assert "ERROR config:" in out


def test_cli_explicit_config_path(temp_workdir: Path, capsys):
    cfg = temp_workdir / "custom.yml"
    cfg.write_text("processors:\n  test_import:\n    enabled: false\n", encoding="utf-8")
    code = cli_main(["--config", str(cfg), "list"])
    out = capsys.readouterr().out
    assert code == 0
    assert "processor id=test_import" not in out
    assert "processor disabled by config id=test_import" in out
    assert "SUMMARY processors=3" in out


def test_cli_database_connection_failure(temp_workdir: Path, csv_writer, capsys, monkeypatch):
    monkeypatch.delenv("DISABLE_DB_CONNECT")
    p = csv_writer("a.csv", [{"a": 1}])
    with patch("ledger_import.cli.__main__.psycopg2.connect", side_effect=psycopg2.OperationalError("refused")):
        code = cli_main(["import", "-p", "test_import", str(p)])
    out = capsys.readouterr().out
    assert code == 1
    assert "ERROR database connection failed: refused" in out


def test_cli_preview_prints_rows(temp_workdir: Path, csv_writer, capsys):
    p = csv_writer("a.csv", [{"a": i, "b": "x"} for i in range(10)])
    code = cli_main(["preview", "-p", "test_import", "--rows", "2", str(p)])
    out = capsys.readouterr().out
    assert code == 0
    assert "columns=['a', 'b']" in out
    assert 'INFO {"a": "0", "b": "x"}' in out
    assert 'INFO {"a": "2", "b": "x"}' not in out


def test_cli_debug_flag(temp_workdir: Path, capsys):
    code = cli_main(["--debug", "list"])
    out = capsys.readouterr().out
    assert code == 0
    assert "DEBUG debug mode enabled" in out


def test_cli_env_file_is_loaded(temp_workdir: Path, capsys, monkeypatch):
    monkeypatch.delenv("DISABLE_DB_CONNECT")
    (temp_workdir / ".env").write_text("DISABLE_DB_CONNECT=1\n", encoding="utf-8")
    p = temp_workdir / "data" / "a.csv"
    p.write_text("a\n1\n", encoding="utf-8")
    try:
        code = cli_main(["import", "-p", "test_import", str(p)])
    finally:
        monkeypatch.delenv("DISABLE_DB_CONNECT", raising=False)
    assert code == 0
