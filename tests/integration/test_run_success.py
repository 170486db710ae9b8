from __future__ import annotations

import re
from pathlib import Path

import pytest

from ledger_import.cli.__main__ import main as cli_main
from ledger_import.logging.init import reset_logging

"""End-to-end CLI runs in mock mode (DISABLE_DB_CONNECT=1).

The in-memory gateway starts without mapping rules or organizational units, so
every staged record is UNMAPPED and the currency falls back to the configured
default. Both are successful runs.
"""

SUMMARY_RE = re.compile(
    r"SUMMARY processor=(\S+) success=true state=post_processed rows=(\d+) processed=(\d+) skipped=0 failed=0"
)
SEGMENTS = ["Transient", "Group", "Corporate", "Transient", "Group"]


@pytest.fixture(autouse=True)
def _mock_mode(monkeypatch):
    reset_logging()
    monkeypatch.setenv("DISABLE_DB_CONNECT", "1")
    yield
    reset_logging()


def _run(processor: str, path: Path, *extra: str) -> list[str]:
    return [
        "import", "-p", processor, "--year", "2024", "--month", "7", "--ou", "H001",
        "--location-code", "H001", *extra, str(path),
    ]


def _room_rows() -> list[dict]:
    return [
        {"Segments": s, "Prop Code": "H001", "Month": "31/07/2024", "Room Nighs": i + 1, "Revenue": (i + 1) * 120.5, "Bed Nights": i}
        for i, s in enumerate(SEGMENTS)
    ]


def _line_rows(n: int) -> list[dict]:
    return [
        {
            "FILETYPE": "TB", "FILEVERSION": "1", "PROPCODE": "H001", "BUSDATE": "202407",
            "ACCTCODE": str(4000 + (i % 4) * 10), "ACCTDESC": "Revenue", "ENDINGBALANCE": "0", "ACTIVITY": str(i + 1),
        }
        for i in range(n)
    ]


def test_room_revenue_workbook_named_csv(temp_workdir: Path, write_config, xlsx_writer, capsys):
    path = xlsx_writer("room_rev.csv", {"Sheet1": _room_rows()})
    code = cli_main(_run("accpac_room_rev", path))
    out = capsys.readouterr().out
    assert code == 0, out
    m = SUMMARY_RE.search(out)
    assert m and m.group(1) == "accpac_room_rev"
    assert m.group(2) == "5"
    # 3 distinct segments x 3 measures
    assert m.group(3) == "9"
    assert "WARN Organizational unit currency not found, defaulting to USD" in out


def test_line_items_csv(temp_workdir: Path, write_config, csv_writer, capsys):
    path = csv_writer("tb.csv", _line_rows(12))
    code = cli_main(_run("accpac_line_items", path))
    out = capsys.readouterr().out
    assert code == 0, out
    m = SUMMARY_RE.search(out)
    assert m.group(1) == "accpac_line_items"
    assert m.group(3) == "4"
    assert not list((temp_workdir / "logs").glob("errors-*.log"))


def test_comps_csv(temp_workdir: Path, write_config, csv_writer, capsys):
    rows = [
        {
            "Guest Name": f"Guest {i}", "Company Name": "Acme", "Requested By": "FO", "Authorized By": "GM",
            "Date": "02/07/2024", "Rooms Rented": i % 2, "Bed Nights": 1, "Remarks": "",
        }
        for i in range(6)
    ]
    code = cli_main(_run("accpac_comps_import", csv_writer("comps.csv", rows)))
    out = capsys.readouterr().out
    assert code == 0, out
    assert SUMMARY_RE.search(out).group(3) == "1"
    assert "Loaded to Account: A961662, Department: D0010" in out


def test_batch_size_flag_controls_chunks(temp_workdir: Path, write_config, csv_writer, capsys):
    path = csv_writer("tb.csv", _line_rows(8))
    code = cli_main(_run("accpac_line_items", path, "--batch-size", "1"))
    out = capsys.readouterr().out
    assert code == 0
    assert "staging written rows=4 batches=4" in out


def test_batch_size_defaults_to_config(temp_workdir: Path, write_config, csv_writer, capsys):
    path = csv_writer("tb.csv", _line_rows(8))
    code = cli_main(_run("accpac_line_items", path))
    out = capsys.readouterr().out
    assert code == 0
    # staging.batch_size: 2 in the sample config
    assert "staging written rows=4 batches=2" in out
