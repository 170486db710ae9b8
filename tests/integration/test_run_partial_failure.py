from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from ledger_import.cli.__main__ import main as cli_main
from ledger_import.db.gateway import InMemoryGateway
from ledger_import.logging.init import reset_logging
from ledger_import.models.import_options import ImportOptions
from ledger_import.models.run_state import RunState
from ledger_import.services.registry import ImportRegistry

"""Failures in the middle of a staging write.

A chunk failure is fatal for the run: earlier chunks stay written (no rollback
at this layer), the result is negative with error_type PERSISTENCE_ERROR, and
the CLI exits 2 with the failure recorded in the error log.
"""

OPTIONS = ImportOptions(year=2024, month=7, ou="H001", batch_size=2)
HEADER = "FILETYPE,FILEVERSION,PROPCODE,BUSDATE,ACCTCODE,ACCTDESC,ENDINGBALANCE,ACTIVITY\n"


class FlakyGateway(InMemoryGateway):
    def __init__(self, fail_on_insert: int) -> None:
        super().__init__()
        self.fail_on_insert = fail_on_insert
        self.add_organizational_unit("H001", currency="EUR", location_code="LOC1")

    async def insert_staging_batch(self, records, metrics_callback=None):
        if self.insert_calls + 1 == self.fail_on_insert:
            self.insert_calls += 1
            raise RuntimeError("could not extend file: No space left on device")
        return await super().insert_staging_batch(records, metrics_callback)


def _tb(tmp_path: Path, n: int) -> Path:
    p = tmp_path / "tb.csv"
    lines = [f"TB,1,LOC1,202407,{4000 + i},Acct {i},0,{i + 1}\n" for i in range(n)]
    p.write_text(HEADER + "".join(lines), encoding="utf-8")
    return p


def test_chunk_failure_is_fatal_and_keeps_earlier_chunks(tmp_path: Path):
    gw = FlakyGateway(fail_on_insert=2)
    registry = ImportRegistry(gw)
    registry.initialize()
    resp = asyncio.run(registry.execute("accpac_line_items", _tb(tmp_path, 5), OPTIONS))
    assert resp.success is False
    assert resp.result.state is RunState.PROCESSING_FAILED
    assert resp.result.metadata["error_type"] == "PERSISTENCE_ERROR"
    assert "chunk 2" in resp.error
    assert "No space left on device" in resp.error
    assert len(gw.staging) == 2


def test_eviction_failure_stops_before_any_write(tmp_path: Path):
    class NoDelete(FlakyGateway):
        async def delete_staging_where_source_in(self, source_ids):
            raise RuntimeError("lock timeout")

    gw = NoDelete(fail_on_insert=0)
    registry = ImportRegistry(gw)
    registry.initialize()
    resp = asyncio.run(registry.execute("accpac_line_items", _tb(tmp_path, 3), OPTIONS))
    assert resp.success is False
    assert resp.error == "staging eviction failed: lock timeout"
    assert gw.insert_calls == 0


@pytest.fixture()
def cli_env(monkeypatch):
    reset_logging()
    monkeypatch.setenv("DISABLE_DB_CONNECT", "1")
    yield
    reset_logging()


def test_cli_exit_2_and_error_log(temp_workdir: Path, cli_env, monkeypatch, capsys):
    import ledger_import.cli.__main__ as cli

    monkeypatch.setattr(cli, "InMemoryGateway", lambda: FlakyGateway(fail_on_insert=1))
    path = _tb(temp_workdir / "data", 3)
    code = cli_main(
        ["import", "-p", "accpac_line_items", "--year", "2024", "--month", "7", "--ou", "H001", str(path)]
    )
    out = capsys.readouterr().out
    assert code == 2
    assert "SUMMARY processor=accpac_line_items success=false state=processing_failed" in out
    logs = list((temp_workdir / "logs").glob("errors-*.log"))
    assert len(logs) == 1
    record = json.loads(logs[0].read_text(encoding="utf-8").strip().splitlines()[-1])
    assert record["row"] == -1
    assert record["error_type"] == "PERSISTENCE_ERROR"
    assert record["file"] == "tb.csv"
