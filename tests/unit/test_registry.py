from __future__ import annotations

import asyncio

import pytest

from ledger_import.config.loader import config_from_dict
from ledger_import.models.import_options import ImportOptions
from ledger_import.models.run_state import RunState
from ledger_import.processors.row_count import RowCountProcessor
from ledger_import.services.registry import ImportRegistry, UnknownProcessorError

PERIOD = ImportOptions(year=2024, month=7, ou="H001")


@pytest.fixture()
def registry(gateway):
    reg = ImportRegistry(gateway)
    reg.initialize()
    return reg


def test_initialize_registers_builtins_in_order(registry):
    assert [m.id for m in registry.all_metadata()] == [
        "test_import",
        "accpac_line_items",
        "accpac_room_rev",
        "accpac_comps_import",
    ]


def test_initialize_is_idempotent(registry):
    registry.initialize()
    assert len(registry) == 4


def test_disabled_processor_is_not_registered(gateway):
    reg = ImportRegistry(gateway, config_from_dict({"processors": {"test_import": {"enabled": False}}}))
    reg.initialize()
    assert "test_import" not in reg
    assert len(reg) == 3


def test_directory_queries(registry):
    assert [m.id for m in registry.by_category("ACCPAC")] == ["accpac_line_items", "accpac_room_rev", "accpac_comps_import"]
    assert [m.id for m in registry.required_processors()] == ["accpac_line_items", "accpac_room_rev"]
    assert [m.id for m in registry.search_by_tags("REVENUE")] == ["accpac_room_rev"]
    stats = registry.statistics()
    assert stats["total"] == 4
    assert stats["by_category"] == {"Testing": 1, "ACCPAC": 3}
    assert stats["required"] == 2
    assert stats["supported_formats"] == ["csv", "txt", "xlsm", "xlsx"]


def test_register_replaces_and_unregister(registry):
    replacement = RowCountProcessor()
    registry.register(replacement)
    assert registry.get_processor("test_import") is replacement
    assert registry.unregister("test_import") is True
    assert registry.unregister("test_import") is False
    with pytest.raises(UnknownProcessorError, match="Import processor not found: test_import"):
        registry.require("test_import")


def test_execute_unknown_processor(registry, csv_writer):
    p = csv_writer("a.csv", [{"a": 1}])
    resp = asyncio.run(registry.execute("nope", p))
    assert resp.success is False
    assert resp.error == "Import processor not found: nope"
    assert resp.result is None and resp.validation is None


def test_execute_unsupported_extension(registry, tmp_path):
    p = tmp_path / "tb.xlsx"
    p.write_bytes(b"PK\x03\x04")
    resp = asyncio.run(registry.execute("accpac_line_items", p, PERIOD))
    assert resp.success is False
    assert resp.error.startswith("Processor accpac_line_items does not support .xlsx files")


def test_execute_missing_file(registry, tmp_path):
    resp = asyncio.run(registry.execute("test_import", tmp_path / "missing.csv"))
    assert resp.success is False
    assert "File not found" in resp.error


def test_execute_validation_failure_never_touches_staging(registry, gateway, csv_writer):
    p = csv_writer("tb.csv", [{"ACCTCODE": "4000", "ACTIVITY": "1"}])
    resp = asyncio.run(registry.execute("accpac_line_items", p, PERIOD))
    assert resp.success is False
    assert resp.error.startswith("Validation failed: Missing required columns: FILETYPE")
    assert resp.result.state is RunState.VALIDATION_FAILED
    assert resp.validation.missing_required_columns[0] == "FILETYPE"
    assert gateway.delete_calls == 0 and gateway.insert_calls == 0


def test_execute_success(registry, gateway, csv_writer):
    p = csv_writer(
        "room_rev.csv",
        [{"Segments": "Transient", "Prop Code": "LOC1", "Month": "31/07/2024", "Room Nighs": 4, "Revenue": 400, "Bed Nights": 5}],
    )
    resp = asyncio.run(registry.execute("accpac_room_rev", p, PERIOD))
    assert resp.success, resp.error
    assert resp.error is None
    assert resp.validation.is_valid
    assert resp.result.state is RunState.POST_PROCESSED
    assert resp.result.processed_rows == 3
    assert resp.file_path == str(p)
    assert resp.duration_ms >= 0
    assert len(gateway.staging) == 3


def test_execute_unexpected_error_is_enveloped(registry, csv_writer, monkeypatch):
    proc = registry.get_processor("test_import")

    async def explode(*args, **kwargs):
        raise KeyError("boom")

    monkeypatch.setattr(proc, "process", explode)
    resp = asyncio.run(registry.execute("test_import", csv_writer("a.csv", [{"a": 1}])))
    assert resp.success is False
    assert resp.error.startswith("Unexpected error:")


def test_execute_runs_are_serialised(registry, csv_writer, monkeypatch):
    proc = registry.get_processor("test_import")
    real_process = proc.process
    active = []
    overlap = []

    async def slow_process(*args, **kwargs):
        active.append(1)
        if len(active) > 1:
            overlap.append(True)
        await asyncio.sleep(0.01)
        try:
            return await real_process(*args, **kwargs)
        finally:
            active.pop()

    monkeypatch.setattr(proc, "process", slow_process)
    p = csv_writer("a.csv", [{"a": 1}])

    async def both():
        return await asyncio.gather(registry.execute("test_import", p), registry.execute("test_import", p))

    responses = asyncio.run(both())
    assert all(r.success for r in responses)
    assert overlap == []


def test_validate_file(registry, csv_writer):
    p = csv_writer("comps.csv", [{"Guest Name": "x"}])
    resp = asyncio.run(registry.validate_file("accpac_comps_import", p, PERIOD))
    assert resp.success is False
    assert resp.validation is not None
    assert "Missing required columns" in resp.error


def test_preview(registry, csv_writer):
    p = csv_writer("a.csv", [{"a": i} for i in range(20)])
    resp = asyncio.run(registry.preview("test_import", p, rows=5))
    assert resp.success
    assert resp.result.row_count == 5
    assert resp.result.data[0] == {"a": "0"}
    assert resp.result.metadata["columns"] == ["a"]


def test_response_to_dict_is_serialisable(registry, csv_writer):
    import json

    resp = asyncio.run(registry.execute("test_import", csv_writer("a.csv", [{"a": 1}])))
    data = resp.to_dict()
    json.dumps(data, default=str)
    assert data["result"]["state"] == "post_processed"
    assert data["processor_id"] == "test_import"
