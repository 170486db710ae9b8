# Shared pytest fixtures
from __future__ import annotations

import io
from pathlib import Path

import pandas as pd
import pytest

from ledger_import.db.gateway import InMemoryGateway
from ledger_import.models.mapping_entry import MappingEntry


@pytest.fixture()
def temp_workdir(tmp_path: Path, monkeypatch) -> Path:
    (tmp_path / "config").mkdir()
    (tmp_path / "data").mkdir()
    (tmp_path / "logs").mkdir()
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture()
def sample_config_yaml() -> str:
    return """database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: appdb
staging:
  table: financial_data_staging
  batch_size: 2
defaults:
  scenario: ACT
  version: MAIN
  currency: USD
processors:
  accpac_room_rev:
    mapping_config_id: 11
  accpac_comps_import:
    target_account: A961662
    target_department: D0010
error_log_dir: ./logs
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


def write_csv(path: Path, rows: list[dict], columns: list[str] | None = None) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    pd.DataFrame(rows, columns=columns).to_csv(path, index=False)
    return path


def write_xlsx(path: Path, sheets: dict[str, list[dict]]) -> Path:
    """Workbook bytes at ``path`` whatever its extension."""
    path.parent.mkdir(parents=True, exist_ok=True)
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        for name, rows in sheets.items():
            pd.DataFrame(rows).to_excel(writer, sheet_name=name, index=False)
    path.write_bytes(buffer.getvalue())
    return path


@pytest.fixture()
def csv_writer(tmp_path: Path):
    def _write(name: str, rows: list[dict], columns: list[str] | None = None) -> Path:
        return write_csv(tmp_path / name, rows, columns)
    return _write


@pytest.fixture()
def xlsx_writer(tmp_path: Path):
    def _write(name: str, sheets: dict[str, list[dict]]) -> Path:
        return write_xlsx(tmp_path / name, sheets)
    return _write


@pytest.fixture()
def gateway() -> InMemoryGateway:
    """Seeded gateway: hotel H001 (EUR, location code LOC1) + a few rules."""
    gw = InMemoryGateway()
    gw.add_organizational_unit("H001", currency="EUR", location_code="LOC1")
    # line items (config 10)
    gw.add_rule(MappingEntry(10, "4000", None, "A01", "D01"))
    gw.add_rule(MappingEntry(10, "4010", None, "A02", None))
    gw.add_rule(MappingEntry(10, "4020", None, "A03", "D03", is_active=False))
    # room revenue (config 11)
    gw.add_rule(MappingEntry(11, "Rooms - Transient", None, "A100", "D10"))
    gw.add_rule(MappingEntry(11, "Revenue - Transient", None, "A200", "D10"))
    gw.add_rule(MappingEntry(11, "Bednights - Transient", None, "A300", "D10"))
    return gw
