from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Callable, Collection, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from ledger_import.config.loader import StagingConfig
from ledger_import.models.mapping_entry import MappingEntry
from ledger_import.models.staging_record import STAGING_COLUMNS, StagingRecord

from .batch_insert import BatchMetrics, batch_insert, quote_table

"""Persistence gateway: the engine's only route to the staging database.

``PostgresGateway`` wraps a psycopg2 connection; every blocking call runs via
``asyncio.to_thread`` so the event loop never blocks. ``InMemoryGateway`` backs
mock mode (DISABLE_DB_CONNECT=1) and the tests.
"""

__all__ = [
    "PersistenceGateway",
    "PostgresGateway",
    "InMemoryGateway",
    "OrganizationalUnit",
]

logger = logging.getLogger(__name__)

MetricsCallback = Callable[[BatchMetrics], None]


class PersistenceGateway(Protocol):
    async def delete_staging_where_source_in(self, source_ids: Collection[str]) -> int: ...

    async def insert_staging_batch(
        self, records: Sequence[StagingRecord], metrics_callback: MetricsCallback | None = None
    ) -> int: ...

    async def get_mapping_rules(self, config_id: int) -> list[MappingEntry]: ...

    async def get_organizational_unit_currency(self, ou: str) -> str | None: ...

    async def get_organizational_unit_location_code(self, ou: str) -> str | None: ...


class PostgresGateway:
    """psycopg2-backed gateway.

    Eviction and every inserted chunk are committed on their own, so an
    eviction is durable before the first write of the same run starts.
    """

    def __init__(self, connection: Any, staging: StagingConfig | None = None) -> None:
        self.connection = connection
        self.staging = staging or StagingConfig()

    def _run(self, fn: Callable[[Any], Any]) -> Any:
        try:
            with self.connection.cursor() as cur:
                value = fn(cur)
            self.connection.commit()
            return value
        except Exception:
            self.connection.rollback()
            raise

    def _delete(self, source_ids: list[str]) -> int:
        sql = f"DELETE FROM {quote_table(self.staging.table)} WHERE source_account = ANY(%s)"

        def op(cur: Any) -> int:
            cur.execute(sql, (source_ids,))
            return cur.rowcount

        return self._run(op)

    def _insert(self, rows: list[tuple[Any, ...]], metrics_callback: MetricsCallback | None) -> int:
        def op(cur: Any) -> int:
            result = batch_insert(
                cur,
                self.staging.table,
                STAGING_COLUMNS,
                rows,
                page_size=max(len(rows), 1),
                metrics_callback=metrics_callback,
            )
            return result.inserted_rows

        return self._run(op)

    def _select(self, sql: str, params: tuple[Any, ...]) -> list[dict[str, Any]]:
        def op(cur: Any) -> list[dict[str, Any]]:
            cur.execute(sql, params)
            names = [d[0] for d in cur.description]
            return [dict(zip(names, r)) for r in cur.fetchall()]

        return self._run(op)

    async def delete_staging_where_source_in(self, source_ids: Collection[str]) -> int:
        ids = sorted(source_ids)
        if not ids:
            return 0
        deleted = await asyncio.to_thread(self._delete, ids)
        logger.debug("staging delete table=%s ids=%d deleted=%d", self.staging.table, len(ids), deleted)
        return deleted

    async def insert_staging_batch(
        self, records: Sequence[StagingRecord], metrics_callback: MetricsCallback | None = None
    ) -> int:
        rows = [r.to_row() for r in records]
        if not rows:
            return 0
        return await asyncio.to_thread(self._insert, rows, metrics_callback)

    async def get_mapping_rules(self, config_id: int) -> list[MappingEntry]:
        sql = (
            "SELECT id, mapping_config_id, source_account, source_department, "
            "target_account, target_department, is_active, priority "
            f"FROM {quote_table(self.staging.mapping_table)} "
            "WHERE mapping_config_id = %s ORDER BY priority, id"
        )
        rows = await asyncio.to_thread(self._select, sql, (config_id,))
        return [MappingEntry.from_row(r) for r in rows]

    async def _ou_value(self, column: str, ou: str) -> str | None:
        sql = f'SELECT "{column}" FROM {quote_table(self.staging.ou_table)} WHERE ou = %s LIMIT 1'
        rows = await asyncio.to_thread(self._select, sql, (ou,))
        if not rows:
            return None
        value = rows[0].get(column)
        if value is None:
            return None
        return str(value).strip() or None

    async def get_organizational_unit_currency(self, ou: str) -> str | None:
        return await self._ou_value("currency", ou)

    async def get_organizational_unit_location_code(self, ou: str) -> str | None:
        return await self._ou_value("location_code", ou)


@dataclass
class OrganizationalUnit:
    ou: str
    currency: str | None = None
    location_code: str | None = None


@dataclass
class InMemoryGateway:
    """Dict/list-backed gateway with the same observable behaviour."""
    mapping_rules: dict[int, list[MappingEntry]] = field(default_factory=dict)
    organizational_units: dict[str, OrganizationalUnit] = field(default_factory=dict)
    staging: list[StagingRecord] = field(default_factory=list)
    insert_calls: int = 0
    delete_calls: int = 0

    def add_rule(self, entry: MappingEntry) -> None:
        self.mapping_rules.setdefault(entry.config_id, []).append(entry)

    def add_organizational_unit(self, ou: str, currency: str | None = None, location_code: str | None = None) -> None:
        self.organizational_units[ou] = OrganizationalUnit(ou, currency, location_code)

    async def delete_staging_where_source_in(self, source_ids: Collection[str]) -> int:
        self.delete_calls += 1
        ids = set(source_ids)
        before = len(self.staging)
        self.staging = [r for r in self.staging if r.source_identifier not in ids]
        return before - len(self.staging)

    async def insert_staging_batch(
        self, records: Sequence[StagingRecord], metrics_callback: MetricsCallback | None = None
    ) -> int:
        self.insert_calls += 1
        self.staging.extend(records)
        if metrics_callback is not None and records:
            metrics_callback(BatchMetrics(batch_size=len(records), elapsed_seconds=0.0, start_time=0.0, end_time=0.0))
        return len(records)

    async def get_mapping_rules(self, config_id: int) -> list[MappingEntry]:
        return list(self.mapping_rules.get(config_id, []))

    async def get_organizational_unit_currency(self, ou: str) -> str | None:
        unit = self.organizational_units.get(ou)
        return unit.currency if unit else None

    async def get_organizational_unit_location_code(self, ou: str) -> str | None:
        unit = self.organizational_units.get(ou)
        return unit.location_code if unit else None

    def totals_by_combo(self) -> dict[str, float]:
        totals: dict[str, float] = defaultdict(float)
        for record in self.staging:
            totals[record.combo_id] += record.amount
        return dict(totals)
