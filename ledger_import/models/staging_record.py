from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import Any

from .mapping_entry import UNMAPPED, MappingStatus

"""StagingRecord: one aggregated, period-scoped line item awaiting compilation.

Created by the row aggregator, persisted by the staging writer, never updated in
place. A re-run evicts the previous rows and writes fresh ones.
"""

__all__ = [
    "StagingRecord",
    "STAGING_COLUMNS",
    "make_batch_id",
    "period_key",
]

# Persisted column order (financial_data_staging)
STAGING_COLUMNS: tuple[str, ...] = (
    "dep_acc_combo_id",
    "month",
    "year",
    "period_combo",
    "scenario",
    "amount",
    "count",
    "currency",
    "ou",
    "department",
    "account",
    "version",
    "source_account",
    "source_department",
    "source_description",
    "mapping_status",
    "import_batch_id",
)


def period_key(year: int, month: int) -> str:
    """'YYYY-MM' period string."""
    return f"{year}-{month:02d}"


def make_batch_id(processor_id: str, now: datetime | None = None) -> str:
    """Processor-prefixed, timestamp-suffixed batch identifier.

    >>> make_batch_id("accpac_room_rev", datetime(2024, 7, 1, 8, 30, 0, tzinfo=UTC))
    'accpac_room_rev_2024-07-01T08-30-00-000000Z'
    """
    ts = (now or datetime.now(UTC)).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
    return f"{processor_id}_{ts}"


@dataclass
class StagingRecord:
    """Pre-write candidate / persisted staging row.

    ``amount`` is the plain float sum of every measure aggregated under
    (combo_id, source_identifier); ``count`` is the number of contributing pairs.
    """
    combo_id: str  # "<dept>_<acct>" or UNMAPPED
    year: int
    month: int
    scenario: str
    amount: float
    currency: str
    organizational_unit: str
    target_department: str | None
    target_account: str | None
    version: str
    source_identifier: str
    source_description: str | None
    mapping_status: MappingStatus
    import_batch_id: str
    source_department: str | None = None
    count: int = 1

    @property
    def period(self) -> str:
        return period_key(self.year, self.month)

    @property
    def is_unmapped(self) -> bool:
        return self.combo_id == UNMAPPED

    def to_row(self) -> tuple[Any, ...]:
        """Values in STAGING_COLUMNS order for bulk insert."""
        return (
            self.combo_id,
            self.month,
            self.year,
            self.period,
            self.scenario,
            self.amount,
            self.count,
            self.currency,
            self.organizational_unit,
            self.target_department,
            self.target_account,
            self.version,
            self.source_identifier,
            self.source_department,
            self.source_description,
            self.mapping_status.value,
            self.import_batch_id,
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["mapping_status"] = self.mapping_status.value
        data["period"] = self.period
        return data
