from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from ledger_import.mapping.resolver import MappingResolver
from ledger_import.models.staging_record import StagingRecord

"""Row aggregation: source rows -> pre-write StagingRecord candidates.

For every extracted (source_identifier, measure) pair with a non-zero measure
the identifier is resolved and the measure summed under
``<combo_id or UNMAPPED>_<source_identifier>``. Amounts are plain float sums;
rounding is left to downstream compilation.
"""

__all__ = [
    "ExtractedMeasure",
    "Extraction",
    "ColumnExtraction",
    "FixedExtraction",
    "AggregationContext",
    "AggregationResult",
    "aggregate",
    "to_number",
]

logger = logging.getLogger(__name__)


def to_number(value: Any) -> float:
    """Lenient numeric coercion: blanks and non-numeric text count as 0.

    Thousands separators are stripped ("1,234.5" -> 1234.5).
    """
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return 0.0 if math.isnan(value) else float(value)
    if isinstance(value, str):
        text = value.strip().replace(",", "")
        if not text:
            return 0.0
        try:
            number = float(text)
        except ValueError:
            return 0.0
        return 0.0 if math.isnan(number) or math.isinf(number) else number
    return 0.0


@dataclass(frozen=True)
class ExtractedMeasure:
    source_identifier: str
    amount: float
    description: str | None = None
    source_department: str | None = None


class Extraction(Protocol):
    def extract(self, row: Mapping[str, Any]) -> list[ExtractedMeasure] | None:
        """Pairs for one row; None when the row lacks its grouping field."""
        ...


@dataclass(frozen=True)
class ColumnExtraction:
    """Key column + one or more measure columns.

    ``measures`` is a sequence of (prefix, column). The source identifier of each
    pair is ``prefix + key``, so one physical row can feed several logical
    measures ("Rooms - X", "Revenue - X").
    """
    key_column: str
    measures: Sequence[tuple[str, str]]
    description_column: str | None = None

    def extract(self, row: Mapping[str, Any]) -> list[ExtractedMeasure] | None:
        key = str(row.get(self.key_column, "") or "").strip()
        if not key:
            return None
        description = None
        if self.description_column:
            description = str(row.get(self.description_column, "") or "").strip() or None
        pairs = []
        for prefix, column in self.measures:
            source_id = f"{prefix}{key}"
            pairs.append(
                ExtractedMeasure(
                    source_identifier=source_id,
                    amount=to_number(row.get(column)),
                    description=description or source_id,
                )
            )
        return pairs


@dataclass(frozen=True)
class FixedExtraction:
    """Every row contributes one measure to the same fixed identifier."""
    source_identifier: str
    column: str
    description: str | None = None

    def extract(self, row: Mapping[str, Any]) -> list[ExtractedMeasure] | None:
        return [
            ExtractedMeasure(
                source_identifier=self.source_identifier,
                amount=to_number(row.get(self.column)),
                description=self.description,
            )
        ]


@dataclass(frozen=True)
class AggregationContext:
    """Run-wide values stamped onto every candidate."""
    year: int
    month: int
    scenario: str
    currency: str
    organizational_unit: str
    version: str
    batch_id: str


@dataclass
class AggregationResult:
    records: list[StagingRecord] = field(default_factory=list)
    skipped_rows: int = 0  # rows without a grouping field
    dropped_zero: int = 0  # zero-valued pairs
    pair_count: int = 0  # non-zero pairs aggregated

    def source_identifiers(self) -> set[str]:
        return {r.source_identifier for r in self.records}


def _new_record(
    measure: ExtractedMeasure, resolver: MappingResolver, context: AggregationContext
) -> StagingRecord:
    resolution = resolver.resolve(measure.source_identifier)
    return StagingRecord(
        combo_id=resolution.persisted_combo_id,
        year=context.year,
        month=context.month,
        scenario=context.scenario,
        amount=measure.amount,
        currency=context.currency,
        organizational_unit=context.organizational_unit,
        target_department=resolution.target_department,
        target_account=resolution.target_account,
        version=context.version,
        source_identifier=measure.source_identifier,
        source_description=measure.description,
        mapping_status=resolution.status,
        import_batch_id=context.batch_id,
        source_department=measure.source_department,
        count=1,
    )


def aggregate(
    rows: Iterable[Mapping[str, Any]],
    resolver: MappingResolver,
    extraction: Extraction,
    context: AggregationContext,
    sentinel: ExtractedMeasure | None = None,
) -> AggregationResult:
    """Fold rows into one candidate per (combo, source identifier).

    Parameters
    ----------
    rows: parsed (and optionally transformed) rows
    resolver: loaded mapping rules
    extraction: per-processor pair extraction
    context: period / scenario / currency / OU stamped on every candidate
    sentinel: when given and nothing survived aggregation, exactly one
        zero-amount candidate is emitted for it instead of an empty result
    """
    result = AggregationResult()
    accumulated: dict[str, StagingRecord] = {}

    for index, row in enumerate(rows):
        pairs = extraction.extract(row)
        if pairs is None:
            result.skipped_rows += 1
            logger.warning("row skipped: missing grouping field row=%d", index + 1)
            continue
        for measure in pairs:
            if measure.amount == 0:
                result.dropped_zero += 1
                continue
            result.pair_count += 1
            record = _new_record(measure, resolver, context)
            key = f"{record.combo_id}_{measure.source_identifier}"
            existing = accumulated.get(key)
            if existing is None:
                accumulated[key] = record
            else:
                existing.amount += measure.amount
                existing.count += 1

    if not accumulated and sentinel is not None:
        record = _new_record(sentinel, resolver, context)
        record.amount = 0.0
        accumulated[f"{record.combo_id}_{sentinel.source_identifier}"] = record

    result.records = list(accumulated.values())
    logger.debug(
        "aggregated pairs=%d records=%d skipped_rows=%d dropped_zero=%d",
        result.pair_count,
        len(result.records),
        result.skipped_rows,
        result.dropped_zero,
    )
    return result
