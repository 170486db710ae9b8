from __future__ import annotations

import logging
from abc import abstractmethod
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, ClassVar

from ledger_import.config.loader import ImportConfig
from ledger_import.db.gateway import PersistenceGateway
from ledger_import.mapping.resolver import MappingResolver
from ledger_import.models.import_options import ImportOptions
from ledger_import.models.mapping_entry import MappingStatus
from ledger_import.models.parsed_file import ParsedFile
from ledger_import.models.results import ImportResult, RunStats
from ledger_import.models.staging_record import make_batch_id, period_key
from ledger_import.services.aggregator import (
    AggregationContext,
    ExtractedMeasure,
    Extraction,
    aggregate,
)
from ledger_import.services.staging_writer import StagingWriter

from .base import BaseImportProcessor, StructuralValidationError

"""Shared flow for processors that stage aggregated ledger lines.

pre_import loads the mapping rules fresh and evicts this processor's earlier
rows; process_rows aggregates, writes in chunks and reports mapping stats.
"""

__all__ = [
    "StagingImportProcessor",
]

logger = logging.getLogger(__name__)


class StagingImportProcessor(BaseImportProcessor):
    mapping_config_id: ClassVar[int | None] = None
    sentinel: ClassVar[ExtractedMeasure | None] = None

    def __init__(self, gateway: PersistenceGateway | None = None, config: ImportConfig | None = None) -> None:
        super().__init__(gateway, config)
        self._resolver: MappingResolver | None = None
        self._evicted = 0

    def _begin_run(self) -> None:
        super()._begin_run()
        self._resolver = None
        self._evicted = 0

    def _require_gateway(self) -> PersistenceGateway:
        if self.gateway is None:
            raise StructuralValidationError([f"processor {self.id} has no persistence gateway"])
        return self.gateway

    @property
    def config_id(self) -> int | None:
        return self.settings.mapping_config_id or self.mapping_config_id

    @abstractmethod
    def extraction(self) -> Extraction:
        """Per-row (source identifier, measure) pairs for this import kind."""

    async def load_resolver(self) -> MappingResolver:
        return await MappingResolver.load(self._require_gateway(), self.config_id)

    async def resolver(self) -> MappingResolver:
        if self._resolver is None:
            self._resolver = await self.load_resolver()
        return self._resolver

    def eviction_ids(self, resolver: MappingResolver, parsed: ParsedFile) -> set[str]:
        """Active rule identifiers plus identifiers present in this file.

        The file's own identifiers keep re-runs idempotent for rows that are
        still unmapped.
        """
        ids = set(resolver.source_identifiers)
        extraction = self.extraction()
        for row in parsed.rows:
            for measure in extraction.extract(row) or ():
                ids.add(measure.source_identifier)
        return ids

    # ----------------------------------------------------------- structure

    def period_errors(self, options: ImportOptions) -> list[str]:
        errors = []
        if not options.has_period:
            errors.append("Import period (year and month) must be selected before validating")
        elif not 1 <= int(options.month or 0) <= 12:
            errors.append(f"Invalid month: {options.month}")
        if not options.ou:
            errors.append("Organizational unit (ou) must be selected before validating")
        return errors

    async def check_structure(self, parsed: ParsedFile, options: ImportOptions) -> tuple[list[str], list[str]]:
        return self.period_errors(options), []

    async def expected_location_code(self, options: ImportOptions) -> str | None:
        if options.location_code:
            return options.location_code
        if not options.ou or self.gateway is None:
            return None
        try:
            return await self.gateway.get_organizational_unit_location_code(options.ou)
        except Exception as e:
            logger.warning("location code lookup failed ou=%s error=%s", options.ou, e)
            return None

    async def check_location_code(self, parsed: ParsedFile, column: str, options: ImportOptions) -> list[str]:
        """First data row's ``column`` must equal the OU's location code."""
        if not parsed.rows:
            return ["File contains no data rows"]
        expected = await self.expected_location_code(options)
        found = str(parsed.rows[0].get(column, "")).strip()
        if not expected:
            return ["Unable to retrieve location code for the selected organizational unit"]
        if found != expected:
            return [f'{column} mismatch: Expected "{expected}" but found "{found}" in first data row']
        return []

    # ------------------------------------------------------------- hooks

    async def pre_import(self, path: Path, parsed: ParsedFile, options: ImportOptions) -> None:
        await super().pre_import(path, parsed, options)
        # staging must stay untouched when the run cannot be written
        missing = self.period_errors(options)
        if missing:
            raise StructuralValidationError(missing)
        resolver = await self.resolver()
        ids = self.eviction_ids(resolver, parsed)
        self._evicted = await StagingWriter(self._require_gateway()).evict_matching(ids, options.cancel_token)

    async def currency_for(self, ou: str, warnings: list[str]) -> str:
        default = self.config.defaults.currency
        try:
            currency = await self._require_gateway().get_organizational_unit_currency(ou)
        except StructuralValidationError:
            raise
        except Exception as e:
            logger.warning("currency lookup failed ou=%s error=%s", ou, e)
            currency = None
        if not currency:
            warnings.append(f"Organizational unit currency not found, defaulting to {default}")
            return default
        return currency

    async def process_rows(self, parsed: ParsedFile, rows: list[dict[str, Any]], options: ImportOptions) -> ImportResult:
        missing = self.period_errors(options)
        if missing:
            raise StructuralValidationError(missing)
        year, month, ou = int(options.year), int(options.month), str(options.ou)

        gateway = self._require_gateway()
        warnings: list[str] = []
        resolver = await self.resolver()
        currency = await self.currency_for(ou, warnings)
        defaults = self.config.defaults
        batch_id = make_batch_id(self.id)
        context = AggregationContext(
            year=year,
            month=month,
            scenario=options.scenario or defaults.scenario,
            currency=currency,
            organizational_unit=ou,
            version=defaults.version,
            batch_id=batch_id,
        )

        aggregation = aggregate(rows, resolver, self.extraction(), context, sentinel=self.sentinel)
        if aggregation.skipped_rows:
            warnings.append(f"{aggregation.skipped_rows} rows skipped: missing grouping field")

        writer = StagingWriter(gateway)
        written = await writer.write_batch(aggregation.records, options.batch_size, options.cancel_token)

        by_status = {s: 0 for s in MappingStatus}
        for record in aggregation.records:
            by_status[record.mapping_status] += 1
        unmapped_ids = sorted(
            r.source_identifier for r in aggregation.records if r.mapping_status is not MappingStatus.MAPPED
        )
        total = len(aggregation.records)
        unmapped = by_status[MappingStatus.UNMAPPED]
        if unmapped:
            warnings.append(f"{unmapped} staged records have no mapping rule")

        summary = writer.last_summary
        stats = None
        if summary is not None:
            now = datetime.now(UTC)
            stats = RunStats(
                start_time=now,
                end_time=now,
                duration_ms=0.0,
                total_batches=summary.total_batches,
                avg_batch_seconds=summary.avg_batch_seconds,
                p95_batch_seconds=summary.p95_batch_seconds,
            )

        logger.info(
            "staged processor=%s batch_id=%s records=%d mapped=%d partial=%d unmapped=%d",
            self.id,
            batch_id,
            total,
            by_status[MappingStatus.MAPPED],
            by_status[MappingStatus.PARTIAL],
            unmapped,
        )
        return ImportResult(
            success=True,
            row_count=parsed.row_count,
            processed_rows=written,
            skipped_rows=aggregation.skipped_rows,
            warnings=warnings,
            metadata={
                "import_type": self.id,
                "batch_id": batch_id,
                "mapping_config_id": self.config_id,
                "mapping_stats": {
                    "total": total,
                    "mapped": by_status[MappingStatus.MAPPED],
                    "partial": by_status[MappingStatus.PARTIAL],
                    "unmapped": unmapped,
                    "unmapped_percentage": f"{(unmapped / total * 100) if total else 0:.2f}%",
                },
                "unmapped_source_identifiers": unmapped_ids,
                "period": period_key(year, month),
                "currency": currency,
                "evicted": self._evicted,
            },
            stats=stats,
        )
