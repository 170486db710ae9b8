from __future__ import annotations

from typing import Any

from ledger_import.mapping.resolver import MappingResolver
from ledger_import.models.import_options import ImportOptions
from ledger_import.models.mapping_entry import MappingEntry
from ledger_import.models.parsed_file import ParsedFile
from ledger_import.models.processor_metadata import ProcessorMetadata
from ledger_import.models.results import ImportResult
from ledger_import.services.aggregator import ExtractedMeasure, Extraction, FixedExtraction, to_number

from .staging import StagingImportProcessor

"""accpac_comps_import: complimentary rooms.

All "Rooms Rented" values are summed into one record at a fixed target
(D0010 / A961662 unless overridden in config). No mapping configuration is
read, and the record is emitted even when the total is zero.
"""

SOURCE_IDENTIFIER = "COMPS"
DESCRIPTION = "Complimentary Rooms"
DEFAULT_TARGET_ACCOUNT = "A961662"
DEFAULT_TARGET_DEPARTMENT = "D0010"


class CompsProcessor(StagingImportProcessor):
    metadata = ProcessorMetadata(
        id="accpac_comps_import",
        name="ACCPAC Comps Import",
        category="ACCPAC",
        supported_formats=("csv",),
        order=12,
        description=(
            'Imports ACCPAC complimentary rooms data. Sums all "Rooms Rented" and loads to a fixed '
            "account and department. No mapping required."
        ),
        required_columns=(
            "Guest Name",
            "Company Name",
            "Requested By",
            "Authorized By",
            "Date",
            "Rooms Rented",
            "Bed Nights",
            "Remarks",
        ),
        validation_rules=(
            "CSV file must contain all required columns: Guest Name, Company Name, Requested By, "
            "Authorized By, Date, Rooms Rented, Bed Nights, Remarks",
            'All "Rooms Rented" values will be summed and loaded to account A961662 and department D0010',
            "Zero comp rooms is acceptable - will import 0 as the amount",
        ),
        tags=("accpac", "comps", "complimentary", "rooms"),
    )
    sentinel = ExtractedMeasure(source_identifier=SOURCE_IDENTIFIER, amount=0.0, description=DESCRIPTION)

    @property
    def target_account(self) -> str:
        return self.settings.target_account or DEFAULT_TARGET_ACCOUNT

    @property
    def target_department(self) -> str:
        return self.settings.target_department or DEFAULT_TARGET_DEPARTMENT

    def extraction(self) -> Extraction:
        return FixedExtraction(source_identifier=SOURCE_IDENTIFIER, column="Rooms Rented", description=DESCRIPTION)

    async def load_resolver(self) -> MappingResolver:
        rule = MappingEntry(
            config_id=0,
            source_account=SOURCE_IDENTIFIER,
            source_department=None,
            target_account=self.target_account,
            target_department=self.target_department,
        )
        return MappingResolver.from_entries([rule])

    @staticmethod
    def total_rooms(rows: list[dict[str, Any]]) -> float:
        return sum(to_number(r.get("Rooms Rented")) for r in rows)

    async def check_structure(self, parsed: ParsedFile, options: ImportOptions) -> tuple[list[str], list[str]]:
        errors = self.period_errors(options)
        total = self.total_rooms(parsed.rows)
        with_data = sum(1 for r in parsed.rows if to_number(r.get("Rooms Rented")) != 0)
        warnings = [f"Total Rooms Rented: {total:g} (from {with_data} non-zero rows)"]
        return errors, warnings

    async def process_rows(self, parsed: ParsedFile, rows: list[dict[str, Any]], options: ImportOptions) -> ImportResult:
        result = await super().process_rows(parsed, rows, options)
        warnings = list(result.warnings)
        if self.total_rooms(rows) == 0:
            warnings.append("Imported 0 comp rooms - this is acceptable")
        warnings.append(f"Loaded to Account: {self.target_account}, Department: {self.target_department}")
        return result.with_changes(warnings=warnings)
