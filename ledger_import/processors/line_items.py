from __future__ import annotations

import re
from typing import Any

from ledger_import.models.import_options import ImportOptions
from ledger_import.models.parsed_file import ParsedFile
from ledger_import.models.processor_metadata import ProcessorMetadata
from ledger_import.services.aggregator import ColumnExtraction, Extraction

from .staging import StagingImportProcessor

"""accpac_line_items: trial-balance line items keyed by account code.

Source identifier = ACCTCODE, measure = ACTIVITY (the period movement, not the
ending balance), description = ACCTDESC.
"""

_BUSDATE_RE = re.compile(r"^\d{6}$")


def busdate_text(value: Any) -> str:
    """Spreadsheets hand BUSDATE back as a number (202307 / 202307.0)."""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


class LineItemsProcessor(StagingImportProcessor):
    metadata = ProcessorMetadata(
        id="accpac_line_items",
        name="ACCPAC Line Items",
        category="ACCPAC",
        supported_formats=("csv",),
        order=10,
        description="Import ACCPAC line item activity with mapping configuration 10.",
        required=True,
        required_columns=(
            "FILETYPE",
            "FILEVERSION",
            "PROPCODE",
            "BUSDATE",
            "ACCTCODE",
            "ACCTDESC",
            "ENDINGBALANCE",
            "ACTIVITY",
        ),
        validation_rules=(
            "CSV file must contain all required columns: FILETYPE, FILEVERSION, PROPCODE, BUSDATE, "
            "ACCTCODE, ACCTDESC, ENDINGBALANCE, ACTIVITY",
            "PROPCODE in first data row must match the organizational unit location code",
            "BUSDATE must match the selected import period (format: YYYYMM)",
        ),
        tags=("accpac", "line-items", "financial"),
    )
    mapping_config_id = 10

    def extraction(self) -> Extraction:
        return ColumnExtraction(key_column="ACCTCODE", measures=(("", "ACTIVITY"),), description_column="ACCTDESC")

    async def check_structure(self, parsed: ParsedFile, options: ImportOptions) -> tuple[list[str], list[str]]:
        errors = self.period_errors(options)
        errors += await self.check_location_code(parsed, "PROPCODE", options)
        warnings: list[str] = []

        if parsed.rows and options.has_period:
            busdate = busdate_text(parsed.rows[0].get("BUSDATE", ""))
            expected = f"{options.year}{int(options.month):02d}"
            if not _BUSDATE_RE.match(busdate):
                errors.append(f'BUSDATE format is invalid: "{busdate}". Expected format: YYYYMM (e.g., 202307)')
            elif busdate != expected:
                errors.append(f'BUSDATE mismatch: Expected "{expected}" but found "{busdate}"')

        if not errors:
            first = parsed.rows[0]
            warnings += [
                f"PROPCODE validated: {first.get('PROPCODE')}",
                f"BUSDATE validated: {busdate_text(first.get('BUSDATE'))}",
            ]
        return errors, warnings
