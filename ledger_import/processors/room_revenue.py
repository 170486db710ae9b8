from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from typing import Any

from ledger_import.models.import_options import ImportOptions
from ledger_import.models.parsed_file import ParsedFile
from ledger_import.models.processor_metadata import ProcessorMetadata
from ledger_import.services.aggregator import ColumnExtraction, Extraction

from .staging import StagingImportProcessor

"""accpac_room_rev: room revenue by market segment.

Each row X yields three composite identifiers looked up against config 11:
"Rooms - X" (Room Nighs), "Bednights - X" (Bed Nights), "Revenue - X"
(Revenue). The export is frequently an xlsx workbook saved as .csv, so the
format is sniffed from the bytes.
"""

MEASURES: tuple[tuple[str, str], ...] = (
    ("Rooms - ", "Room Nighs"),
    ("Bednights - ", "Bed Nights"),
    ("Revenue - ", "Revenue"),
)

_DMY_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
# Excel serial day 0 (1900 date system, leap-year bug included)
_EXCEL_EPOCH = datetime(1899, 12, 30)


def month_of(value: Any) -> tuple[int, int]:
    """(year, month) from a Month cell.

    Accepts a date/datetime, a DD/MM/YYYY string or a spreadsheet serial number.

    Raises:
        ValueError: the value is none of those
    """
    if isinstance(value, (datetime, date)):
        return value.year, value.month
    if isinstance(value, bool):
        raise ValueError(f"Month field has unexpected type: bool. Value: {value}")
    if isinstance(value, (int, float)):
        converted = _EXCEL_EPOCH + timedelta(days=float(value))
        return converted.year, converted.month
    if isinstance(value, str):
        text = value.strip()
        m = _DMY_RE.match(text)
        if m:
            return int(m.group(3)), int(m.group(2))
        if text.replace(".", "", 1).isdigit():
            return month_of(float(text))
        raise ValueError(
            f'Month field format is invalid: "{text}". Expected format: DD/MM/YYYY (e.g., 31/07/2023) or a spreadsheet date'
        )
    raise ValueError(f"Month field has unexpected type: {type(value).__name__}. Value: {value}")


class RoomRevenueProcessor(StagingImportProcessor):
    metadata = ProcessorMetadata(
        id="accpac_room_rev",
        name="ACCPAC Room Revenue",
        category="ACCPAC",
        supported_formats=("csv", "xlsx"),
        order=11,
        description=(
            "Import ACCPAC room revenue data with mapping configuration 11. Room nights, "
            "bed nights and revenue are staged per market segment."
        ),
        required=True,
        required_columns=("Segments", "Prop Code", "Month", "Room Nighs", "Revenue", "Bed Nights"),
        validation_rules=(
            "File must contain all required columns: Segments, Prop Code, Month, Room Nighs, Revenue, Bed Nights",
            "Prop Code in first data row must match the organizational unit location code",
            "Month must match the selected import period (format: DD/MM/YYYY, only year and month validated)",
        ),
        tags=("accpac", "room", "revenue", "financial"),
    )
    mapping_config_id = 11
    format_hint = "auto"

    def extraction(self) -> Extraction:
        return ColumnExtraction(key_column="Segments", measures=MEASURES)

    async def check_structure(self, parsed: ParsedFile, options: ImportOptions) -> tuple[list[str], list[str]]:
        errors = self.period_errors(options)
        errors += await self.check_location_code(parsed, "Prop Code", options)
        warnings: list[str] = []

        if parsed.rows and options.has_period:
            raw = parsed.rows[0].get("Month")
            try:
                year, month = month_of(raw)
            except ValueError as e:
                errors.append(str(e))
            else:
                if year != int(options.year):
                    errors.append(f"Year mismatch: Expected {options.year} but found {year} in Month field")
                if month != int(options.month):
                    errors.append(f"Month mismatch: Expected {options.month} but found {month} in Month field")

        if not errors:
            first = parsed.rows[0]
            month_display = first["Month"].date().isoformat() if isinstance(first["Month"], datetime) else first["Month"]
            warnings += [
                f"Prop Code validated: {first.get('Prop Code')}",
                f"Month validated: {month_display}",
            ]
        return errors, warnings
