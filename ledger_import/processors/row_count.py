from __future__ import annotations

from typing import Any

from ledger_import.models.import_options import ImportOptions
from ledger_import.models.parsed_file import ParsedFile
from ledger_import.models.processor_metadata import ProcessorMetadata
from ledger_import.models.results import ImportResult

from .base import BaseImportProcessor

"""test_import: reads a file and reports its real row count.

Used to check that files decode and that the pipeline is wired; nothing is
written to staging.
"""


class RowCountProcessor(BaseImportProcessor):
    metadata = ProcessorMetadata(
        id="test_import",
        name="Test Import (Row Count)",
        category="Testing",
        supported_formats=("csv", "txt", "xlsx", "xlsm"),
        order=-1,
        description="Reads the file and returns the actual row count. No data is staged.",
        validation_rules=("File must be readable",),
        tags=("test", "debug", "row-count"),
    )

    async def validate_row(self, row: dict[str, Any], index: int) -> bool | str:
        return True

    async def transform_row(self, row: dict[str, Any], index: int) -> dict[str, Any] | None:
        return row

    async def process_rows(self, parsed: ParsedFile, rows: list[dict[str, Any]], options: ImportOptions) -> ImportResult:
        return ImportResult(
            success=True,
            row_count=parsed.row_count,
            processed_rows=len(rows),
            metadata={
                "import_type": self.id,
                "message": f"Test import completed: {len(rows)} rows processed",
                "columns": list(parsed.columns),
                "sample_data": parsed.sample(5),
            },
        )
