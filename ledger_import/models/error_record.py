from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for the JSON Lines error log.

``row`` is 1-based over data rows; -1 marks file-level or persistence errors
where no single row is to blame.
"""

__all__ = [
    "ErrorRecord",
]


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        file: source file name
        processor: processor id that produced the error
        row: 1-based data row, or -1
        error_type: UPPER_SNAKE classification (ROW_VALIDATION_ERROR, PERSISTENCE_ERROR, ...)
        message: human-readable description
    """
    timestamp: str
    file: str
    processor: str
    row: int
    error_type: str
    message: str

    @staticmethod
    def create(file: str, processor: str, row: int, error_type: str, message: str) -> ErrorRecord:
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            file=file,
            processor=processor,
            row=row,
            error_type=error_type,
            message=message,
        )

    def to_json_line(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)
