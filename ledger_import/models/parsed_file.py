from __future__ import annotations

from dataclasses import dataclass
from typing import Any

"""ParsedFile model: decoded tabular content of one source file.

Produced once per (file, options) pair by the tabular reader and never mutated
afterwards. ``row_count`` always equals ``len(rows)``; when a row limit was
requested it counts only the materialized rows, not the file's true total.
"""

__all__ = [
    "ParsedFile",
    "ParseMetadata",
]


@dataclass(frozen=True)
class ParseMetadata:
    """Decoder details reported back to validation (file_info)."""
    format: str  # csv / xlsx ...
    encoding: str
    has_headers: bool = True
    delimiter: str | None = None  # CSV only
    sheet_name: str | None = None  # spreadsheet only


@dataclass(frozen=True)
class ParsedFile:
    rows: list[dict[str, Any]]  # 列名 -> 生値
    columns: list[str]  # header order, unique
    metadata: ParseMetadata | None = None
    source_path: str | None = None

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def column_count(self) -> int:
        return len(self.columns)

    def sample(self, n: int = 5) -> list[dict[str, Any]]:
        return self.rows[:n]

    @staticmethod
    def empty(metadata: ParseMetadata | None = None, source_path: str | None = None) -> ParsedFile:
        return ParsedFile(rows=[], columns=[], metadata=metadata, source_path=source_path)
