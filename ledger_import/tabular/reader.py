from __future__ import annotations

import asyncio
import io
import logging
import os
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pandas as pd

from ledger_import.models.parsed_file import ParsedFile, ParseMetadata

"""Tabular reader: CSV / spreadsheet bytes -> ParsedFile.

- Headered formats take column names from the first row; headerless input
  gets synthesized ordinal names (Column1, Column2, ...).
- Cell values stay raw (strings for CSV, native cell types for spreadsheets);
  empty cells become "" and fully blank rows are dropped.
- ``limit`` stops after that many data rows and ``row_count`` reflects only the
  materialized rows.
- Blank content is not an error: it yields an empty ParsedFile.

Parsing is pure over the file contents; ``parse`` only moves the blocking read
off the event loop.
"""

__all__ = [
    "ReaderError",
    "FileError",
    "UnsupportedFormatError",
    "MalformedInputError",
    "ParseOptions",
    "CSV_FORMATS",
    "SPREADSHEET_FORMATS",
    "KNOWN_FORMATS",
    "file_type",
    "sniff_format",
    "check_file",
    "read_tabular",
    "parse",
]

logger = logging.getLogger(__name__)

CSV_FORMATS = frozenset({"csv", "txt"})
SPREADSHEET_FORMATS = frozenset({"xlsx", "xlsm"})
KNOWN_FORMATS = CSV_FORMATS | SPREADSHEET_FORMATS
AUTO_FORMAT = "auto"

MAX_FILE_SIZE = 500 * 1024 * 1024  # 500MB
DEFAULT_DELIMITER = ","
DEFAULT_ENCODING = "utf-8-sig"

_ZIP_MAGIC = b"PK\x03\x04"


class ReaderError(Exception):
    """Base class for reader failures."""


class FileError(ReaderError):
    """File not found, not a regular file, empty, too large or unreadable."""


class UnsupportedFormatError(ReaderError):
    """Extension / format hint matches none of the known decoders."""


class MalformedInputError(ReaderError):
    """Content the decoder cannot recover from (ragged rows, corrupt workbook...)."""


@dataclass(frozen=True)
class ParseOptions:
    delimiter: str | None = None  # CSV only, default ','
    sheet_name: str | None = None  # spreadsheet only, default first sheet
    limit: int | None = None  # preview row cap
    has_headers: bool = True
    encoding: str | None = None  # CSV only, default utf-8 (BOM tolerated)
    trim: bool = True


def file_type(path: Path | str) -> str:
    """Lower-case extension without dot ('' when absent)."""
    return Path(path).suffix.lower().lstrip(".")


def sniff_format(path: Path) -> str:
    """Detect spreadsheet bytes regardless of extension.

    Some accounting exports are xlsx workbooks saved with a .csv extension;
    the zip signature tells them apart.
    """
    try:
        with path.open("rb") as f:
            head = f.read(len(_ZIP_MAGIC))
    except OSError as e:
        raise FileError(f"file is not readable: {path} ({e})") from e
    if head == _ZIP_MAGIC:
        return "xlsx"
    ext = file_type(path)
    return ext if ext in KNOWN_FORMATS else "csv"


def check_file(path: Path) -> int:
    """Verify the file can be imported at all; returns its size in bytes."""
    if not path.exists():
        raise FileError(f"File not found: {path}")
    if not path.is_file():
        raise FileError(f"Not a regular file: {path}")
    if not os.access(path, os.R_OK):
        raise FileError(f"File is not readable: {path}")
    size = path.stat().st_size
    if size == 0:
        raise FileError(f"File is empty: {path}")
    if size > MAX_FILE_SIZE:
        raise FileError(
            f"File too large ({size // (1024 * 1024)}MB). Maximum size is {MAX_FILE_SIZE // (1024 * 1024)}MB"
        )
    return size


def _normalize_value(value: Any, trim: bool) -> Any:
    if isinstance(value, str):
        return value.strip() if trim else value
    if value is None or pd.isna(value):
        return ""
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    return value


def _frame_to_parsed(
    df: pd.DataFrame, opts: ParseOptions, metadata: ParseMetadata, source: Path
) -> ParsedFile:
    if opts.has_headers:
        columns = [str(c).strip() for c in df.columns]
    else:
        columns = [f"Column{i + 1}" for i in range(len(df.columns))]
    df.columns = columns

    rows: list[dict[str, Any]] = []
    for record in df.to_dict(orient="records"):
        row = {col: _normalize_value(val, opts.trim) for col, val in record.items()}
        # 全セル空の行はスキップ
        if all(v == "" for v in row.values()):
            continue
        rows.append(row)
        if opts.limit is not None and len(rows) >= opts.limit:
            break

    return ParsedFile(rows=rows, columns=columns, metadata=metadata, source_path=str(source))


def _read_csv(path: Path, opts: ParseOptions) -> ParsedFile:
    encoding = opts.encoding or DEFAULT_ENCODING
    delimiter = opts.delimiter or DEFAULT_DELIMITER
    metadata = ParseMetadata(
        format="csv", encoding=encoding, has_headers=opts.has_headers, delimiter=delimiter
    )
    try:
        text = path.read_text(encoding=encoding)
    except UnicodeDecodeError as e:
        raise MalformedInputError(f"cannot decode {path.name} as {encoding}: {e}") from e
    except OSError as e:
        raise FileError(f"File is not readable: {path} ({e})") from e

    if not text.strip():
        return ParsedFile.empty(metadata, source_path=str(path))

    try:
        df = pd.read_csv(
            io.StringIO(text),
            sep=delimiter,
            header=0 if opts.has_headers else None,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
        )
    except pd.errors.EmptyDataError:
        return ParsedFile.empty(metadata, source_path=str(path))
    except pd.errors.ParserError as e:
        raise MalformedInputError(f"Failed to parse CSV file {path.name}: {e}") from e

    return _frame_to_parsed(df, opts, metadata, path)


def _read_spreadsheet(path: Path, fmt: str, opts: ParseOptions) -> ParsedFile:
    try:
        xls = pd.ExcelFile(path, engine="openpyxl")
    except (zipfile.BadZipFile, ValueError, KeyError) as e:
        raise MalformedInputError(f"Failed to parse Excel file {path.name}: {e}") from e
    except OSError as e:
        raise FileError(f"File is not readable: {path} ({e})") from e

    with xls:
        sheet_names = [str(s) for s in xls.sheet_names]
        if not sheet_names:
            raise MalformedInputError(f"workbook {path.name} has no sheets")
        sheet = opts.sheet_name or sheet_names[0]
        if sheet not in sheet_names:
            raise MalformedInputError(
                f"Sheet '{sheet}' not found. Available sheets: {', '.join(sheet_names)}"
            )
        metadata = ParseMetadata(
            format=fmt, encoding="binary", has_headers=opts.has_headers, sheet_name=sheet
        )
        try:
            df = xls.parse(sheet, header=0 if opts.has_headers else None)
        except (ValueError, KeyError) as e:
            raise MalformedInputError(f"Failed to parse sheet '{sheet}' of {path.name}: {e}") from e

    if df.empty and len(df.columns) == 0:
        return ParsedFile.empty(metadata, source_path=str(path))
    return _frame_to_parsed(df, opts, metadata, path)


def read_tabular(path: Path | str, format_hint: str | None = None, options: ParseOptions | None = None) -> ParsedFile:
    """Decode ``path`` into a ParsedFile.

    Parameters
    ----------
    path: source file
    format_hint: 'csv' / 'xlsx' / ... , 'auto' to sniff the bytes, None to use the extension
    options: delimiter / sheet / limit / header handling

    Raises
    ------
    UnsupportedFormatError: no decoder for the hint / extension
    MalformedInputError: decoder could not make sense of the content
    FileError: the file could not be read
    """
    path = Path(path)
    opts = options or ParseOptions()

    hint = (format_hint or file_type(path)).lower().lstrip(".")
    if hint == AUTO_FORMAT:
        hint = sniff_format(path)
    if hint not in KNOWN_FORMATS:
        raise UnsupportedFormatError(
            f"Unsupported file type: {hint or '<none>'}. Supported formats: {', '.join(sorted(KNOWN_FORMATS))}"
        )
    if not path.exists():
        raise FileError(f"File not found: {path}")

    if hint in CSV_FORMATS:
        parsed = _read_csv(path, opts)
    else:
        parsed = _read_spreadsheet(path, hint, opts)

    logger.debug(
        "parsed file=%s format=%s rows=%d columns=%d limit=%s",
        path.name,
        hint,
        parsed.row_count,
        parsed.column_count,
        opts.limit,
    )
    return parsed


async def parse(path: Path | str, format_hint: str | None = None, options: ParseOptions | None = None) -> ParsedFile:
    """Async wrapper: decoding runs in a worker thread."""
    return await asyncio.to_thread(read_tabular, path, format_hint, options)
