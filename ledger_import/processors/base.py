from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, ClassVar

from ledger_import.config.loader import ImportConfig, ProcessorSettings
from ledger_import.db.gateway import PersistenceGateway
from ledger_import.mapping.resolver import MappingLoadError
from ledger_import.models.import_options import ImportOptions
from ledger_import.models.parsed_file import ParsedFile
from ledger_import.models.processor_metadata import ProcessorMetadata
from ledger_import.models.results import FileInfo, ImportResult, RunStats, ValidationResult
from ledger_import.models.run_state import RunState, RunStateMachine
from ledger_import.services.cancellation import ImportCancelledError
from ledger_import.services.staging_writer import PersistenceError
from ledger_import.tabular.reader import FileError, ParseOptions, ReaderError, check_file, parse

"""Import processor contract and shared lifecycle.

validate():
    parse -> required columns -> processor structural checks
process():
    validate (unless skipped or already done) -> pre_import (eviction) ->
    row hooks -> process_rows -> post_import

Failures below this boundary are exceptions (FileError, PersistenceError,
RowError with stop_on_error, ImportCancelledError ...); ``process`` converts
every one of them into a negative ImportResult with the message preserved.
"""

__all__ = [
    "BaseImportProcessor",
    "RowError",
    "StructuralValidationError",
    "RowOutcome",
    "RowValidator",
    "RowTransformer",
]

logger = logging.getLogger(__name__)

RowValidator = Callable[[dict[str, Any], int], Awaitable["bool | str"]]
RowTransformer = Callable[[dict[str, Any], int], Awaitable["dict[str, Any] | None"]]


class RowError(Exception):
    """Per-row validation / transform failure (recoverable unless stop_on_error)."""

    def __init__(self, row: int, message: str) -> None:
        super().__init__(f"Row {row}: {message}")
        self.row = row  # 1-based data row
        self.message = message


class StructuralValidationError(Exception):
    """File-level mismatch (columns, location code, period) blocking the run."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__("; ".join(errors))
        self.errors = list(errors)


@dataclass
class RowOutcome:
    rows: list[dict[str, Any]] = field(default_factory=list)
    skipped: int = 0
    failed: int = 0
    errors: list[RowError] = field(default_factory=list)


class BaseImportProcessor(ABC):
    """Shared lifecycle for every import kind.

    Subclasses set ``metadata`` and must implement ``process_rows``; structural
    checks go in ``check_structure``. ``validate_row`` / ``transform_row`` are
    optional: leave them None or define them as async methods.
    """

    metadata: ClassVar[ProcessorMetadata]
    format_hint: ClassVar[str | None] = None  # None: by extension, 'auto': sniff bytes
    row_check_interval: ClassVar[int] = 500  # cancellation checkpoint for row hooks

    validate_row: RowValidator | None = None
    transform_row: RowTransformer | None = None

    def __init__(self, gateway: PersistenceGateway | None = None, config: ImportConfig | None = None) -> None:
        self.gateway = gateway
        self.config = config or ImportConfig()
        self._parse_cache: dict[tuple[Any, ...], ParsedFile] = {}
        self.state_machine = RunStateMachine()

    @property
    def id(self) -> str:
        return self.metadata.id

    @property
    def settings(self) -> ProcessorSettings:
        return self.config.settings_for(self.metadata.id)

    # ------------------------------------------------------------------ parsing

    def _parse_options(self, options: ImportOptions, limit: int | None) -> ParseOptions:
        return ParseOptions(
            delimiter=options.delimiter,
            sheet_name=options.sheet_name,
            limit=limit,
            has_headers=options.has_headers,
            encoding=options.encoding,
        )

    async def get_parsed_file(self, path: Path, options: ImportOptions, limit: int | None = None) -> ParsedFile:
        """Parse ``path`` once per (file state, parse options); later calls reuse it."""
        options.raise_if_cancelled()
        stat = path.stat()
        parse_opts = self._parse_options(options, limit)
        key = (str(path.resolve()), stat.st_mtime_ns, stat.st_size, self.format_hint, parse_opts)
        cached = self._parse_cache.get(key)
        if cached is not None:
            logger.debug("parse cache hit processor=%s file=%s", self.id, path.name)
            return cached
        parsed = await parse(path, self.format_hint, parse_opts)
        self._parse_cache[key] = parsed
        return parsed

    async def preview(self, path: Path, options: ImportOptions | None = None, rows: int = 10) -> ParsedFile:
        options = options or ImportOptions()
        path = Path(path)
        check_file(path)
        limit = options.preview_rows or rows
        return await self.get_parsed_file(path, options, limit=limit)

    async def cleanup(self) -> None:
        self._parse_cache.clear()

    # --------------------------------------------------------------- validation

    async def check_structure(self, parsed: ParsedFile, options: ImportOptions) -> tuple[list[str], list[str]]:
        """Processor-specific structural checks -> (errors, warnings)."""
        return [], []

    async def validate(self, path: Path, options: ImportOptions | None = None) -> ValidationResult:
        options = options or ImportOptions()
        path = Path(path)
        logger.info("validate processor=%s file=%s", self.id, path.name)
        try:
            size = check_file(path)
            parsed = await self.get_parsed_file(path, options)
        except (ImportCancelledError, FileError) as e:
            return ValidationResult.failure(str(e))
        except ReaderError as e:
            return ValidationResult.failure(f"Failed to parse file: {e}")

        meta = parsed.metadata
        file_info = FileInfo(
            size=size,
            encoding=meta.encoding if meta else "utf-8",
            delimiter=meta.delimiter if meta else None,
            has_headers=options.has_headers,
        )
        required = self.metadata.required_columns
        missing = [c for c in required if c not in parsed.columns]
        known = set(self.metadata.known_columns)
        unknown = [c for c in parsed.columns if c not in known] if known else []

        if missing:
            logger.warning("validation failed processor=%s missing=%s", self.id, ",".join(missing))
            return ValidationResult(
                is_valid=False,
                row_count=parsed.row_count,
                column_count=parsed.column_count,
                detected_columns=list(parsed.columns),
                missing_required_columns=missing,
                unknown_columns=unknown,
                errors=[f"Missing required columns: {', '.join(missing)}"],
                file_info=file_info,
            )

        try:
            errors, warnings = await self.check_structure(parsed, options)
        except StructuralValidationError as e:
            errors, warnings = e.errors, []

        if errors:
            logger.warning("validation failed processor=%s errors=%d", self.id, len(errors))
        else:
            warnings = [f"File validated successfully - {parsed.row_count} rows detected", *warnings]

        return ValidationResult(
            is_valid=not errors,
            row_count=parsed.row_count,
            column_count=parsed.column_count,
            detected_columns=list(parsed.columns),
            unknown_columns=unknown,
            errors=list(errors),
            warnings=list(warnings),
            file_info=file_info,
            sample_data=parsed.sample(3),
        )

    # ------------------------------------------------------------------- hooks

    async def pre_import(self, path: Path, parsed: ParsedFile, options: ImportOptions) -> None:
        logger.debug("pre-import processor=%s file=%s", self.id, path.name)

    async def post_import(self, result: ImportResult, options: ImportOptions) -> None:
        logger.debug("post-import processor=%s success=%s", self.id, result.success)

    @abstractmethod
    async def process_rows(self, parsed: ParsedFile, rows: list[dict[str, Any]], options: ImportOptions) -> ImportResult:
        """Turn the hook-filtered rows into an ImportResult."""

    async def _apply_row_hooks(self, parsed: ParsedFile, options: ImportOptions, outcome: RowOutcome) -> None:
        if self.validate_row is None and self.transform_row is None:
            outcome.rows = list(parsed.rows)
            return

        for index, row in enumerate(parsed.rows):
            if index % self.row_check_interval == 0:
                options.raise_if_cancelled()
            try:
                if self.validate_row is not None:
                    try:
                        verdict = await self.validate_row(row, index)
                    except Exception as e:
                        raise RowError(index + 1, f"validation error: {e}") from e
                    if verdict is not True:
                        raise RowError(index + 1, verdict if isinstance(verdict, str) else "row validation failed")
                transformed: dict[str, Any] | None = row
                if self.transform_row is not None:
                    try:
                        transformed = await self.transform_row(row, index)
                    except Exception as e:
                        raise RowError(index + 1, f"transform error: {e}") from e
                if not transformed:
                    outcome.skipped += 1
                    continue
                outcome.rows.append(transformed)
            except RowError as e:
                outcome.failed += 1
                outcome.errors.append(e)
                logger.warning("row failed processor=%s row=%d message=%s", self.id, e.row, e.message)
                if options.stop_on_error:
                    raise

    # ----------------------------------------------------------------- process

    def _begin_run(self) -> None:
        """Reset per-run state; subclasses extend."""
        self.state_machine = RunStateMachine()

    async def process(
        self,
        path: Path,
        options: ImportOptions | None = None,
        validation: ValidationResult | None = None,
    ) -> ImportResult:
        """Run the full lifecycle for one file.

        ``validation`` lets a caller that already validated (the registry) pass
        the result in instead of validating twice.
        """
        options = options or ImportOptions()
        path = Path(path)
        self._begin_run()
        machine = self.state_machine
        start = datetime.now(UTC)
        outcome = RowOutcome()
        row_count = 0
        error_type = "PROCESSING_ERROR"

        try:
            options.raise_if_cancelled()
            check_file(path)

            if validation is None and not options.skip_validation:
                machine.advance(RunState.VALIDATING)
                validation = await self.validate(path, options)
            elif validation is not None:
                machine.advance(RunState.VALIDATING)
            if validation is not None and not validation.is_valid:
                machine.advance(RunState.VALIDATION_FAILED)
                return self._finish(
                    ImportResult(
                        success=False,
                        row_count=validation.row_count,
                        state=machine.state,
                        errors=list(validation.errors),
                        warnings=list(validation.warnings),
                        metadata={"error_type": "VALIDATION_ERROR"},
                    ),
                    start,
                )
            machine.advance(RunState.VALIDATED)
            machine.advance(RunState.PROCESSING)

            parsed = await self.get_parsed_file(path, options)
            row_count = parsed.row_count

            if options.test_mode:
                result = ImportResult(
                    success=True,
                    row_count=row_count,
                    processed_rows=row_count,
                    metadata={"test_mode": True, "columns": list(parsed.columns)},
                )
            else:
                if not options.skip_pre_import:
                    await self.pre_import(path, parsed, options)
                options.raise_if_cancelled()
                await self._apply_row_hooks(parsed, options, outcome)
                result = await self.process_rows(parsed, outcome.rows, options)
            machine.advance(RunState.PROCESSED)

        except ImportCancelledError as e:
            error_type = "CANCELLED"
            message = str(e)
        except ReaderError as e:
            error_type = "FILE_ERROR"
            message = str(e)
        except StructuralValidationError as e:
            error_type = "VALIDATION_ERROR"
            message = str(e)
        except RowError as e:
            error_type = "ROW_ERROR"
            message = f"Aborted on first row failure: {e}"
        except MappingLoadError as e:
            error_type = "MAPPING_ERROR"
            message = str(e)
        except PersistenceError as e:
            error_type = "PERSISTENCE_ERROR"
            message = str(e)
        else:
            result = result.with_changes(
                skipped_rows=result.skipped_rows + outcome.skipped,
                failed_rows=result.failed_rows + outcome.failed,
                errors=[*result.errors, *(str(e) for e in outcome.errors)],
                metadata={**result.metadata, "row_errors": self._row_error_dicts(outcome)},
            )
            if not options.skip_post_import:
                try:
                    await self.post_import(result, options)
                except Exception as e:
                    logger.exception("post-import failed processor=%s", self.id)
                    result = result.with_changes(warnings=[*result.warnings, f"Post-import hook failed: {e}"])
                    return self._finish(result.with_changes(state=machine.state), start)
            machine.advance(RunState.POST_PROCESSED)
            logger.info(
                "processed processor=%s rows=%d processed=%d skipped=%d failed=%d",
                self.id,
                result.row_count,
                result.processed_rows,
                result.skipped_rows,
                result.failed_rows,
            )
            return self._finish(result.with_changes(state=machine.state), start)

        machine.fail()
        logger.error("import failed processor=%s type=%s message=%s", self.id, error_type, message)
        failure = ImportResult(
            success=False,
            row_count=row_count,
            skipped_rows=outcome.skipped,
            failed_rows=outcome.failed,
            state=machine.state,
            errors=[message, *(str(e) for e in outcome.errors if str(e) not in message)],
            metadata={"error_type": error_type, "row_errors": self._row_error_dicts(outcome)},
        )
        return self._finish(failure, start)

    @staticmethod
    def _row_error_dicts(outcome: RowOutcome) -> list[dict[str, Any]]:
        return [{"row": e.row, "message": e.message} for e in outcome.errors]

    def _finish(self, result: ImportResult, start: datetime) -> ImportResult:
        end = datetime.now(UTC)
        previous = result.stats
        stats = RunStats(
            start_time=start,
            end_time=end,
            duration_ms=(end - start).total_seconds() * 1000.0,
            total_batches=previous.total_batches if previous else 0,
            avg_batch_seconds=previous.avg_batch_seconds if previous else 0.0,
            p95_batch_seconds=previous.p95_batch_seconds if previous else 0.0,
        )
        return result.with_changes(stats=stats)
