from __future__ import annotations

import asyncio
import logging
from collections import Counter
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from ledger_import.config.loader import ImportConfig
from ledger_import.db.gateway import PersistenceGateway
from ledger_import.models.import_options import ImportOptions
from ledger_import.models.processor_metadata import ProcessorMetadata
from ledger_import.models.results import ExecutionResponse, ImportResult, ValidationResult
from ledger_import.models.run_state import RunState
from ledger_import.processors.base import BaseImportProcessor
from ledger_import.processors.comps import CompsProcessor
from ledger_import.processors.line_items import LineItemsProcessor
from ledger_import.processors.room_revenue import RoomRevenueProcessor
from ledger_import.processors.row_count import RowCountProcessor
from ledger_import.tabular.reader import ReaderError, UnsupportedFormatError, check_file, file_type

"""Import registry: processor directory + the single entry point for runs.

- ``execute`` serialises runs with one asyncio.Lock: eviction of one processor
  must never interleave with the writes of another.
- Every call returns an ExecutionResponse; nothing raised below this boundary
  reaches the caller.
"""

__all__ = [
    "ImportRegistry",
    "UnknownProcessorError",
    "BUILTIN_PROCESSORS",
]

logger = logging.getLogger(__name__)

BUILTIN_PROCESSORS: tuple[type[BaseImportProcessor], ...] = (
    RowCountProcessor,
    LineItemsProcessor,
    RoomRevenueProcessor,
    CompsProcessor,
)


class UnknownProcessorError(Exception):
    pass


class ImportRegistry:
    def __init__(self, gateway: PersistenceGateway | None = None, config: ImportConfig | None = None) -> None:
        self.gateway = gateway
        self.config = config or ImportConfig()
        self._processors: dict[str, BaseImportProcessor] = {}
        self._initialized = False
        self._run_lock = asyncio.Lock()

    @property
    def initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> None:
        """Register the built-in processors once; later calls are no-ops."""
        if self._initialized:
            return
        for cls in BUILTIN_PROCESSORS:
            if not self.config.settings_for(cls.metadata.id).enabled:
                logger.info("processor disabled by config id=%s", cls.metadata.id)
                continue
            self.register(cls(self.gateway, self.config))
        self._initialized = True
        logger.info("registry initialized processors=%d", len(self._processors))

    # -------------------------------------------------------------- directory

    def register(self, processor: BaseImportProcessor) -> None:
        pid = processor.metadata.id
        if pid in self._processors:
            logger.warning("processor already registered, replacing id=%s", pid)
        self._processors[pid] = processor

    def unregister(self, processor_id: str) -> bool:
        return self._processors.pop(processor_id, None) is not None

    def get_processor(self, processor_id: str) -> BaseImportProcessor | None:
        return self._processors.get(processor_id)

    def require(self, processor_id: str) -> BaseImportProcessor:
        processor = self._processors.get(processor_id)
        if processor is None:
            raise UnknownProcessorError(f"Import processor not found: {processor_id}")
        return processor

    def all_processors(self) -> list[BaseImportProcessor]:
        return sorted(self._processors.values(), key=lambda p: (p.metadata.order, p.metadata.id))

    def all_metadata(self) -> list[ProcessorMetadata]:
        return [p.metadata for p in self.all_processors()]

    def by_category(self, category: str) -> list[ProcessorMetadata]:
        return [m for m in self.all_metadata() if m.category == category]

    def required_processors(self) -> list[ProcessorMetadata]:
        return [m for m in self.all_metadata() if m.required]

    def search_by_tags(self, *tags: str) -> list[ProcessorMetadata]:
        wanted = {t.lower() for t in tags}
        return [m for m in self.all_metadata() if wanted & {t.lower() for t in m.tags}]

    def statistics(self) -> dict[str, Any]:
        metas = self.all_metadata()
        formats = sorted({f for m in metas for f in m.supported_formats})
        return {
            "total": len(metas),
            "by_category": dict(Counter(m.category for m in metas)),
            "required": sum(1 for m in metas if m.required),
            "supported_formats": formats,
        }

    def __contains__(self, processor_id: object) -> bool:
        return processor_id in self._processors

    def __len__(self) -> int:
        return len(self._processors)

    # ------------------------------------------------------------------- runs

    def _resolve(self, processor_id: str, path: Path | str) -> tuple[BaseImportProcessor, Path]:
        processor = self.require(processor_id)
        path = Path(path)
        ext = file_type(path)
        if not processor.metadata.supports(ext):
            raise UnsupportedFormatError(
                f"Processor {processor_id} does not support .{ext or '<none>'} files. "
                f"Supported formats: {', '.join(processor.metadata.supported_formats)}"
            )
        check_file(path)
        return processor, path

    @staticmethod
    def _response(
        processor_id: str,
        path: Path | str | None,
        started: datetime,
        *,
        validation: ValidationResult | None = None,
        result: ImportResult | None = None,
        error: str | None = None,
    ) -> ExecutionResponse:
        if error is None and result is not None:
            success = result.success
            if not success:
                error = "; ".join(result.errors) or "import failed"
        elif error is None and validation is not None:
            success = validation.is_valid
            if not success:
                error = "; ".join(validation.errors) or "validation failed"
        else:
            success = error is None
        return ExecutionResponse(
            success=success,
            processor_id=processor_id,
            started_at=started,
            finished_at=datetime.now(UTC),
            file_path=str(path) if path is not None else None,
            validation=validation,
            result=result,
            error=error,
        )

    async def validate_file(
        self, processor_id: str, path: Path | str, options: ImportOptions | None = None
    ) -> ExecutionResponse:
        options = options or ImportOptions()
        started = datetime.now(UTC)
        try:
            processor, path = self._resolve(processor_id, path)
            validation = await processor.validate(path, options)
        except (UnknownProcessorError, ReaderError) as e:
            return self._response(processor_id, path, started, error=str(e))
        return self._response(processor_id, path, started, validation=validation)

    async def preview(
        self, processor_id: str, path: Path | str, options: ImportOptions | None = None, rows: int = 10
    ) -> ExecutionResponse:
        options = options or ImportOptions()
        started = datetime.now(UTC)
        try:
            processor, path = self._resolve(processor_id, path)
            parsed = await processor.preview(path, options, rows=rows)
        except (UnknownProcessorError, ReaderError) as e:
            return self._response(processor_id, path, started, error=str(e))
        result = ImportResult(
            success=True,
            row_count=parsed.row_count,
            data=parsed.rows,
            metadata={"columns": list(parsed.columns), "preview": True},
        )
        return self._response(processor_id, path, started, result=result)

    async def execute(
        self, processor_id: str, path: Path | str, options: ImportOptions | None = None
    ) -> ExecutionResponse:
        """Validate then process one file, one run at a time.

        Returns:
            ExecutionResponse; ``success`` False carries the reason in ``error``.
        """
        options = options or ImportOptions()
        async with self._run_lock:
            started = datetime.now(UTC)
            logger.info("execute processor=%s file=%s", processor_id, Path(path).name)
            try:
                processor, path = self._resolve(processor_id, path)
                validation = None
                if not options.skip_validation:
                    validation = await processor.validate(path, options)
                    if not validation.is_valid:
                        logger.warning(
                            "validation failed processor=%s errors=%d", processor_id, len(validation.errors)
                        )
                        failed = ImportResult(
                            success=False,
                            row_count=validation.row_count,
                            state=RunState.VALIDATION_FAILED,
                            errors=list(validation.errors),
                            warnings=list(validation.warnings),
                            metadata={"error_type": "VALIDATION_ERROR"},
                        )
                        return self._response(
                            processor_id,
                            path,
                            started,
                            validation=validation,
                            result=failed,
                            error="Validation failed: " + "; ".join(validation.errors),
                        )
                result = await processor.process(path, options, validation=validation)
            except (UnknownProcessorError, ReaderError) as e:
                logger.error("execute rejected processor=%s error=%s", processor_id, e)
                return self._response(processor_id, path, started, error=str(e))
            except Exception as e:
                logger.exception("unexpected failure processor=%s", processor_id)
                return self._response(processor_id, path, started, error=f"Unexpected error: {e}")
            return self._response(processor_id, path, started, validation=validation, result=result)

    async def cleanup(self) -> None:
        for processor in self._processors.values():
            await processor.cleanup()
