from __future__ import annotations

import statistics
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from typing import Any

from .run_state import RunState

"""Result models returned by validation, processing and the registry.

All of them are transport-agnostic plain data: a UI envelope can serialise
``to_dict()`` without knowing anything about the engine.
"""

__all__ = [
    "FileInfo",
    "ValidationResult",
    "RunStats",
    "ImportResult",
    "ExecutionResponse",
    "BatchStatsAccumulator",
]


@dataclass(frozen=True)
class FileInfo:
    size: int
    encoding: str
    delimiter: str | None = None
    has_headers: bool = True


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    row_count: int
    column_count: int
    detected_columns: list[str]
    missing_required_columns: list[str] = field(default_factory=list)
    unknown_columns: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    file_info: FileInfo | None = None
    sample_data: list[dict[str, Any]] = field(default_factory=list)

    @staticmethod
    def failure(*errors: str, row_count: int = 0) -> ValidationResult:
        return ValidationResult(
            is_valid=False,
            row_count=row_count,
            column_count=0,
            detected_columns=[],
            errors=list(errors),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RunStats:
    start_time: datetime
    end_time: datetime
    duration_ms: float
    total_batches: int = 0
    avg_batch_seconds: float = 0.0
    p95_batch_seconds: float = 0.0


@dataclass(frozen=True)
class ImportResult:
    success: bool
    row_count: int
    processed_rows: int = 0
    skipped_rows: int = 0
    failed_rows: int = 0
    state: RunState = RunState.REGISTERED
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    data: list[Any] | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    stats: RunStats | None = None

    @staticmethod
    def failure(message: str, row_count: int = 0, state: RunState = RunState.PROCESSING_FAILED, **counts: int) -> ImportResult:
        return ImportResult(success=False, row_count=row_count, state=state, errors=[message], **counts)

    def with_changes(self, **changes: Any) -> ImportResult:
        return replace(self, **changes)

    @property
    def messages(self) -> list[str]:
        return [*self.errors, *self.warnings]

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        if self.stats is not None:
            data["stats"]["start_time"] = self.stats.start_time.isoformat()
            data["stats"]["end_time"] = self.stats.end_time.isoformat()
        return data


@dataclass(frozen=True)
class ExecutionResponse:
    """Uniform envelope for every registry call, success or failure.

    Callers never need to catch exceptions from ``ImportRegistry.execute``: all
    failures, including unknown processors and unsupported formats, arrive here.
    """
    success: bool
    processor_id: str
    started_at: datetime
    finished_at: datetime
    file_path: str | None = None
    validation: ValidationResult | None = None
    result: ImportResult | None = None
    error: str | None = None

    @property
    def duration_ms(self) -> float:
        return (self.finished_at - self.started_at).total_seconds() * 1000.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "processor_id": self.processor_id,
            "file_path": self.file_path,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "duration_ms": self.duration_ms,
            "validation": self.validation.to_dict() if self.validation else None,
            "result": self.result.to_dict() if self.result else None,
            "error": self.error,
        }


class BatchStatsAccumulator:
    """Collects per-chunk write timings and summarises them."""

    def __init__(self) -> None:
        self.batch_times: list[float] = []

    def add_batch_time(self, elapsed_seconds: float) -> None:
        self.batch_times.append(elapsed_seconds)

    def get_stats(self) -> tuple[int, float, float]:
        """Return (total_batches, avg_batch_seconds, p95_batch_seconds)."""
        if not self.batch_times:
            return (0, 0.0, 0.0)

        total_batches = len(self.batch_times)
        avg_batch_seconds = statistics.mean(self.batch_times)
        if total_batches == 1:
            p95_batch_seconds = self.batch_times[0]
        else:
            # 19th of 20 inclusive quantiles == p95
            p95_batch_seconds = statistics.quantiles(
                self.batch_times, n=20, method="inclusive"
            )[18]
        return (total_batches, avg_batch_seconds, p95_batch_seconds)
