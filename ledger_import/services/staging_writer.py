from __future__ import annotations

import logging
from collections.abc import Collection, Sequence
from dataclasses import dataclass

from ledger_import.db.batch_insert import BatchMetrics
from ledger_import.db.gateway import PersistenceGateway
from ledger_import.models.import_options import DEFAULT_BATCH_SIZE
from ledger_import.models.results import BatchStatsAccumulator
from ledger_import.models.staging_record import StagingRecord

from .cancellation import CancellationToken, ImportCancelledError
from .progress import ProgressTracker

"""Staging writer: scoped eviction + sequential chunked writes.

- ``evict_matching`` deletes only rows whose source identifier is in the given
  set, never a full-table truncate.
- ``write_batch`` chunks candidates (default 100) and writes them one after the
  other. Eviction is awaited to completion before any chunk starts, so the two
  never interleave within a run.
- Any gateway failure becomes ``PersistenceError``; nothing already written is
  rolled back here.
"""

__all__ = [
    "PersistenceError",
    "StagingWriter",
    "WriteSummary",
]

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """Eviction or staging write failed; fatal for the run."""


@dataclass(frozen=True)
class WriteSummary:
    written: int
    total_batches: int
    avg_batch_seconds: float
    p95_batch_seconds: float


class StagingWriter:
    def __init__(self, gateway: PersistenceGateway) -> None:
        self.gateway = gateway
        self.last_summary: WriteSummary | None = None

    async def evict_matching(
        self, source_ids: Collection[str], cancel_token: CancellationToken | None = None
    ) -> int:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        if not source_ids:
            logger.info("eviction skipped: no source identifiers")
            return 0
        try:
            deleted = await self.gateway.delete_staging_where_source_in(source_ids)
        except Exception as e:
            raise PersistenceError(f"staging eviction failed: {e}") from e
        logger.info("staging evicted ids=%d deleted=%d", len(source_ids), deleted)
        return deleted

    async def write_batch(
        self,
        records: Sequence[StagingRecord],
        batch_size: int = DEFAULT_BATCH_SIZE,
        cancel_token: CancellationToken | None = None,
    ) -> int:
        """Write ``records`` in chunks of ``batch_size``; returns rows written.

        Raises:
            PersistenceError: a chunk failed (earlier chunks stay written)
            ImportCancelledError: token cancelled between chunks
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")

        accumulator = BatchStatsAccumulator()

        def on_metrics(metrics: BatchMetrics) -> None:
            accumulator.add_batch_time(metrics.elapsed_seconds)

        written = 0
        with ProgressTracker(len(records)) as progress:
            for start in range(0, len(records), batch_size):
                if cancel_token is not None:
                    try:
                        cancel_token.raise_if_cancelled()
                    except ImportCancelledError:
                        logger.warning("staging write cancelled written=%d total=%d", written, len(records))
                        raise
                chunk = records[start : start + batch_size]
                try:
                    count = await self.gateway.insert_staging_batch(chunk, metrics_callback=on_metrics)
                except Exception as e:
                    raise PersistenceError(
                        f"staging write failed at chunk {start // batch_size + 1} "
                        f"(rows {start + 1}-{start + len(chunk)}, {written} already written): {e}"
                    ) from e
                written += count
                progress.advance(count)

        total_batches, avg, p95 = accumulator.get_stats()
        self.last_summary = WriteSummary(written, total_batches, avg, p95)
        logger.info("staging written rows=%d batches=%d p95_batch_sec=%.4f", written, total_batches, p95)
        return written
