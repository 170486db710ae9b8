"""Domain models for the staging import engine.

Plain dataclasses shared by the reader, resolver, aggregator, writer,
processors and registry.
"""

from .error_record import ErrorRecord
from .import_options import DEFAULT_BATCH_SIZE, ImportOptions
from .mapping_entry import UNMAPPED, MappingEntry, MappingStatus
from .parsed_file import ParsedFile, ParseMetadata
from .processor_metadata import ProcessorMetadata
from .results import (
    BatchStatsAccumulator,
    ExecutionResponse,
    FileInfo,
    ImportResult,
    RunStats,
    ValidationResult,
)
from .run_state import InvalidTransitionError, RunState, RunStateMachine
from .staging_record import STAGING_COLUMNS, StagingRecord, make_batch_id, period_key

__all__ = [
    # Parsing
    "ParsedFile",
    "ParseMetadata",
    # Contract / options
    "ProcessorMetadata",
    "ImportOptions",
    "DEFAULT_BATCH_SIZE",
    # Mapping & staging
    "MappingEntry",
    "MappingStatus",
    "UNMAPPED",
    "StagingRecord",
    "STAGING_COLUMNS",
    "make_batch_id",
    "period_key",
    # Results
    "FileInfo",
    "ValidationResult",
    "ImportResult",
    "RunStats",
    "ExecutionResponse",
    "BatchStatsAccumulator",
    "ErrorRecord",
    # Lifecycle
    "RunState",
    "RunStateMachine",
    "InvalidTransitionError",
]
