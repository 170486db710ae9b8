from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

"""Mapping rule domain model.

A MappingEntry is one source -> target reclassification rule scoped to a mapping
configuration. Rules are maintained by an external configuration UI; the
import engine only reads them, fresh on every run.
"""

__all__ = [
    "MappingEntry",
    "MappingStatus",
    "UNMAPPED",
]

UNMAPPED = "UNMAPPED"


class MappingStatus(Enum):
    """Outcome of resolving one source identifier.

    - MAPPED: both target department and account known
    - PARTIAL: exactly one of them known
    - UNMAPPED: no active rule for the identifier
    """
    MAPPED = "mapped"
    PARTIAL = "partial"
    UNMAPPED = "unmapped"


def _blank_to_none(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class MappingEntry:
    config_id: int
    source_account: str | None
    source_department: str | None
    target_account: str | None
    target_department: str | None
    is_active: bool = True
    priority: int = 0
    id: int | None = None

    @staticmethod
    def from_row(row: dict[str, Any]) -> MappingEntry:
        """Build from a DB/API row using the persisted column names."""
        return MappingEntry(
            config_id=int(row.get("mapping_config_id", row.get("config_id", 0)) or 0),
            source_account=_blank_to_none(row.get("source_account")),
            source_department=_blank_to_none(row.get("source_department")),
            target_account=_blank_to_none(row.get("target_account")),
            target_department=_blank_to_none(row.get("target_department")),
            is_active=bool(row.get("is_active", True)),
            priority=int(row.get("priority") or 0),
            id=row.get("id"),
        )
