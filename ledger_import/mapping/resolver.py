from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ledger_import.models.mapping_entry import UNMAPPED, MappingEntry, MappingStatus

if TYPE_CHECKING:
    from ledger_import.db.gateway import PersistenceGateway

"""Source identifier -> target combo resolution.

Rules are keyed by ``source_account``; only active rules are loaded. Duplicate
active source identifiers are not an error: the rule loaded last wins.
"""

__all__ = [
    "MappingResolver",
    "MappingLoadError",
    "Resolution",
    "combo_id_for",
]

logger = logging.getLogger(__name__)


class MappingLoadError(Exception):
    """Mapping rules could not be fetched from the gateway."""


def combo_id_for(department: str, account: str) -> str:
    return f"{department}_{account}"


@dataclass(frozen=True)
class Resolution:
    """Outcome of resolving one source identifier.

    ``combo_id`` is None for both PARTIAL and UNMAPPED; callers persist
    ``UNMAPPED`` in its place.
    """
    status: MappingStatus
    combo_id: str | None = None
    target_account: str | None = None
    target_department: str | None = None

    @property
    def persisted_combo_id(self) -> str:
        return self.combo_id or UNMAPPED


_UNMAPPED_RESOLUTION = Resolution(status=MappingStatus.UNMAPPED)


class MappingResolver:
    def __init__(self, config_id: int | None = None) -> None:
        self.config_id = config_id
        self._lookup: dict[str, MappingEntry] = {}
        self.duplicate_count = 0

    @classmethod
    def from_entries(cls, entries: Iterable[MappingEntry], config_id: int | None = None) -> MappingResolver:
        resolver = cls(config_id)
        resolver._index(entries)
        return resolver

    @classmethod
    async def load(cls, gateway: PersistenceGateway, config_id: int) -> MappingResolver:
        """Fetch the rules of ``config_id`` fresh from the gateway."""
        try:
            entries = await gateway.get_mapping_rules(config_id)
        except Exception as e:
            raise MappingLoadError(f"failed to load mapping rules config_id={config_id}: {e}") from e
        resolver = cls.from_entries(entries, config_id)
        logger.info(
            "mapping rules loaded config_id=%s rules=%d duplicates=%d",
            config_id,
            len(resolver),
            resolver.duplicate_count,
        )
        return resolver

    def _index(self, entries: Iterable[MappingEntry]) -> None:
        for entry in entries:
            if not entry.is_active or not entry.source_account:
                continue
            if entry.source_account in self._lookup:
                # last-write-wins
                self.duplicate_count += 1
                logger.debug("duplicate active rule source=%s replaced", entry.source_account)
            self._lookup[entry.source_account] = entry

    def __len__(self) -> int:
        return len(self._lookup)

    def __contains__(self, source_id: object) -> bool:
        return source_id in self._lookup

    @property
    def source_identifiers(self) -> frozenset[str]:
        return frozenset(self._lookup)

    def get(self, source_id: str) -> MappingEntry | None:
        return self._lookup.get(source_id)

    def resolve(self, source_id: str) -> Resolution:
        entry = self._lookup.get(source_id)
        if entry is None:
            return _UNMAPPED_RESOLUTION

        account = entry.target_account
        department = entry.target_department
        if account and department:
            return Resolution(
                status=MappingStatus.MAPPED,
                combo_id=combo_id_for(department, account),
                target_account=account,
                target_department=department,
            )
        if account or department:
            return Resolution(
                status=MappingStatus.PARTIAL,
                target_account=account,
                target_department=department,
            )
        # active rule with no targets at all
        return _UNMAPPED_RESOLUTION
