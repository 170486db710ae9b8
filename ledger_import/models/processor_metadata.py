from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

"""ProcessorMetadata: the outward-facing contract of one import kind.

This is the one semi-stable shape exposed to UI layers, so fields are only ever
added with defaults, never renamed.
"""

__all__ = [
    "ProcessorMetadata",
]


@dataclass(frozen=True)
class ProcessorMetadata:
    id: str  # unique registry key (e.g. 'accpac_room_rev')
    name: str  # display name
    category: str
    supported_formats: tuple[str, ...]  # extensions without dot
    order: int  # sequencing only, lower first (-1 for test imports)
    description: str = ""
    required: bool = False
    required_columns: tuple[str, ...] = ()
    optional_columns: tuple[str, ...] = ()
    validation_rules: tuple[str, ...] = ()  # human-readable
    tags: tuple[str, ...] = ()
    version: str = "1.0.0"
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def known_columns(self) -> tuple[str, ...]:
        return self.required_columns + self.optional_columns

    def supports(self, file_type: str) -> bool:
        return file_type.lower().lstrip(".") in self.supported_formats

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for key in ("supported_formats", "required_columns", "optional_columns", "validation_rules", "tags"):
            data[key] = list(data[key])
        return data
