from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..services.cancellation import CancellationToken

"""ImportOptions: caller-supplied knobs for validate / process / preview."""

__all__ = [
    "ImportOptions",
    "DEFAULT_BATCH_SIZE",
]

DEFAULT_BATCH_SIZE = 100


@dataclass(frozen=True)
class ImportOptions:
    skip_validation: bool = False
    skip_pre_import: bool = False
    skip_post_import: bool = False
    test_mode: bool = False  # count rows only, no staging writes
    preview_rows: int | None = None  # parser row limit
    delimiter: str | None = None
    encoding: str | None = None
    sheet_name: str | None = None
    has_headers: bool = True
    batch_size: int = DEFAULT_BATCH_SIZE
    stop_on_error: bool = False
    # reporting context
    year: int | None = None
    month: int | None = None
    ou: str | None = None  # organizational unit (hotel/property)
    location_code: str | None = None  # overrides the OU lookup
    scenario: str | None = None
    cancel_token: CancellationToken | None = None
    custom: dict[str, Any] = field(default_factory=dict)

    @property
    def has_period(self) -> bool:
        return bool(self.year) and bool(self.month)

    def with_changes(self, **changes: Any) -> ImportOptions:
        return replace(self, **changes)

    def raise_if_cancelled(self) -> None:
        if self.cancel_token is not None:
            self.cancel_token.raise_if_cancelled()
