from __future__ import annotations

"""Cooperative cancellation for import runs.

A token is handed to a run through ``ImportOptions.cancel_token`` and checked at
every suspension point (parse, eviction, row-hook batches, staging chunks).
Cancelling never interrupts an in-flight database call; the run stops at the
next checkpoint.
"""

__all__ = [
    "CancellationToken",
    "ImportCancelledError",
]


class ImportCancelledError(Exception):
    """Raised at a checkpoint after the token was cancelled."""


class CancellationToken:
    def __init__(self) -> None:
        self._cancelled = False
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "cancelled by caller") -> None:
        self._cancelled = True
        self._reason = reason

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise ImportCancelledError(f"import cancelled: {self._reason}")
