from __future__ import annotations

import sys
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

"""Progress display with tqdm (TTY only).

One bar per staging write, advanced by rows as each chunk lands. In non-TTY
environments (CI, piped output) the bar is disabled to avoid ANSI control
sequence spam; the labeled log lines carry the same information.
"""

__all__ = [
    "ProgressTracker",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    return sys.stdout.isatty()


class ProgressTracker:
    """Row progress over staging chunks."""

    def __init__(self, total_rows: int, *, description: str = "Writing staging") -> None:
        self.total_rows = total_rows
        self.description = description
        self.written = 0
        self.chunks = 0

        self.enabled = is_tty_enabled() and total_rows > 0
        self.pbar: TqdmType[Any] | None
        if self.enabled:
            self.pbar = tqdm(
                total=total_rows,
                desc=description,
                unit="row",
                leave=False,
                ncols=80,
                ascii=True,
            )
        else:
            self.pbar = None

    def advance(self, rows: int) -> None:
        """Record one written chunk of ``rows`` rows."""
        self.written += rows
        self.chunks += 1
        if self.pbar is not None:
            self.pbar.update(rows)
            self.pbar.set_postfix(chunks=self.chunks)

    def close(self) -> None:
        if self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> ProgressTracker:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
