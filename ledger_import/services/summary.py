from __future__ import annotations

from ledger_import.models.results import ExecutionResponse

"""SUMMARY line rendering.

Format:
SUMMARY processor={id} success={true|false} state={state} rows={n}
processed={n} skipped={n} failed={n} elapsed_sec={x} throughput_rps={y}

(one line; wrapped here for readability)
"""

__all__ = [
    "render_summary_line",
    "format_number",
]


def format_number(value: float) -> str:
    """Compact number: integers without decimals, no scientific notation."""
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if abs(value) < 0.01:
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return f"{value:.3f}".rstrip("0").rstrip(".")


def render_summary_line(response: ExecutionResponse) -> str:
    result = response.result
    if result is not None:
        rows = result.row_count
    elif response.validation is not None:
        rows = response.validation.row_count
    else:
        rows = 0
    processed = result.processed_rows if result else 0
    skipped = result.skipped_rows if result else 0
    failed = result.failed_rows if result else 0
    if result is not None:
        state = result.state.value
    elif response.validation is not None:
        state = "validated" if response.validation.is_valid else "validation_failed"
    else:
        state = "rejected"

    elapsed = response.duration_ms / 1000.0
    throughput = processed / elapsed if elapsed > 0 else 0.0

    return (
        f"SUMMARY processor={response.processor_id} "
        f"success={'true' if response.success else 'false'} "
        f"state={state} "
        f"rows={rows} "
        f"processed={processed} "
        f"skipped={skipped} "
        f"failed={failed} "
        f"elapsed_sec={format_number(elapsed)} "
        f"throughput_rps={format_number(throughput)}"
    )
