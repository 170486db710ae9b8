#!/usr/bin/env python3
"""Sample dataset generation for the ledger staging importer.

Generates synthetic exports in the shapes the built-in processors expect:
- room_rev:   Segments / Prop Code / Month / Room Nighs / Revenue / Bed Nights
- line_items: FILETYPE / FILEVERSION / PROPCODE / BUSDATE / ACCTCODE / ACCTDESC /
              ENDINGBALANCE / ACTIVITY
- comps:      Guest Name / ... / Rooms Rented / ...

Room revenue can also be written as an xlsx workbook saved under a .csv name,
the way the real export arrives.
"""
from __future__ import annotations

import argparse
import calendar
import io
import sys
from pathlib import Path

import numpy as np
import pandas as pd

SEGMENTS = ["Transient", "Corporate", "Group", "Wholesale", "Government", "Long Stay", "Crew", "Complimentary"]
ACCOUNT_DESCRIPTIONS = ["Room Revenue", "F&B Revenue", "Payroll", "Utilities", "Repairs", "Laundry", "Telephone"]


def generate_room_revenue(rows: int, prop_code: str, year: int, month: int, seed: int = 42) -> pd.DataFrame:
    """Room revenue by segment; segments repeat so aggregation has work to do."""
    rng = np.random.default_rng(seed)
    last_day = calendar.monthrange(year, month)[1]
    room_nights = rng.integers(0, 400, rows)
    return pd.DataFrame(
        {
            "Segments": rng.choice(SEGMENTS, rows),
            "Prop Code": prop_code,
            "Month": f"{last_day:02d}/{month:02d}/{year}",
            "Room Nighs": room_nights,
            "Revenue": np.round(room_nights * rng.uniform(80, 260, rows), 2),
            "Bed Nights": room_nights + rng.integers(0, 120, rows),
        }
    )


def generate_line_items(rows: int, prop_code: str, year: int, month: int, seed: int = 42) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    codes = [f"{4000 + i * 10}" for i in range(max(1, rows // 2))]
    acct = rng.choice(codes, rows)
    ending = np.round(rng.uniform(-50_000, 250_000, rows), 2)
    return pd.DataFrame(
        {
            "FILETYPE": "TB",
            "FILEVERSION": "1",
            "PROPCODE": prop_code,
            "BUSDATE": f"{year}{month:02d}",
            "ACCTCODE": acct,
            "ACCTDESC": [ACCOUNT_DESCRIPTIONS[int(c) % len(ACCOUNT_DESCRIPTIONS)] for c in acct],
            "ENDINGBALANCE": ending,
            "ACTIVITY": np.round(ending * rng.uniform(0.01, 0.2, rows), 2),
        }
    )


def generate_comps(rows: int, year: int, month: int, seed: int = 42) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    days = rng.integers(1, calendar.monthrange(year, month)[1] + 1, rows)
    return pd.DataFrame(
        {
            "Guest Name": [f"Guest {i + 1}" for i in range(rows)],
            "Company Name": rng.choice(["Acme", "Globex", "Initech", ""], rows),
            "Requested By": "Front Office",
            "Authorized By": "GM",
            "Date": [f"{d:02d}/{month:02d}/{year}" for d in days],
            "Rooms Rented": rng.integers(0, 3, rows),
            "Bed Nights": rng.integers(0, 5, rows),
            "Remarks": "",
        }
    )


def write_frame(df: pd.DataFrame, output: Path, as_xlsx: bool = False) -> None:
    output.parent.mkdir(parents=True, exist_ok=True)
    if as_xlsx:
        # ExcelWriter rejects a .csv path, so build the workbook in memory
        buffer = io.BytesIO()
        with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
            df.to_excel(writer, index=False, sheet_name="Sheet1")
        output.write_bytes(buffer.getvalue())
    else:
        df.to_csv(output, index=False)
    print(f"Created {output} ({len(df):,} rows, {len(df.columns)} columns)")


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Generate synthetic import files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s room_rev data/room_rev.csv --rows 200 --prop-code H001 --year 2024 --month 7
  %(prog)s room_rev data/room_rev.csv --xlsx
  %(prog)s line_items data/tb.csv --rows 5000
        """,
    )
    parser.add_argument("kind", choices=["room_rev", "line_items", "comps"])
    parser.add_argument("output", type=Path)
    parser.add_argument("--rows", type=int, default=100)
    parser.add_argument("--prop-code", default="H001")
    parser.add_argument("--year", type=int, default=2024)
    parser.add_argument("--month", type=int, default=7)
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--xlsx", action="store_true", help="Write workbook bytes regardless of extension")
    args = parser.parse_args()

    if args.rows <= 0:
        print("Error: --rows must be positive", file=sys.stderr)
        return 1
    if not 1 <= args.month <= 12:
        print("Error: --month must be 1-12", file=sys.stderr)
        return 1

    if args.kind == "room_rev":
        df = generate_room_revenue(args.rows, args.prop_code, args.year, args.month, args.seed)
    elif args.kind == "line_items":
        df = generate_line_items(args.rows, args.prop_code, args.year, args.month, args.seed)
    else:
        df = generate_comps(args.rows, args.year, args.month, args.seed)

    try:
        write_frame(df, args.output, as_xlsx=args.xlsx)
    except OSError as e:
        print(f"Error writing dataset: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
