#!/usr/bin/env python3
"""
Print the FIFO stock statement for a date range from an existing database.

Usage:
    python3 scripts/view_stock_statement.py --from 2024-01-01 --to 2024-01-31
    python3 scripts/view_stock_statement.py --from 2024-01-01 --to 2024-01-31 --category WIP
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

W = 132


def _qty(v: Decimal) -> str:
    return f"{v:,.3f}"


def _amt(v: Decimal) -> str:
    return f"{v:,.2f}"


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="FIFO stock statement")
    parser.add_argument("--from", dest="date_from", type=date.fromisoformat, required=True)
    parser.add_argument("--to", dest="date_to", type=date.fromisoformat, required=True)
    parser.add_argument(
        "--category",
        default=None,
        help="RawMaterial, Mineral, WIP or FinishedGood (default: all)",
    )
    parser.add_argument("--config", default="default", help="Configuration set name")
    parser.add_argument("--database-url", default=None, help="Override the configured URL")
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    logging.disable(logging.CRITICAL)

    from stock_config import get_active_config
    from stock_kernel.db.engine import get_session, init_engine_from_url
    from stock_kernel.exceptions import StockKernelError
    from stock_services.stock_report_facade import StockReportFacade

    config = get_active_config(args.config)
    try:
        init_engine_from_url(args.database_url or config.database.url, echo=False)
    except Exception as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 1

    session = get_session()
    try:
        try:
            statement = StockReportFacade(session, config).stock_statement(
                args.date_from, args.date_to, category=args.category
            )
        except (StockKernelError, ValueError) as exc:
            print(f"  ERROR: {exc}", file=sys.stderr)
            return 1

        if not statement.rows:
            print("  No items found.")
            return 0

        print()
        print("=" * W)
        print(f"STOCK STATEMENT  {args.date_from} .. {args.date_to}".center(W))
        print("=" * W)
        header = (
            f"  {'Item':<24} {'Opening':>14} {'Value':>14} {'Receipts':>14} {'Value':>14}"
            f" {'Issues':>14} {'Value':>14} {'Closing':>14} {'Rate':>10}"
        )
        print(header)
        print(f"  {'-' * (len(header) - 2)}")

        for row in statement.rows:
            flag = "" if row.status.value == "OK" else f"  [{row.status.value}]"
            print(
                f"  {row.item_name[:24]:<24}"
                f" {_qty(row.opening.quantity):>14} {_amt(row.opening.amount):>14}"
                f" {_qty(row.receipts.quantity):>14} {_amt(row.receipts.amount):>14}"
                f" {_qty(row.issues.quantity):>14} {_amt(row.issues.amount):>14}"
                f" {_qty(row.closing.quantity):>14} {_amt(row.closing.rate):>10}{flag}"
            )

        t = statement.totals
        print(f"  {'-' * (len(header) - 2)}")
        print(
            f"  {'TOTAL':<24}"
            f" {_qty(t.opening.quantity):>14} {_amt(t.opening.amount):>14}"
            f" {_qty(t.receipts.quantity):>14} {_amt(t.receipts.amount):>14}"
            f" {_qty(t.issues.quantity):>14} {_amt(t.issues.amount):>14}"
            f" {_qty(t.closing.quantity):>14} {_amt(t.closing.rate):>10}"
        )
        print()

        for warning in statement.warnings:
            print(f"  WARNING: {warning}")
        print(f"  Items: {t.item_count}   Flagged: {t.flagged_count}")
        print()
        return 0

    finally:
        session.close()


if __name__ == "__main__":
    sys.exit(main())
