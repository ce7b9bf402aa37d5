#!/usr/bin/env python3
"""
Backfill an empty stock ledger from CSV exports of historical documents.

Every document is posted through StockPostingService, so the rebuilt ledger
carries exactly the FIFO costs a live posting would have produced.  Run it
against an empty database; it refuses to touch a ledger that already holds
rows unless --allow-existing is given.

Usage:
    python3 scripts/rebuild_ledger.py --items items.csv --documents docs.csv [options]

items.csv columns:
    code,name,category,uom,unit_weight

documents.csv columns (one row per document line, documents contiguous and
in posting order):
    document_type,document_id,date,item_code,quantity,rate,role,remarks

    GRN / OPENING_STOCK   one row per item; quantity and rate
    DISPATCH              one row per item; quantity
    ADJUSTMENT            one row; role is RECEIPT or ISSUE, rate optional
    MELTING               role scrap|carbon|manganese|silicon|aluminium|calcium
                          with the charged quantity (scrap may be an
                          expression such as 100+200), plus one role=wip row
                          naming the WIP item
    HEAT_TREATMENT        role=wip row (WIP item, consumed quantity) and
                          role=finished row (finished item, bags produced)

Examples:
    # Fresh SQLite ledger
    python3 scripts/rebuild_ledger.py --database-url sqlite:///rebuilt.db \\
        --create-tables --items items.csv --documents docs.csv

    # Validate the files without writing anything
    python3 scripts/rebuild_ledger.py --items items.csv --documents docs.csv --dry-run
"""

from __future__ import annotations

import argparse
import csv
import sys
from collections.abc import Iterator
from datetime import date
from decimal import Decimal
from itertools import groupby
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from stock_config import get_active_config  # noqa: E402
from stock_engines.process_costing import MELTING_INPUT_ROLES  # noqa: E402
from stock_kernel.domain.dtos import ItemCategory, ReferenceType, TransactionType  # noqa: E402
from stock_kernel.exceptions import StockKernelError  # noqa: E402


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Rebuild the stock ledger from historical document exports.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--items", type=Path, required=True, help="Item master CSV")
    parser.add_argument("--documents", type=Path, required=True, help="Document lines CSV")
    parser.add_argument(
        "--config",
        default="default",
        help="Configuration set name (default: default)",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="Database URL (default: the configuration set's URL)",
    )
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create the ledger tables before loading",
    )
    parser.add_argument(
        "--allow-existing",
        action="store_true",
        help="Append even if the ledger already holds transactions",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Parse and group the CSV files, print a summary, write nothing",
    )
    return parser.parse_args()


def _read_csv(path: Path) -> list[dict[str, str]]:
    with path.open(newline="", encoding="utf-8") as fh:
        return [{k.strip(): (v or "").strip() for k, v in row.items()} for row in csv.DictReader(fh)]


def _documents(rows: list[dict[str, str]]) -> Iterator[tuple[str, str, list[dict[str, str]]]]:
    for (doc_type, doc_id), lines in groupby(
        rows, key=lambda r: (r["document_type"].upper(), r["document_id"])
    ):
        yield doc_type, doc_id, list(lines)


def _dec(value: str) -> Decimal | None:
    return Decimal(value) if value else None


def _post_document(posting, items, doc_type: str, doc_id: str, lines: list[dict[str, str]]):
    from stock_services.posting import DispatchLine, ReceiptLine

    doc_date = date.fromisoformat(lines[0]["date"])

    def item_id(line: dict[str, str]) -> int:
        return items.get_by_code(line["item_code"]).id

    if doc_type in (ReferenceType.GRN.value, ReferenceType.OPENING_STOCK.value):
        receipt_lines = [
            ReceiptLine(item_id(l), Decimal(l["quantity"]), Decimal(l["rate"]), l.get("remarks", ""))
            for l in lines
        ]
        if doc_type == ReferenceType.GRN.value:
            return posting.post_grn(doc_id, doc_date, receipt_lines)
        return posting.post_opening_stock(doc_id, doc_date, receipt_lines)

    if doc_type == ReferenceType.DISPATCH.value:
        return posting.post_dispatch(
            doc_id,
            doc_date,
            [DispatchLine(item_id(l), Decimal(l["quantity"]), l.get("remarks", "")) for l in lines],
        )

    if doc_type == ReferenceType.ADJUSTMENT.value:
        line = lines[0]
        return posting.post_adjustment(
            doc_id,
            doc_date,
            item_id(line),
            Decimal(line["quantity"]),
            TransactionType(line["role"].upper()),
            rate=_dec(line.get("rate", "")),
            remarks=line.get("remarks", ""),
        )

    by_role = {l["role"].lower(): l for l in lines}

    if doc_type == ReferenceType.MELTING.value:
        scrap = by_role["scrap"]["quantity"]
        charges = {
            role: Decimal(by_role[role]["quantity"])
            for role in MELTING_INPUT_ROLES
            if role != "scrap" and role in by_role
        }
        try:
            scrap_kwargs = {"scrap_total": Decimal(scrap)}
        except ArithmeticError:
            scrap_kwargs = {"scrap_expression": scrap}
        return posting.post_melting(
            doc_id, doc_date, item_id(by_role["wip"]), **scrap_kwargs, **charges
        )

    if doc_type == ReferenceType.HEAT_TREATMENT.value:
        wip = by_role["wip"]
        finished = by_role["finished"]
        return posting.post_heat_treatment(
            doc_id,
            doc_date,
            item_id(wip),
            Decimal(wip["quantity"]),
            item_id(finished),
            Decimal(finished["quantity"]),
        )

    raise ValueError(f"Unsupported document type {doc_type!r} ({doc_id})")


def main() -> int:
    args = _parse_args()

    config = get_active_config(args.config)
    item_rows = _read_csv(args.items)
    document_rows = _read_csv(args.documents)
    documents = list(_documents(document_rows))

    print(f"  config:    {config.config_id} v{config.version} ({config.checksum[:16]}...)")
    print(f"  items:     {len(item_rows)}")
    print(f"  documents: {len(documents)} ({len(document_rows)} lines)")

    if args.dry_run:
        for doc_type, doc_id, lines in documents:
            print(f"    {doc_type:<16} {doc_id:<12} {len(lines)} line(s)")
        return 0

    from sqlalchemy import func, select

    from stock_kernel.db.engine import create_tables, get_session, init_engine_from_url
    from stock_kernel.domain.clock import DeterministicClock
    from stock_kernel.exceptions import DuplicateItemError
    from stock_kernel.models.stock_transaction import StockTransactionModel
    from stock_kernel.selectors.movement_selector import MovementSelector
    from stock_kernel.services.item_registry import ItemRegistry
    from stock_services.posting import StockPostingService

    init_engine_from_url(args.database_url or config.database.url, echo=config.database.echo)
    if args.create_tables:
        create_tables()

    session = get_session()
    try:
        existing = session.execute(select(func.count(StockTransactionModel.id))).scalar_one()
        if existing and not args.allow_existing:
            print(f"  ERROR: ledger already holds {existing} transactions", file=sys.stderr)
            return 1

        items = ItemRegistry(session)
        for row in item_rows:
            try:
                items.register(
                    code=row["code"],
                    name=row["name"],
                    category=ItemCategory(row["category"]),
                    uom=row.get("uom") or "KG",
                    unit_weight=_dec(row.get("unit_weight", "")),
                )
            except DuplicateItemError:
                print(f"  item {row['code']} already registered, kept")
        session.commit()

        # received_at on each posting record reads the document date, not today
        clock = DeterministicClock()
        posting = StockPostingService(session, config, clock=clock)
        failures = 0
        for doc_type, doc_id, lines in documents:
            try:
                clock.pin_date(date.fromisoformat(lines[0]["date"]))
                result = _post_document(posting, items, doc_type, doc_id, lines)
            except (StockKernelError, KeyError, ValueError, ArithmeticError) as exc:
                failures += 1
                print(f"  FAILED {doc_type} {doc_id}: {exc}", file=sys.stderr)
                continue
            allocation = getattr(result, "allocation", None)
            if allocation is not None and allocation.has_shortfall:
                print(f"  {doc_type} {doc_id}: shortfall {allocation.total_shortfall}")

        print(f"  posted:    {len(documents) - failures}")
        print(f"  failed:    {failures}")
        print(f"  hash:      {MovementSelector(session).canonical_hash()}")
        return 1 if failures else 0
    finally:
        session.close()


if __name__ == "__main__":
    sys.exit(main())
