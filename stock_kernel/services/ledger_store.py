"""
LedgerStore -- append-only persistence for stock transactions.

Responsibility:
    The single write path into ``stock_transactions``.  Validates producer
    input, assigns the monotonic id, and answers ordered history queries for
    replay.  Also owns the one sanctioned delete: removing every row of a
    document whose lots nothing has drawn from yet.

Architecture position:
    Kernel > Services.  Called by ProcessCostAllocator, StockPostingService,
    SnapshotService and the replay engine (reads).

Invariants enforced:
    L1 -- Replay order is (transaction_date, id) ascending; query() returns
          rows in exactly that order.
    L2 -- quantity > 0 and rate >= 0 after rounding; the reference type
          must be allowed to carry the transaction type.
    L3 -- amount is stored as given (or round_amount(quantity * rate) when
          the producer did not compute one) and never recomputed.
    L4 -- Rows are never updated.  remove_last() refuses to delete a
          receipt whose lot a later issue has drawn from, or an issue
          that another document's later issue follows.
    L5 -- Snapshots are derived data: any append or delete dated on or
          before a snapshot's date removes that snapshot.

Failure modes:
    - InvalidTransactionError: bad quantity, rate, verb, reference type,
      reference id, or unknown / inactive item.
    - TransactionNotFoundError: get() of an unknown id, remove_last() of a
      document with no rows.
    - LotAlreadyConsumedError: remove_last() of a consumed receipt.
    - LaterIssueExistsError: remove_last() of an issue with later issues.

Audit relevance:
    Every append and compensating delete is logged with the document
    reference so the ledger history can be reconstructed from logs alone.
"""

from collections import deque
from collections.abc import Iterable, Mapping
from datetime import date
from decimal import Decimal, InvalidOperation

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from stock_kernel.db.immutability import compensating_delete
from stock_kernel.db.types import ZERO, round_amount, round_quantity, round_rate, to_decimal
from stock_kernel.domain.dtos import (
    DEFAULT_REFERENCE_RULES,
    ReferenceType,
    StockTransaction,
    StockTransactionInput,
    TransactionType,
)
from stock_kernel.exceptions import (
    InvalidTransactionError,
    LaterIssueExistsError,
    LotAlreadyConsumedError,
    TransactionNotFoundError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.item import ItemModel
from stock_kernel.models.lot_snapshot import LotSnapshotModel
from stock_kernel.models.stock_transaction import StockTransactionModel
from stock_kernel.services.base import BaseService
from stock_kernel.services.item_locks import ItemLockRegistry, get_item_lock_registry

logger = get_logger("services.ledger_store")


class LedgerStore(BaseService):
    """
    Append-only stock transaction log.

    Contract:
        append() flushes; the caller commits.  Queries return frozen
        ``StockTransaction`` DTOs.

    Non-goals:
        - Does NOT compute costs.  FIFO lives in stock_engines.lot_queue.
        - Does NOT update rows.  Corrections are new documents.
    """

    def __init__(
        self,
        session: Session,
        reference_rules: Mapping[ReferenceType, frozenset[TransactionType]] | None = None,
        lock_registry: ItemLockRegistry | None = None,
    ):
        super().__init__(session)
        self._rules = reference_rules if reference_rules is not None else DEFAULT_REFERENCE_RULES
        self._locks = lock_registry or get_item_lock_registry()

    # -----------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------

    def append(self, tx: StockTransactionInput) -> StockTransaction:
        """
        Validate and persist one ledger row.

        Returns:
            The stored row, with its assigned id.

        Raises:
            InvalidTransactionError: Input rejected; nothing was written.
        """
        transaction_type, reference_type = self._validate_verbs(tx)
        quantity, rate, amount = self._validate_figures(tx)
        reference_id = str(tx.reference_id or "").strip()
        if not reference_id:
            raise InvalidTransactionError("reference_id is required", "reference_id", "")

        with self._locks.hold([tx.item_id], self.session):
            item = self.session.get(ItemModel, tx.item_id)
            if item is None:
                raise InvalidTransactionError("unknown item", "item_id", str(tx.item_id))
            if not item.is_active:
                raise InvalidTransactionError("item is inactive", "item_id", str(tx.item_id))

            model = StockTransactionModel(
                transaction_date=tx.transaction_date,
                transaction_type=transaction_type.value,
                item_id=tx.item_id,
                quantity=quantity,
                rate=rate,
                amount=amount,
                reference_type=reference_type.value,
                reference_id=reference_id,
                remarks=tx.remarks or "",
            )
            self.session.add(model)
            self.session.flush()

            invalidated = self.invalidate_snapshots(tx.item_id, tx.transaction_date)

        logger.info(
            "ledger_append_completed",
            extra={
                "transaction_id": model.id,
                "item_id": tx.item_id,
                "transaction_type": transaction_type.value,
                "reference_type": reference_type.value,
                "reference_id": reference_id,
                "quantity": str(quantity),
                "amount": str(amount),
                "snapshots_invalidated": invalidated,
            },
        )
        return model.to_dto()

    def remove_last(
        self,
        reference_type: ReferenceType | str,
        reference_id: str,
    ) -> list[StockTransaction]:
        """
        Delete every row of one document.

        A RECEIPT may only be removed while its lot is untouched: replaying
        the item's full history must leave the lot's remaining quantity
        equal to its original quantity.
        An ISSUE may only be removed while no other document has issued the
        same item after it; the later draw was priced with this one applied.

        Raises:
            TransactionNotFoundError: The document has no rows.
            LotAlreadyConsumedError: A receipt of the document was drawn.
            LaterIssueExistsError: A later issue follows one of the document's issues.
        """
        reference_type = ReferenceType(reference_type)
        models = self._reference_models(reference_type, reference_id)
        if not models:
            raise TransactionNotFoundError(f"{reference_type.value}:{reference_id}")

        item_ids = sorted({m.item_id for m in models})
        document_ids = {m.id for m in models}
        with self._locks.hold(item_ids, self.session):
            for item_id in item_ids:
                history = self.query(item_id)
                receipts = [
                    m for m in models
                    if m.item_id == item_id and m.transaction_type == TransactionType.RECEIPT.value
                ]
                self._refuse_consumed_receipts(history, receipts, reference_type, reference_id)
                self._refuse_followed_issues(history, document_ids, reference_type, reference_id)

            removed = [m.to_dto() for m in models]
            with compensating_delete(self.session):
                for model in models:
                    self.session.delete(model)
                self.session.flush()

            for item_id in item_ids:
                earliest = min(t.transaction_date for t in removed if t.item_id == item_id)
                self.invalidate_snapshots(item_id, earliest)

        logger.info(
            "ledger_remove_completed",
            extra={
                "reference_type": reference_type.value,
                "reference_id": reference_id,
                "removed_count": len(removed),
                "transaction_ids": [t.id for t in removed],
            },
        )
        return removed

    def invalidate_snapshots(self, item_id: int, from_date: date) -> int:
        """Delete the item's snapshots dated on or after ``from_date``."""
        result = self.session.execute(
            delete(LotSnapshotModel)
            .where(LotSnapshotModel.item_id == item_id)
            .where(LotSnapshotModel.snapshot_date >= from_date)
        )
        count = result.rowcount or 0
        if count:
            logger.info(
                "snapshots_invalidated",
                extra={"item_id": item_id, "from_date": from_date, "count": count},
            )
        return count

    # -----------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------

    def query(
        self,
        item_id: int,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> list[StockTransaction]:
        """One item's rows in replay order, optionally bounded by date (inclusive)."""
        stmt = select(StockTransactionModel).where(StockTransactionModel.item_id == item_id)
        if date_from is not None:
            stmt = stmt.where(StockTransactionModel.transaction_date >= date_from)
        if date_to is not None:
            stmt = stmt.where(StockTransactionModel.transaction_date <= date_to)
        stmt = stmt.order_by(StockTransactionModel.transaction_date, StockTransactionModel.id)
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]

    def get(self, transaction_id: int) -> StockTransaction:
        model = self.session.get(StockTransactionModel, transaction_id)
        if model is None:
            raise TransactionNotFoundError(str(transaction_id))
        return model.to_dto()

    def list_for_reference(
        self,
        reference_type: ReferenceType | str,
        reference_id: str,
    ) -> list[StockTransaction]:
        return [
            m.to_dto()
            for m in self._reference_models(ReferenceType(reference_type), reference_id)
        ]

    # -----------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------

    def _refuse_consumed_receipts(
        self,
        history: list[StockTransaction],
        receipts: list[StockTransactionModel],
        reference_type: ReferenceType,
        reference_id: str,
    ) -> None:
        if not receipts:
            return
        remaining = remaining_receipt_quantities(history)
        for receipt in receipts:
            left = remaining.get(receipt.id, receipt.quantity)
            if left < receipt.quantity:
                logger.warning(
                    "ledger_remove_refused",
                    extra={
                        "transaction_id": receipt.id,
                        "item_id": receipt.item_id,
                        "reference_type": reference_type.value,
                        "reference_id": reference_id,
                        "remaining_quantity": str(left),
                    },
                )
                raise LotAlreadyConsumedError(
                    transaction_id=receipt.id,
                    item_id=receipt.item_id,
                    original_quantity=str(receipt.quantity),
                    remaining_quantity=str(left),
                )

    def _refuse_followed_issues(
        self,
        history: list[StockTransaction],
        document_ids: set[int],
        reference_type: ReferenceType,
        reference_id: str,
    ) -> None:
        """An issue of the document must not be followed by another document's issue."""
        earliest_issue: StockTransaction | None = None
        for tx in history:
            if tx.id in document_ids:
                if earliest_issue is None and not tx.is_receipt:
                    earliest_issue = tx
                continue
            if earliest_issue is not None and not tx.is_receipt:
                logger.warning(
                    "ledger_remove_refused",
                    extra={
                        "transaction_id": earliest_issue.id,
                        "item_id": earliest_issue.item_id,
                        "reference_type": reference_type.value,
                        "reference_id": reference_id,
                        "later_transaction_id": tx.id,
                    },
                )
                raise LaterIssueExistsError(
                    transaction_id=earliest_issue.id,
                    item_id=earliest_issue.item_id,
                    later_transaction_id=tx.id,
                )

    def _reference_models(
        self,
        reference_type: ReferenceType,
        reference_id: str,
    ) -> list[StockTransactionModel]:
        return list(
            self.session.execute(
                select(StockTransactionModel)
                .where(StockTransactionModel.reference_type == reference_type.value)
                .where(StockTransactionModel.reference_id == str(reference_id))
                .order_by(StockTransactionModel.id)
            ).scalars()
        )

    def _validate_verbs(
        self,
        tx: StockTransactionInput,
    ) -> tuple[TransactionType, ReferenceType]:
        try:
            transaction_type = TransactionType(tx.transaction_type)
        except ValueError:
            raise InvalidTransactionError(
                "unknown transaction type", "transaction_type", str(tx.transaction_type)
            ) from None
        try:
            reference_type = ReferenceType(tx.reference_type)
        except ValueError:
            raise InvalidTransactionError(
                "unknown reference type", "reference_type", str(tx.reference_type)
            ) from None

        allowed = self._rules.get(reference_type, frozenset())
        if transaction_type not in allowed:
            raise InvalidTransactionError(
                f"{reference_type.value} cannot carry a {transaction_type.value}",
                "transaction_type",
                transaction_type.value,
            )
        return transaction_type, reference_type

    def _validate_figures(
        self,
        tx: StockTransactionInput,
    ) -> tuple[Decimal, Decimal, Decimal]:
        try:
            quantity = round_quantity(tx.quantity)
            rate = round_rate(tx.rate)
            amount = (
                round_amount(tx.amount)
                if tx.amount is not None
                else round_amount(to_decimal(tx.quantity) * to_decimal(tx.rate))
            )
        except (InvalidOperation, TypeError, ValueError):
            raise InvalidTransactionError(
                "quantity, rate and amount must be numeric", "quantity", str(tx.quantity)
            ) from None

        if not quantity.is_finite() or quantity <= ZERO:
            raise InvalidTransactionError("quantity must be positive", "quantity", str(tx.quantity))
        if not rate.is_finite() or rate < ZERO:
            raise InvalidTransactionError("rate must not be negative", "rate", str(tx.rate))
        if amount < ZERO:
            raise InvalidTransactionError("amount must not be negative", "amount", str(amount))
        return quantity, rate, amount


def remaining_receipt_quantities(
    transactions: Iterable[StockTransaction],
) -> dict[int, Decimal]:
    """
    Quantity left in each receipt's lot after FIFO-consuming ``transactions``.

    ``transactions`` must be one item's rows in replay order.  Issues beyond
    the available stock draw nothing (shortfall), matching the lot queue.
    """
    remaining: dict[int, Decimal] = {}
    open_lots: deque[int] = deque()
    for tx in transactions:
        if tx.is_receipt:
            remaining[tx.id] = tx.quantity
            open_lots.append(tx.id)
            continue
        needed = tx.quantity
        while needed > ZERO and open_lots:
            head = open_lots[0]
            take = min(needed, remaining[head])
            remaining[head] -= take
            needed -= take
            if remaining[head] == ZERO:
                open_lots.popleft()
    return remaining

