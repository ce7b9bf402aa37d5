"""
Typed Exception Hierarchy for the Stock Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Upstream modules (GRN, melting, heat treatment, dispatch) translate ledger
failures into form validation messages.  They must be able to tell a bad
quantity from an already-consumed lot without parsing message text, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    StockKernelError (base)
    |
    +-- TransactionError
    |   +-- InvalidTransactionError
    |   +-- TransactionNotFoundError
    |   +-- LotAlreadyConsumedError
    |   +-- LaterIssueExistsError
    |
    +-- LotQueueError
    |   +-- InvalidQuantityError
    |
    +-- AllocationError
    |   +-- ZeroYieldError
    |   +-- ScrapExpressionError
    |
    +-- ItemError
    |   +-- ItemNotFoundError
    |   +-- DuplicateItemError
    |
    +-- ReportError
    |   +-- InvalidDateRangeError
    |
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                      | When Raised
-------------|---------------------------|----------------------------------------
Transaction  | INVALID_TRANSACTION       | qty <= 0, rate < 0, unknown item/ref type
             | TRANSACTION_NOT_FOUND     | No ledger rows for id / document
             | LOT_ALREADY_CONSUMED      | Delete of a receipt whose lot was drawn
             | LATER_ISSUE_EXISTS        | Delete of an issue that later issues follow
-------------|---------------------------|----------------------------------------
Lot queue    | INVALID_QUANTITY          | Non-positive receive/issue quantity
-------------|---------------------------|----------------------------------------
Allocation   | ZERO_YIELD                | Process run with no output quantity
             | INVALID_SCRAP_EXPRESSION  | Scrap weight expression rejected
-------------|---------------------------|----------------------------------------
Item         | ITEM_NOT_FOUND            | Item id/code does not exist
             | DUPLICATE_ITEM            | Item code already registered
-------------|---------------------------|----------------------------------------
Report       | INVALID_DATE_RANGE        | date_to earlier than date_from
-------------|---------------------------|----------------------------------------
Immutability | IMMUTABILITY_VIOLATION    | UPDATE/DELETE of a ledger row

===============================================================================
NOT AN EXCEPTION: SHORTFALL
===============================================================================

Issuing more than the FIFO queue holds is a data-entry problem, not a
programming error.  It is reported as a ``shortfall`` quantity on
``IssueResult`` / ``InputAllocation`` and as a flagged statement row, so the
ledger keeps accepting postings while the discrepancy stays visible.
"""


class StockKernelError(Exception):
    """
    Base exception for all stock kernel errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "STOCK_KERNEL_ERROR"


# Transaction-related exceptions


class TransactionError(StockKernelError):
    """Base exception for ledger transaction errors."""

    code: str = "TRANSACTION_ERROR"


class InvalidTransactionError(TransactionError):
    """
    Transaction input rejected before persistence.

    The caller must fix the input and retry.
    """

    code: str = "INVALID_TRANSACTION"

    def __init__(self, reason: str, field: str | None = None, value: str | None = None):
        self.reason = reason
        self.field = field
        self.value = value
        detail = f" ({field}={value})" if field else ""
        super().__init__(f"Invalid stock transaction: {reason}{detail}")


class TransactionNotFoundError(TransactionError):
    """No ledger rows match the given transaction id or document reference."""

    code: str = "TRANSACTION_NOT_FOUND"

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Stock transaction not found: {reference}")


class LotAlreadyConsumedError(TransactionError):
    """
    Attempted deletion of a receipt whose lot was drawn down by a later issue.

    Permanently rejected -- the caller must post a compensating entry.
    """

    code: str = "LOT_ALREADY_CONSUMED"

    def __init__(
        self,
        transaction_id: int,
        item_id: int,
        original_quantity: str,
        remaining_quantity: str,
    ):
        self.transaction_id = transaction_id
        self.item_id = item_id
        self.original_quantity = original_quantity
        self.remaining_quantity = remaining_quantity
        super().__init__(
            f"Lot from transaction {transaction_id} (item {item_id}) already consumed: "
            f"{remaining_quantity} of {original_quantity} remaining"
        )


class LaterIssueExistsError(TransactionError):
    """
    Attempted deletion of an issue that a later issue of the same item follows.

    The later issue drew its FIFO cost with this one already applied; removing
    the earlier draw would re-price it while its stored amounts stay put.
    """

    code: str = "LATER_ISSUE_EXISTS"

    def __init__(self, transaction_id: int, item_id: int, later_transaction_id: int):
        self.transaction_id = transaction_id
        self.item_id = item_id
        self.later_transaction_id = later_transaction_id
        super().__init__(
            f"Issue {transaction_id} (item {item_id}) is followed by issue "
            f"{later_transaction_id}; post a compensating entry instead"
        )


# Lot queue exceptions


class LotQueueError(StockKernelError):
    """Base exception for FIFO lot queue invariant violations."""

    code: str = "LOT_QUEUE_ERROR"


class InvalidQuantityError(LotQueueError):
    """Receive or issue called with a non-positive quantity or negative rate."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, operation: str, quantity: str):
        self.operation = operation
        self.quantity = quantity
        super().__init__(f"Invalid quantity for {operation}: {quantity}")


# Process allocation exceptions


class AllocationError(StockKernelError):
    """Base exception for process cost allocation errors."""

    code: str = "ALLOCATION_ERROR"


class ZeroYieldError(AllocationError):
    """
    Process run produced no output.

    The caller must resolve this as a scrap/loss write-off before posting;
    it is never retried automatically.
    """

    code: str = "ZERO_YIELD"

    def __init__(self, reference_type: str, reference_id: str, input_count: int):
        self.reference_type = reference_type
        self.reference_id = reference_id
        self.input_count = input_count
        super().__init__(
            f"Zero output quantity for {reference_type} {reference_id} "
            f"({input_count} input(s) consumed)"
        )


class ScrapExpressionError(AllocationError):
    """Scrap weight expression contains disallowed syntax or evaluates badly."""

    code: str = "INVALID_SCRAP_EXPRESSION"

    def __init__(self, expression: str, message: str):
        self.expression = expression
        self.message = message
        super().__init__(f"Invalid scrap weight expression {expression!r}: {message}")


# Item exceptions


class ItemError(StockKernelError):
    """Base exception for item master lookups."""

    code: str = "ITEM_ERROR"


class ItemNotFoundError(ItemError):
    """Item with given id or code was not found."""

    code: str = "ITEM_NOT_FOUND"

    def __init__(self, item_ref: str):
        self.item_ref = item_ref
        super().__init__(f"Item not found: {item_ref}")


class DuplicateItemError(ItemError):
    """Item code is already registered."""

    code: str = "DUPLICATE_ITEM"

    def __init__(self, item_code: str):
        self.item_code = item_code
        super().__init__(f"Item already exists: {item_code}")


# Report exceptions


class ReportError(StockKernelError):
    """Base exception for report request errors."""

    code: str = "REPORT_ERROR"


class InvalidDateRangeError(ReportError):
    """End date is earlier than start date."""

    code: str = "INVALID_DATE_RANGE"

    def __init__(self, date_from: str, date_to: str):
        self.date_from = date_from
        self.date_to = date_to
        super().__init__(
            f"End date {date_to} must be on or after start date {date_from}"
        )


# Immutability


class ImmutabilityViolationError(StockKernelError):
    """Attempted UPDATE or DELETE of an immutable ledger row."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify immutable {entity_type} {entity_id}: {reason}"
        )
