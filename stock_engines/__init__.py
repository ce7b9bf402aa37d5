"""
Module: stock_engines
Responsibility:
    Re-exports the pure calculation engines: the FIFO lot queue, statement
    row assembly, process-costing variants and the scrap-weight expression
    evaluator.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May import stock_kernel.db.types, stock_kernel.domain,
    stock_kernel.exceptions and stock_kernel.logging_config only.
    MUST NOT import stock_services.

Invariants enforced:
    - Purity: engines never read the clock; dates are passed in.
    - Decimal-only arithmetic with the kernel's rounding policy.
    - Determinism: identical inputs always produce identical outputs.

Usage:
    from stock_engines import FIFOLotQueue
    from stock_engines.process_costing import MeltingProcess
"""

from stock_engines.lot_queue import FIFOLotQueue, IssueResult, Lot, LotDraw, QueueState
from stock_engines.process_costing import (
    MELTING_INPUT_ROLES,
    HeatTreatmentProcess,
    MeltingProcess,
    ProcessInput,
    ProcessRun,
)
from stock_engines.scrap_expression import evaluate_scrap_expression, validate_scrap_expression
from stock_engines.statement import (
    DEFAULT_EPSILON,
    Position,
    RowStatus,
    StatementRow,
    StatementTotals,
    build_statement_row,
    error_row,
    summarize,
)

__all__ = [
    "DEFAULT_EPSILON",
    "FIFOLotQueue",
    "HeatTreatmentProcess",
    "IssueResult",
    "Lot",
    "LotDraw",
    "MELTING_INPUT_ROLES",
    "MeltingProcess",
    "Position",
    "ProcessInput",
    "ProcessRun",
    "QueueState",
    "RowStatus",
    "StatementRow",
    "StatementTotals",
    "build_statement_row",
    "error_row",
    "evaluate_scrap_expression",
    "summarize",
    "validate_scrap_expression",
]
