"""
Module: stock_services
Responsibility:
    Stateful orchestration over the kernel and the pure engines: ledger
    replay, lot snapshots, process cost allocation, FIFO stock statements,
    the report facade and the producer-facing posting service.

Architecture position:
    Services -- may import stock_kernel, stock_engines and stock_config.
    Nothing in stock_kernel or stock_engines imports from here.

Usage:
    from stock_services import StockPostingService, StockReportFacade
"""

from stock_services.cost_allocator import AllocationResult, InputAllocation, ProcessCostAllocator
from stock_services.posting import DispatchLine, PostingResult, ReceiptLine, StockPostingService
from stock_services.replay_service import ReplayEngine, ReplayResult
from stock_services.snapshot_service import LotSnapshot, SnapshotService
from stock_services.stock_report_facade import (
    ConsumptionDocument,
    ConsumptionLine,
    FinishedGoodsRow,
    MovementReportRow,
    StockPositionRow,
    StockReportFacade,
)
from stock_services.valuation_report_service import StockStatement, ValuationReportService

__all__ = [
    "AllocationResult",
    "ConsumptionDocument",
    "ConsumptionLine",
    "DispatchLine",
    "FinishedGoodsRow",
    "InputAllocation",
    "LotSnapshot",
    "MovementReportRow",
    "PostingResult",
    "ProcessCostAllocator",
    "ReceiptLine",
    "ReplayEngine",
    "ReplayResult",
    "SnapshotService",
    "StockPositionRow",
    "StockPostingService",
    "StockReportFacade",
    "StockStatement",
    "ValuationReportService",
]
