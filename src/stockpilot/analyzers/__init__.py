"""
StockPilot analyzers — pure computation modules.

These engines do no I/O: connectors fetch the inputs, analyzers turn them
into valuations, reconciliations and histories.
"""

from stockpilot.analyzers.fifo import (
    AgeGroup,
    FifoCalculator,
    FifoLayer,
    SizeValuation,
    calculate_size_valuation,
    classify_age,
)
from stockpilot.analyzers.purchase_history import (
    ProductPurchaseHistory,
    PurchaseHistoryAggregator,
)
from stockpilot.analyzers.reconciliation import (
    ComparisonResult,
    DiscrepancyReason,
    Partition,
    ReconciliationComparator,
    ReconciliationRow,
    compare_valuation,
    generate_report,
)
from stockpilot.analyzers.stock_history import (
    StockHistory,
    aggregate_stock_history,
    parse_history_window,
)
from stockpilot.analyzers.valuation import (
    InventoryValuationAggregator,
    SizeError,
    ValuationResult,
    aggregate_valuation,
)

__all__ = [
    "AgeGroup",
    "ComparisonResult",
    "DiscrepancyReason",
    "FifoCalculator",
    "FifoLayer",
    "InventoryValuationAggregator",
    "Partition",
    "ProductPurchaseHistory",
    "PurchaseHistoryAggregator",
    "ReconciliationComparator",
    "ReconciliationRow",
    "SizeError",
    "SizeValuation",
    "StockHistory",
    "ValuationResult",
    "aggregate_stock_history",
    "aggregate_valuation",
    "calculate_size_valuation",
    "classify_age",
    "compare_valuation",
    "generate_report",
    "parse_history_window",
]
