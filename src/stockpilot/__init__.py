"""
StockPilot — FIFO inventory valuation and stock reconciliation.

Value what is on the shelf at what it actually cost.
"""

__version__ = "0.1.0"
__all__ = ["StockPilot"]

from stockpilot.pilot import StockPilot  # noqa: E402
