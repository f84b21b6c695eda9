"""Models package — inventory inputs shared by connectors and analyzers."""
from stockpilot.models.inventory import (
    DeliveryLine,
    ExternalStockRow,
    SizeKey,
    StockObservation,
    StockSnapshot,
)

__all__ = [
    "DeliveryLine",
    "ExternalStockRow",
    "SizeKey",
    "StockObservation",
    "StockSnapshot",
]
