"""
Base connector — abstract interfaces for all inventory data sources.

Connectors are the bridge between StockPilot and the systems that hold
purchase-order deliveries, daily stock snapshots and point-of-sale balances.
They normalize whatever the source returns into StockPilot's models.

A connector subclasses ``BaseConnector`` and one or more reader interfaces:

- ``DeliveryLedgerReader``: append-only purchase-order delivery lines.
- ``StockSnapshotReader``: daily per-size stock observations.
- ``PosBalanceReader``: EAN -> quantity from a POS channel.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from stockpilot.config import CompanyConfig
    from stockpilot.models.inventory import DeliveryLine, StockObservation, StockSnapshot


class BaseConnector(ABC):
    """Abstract base class for all data connectors.

    To create a new connector, subclass this together with the reader
    interfaces it serves and implement:
    - `name`: Unique connector identifier.
    - `validate_credentials()`: Check if credentials are valid.
    - The reader methods.

    Example::

        class MyWarehouseConnector(BaseConnector, StockSnapshotReader):
            name = "my_warehouse"

            async def fetch_stock(self, company, as_of=None) -> StockSnapshot:
                ...

            async def fetch_stock_history(self, company, product_number, window):
                ...

            async def validate_credentials(self) -> bool:
                ...
    """

    name: str = "base"
    description: str = "Base connector"

    def __init__(self, credentials: dict[str, Any] | None = None, **options: Any) -> None:
        self.credentials = credentials or {}
        self.options = options

    @abstractmethod
    async def validate_credentials(self) -> bool:
        """Validate that credentials are correct and the source is accessible."""
        ...

    async def close(self) -> None:
        """Release network or database resources. No-op by default."""

    async def health_check(self) -> dict[str, Any]:
        """Check connector health and connectivity."""
        try:
            valid = await self.validate_credentials()
            return {"connector": self.name, "healthy": valid, "error": None}
        except Exception as e:
            return {"connector": self.name, "healthy": False, "error": str(e)}


class DeliveryLedgerReader(ABC):
    """Source of purchase-order delivery lines."""

    @abstractmethod
    async def fetch_deliveries(
        self,
        company: CompanyConfig,
        product_number: str | None = None,
    ) -> list[DeliveryLine]:
        """Return every delivery line for the company (optionally one product).

        Order is unspecified; the FIFO calculator re-sorts.

        Raises:
            UpstreamFetchError: The ledger could not be read.
        """
        ...


class StockSnapshotReader(ABC):
    """Source of daily per-size stock observations."""

    @abstractmethod
    async def fetch_stock(
        self,
        company: CompanyConfig,
        as_of: date | None = None,
    ) -> StockSnapshot:
        """Return the snapshot for the latest date, or the latest date <= ``as_of``.

        Raises:
            UpstreamFetchError: The snapshot store could not be read.
        """
        ...

    @abstractmethod
    async def fetch_stock_history(
        self,
        company: CompanyConfig,
        product_number: str,
        window: int | None,
    ) -> list[StockObservation]:
        """Return every observation of one product within the last ``window`` days.

        ``window=None`` means all available history.
        """
        ...


class PosBalanceReader(ABC):
    """Point-of-sale inventory balances keyed by EAN."""

    @abstractmethod
    async def fetch_pos_balances(self, company: CompanyConfig) -> dict[str, int]:
        """Return EAN -> on-hand quantity.

        Raises:
            UpstreamFetchError: The POS API could not be read.
        """
        ...
