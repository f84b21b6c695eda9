"""
StockPilot — Main orchestrator.

The StockPilot class is the top-level entry point that wires connectors,
analyzers and the result cache together and exposes the query interface
used by the CLI and any API layer.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Any

from stockpilot.analyzers.purchase_history import ProductPurchaseHistory, PurchaseHistoryAggregator
from stockpilot.analyzers.reconciliation import (
    ComparisonResult,
    ReconciliationComparator,
)
from stockpilot.analyzers.reconciliation import generate_report as render_report
from stockpilot.analyzers.stock_history import (
    StockHistory,
    aggregate_stock_history,
    parse_history_window,
)
from stockpilot.analyzers.valuation import InventoryValuationAggregator, ValuationResult
from stockpilot.cache import CacheKey, ResultCache
from stockpilot.config import CompanyConfig, StockPilotConfig
from stockpilot.connectors.registry import ConnectorRegistry
from stockpilot.exceptions import ConfigurationError, InputValidationError
from stockpilot.models.inventory import ExternalStockRow

logger = logging.getLogger("stockpilot")


def _require_product_number(product_number: str | None) -> str:
    if not product_number or not product_number.strip():
        raise InputValidationError("productNumber parameter is required", field="product_number")
    return product_number.strip()


def _coerce_date(value: date | str | None) -> date | None:
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise InputValidationError(f"Invalid date {value!r}, expected YYYY-MM-DD", field="date") from None


@dataclass
class StockPilot:
    """Top-level orchestrator for StockPilot.

    Usage::

        from stockpilot import StockPilot

        pilot = StockPilot.from_config("stockpilot.yaml")
        valuation = await pilot.calculate_valuation("varg")
        print(valuation.summary.total_value)

    StockPilot coordinates:
    - **Connectors**: delivery ledger, stock snapshots, POS balances.
    - **Analyzers**: FIFO valuation, reconciliation, purchase and stock history.
    - **Cache**: per-company results with a TTL and single-flight refresh.
    """

    config: StockPilotConfig
    connector_registry: ConnectorRegistry = field(default_factory=ConnectorRegistry)
    cache: ResultCache | None = None

    def __post_init__(self) -> None:
        if self.cache is None and self.config.cache.enabled:
            self.cache = ResultCache(ttl_seconds=self.config.cache.ttl_seconds)

    @classmethod
    def from_config(cls, config_path: str | None = None, **overrides: Any) -> StockPilot:
        """Create a StockPilot instance from a config file or keyword arguments."""
        config = StockPilotConfig.load(config_path, **overrides)
        instance = cls(config=config)
        instance._setup()
        return instance

    def _setup(self) -> None:
        """Initialize connectors from config."""
        self.connector_registry = ConnectorRegistry()
        self.connector_registry.auto_discover(self.config)
        logger.info(
            "StockPilot initialized with %d connectors",
            len(self.connector_registry),
        )

    async def close(self) -> None:
        await self.connector_registry.close()

    async def health_check(self) -> list[dict[str, Any]]:
        """Health of every registered connector."""
        return list(await asyncio.gather(
            *(c.health_check() for c in self.connector_registry.active_connectors)
        ))

    # ------------------------------------------------------------------
    # Valuation
    # ------------------------------------------------------------------

    async def calculate_valuation(
        self,
        company: str,
        pos_balances: dict[str, int] | None = None,
        *,
        product_number: str | None = None,
        force: bool = False,
    ) -> ValuationResult:
        """FIFO valuation of a company, optionally narrowed to one product.

        The full company is valued and cached; a product filter is applied
        to the cached result. ``force`` recomputes. Passing ``pos_balances``
        uses them instead of fetching and bypasses the cache.

        Raises:
            InputValidationError: Unknown company or blank product number.
            UpstreamFetchError: The ledger or snapshot could not be read.
        """
        company_config = self.config.get_company(company)
        if product_number is not None:
            product_number = _require_product_number(product_number)

        async def compute() -> ValuationResult:
            return await self._compute_valuation(company_config, pos_balances)

        if self.cache is None or pos_balances is not None:
            result = await compute()
        else:
            entry = await self.cache.get_or_compute(
                CacheKey(company_config.id, None, "valuation"), compute, force=force
            )
            result = entry.value

        return result.for_product(product_number) if product_number else result

    async def _compute_valuation(
        self,
        company: CompanyConfig,
        pos_balances: dict[str, int] | None,
    ) -> ValuationResult:
        ledger = self.connector_registry.ledger_reader
        snapshots = self.connector_registry.snapshot_reader

        logger.info("Calculating FIFO valuation for %s", company.id)
        deliveries, snapshot, balances = await asyncio.gather(
            ledger.fetch_deliveries(company),
            snapshots.fetch_stock(company),
            self._pos_balances(company, pos_balances),
        )

        aggregator = InventoryValuationAggregator(
            fresh_days=self.config.valuation.fresh_days,
            aging_days=self.config.valuation.aging_days,
        )
        return aggregator.aggregate(deliveries, snapshot, balances)

    async def _pos_balances(
        self,
        company: CompanyConfig,
        supplied: dict[str, int] | None,
    ) -> dict[str, int] | None:
        if supplied is not None:
            return supplied
        return await self.fetch_pos_balances(company)

    async def fetch_pos_balances(self, company: CompanyConfig) -> dict[str, int] | None:
        """Best-effort POS balances: ``None`` when absent, failing or too slow."""
        try:
            reader = self.connector_registry.pos_reader_for(company)
        except ConfigurationError as e:
            logger.warning("POS balances unavailable for %s: %s", company.id, e)
            return None
        if reader is None:
            return None

        timeout = self.config.valuation.pos_timeout_seconds
        try:
            return await asyncio.wait_for(reader.fetch_pos_balances(company), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("POS balance fetch for %s timed out after %.1fs", company.id, timeout)
        except Exception as e:
            logger.warning("Failed to fetch POS balances for %s (continuing without): %s", company.id, e)
        return None

    # ------------------------------------------------------------------
    # Histories
    # ------------------------------------------------------------------

    async def fetch_purchase_history(self, company: str, product_number: str) -> ProductPurchaseHistory:
        """Every delivery of one product, grouped by variant and size."""
        company_config = self.config.get_company(company)
        product_number = _require_product_number(product_number)

        async def compute() -> ProductPurchaseHistory:
            deliveries, snapshot = await asyncio.gather(
                self.connector_registry.ledger_reader.fetch_deliveries(company_config, product_number),
                self.connector_registry.snapshot_reader.fetch_stock(company_config),
            )
            return PurchaseHistoryAggregator().build(product_number, deliveries, snapshot)

        if self.cache is None:
            return await compute()
        entry = await self.cache.get_or_compute(
            CacheKey(company_config.id, product_number, "purchases"), compute
        )
        return entry.value

    async def fetch_stock_history(
        self,
        company: str,
        product_number: str,
        window: str | int = "30",
        variant_id: int | None = None,
    ) -> StockHistory:
        """Daily stock series for a product over 7, 30, 90 days or ``"all"``."""
        company_config = self.config.get_company(company)
        product_number = _require_product_number(product_number)
        days = parse_history_window(window)

        async def compute() -> list[Any]:
            return await self.connector_registry.snapshot_reader.fetch_stock_history(
                company_config, product_number, days
            )

        if self.cache is None:
            observations = await compute()
        else:
            entry = await self.cache.get_or_compute(
                CacheKey(company_config.id, product_number, f"history:{days or 'all'}"), compute
            )
            observations = entry.value

        return aggregate_stock_history(observations, variant_id)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def run_comparison(
        self,
        company: str,
        external_rows: Iterable[ExternalStockRow],
        date: date | str | None = None,
    ) -> ComparisonResult:
        """Compare the FIFO valuation on ``date`` (default: latest) with an extract.

        Only deliveries created on or before ``date`` count, and the stock
        snapshot is the latest one on or before it.
        """
        company_config = self.config.get_company(company)
        as_of_date = _coerce_date(date)
        rows = list(external_rows)

        deliveries, snapshot = await asyncio.gather(
            self.connector_registry.ledger_reader.fetch_deliveries(company_config),
            self.connector_registry.snapshot_reader.fetch_stock(company_config, as_of=as_of_date),
        )

        as_of: datetime | None = None
        if as_of_date is not None:
            as_of = datetime.combine(as_of_date, time.max, tzinfo=timezone.utc)
            deliveries = [d for d in deliveries if d.created_at <= as_of]

        aggregator = InventoryValuationAggregator(
            fresh_days=self.config.valuation.fresh_days,
            aging_days=self.config.valuation.aging_days,
        )
        valuation = aggregator.aggregate(deliveries, snapshot, as_of=as_of)

        comparator = ReconciliationComparator(
            value_tolerance=self.config.reconciliation.value_tolerance,
            significant_diff_percent=self.config.reconciliation.significant_diff_percent,
        )
        return comparator.compare(
            valuation,
            rows,
            company=company_config.id,
            comparison_date=as_of_date or snapshot.as_of,
        )

    def generate_report(self, comparison: ComparisonResult) -> str:
        """CSV report of a comparison (see ``analyzers.reconciliation.generate_report``)."""
        return render_report(comparison)
