"""
In-memory connector — fixtures, offline runs and tests.

Serves every reader interface from plain Python data, optionally loaded from
a YAML (or JSON) fixture file::

    varg:
      deliveries:
        - {id: d1, created_at: 2024-01-01T00:00:00, product_number: P1,
           variant_id: 1, size_number: "42", quantity: 5, unit_cost: 100}
      stock:
        - {product_number: P1, variant_id: 1, size_number: "42",
           physical_quantity: 3, observed_at: 2024-06-01}
      pos_balances:
        "7350000000017": 2
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from pathlib import Path
from typing import Any

import yaml

from stockpilot.config import CompanyConfig
from stockpilot.connectors.base import (
    BaseConnector,
    DeliveryLedgerReader,
    PosBalanceReader,
    StockSnapshotReader,
)
from stockpilot.exceptions import UpstreamFetchError
from stockpilot.models.inventory import DeliveryLine, StockObservation, StockSnapshot

logger = logging.getLogger("stockpilot.connectors.memory")


class MemoryConnector(BaseConnector, DeliveryLedgerReader, StockSnapshotReader, PosBalanceReader):
    """Serve deliveries, snapshots and POS balances from memory.

    Usage::

        connector = MemoryConnector(
            deliveries={"varg": [DeliveryLine(...)]},
            observations={"varg": [StockObservation(...)]},
        )
    """

    name = "memory"
    description = "In-memory deliveries, stock and POS balances (fixtures)"

    def __init__(
        self,
        credentials: dict[str, Any] | None = None,
        deliveries: dict[str, list[DeliveryLine]] | None = None,
        observations: dict[str, list[StockObservation]] | None = None,
        pos_balances: dict[str, dict[str, int]] | None = None,
        **options: Any,
    ) -> None:
        super().__init__(credentials, **options)
        self.deliveries = deliveries or {}
        self.observations = observations or {}
        self.pos_balances = pos_balances or {}

        file_path = options.get("file_path") or (credentials or {}).get("file_path")
        if file_path:
            self.load_file(file_path)

    def load_file(self, path: str | Path) -> None:
        """Load a fixture file keyed by company id."""
        path = Path(path)
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        for company_id, payload in data.items():
            payload = payload or {}
            self.deliveries[company_id] = [
                DeliveryLine(**row) for row in payload.get("deliveries", [])
            ]
            self.observations[company_id] = [
                StockObservation(**row) for row in payload.get("stock", [])
            ]
            if "pos_balances" in payload:
                self.pos_balances[company_id] = {
                    str(ean): int(qty) for ean, qty in (payload["pos_balances"] or {}).items()
                }
        logger.info("Loaded fixtures for %d companies from %s", len(data), path.name)

    async def validate_credentials(self) -> bool:
        return True

    async def fetch_deliveries(
        self,
        company: CompanyConfig,
        product_number: str | None = None,
    ) -> list[DeliveryLine]:
        lines = self.deliveries.get(company.id, [])
        if product_number:
            lines = [d for d in lines if d.product_number == product_number]
        return list(lines)

    async def fetch_stock(
        self,
        company: CompanyConfig,
        as_of: date | None = None,
    ) -> StockSnapshot:
        observations = self.observations.get(company.id, [])
        dates = {o.observed_at for o in observations if as_of is None or o.observed_at <= as_of}
        if not dates:
            return StockSnapshot(observations=[], as_of=None, source=self.name)

        latest = max(dates)
        return StockSnapshot(
            observations=[o for o in observations if o.observed_at == latest],
            as_of=latest,
            source=self.name,
        )

    async def fetch_stock_history(
        self,
        company: CompanyConfig,
        product_number: str,
        window: int | None,
    ) -> list[StockObservation]:
        start = date.today() - timedelta(days=window) if window is not None else None
        rows = [
            o
            for o in self.observations.get(company.id, [])
            if o.product_number == product_number and (start is None or o.observed_at >= start)
        ]
        return sorted(rows, key=lambda o: o.observed_at)

    async def fetch_pos_balances(self, company: CompanyConfig) -> dict[str, int]:
        if company.id not in self.pos_balances:
            raise UpstreamFetchError(self.name, f"no POS balances for {company.id}")
        return dict(self.pos_balances[company.id])
