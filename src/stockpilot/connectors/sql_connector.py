"""
SQL Connector — deliveries and stock snapshots from any SQL database.

Works with PostgreSQL, MySQL, SQLite, SQL Server, etc. via SQLAlchemy.
Expects two tables keyed by a ``company`` column:

- ``purchase_deliveries``: id, company, created_at, product_number,
  product_name, variant_id, variant_number, variant_name, size_number, ean,
  quantity, unit_cost, supplier_name, purchase_order_id
- ``stock_snapshots``: company, observed_at, product_number, product_name,
  variant_id, variant_number, variant_name, size, size_number, ean,
  physical_quantity, incoming_quantity

Table names can be overridden with the ``delivery_table`` / ``stock_table``
options.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any

import pandas as pd
from pydantic import ValidationError
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from stockpilot.config import CompanyConfig
from stockpilot.connectors.base import BaseConnector, DeliveryLedgerReader, StockSnapshotReader
from stockpilot.exceptions import ConfigurationError, UpstreamFetchError
from stockpilot.models.inventory import DeliveryLine, StockObservation, StockSnapshot

logger = logging.getLogger("stockpilot.connectors.sql")

_DELIVERY_COLUMNS = (
    "id, created_at, product_number, product_name, variant_id, variant_number, "
    "variant_name, size_number, ean, quantity, unit_cost, supplier_name, purchase_order_id"
)
_STOCK_COLUMNS = (
    "observed_at, product_number, product_name, variant_id, variant_number, variant_name, "
    "size, size_number, ean, physical_quantity, incoming_quantity"
)


def _records(df: pd.DataFrame) -> list[dict[str, Any]]:
    """DataFrame rows as dicts with SQL NULLs as ``None``."""
    df = df.astype(object).where(pd.notna(df), None)
    return df.to_dict("records")


class SQLConnector(BaseConnector, DeliveryLedgerReader, StockSnapshotReader):
    """Read deliveries and stock snapshots from a SQL database.

    Uses SQLAlchemy for broad database compatibility.

    Usage::

        connector = SQLConnector(
            credentials={"connection_string": "postgresql://..."},
            delivery_table="po_deliveries",
        )
        deliveries = await connector.fetch_deliveries(company)
    """

    name = "sql"
    description = "Deliveries and stock snapshots from SQL databases"

    def __init__(
        self,
        credentials: dict[str, Any] | None = None,
        **options: Any,
    ) -> None:
        super().__init__(credentials, **options)
        self.connection_string = (credentials or {}).get("connection_string", "")
        self.delivery_table = options.get("delivery_table", "purchase_deliveries")
        self.stock_table = options.get("stock_table", "stock_snapshots")
        self._engine: Engine | None = None

    def _get_engine(self) -> Engine:
        if not self.connection_string:
            raise ConfigurationError("SQL connector requires a connection_string")
        if self._engine is None:
            self._engine = create_engine(self.connection_string)
        return self._engine

    def _read(self, query: str, params: dict[str, Any]) -> pd.DataFrame:
        try:
            with self._get_engine().connect() as conn:
                return pd.read_sql(text(query), conn, params=params)
        except SQLAlchemyError as e:
            raise UpstreamFetchError(self.name, str(e)) from e

    async def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    async def validate_credentials(self) -> bool:
        """Test database connectivity."""
        try:
            with self._get_engine().connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except (SQLAlchemyError, ConfigurationError):
            return False

    async def fetch_deliveries(
        self,
        company: CompanyConfig,
        product_number: str | None = None,
    ) -> list[DeliveryLine]:
        query = f"SELECT {_DELIVERY_COLUMNS} FROM {self.delivery_table} WHERE company = :company"
        params: dict[str, Any] = {"company": company.id}
        if product_number:
            query += " AND product_number = :product_number"
            params["product_number"] = product_number

        df = self._read(query, params)
        try:
            deliveries = [
                DeliveryLine(**{**record, "unit_cost": str(record["unit_cost"])})
                for record in _records(df)
            ]
        except ValidationError as e:
            raise UpstreamFetchError(self.name, f"malformed delivery row: {e}") from e

        logger.info("Pulled %d delivery lines from SQL for %s", len(deliveries), company.id)
        return deliveries

    async def fetch_stock(
        self,
        company: CompanyConfig,
        as_of: date | None = None,
    ) -> StockSnapshot:
        query = f"SELECT MAX(observed_at) AS latest FROM {self.stock_table} WHERE company = :company"
        params: dict[str, Any] = {"company": company.id}
        if as_of is not None:
            query += " AND observed_at <= :as_of"
            params["as_of"] = as_of.isoformat()

        latest_df = self._read(query, params)
        latest = latest_df["latest"].iloc[0] if not latest_df.empty else None
        if latest is None or pd.isna(latest):
            logger.warning("No stock snapshots in %s for %s", self.stock_table, company.id)
            return StockSnapshot(observations=[], as_of=None, source=f"sql:{self.stock_table}")

        latest_date = date.fromisoformat(str(latest)[:10])
        df = self._read(
            f"SELECT {_STOCK_COLUMNS} FROM {self.stock_table} "
            "WHERE company = :company AND observed_at = :observed_at",
            {"company": company.id, "observed_at": str(latest)},
        )
        observations = self._to_observations(df)

        logger.info("Pulled %d stock rows from SQL for %s on %s", len(observations), company.id, latest_date)
        return StockSnapshot(observations=observations, as_of=latest_date, source=f"sql:{self.stock_table}")

    async def fetch_stock_history(
        self,
        company: CompanyConfig,
        product_number: str,
        window: int | None,
    ) -> list[StockObservation]:
        query = (
            f"SELECT {_STOCK_COLUMNS} FROM {self.stock_table} "
            "WHERE company = :company AND product_number = :product_number"
        )
        params: dict[str, Any] = {"company": company.id, "product_number": product_number}
        if window is not None:
            query += " AND observed_at >= :start"
            params["start"] = (date.today() - timedelta(days=window)).isoformat()
        query += " ORDER BY observed_at"

        return self._to_observations(self._read(query, params))

    def _to_observations(self, df: pd.DataFrame) -> list[StockObservation]:
        try:
            return [StockObservation(**record) for record in _records(df)]
        except ValidationError as e:
            raise UpstreamFetchError(self.name, f"malformed stock row: {e}") from e
