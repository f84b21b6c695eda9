"""
StockPilot configuration management.

Supports loading from YAML files, environment variables, and keyword overrides.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from stockpilot.exceptions import InputValidationError


class ElasticsearchConfig(BaseModel):
    """Connection settings for the delivery ledger / stock snapshot store."""

    url: str | None = Field(default=None, description="Base URL, e.g. https://es.example.com")
    api_key: str | None = Field(default=None, description="API key (or set STOCKPILOT_ES_API_KEY)")
    timeout: float = Field(default=30.0, gt=0)
    page_size: int = Field(default=10_000, ge=1, le=10_000)


class PosConfig(BaseModel):
    """Point-of-sale channel for a company (balances are informational only)."""

    type: str = Field(default="zettle", description="POS connector type")
    env_prefix: str = Field(description="Prefix for <PREFIX>_CLIENT_ID / <PREFIX>_API_KEY")


class CompanyConfig(BaseModel):
    """One company whose inventory is valued."""

    id: str
    name: str
    stock_index_prefix: str = Field(description="Prefix of the monthly stock snapshot indices")
    delivery_index: str = Field(description="Index holding purchase-order delivery lines")
    pos: PosConfig | None = None

    @property
    def has_pos(self) -> bool:
        return self.pos is not None


class ConnectorConfig(BaseModel):
    """Configuration for a single data connector."""

    type: str = Field(description="Connector type: elasticsearch, sql, memory, zettle")
    enabled: bool = True
    credentials: dict[str, Any] = Field(default_factory=dict)
    options: dict[str, Any] = Field(default_factory=dict)


class ValuationConfig(BaseModel):
    """FIFO valuation settings."""

    pos_timeout_seconds: float = Field(default=10.0, gt=0)
    fresh_days: int = Field(default=183, ge=1, description="Layers younger than this are 'fresh'")
    aging_days: int = Field(default=547, ge=1, description="Layers older than this are 'old'")


class ReconciliationConfig(BaseModel):
    """Comparator tolerances."""

    value_tolerance: float = Field(default=0.0, ge=0.0, description="SEK difference treated as equal")
    significant_diff_percent: float = Field(default=1.0, ge=0.0)


class CacheConfig(BaseModel):
    """Result cache settings."""

    enabled: bool = True
    ttl_seconds: float = Field(default=24 * 60 * 60, gt=0)


def _default_companies() -> list[CompanyConfig]:
    return [
        CompanyConfig(
            id="varg",
            name="Varg",
            stock_index_prefix="varg_stock",
            delivery_index="varg_purchase_deliveries",
        ),
        CompanyConfig(
            id="sneaky-steve",
            name="Sneaky Steve",
            stock_index_prefix="sneaky_stock",
            delivery_index="sneaky_purchase_deliveries",
            pos=PosConfig(type="zettle", env_prefix="SNEAKY_ZETTLE"),
        ),
    ]


class StockPilotConfig(BaseModel):
    """Root configuration for StockPilot."""

    elasticsearch: ElasticsearchConfig = Field(default_factory=ElasticsearchConfig)
    companies: list[CompanyConfig] = Field(default_factory=_default_companies)
    connectors: list[ConnectorConfig] = Field(default_factory=list)
    valuation: ValuationConfig = Field(default_factory=ValuationConfig)
    reconciliation: ReconciliationConfig = Field(default_factory=ReconciliationConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)

    def get_company(self, company_id: str | None) -> CompanyConfig:
        """Return the company config or raise ``InputValidationError``."""
        if not company_id:
            raise InputValidationError("company parameter is required", field="company")
        for company in self.companies:
            if company.id == company_id:
                return company
        valid = ", ".join(f'"{c.id}"' for c in self.companies)
        raise InputValidationError(
            f"Invalid company parameter '{company_id}'. Must be one of {valid}",
            field="company",
        )

    @classmethod
    def load(cls, config_path: str | None = None, **overrides: Any) -> StockPilotConfig:
        """Load configuration from file, env vars, and overrides.

        Priority: overrides > env vars > config file > defaults.
        """
        data: dict[str, Any] = {}

        # 1. Load from YAML file if provided
        if config_path:
            path = Path(config_path)
            if path.exists():
                with open(path) as f:
                    data = yaml.safe_load(f) or {}

        # 2. Override from environment variables
        env_url = os.environ.get("STOCKPILOT_ES_URL")
        env_key = os.environ.get("STOCKPILOT_ES_API_KEY")
        env_ttl = os.environ.get("STOCKPILOT_CACHE_TTL")
        env_pos_timeout = os.environ.get("STOCKPILOT_POS_TIMEOUT")

        if env_url or env_key:
            es = data.get("elasticsearch", {})
            if env_url:
                es["url"] = env_url
            if env_key:
                es["api_key"] = env_key
            data["elasticsearch"] = es

        if env_ttl:
            cache = data.get("cache", {})
            cache["ttl_seconds"] = float(env_ttl)
            data["cache"] = cache

        if env_pos_timeout:
            valuation = data.get("valuation", {})
            valuation["pos_timeout_seconds"] = float(env_pos_timeout)
            data["valuation"] = valuation

        # 3. Apply keyword overrides
        data.update(overrides)

        return cls.model_validate(data)
