"""
Connector Registry — discovers and manages all data connectors.

Supports auto-discovery from config and manual registration of custom
connectors, and resolves which connector serves each reader role.
"""

from __future__ import annotations

import importlib
import logging
from typing import Any

from stockpilot.config import CompanyConfig, ConnectorConfig, StockPilotConfig
from stockpilot.connectors.base import (
    BaseConnector,
    DeliveryLedgerReader,
    PosBalanceReader,
    StockSnapshotReader,
)
from stockpilot.exceptions import ConfigurationError, StockPilotError

logger = logging.getLogger("stockpilot.connectors.registry")

# Built-in connector type mapping
_BUILTIN_CONNECTORS: dict[str, str] = {
    "elasticsearch": "stockpilot.connectors.elasticsearch_connector.ElasticsearchConnector",
    "sql": "stockpilot.connectors.sql_connector.SQLConnector",
    "memory": "stockpilot.connectors.memory_connector.MemoryConnector",
    "zettle": "stockpilot.connectors.zettle_connector.ZettleConnector",
}


class ConnectorRegistry:
    """Manages all active data connectors.

    Supports:
    - Auto-discovery from config file.
    - Manual registration of custom connectors.
    - Plugin-style connector loading.
    - Per-company POS connectors built from ``<PREFIX>_*`` env vars.
    """

    def __init__(self) -> None:
        self._connectors: dict[str, BaseConnector] = {}
        self._pos_connectors: dict[str, BaseConnector] = {}

    def __len__(self) -> int:
        return len(self._connectors)

    @property
    def active_connectors(self) -> list[BaseConnector]:
        """Return all active connectors."""
        return list(self._connectors.values())

    def register(self, connector: BaseConnector) -> None:
        """Register a connector instance."""
        self._connectors[connector.name] = connector
        logger.info("Registered connector: %s", connector.name)

    def get(self, name: str) -> BaseConnector | None:
        """Get a connector by name."""
        return self._connectors.get(name)

    @property
    def ledger_reader(self) -> DeliveryLedgerReader:
        return self._first(DeliveryLedgerReader, "delivery ledger")

    @property
    def snapshot_reader(self) -> StockSnapshotReader:
        return self._first(StockSnapshotReader, "stock snapshot")

    def _first(self, role: type[Any], label: str) -> Any:
        for connector in self._connectors.values():
            if isinstance(connector, role):
                return connector
        raise ConfigurationError(f"No {label} connector configured")

    def pos_reader_for(self, company: CompanyConfig) -> PosBalanceReader | None:
        """Return the POS reader for a company, or ``None`` if it has no POS channel.

        Raises:
            ConfigurationError: The company has a POS channel but no credentials.
        """
        if company.pos is None:
            return None

        registered = self._connectors.get(company.pos.type)
        if isinstance(registered, PosBalanceReader):
            return registered

        if company.id not in self._pos_connectors:
            connector_cls = self._load_class(company.pos.type)
            from_env = getattr(connector_cls, "from_env", None)
            if from_env is None:
                raise ConfigurationError(
                    f"POS connector '{company.pos.type}' cannot be built from environment"
                )
            self._pos_connectors[company.id] = from_env(company.pos.env_prefix)
        return self._pos_connectors[company.id]  # type: ignore[return-value]

    def auto_discover(self, config: StockPilotConfig) -> None:
        """Auto-discover and register connectors from config."""
        for conn_config in config.connectors:
            if not conn_config.enabled:
                continue
            try:
                connector = self._create_connector(conn_config)
                if connector:
                    self.register(connector)
            except (StockPilotError, TypeError, ValueError) as e:
                logger.error("Failed to create connector '%s': %s", conn_config.type, e)

        # Implicit Elasticsearch connector from the top-level settings
        es = config.elasticsearch
        if es.url and "elasticsearch" not in self._connectors:
            connector = self._create_connector(
                ConnectorConfig(
                    type="elasticsearch",
                    credentials={"url": es.url, "api_key": es.api_key or ""},
                    options={"timeout": es.timeout, "page_size": es.page_size},
                )
            )
            if connector:
                self.register(connector)

    async def close(self) -> None:
        for connector in [*self._connectors.values(), *self._pos_connectors.values()]:
            await connector.close()

    def _load_class(self, connector_type: str) -> type[BaseConnector]:
        # Fall back to a fully qualified class path (plugin support)
        connector_path = _BUILTIN_CONNECTORS.get(connector_type, connector_type)
        try:
            module_path, class_name = connector_path.rsplit(".", 1)
            module = importlib.import_module(module_path)
            return getattr(module, class_name)
        except (ImportError, AttributeError, ValueError) as e:
            raise ConfigurationError(f"Cannot load connector '{connector_type}': {e}") from e

    def _create_connector(self, config: ConnectorConfig) -> BaseConnector | None:
        """Instantiate a connector from config."""
        try:
            connector_cls = self._load_class(config.type)
        except ConfigurationError as e:
            logger.error("%s", e)
            return None
        return connector_cls(credentials=config.credentials, **config.options)
