"""Tests for the connector registry."""

import pytest

from stockpilot.config import ConnectorConfig, StockPilotConfig
from stockpilot.connectors.base import BaseConnector, PosBalanceReader
from stockpilot.connectors.elasticsearch_connector import ElasticsearchConnector
from stockpilot.connectors.memory_connector import MemoryConnector
from stockpilot.connectors.registry import ConnectorRegistry
from stockpilot.connectors.zettle_connector import ZettleConnector
from stockpilot.exceptions import ConfigurationError


class MockPosConnector(BaseConnector, PosBalanceReader):
    """A simple POS connector for testing."""

    name = "zettle"
    description = "Mock POS"

    async def fetch_pos_balances(self, company):
        return {"7350000000017": 1}

    async def validate_credentials(self) -> bool:
        return True


class TestConnectorRegistry:
    def test_register_connector(self) -> None:
        registry = ConnectorRegistry()
        connector = MemoryConnector()
        registry.register(connector)

        assert len(registry) == 1
        assert registry.get("memory") is connector

    def test_get_nonexistent(self) -> None:
        assert ConnectorRegistry().get("nonexistent") is None

    def test_reader_roles(self) -> None:
        registry = ConnectorRegistry()
        memory = MemoryConnector()
        registry.register(memory)

        assert registry.ledger_reader is memory
        assert registry.snapshot_reader is memory

    def test_missing_reader(self) -> None:
        registry = ConnectorRegistry()
        registry.register(MockPosConnector())

        with pytest.raises(ConfigurationError, match="delivery ledger"):
            registry.ledger_reader

    def test_auto_discover_memory(self, tmp_path) -> None:
        fixture = tmp_path / "fixtures.yaml"
        fixture.write_text("varg:\n  deliveries: []\n  stock: []\n")

        config = StockPilotConfig(
            connectors=[ConnectorConfig(type="memory", options={"file_path": str(fixture)})]
        )
        registry = ConnectorRegistry()
        registry.auto_discover(config)

        assert len(registry) == 1
        assert isinstance(registry.get("memory"), MemoryConnector)

    def test_disabled_connector_skipped(self) -> None:
        config = StockPilotConfig(connectors=[ConnectorConfig(type="memory", enabled=False)])

        registry = ConnectorRegistry()
        registry.auto_discover(config)

        assert len(registry) == 0

    def test_unknown_connector_type_skipped(self) -> None:
        config = StockPilotConfig(connectors=[ConnectorConfig(type="no.such.Connector")])

        registry = ConnectorRegistry()
        registry.auto_discover(config)

        assert len(registry) == 0

    def test_implicit_elasticsearch(self) -> None:
        config = StockPilotConfig(elasticsearch={"url": "https://es.example.com", "api_key": "k", "page_size": 500})

        registry = ConnectorRegistry()
        registry.auto_discover(config)

        connector = registry.get("elasticsearch")
        assert isinstance(connector, ElasticsearchConnector)
        assert connector.page_size == 500

    def test_plugin_class_path(self) -> None:
        config = StockPilotConfig(
            connectors=[ConnectorConfig(type="stockpilot.connectors.memory_connector.MemoryConnector")]
        )
        registry = ConnectorRegistry()
        registry.auto_discover(config)

        assert isinstance(registry.get("memory"), MemoryConnector)


class TestPosReader:
    """Per-company POS connector resolution."""

    def test_company_without_pos(self, varg) -> None:
        assert ConnectorRegistry().pos_reader_for(varg) is None

    def test_registered_pos_connector_wins(self, sneaky) -> None:
        registry = ConnectorRegistry()
        pos = MockPosConnector()
        registry.register(pos)

        assert registry.pos_reader_for(sneaky) is pos

    def test_built_from_env(self, sneaky, monkeypatch) -> None:
        monkeypatch.setenv("SNEAKY_ZETTLE_CLIENT_ID", "cid")
        monkeypatch.setenv("SNEAKY_ZETTLE_API_KEY", "key")

        registry = ConnectorRegistry()
        reader = registry.pos_reader_for(sneaky)

        assert isinstance(reader, ZettleConnector)
        assert registry.pos_reader_for(sneaky) is reader

    def test_missing_env_credentials(self, sneaky, monkeypatch) -> None:
        monkeypatch.delenv("SNEAKY_ZETTLE_CLIENT_ID", raising=False)
        monkeypatch.delenv("SNEAKY_ZETTLE_API_KEY", raising=False)

        with pytest.raises(ConfigurationError):
            ConnectorRegistry().pos_reader_for(sneaky)

    @pytest.mark.asyncio
    async def test_close(self, sneaky, monkeypatch) -> None:
        monkeypatch.setenv("SNEAKY_ZETTLE_CLIENT_ID", "cid")
        monkeypatch.setenv("SNEAKY_ZETTLE_API_KEY", "key")
        registry = ConnectorRegistry()
        registry.register(MemoryConnector())
        registry.pos_reader_for(sneaky)

        await registry.close()
