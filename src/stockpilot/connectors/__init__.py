"""Connectors package — delivery ledger, stock snapshot and POS integrations."""
from stockpilot.connectors.base import (
    BaseConnector,
    DeliveryLedgerReader,
    PosBalanceReader,
    StockSnapshotReader,
)
from stockpilot.connectors.elasticsearch_connector import ElasticsearchConnector
from stockpilot.connectors.extract_parser import ExtractParser, parse_extract
from stockpilot.connectors.memory_connector import MemoryConnector
from stockpilot.connectors.sql_connector import SQLConnector
from stockpilot.connectors.zettle_connector import ZettleConnector

__all__ = [
    "BaseConnector",
    "DeliveryLedgerReader",
    "ElasticsearchConnector",
    "ExtractParser",
    "MemoryConnector",
    "PosBalanceReader",
    "SQLConnector",
    "StockSnapshotReader",
    "ZettleConnector",
    "parse_extract",
]
