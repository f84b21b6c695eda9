"""
Elasticsearch Connector — purchase-order deliveries and daily stock snapshots.

Layout expected in the cluster:
- ``<delivery_index>``: one document per delivered purchase-order line
  (landed unit cost already converted to SEK).
- ``<stock_index_prefix>-YYYY-MM``: monthly indices with one document per
  (variant, size) per day.

All searches page with ``search_after`` so result sets larger than one page
are read completely.

Requires:
- Base URL of the cluster
- API key (sent as ``Authorization: ApiKey ...``)
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any

import httpx
from pydantic import ValidationError

from stockpilot.config import CompanyConfig
from stockpilot.connectors.base import BaseConnector, DeliveryLedgerReader, StockSnapshotReader
from stockpilot.exceptions import ConfigurationError, UpstreamFetchError
from stockpilot.models.inventory import DeliveryLine, StockObservation, StockSnapshot

logger = logging.getLogger("stockpilot.connectors.elasticsearch")

_STOCK_FIELDS = [
    "productNumber",
    "productName",
    "variantId",
    "variantName",
    "variantNumber",
    "size",
    "sizeNumber",
    "EAN",
    "physicalQuantity",
    "incomingQuantity",
    "date",
]


class ElasticsearchConnector(BaseConnector, DeliveryLedgerReader, StockSnapshotReader):
    """Read deliveries and stock snapshots from Elasticsearch.

    Usage::

        connector = ElasticsearchConnector(
            credentials={"url": "https://es.example.com", "api_key": "..."},
        )
        deliveries = await connector.fetch_deliveries(company)
        snapshot = await connector.fetch_stock(company)
    """

    name = "elasticsearch"
    description = "Purchase deliveries and daily stock snapshots from Elasticsearch"

    def __init__(
        self,
        credentials: dict[str, Any] | None = None,
        **options: Any,
    ) -> None:
        super().__init__(credentials, **options)

        creds = credentials or {}
        self.url = (creds.get("url") or options.get("url") or "").rstrip("/")
        self.api_key = creds.get("api_key", "")
        self.page_size = int(options.get("page_size", 10_000))
        self.timeout = float(options.get("timeout", 30.0))
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if not self.url or not self.api_key:
            raise ConfigurationError("Missing Elasticsearch credentials (url and api_key)")
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.url,
                headers={
                    "Authorization": f"ApiKey {self.api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def validate_credentials(self) -> bool:
        """Ping the cluster root."""
        if not self.url or not self.api_key:
            return False

        try:
            client = await self._get_client()
            response = await client.get("/")
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.warning("Elasticsearch credential validation failed: %s", e)
            return False

    async def _search(self, index: str, body: dict[str, Any]) -> dict[str, Any]:
        client = await self._get_client()
        try:
            response = await client.post(f"/{index}/_search", json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise UpstreamFetchError(
                self.name,
                f"search on {index} failed: {e.response.status_code} - {e.response.text}",
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamFetchError(self.name, f"search on {index} failed: {e}") from e
        return response.json()

    async def _search_all(self, index: str, body: dict[str, Any]) -> list[dict[str, Any]]:
        """Page through every hit with ``search_after``."""
        sources: list[dict[str, Any]] = []
        search_after: list[Any] | None = None

        while True:
            page = {**body, "size": self.page_size}
            if search_after is not None:
                page["search_after"] = search_after

            result = await self._search(index, page)
            hits = result.get("hits", {}).get("hits", [])
            if not hits:
                break

            sources.extend(hit.get("_source", {}) for hit in hits)
            search_after = hits[-1].get("sort")
            if search_after is None or len(hits) < self.page_size:
                break

        return sources

    # ------------------------------------------------------------------
    # Delivery ledger
    # ------------------------------------------------------------------

    async def fetch_deliveries(
        self,
        company: CompanyConfig,
        product_number: str | None = None,
    ) -> list[DeliveryLine]:
        query: dict[str, Any] = {"match_all": {}}
        if product_number:
            query = {"term": {"productNumber.keyword": product_number}}

        docs = await self._search_all(
            company.delivery_index,
            {"query": query, "sort": [{"createdAt": "asc"}, "_doc"]},
        )
        deliveries = [self._doc_to_delivery(doc) for doc in docs]

        logger.info(
            "Fetched %d delivery lines for %s%s",
            len(deliveries),
            company.id,
            f" ({product_number})" if product_number else "",
        )
        return deliveries

    def _doc_to_delivery(self, doc: dict[str, Any]) -> DeliveryLine:
        po_delivery = doc.get("purchaseOrderDelivery") or {}
        unit_cost = doc.get("unitTotalCostSEK")
        if unit_cost is None:
            unit_cost = doc.get("unitTotalCost", 0)

        try:
            return DeliveryLine(
                id=doc.get("id"),
                created_at=doc.get("createdAt"),
                product_number=doc.get("productNumber") or "",
                product_name=doc.get("productName") or "",
                variant_id=doc.get("productVariantId"),
                variant_number=doc.get("productVariantNumber") or "",
                variant_name=doc.get("productVariantName") or "",
                size_number=doc.get("sizeNumber"),
                ean=doc.get("EAN"),
                quantity=doc.get("quantity", 0),
                unit_cost=str(unit_cost),
                supplier_name=po_delivery.get("supplier"),
                purchase_order_id=po_delivery.get("purchaseOrderId"),
            )
        except ValidationError as e:
            raise UpstreamFetchError(
                self.name, f"malformed delivery document {doc.get('id')!r}: {e}"
            ) from e

    # ------------------------------------------------------------------
    # Stock snapshots
    # ------------------------------------------------------------------

    async def _latest_stock_date(self, index_prefix: str, as_of: date | None) -> date | None:
        body: dict[str, Any] = {
            "size": 0,
            "aggs": {"max_date": {"max": {"field": "date"}}},
        }
        if as_of is not None:
            body["query"] = {"range": {"date": {"lte": as_of.isoformat()}}}

        result = await self._search(f"{index_prefix}-*", body)
        max_date = (result.get("aggregations") or {}).get("max_date", {}).get("value_as_string")
        if not max_date:
            return None
        return date.fromisoformat(max_date.split("T", 1)[0])

    async def fetch_stock(
        self,
        company: CompanyConfig,
        as_of: date | None = None,
    ) -> StockSnapshot:
        prefix = company.stock_index_prefix
        latest = await self._latest_stock_date(prefix, as_of)
        if latest is None:
            logger.warning("No stock snapshots found under %s-*", prefix)
            return StockSnapshot(observations=[], as_of=None, source=f"{self.name}:{prefix}")

        index = f"{prefix}-{latest:%Y-%m}"
        docs = await self._search_all(
            index,
            {
                "query": {"term": {"date": latest.isoformat()}},
                "sort": ["_doc"],
                "_source": _STOCK_FIELDS,
            },
        )
        observations = [self._doc_to_observation(doc) for doc in docs]

        logger.info("Fetched %d stock rows for %s on %s", len(observations), company.id, latest)
        return StockSnapshot(observations=observations, as_of=latest, source=f"{self.name}:{index}")

    async def fetch_stock_history(
        self,
        company: CompanyConfig,
        product_number: str,
        window: int | None,
    ) -> list[StockObservation]:
        prefix = company.stock_index_prefix
        must: list[dict[str, Any]] = [{"term": {"productNumber.keyword": product_number}}]
        if window is not None:
            today = date.today()
            start = today - timedelta(days=window)
            must.append({"range": {"date": {"gte": start.isoformat(), "lte": today.isoformat()}}})

        docs = await self._search_all(
            f"{prefix}-*",
            {
                "query": {"bool": {"must": must}},
                "sort": [{"date": "asc"}, "_doc"],
                "_source": _STOCK_FIELDS,
            },
        )
        observations = [self._doc_to_observation(doc) for doc in docs]

        logger.info(
            "Fetched %d history rows for %s/%s (window=%s)",
            len(observations), company.id, product_number, window or "all",
        )
        return observations

    def _doc_to_observation(self, doc: dict[str, Any]) -> StockObservation:
        try:
            return StockObservation(
                product_number=doc.get("productNumber") or "",
                product_name=doc.get("productName"),
                variant_id=doc.get("variantId"),
                variant_number=doc.get("variantNumber"),
                variant_name=doc.get("variantName"),
                size=doc.get("size"),
                size_number=doc.get("sizeNumber"),
                ean=doc.get("EAN"),
                physical_quantity=doc.get("physicalQuantity") or 0,
                incoming_quantity=doc.get("incomingQuantity") or 0,
                observed_at=doc.get("date"),
            )
        except ValidationError as e:
            raise UpstreamFetchError(self.name, f"malformed stock document: {e}") from e
