"""
Zettle POS Connector — store inventory balances keyed by barcode (EAN).

Balances are an informational overlay next to the FIFO valuation; they
never change the valued quantity.

Requires Zettle API credentials:
- Client ID
- API key (self-issued assertion for the JWT-bearer grant)

Both can be read from ``<PREFIX>_CLIENT_ID`` / ``<PREFIX>_API_KEY``.

API Documentation: https://developer.zettle.com/docs/api
"""

from __future__ import annotations

import logging
import os
from typing import Any

import httpx

from stockpilot.config import CompanyConfig
from stockpilot.connectors.base import BaseConnector, PosBalanceReader
from stockpilot.exceptions import ConfigurationError, UpstreamFetchError

logger = logging.getLogger("stockpilot.connectors.zettle")

# Zettle API endpoints
TOKEN_URL = "https://oauth.zettle.com/token"
PRODUCTS_URL = "https://products.izettle.com/organizations/self/products/v2"
INVENTORY_BASE = "https://inventory.izettle.com/v3"


class ZettleConnector(BaseConnector, PosBalanceReader):
    """Read store inventory balances from Zettle.

    Usage::

        connector = ZettleConnector.from_env("SNEAKY_ZETTLE")
        balances = await connector.fetch_pos_balances(company)
        balances["7350000000017"]  # -> 3
    """

    name = "zettle"
    description = "Store inventory balances from Zettle POS"

    def __init__(
        self,
        credentials: dict[str, Any] | None = None,
        **options: Any,
    ) -> None:
        super().__init__(credentials, **options)

        creds = credentials or {}
        self.client_id = creds.get("client_id", "")
        self.api_key = creds.get("api_key", "")
        self.timeout = float(options.get("timeout", 30.0))
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_env(cls, env_prefix: str, **options: Any) -> ZettleConnector:
        """Build a connector from ``<PREFIX>_CLIENT_ID`` / ``<PREFIX>_API_KEY``."""
        client_id = os.environ.get(f"{env_prefix}_CLIENT_ID", "")
        api_key = os.environ.get(f"{env_prefix}_API_KEY", "")
        if not client_id or not api_key:
            raise ConfigurationError(f"Missing Zettle credentials for {env_prefix}")
        return cls(credentials={"client_id": client_id, "api_key": api_key}, **options)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def validate_credentials(self) -> bool:
        """Try to obtain an access token."""
        if not self.client_id or not self.api_key:
            return False

        try:
            await self._get_access_token()
            return True
        except UpstreamFetchError as e:
            logger.warning("Zettle credential validation failed: %s", e)
            return False

    async def _get_access_token(self) -> str:
        if not self.client_id or not self.api_key:
            raise ConfigurationError("Missing Zettle credentials (client_id and api_key)")

        client = await self._get_client()
        try:
            response = await client.post(
                TOKEN_URL,
                data={
                    "grant_type": "urn:ietf:params:oauth:grant-type:jwt-bearer",
                    "client_id": self.client_id,
                    "assertion": self.api_key,
                },
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise UpstreamFetchError(
                self.name, f"auth failed: {e.response.status_code} - {e.response.text}"
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamFetchError(self.name, f"auth failed: {e}") from e
        return response.json()["access_token"]

    async def _get_json(self, url: str, token: str) -> Any:
        client = await self._get_client()
        try:
            response = await client.get(url, headers={"Authorization": f"Bearer {token}"})
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise UpstreamFetchError(
                self.name, f"GET {url} failed: {e.response.status_code} - {e.response.text}"
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamFetchError(self.name, f"GET {url} failed: {e}") from e
        return response.json()

    async def fetch_pos_balances(self, company: CompanyConfig) -> dict[str, int]:
        """Return barcode -> store balance for the company's Zettle store."""
        token = await self._get_access_token()

        # Variant UUID -> barcode from the product library
        products = await self._get_json(PRODUCTS_URL, token)
        barcodes: dict[str, str] = {}
        for product in products or []:
            for variant in product.get("variants", []):
                barcode = (variant.get("barcode") or "").strip()
                if barcode and variant.get("uuid"):
                    barcodes[variant["uuid"]] = barcode

        locations = await self._get_json(f"{INVENTORY_BASE}/locations", token)
        store = next((loc for loc in locations or [] if loc.get("type") == "STORE"), None)
        if store is None:
            logger.warning("No Zettle STORE location for %s", company.id)
            return {}

        stock = await self._get_json(f"{INVENTORY_BASE}/stock/{store['uuid']}", token)

        balances: dict[str, int] = {}
        for item in stock or []:
            barcode = barcodes.get(item.get("variantUuid", ""))
            if not barcode:
                continue
            balances[barcode] = balances.get(barcode, 0) + int(float(item.get("balance") or 0))

        logger.info("Fetched %d Zettle balances for %s", len(balances), company.id)
        return balances
