"""Tests for ZettleConnector — POS store balances."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from stockpilot.connectors.zettle_connector import (
    INVENTORY_BASE,
    PRODUCTS_URL,
    TOKEN_URL,
    ZettleConnector,
)
from stockpilot.exceptions import ConfigurationError, UpstreamFetchError


def _response(payload, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    response.raise_for_status = MagicMock()
    return response


PRODUCTS = [
    {
        "uuid": "prod-1",
        "variants": [
            {"uuid": "var-1", "barcode": "7350000000017"},
            {"uuid": "var-2", "barcode": " 7350000000024 "},
            {"uuid": "var-3", "barcode": ""},
        ],
    },
]

LOCATIONS = [
    {"uuid": "loc-bin", "type": "BIN"},
    {"uuid": "loc-store", "type": "STORE"},
]

STOCK = [
    {"variantUuid": "var-1", "balance": "3"},
    {"variantUuid": "var-2", "balance": 1},
    {"variantUuid": "var-3", "balance": 9},
    {"variantUuid": "unknown", "balance": 4},
]


@pytest.fixture
def connector():
    """Create a ZettleConnector with test credentials."""
    return ZettleConnector(credentials={"client_id": "client-123", "api_key": "assertion"})


class TestZettleInit:
    """Test ZettleConnector initialization."""

    def test_init_with_credentials(self, connector):
        assert connector.client_id == "client-123"
        assert connector.api_key == "assertion"
        assert connector.name == "zettle"

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("SNEAKY_ZETTLE_CLIENT_ID", "cid")
        monkeypatch.setenv("SNEAKY_ZETTLE_API_KEY", "key")

        connector = ZettleConnector.from_env("SNEAKY_ZETTLE")
        assert connector.client_id == "cid"
        assert connector.api_key == "key"

    def test_from_env_missing(self, monkeypatch):
        monkeypatch.delenv("SNEAKY_ZETTLE_CLIENT_ID", raising=False)
        monkeypatch.setenv("SNEAKY_ZETTLE_API_KEY", "key")

        with pytest.raises(ConfigurationError, match="SNEAKY_ZETTLE"):
            ZettleConnector.from_env("SNEAKY_ZETTLE")


class TestZettleAuth:
    """Test token exchange."""

    @pytest.mark.asyncio
    async def test_access_token(self, connector):
        with patch.object(connector, "_get_client") as mock_get_client:
            mock_client = AsyncMock()
            mock_client.post.return_value = _response({"access_token": "tok", "expires_in": 7200})
            mock_get_client.return_value = mock_client

            token = await connector._get_access_token()

        assert token == "tok"
        url = mock_client.post.call_args.args[0]
        data = mock_client.post.call_args.kwargs["data"]
        assert url == TOKEN_URL
        assert data["grant_type"] == "urn:ietf:params:oauth:grant-type:jwt-bearer"
        assert data["client_id"] == "client-123"
        assert data["assertion"] == "assertion"

    @pytest.mark.asyncio
    async def test_validate_failure(self, connector):
        with patch.object(connector, "_get_client") as mock_get_client:
            mock_client = AsyncMock()
            mock_client.post.side_effect = httpx.ConnectError("refused")
            mock_get_client.return_value = mock_client

            assert await connector.validate_credentials() is False

    @pytest.mark.asyncio
    async def test_validate_without_credentials(self):
        assert await ZettleConnector().validate_credentials() is False

    @pytest.mark.asyncio
    async def test_missing_credentials(self):
        with pytest.raises(ConfigurationError):
            await ZettleConnector()._get_access_token()


class TestFetchPosBalances:
    """Test balance aggregation by barcode."""

    @pytest.mark.asyncio
    async def test_balances_by_barcode(self, connector, sneaky):
        with patch.object(connector, "_get_client") as mock_get_client:
            mock_client = AsyncMock()
            mock_client.post.return_value = _response({"access_token": "tok"})
            mock_client.get.side_effect = [
                _response(PRODUCTS),
                _response(LOCATIONS),
                _response(STOCK),
            ]
            mock_get_client.return_value = mock_client

            balances = await connector.fetch_pos_balances(sneaky)

        assert balances == {"7350000000017": 3, "7350000000024": 1}

        urls = [call.args[0] for call in mock_client.get.call_args_list]
        assert urls == [PRODUCTS_URL, f"{INVENTORY_BASE}/locations", f"{INVENTORY_BASE}/stock/loc-store"]
        headers = mock_client.get.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Bearer tok"

    @pytest.mark.asyncio
    async def test_no_store_location(self, connector, sneaky):
        with patch.object(connector, "_get_client") as mock_get_client:
            mock_client = AsyncMock()
            mock_client.post.return_value = _response({"access_token": "tok"})
            mock_client.get.side_effect = [_response(PRODUCTS), _response([{"uuid": "x", "type": "BIN"}])]
            mock_get_client.return_value = mock_client

            assert await connector.fetch_pos_balances(sneaky) == {}

    @pytest.mark.asyncio
    async def test_api_error(self, connector, sneaky):
        request = httpx.Request("GET", PRODUCTS_URL)
        error_response = httpx.Response(401, text="unauthorized", request=request)

        with patch.object(connector, "_get_client") as mock_get_client:
            mock_client = AsyncMock()
            mock_client.post.return_value = _response({"access_token": "tok"})
            response = _response({})
            response.raise_for_status = MagicMock(
                side_effect=httpx.HTTPStatusError("401", request=request, response=error_response)
            )
            mock_client.get.return_value = response
            mock_get_client.return_value = mock_client

            with pytest.raises(UpstreamFetchError) as exc_info:
                await connector.fetch_pos_balances(sneaky)

        assert exc_info.value.source == "zettle"
        assert "401" in exc_info.value.message
