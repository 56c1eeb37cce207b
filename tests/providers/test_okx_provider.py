"""Tests for the OKX DEX aggregator adapter."""

import base64
import hashlib
import hmac

import httpx
import pytest

from conftest import make_params
from swapbridge.core.errors import ProviderError, ProviderErrorClass
from swapbridge.core.quotes.models import AssetRef
from swapbridge.providers.okx import QUOTE_PATH, OkxDexProvider, sign_request

TIMESTAMP = "2024-05-01T12:00:00.000Z"
USDT_ETHEREUM = AssetRef(1, "0xdAC17F958D2ee523a2206206994597C13D831ec7", "USDT", 6)


def _provider(handler, **overrides) -> OkxDexProvider:
    values = dict(
        base_url="https://web3.okx.com",
        api_key="okx-key",
        secret_key="okx-secret",
        passphrase="okx-pass",
        project_id="proj",
        transport=httpx.MockTransport(handler),
        timestamp_factory=lambda: TIMESTAMP,
    )
    values.update(overrides)
    return OkxDexProvider(**values)


@pytest.fixture
def same_chain_params():
    """100 USDC to USDT on Ethereum."""
    return make_params(dest_chain=1, dest_asset=USDT_ETHEREUM)


class TestSigning:

    def test_signature_matches_hmac_sha256(self):
        expected = base64.b64encode(
            hmac.new(b"secret", b"2024-05-01T12:00:00.000ZGET/api/v6/dex/aggregator/quote?a=1", hashlib.sha256).digest()
        ).decode()

        assert sign_request("secret", TIMESTAMP, "get", "/api/v6/dex/aggregator/quote?a=1") == expected


class TestOkxQuote:

    @pytest.mark.asyncio
    async def test_signed_request_and_parsed_quote(self, same_chain_params):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.raw_path.decode()
            seen["headers"] = request.headers
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={
                "code": "0",
                "data": [{"fromTokenAmount": "100000000", "toTokenAmount": "99800000", "tradeFee": "0.42"}],
            })

        quote = await _provider(handler).get_quote(same_chain_params)

        assert seen["path"].startswith(QUOTE_PATH + "?")
        assert seen["params"]["chainIndex"] == "1"
        assert seen["params"]["amount"] == "100000000"
        assert seen["params"]["slippage"] == "0.5"
        assert seen["headers"]["OK-ACCESS-KEY"] == "okx-key"
        assert seen["headers"]["OK-ACCESS-PASSPHRASE"] == "okx-pass"
        assert seen["headers"]["OK-ACCESS-PROJECT"] == "proj"
        assert seen["headers"]["OK-ACCESS-TIMESTAMP"] == TIMESTAMP
        assert seen["headers"]["OK-ACCESS-SIGN"] == sign_request("okx-secret", TIMESTAMP, "GET", seen["path"])

        assert quote.provider_name == "okx"
        assert quote.to_amount == "99800000"
        assert quote.to_amount_min == str(99800000 * 9950 // 10000)
        assert str(quote.fee_usd) == "0.42"

    @pytest.mark.asyncio
    async def test_throttle_code_is_rate_limited(self, same_chain_params):
        def handler(request):
            return httpx.Response(200, json={"code": "50011", "msg": "Too Many Requests", "data": []})

        with pytest.raises(ProviderError) as excinfo:
            await _provider(handler).get_quote(same_chain_params)

        assert excinfo.value.error_class == ProviderErrorClass.RATE_LIMITED
        assert excinfo.value.retryable

    @pytest.mark.asyncio
    async def test_empty_data_is_no_route(self, same_chain_params):
        def handler(request):
            return httpx.Response(200, json={"code": "0", "data": []})

        with pytest.raises(ProviderError) as excinfo:
            await _provider(handler).get_quote(same_chain_params)

        assert excinfo.value.error_class == ProviderErrorClass.NO_ROUTE

    @pytest.mark.asyncio
    async def test_error_message_is_classified(self, same_chain_params):
        def handler(request):
            return httpx.Response(200, json={"code": "82000", "msg": "Insufficient liquidity", "data": []})

        with pytest.raises(ProviderError) as excinfo:
            await _provider(handler).get_quote(same_chain_params)

        assert excinfo.value.error_class == ProviderErrorClass.INSUFFICIENT_LIQUIDITY
        assert excinfo.value.code == "82000"

    def test_supports_same_chain_with_credentials(self, same_chain_params, usdc_params):
        provider = _provider(lambda request: httpx.Response(200))

        assert provider.supports(same_chain_params)
        assert not provider.supports(usdc_params)
        assert not _provider(lambda request: httpx.Response(200), api_key="").supports(same_chain_params)
