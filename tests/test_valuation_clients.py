import json
from decimal import Decimal

import httpx
import pytest

from collateral_domain.enums import TitleStatus, ValuationStatus
from collateral_engine.errors import CollaboratorUnavailable
from common import secrets as secrets_module
from integrations.valuation.auto_valuation_client import AutoValuationClient
from integrations.valuation.http import ProviderHTTP
from integrations.valuation.title_registry_client import TitleRegistryClient

BASE = "http://provider.test"


def _http(handler, provider="auto-valuation", **kw):
    kw.setdefault("token", "t0ken")
    return ProviderHTTP(
        provider=provider,
        base_url=BASE,
        transport=httpx.MockTransport(handler),
        backoff=0,
        **kw,
    )


@pytest.mark.anyio
async def test_appraise_posts_camel_case_and_parses_prefixed_status():
    seen = {}

    def handler(request: httpx.Request):
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "collateralId": "COL-1",
                "status": "VALUATION_COMPLETED",
                "estimatedValue": "21500.00",
                "lowRange": "19350.00",
                "highRange": "23650.00",
                "confidenceScore": 0.87,
            },
        )

    async with AutoValuationClient(_http(handler)) as client:
        result = await client.appraise("COL-1", "VEHICLE", "94105", "2023 Toyota Camry")

    assert seen["path"] == "/api/v1/valuation/request"
    assert seen["auth"] == "Bearer t0ken"
    assert seen["body"]["collateralId"] == "COL-1"
    assert seen["body"]["type"] == "VEHICLE"
    assert result.status is ValuationStatus.COMPLETED
    assert result.estimated_value == Decimal("21500.00")
    assert result.confidence_score == 0.87


@pytest.mark.anyio
async def test_market_trends_sends_query_params():
    def handler(request: httpx.Request):
        assert request.url.path == "/api/v1/market-trends"
        assert request.url.params["type"] == "VEHICLE"
        assert request.url.params["location"] == "Denver"
        return httpx.Response(
            200, json={"status": "SUCCESS", "averageValue": 18000, "trendDirection": "DOWN"}
        )

    client = AutoValuationClient(_http(handler))
    trend = await client.market_trends("VEHICLE", "Denver")
    await client.aclose()
    assert trend.available
    assert trend.average_value == Decimal("18000")
    assert trend.trend_direction == "DOWN"


@pytest.mark.anyio
async def test_comparables_and_revaluation():
    def handler(request: httpx.Request):
        if request.url.path == "/api/v1/comparables/search":
            body = json.loads(request.content)
            assert body["estimatedValue"] == "20000"
            return httpx.Response(
                200,
                json={
                    "status": "SUCCESS",
                    "comparables": [{"propertyId": "V1", "value": "19500"}, {"propertyId": "V2", "value": "20500"}],
                },
            )
        assert request.url.path == "/api/v1/valuation/revalue"
        return httpx.Response(200, json={"status": "VALUATION_COMPLETED", "newValue": "19000"})

    async with AutoValuationClient(_http(handler)) as client:
        comps = await client.comparables("COL-1", "VEHICLE", None, Decimal("20000"))
        reval = await client.revalue("COL-1", "market drop")

    assert [c.property_id for c in comps.comparables] == ["V1", "V2"]
    assert reval.status is ValuationStatus.COMPLETED
    assert reval.new_value == Decimal("19000")


@pytest.mark.anyio
async def test_retries_transient_statuses_then_succeeds():
    calls = {"n": 0}

    def handler(request: httpx.Request):
        calls["n"] += 1
        if calls["n"] < 3:
            return httpx.Response(503)
        return httpx.Response(200, json={"status": "COMPLETED", "estimatedValue": "1"})

    async with AutoValuationClient(_http(handler)) as client:
        result = await client.appraise(None, "VEHICLE", None, None)
    assert calls["n"] == 3
    assert result.estimated_value == Decimal("1")


@pytest.mark.anyio
async def test_gives_up_after_three_attempts():
    calls = {"n": 0}

    def handler(request: httpx.Request):
        calls["n"] += 1
        return httpx.Response(502)

    async with AutoValuationClient(_http(handler)) as client:
        with pytest.raises(CollaboratorUnavailable) as err:
            await client.market_trends("VEHICLE", None)
    assert calls["n"] == 3
    assert err.value.collaborator == "auto-valuation"


@pytest.mark.anyio
async def test_transport_errors_are_retried_and_surfaced():
    calls = {"n": 0}

    def handler(request: httpx.Request):
        calls["n"] += 1
        raise httpx.ConnectError("refused", request=request)

    async with AutoValuationClient(_http(handler)) as client:
        with pytest.raises(CollaboratorUnavailable):
            await client.revalue("COL-1", None)
    assert calls["n"] == 3


@pytest.mark.anyio
async def test_client_errors_are_not_retried():
    calls = {"n": 0}

    def handler(request: httpx.Request):
        calls["n"] += 1
        return httpx.Response(400, json={"error": "bad request"})

    async with AutoValuationClient(_http(handler)) as client:
        with pytest.raises(CollaboratorUnavailable):
            await client.appraise("COL-1", "VEHICLE", None, None)
    assert calls["n"] == 1


@pytest.mark.anyio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, content=b"<html>oops</html>"),
        httpx.Response(200, json={"status": "NOT_A_STATUS"}),
    ],
)
async def test_malformed_payloads_are_unavailable(response):
    async with AutoValuationClient(_http(lambda request: response)) as client:
        with pytest.raises(CollaboratorUnavailable):
            await client.appraise("COL-1", "VEHICLE", None, None)


@pytest.mark.anyio
async def test_token_is_read_from_secrets():
    secrets_module.secrets.set_override({"TITLE_REGISTRY_API_TOKEN": "from-secrets"})
    seen = {}

    def handler(request: httpx.Request):
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(
            200, json={"status": "VERIFIED", "isValid": True, "titleNumber": "T-1"}
        )

    http = ProviderHTTP(
        provider="title-registry", base_url=BASE, transport=httpx.MockTransport(handler), backoff=0
    )
    async with TitleRegistryClient(http) as client:
        result = await client.verify_title("COL-1", "VIN 123")

    assert seen["auth"] == "Bearer from-secrets"
    assert result.status is TitleStatus.VERIFIED
    assert result.verified
    assert result.title_number == "T-1"
