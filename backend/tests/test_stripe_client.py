"""
Stripe client request shaping and error mapping, against httpx.MockTransport.
"""

from urllib.parse import parse_qs

import httpx
import pytest
from tenacity import wait_none

from integrations.base import PriceRequest, ProductRequest
from integrations.stripe import StripeProvider, encode_form
from promotion.errors import ExternalServiceError
from promotion.types import Environment, ProviderAccount

ACCOUNT = ProviderAccount(account_id="acct_1Creator", access_token="sk_live_creator")


class Recorder:
    def __init__(self, *responses: httpx.Response):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.pop(0)


def _provider(recorder: Recorder, **kwargs) -> StripeProvider:
    return StripeProvider(
        api_base="https://stripe.test/v1",
        api_version="2023-10-16",
        production_secret_key=kwargs.pop("production_secret_key", ""),
        transport=httpx.MockTransport(recorder),
        **kwargs,
    )


def _form(request: httpx.Request) -> dict[str, list[str]]:
    return parse_qs(request.content.decode())


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch):
    monkeypatch.setattr(StripeProvider._send.retry, "wait", wait_none())


def test_encode_form_flattens_nested_values():
    pairs = encode_form(
        {
            "name": "Pro Plan",
            "active": True,
            "description": None,
            "metadata": {"creator_id": "c1", "deployment_id": "d1"},
            "recurring": {"interval": "month"},
        }
    )
    assert pairs == [
        ("name", "Pro Plan"),
        ("active", "true"),
        ("metadata[creator_id]", "c1"),
        ("metadata[deployment_id]", "d1"),
        ("recurring[interval]", "month"),
    ]


@pytest.mark.asyncio
class TestStripeProvider:

    async def test_create_product_request(self):
        recorder = Recorder(httpx.Response(200, json={"id": "prod_123", "object": "product"}))
        provider = _provider(recorder)

        product_id = await provider.create_product(
            Environment.PRODUCTION,
            ACCOUNT,
            ProductRequest(name="Pro Plan", description="", metadata={"deployment_id": "dep-1"}),
            idempotency_key="dep-1:product",
        )

        assert product_id == "prod_123"
        [request] = recorder.requests
        assert request.method == "POST"
        assert request.url == "https://stripe.test/v1/products"
        assert request.headers["Authorization"] == "Bearer sk_live_creator"
        assert request.headers["Stripe-Account"] == "acct_1Creator"
        assert request.headers["Stripe-Version"] == "2023-10-16"
        assert request.headers["Idempotency-Key"] == "dep-1:product"
        form = _form(request)
        assert form["name"] == ["Pro Plan"]
        assert form["active"] == ["true"]
        assert form["metadata[deployment_id]"] == ["dep-1"]
        assert "description" not in form

    async def test_create_price_request(self):
        recorder = Recorder(httpx.Response(200, json={"id": "price_123"}))
        provider = _provider(recorder)

        price_id = await provider.create_price(
            Environment.PRODUCTION,
            ACCOUNT,
            PriceRequest(
                product_external_id="prod_123",
                unit_amount_minor=2999,
                currency="usd",
                recurring={"interval": "month"},
                metadata={"source_price_id": "tpr_1"},
            ),
        )

        assert price_id == "price_123"
        [request] = recorder.requests
        assert request.url.path == "/v1/prices"
        assert "Idempotency-Key" not in request.headers
        form = _form(request)
        assert form["product"] == ["prod_123"]
        assert form["unit_amount"] == ["2999"]
        assert form["currency"] == ["usd"]
        assert form["recurring[interval]"] == ["month"]
        assert form["metadata[source_price_id]"] == ["tpr_1"]

    async def test_client_error_maps_to_external_service_error(self):
        recorder = Recorder(
            httpx.Response(
                400,
                json={"error": {"type": "invalid_request_error", "code": "parameter_missing", "message": "Missing name"}},
            )
        )

        with pytest.raises(ExternalServiceError) as exc_info:
            await _provider(recorder).create_product(Environment.PRODUCTION, ACCOUNT, ProductRequest(name="x"))

        assert exc_info.value.message == "Missing name"
        assert exc_info.value.status_code == 400
        assert exc_info.value.provider_code == "parameter_missing"
        assert len(recorder.requests) == 1

    async def test_server_error_is_retried(self):
        recorder = Recorder(
            httpx.Response(503, json={"error": {"message": "Service unavailable"}}),
            httpx.Response(200, json={"id": "prod_after_retry"}),
        )

        product_id = await _provider(recorder).create_product(
            Environment.PRODUCTION, ACCOUNT, ProductRequest(name="x"), idempotency_key="dep-2:product"
        )

        assert product_id == "prod_after_retry"
        assert len(recorder.requests) == 2
        assert {r.headers["Idempotency-Key"] for r in recorder.requests} == {"dep-2:product"}

    async def test_rate_limit_gives_up_after_three_attempts(self):
        recorder = Recorder(*[httpx.Response(429, json={"error": {"message": "Too many requests"}})] * 3)

        with pytest.raises(ExternalServiceError, match="Too many requests"):
            await _provider(recorder).create_product(Environment.PRODUCTION, ACCOUNT, ProductRequest(name="x"))
        assert len(recorder.requests) == 3

    async def test_transport_error_is_wrapped(self):
        def _boom(request):
            raise httpx.ConnectError("connection refused", request=request)

        provider = StripeProvider(api_base="https://stripe.test/v1", transport=httpx.MockTransport(_boom))
        with pytest.raises(ExternalServiceError, match="Stripe request failed"):
            await provider.create_product(Environment.PRODUCTION, ACCOUNT, ProductRequest(name="x"))

    async def test_platform_key_used_for_connected_account_without_token(self):
        recorder = Recorder(httpx.Response(200, json={"id": "prod_1"}))
        provider = _provider(recorder, production_secret_key="sk_live_platform")

        await provider.create_product(
            Environment.PRODUCTION, ProviderAccount(account_id="acct_9"), ProductRequest(name="x")
        )

        [request] = recorder.requests
        assert request.headers["Authorization"] == "Bearer sk_live_platform"
        assert request.headers["Stripe-Account"] == "acct_9"

    async def test_missing_secret_fails_before_any_request(self):
        recorder = Recorder()
        with pytest.raises(ExternalServiceError, match="No Stripe secret key"):
            await _provider(recorder).create_product(
                Environment.PRODUCTION, ProviderAccount(account_id="acct_9"), ProductRequest(name="x")
            )
        assert recorder.requests == []

    async def test_find_product_by_metadata(self):
        recorder = Recorder(httpx.Response(200, json={"data": [{"id": "prod_found", "metadata": {}}]}))

        found = await _provider(recorder).find_product_by_metadata(
            Environment.PRODUCTION, ACCOUNT, "deployment_id", "dep-9"
        )

        assert found["id"] == "prod_found"
        [request] = recorder.requests
        assert request.method == "GET"
        assert request.url.path == "/v1/products/search"
        assert request.url.params["query"] == "metadata['deployment_id']:'dep-9'"

    async def test_find_active_price_empty(self):
        recorder = Recorder(httpx.Response(200, json={"data": []}))
        assert await _provider(recorder).find_active_price(Environment.PRODUCTION, ACCOUNT, "prod_1") is None
        assert recorder.requests[0].url.params["active"] == "true"
