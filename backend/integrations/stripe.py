"""
Stripe Integration Client

Talks to the Stripe REST API for product/price creation on a creator's
connected account. Test calls use the creator's test token; production
calls use the creator's production token when present, otherwise the
platform production key with the Stripe-Account header.
"""

from typing import Any

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.config import get_settings
from integrations.base import PaymentProvider, PriceRequest, ProductRequest
from promotion.errors import ExternalServiceError
from promotion.types import Environment, ProviderAccount

logger = structlog.get_logger()


class StripeRetryableError(ExternalServiceError):
    """Rate limited or 5xx; safe to retry because creates carry an idempotency key."""


def encode_form(payload: dict[str, Any], prefix: str = "") -> list[tuple[str, str]]:
    """Flatten nested dicts into Stripe's bracketed form encoding."""
    pairs: list[tuple[str, str]] = []
    for key, value in payload.items():
        name = f"{prefix}[{key}]" if prefix else key
        if value is None:
            continue
        if isinstance(value, dict):
            pairs.extend(encode_form(value, name))
        elif isinstance(value, bool):
            pairs.append((name, "true" if value else "false"))
        else:
            pairs.append((name, str(value)))
    return pairs


def _error_message(response: httpx.Response) -> tuple[str, str | None]:
    try:
        error = response.json().get("error", {})
    except ValueError:
        error = {}
    message = error.get("message") or f"Stripe returned HTTP {response.status_code}"
    return message, error.get("code")


class StripeProvider(PaymentProvider):
    """Client for Stripe API interactions."""

    name = "stripe"

    def __init__(
        self,
        *,
        api_base: str | None = None,
        api_version: str | None = None,
        production_secret_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.api_base = (api_base or settings.stripe_api_base).rstrip("/")
        self.api_version = api_version or settings.stripe_api_version
        self.production_secret_key = (
            production_secret_key if production_secret_key is not None else settings.stripe_production_secret_key
        )
        self.timeout = timeout if timeout is not None else settings.stripe_timeout_seconds
        self._transport = transport

    def _secret_for(self, environment: Environment, account: ProviderAccount) -> str:
        if account.access_token:
            return account.access_token
        if environment == Environment.PRODUCTION and self.production_secret_key:
            return self.production_secret_key
        raise ExternalServiceError(f"No Stripe secret key available for the {environment.value} environment")

    def _headers(self, environment: Environment, account: ProviderAccount, idempotency_key: str | None) -> dict:
        headers = {
            "Authorization": f"Bearer {self._secret_for(environment, account)}",
            "Stripe-Version": self.api_version,
        }
        if account.account_id:
            headers["Stripe-Account"] = account.account_id
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    @retry(
        retry=retry_if_exception_type((httpx.TransportError, StripeRetryableError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(min=1, max=10),
        reraise=True,
    )
    async def _send(
        self,
        method: str,
        path: str,
        *,
        headers: dict,
        data: list[tuple[str, str]] | None = None,
        params: dict | None = None,
    ) -> dict:
        async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
            response = await client.request(
                method,
                f"{self.api_base}{path}",
                headers=headers,
                data=data,
                params=params,
            )
        if response.status_code == 429 or response.status_code >= 500:
            message, code = _error_message(response)
            raise StripeRetryableError(message, status_code=response.status_code, provider_code=code)
        if response.status_code >= 400:
            message, code = _error_message(response)
            raise ExternalServiceError(message, status_code=response.status_code, provider_code=code)
        return response.json()

    async def _request(
        self,
        method: str,
        path: str,
        environment: Environment,
        account: ProviderAccount,
        *,
        data: dict | None = None,
        params: dict | None = None,
        idempotency_key: str | None = None,
    ) -> dict:
        headers = self._headers(environment, account, idempotency_key)
        try:
            return await self._send(
                method,
                path,
                headers=headers,
                data=encode_form(data) if data is not None else None,
                params=params,
            )
        except httpx.HTTPError as exc:
            logger.warning("stripe.transport_error", path=path, environment=environment.value, error=str(exc))
            raise ExternalServiceError(f"Stripe request failed: {exc.__class__.__name__}") from exc

    async def create_product(
        self,
        environment: Environment,
        account: ProviderAccount,
        request: ProductRequest,
        *,
        idempotency_key: str | None = None,
    ) -> str:
        body = await self._request(
            "POST",
            "/products",
            environment,
            account,
            data={
                "name": request.name,
                "description": request.description or None,
                "active": request.active,
                "metadata": request.metadata,
            },
            idempotency_key=idempotency_key,
        )
        return body["id"]

    async def create_price(
        self,
        environment: Environment,
        account: ProviderAccount,
        request: PriceRequest,
        *,
        idempotency_key: str | None = None,
    ) -> str:
        body = await self._request(
            "POST",
            "/prices",
            environment,
            account,
            data={
                "product": request.product_external_id,
                "unit_amount": request.unit_amount_minor,
                "currency": request.currency,
                "recurring": request.recurring,
                "metadata": request.metadata,
            },
            idempotency_key=idempotency_key,
        )
        return body["id"]

    async def find_product_by_metadata(
        self,
        environment: Environment,
        account: ProviderAccount,
        key: str,
        value: str,
    ) -> dict[str, Any] | None:
        body = await self._request(
            "GET",
            "/products/search",
            environment,
            account,
            params={"query": f"metadata['{key}']:'{value}'", "limit": 1},
        )
        results = body.get("data", [])
        return results[0] if results else None

    async def find_active_price(
        self,
        environment: Environment,
        account: ProviderAccount,
        product_external_id: str,
    ) -> dict[str, Any] | None:
        body = await self._request(
            "GET",
            "/prices",
            environment,
            account,
            params={"product": product_external_id, "active": "true", "limit": 1},
        )
        results = body.get("data", [])
        return results[0] if results else None
