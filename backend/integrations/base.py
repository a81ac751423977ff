"""
Payment Provider — Abstract Base Class

The promotion pipeline only needs two write operations from the payment
provider (create product, create price) plus two metadata lookups used
for reconciliation. Every call is scoped to an environment (test or
production) and a connected merchant account.

StripeProvider is the production implementation; tests plug in a fake.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import structlog

from promotion.types import Environment, ProviderAccount

logger = structlog.get_logger()


# ── Request containers ────────────────────────────────────────────────────


@dataclass
class ProductRequest:
    name: str
    description: str | None = None
    active: bool = True
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class PriceRequest:
    product_external_id: str
    unit_amount_minor: int
    currency: str
    recurring: dict[str, str] | None = None
    metadata: dict[str, str] = field(default_factory=dict)


# ── Abstract provider ─────────────────────────────────────────────────────


class PaymentProvider(ABC):
    """
    Narrow interface onto the external payment processor.

    Implementations raise promotion.errors.ExternalServiceError for any
    provider-side or transport failure.
    """

    name: str = "provider"

    @abstractmethod
    async def create_product(
        self,
        environment: Environment,
        account: ProviderAccount,
        request: ProductRequest,
        *,
        idempotency_key: str | None = None,
    ) -> str:
        """Create a product and return its external id."""
        ...

    @abstractmethod
    async def create_price(
        self,
        environment: Environment,
        account: ProviderAccount,
        request: PriceRequest,
        *,
        idempotency_key: str | None = None,
    ) -> str:
        """Create a price attached to an external product and return its id."""
        ...

    @abstractmethod
    async def find_product_by_metadata(
        self,
        environment: Environment,
        account: ProviderAccount,
        key: str,
        value: str,
    ) -> dict[str, Any] | None:
        """Return the first product whose metadata[key] == value, if any."""
        ...

    @abstractmethod
    async def find_active_price(
        self,
        environment: Environment,
        account: ProviderAccount,
        product_external_id: str,
    ) -> dict[str, Any] | None:
        """Return an active price attached to the product, if any."""
        ...
