"""
Payment provider adapters package.

The promotion pipeline talks to the payment processor through the narrow
PaymentProvider interface so tests can plug in an in-memory fake:
  - Stripe  (REST API, form-encoded, per-environment secret keys)

Usage:
    from integrations.stripe import StripeProvider

    provider = StripeProvider()
    product_id = await provider.create_product(
        Environment.PRODUCTION, account, ProductRequest(name="Course"),
    )
"""

from integrations.base import PaymentProvider, PriceRequest, ProductRequest
from integrations.stripe import StripeProvider, encode_form

__all__ = [
    "PaymentProvider",
    "PriceRequest",
    "ProductRequest",
    "StripeProvider",
    "encode_form",
]
