"""
Promotion Validation Engine

Pure checks run against a product before it may be promoted from the
Stripe test environment to production. No I/O, no exceptions: a missing
or malformed field is itself a failed (or warning) check.

A product is deployable iff no critical check failed. Criticality is a
property of the check name, never of the outcome.
"""

from collections.abc import Iterable, Mapping
from decimal import Decimal, InvalidOperation
from typing import Any

from promotion.types import CheckStatus, ValidationCheck

MIN_DESCRIPTION_LENGTH = 10
SUPPORTED_CURRENCIES = ("usd", "eur", "gbp")

CHECK_PRODUCT_NAME = "product_name"
CHECK_PRODUCT_PRICE = "product_price"
CHECK_STRIPE_TEST_INTEGRATION = "stripe_test_integration"
CHECK_PRODUCT_DESCRIPTION = "product_description"
CHECK_CURRENCY = "currency"

CHECK_CRITICALITY: dict[str, bool] = {
    CHECK_PRODUCT_NAME: True,
    CHECK_PRODUCT_PRICE: True,
    CHECK_STRIPE_TEST_INTEGRATION: True,
    CHECK_PRODUCT_DESCRIPTION: False,
    CHECK_CURRENCY: False,
}


def _field(product: Any, name: str) -> Any:
    if isinstance(product, Mapping):
        return product.get(name)
    return getattr(product, name, None)


def _clean_text(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip()


def parse_price(value: Any) -> Decimal | None:
    """Coerce a stored price to Decimal; None for anything unusable."""
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite():
        return None
    return amount


def _check(name: str, passed: bool, ok_message: str, bad_message: str, *, soft: bool = False) -> ValidationCheck:
    if passed:
        status = CheckStatus.PASSED
    else:
        status = CheckStatus.WARNING if soft else CheckStatus.FAILED
    return ValidationCheck(
        check=name,
        status=status,
        message=ok_message if passed else bad_message,
        critical=CHECK_CRITICALITY[name],
    )


def validate(
    product: Any,
    *,
    min_description_length: int = MIN_DESCRIPTION_LENGTH,
    supported_currencies: Iterable[str] = SUPPORTED_CURRENCIES,
) -> list[ValidationCheck]:
    """Run every promotion check against a product (ORM row or mapping)."""
    checks: list[ValidationCheck] = []

    name = _clean_text(_field(product, "name"))
    checks.append(
        _check(CHECK_PRODUCT_NAME, bool(name), "Product name is valid", "Product name is required")
    )

    price = parse_price(_field(product, "price"))
    price_ok = price is not None and price > 0
    checks.append(
        _check(
            CHECK_PRODUCT_PRICE,
            price_ok,
            f"Price: {price:.2f}" if price_ok else "",
            "Product must have a valid price",
        )
    )

    test_product_id = _clean_text(_field(product, "test_product_external_id"))
    checks.append(
        _check(
            CHECK_STRIPE_TEST_INTEGRATION,
            bool(test_product_id),
            "Connected to Stripe test product",
            "Must be connected to Stripe test product first",
        )
    )

    description = _clean_text(_field(product, "description"))
    checks.append(
        _check(
            CHECK_PRODUCT_DESCRIPTION,
            len(description) >= min_description_length,
            "Description is comprehensive",
            "Consider adding a detailed description for better customer understanding",
            soft=True,
        )
    )

    currency = _clean_text(_field(product, "currency")).lower()
    allowed = {code.lower() for code in supported_currencies}
    if not currency:
        currency_message = "Currency should be specified"
    else:
        currency_message = f"Currency {currency.upper()} is not supported"
    checks.append(
        _check(
            CHECK_CURRENCY,
            currency in allowed,
            f"Currency: {currency.upper()}",
            currency_message,
            soft=True,
        )
    )

    return checks


def critical_failures(checks: Iterable[ValidationCheck]) -> list[ValidationCheck]:
    return [c for c in checks if c.critical and c.status == CheckStatus.FAILED]


def is_deployable(checks: Iterable[ValidationCheck]) -> bool:
    """True iff no critical check failed."""
    return not critical_failures(checks)


def issues(checks: Iterable[ValidationCheck]) -> list[ValidationCheck]:
    """Every check that did not pass (warnings included)."""
    return [c for c in checks if c.status != CheckStatus.PASSED]
