from decimal import Decimal
from types import SimpleNamespace

import pytest

from promotion.types import CheckStatus
from promotion.validation import (
    CHECK_CRITICALITY,
    CHECK_CURRENCY,
    CHECK_PRODUCT_DESCRIPTION,
    CHECK_PRODUCT_NAME,
    CHECK_PRODUCT_PRICE,
    CHECK_STRIPE_TEST_INTEGRATION,
    critical_failures,
    is_deployable,
    issues,
    parse_price,
    validate,
)


def _product(**overrides):
    fields = {
        "name": "Pro Plan",
        "price": Decimal("29.99"),
        "currency": "usd",
        "description": "A complete course on shipping products",
        "test_product_external_id": "tp_1",
    }
    fields.update(overrides)
    return fields


def _by_name(checks):
    return {check.check: check for check in checks}


def test_valid_product_passes_every_check():
    checks = validate(_product())
    assert [c.check for c in checks] == [
        CHECK_PRODUCT_NAME,
        CHECK_PRODUCT_PRICE,
        CHECK_STRIPE_TEST_INTEGRATION,
        CHECK_PRODUCT_DESCRIPTION,
        CHECK_CURRENCY,
    ]
    assert all(c.status == CheckStatus.PASSED for c in checks)
    assert is_deployable(checks)
    assert issues(checks) == []


def test_check_names_are_stable_identifiers():
    names = [c.check for c in validate(_product())]
    assert names == ["product_name", "product_price", "stripe_test_integration", "product_description", "currency"]


def test_pro_plan_without_description_only_warns():
    checks = _by_name(validate(_product(description="")))
    assert checks[CHECK_PRODUCT_DESCRIPTION].status == CheckStatus.WARNING
    assert checks[CHECK_PRODUCT_DESCRIPTION].critical is False
    assert checks[CHECK_PRODUCT_PRICE].message == "Price: 29.99"
    assert is_deployable(list(checks.values()))


@pytest.mark.parametrize("name", ["", "   ", None])
def test_blank_name_fails_critically(name):
    checks = validate(_product(name=name))
    failures = critical_failures(checks)
    assert [c.check for c in failures] == [CHECK_PRODUCT_NAME]
    assert failures[0].message == "Product name is required"
    assert not is_deployable(checks)


@pytest.mark.parametrize("price", [0, Decimal("-1.00"), None, "abc", "NaN", True])
def test_non_positive_or_unusable_price_fails_critically(price):
    checks = _by_name(validate(_product(price=price)))
    assert checks[CHECK_PRODUCT_PRICE].status == CheckStatus.FAILED
    assert checks[CHECK_PRODUCT_PRICE].message == "Product must have a valid price"


def test_missing_test_link_fails_critically():
    checks = _by_name(validate(_product(test_product_external_id=None)))
    check = checks[CHECK_STRIPE_TEST_INTEGRATION]
    assert check.status == CheckStatus.FAILED
    assert check.critical is True
    assert check.message == "Must be connected to Stripe test product first"


def test_short_description_is_a_warning():
    checks = _by_name(validate(_product(description="  short  ")))
    assert checks[CHECK_PRODUCT_DESCRIPTION].status == CheckStatus.WARNING


def test_description_threshold_is_configurable():
    checks = _by_name(validate(_product(description="tiny"), min_description_length=3))
    assert checks[CHECK_PRODUCT_DESCRIPTION].status == CheckStatus.PASSED


@pytest.mark.parametrize("currency", [None, "", "jpy"])
def test_unsupported_currency_is_a_warning(currency):
    checks = _by_name(validate(_product(currency=currency)))
    assert checks[CHECK_CURRENCY].status == CheckStatus.WARNING
    assert is_deployable(list(checks.values()))


def test_currency_is_case_insensitive():
    checks = _by_name(validate(_product(currency="GBP")))
    assert checks[CHECK_CURRENCY].status == CheckStatus.PASSED


def test_empty_product_never_raises():
    checks = validate({})
    assert len(checks) == 5
    assert {c.check for c in critical_failures(checks)} == {
        CHECK_PRODUCT_NAME,
        CHECK_PRODUCT_PRICE,
        CHECK_STRIPE_TEST_INTEGRATION,
    }


def test_attribute_objects_are_accepted():
    product = SimpleNamespace(**_product())
    assert validate(product) == validate(_product())


def test_validate_is_idempotent():
    product = _product(description=None, currency="cad")
    assert validate(product) == validate(product)


def test_criticality_is_static_per_check():
    good = validate(_product())
    bad = validate({})
    for check in good + bad:
        assert check.critical is CHECK_CRITICALITY[check.check]


def test_parse_price():
    assert parse_price("19.90") == Decimal("19.90")
    assert parse_price(12) == Decimal("12")
    assert parse_price("Infinity") is None
    assert parse_price(False) is None
