"""
Promotion Error Taxonomy

Fail-fast errors (raised before a deployment record exists):
  - ConfigurationError        creator has no connected test account
  - NotFoundError             creator / product / deployment lookup miss
  - PromotionValidationError  a critical validation check failed
  - ConcurrentPromotionError  another attempt for the product is in flight

Post-record errors (the deployment record is marked failed):
  - ExternalServiceError      a Stripe call failed
  - PersistenceError          Stripe resources exist but could not be linked locally
  - PromotionTimeoutError     the attempt exceeded its overall deadline

The orchestrator converts every one of these into a PromotionResult;
they only cross module boundaries inside the pipeline.
"""

from typing import Any

from promotion.types import ValidationCheck


class PromotionError(Exception):
    """Base class for every promotion pipeline error."""

    code = "promotion_error"
    creates_record = False

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        return self.message


class ConfigurationError(PromotionError):
    code = "configuration"


class NotFoundError(PromotionError):
    code = "not_found"


class PromotionValidationError(PromotionError):
    code = "validation"

    def __init__(self, failures: list[ValidationCheck]):
        self.failures = failures
        super().__init__("Validation failed: " + ", ".join(check.message for check in failures))


class ConcurrentPromotionError(PromotionError):
    code = "concurrent_promotion"

    def __init__(self, product_id: str):
        super().__init__("A promotion is already in progress for this product", product_id=product_id)


class ExternalServiceError(PromotionError):
    code = "external_service"
    creates_record = True

    def __init__(self, message: str, *, status_code: int | None = None, provider_code: str | None = None):
        super().__init__(message, status_code=status_code, provider_code=provider_code)
        self.status_code = status_code
        self.provider_code = provider_code


class PersistenceError(PromotionError):
    """Local write failed after Stripe resources were created (reconciliation gap)."""

    code = "persistence"
    creates_record = True

    def __init__(self, message: str, *, product_external_id: str | None, price_external_id: str | None):
        super().__init__(
            message,
            product_external_id=product_external_id,
            price_external_id=price_external_id,
        )
        self.product_external_id = product_external_id
        self.price_external_id = price_external_id


class PromotionTimeoutError(PromotionError):
    code = "timeout"
    creates_record = True


class ReconciliationError(PromotionError):
    code = "reconciliation"


class InvalidTransitionError(PromotionError):
    code = "invalid_transition"
