"""
Promotion pipeline value types.

Plain dataclasses returned by the validation engine, the orchestrator,
the batch coordinator and the environment aggregator. Routers serialize
them through pydantic response schemas.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any


class Environment(str, Enum):
    """Stripe environments a product can live in."""

    TEST = "test"
    PRODUCTION = "production"


class CheckStatus(str, Enum):
    PASSED = "passed"
    WARNING = "warning"
    FAILED = "failed"


@dataclass(frozen=True)
class ValidationCheck:
    """Outcome of one named rule applied to a product."""

    check: str
    status: CheckStatus
    message: str
    critical: bool


# ── Credentials ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ProviderAccount:
    """A connected Stripe account plus the token used to act on it."""

    account_id: str | None
    access_token: str | None = None


@dataclass(frozen=True)
class EnvironmentCredentials:
    test: ProviderAccount | None = None
    production: ProviderAccount | None = None
    production_enabled: bool = False

    @property
    def test_configured(self) -> bool:
        return self.test is not None and bool(self.test.access_token)

    @property
    def production_configured(self) -> bool:
        return self.production_enabled


# ── Orchestrator / coordinator results ─────────────────────────────────────


@dataclass
class PromotionResult:
    """Structured result of one promotion attempt. Never raised, always returned."""

    success: bool
    deployment_id: str | None = None
    error: str | None = None
    error_code: str | None = None
    production_product_id: str | None = None
    production_price_id: str | None = None


@dataclass
class BatchItemResult:
    product_id: str
    success: bool
    deployment_id: str | None = None
    error: str | None = None


@dataclass
class BatchSummary:
    total: int = 0
    successful: int = 0
    failed: int = 0


@dataclass
class BatchResult:
    results: list[BatchItemResult] = field(default_factory=list)
    summary: BatchSummary = field(default_factory=BatchSummary)
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: datetime | None = None

    def complete(self) -> "BatchResult":
        self.completed_at = datetime.utcnow()
        return self


# ── Aggregator views ───────────────────────────────────────────────────────


@dataclass
class LastDeployment:
    date: datetime
    product_name: str
    status: str  # success | failed


@dataclass
class EnvironmentStatus:
    test_configured: bool
    production_configured: bool
    products_in_test: int
    products_in_production: int
    pending_deployments: int
    last_deployment: LastDeployment | None = None
    current_environment: Environment = Environment.TEST


@dataclass
class DeploymentSummary:
    total_products: int
    ready_to_deploy: int
    needs_attention: int
    already_deployed: int
    deployment_time: str = "< 5 minutes"
    estimated_downtime: str = "0 seconds - seamless transition"


@dataclass
class ProductPreview:
    product_id: str
    product_name: str
    test_price: Decimal | None
    production_price: Decimal | None
    is_deployed: bool
    last_modified: datetime | None
    validation_results: list[ValidationCheck] = field(default_factory=list)


@dataclass
class ProductAttention:
    product_id: str
    product_name: str
    issues: list[ValidationCheck] = field(default_factory=list)


@dataclass
class ReadinessReport:
    ready_to_deploy: list[str] = field(default_factory=list)
    needs_attention: list[ProductAttention] = field(default_factory=list)


@dataclass
class EnvironmentProduct:
    product_id: str
    name: str
    price: Decimal | None
    external_product_id: str | None
    external_price_id: str | None
    is_deployed: bool
    metadata: dict[str, Any] = field(default_factory=dict)
