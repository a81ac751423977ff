"""
Environment Status Aggregator

Read-only views over a creator's products and deployment history:
  - get_status            credential flags, per-environment counts, last deployment
  - preview_all           every active product with its validation results
  - summarize             ready / needs-attention / already-deployed counters
  - readiness_report      ready product ids plus every non-passed check
  - environment_products  external ids a storefront embed should use

Partial data (a deployment whose product was since deleted) is omitted,
never an error.
"""

import structlog

from core.config import Settings, get_settings
from db.models import IN_FLIGHT_STATUSES, Product
from db.repository import PromotionRepository
from promotion.errors import NotFoundError
from promotion.types import (
    DeploymentSummary,
    Environment,
    EnvironmentProduct,
    EnvironmentStatus,
    LastDeployment,
    ProductAttention,
    ProductPreview,
    ReadinessReport,
    ValidationCheck,
)
from promotion.validation import is_deployable, issues, parse_price, validate

logger = structlog.get_logger()

DEPLOYMENT_OUTCOMES = {"completed": "success", "failed": "failed"}


class EnvironmentAggregator:
    def __init__(self, repository: PromotionRepository, settings: Settings | None = None):
        self.repository = repository
        self.settings = settings or get_settings()

    def _validate(self, product: Product) -> list[ValidationCheck]:
        return validate(
            product,
            min_description_length=self.settings.description_min_length,
            supported_currencies=self.settings.supported_currencies,
        )

    async def get_status(self, creator_id) -> EnvironmentStatus:
        credentials = await self.repository.get_creator_credentials(creator_id)
        if credentials is None:
            raise NotFoundError("Creator not found")

        products = await self.repository.list_active_products(creator_id)
        in_flight = await self.repository.list_deployment_records(creator_id, statuses=IN_FLIGHT_STATUSES)
        products_in_production = sum(1 for p in products if p.is_deployed)

        return EnvironmentStatus(
            test_configured=credentials.test_configured,
            production_configured=credentials.production_configured,
            products_in_test=sum(1 for p in products if p.test_product_external_id),
            products_in_production=products_in_production,
            pending_deployments=len(in_flight),
            last_deployment=await self._last_deployment(creator_id),
            current_environment=(
                Environment.PRODUCTION
                if credentials.production_configured and products_in_production
                else Environment.TEST
            ),
        )

    async def _last_deployment(self, creator_id) -> LastDeployment | None:
        latest = await self.repository.get_latest_deployment(creator_id)
        if latest is None:
            return None

        names = await self.repository.get_product_names([latest.product_id])
        product_name = names.get(latest.product_id)
        if product_name is None:
            logger.debug(
                "environment.last_deployment_orphaned",
                deployment_id=str(latest.deployment_id),
                product_id=str(latest.product_id),
            )
            return None

        return LastDeployment(
            date=latest.completed_at or latest.started_at,
            product_name=product_name,
            status=DEPLOYMENT_OUTCOMES.get(latest.status, latest.status),
        )

    async def preview_all(self, creator_id) -> list[ProductPreview]:
        previews = []
        for product in await self.repository.list_active_products(creator_id):
            price = parse_price(product.price)
            previews.append(
                ProductPreview(
                    product_id=str(product.product_id),
                    product_name=product.name,
                    test_price=price,
                    production_price=price if product.is_deployed else None,
                    is_deployed=product.is_deployed,
                    last_modified=product.updated_at,
                    validation_results=self._validate(product),
                )
            )
        return previews

    async def summarize(self, creator_id) -> DeploymentSummary:
        """Each active product lands in exactly one bucket."""
        ready = attention = deployed = 0
        products = await self.repository.list_active_products(creator_id)
        for product in products:
            if product.is_deployed:
                deployed += 1
            elif is_deployable(self._validate(product)):
                ready += 1
            else:
                attention += 1

        return DeploymentSummary(
            total_products=len(products),
            ready_to_deploy=ready,
            needs_attention=attention,
            already_deployed=deployed,
        )

    async def readiness_report(self, creator_id) -> ReadinessReport:
        report = ReadinessReport()
        for product in await self.repository.list_active_products(creator_id):
            if product.is_deployed:
                continue
            checks = self._validate(product)
            if is_deployable(checks):
                report.ready_to_deploy.append(str(product.product_id))
            problems = issues(checks)
            if problems:
                report.needs_attention.append(
                    ProductAttention(
                        product_id=str(product.product_id),
                        product_name=product.name,
                        issues=problems,
                    )
                )
        return report

    async def environment_products(self, creator_id, environment: Environment) -> list[EnvironmentProduct]:
        """Products that exist in the given environment, with that environment's ids."""
        results = []
        for product in await self.repository.list_active_products(creator_id):
            if environment == Environment.PRODUCTION:
                product_ext = product.production_product_external_id
                price_ext = product.production_price_external_id
            else:
                product_ext = product.test_product_external_id
                price_ext = product.test_price_external_id
            if not product_ext:
                continue

            results.append(
                EnvironmentProduct(
                    product_id=str(product.product_id),
                    name=product.name,
                    price=parse_price(product.price),
                    external_product_id=product_ext,
                    external_price_id=price_ext,
                    is_deployed=product.is_deployed,
                    metadata={
                        "environment": environment.value,
                        "currency": (product.currency or "usd").lower(),
                        "product_kind": product.product_kind,
                    },
                )
            )
        return results
