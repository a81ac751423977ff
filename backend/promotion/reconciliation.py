"""
Reconciliation for Persisting-stage failures.

When the provider calls of a promotion succeeded but linking the ids onto
the product failed, the live Stripe product and price exist but nothing
local points at them. The product carries the deployment id in its
metadata, so it can be found again and re-linked. Provider resources are
never recreated here.
"""

from datetime import datetime

import structlog

from db.repository import PromotionRepository
from integrations.base import PaymentProvider
from promotion.errors import ExternalServiceError, NotFoundError, ReconciliationError
from promotion.locks import ProductLockRegistry, get_lock_registry
from promotion.types import Environment, PromotionResult, ProviderAccount

logger = structlog.get_logger()


class PromotionReconciler:
    def __init__(
        self,
        repository: PromotionRepository,
        provider: PaymentProvider,
        *,
        locks: ProductLockRegistry | None = None,
    ):
        self.repository = repository
        self.provider = provider
        self.locks = locks or get_lock_registry()

    async def reconcile(self, creator_id, deployment_id) -> PromotionResult:
        """
        Re-link the provider resources created by a failed deployment.

        Raises NotFoundError for an unknown deployment and ReconciliationError
        when the deployment is not in a reconcilable state. Provider failures
        come back as an unsuccessful PromotionResult.
        """
        record = await self.repository.get_deployment_record(deployment_id, creator_id)
        if record is None:
            raise NotFoundError("Deployment not found")
        if record.status != "failed" or record.error_kind != "persistence":
            raise ReconciliationError(
                f"Deployment is {record.status} and not awaiting reconciliation",
                deployment_id=str(deployment_id),
            )

        product = await self.repository.get_product(record.product_id, creator_id)
        if product is None:
            raise ReconciliationError("Product no longer exists", deployment_id=str(deployment_id))

        log = logger.bind(
            creator_id=str(creator_id),
            product_id=str(product.product_id),
            deployment_id=str(record.deployment_id),
        )

        async with self.locks.hold(product.creator_id, product.product_id):
            if product.is_deployed and product.production_product_external_id == record.target_product_external_id:
                return self._result(record.deployment_id, product.production_product_external_id,
                                    product.production_price_external_id)
            if product.last_promoted_at is not None and product.last_promoted_at > record.started_at:
                raise ReconciliationError(
                    "A later promotion already linked different production resources",
                    deployment_id=str(deployment_id),
                )

            credentials = await self.repository.get_creator_credentials(creator_id)
            account = (credentials.production if credentials else None) or ProviderAccount(account_id=None)
            try:
                product_ext, price_ext = await self._locate(record, account)
            except ExternalServiceError as exc:
                log.warning("reconciliation.provider_error", error=exc.message)
                return PromotionResult(
                    success=False,
                    deployment_id=str(record.deployment_id),
                    error=exc.message,
                    error_code=exc.code,
                )

            await self.repository.update_product(
                product.product_id,
                {
                    "production_product_external_id": product_ext,
                    "production_price_external_id": price_ext,
                    "last_promoted_at": datetime.utcnow(),
                },
            )

        log.info("reconciliation.relinked", production_product_id=product_ext, production_price_id=price_ext)
        return self._result(record.deployment_id, product_ext, price_ext)

    async def _locate(self, record, account: ProviderAccount) -> tuple[str, str]:
        deployment_id = str(record.deployment_id)

        product_ext = record.target_product_external_id
        if not product_ext:
            found = await self.provider.find_product_by_metadata(
                Environment.PRODUCTION, account, "deployment_id", deployment_id
            )
            if not found:
                raise ReconciliationError(
                    "No production product is tagged with this deployment", deployment_id=deployment_id
                )
            product_ext = found["id"]

        price_ext = record.target_price_external_id
        if not price_ext:
            price = await self.provider.find_active_price(Environment.PRODUCTION, account, product_ext)
            if not price:
                raise ReconciliationError(
                    f"Production product {product_ext} has no active price", deployment_id=deployment_id
                )
            price_ext = price["id"]

        return product_ext, price_ext

    @staticmethod
    def _result(deployment_id, product_ext: str, price_ext: str) -> PromotionResult:
        return PromotionResult(
            success=True,
            deployment_id=str(deployment_id),
            production_product_id=product_ext,
            production_price_id=price_ext,
        )
