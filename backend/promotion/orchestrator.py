"""
Deployment Orchestrator — promote one product from test to production.

Flow:
  1. Load the creator's Stripe credentials       (fail fast, no record)
  2. Load the product, scoped to the creator      (fail fast, no record)
  3. Run the validation engine                    (fail fast, no record)
  4. Create the deployment record (deploying)     ← first durable side effect
  5. Stripe: create production product
  6. Stripe: create production price
  7. Link both production ids onto the product
  8. Mark the deployment record completed

Anything that goes wrong in steps 5-7 marks that same record failed with
the error detail. A failure in step 7 leaves live Stripe resources that
are not yet linked locally; the record keeps their ids and the error kind
"persistence". The next promote() of that product re-links them through
promotion.reconciliation instead of creating a second set.

The overall deadline covers steps 5-6 only. Once step 7 has committed the
product is live; if step 8 cannot be written the record stays in
"deploying" and the stale-deployment sweeper closes it as completed.
"""

import asyncio
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from core.config import Settings, get_settings
from db.models import DeploymentRecord, Product
from db.repository import PromotionRepository
from integrations.base import PaymentProvider, PriceRequest, ProductRequest
from promotion.errors import (
    ConcurrentPromotionError,
    ConfigurationError,
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    PromotionError,
    PromotionTimeoutError,
    PromotionValidationError,
)
from promotion.locks import ProductLockRegistry, get_lock_registry
from promotion.reconciliation import PromotionReconciler
from promotion.state_machine import STATE_PROGRESS, PromotionState, PromotionStateMachine, can_transition
from promotion.types import Environment, EnvironmentCredentials, PromotionResult, ProviderAccount
from promotion.validation import critical_failures, parse_price, validate

logger = structlog.get_logger()

SUBSCRIPTION_INTERVAL = "month"


def to_minor_units(amount: Decimal) -> int:
    """Convert a decimal price to Stripe's integer minor units (cents)."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PromotionOrchestrator:
    """Runs promotion attempts against one repository and one provider."""

    def __init__(
        self,
        repository: PromotionRepository,
        provider: PaymentProvider,
        *,
        locks: ProductLockRegistry | None = None,
        settings: Settings | None = None,
    ):
        self.repository = repository
        self.provider = provider
        self.locks = locks or get_lock_registry()
        self.settings = settings or get_settings()

    def validate(self, product) -> list:
        return validate(
            product,
            min_description_length=self.settings.description_min_length,
            supported_currencies=self.settings.supported_currencies,
        )

    async def promote(self, creator_id, product_id, *, initiated_by: str | None = None) -> PromotionResult:
        """Promote one product. Never raises for pipeline failures."""
        log = logger.bind(creator_id=str(creator_id), product_id=str(product_id))
        machine = PromotionStateMachine(str(product_id))

        try:
            credentials, product = await self._preflight(creator_id, product_id, machine)
            unlinked = await self._unlinked_deployment(product)
            if unlinked is not None:
                log.info("promotion.resuming_reconciliation", deployment_id=str(unlinked.deployment_id))
                reconciler = PromotionReconciler(self.repository, self.provider, locks=self.locks)
                return await reconciler.reconcile(product.creator_id, unlinked.deployment_id)
            async with self.locks.hold(product.creator_id, product.product_id):
                return await self._deploy(credentials, product, machine, initiated_by or str(creator_id), log)
        except PromotionError as exc:
            if exc.creates_record:
                raise
            if can_transition(machine.state, PromotionState.REJECTED):
                machine.transition(PromotionState.REJECTED, reason=exc.code)
            log.info("promotion.rejected", code=exc.code, error=exc.message)
            return PromotionResult(success=False, error=exc.message, error_code=exc.code)
        except SQLAlchemyError as exc:
            # Only reachable before a record exists; later steps record their own failures
            await self.repository.rollback()
            log.error("promotion.database_error", error=str(exc), exc_info=True)
            return PromotionResult(
                success=False,
                error="Database error before the deployment started",
                error_code=PersistenceError.code,
            )

    # ── Steps 1-3 ─────────────────────────────────────────────────────────

    async def _preflight(
        self, creator_id, product_id, machine: PromotionStateMachine
    ) -> tuple[EnvironmentCredentials, Product]:
        credentials = await self.repository.get_creator_credentials(creator_id)
        if credentials is None:
            raise NotFoundError("Creator not found")
        if not credentials.test_configured:
            raise ConfigurationError("Stripe account not connected")

        product = await self.repository.get_product(product_id, creator_id)
        if product is None:
            raise NotFoundError("Product not found")

        machine.transition(PromotionState.VALIDATING)
        failures = critical_failures(self.validate(product))
        if failures:
            raise PromotionValidationError(failures)
        return credentials, product

    async def _unlinked_deployment(self, product: Product) -> DeploymentRecord | None:
        """Latest attempt for the product if its Stripe resources were never linked."""
        record = await self.repository.get_latest_product_deployment(product.product_id)
        if record is None or record.status != "failed" or record.error_kind != PersistenceError.code:
            return None
        if product.production_product_external_id == record.target_product_external_id:
            return None
        return record

    # ── Steps 4-8 ─────────────────────────────────────────────────────────

    async def _deploy(
        self,
        credentials: EnvironmentCredentials,
        product: Product,
        machine: PromotionStateMachine,
        initiated_by: str,
        log,
    ) -> PromotionResult:
        record = await self._create_record(product, initiated_by)
        machine.transition(PromotionState.DEPLOYING)
        deployment_id = str(record.deployment_id)
        log = log.bind(deployment_id=deployment_id)
        log.info("promotion.started")

        account = credentials.production or ProviderAccount(account_id=None)
        try:
            product_external_id, price_external_id = await asyncio.wait_for(
                self._create_external_resources(record, product, account, machine, log),
                timeout=self.settings.promotion_deadline_seconds,
            )
            await self._link(record, product, machine, product_external_id, price_external_id)
        except asyncio.TimeoutError:
            error = PromotionTimeoutError(
                f"Promotion exceeded the {self.settings.promotion_deadline_seconds:g}s deadline"
            )
            return await self._fail(record, machine, error, log)
        except PromotionError as exc:
            return await self._fail(record, machine, exc, log)
        except Exception as exc:  # noqa: BLE001
            log.error("promotion.unexpected_error", error=str(exc), exc_info=True)
            return await self._fail(record, machine, exc, log)

        await self._complete(record, machine, log)
        log.info(
            "promotion.completed",
            production_product_id=product_external_id,
            production_price_id=price_external_id,
        )
        return PromotionResult(
            success=True,
            deployment_id=deployment_id,
            production_product_id=product_external_id,
            production_price_id=price_external_id,
        )

    async def _create_record(self, product: Product, initiated_by: str) -> DeploymentRecord:
        progress, message = STATE_PROGRESS[PromotionState.DEPLOYING]
        product_id = product.product_id
        try:
            return await self.repository.create_deployment_record(
                {
                    "creator_id": product.creator_id,
                    "product_id": product.product_id,
                    "source_environment": Environment.TEST.value,
                    "target_environment": Environment.PRODUCTION.value,
                    "status": "deploying",
                    "progress_percentage": progress,
                    "progress_message": message,
                    "initiated_by": initiated_by,
                    "started_at": datetime.utcnow(),
                }
            )
        except IntegrityError as exc:
            # Partial unique index: another process already has this product in flight
            await self.repository.rollback()
            raise ConcurrentPromotionError(str(product_id)) from exc

    async def _advance(self, record: DeploymentRecord, machine: PromotionStateMachine, state: PromotionState, **fields):
        machine.transition(state)
        progress, message = STATE_PROGRESS[state]
        return await self.repository.update_deployment_record(
            record.deployment_id,
            {"progress_percentage": progress, "progress_message": message, **fields},
        )

    async def _create_external_resources(
        self,
        record: DeploymentRecord,
        product: Product,
        account: ProviderAccount,
        machine: PromotionStateMachine,
        log,
    ) -> tuple[str, str]:
        deployment_id = str(record.deployment_id)
        creator_id = str(product.creator_id)
        source_product_id = str(product.product_id)
        price = parse_price(product.price) or Decimal("0")
        currency = (product.currency or "usd").strip().lower()
        recurring = {"interval": SUBSCRIPTION_INTERVAL} if product.product_kind == "subscription" else None

        # 5. Production product
        record = await self._advance(record, machine, PromotionState.CREATING_EXTERNAL_PRODUCT)
        product_external_id = await self.provider.create_product(
            Environment.PRODUCTION,
            account,
            ProductRequest(
                name=product.name.strip(),
                description=product.description or None,
                active=True,
                metadata={
                    "creator_id": creator_id,
                    "source_product_id": source_product_id,
                    "deployed_from": Environment.TEST.value,
                    "deployment_id": deployment_id,
                },
            ),
            idempotency_key=f"{deployment_id}:product",
        )
        log.info("promotion.external_product_created", production_product_id=product_external_id)

        # 6. Production price
        record = await self._advance(
            record,
            machine,
            PromotionState.CREATING_EXTERNAL_PRICE,
            target_product_external_id=product_external_id,
        )
        price_external_id = await self.provider.create_price(
            Environment.PRODUCTION,
            account,
            PriceRequest(
                product_external_id=product_external_id,
                unit_amount_minor=to_minor_units(price),
                currency=currency,
                recurring=recurring,
                metadata={
                    "creator_id": creator_id,
                    "source_price_id": product.test_price_external_id or "",
                    "deployment_id": deployment_id,
                },
            ),
            idempotency_key=f"{deployment_id}:price",
        )
        log.info("promotion.external_price_created", production_price_id=price_external_id)
        return product_external_id, price_external_id

    async def _link(
        self,
        record: DeploymentRecord,
        product: Product,
        machine: PromotionStateMachine,
        product_external_id: str,
        price_external_id: str,
    ) -> None:
        # 7. Link locally; both ids in one write
        product_id = product.product_id
        await self._advance(
            record,
            machine,
            PromotionState.PERSISTING,
            target_price_external_id=price_external_id,
        )
        try:
            await self.repository.update_product(
                product_id,
                {
                    "production_product_external_id": product_external_id,
                    "production_price_external_id": price_external_id,
                    "last_promoted_at": datetime.utcnow(),
                },
            )
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"Production product {product_external_id} and price {price_external_id} were created "
                f"but could not be linked locally: {exc.__class__.__name__}",
                product_external_id=product_external_id,
                price_external_id=price_external_id,
            ) from exc

    async def _complete(self, record: DeploymentRecord, machine: PromotionStateMachine, log) -> None:
        # 8. The product is already linked; a lost write here is not a failed deployment
        deployment_id = record.deployment_id
        try:
            await self._advance(
                record,
                machine,
                PromotionState.COMPLETED,
                status="completed",
                completed_at=datetime.utcnow(),
            )
        except (SQLAlchemyError, InvalidTransitionError, LookupError) as exc:
            await self.repository.rollback()
            log.error(
                "promotion.completion_not_recorded",
                deployment_id=str(deployment_id),
                error=str(exc),
                exc_info=True,
            )

    async def _fail(
        self,
        record: DeploymentRecord,
        machine: PromotionStateMachine,
        exc: Exception,
        log,
    ) -> PromotionResult:
        if isinstance(exc, PromotionError):
            message, kind = exc.message, exc.code
        else:
            message, kind = str(exc) or exc.__class__.__name__, "internal"

        if not machine.is_terminal:
            machine.transition(PromotionState.FAILED, reason=kind)
        log.warning("promotion.failed", error_kind=kind, error=message, failed_in=machine.history[-1].from_state.value)

        deployment_id = str(record.deployment_id)
        try:
            await self.repository.rollback()
            await self.repository.update_deployment_record(
                deployment_id,
                {
                    "status": "failed",
                    "error_detail": message,
                    "error_kind": kind,
                    "progress_percentage": 0,
                    "progress_message": f"Deployment failed: {message}"[:255],
                },
            )
        except (SQLAlchemyError, InvalidTransitionError, LookupError) as db_exc:
            # Already closed by the sweeper, or left in deploying for it to close
            log.error("promotion.record_update_failed", error=str(db_exc), exc_info=True)

        return PromotionResult(success=False, deployment_id=deployment_id, error=message, error_code=kind)
