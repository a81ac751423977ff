"""
Promotion Workers — background batch promotion and stale-deployment sweep.

Tasks:
  - batch_promote_products   run a batch promotion outside the request cycle
  - sweep_stale_deployments  beat job; closes out records stuck in "deploying"
"""

import asyncio
from dataclasses import asdict
from datetime import datetime, timedelta

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from workers.celery_app import celery_app

logger = structlog.get_logger()


async def run_batch_promotion(
    db: AsyncSession,
    *,
    creator_id: str,
    product_ids: list[str],
    initiated_by: str | None = None,
    provider=None,
    pacer=None,
) -> dict:
    """Run one batch on the given session and return a JSON-safe summary."""
    from db.repository import PromotionRepository
    from integrations.stripe import StripeProvider
    from promotion.batch import BatchPromotionCoordinator
    from promotion.orchestrator import PromotionOrchestrator

    orchestrator = PromotionOrchestrator(PromotionRepository(db), provider or StripeProvider())
    coordinator = BatchPromotionCoordinator(orchestrator, pacer=pacer)
    batch = await coordinator.batch_promote(creator_id, product_ids, initiated_by=initiated_by)

    return {
        "status": "success",
        "creator_id": str(creator_id),
        "summary": asdict(batch.summary),
        "results": [asdict(item) for item in batch.results],
        "started_at": batch.started_at.isoformat(),
        "completed_at": batch.completed_at.isoformat() if batch.completed_at else None,
    }


async def mark_stale_deployments(
    db: AsyncSession,
    *,
    stale_minutes: int,
    now: datetime | None = None,
) -> list[str]:
    """
    Close every record that has been deploying longer than stale_minutes.

    A record whose product already carries its production ids went live and
    only lost its final write, so it is closed as completed. Everything
    else is failed as a timeout.
    """
    from db.repository import PromotionRepository
    from promotion.state_machine import STATE_PROGRESS, PromotionState

    repository = PromotionRepository(db)
    now = now or datetime.utcnow()
    cutoff = now - timedelta(minutes=stale_minutes)
    detail = f"Deployment did not finish within {stale_minutes} minutes"

    swept = []
    for record in await repository.list_stale_deployments(cutoff):
        deployment_id, product_id = record.deployment_id, record.product_id
        started_at = record.started_at
        product = await repository.get_product(product_id, record.creator_id)
        linked = (
            product is not None
            and record.target_price_external_id is not None
            and product.production_product_external_id == record.target_product_external_id
            and product.production_price_external_id == record.target_price_external_id
        )
        if linked:
            await repository.update_deployment_record(
                deployment_id,
                {
                    "status": "completed",
                    "progress_percentage": 100,
                    "progress_message": STATE_PROGRESS[PromotionState.COMPLETED][1],
                    "completed_at": now,
                },
            )
            logger.info("sweeper.marked_completed", deployment_id=str(deployment_id), product_id=str(product_id))
        else:
            await repository.update_deployment_record(
                deployment_id,
                {
                    "status": "failed",
                    "error_kind": "timeout",
                    "error_detail": detail,
                    "progress_percentage": 0,
                    "progress_message": f"Deployment failed: {detail}",
                },
            )
            logger.warning(
                "sweeper.marked_stale",
                deployment_id=str(deployment_id),
                product_id=str(product_id),
                started_at=started_at.isoformat(),
            )
        swept.append(str(deployment_id))
    return swept


@celery_app.task(
    name="workers.promotion.batch_promote_products",
    bind=True,
    max_retries=0,
    acks_late=True,
)
def batch_promote_products(self, creator_id: str, product_ids: list[str], initiated_by: str | None = None):
    """
    Promote a batch of products for one creator.

    Not retried: every item already carries its own outcome, and a replay
    would start fresh promotion attempts for items that succeeded.
    """
    from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

    from core.config import get_settings

    run_id = self.request.id or "manual"

    async def _run():
        settings = get_settings()
        engine = create_async_engine(settings.database_url)
        try:
            async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            async with async_session() as db:
                summary = await run_batch_promotion(
                    db,
                    creator_id=creator_id,
                    product_ids=product_ids,
                    initiated_by=initiated_by,
                )
            summary["run_id"] = run_id
            return summary
        finally:
            await engine.dispose()

    return asyncio.run(_run())


@celery_app.task(
    name="workers.promotion.sweep_stale_deployments",
    bind=True,
    max_retries=2,
    default_retry_delay=60,
    acks_late=True,
)
def sweep_stale_deployments(self, stale_minutes: int | None = None):
    """Close out deployment records abandoned in "deploying"."""
    from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

    from core.config import get_settings

    async def _sweep():
        settings = get_settings()
        minutes = stale_minutes or settings.stale_deployment_minutes
        engine = create_async_engine(settings.database_url)
        try:
            async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            async with async_session() as db:
                swept = await mark_stale_deployments(db, stale_minutes=minutes)
            summary = {
                "status": "success",
                "swept_count": len(swept),
                "deployment_ids": swept,
                "stale_minutes": minutes,
                "run_id": self.request.id or "manual",
            }
            logger.info("sweeper.complete", swept_count=len(swept), stale_minutes=minutes)
            return summary
        finally:
            await engine.dispose()

    try:
        return asyncio.run(_sweep())
    except Exception as exc:  # noqa: BLE001
        logger.error("sweeper.failed", error=str(exc), exc_info=True)
        raise self.retry(exc=exc)
