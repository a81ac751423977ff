"""
Batch Deployment Coordinator

Promotes a list of products strictly one after another, with a pacing
delay between successive provider-facing attempts. One item's failure
(including an exception escaping the orchestrator) is recorded against
that item and never aborts the batch.
"""

import asyncio
import time
from collections.abc import Callable, Iterable, Sequence
from typing import Protocol

import structlog
from sqlalchemy.exc import SQLAlchemyError

from promotion.orchestrator import PromotionOrchestrator
from promotion.types import BatchItemResult, BatchResult, BatchSummary

logger = structlog.get_logger()

BATCH_DEADLINE_EXCEEDED = "Batch deadline exceeded"


class Pacer(Protocol):
    async def wait(self) -> None: ...


class FixedDelayPacer:
    """Sleep a fixed number of seconds between items."""

    def __init__(self, seconds: float):
        self.seconds = seconds

    async def wait(self) -> None:
        if self.seconds > 0:
            await asyncio.sleep(self.seconds)


class NoDelayPacer:
    async def wait(self) -> None:
        return None


def summarize_results(results: Iterable[BatchItemResult]) -> BatchSummary:
    summary = BatchSummary()
    for item in results:
        summary.total += 1
        if item.success:
            summary.successful += 1
        else:
            summary.failed += 1
    return summary


class BatchPromotionCoordinator:
    def __init__(
        self,
        orchestrator: PromotionOrchestrator,
        *,
        pacer: Pacer | None = None,
        clock: Callable[[], float] = time.monotonic,
        deadline_seconds: float | None = None,
    ):
        settings = orchestrator.settings
        self.orchestrator = orchestrator
        self.pacer = pacer or FixedDelayPacer(settings.batch_pacing_seconds)
        self.clock = clock
        self.deadline_seconds = deadline_seconds if deadline_seconds is not None else settings.batch_deadline_seconds

    async def batch_promote(
        self,
        creator_id,
        product_ids: Sequence,
        *,
        initiated_by: str | None = None,
    ) -> BatchResult:
        log = logger.bind(creator_id=str(creator_id), batch_size=len(product_ids))
        batch = BatchResult()
        started = self.clock()
        attempted = 0

        for product_id in product_ids:
            if self.clock() - started > self.deadline_seconds:
                batch.results.append(
                    BatchItemResult(product_id=str(product_id), success=False, error=BATCH_DEADLINE_EXCEEDED)
                )
                continue

            if attempted:
                await self.pacer.wait()
            attempted += 1
            batch.results.append(await self._promote_one(creator_id, product_id, initiated_by, log))

        batch.summary = summarize_results(batch.results)
        batch.complete()
        log.info(
            "batch.completed",
            total=batch.summary.total,
            successful=batch.summary.successful,
            failed=batch.summary.failed,
            skipped=len(product_ids) - attempted,
        )
        return batch

    async def _promote_one(self, creator_id, product_id, initiated_by, log) -> BatchItemResult:
        try:
            result = await self.orchestrator.promote(creator_id, product_id, initiated_by=initiated_by)
        except Exception as exc:  # noqa: BLE001
            log.error("batch.item_failed", product_id=str(product_id), error=str(exc), exc_info=True)
            # The session is shared by every item; clear the failed transaction
            try:
                await self.orchestrator.repository.rollback()
            except SQLAlchemyError as rollback_exc:
                log.error("batch.rollback_failed", product_id=str(product_id), error=str(rollback_exc))
            return BatchItemResult(
                product_id=str(product_id),
                success=False,
                error=str(exc) or exc.__class__.__name__,
            )

        if not result.success:
            log.warning("batch.item_failed", product_id=str(product_id), error=result.error)
        return BatchItemResult(
            product_id=str(product_id),
            success=result.success,
            deployment_id=result.deployment_id,
            error=result.error,
        )
