"""
Promotions Router — test → production promotion for a creator's products.

Promote and batch endpoints always answer 200 with a structured result;
success or failure is carried in the body. Read endpoints answer 404 for
unknown creators, products and deployments.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from api.deps import (
    get_aggregator,
    get_batch_coordinator,
    get_creator_id,
    get_current_user,
    get_orchestrator,
    get_reconciler,
    get_repository,
)
from db.repository import PromotionRepository
from promotion.batch import BatchPromotionCoordinator
from promotion.environment import EnvironmentAggregator
from promotion.errors import ConcurrentPromotionError, NotFoundError, ReconciliationError
from promotion.orchestrator import PromotionOrchestrator
from promotion.reconciliation import PromotionReconciler
from promotion.types import CheckStatus, Environment
from promotion.validation import is_deployable
from workers.celery_app import celery_app

router = APIRouter(prefix="/api/v1/promotions", tags=["promotions"])

MAX_BATCH_SIZE = 100


# ─── Schemas ────────────────────────────────────────────────────────────────


class ValidationCheckResponse(BaseModel):
    check: str
    status: CheckStatus
    message: str
    critical: bool

    model_config = {"from_attributes": True}


class ProductValidationResponse(BaseModel):
    product_id: UUID
    deployable: bool
    checks: list[ValidationCheckResponse]


class PromotionResultResponse(BaseModel):
    success: bool
    deployment_id: str | None = None
    error: str | None = None
    error_code: str | None = None
    production_product_id: str | None = None
    production_price_id: str | None = None

    model_config = {"from_attributes": True}


class BatchPromoteRequest(BaseModel):
    product_ids: list[str] = Field(..., max_length=MAX_BATCH_SIZE)


class BatchItemResponse(BaseModel):
    product_id: str
    success: bool
    deployment_id: str | None = None
    error: str | None = None


class BatchSummaryResponse(BaseModel):
    total: int
    successful: int
    failed: int


class BatchPromoteResponse(BaseModel):
    results: list[BatchItemResponse]
    summary: BatchSummaryResponse
    started_at: datetime
    completed_at: datetime | None = None


class BatchEnqueuedResponse(BaseModel):
    task_id: str
    status: str = "queued"
    product_count: int


class LastDeploymentResponse(BaseModel):
    date: datetime
    product_name: str
    status: str


class EnvironmentStatusResponse(BaseModel):
    test_configured: bool
    production_configured: bool
    products_in_test: int
    products_in_production: int
    pending_deployments: int
    last_deployment: LastDeploymentResponse | None = None
    current_environment: Environment


class DeploymentSummaryResponse(BaseModel):
    total_products: int
    ready_to_deploy: int
    needs_attention: int
    already_deployed: int
    deployment_time: str
    estimated_downtime: str


class ProductPreviewResponse(BaseModel):
    product_id: str
    product_name: str
    test_price: Decimal | None
    production_price: Decimal | None
    is_deployed: bool
    last_modified: datetime | None
    validation_results: list[ValidationCheckResponse]


class ProductAttentionResponse(BaseModel):
    product_id: str
    product_name: str
    issues: list[ValidationCheckResponse]


class ReadinessReportResponse(BaseModel):
    ready_to_deploy: list[str]
    needs_attention: list[ProductAttentionResponse]


class DeploymentRecordResponse(BaseModel):
    deployment_id: UUID
    creator_id: UUID
    product_id: UUID
    source_environment: str
    target_environment: str
    status: str
    progress_percentage: int
    progress_message: str | None
    initiated_by: str | None
    started_at: datetime
    completed_at: datetime | None
    error_detail: str | None
    error_kind: str | None
    target_product_external_id: str | None
    target_price_external_id: str | None

    model_config = {"from_attributes": True}


class EnvironmentProductResponse(BaseModel):
    product_id: str
    name: str
    price: Decimal | None
    external_product_id: str | None
    external_price_id: str | None
    is_deployed: bool
    metadata: dict[str, Any]


# ─── Environment views ──────────────────────────────────────────────────────


@router.get("/status", response_model=EnvironmentStatusResponse)
async def get_environment_status(
    creator_id: str = Depends(get_creator_id),
    aggregator: EnvironmentAggregator = Depends(get_aggregator),
):
    """Credential flags, per-environment product counts and the last deployment."""
    try:
        return await aggregator.get_status(creator_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message)


@router.get("/summary", response_model=DeploymentSummaryResponse)
async def get_deployment_summary(
    creator_id: str = Depends(get_creator_id),
    aggregator: EnvironmentAggregator = Depends(get_aggregator),
):
    return await aggregator.summarize(creator_id)


@router.get("/preview", response_model=list[ProductPreviewResponse])
async def preview_products(
    creator_id: str = Depends(get_creator_id),
    aggregator: EnvironmentAggregator = Depends(get_aggregator),
):
    """Every active product with its validation results."""
    return await aggregator.preview_all(creator_id)


@router.get("/readiness", response_model=ReadinessReportResponse)
async def get_readiness(
    creator_id: str = Depends(get_creator_id),
    aggregator: EnvironmentAggregator = Depends(get_aggregator),
):
    return await aggregator.readiness_report(creator_id)


@router.get("/environments/{environment}/products", response_model=list[EnvironmentProductResponse])
async def list_environment_products(
    environment: Environment,
    creator_id: str = Depends(get_creator_id),
    aggregator: EnvironmentAggregator = Depends(get_aggregator),
):
    """External ids a storefront embed should use for the given environment."""
    return await aggregator.environment_products(creator_id, environment)


# ─── Promotion ──────────────────────────────────────────────────────────────


@router.get("/products/{product_id}/validation", response_model=ProductValidationResponse)
async def validate_product(
    product_id: UUID,
    creator_id: str = Depends(get_creator_id),
    repository: PromotionRepository = Depends(get_repository),
    orchestrator: PromotionOrchestrator = Depends(get_orchestrator),
):
    product = await repository.get_product(product_id, creator_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    checks = orchestrator.validate(product)
    return {"product_id": product.product_id, "deployable": is_deployable(checks), "checks": checks}


@router.post("/products/{product_id}/promote", response_model=PromotionResultResponse)
async def promote_product(
    product_id: UUID,
    creator_id: str = Depends(get_creator_id),
    user: dict = Depends(get_current_user),
    orchestrator: PromotionOrchestrator = Depends(get_orchestrator),
):
    """Promote one product to production."""
    return await orchestrator.promote(creator_id, product_id, initiated_by=user.get("sub"))


@router.post("/batch", response_model=BatchPromoteResponse)
async def batch_promote(
    request: BatchPromoteRequest,
    creator_id: str = Depends(get_creator_id),
    user: dict = Depends(get_current_user),
    coordinator: BatchPromotionCoordinator = Depends(get_batch_coordinator),
):
    """Promote several products sequentially within this request."""
    return await coordinator.batch_promote(creator_id, request.product_ids, initiated_by=user.get("sub"))


@router.post("/batch/async", response_model=BatchEnqueuedResponse, status_code=202)
async def enqueue_batch_promote(
    request: BatchPromoteRequest,
    creator_id: str = Depends(get_creator_id),
    user: dict = Depends(get_current_user),
):
    """Hand a batch to the promotion worker queue."""
    task = celery_app.send_task(
        "workers.promotion.batch_promote_products",
        kwargs={
            "creator_id": creator_id,
            "product_ids": request.product_ids,
            "initiated_by": user.get("sub"),
        },
    )
    return {"task_id": str(task.id), "product_count": len(request.product_ids)}


# ─── Deployment records ─────────────────────────────────────────────────────


@router.get("/deployments/{deployment_id}", response_model=DeploymentRecordResponse)
async def get_deployment(
    deployment_id: UUID,
    creator_id: str = Depends(get_creator_id),
    repository: PromotionRepository = Depends(get_repository),
):
    record = await repository.get_deployment_record(deployment_id, creator_id)
    if not record:
        raise HTTPException(status_code=404, detail="Deployment not found")
    return record


@router.get("/products/{product_id}/deployments", response_model=list[DeploymentRecordResponse])
async def list_product_deployments(
    product_id: UUID,
    creator_id: str = Depends(get_creator_id),
    repository: PromotionRepository = Depends(get_repository),
):
    """Deployment history for one product, newest first."""
    return await repository.list_product_deployments(creator_id, product_id)


@router.post("/deployments/{deployment_id}/reconcile", response_model=PromotionResultResponse)
async def reconcile_deployment(
    deployment_id: UUID,
    creator_id: str = Depends(get_creator_id),
    reconciler: PromotionReconciler = Depends(get_reconciler),
):
    """Re-link production resources left behind by a persistence failure."""
    try:
        return await reconciler.reconcile(creator_id, deployment_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message)
    except (ReconciliationError, ConcurrentPromotionError) as exc:
        raise HTTPException(status_code=409, detail=exc.message)
