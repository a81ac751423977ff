"""
GoLive API Dependencies

Dependency injection for DB sessions, auth, creator context and the
promotion pipeline services.
"""

from collections.abc import AsyncGenerator

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from db.repository import PromotionRepository, as_uuid
from db.session import AsyncSessionLocal
from integrations.base import PaymentProvider
from integrations.stripe import StripeProvider
from promotion.batch import BatchPromotionCoordinator
from promotion.environment import EnvironmentAggregator
from promotion.orchestrator import PromotionOrchestrator
from promotion.reconciliation import PromotionReconciler

settings = get_settings()
security = HTTPBearer(auto_error=not settings.debug)

# Dev creator_id must match the local seed data
DEV_CREATOR_ID = "00000000-0000-0000-0000-000000000001"


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> dict:
    """Decode JWT and return user payload. Bypassed in debug mode."""
    if settings.debug:
        return {
            "sub": "dev-user",
            "email": "dev@golive.local",
            "creator_id": DEV_CREATOR_ID,
        }

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    from core.security import decode_access_token

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    return payload


async def get_creator_id(user: dict = Depends(get_current_user)) -> str:
    """Creator the caller acts for. Every promotion route is scoped to it."""
    creator_id = as_uuid(user.get("creator_id"))
    if creator_id is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="No creator context",
        )
    return str(creator_id)


# ── Pipeline services ─────────────────────────────────────────────────────


def get_provider() -> PaymentProvider:
    return StripeProvider()


def get_repository(db: AsyncSession = Depends(get_db)) -> PromotionRepository:
    return PromotionRepository(db)


def get_orchestrator(
    repository: PromotionRepository = Depends(get_repository),
    provider: PaymentProvider = Depends(get_provider),
) -> PromotionOrchestrator:
    return PromotionOrchestrator(repository, provider)


def get_batch_coordinator(
    orchestrator: PromotionOrchestrator = Depends(get_orchestrator),
) -> BatchPromotionCoordinator:
    return BatchPromotionCoordinator(orchestrator)


def get_aggregator(
    repository: PromotionRepository = Depends(get_repository),
) -> EnvironmentAggregator:
    return EnvironmentAggregator(repository)


def get_reconciler(
    repository: PromotionRepository = Depends(get_repository),
    provider: PaymentProvider = Depends(get_provider),
) -> PromotionReconciler:
    return PromotionReconciler(repository, provider)
