"""
Promotion Repository

Narrow async data-access layer used by the promotion pipeline. Every
write commits, so each pipeline step is durable before the next one
(in particular before any Stripe call) begins.
"""

import uuid
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.security import decrypt_or_none
from db.models import Creator, DeploymentRecord, Product
from promotion.errors import InvalidTransitionError
from promotion.types import EnvironmentCredentials, ProviderAccount


def as_uuid(value: Any) -> uuid.UUID | None:
    """Parse ids coming from URLs, JWT claims or task kwargs."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        return None


class PromotionRepository:
    """Creators, products and deployment records for one session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def rollback(self) -> None:
        await self.db.rollback()

    # ── Creators ──────────────────────────────────────────────────────────

    async def get_creator(self, creator_id) -> Creator | None:
        cid = as_uuid(creator_id)
        if cid is None:
            return None
        result = await self.db.execute(select(Creator).where(Creator.creator_id == cid))
        return result.scalar_one_or_none()

    async def get_creator_credentials(self, creator_id) -> EnvironmentCredentials | None:
        creator = await self.get_creator(creator_id)
        if creator is None:
            return None

        test_token = decrypt_or_none(creator.stripe_test_token_encrypted)
        production_token = decrypt_or_none(creator.stripe_production_token_encrypted)
        return EnvironmentCredentials(
            test=ProviderAccount(creator.stripe_account_id, test_token) if test_token else None,
            production=ProviderAccount(creator.stripe_account_id, production_token),
            production_enabled=bool(creator.production_enabled),
        )

    # ── Products ──────────────────────────────────────────────────────────

    async def get_product(self, product_id, creator_id) -> Product | None:
        pid, cid = as_uuid(product_id), as_uuid(creator_id)
        if pid is None or cid is None:
            return None
        result = await self.db.execute(
            select(Product).where(Product.product_id == pid, Product.creator_id == cid)
        )
        return result.scalar_one_or_none()

    async def update_product(self, product_id, fields: dict[str, Any]) -> Product:
        result = await self.db.execute(select(Product).where(Product.product_id == as_uuid(product_id)))
        product = result.scalar_one()
        for key, value in fields.items():
            setattr(product, key, value)
        product.updated_at = datetime.utcnow()
        await self.db.commit()
        await self.db.refresh(product)
        return product

    async def list_active_products(self, creator_id) -> list[Product]:
        cid = as_uuid(creator_id)
        if cid is None:
            return []
        result = await self.db.execute(
            select(Product)
            .where(Product.creator_id == cid, Product.active.is_(True))
            .order_by(Product.created_at)
        )
        return list(result.scalars().all())

    async def get_product_names(self, product_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, str]:
        ids = [pid for pid in product_ids if pid is not None]
        if not ids:
            return {}
        result = await self.db.execute(select(Product.product_id, Product.name).where(Product.product_id.in_(ids)))
        return {row.product_id: row.name for row in result.all()}

    # ── Deployment records ────────────────────────────────────────────────

    async def create_deployment_record(self, fields: dict[str, Any]) -> DeploymentRecord:
        record = DeploymentRecord(**fields)
        self.db.add(record)
        await self.db.commit()
        await self.db.refresh(record)
        return record

    async def update_deployment_record(self, deployment_id, fields: dict[str, Any]) -> DeploymentRecord:
        record = await self.get_deployment_record(deployment_id)
        if record is None:
            raise LookupError(f"Deployment record {deployment_id} not found")
        if record.is_terminal:
            raise InvalidTransitionError(
                f"Deployment record {deployment_id} is {record.status}; terminal records are immutable",
                deployment_id=str(deployment_id),
            )
        for key, value in fields.items():
            setattr(record, key, value)
        record.updated_at = datetime.utcnow()
        await self.db.commit()
        await self.db.refresh(record)
        return record

    async def get_deployment_record(self, deployment_id, creator_id=None) -> DeploymentRecord | None:
        did = as_uuid(deployment_id)
        if did is None:
            return None
        query = select(DeploymentRecord).where(DeploymentRecord.deployment_id == did)
        if creator_id is not None:
            cid = as_uuid(creator_id)
            if cid is None:
                return None
            query = query.where(DeploymentRecord.creator_id == cid)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def list_deployment_records(
        self,
        creator_id,
        statuses: Iterable[str] | None = None,
        limit: int | None = None,
    ) -> list[DeploymentRecord]:
        cid = as_uuid(creator_id)
        if cid is None:
            return []
        query = select(DeploymentRecord).where(DeploymentRecord.creator_id == cid)
        if statuses is not None:
            query = query.where(DeploymentRecord.status.in_(list(statuses)))
        query = query.order_by(DeploymentRecord.started_at.desc(), DeploymentRecord.created_at.desc())
        if limit is not None:
            query = query.limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_latest_deployment(self, creator_id) -> DeploymentRecord | None:
        records = await self.list_deployment_records(creator_id, limit=1)
        return records[0] if records else None

    async def list_product_deployments(self, creator_id, product_id) -> list[DeploymentRecord]:
        cid, pid = as_uuid(creator_id), as_uuid(product_id)
        if cid is None or pid is None:
            return []
        result = await self.db.execute(
            select(DeploymentRecord)
            .where(DeploymentRecord.creator_id == cid, DeploymentRecord.product_id == pid)
            .order_by(DeploymentRecord.started_at.desc())
        )
        return list(result.scalars().all())

    async def get_latest_product_deployment(self, product_id) -> DeploymentRecord | None:
        pid = as_uuid(product_id)
        if pid is None:
            return None
        result = await self.db.execute(
            select(DeploymentRecord)
            .where(DeploymentRecord.product_id == pid)
            .order_by(DeploymentRecord.started_at.desc(), DeploymentRecord.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_stale_deployments(self, started_before: datetime) -> list[DeploymentRecord]:
        result = await self.db.execute(
            select(DeploymentRecord).where(
                DeploymentRecord.status == "deploying",
                DeploymentRecord.started_at < started_before,
            )
        )
        return list(result.scalars().all())
