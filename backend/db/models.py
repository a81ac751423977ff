"""
GoLive Database Models

Tables:
  1. creators             - Creator accounts + connected Stripe credentials
  2. products             - Creator offerings, with test/production Stripe ids
  3. deployment_records   - One row per test -> production promotion attempt

Multi-tenant via creator_id on every table.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    TypeDecorator,
    text,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import relationship

from db.session import Base


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


PRODUCT_KINDS = ("one_time", "subscription", "usage_based")
DEPLOYMENT_STATUSES = ("pending", "deploying", "completed", "failed")
IN_FLIGHT_STATUSES = ("pending", "deploying")
TERMINAL_STATUSES = ("completed", "failed")
FAILURE_KINDS = ("external_service", "persistence", "timeout", "internal")


# ─── 1. Creators ───────────────────────────────────────────────────────────


class Creator(Base):
    __tablename__ = "creators"

    creator_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    stripe_account_id = Column(String(255))  # Connected account (acct_...)
    stripe_test_token_encrypted = Column(Text)
    stripe_production_token_encrypted = Column(Text)
    production_enabled = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    products = relationship("Product", back_populates="creator", cascade="all, delete-orphan")


# ─── 2. Products ───────────────────────────────────────────────────────────


class Product(Base):
    __tablename__ = "products"

    product_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    creator_id = Column(GUID(), ForeignKey("creators.creator_id"), nullable=False)
    name = Column(String(255), nullable=False, default="")
    description = Column(Text)
    price = Column(Numeric(12, 2))
    currency = Column(String(3))
    product_kind = Column(String(20), nullable=False, default="one_time")

    test_product_external_id = Column(String(255))
    test_price_external_id = Column(String(255))
    production_product_external_id = Column(String(255))
    production_price_external_id = Column(String(255))

    active = Column(Boolean, nullable=False, default=True)
    last_promoted_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_products_creator", "creator_id"),
        Index("ix_products_creator_active", "creator_id", "active"),
        CheckConstraint("price IS NULL OR price >= 0", name="ck_product_price_non_negative"),
        CheckConstraint(
            "product_kind IN ('one_time', 'subscription', 'usage_based')",
            name="ck_product_kind",
        ),
        # Never a production product without a production price, or vice versa
        CheckConstraint(
            "(production_product_external_id IS NULL AND production_price_external_id IS NULL) "
            "OR (production_product_external_id IS NOT NULL AND production_price_external_id IS NOT NULL)",
            name="ck_product_production_ids_paired",
        ),
    )

    creator = relationship("Creator", back_populates="products")

    @property
    def is_deployed(self) -> bool:
        return bool(self.production_product_external_id)


# ─── 3. Deployment Records ─────────────────────────────────────────────────


class DeploymentRecord(Base):
    __tablename__ = "deployment_records"

    deployment_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    creator_id = Column(GUID(), ForeignKey("creators.creator_id"), nullable=False)
    # No FK: the audit trail outlives deleted products
    product_id = Column(GUID(), nullable=False)
    source_environment = Column(String(20), nullable=False, default="test")
    target_environment = Column(String(20), nullable=False, default="production")
    status = Column(String(20), nullable=False, default="pending")
    progress_percentage = Column(Integer, nullable=False, default=0)
    progress_message = Column(String(255))
    initiated_by = Column(String(255))
    started_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    completed_at = Column(DateTime)
    error_detail = Column(Text)
    error_kind = Column(String(30))
    target_product_external_id = Column(String(255))
    target_price_external_id = Column(String(255))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_deployments_creator_started", "creator_id", "started_at"),
        Index("ix_deployments_product", "product_id"),
        # At most one in-flight attempt per product across all processes
        Index(
            "uq_deployments_in_flight_product",
            "product_id",
            unique=True,
            postgresql_where=text("status = 'deploying'"),
            sqlite_where=text("status = 'deploying'"),
        ),
        CheckConstraint(
            "status IN ('pending', 'deploying', 'completed', 'failed')",
            name="ck_deployment_status",
        ),
        CheckConstraint("source_environment = 'test'", name="ck_deployment_source_env"),
        CheckConstraint("target_environment = 'production'", name="ck_deployment_target_env"),
        CheckConstraint(
            "progress_percentage >= 0 AND progress_percentage <= 100",
            name="ck_deployment_progress_range",
        ),
        CheckConstraint(
            "status != 'completed' OR (progress_percentage = 100 AND completed_at IS NOT NULL)",
            name="ck_deployment_completed_shape",
        ),
        CheckConstraint("status != 'failed' OR error_detail IS NOT NULL", name="ck_deployment_failed_shape"),
        CheckConstraint(
            "error_kind IS NULL OR error_kind IN ('external_service', 'persistence', 'timeout', 'internal')",
            name="ck_deployment_error_kind",
        ),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
