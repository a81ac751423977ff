"""
Initial schema - creators, products, deployment records

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # 1. Creators
    op.create_table(
        "creators",
        sa.Column("creator_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("stripe_account_id", sa.String(255)),
        sa.Column("stripe_test_token_encrypted", sa.Text),
        sa.Column("stripe_production_token_encrypted", sa.Text),
        sa.Column("production_enabled", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )

    # 2. Products
    op.create_table(
        "products",
        sa.Column("product_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("creator_id", UUID(as_uuid=True), sa.ForeignKey("creators.creator_id"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False, server_default=""),
        sa.Column("description", sa.Text),
        sa.Column("price", sa.Numeric(12, 2)),
        sa.Column("currency", sa.String(3)),
        sa.Column("product_kind", sa.String(20), nullable=False, server_default="one_time"),
        sa.Column("test_product_external_id", sa.String(255)),
        sa.Column("test_price_external_id", sa.String(255)),
        sa.Column("production_product_external_id", sa.String(255)),
        sa.Column("production_price_external_id", sa.String(255)),
        sa.Column("active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("last_promoted_at", sa.DateTime),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("price IS NULL OR price >= 0", name="ck_product_price_non_negative"),
        sa.CheckConstraint("product_kind IN ('one_time', 'subscription', 'usage_based')", name="ck_product_kind"),
        sa.CheckConstraint(
            "(production_product_external_id IS NULL AND production_price_external_id IS NULL) "
            "OR (production_product_external_id IS NOT NULL AND production_price_external_id IS NOT NULL)",
            name="ck_product_production_ids_paired",
        ),
    )
    op.create_index("ix_products_creator", "products", ["creator_id"])
    op.create_index("ix_products_creator_active", "products", ["creator_id", "active"])

    # 3. Deployment records
    op.create_table(
        "deployment_records",
        sa.Column("deployment_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("creator_id", UUID(as_uuid=True), sa.ForeignKey("creators.creator_id"), nullable=False),
        sa.Column("product_id", UUID(as_uuid=True), nullable=False),
        sa.Column("source_environment", sa.String(20), nullable=False, server_default="test"),
        sa.Column("target_environment", sa.String(20), nullable=False, server_default="production"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("progress_percentage", sa.Integer, nullable=False, server_default="0"),
        sa.Column("progress_message", sa.String(255)),
        sa.Column("initiated_by", sa.String(255)),
        sa.Column("started_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("completed_at", sa.DateTime),
        sa.Column("error_detail", sa.Text),
        sa.Column("error_kind", sa.String(30)),
        sa.Column("target_product_external_id", sa.String(255)),
        sa.Column("target_price_external_id", sa.String(255)),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("status IN ('pending', 'deploying', 'completed', 'failed')", name="ck_deployment_status"),
        sa.CheckConstraint("source_environment = 'test'", name="ck_deployment_source_env"),
        sa.CheckConstraint("target_environment = 'production'", name="ck_deployment_target_env"),
        sa.CheckConstraint(
            "progress_percentage >= 0 AND progress_percentage <= 100",
            name="ck_deployment_progress_range",
        ),
        sa.CheckConstraint(
            "status != 'completed' OR (progress_percentage = 100 AND completed_at IS NOT NULL)",
            name="ck_deployment_completed_shape",
        ),
        sa.CheckConstraint("status != 'failed' OR error_detail IS NOT NULL", name="ck_deployment_failed_shape"),
        sa.CheckConstraint(
            "error_kind IS NULL OR error_kind IN ('external_service', 'persistence', 'timeout', 'internal')",
            name="ck_deployment_error_kind",
        ),
    )
    op.create_index("ix_deployments_creator_started", "deployment_records", ["creator_id", "started_at"])
    op.create_index("ix_deployments_product", "deployment_records", ["product_id"])

    # At most one in-flight attempt per product
    op.create_index(
        "uq_deployments_in_flight_product",
        "deployment_records",
        ["product_id"],
        unique=True,
        postgresql_where=sa.text("status = 'deploying'"),
    )


def downgrade() -> None:
    op.drop_index("uq_deployments_in_flight_product", table_name="deployment_records")
    op.drop_table("deployment_records")
    op.drop_table("products")
    op.drop_table("creators")
