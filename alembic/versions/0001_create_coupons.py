from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


revision = "0001_create_coupons"
down_revision = None
branch_labels = None
depends_on = None


def _has_index(inspector, table_name: str, index_name: str) -> bool:
    return any(idx["name"] == index_name for idx in inspector.get_indexes(table_name))


def upgrade() -> None:
    bind = op.get_bind()
    inspector = inspect(bind)

    if "coupons" not in inspector.get_table_names():
        op.create_table(
            "coupons",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("code", sa.String(length=64), nullable=False),
            sa.Column("description", sa.String(length=255), nullable=True),
            sa.Column("discount_type", sa.String(length=20), nullable=False, server_default="percentage"),
            sa.Column("discount_value", sa.Numeric(10, 2), nullable=False),
            sa.Column("min_purchase", sa.Numeric(10, 2), nullable=False, server_default="0"),
            sa.Column("usage_limit", sa.Integer(), nullable=False),
            sa.Column("used_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("expiry_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        )

    inspector = inspect(bind)
    if not _has_index(inspector, "coupons", "ix_coupons_code"):
        op.create_index("ix_coupons_code", "coupons", ["code"], unique=True)


def downgrade() -> None:
    bind = op.get_bind()
    inspector = inspect(bind)

    if "coupons" in inspector.get_table_names():
        if _has_index(inspector, "coupons", "ix_coupons_code"):
            op.drop_index("ix_coupons_code", table_name="coupons")
        op.drop_table("coupons")
