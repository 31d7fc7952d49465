"""initial envelope schema

Revision ID: 202601150900
Revises:
Create Date: 2026-01-15 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202601150900"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "envelopes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "category",
            sa.String(length=100),
            nullable=False,
            server_default="uncategorized",
        ),
        sa.Column("allocation", sa.Float(), nullable=False, server_default="0"),
        sa.Column("balance", sa.Float(), nullable=False, server_default="0"),
        sa.Column(
            "is_individual", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("user_id", sa.String(length=64)),
        sa.Column("rollover", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("allocation >= 0", name="ck_envelope_allocation_positive"),
        sa.CheckConstraint(
            "(is_individual AND user_id IS NOT NULL) "
            "OR (NOT is_individual AND user_id IS NULL)",
            name="ck_envelope_owner_matches_scope",
        ),
    )
    op.create_index(
        "uq_envelope_shared_name_active",
        "envelopes",
        ["name"],
        unique=True,
        sqlite_where=sa.text("user_id IS NULL AND is_deleted = 0"),
        postgresql_where=sa.text("user_id IS NULL AND is_deleted = false"),
    )
    op.create_index(
        "uq_envelope_individual_name_active",
        "envelopes",
        ["name", "user_id"],
        unique=True,
        sqlite_where=sa.text("user_id IS NOT NULL AND is_deleted = 0"),
        postgresql_where=sa.text("user_id IS NOT NULL AND is_deleted = false"),
    )
    op.create_index("ix_envelopes_deleted_name", "envelopes", ["is_deleted", "name"])

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("price", sa.Float(), nullable=False),
        sa.Column(
            "envelope_id", sa.Integer(), sa.ForeignKey("envelopes.id"), nullable=False
        ),
        sa.Column("description", sa.Text()),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("price >= 0", name="ck_product_price_positive"),
    )
    op.create_index(
        "uq_product_name_active",
        "products",
        ["name"],
        unique=True,
        sqlite_where=sa.text("is_deleted = 0"),
        postgresql_where=sa.text("is_deleted = false"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "envelope_id",
            sa.Integer(),
            sa.ForeignKey("envelopes.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("reference_id", sa.String(length=64)),
        sa.Column("transaction_type", sa.String(length=32), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount <> 0", name="ck_transactions_amount_nonzero"),
    )
    op.create_index(
        "ix_transactions_envelope_created",
        "transactions",
        ["envelope_id", "created_at"],
    )

    op.create_table(
        "system_state",
        sa.Column("key", sa.String(length=100), primary_key=True),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )


def downgrade():
    op.drop_table("system_state")
    op.drop_index("ix_transactions_envelope_created", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("uq_product_name_active", table_name="products")
    op.drop_table("products")
    op.drop_index("ix_envelopes_deleted_name", table_name="envelopes")
    op.drop_index("uq_envelope_individual_name_active", table_name="envelopes")
    op.drop_index("uq_envelope_shared_name_active", table_name="envelopes")
    op.drop_table("envelopes")
