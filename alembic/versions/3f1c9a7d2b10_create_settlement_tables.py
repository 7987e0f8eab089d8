"""Create settlement tables

Revision ID: 3f1c9a7d2b10
Revises:
Create Date: 2026-10-18 09:12:31.402118

"""

import sqlalchemy as sa

from alembic import op  # type: ignore[attr-defined]

# revision identifiers, used by Alembic.
revision = "3f1c9a7d2b10"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(*names: str) -> list[sa.Column]:
    return [sa.Column(name, sa.TIMESTAMP(timezone=True), nullable=False) for name in names]


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "resources",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("kind", sa.String(16), server_default=sa.text("'property'"), nullable=False),
        sa.Column("owner_id", sa.String(64), nullable=False),
        sa.Column("agent_id", sa.String(64), nullable=True),
        sa.Column("nightly_rate", sa.Numeric(12, 2), nullable=False),
        sa.Column("two_night_rate", sa.Numeric(12, 2), nullable=True),
        sa.Column("max_capacity", sa.Integer(), server_default=sa.text("1"), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id", name="pk_resources"),
    )
    op.create_index("ix_resources_owner_id", "resources", ["owner_id"])

    op.create_table(
        "reservations",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("resource_id", sa.String(64), nullable=False),
        sa.Column("requester_id", sa.String(64), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("guests", sa.Integer(), nullable=False),
        sa.Column("nights", sa.Integer(), nullable=False),
        sa.Column("subtotal", sa.Numeric(12, 2), nullable=False),
        sa.Column("cleaning_fee", sa.Numeric(12, 2), nullable=False),
        sa.Column("service_fee", sa.Numeric(12, 2), nullable=False),
        sa.Column("taxes", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(16), server_default=sa.text("'pending'"), nullable=False),
        sa.Column(
            "payment_status", sa.String(16), server_default=sa.text("'pending'"), nullable=False
        ),
        sa.Column("wallet_distributed", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("wallet_distributed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "distribution_attempts", sa.Integer(), server_default=sa.text("0"), nullable=False
        ),
        sa.Column("distribution_error", sa.Text(), nullable=True),
        sa.Column("cancelled_by", sa.String(16), nullable=True),
        sa.Column("refund_amount", sa.Numeric(12, 2), nullable=True),
        *_timestamps("created_at", "updated_at"),
        sa.CheckConstraint(
            "status IN ('pending', 'confirmed', 'cancelled', 'completed', "
            "'refunded', 'disputed', 'no_show')",
            name="ck_reservations_status",
        ),
        sa.CheckConstraint(
            "payment_status IN ('pending', 'processing', 'completed', 'failed', "
            "'cancelled', 'refunded')",
            name="ck_reservations_payment_status",
        ),
        sa.CheckConstraint("end_date > start_date", name="ck_reservations_interval"),
        sa.ForeignKeyConstraint(
            ["resource_id"],
            ["resources.id"],
            name="fk_reservations_resource_id_resources",
            ondelete="RESTRICT",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_reservations"),
    )
    op.create_index("ix_reservations_resource_id", "reservations", ["resource_id"])
    op.create_index("ix_reservations_requester_id", "reservations", ["requester_id"])
    op.create_index("ix_reservations_status", "reservations", ["status"])

    op.create_table(
        "reservation_nights",
        sa.Column("resource_id", sa.String(64), nullable=False),
        sa.Column("night", sa.Date(), nullable=False),
        sa.Column("reservation_id", sa.String(36), nullable=False),
        sa.ForeignKeyConstraint(
            ["reservation_id"],
            ["reservations.id"],
            name="fk_reservation_nights_reservation_id_reservations",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("resource_id", "night", name="pk_reservation_nights"),
    )
    op.create_index(
        "ix_reservation_nights_reservation_id", "reservation_nights", ["reservation_id"]
    )

    op.create_table(
        "blocked_ranges",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("resource_id", sa.String(64), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("reason", sa.String(255), nullable=True),
        sa.Column("created_by", sa.String(64), nullable=True),
        *_timestamps("created_at"),
        sa.ForeignKeyConstraint(
            ["resource_id"],
            ["resources.id"],
            name="fk_blocked_ranges_resource_id_resources",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_blocked_ranges"),
    )
    op.create_index("ix_blocked_ranges_resource_id", "blocked_ranges", ["resource_id"])

    op.create_table(
        "payment_transactions",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("transaction_type", sa.String(16), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("amount", sa.String(32), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("internal_reference", sa.String(64), nullable=True),
        sa.Column("related_transaction_id", sa.String(36), nullable=True),
        sa.Column("provider_transaction_id", sa.String(128), nullable=True),
        sa.Column("financial_transaction_id", sa.String(128), nullable=True),
        sa.Column("correspondent", sa.String(64), nullable=True),
        sa.Column("party_phone", sa.String(32), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("settlement_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("exchange_rate", sa.Numeric(14, 4), nullable=True),
        sa.Column("failure_code", sa.String(64), nullable=True),
        sa.Column("failure_message", sa.Text(), nullable=True),
        *_timestamps("created_at"),
        sa.Column("received_by_provider_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        *_timestamps("updated_at"),
        sa.Column("version", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.CheckConstraint(
            "transaction_type IN ('DEPOSIT', 'PAYOUT', 'REFUND')",
            name="ck_payment_transactions_transaction_type",
        ),
        sa.CheckConstraint(
            "status IN ('PENDING', 'ACCEPTED', 'SUBMITTED', 'COMPLETED', 'FAILED')",
            name="ck_payment_transactions_status",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_payment_transactions"),
    )
    op.create_index(
        "ix_payment_transactions_transaction_type", "payment_transactions", ["transaction_type"]
    )
    op.create_index("ix_payment_transactions_status", "payment_transactions", ["status"])
    op.create_index(
        "ix_payment_transactions_internal_reference",
        "payment_transactions",
        ["internal_reference"],
    )
    # One in-flight deposit per reservation
    in_flight_deposit = sa.text(
        "transaction_type = 'DEPOSIT' AND status IN ('PENDING', 'ACCEPTED', 'SUBMITTED')"
    )
    op.create_index(
        "uq_payment_transactions_in_flight_deposit",
        "payment_transactions",
        ["internal_reference"],
        unique=True,
        postgresql_where=in_flight_deposit,
        sqlite_where=in_flight_deposit,
    )

    op.create_table(
        "wallets",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("owner_id", sa.String(64), nullable=False),
        sa.Column("balance", sa.Numeric(14, 2), server_default=sa.text("0"), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        *_timestamps("created_at", "updated_at"),
        sa.PrimaryKeyConstraint("id", name="pk_wallets"),
        sa.UniqueConstraint("owner_id", name="uq_wallets_owner_id"),
    )

    op.create_table(
        "wallet_transactions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("wallet_id", sa.Integer(), nullable=False),
        sa.Column("direction", sa.String(8), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("balance_before", sa.Numeric(14, 2), nullable=False),
        sa.Column("balance_after", sa.Numeric(14, 2), nullable=False),
        sa.Column("external_reference", sa.String(64), nullable=True),
        sa.Column("idempotency_key", sa.String(128), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps("created_at"),
        sa.ForeignKeyConstraint(
            ["wallet_id"], ["wallets.id"], name="fk_wallet_transactions_wallet_id_wallets"
        ),
        sa.PrimaryKeyConstraint("id", name="pk_wallet_transactions"),
        sa.UniqueConstraint("idempotency_key", name="uq_wallet_transactions_idempotency_key"),
    )
    op.create_index(
        "ix_wallet_transactions_wallet_id", "wallet_transactions", ["wallet_id"]
    )
    op.create_index(
        "ix_wallet_transactions_external_reference",
        "wallet_transactions",
        ["external_reference"],
    )

    # Postgres only: second guard against overlapping active reservations,
    # independent of the reservation_nights claim table
    if op.get_bind().dialect.name == "postgresql":
        op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")
        op.execute(
            """
            ALTER TABLE reservations
            ADD CONSTRAINT ex_reservations_no_overlap
            EXCLUDE USING gist (
                resource_id WITH =,
                daterange(start_date, end_date, '[)') WITH &&
            )
            WHERE (status IN ('pending', 'confirmed'))
            """
        )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("wallet_transactions")
    op.drop_table("wallets")
    op.drop_table("payment_transactions")
    op.drop_table("blocked_ranges")
    op.drop_table("reservation_nights")
    op.drop_table("reservations")
    op.drop_table("resources")
