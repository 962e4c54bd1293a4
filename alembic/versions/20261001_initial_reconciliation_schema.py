"""initial payment reconciliation schema

Revision ID: 20261001_initial
Revises:
Create Date: 2026-10-01 09:00:00.000000
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261001_initial"
down_revision = None
branch_labels = None
depends_on = None

PAYMENT_STATUS = sa.Enum("PENDING", "SUCCESS", "FAILED", "CANCELED", "REFUNDED", name="payment_status")
STATEMENT_STATUS = sa.Enum("pending", "paid", "failed", name="settlement_statement_status")
RUN_STATUS = sa.Enum("noop", "success", "failed", name="settlement_run_status")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "reservations",
        sa.Column("id", sa.String(length=255), primary_key=True),
        sa.Column("status", sa.String(length=30), nullable=False),
        sa.Column("payment_status", sa.String(length=30), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "settlement_statements",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("merchant_id", sa.String(length=255), nullable=False),
        sa.Column("period_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("period_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("total_sales", sa.BigInteger(), nullable=False),
        sa.Column("commission_rate", sa.Numeric(5, 4), nullable=False),
        sa.Column("commission_amount", sa.BigInteger(), nullable=False),
        sa.Column("payout_amount", sa.BigInteger(), nullable=False),
        sa.Column("status", STATEMENT_STATUS, nullable=False),
        sa.Column("payout_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("meta", sa.JSON(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("total_sales > 0", name="ck_settlement_statements_positive_sales"),
        sa.CheckConstraint(
            "commission_amount + payout_amount = total_sales",
            name="ck_settlement_statements_split",
        ),
    )
    op.create_index(
        "ix_settlement_statements_merchant_period",
        "settlement_statements",
        ["merchant_id", "period_start", "period_end"],
    )
    op.create_index("ix_settlement_statements_status", "settlement_statements", ["status"])

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("merchant_id", sa.String(length=255), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("reservation_id", sa.String(length=255), nullable=True),
        sa.Column("amount_total", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("gateway_provider", sa.String(length=50), nullable=False),
        sa.Column("gateway_payment_key", sa.String(length=100), nullable=True, unique=True),
        sa.Column("gateway_order_id", sa.String(length=100), nullable=False, unique=True),
        sa.Column("gateway_method", sa.String(length=30), nullable=False),
        sa.Column("status", PAYMENT_STATUS, nullable=False),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("canceled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_settled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "settlement_statement_id",
            sa.Integer(),
            sa.ForeignKey("settlement_statements.id", ondelete="SET NULL"),
            nullable=True,
        ),
        *_timestamps(),
        sa.CheckConstraint("amount_total >= 0", name="ck_payments_amount_non_negative"),
    )
    op.create_index("ix_payments_merchant_paid", "payments", ["merchant_id", "paid_at"])
    op.create_index("ix_payments_settle", "payments", ["is_settled", "merchant_id", "paid_at"])
    op.create_index("ix_payments_reservation", "payments", ["reservation_id"])
    op.create_index("ix_payments_settlement_statement_id", "payments", ["settlement_statement_id"])

    op.create_table(
        "payment_webhooks",
        sa.Column("id", sa.String(length=100), primary_key=True),
        sa.Column(
            "payment_id",
            sa.Integer(),
            sa.ForeignKey("payments.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("gateway_order_id", sa.String(length=100), nullable=False),
        sa.Column("gateway_payment_key", sa.String(length=100), nullable=True),
        sa.Column("event_type", sa.String(length=50), nullable=False),
        sa.Column("status", sa.String(length=30), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_payment_webhooks_payment_id", "payment_webhooks", ["payment_id"])
    op.create_index(
        "ix_payment_webhooks_replay",
        "payment_webhooks",
        ["gateway_order_id", "event_type", "status", "received_at"],
    )

    op.create_table(
        "settlement_items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "statement_id",
            sa.Integer(),
            sa.ForeignKey("settlement_statements.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "payment_id",
            sa.Integer(),
            sa.ForeignKey("payments.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("statement_id", "payment_id", name="uq_settlement_items_statement_payment"),
    )
    op.create_index("ix_settlement_items_statement_id", "settlement_items", ["statement_id"])
    op.create_index("ix_settlement_items_payment_id", "settlement_items", ["payment_id"])

    op.create_table(
        "settlement_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("period_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("period_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("dry_run", sa.Boolean(), nullable=False),
        sa.Column("status", RUN_STATUS, nullable=False),
        sa.Column("message", sa.String(length=255), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("total_payments", sa.Integer(), nullable=False),
        sa.Column("total_statements", sa.Integer(), nullable=False),
        sa.Column("success_payments", sa.Integer(), nullable=False),
        sa.Column("skipped_payments", sa.Integer(), nullable=False),
        sa.Column("total_payout", sa.BigInteger(), nullable=False),
        sa.Column("total_commission", sa.BigInteger(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_settlement_logs_period", "settlement_logs", ["period_start", "period_end"])

    op.create_table(
        "settlement_errors",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "settlement_log_id",
            sa.Integer(),
            sa.ForeignKey("settlement_logs.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("error_type", sa.String(length=50), nullable=False),
        sa.Column("payment_id", sa.Integer(), nullable=True),
        sa.Column("merchant_id", sa.String(length=255), nullable=True),
        sa.Column("statement_id", sa.Integer(), nullable=True),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("raw_data", sa.JSON(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_settlement_errors_settlement_log_id", "settlement_errors", ["settlement_log_id"])

    op.create_table(
        "scheduler_locks",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=64), nullable=False, unique=True),
        sa.Column("owner", sa.String(length=128), nullable=False),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )


def downgrade() -> None:
    op.drop_table("scheduler_locks")
    op.drop_index("ix_settlement_errors_settlement_log_id", table_name="settlement_errors")
    op.drop_table("settlement_errors")
    op.drop_index("ix_settlement_logs_period", table_name="settlement_logs")
    op.drop_table("settlement_logs")
    op.drop_table("settlement_items")
    op.drop_table("payment_webhooks")
    op.drop_table("payments")
    op.drop_table("settlement_statements")
    op.drop_table("reservations")
    bind = op.get_bind()
    for enum_type in (RUN_STATUS, STATEMENT_STATUS, PAYMENT_STATUS):
        enum_type.drop(bind, checkfirst=True)
