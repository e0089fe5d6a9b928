"""create audit and ledger tables

Revision ID: 202603010001
Revises:
Create Date: 2026-03-01 09:00:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202603010001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.String(length=128), nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=128), nullable=False),
        sa.Column("entity_type", sa.String(length=128), nullable=False),
        sa.Column("entity_id", sa.String(length=128), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("correlation_id", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_entity", "audit_logs", ["tenant_id", "entity_type", "entity_id"])

    op.create_table(
        "ledger_account",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.String(length=128), nullable=False),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("parent_id", sa.Uuid(), nullable=True),
        sa.Column("path", sa.String(length=2048), nullable=False),
        sa.Column("depth", sa.Integer(), nullable=False),
        sa.Column("cash_flow_category", sa.String(length=32), nullable=True),
        sa.Column("is_system_account", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["parent_id"], ["ledger_account.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "code", name="uq_ledger_account_code"),
    )
    op.create_index("ix_ledger_account_tenant_type", "ledger_account", ["tenant_id", "type"])
    op.create_index("ix_ledger_account_tenant_path", "ledger_account", ["tenant_id", "path"])

    op.create_table(
        "ledger_accounting_period",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_by", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "start_date", name="uq_ledger_period_start"),
        sa.CheckConstraint("end_date >= start_date", name="ck_ledger_period_range"),
    )
    op.create_index("ix_ledger_period_tenant_status", "ledger_accounting_period", ["tenant_id", "status"])

    op.create_table(
        "ledger_journal_entry",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.String(length=128), nullable=False),
        sa.Column("entry_number", sa.Integer(), nullable=True),
        sa.Column("entry_date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("source", sa.String(length=32), nullable=False),
        sa.Column("source_ref", sa.String(length=128), nullable=True),
        sa.Column("created_by", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("posted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("void_reason", sa.Text(), nullable=True),
        sa.Column("reversal_of_id", sa.Uuid(), nullable=True),
        sa.Column("reversed_by_id", sa.Uuid(), nullable=True),
        sa.ForeignKeyConstraint(["reversal_of_id"], ["ledger_journal_entry.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["reversed_by_id"], ["ledger_journal_entry.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "entry_number", name="uq_ledger_entry_number"),
    )
    op.create_index("ix_ledger_entry_tenant_date", "ledger_journal_entry", ["tenant_id", "entry_date"])
    op.create_index("ix_ledger_entry_tenant_status", "ledger_journal_entry", ["tenant_id", "status"])
    op.create_index("ix_ledger_entry_source_ref", "ledger_journal_entry", ["tenant_id", "source_ref"])

    op.create_table(
        "ledger_journal_line",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("journal_entry_id", sa.Uuid(), nullable=False),
        sa.Column("line_no", sa.Integer(), nullable=False),
        sa.Column("account_id", sa.Uuid(), nullable=False),
        sa.Column("direction", sa.String(length=8), nullable=False),
        sa.Column("amount", sa.Numeric(18, 6), nullable=False),
        sa.Column("cost_center_id", sa.String(length=128), nullable=True),
        sa.Column("memo", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["journal_entry_id"], ["ledger_journal_entry.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["account_id"], ["ledger_account.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("amount > 0", name="ck_ledger_line_amount_positive"),
        sa.CheckConstraint("direction IN ('DEBIT', 'CREDIT')", name="ck_ledger_line_direction"),
    )
    op.create_index("ix_ledger_line_entry", "ledger_journal_line", ["journal_entry_id"])
    op.create_index("ix_ledger_line_account", "ledger_journal_line", ["account_id"])

    op.create_table(
        "ledger_tenant_sequence",
        sa.Column("tenant_id", sa.String(length=128), nullable=False),
        sa.Column("last_entry_number", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("tenant_id"),
    )


def downgrade() -> None:
    op.drop_table("ledger_tenant_sequence")

    op.drop_index("ix_ledger_line_account", table_name="ledger_journal_line")
    op.drop_index("ix_ledger_line_entry", table_name="ledger_journal_line")
    op.drop_table("ledger_journal_line")

    op.drop_index("ix_ledger_entry_source_ref", table_name="ledger_journal_entry")
    op.drop_index("ix_ledger_entry_tenant_status", table_name="ledger_journal_entry")
    op.drop_index("ix_ledger_entry_tenant_date", table_name="ledger_journal_entry")
    op.drop_table("ledger_journal_entry")

    op.drop_index("ix_ledger_period_tenant_status", table_name="ledger_accounting_period")
    op.drop_table("ledger_accounting_period")

    op.drop_index("ix_ledger_account_tenant_path", table_name="ledger_account")
    op.drop_index("ix_ledger_account_tenant_type", table_name="ledger_account")
    op.drop_table("ledger_account")

    op.drop_index("ix_audit_logs_entity", table_name="audit_logs")
    op.drop_table("audit_logs")
