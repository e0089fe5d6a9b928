from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from nexa_ledger.core.database import Base
from nexa_ledger.platform.ledger.types import (
    AccountType,
    EntryDirection,
    EntryStatus,
    PeriodStatus,
    account_level,
    normal_side,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LedgerAccount(Base):
    __tablename__ = "ledger_account"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(128), nullable=False)
    code: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    parent_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("ledger_account.id", ondelete="RESTRICT"),
        nullable=True,
    )
    # "/"-joined ancestor ids ending with the account's own id
    path: Mapped[str] = mapped_column(String(2048), nullable=False)
    depth: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cash_flow_category: Mapped[str | None] = mapped_column(String(32), nullable=True)
    is_system_account: Mapped[bool] = mapped_column(nullable=False, default=False, server_default="false")
    is_active: Mapped[bool] = mapped_column(nullable=False, default=True, server_default="true")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    lines: Mapped[list[JournalLine]] = relationship("JournalLine", back_populates="account")

    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_ledger_account_code"),
        Index("ix_ledger_account_tenant_type", "tenant_id", "type"),
        Index("ix_ledger_account_tenant_path", "tenant_id", "path"),
    )

    @property
    def account_type(self) -> AccountType:
        return AccountType(self.type)

    @property
    def normal_side(self) -> EntryDirection:
        return normal_side(self.type)

    @property
    def level(self) -> int:
        return account_level(self.code)


class AccountingPeriod(Base):
    __tablename__ = "ledger_accounting_period"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(128), nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    start_date: Mapped[date] = mapped_column(Date(), nullable=False)
    end_date: Mapped[date] = mapped_column(Date(), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=PeriodStatus.OPEN.value)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("tenant_id", "start_date", name="uq_ledger_period_start"),
        CheckConstraint("end_date >= start_date", name="ck_ledger_period_range"),
        Index("ix_ledger_period_tenant_status", "tenant_id", "status"),
    )

    @property
    def is_open(self) -> bool:
        return self.status == PeriodStatus.OPEN.value

    def contains(self, value: date) -> bool:
        return self.start_date <= value <= self.end_date


class JournalEntry(Base):
    __tablename__ = "ledger_journal_entry"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(128), nullable=False)
    # assigned at post time only
    entry_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    entry_date: Mapped[date] = mapped_column(Date(), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=EntryStatus.DRAFT.value)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    source_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    posted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    voided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    void_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    reversal_of_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("ledger_journal_entry.id", ondelete="RESTRICT"),
        nullable=True,
    )
    reversed_by_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("ledger_journal_entry.id", ondelete="RESTRICT"),
        nullable=True,
    )

    lines: Mapped[list[JournalLine]] = relationship(
        "JournalLine",
        back_populates="entry",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="JournalLine.line_no",
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "entry_number", name="uq_ledger_entry_number"),
        Index("ix_ledger_entry_tenant_date", "tenant_id", "entry_date"),
        Index("ix_ledger_entry_tenant_status", "tenant_id", "status"),
        Index("ix_ledger_entry_source_ref", "tenant_id", "source_ref"),
    )


class JournalLine(Base):
    __tablename__ = "ledger_journal_line"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    journal_entry_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("ledger_journal_entry.id", ondelete="CASCADE"),
        nullable=False,
    )
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("ledger_account.id", ondelete="RESTRICT"),
        nullable=False,
    )
    direction: Mapped[str] = mapped_column(String(8), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    cost_center_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    memo: Mapped[str | None] = mapped_column(Text, nullable=True)

    entry: Mapped[JournalEntry] = relationship("JournalEntry", back_populates="lines")
    account: Mapped[LedgerAccount] = relationship("LedgerAccount", back_populates="lines")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_ledger_line_amount_positive"),
        CheckConstraint("direction IN ('DEBIT', 'CREDIT')", name="ck_ledger_line_direction"),
        Index("ix_ledger_line_entry", "journal_entry_id"),
        Index("ix_ledger_line_account", "account_id"),
    )


class LedgerSequence(Base):
    """Per-tenant entry-number counter; its row lock serializes post/void/close."""

    __tablename__ = "ledger_tenant_sequence"

    tenant_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    last_entry_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
