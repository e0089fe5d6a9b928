from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from nexa_ledger.platform.ledger.types import (
    AccountType,
    CashFlowCategory,
    EntryDirection,
    EntrySource,
    EntryStatus,
    PeriodStatus,
)


class AccountCreate(BaseModel):
    code: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=255)
    type: AccountType
    parent_id: UUID | None = None
    description: str | None = None
    cash_flow_category: CashFlowCategory | None = None


class AccountUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    cash_flow_category: CashFlowCategory | None = None


class AccountRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str
    code: str
    name: str
    description: str | None
    type: AccountType
    normal_side: EntryDirection
    level: int
    parent_id: UUID | None
    path: str
    depth: int
    cash_flow_category: CashFlowCategory | None
    is_system_account: bool
    is_active: bool
    created_at: datetime
    updated_at: datetime


class AccountTreeNode(BaseModel):
    id: UUID
    code: str
    name: str
    type: AccountType
    normal_side: EntryDirection
    depth: int
    is_active: bool
    balance: Decimal
    aggregated_balance: Decimal
    children: list[AccountTreeNode] = Field(default_factory=list)


class PeriodCreate(BaseModel):
    start_date: date
    end_date: date
    name: str | None = Field(default=None, max_length=128)
    notes: str | None = None


class PeriodReopenRequest(BaseModel):
    reason: str = Field(min_length=1)


class PeriodRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str
    name: str
    start_date: date
    end_date: date
    status: PeriodStatus
    notes: str | None
    closed_at: datetime | None
    closed_by: str | None
    created_at: datetime
    posted_entry_count: int = 0


class JournalLineInput(BaseModel):
    account_id: UUID
    direction: EntryDirection
    amount: Decimal = Field(gt=Decimal("0"), max_digits=18, decimal_places=6)
    cost_center_id: str | None = None
    memo: str | None = None


class JournalEntryCreate(BaseModel):
    entry_date: date
    description: str = Field(min_length=1)
    lines: list[JournalLineInput]
    source: EntrySource = EntrySource.MANUAL
    source_ref: str | None = Field(default=None, max_length=128)


class JournalEntryUpdate(BaseModel):
    entry_date: date
    description: str = Field(min_length=1)
    lines: list[JournalLineInput]
    source_ref: str | None = Field(default=None, max_length=128)


class JournalEntryVoidRequest(BaseModel):
    reason: str = Field(min_length=1)
    void_date: date


class TransactionRecordRequest(BaseModel):
    entry_date: date
    description: str = Field(min_length=1)
    lines: list[JournalLineInput]
    source: EntrySource
    source_ref: str | None = Field(default=None, max_length=128)


class TransactionRecorded(BaseModel):
    entry_id: UUID
    entry_number: int
    display_number: str


class JournalLineRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    line_no: int
    account_id: UUID
    direction: EntryDirection
    amount: Decimal
    cost_center_id: str | None
    memo: str | None


class JournalEntryRead(BaseModel):
    id: UUID
    tenant_id: str
    entry_number: int | None
    display_number: str | None
    entry_date: date
    description: str
    status: EntryStatus
    source: EntrySource
    source_ref: str | None
    created_by: str
    created_at: datetime
    posted_at: datetime | None
    voided_at: datetime | None
    void_reason: str | None
    reversal_of_id: UUID | None
    reversed_by_id: UUID | None
    total_debit: Decimal
    total_credit: Decimal
    lines: list[JournalLineRead] = Field(default_factory=list)


class SeedChartAccountsResult(BaseModel):
    created: int
    accounts: list[AccountRead]


class JournalEntryVoided(BaseModel):
    original: JournalEntryRead
    reversal: JournalEntryRead
