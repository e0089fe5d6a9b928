from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field

from nexa_ledger.platform.ledger.types import (
    AccountType,
    CashFlowCategory,
    EntryDirection,
    EntrySource,
    EntryStatus,
)


class TrialBalanceRow(BaseModel):
    account_id: UUID
    account_code: str
    account_name: str
    account_type: AccountType
    is_active: bool
    debit: Decimal
    credit: Decimal


class TrialBalanceReportRead(BaseModel):
    as_of_date: date
    total_debit: Decimal
    total_credit: Decimal
    rows: list[TrialBalanceRow]


class GeneralJournalLine(BaseModel):
    line_no: int
    account_id: UUID
    account_code: str
    account_name: str
    direction: EntryDirection
    debit: Decimal
    credit: Decimal
    cost_center_id: str | None
    memo: str | None


class GeneralJournalEntry(BaseModel):
    entry_id: UUID
    entry_number: int
    display_number: str
    entry_date: date
    description: str
    status: EntryStatus
    source: EntrySource
    source_ref: str | None
    reversal_of_id: UUID | None
    reversed_by_id: UUID | None
    total_debit: Decimal
    total_credit: Decimal
    lines: list[GeneralJournalLine]


class GeneralJournalReportRead(BaseModel):
    start_date: date
    end_date: date
    entry_count: int
    total_debit: Decimal
    total_credit: Decimal
    entries: list[GeneralJournalEntry]


class GeneralLedgerLine(BaseModel):
    entry_id: UUID
    entry_number: int
    display_number: str
    entry_date: date
    description: str
    memo: str | None
    debit: Decimal
    credit: Decimal
    running_balance: Decimal


class GeneralLedgerAccount(BaseModel):
    account_id: UUID
    account_code: str
    account_name: str
    account_type: AccountType
    normal_side: EntryDirection
    opening_balance: Decimal
    total_debit: Decimal
    total_credit: Decimal
    closing_balance: Decimal
    lines: list[GeneralLedgerLine]


class GeneralLedgerReportRead(BaseModel):
    start_date: date
    end_date: date
    accounts: list[GeneralLedgerAccount]


class StatementRow(BaseModel):
    account_id: UUID | None
    account_code: str | None
    account_name: str
    depth: int
    balance: Decimal
    total: Decimal


class StatementSection(BaseModel):
    title: str
    rows: list[StatementRow] = Field(default_factory=list)
    total: Decimal


class BalanceSheetReportRead(BaseModel):
    as_of_date: date
    assets: StatementSection
    liabilities: StatementSection
    equity: StatementSection
    current_earnings: Decimal
    total_assets: Decimal
    total_liabilities_and_equity: Decimal


class IncomeStatementReportRead(BaseModel):
    start_date: date
    end_date: date
    revenue: StatementSection
    expenses: StatementSection
    net_income: Decimal


class CashFlowLine(BaseModel):
    account_id: UUID
    account_code: str
    account_name: str
    amount: Decimal


class CashFlowSection(BaseModel):
    category: CashFlowCategory
    lines: list[CashFlowLine] = Field(default_factory=list)
    total: Decimal


class CashFlowReportRead(BaseModel):
    start_date: date
    end_date: date
    net_income: Decimal
    operating: CashFlowSection
    investing: CashFlowSection
    financing: CashFlowSection
    net_change_in_cash: Decimal
    opening_cash: Decimal
    closing_cash: Decimal
