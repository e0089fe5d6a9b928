from __future__ import annotations

from decimal import Decimal
from enum import StrEnum


class AccountType(StrEnum):
    ASSET = "ASSET"
    LIABILITY = "LIABILITY"
    EQUITY = "EQUITY"
    REVENUE = "REVENUE"
    EXPENSE = "EXPENSE"


class EntryDirection(StrEnum):
    DEBIT = "DEBIT"
    CREDIT = "CREDIT"

    @property
    def opposite(self) -> EntryDirection:
        return EntryDirection.CREDIT if self is EntryDirection.DEBIT else EntryDirection.DEBIT


class CashFlowCategory(StrEnum):
    CASH = "CASH"
    OPERATING = "OPERATING"
    INVESTING = "INVESTING"
    FINANCING = "FINANCING"


class PeriodStatus(StrEnum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class EntryStatus(StrEnum):
    DRAFT = "DRAFT"
    POSTED = "POSTED"
    VOIDED = "VOIDED"


class EntrySource(StrEnum):
    MANUAL = "MANUAL"
    INVOICE_SALE = "INVOICE_SALE"
    INVOICE_CANCEL = "INVOICE_CANCEL"
    PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
    PURCHASE_RECEIVED = "PURCHASE_RECEIVED"
    STOCK_ADJUSTMENT = "STOCK_ADJUSTMENT"
    PAYROLL = "PAYROLL"
    POS_SALE = "POS_SALE"
    TAX_DOCUMENT = "TAX_DOCUMENT"
    REVERSAL = "REVERSAL"


# Entries that belong to the append-only posted log. A voided original stays in
# the log; its reversal offsets it.
LOGGED_STATUSES = (EntryStatus.POSTED.value, EntryStatus.VOIDED.value)

BALANCE_SHEET_TYPES = (AccountType.ASSET, AccountType.LIABILITY, AccountType.EQUITY)
INCOME_STATEMENT_TYPES = (AccountType.REVENUE, AccountType.EXPENSE)

_DEBIT_NORMAL = frozenset({AccountType.ASSET, AccountType.EXPENSE})


def normal_side(account_type: AccountType | str) -> EntryDirection:
    """Side on which an account of this type increases."""
    if AccountType(account_type) in _DEBIT_NORMAL:
        return EntryDirection.DEBIT
    return EntryDirection.CREDIT


def signed_amount(direction: EntryDirection | str, amount: Decimal, side: EntryDirection | str) -> Decimal:
    """Amount of a line expressed in the sign convention of ``side``."""
    return amount if EntryDirection(direction) == EntryDirection(side) else -amount


def default_cash_flow_category(account_type: AccountType | str) -> CashFlowCategory | None:
    kind = AccountType(account_type)
    if kind in (AccountType.ASSET, AccountType.LIABILITY):
        return CashFlowCategory.OPERATING
    if kind == AccountType.EQUITY:
        return CashFlowCategory.FINANCING
    return None


def account_level(code: str) -> int:
    """Display level implied by the code length (class, group, account, sub-account)."""
    length = len(code.strip())
    if length <= 1:
        return 1
    if length == 2:
        return 2
    if length <= 4:
        return 3
    return 4
