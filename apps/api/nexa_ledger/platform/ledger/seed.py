from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from nexa_ledger.platform.ledger.accounts import account_registry
from nexa_ledger.platform.ledger.errors import ChartAlreadyInitialized
from nexa_ledger.platform.ledger.models import LedgerAccount
from nexa_ledger.platform.ledger.schemas import AccountCreate, AccountRead, SeedChartAccountsResult
from nexa_ledger.platform.ledger.types import AccountType, CashFlowCategory
from nexa_ledger.platform.security.context import AuthContext


logger = logging.getLogger("nexa_ledger.ledger.seed")

# (code, name, type, parent code, cash-flow category); parents precede children
DEFAULT_CHART: tuple[tuple[str, str, AccountType, str | None, CashFlowCategory | None], ...] = (
    ("1", "Assets", AccountType.ASSET, None, None),
    ("11", "Cash and cash equivalents", AccountType.ASSET, "1", CashFlowCategory.CASH),
    ("1105", "Cash on hand", AccountType.ASSET, "11", None),
    ("1110", "Bank accounts", AccountType.ASSET, "11", None),
    ("13", "Receivables", AccountType.ASSET, "1", None),
    ("1305", "Customers", AccountType.ASSET, "13", None),
    ("14", "Inventories", AccountType.ASSET, "1", None),
    ("1435", "Merchandise", AccountType.ASSET, "14", None),
    ("15", "Property and equipment", AccountType.ASSET, "1", CashFlowCategory.INVESTING),
    ("1524", "Office equipment", AccountType.ASSET, "15", None),
    ("2", "Liabilities", AccountType.LIABILITY, None, None),
    ("21", "Financial obligations", AccountType.LIABILITY, "2", CashFlowCategory.FINANCING),
    ("2105", "Bank loans", AccountType.LIABILITY, "21", None),
    ("22", "Suppliers", AccountType.LIABILITY, "2", None),
    ("2205", "Accounts payable", AccountType.LIABILITY, "22", None),
    ("24", "Taxes payable", AccountType.LIABILITY, "2", None),
    ("2408", "Sales tax payable", AccountType.LIABILITY, "24", None),
    ("25", "Payroll liabilities", AccountType.LIABILITY, "2", None),
    ("2505", "Salaries payable", AccountType.LIABILITY, "25", None),
    ("3", "Equity", AccountType.EQUITY, None, None),
    ("31", "Share capital", AccountType.EQUITY, "3", None),
    ("3105", "Paid-in capital", AccountType.EQUITY, "31", None),
    ("37", "Retained earnings", AccountType.EQUITY, "3", None),
    ("3705", "Accumulated profits", AccountType.EQUITY, "37", None),
    ("4", "Revenue", AccountType.REVENUE, None, None),
    ("41", "Operating revenue", AccountType.REVENUE, "4", None),
    ("4135", "Sales of goods", AccountType.REVENUE, "41", None),
    ("42", "Other income", AccountType.REVENUE, "4", None),
    ("4295", "Inventory adjustments (surplus)", AccountType.REVENUE, "42", None),
    ("5", "Expenses", AccountType.EXPENSE, None, None),
    ("51", "Administrative expenses", AccountType.EXPENSE, "5", None),
    ("5105", "Payroll expense", AccountType.EXPENSE, "51", None),
    ("5195", "Other operating expenses", AccountType.EXPENSE, "51", None),
    ("6", "Cost of sales", AccountType.EXPENSE, None, None),
    ("6135", "Cost of goods sold", AccountType.EXPENSE, "6", None),
)


def seed_default_chart(session: Session, ctx: AuthContext) -> SeedChartAccountsResult:
    existing = session.scalar(select(func.count(LedgerAccount.id)).where(LedgerAccount.tenant_id == ctx.tenant_id))
    if existing:
        raise ChartAlreadyInitialized("tenant already has a chart of accounts", account_count=int(existing))

    created: dict[str, LedgerAccount] = {}
    try:
        for code, name, account_type, parent_code, category in DEFAULT_CHART:
            parent = created[parent_code] if parent_code is not None else None
            created[code] = account_registry.stage_account(
                session,
                ctx,
                AccountCreate(
                    code=code,
                    name=name,
                    type=account_type,
                    parent_id=parent.id if parent is not None else None,
                    cash_flow_category=category,
                ),
                is_system_account=True,
            )
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info("ledger.chart.seeded", extra={"tenant_id": ctx.tenant_id})
    accounts = [AccountRead.model_validate(item) for item in created.values()]
    return SeedChartAccountsResult(created=len(accounts), accounts=accounts)
