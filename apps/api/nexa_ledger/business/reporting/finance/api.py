from __future__ import annotations

import uuid
from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from nexa_ledger.business.reporting.finance.schemas import (
    BalanceSheetReportRead,
    CashFlowReportRead,
    GeneralJournalReportRead,
    GeneralLedgerReportRead,
    IncomeStatementReportRead,
    TrialBalanceReportRead,
)
from nexa_ledger.business.reporting.finance.service import report_generator
from nexa_ledger.core.database import get_db
from nexa_ledger.platform.ledger.api import get_ledger_read_context
from nexa_ledger.platform.security.context import AuthContext


router = APIRouter(prefix="/ledger/reports", tags=["ledger", "reports"])


@router.get("/trial-balance", response_model=TrialBalanceReportRead)
def trial_balance(
    as_of_date: date = Query(),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_ledger_read_context),
) -> TrialBalanceReportRead:
    return report_generator.trial_balance(db, ctx, as_of_date=as_of_date)


@router.get("/general-journal", response_model=GeneralJournalReportRead)
def general_journal(
    start_date: date = Query(),
    end_date: date = Query(),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_ledger_read_context),
) -> GeneralJournalReportRead:
    return report_generator.general_journal(db, ctx, start_date=start_date, end_date=end_date)


@router.get("/general-ledger", response_model=GeneralLedgerReportRead)
def general_ledger(
    start_date: date = Query(),
    end_date: date = Query(),
    account_id: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_ledger_read_context),
) -> GeneralLedgerReportRead:
    return report_generator.general_ledger(
        db,
        ctx,
        start_date=start_date,
        end_date=end_date,
        account_id=account_id,
    )


@router.get("/balance-sheet", response_model=BalanceSheetReportRead)
def balance_sheet(
    as_of_date: date = Query(),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_ledger_read_context),
) -> BalanceSheetReportRead:
    return report_generator.balance_sheet(db, ctx, as_of_date=as_of_date)


@router.get("/income-statement", response_model=IncomeStatementReportRead)
def income_statement(
    start_date: date = Query(),
    end_date: date = Query(),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_ledger_read_context),
) -> IncomeStatementReportRead:
    return report_generator.income_statement(db, ctx, start_date=start_date, end_date=end_date)


@router.get("/cash-flow", response_model=CashFlowReportRead)
def cash_flow(
    start_date: date = Query(),
    end_date: date = Query(),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_ledger_read_context),
) -> CashFlowReportRead:
    return report_generator.cash_flow(db, ctx, start_date=start_date, end_date=end_date)
