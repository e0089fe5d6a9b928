from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import date

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response, status
from sqlalchemy.orm import Session

from nexa_ledger.context import get_correlation_id
from nexa_ledger.core.auth import AuthUser
from nexa_ledger.core.database import get_db
from nexa_ledger.core.rbac import require_permissions
from nexa_ledger.platform.ledger.accounts import account_registry
from nexa_ledger.platform.ledger.journal import journal_engine
from nexa_ledger.platform.ledger.periods import period_manager
from nexa_ledger.platform.ledger.schemas import (
    AccountCreate,
    AccountRead,
    AccountTreeNode,
    AccountUpdate,
    JournalEntryCreate,
    JournalEntryRead,
    JournalEntryUpdate,
    JournalEntryVoided,
    JournalEntryVoidRequest,
    PeriodCreate,
    PeriodRead,
    PeriodReopenRequest,
    SeedChartAccountsResult,
    TransactionRecorded,
    TransactionRecordRequest,
)
from nexa_ledger.platform.ledger.seed import seed_default_chart
from nexa_ledger.platform.ledger.types import AccountType, EntrySource, EntryStatus
from nexa_ledger.platform.security.context import AuthContext


router = APIRouter(prefix="/ledger", tags=["ledger"])


def ledger_context(*permissions: str) -> Callable[..., AuthContext]:
    def dependency(
        request: Request,
        auth_user: AuthUser = Depends(require_permissions(*permissions)),
        tenant_id_header: str | None = Header(default=None, alias="x-tenant-id"),
    ) -> AuthContext:
        tenant_id = (tenant_id_header or "").strip()
        if not tenant_id:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="x-tenant-id header is required")
        correlation_id = get_correlation_id() or request.headers.get("x-correlation-id")
        return AuthContext(
            user_id=auth_user.sub,
            tenant_id=tenant_id,
            correlation_id=correlation_id,
            roles=[str(item) for item in auth_user.roles],
        )

    return dependency


get_ledger_admin_context = ledger_context("ledger.admin")
get_ledger_record_context = ledger_context("ledger.record")
get_ledger_read_context = ledger_context("ledger.read")


@router.post("/transactions", response_model=TransactionRecorded, status_code=status.HTTP_201_CREATED)
def record_transaction(
    payload: TransactionRecordRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_ledger_record_context),
) -> TransactionRecorded:
    return journal_engine.record_transaction(db, ctx, payload)


@router.post("/accounts", response_model=AccountRead, status_code=status.HTTP_201_CREATED)
def create_account(
    payload: AccountCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_ledger_admin_context),
) -> AccountRead:
    return account_registry.create_account(db, ctx, payload)


@router.get("/accounts", response_model=list[AccountRead])
def list_accounts(
    active_only: bool = Query(default=True),
    account_type: AccountType | None = Query(default=None, alias="type"),
    search: str | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_ledger_read_context),
) -> list[AccountRead]:
    return account_registry.list_accounts(db, ctx, active_only=active_only, account_type=account_type, search=search)


@router.get("/accounts/tree", response_model=list[AccountTreeNode])
def get_account_tree(
    as_of: date | None = Query(default=None),
    account_type: AccountType | None = Query(default=None, alias="type"),
    root_id: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_ledger_read_context),
) -> list[AccountTreeNode]:
    return account_registry.get_account_tree(db, ctx, as_of=as_of, account_type=account_type, root_id=root_id)


@router.get("/accounts/by-code/{code}", response_model=AccountRead)
def get_account_by_code(
    code: str,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_ledger_read_context),
) -> AccountRead:
    return account_registry.get_by_code(db, ctx, code)


@router.get("/accounts/{account_id}", response_model=AccountRead)
def get_account(
    account_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_ledger_read_context),
) -> AccountRead:
    return account_registry.get_account(db, ctx, account_id)


@router.patch("/accounts/{account_id}", response_model=AccountRead)
def update_account(
    account_id: uuid.UUID,
    payload: AccountUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_ledger_admin_context),
) -> AccountRead:
    return account_registry.update_account(db, ctx, account_id, payload)


@router.post("/accounts/{account_id}/deactivate", response_model=AccountRead)
def deactivate_account(
    account_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_ledger_admin_context),
) -> AccountRead:
    return account_registry.deactivate_account(db, ctx, account_id)


@router.post("/seeds/chart-of-accounts", response_model=SeedChartAccountsResult, status_code=status.HTTP_201_CREATED)
def seed_chart_of_accounts(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_ledger_admin_context),
) -> SeedChartAccountsResult:
    return seed_default_chart(db, ctx)


@router.post("/periods", response_model=PeriodRead, status_code=status.HTTP_201_CREATED)
def create_period(
    payload: PeriodCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_ledger_admin_context),
) -> PeriodRead:
    return period_manager.create_period(db, ctx, payload)


@router.get("/periods", response_model=list[PeriodRead])
def list_periods(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_ledger_read_context),
) -> list[PeriodRead]:
    return period_manager.list_periods(db, ctx)


@router.get("/periods/for-date", response_model=PeriodRead)
def get_period_for_date(
    on: date = Query(),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_ledger_read_context),
) -> PeriodRead:
    return period_manager.period_for_date(db, ctx, on)


@router.get("/periods/{period_id}", response_model=PeriodRead)
def get_period(
    period_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_ledger_read_context),
) -> PeriodRead:
    return period_manager.get_period(db, ctx, period_id)


@router.post("/periods/{period_id}/close", response_model=PeriodRead)
def close_period(
    period_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_ledger_admin_context),
) -> PeriodRead:
    return period_manager.close_period(db, ctx, period_id)


@router.post("/periods/{period_id}/reopen", response_model=PeriodRead)
def reopen_period(
    period_id: uuid.UUID,
    payload: PeriodReopenRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_ledger_admin_context),
) -> PeriodRead:
    return period_manager.reopen_period(db, ctx, period_id, payload.reason)


@router.post("/journal-entries", response_model=JournalEntryRead, status_code=status.HTTP_201_CREATED)
def create_draft_entry(
    payload: JournalEntryCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_ledger_admin_context),
) -> JournalEntryRead:
    return journal_engine.create_draft(db, ctx, payload)


@router.get("/journal-entries", response_model=list[JournalEntryRead])
def list_journal_entries(
    entry_status: EntryStatus | None = Query(default=None, alias="status"),
    source: EntrySource | None = Query(default=None),
    source_ref: str | None = Query(default=None),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_ledger_read_context),
) -> list[JournalEntryRead]:
    return journal_engine.list_entries(
        db,
        ctx,
        status=entry_status,
        source=source,
        source_ref=source_ref,
        start_date=start_date,
        end_date=end_date,
    )


@router.get("/journal-entries/{entry_id}", response_model=JournalEntryRead)
def get_journal_entry(
    entry_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_ledger_read_context),
) -> JournalEntryRead:
    return journal_engine.get_entry(db, ctx, entry_id)


@router.put("/journal-entries/{entry_id}", response_model=JournalEntryRead)
def update_draft_entry(
    entry_id: uuid.UUID,
    payload: JournalEntryUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_ledger_admin_context),
) -> JournalEntryRead:
    return journal_engine.update_draft(db, ctx, entry_id, payload)


@router.delete("/journal-entries/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_draft_entry(
    entry_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_ledger_admin_context),
) -> Response:
    journal_engine.delete_draft(db, ctx, entry_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/journal-entries/{entry_id}/post", response_model=JournalEntryRead)
def post_journal_entry(
    entry_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_ledger_admin_context),
) -> JournalEntryRead:
    return journal_engine.post(db, ctx, entry_id)


@router.post("/journal-entries/{entry_id}/void", response_model=JournalEntryVoided)
def void_journal_entry(
    entry_id: uuid.UUID,
    payload: JournalEntryVoidRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_ledger_admin_context),
) -> JournalEntryVoided:
    return journal_engine.void(db, ctx, entry_id, payload.reason, payload.void_date)
