from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date

from sqlalchemy import Select, and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from nexa_ledger.platform.ledger.errors import (
    AccountInUse,
    AccountNotFound,
    DuplicateCode,
    InvalidAccount,
    InvalidParent,
)
from nexa_ledger.platform.ledger.models import AccountingPeriod, JournalEntry, JournalLine, LedgerAccount
from nexa_ledger.platform.ledger.projector import ZERO, LedgerProjector, ProjectionSnapshot, projector_registry
from nexa_ledger.platform.ledger.schemas import AccountCreate, AccountRead, AccountTreeNode, AccountUpdate
from nexa_ledger.platform.ledger.sequence import acquire_tenant_lock
from nexa_ledger.platform.ledger.types import (
    INCOME_STATEMENT_TYPES,
    LOGGED_STATUSES,
    AccountType,
    CashFlowCategory,
    PeriodStatus,
    default_cash_flow_category,
)
from nexa_ledger.platform.security.context import AuthContext


logger = logging.getLogger("nexa_ledger.ledger.accounts")


def resolve_cash_flow_category(
    account_type: AccountType | str,
    requested: CashFlowCategory | str | None,
    parent: LedgerAccount | None,
) -> str | None:
    kind = AccountType(account_type)
    if requested is not None:
        category = CashFlowCategory(requested)
        if kind in INCOME_STATEMENT_TYPES:
            raise InvalidAccount(f"{kind.value} accounts do not carry a cash-flow category", account_type=kind.value)
        if category == CashFlowCategory.CASH and kind != AccountType.ASSET:
            raise InvalidAccount("only asset accounts can be cash accounts", account_type=kind.value)
        return category.value
    if parent is not None and parent.cash_flow_category is not None:
        return parent.cash_flow_category
    default = default_cash_flow_category(kind)
    return default.value if default is not None else None


@dataclass(slots=True)
class AccountRegistry:
    def stage_account(
        self,
        session: Session,
        ctx: AuthContext,
        dto: AccountCreate,
        *,
        is_system_account: bool = False,
    ) -> LedgerAccount:
        """Validate and add an account to the session without committing."""
        code = dto.code.strip()
        exists = session.scalar(
            select(LedgerAccount.id).where(LedgerAccount.tenant_id == ctx.tenant_id, LedgerAccount.code == code)
        )
        if exists is not None:
            raise DuplicateCode(f"account code {code} already exists", code=code)

        parent: LedgerAccount | None = None
        if dto.parent_id is not None:
            parent = session.get(LedgerAccount, dto.parent_id)
            if parent is None or parent.tenant_id != ctx.tenant_id:
                raise InvalidParent("parent account not found", parent_id=str(dto.parent_id))
            if parent.type != AccountType(dto.type).value:
                raise InvalidParent(
                    f"parent is {parent.type}, child is {AccountType(dto.type).value}",
                    parent_id=str(parent.id),
                )
            if not parent.is_active:
                raise InvalidParent("parent account is inactive", parent_id=str(parent.id))

        account_id = uuid.uuid4()
        account = LedgerAccount(
            id=account_id,
            tenant_id=ctx.tenant_id,
            code=code,
            name=dto.name,
            description=dto.description,
            type=AccountType(dto.type).value,
            parent_id=parent.id if parent is not None else None,
            path=f"{parent.path}/{account_id}" if parent is not None else str(account_id),
            depth=parent.depth + 1 if parent is not None else 0,
            cash_flow_category=resolve_cash_flow_category(dto.type, dto.cash_flow_category, parent),
            is_system_account=is_system_account,
            is_active=True,
        )
        session.add(account)
        session.flush()
        return account

    def create_account(self, session: Session, ctx: AuthContext, dto: AccountCreate) -> AccountRead:
        try:
            account = self.stage_account(session, ctx, dto)
            session.commit()
        except IntegrityError:
            session.rollback()
            raise DuplicateCode(f"account code {dto.code} already exists", code=dto.code)
        except Exception:
            session.rollback()
            raise
        session.refresh(account)
        logger.info(
            "ledger.account.created",
            extra={"tenant_id": ctx.tenant_id, "account_id": str(account.id), "account_code": account.code},
        )
        return AccountRead.model_validate(account)

    def update_account(
        self,
        session: Session,
        ctx: AuthContext,
        account_id: uuid.UUID,
        dto: AccountUpdate,
    ) -> AccountRead:
        try:
            account = self._load(session, ctx, account_id)
            fields = dto.model_fields_set
            if "name" in fields and dto.name is not None:
                account.name = dto.name
            if "description" in fields:
                account.description = dto.description
            if "cash_flow_category" in fields:
                parent = session.get(LedgerAccount, account.parent_id) if account.parent_id is not None else None
                account.cash_flow_category = resolve_cash_flow_category(account.type, dto.cash_flow_category, parent)
            session.commit()
        except Exception:
            session.rollback()
            raise
        session.refresh(account)
        logger.info(
            "ledger.account.updated",
            extra={"tenant_id": ctx.tenant_id, "account_id": str(account.id), "account_code": account.code},
        )
        return AccountRead.model_validate(account)

    def deactivate_account(self, session: Session, ctx: AuthContext, account_id: uuid.UUID) -> AccountRead:
        try:
            # posts check is_active under the same lock
            acquire_tenant_lock(session, ctx.tenant_id)
            account = self._load(session, ctx, account_id)
            in_open_period = session.scalar(
                select(func.count(JournalLine.id))
                .join(JournalEntry, JournalEntry.id == JournalLine.journal_entry_id)
                .join(
                    AccountingPeriod,
                    and_(
                        AccountingPeriod.tenant_id == JournalEntry.tenant_id,
                        AccountingPeriod.start_date <= JournalEntry.entry_date,
                        AccountingPeriod.end_date >= JournalEntry.entry_date,
                    ),
                )
                .where(
                    JournalLine.account_id == account.id,
                    JournalEntry.tenant_id == ctx.tenant_id,
                    JournalEntry.status.in_(LOGGED_STATUSES),
                    AccountingPeriod.status == PeriodStatus.OPEN.value,
                )
            )
            if in_open_period:
                raise AccountInUse(
                    f"account {account.code} has postings in an open period",
                    account_id=str(account.id),
                )
            account.is_active = False
            session.commit()
        except Exception:
            session.rollback()
            raise
        session.refresh(account)
        logger.info(
            "ledger.account.deactivated",
            extra={"tenant_id": ctx.tenant_id, "account_id": str(account.id), "account_code": account.code},
        )
        return AccountRead.model_validate(account)

    def get_account(self, session: Session, ctx: AuthContext, account_id: uuid.UUID) -> AccountRead:
        return AccountRead.model_validate(self._load(session, ctx, account_id))

    def get_by_code(self, session: Session, ctx: AuthContext, code: str) -> AccountRead:
        account = session.scalar(
            select(LedgerAccount).where(LedgerAccount.tenant_id == ctx.tenant_id, LedgerAccount.code == code.strip())
        )
        if account is None:
            raise AccountNotFound(f"account {code} not found", code=code)
        return AccountRead.model_validate(account)

    def list_accounts(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        active_only: bool = True,
        account_type: AccountType | None = None,
        search: str | None = None,
    ) -> list[AccountRead]:
        stmt: Select[tuple[LedgerAccount]] = select(LedgerAccount).where(LedgerAccount.tenant_id == ctx.tenant_id)
        if active_only:
            stmt = stmt.where(LedgerAccount.is_active.is_(True))
        if account_type is not None:
            stmt = stmt.where(LedgerAccount.type == AccountType(account_type).value)
        if search:
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(or_(LedgerAccount.code.ilike(pattern), LedgerAccount.name.ilike(pattern)))
        rows = session.scalars(stmt.order_by(LedgerAccount.code.asc())).all()
        return [AccountRead.model_validate(item) for item in rows]

    def list_descendants(self, session: Session, ctx: AuthContext, account_id: uuid.UUID) -> list[AccountRead]:
        account = self._load(session, ctx, account_id)
        rows = session.scalars(
            select(LedgerAccount)
            .where(LedgerAccount.tenant_id == ctx.tenant_id, LedgerAccount.path.like(f"{account.path}/%"))
            .order_by(LedgerAccount.code.asc())
        ).all()
        return [AccountRead.model_validate(item) for item in rows]

    def get_account_tree(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        as_of: date | None = None,
        account_type: AccountType | None = None,
        root_id: uuid.UUID | None = None,
        view: LedgerProjector | ProjectionSnapshot | None = None,
    ) -> list[AccountTreeNode]:
        """Roots ordered by code, each node carrying its own and its aggregated balance.

        Inactive accounts are kept so that historical balances still roll up.
        """
        stmt = select(LedgerAccount).where(LedgerAccount.tenant_id == ctx.tenant_id)
        if account_type is not None:
            stmt = stmt.where(LedgerAccount.type == AccountType(account_type).value)
        if root_id is not None:
            root = self._load(session, ctx, root_id)
            stmt = stmt.where(or_(LedgerAccount.id == root.id, LedgerAccount.path.like(f"{root.path}/%")))
        accounts = session.scalars(stmt.order_by(LedgerAccount.code.asc())).all()

        projector = view if view is not None else projector_registry.get(session, ctx.tenant_id)
        known = {account.id for account in accounts}
        children: dict[uuid.UUID | None, list[LedgerAccount]] = {}
        for account in accounts:
            parent_key = account.parent_id if account.parent_id in known else None
            children.setdefault(parent_key, []).append(account)

        def build(account: LedgerAccount) -> AccountTreeNode:
            own = projector.balance_as_of(account.id, as_of)
            nodes = [build(child) for child in children.get(account.id, [])]
            return AccountTreeNode(
                id=account.id,
                code=account.code,
                name=account.name,
                type=AccountType(account.type),
                normal_side=account.normal_side,
                depth=account.depth,
                is_active=account.is_active,
                balance=own,
                aggregated_balance=own + sum((node.aggregated_balance for node in nodes), ZERO),
                children=nodes,
            )

        return [build(root) for root in children.get(None, [])]

    def _load(self, session: Session, ctx: AuthContext, account_id: uuid.UUID) -> LedgerAccount:
        account = session.get(LedgerAccount, account_id)
        if account is None or account.tenant_id != ctx.tenant_id:
            raise AccountNotFound("account not found", account_id=str(account_id))
        return account


account_registry = AccountRegistry()


def flatten_tree(nodes: list[AccountTreeNode]) -> list[AccountTreeNode]:
    """Parent-first, depth-first walk of a tree returned by ``get_account_tree``."""
    ordered: list[AccountTreeNode] = []
    stack = list(reversed(nodes))
    while stack:
        node = stack.pop()
        ordered.append(node)
        stack.extend(reversed(node.children))
    return ordered
