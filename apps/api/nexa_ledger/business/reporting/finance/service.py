from __future__ import annotations

import itertools
import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from time import perf_counter

from opentelemetry import trace
from sqlalchemy import select
from sqlalchemy.orm import Session

from nexa_ledger.business.reporting.finance.schemas import (
    BalanceSheetReportRead,
    CashFlowLine,
    CashFlowReportRead,
    CashFlowSection,
    GeneralJournalEntry,
    GeneralJournalLine,
    GeneralJournalReportRead,
    GeneralLedgerAccount,
    GeneralLedgerLine,
    GeneralLedgerReportRead,
    IncomeStatementReportRead,
    StatementRow,
    StatementSection,
    TrialBalanceReportRead,
    TrialBalanceRow,
)
from nexa_ledger.core.config import get_settings
from nexa_ledger.metrics import observe_report_duration
from nexa_ledger.platform.ledger.accounts import AccountRegistry, flatten_tree
from nexa_ledger.platform.ledger.errors import InvalidPeriodRange, LedgerIntegrityError
from nexa_ledger.platform.ledger.journal import display_number
from nexa_ledger.platform.ledger.models import JournalEntry, JournalLine, LedgerAccount
from nexa_ledger.platform.ledger.projector import ZERO, Movement, ProjectionSnapshot, projector_registry
from nexa_ledger.platform.ledger.schemas import AccountRead, AccountTreeNode
from nexa_ledger.platform.ledger.types import (
    INCOME_STATEMENT_TYPES,
    LOGGED_STATUSES,
    AccountType,
    CashFlowCategory,
    EntryDirection,
    EntrySource,
    EntryStatus,
    signed_amount,
)
from nexa_ledger.platform.security.context import AuthContext


logger = logging.getLogger("nexa_ledger.reporting")
tracer = trace.get_tracer("nexa_ledger.reporting")

ONE_DAY = timedelta(days=1)


@dataclass(slots=True)
class ReportGenerator:
    """Financial statements computed from the balance projection.

    Arithmetic is exact; ``_q`` rounds only what goes into the response. The
    consistency checks compare the exact values and raise ``LedgerIntegrityError``
    because a mismatch can only come from an engine or projector defect.
    """

    accounts: AccountRegistry = field(default_factory=AccountRegistry)

    def trial_balance(self, session: Session, ctx: AuthContext, *, as_of_date: date) -> TrialBalanceReportRead:
        with self._report("trial_balance", ctx):
            view = self._view(session, ctx)
            total_debit = ZERO
            total_credit = ZERO
            rows: list[TrialBalanceRow] = []
            for account in self.accounts.list_accounts(session, ctx, active_only=False):
                balance = view.balance_as_of(account.id, as_of_date)
                if not account.is_active and balance == ZERO:
                    continue
                debit, credit = self._columns(account.normal_side, balance)
                total_debit += debit
                total_credit += credit
                rows.append(
                    TrialBalanceRow(
                        account_id=account.id,
                        account_code=account.code,
                        account_name=account.name,
                        account_type=account.type,
                        is_active=account.is_active,
                        debit=self._q(debit),
                        credit=self._q(credit),
                    )
                )

            if total_debit != total_credit:
                raise LedgerIntegrityError(
                    "trial_balance",
                    f"debit column {total_debit} != credit column {total_credit}",
                    tenant_id=ctx.tenant_id,
                    report="trial_balance",
                )
            return TrialBalanceReportRead(
                as_of_date=as_of_date,
                total_debit=self._q(total_debit),
                total_credit=self._q(total_credit),
                rows=rows,
            )

    def general_journal(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        start_date: date,
        end_date: date,
    ) -> GeneralJournalReportRead:
        self._check_range(start_date, end_date)
        with self._report("general_journal", ctx):
            rows = session.execute(
                select(
                    JournalEntry.id.label("entry_id"),
                    JournalEntry.entry_number,
                    JournalEntry.entry_date,
                    JournalEntry.description,
                    JournalEntry.status,
                    JournalEntry.source,
                    JournalEntry.source_ref,
                    JournalEntry.reversal_of_id,
                    JournalEntry.reversed_by_id,
                    JournalLine.line_no,
                    JournalLine.account_id,
                    LedgerAccount.code.label("account_code"),
                    LedgerAccount.name.label("account_name"),
                    JournalLine.direction,
                    JournalLine.amount,
                    JournalLine.cost_center_id,
                    JournalLine.memo,
                )
                .join(JournalLine, JournalLine.journal_entry_id == JournalEntry.id)
                .join(LedgerAccount, LedgerAccount.id == JournalLine.account_id)
                .where(
                    JournalEntry.tenant_id == ctx.tenant_id,
                    JournalEntry.status.in_(LOGGED_STATUSES),
                    JournalEntry.entry_date >= start_date,
                    JournalEntry.entry_date <= end_date,
                )
                .order_by(JournalEntry.entry_number.asc(), JournalLine.line_no.asc())
                .execution_options(yield_per=get_settings().ledger_stream_batch_size)
            )

            entries: list[GeneralJournalEntry] = []
            grand_debit = ZERO
            grand_credit = ZERO
            for _, group in itertools.groupby(rows, key=lambda row: row.entry_id):
                group_rows = list(group)
                head = group_rows[0]
                entry_debit = ZERO
                entry_credit = ZERO
                lines: list[GeneralJournalLine] = []
                for row in group_rows:
                    amount = Decimal(row.amount)
                    is_debit = row.direction == EntryDirection.DEBIT.value
                    if is_debit:
                        entry_debit += amount
                    else:
                        entry_credit += amount
                    lines.append(
                        GeneralJournalLine(
                            line_no=row.line_no,
                            account_id=row.account_id,
                            account_code=row.account_code,
                            account_name=row.account_name,
                            direction=EntryDirection(row.direction),
                            debit=self._q(amount if is_debit else ZERO),
                            credit=self._q(ZERO if is_debit else amount),
                            cost_center_id=row.cost_center_id,
                            memo=row.memo,
                        )
                    )
                grand_debit += entry_debit
                grand_credit += entry_credit
                entries.append(
                    GeneralJournalEntry(
                        entry_id=head.entry_id,
                        entry_number=head.entry_number,
                        display_number=display_number(head.entry_number) or "",
                        entry_date=head.entry_date,
                        description=head.description,
                        status=EntryStatus(head.status),
                        source=EntrySource(head.source),
                        source_ref=head.source_ref,
                        reversal_of_id=head.reversal_of_id,
                        reversed_by_id=head.reversed_by_id,
                        total_debit=self._q(entry_debit),
                        total_credit=self._q(entry_credit),
                        lines=lines,
                    )
                )

            if grand_debit != grand_credit:
                raise LedgerIntegrityError(
                    "general_journal",
                    f"journal debits {grand_debit} != credits {grand_credit}",
                    tenant_id=ctx.tenant_id,
                    report="general_journal",
                )
            return GeneralJournalReportRead(
                start_date=start_date,
                end_date=end_date,
                entry_count=len(entries),
                total_debit=self._q(grand_debit),
                total_credit=self._q(grand_credit),
                entries=entries,
            )

    def general_ledger(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        start_date: date,
        end_date: date,
        account_id: uuid.UUID | None = None,
    ) -> GeneralLedgerReportRead:
        self._check_range(start_date, end_date)
        with self._report("general_ledger", ctx):
            view = self._view(session, ctx)
            if account_id is not None:
                candidates = [self.accounts.get_account(session, ctx, account_id)]
            else:
                candidates = self.accounts.list_accounts(session, ctx, active_only=False)

            result: list[GeneralLedgerAccount] = []
            for account in candidates:
                movements = view.movements(account.id, start_date, end_date)
                if account_id is None and not movements:
                    continue
                result.append(self._ledger_account(view, ctx, account, movements, start_date, end_date))

            return GeneralLedgerReportRead(start_date=start_date, end_date=end_date, accounts=result)

    def balance_sheet(self, session: Session, ctx: AuthContext, *, as_of_date: date) -> BalanceSheetReportRead:
        with self._report("balance_sheet", ctx):
            view = self._view(session, ctx)

            def tree(account_type: AccountType) -> list[AccountTreeNode]:
                return self.accounts.get_account_tree(
                    session, ctx, as_of=as_of_date, account_type=account_type, view=view
                )

            assets, total_assets = self._section("Assets", tree(AccountType.ASSET))
            liabilities, total_liabilities = self._section("Liabilities", tree(AccountType.LIABILITY))
            equity, total_equity = self._section("Equity", tree(AccountType.EQUITY))

            current_earnings = self._roots_total(tree(AccountType.REVENUE)) - self._roots_total(tree(AccountType.EXPENSE))
            total_equity += current_earnings
            equity.rows.append(
                StatementRow(
                    account_id=None,
                    account_code=None,
                    account_name="Current earnings",
                    depth=0,
                    balance=self._q(current_earnings),
                    total=self._q(current_earnings),
                )
            )
            equity.total = self._q(total_equity)

            if total_assets != total_liabilities + total_equity:
                raise LedgerIntegrityError(
                    "balance_sheet",
                    f"assets {total_assets} != liabilities {total_liabilities} + equity {total_equity}",
                    tenant_id=ctx.tenant_id,
                    report="balance_sheet",
                )
            return BalanceSheetReportRead(
                as_of_date=as_of_date,
                assets=assets,
                liabilities=liabilities,
                equity=equity,
                current_earnings=self._q(current_earnings),
                total_assets=self._q(total_assets),
                total_liabilities_and_equity=self._q(total_liabilities + total_equity),
            )

    def income_statement(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        start_date: date,
        end_date: date,
    ) -> IncomeStatementReportRead:
        self._check_range(start_date, end_date)
        with self._report("income_statement", ctx):
            view = self._view(session, ctx)
            revenue, total_revenue = self._delta_section(session, ctx, view, "Revenue", AccountType.REVENUE, start_date, end_date)
            expenses, total_expenses = self._delta_section(
                session, ctx, view, "Expenses", AccountType.EXPENSE, start_date, end_date
            )
            return IncomeStatementReportRead(
                start_date=start_date,
                end_date=end_date,
                revenue=revenue,
                expenses=expenses,
                net_income=self._q(total_revenue - total_expenses),
            )

    def cash_flow(self, session: Session, ctx: AuthContext, *, start_date: date, end_date: date) -> CashFlowReportRead:
        """Indirect method: net income adjusted by the movement of every non-cash balance-sheet account.

        Every posted entry balances, so the adjusted total must equal the literal
        change of the CASH accounts over the same range.
        """
        self._check_range(start_date, end_date)
        with self._report("cash_flow", ctx):
            view = self._view(session, ctx)
            before = start_date - ONE_DAY

            net_income = ZERO
            cash_change = ZERO
            opening_cash = ZERO
            closing_cash = ZERO
            adjustments: dict[CashFlowCategory, list[tuple[AccountRead, Decimal]]] = {
                CashFlowCategory.OPERATING: [],
                CashFlowCategory.INVESTING: [],
                CashFlowCategory.FINANCING: [],
            }

            for account in self.accounts.list_accounts(session, ctx, active_only=False):
                if account.type in INCOME_STATEMENT_TYPES:
                    delta = view.balance_as_of(account.id, end_date) - view.balance_as_of(account.id, before)
                    net_income += delta if account.type == AccountType.REVENUE else -delta
                    continue
                if account.cash_flow_category == CashFlowCategory.CASH:
                    cash_change += view.debit_delta(account.id, start_date, end_date)
                    opening_cash += view.balance_as_of(account.id, before)
                    closing_cash += view.balance_as_of(account.id, end_date)
                    continue
                # an asset increase consumes cash, a liability or equity increase provides it
                amount = -view.debit_delta(account.id, start_date, end_date)
                if amount != ZERO:
                    category = account.cash_flow_category or CashFlowCategory.OPERATING
                    adjustments[category].append((account, amount))

            operating_total = net_income + sum((amount for _, amount in adjustments[CashFlowCategory.OPERATING]), ZERO)
            investing_total = sum((amount for _, amount in adjustments[CashFlowCategory.INVESTING]), ZERO)
            financing_total = sum((amount for _, amount in adjustments[CashFlowCategory.FINANCING]), ZERO)
            derived_change = operating_total + investing_total + financing_total

            if derived_change != cash_change:
                raise LedgerIntegrityError(
                    "cash_flow",
                    f"derived cash change {derived_change} != cash account change {cash_change}",
                    tenant_id=ctx.tenant_id,
                    report="cash_flow",
                )
            return CashFlowReportRead(
                start_date=start_date,
                end_date=end_date,
                net_income=self._q(net_income),
                operating=self._cash_section(CashFlowCategory.OPERATING, adjustments, operating_total),
                investing=self._cash_section(CashFlowCategory.INVESTING, adjustments, investing_total),
                financing=self._cash_section(CashFlowCategory.FINANCING, adjustments, financing_total),
                net_change_in_cash=self._q(cash_change),
                opening_cash=self._q(opening_cash),
                closing_cash=self._q(closing_cash),
            )

    def _ledger_account(
        self,
        view: ProjectionSnapshot,
        ctx: AuthContext,
        account: AccountRead,
        movements: list[Movement],
        start_date: date,
        end_date: date,
    ) -> GeneralLedgerAccount:
        opening = view.balance_as_of(account.id, start_date - ONE_DAY)
        running = opening
        total_debit = ZERO
        total_credit = ZERO
        lines: list[GeneralLedgerLine] = []
        for movement in movements:
            amount = movement.line.amount
            is_debit = movement.line.direction == EntryDirection.DEBIT
            if is_debit:
                total_debit += amount
            else:
                total_credit += amount
            running += signed_amount(movement.line.direction, amount, account.normal_side)
            lines.append(
                GeneralLedgerLine(
                    entry_id=movement.entry.id,
                    entry_number=movement.entry.entry_number,
                    display_number=display_number(movement.entry.entry_number) or "",
                    entry_date=movement.entry.entry_date,
                    description=movement.entry.description,
                    memo=movement.line.memo,
                    debit=self._q(amount if is_debit else ZERO),
                    credit=self._q(ZERO if is_debit else amount),
                    running_balance=self._q(running),
                )
            )

        closing = view.balance_as_of(account.id, end_date)
        if running != closing:
            raise LedgerIntegrityError(
                "general_ledger",
                f"running balance {running} != closing balance {closing}",
                tenant_id=ctx.tenant_id,
                account_id=str(account.id),
                report="general_ledger",
            )
        return GeneralLedgerAccount(
            account_id=account.id,
            account_code=account.code,
            account_name=account.name,
            account_type=account.type,
            normal_side=account.normal_side,
            opening_balance=self._q(opening),
            total_debit=self._q(total_debit),
            total_credit=self._q(total_credit),
            closing_balance=self._q(closing),
            lines=lines,
        )

    def _delta_section(
        self,
        session: Session,
        ctx: AuthContext,
        view: ProjectionSnapshot,
        title: str,
        account_type: AccountType,
        start_date: date,
        end_date: date,
    ) -> tuple[StatementSection, Decimal]:
        closing_roots = self.accounts.get_account_tree(session, ctx, as_of=end_date, account_type=account_type, view=view)
        opening_roots = self.accounts.get_account_tree(
            session, ctx, as_of=start_date - ONE_DAY, account_type=account_type, view=view
        )
        opening = {node.id: node for node in flatten_tree(opening_roots)}
        rows = []
        for node in flatten_tree(closing_roots):
            before = opening.get(node.id)
            own = node.balance - (before.balance if before is not None else ZERO)
            total = node.aggregated_balance - (before.aggregated_balance if before is not None else ZERO)
            rows.append(
                StatementRow(
                    account_id=node.id,
                    account_code=node.code,
                    account_name=node.name,
                    depth=node.depth,
                    balance=self._q(own),
                    total=self._q(total),
                )
            )
        section_total = self._roots_total(closing_roots) - self._roots_total(opening_roots)
        return StatementSection(title=title, rows=rows, total=self._q(section_total)), section_total

    def _section(self, title: str, roots: list[AccountTreeNode]) -> tuple[StatementSection, Decimal]:
        rows = [
            StatementRow(
                account_id=node.id,
                account_code=node.code,
                account_name=node.name,
                depth=node.depth,
                balance=self._q(node.balance),
                total=self._q(node.aggregated_balance),
            )
            for node in flatten_tree(roots)
        ]
        total = self._roots_total(roots)
        return StatementSection(title=title, rows=rows, total=self._q(total)), total

    def _cash_section(
        self,
        category: CashFlowCategory,
        adjustments: dict[CashFlowCategory, list[tuple[AccountRead, Decimal]]],
        total: Decimal,
    ) -> CashFlowSection:
        return CashFlowSection(
            category=category,
            lines=[
                CashFlowLine(
                    account_id=account.id,
                    account_code=account.code,
                    account_name=account.name,
                    amount=self._q(amount),
                )
                for account, amount in adjustments[category]
            ],
            total=self._q(total),
        )

    def _view(self, session: Session, ctx: AuthContext) -> ProjectionSnapshot:
        return projector_registry.get(session, ctx.tenant_id).snapshot()

    @contextmanager
    def _report(self, name: str, ctx: AuthContext) -> Iterator[None]:
        started = perf_counter()
        with tracer.start_as_current_span(f"ledger.report.{name}") as span:
            span.set_attribute("ledger.tenant_id", ctx.tenant_id)
            try:
                yield
            finally:
                duration = perf_counter() - started
                observe_report_duration(name, duration)
                logger.info(
                    "ledger.report.generated",
                    extra={"tenant_id": ctx.tenant_id, "report": name, "duration_ms": round(duration * 1000, 2)},
                )

    @staticmethod
    def _check_range(start_date: date, end_date: date) -> None:
        if end_date < start_date:
            raise InvalidPeriodRange(
                "report end date precedes its start date",
                start_date=start_date.isoformat(),
                end_date=end_date.isoformat(),
            )

    @staticmethod
    def _columns(side: EntryDirection, balance: Decimal) -> tuple[Decimal, Decimal]:
        """Place a balance in its debit or credit column; a negative balance flips sides."""
        column = side if balance >= ZERO else side.opposite
        amount = abs(balance)
        if column == EntryDirection.DEBIT:
            return amount, ZERO
        return ZERO, amount

    @staticmethod
    def _roots_total(roots: list[AccountTreeNode]) -> Decimal:
        return sum((node.aggregated_balance for node in roots), ZERO)

    @staticmethod
    def _q(value: Decimal) -> Decimal:
        places = get_settings().ledger_report_decimal_places
        return Decimal(value).quantize(Decimal(10) ** -places)


report_generator = ReportGenerator()
