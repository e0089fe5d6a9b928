from nexa_ledger.platform.ledger.accounts import AccountRegistry, account_registry
from nexa_ledger.platform.ledger.api import router
from nexa_ledger.platform.ledger.journal import JournalEngine, journal_engine, record_transaction
from nexa_ledger.platform.ledger.models import (
    AccountingPeriod,
    JournalEntry,
    JournalLine,
    LedgerAccount,
    LedgerSequence,
)
from nexa_ledger.platform.ledger.periods import PeriodManager, period_manager
from nexa_ledger.platform.ledger.projector import (
    LedgerProjector,
    PostedEntry,
    PostedLine,
    ProjectorRegistry,
    projector_registry,
)

__all__ = [
    "router",
    "LedgerAccount",
    "AccountingPeriod",
    "JournalEntry",
    "JournalLine",
    "LedgerSequence",
    "AccountRegistry",
    "account_registry",
    "PeriodManager",
    "period_manager",
    "JournalEngine",
    "journal_engine",
    "record_transaction",
    "LedgerProjector",
    "PostedEntry",
    "PostedLine",
    "ProjectorRegistry",
    "projector_registry",
]
