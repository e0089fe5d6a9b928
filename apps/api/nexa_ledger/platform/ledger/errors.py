"""Ledger failure taxonomy.

``LedgerValidationError`` subclasses are expected, caller-recoverable outcomes
and are surfaced verbatim to whoever attempted the operation. They are never
retried inside the ledger.

``LedgerIntegrityError`` means the engine or the projection computed something
the posted log contradicts. It does not derive from ``LedgerValidationError``,
so handlers for validation failures never catch it.
"""

from __future__ import annotations

import logging
from typing import Any

from nexa_ledger.metrics import observe_integrity_failure


logger = logging.getLogger("nexa_ledger.integrity")


class LedgerValidationError(Exception):
    code = "LEDGER_VALIDATION"

    def __init__(self, message: str, **details: Any) -> None:
        self.message = message
        self.details = details
        super().__init__(message)


class LedgerNotFoundError(LedgerValidationError):
    code = "NOT_FOUND"


class LedgerConflictError(LedgerValidationError):
    code = "CONFLICT"


class AccountNotFound(LedgerNotFoundError):
    code = "ACCOUNT_NOT_FOUND"


class PeriodNotFound(LedgerNotFoundError):
    code = "PERIOD_NOT_FOUND"


class EntryNotFound(LedgerNotFoundError):
    code = "ENTRY_NOT_FOUND"


class DuplicateCode(LedgerConflictError):
    code = "DUPLICATE_CODE"


class ChartAlreadyInitialized(LedgerConflictError):
    code = "CHART_ALREADY_INITIALIZED"


class InvalidParent(LedgerValidationError):
    code = "INVALID_PARENT"


class InvalidAccount(LedgerValidationError):
    code = "INVALID_ACCOUNT"


class AccountInUse(LedgerConflictError):
    code = "ACCOUNT_IN_USE"


class InvalidPeriodRange(LedgerValidationError):
    code = "INVALID_PERIOD_RANGE"


class PeriodOverlap(LedgerConflictError):
    code = "PERIOD_OVERLAP"


class PeriodGap(LedgerConflictError):
    code = "PERIOD_GAP"


class PeriodNotOpen(LedgerConflictError):
    code = "PERIOD_NOT_OPEN"


class PeriodNotClosed(LedgerConflictError):
    code = "PERIOD_NOT_CLOSED"


class EarlierPeriodOpen(LedgerConflictError):
    code = "EARLIER_PERIOD_OPEN"


class LaterPeriodClosed(LedgerConflictError):
    code = "LATER_PERIOD_CLOSED"


class UnbalancedEntry(LedgerValidationError):
    code = "UNBALANCED_ENTRY"


class EntryNotDraft(LedgerConflictError):
    code = "ENTRY_NOT_DRAFT"


class EntryNotPosted(LedgerConflictError):
    code = "ENTRY_NOT_POSTED"


class PeriodClosed(LedgerConflictError):
    code = "PERIOD_CLOSED"


class LedgerIntegrityError(RuntimeError):
    """Internal-consistency failure. Raising it always emits an alarm-level log."""

    code = "LEDGER_INTEGRITY"

    def __init__(self, check: str, message: str, **details: Any) -> None:
        self.check = check
        self.message = message
        self.details = details
        super().__init__(f"{check}: {message}")
        observe_integrity_failure(check)
        logger.critical(
            "ledger.integrity_failure",
            extra={"check": check, "alarm": True, "error": message, **_loggable(details)},
        )


def _loggable(details: dict[str, Any]) -> dict[str, Any]:
    allowed = {"tenant_id", "entry_id", "entry_number", "account_id", "report"}
    return {key: value for key, value in details.items() if key in allowed}
