"""HTTP mapping for ledger failures.

Body shape for every ledger error: ``{"detail": <message>, "code": <stable code>}``.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from nexa_ledger.platform.ledger.errors import (
    LedgerConflictError,
    LedgerIntegrityError,
    LedgerNotFoundError,
    LedgerValidationError,
)


logger = logging.getLogger("nexa_ledger.errors")


def status_for(exc: LedgerValidationError) -> int:
    if isinstance(exc, LedgerNotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, LedgerConflictError):
        return status.HTTP_409_CONFLICT
    return status.HTTP_422_UNPROCESSABLE_ENTITY


async def ledger_validation_handler(request: Request, exc: LedgerValidationError) -> JSONResponse:
    logger.info("ledger.request_rejected", extra={"path": request.url.path, "code": exc.code, "error": exc.message})
    return JSONResponse(status_code=status_for(exc), content={"detail": exc.message, "code": exc.code})


async def ledger_integrity_handler(request: Request, exc: LedgerIntegrityError) -> JSONResponse:
    # already logged at critical level where it was raised
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "ledger integrity check failed", "code": exc.code, "check": exc.check},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LedgerValidationError, ledger_validation_handler)  # type: ignore[arg-type]
    app.add_exception_handler(LedgerIntegrityError, ledger_integrity_handler)  # type: ignore[arg-type]
