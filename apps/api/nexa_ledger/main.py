from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from nexa_ledger.api.routes import router as api_router
from nexa_ledger.core.config import get_settings
from nexa_ledger.core.events import (
    LEDGER_ENTRY_POSTED,
    LEDGER_ENTRY_VOIDED,
    LEDGER_PERIOD_CLOSED,
    LEDGER_PERIOD_REOPENED,
    InternalEvent,
    event_bus,
)
from nexa_ledger.core.exceptions import register_exception_handlers
from nexa_ledger.logging import configure_logging
from nexa_ledger.middleware.correlation_id import CorrelationIdMiddleware
from nexa_ledger.middleware.request_logging import RequestLoggingMiddleware
from nexa_ledger.otel import get_fastapi_server_request_hook, setup_otel
from nexa_ledger.platform.ledger.projector import on_entry_posted


configure_logging()
logger = logging.getLogger("nexa_ledger.lifecycle")
_subscriptions_registered = False

_audited_event_types = [
    LEDGER_ENTRY_VOIDED,
    LEDGER_PERIOD_CLOSED,
    LEDGER_PERIOD_REOPENED,
]


def _on_ledger_event(event: InternalEvent) -> None:
    logger.info("ledger_event", extra={"event_name": event.name, "tenant_id": event.payload.get("tenant_id")})


def register_subscriptions() -> None:
    global _subscriptions_registered
    if _subscriptions_registered:
        return
    event_bus.subscribe(LEDGER_ENTRY_POSTED, on_entry_posted)
    for event_name in _audited_event_types:
        event_bus.subscribe(event_name, _on_ledger_event)
    _subscriptions_registered = True


@asynccontextmanager
async def lifespan(app: FastAPI):
    register_subscriptions()
    logger.info("system.started", extra={"event_name": "system.started"})
    yield


app = FastAPI(title="Nexa Ledger API", version="0.1.0", lifespan=lifespan)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
register_exception_handlers(app)
app.include_router(api_router)

settings = get_settings()
if settings.otel_enabled:
    setup_otel("nexa-ledger", True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
