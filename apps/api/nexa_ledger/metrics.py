from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

ledger_entries_posted_count = Counter(
    "ledger_entries_posted_count",
    "Total posted ledger entries",
)

ledger_lines_posted_count = Counter(
    "ledger_lines_posted_count",
    "Total posted ledger lines",
)

ledger_entries_voided_count = Counter(
    "ledger_entries_voided_count",
    "Total voided ledger entries",
)

ledger_post_failures_count = Counter(
    "ledger_post_failures_count",
    "Total ledger post/void failures by reason",
    ["reason"],
)

ledger_period_transitions_count = Counter(
    "ledger_period_transitions_count",
    "Accounting period lifecycle transitions",
    ["action"],
)

ledger_integrity_failures_total = Counter(
    "ledger_integrity_failures_total",
    "Internal consistency failures detected by the ledger",
    ["check"],
)

ledger_report_duration_seconds = Histogram(
    "ledger_report_duration_seconds",
    "Financial report generation time in seconds",
    ["report"],
)

ledger_projector_replayed_entries_count = Counter(
    "ledger_projector_replayed_entries_count",
    "Posted entries applied to the balance projection during catch-up",
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None) or getattr(route, "path", None)
        if isinstance(path_format, str) and path_format:
            return _PATH_PARAM_RE.sub("{id}", path_format)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_ledger_entries_posted(count: int = 1) -> None:
    if count > 0:
        ledger_entries_posted_count.inc(count)


def observe_ledger_lines_posted(count: int = 1) -> None:
    if count > 0:
        ledger_lines_posted_count.inc(count)


def observe_ledger_entry_voided() -> None:
    ledger_entries_voided_count.inc()


def observe_ledger_post_failure(reason: str) -> None:
    ledger_post_failures_count.labels(reason=reason).inc()


def observe_period_transition(action: str) -> None:
    ledger_period_transitions_count.labels(action=action).inc()


def observe_integrity_failure(check: str) -> None:
    ledger_integrity_failures_total.labels(check=check).inc()


def observe_report_duration(report: str, duration: float) -> None:
    ledger_report_duration_seconds.labels(report=report).observe(duration)


def observe_projector_replayed(count: int) -> None:
    if count > 0:
        ledger_projector_replayed_entries_count.inc(count)


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
