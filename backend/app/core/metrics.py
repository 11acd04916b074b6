# Centralized Prometheus metrics. Middleware below records timing
# and counts for every request; the engine modules bump the domain
# counters so dashboards can follow clicks, commissions and assignments.

from time import monotonic

from fastapi import Request
from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware

# Generic API latency + request counters, labelled by route template
# so series stay bounded.
REQUEST_DURATION_MS = Histogram(
    "request_duration_ms",
    "API request duration in milliseconds",
    ["method", "route"],
    buckets=[5, 10, 25, 50, 100, 250, 500, 1000, 2000, 5000, 10000],
)
REQUESTS_TOTAL = Counter(
    "requests_total",
    "Total API requests",
    ["method", "route", "status_code"],
)

# Tracking outcomes: recorded vs the various skip reasons.
AFFILIATE_CLICKS_TOTAL = Counter(
    "affiliate_clicks_total",
    "Affiliate click tracking attempts by source and outcome",
    ["source", "outcome"],
)
AFFILIATE_CONVERSIONS_TOTAL = Counter(
    "affiliate_conversions_total",
    "Affiliate conversion tracking attempts by type and outcome",
    ["conversion_type", "outcome"],
)

# Every commission status change, keyed by trigger (scheduled, forced, paid, forfeit).
COMMISSION_TRANSITIONS_TOTAL = Counter(
    "commission_transitions_total",
    "Commission status transitions",
    ["from_status", "to_status", "trigger"],
)

CLOSER_ASSIGNMENTS_TOTAL = Counter(
    "closer_assignments_total",
    "Appointments assigned to closers",
    ["mode"],
)

JOB_RUN_TOTAL = Counter(
    "job_run_total",
    "Background job runs",
    ["job_name", "status"],
)


def _label(value: object | None, default: str = "unknown") -> str:
    if value is None:
        return default
    if isinstance(value, str) and not value.strip():
        return default
    return str(value)


def record_click_outcome(*, source: str | None, outcome: str) -> None:
    AFFILIATE_CLICKS_TOTAL.labels(source=_label(source), outcome=_label(outcome)).inc()


def record_conversion_outcome(*, conversion_type: str | None, outcome: str) -> None:
    AFFILIATE_CONVERSIONS_TOTAL.labels(
        conversion_type=_label(conversion_type),
        outcome=_label(outcome),
    ).inc()


def record_commission_transition(
    *,
    from_status: str,
    to_status: str,
    trigger: str,
    count: int = 1,
) -> None:
    if count <= 0:
        return
    COMMISSION_TRANSITIONS_TOTAL.labels(
        from_status=_label(from_status),
        to_status=_label(to_status),
        trigger=_label(trigger),
    ).inc(count)


def record_closer_assignments(*, mode: str, count: int) -> None:
    if count <= 0:
        return
    CLOSER_ASSIGNMENTS_TOTAL.labels(mode=_label(mode)).inc(count)


def record_job_run(*, job_name: str, success: bool) -> None:
    JOB_RUN_TOTAL.labels(
        job_name=_label(job_name),
        status="success" if success else "failure",
    ).inc()


def _resolve_route(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = monotonic()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            route = _resolve_route(request)
            elapsed_ms = (monotonic() - start) * 1000.0
            REQUEST_DURATION_MS.labels(request.method, route).observe(elapsed_ms)
            REQUESTS_TOTAL.labels(request.method, route, str(status_code)).inc()
