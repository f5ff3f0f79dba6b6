# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Prometheus metric objects for the mustering service.
Imported by services and middleware. Never instantiated in controllers.
"""

from prometheus_client import Counter, Gauge, Histogram

# ── HTTP Metrics (used by middleware) ──
REQUEST_COUNT = Counter(
    "muster_requests_total",
    "Total HTTP requests to the mustering service",
    ["method", "endpoint", "status"],
)
REQUEST_LATENCY = Histogram(
    "muster_request_duration_seconds",
    "Request latency in seconds",
    ["method", "endpoint"],
)
HTTP_ERRORS = Counter(
    "muster_http_errors_total",
    "Total HTTP error responses",
    ["method", "endpoint", "status"],
)

# ── Business Metrics (updated by service layer only) ──
SESSIONS_ACTIVATED = Counter(
    "muster_sessions_activated_total",
    "Mustering sessions activated",
    ["type"],
)
SESSIONS_CLOSED = Counter(
    "muster_sessions_closed_total",
    "Mustering sessions closed",
    ["outcome"],
)
SESSION_ACTIVE = Gauge(
    "muster_session_active",
    "1 while a mustering session is active, else 0",
)
PEOPLE_MARKED = Counter(
    "muster_people_marked_total",
    "Status changes recorded during sessions",
    ["status"],
)
PEOPLE_BY_STATUS = Gauge(
    "muster_people",
    "Roster members by safety status",
    ["status"],
)
ACCOUNTED_FOR = Gauge(
    "muster_accounted_for_percentage",
    "Share of the roster confirmed safe",
)
STORAGE_FAILURES = Counter(
    "muster_storage_failures_total",
    "Persistence gateway failures absorbed by the in-memory fallback",
    ["operation"],
)
NOTIFICATIONS_SENT = Counter(
    "muster_notifications_sent_total",
    "Total notifications sent",
    ["channel"],
)
