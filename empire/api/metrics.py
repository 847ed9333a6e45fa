"""
Prometheus metric definitions.

All metrics prefixed with empire_ to avoid naming collisions.
Exposed at /metrics on every pipeline, fallback included.
"""

from prometheus_client import Counter, Gauge, Histogram

# --- Startup ---
STARTUP_OUTCOMES = Counter(
    "empire_startup_total",
    "Completed bootstrap attempts by final phase",
    ["phase"],
)

BOOTSTRAP_DURATION = Histogram(
    "empire_bootstrap_duration_seconds",
    "Time from cold start to a terminal server phase",
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

CAPABILITY_FAILURES = Counter(
    "empire_capability_failures_total",
    "Optional subsystems that failed to install",
    ["capability"],
)

# --- Dependencies ---
DEPENDENCY_UP = Gauge(
    "empire_dependency_up",
    "1 if the last liveness check succeeded, else 0",
    ["dependency"],
)

# --- Requests ---
API_REQUESTS = Counter(
    "empire_api_requests_total",
    "Traced API requests",
    ["method", "status"],
)

ADAPTER_ERRORS = Counter(
    "empire_adapter_errors_total",
    "Failures converted into responses at the adapter boundary",
    ["kind"],
)
