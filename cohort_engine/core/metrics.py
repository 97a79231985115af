"""Prometheus metric inventory.

Every metric the service exports is declared here; the modules that own
the behavior import the one they need and increment it at the point of
action.  Counters only go up, so dashboards read them through rate().

HTTP metrics are labelled by route *template* (``/v1/topics/{topic_id}``)
rather than the raw path.  Labelling by raw path would create one time
series per topic id and grow the registry without bound.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by the MetricsMiddleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Engine metrics
# ---------------------------------------------------------------------------

COMPLETIONS_RECORDED = Counter(
    "engine_completions_total",
    "First-time completion facts written",
    ["kind"],  # topic|lesson_block|quiz_attempt|assignment|live_attendance
)

COINS_AWARDED = Counter(
    "engine_coins_awarded_total",
    "Coins credited to learners",
    ["source"],
)

DUPLICATE_REWARDS = Counter(
    "engine_duplicate_rewards_total",
    "Award calls that hit an existing (user, source, source_id) key",
    ["source"],
)

WEEKS_UNLOCKED = Counter(
    "engine_weeks_unlocked_total",
    "Locked to unlocked transitions",
    ["trigger"],  # enrollment|evaluation|cascade|admin
)

QUIZ_ATTEMPTS_GRADED = Counter(
    "engine_quiz_attempts_graded_total",
    "Quiz attempts graded by outcome",
    ["outcome"],  # passed|failed
)

CACHE_OPERATIONS = Counter(
    "cache_operations_total",
    "Cache operations by kind",
    ["operation"],  # "hit", "miss" or "invalidate"
)
