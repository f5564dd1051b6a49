from __future__ import annotations

from prometheus_client import Counter, Histogram

SLOT_CALLS_TOTAL = Counter(
    "capability_router_slot_calls_total",
    "Execution slot calls grouped by API category and outcome",
    labelnames=("api", "outcome"),
)

SLOT_CALL_LATENCY_SECONDS = Histogram(
    "capability_router_slot_call_latency_seconds",
    "Latency of execution slot calls",
    labelnames=("api",),
    buckets=(0.1, 0.25, 0.5, 1, 2, 5, 10, 30, 60, 120, 300, float("inf")),
)

ROUTED_REQUESTS_TOTAL = Counter(
    "capability_router_routed_requests_total",
    "Routed requests grouped by capability and final outcome",
    labelnames=("capability", "outcome"),
)

ROUTED_STAGES = Histogram(
    "capability_router_routed_stages",
    "Number of stages recorded per routed request",
    labelnames=("capability",),
    buckets=(1, 2, 3, 4, 5, 7, 9, 13),
)

RETRY_ATTEMPTS_TOTAL = Counter(
    "capability_router_retry_attempts_total",
    "Refinement retry attempts grouped by outcome",
    labelnames=("capability", "outcome"),
)

RETRY_STOPS_TOTAL = Counter(
    "capability_router_retry_stops_total",
    "Reasons the refinement retry loop stopped",
    labelnames=("capability", "reason"),
)

FINAL_PASS_TOTAL = Counter(
    "capability_router_final_pass_total",
    "Final language-model pass outcomes",
    labelnames=("capability", "outcome"),
)

CONTEXT_EVAL_TOTAL = Counter(
    "capability_router_context_eval_total",
    "Context window evaluation outcomes",
    labelnames=("outcome",),
)


def observe_slot_call(*, api: str, outcome: str, latency: float) -> None:
    SLOT_CALLS_TOTAL.labels(api=api, outcome=outcome).inc()
    SLOT_CALL_LATENCY_SECONDS.labels(api=api).observe(latency)


def record_routed_request(*, capability: str, outcome: str, stages: int) -> None:
    ROUTED_REQUESTS_TOTAL.labels(capability=capability, outcome=outcome).inc()
    ROUTED_STAGES.labels(capability=capability).observe(stages)


def record_retry_attempt(*, capability: str, outcome: str) -> None:
    RETRY_ATTEMPTS_TOTAL.labels(capability=capability, outcome=outcome).inc()


def record_retry_stop(*, capability: str, reason: str) -> None:
    RETRY_STOPS_TOTAL.labels(capability=capability, reason=reason).inc()


def record_final_pass(*, capability: str, outcome: str) -> None:
    FINAL_PASS_TOTAL.labels(capability=capability, outcome=outcome).inc()


def record_context_eval(*, outcome: str) -> None:
    CONTEXT_EVAL_TOTAL.labels(outcome=outcome).inc()
