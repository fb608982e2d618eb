"""Prometheus metrics for model calls, conversions and actions."""

from prometheus_client import Counter, Histogram

# Model-call metrics
llm_call_latency_ms = Histogram(
    "llm_call_latency_ms",
    "Model call latency in milliseconds",
    ["task", "outcome"],
    buckets=[100, 250, 500, 1000, 2000, 5000, 10000, 20000, 45000, 60000],
)

llm_errors_total = Counter(
    "llm_errors_total",
    "Total model call errors",
    ["task", "reason"],
)

# Pipeline metrics
conversion_weeks_total = Counter(
    "conversion_weeks_total",
    "Weekly chunks processed by chunked conversion",
    ["outcome"],
)

actions_applied_total = Counter(
    "actions_applied_total",
    "Conversational actions applied to a session document",
    ["action", "outcome"],
)


class PrometheusLLMMetrics:
    """Prometheus-based model-call metrics implementation."""

    def record_latency(self, task: str, outcome: str, latency_ms: float) -> None:
        """Record model-call latency."""
        llm_call_latency_ms.labels(task=task, outcome=outcome).observe(latency_ms)

    def inc_error(self, task: str, reason: str) -> None:
        """Increment error counter."""
        llm_errors_total.labels(task=task, reason=reason).inc()


def record_week(outcome: str) -> None:
    conversion_weeks_total.labels(outcome=outcome).inc()


def record_action(action: str, outcome: str) -> None:
    actions_applied_total.labels(action=action, outcome=outcome).inc()
