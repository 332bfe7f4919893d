from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "path", "status"],
)

WEBHOOK_OUTCOMES = Counter(
    "mercadopago_webhook_outcomes_total",
    "Webhook notifications by reconciliation outcome",
    ["outcome"],
)
PROVIDER_FETCH_LATENCY = Histogram(
    "mercadopago_payment_fetch_seconds",
    "Latency of payment lookups against Mercado Pago",
    ["result"],
)
SUBSCRIPTION_TRANSITIONS = Counter(
    "subscription_transitions_total",
    "Subscription state-transition decisions",
    ["outcome", "status"],
)

JOB_DURATION = Histogram(
    "job_duration_seconds",
    "Background job duration",
    ["task", "status"],
)


def observe_webhook(outcome: str) -> None:
    WEBHOOK_OUTCOMES.labels(outcome=outcome).inc()


def observe_fetch(result: str, duration: float) -> None:
    PROVIDER_FETCH_LATENCY.labels(result=result).observe(duration)


def observe_transition(outcome: str, status: str) -> None:
    SUBSCRIPTION_TRANSITIONS.labels(outcome=outcome, status=status).inc()


def observe_job(task_name: str, status: str, duration: float) -> None:
    JOB_DURATION.labels(task=task_name, status=status).observe(duration)
