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
REQUEST_ERRORS = Counter(
    "http_request_errors_total",
    "Total HTTP 5xx responses",
    ["method", "path", "status"],
)

PAYOUT_SUBMISSIONS = Counter(
    "payout_submissions_total",
    "MassPay submissions by mode and result",
    ["mode", "result"],
)
PAYOUT_CONFIRMATION_EVENTS = Counter(
    "payout_confirmation_events_total",
    "Processor confirmation events by status and outcome",
    ["status", "outcome"],
)

JOB_DURATION = Histogram(
    "job_duration_seconds",
    "Background job duration",
    ["task", "status"],
)


def observe_job(task_name: str, status: str, duration: float) -> None:
    JOB_DURATION.labels(task=task_name, status=status).observe(duration)


def record_submission(mode: str, result: str, count: int = 1) -> None:
    PAYOUT_SUBMISSIONS.labels(mode=mode, result=result).inc(count)


def record_confirmation_event(status: str, outcome: str) -> None:
    PAYOUT_CONFIRMATION_EVENTS.labels(status=status, outcome=outcome).inc()
