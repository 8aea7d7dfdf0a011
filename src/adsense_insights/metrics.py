from __future__ import annotations

from prometheus_client import Counter, Histogram, start_http_server

server_requests_total = Counter(
    "server_requests_total",
    "Total HTTP requests handled by server",
    labelnames=["path", "status"],
)

server_request_latency_seconds = Histogram(
    "server_request_latency_seconds",
    "HTTP request latency (seconds)",
    buckets=[0.05, 0.1, 0.3, 0.5, 1, 2, 5, 10, 30, 60, 120],
    labelnames=["path"],
)

server_errors_total = Counter(
    "server_errors_total",
    "Total errors returned by server",
    labelnames=["type"],
)

completion_attempts_total = Counter(
    "completion_attempts_total",
    "Backend attempts issued by the completion requester",
    labelnames=["backend", "outcome"],
)

completion_fallbacks_total = Counter(
    "completion_fallbacks_total",
    "Fallbacks from one backend candidate to the next",
    labelnames=["from_backend", "to_backend"],
)

completion_calls_total = Counter(
    "completion_calls_total",
    "Logical completion calls by final result",
    labelnames=["result"],
)

completion_latency_seconds = Histogram(
    "completion_latency_seconds",
    "Logical completion call latency, all attempts included",
    buckets=[0.1, 0.3, 0.5, 1, 2, 5, 10, 30, 60],
)

adsense_requests_total = Counter(
    "adsense_requests_total",
    "Google OAuth / AdSense API calls",
    labelnames=["operation", "status"],
)


def maybe_start_metrics(*, enable: bool, bind: str, port: int) -> None:
    if not enable:
        return
    start_http_server(port, addr=bind)
