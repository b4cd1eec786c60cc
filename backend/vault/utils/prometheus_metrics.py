"""
Prometheus metrics for the generation API.

Two families:
- route metrics: requests per endpoint and outcome, latency, in-flight
- fallback metrics: one sample per provider attempt, exhausted chains,
  estimated token usage per generation kind
"""

import logging
from functools import wraps
from time import perf_counter
from typing import Any, Callable

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)

ATTEMPT_BUCKETS = (0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 20.0, 60.0, 120.0)


# --- routes ------------------------------------------------------------------

route_requests_total = Counter(
    "vault_requests_total",
    "Generation API requests",
    ["endpoint", "outcome"],  # outcome: ok, client_error, server_error
)

route_latency_seconds = Histogram(
    "vault_request_latency_seconds",
    "Generation API request duration in seconds",
    ["endpoint"],
    buckets=ATTEMPT_BUCKETS + (180.0,),
)

route_in_flight = Gauge(
    "vault_requests_in_progress",
    "Generation API requests currently being served",
    ["endpoint"],
)

errors_total = Counter(
    "vault_errors_total",
    "Unhandled errors by exception type",
    ["error_type", "component"],
)


# --- fallback chain ----------------------------------------------------------

llm_attempts_total = Counter(
    "vault_llm_attempts_total",
    "Provider attempts by outcome",
    ["provider", "model", "status"],  # status: success, transport_error, response_error
)

llm_attempt_latency_seconds = Histogram(
    "vault_llm_attempt_latency_seconds",
    "Duration of one provider attempt in seconds",
    ["provider"],
    buckets=ATTEMPT_BUCKETS,
)

generation_exhausted_total = Counter(
    "vault_generation_exhausted_total",
    "Generations where every provider/credential/model combination failed",
    ["override_used"],
)

llm_tokens_total = Counter(
    "vault_llm_tokens_total",
    "Estimated tokens per generation kind",
    ["kind", "token_type"],  # token_type: input, output
)


def _outcome(status_code: int) -> str:
    if status_code >= 500:
        return "server_error"
    if status_code >= 400:
        return "client_error"
    return "ok"


def track_request_metrics(endpoint: str):
    """
    Decorator for async route handlers. Handlers that return a Response
    with an error status count by that status; anything else counts as ok.

        @router.post("/generate-projects")
        @track_request_metrics("generate_projects")
        async def generate_projects(req): ...
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            route_in_flight.labels(endpoint=endpoint).inc()
            started = perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                route_requests_total.labels(endpoint=endpoint, outcome="server_error").inc()
                record_error(type(e).__name__, endpoint)
                raise
            else:
                outcome = _outcome(getattr(result, "status_code", 200))
                route_requests_total.labels(endpoint=endpoint, outcome=outcome).inc()
                return result
            finally:
                route_latency_seconds.labels(endpoint=endpoint).observe(perf_counter() - started)
                route_in_flight.labels(endpoint=endpoint).dec()

        return wrapper
    return decorator


def observe_attempt(provider: str, model: str, status: str, duration: float):
    llm_attempts_total.labels(provider=provider, model=model, status=status).inc()
    llm_attempt_latency_seconds.labels(provider=provider).observe(duration)


def record_exhausted(override_used: bool):
    generation_exhausted_total.labels(override_used=str(override_used).lower()).inc()


def record_llm_usage(kind: str, input_tokens: int, output_tokens: int):
    llm_tokens_total.labels(kind=kind, token_type="input").inc(input_tokens)
    llm_tokens_total.labels(kind=kind, token_type="output").inc(output_tokens)


def record_error(error_type: str, component: str):
    errors_total.labels(error_type=error_type, component=component).inc()


def get_metrics() -> tuple[bytes, str]:
    """Returns (exposition body, content type) for the /metrics route."""
    return generate_latest(), CONTENT_TYPE_LATEST
