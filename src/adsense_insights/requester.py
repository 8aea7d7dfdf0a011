from __future__ import annotations

import time
from collections.abc import Sequence

import structlog

from .contracts import AttemptOutcome, CompletionRequest, CompletionResult, is_retryable_status
from .errors import BackendCallError, ConfigurationError, ExhaustedError, UpstreamError
from .groq_session import CompletionBackend
from .metrics import (
    completion_attempts_total,
    completion_calls_total,
    completion_fallbacks_total,
    completion_latency_seconds,
)

log = structlog.get_logger()


def classify(error: BackendCallError) -> AttemptOutcome:
    # Transport errors carry no status and are treated as fatal, same as a 4xx.
    if is_retryable_status(error.status_code):
        return AttemptOutcome.retryable(error.detail, error.status_code)
    return AttemptOutcome.fatal(error.detail, error.status_code)


class ResilientCompletionRequester:
    """
    Runs one completion request against an ordered list of model candidates.

    Candidates are tried in order, each at most once. A 429 or 5xx moves on to the
    next candidate with the same request; any other failure stops immediately.
    The requester keeps no state between calls, so one instance can serve
    concurrent callers.
    """

    def __init__(self, backend: CompletionBackend):
        self.backend = backend

    async def _attempt(self, model: str, request: CompletionRequest) -> tuple[AttemptOutcome, int | None]:
        try:
            payload = await self.backend.chat(model, request)
        except BackendCallError as e:
            outcome = classify(e)
            completion_attempts_total.labels(backend=model, outcome=outcome.kind).inc()
            return outcome, e.retry_after_seconds
        completion_attempts_total.labels(backend=model, outcome="success").inc()
        return AttemptOutcome.success(payload), None

    async def complete(self, request: CompletionRequest, candidates: Sequence[str]) -> CompletionResult:
        ordered = tuple(candidates)
        if not ordered:
            completion_calls_total.labels(result="configuration_error").inc()
            raise ConfigurationError("At least one candidate model is required.")

        start = time.monotonic()
        index = 0
        while True:
            model = ordered[index]
            outcome, retry_after = await self._attempt(model, request)

            if outcome.kind == "success":
                latency = time.monotonic() - start
                completion_calls_total.labels(result="success").inc()
                completion_latency_seconds.observe(latency)
                if index > 0:
                    log.info("completion_served_after_fallback", backend=model, attempts=index + 1)
                return CompletionResult(
                    content=outcome.payload or "",
                    backend=model,
                    attempts=index + 1,
                    latency_seconds=latency,
                )

            if outcome.kind == "fatal":
                completion_calls_total.labels(result="upstream_error").inc()
                log.warning(
                    "completion_upstream_error",
                    backend=model,
                    status_code=outcome.status_code,
                    detail=outcome.reason,
                )
                raise UpstreamError(
                    outcome.reason or "Upstream rejected the request.",
                    backend=model,
                    status_code=outcome.status_code,
                )

            if index + 1 >= len(ordered):
                completion_calls_total.labels(result="exhausted").inc()
                log.warning(
                    "completion_exhausted",
                    backend=model,
                    status_code=outcome.status_code,
                    attempts=index + 1,
                    detail=outcome.reason,
                )
                raise ExhaustedError(
                    outcome.reason or "All candidate models failed.",
                    backend=model,
                    status_code=outcome.status_code,
                    attempts=index + 1,
                    retry_after_seconds=retry_after,
                )

            next_model = ordered[index + 1]
            completion_fallbacks_total.labels(from_backend=model, to_backend=next_model).inc()
            log.warning(
                "completion_backend_fallback",
                failed=model,
                next=next_model,
                status_code=outcome.status_code,
            )
            index += 1
