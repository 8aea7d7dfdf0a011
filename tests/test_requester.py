import asyncio

import pytest
import structlog
from structlog.testing import CapturingLogger, LogCapture

from adsense_insights import CompletionRequest, ResilientCompletionRequester
from adsense_insights import requester as requester_module
from adsense_insights.contracts import ChatMessage, is_retryable_status
from adsense_insights.errors import BackendCallError, ConfigurationError, ExhaustedError, UpstreamError
from adsense_insights.requester import classify


class ScriptedBackend:
    """Replays one scripted result per model id and records every call."""

    def __init__(self, script):
        self.script = script
        self.calls = []

    async def chat(self, model, request):
        self.calls.append((model, request))
        result = self.script[model]
        if isinstance(result, Exception):
            raise result
        return result


def _request():
    return CompletionRequest(
        messages=(ChatMessage(role="user", content="analyze this"),),
        json_output=True,
        temperature=0.5,
    )


@pytest.mark.asyncio
async def test_first_backend_success_issues_one_call():
    backend = ScriptedBackend({"a": '{"insights": []}', "b": "unused"})
    out = await ResilientCompletionRequester(backend).complete(_request(), ["a", "b"])
    assert out.content == '{"insights": []}'
    assert out.backend == "a"
    assert out.attempts == 1
    assert [m for m, _ in backend.calls] == ["a"]


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [429, 500, 503, 599])
async def test_retryable_failures_fall_over_with_identical_request(status):
    backend = ScriptedBackend(
        {
            "a": BackendCallError(status, "busy"),
            "b": BackendCallError(429, "rate limited"),
            "c": "ok from c",
        }
    )
    request = _request()
    out = await ResilientCompletionRequester(backend).complete(request, ["a", "b", "c"])
    assert out.content == "ok from c"
    assert out.backend == "c"
    assert out.attempts == 3
    assert [m for m, _ in backend.calls] == ["a", "b", "c"]
    assert all(r is request for _, r in backend.calls)


@pytest.mark.asyncio
async def test_all_retryable_failures_raise_exhausted_with_last_detail():
    backend = ScriptedBackend(
        {
            "a": BackendCallError(500, "first down"),
            "b": BackendCallError(502, "second down"),
            "c": BackendCallError(503, "third down", retry_after_seconds=9),
        }
    )
    with pytest.raises(ExhaustedError) as exc:
        await ResilientCompletionRequester(backend).complete(_request(), ["a", "b", "c"])
    assert len(backend.calls) == 3
    assert exc.value.detail == "third down"
    assert exc.value.backend == "c"
    assert exc.value.status_code == 503
    assert exc.value.attempts == 3
    assert exc.value.retry_after_seconds == 9


@pytest.mark.asyncio
async def test_single_candidate_retryable_failure_is_exhausted():
    backend = ScriptedBackend({"only": BackendCallError(429, "slow down")})
    with pytest.raises(ExhaustedError):
        await ResilientCompletionRequester(backend).complete(_request(), ["only"])
    assert len(backend.calls) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [400, 401, 404, 422])
async def test_non_retryable_status_stops_immediately(status):
    backend = ScriptedBackend({"a": BackendCallError(status, "bad request"), "b": "never"})
    with pytest.raises(UpstreamError) as exc:
        await ResilientCompletionRequester(backend).complete(_request(), ["a", "b"])
    assert [m for m, _ in backend.calls] == ["a"]
    assert exc.value.status_code == status
    assert exc.value.detail == "bad request"


@pytest.mark.asyncio
async def test_transport_error_without_status_is_not_retried():
    backend = ScriptedBackend({"a": BackendCallError(None, "connection refused"), "b": "never"})
    with pytest.raises(UpstreamError) as exc:
        await ResilientCompletionRequester(backend).complete(_request(), ["a", "b"])
    assert len(backend.calls) == 1
    assert exc.value.status_code is None


@pytest.mark.asyncio
async def test_fatal_after_fallback_stops_without_trying_rest():
    backend = ScriptedBackend(
        {"a": BackendCallError(503, "down"), "b": BackendCallError(400, "malformed"), "c": "never"}
    )
    with pytest.raises(UpstreamError):
        await ResilientCompletionRequester(backend).complete(_request(), ["a", "b", "c"])
    assert [m for m, _ in backend.calls] == ["a", "b"]


@pytest.mark.asyncio
async def test_empty_candidates_raise_configuration_error_without_calls():
    backend = ScriptedBackend({})
    with pytest.raises(ConfigurationError):
        await ResilientCompletionRequester(backend).complete(_request(), [])
    assert backend.calls == []


@pytest.mark.asyncio
async def test_cancelled_call_starts_no_further_attempts():
    started = asyncio.Event()
    calls = []

    class HangingBackend:
        async def chat(self, model, request):
            calls.append(model)
            started.set()
            await asyncio.sleep(10)
            raise BackendCallError(503, "never reached")

    task = asyncio.create_task(ResilientCompletionRequester(HangingBackend()).complete(_request(), ["a", "b"]))
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert calls == ["a"]


@pytest.mark.asyncio
async def test_concurrent_calls_are_independent():
    backend = ScriptedBackend({"a": BackendCallError(500, "down"), "b": "ok"})
    requester = ResilientCompletionRequester(backend)
    results = await asyncio.gather(*(requester.complete(_request(), ["a", "b"]) for _ in range(5)))
    assert [r.attempts for r in results] == [2] * 5
    assert len(backend.calls) == 10


def test_retryable_status_classification():
    assert is_retryable_status(429)
    assert is_retryable_status(500)
    assert is_retryable_status(599)
    assert not is_retryable_status(600)
    assert not is_retryable_status(400)
    assert not is_retryable_status(None)
    assert classify(BackendCallError(504, "timeout")).kind == "retryable"
    assert classify(BackendCallError(403, "nope")).kind == "fatal"


@pytest.fixture
def captured(monkeypatch):
    cap = LogCapture()
    logger = structlog.wrap_logger(CapturingLogger(), processors=[cap])
    monkeypatch.setattr(requester_module, "log", logger)
    return cap


def _fallbacks(cap):
    return [(e["failed"], e["next"]) for e in cap.entries if e["event"] == "completion_backend_fallback"]


@pytest.mark.asyncio
async def test_each_fallback_is_logged_with_failed_and_next_backend(captured):
    backend = ScriptedBackend({"a": BackendCallError(429, "rl"), "b": BackendCallError(503, "busy"), "c": "ok"})
    await ResilientCompletionRequester(backend).complete(_request(), ["a", "b", "c"])
    assert _fallbacks(captured) == [("a", "b"), ("b", "c")]


@pytest.mark.asyncio
async def test_first_try_success_logs_no_fallback(captured):
    backend = ScriptedBackend({"a": "ok", "b": "unused"})
    await ResilientCompletionRequester(backend).complete(_request(), ["a", "b"])
    assert _fallbacks(captured) == []
