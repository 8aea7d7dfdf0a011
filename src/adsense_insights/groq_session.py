from __future__ import annotations

from typing import Any, Protocol

import httpx
import structlog

from .contracts import CompletionRequest
from .errors import BackendCallError, ConfigurationError

log = structlog.get_logger()

GROQ_API_BASE = "https://api.groq.com/openai/v1"

# Status reported for a per-attempt timeout; a 5xx-equivalent so the requester may fall over.
TIMEOUT_STATUS = 504


class CompletionBackend(Protocol):
    async def chat(self, model: str, request: CompletionRequest) -> str: ...


def _retry_after(resp: httpx.Response) -> int | None:
    value = resp.headers.get("retry-after")
    return int(value) if value and value.isdigit() else None


def _error_detail(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict) and isinstance(err.get("message"), str):
            return err["message"]
        if isinstance(err, str):
            return err
    return resp.text[:500] or f"HTTP {resp.status_code}"


class GroqChatSession:
    """
    One chat-completion call per invocation against an OpenAI-compatible endpoint.

    No retries and no backoff here: fallback across models is the requester's job,
    and each model is tried at most once per logical call.
    """

    def __init__(
        self,
        api_key: str | None,
        *,
        client: httpx.AsyncClient | None = None,
        base_url: str = GROQ_API_BASE,
        timeout_seconds: float = 30,
    ):
        self.api_key = api_key
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds

    async def close(self) -> None:
        await self._client.aclose()

    def build_payload(self, model: str, request: CompletionRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model,
            "messages": [m.as_dict() for m in request.messages],
            "temperature": request.temperature,
        }
        if request.json_output:
            payload["response_format"] = {"type": "json_object"}
        return payload

    async def chat(self, model: str, request: CompletionRequest) -> str:
        if not self.api_key:
            raise ConfigurationError("Missing GROQ_API_KEY for chat completion call.")

        url = f"{self._base_url}/chat/completions"
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            resp = await self._client.post(url, headers=headers, json=self.build_payload(model, request))
        except httpx.TimeoutException as e:
            raise BackendCallError(TIMEOUT_STATUS, f"Upstream request timed out: {e}", backend=model) from e
        except httpx.HTTPError as e:
            raise BackendCallError(None, f"Upstream request failed: {e}", backend=model) from e

        if resp.status_code >= 400:
            raise BackendCallError(
                resp.status_code,
                _error_detail(resp),
                backend=model,
                retry_after_seconds=_retry_after(resp),
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise BackendCallError(None, "Upstream returned a non-JSON body.", backend=model) from e

        choices = data.get("choices") if isinstance(data, dict) else None
        if not isinstance(choices, list) or not choices:
            raise BackendCallError(None, "Missing choices in upstream response.", backend=model)

        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        if not isinstance(message, dict):
            raise BackendCallError(None, "Missing message in upstream response.", backend=model)

        content = message.get("content")
        if content is not None and not isinstance(content, str):
            raise BackendCallError(None, "Message content is not text.", backend=model)

        log.debug("groq_chat_ok", model=model, prompt_chars=sum(len(m.content) for m in request.messages))
        return content or "{}"
