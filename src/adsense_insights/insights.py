from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass, field

import structlog
from pydantic import BaseModel, ValidationError

from .config import DEFAULT_CANDIDATE_MODELS
from .contracts import ChatMessage, CompletionRequest
from .errors import ConfigurationError, ExhaustedError, UpstreamError
from .report import ReportRow, top_rows
from .requester import ResilientCompletionRequester

log = structlog.get_logger()

UNAVAILABLE_MESSAGE = "AI analysis is temporarily unavailable. Try again later."


class InsightsPayload(BaseModel):
    insights: list[str]


@dataclass(frozen=True)
class InsightsOutcome:
    insights: list[str] = field(default_factory=list)
    available: bool = True
    reason: str | None = None
    backend: str | None = None


def build_prompt(rows: Sequence[ReportRow]) -> str:
    data = json.dumps([r.to_client() for r in rows])
    return (
        "You are a Monetization Expert. Analyze this Google AdSense data for the last 30 days.\n\n"
        f"DATA INPUT (Top Sites):\n{data}\n\n"
        "OBJECTIVES:\n"
        "1. Revenue Leakage: Identify sites with high traffic (Page Views) but low RPM.\n"
        "2. CTR Anomalies: Flag sites with suspiciously high CTR (>10%) or very low CTR (<0.5%).\n"
        "3. Actionable Advice: Give 1 specific optimization tip.\n\n"
        "OUTPUT REQUIREMENTS:\n"
        "- Provide exactly 3 clear, professional insights.\n"
        '- Return strictly valid JSON with a single key "insights" containing an array of 3 strings.'
    )


def parse_insights(content: str, *, backend: str | None = None) -> list[str]:
    try:
        payload = InsightsPayload.model_validate_json(content)
    except ValidationError as e:
        raise UpstreamError(
            f"Model returned an unusable insights payload: {e.error_count()} error(s).",
            backend=backend,
        ) from e
    return [s.strip() for s in payload.insights if s and s.strip()]


class InsightsService:
    def __init__(
        self,
        requester: ResilientCompletionRequester,
        *,
        candidates: Sequence[str] = DEFAULT_CANDIDATE_MODELS,
        temperature: float = 0.5,
        row_limit: int = 10,
    ):
        self.requester = requester
        self.candidates = tuple(candidates)
        self.temperature = temperature
        self.row_limit = row_limit

    def build_request(self, rows: Sequence[ReportRow]) -> CompletionRequest:
        return CompletionRequest(
            messages=(ChatMessage(role="user", content=build_prompt(top_rows(rows, self.row_limit))),),
            json_output=True,
            temperature=self.temperature,
        )

    async def analyze(self, rows: Sequence[ReportRow]) -> list[str]:
        if not rows:
            return []
        result = await self.requester.complete(self.build_request(rows), self.candidates)
        return parse_insights(result.content, backend=result.backend)

    async def analyze_or_degrade(self, rows: Sequence[ReportRow]) -> InsightsOutcome:
        """Like `analyze`, but terminal completion errors become an unavailable outcome."""
        try:
            insights = await self.analyze(rows)
        except (ExhaustedError, UpstreamError) as e:
            log.warning("insights_unavailable", error_type=type(e).__name__, backend=e.backend, detail=e.detail)
            return InsightsOutcome(available=False, reason=UNAVAILABLE_MESSAGE, backend=e.backend)
        except ConfigurationError as e:
            log.error("insights_misconfigured", error=str(e))
            return InsightsOutcome(available=False, reason=UNAVAILABLE_MESSAGE)
        return InsightsOutcome(insights=insights)
