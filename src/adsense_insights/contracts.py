from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, TypeAlias

Role: TypeAlias = Literal["system", "user", "assistant"]
CandidateList: TypeAlias = tuple[str, ...]


@dataclass(frozen=True)
class ChatMessage:
    role: Role
    content: str

    def as_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class CompletionRequest:
    messages: tuple[ChatMessage, ...]
    json_output: bool = False
    temperature: float = 0.5


@dataclass(frozen=True)
class CompletionResult:
    content: str
    backend: str
    attempts: int
    latency_seconds: float


@dataclass(frozen=True)
class AttemptOutcome:
    kind: Literal["success", "retryable", "fatal"]
    payload: str | None = None
    reason: str | None = None
    status_code: int | None = None

    @classmethod
    def success(cls, payload: str) -> "AttemptOutcome":
        return cls(kind="success", payload=payload)

    @classmethod
    def retryable(cls, reason: str, status_code: int | None) -> "AttemptOutcome":
        return cls(kind="retryable", reason=reason, status_code=status_code)

    @classmethod
    def fatal(cls, reason: str, status_code: int | None) -> "AttemptOutcome":
        return cls(kind="fatal", reason=reason, status_code=status_code)


def is_retryable_status(status_code: int | None) -> bool:
    if status_code is None:
        return False
    return status_code == 429 or 500 <= status_code <= 599
