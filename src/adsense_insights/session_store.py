from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, Field, ValidationError

from .crypto import decrypt_bytes, encrypt_bytes
from .report import ReportRow

log = structlog.get_logger()


class DashboardSession(BaseModel):
    user: dict[str, Any] | None = None
    tokens: dict[str, Any] | None = None
    accounts: list[dict[str, Any]] = Field(default_factory=list)
    selected_account: str | None = None
    report: list[ReportRow] = Field(default_factory=list)
    insights: list[str] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return self == DashboardSession()


class EncryptedSessionStore:
    """
    Best-effort encrypted-at-rest cache of the last dashboard session.

    Stores ONE blob at `path` (Fernet-encrypted JSON). A missing or unreadable
    blob loads as an empty session, and a failed write is logged and dropped.

    `update` never awaits, so it runs as one step on the event loop; one
    server process is assumed to be the only writer of `path`.
    """

    def __init__(self, path: str, fernet_key: str):
        self.path = Path(path)
        self.fernet_key = fernet_key

    def exists(self) -> bool:
        return self.path.exists()

    def save(self, session: DashboardSession) -> None:
        raw = session.model_dump_json().encode("utf-8")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_bytes(encrypt_bytes(self.fernet_key, raw))

    def load(self) -> DashboardSession:
        if not self.path.exists():
            return DashboardSession()
        try:
            raw = decrypt_bytes(self.fernet_key, self.path.read_bytes())
            return DashboardSession.model_validate_json(raw)
        except (OSError, ValueError, ValidationError) as e:
            log.warning("session_cache_unreadable", path=str(self.path), error=type(e).__name__)
            return DashboardSession()

    def update(self, **fields: Any) -> DashboardSession:
        session = self.load().model_copy(update=fields)
        try:
            self.save(session)
        except OSError as e:
            log.warning("session_cache_write_failed", path=str(self.path), error=type(e).__name__)
        return session

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
