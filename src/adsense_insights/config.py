from __future__ import annotations

import os

from pydantic import BaseModel, Field

from .errors import ConfigurationError

DEFAULT_CANDIDATE_MODELS = (
    "openai/gpt-oss-120b",
    "openai/gpt-oss-20b",
    "openai/gpt-oss-safeguard-20b",
)


def _parse_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


class DashboardConfig(BaseModel):
    # LLM backends (Groq OpenAI-compatible API)
    groq_api_key: str | None = Field(default_factory=lambda: os.getenv("GROQ_API_KEY"))
    groq_base_url: str = Field(
        default_factory=lambda: os.getenv("GROQ_BASE_URL", "https://api.groq.com/openai/v1")
    )
    candidate_models: list[str] = Field(
        default_factory=lambda: _parse_csv(os.getenv("LLM_CANDIDATE_MODELS")) or list(DEFAULT_CANDIDATE_MODELS)
    )
    llm_temperature: float = Field(default_factory=lambda: float(os.getenv("LLM_TEMPERATURE", "0.5")))
    upstream_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("UPSTREAM_TIMEOUT_SECONDS", "30"))
    )

    # Google OAuth / AdSense
    google_client_id: str | None = Field(default_factory=lambda: os.getenv("GOOGLE_CLIENT_ID"))
    google_client_secret: str | None = Field(default_factory=lambda: os.getenv("GOOGLE_CLIENT_SECRET"))
    google_redirect_uri: str = Field(default_factory=lambda: os.getenv("GOOGLE_REDIRECT_URI", "postmessage"))
    report_row_limit: int = Field(default_factory=lambda: int(os.getenv("ADSENSE_REPORT_ROW_LIMIT", "10")))

    # Session cache
    session_store_path: str | None = Field(default_factory=lambda: os.getenv("SESSION_STORE_PATH"))
    session_fernet_key: str | None = Field(default_factory=lambda: os.getenv("SESSION_FERNET_KEY"))

    # Observability
    enable_metrics: bool = Field(
        default_factory=lambda: os.getenv("ENABLE_METRICS", "false").lower() == "true"
    )
    metrics_bind: str = Field(default_factory=lambda: os.getenv("METRICS_BIND", "127.0.0.1"))
    metrics_port: int = Field(default_factory=lambda: int(os.getenv("METRICS_PORT", "9109")))
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_format: str = Field(default_factory=lambda: os.getenv("LOG_FORMAT", "json"))

    # Server hardening
    server_auth_token: str | None = Field(default_factory=lambda: os.getenv("SERVER_AUTH_TOKEN"))
    enable_api_docs: bool = Field(
        default_factory=lambda: os.getenv("ENABLE_API_DOCS", "false").lower() == "true"
    )
    allowed_hosts: list[str] = Field(default_factory=lambda: _parse_csv(os.getenv("ALLOWED_HOSTS")))
    cors_allow_origins: list[str] = Field(default_factory=lambda: _parse_csv(os.getenv("CORS_ALLOW_ORIGINS")))
    cors_allow_credentials: bool = Field(
        default_factory=lambda: os.getenv("CORS_ALLOW_CREDENTIALS", "false").lower() == "true"
    )
    max_request_body_bytes: int = Field(
        default_factory=lambda: int(os.getenv("MAX_REQUEST_BODY_BYTES", str(1024 * 1024)))
    )
    max_inflight_requests: int = Field(default_factory=lambda: int(os.getenv("MAX_INFLIGHT_REQUESTS", "32")))

    # End-to-end deadline for the analysis step
    analyze_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("ANALYZE_TIMEOUT_SECONDS", "90"))
    )

    def candidates(self) -> tuple[str, ...]:
        return tuple(self.candidate_models)

    def require_session_key(self) -> str:
        if not self.session_fernet_key:
            raise ConfigurationError("SESSION_FERNET_KEY is required for the encrypted session cache.")
        return self.session_fernet_key
