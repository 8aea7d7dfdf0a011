from __future__ import annotations

import asyncio
import os
import time
from contextlib import asynccontextmanager
from typing import Any

import structlog

try:  # resolves the string annotation on route handlers; fastapi is the optional "server" extra
    from fastapi import Request
except ImportError:  # pragma: no cover
    pass

from .adsense import AdSenseReportSource, GoogleOAuthExchange
from .api_models import (
    AnalyzeRequest,
    AnalyzeResponse,
    ConnectRequest,
    ConnectResponse,
    DashboardResponse,
    ReportRequest,
    ReportResponse,
    make_error_response,
    rows_to_client,
)
from .config import DashboardConfig
from .errors import (
    AuthenticationError,
    ConfigurationError,
    ExhaustedError,
    InsightsError,
    ReportSourceError,
    RequestTimeoutError,
    UpstreamError,
)
from .groq_session import GroqChatSession
from .http_security import install_middlewares
from .insights import UNAVAILABLE_MESSAGE, InsightsOutcome, InsightsService
from .logging import configure_logging
from .metrics import maybe_start_metrics, server_errors_total, server_request_latency_seconds, server_requests_total
from .report import summarize
from .requester import ResilientCompletionRequester
from .session_store import DashboardSession, EncryptedSessionStore

log = structlog.get_logger()

# Default Retry-After for an exhausted candidate list when upstream gave none.
EXHAUSTED_RETRY_AFTER_SECONDS = 30


def build_insights_service(cfg: DashboardConfig) -> InsightsService:
    session = GroqChatSession(
        api_key=cfg.groq_api_key,
        base_url=cfg.groq_base_url,
        timeout_seconds=cfg.upstream_timeout_seconds,
    )
    return InsightsService(
        ResilientCompletionRequester(session),
        candidates=cfg.candidates(),
        temperature=cfg.llm_temperature,
        row_limit=cfg.report_row_limit,
    )


def build_session_store(cfg: DashboardConfig) -> EncryptedSessionStore | None:
    if not cfg.session_store_path:
        return None
    return EncryptedSessionStore(cfg.session_store_path, cfg.require_session_key())


async def _close_all(*objs: Any) -> None:
    for obj in objs:
        close = getattr(obj, "close", None)
        if callable(close):
            await close()


def create_app(
    cfg: DashboardConfig | None = None,
    *,
    oauth: GoogleOAuthExchange | None = None,
    report_source: AdSenseReportSource | None = None,
    insights: InsightsService | None = None,
    session_store: EncryptedSessionStore | None = None,
):
    try:
        from fastapi import FastAPI, Request
        from fastapi.exceptions import RequestValidationError
        from fastapi.responses import JSONResponse
    except ImportError as e:  # pragma: no cover
        raise RuntimeError('Install the "server" extra: pip install -e ".[server]"') from e

    cfg = cfg or DashboardConfig()
    configure_logging(
        level=cfg.log_level,
        fmt=cfg.log_format,
        secrets=[
            s
            for s in (cfg.groq_api_key, cfg.google_client_secret, cfg.session_fernet_key, cfg.server_auth_token)
            if s
        ],
    )
    if oauth is None and cfg.google_client_id and cfg.google_client_secret:
        oauth = GoogleOAuthExchange(
            cfg.google_client_id,
            cfg.google_client_secret,
            redirect_uri=cfg.google_redirect_uri,
            timeout_seconds=cfg.upstream_timeout_seconds,
        )
    report_source = report_source or AdSenseReportSource(timeout_seconds=cfg.upstream_timeout_seconds)
    insights = insights or build_insights_service(cfg)
    session_store = session_store or build_session_store(cfg)

    def _request_id(request) -> str | None:
        return getattr(getattr(request, "state", None), "request_id", None)

    def _observe(path: str, status_code: int, started_at: float) -> None:
        server_requests_total.labels(path=path, status=str(status_code)).inc()
        server_request_latency_seconds.labels(path=path).observe(max(0.0, time.monotonic() - started_at))

    def _error(request, status_code: int, type_: str, message: str, headers: dict[str, str] | None = None):
        server_errors_total.labels(type=type_).inc()
        return JSONResponse(
            status_code=status_code,
            headers=headers,
            content=make_error_response(message=message, type=type_, code=_request_id(request)).model_dump(),
        )

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        maybe_start_metrics(enable=cfg.enable_metrics, bind=cfg.metrics_bind, port=cfg.metrics_port)
        try:
            yield
        finally:
            await _close_all(oauth, report_source, getattr(insights.requester, "backend", None))

    app = FastAPI(
        title="adsense-insights",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if cfg.enable_api_docs else None,
        redoc_url="/redoc" if cfg.enable_api_docs else None,
        openapi_url="/openapi.json" if cfg.enable_api_docs else None,
    )
    install_middlewares(app, cfg=cfg)

    @app.exception_handler(RequestValidationError)
    async def _validation_error_handler(request, exc: RequestValidationError):
        return _error(request, 400, "invalid_request_error", f"Invalid request: {len(exc.errors())} error(s).")

    @app.exception_handler(AuthenticationError)
    async def _auth_error_handler(request, exc: AuthenticationError):
        return _error(request, 401, "authentication_error", str(exc))

    @app.exception_handler(ConfigurationError)
    async def _config_error_handler(request, exc: ConfigurationError):
        log.error("server_misconfigured", error=str(exc))
        return _error(request, 500, "configuration_error", str(exc))

    @app.exception_handler(ExhaustedError)
    async def _exhausted_handler(request, exc: ExhaustedError):
        retry_after = exc.retry_after_seconds if exc.retry_after_seconds is not None else EXHAUSTED_RETRY_AFTER_SECONDS
        return _error(
            request,
            503,
            "upstream_unavailable",
            UNAVAILABLE_MESSAGE,
            headers={"Retry-After": str(retry_after)},
        )

    @app.exception_handler(UpstreamError)
    async def _upstream_error_handler(request, exc: UpstreamError):
        return _error(request, 502, "upstream_error", str(exc))

    @app.exception_handler(ReportSourceError)
    async def _report_error_handler(request, exc: ReportSourceError):
        return _error(request, 502, "report_source_error", str(exc))

    @app.exception_handler(RequestTimeoutError)
    async def _timeout_error_handler(request, exc: RequestTimeoutError):
        return _error(request, 504, "timeout", str(exc) or "Request timed out.")

    @app.exception_handler(InsightsError)
    async def _insights_error_handler(request, exc: InsightsError):
        return _error(request, 500, "api_error", str(exc))

    def _analyze_timeout() -> float | None:
        return max(0.0, float(cfg.analyze_timeout_seconds or 0)) or None

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/api/adsense/connect", response_model=ConnectResponse)
    async def connect(req: ConnectRequest):
        started_at = time.monotonic()
        if oauth is None:
            raise ConfigurationError("GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET are required for the OAuth exchange.")
        tokens = await oauth.exchange_code(req.code)
        accounts = await report_source.list_accounts(tokens)
        if session_store is not None:
            session_store.update(tokens=tokens, accounts=accounts)
        _observe("/api/adsense/connect", 200, started_at)
        return ConnectResponse(tokens=tokens, accounts=accounts)

    @app.post("/api/adsense/report", response_model=ReportResponse)
    async def report(req: ReportRequest):
        started_at = time.monotonic()
        rows = await report_source.generate_report(req.tokens, req.account_id)
        _observe("/api/adsense/report", 200, started_at)
        return ReportResponse(data=rows_to_client(rows))

    @app.post("/api/adsense/analyze", response_model=AnalyzeResponse)
    async def analyze(req: AnalyzeRequest):
        started_at = time.monotonic()
        try:
            result = await asyncio.wait_for(insights.analyze(req.adsense_data), timeout=_analyze_timeout())
        except asyncio.TimeoutError as e:
            raise RequestTimeoutError("Analysis timed out.") from e
        _observe("/api/adsense/analyze", 200, started_at)
        return AnalyzeResponse(insights=result)

    @app.post("/api/adsense/dashboard", response_model=DashboardResponse, response_model_by_alias=True)
    async def dashboard(req: ReportRequest):
        started_at = time.monotonic()
        rows = await report_source.generate_report(req.tokens, req.account_id)
        try:
            outcome = await asyncio.wait_for(insights.analyze_or_degrade(rows), timeout=_analyze_timeout())
        except asyncio.TimeoutError:
            log.warning("insights_timed_out", account=req.account_id)
            outcome = InsightsOutcome(available=False, reason=UNAVAILABLE_MESSAGE)

        if session_store is not None:
            fields: dict[str, Any] = {"tokens": req.tokens, "selected_account": req.account_id, "report": rows}
            if outcome.available:
                fields["insights"] = outcome.insights
            session_store.update(**fields)

        _observe("/api/adsense/dashboard", 200, started_at)
        return DashboardResponse(
            data=rows_to_client(rows),
            summary=summarize(rows),
            insights=outcome.insights,
            insights_available=outcome.available,
            insights_error=outcome.reason,
        )

    @app.get("/api/session")
    async def get_session() -> dict[str, Any]:
        session = session_store.load() if session_store is not None else DashboardSession()
        return session.model_dump(by_alias=True)

    @app.delete("/api/session")
    async def delete_session(request: Request) -> dict[str, str]:
        if session_store is not None:
            session_store.clear()
        log.info("session_cleared", request_id=_request_id(request))
        return {"status": "cleared"}

    return app


def main() -> None:  # pragma: no cover
    try:
        import uvicorn
    except ImportError as e:
        raise RuntimeError('Install the "server" extra: pip install -e ".[server]"') from e

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("adsense_insights.server:create_app", factory=True, host=host, port=port)


if __name__ == "__main__":  # pragma: no cover
    main()
