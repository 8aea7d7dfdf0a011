from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import httpx
import structlog

from .errors import AuthenticationError, ReportSourceError
from .metrics import adsense_requests_total
from .report import REPORT_DIMENSIONS, REPORT_METRICS, ReportRow, rows_from_report

log = structlog.get_logger()

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
ADSENSE_API_BASE = "https://adsense.googleapis.com/v2"
ADSENSE_SCOPE = "https://www.googleapis.com/auth/adsense.readonly"

TokenBundle = dict[str, Any]


class GoogleOAuthExchange:
    """Trades an authorization code from the browser's auth-code flow for a token bundle."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        *,
        redirect_uri: str = "postmessage",
        client: httpx.AsyncClient | None = None,
        token_url: str = GOOGLE_TOKEN_URL,
        timeout_seconds: float = 30,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._token_url = token_url

    async def close(self) -> None:
        await self._client.aclose()

    async def exchange_code(self, code: str) -> TokenBundle:
        if not code:
            raise AuthenticationError("Missing authorization code.")
        try:
            resp = await self._client.post(
                self._token_url,
                data={
                    "code": code,
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "redirect_uri": self.redirect_uri,
                    "grant_type": "authorization_code",
                },
            )
        except httpx.HTTPError as e:
            adsense_requests_total.labels(operation="token_exchange", status="transport_error").inc()
            raise AuthenticationError("Token exchange request failed.") from e

        adsense_requests_total.labels(operation="token_exchange", status=str(resp.status_code)).inc()
        if resp.status_code >= 400:
            log.warning("oauth_exchange_rejected", status_code=resp.status_code)
            raise AuthenticationError(f"Google rejected the authorization code ({resp.status_code}).")

        try:
            tokens = resp.json()
        except ValueError as e:
            raise AuthenticationError("Token exchange returned a non-JSON body.") from e
        if not isinstance(tokens, dict) or not tokens.get("access_token"):
            raise AuthenticationError("Token exchange returned no access token.")
        return tokens


def _access_token(tokens: Mapping[str, Any] | None) -> str:
    token = (tokens or {}).get("access_token")
    if not isinstance(token, str) or not token:
        raise AuthenticationError("Token bundle has no access_token.")
    return token


class AdSenseReportSource:
    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        base_url: str = ADSENSE_API_BASE,
        timeout_seconds: float = 30,
    ):
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._base_url = base_url.rstrip("/")

    async def close(self) -> None:
        await self._client.aclose()

    async def _get(self, operation: str, path: str, tokens: Mapping[str, Any], params: Any = None) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {_access_token(tokens)}"}
        try:
            resp = await self._client.get(f"{self._base_url}/{path}", headers=headers, params=params)
        except httpx.HTTPError as e:
            adsense_requests_total.labels(operation=operation, status="transport_error").inc()
            raise ReportSourceError("AdSense request failed.") from e

        adsense_requests_total.labels(operation=operation, status=str(resp.status_code)).inc()
        if resp.status_code in (401, 403):
            raise AuthenticationError("AdSense rejected the access token.")
        if resp.status_code >= 400:
            log.warning("adsense_error", operation=operation, status_code=resp.status_code, body=resp.text[:500])
            raise ReportSourceError(f"AdSense error {resp.status_code}.", status_code=resp.status_code)

        try:
            data = resp.json()
        except ValueError as e:
            raise ReportSourceError("AdSense returned a non-JSON body.") from e
        if not isinstance(data, dict):
            raise ReportSourceError("AdSense returned an unexpected body.")
        return data

    async def list_accounts(self, tokens: Mapping[str, Any]) -> list[dict[str, Any]]:
        data = await self._get("list_accounts", "accounts", tokens)
        accounts = data.get("accounts") or []
        return [a for a in accounts if isinstance(a, dict)]

    async def generate_report(self, tokens: Mapping[str, Any], account_id: str) -> list[ReportRow]:
        if not account_id:
            raise ReportSourceError("Missing AdSense account id.")
        account = account_id if account_id.startswith("accounts/") else f"accounts/{account_id}"
        params: list[tuple[str, str]] = [("dateRange", "LAST_30_DAYS")]
        params += [("metrics", m) for m in REPORT_METRICS]
        params += [("dimensions", d) for d in REPORT_DIMENSIONS]
        params.append(("orderBy", "-ESTIMATED_EARNINGS"))

        data = await self._get("generate_report", f"{account}/reports:generate", tokens, params=params)
        rows = rows_from_report(data)
        log.info("adsense_report_ok", account=account, rows=len(rows))
        return rows
