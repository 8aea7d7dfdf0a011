from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from .errors import ReportSourceError

# Column order requested from reports:generate, used when a response has no headers.
REPORT_DIMENSIONS = ["DOMAIN_NAME"]
REPORT_METRICS = [
    "ESTIMATED_EARNINGS",
    "PAGE_VIEWS",
    "IMPRESSIONS",
    "CLICKS",
    "IMPRESSION_RPM",
    "ACTIVE_VIEW_VIEWABILITY",
]
REPORT_COLUMNS = REPORT_DIMENSIONS + REPORT_METRICS


def derive_rpm(earnings: float, page_views: int) -> float:
    if page_views <= 0:
        return 0.0
    return earnings / page_views * 1000


def derive_ctr(clicks: int, impressions: int) -> float:
    if impressions <= 0:
        return 0.0
    return clicks / impressions


def ctr_band(ctr: float) -> Literal["high", "healthy", "low"]:
    if ctr > 0.05:
        return "high"
    if ctr > 0.01:
        return "healthy"
    return "low"


class ReportRow(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    site: str
    earnings: float = 0.0
    page_views: int = Field(default=0, alias="pageViews")
    impressions: int = 0
    clicks: int = 0
    rpm: float = 0.0
    ctr: float = 0.0

    @classmethod
    def from_metrics(
        cls,
        site: str,
        *,
        earnings: float,
        page_views: int,
        impressions: int,
        clicks: int,
        rpm: float | None = None,
    ) -> "ReportRow":
        return cls(
            site=site,
            earnings=earnings,
            page_views=page_views,
            impressions=impressions,
            clicks=clicks,
            rpm=derive_rpm(earnings, page_views) if rpm is None else rpm,
            ctr=derive_ctr(clicks, impressions),
        )

    def to_client(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class ReportSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    rows: int = 0
    total_earnings: float = Field(default=0.0, alias="totalEarnings")
    total_page_views: int = Field(default=0, alias="totalPageViews")
    total_impressions: int = Field(default=0, alias="totalImpressions")
    total_clicks: int = Field(default=0, alias="totalClicks")
    rpm: float = 0.0
    ctr: float = 0.0


def _to_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_int(value: Any) -> int:
    parsed = _to_float(value)
    return int(parsed) if parsed is not None else 0


def _column_index(payload: Mapping[str, Any]) -> dict[str, int]:
    headers = payload.get("headers")
    if isinstance(headers, list) and headers:
        names = [h.get("name") if isinstance(h, dict) else None for h in headers]
        if all(isinstance(n, str) for n in names):
            return {n: i for i, n in enumerate(names)}  # type: ignore[misc]
    return {n: i for i, n in enumerate(REPORT_COLUMNS)}


def rows_from_report(payload: Mapping[str, Any]) -> list[ReportRow]:
    """Shape a reports:generate response into ReportRows.

    CTR is always derived. RPM is taken from IMPRESSION_RPM when the report
    supplies it and derived from earnings and page views otherwise.
    """
    columns = _column_index(payload)
    if "DOMAIN_NAME" not in columns:
        raise ReportSourceError("Report is missing the DOMAIN_NAME dimension.")

    def cell(cells: Sequence[Any], name: str) -> Any:
        i = columns.get(name)
        if i is None or i >= len(cells):
            return None
        c = cells[i]
        return c.get("value") if isinstance(c, dict) else None

    out: list[ReportRow] = []
    for raw in payload.get("rows") or []:
        cells = raw.get("cells") if isinstance(raw, dict) else None
        if not isinstance(cells, list):
            raise ReportSourceError("Report row has no cells.")
        out.append(
            ReportRow.from_metrics(
                str(cell(cells, "DOMAIN_NAME") or ""),
                earnings=_to_float(cell(cells, "ESTIMATED_EARNINGS")) or 0.0,
                page_views=_to_int(cell(cells, "PAGE_VIEWS")),
                impressions=_to_int(cell(cells, "IMPRESSIONS")),
                clicks=_to_int(cell(cells, "CLICKS")),
                rpm=_to_float(cell(cells, "IMPRESSION_RPM")),
            )
        )
    return out


def summarize(rows: Iterable[ReportRow]) -> ReportSummary:
    rows = list(rows)
    earnings = sum(r.earnings for r in rows)
    page_views = sum(r.page_views for r in rows)
    impressions = sum(r.impressions for r in rows)
    clicks = sum(r.clicks for r in rows)
    return ReportSummary(
        rows=len(rows),
        total_earnings=earnings,
        total_page_views=page_views,
        total_impressions=impressions,
        total_clicks=clicks,
        rpm=derive_rpm(earnings, page_views),
        ctr=derive_ctr(clicks, impressions),
    )


def top_rows(rows: Sequence[ReportRow], limit: int = 10) -> list[ReportRow]:
    return list(rows[: max(0, limit)])
