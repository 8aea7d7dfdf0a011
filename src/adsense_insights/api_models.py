from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .report import ReportRow, ReportSummary


class ConnectRequest(BaseModel):
    code: str

    @field_validator("code")
    @classmethod
    def _validate_code(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("code must be non-empty.")
        return v


class ConnectResponse(BaseModel):
    tokens: dict[str, Any]
    accounts: list[dict[str, Any]]


class ReportRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tokens: dict[str, Any]
    account_id: str = Field(alias="accountId")

    @field_validator("account_id")
    @classmethod
    def _validate_account_id(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("accountId must be non-empty.")
        return v


class ReportResponse(BaseModel):
    data: list[dict[str, Any]]


class AnalyzeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    adsense_data: list[ReportRow] = Field(alias="adsenseData")


class AnalyzeResponse(BaseModel):
    insights: list[str]


class DashboardResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    data: list[dict[str, Any]]
    summary: ReportSummary
    insights: list[str]
    insights_available: bool = Field(alias="insightsAvailable")
    insights_error: str | None = Field(default=None, alias="insightsError")


class ApiError(BaseModel):
    message: str
    type: str = "api_error"
    code: str | None = None


class ApiErrorResponse(BaseModel):
    error: ApiError


def make_error_response(*, message: str, type: str = "api_error", code: str | None = None) -> ApiErrorResponse:
    return ApiErrorResponse(error=ApiError(message=message, type=type, code=code))


def rows_to_client(rows: list[ReportRow]) -> list[dict[str, Any]]:
    return [r.to_client() for r in rows]
