from .config import DashboardConfig
from .contracts import ChatMessage, CompletionRequest, CompletionResult
from .errors import ConfigurationError, ExhaustedError, UpstreamError
from .insights import InsightsOutcome, InsightsService
from .report import ReportRow, derive_ctr, derive_rpm
from .requester import ResilientCompletionRequester

__all__ = [
    "ChatMessage",
    "CompletionRequest",
    "CompletionResult",
    "ConfigurationError",
    "DashboardConfig",
    "ExhaustedError",
    "InsightsOutcome",
    "InsightsService",
    "ReportRow",
    "ResilientCompletionRequester",
    "UpstreamError",
    "derive_ctr",
    "derive_rpm",
]
