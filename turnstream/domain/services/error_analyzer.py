"""
Error analyzer - Classifies failures into user-facing summaries.
The summary is advice for the caller; nothing here retries.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ...utils import ConfigurationError, BackendError


class ErrorKind(Enum):
    CAPACITY_OVERLOAD = "CAPACITY_OVERLOAD"
    CONTEXT_LIMIT = "CONTEXT_LIMIT"
    SAFETY_POLICY = "SAFETY_POLICY"
    NETWORK_LOST = "NETWORK_LOST"
    CONFIG_MISSING = "CONFIG_MISSING"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class ErrorSummary:
    """Analyzed error with a suggested reaction."""
    kind: ErrorKind
    severity: str
    title: str
    description: str
    action: str
    icon: str
    retry_delay_ms: int = 0
    max_retries: int = 0

    @property
    def retryable(self) -> bool:
        return self.kind is not ErrorKind.CONFIG_MISSING


ERROR_CATALOG = {
    ErrorKind.CAPACITY_OVERLOAD: ErrorSummary(
        ErrorKind.CAPACITY_OVERLOAD, "warning", "The model is at full capacity",
        "Waiting for the load to ease before trying again.", "auto-retry", "clock",
        retry_delay_ms=3000, max_retries=3,
    ),
    ErrorKind.CONTEXT_LIMIT: ErrorSummary(
        ErrorKind.CONTEXT_LIMIT, "warning", "The conversation has grown too long",
        "Clear the conversation or ask for a summary, then continue.", "suggest", "chat",
    ),
    ErrorKind.SAFETY_POLICY: ErrorSummary(
        ErrorKind.SAFETY_POLICY, "warning", "This request cannot be answered",
        "Try phrasing the request differently.", "guidance", "shield",
    ),
    ErrorKind.NETWORK_LOST: ErrorSummary(
        ErrorKind.NETWORK_LOST, "critical", "Check your network connection",
        "The server could not be reached. Check the connection and try again.", "manual-retry", "wifi",
    ),
    ErrorKind.CONFIG_MISSING: ErrorSummary(
        ErrorKind.CONFIG_MISSING, "critical", "API settings are required",
        "The API key or endpoint URL is not configured. Set DIFY_API_KEY and DIFY_API_URL.", "config", "settings",
    ),
    ErrorKind.UNKNOWN: ErrorSummary(
        ErrorKind.UNKNOWN, "critical", "An unexpected problem occurred",
        "If the problem persists, contact your administrator.", "report", "alert",
    ),
}

_MARKERS = (
    (ErrorKind.CAPACITY_OVERLOAD, ("503", "overloaded", "service unavailable", "capacity")),
    (ErrorKind.CONTEXT_LIMIT, ("context_length", "token", "too long", "maximum context")),
    (ErrorKind.SAFETY_POLICY, ("safety", "violation", "content_filter", "blocked")),
    (ErrorKind.NETWORK_LOST, (
        "failed to fetch", "networkerror", "network request failed", "offline",
        "err_internet_disconnected", "connection refused", "connection reset",
        "all connection attempts failed", "server disconnected", "name or service not known",
    )),
    (ErrorKind.CONFIG_MISSING, ("api_key_missing", "api key or url not set", "401", "unauthorized")),
)


class ErrorAnalyzer:
    """Maps exceptions and messages onto ``ErrorSummary`` entries."""

    def analyze(self, raw: Any) -> ErrorSummary:
        if isinstance(raw, ConfigurationError):
            return ERROR_CATALOG[ErrorKind.CONFIG_MISSING]
        if isinstance(raw, BackendError):
            if raw.status_code == 503:
                return ERROR_CATALOG[ErrorKind.CAPACITY_OVERLOAD]
            if raw.status_code == 401:
                return ERROR_CATALOG[ErrorKind.CONFIG_MISSING]

        message = str(raw or "").lower()
        for kind, markers in _MARKERS:
            if any(marker in message for marker in markers):
                return ERROR_CATALOG[kind]
        return ERROR_CATALOG[ErrorKind.UNKNOWN]


def analyze_error(raw: Any) -> ErrorSummary:
    return ErrorAnalyzer().analyze(raw)
