"""
Utility functions for the turnstream CLI.
"""

import logging
import sys
from typing import List, Optional


def setup_logging(level: str = "INFO", fmt: Optional[str] = None) -> None:
    """Setup logging configuration."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=fmt or '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stderr)
        ]
    )

    # Reduce noise from third-party libraries unless debugging
    if level.upper() != "DEBUG":
        for name in ("httpx", "httpcore"):
            logging.getLogger(name).setLevel(logging.WARNING)


def truncate_text(text: str, max_length: int = 100) -> str:
    """Truncate text with ellipsis if too long."""
    if len(text) <= max_length:
        return text
    return text[:max_length-3] + "..."


# Error handling classes
class TurnstreamError(Exception):
    """Base exception for turnstream errors."""
    pass


class ConfigurationError(TurnstreamError):
    """Missing credentials or endpoint, detected before any network call."""

    def __init__(self, missing: List[str]):
        self.missing = list(missing)
        super().__init__(f"API_KEY_MISSING: not configured: {', '.join(self.missing)}")


class BackendError(TurnstreamError):
    """Exception for non-successful backend responses."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"{status_code}: {message}")


class StreamTransportError(TurnstreamError):
    """A transport read failed mid-turn; carries the partial turn when available."""

    def __init__(self, message: str, turn=None):
        super().__init__(message)
        self.turn = turn
