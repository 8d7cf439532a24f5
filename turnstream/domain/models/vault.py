"""
Privacy vault models - Detected sensitive spans and the tokens that replace them.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import List
from datetime import datetime
from enum import Enum


class DetectionPriority(Enum):
    """Severity of a detection rule."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class Highlight:
    """Position of one sensitive match inside a text."""
    start: int
    end: int
    rule_id: str
    priority: DetectionPriority


@dataclass(frozen=True)
class Detection:
    """Aggregated detections for one rule, with masked previews."""
    rule_id: str
    label: str
    priority: DetectionPriority
    count: int
    masked: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class VaultEntry:
    """One sensitive value held in session memory."""
    token: str
    original_value: str
    category: DetectionPriority
    label: str
    rule_id: str
    created_at: datetime = field(default_factory=datetime.now)

    def __repr__(self) -> str:
        # never echo the original value
        return f"VaultEntry(token={self.token!r}, rule_id={self.rule_id!r})"


@dataclass(frozen=True)
class SanitizeResult:
    """Outcome of one sanitize call."""
    sanitized_text: str
    new_tokens: List[VaultEntry] = field(default_factory=list)
