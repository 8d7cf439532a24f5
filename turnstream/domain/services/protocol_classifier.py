"""
Protocol mode classification - Decides whether a growing answer buffer is a JSON envelope or plain text.
"""

from __future__ import annotations
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from ..models.turn import ProtocolMode
from .partial_json import StructuredResponse, parse_structured_response

_FENCED_JSON_OPENER = re.compile(r"^```[ \t]*(?:json\b|\r?\n?\s*\{)", re.IGNORECASE)
FIELD_MARKERS = ('"thinking"', '"answer"')


class ProtocolModeClassifier:
    """Stateless shape check over a buffer prefix."""

    def classify(self, buffer: str) -> ProtocolMode:
        trimmed = (buffer or "").strip()
        if not trimmed:
            return ProtocolMode.PENDING
        if trimmed.startswith("{") or _FENCED_JSON_OPENER.match(trimmed):
            return ProtocolMode.JSON
        if any(marker in trimmed for marker in FIELD_MARKERS):
            return ProtocolMode.JSON
        return ProtocolMode.RAW


@dataclass
class DisplayUpdate:
    """What the rendering layer should show for the current buffer."""
    text: str
    thinking: str
    mode: ProtocolMode
    response: StructuredResponse = field(default_factory=StructuredResponse)
    suppressed: bool = False


class ProtocolModeTracker:
    """Per-turn classification state with a display grace window.

    ``json`` is sticky. A turn classified ``raw`` is promoted to ``json`` when the
    field markers show up later; this tolerates preamble text before the envelope
    but also fires on prose that merely quotes ``"answer"``, so every promotion is
    logged at WARNING.
    """

    def __init__(
        self,
        classifier: Optional[ProtocolModeClassifier] = None,
        grace_ms: int = 300,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[logging.Logger] = None,
    ):
        self._classifier = classifier or ProtocolModeClassifier()
        self._grace_s = max(0, grace_ms) / 1000.0
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)
        self._mode = ProtocolMode.PENDING
        self._first_text_at: Optional[float] = None

    @property
    def mode(self) -> ProtocolMode:
        return self._mode

    def in_grace_window(self) -> bool:
        if self._first_text_at is None:
            return True
        return (self._clock() - self._first_text_at) < self._grace_s

    def update_mode(self, buffer: str) -> ProtocolMode:
        """Reclassify the buffer under the monotonic rules."""
        if self._mode is ProtocolMode.JSON:
            return self._mode

        classified = self._classifier.classify(buffer)
        if self._mode is ProtocolMode.RAW and classified is ProtocolMode.JSON:
            self._logger.warning("Reclassifying answer from raw to json after structured field markers appeared")
        if classified is not ProtocolMode.PENDING:
            self._mode = classified
        return self._mode

    def observe(self, buffer: str) -> DisplayUpdate:
        """Register buffer growth and compute the displayable text."""
        if self._first_text_at is None and buffer:
            self._first_text_at = self._clock()

        mode = self.update_mode(buffer)

        if self.in_grace_window():
            response = parse_structured_response(buffer) if mode is ProtocolMode.JSON else StructuredResponse()
            if response.is_parsed and (response.answer or response.thinking):
                return DisplayUpdate(response.answer, response.thinking, mode, response)
            return DisplayUpdate("", "", mode, response, suppressed=True)

        if mode is ProtocolMode.JSON:
            response = parse_structured_response(buffer)
            text = response.answer if response.is_parsed else ""
            return DisplayUpdate(text, response.thinking, mode, response)
        if mode is ProtocolMode.RAW:
            return DisplayUpdate(buffer, "", mode, StructuredResponse(answer=buffer))
        return DisplayUpdate("", "", mode)

    def finalize(self, buffer: str) -> StructuredResponse:
        """Full extraction over the complete buffer."""
        mode = self.update_mode(buffer)
        if mode is ProtocolMode.JSON:
            return parse_structured_response(buffer)
        return StructuredResponse(answer=buffer)
