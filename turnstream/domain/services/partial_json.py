"""
Partial JSON extraction - Best-effort field values from a structured answer that is still being generated.

The model emits its answer as a JSON envelope ``{thinking, answer, citations, smart_actions}``
token by token. ``PartialFieldExtractor`` recovers the current value of a string field from an
arbitrary prefix of that document; ``parse_structured_response`` performs the full parse once
the buffer is complete and falls back to partial extraction when it is not.
"""

from __future__ import annotations
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..models.turn import SuggestedAction

_DECODER = json.JSONDecoder(strict=False)
_FENCE_OPEN = re.compile(r"^```(?:json)?\s*\n?", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\n?```\s*$")

logger = logging.getLogger(__name__)


def _find_value_end(fragment: str) -> int:
    """Index of the first quote preceded by an even run of backslashes, or -1."""
    backslashes = 0
    for i, ch in enumerate(fragment):
        if ch == "\\":
            backslashes += 1
            continue
        if ch == '"' and backslashes % 2 == 0:
            return i
        backslashes = 0
    return -1


def _decode_string_body(fragment: str) -> str:
    """Decode JSON string escapes, dropping trailing characters until it succeeds."""
    while fragment:
        try:
            value = _DECODER.decode(f'"{fragment}"')
        except ValueError:
            fragment = fragment[:-1]
            continue
        # a surrogate pair cut in half would be unprintable
        if value and "\ud800" <= value[-1] <= "\udbff":
            value = value[:-1]
        return value
    return ""


class PartialFieldExtractor:
    """Extracts string fields from possibly truncated JSON text."""

    def __init__(self):
        self._patterns: Dict[str, re.Pattern] = {}

    def _pattern(self, field_name: str) -> re.Pattern:
        pattern = self._patterns.get(field_name)
        if pattern is None:
            pattern = re.compile(r'"' + re.escape(field_name) + r'"\s*:\s*"')
            self._patterns[field_name] = pattern
        return pattern

    def extract(self, buffer: str, field_name: str) -> Optional[str]:
        """Return the decoded value of ``field_name`` so far, or None if the field has not started."""
        if not buffer:
            return None
        match = self._pattern(field_name).search(buffer)
        if match is None:
            return None

        remainder = buffer[match.end():]
        end = _find_value_end(remainder)
        fragment = remainder if end == -1 else remainder[:end]
        return _decode_string_body(fragment)


_default_extractor = PartialFieldExtractor()


def extract_partial_field(buffer: str, field_name: str) -> Optional[str]:
    """Module-level shortcut over a shared extractor."""
    return _default_extractor.extract(buffer, field_name)


def strip_code_fence(text: str) -> str:
    """Remove a leading ```json / ``` opener and a trailing fence, if present."""
    text = text.strip()
    if text.startswith("```"):
        text = _FENCE_OPEN.sub("", text, count=1)
        text = _FENCE_CLOSE.sub("", text)
        text = text.strip()
    return text


@dataclass
class StructuredResponse:
    """Fields recovered from an answer envelope."""
    answer: str = ""
    thinking: str = ""
    citations: List[Dict[str, Any]] = field(default_factory=list)
    smart_actions: List[SuggestedAction] = field(default_factory=list)
    is_parsed: bool = False


def _normalize_smart_actions(value: Any) -> List[SuggestedAction]:
    if isinstance(value, dict):
        value = value.get("suggested_actions")
    if not isinstance(value, list):
        return []
    actions = []
    for item in value:
        action = SuggestedAction.from_dict(item)
        if action is not None:
            actions.append(action)
    return actions


def _normalize_citations(value: Any) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [c for c in value if isinstance(c, dict)]


def _from_envelope(data: Dict[str, Any]) -> StructuredResponse:
    answer = data.get("answer")
    thinking = data.get("thinking")
    return StructuredResponse(
        answer=answer if isinstance(answer, str) else ("" if answer is None else str(answer)),
        thinking=thinking if isinstance(thinking, str) else "",
        citations=_normalize_citations(data.get("citations")),
        smart_actions=_normalize_smart_actions(data.get("smart_actions")),
        is_parsed=True,
    )


def _decode_value_after(text: str, key: str) -> Any:
    """Decode the complete JSON value following ``"key":``; None while it is incomplete."""
    match = re.search(r'"' + re.escape(key) + r'"\s*:\s*', text)
    if match is None:
        return None
    try:
        value, _ = _DECODER.raw_decode(text, match.end())
    except ValueError:
        return None
    return value


def parse_structured_response(raw_text: Optional[str]) -> StructuredResponse:
    """Parse a (possibly partial, possibly fenced) answer envelope."""
    if not raw_text:
        return StructuredResponse()

    text = strip_code_fence(raw_text)

    if text.startswith("{") and text.endswith("}"):
        try:
            data = _DECODER.decode(text)
        except ValueError:
            data = None
        if isinstance(data, dict):
            return _from_envelope(data)

    thinking = extract_partial_field(text, "thinking")
    answer = extract_partial_field(text, "answer")
    if answer is None and thinking is None:
        return StructuredResponse(answer=text)

    # preamble before the envelope: try the object itself
    start = text.find("{")
    if start > 0:
        try:
            data, _ = _DECODER.raw_decode(text, start)
        except ValueError:
            data = None
        if isinstance(data, dict) and ("answer" in data or "thinking" in data):
            return _from_envelope(data)

    return StructuredResponse(
        answer=answer or "",
        thinking=thinking or "",
        citations=_normalize_citations(_decode_value_after(text, "citations")),
        smart_actions=_normalize_smart_actions(_decode_value_after(text, "smart_actions")),
        is_parsed=True,
    )


_JSON_FENCE = re.compile(r"```json\s*([\s\S]*?)\s*```", re.IGNORECASE)
_ANY_FENCE = re.compile(r"```\s*([\s\S]*?)\s*```")


def extract_json_from_llm_output(text_output: Any) -> Optional[Dict[str, Any]]:
    """Parse the JSON object an LLM node printed, fenced or bare; None if there is none."""
    if not text_output or not isinstance(text_output, str):
        return None

    match = _JSON_FENCE.search(text_output)
    if match:
        try:
            data = json.loads(match.group(1).strip())
        except ValueError as e:
            logger.warning(f"JSON code block in node output did not parse: {e}")
            return None
        return data if isinstance(data, dict) else None

    match = _ANY_FENCE.search(text_output)
    if match:
        try:
            data = json.loads(match.group(1).strip())
        except ValueError:
            return None
        return data if isinstance(data, dict) else None

    trimmed = text_output.strip()
    if trimmed.startswith("{"):
        try:
            data = json.loads(trimmed)
        except ValueError:
            return None
        return data if isinstance(data, dict) else None
    return None
