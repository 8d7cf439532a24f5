"""
Privacy vault - Session-scoped tokenization of sensitive values.

Originals live only in this object's memory. Outgoing text carries placeholder
tokens such as ``{{PHONE_NUMBER_A1}}``; ``restore`` swaps them back for display.
One vault is constructed per application session and passed to whoever needs it.
"""

from __future__ import annotations
import logging
import re
import threading
from typing import Dict, Iterable, List, Optional, Tuple

from ..models.vault import DetectionPriority, Highlight, SanitizeResult, VaultEntry
from .privacy_detector import PrivacyDetector

CATEGORY_MAP = {
    "credit_card": "CREDIT_CARD",
    "api_key": "API_KEY",
    "phone_number": "PHONE_NUMBER",
    "email": "EMAIL",
    "my_number": "MY_NUMBER",
    "confidential_keyword": "CONFIDENTIAL",
    "postal_code": "POSTAL_CODE",
    "placeholder_literal": "PLACEHOLDER",
}

TOKEN_PATTERN = re.compile(r"\{\{([A-Z_]+_[A-Z0-9]+)\}\}")
PLACEHOLDER_RULE_ID = "placeholder_literal"
CODE_BLOCK_PATTERN = re.compile(r"```[\s\S]*?```")

REDACTED_TEXT = "[redacted: sensitive value not available in this session]"

SYSTEM_PROMPT_INJECTION = (
    "Strings of the form `{{...}}` in the user's input are placeholders for sensitive "
    "information replaced for privacy. Treat each one as an opaque identifier for a "
    "specific value: do not compute with or transform it, and reproduce it verbatim "
    "in your output when the context requires it."
)


class PrivacyVault:
    """In-memory token store; append-only until ``clear``."""

    def __init__(self, detector: Optional[PrivacyDetector] = None, logger: Optional[logging.Logger] = None):
        self._detector = detector or PrivacyDetector()
        self._logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._entries: Dict[str, VaultEntry] = {}
        self._tokens_by_value: Dict[str, str] = {}
        self._counters: Dict[str, int] = {}

    def _next_index(self, category_key: str) -> str:
        count = self._counters.get(category_key, 0) + 1
        self._counters[category_key] = count
        return f"{chr(65 + (count - 1) % 26)}{count}"

    @staticmethod
    def _code_block_ranges(text: str) -> List[Tuple[int, int]]:
        return [m.span() for m in CODE_BLOCK_PATTERN.finditer(text)]

    @staticmethod
    def _normalize_excluded(exclude_categories: Optional[Iterable[str]]) -> set:
        excluded = set()
        for name in exclude_categories or ():
            key = name.strip().lower()
            excluded.add(key)
            # accept token category names too, e.g. PHONE_NUMBER
            for rule_id, category in CATEGORY_MAP.items():
                if category.lower() == key:
                    excluded.add(rule_id)
        return excluded

    def sanitize(self, text: str, exclude_categories: Optional[Iterable[str]] = None) -> SanitizeResult:
        """Replace detected values outside code blocks with tokens.

        Token-shaped text the user typed (``{{EMAIL_A1}}``) is vaulted as well, anywhere
        in the input, so that ``restore`` hands it back literally instead of expanding it.
        """
        if not text:
            return SanitizeResult(sanitized_text=text or "")

        literals = [
            Highlight(m.start(), m.end(), PLACEHOLDER_RULE_ID, DetectionPriority.LOW)
            for m in TOKEN_PATTERN.finditer(text)
        ]
        spans = self._detector.find_spans(text)
        if not spans and not literals:
            return SanitizeResult(sanitized_text=text)

        code_blocks = self._code_block_ranges(text)
        excluded = self._normalize_excluded(exclude_categories)
        spans = [
            s for s in spans
            if s.rule_id not in excluded
            and not any(start <= s.start < end for start, end in code_blocks)
            and not any(s.start < lit.end and lit.start < s.end for lit in literals)
        ]
        spans = sorted(spans + literals, key=lambda s: s.start)
        if not spans:
            return SanitizeResult(sanitized_text=text)

        new_tokens: List[VaultEntry] = []
        replacements: List[Tuple[int, int, str]] = []
        with self._lock:
            for span in spans:
                original = text[span.start:span.end]
                token = self._tokens_by_value.get(original)
                if token is None:
                    category_key = CATEGORY_MAP.get(span.rule_id, span.rule_id.upper())
                    token = f"{{{{{category_key}_{self._next_index(category_key)}}}}}"
                    rule = self._detector.rule(span.rule_id)
                    entry = VaultEntry(
                        token=token,
                        original_value=original,
                        category=span.priority,
                        label=rule.label if rule else span.rule_id,
                        rule_id=span.rule_id,
                    )
                    self._entries[token] = entry
                    self._tokens_by_value[original] = token
                    new_tokens.append(entry)
                replacements.append((span.start, span.end, token))

        sanitized = text
        for start, end, token in reversed(replacements):
            sanitized = sanitized[:start] + token + sanitized[end:]

        self._logger.debug(
            f"Sanitized {len(replacements)} span(s), {len(new_tokens)} new token(s): "
            f"{', '.join(e.token for e in new_tokens) or '-'}"
        )
        return SanitizeResult(sanitized_text=sanitized, new_tokens=new_tokens)

    def restore(self, text: str) -> str:
        """Swap known tokens back to their originals; unknown tokens stay as they are."""
        if not text or "{{" not in text:
            return text

        def _swap(match: re.Match) -> str:
            entry = self._entries.get(match.group(0))
            return entry.original_value if entry else match.group(0)

        return TOKEN_PATTERN.sub(_swap, text)

    def has_token(self, token: str) -> bool:
        return token in self._entries

    def get_entry(self, token: str) -> Optional[VaultEntry]:
        return self._entries.get(token)

    def has_entries(self) -> bool:
        return bool(self._entries)

    @property
    def entry_count(self) -> int:
        return len(self._entries)

    def system_prompt_injection(self) -> str:
        """Guidance for the model while any token is in play."""
        return SYSTEM_PROMPT_INJECTION if self._entries else ""

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._tokens_by_value.clear()
            self._counters.clear()
        self._logger.debug("Privacy vault cleared")
