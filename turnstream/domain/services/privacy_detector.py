"""
Privacy detector - Finds sensitive values (cards, keys, phone numbers, ...) in user text.
"""

from __future__ import annotations
import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

from ..models.vault import DetectionPriority, Detection, Highlight


def luhn_check(digits: str) -> bool:
    """Luhn checksum for 13-19 digit card numbers."""
    if not digits or not digits.isdigit() or not 13 <= len(digits) <= 19:
        return False
    total = 0
    for i, ch in enumerate(reversed(digits)):
        digit = int(ch)
        if i % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return total % 10 == 0


def _valid_card(match: str) -> bool:
    return luhn_check(re.sub(r"[\s-]", "", match))


@dataclass(frozen=True)
class DetectionRule:
    """One detection pattern; ``group`` selects the sensitive part of the match."""
    id: str
    label: str
    priority: DetectionPriority
    pattern: re.Pattern
    validator: Optional[Callable[[str], bool]] = None
    group: int = 0


# Order matters: earlier rules win when two matches overlap.
DETECTION_RULES: List[DetectionRule] = [
    DetectionRule(
        "credit_card", "Credit card number", DetectionPriority.CRITICAL,
        re.compile(r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{1,4}\b", re.ASCII),
        validator=_valid_card,
    ),
    DetectionRule(
        "api_key", "API key", DetectionPriority.CRITICAL,
        re.compile(
            r"\b(?:sk-[a-zA-Z0-9]{20,}|AKIA[A-Z0-9]{16,}|ghp_[a-zA-Z0-9]{30,}|gho_[a-zA-Z0-9]{30,}"
            r"|github_pat_[a-zA-Z0-9_]+|AIza[a-zA-Z0-9_-]{30,}|sk_live_[a-zA-Z0-9]{20,}"
            r"|sk_test_[a-zA-Z0-9]{20,}|xoxb-[a-zA-Z0-9-]+|xoxp-[a-zA-Z0-9-]+)\b",
            re.ASCII,
        ),
    ),
    DetectionRule(
        "phone_number", "Phone number", DetectionPriority.HIGH,
        re.compile(
            r"\b(?:0[789]0[-\s]?\d{4}[-\s]?\d{4}|0\d[-\s]?\d{4}[-\s]?\d{4}|0\d{2}[-\s]?\d{3}[-\s]?\d{4}"
            r"|0\d{3}[-\s]?\d{2}[-\s]?\d{4}|0\d{4}[-\s]?\d[-\s]?\d{4})\b",
            re.ASCII,
        ),
    ),
    DetectionRule(
        "email", "Email address", DetectionPriority.HIGH,
        re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}", re.ASCII),
    ),
    DetectionRule(
        "my_number", "National ID number", DetectionPriority.HIGH,
        re.compile(r"(?:個人番号|マイナンバー|my\s*number)[^\d]{0,15}(\d{4}[\s-]?\d{4}[\s-]?\d{4})", re.IGNORECASE | re.ASCII),
        group=1,
    ),
    DetectionRule(
        "confidential_keyword", "Confidential keyword", DetectionPriority.HIGH,
        re.compile(r"(?:社外秘|極秘|部外秘|秘密|取扱注意|\bConfidential\b|\bDo\s*Not\s*Distribute\b)", re.IGNORECASE | re.ASCII),
    ),
    DetectionRule(
        "postal_code", "Postal code", DetectionPriority.MEDIUM,
        re.compile(r"(?<!\d[-ー])〒?\s?\d{3}[-ー]\d{4}(?![-ー]\d)", re.ASCII),
    ),
]

_KEY_PREFIX = re.compile(r"^(?:sk_live_|sk_test_|github_pat_|sk-|ghp_|gho_|xoxb-|xoxp-|AKIA|AIza)")

_PRIORITY_ORDER = {
    DetectionPriority.CRITICAL: 0,
    DetectionPriority.HIGH: 1,
    DetectionPriority.MEDIUM: 2,
    DetectionPriority.LOW: 3,
}


def mask_value(value: str, rule_id: str) -> str:
    """Preview form of a detected value that never shows it whole."""
    if not value:
        return ""

    if rule_id == "credit_card":
        digits = re.sub(r"[\s-]", "", value)
        if len(digits) >= 8:
            return f"{digits[:4]}-****-****-{digits[-4:]}"
        return re.sub(r"\d(?=\d{4})", "*", value)

    if rule_id == "phone_number":
        digits = re.sub(r"[-\s]", "", value)
        if len(digits) == 11:
            return re.sub(r"(\d{3})[-\s]?\d{4}[-\s]?(\d{4})", r"\1-****-\2", value, count=1)
        if len(digits) == 10:
            head = re.match(r"^(0\d{1,4})[-\s]", value)
            if head:
                return f"{head.group(1)}-****-{digits[-4:]}"
            return f"{digits[:3]}-****-{digits[-4:]}"
        return value

    if rule_id == "email":
        local, _, domain = value.partition("@")
        if len(local) <= 2:
            return f"{local[:1]}***@{domain}"
        return f"{local[:2]}***@{domain}"

    if rule_id == "my_number":
        digits = re.sub(r"\D", "", value)
        if len(digits) == 12:
            return f"{digits[:4]}-****-****"
        return re.sub(r"\d", "*", value)

    if rule_id in ("confidential_keyword", "postal_code"):
        return value

    if rule_id == "api_key":
        if len(value) > 10:
            prefix = _KEY_PREFIX.match(value)
            return f"{prefix.group(0) if prefix else value[:4]}...{value[-4:]}"
        return f"{value[:4]}..."

    return f"{value[:3]}***" if len(value) > 6 else value


class PrivacyDetector:
    """Runs the detection rules over a text."""

    def __init__(self, rules: Optional[Sequence[DetectionRule]] = None):
        self._rules = list(rules) if rules is not None else list(DETECTION_RULES)
        self._by_id: Dict[str, DetectionRule] = {r.id: r for r in self._rules}

    @property
    def rule_ids(self) -> List[str]:
        return [r.id for r in self._rules]

    def rule(self, rule_id: str) -> Optional[DetectionRule]:
        return self._by_id.get(rule_id)

    def find_spans(self, text: str) -> List[Highlight]:
        """Non-overlapping sensitive spans, sorted by position."""
        if not text:
            return []

        accepted: List[Highlight] = []
        for rule in self._rules:
            for match in rule.pattern.finditer(text):
                value = match.group(rule.group)
                if not value:
                    continue
                if rule.validator is not None and not rule.validator(value):
                    continue
                start, end = match.span(rule.group)
                if any(start < h.end and h.start < end for h in accepted):
                    continue
                accepted.append(Highlight(start=start, end=end, rule_id=rule.id, priority=rule.priority))

        accepted.sort(key=lambda h: h.start)
        return accepted

    def scan(self, text: str) -> List[Detection]:
        """Per-rule counts with masked previews, in rule order."""
        grouped: Dict[str, List[str]] = {}
        for span in self.find_spans(text):
            grouped.setdefault(span.rule_id, []).append(mask_value(text[span.start:span.end], span.rule_id))

        detections = []
        for rule in self._rules:
            masked = grouped.get(rule.id)
            if masked:
                detections.append(Detection(rule.id, rule.label, rule.priority, len(masked), masked))
        return detections

    def has_sensitive(self, text: str) -> bool:
        return bool(self.find_spans(text))


def sort_by_priority(detections: List[Detection]) -> List[Detection]:
    return sorted(detections, key=lambda d: _PRIORITY_ORDER.get(d.priority, 99))
