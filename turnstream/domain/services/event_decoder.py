"""
Event decoder - Turns one framed record into a typed stream event.
Malformed or unknown records degrade to ``None``; they never abort a turn.
"""

from __future__ import annotations
import json
import logging
from typing import Any, Dict, Optional

from ..models.events import (
    EventEnvelope, NodeStarted, NodeFinished, MessageChunk, MessageEnd,
    WorkflowFinished, ErrorEvent, StreamEvent,
)
from .line_framer import DATA_PREFIX


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


class EventDecoder:
    """Parses ``data:`` records into the event union."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self._logger = logger or logging.getLogger(__name__)

    def decode(self, record: str) -> Optional[StreamEvent]:
        """Decode a record; returns None for comments, unknown kinds and garbage."""
        payload = self._extract_payload(record)
        if payload is None:
            self._logger.debug("Skipping record without data field")
            return None

        try:
            data = json.loads(payload)
        except ValueError as e:
            self._logger.warning(f"Unparseable stream record skipped: {e}")
            return None
        if not isinstance(data, dict):
            self._logger.warning(f"Stream record is not an object: {type(data).__name__}")
            return None

        return self.from_dict(data)

    def from_dict(self, data: Dict[str, Any]) -> Optional[StreamEvent]:
        """Build a typed event from an already parsed record."""
        kind = data.get("event")
        envelope = EventEnvelope(
            task_id=_as_text(data.get("task_id")),
            message_id=_as_text(data.get("message_id") or data.get("id")),
            conversation_id=_as_text(data.get("conversation_id")),
            created_at=data.get("created_at"),
        )
        body = _as_dict(data.get("data"))

        if kind == "node_started":
            return NodeStarted(
                envelope=envelope,
                node_id=_as_text(body.get("node_id")),
                node_type=_as_text(body.get("node_type")),
                title=_as_text(body.get("title")),
                inputs=_as_dict(body.get("inputs")),
                index=body.get("index"),
            )
        if kind == "node_finished":
            return NodeFinished(
                envelope=envelope,
                node_id=_as_text(body.get("node_id")),
                node_type=_as_text(body.get("node_type")),
                title=_as_text(body.get("title")),
                status=_as_text(body.get("status")),
                outputs=_as_dict(body.get("outputs")),
                error=_as_text(body.get("error")) or None,
                elapsed_time=body.get("elapsed_time"),
            )
        if kind in ("message", "agent_message"):
            return MessageChunk(envelope=envelope, answer=_as_text(data.get("answer")) or "")
        if kind == "message_end":
            metadata = _as_dict(data.get("metadata"))
            resources = metadata.get("retriever_resources")
            return MessageEnd(
                envelope=envelope,
                retriever_resources=[r for r in resources if isinstance(r, dict)] if isinstance(resources, list) else [],
                usage=_as_dict(metadata.get("usage")),
            )
        if kind == "workflow_finished":
            return WorkflowFinished(
                envelope=envelope,
                status=_as_text(body.get("status")),
                error=_as_text(body.get("error")) or None,
                outputs=_as_dict(body.get("outputs")),
            )
        if kind == "error":
            status = data.get("status")
            return ErrorEvent(
                envelope=envelope,
                status=status if isinstance(status, int) else None,
                code=_as_text(data.get("code")),
                message=_as_text(data.get("message")) or "",
            )

        self._logger.debug(f"Ignoring stream event: {kind}")
        return None

    @staticmethod
    def _extract_payload(record: str) -> Optional[str]:
        lines = [
            line[len(DATA_PREFIX):].lstrip(" ")
            for line in record.split("\n")
            if line.startswith(DATA_PREFIX)
        ]
        if not lines:
            return None
        return "\n".join(lines)
