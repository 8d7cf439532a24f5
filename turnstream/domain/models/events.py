"""
Stream event models - Typed view of the records emitted by the workflow backend.

Each record on the wire is a JSON object with an ``event`` discriminator. The
decoder turns the six kinds the engine understands into one of the dataclasses
below; ``StreamEvent`` is the union the assembler dispatches on.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union
from enum import Enum


class EventKind(Enum):
    """Event discriminator values."""
    NODE_STARTED = "node_started"
    NODE_FINISHED = "node_finished"
    MESSAGE = "message"
    MESSAGE_END = "message_end"
    WORKFLOW_FINISHED = "workflow_finished"
    ERROR = "error"


# node/workflow statuses that count as a failure
FAILED_STATUSES = frozenset({"failed", "exception"})


@dataclass(frozen=True)
class EventEnvelope:
    """Fields shared by every record."""
    task_id: Optional[str] = None
    message_id: Optional[str] = None
    conversation_id: Optional[str] = None
    created_at: Optional[int] = None


@dataclass(frozen=True)
class NodeStarted:
    envelope: EventEnvelope
    node_id: Optional[str] = None
    node_type: Optional[str] = None
    title: Optional[str] = None
    inputs: Dict[str, Any] = field(default_factory=dict)
    index: Optional[int] = None

    kind = EventKind.NODE_STARTED


@dataclass(frozen=True)
class NodeFinished:
    envelope: EventEnvelope
    node_id: Optional[str] = None
    node_type: Optional[str] = None
    title: Optional[str] = None
    status: Optional[str] = None
    outputs: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    elapsed_time: Optional[float] = None

    kind = EventKind.NODE_FINISHED

    @property
    def failed(self) -> bool:
        return (self.status or "").lower() in FAILED_STATUSES or bool(self.error)


@dataclass(frozen=True)
class MessageChunk:
    envelope: EventEnvelope
    answer: str = ""

    kind = EventKind.MESSAGE


@dataclass(frozen=True)
class MessageEnd:
    envelope: EventEnvelope
    retriever_resources: List[Dict[str, Any]] = field(default_factory=list)
    usage: Dict[str, Any] = field(default_factory=dict)

    kind = EventKind.MESSAGE_END


@dataclass(frozen=True)
class WorkflowFinished:
    envelope: EventEnvelope
    status: Optional[str] = None
    error: Optional[str] = None
    outputs: Dict[str, Any] = field(default_factory=dict)

    kind = EventKind.WORKFLOW_FINISHED

    @property
    def failed(self) -> bool:
        return (self.status or "").lower() in FAILED_STATUSES or bool(self.error)


@dataclass(frozen=True)
class ErrorEvent:
    envelope: EventEnvelope
    status: Optional[int] = None
    code: Optional[str] = None
    message: str = ""

    kind = EventKind.ERROR


StreamEvent = Union[NodeStarted, NodeFinished, MessageChunk, MessageEnd, WorkflowFinished, ErrorEvent]
