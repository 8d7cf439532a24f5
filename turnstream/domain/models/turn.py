"""
Turn domain models - One request/response exchange and the pieces it is built from.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import List, Dict, Any, Optional, Tuple
from datetime import datetime
from enum import Enum
import uuid


class Role(Enum):
    """Author of a turn."""
    USER = "user"
    ASSISTANT = "assistant"


class ProtocolMode(Enum):
    """How the accumulated answer text is interpreted."""
    PENDING = "pending"
    JSON = "json"
    RAW = "raw"


class TraceMode(Enum):
    """Coarse label for where the answer came from."""
    KNOWLEDGE = "knowledge"
    SEARCH = "search"
    DOCUMENT = "document"


class StepStatus(Enum):
    """Lifecycle of one backend node as shown in the trace."""
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"


class RenderMode(Enum):
    """How a trace step should be presented."""
    SILENT = "silent"
    ACTION = "action"
    MONOLOGUE = "monologue"


class CitationCategory(Enum):
    """Kind of source a citation points to."""
    WEB = "web"
    RAG = "rag"
    DOCUMENT = "document"


class TurnPhase(Enum):
    """Lifecycle of an assistant turn while it is being assembled."""
    AWAITING_FIRST_BYTE = "awaiting-first-byte"
    STREAMING_TRACE = "streaming-trace"
    STREAMING_TEXT = "streaming-text"
    FINALIZING = "finalizing"
    COMPLETE = "complete"
    INTERRUPTED = "interrupted"

    @property
    def terminal(self) -> bool:
        return self in (TurnPhase.COMPLETE, TurnPhase.INTERRUPTED)


@dataclass(frozen=True)
class ResultPair:
    """Secondary label/value shown under a trace step."""
    label: str
    value: str


@dataclass
class ThoughtStep:
    """Visible lifecycle of one backend processing node."""
    node_id: str
    title: str
    icon: str = "default"
    status: StepStatus = StepStatus.PROCESSING
    node_type: Optional[str] = None
    source_title: Optional[str] = None
    monologue: str = ""
    result_label: Optional[str] = None
    result_value: Optional[str] = None
    additional_results: List[ResultPair] = field(default_factory=list)
    error_message: Optional[str] = None
    render_mode: RenderMode = RenderMode.ACTION

    @property
    def finished(self) -> bool:
        return self.status is not StepStatus.PROCESSING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.node_id,
            "title": self.title,
            "icon": self.icon,
            "status": self.status.value,
            "thinking": self.monologue,
            "resultLabel": self.result_label,
            "resultValue": self.result_value,
            "additionalResults": [{"label": p.label, "value": p.value} for p in self.additional_results],
            "errorMessage": self.error_message,
            "renderMode": self.render_mode.value,
        }


@dataclass(frozen=True)
class Citation:
    """One source reference with its 1-based display index."""
    index: int
    category: CitationCategory
    label: str
    url: Optional[str] = None
    source_id: Optional[str] = None

    @property
    def display_label(self) -> str:
        return f"[{self.index}] {self.label}"


@dataclass(frozen=True)
class SuggestedAction:
    """Follow-up action proposed by the model."""
    label: str
    action: str
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> Optional[SuggestedAction]:
        """Build from an envelope entry; entries without a label are dropped."""
        if isinstance(data, str):
            return cls(label=data, action=data)
        if not isinstance(data, dict):
            return None
        label = data.get("label") or data.get("title")
        if not label:
            return None
        action = data.get("action") or data.get("prompt") or label
        extra = {k: v for k, v in data.items() if k not in ("label", "action")}
        return cls(label=str(label), action=str(action), extra=extra)


@dataclass(frozen=True)
class NodeError:
    """A single failed backend node surfaced on the turn."""
    node_id: str
    title: str
    message: str


@dataclass(frozen=True)
class TurnError:
    """User-facing error summary attached to a turn."""
    title: str
    message: str
    kind: str = "UNKNOWN"
    node_title: Optional[str] = None
    retryable: bool = True


@dataclass
class Turn:
    """Mutable, in-flight turn owned by the assembler."""
    role: Role = Role.ASSISTANT
    id: str = field(default_factory=lambda: f"msg_{uuid.uuid4().hex[:12]}")
    raw_text: str = ""
    display_text: str = ""
    thinking: str = ""
    thought_steps: List[ThoughtStep] = field(default_factory=list)
    citations: List[Citation] = field(default_factory=list)
    smart_actions: List[SuggestedAction] = field(default_factory=list)
    streaming: bool = True
    protocol_mode: ProtocolMode = ProtocolMode.PENDING
    trace_mode: TraceMode = TraceMode.KNOWLEDGE
    node_errors: List[NodeError] = field(default_factory=list)
    error: Optional[TurnError] = None
    was_stopped: bool = False
    conversation_id: Optional[str] = None
    message_id: Optional[str] = None
    task_id: Optional[str] = None
    files: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)

    def visible_steps(self) -> List[ThoughtStep]:
        return [s for s in self.thought_steps if s.render_mode is not RenderMode.SILENT]

    def freeze(self, suggestions: Optional[List[str]] = None) -> TurnRecord:
        """Detach an immutable record from the in-flight state."""
        return TurnRecord(
            id=self.id,
            role=self.role,
            raw_text=self.raw_text,
            text=self.display_text,
            thinking=self.thinking,
            thought_steps=tuple(replace(s, additional_results=list(s.additional_results)) for s in self.thought_steps),
            citations=tuple(self.citations),
            smart_actions=tuple(self.smart_actions),
            suggestions=tuple(suggestions or ()),
            protocol_mode=self.protocol_mode,
            trace_mode=self.trace_mode,
            node_errors=tuple(self.node_errors),
            error=self.error,
            was_stopped=self.was_stopped,
            conversation_id=self.conversation_id,
            message_id=self.message_id,
            task_id=self.task_id,
            files=tuple(self.files),
            created_at=self.created_at,
        )


@dataclass(frozen=True)
class TurnRecord:
    """Finalized turn as stored in conversation history."""
    id: str
    role: Role
    text: str
    raw_text: str = ""
    thinking: str = ""
    thought_steps: Tuple[ThoughtStep, ...] = ()
    citations: Tuple[Citation, ...] = ()
    smart_actions: Tuple[SuggestedAction, ...] = ()
    suggestions: Tuple[str, ...] = ()
    protocol_mode: ProtocolMode = ProtocolMode.RAW
    trace_mode: TraceMode = TraceMode.KNOWLEDGE
    node_errors: Tuple[NodeError, ...] = ()
    error: Optional[TurnError] = None
    was_stopped: bool = False
    conversation_id: Optional[str] = None
    message_id: Optional[str] = None
    task_id: Optional[str] = None
    files: Tuple[str, ...] = ()
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def failed(self) -> bool:
        return self.error is not None

    def with_suggestions(self, suggestions: List[str]) -> TurnRecord:
        return replace(self, suggestions=tuple(suggestions))
