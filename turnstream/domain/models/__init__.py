"""Domain models package."""

from .turn import (
    Role,
    ProtocolMode,
    TraceMode,
    StepStatus,
    RenderMode,
    CitationCategory,
    TurnPhase,
    ResultPair,
    ThoughtStep,
    Citation,
    SuggestedAction,
    NodeError,
    TurnError,
    Turn,
    TurnRecord,
)
from .events import (
    EventKind,
    EventEnvelope,
    NodeStarted,
    NodeFinished,
    MessageChunk,
    MessageEnd,
    WorkflowFinished,
    ErrorEvent,
    StreamEvent,
)
from .vault import DetectionPriority, Highlight, Detection, VaultEntry, SanitizeResult

__all__ = [
    "Role",
    "ProtocolMode",
    "TraceMode",
    "StepStatus",
    "RenderMode",
    "CitationCategory",
    "TurnPhase",
    "ResultPair",
    "ThoughtStep",
    "Citation",
    "SuggestedAction",
    "NodeError",
    "TurnError",
    "Turn",
    "TurnRecord",
    "EventKind",
    "EventEnvelope",
    "NodeStarted",
    "NodeFinished",
    "MessageChunk",
    "MessageEnd",
    "WorkflowFinished",
    "ErrorEvent",
    "StreamEvent",
    "DetectionPriority",
    "Highlight",
    "Detection",
    "VaultEntry",
    "SanitizeResult",
]
