"""Domain services - the streaming protocol engine and the privacy vault."""

from .line_framer import LineFramer
from .event_decoder import EventDecoder
from .partial_json import (
    PartialFieldExtractor,
    StructuredResponse,
    extract_partial_field,
    parse_structured_response,
    extract_json_from_llm_output,
)
from .protocol_classifier import ProtocolModeClassifier, ProtocolModeTracker, DisplayUpdate
from .thought_trace import ThoughtTraceBuilder, TraceContext, determine_render_mode
from .citation_mapper import CitationMapper, resolve_inline_references
from .response_assembler import ResponseAssembler
from .privacy_detector import PrivacyDetector, mask_value
from .privacy_vault import PrivacyVault
from .error_analyzer import ErrorAnalyzer, ErrorKind, ErrorSummary

__all__ = [
    "LineFramer",
    "EventDecoder",
    "PartialFieldExtractor",
    "StructuredResponse",
    "extract_partial_field",
    "parse_structured_response",
    "extract_json_from_llm_output",
    "ProtocolModeClassifier",
    "ProtocolModeTracker",
    "DisplayUpdate",
    "ThoughtTraceBuilder",
    "TraceContext",
    "determine_render_mode",
    "CitationMapper",
    "resolve_inline_references",
    "ResponseAssembler",
    "PrivacyDetector",
    "mask_value",
    "PrivacyVault",
    "ErrorAnalyzer",
    "ErrorKind",
    "ErrorSummary",
]
