"""
Thought trace builder - Turns backend node lifecycle events into an ordered, display-ready trace.

Node titles are resolved through ``NODE_DISPLAY_MAP``; some entries are dynamic and
interpolate a query or file name recovered from the node inputs, from values captured
earlier in the same turn (``TraceContext``) or from the user's own text.
"""

from __future__ import annotations
import json
import logging
import re
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional, Sequence

from ..models.events import NodeStarted, NodeFinished
from ..models.turn import (
    ThoughtStep, StepStatus, RenderMode, TraceMode, ResultPair, NodeError,
)
from .partial_json import extract_json_from_llm_output


@dataclass(frozen=True)
class NodeDisplay:
    """Static display entry for a known node title."""
    title: str
    icon: str
    dynamic: Optional[str] = None


GENERATION_TITLE = "Organizing information and generating the answer..."
GENERATION_DONE_TITLE = "Answer generation complete"

NODE_DISPLAY_MAP: Dict[str, NodeDisplay] = {
    # query handling
    "LLM_Query_Rewrite": NodeDisplay("Clarifying the key points of the question...", "reasoning"),
    "LLM_Intent_Analysis": NodeDisplay("Analyzing the intent of the question...", "router"),
    "Query Rewriter": NodeDisplay("Clarifying the key points of the question...", "reasoning"),
    "Intent Classifier": NodeDisplay("Analyzing the intent of the question...", "router"),
    # answer generation, efficient style
    "LLM_Hybrid_Efficient": NodeDisplay("Combining sources and generating the answer...", "writing"),
    "LLM_Doc_Efficient": NodeDisplay("Analyzing the document and generating the answer...", "writing"),
    "LLM_Search_Efficient": NodeDisplay("Generating the answer from search results...", "writing"),
    "LLM_General_Efficient": NodeDisplay("Generating the answer...", "writing"),
    "LLM_Chat_Efficient": NodeDisplay("Preparing a reply...", "writing"),
    "LLM_Fast_Doc_Efficient": NodeDisplay("Quickly analyzing the document...", "writing"),
    "LLM_Fast_General_Efficient": NodeDisplay("Generating a quick answer...", "writing"),
    # answer generation, partner style
    "LLM_Hybrid_Partner": NodeDisplay("Combining sources and generating the answer...", "writing"),
    "LLM_Doc_Partner": NodeDisplay("Analyzing the document and generating the answer...", "writing"),
    "LLM_Search_Partner": NodeDisplay("Generating the answer from search results...", "writing"),
    "LLM_General_Partner": NodeDisplay("Generating the answer...", "writing"),
    "LLM_Chat_Partner": NodeDisplay("Preparing a reply...", "writing"),
    "LLM_Fast_Doc_Partner": NodeDisplay("Quickly analyzing the document...", "writing"),
    "LLM_Fast_General_Partner": NodeDisplay("Generating a quick answer...", "writing"),
    # tools
    "TOOL_Doc_Extractor": NodeDisplay("Analyzing the document...", "document", dynamic="document"),
    "TOOL_Perplexity_Search": NodeDisplay("Searching the web...", "search", dynamic="search"),
}

DEFAULT_HIDDEN_NODE_PREFIXES = (
    "GATE_", "ROUTER_", "STYLE_Check_", "SET_", "CLEAR_", "CODE_", "ANSWER_", "Check ",
)

QUERY_REWRITE_NODES = frozenset({"LLM_Query_Rewrite", "Query Rewriter"})
INTENT_ANALYSIS_NODES = frozenset({"LLM_Intent_Analysis", "Intent Classifier"})

# Render rules
SILENT_PATTERNS = (
    re.compile(r"final_response", re.IGNORECASE),
    re.compile(r"parameter_extraction", re.IGNORECASE),
)
ACTION_TYPES = frozenset({
    "tool", "knowledge-retrieval", "retriever", "search", "request",
    "document-extractor", "llm", "http-request", "iteration", "writing",
})
ACTION_TITLE_KEYWORDS = ("Search", "Searching", "Tool", "Retrieving", "Fetching", "HTTP", "knowledge")

# (emoji, label) per intent category; SEARCH..HYBRID are the legacy vocabulary
INTENT_CATEGORIES = {
    "TASK": ("🛠️", "Task execution"),
    "CHAT": ("💬", "Small talk"),
    "QUESTION": ("❓", "Question answering"),
    "ANALYSIS": ("📊", "Analysis"),
    "SEARCH": ("🔍", "Web search"),
    "LOGICAL": ("🧠", "Reasoned answer"),
    "ANSWER": ("💡", "Built-in knowledge"),
    "HYBRID": ("🔍", "Hybrid search"),
}
SEARCH_POLICIES = {
    "rag_web": "🔍 Checking internal data and the web",
    "rag_only": "📁 Checking internal data",
    "web_only": "🌐 Looking for information on the web",
    "none": "💡 Answering directly",
}
LEGACY_INTENT_ORDER = ("SEARCH", "CHAT", "LOGICAL", "ANSWER", "HYBRID", "TASK")


def determine_render_mode(step: ThoughtStep) -> RenderMode:
    """Pick how a step is presented from its status, titles, kind and icon."""
    if step.status is StepStatus.ERROR:
        return RenderMode.ACTION

    titles = [t for t in (step.title, step.source_title) if t]
    if any(p.search(t) for p in SILENT_PATTERNS for t in titles):
        return RenderMode.SILENT

    if (step.node_type or "") in ACTION_TYPES or step.icon in ACTION_TYPES:
        return RenderMode.ACTION
    if any(k in step.title for k in ACTION_TITLE_KEYWORDS):
        return RenderMode.ACTION
    return RenderMode.MONOLOGUE


def intent_display(category: Optional[str], requires_rag=None, requires_web=None):
    """Return (title, search policy or None) for an intent decision."""
    emoji, label = INTENT_CATEGORIES.get((category or "").upper(), ("🤖", "Processing"))
    title = f"{emoji} {label}"
    if requires_rag is None and requires_web is None:
        return title, None
    if requires_rag and requires_web:
        key = "rag_web"
    elif requires_rag:
        key = "rag_only"
    elif requires_web:
        key = "web_only"
    else:
        key = "none"
    return title, SEARCH_POLICIES[key]


@dataclass
class TraceContext:
    """Turn-scoped values shared between nodes; one instance per turn."""
    user_text: str = ""
    session_files: List[str] = field(default_factory=list)
    optimized_query: Optional[str] = None
    target_domains: List[str] = field(default_factory=list)
    intent: Optional[str] = None
    trace_mode: TraceMode = TraceMode.KNOWLEDGE
    _open_by_title: Dict[str, Deque[str]] = field(default_factory=dict)
    _sequence: int = 0

    def synthesize_id(self, title: Optional[str]) -> str:
        self._sequence += 1
        return f"node_{title or 'untitled'}_{self._sequence}"

    def remember_started(self, title: Optional[str], node_id: str) -> None:
        self._open_by_title.setdefault(title or "", deque()).append(node_id)

    def pair_finished(self, title: Optional[str]) -> Optional[str]:
        """Oldest still-open node id started under ``title``."""
        pending = self._open_by_title.get(title or "")
        if pending:
            return pending.popleft()
        return None

    def forget(self, title: Optional[str], node_id: str) -> None:
        pending = self._open_by_title.get(title or "")
        if pending and node_id in pending:
            pending.remove(node_id)


class ThoughtTraceBuilder:
    """Maintains the ordered trace for one turn."""

    def __init__(
        self,
        context: Optional[TraceContext] = None,
        hidden_prefixes: Sequence[str] = DEFAULT_HIDDEN_NODE_PREFIXES,
        logger: Optional[logging.Logger] = None,
    ):
        self.context = context or TraceContext()
        self._hidden_prefixes = tuple(hidden_prefixes)
        self._logger = logger or logging.getLogger(__name__)
        self._steps: List[ThoughtStep] = []
        self._by_id: Dict[str, ThoughtStep] = {}
        self._hidden_ids: set = set()
        self.node_errors: List[NodeError] = []

    @property
    def steps(self) -> List[ThoughtStep]:
        return self._steps

    def get(self, node_id: str) -> Optional[ThoughtStep]:
        return self._by_id.get(node_id)

    def is_hidden(self, title: Optional[str]) -> bool:
        return bool(title) and any(title.startswith(p) for p in self._hidden_prefixes)

    # Node lifecycle

    def on_node_started(self, event: NodeStarted) -> Optional[ThoughtStep]:
        """Materialize a step for a visible node; hidden and unknown nodes yield None."""
        title = event.title
        node_id = event.node_id or self.context.synthesize_id(title)

        if self.is_hidden(title):
            self._hidden_ids.add(node_id)
            self.context.remember_started(title, node_id)
            self._logger.debug(f"Hidden node skipped: {title}")
            return None

        if node_id in self._by_id:
            self._logger.debug(f"Duplicate node_started for {node_id}")
            return self._by_id[node_id]

        resolved = self._resolve_display(title, event.node_type, event.inputs)
        self.context.remember_started(title, node_id)
        if resolved is None:
            self._logger.debug(f"Node without display entry: {title} ({event.node_type})")
            return None

        display_title, icon, trace_mode = resolved
        if trace_mode is not None:
            self.context.trace_mode = trace_mode

        step = ThoughtStep(
            node_id=node_id,
            title=display_title,
            icon=icon,
            node_type=event.node_type,
            source_title=title,
        )
        step.render_mode = determine_render_mode(step)
        self._steps.append(step)
        self._by_id[node_id] = step
        return step

    def on_node_finished(self, event: NodeFinished) -> Optional[ThoughtStep]:
        """Close the matching step and capture turn-scoped outputs."""
        node_id = self._match_finished(event)
        step = self._by_id.get(node_id) if node_id else None
        title = event.title or (step.source_title if step else None)

        if event.failed:
            return self._fail(node_id, step, title, event.error)

        if title in QUERY_REWRITE_NODES:
            self._capture_query_rewrite(step, event.outputs)
        elif title in INTENT_ANALYSIS_NODES:
            self._capture_intent(step, event.outputs)

        if step is not None and step.status is StepStatus.PROCESSING:
            step.status = StepStatus.DONE
        return step

    def finalize(self, completed: bool = True) -> None:
        """Force-close any open step; on completion retitle the generation step."""
        for step in self._steps:
            if step.status is StepStatus.PROCESSING:
                step.status = StepStatus.DONE
            if completed and step.title == GENERATION_TITLE:
                step.title = GENERATION_DONE_TITLE
                step.icon = "check"

    # Internals

    def _match_finished(self, event: NodeFinished) -> Optional[str]:
        if event.node_id:
            self.context.forget(event.title, event.node_id)
            return event.node_id
        return self.context.pair_finished(event.title)

    def _fail(self, node_id, step, title, error) -> Optional[ThoughtStep]:
        message = error or "The node reported a failure"
        display = title or (step.title if step else None) or node_id or "unknown node"
        self._logger.warning(f"Node failed: {display}: {message}")
        self.node_errors.append(NodeError(node_id=node_id or "", title=display, message=message))
        if step is None:
            return None
        step.status = StepStatus.ERROR
        step.error_message = message
        step.render_mode = RenderMode.ACTION
        return step

    def _resolve_display(self, title, node_type, inputs):
        """Return (display title, icon, trace mode or None), or None for nodes not shown."""
        mapping = NODE_DISPLAY_MAP.get(title) if title else None
        if mapping is not None:
            if mapping.dynamic == "document":
                return f'Analyzing document "{self._file_name_for(inputs)}"', mapping.icon, TraceMode.DOCUMENT
            if mapping.dynamic == "search":
                return f'Searching the web for: "{self._query_for(inputs)}"', mapping.icon, TraceMode.SEARCH
            return mapping.title, mapping.icon, None

        if node_type == "document-extractor":
            return f'Analyzing document "{self._file_name_for(inputs)}"', "document", TraceMode.DOCUMENT
        if node_type == "tool" and title and "Perplexity" in title:
            return f'Searching the web for: "{self._query_for(inputs)}"', "search", TraceMode.SEARCH
        if node_type == "knowledge-retrieval" or (title and "Knowledge" in title):
            query = inputs.get("query") or self.context.optimized_query
            display = f'Searching internal knowledge for: "{query}"' if query else "Searching the internal knowledge base..."
            return display, "retrieval", TraceMode.KNOWLEDGE
        if node_type == "llm":
            return GENERATION_TITLE, "writing", None
        return None

    def _query_for(self, inputs) -> str:
        return inputs.get("query") or self.context.optimized_query or self.context.user_text

    def _file_name_for(self, inputs) -> str:
        if inputs.get("target_file"):
            return str(inputs["target_file"])

        files = self.context.session_files
        serialized = json.dumps(inputs, ensure_ascii=False, default=str)
        for name in files:
            if name and name in serialized:
                return name
        if len(files) == 1:
            return files[0]
        if len(files) > 1:
            return f"{len(files)} files"
        return "attached file"

    def _capture_query_rewrite(self, step: Optional[ThoughtStep], outputs) -> None:
        raw_text = outputs.get("text")
        parsed = extract_json_from_llm_output(raw_text)
        if parsed:
            query = parsed.get("optimized_query") or ""
            domains = parsed.get("target_domains") or []
            if not isinstance(domains, list):
                domains = [domains]
            self.context.optimized_query = str(query) or None
            self.context.target_domains = [str(d) for d in domains]
            self._logger.debug(f"Captured optimized query: {query!r}, domains: {domains}")
            if step is not None:
                step.monologue = str(parsed.get("thinking") or "")
                step.result_label = "Optimized query"
                step.result_value = str(query)
                step.additional_results = (
                    [ResultPair("Target domains", ", ".join(self.context.target_domains))]
                    if self.context.target_domains else []
                )
        elif isinstance(raw_text, str) and raw_text.strip():
            self._logger.debug("Query rewrite returned plain text; using it as the optimized query")
            self.context.optimized_query = raw_text.strip()

    def _capture_intent(self, step: Optional[ThoughtStep], outputs) -> None:
        raw_text = outputs.get("text")
        parsed = extract_json_from_llm_output(raw_text)
        if parsed:
            category = parsed.get("category")
            self.context.intent = str(category).upper() if category else None
            title, policy = intent_display(category, parsed.get("requires_rag"), parsed.get("requires_web"))
            confidence = parsed.get("confidence")
            if step is not None:
                step.title = f"Decision: {title}"
                step.monologue = str(parsed.get("thinking") or "")
                step.result_label = "Search policy"
                step.result_value = policy or (f"{title} (confidence: {confidence})" if confidence else title)
        elif isinstance(raw_text, str) and raw_text.strip():
            decision = raw_text.strip().upper()
            for category in LEGACY_INTENT_ORDER:
                if category in decision:
                    self.context.intent = category
                    if step is not None:
                        emoji, label = INTENT_CATEGORIES[category]
                        step.title = f"Decision: {emoji} {label} mode"
                    break
