"""
Response assembler - Owns one in-flight turn and folds stream events into it.

Phases run awaiting-first-byte -> streaming-trace -> streaming-text -> finalizing -> complete;
``interrupted`` is reachable from any non-terminal phase through ``stop`` or ``fail``.
"""

from __future__ import annotations
import logging
import time
from typing import Callable, List, Optional, Sequence

from ..models.events import (
    NodeStarted, NodeFinished, MessageChunk, MessageEnd, WorkflowFinished, ErrorEvent,
    StreamEvent, EventEnvelope,
)
from ..models.turn import Turn, TurnRecord, TurnPhase, TurnError, Citation
from .citation_mapper import CitationMapper
from .error_analyzer import ErrorAnalyzer
from .protocol_classifier import ProtocolModeTracker
from .thought_trace import ThoughtTraceBuilder, TraceContext, DEFAULT_HIDDEN_NODE_PREFIXES

TurnListener = Callable[[Turn], None]


class ResponseAssembler:
    """Per-turn state machine driving trace, text and citation components."""

    def __init__(
        self,
        user_text: str = "",
        session_files: Optional[List[str]] = None,
        grace_ms: int = 300,
        hidden_prefixes: Sequence[str] = DEFAULT_HIDDEN_NODE_PREFIXES,
        listener: Optional[TurnListener] = None,
        clock: Callable[[], float] = time.monotonic,
        citation_mapper: Optional[CitationMapper] = None,
        error_analyzer: Optional[ErrorAnalyzer] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._logger = logger or logging.getLogger(__name__)
        self.turn = Turn(files=list(session_files or []))
        self.context = TraceContext(user_text=user_text, session_files=list(session_files or []))
        self._trace = ThoughtTraceBuilder(self.context, hidden_prefixes=hidden_prefixes, logger=self._logger)
        self._tracker = ProtocolModeTracker(grace_ms=grace_ms, clock=clock, logger=self._logger)
        self._citations = citation_mapper or CitationMapper(logger=self._logger)
        self._errors = error_analyzer or ErrorAnalyzer()
        self._listener = listener
        self._backend_citations: List[Citation] = []
        self._structured_citations: List[Citation] = []
        self._phase = TurnPhase.AWAITING_FIRST_BYTE
        self._record: Optional[TurnRecord] = None

        # the trace builder shares the turn's step list
        self.turn.thought_steps = self._trace.steps
        self.turn.node_errors = self._trace.node_errors

    @property
    def phase(self) -> TurnPhase:
        return self._phase

    @property
    def finished(self) -> bool:
        return self._phase.terminal

    # Dispatch

    def handle(self, event: StreamEvent) -> None:
        """Apply one decoded event."""
        if self.finished:
            # backend metadata may trail the finish event
            if isinstance(event, MessageEnd) and self._phase is TurnPhase.COMPLETE:
                self._capture_envelope(event.envelope)
                self._on_message_end(event)
                self._record = None
                self._notify()
                return
            self._logger.debug(f"Ignoring {event.kind.value} after turn ended")
            return

        self._capture_envelope(event.envelope)

        if isinstance(event, NodeStarted):
            self._on_node_started(event)
        elif isinstance(event, NodeFinished):
            self._on_node_finished(event)
        elif isinstance(event, MessageChunk):
            self._on_message(event)
        elif isinstance(event, MessageEnd):
            self._on_message_end(event)
        elif isinstance(event, WorkflowFinished):
            self._on_workflow_finished(event)
        elif isinstance(event, ErrorEvent):
            self._on_error(event)
        else:
            self._logger.debug(f"Unhandled event type: {type(event).__name__}")
            return

        self._notify()

    def _capture_envelope(self, envelope: EventEnvelope) -> None:
        if envelope.conversation_id and not self.turn.conversation_id:
            self.turn.conversation_id = envelope.conversation_id
        if envelope.task_id and not self.turn.task_id:
            self.turn.task_id = envelope.task_id
        if envelope.message_id and not self.turn.message_id:
            self.turn.message_id = envelope.message_id

    def _on_node_started(self, event: NodeStarted) -> None:
        if self._phase is TurnPhase.AWAITING_FIRST_BYTE:
            self._phase = TurnPhase.STREAMING_TRACE
        self._trace.on_node_started(event)
        self.turn.trace_mode = self.context.trace_mode

    def _on_node_finished(self, event: NodeFinished) -> None:
        if self._phase is TurnPhase.AWAITING_FIRST_BYTE:
            self._phase = TurnPhase.STREAMING_TRACE
        self._trace.on_node_finished(event)

    def _on_message(self, event: MessageChunk) -> None:
        if not event.answer:
            return
        self._phase = TurnPhase.STREAMING_TEXT
        self.turn.raw_text += event.answer
        update = self._tracker.observe(self.turn.raw_text)
        self.turn.protocol_mode = update.mode
        if not update.suppressed:
            self.turn.display_text = update.text
            if update.thinking:
                self.turn.thinking = update.thinking

    def _on_message_end(self, event: MessageEnd) -> None:
        self._backend_citations = self._citations.map_retriever_resources(event.retriever_resources)
        if self._backend_citations and not self._structured_citations:
            self.turn.citations = list(self._backend_citations)

    def _on_workflow_finished(self, event: WorkflowFinished) -> None:
        self._phase = TurnPhase.FINALIZING
        self._settle_text()
        self._trace.finalize(completed=not event.failed)

        if event.failed:
            message = event.error or f"Workflow ended with status {event.status}"
            self._logger.error(f"Workflow failed: {message}")
            self.turn.error = self._build_error(message, node_title=self._last_failed_node())

        self._close(TurnPhase.COMPLETE)

    def _on_error(self, event: ErrorEvent) -> None:
        message = event.message or event.code or "The backend reported an error"
        self._logger.error(f"Stream error event: {event.code or '-'} {message}")
        label = message if event.status is None else f"{event.status}: {message}"
        self._interrupt(self._build_error(label, node_title=self._last_failed_node()))

    # Termination

    def stop(self) -> TurnRecord:
        """Finalize from partial state because the user stopped the turn."""
        if not self.finished:
            self.turn.was_stopped = True
            self._interrupt(None)
            self._notify()
        return self.record()

    def fail(self, error: object) -> TurnRecord:
        """Finalize after a transport failure."""
        if not self.finished:
            self._logger.error(f"Stream transport failed: {error}")
            self._interrupt(self._build_error(error))
            self._notify()
        return self.record()

    def _interrupt(self, error: Optional[TurnError]) -> None:
        self._settle_text()
        self._trace.finalize(completed=False)
        self.turn.error = error
        self._close(TurnPhase.INTERRUPTED)

    def end_of_stream(self) -> TurnRecord:
        """Called when the reader is exhausted; finishes implicitly if no finish event arrived."""
        if not self.finished:
            self._logger.warning("Stream ended without workflow_finished; finalizing from received data")
            self._phase = TurnPhase.FINALIZING
            self._settle_text()
            self._trace.finalize(completed=True)
            self._close(TurnPhase.COMPLETE)
            self._notify()
        return self.record()

    def record(self) -> TurnRecord:
        """Immutable record of a finished turn."""
        if not self.finished:
            raise RuntimeError("turn is still streaming")
        if self._record is None:
            self._record = self.turn.freeze()
        return self._record

    # Internals

    def _settle_text(self) -> None:
        """Final full extraction over the complete raw buffer."""
        response = self._tracker.finalize(self.turn.raw_text)
        self.turn.protocol_mode = self._tracker.mode
        self.turn.display_text = response.answer
        if response.thinking:
            self.turn.thinking = response.thinking
        if response.smart_actions:
            self.turn.smart_actions = list(response.smart_actions)

        self._structured_citations = self._citations.map_llm_citations(
            response.citations, session_files=self.context.session_files
        )
        self.turn.citations = self._citations.merge(self._structured_citations, self._backend_citations)

    def _close(self, phase: TurnPhase) -> None:
        self.turn.streaming = False
        self.turn.trace_mode = self.context.trace_mode
        self._phase = phase

    def _last_failed_node(self) -> Optional[str]:
        return self._trace.node_errors[-1].title if self._trace.node_errors else None

    def _build_error(self, raw: object, node_title: Optional[str] = None) -> TurnError:
        summary = self._errors.analyze(raw)
        return TurnError(
            title=summary.title,
            message=str(raw),
            kind=summary.kind.value,
            node_title=node_title,
            retryable=summary.retryable,
        )

    def _notify(self) -> None:
        if self._listener is not None:
            self._listener(self.turn)
