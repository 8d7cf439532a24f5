"""
CLI presentation layer - Plain terminal interface over the chat service.
Renders text deltas and trace transitions as a turn streams in.
"""

from __future__ import annotations
import asyncio
import logging
import signal
import sys
from typing import Dict, List, Optional

from ..application.chat_service import ChatService
from ..domain.interfaces.chat_backend import UploadedFile
from ..domain.models.turn import Role, StepStatus, Turn, TurnRecord
from ..domain.services.error_analyzer import ErrorAnalyzer
from ..infrastructure.config.settings import AppSettings
from ..utils import ConfigurationError, TurnstreamError, truncate_text

_STATUS_MARKS = {
    StepStatus.PROCESSING: "…",
    StepStatus.DONE: "✓",
    StepStatus.ERROR: "✗",
}


class TurnRenderer:
    """Prints one streaming turn incrementally."""

    def __init__(self, chat_service: ChatService, show_trace: bool = False, quiet: bool = False, out=None):
        self._chat_service = chat_service
        self._show_trace = show_trace
        self._quiet = quiet
        self._out = out or sys.stdout
        self._printed = ""
        self._step_status: Dict[str, StepStatus] = {}
        self._line_open = False

    def _write(self, text: str) -> None:
        self._out.write(text)
        self._out.flush()

    def on_update(self, turn: Turn) -> None:
        if self._show_trace and not self._quiet:
            self._render_steps(turn)

        text = self._chat_service.restore_text(turn.display_text)
        if text.startswith(self._printed):
            delta = text[len(self._printed):]
        else:
            # the visible text was re-derived (e.g. the answer turned out to be JSON)
            delta = "\n" + text
        if delta:
            if not self._line_open and not self._quiet:
                self._write("Assistant: ")
            self._line_open = True
            self._write(delta)
        self._printed = text

    def _render_steps(self, turn: Turn) -> None:
        for step in turn.visible_steps():
            previous = self._step_status.get(step.node_id)
            if previous is step.status:
                continue
            self._step_status[step.node_id] = step.status
            if self._line_open:
                self._write("\n")
                self._line_open = False
            line = f"  {_STATUS_MARKS[step.status]} {step.title}"
            if step.status is StepStatus.DONE and step.result_value:
                line += f" → {step.result_label or 'Result'}: {step.result_value}"
            if step.status is StepStatus.ERROR and step.error_message:
                line += f" ({step.error_message})"
            self._write(line + "\n")

    def finish(self, record: TurnRecord, analyzer: ErrorAnalyzer) -> None:
        """Print the trailing sections of a finished turn."""
        restore = self._chat_service.restore_text
        final_text = restore(record.text)
        if final_text != self._printed:
            # final extraction may differ from the streamed view
            if self._printed and final_text.startswith(self._printed):
                self._write(final_text[len(self._printed):])
            else:
                if self._line_open:
                    self._write("\n")
                self._write(("" if self._quiet else "Assistant: ") + final_text)
            self._line_open = True
            self._printed = final_text
        if self._line_open:
            self._write("\n")
            self._line_open = False

        if record.was_stopped:
            self._write("⏹️  Stopped\n")
        for node_error in record.node_errors:
            self._write(f"⚠️  {node_error.title}: {node_error.message}\n")
        if record.error is not None:
            summary = analyzer.analyze(record.error.message)
            where = f" [{record.error.node_title}]" if record.error.node_title else ""
            self._write(f"❌ {record.error.title}{where}: {record.error.message}\n   {summary.description}\n")

        if self._quiet:
            return
        if self._show_trace and record.thinking:
            self._write(f"\n💭 {truncate_text(restore(record.thinking), 500)}\n")
        if record.citations:
            self._write("\n📚 Sources:\n")
            for citation in record.citations:
                suffix = f" <{citation.url}>" if citation.url else ""
                self._write(f"  {citation.display_label}{suffix}\n")
        if record.smart_actions:
            self._write("\n👉 Actions: " + " | ".join(a.label for a in record.smart_actions) + "\n")
        if record.suggestions:
            self._write("\n💡 Follow-ups:\n")
            for suggestion in record.suggestions:
                self._write(f"  - {suggestion}\n")


class ChatCLI:
    """CLI interface for chat interactions."""

    def __init__(
        self,
        chat_service: ChatService,
        settings: AppSettings,
        exclude_categories: Optional[List[str]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._chat_service = chat_service
        self._settings = settings
        self._exclude = list(exclude_categories or [])
        self._logger = logger or logging.getLogger(__name__)
        self._analyzer = ErrorAnalyzer()
        self._loop = asyncio.new_event_loop()
        self._pending_files: List[UploadedFile] = []
        self._stop_task: Optional[asyncio.Task] = None

    def run(self, coro):
        """Run a coroutine on the CLI's event loop."""
        return self._loop.run_until_complete(coro)

    def close(self, backend=None) -> None:
        if backend is not None:
            self.run(backend.aclose())
        self._loop.close()

    def attach_files(self, paths: List[str]) -> None:
        """Upload files; they are attached to the next message."""
        for path in paths:
            uploaded = self.run(self._chat_service.upload_file(path))
            self._pending_files.append(uploaded)
            if not self._settings.quiet:
                print(f"📎 Attached {uploaded.name}")

    def load_conversation(self, conversation_id: str) -> None:
        records = self.run(self._chat_service.load_history(conversation_id))
        if not self._settings.quiet:
            print(f"📜 Resumed conversation {conversation_id} ({len(records)} turns)")

    def interactive_mode(self) -> None:
        """Run interactive chat mode."""
        if not self._settings.quiet:
            self._print_welcome()

        while True:
            try:
                user_input = input("You: ").strip()
                if not user_input:
                    continue
                if self._handle_cli_commands(user_input):
                    continue
                self.send_message(user_input)
            except KeyboardInterrupt:
                if not self._settings.quiet:
                    print("\n\n⚠️ Use 'quit' or 'exit' to leave the chat")
                continue
            except EOFError:
                break
            except ConfigurationError:
                raise
            except TurnstreamError as e:
                self._print_error(e)
                continue

        if not self._settings.quiet:
            print("👋 Goodbye!")

    def _print_welcome(self) -> None:
        print("🚀 turnstream - Interactive Mode")
        print(f"🌐 Backend: {self._settings.backend.api_url}")
        print(f"🔒 Privacy vault: {'Enabled' if self._settings.privacy.enabled else 'Disabled'}")
        print("💡 Commands: 'quit'/'exit' to exit, 'clear' to clear history, 'history' to show history")
        print("⏹️  Ctrl+C while a reply is streaming stops it")
        print("-" * 60)

    def _handle_cli_commands(self, user_input: str) -> bool:
        """Handle built-in CLI commands."""
        command = user_input.lower()

        if command in ['quit', 'exit']:
            raise EOFError
        elif command == 'clear':
            self._chat_service.clear()
            self._pending_files.clear()
            if not self._settings.quiet:
                print("✅ History cleared")
            return True
        elif command == 'history':
            self._print_history()
            return True

        return False

    def _print_history(self) -> None:
        history = self._chat_service.history
        if not history:
            print("📜 No history yet")
            return
        print("\n📜 Conversation History:")
        for record in history:
            who = "You" if record.role is Role.USER else "Assistant"
            text = truncate_text(self._chat_service.restore_text(record.text).replace("\n", " "), 120)
            flag = " (stopped)" if record.was_stopped else (" (error)" if record.failed else "")
            print(f"  {who}{flag}: {text}")

    def send_message(self, message: str) -> TurnRecord:
        """Stream one turn; Ctrl+C stops it and keeps the partial reply."""
        renderer = TurnRenderer(
            self._chat_service,
            show_trace=self._settings.show_trace,
            quiet=self._settings.quiet,
        )
        files, self._pending_files = self._pending_files, []
        task = self._loop.create_task(self._chat_service.send(
            message,
            files=files,
            exclude_categories=self._exclude,
            listener=renderer.on_update,
        ))

        handler_installed = False
        try:
            self._loop.add_signal_handler(signal.SIGINT, self._request_stop)
            handler_installed = True
        except (NotImplementedError, RuntimeError):
            pass

        try:
            while True:
                try:
                    record = self._loop.run_until_complete(task)
                    break
                except KeyboardInterrupt:
                    self._request_stop()
        finally:
            if handler_installed:
                self._loop.remove_signal_handler(signal.SIGINT)
            if self._stop_task is not None:
                # the backend halt call may still be in flight after the turn settled
                self._loop.run_until_complete(self._stop_task)
                self._stop_task = None

        renderer.finish(record, self._analyzer)
        return record

    def _request_stop(self) -> None:
        self._logger.debug("Stop requested from keyboard")
        if self._stop_task is None or self._stop_task.done():
            self._stop_task = self._loop.create_task(self._chat_service.stop())

    def _print_error(self, error: Exception) -> None:
        summary = self._analyzer.analyze(error)
        self._logger.error(f"Turn failed: {error}")
        print(f"\n❌ {summary.title}: {error}\n   {summary.description}")
