"""
Chat service - Application service orchestrating one send/receive cycle.
Coordinates configuration checks, the privacy vault, the stream session and history.
"""

from __future__ import annotations
import logging
import time
import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from ..domain.interfaces.chat_backend import ChatBackend, ChatRequest, UploadedFile
from ..domain.models.turn import Role, TurnRecord
from ..domain.services.error_analyzer import ErrorAnalyzer
from ..domain.services.privacy_vault import PrivacyVault
from ..domain.services.response_assembler import ResponseAssembler, TurnListener
from ..infrastructure.config.settings import AppSettings
from ..utils import ConfigurationError, StreamTransportError, TurnstreamError
from .history import build_turns_from_history, restored_files_from_history
from .stream_session import StreamSession


class ChatService:
    """Application service for streaming chat turns against one backend."""

    def __init__(
        self,
        backend: ChatBackend,
        settings: AppSettings,
        vault: Optional[PrivacyVault] = None,
        error_analyzer: Optional[ErrorAnalyzer] = None,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[logging.Logger] = None,
    ):
        self._backend = backend
        self._settings = settings
        self._vault = vault or PrivacyVault()
        self._errors = error_analyzer or ErrorAnalyzer()
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)
        self._history: List[TurnRecord] = []
        self._files: List[UploadedFile] = []
        self._session: Optional[StreamSession] = None
        self.conversation_id: Optional[str] = None

    @property
    def history(self) -> Tuple[TurnRecord, ...]:
        return tuple(self._history)

    @property
    def vault(self) -> PrivacyVault:
        return self._vault

    @property
    def session_files(self) -> List[UploadedFile]:
        return list(self._files)

    @property
    def streaming(self) -> bool:
        return self._session is not None

    def check_configuration(self) -> None:
        """Raise before any network call when credentials or endpoint are missing."""
        missing = self._settings.validate_required_settings()
        if missing:
            self._logger.error(f"Missing configuration: {', '.join(missing)}")
            raise ConfigurationError(missing)

    async def upload_file(self, path: str) -> UploadedFile:
        """Upload a file and keep it as turn context for this session."""
        self.check_configuration()
        uploaded = await self._backend.upload_file(path)
        if all(f.id != uploaded.id for f in self._files):
            self._files.append(uploaded)
        return uploaded

    def _sanitize(self, text: str, exclude_categories: Optional[Iterable[str]]) -> str:
        if not self._settings.privacy.enabled:
            return text
        excluded = list(self._settings.privacy.exclude_categories)
        excluded.extend(exclude_categories or ())
        result = self._vault.sanitize(text, exclude_categories=excluded)
        if result.new_tokens:
            self._logger.info(f"Privacy vault tokenized {len(result.new_tokens)} new value(s)")
        return result.sanitized_text

    async def send(
        self,
        text: str,
        files: Optional[List[UploadedFile]] = None,
        exclude_categories: Optional[Iterable[str]] = None,
        inputs: Optional[Dict[str, Any]] = None,
        listener: Optional[TurnListener] = None,
    ) -> TurnRecord:
        """Send one message and stream the reply to completion, stop or failure."""
        self.check_configuration()
        if self._session is not None:
            raise RuntimeError("a turn is already streaming")

        query = self._sanitize(text, exclude_categories)
        attached = list(files or [])
        self._history.append(TurnRecord(
            id=f"msg_{uuid.uuid4().hex[:12]}",
            role=Role.USER,
            text=query,
            raw_text=query,
            conversation_id=self.conversation_id,
            files=tuple(f.name for f in attached),
        ))

        request_inputs = dict(inputs or {})
        if self._settings.privacy.enabled:
            guidance = self._vault.system_prompt_injection()
            if guidance:
                request_inputs.setdefault("privacy_guidance", guidance)

        known = {f.id for f in self._files}
        session_files = [f.name for f in self._files] + [f.name for f in attached if f.id not in known]
        assembler = ResponseAssembler(
            user_text=query,
            session_files=session_files,
            grace_ms=self._settings.stream.display_grace_ms,
            hidden_prefixes=self._settings.stream.hidden_node_prefixes,
            listener=listener,
            clock=self._clock,
            error_analyzer=self._errors,
            logger=self._logger,
        )

        request = ChatRequest(
            query=query,
            conversation_id=self.conversation_id,
            file_ids=[f.id for f in attached],
            inputs=request_inputs,
        )
        try:
            reader = await self._backend.open_chat_stream(request)
        except TurnstreamError as e:
            failed = assembler.fail(e)
            self._history.append(failed)
            if isinstance(e, StreamTransportError):
                e.turn = failed
            raise

        session = StreamSession(
            reader,
            assembler,
            stop_backend=self._backend.stop_generation,
            stop_timeout_s=self._settings.backend.stop_timeout_s,
            logger=self._logger,
        )
        self._session = session
        try:
            record = await session.run()
        except StreamTransportError as e:
            if e.turn is not None:
                self._history.append(e.turn)
            raise
        finally:
            self._session = None

        if record.conversation_id:
            self.conversation_id = record.conversation_id

        if record.message_id and not record.failed and not record.was_stopped:
            record = record.with_suggestions(await self._fetch_suggestions(record.message_id))

        self._history.append(record)
        return record

    async def _fetch_suggestions(self, message_id: str) -> List[str]:
        try:
            return await self._backend.fetch_suggestions(message_id)
        except Exception as e:
            self._logger.debug(f"Suggestions unavailable for {message_id}: {e}")
            return []

    async def stop(self) -> bool:
        """Stop the streaming turn, if any."""
        session = self._session
        if session is None:
            return False
        await session.stop()
        return True

    async def load_history(self, conversation_id: str, limit: int = 50) -> List[TurnRecord]:
        """Replace local history with a stored conversation."""
        self.check_configuration()
        items = await self._backend.fetch_messages(conversation_id, limit=limit)
        self._files = restored_files_from_history(items)
        self._history = build_turns_from_history(items, session_files=[f.name for f in self._files])
        self.conversation_id = conversation_id
        self._logger.info(f"Loaded {len(self._history)} turn(s) for conversation {conversation_id}")
        return list(self._history)

    def restore_text(self, text: str) -> str:
        """Text with vault tokens swapped back for display."""
        return self._vault.restore(text)

    def clear(self) -> None:
        """Forget the conversation, uploaded files and vault contents."""
        self._history.clear()
        self._files.clear()
        self._vault.clear()
        self.conversation_id = None
