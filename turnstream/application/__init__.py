"""Application layer - Orchestrates domain services for complete chat turns."""

from .chat_service import ChatService
from .stream_session import StreamSession
from .history import build_turns_from_history

__all__ = ["ChatService", "StreamSession", "build_turns_from_history"]
