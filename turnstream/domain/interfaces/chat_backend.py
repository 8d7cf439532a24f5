"""
Chat backend protocol interface.
Defines the contract for the workflow backend collaborators used by a turn.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Protocol, List, Dict, Any, Optional

from .stream_reader import StreamReader


@dataclass(frozen=True)
class ChatRequest:
    """One outgoing chat message; the backend adds the user id."""
    query: str
    conversation_id: Optional[str] = None
    file_ids: List[str] = field(default_factory=list)
    inputs: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class UploadedFile:
    """File registered with the backend and attachable to a turn."""
    id: str
    name: str
    type: str = "document"


class ChatBackend(Protocol):
    """Protocol for workflow backend implementations."""

    async def open_chat_stream(self, request: ChatRequest) -> StreamReader:
        """Send a streaming chat request and return its reader."""
        ...

    async def stop_generation(self, task_id: str) -> None:
        """Ask the backend to halt server-side generation."""
        ...

    async def fetch_suggestions(self, message_id: str) -> List[str]:
        """Fetch suggested follow-up questions for a finished message."""
        ...

    async def upload_file(self, path: str) -> UploadedFile:
        """Upload a local file for use as turn context."""
        ...

    async def fetch_messages(self, conversation_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        """Fetch stored message history for a conversation."""
        ...

    async def aclose(self) -> None:
        ...
