"""Domain interfaces package - Protocols for ports."""

from .stream_reader import ReadResult, StreamReader
from .chat_backend import ChatBackend, ChatRequest, UploadedFile

__all__ = [
    "ReadResult",
    "StreamReader",
    "ChatBackend",
    "ChatRequest",
    "UploadedFile",
]
