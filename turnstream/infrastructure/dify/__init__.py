"""Dify backend adapter."""

from .client import DifyClient, build_chat_payload
from .reader import HttpxStreamReader

__all__ = ["DifyClient", "build_chat_payload", "HttpxStreamReader"]
