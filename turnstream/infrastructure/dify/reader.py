"""
httpx stream reader - Adapts a streaming ``httpx.Response`` to the StreamReader protocol.
"""

from __future__ import annotations
import asyncio
import logging
from typing import AsyncIterator, Optional

import httpx

from ...domain.interfaces.stream_reader import ReadResult
from ...utils import StreamTransportError

_EOF = object()


class HttpxStreamReader:
    """One pending read at a time; ``cancel`` resolves it with ``done``."""

    def __init__(self, response: httpx.Response, logger: Optional[logging.Logger] = None):
        self._response = response
        self._logger = logger or logging.getLogger(__name__)
        self._chunks: Optional[AsyncIterator[bytes]] = None
        self._pending: Optional[asyncio.Task] = None
        self._cancelled = False
        self._closed = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    async def _next_chunk(self):
        try:
            return await self._chunks.__anext__()
        except StopAsyncIteration:
            return _EOF

    async def read(self) -> ReadResult:
        if self._cancelled or self._closed:
            return ReadResult(done=True)
        if self._chunks is None:
            self._chunks = self._response.aiter_bytes()

        self._pending = asyncio.ensure_future(self._next_chunk())
        try:
            chunk = await self._pending
        except asyncio.CancelledError:
            if self._cancelled:
                return ReadResult(done=True)
            raise
        except (httpx.HTTPError, httpx.StreamError) as e:
            if self._cancelled:
                return ReadResult(done=True)
            await self._close()
            raise StreamTransportError(f"Stream read failed: {e}") from e
        finally:
            self._pending = None

        if chunk is _EOF:
            await self._close()
            return ReadResult(done=True)
        return ReadResult(value=chunk)

    async def cancel(self) -> None:
        """Abort the in-flight read and release the connection."""
        if self._cancelled:
            return
        self._cancelled = True
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        await self._close()
        self._logger.debug("Stream reader cancelled")

    async def _close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._response.aclose()
