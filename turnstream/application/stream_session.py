"""
Stream session - Async consumer loop for one turn.
Reads the transport, frames records, decodes events and feeds the assembler.
"""

from __future__ import annotations
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from ..domain.interfaces.stream_reader import StreamReader
from ..domain.models.turn import TurnRecord
from ..domain.services.event_decoder import EventDecoder
from ..domain.services.line_framer import LineFramer
from ..domain.services.response_assembler import ResponseAssembler
from ..utils import StreamTransportError

StopCallback = Callable[[str], Awaitable[None]]


class StreamSession:
    """Owns one reader; a single read is pending at any time."""

    def __init__(
        self,
        reader: StreamReader,
        assembler: ResponseAssembler,
        stop_backend: Optional[StopCallback] = None,
        stop_timeout_s: float = 5.0,
        framer: Optional[LineFramer] = None,
        decoder: Optional[EventDecoder] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._reader = reader
        self._assembler = assembler
        self._stop_backend = stop_backend
        self._stop_timeout_s = stop_timeout_s
        self._logger = logger or logging.getLogger(__name__)
        self._framer = framer or LineFramer(logger=self._logger)
        self._decoder = decoder or EventDecoder(logger=self._logger)
        self._stop_requested = False

    @property
    def assembler(self) -> ResponseAssembler:
        return self._assembler

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    async def run(self) -> TurnRecord:
        """Consume the stream to its end and return the finalized turn."""
        while not self._stop_requested:
            try:
                result = await self._reader.read()
            except Exception as e:
                if self._stop_requested:
                    break
                record = self._assembler.fail(e)
                if isinstance(e, StreamTransportError):
                    e.turn = record
                    raise
                raise StreamTransportError(f"Stream read failed: {e}", turn=record) from e

            if result.done:
                break
            for raw in self._framer.feed(result.value):
                self._dispatch(raw)

        if self._stop_requested:
            self._logger.info("Turn stopped by user")
            return self._assembler.stop()

        for raw in self._framer.flush():
            self._dispatch(raw)
        return self._assembler.end_of_stream()

    def _dispatch(self, raw: str) -> None:
        event = self._decoder.decode(raw)
        if event is not None:
            self._assembler.handle(event)

    async def stop(self) -> None:
        """Abort the transport now, then ask the backend to halt (best effort)."""
        if self._stop_requested:
            return
        self._stop_requested = True
        await self._reader.cancel()

        task_id = self._assembler.turn.task_id
        if not task_id or self._stop_backend is None:
            return
        try:
            await asyncio.wait_for(self._stop_backend(task_id), timeout=self._stop_timeout_s)
        except asyncio.TimeoutError:
            self._logger.warning(f"Backend stop for task {task_id} timed out after {self._stop_timeout_s}s")
        except Exception as e:
            self._logger.warning(f"Backend stop for task {task_id} failed: {e}")
