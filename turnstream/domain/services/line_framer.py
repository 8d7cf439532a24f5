"""
Line framer - Reassembles a chunked server-sent event stream into whole records.
Records are separated by a blank line; chunk boundaries carry no meaning.
"""

from __future__ import annotations
import codecs
import json
import logging
from typing import List, Optional, Union

RECORD_SEPARATOR = "\n\n"
DATA_PREFIX = "data:"


class LineFramer:
    """Stateful splitter for ``data: ...`` records."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self._logger = logger or logging.getLogger(__name__)
        self._buffer = ""
        # multi-byte characters may straddle two reads
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def pending(self) -> str:
        """Text retained for the next call."""
        return self._buffer

    def feed(self, chunk: Union[str, bytes]) -> List[str]:
        """Append a chunk and return every record it completes."""
        if isinstance(chunk, (bytes, bytearray)):
            chunk = self._decoder.decode(bytes(chunk))
        if not chunk:
            return []

        self._buffer += chunk
        # a lone "\r" at the end may be the first half of "\r\n"
        hold_cr = self._buffer.endswith("\r")
        if hold_cr:
            self._buffer = self._buffer[:-1]
        self._buffer = self._buffer.replace("\r\n", "\n").replace("\r", "\n")

        records: List[str] = []
        while RECORD_SEPARATOR in self._buffer:
            record, self._buffer = self._buffer.split(RECORD_SEPARATOR, 1)
            if record.strip():
                records.append(record)

        if hold_cr:
            self._buffer += "\r"
        return records

    def flush(self) -> List[str]:
        """Treat the retained tail as a final record if it is still recognizable."""
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        tail = tail.replace("\r\n", "\n").replace("\r", "\n").strip()
        if not tail:
            return []

        if self._is_complete_record(tail):
            return [tail]

        self._logger.debug(f"Discarding incomplete trailing record ({len(tail)} chars)")
        return []

    def reset(self) -> None:
        self._buffer = ""
        self._decoder.reset()

    @staticmethod
    def _is_complete_record(record: str) -> bool:
        payload_lines = [
            line[len(DATA_PREFIX):].lstrip(" ")
            for line in record.split("\n")
            if line.startswith(DATA_PREFIX)
        ]
        if not payload_lines:
            return False
        try:
            return isinstance(json.loads("\n".join(payload_lines)), dict)
        except ValueError:
            return False
