"""
Stream reader protocol interface.
Defines the contract for the byte/text source a stream session consumes.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Protocol, Union


@dataclass(frozen=True)
class ReadResult:
    """One read from the transport; ``done`` marks the end of the stream."""
    value: Union[str, bytes] = ""
    done: bool = False


class StreamReader(Protocol):
    """Protocol for a cancellable, sequential stream reader."""

    async def read(self) -> ReadResult:
        """Read the next chunk; resolves with ``done=True`` at end of stream or after cancel."""
        ...

    async def cancel(self) -> None:
        """Abort the transport so a pending read resolves immediately."""
        ...
