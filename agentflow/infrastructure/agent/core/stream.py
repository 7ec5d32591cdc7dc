"""Streaming of model output to the host.

Streaming is optional: when no handler is attached nothing is emitted and
the execution loop never waits on a consumer.
"""

import itertools
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

from agentflow.domain.ports.services.agent_log_port import MsgLogResultFormat, MsgLogType


class StreamChunkType(str, Enum):
    """Kind of streamed chunk."""

    THINKING = "thinking"
    CONTENT = "content"
    RESULT = "result"
    FLUSH = "flush"
    UPDATE = "update"  # Final aggregated content of a turn


@dataclass
class StreamMessageChunk:
    """One piece of streamed output, grouped by ``stream_id``."""

    type: StreamChunkType
    msg_type: MsgLogType
    stream_id: int
    content: str = ""
    thinking: str = ""
    result: str = ""
    result_format: MsgLogResultFormat = MsgLogResultFormat.PLAIN


StreamMessageHandler = Callable[[StreamMessageChunk], Awaitable[None]]


class StreamIdCounter:
    """Monotonically increasing stream IDs, starting at 1.

    IDs are only issued from the event loop thread, so no locking is needed.
    """

    def __init__(self, seed: int = 0) -> None:
        self._counter = itertools.count(seed + 1)
        self._last = seed

    def next(self) -> int:
        self._last = next(self._counter)
        return self._last

    @property
    def last(self) -> int:
        return self._last
