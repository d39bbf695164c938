"""Outbound event stream of one execution.

The orchestrator is the only writer and the HTTP response the only reader.
Each ``emit`` call produces exactly one ``ServerSentEvent`` frame::

    event: <name>
    data: <JSON>

Frames go through a bounded queue, so a slow reader slows the writer down.
Once the stream is closed, or the reader has gone away, further emits are
dropped with a debug log line.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator, Dict, Optional, Union

from pydantic import BaseModel
from sse_starlette.sse import ServerSentEvent

from questforge_ai.core.logging_config import get_logger

from .schemas.events import StreamEventName

logger = get_logger(__name__)

Payload = Union[BaseModel, Dict[str, Any]]

_CLOSE = object()


def serialize_payload(payload: Payload) -> str:
    """Serialize an event payload to the JSON ``data`` line (camelCase keys, ``None`` fields omitted)."""
    if isinstance(payload, BaseModel):
        return payload.model_dump_json(by_alias=True, exclude_none=True)
    return json.dumps(payload, default=str)


def encode_frame(event: str, payload: Payload) -> str:
    return ServerSentEvent(data=serialize_payload(payload), event=event, sep="\n").encode().decode("utf-8")


class EventEmitter:
    """Single-writer, single-reader SSE frame queue."""

    def __init__(self, maxsize: int = 256) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self._detached = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def detached(self) -> bool:
        return self._detached

    async def emit(self, event: Union[StreamEventName, str], payload: Payload) -> bool:
        """
        Queue one frame.

        Args:
            event: The event name.
            payload: A schema from ``questforge_ai.execution.schemas.events`` or a plain dict.

        Returns:
            True if the frame was queued, False if the stream is closed or detached.
        """
        name = event.value if isinstance(event, StreamEventName) else event
        if self._closed or self._detached:
            logger.debug(f"Dropping '{name}' event: stream already {'closed' if self._closed else 'detached'}")
            return False
        await self._queue.put(ServerSentEvent(data=serialize_payload(payload), event=name, sep="\n"))
        return True

    async def close(self) -> None:
        """Close the stream. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(_CLOSE)
        except asyncio.QueueFull:
            # The reader stops on closed-and-empty once it has drained the queue
            pass

    def detach(self) -> None:
        """Mark the reader as gone and discard queued frames."""
        self._detached = True
        while not self._queue.empty():
            self._queue.get_nowait()

    async def events(self) -> AsyncIterator[ServerSentEvent]:
        """Yield queued frames in order until the stream is closed."""
        try:
            while True:
                if self._closed and self._queue.empty():
                    break
                item = await self._queue.get()
                if item is _CLOSE:
                    break
                yield item
        finally:
            if not self._closed:
                self.detach()

    async def frames(self) -> AsyncIterator[str]:
        """Yield encoded text frames, for readers that are not an ``EventSourceResponse``."""
        async for sse in self.events():
            yield sse.encode().decode("utf-8")


def parse_frame(frame: str) -> tuple[Optional[str], Any]:
    """Split one encoded frame back into its event name and decoded data."""
    event: Optional[str] = None
    data_lines = []
    for line in frame.splitlines():
        if line.startswith("event:"):
            event = line[len("event:") :].strip()
        elif line.startswith("data:"):
            data_lines.append(line[len("data:") :].lstrip())
    data = "\n".join(data_lines)
    return event, json.loads(data) if data else None
