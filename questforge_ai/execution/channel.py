"""Bounded progress channel between runtime callbacks and the orchestrator.

Runtime callbacks publish signals, and the orchestrator publishes retry
notices from the retry hook; the orchestrator's drain loop consumes them in
order. Step signals are acknowledged: a step callback returns only
after the drain loop has finished handling it, so a step's checkpoint is
saved before the runtime moves on. Token signals are not acknowledged.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional, Union

from .runtime.base import RuntimeCallbacks, StepEnd, StepError, StepStart


@dataclass(frozen=True)
class RetryNotice:
    attempt: int
    error: str
    next_delay: float


Payload = Union[str, StepStart, StepEnd, StepError, RetryNotice]


@dataclass
class Signal:
    payload: Payload
    done: Optional[asyncio.Future] = field(default=None, repr=False)

    @property
    def is_token(self) -> bool:
        return isinstance(self.payload, str)

    def ack(self) -> None:
        if self.done is not None and not self.done.done():
            self.done.set_result(None)


_CLOSED = object()


class ProgressChannel:
    def __init__(self, maxsize: int = 64) -> None:
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    async def publish(self, payload: Payload, *, wait: bool) -> None:
        if self._closed:
            return
        done = asyncio.get_running_loop().create_future() if wait else None
        await self._queue.put(Signal(payload, done))
        if done is not None:
            await done

    def callbacks(self) -> RuntimeCallbacks:
        async def on_token(token: str) -> None:
            await self.publish(token, wait=False)

        async def on_step_start(step: StepStart) -> None:
            await self.publish(step, wait=True)

        async def on_step_end(step: StepEnd) -> None:
            await self.publish(step, wait=True)

        async def on_step_error(step: StepError) -> None:
            await self.publish(step, wait=True)

        return RuntimeCallbacks(
            on_token=on_token,
            on_step_start=on_step_start,
            on_step_end=on_step_end,
            on_step_error=on_step_error,
        )

    async def close(self) -> None:
        """Stop the drain loop once every signal published so far is consumed."""
        if self._closed:
            return
        self._closed = True
        await self._queue.put(_CLOSED)

    async def signals(self) -> AsyncIterator[Signal]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item
