from __future__ import annotations

import asyncio
from asyncio import Queue as AsyncQueue
from typing import AsyncIterator, Union

from .errors import ChannelClosed
from .events import OutputEvent

DEFAULT_CAPACITY = 10

_CLOSED = object()


class OutputChannel:
    """Bounded many-producer, single-consumer event channel.

    Producers block when the buffer is full. Only the owning session closes it;
    the close marker is queued behind every event already sent, so draining the
    channel always yields everything produced before close.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("channel capacity must be positive")
        self._queue: AsyncQueue[Union[OutputEvent, object]] = AsyncQueue(maxsize=capacity)
        self._closed = False
        self._drained = asyncio.Event()

    @property
    def capacity(self) -> int:
        return self._queue.maxsize

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def drained(self) -> bool:
        """True once the consumer has seen the close marker."""
        return self._drained.is_set()

    async def send(self, event: OutputEvent) -> None:
        if self._closed:
            raise ChannelClosed("send on closed channel")
        await self._queue.put(event)

    async def close(self) -> None:
        if self._closed:
            raise ChannelClosed("close of closed channel")
        self._closed = True
        await self._queue.put(_CLOSED)

    async def receive(self) -> OutputEvent:
        """Return the next event; raise StopAsyncIteration after close."""
        if self._drained.is_set():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            self._drained.set()
            raise StopAsyncIteration
        return item  # type: ignore[return-value]

    def __aiter__(self) -> AsyncIterator[OutputEvent]:
        return self

    async def __anext__(self) -> OutputEvent:
        return await self.receive()
