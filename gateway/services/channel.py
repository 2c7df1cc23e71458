"""Outbound SSE framing and the bounded channel feeding the HTTP response."""

import asyncio
from typing import AsyncIterator

import orjson

from gateway.models import StreamEvent

PING_FRAME = b': ping\n\n'
_CLOSED = object()


def format_event(event: StreamEvent) -> bytes:
    return b'data: ' + orjson.dumps(event.to_dict()) + b'\n\n'


class EventChannel:
    """Bounded queue with one consumer (the response body) and several producers.

    Once the consumer is gone every write is dropped silently, so producers never
    block on a client that disconnected.
    """

    def __init__(self, capacity: int = 256):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=capacity)
        self._closed = False
        self._detached = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def detached(self) -> bool:
        return self._detached

    async def send(self, frame: bytes) -> bool:
        if self._closed or self._detached:
            return False
        await self._queue.put(frame)
        return True

    async def emit(self, event: StreamEvent) -> bool:
        return await self.send(format_event(event))

    async def ping(self) -> bool:
        return await self.send(PING_FRAME)

    async def close(self) -> None:
        """Mark the end of the stream. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        if not self._detached:
            await self._queue.put(_CLOSED)

    def detach(self) -> None:
        """Consumer went away: drop everything queued and unblock waiting producers."""
        self._detached = True
        while not self._queue.empty():
            self._queue.get_nowait()

    async def frames(self) -> AsyncIterator[bytes]:
        try:
            while True:
                item = await self._queue.get()
                if item is _CLOSED:
                    return
                yield item
        finally:
            self.detach()
