"""Ordered outgoing event channel for one chat response.

One producer (the chat handler, including resolver status events and the
oracle's text) writes events; one consumer (the transport) drains them in
exactly the order they were written.
"""

import asyncio
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable
from typing import Any

from memory_assistant.logging import get_logger

log = get_logger(__name__)

_CLOSED = object()

GENERIC_ERROR_TEXT = "Something went wrong while generating the response."


class UIMessageStream:
    """Single-producer, single-consumer FIFO of event dicts."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, event: dict[str, Any]) -> None:
        """Append one event. Writing after close is a programming error."""
        if self._closed:
            raise RuntimeError("Cannot write to a closed message stream")
        self._queue.put_nowait(dict(event))

    async def merge(self, events: AsyncIterable[dict[str, Any]]) -> None:
        """Forward every event of another stream, preserving its order."""
        async for event in events:
            self.write(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    async def __aiter__(self) -> AsyncIterator[dict[str, Any]]:
        while True:
            event = await self._queue.get()
            if event is _CLOSED:
                return
            yield event


async def create_message_stream(
    execute: Callable[[UIMessageStream], Awaitable[str | None]],
) -> AsyncIterator[dict[str, Any]]:
    """Run ``execute`` against a fresh stream and yield its events.

    The stream opens with ``start`` and always ends with ``finish``; the
    finish reason is whatever ``execute`` returns (``"stop"`` by default).
    If ``execute`` raises, the failure is logged and the client only sees a
    generic ``error`` event followed by ``finish`` with reason ``error``.
    """
    stream = UIMessageStream()
    stream.write({"type": "start"})

    async def _run() -> None:
        try:
            reason = await execute(stream)
            stream.write({"type": "finish", "finishReason": reason or "stop"})
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error("Message stream failed", error=str(e), exc_info=True)
            stream.write({"type": "error", "errorText": GENERIC_ERROR_TEXT})
            stream.write({"type": "finish", "finishReason": "error"})
        finally:
            stream.close()

    task = asyncio.create_task(_run())
    try:
        async for event in stream:
            yield event
        await task
    finally:
        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
