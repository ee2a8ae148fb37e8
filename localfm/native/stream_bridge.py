"""Adapt the runtime's push-style streaming callback into an async pull sequence.

Runtimes report streaming output by calling a handler with one of:
- the cumulative text generated so far (each payload extends the previous one),
- an error string prefixed with `ERROR_SENTINEL`,
- `None` / `""` once generation has finished.

`StreamBridge` is that handler. It turns cumulative payloads into deltas and
hands them to exactly one consumer in producer order, buffering in an
unbounded FIFO while the consumer is not waiting.

Known limitation: cancelling the bridge stops delivery to the consumer and
sets `cancel_event`, but it cannot force the runtime to stop generating.
Runtimes that poll `cancel_event` stop early; others run to completion and
their remaining payloads are discarded.
"""

from __future__ import annotations

import asyncio
import threading
from collections import deque
from typing import AsyncIterator, Callable

from localfm.utils.exceptions import GenerationFailure
from localfm.utils.logger import get_logger

from .events import DoneEvent, ErrorEvent, StreamEvent, TextDeltaEvent

logger = get_logger(__name__)

# Control-B marks an error payload; it never appears in normal model output.
ERROR_SENTINEL = "\x02"

PayloadHandler = Callable[[str | None], None]


def error_payload(message: str) -> str:
    return f"{ERROR_SENTINEL}{message}"


class StreamBridge:
    """Single-producer, single-consumer mailbox between a runtime and a coroutine.

    All state is touched on the owning event loop only; producer calls from
    other threads are handed over with `call_soon_threadsafe`.
    """

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
        on_cancel: Callable[[], None] | None = None,
    ) -> None:
        self._loop = loop or asyncio.get_running_loop()
        self._on_cancel = on_cancel
        self._queue: deque[StreamEvent] = deque()
        self._waiter: asyncio.Future[StreamEvent | None] | None = None
        self._text = ""
        self._terminal = False
        self._finished = False
        self._cancelled = False
        self.cancel_event = threading.Event()

    @property
    def text(self) -> str:
        """Cumulative text received so far."""
        return self._text

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    # ------------------------------------------------------------------ producer

    def __call__(self, payload: str | None) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is self._loop:
            self._deliver(payload)
            return
        try:
            self._loop.call_soon_threadsafe(self._deliver, payload)
        except RuntimeError:
            # Event loop already closed: the consumer is gone.
            logger.debug("stream payload dropped, event loop is closed")

    def fail(self, message: str) -> None:
        self(error_payload(message))

    def _deliver(self, payload: str | None) -> None:
        if self._terminal or self._cancelled:
            logger.debug("stream payload dropped after stream end")
            return

        if payload is None or payload == "":
            self._terminal = True
            self._push(DoneEvent())
            return

        if payload.startswith(ERROR_SENTINEL):
            self._terminal = True
            self._push(ErrorEvent(payload[len(ERROR_SENTINEL):]))
            return

        if not payload.startswith(self._text):
            logger.warning(
                f"cumulative stream payload is not prefix-stable "
                f"(previous={len(self._text)} chars, current={len(payload)} chars)"
            )
        delta = payload[len(self._text):]
        self._text = payload
        if delta:
            self._push(TextDeltaEvent(delta))

    def _push(self, event: StreamEvent) -> None:
        waiter = self._waiter
        if waiter is not None and not waiter.done():
            self._waiter = None
            waiter.set_result(event)
        else:
            self._queue.append(event)

    # ------------------------------------------------------------------ consumer

    async def next_event(self) -> StreamEvent | None:
        """Return the next event, or `None` once the stream is finished.

        Raises:
            GenerationFailure: the runtime reported an error (raised once).
            RuntimeError: another `next_event()` call is still pending.
        """
        if self._waiter is not None:
            raise RuntimeError("StreamBridge supports one consumer; next_event() already pending")
        if self._finished:
            return None
        if self._queue:
            return self._consume(self._queue.popleft())

        waiter: asyncio.Future[StreamEvent | None] = self._loop.create_future()
        self._waiter = waiter
        try:
            event = await waiter
        finally:
            if self._waiter is waiter:
                self._waiter = None
        if event is None:
            return None
        return self._consume(event)

    def _consume(self, event: StreamEvent) -> StreamEvent:
        if isinstance(event, ErrorEvent):
            self._finished = True
            raise GenerationFailure(event.message)
        if isinstance(event, DoneEvent):
            self._finished = True
        return event

    def cancel(self) -> None:
        """Stop delivery; queued and future payloads are discarded."""
        if self._cancelled:
            return
        self._cancelled = True
        self._finished = True
        dropped = len(self._queue)
        self._queue.clear()
        self.cancel_event.set()

        waiter, self._waiter = self._waiter, None
        if waiter is not None and not waiter.done():
            waiter.set_result(None)
        logger.debug(f"stream cancelled by consumer, dropped {dropped} queued events")
        if self._on_cancel is not None:
            self._on_cancel()

    async def aclose(self) -> None:
        self.cancel()

    def __aiter__(self) -> "StreamBridge":
        return self

    async def __anext__(self) -> StreamEvent:
        event = await self.next_event()
        if event is None:
            raise StopAsyncIteration
        return event

    async def __aenter__(self) -> "StreamBridge":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        if not self._finished:
            self.cancel()

    async def aiter_text(self) -> AsyncIterator[str]:
        """Yield only the text deltas."""
        try:
            async for event in self:
                if isinstance(event, TextDeltaEvent):
                    yield event.delta
        finally:
            if not self._finished:
                self.cancel()


__all__ = ["ERROR_SENTINEL", "PayloadHandler", "StreamBridge", "error_payload"]
