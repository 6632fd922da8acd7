from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence

from parley.llms.events import TERMINAL_EVENTS, StreamCancelled, StreamEvent
from parley.log import logger
from parley.messages import ConversationItem


class ChatStream:
    """
    One streaming model request, consumed as an async iterator of events.

    The stream ends after its first terminal event (complete, error or
    cancelled). ``cancel`` is cooperative: the producer is stopped at the next
    event boundary and a ``StreamCancelled`` event is yielded instead.
    Always iterate inside ``async with`` so the producer is closed on every
    exit path.
    """

    def __init__(
        self,
        producer: Callable[[], AsyncIterator[StreamEvent]],
        on_close: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self._producer = producer
        self._on_close = on_close
        self._generator: AsyncIterator[StreamEvent] | None = None
        self._cancelled = False
        self._closed = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def closed(self) -> bool:
        return self._closed

    def cancel(self) -> None:
        self._cancelled = True

    async def __aiter__(self) -> AsyncIterator[StreamEvent]:
        if self._generator is not None:
            raise RuntimeError("ChatStream can only be consumed once")
        self._generator = self._producer()
        try:
            if self._cancelled:
                yield StreamCancelled()
                return
            async for event in self._generator:
                if self._cancelled:
                    yield StreamCancelled()
                    return
                yield event
                if isinstance(event, TERMINAL_EVENTS):
                    return
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._generator is not None and hasattr(self._generator, "aclose"):
            await self._generator.aclose()
        if self._on_close is not None:
            try:
                await self._on_close()
            except Exception as e:
                logger.exception(f"Error closing chat stream: {e}")

    async def __aenter__(self) -> ChatStream:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()


class ChatClient(ABC):
    @abstractmethod
    def stream(self, items: Sequence[ConversationItem], model: str) -> ChatStream:
        pass
