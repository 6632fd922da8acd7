"""The visible, ordered list of chat messages."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any

from parley.log import logger
from parley.messages import Message

Listener = Callable[[list[Message]], None]


class Transcript:
    """
    Ordered chat messages plus at most one streaming assistant placeholder.

    Listeners are called with a copy of the messages after every change.
    ``subscribe`` returns the function that removes the listener again.
    """

    def __init__(self, messages: Iterable[Message] | None = None) -> None:
        self._messages: list[Message] = list(messages or [])
        self._listeners: list[Listener] = []

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __getitem__(self, index: int) -> Message:
        return self._messages[index]

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self.messages
        for listener in list(self._listeners):
            listener(snapshot)

    def append(self, message: Message) -> None:
        self._messages.append(message)
        self._notify()

    def extend(self, messages: Iterable[Message]) -> None:
        self._messages.extend(messages)
        self._notify()

    def replace_all(self, messages: Iterable[Message]) -> None:
        self._messages = list(messages)
        self._notify()

    def streaming_index(self) -> int | None:
        for index, message in enumerate(self._messages):
            if message.role == "assistant" and message.is_streaming:
                return index
        return None

    def update_streaming(self, **changes: Any) -> None:
        index = self.streaming_index()
        if index is None:
            return
        self._messages[index] = self._messages[index].model_copy(update=changes)
        self._notify()

    def replace_streaming(self, message: Message) -> None:
        index = self.streaming_index()
        if index is None:
            logger.warning("Streaming placeholder not found for replacement")
            self._messages.append(message)
        else:
            self._messages[index] = message
        self._notify()

    def remove_streaming(self) -> None:
        index = self.streaming_index()
        if index is not None:
            del self._messages[index]
            self._notify()

    def _last_assistant_index(self) -> int | None:
        for index in range(len(self._messages) - 1, -1, -1):
            if self._messages[index].role == "assistant":
                return index
        return None

    def remove_last_assistant(self) -> None:
        index = self._last_assistant_index()
        if index is not None:
            del self._messages[index]
            self._notify()

    def replace_last_assistant(self, message: Message) -> None:
        index = self._last_assistant_index()
        if index is None:
            self._messages.append(message)
        else:
            self._messages[index] = message
        self._notify()

    def persistable(self) -> list[Message]:
        return [message for message in self._messages if not message.is_streaming]
