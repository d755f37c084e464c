"""Bounded per-chat conversation history used as analysis context."""

from collections import deque

from event_relay.domain.intake_constants import MESSAGE_HISTORY_LENGTH


class MessageHistory:
    """Keeps the last few message texts of every chat, oldest first."""

    def __init__(self, max_length: int = MESSAGE_HISTORY_LENGTH) -> None:
        if max_length < 1:
            raise ValueError("max_length must be at least 1")
        self._max_length = max_length
        self._history: dict[str, deque[str]] = {}

    def add(self, chat_id: str, text: str) -> None:
        if not text.strip():
            return
        history = self._history.setdefault(chat_id, deque(maxlen=self._max_length))
        history.append(text)

    def get(self, chat_id: str) -> list[str]:
        return list(self._history.get(chat_id, ()))

