"""Tests for per-chat message history."""

import pytest

from event_relay.services.message_history import MessageHistory


def test_keeps_last_messages_oldest_first() -> None:
    history = MessageHistory(max_length=3)
    for i in range(5):
        history.add("chat", f"msg {i}")

    assert history.get("chat") == ["msg 2", "msg 3", "msg 4"]


def test_histories_are_per_chat() -> None:
    history = MessageHistory()
    history.add("a", "hello")
    history.add("b", "שלום")

    assert history.get("a") == ["hello"]
    assert history.get("b") == ["שלום"]
    assert history.get("c") == []


def test_blank_text_is_ignored() -> None:
    history = MessageHistory()
    history.add("chat", "   ")

    assert history.get("chat") == []


def test_get_returns_copy() -> None:
    history = MessageHistory()
    history.add("chat", "one")
    history.get("chat").append("two")

    assert history.get("chat") == ["one"]


def test_invalid_length() -> None:
    with pytest.raises(ValueError):
        MessageHistory(max_length=0)
