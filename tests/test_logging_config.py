"""Tests for the relay's structlog processors."""

import structlog

from event_relay.config.logging_config import (
    MAX_PREVIEW_LENGTH,
    add_app_context,
    add_chat_kind,
    build_processors,
    truncate_preview,
)
from tests.conftest import OWN_JID, SOURCE_GROUP_ID


def test_app_name_added() -> None:
    assert add_app_context(None, "info", {"event": "x"})["app"] == "event_relay"


def test_chat_kind_from_chat_id() -> None:
    group = add_chat_kind(None, "info", {"event": "x", "chat_id": SOURCE_GROUP_ID})
    direct = add_chat_kind(None, "info", {"event": "x", "chat_id": OWN_JID})

    assert group["chat_kind"] == "group"
    assert direct["chat_kind"] == "direct"


def test_chat_kind_absent_without_chat_id() -> None:
    assert "chat_kind" not in add_chat_kind(None, "info", {"event": "x"})


def test_long_preview_truncated() -> None:
    event_dict = truncate_preview(None, "warning", {"preview": "א" * 500})

    assert len(event_dict["preview"]) == MAX_PREVIEW_LENGTH + 1
    assert event_dict["preview"].endswith("…")


def test_short_preview_untouched() -> None:
    assert truncate_preview(None, "warning", {"preview": "short"})["preview"] == "short"


def test_renderer_matches_output_mode() -> None:
    json_chain = build_processors(json_logs=True)
    console_chain = build_processors(json_logs=False)

    assert isinstance(json_chain[-1], structlog.processors.JSONRenderer)
    assert isinstance(console_chain[-1], structlog.dev.ConsoleRenderer)
    assert add_chat_kind in json_chain
    assert truncate_preview in console_chain
