"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from event_relay.config.settings import Settings
from event_relay.domain.exceptions import WhatsAppAPIError
from event_relay.domain.models import (
    AnalysisResult,
    EventDetails,
    EventInvite,
    GroupDescriptor,
    InboundMessage,
    MessageKind,
    ParticipantRef,
)
from event_relay.use_cases.intake_gate import MessageIntakeGate, build_intake_gate

TARGET_GROUP_ID = "120363000000000001@g.us"
SOURCE_GROUP_ID = "120363000000000002@g.us"
OWN_JID = "972500000000@s.whatsapp.net"
SENDER_JID = "972501234567@s.whatsapp.net"
START_TIMESTAMP = 1_760_000_000.0


class FakeClock:
    """Controllable replacement for time.time."""

    def __init__(self, start: float = START_TIMESTAMP) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep stand-in that records requested delays and returns at once."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FakeWhatsAppClient:
    """In-memory WhatsApp collaborator."""

    def __init__(self, groups: list[GroupDescriptor] | None = None) -> None:
        self.groups = {group.id: group for group in groups or []}
        self.fetch_errors: list[Exception] = []
        self.fetch_calls: list[str] = []
        self.fetch_all_calls = 0
        self.sent_texts: list[tuple[str, str]] = []
        self.sent_events: list[tuple[str, EventInvite]] = []
        self.fail_send_event = False
        self.fail_send_text = False

    async def fetch_group_metadata(self, group_id: str) -> GroupDescriptor:
        self.fetch_calls.append(group_id)
        if self.fetch_errors:
            raise self.fetch_errors.pop(0)
        if group_id not in self.groups:
            raise WhatsAppAPIError(f"item-not-found: {group_id}")
        return self.groups[group_id]

    async def fetch_all_groups(self) -> list[GroupDescriptor]:
        self.fetch_all_calls += 1
        return list(self.groups.values())

    async def send_text(self, chat_id: str, text: str) -> None:
        if self.fail_send_text:
            raise WhatsAppAPIError("send failed")
        self.sent_texts.append((chat_id, text))

    async def send_event(self, chat_id: str, invite: EventInvite) -> None:
        if self.fail_send_event:
            raise WhatsAppAPIError("event messages unsupported")
        self.sent_events.append((chat_id, invite))

    @property
    def sent_count(self) -> int:
        return len(self.sent_texts) + len(self.sent_events)


class ScriptedAnalyzer:
    """Analyzer returning queued results (or a default) and recording calls."""

    def __init__(self, default: AnalysisResult | None = None) -> None:
        self.default = default or AnalysisResult.empty()
        self.queued: list[AnalysisResult | Exception] = []
        self.calls: list[dict[str, Any]] = []

    async def analyze_message(
        self,
        text: str,
        *,
        chat_name: str,
        sender: str,
        history: list[str],
        image_base64: str | None = None,
        image_mime_type: str | None = None,
    ) -> AnalysisResult:
        self.calls.append(
            {
                "text": text,
                "chat_name": chat_name,
                "sender": sender,
                "history": list(history),
                "image_base64": image_base64,
                "image_mime_type": image_mime_type,
            }
        )
        if self.queued:
            outcome = self.queued.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return self.default


def create_test_event(**overrides: Any) -> EventDetails:
    """Create an EventDetails with sensible defaults."""
    data: dict[str, Any] = {
        "is_event": True,
        "summary": "פגישה מחר בבוקר בקפה",
        "title": "פגישה בקפה",
        "date": "מחר",
        "time": "10:00",
        "location": "קפה נחלת בנימין",
        "description": "פגישת בוקר",
        "start_date_iso": "2025-10-10T10:00:00+03:00",
        "end_date_iso": "2025-10-10T11:00:00+03:00",
    }
    data.update(overrides)
    return EventDetails(**data)


def create_group(
    group_id: str = SOURCE_GROUP_ID,
    name: str = "חוג הורים",
    participants: list[ParticipantRef] | None = None,
) -> GroupDescriptor:
    return GroupDescriptor(
        id=group_id,
        display_name=name,
        participants=participants
        if participants is not None
        else [ParticipantRef(id=SENDER_JID, notify="דנה")],
    )


def create_message(**overrides: Any) -> InboundMessage:
    data: dict[str, Any] = {
        "message_id": "3EB0C767D097B7D4A5F1",
        "chat_id": SOURCE_GROUP_ID,
        "sender_id": SENDER_JID,
        "from_me": False,
        "kind": MessageKind.TEXT,
        "text": "מחר בשעה 10:00 יש לנו פגישה בקפה נחלת בנימין",
    }
    data.update(overrides)
    return InboundMessage(**data)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def session_dir(tmp_path: Path) -> Path:
    return tmp_path / "session"


@pytest.fixture
def settings(
    tmp_path: Path, session_dir: Path, monkeypatch: pytest.MonkeyPatch
) -> Settings:
    """Settings bound to a temporary session dir, without repo YAML configs."""
    monkeypatch.chdir(tmp_path)
    return Settings(
        openai_api_key="sk-test",
        session_dir=str(session_dir),
        target_group_id=TARGET_GROUP_ID,
    )


@pytest.fixture
def whatsapp_client() -> FakeWhatsAppClient:
    return FakeWhatsAppClient(
        [create_group(), create_group(TARGET_GROUP_ID, "אני", participants=[])]
    )


@pytest.fixture
def analyzer() -> ScriptedAnalyzer:
    return ScriptedAnalyzer()


@pytest.fixture
def gate(
    settings: Settings,
    whatsapp_client: FakeWhatsAppClient,
    analyzer: ScriptedAnalyzer,
    clock: FakeClock,
    sleep: RecordingSleep,
) -> MessageIntakeGate:
    return build_intake_gate(
        settings, whatsapp_client, analyzer, clock=clock, sleep=sleep
    )
