"""Domain models for the WhatsApp event relay.

All boundary models use Pydantic v2 for validation and serialization.
Persisted timestamps are epoch milliseconds so the on-disk files stay
compatible with the ones written by earlier deployments.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from event_relay.domain.intake_constants import GROUP_JID_SUFFIX


def epoch_ms(seconds: float) -> int:
    """Convert an epoch timestamp in seconds to integer milliseconds."""
    return int(seconds * 1000)


class MessageKind(str, Enum):
    """Content type of an inbound WhatsApp message."""

    TEXT = "text"
    IMAGE = "image"
    OTHER = "other"


class SuppressionReason(str, Enum):
    """Why the intake gate stopped a message before analysis."""

    UNSUPPORTED_TYPE = "unsupported_type"
    EMPTY_CONTENT = "empty_content"
    SUMMARY_ECHO = "summary_echo"
    DIRECT_CHAT = "direct_chat"
    OWN_GROUP_MESSAGE = "own_group_message"
    PHOTO_FLOOD = "photo_flood"
    CHAT_NOT_ALLOWED = "chat_not_allowed"


class InboundMessage(BaseModel):
    """Message-received event from the WhatsApp collaborator."""

    message_id: str = Field(..., description="Protocol message ID")
    chat_id: str = Field(..., description="Chat JID (group ids end with @g.us)")
    sender_id: str | None = Field(
        default=None, description="Participant JID of the author (groups only)"
    )
    from_me: bool = Field(default=False, description="Sent by this account")
    kind: MessageKind = Field(default=MessageKind.TEXT)
    text: str = Field(default="", description="Text body or image caption")
    image_base64: str | None = Field(default=None, description="Downloaded image")
    image_mime_type: str | None = Field(default=None, description="Image MIME type")

    @field_validator("text", mode="before")
    @classmethod
    def _none_text_to_empty(cls, v: Any) -> str:
        return "" if v is None else v

    @property
    def is_group(self) -> bool:
        return self.chat_id.endswith(GROUP_JID_SUFFIX)

    @property
    def is_self_chat(self) -> bool:
        """Owner writing to their own chat, used as a manual-testing channel."""
        return self.from_me and not self.is_group

    @property
    def has_caption(self) -> bool:
        return bool(self.text.strip())


class ParticipantRef(BaseModel):
    """Group participant as reported by the protocol layer."""

    model_config = ConfigDict(extra="ignore")

    id: str
    admin: str | None = None
    notify: str | None = Field(default=None, description="Push name, if known")

    @property
    def phone(self) -> str:
        return self.id.split("@")[0]


class GroupDescriptor(BaseModel):
    """Immutable snapshot of a group's metadata, replaced wholesale on refresh."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    id: str
    display_name: str = Field(
        default="",
        validation_alias=AliasChoices("displayName", "display_name", "subject"),
        serialization_alias="displayName",
    )
    participants: list[ParticipantRef] = Field(default_factory=list)
    fetched_at: int = Field(
        default=0,
        validation_alias=AliasChoices("fetchedAt", "fetched_at"),
        serialization_alias="fetchedAt",
        description="Fetch time (epoch milliseconds)",
    )

    def find_participant(self, participant_id: str | None) -> ParticipantRef | None:
        if not participant_id:
            return None
        wanted = _normalize_jid(participant_id)
        for participant in self.participants:
            if _normalize_jid(participant.id) == wanted:
                return participant
        return None


class CachedEntry(BaseModel):
    """Group descriptor wrapped with its persistence timestamp."""

    model_config = ConfigDict(populate_by_name=True)

    data: GroupDescriptor
    saved_at: int = Field(
        ...,
        validation_alias=AliasChoices("savedAt", "saved_at"),
        serialization_alias="savedAt",
        description="Save time (epoch milliseconds)",
    )


@dataclass(frozen=True, slots=True)
class ImageArrivalRecord:
    """One image arrival in a chat's sliding window."""

    timestamp: float
    has_caption: bool


class EventDetails(BaseModel):
    """Single event as produced by the analysis collaborator.

    All string fields are nullable; empty strings are normalized to None.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    is_event: bool = Field(
        default=False, validation_alias=AliasChoices("isEvent", "is_event")
    )
    summary: str | None = None
    title: str | None = None
    date: str | None = None
    time: str | None = None
    location: str | None = None
    description: str | None = None
    start_date_iso: str | None = Field(
        default=None,
        validation_alias=AliasChoices("startDateISO", "start_date_iso"),
        serialization_alias="startDateISO",
    )
    end_date_iso: str | None = Field(
        default=None,
        validation_alias=AliasChoices("endDateISO", "end_date_iso"),
        serialization_alias="endDateISO",
    )

    @field_validator("is_event", mode="before")
    @classmethod
    def _strict_true(cls, v: Any) -> bool:
        # Only a literal JSON true counts; "yes", 1 and friends do not.
        return v is True

    @field_validator(
        "summary",
        "title",
        "date",
        "time",
        "location",
        "description",
        "start_date_iso",
        "end_date_iso",
        mode="before",
    )
    @classmethod
    def _blank_to_none(cls, v: Any) -> str | None:
        if v is None:
            return None
        if not isinstance(v, str):
            v = str(v)
        return v if v.strip() else None


class AnalysisResult(BaseModel):
    """Structured analysis response: does the message describe events?"""

    model_config = ConfigDict(populate_by_name=True)

    has_events: bool = Field(
        default=False, validation_alias=AliasChoices("hasEvents", "has_events")
    )
    events: list[EventDetails] = Field(default_factory=list)

    @field_validator("events", mode="before")
    @classmethod
    def _events_list(cls, v: Any) -> list[Any]:
        if v is None:
            return []
        if isinstance(v, dict):
            return [v]
        return v

    @classmethod
    def empty(cls) -> "AnalysisResult":
        return cls(has_events=False, events=[])


class CreatedEventRecord(BaseModel):
    """Persisted record of an event that was dispatched to the target group."""

    model_config = ConfigDict(populate_by_name=True)

    fingerprint: str
    title: str | None = None
    start_date_iso: str | None = Field(
        default=None,
        validation_alias=AliasChoices("startDateISO", "start_date_iso"),
        serialization_alias="startDateISO",
    )
    created_at: int = Field(
        ...,
        validation_alias=AliasChoices("createdAt", "created_at"),
        serialization_alias="createdAt",
        description="Creation time (epoch milliseconds)",
    )


class EventInvite(BaseModel):
    """Native calendar invite payload sent to the target group."""

    name: str
    description: str | None = None
    start: datetime
    end: datetime
    location: str | None = None


class GroupUpdate(BaseModel):
    """Partial group-changed notification; only used as a refresh trigger."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    subject: str | None = None


class IntakeResult(BaseModel):
    """Outcome of running one inbound message through the intake gate."""

    message_id: str
    chat_id: str
    analyzed: bool = False
    suppressed_reason: SuppressionReason | None = None
    chat_name: str = ""
    events_detected: int = 0
    events_dispatched: int = 0
    events_duplicate: int = 0


class DryRunResult(BaseModel):
    """Analysis and formatting of a message without dispatching anything."""

    has_events: bool
    events: list[EventDetails] = Field(default_factory=list)
    formatted_messages: list[str] = Field(default_factory=list)


def _normalize_jid(jid: str) -> str:
    """Strip the device suffix (``123:4@s.whatsapp.net`` → ``123@s.whatsapp.net``)."""
    user, _, server = jid.partition("@")
    user = user.split(":")[0]
    return f"{user}@{server}" if server else user
