"""Rendering of detected events for the target group.

Produces the Hebrew text summary and the native calendar-invite payload.
Event times arrive as ISO-8601 strings from the analyzer; naive values are
interpreted in the display timezone.
"""

from datetime import datetime
from typing import Final

import pytz

from event_relay.config.logging_config import get_logger
from event_relay.domain.models import EventDetails, EventInvite

logger = get_logger(__name__)

DEFAULT_TITLE: Final[str] = "אירוע"
SOURCE_PREFIX: Final[str] = "מקור:"

HEBREW_WEEKDAYS: Final[tuple[str, ...]] = (
    "יום שני",
    "יום שלישי",
    "יום רביעי",
    "יום חמישי",
    "יום שישי",
    "יום שבת",
    "יום ראשון",
)

HEBREW_MONTHS: Final[tuple[str, ...]] = (
    "ינואר",
    "פברואר",
    "מרץ",
    "אפריל",
    "מאי",
    "יוני",
    "יולי",
    "אוגוסט",
    "ספטמבר",
    "אוקטובר",
    "נובמבר",
    "דצמבר",
)


def parse_event_datetime(value: str | None, tz_name: str) -> datetime | None:
    """Parse an ISO-8601 string into an aware datetime in ``tz_name``.

    Returns None for missing or unparsable values.
    """
    if not value:
        return None

    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        logger.debug("event_datetime_unparsable", value=value)
        return None

    tz = pytz.timezone(tz_name)
    if parsed.tzinfo is None:
        return tz.localize(parsed)
    return parsed.astimezone(tz)


def format_hebrew_datetime(moment: datetime) -> str:
    """Render e.g. ``יום שלישי, 15 באוקטובר, 10:00``."""
    weekday = HEBREW_WEEKDAYS[moment.weekday()]
    month = HEBREW_MONTHS[moment.month - 1]
    return f"{weekday}, {moment.day} ב{month}, {moment:%H:%M}"


def format_event_message(
    event: EventDetails, source_chat_name: str | None, tz_name: str
) -> str:
    """Build the human-readable event summary sent to the target group."""
    lines = [f"📅 *{event.title or DEFAULT_TITLE}*", ""]

    if source_chat_name:
        lines += [f"📱 {SOURCE_PREFIX} {source_chat_name}", ""]

    if event.description:
        lines += [event.description, ""]

    start = parse_event_datetime(event.start_date_iso, tz_name)
    if start is not None:
        when = f"🕐 {format_hebrew_datetime(start)}"
        end = parse_event_datetime(event.end_date_iso, tz_name)
        if end is not None:
            when += f" - {end:%H:%M}"
        lines.append(when)

    if event.location:
        lines.append(f"📍 {event.location}")

    return "\n".join(lines).rstrip("\n") + "\n"


def build_event_invite(
    event: EventDetails, source_chat_name: str | None, tz_name: str
) -> EventInvite | None:
    """Build the native invite payload.

    Returns None unless the event has a title and parsable start and end.
    """
    if not event.title:
        return None

    start = parse_event_datetime(event.start_date_iso, tz_name)
    end = parse_event_datetime(event.end_date_iso, tz_name)
    if start is None or end is None:
        return None

    description = event.description or ""
    if source_chat_name:
        description = f"{SOURCE_PREFIX} {source_chat_name}\n\n{description}"

    return EventInvite(
        name=event.title,
        description=description.strip() or None,
        start=start,
        end=end,
        location=event.location,
    )
