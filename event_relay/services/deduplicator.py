"""Event fingerprinting for deduplication.

Rules:
1. Identity is (title, start date, location) only
2. Title and location are compared lowercased with whitespace collapsed
3. The start date participates exactly as the analyzer produced it
4. Missing fields become a fixed empty placeholder, never an error

Time of day, end date, description and summary are deliberately not part of
the key: two announcements of the same title/start/location are the same
occasion even if the surrounding text differs.
"""

import hashlib

from event_relay.domain.intake_constants import (
    FINGERPRINT_EMPTY_PLACEHOLDER,
    FINGERPRINT_SEPARATOR,
)
from event_relay.domain.models import EventDetails


def normalize_fingerprint_part(value: str | None) -> str:
    """Lowercase, trim and collapse internal whitespace.

    Args:
        value: Raw field value or None

    Returns:
        Normalized value, or the empty placeholder for None

    Example:
        >>> normalize_fingerprint_part("  Cafe   Nahalat  Binyamin ")
        'cafe nahalat binyamin'
    """
    if value is None:
        return FINGERPRINT_EMPTY_PLACEHOLDER
    return " ".join(value.lower().split())


def build_fingerprint_material(event: EventDetails) -> str:
    """Build the composite identity string an event is hashed from.

    Args:
        event: Event to describe

    Returns:
        ``title|startDateISO|location`` after normalization
    """
    start = (
        event.start_date_iso
        if event.start_date_iso is not None
        else FINGERPRINT_EMPTY_PLACEHOLDER
    )
    return FINGERPRINT_SEPARATOR.join(
        [
            normalize_fingerprint_part(event.title),
            start,
            normalize_fingerprint_part(event.location),
        ]
    )


def generate_event_fingerprint(event: EventDetails) -> str:
    """Generate a stable identity key for an event.

    Pure function: identical logical inputs always give the same key, while a
    different title, location or start date (even one hour apart) gives a
    different key.

    Args:
        event: Event to fingerprint

    Returns:
        SHA1 hex digest of the normalized composite key

    Example:
        >>> a = EventDetails(title="Meeting", location="Cafe", start_date_iso="2025-01-01T08:00:00.000Z")
        >>> b = EventDetails(title="meeting", location="CAFE", start_date_iso="2025-01-01T08:00:00.000Z")
        >>> generate_event_fingerprint(a) == generate_event_fingerprint(b)
        True
    """
    material = build_fingerprint_material(event)
    return hashlib.sha1(material.encode("utf-8")).hexdigest()
