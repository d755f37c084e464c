"""Business rules and constants for message intake and event deduplication.

All suppression thresholds, cache lifetimes and retention windows are
centralized here. Settings expose each of them as an overridable field with
these values as defaults.
"""

from typing import Final

# Photo flood detection
PHOTO_FLOOD_WINDOW_SECONDS: Final[float] = 30.0
"""Sliding window (per chat) over which image arrivals are counted.

Business rule: only images that arrived in the last 30 seconds of the same
chat contribute to the flood decision. Older arrivals are pruned whenever the
window is read or appended to.
"""

PHOTO_FLOOD_MIN_IMAGES: Final[int] = 3
"""Minimum number of images in the window before a flood can be declared.

Business rule: below three images there is not enough evidence, so a single
flyer (captioned or not) is never suppressed.
"""

PHOTO_FLOOD_NO_CAPTION_RATIO: Final[float] = 0.7
"""Share of caption-less images in the window that marks a flood.

Example:
    - 3 without caption + 1 with caption → 75% → flood
    - 2 without caption + 2 with caption → 50% → not a flood
"""

# Group metadata cache
GROUP_CACHE_TTL_SECONDS: Final[float] = 30 * 60
"""In-memory lifetime of a cached group descriptor (30 minutes)."""

GROUP_CACHE_MAX_PERSISTED_AGE_SECONDS: Final[float] = 24 * 60 * 60
"""Entries saved to disk more than 24 hours ago are discarded on restore."""

GROUP_CACHE_FLUSH_INTERVAL_SECONDS: Final[float] = 5 * 60
"""Interval between periodic persistence cycles (5 minutes)."""

GROUP_FETCH_MAX_ATTEMPTS: Final[int] = 3
"""Maximum attempts for a group metadata fetch under rate limiting."""

GROUP_FETCH_BASE_BACKOFF_SECONDS: Final[float] = 2.0
"""First backoff delay after a rate-limited fetch; doubles on each attempt."""

GROUP_UPDATE_PAUSE_SECONDS: Final[float] = 0.5
"""Pause between refreshes when a batch of group updates arrives."""

# Event deduplication
CREATED_EVENTS_RETENTION_DAYS: Final[int] = 30
"""Created-event records older than this are dropped on the next save.

Business rule: eviction is lazy. Records are loaded as-is at startup so a
just-restarted process still honors dedup against events created right
before the cutoff.
"""

FINGERPRINT_EMPTY_PLACEHOLDER: Final[str] = ""
"""Value used for a missing title, start date or location in a fingerprint."""

FINGERPRINT_SEPARATOR: Final[str] = "|"

# Conversation context
MESSAGE_HISTORY_LENGTH: Final[int] = 5
"""Number of recent messages per chat passed to the analyzer as context."""

# Self-loop protection
EVENT_SUMMARY_MARKERS: Final[tuple[str, ...]] = (
    "Event Summary:",
    "Event details",
    "פרטי האירוע:",
)
"""Substrings that identify the relay's own event summaries.

A message containing any of them is an echo of something this process sent
and must never be analyzed again.
"""

GROUP_JID_SUFFIX: Final[str] = "@g.us"

CREATED_EVENTS_FILENAME: Final[str] = "created_events.json"
GROUP_CACHE_FILENAME: Final[str] = "group_cache.json"
