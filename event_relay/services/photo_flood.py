"""Photo flood detection.

Distinguishes a burst of album photos (not worth an LLM call) from an event
flyer sent as an image. Each chat keeps its own sliding window of recent
image arrivals; stale arrivals are pruned whenever a window is read or
written, never by a timer.
"""

import time
from collections.abc import Callable

from event_relay.config.logging_config import get_logger
from event_relay.domain.intake_constants import (
    PHOTO_FLOOD_MIN_IMAGES,
    PHOTO_FLOOD_NO_CAPTION_RATIO,
    PHOTO_FLOOD_WINDOW_SECONDS,
)
from event_relay.domain.models import ImageArrivalRecord

logger = get_logger(__name__)


class PhotoFloodDetector:
    """Per-chat sliding-window tracker of image arrivals."""

    def __init__(
        self,
        *,
        window_seconds: float = PHOTO_FLOOD_WINDOW_SECONDS,
        min_images: int = PHOTO_FLOOD_MIN_IMAGES,
        no_caption_ratio: float = PHOTO_FLOOD_NO_CAPTION_RATIO,
        clock: Callable[[], float] | None = None,
    ) -> None:
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        if min_images < 1:
            raise ValueError("min_images must be at least 1")
        if not 0.0 < no_caption_ratio <= 1.0:
            raise ValueError("no_caption_ratio must be in (0, 1]")

        self._window_seconds = window_seconds
        self._min_images = min_images
        self._no_caption_ratio = no_caption_ratio
        self._clock = clock or time.time
        self._arrivals: dict[str, list[ImageArrivalRecord]] = {}

    def track_image_message(self, chat_id: str, has_caption: bool) -> None:
        """Record an image arrival for a chat."""
        now = self._clock()
        window = self._prune(chat_id, now)
        window.append(ImageArrivalRecord(timestamp=now, has_caption=has_caption))
        self._arrivals[chat_id] = window

    def is_photo_flood(self, chat_id: str) -> bool:
        """Return True if the chat is currently being flooded with photos.

        Requires at least ``min_images`` arrivals inside the window, of which
        at least ``no_caption_ratio`` carry no caption.
        """
        window = self._prune(chat_id, self._clock())
        total = len(window)
        if total < self._min_images:
            return False

        without_caption = sum(1 for record in window if not record.has_caption)
        is_flood = without_caption / total >= self._no_caption_ratio
        if is_flood:
            logger.info(
                "photo_flood_detected",
                chat_id=chat_id,
                images_in_window=total,
                without_caption=without_caption,
            )
        return is_flood

    def recent_images(self, chat_id: str) -> list[ImageArrivalRecord]:
        """Return a snapshot of the chat's raw window, without pruning."""
        return list(self._arrivals.get(chat_id, []))

    def _prune(self, chat_id: str, now: float) -> list[ImageArrivalRecord]:
        cutoff = now - self._window_seconds
        window = [
            record
            for record in self._arrivals.get(chat_id, [])
            if record.timestamp >= cutoff
        ]
        if window:
            self._arrivals[chat_id] = window
        else:
            self._arrivals.pop(chat_id, None)
        return window
