"""Tests for photo flood detection."""

import pytest

from event_relay.services.photo_flood import PhotoFloodDetector
from tests.conftest import FakeClock

CHAT_ID = "120363000000000002@g.us"


@pytest.fixture
def detector(clock: FakeClock) -> PhotoFloodDetector:
    return PhotoFloodDetector(clock=clock)


def _track(detector: PhotoFloodDetector, *captions: bool) -> None:
    for has_caption in captions:
        detector.track_image_message(CHAT_ID, has_caption)


def test_two_images_without_caption_is_not_flood(detector: PhotoFloodDetector) -> None:
    _track(detector, False, False)

    assert detector.is_photo_flood(CHAT_ID) is False


def test_three_images_without_caption_is_flood(detector: PhotoFloodDetector) -> None:
    _track(detector, False, False, False)

    assert detector.is_photo_flood(CHAT_ID) is True


def test_three_without_and_one_with_caption_is_flood(
    detector: PhotoFloodDetector,
) -> None:
    """75% without captions is above the 70% threshold."""
    _track(detector, False, False, False, True)

    assert detector.is_photo_flood(CHAT_ID) is True


def test_half_with_captions_is_not_flood(detector: PhotoFloodDetector) -> None:
    _track(detector, False, False, True, True)

    assert detector.is_photo_flood(CHAT_ID) is False


def test_captioned_images_are_never_flood(detector: PhotoFloodDetector) -> None:
    _track(detector, True, True, True)

    assert detector.is_photo_flood(CHAT_ID) is False


def test_unknown_chat_is_not_flood(detector: PhotoFloodDetector) -> None:
    assert detector.is_photo_flood("nobody@g.us") is False


def test_old_records_excluded_before_next_write(
    detector: PhotoFloodDetector, clock: FakeClock
) -> None:
    _track(detector, False, False, False)
    clock.advance(31)

    # Raw window still holds the stale arrivals until something prunes it.
    assert len(detector.recent_images(CHAT_ID)) == 3
    assert detector.is_photo_flood(CHAT_ID) is False
    assert detector.recent_images(CHAT_ID) == []


def test_window_slides(detector: PhotoFloodDetector, clock: FakeClock) -> None:
    _track(detector, False, False)
    clock.advance(20)
    _track(detector, False)
    assert detector.is_photo_flood(CHAT_ID) is True

    clock.advance(15)
    # The first two are now 35s old and fall out of the 30s window.
    assert detector.is_photo_flood(CHAT_ID) is False
    assert len(detector.recent_images(CHAT_ID)) == 1


def test_record_exactly_at_window_edge_is_kept(
    detector: PhotoFloodDetector, clock: FakeClock
) -> None:
    _track(detector, False, False, False)
    clock.advance(30)

    assert detector.is_photo_flood(CHAT_ID) is True


def test_windows_are_per_chat(detector: PhotoFloodDetector) -> None:
    _track(detector, False, False, False)
    detector.track_image_message("other@g.us", True)

    assert detector.is_photo_flood(CHAT_ID) is True
    assert detector.is_photo_flood("other@g.us") is False


def test_custom_thresholds(clock: FakeClock) -> None:
    detector = PhotoFloodDetector(
        window_seconds=10, min_images=2, no_caption_ratio=0.5, clock=clock
    )
    detector.track_image_message(CHAT_ID, False)
    detector.track_image_message(CHAT_ID, True)

    assert detector.is_photo_flood(CHAT_ID) is True


@pytest.mark.parametrize(
    "kwargs",
    [
        {"window_seconds": 0},
        {"min_images": 0},
        {"no_caption_ratio": 0.0},
        {"no_caption_ratio": 1.5},
    ],
)
def test_invalid_parameters_rejected(kwargs: dict[str, float]) -> None:
    with pytest.raises(ValueError):
        PhotoFloodDetector(**kwargs)
