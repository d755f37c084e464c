"""Tests for the created-events dedup store."""

import asyncio
import json
from pathlib import Path

from event_relay.adapters import created_events_store
from event_relay.adapters.created_events_store import CreatedEventsStore
from event_relay.services.deduplicator import generate_event_fingerprint
from tests.conftest import FakeClock, create_test_event

DAY_SECONDS = 24 * 60 * 60


def _store(tmp_path: Path, clock: FakeClock) -> CreatedEventsStore:
    return CreatedEventsStore(tmp_path / "created_events.json", clock=clock)


def test_is_created_false_before_mark_true_after(
    tmp_path: Path, clock: FakeClock
) -> None:
    store = _store(tmp_path, clock)
    event = create_test_event()

    assert store.is_event_already_created(event) is False
    assert store.mark_event_as_created(event) is True
    assert store.is_event_already_created(event) is True


def test_mark_is_idempotent(tmp_path: Path, clock: FakeClock) -> None:
    store = _store(tmp_path, clock)
    event = create_test_event()

    store.mark_event_as_created(event)
    assert store.mark_event_as_created(create_test_event(title="פגישה  בקפה")) is False
    assert len(store) == 1


def test_forget_releases_claim(tmp_path: Path, clock: FakeClock) -> None:
    store = _store(tmp_path, clock)
    event = create_test_event()
    store.mark_event_as_created(event)

    assert store.forget_event(event) is True
    assert store.is_event_already_created(event) is False
    assert store.forget_event(event) is False


def test_save_writes_records_with_camel_case_keys(
    tmp_path: Path, clock: FakeClock
) -> None:
    store = _store(tmp_path, clock)
    event = create_test_event()
    store.mark_event_as_created(event)

    store.save_events_to_file()

    payload = json.loads(store.file_path.read_text(encoding="utf-8"))
    assert payload == [
        {
            "fingerprint": generate_event_fingerprint(event),
            "title": "פגישה בקפה",
            "startDateISO": "2025-10-10T10:00:00+03:00",
            "createdAt": int(clock.now * 1000),
        }
    ]


def test_save_drops_records_past_retention(tmp_path: Path, clock: FakeClock) -> None:
    store = _store(tmp_path, clock)
    old_event = create_test_event(title="ישן")
    store.mark_event_as_created(old_event)
    clock.advance(31 * DAY_SECONDS)
    fresh_event = create_test_event(title="חדש")
    store.mark_event_as_created(fresh_event)

    # Still deduplicated until the next save.
    assert store.is_event_already_created(old_event) is True

    store.save_events_to_file()

    assert store.is_event_already_created(old_event) is False
    assert store.is_event_already_created(fresh_event) is True
    saved = json.loads(store.file_path.read_text(encoding="utf-8"))
    assert [record["title"] for record in saved] == ["חדש"]


def test_load_keeps_records_past_retention_until_save(
    tmp_path: Path, clock: FakeClock
) -> None:
    """Load is as-is; eviction only happens on save."""
    event = create_test_event()
    path = tmp_path / "created_events.json"
    old_created_at = int((clock.now - 40 * DAY_SECONDS) * 1000)
    path.write_text(
        json.dumps(
            [
                {
                    "fingerprint": generate_event_fingerprint(event),
                    "title": event.title,
                    "startDateISO": event.start_date_iso,
                    "createdAt": old_created_at,
                }
            ]
        ),
        encoding="utf-8",
    )
    store = CreatedEventsStore(path, clock=clock)

    assert store.load_events_from_file() == 1
    assert store.is_event_already_created(event) is True


def test_load_round_trip_survives_restart(tmp_path: Path, clock: FakeClock) -> None:
    event = create_test_event()
    first = _store(tmp_path, clock)
    first.mark_event_as_created(event)
    first.save_events_to_file()

    second = _store(tmp_path, clock)
    second.load_events_from_file()

    assert second.is_event_already_created(event) is True


def test_load_missing_file_is_empty(tmp_path: Path, clock: FakeClock) -> None:
    store = _store(tmp_path, clock)

    assert store.load_events_from_file() == 0
    assert len(store) == 0


def test_load_corrupt_file_is_empty(tmp_path: Path, clock: FakeClock) -> None:
    path = tmp_path / "created_events.json"
    path.write_text("{not json", encoding="utf-8")
    store = CreatedEventsStore(path, clock=clock)

    assert store.load_events_from_file() == 0
    assert len(store) == 0


def test_load_non_list_payload_is_empty(tmp_path: Path, clock: FakeClock) -> None:
    path = tmp_path / "created_events.json"
    path.write_text(json.dumps({"fingerprint": "abc"}), encoding="utf-8")
    store = CreatedEventsStore(path, clock=clock)

    assert store.load_events_from_file() == 0


def test_load_skips_invalid_items_and_duplicates(
    tmp_path: Path, clock: FakeClock
) -> None:
    path = tmp_path / "created_events.json"
    path.write_text(
        json.dumps(
            [
                {"fingerprint": "a", "title": "ראשון", "createdAt": 1},
                {"fingerprint": "a", "title": "כפול", "createdAt": 2},
                {"title": "ללא טביעה", "createdAt": 3},
                "garbage",
            ]
        ),
        encoding="utf-8",
    )
    store = CreatedEventsStore(path, clock=clock)

    assert store.load_events_from_file() == 1
    assert store.records()[0].title == "ראשון"


def test_save_failure_is_swallowed(tmp_path: Path, clock: FakeClock) -> None:
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("", encoding="utf-8")
    store = CreatedEventsStore(blocker / "created_events.json", clock=clock)
    store.mark_event_as_created(create_test_event())

    store.save_events_to_file()

    assert len(store) == 1


def test_async_save_writes_off_the_event_loop(
    tmp_path: Path, clock: FakeClock, mocker
) -> None:
    store = _store(tmp_path, clock)
    store.mark_event_as_created(create_test_event())
    to_thread = mocker.spy(created_events_store.asyncio, "to_thread")

    asyncio.run(store.save_events_async())

    to_thread.assert_called_once()
    saved = json.loads(store.file_path.read_text(encoding="utf-8"))
    assert [record["title"] for record in saved] == ["פגישה בקפה"]


def test_async_save_evicts_before_writing(tmp_path: Path, clock: FakeClock) -> None:
    store = _store(tmp_path, clock)
    store.mark_event_as_created(create_test_event(title="ישן"))
    clock.advance(31 * DAY_SECONDS)
    store.mark_event_as_created(create_test_event(title="חדש"))

    asyncio.run(store.save_events_async())

    saved = json.loads(store.file_path.read_text(encoding="utf-8"))
    assert [record["title"] for record in saved] == ["חדש"]
    assert len(store) == 1
