"""File-backed store of events already dispatched to the target group."""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Callable
from datetime import timedelta
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from event_relay.config.logging_config import get_logger
from event_relay.domain.intake_constants import CREATED_EVENTS_RETENTION_DAYS
from event_relay.domain.models import CreatedEventRecord, EventDetails, epoch_ms
from event_relay.services.deduplicator import generate_event_fingerprint

__all__ = ["CreatedEventsStore"]

logger = get_logger(__name__)

ClockCallable = Callable[[], float]


class CreatedEventsStore:
    """Dedup store keyed by event fingerprint.

    All membership operations are synchronous and never await, so a
    check followed by a mark cannot interleave with another coroutine.
    Eviction is lazy: records past the retention window are dropped only
    when the store is saved.
    """

    def __init__(
        self,
        file_path: Path | str,
        *,
        retention_days: int = CREATED_EVENTS_RETENTION_DAYS,
        clock: ClockCallable | None = None,
    ) -> None:
        self._file_path = Path(file_path)
        self._retention = timedelta(days=retention_days)
        self._clock = clock or time.time
        self._records: dict[str, CreatedEventRecord] = {}

    @property
    def file_path(self) -> Path:
        return self._file_path

    def __len__(self) -> int:
        return len(self._records)

    def records(self) -> list[CreatedEventRecord]:
        """Return a snapshot of the current records."""
        return list(self._records.values())

    def load_events_from_file(self) -> int:
        """Load persisted records, replacing the in-memory set.

        Records are loaded as-is, without applying the retention window.
        A missing, unreadable or corrupt file leaves the store empty.

        Returns:
            Number of records loaded
        """
        self._records = {}
        if not self._file_path.exists():
            logger.info("created_events_file_missing", path=str(self._file_path))
            return 0

        try:
            raw = json.loads(self._file_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.error(
                "created_events_load_failed",
                path=str(self._file_path),
                error=str(exc),
            )
            return 0

        if not isinstance(raw, list):
            logger.error(
                "created_events_invalid_format",
                path=str(self._file_path),
                type=type(raw).__name__,
            )
            return 0

        skipped = 0
        for item in raw:
            try:
                record = CreatedEventRecord.model_validate(item)
            except PydanticValidationError:
                skipped += 1
                continue
            self._records.setdefault(record.fingerprint, record)

        logger.info(
            "created_events_loaded",
            path=str(self._file_path),
            count=len(self._records),
            skipped=skipped,
        )
        return len(self._records)

    def is_event_already_created(self, event: EventDetails) -> bool:
        return generate_event_fingerprint(event) in self._records

    def mark_event_as_created(self, event: EventDetails) -> bool:
        """Record an event as dispatched.

        Idempotent: marking an already known fingerprint changes nothing.

        Returns:
            True if a new record was inserted
        """
        fingerprint = generate_event_fingerprint(event)
        if fingerprint in self._records:
            return False

        self._records[fingerprint] = CreatedEventRecord(
            fingerprint=fingerprint,
            title=event.title,
            start_date_iso=event.start_date_iso,
            created_at=epoch_ms(self._clock()),
        )
        logger.debug(
            "event_marked_created", fingerprint=fingerprint, title=event.title
        )
        return True

    def forget_event(self, event: EventDetails) -> bool:
        """Release a mark, e.g. when the dispatch it guarded failed."""
        return self._records.pop(generate_event_fingerprint(event), None) is not None

    def save_events_to_file(self) -> None:
        """Drop records past retention, then rewrite the file wholesale.

        I/O failures are logged and swallowed; the in-memory set stays
        authoritative.
        """
        self._write(*self._snapshot())

    async def save_events_async(self) -> None:
        """Like save_events_to_file, with the file write off the event loop.

        Eviction and serialization run on the loop, so the write thread only
        sees an immutable snapshot.
        """
        await asyncio.to_thread(self._write, *self._snapshot())

    def _snapshot(self) -> tuple[str, int, int]:
        cutoff_ms = epoch_ms(self._clock() - self._retention.total_seconds())
        expired = [
            fingerprint
            for fingerprint, record in self._records.items()
            if record.created_at < cutoff_ms
        ]
        for fingerprint in expired:
            del self._records[fingerprint]

        payload = [
            record.model_dump(by_alias=True) for record in self._records.values()
        ]
        return json.dumps(payload, ensure_ascii=False, indent=2), len(payload), len(expired)

    def _write(self, content: str, count: int, expired: int) -> None:
        try:
            self._file_path.parent.mkdir(parents=True, exist_ok=True)
            self._file_path.write_text(content, encoding="utf-8")
        except OSError as exc:
            logger.error(
                "created_events_save_failed",
                path=str(self._file_path),
                error=str(exc),
            )
            return

        logger.debug(
            "created_events_saved",
            path=str(self._file_path),
            count=count,
            expired=expired,
        )
