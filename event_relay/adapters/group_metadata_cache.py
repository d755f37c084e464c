"""TTL cache of WhatsApp group descriptors with rate-limit aware fetching.

Entries live in memory for ``ttl_seconds`` and are periodically persisted to
a JSON file mapping group id to ``{"data": ..., "savedAt": ...}``. On
restore, entries saved more than ``max_persisted_age_seconds`` ago are
discarded; the rest get a fresh in-memory TTL counted from load time.
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from event_relay.config.logging_config import get_logger
from event_relay.domain.exceptions import is_rate_limit_error
from event_relay.domain.intake_constants import (
    GROUP_CACHE_MAX_PERSISTED_AGE_SECONDS,
    GROUP_CACHE_TTL_SECONDS,
    GROUP_FETCH_BASE_BACKOFF_SECONDS,
    GROUP_FETCH_MAX_ATTEMPTS,
)
from event_relay.domain.models import CachedEntry, GroupDescriptor, epoch_ms
from event_relay.observability.metrics import GROUP_METADATA_FETCH_TOTAL

__all__ = ["GroupMetadataCache"]

logger = get_logger(__name__)

FetchGroupCallable = Callable[[str], Awaitable[GroupDescriptor]]
ClockCallable = Callable[[], float]
SleepCallable = Callable[[float], Awaitable[None]]


@dataclass(slots=True)
class _CacheSlot:
    descriptor: GroupDescriptor
    expires_at: float


class GroupMetadataCache:
    """Group descriptor cache owned by a single intake gate."""

    def __init__(
        self,
        fetch_group: FetchGroupCallable,
        file_path: Path | str,
        *,
        ttl_seconds: float = GROUP_CACHE_TTL_SECONDS,
        max_persisted_age_seconds: float = GROUP_CACHE_MAX_PERSISTED_AGE_SECONDS,
        max_attempts: int = GROUP_FETCH_MAX_ATTEMPTS,
        base_backoff_seconds: float = GROUP_FETCH_BASE_BACKOFF_SECONDS,
        clock: ClockCallable | None = None,
        sleep: SleepCallable | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self._fetch_group = fetch_group
        self._file_path = Path(file_path)
        self._ttl_seconds = ttl_seconds
        self._max_persisted_age_seconds = max_persisted_age_seconds
        self._max_attempts = max_attempts
        self._base_backoff_seconds = base_backoff_seconds
        self._clock = clock or time.time
        self._sleep = sleep or asyncio.sleep
        self._slots: dict[str, _CacheSlot] = {}

    @property
    def file_path(self) -> Path:
        return self._file_path

    def __len__(self) -> int:
        return len(self._slots)

    def peek(self, group_id: str) -> GroupDescriptor | None:
        """Return the cached descriptor if present and unexpired, never fetching."""
        slot = self._slots.get(group_id)
        if slot is None:
            return None
        if slot.expires_at <= self._clock():
            del self._slots[group_id]
            return None
        return slot.descriptor

    def put(self, descriptor: GroupDescriptor) -> None:
        """Store a descriptor with a fresh TTL."""
        self._slots[descriptor.id] = _CacheSlot(
            descriptor=descriptor, expires_at=self._clock() + self._ttl_seconds
        )

    async def get(self, group_id: str) -> GroupDescriptor | None:
        """Return the cached descriptor, fetching it on a miss."""
        cached = self.peek(group_id)
        if cached is not None:
            GROUP_METADATA_FETCH_TOTAL.labels(result="hit").inc()
            return cached
        return await self.fetch_with_retry(group_id)

    async def fetch_with_retry(
        self, group_id: str, max_attempts: int | None = None
    ) -> GroupDescriptor | None:
        """Fetch a descriptor, backing off while the upstream rate-limits us.

        The cache is checked before every attempt, so a concurrent fetch that
        completed during a backoff sleep is reused. Rate-limit errors are
        retried after ``base_backoff_seconds * 2**attempt``; any other error
        ends the lookup immediately.

        Returns:
            The descriptor, or None if it could not be fetched
        """
        attempts = max_attempts or self._max_attempts

        for attempt in range(attempts):
            cached = self.peek(group_id)
            if cached is not None:
                GROUP_METADATA_FETCH_TOTAL.labels(result="hit").inc()
                return cached

            try:
                fetched = await self._fetch_group(group_id)
            except Exception as exc:
                if not is_rate_limit_error(exc):
                    GROUP_METADATA_FETCH_TOTAL.labels(result="error").inc()
                    logger.error(
                        "group_metadata_fetch_failed",
                        group_id=group_id,
                        error=str(exc),
                        error_type=type(exc).__name__,
                    )
                    return None

                GROUP_METADATA_FETCH_TOTAL.labels(result="rate_limited").inc()
                if attempt + 1 >= attempts:
                    break

                delay = self._base_backoff_seconds * (2**attempt)
                logger.warning(
                    "group_metadata_rate_limited",
                    group_id=group_id,
                    attempt=attempt + 1,
                    max_attempts=attempts,
                    delay_seconds=delay,
                )
                await self._sleep(delay)
                continue

            descriptor = fetched.model_copy(
                update={"fetched_at": epoch_ms(self._clock())}
            )
            self.put(descriptor)
            GROUP_METADATA_FETCH_TOTAL.labels(result="fetched").inc()
            logger.debug(
                "group_metadata_fetched",
                group_id=group_id,
                display_name=descriptor.display_name,
                participants=len(descriptor.participants),
                attempt=attempt + 1,
            )
            return descriptor

        GROUP_METADATA_FETCH_TOTAL.labels(result="exhausted").inc()
        logger.warning(
            "group_metadata_fetch_exhausted", group_id=group_id, attempts=attempts
        )
        return None

    def invalidate(self, group_id: str) -> bool:
        """Drop a cached entry. Returns True if one was present."""
        return self._slots.pop(group_id, None) is not None

    async def refresh(self, group_id: str) -> GroupDescriptor | None:
        """Invalidate and re-fetch, never trusting a partial update payload."""
        self.invalidate(group_id)
        return await self.fetch_with_retry(group_id)

    def persist(self) -> int:
        """Write unexpired entries to disk with a ``savedAt`` stamp.

        I/O failures are logged and swallowed. An empty cache does not
        overwrite an existing file.

        Returns:
            Number of entries written
        """
        now = self._clock()
        saved_at = epoch_ms(now)
        payload = {
            group_id: CachedEntry(data=slot.descriptor, saved_at=saved_at).model_dump(
                by_alias=True
            )
            for group_id, slot in list(self._slots.items())
            if slot.expires_at > now
        }
        if not payload:
            return 0

        try:
            self._file_path.parent.mkdir(parents=True, exist_ok=True)
            self._file_path.write_text(
                json.dumps(payload, ensure_ascii=False), encoding="utf-8"
            )
        except OSError as exc:
            logger.error(
                "group_cache_persist_failed",
                path=str(self._file_path),
                error=str(exc),
            )
            return 0

        logger.debug(
            "group_cache_persisted", path=str(self._file_path), count=len(payload)
        )
        return len(payload)

    def restore(self) -> int:
        """Load persisted entries younger than the maximum persisted age.

        A missing or corrupt file leaves the cache empty.

        Returns:
            Number of entries loaded
        """
        if not self._file_path.exists():
            return 0

        try:
            raw = json.loads(self._file_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.error(
                "group_cache_restore_failed",
                path=str(self._file_path),
                error=str(exc),
            )
            return 0

        if not isinstance(raw, dict):
            logger.error(
                "group_cache_invalid_format",
                path=str(self._file_path),
                type=type(raw).__name__,
            )
            return 0

        now_ms = epoch_ms(self._clock())
        max_age_ms = self._max_persisted_age_seconds * 1000
        loaded = 0
        stale = 0
        for group_id, item in raw.items():
            try:
                entry = CachedEntry.model_validate(item)
            except PydanticValidationError:
                logger.warning("group_cache_entry_invalid", group_id=group_id)
                continue
            if now_ms - entry.saved_at > max_age_ms:
                stale += 1
                continue
            self.put(entry.data)
            loaded += 1

        logger.info(
            "group_cache_restored",
            path=str(self._file_path),
            loaded=loaded,
            stale=stale,
        )
        return loaded
