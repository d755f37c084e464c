"""Message intake gate use case.

Decides, per inbound message, whether it reaches event analysis, and then
whether each detected event is dispatched to the target group:

1. Content filter: unsupported kinds, empty messages, own summary echoes
2. Origin filter: only groups (minus our own posts) and the self-chat
3. Photo-flood filter: image bursts without captions skip analysis
4. Chat allow-list, then analysis with recent chat history
5. Dedup of detected events against the created-events store

Flood tracking and the dedup check-then-claim are synchronous, so they are
atomic with respect to other messages in flight on the event loop.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable, Iterable
from enum import Enum

from event_relay.adapters.created_events_store import CreatedEventsStore
from event_relay.adapters.group_metadata_cache import GroupMetadataCache
from event_relay.config.logging_config import get_logger
from event_relay.config.settings import Settings
from event_relay.domain.exceptions import EventRelayError
from event_relay.domain.intake_constants import (
    EVENT_SUMMARY_MARKERS,
    GROUP_CACHE_FLUSH_INTERVAL_SECONDS,
    GROUP_UPDATE_PAUSE_SECONDS,
)
from event_relay.domain.models import (
    AnalysisResult,
    DryRunResult,
    EventDetails,
    GroupUpdate,
    InboundMessage,
    IntakeResult,
    MessageKind,
    SuppressionReason,
)
from event_relay.domain.protocols import EventAnalyzerProtocol, WhatsAppClientProtocol
from event_relay.observability.metrics import (
    EVENTS_DISPATCHED_TOTAL,
    EVENTS_DUPLICATE_TOTAL,
    INTAKE_MESSAGES_TOTAL,
)
from event_relay.observability.tracing import correlation_scope
from event_relay.services.event_formatter import (
    build_event_invite,
    format_event_message,
)
from event_relay.services.message_history import MessageHistory
from event_relay.services.photo_flood import PhotoFloodDetector
from event_relay.use_cases.target_group import TargetGroupResolver

logger = get_logger(__name__)

SleepCallable = Callable[[float], Awaitable[None]]

UNKNOWN_SENDER = "Unknown"
UNKNOWN_GROUP = "Unknown Group"
DRY_RUN_CHAT_NAME = "Test Chat"
DRY_RUN_SENDER = "Test User"


class DispatchOutcome(str, Enum):
    """What happened to a single detected event."""

    DISPATCHED = "dispatched"
    DUPLICATE = "duplicate"
    INCOMPLETE = "incomplete"
    NO_TARGET = "no_target"
    FAILED = "failed"


def is_summary_echo(text: str) -> bool:
    """True if the text looks like an event summary this bot posted."""
    return any(marker in text for marker in EVENT_SUMMARY_MARKERS)


def is_dispatchable(event: EventDetails) -> bool:
    return event.is_event and bool(event.title) and bool(event.start_date_iso)


class MessageIntakeGate:
    """Owns the per-process intake state and runs messages through it.

    Lifecycle: construct at startup, ``await start()`` to restore persisted
    state and begin periodic flushing, ``await shutdown()`` to stop and
    flush once more.
    """

    def __init__(
        self,
        *,
        client: WhatsAppClientProtocol,
        analyzer: EventAnalyzerProtocol,
        group_cache: GroupMetadataCache,
        flood_detector: PhotoFloodDetector,
        created_events: CreatedEventsStore,
        history: MessageHistory,
        target_group: TargetGroupResolver,
        tz_name: str,
        allowed_chat_names: Iterable[str] = (),
        monitor_all_group_chats: bool = False,
        flush_interval_seconds: float = GROUP_CACHE_FLUSH_INTERVAL_SECONDS,
        group_update_pause_seconds: float = GROUP_UPDATE_PAUSE_SECONDS,
        sleep: SleepCallable | None = None,
    ) -> None:
        self._client = client
        self._analyzer = analyzer
        self.group_cache = group_cache
        self.flood_detector = flood_detector
        self.created_events = created_events
        self.history = history
        self.target_group = target_group
        self._tz_name = tz_name
        self._allowed_chat_names = [name for name in allowed_chat_names if name]
        self._monitor_all_group_chats = monitor_all_group_chats
        self._flush_interval_seconds = flush_interval_seconds
        self._group_update_pause_seconds = group_update_pause_seconds
        self._sleep = sleep or asyncio.sleep
        self._flush_task: asyncio.Task[None] | None = None

    # === Lifecycle ===

    async def start(self) -> None:
        """Restore persisted state, find the target group and start flushing."""
        restored_groups = self.group_cache.restore()
        restored_events = self.created_events.load_events_from_file()
        target_id = await self.target_group.resolve()

        if self._flush_task is None:
            self._flush_task = asyncio.create_task(
                self._flush_periodically(), name="intake-gate-flush"
            )

        logger.info(
            "intake_gate_started",
            restored_groups=restored_groups,
            restored_events=restored_events,
            target_group_id=target_id,
            flush_interval_seconds=self._flush_interval_seconds,
        )

    async def shutdown(self) -> None:
        """Stop the periodic flush and persist everything one last time."""
        task, self._flush_task = self._flush_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        self.flush()
        logger.info("intake_gate_stopped")

    def flush(self) -> None:
        """Persist the group cache and the created-events store."""
        self.group_cache.persist()
        self.created_events.save_events_to_file()

    async def _flush_periodically(self) -> None:
        while True:
            await asyncio.sleep(self._flush_interval_seconds)
            self.flush()
            logger.debug("intake_gate_flushed")

    # === Inbound messages ===

    async def handle_message(self, message: InboundMessage) -> IntakeResult:
        """Run one message through the gate.

        Never raises: collaborator failures end up as a result with zero
        dispatched events.
        """
        with correlation_scope(message_id=message.message_id, chat_id=message.chat_id):
            try:
                return await self._process(message)
            except Exception as exc:
                logger.error(
                    "intake_message_failed",
                    error=str(exc),
                    error_type=type(exc).__name__,
                    exc_info=True,
                )
                return IntakeResult(
                    message_id=message.message_id, chat_id=message.chat_id
                )

    async def _process(self, message: InboundMessage) -> IntakeResult:
        result = IntakeResult(message_id=message.message_id, chat_id=message.chat_id)

        reason = self._check_content_and_origin(message)
        if reason is None and message.kind is MessageKind.IMAGE:
            self.flood_detector.track_image_message(
                message.chat_id, message.has_caption
            )
            if self.flood_detector.is_photo_flood(message.chat_id):
                reason = SuppressionReason.PHOTO_FLOOD
        if reason is not None:
            return self._suppress(result, reason)

        chat_name, sender = await self._resolve_names(message)
        result.chat_name = chat_name

        if not self._is_chat_allowed(message, chat_name):
            return self._suppress(result, SuppressionReason.CHAT_NOT_ALLOWED)

        previous_messages = self.history.get(message.chat_id)
        self.history.add(message.chat_id, message.text)

        logger.info(
            "message_analysis_started",
            chat_name=chat_name,
            sender=sender,
            with_image=bool(message.image_base64),
        )
        INTAKE_MESSAGES_TOTAL.labels(outcome="analyzed").inc()
        result.analyzed = True

        analysis = await self._analyze(
            message.text,
            chat_name=chat_name,
            sender=sender,
            history=previous_messages,
            image_base64=message.image_base64,
            image_mime_type=message.image_mime_type,
        )
        if not analysis.has_events:
            return result

        for event in analysis.events:
            if not event.is_event:
                continue
            result.events_detected += 1
            outcome = await self._dispatch_event(event, chat_name)
            if outcome is DispatchOutcome.DISPATCHED:
                result.events_dispatched += 1
            elif outcome is DispatchOutcome.DUPLICATE:
                result.events_duplicate += 1

        logger.info(
            "message_analysis_complete",
            events_detected=result.events_detected,
            events_dispatched=result.events_dispatched,
            events_duplicate=result.events_duplicate,
        )
        return result

    def _check_content_and_origin(
        self, message: InboundMessage
    ) -> SuppressionReason | None:
        if message.kind is MessageKind.OTHER:
            return SuppressionReason.UNSUPPORTED_TYPE
        if not message.text.strip() and not message.image_base64:
            return SuppressionReason.EMPTY_CONTENT
        if is_summary_echo(message.text):
            return SuppressionReason.SUMMARY_ECHO
        if not message.is_group and not message.is_self_chat:
            return SuppressionReason.DIRECT_CHAT
        if message.is_group and message.from_me:
            return SuppressionReason.OWN_GROUP_MESSAGE
        return None

    def _suppress(self, result: IntakeResult, reason: SuppressionReason) -> IntakeResult:
        INTAKE_MESSAGES_TOTAL.labels(outcome=reason.value).inc()
        logger.debug("message_suppressed", reason=reason.value)
        result.suppressed_reason = reason
        return result

    async def _resolve_names(self, message: InboundMessage) -> tuple[str, str]:
        """Return (chat name, sender name) for a message."""
        if not message.is_group:
            own_name = message.chat_id.split("@")[0]
            return own_name, own_name

        descriptor = await self.group_cache.get(message.chat_id)
        if descriptor is None:
            return "", UNKNOWN_SENDER

        participant = descriptor.find_participant(message.sender_id)
        if participant is None:
            sender = UNKNOWN_SENDER
        else:
            sender = participant.notify or participant.phone or UNKNOWN_SENDER
        return descriptor.display_name or UNKNOWN_GROUP, sender

    def _is_chat_allowed(self, message: InboundMessage, chat_name: str) -> bool:
        if message.is_self_chat or self._monitor_all_group_chats:
            return True
        if not self._allowed_chat_names:
            return True

        name = chat_name or message.chat_id
        if any(allowed in name for allowed in self._allowed_chat_names):
            return True

        logger.debug(
            "chat_not_in_allow_list",
            chat_name=name,
            allowed=self._allowed_chat_names,
        )
        return False

    async def _analyze(
        self,
        text: str,
        *,
        chat_name: str,
        sender: str,
        history: list[str],
        image_base64: str | None,
        image_mime_type: str | None,
    ) -> AnalysisResult:
        try:
            return await self._analyzer.analyze_message(
                text,
                chat_name=chat_name,
                sender=sender,
                history=history,
                image_base64=image_base64,
                image_mime_type=image_mime_type,
            )
        except EventRelayError as exc:
            logger.error(
                "message_analysis_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return AnalysisResult.empty()

    # === Dispatch ===

    async def _dispatch_event(
        self, event: EventDetails, chat_name: str
    ) -> DispatchOutcome:
        if not is_dispatchable(event):
            logger.info("event_incomplete_skipped", title=event.title)
            return DispatchOutcome.INCOMPLETE

        # Check and claim must stay free of awaits.
        if self.created_events.is_event_already_created(event):
            EVENTS_DUPLICATE_TOTAL.inc()
            logger.info(
                "event_duplicate_skipped",
                title=event.title,
                start_date_iso=event.start_date_iso,
            )
            return DispatchOutcome.DUPLICATE

        target_id = self.target_group.target_id
        if target_id is None:
            logger.warning(
                "event_not_sent_no_target",
                title=event.title,
                target_name=self.target_group.target_name,
            )
            return DispatchOutcome.NO_TARGET

        self.created_events.mark_event_as_created(event)

        sent = False
        try:
            sent = await self._send_event(target_id, event, chat_name)
        finally:
            if not sent:
                self.created_events.forget_event(event)

        if not sent:
            return DispatchOutcome.FAILED

        await self.created_events.save_events_async()
        EVENTS_DISPATCHED_TOTAL.inc()
        logger.info(
            "event_dispatched",
            title=event.title,
            start_date_iso=event.start_date_iso,
            target_group_id=target_id,
        )
        return DispatchOutcome.DISPATCHED

    async def _send_event(
        self, target_id: str, event: EventDetails, chat_name: str
    ) -> bool:
        """Send the native invite, falling back to the text summary."""
        invite = build_event_invite(event, chat_name, self._tz_name)
        if invite is not None:
            try:
                await self._client.send_event(target_id, invite)
                return True
            except EventRelayError as exc:
                logger.warning(
                    "event_invite_send_failed_falling_back",
                    title=event.title,
                    error=str(exc),
                )

        text = format_event_message(event, chat_name, self._tz_name)
        try:
            await self._client.send_text(target_id, text)
        except EventRelayError as exc:
            logger.error("event_send_failed", title=event.title, error=str(exc))
            return False
        return True

    # === Dry run ===

    async def dry_run_message(
        self,
        text: str,
        chat_name: str = DRY_RUN_CHAT_NAME,
        image_base64: str | None = None,
        image_mime_type: str | None = None,
    ) -> DryRunResult:
        """Analyze and format a message without sending or recording anything."""
        logger.info("dry_run_started", chat_name=chat_name, preview=text)
        analysis = await self._analyze(
            text,
            chat_name=chat_name,
            sender=DRY_RUN_SENDER,
            history=[],
            image_base64=image_base64,
            image_mime_type=image_mime_type,
        )

        formatted = [
            format_event_message(event, chat_name, self._tz_name)
            for event in analysis.events
            if analysis.has_events and is_dispatchable(event)
        ]
        return DryRunResult(
            has_events=analysis.has_events,
            events=analysis.events,
            formatted_messages=formatted,
        )

    # === Group notifications ===

    async def handle_group_update(self, updates: list[GroupUpdate]) -> None:
        """Refresh cached metadata for every group named in an update batch."""
        group_ids = [update.id for update in updates if update.id]
        for update in updates:
            self.target_group.adopt_from_update(update)

        for index, group_id in enumerate(group_ids):
            if index:
                await self._sleep(self._group_update_pause_seconds)
            descriptor = await self.group_cache.refresh(group_id)
            logger.info(
                "group_metadata_refreshed",
                group_id=group_id,
                found=descriptor is not None,
            )

    async def handle_participants_update(self, group_id: str) -> None:
        """Refresh a group whose participant list changed."""
        descriptor = await self.group_cache.refresh(group_id)
        logger.info(
            "group_participants_refreshed",
            group_id=group_id,
            participants=len(descriptor.participants) if descriptor else None,
        )


def build_intake_gate(
    settings: Settings,
    client: WhatsAppClientProtocol,
    analyzer: EventAnalyzerProtocol,
    *,
    clock: Callable[[], float] | None = None,
    sleep: SleepCallable | None = None,
) -> MessageIntakeGate:
    """Wire a gate and its state owners from settings."""
    clock = clock or time.time
    group_cache = GroupMetadataCache(
        client.fetch_group_metadata,
        settings.group_cache_path,
        ttl_seconds=settings.group_cache_ttl_seconds,
        max_persisted_age_seconds=settings.group_cache_max_persisted_age_seconds,
        max_attempts=settings.group_cache_max_fetch_attempts,
        base_backoff_seconds=settings.group_cache_base_backoff_seconds,
        clock=clock,
        sleep=sleep,
    )
    flood_detector = PhotoFloodDetector(
        window_seconds=settings.photo_flood_window_seconds,
        min_images=settings.photo_flood_min_images,
        no_caption_ratio=settings.photo_flood_no_caption_ratio,
        clock=clock,
    )
    created_events = CreatedEventsStore(
        settings.created_events_path,
        retention_days=settings.dedup_retention_days,
        clock=clock,
    )
    target_group = TargetGroupResolver(
        client,
        target_name=settings.target_group_name,
        configured_id=settings.target_group_id,
    )
    return MessageIntakeGate(
        client=client,
        analyzer=analyzer,
        group_cache=group_cache,
        flood_detector=flood_detector,
        created_events=created_events,
        history=MessageHistory(settings.llm_history_length),
        target_group=target_group,
        tz_name=settings.tz_default,
        allowed_chat_names=settings.allowed_chat_names,
        monitor_all_group_chats=settings.monitor_all_group_chats,
        flush_interval_seconds=settings.group_cache_flush_interval_seconds,
        sleep=sleep,
    )
