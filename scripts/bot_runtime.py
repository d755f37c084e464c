"""Common runtime helpers for the bot scripts."""

from __future__ import annotations

import asyncio
import signal
from dataclasses import dataclass, field

from event_relay.config.logging_config import get_logger, setup_logging
from event_relay.config.settings import Settings
from event_relay.domain.exceptions import EventRelayError
from event_relay.domain.protocols import InboundEventSourceProtocol
from event_relay.observability.metrics import ensure_metrics_exporter
from event_relay.use_cases.event_router import route_bridge_event
from event_relay.use_cases.intake_gate import MessageIntakeGate

logger = get_logger(__name__)


@dataclass
class ShutdownController:
    """Shutdown state shared between signal handlers and the event loop."""

    _event: asyncio.Event = field(default_factory=asyncio.Event)

    def is_set(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    def request(self, signum: int) -> None:
        sig_name = signal.Signals(signum).name
        logger.info("shutdown_signal_received", signal=sig_name)
        self._event.set()


def install_signal_handlers(controller: ShutdownController) -> None:
    """Register SIGTERM/SIGINT handlers on the running loop."""

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(signum, controller.request, signum)


def initialize_logging(settings: Settings, *, verbose: bool = False) -> None:
    """Initialize structlog-based logging for scripts."""

    setup_logging(log_level=settings.log_level, json_logs=settings.log_json, verbose=verbose)
    logger.info(
        "logging_initialized", level=settings.log_level, json_logs=settings.log_json
    )


def initialize_metrics(settings: Settings) -> None:
    if settings.metrics_enabled:
        ensure_metrics_exporter(settings.metrics_port)


async def consume_events(
    gate: MessageIntakeGate, source: InboundEventSourceProtocol
) -> None:
    """Feed bridge events to the gate; each event runs as its own task."""

    pending: set[asyncio.Task[object]] = set()
    try:
        async for payload in source.iter_events():
            try:
                handler = route_bridge_event(gate, payload)
            except Exception as exc:
                logger.error(
                    "bridge_event_routing_failed",
                    event_type=payload.get("type"),
                    error=str(exc),
                    error_type=type(exc).__name__,
                    exc_info=True,
                )
                continue
            if handler is None:
                continue
            task = asyncio.create_task(handler)
            pending.add(task)
            task.add_done_callback(pending.discard)
    finally:
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)


async def run_until_shutdown(
    gate: MessageIntakeGate,
    source: InboundEventSourceProtocol,
    controller: ShutdownController,
) -> None:
    """Run the gate until a shutdown signal arrives or the stream ends."""

    await gate.start()
    consumer = asyncio.create_task(consume_events(gate, source), name="bridge-consumer")
    stopper = asyncio.create_task(controller.wait(), name="shutdown-wait")
    try:
        done, _ = await asyncio.wait(
            {consumer, stopper}, return_when=asyncio.FIRST_COMPLETED
        )
        if consumer in done and consumer.exception() is not None:
            error = consumer.exception()
            if not isinstance(error, EventRelayError):
                raise error
            logger.error("bridge_stream_failed", error=str(error))
    finally:
        for task in (consumer, stopper):
            task.cancel()
        await asyncio.gather(consumer, stopper, return_exceptions=True)
        await gate.shutdown()


__all__ = [
    "ShutdownController",
    "consume_events",
    "initialize_logging",
    "initialize_metrics",
    "install_signal_handlers",
    "run_until_shutdown",
]
