"""Prometheus metrics for the intake pipeline.

Metrics are registered on import; the HTTP exporter is only started
explicitly by the runtime entrypoint.
"""

from __future__ import annotations

import threading
from typing import Final

from prometheus_client import Counter, Histogram, start_http_server

from event_relay.config.logging_config import get_logger

logger = get_logger(__name__)

INTAKE_MESSAGES_TOTAL: Final[Counter] = Counter(
    "intake_messages_total",
    "Inbound messages by intake decision",
    labelnames=("outcome",),
)

EVENTS_DISPATCHED_TOTAL: Final[Counter] = Counter(
    "events_dispatched_total",
    "Events sent to the target group",
)

EVENTS_DUPLICATE_TOTAL: Final[Counter] = Counter(
    "events_duplicate_total",
    "Detected events skipped because they were already dispatched",
)

GROUP_METADATA_FETCH_TOTAL: Final[Counter] = Counter(
    "group_metadata_fetch_total",
    "Group metadata lookups by result",
    labelnames=("result",),
)

LLM_ANALYSIS_DURATION_SECONDS: Final[Histogram] = Histogram(
    "llm_analysis_duration_seconds",
    "Duration of message analysis calls in seconds",
)

_EXPORTER_LOCK = threading.Lock()
_EXPORTER_STARTED = False


def ensure_metrics_exporter(port: int) -> None:
    """Start Prometheus HTTP exporter once per process."""

    global _EXPORTER_STARTED
    with _EXPORTER_LOCK:
        if _EXPORTER_STARTED:
            return

        try:
            start_http_server(port)
        except OSError as exc:
            logger.error("metrics_exporter_start_failed", port=port, error=str(exc))
            raise

        _EXPORTER_STARTED = True
        logger.info("metrics_exporter_started", port=port)


__all__ = [
    "EVENTS_DISPATCHED_TOTAL",
    "EVENTS_DUPLICATE_TOTAL",
    "GROUP_METADATA_FETCH_TOTAL",
    "INTAKE_MESSAGES_TOTAL",
    "LLM_ANALYSIS_DURATION_SECONDS",
    "ensure_metrics_exporter",
]
