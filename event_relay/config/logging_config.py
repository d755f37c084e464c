"""structlog setup for the relay.

Every entry carries the app name; entries logged inside a message's
correlation scope also carry ``chat_id``/``message_id`` and a ``chat_kind``
derived from the chat id, so group traffic and the self-chat test channel
can be told apart when filtering production logs.
"""

import logging
import sys
from typing import Any, Final

import structlog
from structlog.types import EventDict, Processor

from event_relay.domain.intake_constants import GROUP_JID_SUFFIX

APP_NAME: Final[str] = "event_relay"

NOISY_LOGGERS: Final[tuple[str, ...]] = ("httpx", "httpcore", "openai")
"""Client libraries that log every request at INFO."""

MAX_PREVIEW_LENGTH: Final[int] = 200


def add_app_context(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    event_dict["app"] = APP_NAME
    return event_dict


def add_chat_kind(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Tag entries that carry a chat id as ``group`` or ``direct``."""
    chat_id = event_dict.get("chat_id")
    if isinstance(chat_id, str) and chat_id:
        event_dict.setdefault(
            "chat_kind", "group" if chat_id.endswith(GROUP_JID_SUFFIX) else "direct"
        )
    return event_dict


def truncate_preview(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Cap ``preview`` fields; message bodies and LLM output can be long."""
    preview = event_dict.get("preview")
    if isinstance(preview, str) and len(preview) > MAX_PREVIEW_LENGTH:
        event_dict["preview"] = preview[:MAX_PREVIEW_LENGTH] + "…"
    return event_dict


def build_processors(json_logs: bool) -> list[Processor]:
    """Processor chain: context merge, relay enrichers, then a renderer."""
    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_app_context,
        add_chat_kind,
        truncate_preview,
    ]
    if json_logs:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    return processors


def setup_logging(
    log_level: str = "INFO",
    json_logs: bool = False,
    verbose: bool = False,
) -> None:
    """Configure stdlib logging and structlog.

    Args:
        log_level: Level name; unknown names fall back to INFO
        json_logs: JSON lines (production) instead of console output
        verbose: Keep NOISY_LOGGERS at ``log_level`` instead of WARNING
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)

    if not verbose:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=build_processors(json_logs),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)  # type: ignore[no-any-return]


def bind_context(**kwargs: Any) -> None:
    """Bind keys for every entry logged by the current task."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)
