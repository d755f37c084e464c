"""Routing of raw bridge events to the intake gate.

Bridge events are JSON objects with a ``type`` discriminator:

    {"type": "message", "message": {...}}
    {"type": "groups.update", "updates": [{"id": ..., "subject": ...}]}
    {"type": "group-participants.update", "id": ..., "participants": [...]}
"""

from collections.abc import Coroutine
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from event_relay.adapters.whatsapp_bridge import parse_bridge_message
from event_relay.config.logging_config import get_logger
from event_relay.domain.models import GroupUpdate
from event_relay.use_cases.intake_gate import MessageIntakeGate

logger = get_logger(__name__)

MESSAGE_EVENT = "message"
GROUPS_UPDATE_EVENT = "groups.update"
PARTICIPANTS_UPDATE_EVENT = "group-participants.update"


def route_bridge_event(
    gate: MessageIntakeGate, payload: dict[str, Any]
) -> Coroutine[Any, Any, Any] | None:
    """Return the gate coroutine handling a bridge event, or None to ignore it.

    The caller decides how to schedule the coroutine; messages are expected
    to run concurrently with each other.
    """
    event_type = payload.get("type")

    if event_type == MESSAGE_EVENT:
        message = parse_bridge_message(payload.get("message"))
        if message is None:
            logger.debug("bridge_message_ignored")
            return None
        return gate.handle_message(message)

    if event_type == GROUPS_UPDATE_EVENT:
        raw_updates = payload.get("updates")
        if not isinstance(raw_updates, list):
            logger.warning("bridge_group_update_invalid", payload=raw_updates)
            return None
        updates: list[GroupUpdate] = []
        for raw in raw_updates:
            try:
                updates.append(GroupUpdate.model_validate(raw))
            except PydanticValidationError:
                logger.warning("bridge_group_update_invalid", payload=raw)
        return gate.handle_group_update(updates) if updates else None

    if event_type == PARTICIPANTS_UPDATE_EVENT:
        group_id = payload.get("id")
        if not isinstance(group_id, str) or not group_id:
            logger.warning("bridge_participants_update_invalid")
            return None
        return gate.handle_participants_update(group_id)

    logger.debug("bridge_event_unhandled", event_type=event_type)
    return None
