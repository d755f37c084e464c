"""HTTP client for the local WhatsApp bridge.

The bridge is a small Baileys-based service that owns the WhatsApp session
(pairing, reconnects, media download) and exposes it over REST:

    GET  /groups                 all participating groups
    GET  /groups/{id}            one group's metadata
    POST /messages/text          {"chatId", "text"}
    POST /messages/event         {"chatId", "event": {...}}
    GET  /events                 newline-delimited JSON event stream

Implements WhatsAppClientProtocol and InboundEventSourceProtocol.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any, Final

import httpx
from pydantic import ValidationError as PydanticValidationError

from event_relay.config.logging_config import get_logger
from event_relay.domain.exceptions import (
    HTTP_STATUS_TOO_MANY_REQUESTS,
    RATE_LIMIT_MARKER,
    RateLimitError,
    ValidationError,
    WhatsAppAPIError,
)
from event_relay.domain.models import (
    EventInvite,
    GroupDescriptor,
    InboundMessage,
    MessageKind,
)

__all__ = ["WhatsAppBridgeClient", "parse_bridge_message"]

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS: Final[float] = 30.0
DEFAULT_IMAGE_MIME_TYPE: Final[str] = "image/jpeg"

TEXT_MESSAGE_TYPES: Final[frozenset[str]] = frozenset(
    {"conversation", "extendedTextMessage", "text"}
)
IMAGE_MESSAGE_TYPES: Final[frozenset[str]] = frozenset({"imageMessage", "image"})


def _message_kind(message_type: Any) -> MessageKind:
    if message_type in TEXT_MESSAGE_TYPES:
        return MessageKind.TEXT
    if message_type in IMAGE_MESSAGE_TYPES:
        return MessageKind.IMAGE
    return MessageKind.OTHER


def parse_bridge_message(payload: Any) -> InboundMessage | None:
    """Validate a raw bridge message payload.

    Returns:
        The message, or None if the payload has an unusable shape
    """
    if not isinstance(payload, dict):
        return None

    chat_id = payload.get("chatId")
    message_id = payload.get("id")
    if not chat_id or not message_id:
        return None

    kind = _message_kind(payload.get("messageType"))
    text = payload.get("text")
    if kind is MessageKind.IMAGE and not text:
        text = payload.get("caption")

    try:
        return InboundMessage(
            message_id=str(message_id),
            chat_id=str(chat_id),
            sender_id=payload.get("participant"),
            from_me=payload.get("fromMe") is True,
            kind=kind,
            text=text,
            image_base64=payload.get("imageBase64") if kind is MessageKind.IMAGE else None,
            image_mime_type=(
                payload.get("imageMimeType") or DEFAULT_IMAGE_MIME_TYPE
                if kind is MessageKind.IMAGE
                else None
            ),
        )
    except PydanticValidationError as exc:
        logger.warning(
            "bridge_message_invalid", message_id=message_id, error=str(exc)
        )
        return None


class WhatsAppBridgeClient:
    """Async REST client for the WhatsApp bridge."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"), timeout=timeout, transport=transport
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch_group_metadata(self, group_id: str) -> GroupDescriptor:
        data = await self._request("GET", f"/groups/{group_id}")
        return self._parse_group(data)

    async def fetch_all_groups(self) -> list[GroupDescriptor]:
        data = await self._request("GET", "/groups")
        if isinstance(data, dict):
            data = list(data.values())
        if not isinstance(data, list):
            raise ValidationError("Bridge returned a non-list group collection")

        groups: list[GroupDescriptor] = []
        for item in data:
            try:
                groups.append(self._parse_group(item))
            except ValidationError as exc:
                logger.warning("bridge_group_skipped", error=str(exc))
        return groups

    async def send_text(self, chat_id: str, text: str) -> None:
        await self._request("POST", "/messages/text", json={"chatId": chat_id, "text": text})
        logger.debug("bridge_text_sent", chat_id=chat_id, length=len(text))

    async def send_event(self, chat_id: str, invite: EventInvite) -> None:
        event: dict[str, Any] = {
            "name": invite.name,
            "startDate": invite.start.isoformat(),
            "endDate": invite.end.isoformat(),
        }
        if invite.description:
            event["description"] = invite.description
        if invite.location:
            event["location"] = {
                "degreesLatitude": 0,
                "degreesLongitude": 0,
                "name": invite.location,
            }
        await self._request("POST", "/messages/event", json={"chatId": chat_id, "event": event})
        logger.debug("bridge_event_sent", chat_id=chat_id, name=invite.name)

    async def iter_events(self) -> AsyncIterator[dict[str, Any]]:
        """Yield bridge events until the stream closes.

        Lines that are not JSON objects are skipped.
        """
        try:
            async with self._client.stream("GET", "/events", timeout=None) as response:
                self._raise_for_status(response, body=None)
                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    try:
                        event = json.loads(line)
                    except json.JSONDecodeError:
                        logger.warning("bridge_event_invalid_json", preview=line)
                        continue
                    if isinstance(event, dict):
                        yield event
        except httpx.HTTPError as exc:
            raise WhatsAppAPIError(f"Bridge event stream failed: {exc}") from exc

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise WhatsAppAPIError(f"Bridge request {method} {path} failed: {exc}") from exc

        self._raise_for_status(response, body=response.text)
        if not response.content:
            return None
        try:
            return response.json()
        except json.JSONDecodeError as exc:
            raise ValidationError(f"Bridge returned invalid JSON for {path}") from exc

    @staticmethod
    def _raise_for_status(response: httpx.Response, body: str | None) -> None:
        rate_limited = response.status_code == HTTP_STATUS_TOO_MANY_REQUESTS or (
            response.status_code >= 400 and body is not None and RATE_LIMIT_MARKER in body
        )
        if rate_limited:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitError(
                retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None
            )
        if response.status_code >= 400:
            raise WhatsAppAPIError(
                f"Bridge responded {response.status_code} for {response.request.url.path}"
            )

    @staticmethod
    def _parse_group(data: Any) -> GroupDescriptor:
        try:
            return GroupDescriptor.model_validate(data)
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid group metadata: {exc}") from exc
