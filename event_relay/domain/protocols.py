"""Protocol definitions for dependency inversion.

These abstract interfaces define the contracts of the external collaborators
the intake gate talks to. Adapters implement them; tests substitute fakes.
"""

from collections.abc import AsyncIterator
from typing import Any, Protocol

from event_relay.domain.models import (
    AnalysisResult,
    EventInvite,
    GroupDescriptor,
)


class WhatsAppClientProtocol(Protocol):
    """Protocol for WhatsApp protocol-layer interactions."""

    async def fetch_group_metadata(self, group_id: str) -> GroupDescriptor:
        """Fetch metadata for a single group.

        Args:
            group_id: Group JID

        Returns:
            Fresh group descriptor

        Raises:
            RateLimitError: When the protocol layer throttles the request
            WhatsAppAPIError: On any other communication error
        """
        ...

    async def fetch_all_groups(self) -> list[GroupDescriptor]:
        """Fetch descriptors for every group this account participates in.

        Raises:
            WhatsAppAPIError: On communication errors
        """
        ...

    async def send_text(self, chat_id: str, text: str) -> None:
        """Send a plain text message.

        Raises:
            WhatsAppAPIError: On communication errors
        """
        ...

    async def send_event(self, chat_id: str, invite: EventInvite) -> None:
        """Send a native calendar-invite message.

        Raises:
            WhatsAppAPIError: On communication errors
        """
        ...


class InboundEventSourceProtocol(Protocol):
    """Stream of raw protocol events (messages and group notifications)."""

    def iter_events(self) -> AsyncIterator[dict[str, Any]]:
        """Yield raw event payloads until the connection closes."""
        ...


class EventAnalyzerProtocol(Protocol):
    """Protocol for the language-model analysis step."""

    async def analyze_message(
        self,
        text: str,
        *,
        chat_name: str,
        sender: str,
        history: list[str],
        image_base64: str | None = None,
        image_mime_type: str | None = None,
    ) -> AnalysisResult:
        """Classify a message and extract its events.

        Args:
            text: Message text or image caption
            chat_name: Human-readable chat/group name
            sender: Display name of the author
            history: Recent messages of the same chat, oldest first
            image_base64: Optional image payload
            image_mime_type: MIME type of the image payload

        Returns:
            Analysis result. Malformed responses are returned as the empty
            result, never raised.

        Raises:
            LLMAPIError: On API communication errors
        """
        ...
