"""Resolution of the group that receives detected events."""

from event_relay.config.logging_config import get_logger
from event_relay.domain.exceptions import EventRelayError
from event_relay.domain.models import GroupDescriptor, GroupUpdate
from event_relay.domain.protocols import WhatsAppClientProtocol

logger = get_logger(__name__)


def match_target_group(
    groups: list[GroupDescriptor], target_name: str
) -> GroupDescriptor | None:
    """Pick the target among groups: exact display name first, then partial.

    A partial match is a substring match in either direction. Groups
    without a display name never match.
    """
    named = [group for group in groups if group.display_name]
    for group in named:
        if group.display_name == target_name:
            return group
    for group in named:
        if target_name in group.display_name or group.display_name in target_name:
            return group
    return None


class TargetGroupResolver:
    """Tracks the target group id, searching by name when none is configured."""

    def __init__(
        self,
        client: WhatsAppClientProtocol,
        *,
        target_name: str,
        configured_id: str = "",
    ) -> None:
        self._client = client
        self._target_name = target_name
        self._target_id = configured_id or None

    @property
    def target_id(self) -> str | None:
        return self._target_id

    @property
    def target_name(self) -> str:
        return self._target_name

    async def resolve(self) -> str | None:
        """Return the target id, searching participating groups if unknown.

        Errors from the collaborator are logged; the target stays unknown.
        """
        if self._target_id:
            return self._target_id

        try:
            groups = await self._client.fetch_all_groups()
        except EventRelayError as exc:
            logger.error(
                "target_group_search_failed",
                target_name=self._target_name,
                error=str(exc),
            )
            return None

        match = match_target_group(groups, self._target_name)
        if match is None:
            logger.warning(
                "target_group_not_found",
                target_name=self._target_name,
                available=[group.display_name for group in groups],
            )
            return None

        self._target_id = match.id
        logger.info(
            "target_group_found",
            target_name=self._target_name,
            group_id=match.id,
            display_name=match.display_name,
            exact=match.display_name == self._target_name,
        )
        return self._target_id

    def adopt_from_update(self, update: GroupUpdate) -> bool:
        """Adopt a group whose update notification carries the target name."""
        if self._target_id or not update.id or update.subject != self._target_name:
            return False

        self._target_id = update.id
        logger.info(
            "target_group_adopted", target_name=self._target_name, group_id=update.id
        )
        return True
