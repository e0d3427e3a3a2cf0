"""Notification fan-out for social actions.

Likes, follows and comments notify the owner of the target. Acting on your
own content never notifies. A failed insert is logged and does not fail the
action that triggered it.
"""

import logging

from librovision.entities import ResourceDescriptor
from librovision.exceptions import RequestError
from librovision.models import NotificationType
from librovision.protocols import DataStore

logger = logging.getLogger(__name__)


async def notify(
    store: DataStore,
    *,
    recipient_id: str | None,
    actor_id: str,
    type: NotificationType,
    entity_type: str,
    entity_id: str | None,
    entity_parent_id: str | None = None,
    entity_parent_title: str | None = None,
) -> bool:
    """Insert a notification row for ``recipient_id``.

    Returns:
        True if a notification was created
    """
    if not recipient_id or recipient_id == actor_id:
        return False

    payload = {
        "user_id": recipient_id,
        "actor_id": actor_id,
        "type": type,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "read": False,
    }
    if entity_parent_id is not None:
        payload["entity_parent_id"] = entity_parent_id
    if entity_parent_title is not None:
        payload["entity_parent_title"] = entity_parent_title

    try:
        await store.write(ResourceDescriptor("notifications").as_write("insert"), payload)
    except RequestError as e:
        logger.warning("Failed to create %s notification for %s: %s", type, recipient_id, e)
        return False
    return True
