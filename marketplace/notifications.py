"""
Best-effort real-time fan-out over the channel layer.

Every connected client sits in the broadcast group; a client that joins
its own room also receives events targeted at its user id. Nothing is
persisted or retried: a client that is offline misses the push and reads
the authoritative state over HTTP instead.
"""

import json
import logging

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.core.serializers.json import DjangoJSONEncoder
from django.db import transaction

logger = logging.getLogger(__name__)

BROADCAST_GROUP = "broadcast"

NEW_LIST = "new_list"
NEW_QUOTE = "new_quote"


def user_group(user_id) -> str:
    return f"user_{user_id}"


def publish(group: str, event: str, payload) -> bool:
    """Send one event to a group. Failures are logged, never raised."""
    try:
        layer = get_channel_layer()
        if layer is None:
            logger.debug("No channel layer configured; dropping %s", event)
            return False
        async_to_sync(layer.group_send)(
            group,
            {
                "type": "notify",
                "event": event,
                "data": json.loads(json.dumps(payload, cls=DjangoJSONEncoder)),
            },
        )
    except Exception:
        logger.exception("Notification publish failed: group=%s event=%s", group, event)
        return False

    logger.info("Notification published: group=%s event=%s", group, event)
    return True


def broadcast_on_commit(event: str, payload) -> None:
    """Broadcast to every connected client once the current transaction commits."""
    transaction.on_commit(lambda: publish(BROADCAST_GROUP, event, payload))


def notify_user_on_commit(user_id, event: str, payload) -> None:
    """Push to one user's room once the current transaction commits."""
    transaction.on_commit(lambda: publish(user_group(user_id), event, payload))
