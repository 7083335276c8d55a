import logging

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer

logger = logging.getLogger(__name__)

PRESENCE_GROUP = "presence"


def group_room(group_id) -> str:
    return f"group_{group_id}"


def user_channel(user_id) -> str:
    return f"user_{user_id}"


def chat_event(event: str, payload, exclude: str | None = None) -> dict:
    """Channel-layer message handled by ChatConsumer.chat_event."""
    return {"type": "chat.event", "event": event, "payload": payload, "exclude": exclude}


def _publish(target: str, event: str, payload) -> None:
    """
    Deliver from sync code (REST views). The store write being reported has
    already committed, so a layer failure is logged and the request still
    succeeds.
    """
    layer = get_channel_layer()
    if not layer:
        return
    try:
        async_to_sync(layer.group_send)(target, chat_event(event, payload))
    except Exception:
        logger.exception("Publishing %s to %s failed", event, target)


def broadcast_to_group(group_id, event: str, payload) -> None:
    _publish(group_room(group_id), event, payload)


def notify_user(user_id, event: str, payload) -> None:
    _publish(user_channel(user_id), event, payload)
