import logging

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer

logger = logging.getLogger(__name__)

HOSPITALS_GROUP = 'hospitals'


def broadcast_entry(event: str, kind: str, entry: dict) -> None:
    """Push a created/updated/deleted entry to every connected hospital dashboard."""
    channel_layer = get_channel_layer()
    if channel_layer is None:
        return
    payload = {
        "type": "entry.event",
        "event": event,
        "kind": kind,
        "entry": entry,
    }
    async_to_sync(channel_layer.group_send)(HOSPITALS_GROUP, payload)
    logger.debug('broadcast %s %s %s', event, kind, entry.get('id'))
