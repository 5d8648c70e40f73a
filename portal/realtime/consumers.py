import json

from channels.generic.websocket import AsyncWebsocketConsumer

from portal.models import Role
from portal.services.notify import HOSPITALS_GROUP

FEED_ROLES = {Role.HOSPITAL, Role.ADMIN}


class HospitalFeedConsumer(AsyncWebsocketConsumer):
    """Live feed of new and updated entries for hospital dashboards."""
    GROUP = HOSPITALS_GROUP

    async def connect(self):
        user = self.scope.get("user")
        if not (user and user.is_authenticated and getattr(user, "role", None) in FEED_ROLES):
            await self.close(code=4003)
            return
        await self.channel_layer.group_add(self.GROUP, self.channel_name)
        await self.accept()
        await self.send(json.dumps({"type": "welcome", "message": "connected"}))

    async def disconnect(self, close_code):
        await self.channel_layer.group_discard(self.GROUP, self.channel_name)

    async def entry_event(self, event):
        # event: {"type": "entry.event", "event": "created|updated|deleted", "kind": ..., "entry": {...}}
        await self.send(json.dumps(event))
