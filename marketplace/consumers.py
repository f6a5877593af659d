import logging

from asgiref.sync import async_to_sync
from channels.generic.websocket import JsonWebsocketConsumer

from marketplace.notifications import BROADCAST_GROUP, user_group

logger = logging.getLogger(__name__)


class NotificationConsumer(JsonWebsocketConsumer):
    """
    WebSocket endpoint for live marketplace events.

    Clients are subscribed to broadcasts on connect and may then send
    {"action": "join", "room": "<own user id>"} to receive targeted events. A
    successful join is acknowledged with a `joined` event.
    """

    def connect(self):
        self.groups_joined = [BROADCAST_GROUP]
        async_to_sync(self.channel_layer.group_add)(BROADCAST_GROUP, self.channel_name)
        self.accept()
        logger.info("Client connected: channel=%s", self.channel_name)

    def receive_json(self, content, **kwargs):
        if content.get("action") != "join":
            return

        room = str(content.get("room", ""))
        user = self.scope.get("user")
        if user is None or not user.is_authenticated or str(user.pk) != room:
            self.send_json({"event": "error", "data": {"message": "Cannot join room."}})
            return

        group = user_group(room)
        async_to_sync(self.channel_layer.group_add)(group, self.channel_name)
        self.groups_joined.append(group)
        logger.info("Client %s joined room: %s", self.channel_name, room)
        self.send_json({"event": "joined", "data": {"room": room}})

    def disconnect(self, code):
        for group in getattr(self, "groups_joined", []):
            async_to_sync(self.channel_layer.group_discard)(group, self.channel_name)
        logger.info("Client disconnected: channel=%s", self.channel_name)

    def notify(self, message):
        self.send_json({"event": message["event"], "data": message["data"]})
