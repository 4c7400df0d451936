import logging

from channels.layers import get_channel_layer
from django.conf import settings

logger = logging.getLogger(__name__)

# Consumer method that forwards layer messages to the socket (ChatConsumer.chat_event)
CHAT_EVENT = 'chat.event'


def room_for_conversation(conversation_id):
    return f"conversation_{conversation_id}"


def presence_group():
    return getattr(settings, 'CHAT_PRESENCE_GROUP', 'presence')


class ChannelBroadcaster:
    """
    Emits server events through the Channels layer.

    A connection is a channel name, a room is a layer group, and "everyone"
    is the presence group every connection joins on connect.
    """

    def __init__(self, registry, channel_layer=None):
        self.registry = registry
        self._channel_layer = channel_layer

    @property
    def channel_layer(self):
        if self._channel_layer is None:
            self._channel_layer = get_channel_layer()
        return self._channel_layer

    @staticmethod
    def build_event(event, data):
        return {'type': CHAT_EVENT, 'event': event, 'data': data}

    async def to_connection(self, connection_id, event, data):
        await self.channel_layer.send(connection_id, self.build_event(event, data))

    async def to_room(self, room, event, data):
        await self.channel_layer.group_send(room, self.build_event(event, data))

    async def to_conversation_room(self, conversation_id, event, data):
        await self.to_room(room_for_conversation(conversation_id), event, data)

    async def to_everyone(self, event, data):
        await self.to_room(presence_group(), event, data)

    async def to_user(self, user_id, event, data):
        """Emit to the user's registered connection; offline users are skipped."""
        connection_id = self.registry.get(user_id)
        if connection_id is None:
            return None
        await self.to_connection(connection_id, event, data)
        return connection_id

    async def to_users(self, user_ids, event, data):
        """
        Emit once per distinct registered connection of user_ids.

        Returns the connection ids reached.
        """
        reached = []
        for user_id in user_ids:
            connection_id = self.registry.get(user_id)
            if connection_id is None or connection_id in reached:
                continue
            await self.to_connection(connection_id, event, data)
            reached.append(connection_id)
        return reached
