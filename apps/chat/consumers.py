import json
import logging
from channels.generic.websocket import AsyncWebsocketConsumer
from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.utils import timezone

from . import store
from .broadcast import presence_group, room_for_conversation
from .exceptions import guarded
from .runtime import get_runtime
from .serializers import JoinConversationSerializer

logger = logging.getLogger(__name__)


class ChatConsumer(AsyncWebsocketConsumer):
    """
    WebSocket consumer for real-time chat functionality.

    Client frames are ``{"type", "data", "request_id"?}``. A frame carrying
    ``request_id`` is answered with an ``ack`` event holding the outcome.
    """

    # Set on the class (or instance) to run against a runtime other than the app's
    runtime = None

    def get_runtime(self):
        return self.runtime or get_runtime()

    async def connect(self):
        """Handle WebSocket connection"""
        self.user = self.scope.get("user")
        self.user_id = None
        self.user_groups = set()

        authenticated = bool(self.user and self.user.is_authenticated)
        if getattr(settings, 'CHAT_REQUIRE_AUTH', True) and not authenticated:
            logger.warning("Unauthenticated WebSocket connection attempt")
            await self.close(code=4001)
            return

        await self.accept()

        group = presence_group()
        await self.channel_layer.group_add(group, self.channel_name)
        self.user_groups.add(group)

        logger.info(f"WebSocket connected: {self.channel_name} ({getattr(self.user, 'email', 'anonymous')})")

        await self.send_event('connection_established', {
            'connection_id': self.channel_name,
            'user_id': str(self.user.pk) if authenticated else None,
            'online_users': self.get_runtime().presence.snapshot(),
        })

    async def disconnect(self, close_code):
        """Handle WebSocket disconnection"""
        for group_name in list(getattr(self, 'user_groups', ())):
            await self.channel_layer.group_discard(group_name, self.channel_name)

        await self.get_runtime().presence.mark_offline(self.channel_name)
        logger.info(f"WebSocket disconnected: {self.channel_name} (code {close_code})")

    async def receive(self, text_data=None, bytes_data=None):
        """Handle incoming WebSocket messages"""
        try:
            frame = json.loads(text_data or '')
        except json.JSONDecodeError:
            await self.send_error("Invalid JSON format")
            return

        if not isinstance(frame, dict):
            await self.send_error("Invalid frame")
            return

        event_type = frame.get('type')
        request_id = frame.get('request_id')

        handlers = {
            'user_online': self.handle_user_online,
            'join_conversation': self.handle_join_conversation,
            'send_message': self.handle_send_message,
            'mark_as_read': self.handle_mark_as_read,
            'react_message': self.handle_react_message,
            'delete_message': self.handle_delete_message,
            'ping': self.handle_ping,
        }

        handler = handlers.get(event_type)
        if handler:
            result = await handler(frame.get('data'))
        else:
            result = {'success': False, 'error': f"Unknown message type: {event_type}", 'code': 'invalid'}

        if request_id is not None:
            await self.send_event('ack', {'request_id': request_id, **result})
        elif not result.get('success'):
            await self.send_error(result.get('error', 'Request failed'))

    # Identity
    @property
    def acting_user_id(self):
        """The authenticated user, else whoever announced themselves with user_online."""
        if self.user and self.user.is_authenticated:
            return str(self.user.pk)
        return self.user_id

    # Message Handlers
    async def handle_ping(self, data):
        await self.send_event('pong', {'timestamp': timezone.now().isoformat()})
        return {'success': True}

    async def handle_user_online(self, data):
        """Register this connection as the user's live connection"""
        user_id = data.get('userId') if isinstance(data, dict) else data
        if user_id in (None, ''):
            user_id = self.acting_user_id
        if user_id in (None, ''):
            return {'success': False, 'error': "userId is required", 'code': 'invalid'}

        user_id = str(user_id)
        if self.user and self.user.is_authenticated and user_id != str(self.user.pk):
            logger.warning(f"Connection {self.channel_name} tried to register as {user_id}")
            return {'success': False, 'error': "userId does not match the authenticated user", 'code': 'forbidden'}
        if self.user_id is not None and user_id != self.user_id:
            # one identity per socket, reconnect to switch users
            logger.warning(f"Connection {self.channel_name} tried to switch from {self.user_id} to {user_id}")
            return {'success': False, 'error': "This connection is already registered to another user", 'code': 'forbidden'}

        self.user_id = user_id
        return await self.get_runtime().presence.mark_online(user_id, self.channel_name)

    async def handle_join_conversation(self, data):
        """Join a conversation room"""
        if not isinstance(data, dict):
            data = {'conversationId': data}
        serializer = JoinConversationSerializer(data=data)
        if not serializer.is_valid():
            return {'success': False, 'error': "conversationId is required", 'code': 'invalid', 'errors': serializer.errors}

        user_id = self.acting_user_id
        if user_id is None:
            return {'success': False, 'error': "Announce yourself with user_online first", 'code': 'forbidden'}

        conversation_id = str(serializer.validated_data['conversation_id'])
        _, failure = await guarded('join_conversation', store.acheck_membership, conversation_id, user_id)
        if failure:
            return failure

        group_name = room_for_conversation(conversation_id)
        await self.channel_layer.group_add(group_name, self.channel_name)
        self.user_groups.add(group_name)

        await self.send_event('conversation_joined', {
            'conversation_id': conversation_id,
            'message': 'Successfully joined conversation'
        })
        return {'success': True, 'conversationId': conversation_id}

    async def handle_send_message(self, data):
        return await self.get_runtime().router.route(data, self.acting_user_id)

    async def handle_mark_as_read(self, data):
        return await self.get_runtime().tracker.mark_read(data, self.acting_user_id)

    async def handle_react_message(self, data):
        return await self.get_runtime().tracker.react(data, self.acting_user_id)

    async def handle_delete_message(self, data):
        return await self.get_runtime().tracker.delete(data, self.acting_user_id)

    # Channel layer event handler
    async def chat_event(self, event):
        """Forward a server event from the channel layer to the socket"""
        await self.send_event(event['event'], event['data'])

    async def send_event(self, event_type, data):
        await self.send(text_data=json.dumps({'type': event_type, 'data': data}, cls=DjangoJSONEncoder))

    async def send_error(self, message):
        """Send error message to client"""
        await self.send_event('error', {
            'message': message,
            'timestamp': timezone.now().isoformat()
        })
