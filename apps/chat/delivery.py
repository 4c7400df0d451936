import logging

from . import store
from .exceptions import guarded
from .models import Conversation

logger = logging.getLogger(__name__)


class MessageRouter:
    """
    Persists outgoing messages and fans them out.

    Private conversations are delivered to the registered connections of
    the receiver and of the sender (the echo keeps the sender's own view in
    sync). Group conversations go to the conversation room, which each
    participant's connection joins with ``join_conversation``. An offline
    receiver gets nothing pushed and picks the message up on the next
    history fetch.
    """

    def __init__(self, registry, broadcaster, tracker):
        self.registry = registry
        self.broadcaster = broadcaster
        self.tracker = tracker

    async def route(self, payload, acting_user_id=None):
        stored, failure = await guarded('send_message', store.acreate_message, payload, acting_user_id)
        if failure:
            return failure

        message = stored['message']
        if not stored['created']:
            return {'success': True, 'duplicate': True, 'message': message}

        if stored['conversation_type'] == Conversation.TYPE_PRIVATE:
            await self._deliver_private(stored)
        else:
            await self.broadcaster.to_conversation_room(
                stored['conversation_id'], 'receive_message', message
            )
            logger.info(f"Message {message['id']} sent to room of {stored['conversation_id']}")

        return {'success': True, 'duplicate': False, 'message': message}

    async def _deliver_private(self, stored):
        message = stored['message']
        sender_id = stored['sender_id']
        receiver_id = stored['receiver_id']

        receiver_connection = await self.broadcaster.to_user(receiver_id, 'receive_message', message)
        sender_connection = self.registry.get(sender_id)
        if sender_connection is not None and sender_connection != receiver_connection:
            await self.broadcaster.to_connection(sender_connection, 'receive_message', message)

        if receiver_connection is None:
            logger.info(f"Receiver {receiver_id} offline, message {message['id']} stored only")
            return

        await self.tracker.mark_delivered(
            stored['conversation_id'], [message['id']], receiver_id, stored['participant_ids']
        )
