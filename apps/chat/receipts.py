import logging

from . import store
from .exceptions import guarded

logger = logging.getLogger(__name__)


class ReceiptTracker:
    """
    Status transitions, reactions and soft deletes, plus the deltas they emit.

    Every event goes to the registered connections of the conversation's
    participants, never to all connections.
    """

    def __init__(self, broadcaster):
        self.broadcaster = broadcaster

    async def mark_read(self, payload, acting_user_id=None):
        update, failure = await guarded('mark_as_read', store.amark_messages_read, payload, acting_user_id)
        if failure:
            return failure

        message_ids = []
        for conversation in update['conversations']:
            await self.broadcaster.to_users(conversation['participant_ids'], 'messages_read', {
                'conversationId': conversation['conversation_id'],
                'messageIds': conversation['message_ids'],
                'readerId': update['reader_id'],
            })
            message_ids.extend(conversation['message_ids'])

        if not message_ids:
            logger.debug(f"mark_as_read by {update['reader_id']} changed nothing")
        return {'success': True, 'readerId': update['reader_id'], 'messageIds': message_ids}

    async def mark_delivered(self, conversation_id, message_ids, recipient_id, participant_ids):
        changed, failure = await guarded(
            'mark_delivered', store.amark_messages_delivered, message_ids, recipient_id
        )
        if failure or not changed:
            return []

        await self.broadcaster.to_users(participant_ids, 'messages_delivered', {
            'conversationId': str(conversation_id),
            'messageIds': changed,
            'recipientId': str(recipient_id),
        })
        return changed

    async def react(self, payload, acting_user_id=None):
        result, failure = await guarded('react_message', store.atoggle_reaction, payload, acting_user_id)
        if failure:
            return failure

        await self.broadcaster.to_users(result['participant_ids'], 'message_reacted', {
            'messageId': result['message_id'],
            'conversationId': result['conversation_id'],
            'reactions': result['reactions'],
            'action': result['action'],
            'userId': result['user_id'],
        })
        logger.info(f"Reaction {result['action']} on message {result['message_id']} by {result['user_id']}")
        return {
            'success': True,
            'messageId': result['message_id'],
            'action': result['action'],
            'reactions': result['reactions'],
        }

    async def delete(self, payload, acting_user_id=None):
        result, failure = await guarded('delete_message', store.adelete_message, payload, acting_user_id)
        if failure:
            return failure

        notice = {
            'messageId': result['message_id'],
            'conversationId': result['conversation_id'],
            'deletedForAll': result['deleted_for_all'],
            'userId': result['user_id'],
        }
        if result['deleted_for_all']:
            await self.broadcaster.to_users(result['participant_ids'], 'message_deleted', notice)
        else:
            # hiding is private to the user who did it
            await self.broadcaster.to_user(result['user_id'], 'message_deleted', notice)
        return {'success': True, **notice}

    async def group_created(self, conversation_id, name, participant_ids):
        return await self.broadcaster.to_users(participant_ids, 'group_created', {
            'conversationId': str(conversation_id),
            'name': name,
            'participantIds': participant_ids,
            'type': 'group',
        })

    async def group_image_updated(self, conversation_id, group_image, participant_ids):
        return await self.broadcaster.to_users(participant_ids, 'group_image_updated', {
            'conversationId': str(conversation_id),
            'groupImage': group_image,
        })
