"""Errors raised by the conversation store and turned into result dicts by the realtime services."""
import logging

from django.db import DatabaseError

logger = logging.getLogger(__name__)


class ChatError(Exception):
    code = 'error'
    default_message = 'Chat operation failed'

    def __init__(self, message=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def as_result(self):
        return {'success': False, 'error': self.message, 'code': self.code}


class InvalidPayload(ChatError):
    code = 'invalid'
    default_message = 'Invalid payload'

    def __init__(self, errors=None, message=None):
        super().__init__(message)
        self.errors = errors or {}

    def as_result(self):
        result = super().as_result()
        if self.errors:
            result['errors'] = self.errors
        return result


class ConversationNotFound(ChatError):
    code = 'not_found'
    default_message = 'Conversation not found'


class MessageNotFound(ChatError):
    code = 'not_found'
    default_message = 'Message not found'


class NotAParticipant(ChatError):
    code = 'forbidden'
    default_message = 'You are not a member of this conversation'


class ReactionConflict(ChatError):
    code = 'conflict'
    default_message = 'Reaction could not be applied, try again'


class ActionNotAllowed(ChatError):
    code = 'forbidden'
    default_message = 'You are not allowed to do this'


async def guarded(action, operation, *args, **kwargs):
    """
    Await a store operation, turning failures into a result dict.

    Returns (value, None) on success and (None, failure_result) otherwise.
    Chat errors are expected outcomes and logged at info/warning level;
    database errors abort the operation and are logged with a traceback.
    """
    try:
        return await operation(*args, **kwargs), None
    except ChatError as e:
        log = logger.info if e.code == 'not_found' else logger.warning
        log(f"{action} rejected ({e.code}): {e.message}")
        return None, e.as_result()
    except DatabaseError:
        logger.exception(f"{action} failed on the database")
        return None, {'success': False, 'error': 'Database error occurred', 'code': 'error'}
