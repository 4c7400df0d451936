"""
Conversation store: every database read and write the realtime core performs.

Functions here are synchronous and raise ``ChatError`` subclasses. Consumers
and the realtime services await the ``a``-prefixed versions at the bottom of
the module; the REST views call the plain ones.
"""
import logging

from channels.db import database_sync_to_async
from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.utils import timezone

from .exceptions import (
    ActionNotAllowed, ConversationNotFound, InvalidPayload,
    MessageNotFound, NotAParticipant, ReactionConflict
)
from .models import (
    Conversation, ConversationMembership, Message, MessageReaction,
    private_pair_key
)
from .serializers import (
    ConversationSummarySerializer, DeleteMessageSerializer, MarkReadSerializer, MessageSerializer,
    ReactionSerializer, ReactSerializer, SendMessageSerializer
)

User = get_user_model()
logger = logging.getLogger(__name__)


# =============================================================================
# HELPERS
# =============================================================================

def _validate(serializer_class, data, context=None):
    serializer = serializer_class(data=data, context=context or {})
    if not serializer.is_valid():
        raise InvalidPayload(serializer.errors)
    return serializer.validated_data


def _resolve_actor(claimed, acting_user_id, field):
    """
    Pick the user an operation runs as.

    An authenticated connection fixes the identity: a payload id that
    disagrees is refused, a missing one is filled in.
    """
    if acting_user_id is None:
        if claimed is None:
            raise InvalidPayload({field: ['This field is required.']})
        return claimed

    if claimed is not None:
        if str(claimed.pk) != str(acting_user_id):
            raise ActionNotAllowed(f"{field} does not match the authenticated user")
        return claimed

    try:
        return User.objects.get(pk=acting_user_id)
    except (User.DoesNotExist, ValueError):
        raise InvalidPayload({field: ['Unknown user.']})


def _get_conversation(conversation_id):
    try:
        return Conversation.objects.get(pk=conversation_id)
    except (Conversation.DoesNotExist, ValueError):
        raise ConversationNotFound()


def _require_participant(conversation, user_id):
    if not ConversationMembership.objects.filter(
        conversation=conversation, user_id=user_id
    ).exists():
        raise NotAParticipant()


def _message_queryset():
    return Message.objects.select_related('sender').prefetch_related('reactions', 'deleted_for')


def serialize_message(message):
    return MessageSerializer(message).data


def serialize_reactions(message_id):
    reactions = MessageReaction.objects.filter(message_id=message_id).order_by('created_at', 'id')
    return ReactionSerializer(reactions, many=True).data


# =============================================================================
# PRESENCE
# =============================================================================

def set_user_presence(user_id, online):
    """Persist the presence flags. Returns the number of rows updated."""
    if online:
        fields = {'online_status': User.STATUS_ONLINE, 'last_seen': None}
    else:
        fields = {'online_status': User.STATUS_OFFLINE, 'last_seen': timezone.now()}
    return User.objects.filter(pk=user_id).update(**fields)


def users_presence(user_ids):
    return list(User.objects.filter(pk__in=user_ids).order_by('id'))


# =============================================================================
# CONVERSATIONS
# =============================================================================

def check_membership(conversation_id, user_id):
    """Raise unless user_id belongs to an existing conversation."""
    conversation = _get_conversation(conversation_id)
    _require_participant(conversation, user_id)
    return conversation


def get_or_create_private_conversation(user_a, user_b):
    """
    Return (conversation, created) for the unordered pair.

    The UNIQUE private_key makes a concurrent second create fail; the
    loser re-reads the winner's row.
    """
    if str(user_a.pk) == str(user_b.pk):
        raise InvalidPayload(message="Cannot create conversation with yourself")

    key = private_pair_key(user_a.pk, user_b.pk)
    try:
        with transaction.atomic():
            conversation, created = Conversation.objects.get_or_create(
                private_key=key,
                defaults={'type': Conversation.TYPE_PRIVATE, 'created_by': user_a}
            )
            if created:
                ConversationMembership.objects.bulk_create([
                    ConversationMembership(conversation=conversation, user=user_a),
                    ConversationMembership(conversation=conversation, user=user_b),
                ])
    except IntegrityError:
        conversation, created = Conversation.objects.get(private_key=key), False

    if created:
        logger.info(f"Private conversation {conversation.id} created for {key}")
    return conversation, created


def create_group_conversation(creator, name, participants, group_image=''):
    """Create a group; the creator becomes its admin and last participant."""
    members = [user for user in participants if user.pk != creator.pk]

    with transaction.atomic():
        conversation = Conversation.objects.create(
            type=Conversation.TYPE_GROUP,
            name=name,
            group_image=group_image or '',
            created_by=creator
        )
        ConversationMembership.objects.bulk_create(
            [ConversationMembership(conversation=conversation, user=user) for user in members]
        )
        ConversationMembership.objects.create(
            conversation=conversation,
            user=creator,
            role=ConversationMembership.ROLE_ADMIN
        )

    logger.info(f"Group {conversation.id} '{name}' created by {creator.pk} with {len(members) + 1} members")
    return conversation


def update_group_image(conversation_id, group_image, user):
    conversation = _get_conversation(conversation_id)
    if not conversation.is_group:
        raise InvalidPayload(message="Only group conversations have an image")
    if str(user.pk) not in conversation.admin_ids():
        raise ActionNotAllowed("Only group admins can change the group image")

    conversation.group_image = group_image
    conversation.save(update_fields=['group_image', 'updated_at'])
    return conversation


def list_conversation_messages(conversation_id, user):
    """Messages oldest first, without tombstones or messages user hid."""
    conversation = check_membership(conversation_id, user.pk)
    messages = (
        _message_queryset()
        .filter(conversation=conversation, deleted_for_all=False)
        .exclude(deleted_for=user)
        .order_by('timestamp', 'id')
    )
    return [serialize_message(message) for message in messages]


def list_user_conversations(user):
    """Conversations user belongs to, most recently active first."""
    conversations = (
        Conversation.objects.filter(memberships__user=user)
        .order_by('-updated_at', '-created_at')
        .distinct()
    )
    return ConversationSummarySerializer(conversations, many=True, context={'user': user}).data


def get_conversation(conversation_id, user):
    conversation = check_membership(conversation_id, user.pk)
    return ConversationSummarySerializer(conversation, context={'user': user}).data


def get_message(message_id, user):
    """Fetch one message by id, tombstones included."""
    try:
        message = _message_queryset().get(pk=message_id)
    except (Message.DoesNotExist, ValueError):
        raise MessageNotFound()
    _require_participant(message.conversation_id, user.pk)
    return serialize_message(message)


# =============================================================================
# MESSAGES
# =============================================================================

def _duplicate_send(existing, sender, conversation, result):
    if existing.sender_id != sender.pk or existing.conversation_id != conversation.id:
        raise InvalidPayload({'id': ['Message id already in use.']})
    logger.info(f"Duplicate send of message {existing.pk} ignored")
    return {**result, 'message': serialize_message(existing), 'created': False}


def create_message(payload, acting_user_id=None):
    """
    Persist an outgoing message with status ``sent``.

    A client-assigned ``id`` already stored for the same sender and
    conversation is returned as-is with ``created`` False.
    """
    data = _validate(SendMessageSerializer, payload)
    sender = _resolve_actor(data.get('sender'), acting_user_id, 'senderId')
    conversation = _get_conversation(data['conversation_id'])

    participant_ids = conversation.participant_ids()
    sender_id = str(sender.pk)
    if sender_id not in participant_ids:
        raise NotAParticipant()

    receiver_id = None
    if conversation.type == Conversation.TYPE_PRIVATE:
        receiver = data.get('receiver')
        if receiver is not None:
            receiver_id = str(receiver.pk)
            if receiver_id not in participant_ids or receiver_id == sender_id:
                raise InvalidPayload({'receiverId': ['Receiver is not the other participant.']})
        else:
            others = [user_id for user_id in participant_ids if user_id != sender_id]
            receiver_id = others[0] if others else None

    result = {
        'conversation_id': str(conversation.id),
        'conversation_type': conversation.type,
        'participant_ids': participant_ids,
        'sender_id': sender_id,
        'receiver_id': receiver_id,
    }

    client_id = data.get('id')
    if client_id is not None:
        existing = _message_queryset().filter(pk=client_id).first()
        if existing is not None:
            return _duplicate_send(existing, sender, conversation, result)

    content = data['content']
    fields = {
        'conversation': conversation,
        'sender': sender,
        'receiver_id': receiver_id,
        'message_type': content['message_type'],
        'content': content['content'],
        'file_url': content['file_url'],
        'file_name': content['file_name'],
        'reply_to_id': data.get('reply_to_id'),
        'forwarded_from_id': data.get('forwarded_from_id'),
    }
    if client_id is not None:
        fields['id'] = client_id

    try:
        with transaction.atomic():
            message = Message.objects.create(**fields)
            Conversation.objects.filter(pk=conversation.pk).update(updated_at=timezone.now())
    except IntegrityError:
        # a concurrent send of the same client id won the insert
        existing = _message_queryset().filter(pk=client_id).first() if client_id is not None else None
        if existing is None:
            raise
        return _duplicate_send(existing, sender, conversation, result)

    message = _message_queryset().get(pk=message.pk)
    return {**result, 'message': serialize_message(message), 'created': True}


def mark_messages_read(payload, acting_user_id=None):
    """
    Promote the given messages to ``read`` for the reader.

    The update is conditional on the current status, so a message already
    read is left alone. Messages the reader sent, and messages of
    conversations the reader is not in, are skipped. Returns one entry per
    conversation with the ids that actually changed.
    """
    data = _validate(MarkReadSerializer, payload)
    reader = _resolve_actor(data.get('reader'), acting_user_id, 'readerId')
    now = timezone.now()

    with transaction.atomic():
        candidates = (
            Message.objects.select_for_update(of=('self',))
            .filter(
                pk__in=data['message_ids'],
                conversation__memberships__user=reader,
            )
            .exclude(sender=reader)
            .exclude(status=Message.STATUS_READ)
        )
        changed = {}
        for message_id, conversation_id in candidates.values_list('id', 'conversation_id'):
            changed.setdefault(conversation_id, []).append(message_id)

        all_ids = [message_id for ids in changed.values() for message_id in ids]
        if all_ids:
            Message.objects.filter(pk__in=all_ids).exclude(
                status=Message.STATUS_READ
            ).update(status=Message.STATUS_READ)
            ConversationMembership.objects.filter(
                user=reader, conversation_id__in=list(changed)
            ).update(last_read_at=now)

    updates = []
    for conversation_id, message_ids in changed.items():
        conversation = Conversation.objects.get(pk=conversation_id)
        updates.append({
            'conversation_id': str(conversation_id),
            'message_ids': [str(message_id) for message_id in message_ids],
            'participant_ids': conversation.participant_ids(),
        })
    return {'reader_id': str(reader.pk), 'conversations': updates}


def mark_messages_delivered(message_ids, recipient_id):
    """Promote ``sent`` messages addressed to recipient_id to ``delivered``."""
    with transaction.atomic():
        pending = Message.objects.select_for_update(of=('self',)).filter(
            pk__in=message_ids,
            receiver_id=recipient_id,
            status=Message.STATUS_SENT,
        )
        changed = [str(message_id) for message_id in pending.values_list('id', flat=True)]
        if changed:
            Message.objects.filter(pk__in=changed, status=Message.STATUS_SENT).update(
                status=Message.STATUS_DELIVERED
            )
    return changed


def _toggle_reaction_once(message_id, emoji, user):
    with transaction.atomic():
        try:
            message = Message.objects.select_for_update(of=('self',)).get(pk=message_id)
        except (Message.DoesNotExist, ValueError):
            raise MessageNotFound()
        if message.deleted_for_all:
            raise MessageNotFound()
        _require_participant(message.conversation_id, user.pk)

        deleted, _ = MessageReaction.objects.filter(
            message=message, user=user, emoji=emoji
        ).delete()
        if deleted:
            action = 'removed'
        else:
            MessageReaction.objects.create(message=message, user=user, emoji=emoji)
            action = 'added'

        return {
            'message_id': str(message.id),
            'conversation_id': str(message.conversation_id),
            'action': action,
            'reactions': serialize_reactions(message.id),
        }


def toggle_reaction(payload, acting_user_id=None):
    """
    Add the (user, emoji) reaction if absent, remove it if present.

    The message row is locked for the read-modify-write; a create that
    still loses a uniqueness race is retried from a fresh read.
    """
    data = _validate(ReactSerializer, payload)
    user = _resolve_actor(data.get('user'), acting_user_id, 'userId')
    max_retries = getattr(settings, 'CHAT_REACTION_MAX_RETRIES', 3)

    for attempt in range(1, max_retries + 1):
        try:
            result = _toggle_reaction_once(data['message_id'], data['emoji'], user)
        except IntegrityError:
            logger.warning(
                f"Reaction race on message {data['message_id']} (attempt {attempt}/{max_retries})"
            )
            continue

        conversation = Conversation.objects.get(pk=result['conversation_id'])
        result['participant_ids'] = conversation.participant_ids()
        result['user_id'] = str(user.pk)
        return result

    raise ReactionConflict()


def delete_message(payload, acting_user_id=None):
    """
    Soft-delete a message.

    For everyone: sets the tombstone flag (sender or group admin only).
    For me: adds the user to the message's hidden-for set.
    """
    data = _validate(DeleteMessageSerializer, payload)
    user = _resolve_actor(data.get('user'), acting_user_id, 'userId')

    try:
        message = Message.objects.select_related('conversation').get(pk=data['message_id'])
    except (Message.DoesNotExist, ValueError):
        raise MessageNotFound()

    conversation = message.conversation
    participant_ids = conversation.participant_ids()
    user_id = str(user.pk)
    if user_id not in participant_ids:
        raise NotAParticipant()

    if data['delete_for_everyone']:
        is_sender = message.sender_id == user.pk
        is_admin = conversation.is_group and user_id in conversation.admin_ids()
        if not (is_sender or is_admin):
            raise ActionNotAllowed("Only the sender or a group admin can delete for everyone")
        Message.objects.filter(pk=message.pk).update(deleted_for_all=True)
        logger.info(f"Message {message.id} deleted for everyone by {user_id}")
    else:
        message.deleted_for.add(user)
        logger.info(f"Message {message.id} hidden for {user_id}")

    return {
        'message_id': str(message.id),
        'conversation_id': str(conversation.id),
        'deleted_for_all': bool(data['delete_for_everyone']) or message.deleted_for_all,
        'user_id': user_id,
        'participant_ids': participant_ids,
    }


# Awaitable versions for the consumer and the realtime services
aset_user_presence = database_sync_to_async(set_user_presence)
acheck_membership = database_sync_to_async(check_membership)
acreate_message = database_sync_to_async(create_message)
amark_messages_read = database_sync_to_async(mark_messages_read)
amark_messages_delivered = database_sync_to_async(mark_messages_delivered)
atoggle_reaction = database_sync_to_async(toggle_reaction)
adelete_message = database_sync_to_async(delete_message)
aget_or_create_private_conversation = database_sync_to_async(get_or_create_private_conversation)
