from rest_framework import serializers
from django.conf import settings
from django.contrib.auth import get_user_model
from .models import Conversation, Message, MessageReaction

User = get_user_model()


# =============================================================================
# OUTBOUND REPRESENTATIONS (wire format, camelCase)
# =============================================================================

class UserBasicSerializer(serializers.ModelSerializer):
    """Sender info embedded in messages"""
    id = serializers.CharField(read_only=True)
    name = serializers.CharField(source='display_name', read_only=True)
    profileImage = serializers.CharField(source='profile_image', read_only=True)

    class Meta:
        model = User
        fields = ['id', 'name', 'profileImage']


class PresenceUserSerializer(serializers.ModelSerializer):
    id = serializers.CharField(read_only=True)
    name = serializers.CharField(source='display_name', read_only=True)
    profileImage = serializers.CharField(source='profile_image', read_only=True)
    onlineStatus = serializers.CharField(source='online_status', read_only=True)
    lastSeen = serializers.DateTimeField(source='last_seen', read_only=True)

    class Meta:
        model = User
        fields = ['id', 'name', 'email', 'profileImage', 'onlineStatus', 'lastSeen']


class ReactionSerializer(serializers.ModelSerializer):
    userId = serializers.CharField(source='user_id', read_only=True)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)

    class Meta:
        model = MessageReaction
        fields = ['emoji', 'userId', 'createdAt']


class MessageSerializer(serializers.ModelSerializer):
    conversationId = serializers.UUIDField(source='conversation_id', read_only=True)
    senderId = serializers.CharField(source='sender_id', read_only=True)
    receiverId = serializers.CharField(source='receiver_id', read_only=True, allow_null=True)
    sender = UserBasicSerializer(read_only=True)
    content = serializers.SerializerMethodField()
    deletedForAll = serializers.BooleanField(source='deleted_for_all', read_only=True)
    deletedFor = serializers.SerializerMethodField()
    reactions = ReactionSerializer(many=True, read_only=True)
    replyToId = serializers.UUIDField(source='reply_to_id', read_only=True, allow_null=True)
    forwardedFrom = serializers.UUIDField(source='forwarded_from_id', read_only=True, allow_null=True)

    class Meta:
        model = Message
        fields = [
            'id', 'conversationId', 'senderId', 'receiverId', 'sender',
            'content', 'status', 'timestamp', 'deletedForAll', 'deletedFor',
            'reactions', 'replyToId', 'forwardedFrom'
        ]
        read_only_fields = fields

    def get_content(self, obj):
        # Tombstones keep their content at rest but never serve it
        if obj.deleted_for_all:
            return None
        if obj.is_attachment:
            return {
                'kind': obj.message_type,
                'url': obj.file_url,
                'name': obj.file_name or None,
            }
        return obj.content

    def get_deletedFor(self, obj):
        return [str(user.pk) for user in obj.deleted_for.all()]


class ConversationSerializer(serializers.ModelSerializer):
    groupImage = serializers.CharField(source='group_image', read_only=True)
    participantIds = serializers.SerializerMethodField()
    adminIds = serializers.SerializerMethodField()

    class Meta:
        model = Conversation
        fields = ['id', 'type', 'name', 'groupImage', 'participantIds', 'adminIds']
        read_only_fields = fields

    def get_participantIds(self, obj):
        return obj.participant_ids()

    def get_adminIds(self, obj):
        return obj.admin_ids()


class ConversationSummarySerializer(ConversationSerializer):
    """
    Conversation list entry, seen from context['user']: the latest message
    the viewer can see and, for private chats, the other participant.
    """
    lastMessage = serializers.SerializerMethodField()
    otherParticipant = serializers.SerializerMethodField()
    updatedAt = serializers.DateTimeField(source='updated_at', read_only=True)

    class Meta(ConversationSerializer.Meta):
        fields = ConversationSerializer.Meta.fields + ['lastMessage', 'otherParticipant', 'updatedAt']
        read_only_fields = fields

    def get_lastMessage(self, obj):
        messages = obj.messages.select_related('sender').prefetch_related('reactions', 'deleted_for')
        viewer = self.context.get('user')
        if viewer is not None:
            messages = messages.exclude(deleted_for=viewer)
        latest = messages.order_by('-timestamp', '-id').first()
        return MessageSerializer(latest).data if latest else None

    def get_otherParticipant(self, obj):
        viewer = self.context.get('user')
        if obj.is_group or viewer is None:
            return None
        other = User.objects.filter(conversationmembership__conversation=obj).exclude(pk=viewer.pk).first()
        return UserBasicSerializer(other).data if other else None


# =============================================================================
# INBOUND PAYLOADS (socket events and REST bodies)
# =============================================================================

class MessageContentField(serializers.Field):
    """
    Either plain text or an attachment descriptor {kind, url, name?}.

    Validates into the model columns: message_type, content, file_url, file_name.
    """
    default_error_messages = {
        'blank': 'Message content cannot be empty.',
        'too_long': 'Message content cannot exceed {max_length} characters.',
        'invalid_kind': 'Attachment kind must be one of: {kinds}.',
        'missing_url': 'Attachment url is required.',
        'invalid': 'Content must be a string or an attachment object.',
    }

    def to_internal_value(self, data):
        if isinstance(data, str):
            text = data.strip()
            if not text:
                self.fail('blank')
            max_length = getattr(settings, 'CHAT_MAX_MESSAGE_LENGTH', 2000)
            if len(text) > max_length:
                self.fail('too_long', max_length=max_length)
            return {
                'message_type': Message.TYPE_TEXT,
                'content': text,
                'file_url': '',
                'file_name': '',
            }

        if isinstance(data, dict):
            kind = data.get('kind')
            if kind not in Message.ATTACHMENT_KINDS:
                self.fail('invalid_kind', kinds=', '.join(Message.ATTACHMENT_KINDS))
            url = data.get('url')
            if not isinstance(url, str) or not url.strip():
                self.fail('missing_url')
            name = data.get('name') or ''
            if not isinstance(name, str):
                self.fail('invalid')
            return {
                'message_type': kind,
                'content': name,
                'file_url': url.strip()[:500],
                'file_name': name[:255],
            }

        self.fail('invalid')

    def to_representation(self, value):
        return value


class SendMessageSerializer(serializers.Serializer):
    """send_message / POST conversation/messages"""
    id = serializers.UUIDField(required=False)
    conversationId = serializers.UUIDField(source='conversation_id')
    senderId = serializers.PrimaryKeyRelatedField(
        source='sender', queryset=User.objects.all(), required=False
    )
    receiverId = serializers.PrimaryKeyRelatedField(
        source='receiver', queryset=User.objects.all(), required=False, allow_null=True
    )
    content = MessageContentField()
    replyToId = serializers.UUIDField(source='reply_to_id', required=False, allow_null=True)
    forwardedFrom = serializers.UUIDField(source='forwarded_from_id', required=False, allow_null=True)


class MarkReadSerializer(serializers.Serializer):
    messageIds = serializers.ListField(
        source='message_ids', child=serializers.UUIDField(), allow_empty=False
    )
    readerId = serializers.PrimaryKeyRelatedField(
        source='reader', queryset=User.objects.all(), required=False
    )


class ReactSerializer(serializers.Serializer):
    messageId = serializers.UUIDField(source='message_id')
    emoji = serializers.CharField(max_length=32)
    userId = serializers.PrimaryKeyRelatedField(
        source='user', queryset=User.objects.all(), required=False
    )


class DeleteMessageSerializer(serializers.Serializer):
    messageId = serializers.UUIDField(source='message_id')
    userId = serializers.PrimaryKeyRelatedField(
        source='user', queryset=User.objects.all(), required=False
    )
    deleteForEveryone = serializers.BooleanField(source='delete_for_everyone', default=False)


class JoinConversationSerializer(serializers.Serializer):
    conversationId = serializers.UUIDField(source='conversation_id')


class GroupCreateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=200)
    participants = serializers.ListField(
        child=serializers.PrimaryKeyRelatedField(queryset=User.objects.all()),
        allow_empty=False
    )
    groupImage = serializers.CharField(
        source='group_image', max_length=500, required=False, allow_blank=True, default=''
    )

    def validate(self, attrs):
        creator = self.context.get('creator')
        members = []
        for user in attrs['participants']:
            if user not in members and user != creator:
                members.append(user)
        if len(members) < 2:
            raise serializers.ValidationError(
                "Group conversations need a name and at least two other members."
            )
        attrs['participants'] = members
        return attrs


class GroupImageSerializer(serializers.Serializer):
    conversationId = serializers.UUIDField(source='conversation_id')
    groupImage = serializers.CharField(source='group_image', max_length=500)


class UsersByIdsSerializer(serializers.Serializer):
    userIds = serializers.ListField(
        source='user_ids', child=serializers.IntegerField(), allow_empty=False
    )


class PrivateConversationQuerySerializer(serializers.Serializer):
    user1 = serializers.PrimaryKeyRelatedField(queryset=User.objects.all())
    user2 = serializers.PrimaryKeyRelatedField(queryset=User.objects.all())

    def validate(self, attrs):
        if attrs['user1'] == attrs['user2']:
            raise serializers.ValidationError("Cannot create conversation with yourself")
        return attrs
