from django.db import models
from django.conf import settings
from django.utils import timezone
import uuid


def private_pair_key(user_a_id, user_b_id):
    """Order-independent key identifying the private conversation of a pair."""
    first, second = sorted([str(user_a_id), str(user_b_id)])
    return f"{first}:{second}"


class Conversation(models.Model):
    """
    A one-to-one (private) or group conversation
    """
    TYPE_PRIVATE = 'private'
    TYPE_GROUP = 'group'
    CONVERSATION_TYPES = [
        (TYPE_PRIVATE, 'Private'),
        (TYPE_GROUP, 'Group'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    type = models.CharField(max_length=20, choices=CONVERSATION_TYPES)
    name = models.CharField(max_length=200, blank=True)
    group_image = models.CharField(max_length=500, blank=True)

    # Unique per unordered pair; NULL for groups
    private_key = models.CharField(
        max_length=100,
        unique=True,
        null=True,
        blank=True,
        editable=False,
    )

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='created_conversations'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=['type'], name='chat_conv_type_idx'),
            models.Index(fields=['created_at'], name='chat_conv_created_idx'),
        ]

    def __str__(self):
        if self.type == self.TYPE_PRIVATE:
            return f"Private {self.private_key}"
        return self.name or f"Group {self.id}"

    @property
    def is_group(self):
        return self.type == self.TYPE_GROUP

    def participant_ids(self):
        """Participant ids as strings, in join order."""
        return [
            str(user_id) for user_id in
            self.memberships.order_by('joined_at', 'id').values_list('user_id', flat=True)
        ]

    def admin_ids(self):
        return [
            str(user_id) for user_id in
            self.memberships.filter(role=ConversationMembership.ROLE_ADMIN)
            .order_by('joined_at', 'id').values_list('user_id', flat=True)
        ]


class ConversationMembership(models.Model):
    """
    Participant of a conversation, with admin/member role for groups
    """
    ROLE_MEMBER = 'member'
    ROLE_ADMIN = 'admin'
    ROLES = [
        (ROLE_MEMBER, 'Member'),
        (ROLE_ADMIN, 'Admin'),
    ]

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE)
    conversation = models.ForeignKey(
        Conversation,
        on_delete=models.CASCADE,
        related_name='memberships'
    )
    role = models.CharField(max_length=20, choices=ROLES, default=ROLE_MEMBER)
    joined_at = models.DateTimeField(auto_now_add=True)
    last_read_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        unique_together = ('user', 'conversation')
        indexes = [
            models.Index(fields=['conversation', 'role'], name='chat_member_conv_role_idx'),
        ]

    def __str__(self):
        role_display = "👑" if self.role == self.ROLE_ADMIN else "👤"
        return f"{role_display} {self.user_id} in {self.conversation_id}"


class Message(models.Model):
    """
    Individual messages within conversations.
    Rows are never physically removed; deletion only sets soft markers.
    """
    TYPE_TEXT = 'text'
    ATTACHMENT_KINDS = ['image', 'video', 'audio', 'file']
    MESSAGE_TYPES = [
        (TYPE_TEXT, 'Text'),
        ('image', 'Image'),
        ('video', 'Video'),
        ('audio', 'Audio'),
        ('file', 'File'),
    ]

    STATUS_SENT = 'sent'
    STATUS_DELIVERED = 'delivered'
    STATUS_READ = 'read'
    STATUS_CHOICES = [
        (STATUS_SENT, 'Sent'),
        (STATUS_DELIVERED, 'Delivered'),
        (STATUS_READ, 'Read'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    conversation = models.ForeignKey(
        Conversation,
        on_delete=models.CASCADE,
        related_name='messages'
    )
    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='sent_messages'
    )
    # Only set for private conversations
    receiver = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='received_messages'
    )

    content = models.TextField(blank=True)
    message_type = models.CharField(max_length=20, choices=MESSAGE_TYPES, default=TYPE_TEXT)

    # Attachment descriptor (if message_type is not 'text')
    file_url = models.CharField(max_length=500, blank=True)
    file_name = models.CharField(max_length=255, blank=True)

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_SENT)
    timestamp = models.DateTimeField(default=timezone.now)

    # Soft delete markers
    deleted_for_all = models.BooleanField(default=False)
    deleted_for = models.ManyToManyField(
        settings.AUTH_USER_MODEL,
        blank=True,
        related_name='hidden_messages'
    )

    # Weak back-references, no constraint and no cascade
    reply_to = models.ForeignKey(
        'self',
        on_delete=models.DO_NOTHING,
        db_constraint=False,
        null=True,
        blank=True,
        related_name='replies'
    )
    forwarded_from = models.ForeignKey(
        'self',
        on_delete=models.DO_NOTHING,
        db_constraint=False,
        null=True,
        blank=True,
        related_name='forwards'
    )

    class Meta:
        indexes = [
            models.Index(fields=['conversation', 'timestamp'], name='chat_msg_conv_ts_idx'),
            models.Index(fields=['sender', 'timestamp'], name='chat_msg_sender_ts_idx'),
            models.Index(fields=['status'], name='chat_msg_status_idx'),
        ]
        ordering = ['-timestamp']

    def __str__(self):
        content_preview = self.content[:50] + '...' if len(self.content) > 50 else self.content
        return f"{self.sender_id}: {content_preview}"

    @property
    def is_attachment(self):
        return self.message_type != self.TYPE_TEXT


class MessageReaction(models.Model):
    """
    Emoji reaction, unique per (message, user, emoji)
    """
    message = models.ForeignKey(
        Message,
        on_delete=models.CASCADE,
        related_name='reactions'
    )
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE)
    emoji = models.CharField(max_length=32)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        unique_together = ('message', 'user', 'emoji')
        ordering = ['created_at', 'id']
        indexes = [
            models.Index(fields=['message'], name='chat_reaction_msg_idx'),
        ]

    def __str__(self):
        return f"{self.user_id} reacted {self.emoji} to {self.message_id}"
