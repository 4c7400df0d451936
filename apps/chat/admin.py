from django.contrib import admin
from .models import Conversation, ConversationMembership, Message, MessageReaction


class ConversationMembershipInline(admin.TabularInline):
    model = ConversationMembership
    extra = 0
    raw_id_fields = ('user',)


@admin.register(Conversation)
class ConversationAdmin(admin.ModelAdmin):
    list_display = ('id', 'type', 'name', 'created_by', 'created_at', 'updated_at')
    list_filter = ('type', 'created_at')
    search_fields = ('name', 'private_key', 'created_by__email')
    readonly_fields = ('id', 'private_key', 'created_at', 'updated_at')
    raw_id_fields = ('created_by',)
    inlines = [ConversationMembershipInline]

    fieldsets = (
        ('Basic Info', {
            'fields': ('id', 'type', 'name', 'group_image', 'private_key')
        }),
        ('Metadata', {
            'fields': ('created_by', 'created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )


@admin.register(ConversationMembership)
class ConversationMembershipAdmin(admin.ModelAdmin):
    list_display = ('user', 'conversation', 'role', 'joined_at', 'last_read_at')
    list_filter = ('role', 'joined_at')
    search_fields = ('user__email', 'conversation__name')
    raw_id_fields = ('user', 'conversation')


@admin.register(Message)
class MessageAdmin(admin.ModelAdmin):
    list_display = ('id', 'sender', 'conversation', 'message_type', 'status', 'timestamp', 'deleted_for_all')
    list_filter = ('message_type', 'status', 'deleted_for_all', 'timestamp')
    search_fields = ('content', 'sender__email', 'conversation__name')
    readonly_fields = ('id', 'timestamp')
    raw_id_fields = ('sender', 'receiver', 'conversation', 'reply_to', 'forwarded_from')
    filter_horizontal = ('deleted_for',)

    fieldsets = (
        ('Message Info', {
            'fields': ('id', 'conversation', 'sender', 'receiver', 'content', 'message_type', 'status')
        }),
        ('File Attachment', {
            'fields': ('file_url', 'file_name'),
            'classes': ('collapse',)
        }),
        ('References', {
            'fields': ('reply_to', 'forwarded_from'),
            'classes': ('collapse',)
        }),
        ('Deletion', {
            'fields': ('deleted_for_all', 'deleted_for'),
            'classes': ('collapse',)
        }),
        ('Metadata', {
            'fields': ('timestamp',),
            'classes': ('collapse',)
        }),
    )


@admin.register(MessageReaction)
class MessageReactionAdmin(admin.ModelAdmin):
    list_display = ('message', 'user', 'emoji', 'created_at')
    list_filter = ('created_at',)
    search_fields = ('user__email', 'emoji')
    raw_id_fields = ('message', 'user')
