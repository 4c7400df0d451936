from django.urls import path
from . import views

app_name = 'chat'

urlpatterns = [
    # Conversations
    path('conversation/get-or-create/', views.get_or_create_conversation, name='get_or_create_conversation'),
    path('conversation/group/', views.create_group_conversation, name='create_group_conversation'),
    path('conversation/update-group-image/', views.update_group_image, name='update_group_image'),
    path('conversation/list/', views.list_conversations, name='list_conversations'),
    path('conversation/<uuid:conversation_id>/', views.get_conversation, name='get_conversation'),

    # Messages
    path('conversation/messages/', views.send_message, name='send_message'),
    path('conversation/messages/<uuid:conversation_id>/', views.get_conversation_messages, name='get_conversation_messages'),
    path('messages/delete/', views.delete_message, name='delete_message'),
    path('messages/<uuid:message_id>/', views.get_message, name='get_message'),

    # Members
    path('members/by-ids/', views.members_by_ids, name='members_by_ids'),
]
