import logging

from asgiref.sync import async_to_sync
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from django.db import DatabaseError

from . import store
from .exceptions import ActionNotAllowed, ChatError
from .runtime import get_runtime
from .serializers import (
    ConversationSerializer, GroupCreateSerializer, GroupImageSerializer,
    PresenceUserSerializer, PrivateConversationQuerySerializer, UsersByIdsSerializer
)

logger = logging.getLogger(__name__)

STATUS_FOR_CODE = {
    'invalid': status.HTTP_400_BAD_REQUEST,
    'forbidden': status.HTTP_403_FORBIDDEN,
    'not_found': status.HTTP_404_NOT_FOUND,
    'conflict': status.HTTP_409_CONFLICT,
}


def error_response(result):
    return Response(result, status=STATUS_FOR_CODE.get(result.get('code'), status.HTTP_500_INTERNAL_SERVER_ERROR))


def database_error_response(action):
    logger.exception(f"{action} failed on the database")
    return Response({
        'success': False,
        'error': 'Database error occurred',
        'code': 'error'
    }, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


# =============================================================================
# CONVERSATION ENDPOINTS
# =============================================================================

@api_view(['GET'])
@permission_classes([IsAuthenticated])
def get_or_create_conversation(request):
    """
    Find or create the private conversation of a pair

    GET /api/conversation/get-or-create/?user1=<id>&user2=<id>
    """
    serializer = PrivateConversationQuerySerializer(data=request.query_params)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    user_a = serializer.validated_data['user1']
    user_b = serializer.validated_data['user2']
    if request.user.pk not in (user_a.pk, user_b.pk):
        return error_response(ActionNotAllowed("You can only open your own conversations").as_result())

    try:
        conversation, created = store.get_or_create_private_conversation(user_a, user_b)
    except ChatError as e:
        return error_response(e.as_result())
    except DatabaseError:
        return database_error_response('get_or_create_conversation')

    return Response({
        'conversationId': str(conversation.id),
        'created': created,
        'message': 'Conversation created' if created else 'Conversation already exists'
    }, status=status.HTTP_201_CREATED if created else status.HTTP_200_OK)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def list_conversations(request):
    """
    The caller's conversations, most recently active first

    GET /api/conversation/list/
    """
    try:
        conversations = store.list_user_conversations(request.user)
    except DatabaseError:
        return database_error_response('list_conversations')

    return Response({
        'conversations': conversations,
        'count': len(conversations)
    })


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def get_conversation(request, conversation_id):
    """
    One conversation the caller belongs to

    GET /api/conversation/<conversation_id>/
    """
    try:
        conversation = store.get_conversation(conversation_id, request.user)
    except ChatError as e:
        return error_response(e.as_result())
    except DatabaseError:
        return database_error_response('get_conversation')

    return Response({'conversation': conversation})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def create_group_conversation(request):
    """
    Create a group conversation, the caller becomes its admin

    POST /api/conversation/group/
    {
        "name": "Weekend trip",
        "participants": [2, 3],
        "groupImage": "https://..."
    }
    """
    serializer = GroupCreateSerializer(data=request.data, context={'creator': request.user})
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    data = serializer.validated_data
    try:
        conversation = store.create_group_conversation(
            request.user, data['name'], data['participants'], data.get('group_image', '')
        )
        participant_ids = conversation.participant_ids()
    except DatabaseError:
        return database_error_response('create_group_conversation')

    async_to_sync(get_runtime().tracker.group_created)(conversation.id, conversation.name, participant_ids)

    return Response({
        'conversation': ConversationSerializer(conversation).data,
        'message': f'Group "{conversation.name}" created successfully'
    }, status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def update_group_image(request):
    """
    Change a group's image (admins only)

    POST /api/conversation/update-group-image/
    {"conversationId": "...", "groupImage": "https://..."}
    """
    serializer = GroupImageSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    data = serializer.validated_data
    try:
        conversation = store.update_group_image(data['conversation_id'], data['group_image'], request.user)
        participant_ids = conversation.participant_ids()
    except ChatError as e:
        return error_response(e.as_result())
    except DatabaseError:
        return database_error_response('update_group_image')

    async_to_sync(get_runtime().tracker.group_image_updated)(
        conversation.id, conversation.group_image, participant_ids
    )

    return Response({
        'conversation': ConversationSerializer(conversation).data,
        'message': 'Group image updated'
    })


# =============================================================================
# MESSAGE ENDPOINTS
# =============================================================================

@api_view(['GET'])
@permission_classes([IsAuthenticated])
def get_conversation_messages(request, conversation_id):
    """
    Messages of a conversation, oldest first (fetch-on-reconnect)

    GET /api/conversation/messages/<conversation_id>/
    """
    try:
        messages = store.list_conversation_messages(conversation_id, request.user)
    except ChatError as e:
        return error_response(e.as_result())
    except DatabaseError:
        return database_error_response('get_conversation_messages')

    return Response({
        'messages': messages,
        'count': len(messages)
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def send_message(request):
    """
    Durable write of a message, echoed to sockets like a socket send

    POST /api/conversation/messages/
    {"conversationId": "...", "content": "hi", "id": "<optional client uuid>"}
    """
    result = async_to_sync(get_runtime().router.route)(request.data, request.user.pk)
    if not result.get('success'):
        return error_response(result)

    return Response(result, status=status.HTTP_200_OK if result['duplicate'] else status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def get_message(request, message_id):
    """
    One message by id, tombstones included

    GET /api/messages/<message_id>/
    """
    try:
        message = store.get_message(message_id, request.user)
    except ChatError as e:
        return error_response(e.as_result())
    except DatabaseError:
        return database_error_response('get_message')

    return Response({'message': message})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def delete_message(request):
    """
    Soft-delete a message for the caller or for everyone

    POST /api/messages/delete/
    {"messageId": "...", "deleteForEveryone": true}
    """
    result = async_to_sync(get_runtime().tracker.delete)(request.data, request.user.pk)
    if not result.get('success'):
        return error_response(result)
    return Response(result)


# =============================================================================
# MEMBERS
# =============================================================================

@api_view(['POST'])
@permission_classes([IsAuthenticated])
def members_by_ids(request):
    """
    Presence details of a set of users

    POST /api/members/by-ids/
    {"userIds": [1, 2, 3]}
    """
    serializer = UsersByIdsSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    try:
        users = store.users_presence(serializer.validated_data['user_ids'])
    except DatabaseError:
        return database_error_response('members_by_ids')

    return Response({
        'users': PresenceUserSerializer(users, many=True).data,
        'count': len(users)
    })
