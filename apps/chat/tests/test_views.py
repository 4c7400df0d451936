import uuid
from datetime import timedelta

import pytest
from rest_framework import status
from rest_framework.test import APIClient
from django.utils import timezone

from apps.chat import store
from apps.chat.models import Conversation, Message

pytestmark = pytest.mark.django_db(transaction=True)


@pytest.fixture
def hi(private_conversation, alice, bob):
    return Message.objects.create(conversation=private_conversation, sender=alice, receiver=bob, content="hi")


def test_endpoints_require_authentication(private_conversation):
    client = APIClient()
    res = client.get(f"/api/conversation/messages/{private_conversation.id}/")
    assert res.status_code == status.HTTP_401_UNAUTHORIZED


def test_get_or_create_conversation(api_client, chat_runtime, alice, bob):
    url = f"/api/conversation/get-or-create/?user1={alice.pk}&user2={bob.pk}"

    first = api_client.get(url)
    second = api_client.get(f"/api/conversation/get-or-create/?user1={bob.pk}&user2={alice.pk}")

    assert first.status_code == status.HTTP_201_CREATED
    assert first.data['created'] is True
    assert second.status_code == status.HTTP_200_OK
    assert second.data['conversationId'] == first.data['conversationId']


def test_get_or_create_for_other_people_is_forbidden(api_client, chat_runtime, bob, carol):
    res = api_client.get(f"/api/conversation/get-or-create/?user1={bob.pk}&user2={carol.pk}")
    assert res.status_code == status.HTTP_403_FORBIDDEN
    assert not Conversation.objects.exists()


def test_get_or_create_with_yourself_is_bad_request(api_client, chat_runtime, alice):
    res = api_client.get(f"/api/conversation/get-or-create/?user1={alice.pk}&user2={alice.pk}")
    assert res.status_code == status.HTTP_400_BAD_REQUEST


def test_create_group(api_client, chat_runtime, alice, bob, carol):
    res = api_client.post("/api/conversation/group/", {
        "name": "Book club",
        "participants": [bob.pk, carol.pk, alice.pk],
    }, format="json")

    assert res.status_code == status.HTTP_201_CREATED
    conversation = res.data['conversation']
    assert conversation['type'] == Conversation.TYPE_GROUP
    assert conversation['adminIds'] == [str(alice.pk)]
    assert sorted(conversation['participantIds']) == sorted([str(alice.pk), str(bob.pk), str(carol.pk)])


def test_create_group_needs_two_other_members(api_client, chat_runtime, bob):
    res = api_client.post("/api/conversation/group/", {"name": "Tiny", "participants": [bob.pk]}, format="json")
    assert res.status_code == status.HTTP_400_BAD_REQUEST


def test_update_group_image(api_client, chat_runtime, group_conversation):
    res = api_client.post("/api/conversation/update-group-image/", {
        "conversationId": str(group_conversation.id),
        "groupImage": "https://cdn.example.com/group.png",
    }, format="json")

    assert res.status_code == status.HTTP_200_OK
    group_conversation.refresh_from_db()
    assert group_conversation.group_image == "https://cdn.example.com/group.png"


def test_update_group_image_by_member_is_forbidden(chat_runtime, group_conversation, bob):
    client = APIClient()
    client.force_authenticate(user=bob)

    res = client.post("/api/conversation/update-group-image/", {
        "conversationId": str(group_conversation.id),
        "groupImage": "https://cdn.example.com/mine.png",
    }, format="json")

    assert res.status_code == status.HTTP_403_FORBIDDEN


def test_send_message_over_rest(api_client, chat_runtime, private_conversation, alice, bob):
    res = api_client.post("/api/conversation/messages/", {
        "conversationId": str(private_conversation.id),
        "content": "from the api",
    }, format="json")

    assert res.status_code == status.HTTP_201_CREATED
    message = Message.objects.get(pk=res.data['message']['id'])
    assert message.sender == alice
    assert message.receiver == bob


def test_send_message_repeat_is_idempotent(api_client, chat_runtime, private_conversation):
    payload = {"id": str(uuid.uuid4()), "conversationId": str(private_conversation.id), "content": "once"}

    first = api_client.post("/api/conversation/messages/", payload, format="json")
    second = api_client.post("/api/conversation/messages/", payload, format="json")

    assert first.status_code == status.HTTP_201_CREATED
    assert second.status_code == status.HTTP_200_OK
    assert Message.objects.count() == 1


def test_send_message_too_long_is_rejected(api_client, chat_runtime, private_conversation, settings):
    settings.CHAT_MAX_MESSAGE_LENGTH = 5
    res = api_client.post("/api/conversation/messages/", {
        "conversationId": str(private_conversation.id),
        "content": "far too long",
    }, format="json")

    assert res.status_code == status.HTTP_400_BAD_REQUEST
    assert res.data['code'] == 'invalid'


def test_send_message_to_unknown_conversation_is_not_found(api_client, chat_runtime):
    res = api_client.post("/api/conversation/messages/", {
        "conversationId": str(uuid.uuid4()),
        "content": "hello?",
    }, format="json")

    assert res.status_code == status.HTTP_404_NOT_FOUND


def test_list_conversations_most_recent_first(api_client, chat_runtime, private_conversation, group_conversation, alice, bob, dave):
    Conversation.objects.filter(pk=private_conversation.pk).update(updated_at=timezone.now())
    Conversation.objects.filter(pk=group_conversation.pk).update(updated_at=timezone.now() - timedelta(hours=1))
    Message.objects.create(
        conversation=private_conversation, sender=alice, receiver=bob, content="first",
        timestamp=timezone.now() - timedelta(minutes=1)
    )
    latest = Message.objects.create(conversation=private_conversation, sender=bob, receiver=alice, content="latest")
    store.get_or_create_private_conversation(bob, dave)

    res = api_client.get("/api/conversation/list/")

    assert res.status_code == status.HTTP_200_OK
    assert res.data['count'] == 2
    private, group = res.data['conversations']
    assert private['id'] == str(private_conversation.id)
    assert group['id'] == str(group_conversation.id)
    assert private['lastMessage']['id'] == str(latest.id)
    assert private['otherParticipant']['id'] == str(bob.pk)
    assert group['otherParticipant'] is None
    assert group['lastMessage'] is None


def test_last_message_skips_messages_hidden_by_the_caller(api_client, chat_runtime, private_conversation, alice, bob):
    shown = Message.objects.create(conversation=private_conversation, sender=alice, receiver=bob, content="shown")
    hidden = Message.objects.create(conversation=private_conversation, sender=bob, receiver=alice, content="hidden")
    hidden.deleted_for.add(alice)

    res = api_client.get("/api/conversation/list/")

    assert res.data['conversations'][0]['lastMessage']['id'] == str(shown.id)


def test_get_conversation(api_client, chat_runtime, group_conversation, alice):
    res = api_client.get(f"/api/conversation/{group_conversation.id}/")

    assert res.status_code == status.HTTP_200_OK
    assert res.data['conversation']['name'] == "Trip"
    assert res.data['conversation']['adminIds'] == [str(alice.pk)]


def test_get_conversation_of_others_is_forbidden(chat_runtime, private_conversation, carol):
    client = APIClient()
    client.force_authenticate(user=carol)

    res = client.get(f"/api/conversation/{private_conversation.id}/")

    assert res.status_code == status.HTTP_403_FORBIDDEN


def test_get_unknown_conversation_is_not_found(api_client, chat_runtime):
    res = api_client.get(f"/api/conversation/{uuid.uuid4()}/")
    assert res.status_code == status.HTTP_404_NOT_FOUND


def test_list_messages_oldest_first(api_client, chat_runtime, private_conversation, alice, bob):
    first = Message.objects.create(conversation=private_conversation, sender=alice, receiver=bob, content="1")
    second = Message.objects.create(conversation=private_conversation, sender=bob, receiver=alice, content="2")

    res = api_client.get(f"/api/conversation/messages/{private_conversation.id}/")

    assert res.status_code == status.HTTP_200_OK
    assert [m['id'] for m in res.data['messages']] == [str(first.id), str(second.id)]
    assert res.data['messages'][0]['sender']['name'] == "Alice"


def test_list_messages_of_foreign_conversation_is_forbidden(chat_runtime, private_conversation, carol):
    client = APIClient()
    client.force_authenticate(user=carol)

    res = client.get(f"/api/conversation/messages/{private_conversation.id}/")

    assert res.status_code == status.HTTP_403_FORBIDDEN


def test_get_single_message_includes_tombstones(api_client, chat_runtime, hi):
    Message.objects.filter(pk=hi.pk).update(deleted_for_all=True)

    res = api_client.get(f"/api/messages/{hi.id}/")

    assert res.status_code == status.HTTP_200_OK
    assert res.data['message']['deletedForAll'] is True
    assert res.data['message']['content'] is None


def test_get_unknown_message_is_not_found(api_client, chat_runtime):
    res = api_client.get(f"/api/messages/{uuid.uuid4()}/")
    assert res.status_code == status.HTTP_404_NOT_FOUND


def test_delete_message_for_everyone(api_client, chat_runtime, hi):
    res = api_client.post("/api/messages/delete/", {
        "messageId": str(hi.id),
        "deleteForEveryone": True,
    }, format="json")

    assert res.status_code == status.HTTP_200_OK
    hi.refresh_from_db()
    assert hi.deleted_for_all is True


def test_delete_message_for_me(chat_runtime, hi, bob):
    client = APIClient()
    client.force_authenticate(user=bob)

    res = client.post("/api/messages/delete/", {"messageId": str(hi.id)}, format="json")

    assert res.status_code == status.HTTP_200_OK
    assert res.data['deletedForAll'] is False
    assert list(hi.deleted_for.all()) == [bob]


def test_members_by_ids(api_client, chat_runtime, alice, bob):
    res = api_client.post("/api/members/by-ids/", {"userIds": [alice.pk, bob.pk]}, format="json")

    assert res.status_code == status.HTTP_200_OK
    assert [u['id'] for u in res.data['users']] == [str(alice.pk), str(bob.pk)]
    assert res.data['users'][0]['onlineStatus'] == 'offline'


def test_schema_is_served(api_client):
    res = api_client.get("/api/schema/")
    assert res.status_code == status.HTTP_200_OK

