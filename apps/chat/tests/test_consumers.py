import pytest
from channels.db import database_sync_to_async
from channels.routing import URLRouter
from channels.testing import WebsocketCommunicator

from apps.chat.middleware import TokenAuthMiddlewareStack
from apps.chat.models import Message
from apps.chat.routing import websocket_urlpatterns
from conftest import access_token, drain, receive_until

pytestmark = [pytest.mark.asyncio, pytest.mark.django_db(transaction=True)]

application = TokenAuthMiddlewareStack(URLRouter(websocket_urlpatterns))


async def open_socket(user):
    communicator = WebsocketCommunicator(application, f"/ws/chat/?token={access_token(user)}")
    connected, _ = await communicator.connect()
    assert connected
    welcome = await communicator.receive_json_from()
    assert welcome['type'] == 'connection_established'
    return communicator


async def go_online(communicator, user):
    await communicator.send_json_to({
        'type': 'user_online', 'data': {'userId': str(user.pk)}, 'request_id': 'online'
    })
    ack = await receive_until(communicator, 'ack')
    assert ack['data']['success'] is True
    return ack


async def test_connection_without_token_is_refused(chat_runtime):
    communicator = WebsocketCommunicator(application, "/ws/chat/")
    connected, code = await communicator.connect()
    assert connected is False
    assert code == 4001


async def test_connection_with_bad_token_is_refused(chat_runtime):
    communicator = WebsocketCommunicator(application, "/ws/chat/?token=not-a-jwt")
    connected, code = await communicator.connect()
    assert connected is False
    assert code == 4001


async def test_user_online_registers_and_broadcasts(chat_runtime, alice, bob):
    alice_socket = await open_socket(alice)
    bob_socket = await open_socket(bob)

    ack = await go_online(alice_socket, alice)

    assert ack['data']['request_id'] == 'online'
    assert chat_runtime.registry.get(alice.pk) is not None
    presence = await receive_until(bob_socket, 'online_users')
    assert presence['data'] == [str(alice.pk)]

    await alice_socket.disconnect()
    presence = await receive_until(bob_socket, 'online_users')
    assert presence['data'] == []
    assert chat_runtime.registry.get(alice.pk) is None
    await bob_socket.disconnect()


async def test_user_online_cannot_claim_someone_else(chat_runtime, alice, bob):
    socket = await open_socket(alice)

    await socket.send_json_to({'type': 'user_online', 'data': str(bob.pk), 'request_id': 'r1'})
    ack = await receive_until(socket, 'ack')

    assert ack['data']['success'] is False
    assert ack['data']['code'] == 'forbidden'
    assert chat_runtime.registry.get(bob.pk) is None
    await socket.disconnect()


async def test_private_send_reaches_both_sockets(chat_runtime, private_conversation, alice, bob):
    alice_socket = await open_socket(alice)
    bob_socket = await open_socket(bob)
    await go_online(alice_socket, alice)
    await go_online(bob_socket, bob)

    await alice_socket.send_json_to({
        'type': 'send_message',
        'request_id': 'm1',
        'data': {'conversationId': str(private_conversation.id), 'content': 'hi'},
    })

    ack = await receive_until(alice_socket, 'ack')
    assert ack['data']['success'] is True
    message_id = ack['data']['message']['id']
    received = await receive_until(bob_socket, 'receive_message')
    assert received['data']['id'] == message_id
    assert received['data']['senderId'] == str(alice.pk)
    echo = await receive_until(alice_socket, 'receive_message')
    assert echo['data']['id'] == message_id

    await alice_socket.disconnect()
    await bob_socket.disconnect()


async def test_group_send_needs_join(chat_runtime, group_conversation, alice, bob):
    alice_socket = await open_socket(alice)
    bob_socket = await open_socket(bob)
    await go_online(alice_socket, alice)
    await go_online(bob_socket, bob)

    await bob_socket.send_json_to({
        'type': 'join_conversation',
        'request_id': 'j1',
        'data': {'conversationId': str(group_conversation.id)},
    })
    joined = await receive_until(bob_socket, 'conversation_joined')
    assert joined['data']['conversation_id'] == str(group_conversation.id)
    assert (await receive_until(bob_socket, 'ack'))['data']['success'] is True

    await alice_socket.send_json_to({
        'type': 'send_message',
        'data': {'conversationId': str(group_conversation.id), 'content': 'hello all'},
    })

    received = await receive_until(bob_socket, 'receive_message')
    assert received['data']['content'] == 'hello all'
    assert "receive_message" not in [frame["type"] for frame in await drain(alice_socket)]

    await alice_socket.disconnect()
    await bob_socket.disconnect()


async def test_outsider_cannot_join(chat_runtime, private_conversation, carol):
    socket = await open_socket(carol)

    await socket.send_json_to({
        'type': 'join_conversation',
        'request_id': 'j1',
        'data': {'conversationId': str(private_conversation.id)},
    })
    ack = await receive_until(socket, 'ack')

    assert ack['data']['code'] == 'forbidden'
    await socket.disconnect()


async def test_mark_as_read_over_socket(chat_runtime, private_conversation, alice, bob):
    message = await database_sync_to_async(Message.objects.create)(
        conversation=private_conversation, sender=alice, receiver=bob, content='hi'
    )
    alice_socket = await open_socket(alice)
    bob_socket = await open_socket(bob)
    await go_online(alice_socket, alice)
    await go_online(bob_socket, bob)

    await bob_socket.send_json_to({
        'type': 'mark_as_read',
        'request_id': 'read-1',
        'data': {'messageIds': [str(message.id)]},
    })

    ack = await receive_until(bob_socket, 'ack')
    assert ack['data']['messageIds'] == [str(message.id)]
    receipt = await receive_until(alice_socket, 'messages_read')
    assert receipt['data']['readerId'] == str(bob.pk)

    await alice_socket.disconnect()
    await bob_socket.disconnect()


async def test_react_message_over_socket(chat_runtime, private_conversation, alice, bob):
    message = await database_sync_to_async(Message.objects.create)(
        conversation=private_conversation, sender=alice, receiver=bob, content='hi'
    )
    alice_socket = await open_socket(alice)
    bob_socket = await open_socket(bob)
    await go_online(alice_socket, alice)
    await go_online(bob_socket, bob)

    await bob_socket.send_json_to({
        'type': 'react_message',
        'data': {'messageId': str(message.id), 'emoji': '❤️', 'userId': str(bob.pk)},
    })

    reacted = await receive_until(alice_socket, 'message_reacted')
    assert reacted['data']['action'] == 'added'
    assert reacted['data']['reactions'][0]['emoji'] == '❤️'

    await alice_socket.disconnect()
    await bob_socket.disconnect()


async def test_failure_without_request_id_gets_error_event(chat_runtime, alice):
    socket = await open_socket(alice)

    await socket.send_json_to({'type': 'send_message', 'data': {'content': 'no conversation'}})
    error = await receive_until(socket, 'error')

    assert error['data']['message']
    await socket.disconnect()


async def test_unknown_event_and_bad_json(chat_runtime, alice):
    socket = await open_socket(alice)

    await socket.send_json_to({'type': 'typing_start', 'request_id': 'x'})
    ack = await receive_until(socket, 'ack')
    assert ack['data']['code'] == 'invalid'

    await socket.send_to(text_data='{not json')
    error = await receive_until(socket, 'error')
    assert error['data']['message'] == 'Invalid JSON format'
    await socket.disconnect()


async def test_ping_pong(chat_runtime, alice):
    socket = await open_socket(alice)

    await socket.send_json_to({'type': 'ping'})

    assert (await receive_until(socket, 'pong'))['data']['timestamp']
    await socket.disconnect()


async def test_anonymous_socket_cannot_switch_announced_user(chat_runtime, alice, bob, settings):
    settings.CHAT_REQUIRE_AUTH = False
    communicator = WebsocketCommunicator(application, "/ws/chat/")
    connected, _ = await communicator.connect()
    assert connected
    await receive_until(communicator, 'connection_established')

    await go_online(communicator, alice)
    await communicator.send_json_to({
        'type': 'user_online', 'data': {'userId': str(bob.pk)}, 'request_id': 'switch'
    })
    ack = await receive_until(communicator, 'ack')

    assert ack['data']['success'] is False
    assert ack['data']['code'] == 'forbidden'
    assert chat_runtime.registry.get(bob.pk) is None
    assert chat_runtime.registry.get(alice.pk) is not None

    await communicator.disconnect()
    assert chat_runtime.presence.snapshot() == []
