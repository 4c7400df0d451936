import asyncio

import pytest
from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.apps import apps
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import AccessToken

from apps.chat import store
from apps.chat.runtime import build_runtime

User = get_user_model()

PASSWORD = "CourierPass!123"  # noqa: S105


def make_user(username):
    return User.objects.create_user(
        username=username,
        email=f"{username}@example.com",
        password=PASSWORD,
        first_name=username.capitalize(),
    )


def access_token(user):
    return str(AccessToken.for_user(user))


async def receive_until(communicator, event_type, timeout=1):
    """Read socket frames until one of event_type arrives, skipping others."""
    while True:
        frame = await communicator.receive_json_from(timeout=timeout)
        if frame['type'] == event_type:
            return frame


async def nothing_on(layer, channel, timeout=0.1):
    try:
        await asyncio.wait_for(layer.receive(channel), timeout)
    except asyncio.TimeoutError:
        return True
    return False


@pytest.fixture
def alice(db):
    return make_user("alice")


@pytest.fixture
def bob(db):
    return make_user("bob")


@pytest.fixture
def carol(db):
    return make_user("carol")


@pytest.fixture
def dave(db):
    return make_user("dave")


@pytest.fixture
def private_conversation(alice, bob):
    conversation, _ = store.get_or_create_private_conversation(alice, bob)
    return conversation


@pytest.fixture
def group_conversation(alice, bob, carol):
    return store.create_group_conversation(alice, "Trip", [bob, carol])


@pytest.fixture
def chat_runtime():
    """A fresh runtime on a flushed global channel layer, installed on the app."""
    async_to_sync(get_channel_layer().flush)()
    config = apps.get_app_config('chat')
    previous = config.runtime
    config.runtime = build_runtime()
    yield config.runtime
    config.runtime = previous


@pytest.fixture
def api_client(alice):
    client = APIClient()
    client.force_authenticate(user=alice)
    return client


async def drain(communicator, timeout=0.2):
    """Collect every frame still queued on the socket."""
    frames = []
    while not await communicator.receive_nothing(timeout=timeout):
        frames.append(await communicator.receive_json_from())
    return frames
