from dataclasses import dataclass

from django.apps import apps

from .broadcast import ChannelBroadcaster
from .delivery import MessageRouter
from .presence import PresenceCoordinator, PresenceRegistry
from .receipts import ReceiptTracker


@dataclass
class ChatRuntime:
    """The realtime services of one process, wired around a single registry."""
    registry: PresenceRegistry
    broadcaster: ChannelBroadcaster
    presence: PresenceCoordinator
    router: MessageRouter
    tracker: ReceiptTracker


def build_runtime(channel_layer=None):
    registry = PresenceRegistry()
    broadcaster = ChannelBroadcaster(registry, channel_layer=channel_layer)
    tracker = ReceiptTracker(broadcaster)
    return ChatRuntime(
        registry=registry,
        broadcaster=broadcaster,
        presence=PresenceCoordinator(registry, broadcaster),
        router=MessageRouter(registry, broadcaster, tracker),
        tracker=tracker,
    )


def get_runtime():
    return apps.get_app_config('chat').runtime
