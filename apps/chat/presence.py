import logging

from django.db import DatabaseError

from . import store

logger = logging.getLogger(__name__)


class PresenceRegistry:
    """
    In-memory map of user id -> connection id (a Channels channel name).

    It is the only source of truth for where a user can be reached right
    now. Nothing is persisted; the map starts empty on every process start.
    Mutated from the event loop only, each method runs without awaiting.
    """

    def __init__(self):
        self._connections = {}

    def set(self, user_id, connection_id):
        """Register a connection, returning the connection it replaced (if any)."""
        user_id = str(user_id)
        previous = self._connections.get(user_id)
        self._connections[user_id] = connection_id
        return previous

    def get(self, user_id):
        if user_id is None:
            return None
        return self._connections.get(str(user_id))

    def remove(self, user_id, connection_id=None):
        """
        Remove the entry for user_id.

        When connection_id is given the entry is only removed if it still
        points at that connection, so a superseded socket cannot unregister
        its replacement.
        """
        user_id = str(user_id)
        current = self._connections.get(user_id)
        if current is None:
            return False
        if connection_id is not None and current != connection_id:
            return False
        del self._connections[user_id]
        return True

    def user_for(self, connection_id):
        users = self.users_for(connection_id)
        return users[0] if users else None

    def users_for(self, connection_id):
        # linear scan, fine for the number of sockets one process holds
        return [
            user_id for user_id, registered in self._connections.items()
            if registered == connection_id
        ]

    def all_user_ids(self):
        return list(self._connections)

    def __contains__(self, user_id):
        return str(user_id) in self._connections

    def __len__(self):
        return len(self._connections)


class PresenceCoordinator:
    """
    Online/offline lifecycle of users.

    The registry is updated first and the snapshot broadcast always goes
    out; writing the presence flags on the user row is best effort.
    """

    def __init__(self, registry, broadcaster):
        self.registry = registry
        self.broadcaster = broadcaster

    async def mark_online(self, user_id, connection_id):
        user_id = str(user_id)
        previous = self.registry.set(user_id, connection_id)
        if previous and previous != connection_id:
            logger.info(f"User {user_id} reconnected, {previous} superseded by {connection_id}")

        try:
            updated = await store.aset_user_presence(user_id, online=True)
            if not updated:
                logger.warning(f"Presence update matched no user row for {user_id}")
        except (DatabaseError, ValueError) as e:
            logger.error(f"Error setting user {user_id} online: {str(e)}")

        await self.broadcast_snapshot()
        logger.info(f"User {user_id} online on {connection_id}")
        return {'success': True, 'user_id': user_id, 'online_users': self.snapshot()}

    async def mark_offline(self, connection_id):
        """
        Demote every user registered on connection_id.

        Returns the demoted user ids; empty when the connection is not a
        registered one (never registered, or already superseded).
        """
        user_ids = self.registry.users_for(connection_id)
        if not user_ids:
            logger.info(f"Disconnect of unregistered connection {connection_id} ignored")
            return []

        for user_id in user_ids:
            self.registry.remove(user_id, connection_id)
            await self._persist_offline(user_id)

        await self.broadcast_snapshot()
        logger.info(f"Users {', '.join(user_ids)} offline")
        return user_ids

    async def _persist_offline(self, user_id):
        try:
            await store.aset_user_presence(user_id, online=False)
        except (DatabaseError, ValueError) as e:
            logger.error(f"Error setting user {user_id} offline: {str(e)}")

    def snapshot(self):
        return self.registry.all_user_ids()

    async def broadcast_snapshot(self):
        await self.broadcaster.to_everyone('online_users', self.snapshot())
