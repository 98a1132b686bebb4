import logging
import threading

logger = logging.getLogger('MessagingBroadcaster')

NEW_MESSAGE_EVENT = 'new-message'


class RoomRegistry:
    """Tracks which socket sessions joined which room.

    Flask-SocketIO keeps the authoritative room membership; this registry
    mirrors it so the app can report subscriber counts and drop everything
    on shutdown.
    """

    def __init__(self):
        self._rooms = {}  # room -> set of sids
        self._lock = threading.Lock()
        self.closed = False

    def join(self, sid, room):
        with self._lock:
            self._rooms.setdefault(room, set()).add(sid)

    def leave(self, sid, room=None):
        """Remove sid from one room, or from every room when room is None"""
        with self._lock:
            rooms = [room] if room is not None else list(self._rooms)
            for key in rooms:
                members = self._rooms.get(key)
                if members is None:
                    continue
                members.discard(sid)
                if not members:
                    del self._rooms[key]

    def members(self, room):
        with self._lock:
            return set(self._rooms.get(room, ()))

    def close(self):
        with self._lock:
            self._rooms.clear()
            self.closed = True


class DeliveryBroadcaster:
    def __init__(self, socketio, registry, room):
        self.socketio = socketio
        self.registry = registry
        self.room = room

    def publish(self, message, room=None):
        """Emit a message to everyone currently in the room. Best effort, no retry.

        The room key comes second and defaults to the shared chat room,
        since every caller publishes there.
        """
        room = room or self.room
        subscribers = len(self.registry.members(room))
        if subscribers == 0:
            logger.info(f"No subscribers in {room} for message {message.id}")
        try:
            self.socketio.emit(NEW_MESSAGE_EVENT, message.to_dict(), to=room)
        except Exception as e:
            logger.error(f"Error broadcasting message {message.id} to {room}: {e}")
            return False
        logger.info(f"Broadcast message {message.id} to {room} ({subscribers} subscribers)")
        return True
