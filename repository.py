import time
import logging
import threading
from datetime import datetime, timezone

from models import Message

logger = logging.getLogger('MessagingRepository')


def utc_timestamp():
    """ISO-8601 UTC timestamp with millisecond precision, e.g. 2025-01-01T12:00:00.000Z"""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def next_message_id(messages):
    """Millisecond clock id, bumped past the newest stored id on a same-tick collision."""
    candidate = int(time.time() * 1000)
    if messages:
        try:
            head = int(messages[0].id)
        except ValueError:
            head = None
        if head is not None and candidate <= head:
            candidate = head + 1
    return str(candidate)


class MessageRepository:
    def __init__(self, store, serialize_writes=False):
        """Typed message operations over a snapshot store.

        With serialize_writes=False each insert is an unguarded
        load/mutate/save cycle, so concurrent inserts may lose updates.
        serialize_writes=True holds an in-process lock around the cycle.
        """
        self.store = store
        self.serialize_writes = serialize_writes
        self._write_lock = threading.Lock()
        self._local = threading.local()

    @property
    def last_save_ok(self):
        """Whether the calling thread's most recent insert was persisted"""
        return getattr(self._local, 'saved', True)

    def insert(self, text, type='text', username='', is_auto_response=False,
               image_url=None, image_name=None, image_size=None, reply_to=None):
        """Persist a new message at the head of the list and return it.

        The record is returned even when the save fails; check
        last_save_ok (per thread) for the durability signal.
        """
        if self.serialize_writes:
            with self._write_lock:
                return self._insert(text, type, username, is_auto_response,
                                    image_url, image_name, image_size, reply_to)
        return self._insert(text, type, username, is_auto_response,
                            image_url, image_name, image_size, reply_to)

    def _insert(self, text, type, username, is_auto_response,
                image_url, image_name, image_size, reply_to):
        snapshot = self.store.load()
        message = Message(
            id=next_message_id(snapshot.messages),
            text=text,
            type=type,
            username=username,
            timestamp=utc_timestamp(),
            isAutoResponse=is_auto_response,
            imageUrl=image_url,
            imageName=image_name,
            imageSize=image_size,
            replyTo=reply_to
        )
        snapshot.messages.insert(0, message)
        self._local.saved = self.store.save(snapshot)
        if not self._local.saved:
            logger.error(f"Message {message.id} from {username} was not persisted")
        return message

    def paginate(self, offset=0, limit=10):
        """Slice [offset, offset+limit) of the newest-first message list."""
        snapshot = self.store.load()
        total = len(snapshot.messages)
        end = offset + limit
        return {
            'elements': [m.to_dict() for m in snapshot.messages[offset:end]],
            'pagination': {
                'offset': offset,
                'limit': limit,
                'totalMessages': total,
                'hasMore': end < total
            }
        }

    def lookup_user(self, username):
        snapshot = self.store.load()
        for user in snapshot.users:
            if user.username == username:
                return user
        return None

    def all(self):
        return self.store.load().messages
