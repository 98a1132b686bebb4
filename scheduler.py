import time
import logging
import threading

from models import SYSTEM_USERNAME

logger = logging.getLogger('MessagingScheduler')

AUTO_REPLY_TEXT = {
    'text': 'Texto recibido',
    'image': 'Imagen recibida'
}


class AutoReplyTask:
    """A pending auto-reply. Holds its own copy of the trigger data."""

    def __init__(self, trigger_id, kind, delay):
        if kind not in AUTO_REPLY_TEXT:
            raise ValueError(f"Unknown auto-reply kind: {kind}")
        self.trigger_id = trigger_id
        self.kind = kind
        self.delay = delay
        self.state = 'ARMED'
        self.reply = None

    def fire(self, repository, broadcaster):
        self.state = 'FIRED'
        self.reply = repository.insert(
            text=AUTO_REPLY_TEXT[self.kind],
            type='text',
            username=SYSTEM_USERNAME,
            is_auto_response=True,
            reply_to=self.trigger_id
        )
        broadcaster.publish(self.reply)
        self.state = 'DONE'
        return self.reply


def _spawn_thread(target, *args):
    thread = threading.Thread(target=target, args=args)
    thread.daemon = True
    thread.start()
    return thread


class AutoReplyScheduler:
    def __init__(self, repository, broadcaster, delay=2.0, spawn=None, sleep=None):
        """Arms one independent timer per triggering message.

        spawn and sleep default to plain threads and time.sleep; the app
        passes socketio.start_background_task and socketio.sleep instead.
        """
        self.repository = repository
        self.broadcaster = broadcaster
        self.delay = delay
        self.spawn = spawn or _spawn_thread
        self.sleep = sleep or time.sleep

    def arm(self, trigger, kind):
        task = AutoReplyTask(trigger.id, kind, self.delay)
        self.spawn(self._run, task)
        logger.info(f"Auto-reply armed for message {trigger.id} ({kind}, {self.delay}s)")
        return task

    def _run(self, task):
        self.sleep(task.delay)
        try:
            reply = task.fire(self.repository, self.broadcaster)
            logger.info(f"Auto-reply {reply.id} sent for message {task.trigger_id}")
        except Exception as e:
            logger.error(f"Error sending auto-reply for message {task.trigger_id}: {e}")
