import logging

from errors import ValidationError

logger = logging.getLogger('MessagingAPI')

MAX_LIMIT = 50
DEFAULT_LIMIT = 10


class IngestionHandler:
    """Insert, broadcast, then arm the auto-reply. In that order."""

    def __init__(self, repository, broadcaster, scheduler):
        self.repository = repository
        self.broadcaster = broadcaster
        self.scheduler = scheduler

    def send_text(self, username, text):
        if not isinstance(text, str) or text.strip() == '':
            raise ValidationError('Text required', 'Message cannot be empty')
        message = self.repository.insert(
            text=text.strip(),
            type='text',
            username=username,
            is_auto_response=False
        )
        self._deliver(message, 'text')
        return message

    def send_image(self, username, upload, caption=None):
        if upload is None:
            raise ValidationError('Image required', 'Must upload an image file')
        message = self.repository.insert(
            text=caption or '',
            type='image',
            username=username,
            is_auto_response=False,
            image_url=upload.url,
            image_name=upload.original_name,
            image_size=upload.size
        )
        self._deliver(message, 'image')
        return message

    def _deliver(self, message, kind):
        logger.info(f"Message {message.id} ({kind}) stored for {message.username}")
        self.broadcaster.publish(message)
        self.scheduler.arm(message, kind)


def parse_bound(value, default, error, message, minimum, maximum=None):
    if value is None or value == '':
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(error, message)
    if number < minimum or (maximum is not None and number > maximum):
        raise ValidationError(error, message)
    return number


class QueryHandler:
    def __init__(self, repository):
        self.repository = repository

    def list_messages(self, offset=None, limit=None):
        offset = parse_bound(offset, 0, 'Invalid offset',
                             'Offset must be greater than or equal to 0', 0)
        limit = parse_bound(limit, DEFAULT_LIMIT, 'Invalid limit',
                            f'Limit must be between 1 and {MAX_LIMIT}', 1, MAX_LIMIT)
        return self.repository.paginate(offset, limit)
