from dataclasses import dataclass, field
from typing import List, Optional

SYSTEM_USERNAME = 'system'

# Seed user written into a fresh snapshot
DEFAULT_USER = {
    'id': '1',
    'username': 'testuser',
    'password': 'testpass123'
}

USER_FIELDS = ('id', 'username', 'password')
MESSAGE_FIELDS = ('id', 'text', 'type', 'username', 'timestamp', 'isAutoResponse',
                  'imageUrl', 'imageName', 'imageSize', 'replyTo')
SNAPSHOT_FIELDS = ('users', 'messages')


def unknown_keys(data, known):
    return {k: v for k, v in data.items() if k not in known}


@dataclass
class User:
    id: str
    username: str
    password: str  # plaintext, compared as-is on login
    extra: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=str(data.get('id', '')),
            username=data.get('username', ''),
            password=data.get('password', ''),
            extra=unknown_keys(data, USER_FIELDS)
        )

    def to_dict(self):
        data = dict(self.extra)
        data.update({'id': self.id, 'username': self.username, 'password': self.password})
        return data


@dataclass
class Message:
    id: str
    text: str
    type: str  # 'text' or 'image'
    username: str
    timestamp: str
    isAutoResponse: bool = False
    imageUrl: Optional[str] = None
    imageName: Optional[str] = None
    imageSize: Optional[int] = None
    replyTo: Optional[str] = None
    extra: dict = field(default_factory=dict)  # stored keys this model does not know

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=str(data.get('id', '')),
            text=data.get('text', ''),
            type=data.get('type', 'text'),
            username=data.get('username', ''),
            timestamp=data.get('timestamp', ''),
            isAutoResponse=bool(data.get('isAutoResponse', False)),
            imageUrl=data.get('imageUrl'),
            imageName=data.get('imageName'),
            imageSize=data.get('imageSize'),
            replyTo=data.get('replyTo'),
            extra=unknown_keys(data, MESSAGE_FIELDS)
        )

    def to_dict(self):
        # Optional fields are omitted rather than serialized as null
        data = dict(self.extra)
        data.update({
            'id': self.id,
            'text': self.text,
            'type': self.type,
            'username': self.username,
            'timestamp': self.timestamp,
            'isAutoResponse': self.isAutoResponse
        })
        for key in ('imageUrl', 'imageName', 'imageSize', 'replyTo'):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data


@dataclass
class Snapshot:
    """The whole persisted state: users plus messages, newest message first."""
    users: List[User] = field(default_factory=list)
    messages: List[Message] = field(default_factory=list)
    extra: dict = field(default_factory=dict)

    @classmethod
    def default(cls):
        return cls(users=[User.from_dict(DEFAULT_USER)], messages=[])

    @classmethod
    def from_dict(cls, data):
        return cls(
            users=[User.from_dict(u) for u in data.get('users') or []],
            messages=[Message.from_dict(m) for m in data.get('messages') or []],
            extra=unknown_keys(data, SNAPSHOT_FIELDS)
        )

    def to_dict(self):
        data = dict(self.extra)
        data.update({
            'users': [u.to_dict() for u in self.users],
            'messages': [m.to_dict() for m in self.messages]
        })
        return data
