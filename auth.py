import json
import time
import logging
from functools import wraps

from cryptography.fernet import Fernet, InvalidToken
from flask import current_app, g, request

from errors import AuthenticationError

logger = logging.getLogger('MessagingAuth')


class TokenManager:
    """Issues and checks bearer tokens (Fernet-encrypted JSON payloads)"""

    def __init__(self, key, ttl=86400):
        if isinstance(key, str):
            key = key.encode('utf-8')
        self.fernet = Fernet(key)
        self.ttl = ttl

    def generate(self, username):
        payload = {
            'username': username,
            'timestamp': int(time.time() * 1000)
        }
        return self.fernet.encrypt(json.dumps(payload).encode('utf-8')).decode('utf-8')

    def verify(self, token):
        """Return the token payload, or raise AuthenticationError if invalid or expired"""
        try:
            data = self.fernet.decrypt(token.encode('utf-8'), ttl=self.ttl)
            payload = json.loads(data.decode('utf-8'))
        except (InvalidToken, ValueError) as e:
            logger.warning(f"Rejected token: {type(e).__name__}")
            raise AuthenticationError(
                'Invalid token',
                'The provided token is not valid or has expired'
            )
        if not payload.get('username'):
            raise AuthenticationError('User not authenticated', 'Invalid user token')
        return payload


def bearer_token():
    header = request.headers.get('Authorization', '')
    if header.startswith('Bearer '):
        return header[len('Bearer '):].strip()
    return ''


def verify_token(view):
    """Route decorator: reject the request with 401 unless a valid bearer token is sent"""
    @wraps(view)
    def wrapper(*args, **kwargs):
        token = bearer_token()
        if not token:
            raise AuthenticationError(
                'Access token required',
                'Must provide a valid token in Authorization header'
            )
        g.user = current_app.extensions['messaging']['tokens'].verify(token)
        return view(*args, **kwargs)
    return wrapper
