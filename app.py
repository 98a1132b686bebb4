from flask import Flask, Blueprint, request, jsonify, g, current_app, send_from_directory
from flask_socketio import SocketIO, join_room
from werkzeug.exceptions import HTTPException
from cryptography.fernet import Fernet
import os
import logging

from auth import TokenManager, verify_token
from broadcaster import DeliveryBroadcaster, RoomRegistry
from errors import ApiError, ValidationError
from handlers import IngestionHandler, QueryHandler
from repository import MessageRepository, utc_timestamp
from scheduler import AutoReplyScheduler
from store import JSONStore
from uploads import save_image

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger('MessagingAPI')

socketio = SocketIO()

auth_bp = Blueprint('auth', __name__, url_prefix='/api/auth')
messages_bp = Blueprint('messages', __name__, url_prefix='/api/messages')


def _env_flag(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.lower() in ('1', 'true', 'yes', 'on')


def create_app(test_config=None):
    app = Flask(__name__)
    app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY') or os.urandom(24)
    app.config['DATA_FILE'] = os.environ.get(
        'DATA_FILE', os.path.join(os.getcwd(), 'data', 'database.json'))
    app.config['UPLOAD_FOLDER'] = os.environ.get('UPLOAD_FOLDER', 'uploads')
    app.config['MAX_CONTENT_LENGTH'] = 5 * 1024 * 1024  # 5MB max upload size
    app.config['TOKEN_KEY'] = os.environ.get('TOKEN_KEY') or Fernet.generate_key()
    app.config['TOKEN_TTL'] = int(os.environ.get('TOKEN_TTL', 24 * 60 * 60))
    app.config['AUTO_REPLY_DELAY'] = float(os.environ.get('AUTO_REPLY_DELAY', 2.0))
    app.config['CHAT_ROOM'] = 'chat-room'
    # Off reproduces last-write-wins between concurrent inserts
    app.config['SERIALIZE_WRITES'] = _env_flag('SERIALIZE_WRITES', False)
    app.config['SOCKETIO_ASYNC_MODE'] = 'threading'

    # Allow all hosts
    app.config['HOST'] = os.environ.get('HOST', '0.0.0.0')
    app.config['PORT'] = int(os.environ.get('PORT', 3000))

    if test_config:
        app.config.update(test_config)

    os.makedirs(app.config['UPLOAD_FOLDER'], exist_ok=True)

    socketio.init_app(
        app,
        cors_allowed_origins="*",
        async_mode=app.config['SOCKETIO_ASYNC_MODE']
    )

    store = JSONStore(app.config['DATA_FILE'])
    store.initialize()
    repository = MessageRepository(store, serialize_writes=app.config['SERIALIZE_WRITES'])
    registry = RoomRegistry()
    broadcaster = DeliveryBroadcaster(socketio, registry, app.config['CHAT_ROOM'])
    scheduler = AutoReplyScheduler(
        repository,
        broadcaster,
        delay=app.config['AUTO_REPLY_DELAY'],
        spawn=socketio.start_background_task,
        sleep=socketio.sleep
    )
    app.extensions['messaging'] = {
        'store': store,
        'repository': repository,
        'registry': registry,
        'broadcaster': broadcaster,
        'scheduler': scheduler,
        'ingestion': IngestionHandler(repository, broadcaster, scheduler),
        'query': QueryHandler(repository),
        'tokens': TokenManager(app.config['TOKEN_KEY'], app.config['TOKEN_TTL'])
    }

    app.register_blueprint(auth_bp)
    app.register_blueprint(messages_bp)
    register_routes(app)
    register_error_handlers(app)

    logger.info(f"Messaging API configured (data file: {app.config['DATA_FILE']})")
    return app


def shutdown_app(app):
    """Tear down process-wide realtime state"""
    app.extensions['messaging']['registry'].close()
    logger.info("Room registry closed")


def services():
    return current_app.extensions['messaging']


def internal_error(message):
    return jsonify({'error': 'Internal server error', 'message': message}), 500


def register_routes(app):
    @app.route('/')
    def index():
        return jsonify({
            'message': 'Messaging API for Evaluation',
            'version': '1.0.0',
            'endpoints': {
                'auth': '/api/auth/login',
                'messages': {
                    'send_text': 'POST /api/messages/send-text',
                    'send_image': 'POST /api/messages/send-image',
                    'get_messages': 'GET /api/messages'
                }
            }
        })

    @app.route('/uploads/<path:filename>')
    def uploaded_file(filename):
        return send_from_directory(os.path.abspath(app.config['UPLOAD_FOLDER']), filename)


def register_error_handlers(app):
    @app.errorhandler(ApiError)
    def handle_api_error(err):
        return jsonify(err.to_dict()), err.status_code

    @app.errorhandler(404)
    def handle_not_found(err):
        return jsonify({
            'error': 'Route not found',
            'message': f'Route {request.path} does not exist'
        }), 404

    @app.errorhandler(413)
    def handle_too_large(err):
        return jsonify({
            'error': 'File too large',
            'message': 'Uploaded file exceeds the 5MB limit'
        }), 413

    @app.errorhandler(500)
    def handle_internal(err):
        logger.error(f"Unhandled error on {request.path}: {err}")
        return internal_error('Unexpected error')


# Auth routes

@auth_bp.route('/login', methods=['POST'])
def login():
    try:
        data = request.get_json(silent=True) or {}
        username = data.get('username')
        password = data.get('password')

        logger.info(f"Login attempt for user: {username}")

        if not username or not password:
            raise ValidationError('Required fields', 'Username and password are required')

        user = services()['repository'].lookup_user(username)
        if user is None or user.password != password:
            logger.warning(f"Invalid credentials for user: {username}")
            raise ApiError('Invalid credentials', 'Incorrect username or password', 403)

        token = services()['tokens'].generate(user.username)
        logger.info(f"Login successful for user: {username}")
        return jsonify({'token': token, 'user': {'username': user.username}}), 200
    except ApiError:
        raise
    except Exception as e:
        logger.error(f"Error in login: {e}")
        return internal_error('Error processing login')


@auth_bp.route('/verify')
@verify_token
def verify():
    return jsonify({'user': g.user}), 200


# Message routes

@messages_bp.route('', methods=['POST'])
@verify_token
def send_message():
    if request.mimetype == 'multipart/form-data':
        return _send_image()
    return _send_text()


@messages_bp.route('/send-text', methods=['POST'])
@verify_token
def send_text():
    return _send_text()


@messages_bp.route('/send-image', methods=['POST'])
@verify_token
def send_image():
    return _send_image()


def _send_text():
    try:
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            data = request.form
        message = services()['ingestion'].send_text(g.user['username'], data.get('text'))
        return jsonify({'data': message.to_dict()}), 201
    except ApiError:
        raise
    except Exception as e:
        logger.error(f"Error sending text message: {e}")
        return internal_error('Error sending message')


def _send_image():
    try:
        upload = save_image(request.files.get('image'), current_app.config['UPLOAD_FOLDER'])
        message = services()['ingestion'].send_image(
            g.user['username'], upload, request.form.get('caption'))
        return jsonify({'data': message.to_dict()}), 201
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        logger.error(f"Error sending image: {e}")
        return internal_error('Error sending image')


@messages_bp.route('', methods=['GET'])
@verify_token
def get_messages():
    try:
        result = services()['query'].list_messages(
            request.args.get('offset'), request.args.get('limit'))
        return jsonify(result), 200
    except ApiError:
        raise
    except Exception as e:
        logger.error(f"Error getting messages: {e}")
        return internal_error('Error retrieving messages')


@messages_bp.route('/health')
def health():
    return jsonify({
        'status': 'OK',
        'timestamp': utc_timestamp(),
        'service': 'messaging-api'
    }), 200


# WebSocket events

@socketio.on('connect')
def handle_connect():
    logger.info(f"User connected: {request.sid}")


@socketio.on('join-chat')
def handle_join_chat(data=None):
    room = current_app.config['CHAT_ROOM']
    logger.info(f"User joined chat: {data}")
    join_room(room)
    services()['registry'].join(request.sid, room)


@socketio.on('disconnect')
def handle_disconnect(*args):
    logger.info(f"User disconnected: {request.sid}")
    services()['registry'].leave(request.sid)


if __name__ == '__main__':
    app = create_app()

    print("\n=== Messaging API ===")
    print(f"Local URL: http://localhost:{app.config['PORT']}")
    print(f"Login endpoint: http://localhost:{app.config['PORT']}/api/auth/login")
    print(f"Messaging endpoints: http://localhost:{app.config['PORT']}/api/messages")
    print("=====================\n")

    try:
        socketio.run(app, host=app.config['HOST'], port=app.config['PORT'],
                     allow_unsafe_werkzeug=True)
    finally:
        shutdown_app(app)
