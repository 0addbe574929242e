"""
WebSocket Event Handlers
Pushes display state to kiosk clients and takes control/media reports back
"""
from flask import request, current_app
from flask_socketio import emit, join_room
from app import socketio, DISPLAY_ROOM
from models import MediaKind
import logging
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

# Track connected clients
connected_clients = {}

CONTROL_ACTIONS = ('next', 'previous', 'play', 'pause', 'toggle')


def _controller():
    return current_app.display_controller


def _media_report(data):
    """(source, kind) from a client report, or None if malformed"""
    if not isinstance(data, dict):
        return None
    source = str(data.get('source') or '').strip()
    try:
        kind = MediaKind(str(data.get('kind') or '').lower())
    except ValueError:
        return None
    if not source or kind not in (MediaKind.IMAGE, MediaKind.VIDEO):
        return None
    return source, kind


@socketio.on('connect')
def handle_connect(auth=None):
    """Join the display room and send the current state"""
    client_id = request.sid
    join_room(DISPLAY_ROOM)
    connected_clients[client_id] = {'rooms': [DISPLAY_ROOM]}
    logger.info(f'Display client connected (SID: {client_id})')
    emit('display_state', _controller().snapshot())


@socketio.on('disconnect')
def handle_disconnect(*args):
    """Handle client disconnection"""
    client_id = request.sid
    if client_id in connected_clients:
        logger.info(f'Display client disconnected (SID: {client_id})')
        del connected_clients[client_id]


@socketio.on('request_state')
def handle_state_request():
    emit('display_state', _controller().snapshot())


@socketio.on('display_control')
def handle_display_control(data):
    """
    Manual control from the kiosk
    Actions: 'next', 'previous', 'play', 'pause', 'toggle'
    """
    action = (data or {}).get('action') if isinstance(data, dict) else None
    if action not in CONTROL_ACTIONS:
        emit('error', {'message': f'Unknown action: {action}'})
        return

    controller = _controller()
    handlers = {
        'next': controller.next,
        'previous': controller.previous,
        'play': controller.play,
        'pause': controller.pause,
        'toggle': controller.toggle_play,
    }
    handlers[action]()
    logger.debug(f'Display control {action} from {request.sid}')


@socketio.on('media_loaded')
def handle_media_loaded(data):
    report = _media_report(data)
    if report is None:
        emit('error', {'message': 'source and kind (image/video) are required'})
        return
    _controller().report_media_loaded(*report)


@socketio.on('media_error')
def handle_media_error(data):
    """Element failed to load; the next state push carries the retry URL or the fallback"""
    report = _media_report(data)
    if report is None:
        emit('error', {'message': 'source and kind (image/video) are required'})
        return
    _controller().report_media_error(*report, url=data.get('url'))


@socketio.on('ping')
def handle_ping():
    """Respond to ping (keep-alive)"""
    emit('pong', {'timestamp': datetime.now(timezone.utc).isoformat()})
