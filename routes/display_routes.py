"""
Display Routes Blueprint
Readout and control endpoints for the kiosk presentation layer
"""
import io
import logging
from datetime import datetime, timezone
from flask import Blueprint, request, jsonify, send_file, current_app

from models import MediaKind
from utils.errors import DisplayError, EmptyContent

display_bp = Blueprint('display', __name__)

logger = logging.getLogger(__name__)

PLAYBACK_ACTIONS = ('play', 'pause', 'toggle')


def get_controller():
    return current_app.display_controller


def parse_media_report(data):
    """
    Validate a media load report body

    Returns:
        (source, kind, url) or raises ValueError
    """
    source = str(data.get('source') or '').strip()
    if not source:
        raise ValueError('source is required')
    try:
        kind = MediaKind(str(data.get('kind') or '').lower())
    except ValueError:
        raise ValueError('kind must be image or video')
    if kind not in (MediaKind.IMAGE, MediaKind.VIDEO):
        raise ValueError('kind must be image or video')
    return source, kind, data.get('url')


# ============================================================================
# READOUT
# ============================================================================

@display_bp.route('/state', methods=['GET'])
def get_state():
    """
    Current slide, panel page, document page and flags

    Response JSON (abridged):
    {
        "emergency": false,
        "playing": true,
        "hint": "Slide 2 of 5",
        "panel": {"page_index": 0, "page_count": 1, "tiles": [...]},
        "document": {"status": "ready", "page_count": 3, "page_index": 1, ...}
    }
    """
    return jsonify(get_controller().snapshot()), 200


@display_bp.route('/pages', methods=['GET'])
def get_pages():
    """All pages of the active document"""
    return jsonify(get_controller().document_pages()), 200


@display_bp.route('/pdf/pages/<int:page_number>', methods=['GET'])
def get_pdf_page(page_number):
    """Render one page of the active PDF as PNG"""
    zoom = request.args.get('zoom', 1.5, type=float)
    if zoom is None or not 0.25 <= zoom <= 4:
        return jsonify({'error': 'zoom must be between 0.25 and 4'}), 400

    try:
        png = get_controller().render_active_pdf_page(page_number, zoom)
    except EmptyContent as e:
        return jsonify(e.to_dict()), 404
    except DisplayError as e:
        return jsonify(e.to_dict()), 422

    return send_file(io.BytesIO(png), mimetype='image/png', download_name=f'page-{page_number}.png')


# ============================================================================
# CONTROL
# ============================================================================

@display_bp.route('/next', methods=['POST'])
def next_slide():
    return jsonify(get_controller().next()), 200


@display_bp.route('/previous', methods=['POST'])
def previous_slide():
    return jsonify(get_controller().previous()), 200


@display_bp.route('/playback', methods=['POST'])
def playback():
    """
    Play, pause or toggle autoplay

    Request JSON:
    {
        "action": "play" | "pause" | "toggle"
    }
    """
    data = request.get_json(silent=True) or {}
    action = str(data.get('action') or 'toggle').lower()
    if action not in PLAYBACK_ACTIONS:
        return jsonify({'error': f'action must be one of {", ".join(PLAYBACK_ACTIONS)}'}), 400

    logger.info(f'Playback {action} requested from {request.remote_addr}')
    controller = get_controller()
    if action == 'play':
        snapshot = controller.play()
    elif action == 'pause':
        snapshot = controller.pause()
    else:
        snapshot = controller.toggle_play()
    return jsonify(snapshot), 200


@display_bp.route('/refresh', methods=['POST'])
def refresh():
    """Resync announcements and live status from the backend now"""
    controller = get_controller()
    controller.refresh_all()
    return jsonify(controller.snapshot()), 200


@display_bp.route('/media/loaded', methods=['POST'])
def media_loaded():
    data = request.get_json(silent=True) or {}
    try:
        source, kind, _ = parse_media_report(data)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    load = get_controller().report_media_loaded(source, kind)
    if load is None:
        return jsonify({'error': 'Media is not supervised'}), 404
    return jsonify(load.to_dict()), 200


@display_bp.route('/media/error', methods=['POST'])
def media_error():
    """
    Report a failed image/video load

    Response JSON carries the next URL to try, or "fallback": true once the
    retry budget is spent.
    """
    data = request.get_json(silent=True) or {}
    try:
        source, kind, url = parse_media_report(data)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    load = get_controller().report_media_error(source, kind, url=url)
    if load is None:
        return jsonify({'error': 'Media is not supervised'}), 404
    return jsonify(load.to_dict()), 200


@display_bp.route('/health', methods=['GET'])
def health_check():
    """
    Simple health check endpoint

    Response JSON:
    {
        "status": "healthy",
        "timestamp": "2026-01-31T10:00:00+00:00",
        "slides": 4
    }
    """
    snapshot = get_controller().snapshot()
    return jsonify({
        'status': 'healthy',
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'slides': snapshot['slide_count'],
        'emergency': snapshot['emergency'],
    }), 200
