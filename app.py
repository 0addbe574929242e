"""
Notice Display Service
Main Flask application entry point for the signage rotation engine
"""
import atexit
import os
import logging
from logging.handlers import RotatingFileHandler
from flask import Flask, jsonify
from flask_cors import CORS
from flask_socketio import SocketIO

from config import config

# Global instances
socketio = SocketIO()

DISPLAY_ROOM = 'display'


def emit_to_displays(event, data):
    """Push an event to every connected presentation client"""
    socketio.emit(event, data, to=DISPLAY_ROOM)


def create_app(config_name=None, feed=None, timers=None):
    """
    Application factory pattern

    Args:
        config_name: Key into the config dictionary (defaults to FLASK_ENV)
        feed: Backend client override
        timers: Timer registry override (tests pass a manual one)
    """

    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    app = Flask(__name__)
    app.config.from_object(config[config_name])
    config[config_name].init_app(app)

    # CORS configuration
    CORS(app, resources={
        r"/api/*": {
            "origins": app.config['CORS_ORIGINS'],
            "methods": ["GET", "POST"],
            "allow_headers": ["Content-Type"]
        }
    })

    # Import SocketIO event handlers before init_app so they are kept in
    # socketio.handlers and re-attached on every init_app
    import socketio_events  # noqa: F401

    # SocketIO initialization
    cors_origins = app.config['CORS_ORIGINS']
    if cors_origins == ['*']:
        cors_origins = '*'
    socketio.init_app(app,
                      cors_allowed_origins=cors_origins,
                      async_mode='threading',
                      logger=app.config['DEBUG'],
                      engineio_logger=app.config['DEBUG'])

    # Setup logging
    setup_logging(app)

    # Display controller and its collaborators
    from utils.display_controller import DisplayController
    from utils.feed import BackendClient
    from utils.scheduler import get_scheduler, init_scheduler, shutdown_scheduler
    from utils.timers import TimerRegistry

    owns_timers = timers is None
    if feed is None:
        feed = BackendClient(app.config['BACKEND_URL'], timeout=app.config['HTTP_TIMEOUT_SECONDS'])
    if owns_timers:
        timers = TimerRegistry(get_scheduler())

    controller = DisplayController(app.config, feed, timers, emit=emit_to_displays)
    app.display_controller = controller  # type: ignore

    # Register blueprints
    from routes.display_routes import display_bp
    app.register_blueprint(display_bp, url_prefix='/api/display')

    @app.route('/')
    def index():
        return jsonify({
            'service': 'notice-display',
            'state': '/api/display/state',
            'category': app.config['DISPLAY_CATEGORY'],
        })

    # Error handlers
    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'error': 'Not found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'error': 'Method not allowed'}), 405

    @app.errorhandler(500)
    def internal_error(error):
        return jsonify({'error': 'Internal server error'}), 500

    # Background polling and rotation timers
    if owns_timers:
        if app.config['SCHEDULER_ENABLED']:
            init_scheduler(app)
        else:
            timers.start()
        atexit.register(shutdown_scheduler)
        # atexit runs last-in first-out: timers are disarmed before the scheduler stops
        atexit.register(controller.shutdown)
        timers.submit('initial_sync', controller.refresh_all)

    # Push channel from the backend
    if app.config['EVENT_BUS_ENABLED']:
        from utils.event_bus import BackendEventBus
        event_bus = BackendEventBus(app.config['BACKEND_URL'], controller)
        event_bus.start()
        atexit.register(event_bus.stop)
        app.event_bus = event_bus  # type: ignore

    return app


def setup_logging(app):
    """Configure application logging"""

    if not app.debug and not app.testing:
        # Create logs directory if it doesn't exist
        if not os.path.exists(app.config['LOG_FOLDER']):
            os.mkdir(app.config['LOG_FOLDER'])

        # Application log handler, shared by the utils loggers
        file_handler = RotatingFileHandler(
            app.config['APP_LOG_FILE'],
            maxBytes=10240000,  # 10MB
            backupCount=10
        )
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
        ))
        file_handler.setLevel(logging.INFO)
        app.logger.addHandler(file_handler)
        logging.getLogger('utils').addHandler(file_handler)
        logging.getLogger('utils').setLevel(logging.INFO)

        app.logger.setLevel(logging.INFO)
        app.logger.info('Notice display startup')


if __name__ == '__main__':
    # socketio_events imports this module as 'app'; serve through that instance
    import app as display_app

    application = display_app.create_app()

    # Run the application with SocketIO
    display_app.socketio.run(
        application,
        host=application.config['FLASK_HOST'],
        port=application.config['FLASK_PORT'],
        debug=application.config['DEBUG'],
        allow_unsafe_werkzeug=True
    )
