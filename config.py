"""
Notice Display Configuration Module
Handles environment variables and display service settings
"""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_bool(name, default):
    return os.getenv(name, default).lower() == 'true'


class Config:
    """Base configuration class"""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = _env_bool('DEBUG', 'False')

    # Backend (announcement store, live status, asset hosting)
    BACKEND_URL = os.getenv('BACKEND_URL', 'http://localhost:5001').rstrip('/')
    DISPLAY_CATEGORY = os.getenv('DISPLAY_CATEGORY', 'all')
    HTTP_TIMEOUT_SECONDS = int(os.getenv('HTTP_TIMEOUT_SECONDS', '10'))
    EVENT_BUS_ENABLED = _env_bool('EVENT_BUS_ENABLED', 'True')

    # Polling fallback for the event bus
    SCHEDULER_ENABLED = _env_bool('SCHEDULER_ENABLED', 'True')
    LIVE_POLL_SECONDS = int(os.getenv('LIVE_POLL_SECONDS', '5'))
    ANNOUNCEMENT_POLL_SECONDS = int(os.getenv('ANNOUNCEMENT_POLL_SECONDS', '15'))

    # Rotation
    ROTATION_INTERVAL_SECONDS = int(os.getenv('ROTATION_INTERVAL_SECONDS', '8'))
    DOCUMENT_PAGE_INTERVAL_SECONDS = int(os.getenv('DOCUMENT_PAGE_INTERVAL_SECONDS', '8'))
    DOCUMENT_LOOPS_BEFORE_ADVANCE = int(os.getenv('DOCUMENT_LOOPS_BEFORE_ADVANCE', '2'))
    PANEL_TILE_CAP = int(os.getenv('PANEL_TILE_CAP', '4'))

    # Document decoding
    MAX_INLINE_PARSE_MB = int(os.getenv('MAX_INLINE_PARSE_MB', '20'))
    MAX_INLINE_PARSE_BYTES = MAX_INLINE_PARSE_MB * 1024 * 1024
    MAX_PDF_PREVIEW_MB = int(os.getenv('MAX_PDF_PREVIEW_MB', '100'))
    MAX_PDF_PREVIEW_BYTES = MAX_PDF_PREVIEW_MB * 1024 * 1024
    MAX_PREVIEW_CHARS = int(os.getenv('MAX_PREVIEW_CHARS', '30000'))
    TEXT_PAGE_MAX_LINES = int(os.getenv('TEXT_PAGE_MAX_LINES', '26'))
    TEXT_PAGE_MAX_CHARS = int(os.getenv('TEXT_PAGE_MAX_CHARS', '2600'))
    TEXT_MAX_PAGES = int(os.getenv('TEXT_MAX_PAGES', '300'))
    OFFICE_ONLINE_PREVIEW = _env_bool('OFFICE_ONLINE_PREVIEW', 'False')

    # Media loading
    MEDIA_LOAD_TIMEOUT_SECONDS = int(os.getenv('MEDIA_LOAD_TIMEOUT_SECONDS', '12'))
    MEDIA_RETRY_LIMIT = int(os.getenv('MEDIA_RETRY_LIMIT', '2'))

    # Live streams
    STREAMS_MUTED = _env_bool('STREAMS_MUTED', 'True')
    TWITCH_PARENT_HOST = os.getenv('TWITCH_PARENT_HOST', 'localhost')

    # Logging
    LOG_FOLDER = os.path.join(os.path.dirname(__file__), 'logs')
    APP_LOG_FILE = os.path.join(LOG_FOLDER, 'display.log')

    # CORS
    CORS_ORIGINS = os.getenv('CORS_ORIGINS', '*').split(',')

    # Server
    FLASK_HOST = os.getenv('FLASK_HOST', '0.0.0.0')
    FLASK_PORT = int(os.getenv('FLASK_PORT', '5000'))

    @staticmethod
    def init_app(app):
        """Initialize application with config-specific settings"""
        os.makedirs(Config.LOG_FOLDER, exist_ok=True)


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    BACKEND_URL = 'http://backend.test'
    DISPLAY_CATEGORY = 'all'
    SCHEDULER_ENABLED = False
    EVENT_BUS_ENABLED = False
    OFFICE_ONLINE_PREVIEW = False
    STREAMS_MUTED = True
    TWITCH_PARENT_HOST = 'display.test'


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
