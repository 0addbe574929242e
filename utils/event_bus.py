"""
Backend Event Bus
Socket.IO client subscription to the notice board's push channel.

'announcementUpdate' only signals that the list changed, so it triggers a
refetch; 'liveUpdate' carries the full live status and is applied directly.
Polling keeps running either way and resyncs anything missed.
"""
import logging

import socketio

from models import LiveStatus

logger = logging.getLogger(__name__)


class BackendEventBus:
    """Routes backend push events into the display controller"""

    def __init__(self, url, controller, client=None):
        self.url = url
        self.controller = controller
        self.client = client or socketio.Client(reconnection=True, logger=False)
        self._register_handlers()

    def _register_handlers(self):
        self.client.on('connect', self.handle_connect)
        self.client.on('disconnect', self.handle_disconnect)
        self.client.on('announcementUpdate', self.handle_announcement_update)
        self.client.on('liveUpdate', self.handle_live_update)

    def handle_connect(self):
        logger.info(f'Connected to backend event bus at {self.url}')
        self.controller.refresh_all()

    def handle_disconnect(self, *args):
        logger.warning('Disconnected from backend event bus; polling continues')

    def handle_announcement_update(self, data=None):
        action = (data or {}).get('action') if isinstance(data, dict) else None
        logger.debug(f'Announcement update pushed ({action or "unspecified"})')
        self.controller.refresh_announcements()

    def handle_live_update(self, data=None):
        if not isinstance(data, dict):
            self.controller.refresh_live_status()
            return
        self.controller.apply_live_status(LiveStatus.from_dict(data))

    def start(self):
        """Connect in the background; connection errors are logged and retried by polling"""
        try:
            self.client.connect(self.url, transports=['websocket', 'polling'], wait=False)
        except socketio.exceptions.ConnectionError as e:
            logger.error(f'Event bus connection failed: {e}')
            return False
        return True

    def stop(self):
        if self.client.connected:
            self.client.disconnect()
