"""Shared fixtures: app in testing mode, a manual timer registry and a stub backend"""
from datetime import datetime, timedelta, timezone

import pytest

from app import create_app
from models import AnnouncementRow, Attachment, LiveStatus
from utils.errors import NetworkFailure
from utils.feed import BackendClient

BACKEND_URL = 'http://backend.test'
NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class ManualTimers:
    """TimerRegistry stand-in; nothing fires until a test fires it"""

    def __init__(self):
        self.jobs = {}
        self.history = []

    def start(self):
        pass

    def shutdown(self):
        self.jobs.clear()

    def _add(self, kind, name, seconds, callback, args):
        self.jobs[name] = (kind, seconds, callback, args)
        self.history.append((kind, name, seconds))

    def arm_interval(self, name, seconds, callback, *args):
        self._add('interval', name, seconds, callback, args)

    def arm_once(self, name, seconds, callback, *args):
        self._add('once', name, seconds, callback, args)

    def submit(self, name, callback, *args):
        self._add('submit', name, 0, callback, args)

    def disarm(self, name):
        return self.jobs.pop(name, None) is not None

    def disarm_prefix(self, prefix):
        for name in [name for name in self.jobs if name.startswith(prefix)]:
            self.disarm(name)

    def is_armed(self, name):
        return name in self.jobs

    def interval(self, name):
        return self.jobs[name][1]

    def fire(self, name):
        kind, _, callback, args = self.jobs[name]
        if kind != 'interval':
            del self.jobs[name]
        return callback(*args)

    def run_submitted(self):
        """Run queued one-off jobs (decodes, initial sync) until none remain"""
        while True:
            pending = [name for name, job in self.jobs.items() if job[0] == 'submit']
            if not pending:
                return
            self.fire(pending[0])


class StubBackend(BackendClient):
    """BackendClient whose network calls read from in-memory fixtures"""

    def __init__(self):
        super().__init__(BACKEND_URL)
        self.rows = []
        self.live = LiveStatus()
        self.files = {}
        self.fetched = []
        self.offline = False

    def fetch_announcements(self, category='all'):
        if self.offline:
            raise NetworkFailure()
        return list(self.rows)

    def fetch_live_status(self):
        if self.offline:
            raise NetworkFailure()
        return self.live

    def fetch_attachment(self, path, max_bytes=None):
        self.fetched.append(path)
        if self.offline or path not in self.files:
            raise NetworkFailure('Unable to load document.')
        return self.files[path]


@pytest.fixture
def timers():
    return ManualTimers()


@pytest.fixture
def backend():
    return StubBackend()


@pytest.fixture
def app(backend, timers):
    app = create_app('testing', feed=backend, timers=timers)
    app.display_controller.clock = lambda: NOW
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def controller(app):
    return app.display_controller


@pytest.fixture
def make_row():
    """Factory for AnnouncementRow with sensible defaults"""
    counter = {'value': 0}

    def factory(row_id=None, attachment=None, created_offset=0, **kwargs):
        counter['value'] += 1
        if isinstance(attachment, str):
            attachment = Attachment(path=attachment)
        kwargs.setdefault('title', f'Notice {row_id or counter["value"]}')
        kwargs.setdefault('created_at', NOW - timedelta(minutes=60 - created_offset))
        return AnnouncementRow(
            id=str(row_id or counter['value']),
            attachment=attachment,
            **kwargs,
        )

    return factory
