"""
Backend Feed Client
Fetches announcements, live status and attachment bytes from the notice board backend
"""
import logging
import re

import requests

from models import AnnouncementRow, LiveStatus, normalize_category
from utils.errors import NetworkFailure, TooLarge
from utils.files import format_file_size

logger = logging.getLogger(__name__)

ANNOUNCEMENTS_PATH = '/api/announcements/public'
STATUS_PATH = '/api/status'
CHUNK_SIZE = 64 * 1024


class BackendClient:
    """Thin requests wrapper; every failure surfaces as NetworkFailure"""

    def __init__(self, base_url, timeout=10, session=None):
        self.base_url = str(base_url or '').strip().rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()

    def api_url(self, path):
        path = path if path.startswith('/') else f'/{path}'
        return f'{self.base_url}{path}'

    def asset_url(self, path):
        """Absolute URL for an attachment path; absolute http(s) paths pass through"""
        if not path:
            return path
        if re.match(r'^https?://', path, re.IGNORECASE):
            return path
        return self.api_url(path)

    def _get_json(self, path, params=None):
        url = self.api_url(path)
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            logger.error(f'Backend request failed for {url}: {e}')
            raise NetworkFailure('Unable to reach the notice board server.') from e
        except ValueError as e:
            logger.error(f'Backend returned invalid JSON for {url}: {e}')
            raise NetworkFailure('The notice board server returned an invalid response.') from e

    def fetch_announcements(self, category='all'):
        """
        Fetch the public announcement list

        Returns:
            List of AnnouncementRow in backend order
        """
        params = {}
        requested = normalize_category(category)
        if requested != 'all':
            params['category'] = requested

        payload = self._get_json(ANNOUNCEMENTS_PATH, params=params)
        if not isinstance(payload, list):
            logger.warning('Announcement feed did not return a list')
            return []

        rows = []
        for item in payload:
            if not isinstance(item, dict) or item.get('id') in (None, ''):
                continue
            rows.append(AnnouncementRow.from_dict(item))
        return rows

    def fetch_live_status(self):
        payload = self._get_json(STATUS_PATH)
        return LiveStatus.from_dict(payload if isinstance(payload, dict) else {})

    def fetch_attachment(self, path, max_bytes=None):
        """
        Download attachment bytes

        Args:
            path: Attachment path or absolute URL
            max_bytes: Abort with TooLarge once the body exceeds this many bytes

        Raises:
            NetworkFailure: Request failed or returned an error status
            TooLarge: Body (or declared Content-Length) exceeds max_bytes
        """
        url = self.asset_url(path)
        try:
            with self.session.get(url, stream=True, timeout=self.timeout) as response:
                response.raise_for_status()

                declared = int(response.headers.get('content-length') or 0)
                if max_bytes and declared > max_bytes:
                    raise TooLarge(
                        f'File is too large for inline parsing ({format_file_size(declared)}). '
                        f'Use Open or Download for full view.'
                    )

                content = bytearray()
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if not chunk:
                        continue
                    content.extend(chunk)
                    if max_bytes and len(content) > max_bytes:
                        raise TooLarge()
        except requests.RequestException as e:
            logger.error(f'Attachment download failed for {url}: {e}')
            raise NetworkFailure('Unable to load document.') from e

        logger.debug(f'Downloaded {len(content)} bytes from {url}')
        return bytes(content), response.headers.get('content-type', '')
