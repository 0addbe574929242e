"""
Media Load Supervision
Classifies attachments into rendering kinds and supervises image/video loads
with a timeout and a bounded, cache-busted retry.
"""
import enum
import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple
from urllib.parse import urlsplit, urlunsplit

from models import Attachment, MediaKind
from utils.errors import MediaLoadFailure

logger = logging.getLogger(__name__)

VIDEO_EXTENSIONS = {
    'mp4', 'm4v', 'm4p', 'mov', 'avi', 'mkv', 'webm', 'ogg', 'ogv', 'flv', 'f4v',
    'wmv', 'asf', 'ts', 'm2ts', 'mts', '3gp', '3g2', 'mpg', 'mpeg', 'mpe', 'vob',
    'mxf', 'rm', 'rmvb', 'qt', 'hevc', 'h265', 'h264', 'r3d', 'braw', 'cdng',
    'prores', 'dnxhd', 'dnxhr', 'dv', 'mjpeg',
}
IMAGE_EXTENSIONS = {
    'jpg', 'jpeg', 'png', 'gif', 'bmp', 'tif', 'tiff', 'webp', 'avif', 'heif',
    'heic', 'apng', 'svg', 'ai', 'eps', 'psd', 'raw', 'dng', 'cr2', 'cr3', 'nef',
    'arw', 'orf', 'rw2',
}
DOCUMENT_EXTENSIONS = {
    'pdf', 'doc', 'docx', 'xls', 'xlsx', 'xlsm', 'ppt', 'pptx', 'pps', 'ppsx',
    'odt', 'ods', 'odp', 'rtf', 'txt', 'csv', 'md', 'json', 'xml', 'html', 'htm',
    'zip', 'rar', '7z',
}

CACHE_BUST_PARAM = '_retry'


# ============================================================================
# CLASSIFIER
# ============================================================================

@dataclass(frozen=True)
class ClassifierRule:
    """One ordered rule: predicate over (hint, extension) -> kind"""
    name: str
    kind: MediaKind
    predicate: Callable[[str, str], bool]


CLASSIFIER_RULES: List[ClassifierRule] = [
    ClassifierRule('video-hint', MediaKind.VIDEO, lambda hint, ext: 'video' in hint),
    ClassifierRule(
        'document-hint', MediaKind.DOCUMENT,
        lambda hint, ext: 'document' in hint or hint.startswith(('application/', 'text/')),
    ),
    ClassifierRule('image-hint', MediaKind.IMAGE, lambda hint, ext: 'image' in hint or hint == 'mixed'),
    ClassifierRule('video-extension', MediaKind.VIDEO, lambda hint, ext: ext in VIDEO_EXTENSIONS),
    ClassifierRule('image-extension', MediaKind.IMAGE, lambda hint, ext: ext in IMAGE_EXTENSIONS),
    ClassifierRule('document-extension', MediaKind.DOCUMENT, lambda hint, ext: ext in DOCUMENT_EXTENSIONS),
]


def classify(attachment: Optional[Attachment]) -> MediaKind:
    """
    Rendering kind of an attachment

    The MIME type (or the stored type hint) is consulted before the extension;
    rules run in CLASSIFIER_RULES order and the first match wins. Attachments
    nothing recognises are treated as documents.
    """
    if attachment is None or not attachment.path:
        return MediaKind.UNKNOWN

    hint = (attachment.normalized_mime or str(attachment.type_hint or '')).strip().lower()
    extension = attachment.extension
    for rule in CLASSIFIER_RULES:
        if rule.predicate(hint, extension):
            return rule.kind
    return MediaKind.DOCUMENT


# ============================================================================
# SUPERVISOR
# ============================================================================

class LoadStatus(enum.Enum):
    LOADING = 'loading'
    LOADED = 'loaded'
    FAILED = 'failed'


def cache_busted_url(source: str, attempt: int) -> str:
    """Same source with a retry marker in the query; attempt 0 is the plain source"""
    if attempt <= 0:
        return source
    parts = urlsplit(source)
    marker = f'{CACHE_BUST_PARAM}={attempt}'
    query = f'{parts.query}&{marker}' if parts.query else marker
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


@dataclass
class MediaLoad:
    """Retry budget and status for one (source, kind) pair"""
    source: str
    kind: MediaKind
    attempts: int = 0
    status: LoadStatus = LoadStatus.LOADING
    last_error: Optional[str] = None

    @property
    def key(self) -> Tuple[str, MediaKind]:
        return (self.source, self.kind)

    @property
    def current_url(self) -> str:
        return cache_busted_url(self.source, self.attempts)

    @property
    def failed(self) -> bool:
        return self.status is LoadStatus.FAILED

    def to_dict(self):
        data = {
            'source': self.source,
            'kind': self.kind.value,
            'url': self.current_url,
            'attempts': self.attempts,
            'status': self.status.value,
            'error': self.last_error,
            'fallback': self.failed,
        }
        if self.failed:
            failure = MediaLoadFailure()
            data['error'] = failure.code
            data['hint'] = failure.message
        return data


class MediaLoadSupervisor:
    """
    Timeout and retry bookkeeping for image/video loads

    The presentation layer loads load.current_url and reports back with
    report_loaded()/report_error(). A timeout counts as an error. After
    retry_limit retries the load is marked failed and the caller shows the
    open/download fallback instead.
    """

    def __init__(self, timers, timeout_seconds=12, retry_limit=2, on_change=None, lock=None):
        self.timers = timers
        self.timeout_seconds = timeout_seconds
        self.retry_limit = retry_limit
        self.on_change = on_change
        self._lock = lock or threading.RLock()
        self._loads = {}

    @staticmethod
    def timer_name(source, kind: MediaKind) -> str:
        return f'media:{kind.value}:{source}'

    def _notify(self, load):
        if self.on_change is not None:
            self.on_change(load)

    def _arm_timeout(self, load):
        self.timers.arm_once(
            self.timer_name(load.source, load.kind),
            self.timeout_seconds,
            self._on_timeout,
            load.source,
            load.kind,
            load.attempts,
        )

    def begin(self, source, kind: MediaKind) -> MediaLoad:
        """Start (or keep) supervising a load; an existing budget is preserved"""
        with self._lock:
            load = self._loads.get((source, kind))
            if load is None:
                load = MediaLoad(source=source, kind=kind)
                self._loads[load.key] = load
                self._arm_timeout(load)
            return load

    def get(self, source, kind: MediaKind) -> Optional[MediaLoad]:
        with self._lock:
            return self._loads.get((source, kind))

    def report_loaded(self, source, kind: MediaKind) -> Optional[MediaLoad]:
        with self._lock:
            load = self._loads.get((source, kind))
            if load is None or load.status is not LoadStatus.LOADING:
                return load
            load.status = LoadStatus.LOADED
            load.last_error = None
            self.timers.disarm(self.timer_name(source, kind))
            logger.debug(f'Media loaded after {load.attempts} retries: {source}')
        self._notify(load)
        return load

    def report_error(self, source, kind: MediaKind, reason='error', url=None) -> Optional[MediaLoad]:
        """
        Count a failed attempt

        Args:
            source: Original (un-busted) source
            kind: Media kind of the element
            reason: 'error' or 'timeout'
            url: URL the element actually tried; reports for an earlier attempt are ignored
        """
        with self._lock:
            load = self._loads.get((source, kind))
            if load is None or load.status is not LoadStatus.LOADING:
                return load
            if url is not None and url != load.current_url:
                logger.debug(f'Ignoring stale media {reason} for {url}')
                return load

            load.last_error = reason
            if load.attempts < self.retry_limit:
                load.attempts += 1
                self._arm_timeout(load)
                logger.info(f'Retrying media {source} (attempt {load.attempts}/{self.retry_limit}) after {reason}')
            else:
                load.status = LoadStatus.FAILED
                self.timers.disarm(self.timer_name(source, kind))
                logger.warning(f'Media failed after {load.attempts} retries: {source} ({reason})')
        self._notify(load)
        return load

    def _on_timeout(self, source, kind, attempt):
        with self._lock:
            load = self._loads.get((source, kind))
            if load is None or load.attempts != attempt:
                return
        self.report_error(source, kind, reason='timeout')

    def retain(self, keys) -> None:
        """Forget every load not in keys and cancel its pending timer"""
        keep = set(keys)
        with self._lock:
            for key in list(self._loads):
                if key not in keep:
                    self.timers.disarm(self.timer_name(*key))
                    del self._loads[key]

    def cancel_all(self) -> None:
        self.retain(())

    def snapshot(self):
        with self._lock:
            return [load.to_dict() for load in self._loads.values()]
