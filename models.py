"""
Notice Display Models
Immutable snapshots of backend rows plus the slide, page and stream types
the rotation engine works with
"""
import enum
import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import ClassVar, List, Optional, Tuple

from utils.files import file_name_from_path, get_extension, normalize_mime_type

MAX_BATCH_SLOT = 24
MAX_BATCH_ID_LENGTH = 80
MAX_LIVE_LINKS = 24

_BATCH_ID_RE = re.compile(r'^[a-z0-9_-]+$', re.IGNORECASE)


class MediaKind(enum.Enum):
    """Inline rendering family of an attachment"""
    IMAGE = 'image'
    VIDEO = 'video'
    DOCUMENT = 'document'
    UNKNOWN = 'unknown'


class LiveState(enum.Enum):
    ON = 'ON'
    OFF = 'OFF'


# ============================================================================
# PARSING HELPERS
# ============================================================================

def parse_timestamp(value) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (or datetime) into an aware UTC datetime"""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        raw = str(value).strip()
        if raw.endswith('Z'):
            raw = raw[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_priority(value, fallback: int = 1) -> int:
    """Priorities are non-negative integers; 0 is emergency"""
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return max(0, int(fallback))


def parse_positive_int(value) -> Optional[int]:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return None
    return parsed if parsed > 0 else None


def normalize_batch_id(value) -> Optional[str]:
    normalized = str(value or '').strip()
    if not normalized or len(normalized) > MAX_BATCH_ID_LENGTH:
        return None
    if not _BATCH_ID_RE.match(normalized):
        return None
    return normalized


def parse_batch_slot(value) -> Optional[int]:
    slot = parse_positive_int(value)
    if slot is None or slot > MAX_BATCH_SLOT:
        return None
    return slot


def parse_link_list(value, max_links: int = MAX_LIVE_LINKS) -> Tuple[str, ...]:
    """
    Normalize stored live links

    Accepts a list, a JSON array string, or a comma/newline separated string.
    Items may be strings or objects with a 'url' or 'link' key. Only http(s)
    URLs survive; exact duplicates are dropped.
    """
    if value is None:
        candidates = []
    elif isinstance(value, (list, tuple)):
        candidates = list(value)
    else:
        raw = str(value).strip()
        if raw.startswith('[') and raw.endswith(']'):
            try:
                loaded = json.loads(raw)
            except ValueError:
                loaded = []
            candidates = loaded if isinstance(loaded, list) else []
        elif raw:
            candidates = re.split(r'[\n,]+', raw)
        else:
            candidates = []

    links = []
    for item in candidates:
        if isinstance(item, dict):
            item = item.get('url') or item.get('link') or ''
        cleaned = str(item or '').strip()
        if not re.match(r'^https?://\S+$', cleaned, re.IGNORECASE):
            continue
        if cleaned in links:
            continue
        links.append(cleaned)
    return tuple(links[:max(1, max_links)])


# ============================================================================
# ANNOUNCEMENTS
# ============================================================================

@dataclass(frozen=True)
class Attachment:
    """Reference to an announcement's uploaded file"""
    path: str
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    type_hint: Optional[str] = None
    size_bytes: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None

    @property
    def resolved_name(self) -> str:
        return self.file_name or file_name_from_path(self.path)

    @property
    def extension(self) -> str:
        return get_extension(self.file_name or self.path)

    @property
    def normalized_mime(self) -> str:
        return normalize_mime_type(self.mime_type)

    @property
    def version_key(self) -> str:
        """Identity of one version of the file; pages are cached per version"""
        return f'{self.path}|{self.size_bytes or ""}'

    @property
    def aspect_ratio(self) -> Optional[str]:
        if self.width and self.height:
            return f'{self.width} / {self.height}'
        return None

    def to_dict(self):
        return {
            'path': self.path,
            'file_name': self.resolved_name,
            'mime_type': self.mime_type,
            'size_bytes': self.size_bytes,
            'width': self.width,
            'height': self.height,
        }


@dataclass(frozen=True)
class AnnouncementRow:
    """
    Snapshot of one announcement as published by the backend

    Never mutated locally; the whole list is replaced on every poll.
    """
    id: str
    title: str = ''
    content: str = ''
    priority: int = 1
    category: Optional[str] = None
    is_active: bool = True
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    attachment: Optional[Attachment] = None
    batch_id: Optional[str] = None
    batch_slot: Optional[int] = None
    live_stream_links: Tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, data):
        """Build a row from the backend's public announcement payload"""
        def pick(*keys, default=None):
            for key in keys:
                if key in data and data[key] is not None:
                    return data[key]
            return default

        priority = parse_priority(pick('priority', default=1))
        if pick('isEmergency', 'is_emergency') is True:
            priority = 0

        attachment = None
        path = str(pick('image', 'file_path', 'filePath', default='') or '').strip()
        if path:
            attachment = Attachment(
                path=path,
                file_name=pick('fileName', 'file_name'),
                mime_type=pick('fileMimeType', 'file_mime_type'),
                type_hint=pick('type'),
                size_bytes=parse_positive_int(pick('fileSizeBytes', 'file_size_bytes')),
                width=parse_positive_int(pick('mediaWidth', 'media_width')),
                height=parse_positive_int(pick('mediaHeight', 'media_height')),
            )

        category = str(pick('category', default='') or '').strip() or None

        return cls(
            id=str(pick('id', default='')),
            title=str(pick('title', default='') or '').strip(),
            content=str(pick('content', default='') or '').strip(),
            priority=priority,
            category=category,
            is_active=pick('isActive', 'is_active', default=True) is not False,
            start_at=parse_timestamp(pick('startAt', 'start_at')),
            end_at=parse_timestamp(pick('endAt', 'end_at', 'expiresAt', 'expires_at')),
            created_at=parse_timestamp(pick('createdAt', 'created_at')),
            attachment=attachment,
            batch_id=normalize_batch_id(pick('displayBatchId', 'display_batch_id')),
            batch_slot=parse_batch_slot(pick('displayBatchSlot', 'display_batch_slot')),
            live_stream_links=parse_link_list(pick('liveStreamLinks', 'live_stream_links')),
        )

    @property
    def is_emergency(self) -> bool:
        return self.priority == 0

    def is_visible_at(self, now: datetime) -> bool:
        """Active and inside its visibility window"""
        if not self.is_active:
            return False
        if self.start_at and self.start_at > now:
            return False
        if self.end_at and self.end_at <= now:
            return False
        return True

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'content': self.content,
            'priority': self.priority,
            'is_emergency': self.is_emergency,
            'category': self.category,
            'attachment': self.attachment.to_dict() if self.attachment else None,
            'batch_id': self.batch_id,
            'batch_slot': self.batch_slot,
            'live_stream_links': list(self.live_stream_links),
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


@dataclass(frozen=True)
class Slide:
    """One rotation unit: a single announcement or a batch sharing a batch id"""
    key: str
    members: Tuple[AnnouncementRow, ...]
    is_batch: bool = False

    @property
    def anchor(self) -> AnnouncementRow:
        return self.members[0]

    @property
    def is_emergency(self) -> bool:
        return self.anchor.is_emergency

    @property
    def member_ids(self) -> Tuple[str, ...]:
        return tuple(member.id for member in self.members)

    def stream_links(self) -> List[str]:
        """Own live links of all members, in member order"""
        links = []
        for member in self.members:
            links.extend(member.live_stream_links)
        return links

    def to_dict(self):
        return {
            'key': self.key,
            'is_batch': self.is_batch,
            'is_emergency': self.is_emergency,
            'members': [member.to_dict() for member in self.members],
        }


# ============================================================================
# DECODED PAGES
# ============================================================================

@dataclass(frozen=True)
class Page:
    """One page/sheet/slide of a decoded attachment, 1-based"""
    ordinal: int
    label: str

    kind: ClassVar[str] = 'page'

    def to_dict(self):
        return {'kind': self.kind, 'ordinal': self.ordinal, 'label': self.label}


@dataclass(frozen=True)
class TextPage(Page):
    text: str = ''

    kind: ClassVar[str] = 'text'

    def to_dict(self):
        data = super().to_dict()
        data['text'] = self.text
        return data


@dataclass(frozen=True)
class HtmlPage(Page):
    html: str = ''

    kind: ClassVar[str] = 'html'

    def to_dict(self):
        data = super().to_dict()
        data['html'] = self.html
        return data


@dataclass(frozen=True)
class FramePage(Page):
    """Embeddable frame: one PDF page, or an office online document"""
    source: str = ''
    page_number: Optional[int] = None

    kind: ClassVar[str] = 'frame'

    def to_dict(self):
        data = super().to_dict()
        data['source'] = self.source
        data['page_number'] = self.page_number
        return data


# ============================================================================
# LIVE BROADCAST
# ============================================================================

def normalize_category(value) -> str:
    normalized = str(value or '').strip()
    if not normalized or normalized.lower() == 'all':
        return 'all'
    return normalized.lower()


@dataclass(frozen=True)
class LiveStatus:
    """Global live-broadcast status object"""
    status: LiveState = LiveState.OFF
    links: Tuple[str, ...] = field(default_factory=tuple)
    category: str = 'all'

    @classmethod
    def from_dict(cls, data):
        data = data or {}
        status = LiveState.ON if str(data.get('status') or '').upper() == 'ON' else LiveState.OFF
        candidates = []
        if data.get('link'):
            candidates.append(data['link'])
        candidates.extend(parse_link_list(data.get('links')))
        return cls(
            status=status,
            links=parse_link_list(candidates),
            category=normalize_category(data.get('category')),
        )

    @property
    def is_on(self) -> bool:
        return self.status is LiveState.ON

    def is_visible_for(self, display_category) -> bool:
        requested = normalize_category(display_category)
        return self.category == 'all' or requested == 'all' or requested == self.category

    def is_active_for(self, display_category) -> bool:
        return self.is_on and self.is_visible_for(display_category)

    def to_dict(self):
        return {
            'status': self.status.value,
            'links': list(self.links),
            'category': self.category,
        }


@dataclass(frozen=True)
class LiveStreamDescriptor:
    """Provider-specific embeddable stream resolved from a URL"""
    provider: str
    stream_id: str
    embed_url: str
    source_url: str

    @property
    def key(self) -> str:
        """Identity used for de-duplication, independent of the URL string"""
        return f'{self.provider}:{self.stream_id}'

    def to_dict(self):
        return {
            'kind': 'stream',
            'provider': self.provider,
            'key': self.key,
            'embed_url': self.embed_url,
            'source_url': self.source_url,
        }
