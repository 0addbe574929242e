"""
Display Controller
Owns everything one signage screen shows: the slide list, the rotation cursor,
the active document's decode session, media load supervision and the timers
that drive them.

All state is guarded by one re-entrant lock. Timer, poll, socket and HTTP
callbacks take the lock, so transitions are serialised as if they ran on a
single event loop. Network fetches and decoding run outside the lock; their
results are applied only if no newer decode request was made meanwhile.
"""
import functools
import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from models import Attachment, LiveStatus, MediaKind, Slide
from utils.document_decoder import (
    MAX_INLINE_PARSE_BYTES,
    MAX_PDF_PREVIEW_BYTES,
    DecodeResult,
    DocumentFamily,
    decode,
    describe_attachment,
    ensure_within_limit,
    guess_family,
    office_online_page,
    render_pdf_page,
    wants_office_online,
)
from utils.errors import DisplayError, EmptyContent, UnsupportedFormat
from utils.files import is_public_http_url
from utils.live_streams import collect_stream_tiles
from utils.media_supervisor import MediaLoadSupervisor, classify
from utils.rotation import (
    RotationEvent,
    RotationPlan,
    RotationState,
    build_plan,
    panel_window,
    reconcile,
    timer_key,
    transition,
    wants_document_timer,
    wants_slide_timer,
)
from utils.slide_grouper import group_slides, slides_signature, visible_rows
from utils.text_pages import TextSplitPolicy

logger = logging.getLogger(__name__)

SLIDE_TIMER = 'rotation:slide'
DOCUMENT_TIMER = 'rotation:document'
DECODE_JOB = 'decode'
DECODE_CACHE_SIZE = 16
PDF_CACHE_SIZE = 4
STATE_EVENT = 'display_state'


def decode_job_name(token):
    return f'{DECODE_JOB}:{token}'


def logged_callback(func):
    """Timer/poll callbacks log failures instead of raising into the scheduler"""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except Exception as e:
            logger.exception(f'{func.__name__} failed: {e}')
            return None
    return wrapper


@dataclass
class DocumentSession:
    """Decode lifecycle of the active slide's attachment"""
    version_key: str
    token: int
    attachment: Optional[Attachment] = None
    status: str = 'loading'
    result: Optional[DecodeResult] = None
    error: Optional[DisplayError] = None

    def to_dict(self):
        data = {
            'status': self.status,
            'page_count': self.result.page_count if self.result else 0,
            'truncated': bool(self.result and self.result.truncated),
            'family': self.result.family.value if self.result else None,
        }
        if self.error is not None:
            data.update(self.error.to_dict())
        return data


class DisplayController:
    """The only writer of RotationState"""

    def __init__(self, config, feed, timers, emit: Optional[Callable] = None, clock=None):
        self.config = config
        self.feed = feed
        self.timers = timers
        self.emit = emit
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        self.display_category = config.get('DISPLAY_CATEGORY', 'all')
        self.tile_cap = config.get('PANEL_TILE_CAP', 4)
        self.streams_muted = config.get('STREAMS_MUTED', True)
        self.parent_host = config.get('TWITCH_PARENT_HOST', 'localhost')
        self.policy = TextSplitPolicy.from_config(config)

        self._lock = threading.RLock()
        self.rows = []
        self.slides = []
        self._signature = ()
        self.live_status = LiveStatus()
        self.state = RotationState()
        self.plan = RotationPlan()
        self._timer_key = None

        self._decode_token = 0
        self._session: Optional[DocumentSession] = None
        self._decode_cache = OrderedDict()
        self._pdf_cache = OrderedDict()

        self.media = MediaLoadSupervisor(
            timers,
            timeout_seconds=config.get('MEDIA_LOAD_TIMEOUT_SECONDS', 12),
            retry_limit=config.get('MEDIA_RETRY_LIMIT', 2),
            on_change=self._on_media_change,
            lock=self._lock,
        )

    # ------------------------------------------------------------------
    # Feed intake
    # ------------------------------------------------------------------

    def replace_rows(self, rows):
        """Replace the announcement snapshot and regroup slides"""
        with self._lock:
            self.rows = list(rows)
            slides = group_slides(visible_rows(self.rows, self.clock(), self.display_category))
            signature = slides_signature(slides)
            if signature != self._signature:
                logger.info(f'Slide list changed: {len(slides)} slide(s)')
            self.slides = slides
            self._signature = signature
            snapshot = self._refresh()
        self._broadcast(snapshot)

    def apply_live_status(self, live_status: LiveStatus):
        with self._lock:
            if live_status != self.live_status:
                logger.info(f'Live status {live_status.status.value} ({len(live_status.links)} link(s))')
            self.live_status = live_status
            snapshot = self._refresh()
        self._broadcast(snapshot)

    @logged_callback
    def refresh_announcements(self):
        try:
            rows = self.feed.fetch_announcements(self.display_category)
        except DisplayError as e:
            logger.error(f'Announcement poll failed, keeping last list: {e.message}')
            return False
        self.replace_rows(rows)
        return True

    @logged_callback
    def refresh_live_status(self):
        try:
            live_status = self.feed.fetch_live_status()
        except DisplayError as e:
            logger.error(f'Live status poll failed, keeping last status: {e.message}')
            return False
        self.apply_live_status(live_status)
        return True

    def refresh_all(self):
        self.refresh_live_status()
        self.refresh_announcements()

    # ------------------------------------------------------------------
    # Control entry points
    # ------------------------------------------------------------------

    def dispatch(self, event: RotationEvent):
        with self._lock:
            before = self.state
            self.state = transition(self.state, event, self.plan)
            if self.state != before:
                logger.debug(f'{event.value}: {before.to_dict()} -> {self.state.to_dict()}')
            snapshot = self._refresh()
        self._broadcast(snapshot)
        return snapshot

    @logged_callback
    def tick(self):
        return self.dispatch(RotationEvent.TICK)

    @logged_callback
    def document_tick(self):
        return self.dispatch(RotationEvent.DOCUMENT_TICK)

    def next(self):
        return self.dispatch(RotationEvent.NEXT)

    def previous(self):
        return self.dispatch(RotationEvent.PREVIOUS)

    def toggle_play(self):
        return self.dispatch(RotationEvent.TOGGLE_PLAY)

    def play(self):
        return self.dispatch(RotationEvent.PLAY)

    def pause(self):
        return self.dispatch(RotationEvent.PAUSE)

    def report_media_loaded(self, source, kind: MediaKind):
        return self.media.report_loaded(source, kind)

    def report_media_error(self, source, kind: MediaKind, url=None):
        return self.media.report_error(source, kind, reason='error', url=url)

    def shutdown(self):
        with self._lock:
            self.timers.disarm(SLIDE_TIMER)
            self.timers.disarm(DOCUMENT_TIMER)
            self.timers.disarm_prefix(DECODE_JOB)
            self.media.cancel_all()
            self._timer_key = None
            self._decode_token += 1

    # ------------------------------------------------------------------
    # Internal sync
    # ------------------------------------------------------------------

    def _stream_tiles(self, slide: Optional[Slide]):
        return collect_stream_tiles(
            self.live_status,
            slide,
            display_category=self.display_category,
            muted=self.streams_muted,
            parent_host=self.parent_host,
        )

    @staticmethod
    def document_attachment(slide: Optional[Slide]) -> Optional[Attachment]:
        """Attachment paged in-document: a single slide's document"""
        if slide is None or slide.is_batch:
            return None
        attachment = slide.anchor.attachment
        if classify(attachment) is not MediaKind.DOCUMENT:
            return None
        return attachment

    def _active_slide(self) -> Optional[Slide]:
        index = self.plan.active_index(self.state)
        return None if index is None else self.slides[index]

    def _rebuild_plan(self):
        stream_counts = {}
        document_counts = {}
        for slide in self.slides:
            stream_counts[slide.key] = len(self._stream_tiles(slide))
            attachment = self.document_attachment(slide)
            if attachment is not None and attachment.version_key in self._decode_cache:
                document_counts[slide.key] = self._decode_cache[attachment.version_key].page_count

        self.plan = build_plan(
            self.slides,
            stream_counts=stream_counts,
            document_page_counts=document_counts,
            tile_cap=self.tile_cap,
            loops_before_advance=self.config.get('DOCUMENT_LOOPS_BEFORE_ADVANCE', 2),
        )
        self.state = reconcile(self.state, self.plan)

    def _refresh(self):
        """Bring plan, decode session, media and timers in line with the state; returns a snapshot"""
        self._rebuild_plan()
        if self._ensure_document():
            self._rebuild_plan()
        self._supervise_media()
        self._rearm_timers()
        return self._snapshot_locked()

    def _rearm_timers(self):
        key = timer_key(self.state, self.plan)
        if key == self._timer_key:
            return
        self._timer_key = key
        self.timers.disarm(SLIDE_TIMER)
        self.timers.disarm(DOCUMENT_TIMER)
        if key is None:
            return
        if wants_slide_timer(self.state, self.plan):
            self.timers.arm_interval(SLIDE_TIMER, self.config.get('ROTATION_INTERVAL_SECONDS', 8), self.tick)
        if wants_document_timer(self.state, self.plan):
            self.timers.arm_interval(
                DOCUMENT_TIMER, self.config.get('DOCUMENT_PAGE_INTERVAL_SECONDS', 8), self.document_tick
            )

    # ------------------------------------------------------------------
    # Document decoding
    # ------------------------------------------------------------------

    def _cache_result(self, version_key, result):
        self._decode_cache[version_key] = result
        self._decode_cache.move_to_end(version_key)
        while len(self._decode_cache) > DECODE_CACHE_SIZE:
            self._decode_cache.popitem(last=False)

    def _cache_pdf(self, version_key, data):
        self._pdf_cache[version_key] = data
        self._pdf_cache.move_to_end(version_key)
        while len(self._pdf_cache) > PDF_CACHE_SIZE:
            self._pdf_cache.popitem(last=False)

    def _ensure_document(self) -> bool:
        """
        Make sure the active attachment has a decode session

        Returns:
            True if a result became available synchronously (page counts changed)
        """
        attachment = self.document_attachment(self._active_slide())
        if attachment is None:
            if self._session is not None:
                self._decode_token += 1
                self._session = None
            return False

        version_key = attachment.version_key
        if self._session is not None and self._session.version_key == version_key:
            return False

        self._decode_token += 1
        token = self._decode_token
        cached = self._decode_cache.get(version_key)
        if cached is not None:
            self._session = DocumentSession(version_key, token, attachment, status='ready', result=cached)
            return False

        source_url = self.feed.asset_url(attachment.path)
        if (self.config.get('OFFICE_ONLINE_PREVIEW') and wants_office_online(attachment)
                and is_public_http_url(source_url)):
            result = DecodeResult(family=DocumentFamily.WORD, pages=(office_online_page(source_url),))
            self._cache_result(version_key, result)
            self._session = DocumentSession(version_key, token, attachment, status='ready', result=result)
            return True

        self._session = DocumentSession(version_key, token, attachment)
        # queued decodes for earlier slides are dropped; a running one finishes and is discarded
        self.timers.disarm_prefix(DECODE_JOB)
        self.timers.submit(decode_job_name(token), self._run_decode, token, attachment, source_url)
        logger.debug(f'Decode requested for {attachment.resolved_name} (token {token})')
        return False

    def _run_decode(self, token, attachment: Attachment, source_url):
        """Fetch and decode outside the lock, then apply if still current"""
        size_limit = self.config.get('MAX_INLINE_PARSE_BYTES', MAX_INLINE_PARSE_BYTES)
        pdf_size_limit = self.config.get('MAX_PDF_PREVIEW_BYTES', MAX_PDF_PREVIEW_BYTES)
        result, error, data = None, None, None
        try:
            family = guess_family(attachment.mime_type, attachment.resolved_name)
            ensure_within_limit(attachment.size_bytes, family, size_limit, pdf_size_limit)
            data, content_type = self.feed.fetch_attachment(
                attachment.path, max_bytes=max(size_limit, pdf_size_limit)
            )
            result = decode(
                data,
                declared_mime=attachment.mime_type or content_type,
                file_name=attachment.resolved_name,
                size_limit=size_limit,
                pdf_size_limit=pdf_size_limit,
                policy=self.policy,
                source_url=source_url,
            )
        except DisplayError as e:
            logger.warning(f'Preview unavailable for {attachment.resolved_name}: {e.code} ({e.message})')
            error = e
        except Exception as e:
            logger.exception(f'Unexpected decode failure for {attachment.resolved_name}: {e}')
            error = UnsupportedFormat()

        with self._lock:
            session = self._session
            if token != self._decode_token or session is None or session.version_key != attachment.version_key:
                logger.debug(f'Discarding stale decode result for {attachment.resolved_name} (token {token})')
                return False
            if error is not None:
                session.status = 'error'
                session.error = error
            else:
                session.status = 'ready'
                session.result = result
                self._cache_result(attachment.version_key, result)
                if result.family is DocumentFamily.PDF:
                    self._cache_pdf(attachment.version_key, data)
            snapshot = self._refresh()
        self._broadcast(snapshot)
        return True

    def document_pages(self):
        """Pages of the active document, or its decode status"""
        with self._lock:
            if self._session is None:
                return {'status': 'none', 'pages': []}
            data = self._session.to_dict()
            data['pages'] = [page.to_dict() for page in self._session.result.pages] if self._session.result else []
            return data

    def render_active_pdf_page(self, page_number, zoom=1.5):
        """
        PNG of one page of the active PDF

        Bytes evicted from the PDF cache are fetched again from the backend.
        """
        with self._lock:
            session = self._session
            if (session is None or session.status != 'ready' or session.result is None
                    or session.result.family is not DocumentFamily.PDF):
                raise EmptyContent('No PDF document is active.')
            version_key = session.version_key
            attachment = session.attachment
            data = self._pdf_cache.get(version_key)
            if data is not None:
                self._pdf_cache.move_to_end(version_key)

        if data is None:
            pdf_size_limit = self.config.get('MAX_PDF_PREVIEW_BYTES', MAX_PDF_PREVIEW_BYTES)
            logger.debug(f'Refetching PDF bytes for {attachment.resolved_name}')
            data, _ = self.feed.fetch_attachment(attachment.path, max_bytes=pdf_size_limit)
            with self._lock:
                self._cache_pdf(version_key, data)
        return render_pdf_page(data, page_number, zoom)

    # ------------------------------------------------------------------
    # Media
    # ------------------------------------------------------------------

    def _member_tile(self, member):
        attachment = member.attachment
        kind = classify(attachment)
        tile = {
            'kind': 'announcement',
            'id': member.id,
            'title': member.title,
            'content': member.content,
            'is_emergency': member.is_emergency,
            'media_kind': kind.value,
            'url': None,
            'label': None,
            'load': None,
        }
        if attachment is None:
            return tile

        source = self.feed.asset_url(attachment.path)
        tile['url'] = source
        tile['label'] = describe_attachment(attachment)
        tile['file_name'] = attachment.resolved_name
        tile['aspect_ratio'] = attachment.aspect_ratio
        if kind in (MediaKind.IMAGE, MediaKind.VIDEO):
            load = self.media.get(source, kind)
            if load is not None:
                tile['url'] = load.current_url
                tile['load'] = load.to_dict()
        return tile

    def _slide_tiles(self, slide: Optional[Slide]):
        if slide is None:
            return []
        tiles = [descriptor.to_dict() for descriptor in self._stream_tiles(slide)]
        tiles.extend(self._member_tile(member) for member in slide.members)
        return tiles

    def _visible_members(self):
        slide = self._active_slide()
        if slide is None:
            return []
        streams = len(self._stream_tiles(slide))
        window = panel_window(list(range(streams + len(slide.members))), self.state.panel_page_index, self.tile_cap)
        return [slide.members[i - streams] for i in window if i >= streams]

    def _supervise_media(self):
        """Supervise image/video loads on the visible panel page and forget the rest"""
        keys = []
        for member in self._visible_members():
            kind = classify(member.attachment)
            if kind not in (MediaKind.IMAGE, MediaKind.VIDEO):
                continue
            source = self.feed.asset_url(member.attachment.path)
            self.media.begin(source, kind)
            keys.append((source, kind))
        self.media.retain(keys)

    def _on_media_change(self, load):
        with self._lock:
            snapshot = self._snapshot_locked()
        self._broadcast(snapshot)

    # ------------------------------------------------------------------
    # Readout
    # ------------------------------------------------------------------

    def snapshot(self):
        with self._lock:
            return self._snapshot_locked()

    def _snapshot_locked(self):
        index = self.plan.active_index(self.state)
        slide = None if index is None else self.slides[index]
        slide_plan = None if index is None else self.plan.slides[index]
        count = self.plan.slide_count

        tiles = self._slide_tiles(slide)
        document = {'status': 'none', 'page_count': 0}
        if self._session is not None:
            document = self._session.to_dict()
            if self._session.result and self._session.result.pages:
                pages = self._session.result.pages
                page_index = min(self.state.document_page_index, len(pages) - 1)
                document['page_index'] = page_index
                document['page'] = pages[page_index].to_dict()
                document['loop_count'] = self.state.document_loop_count
            attachment = self.document_attachment(slide)
            if attachment is not None:
                document['label'] = describe_attachment(attachment)
                document['url'] = self.feed.asset_url(attachment.path)

        return {
            'emergency': self.plan.is_emergency,
            'playing': self.state.playing,
            'hint': f'Slide {index + 1} of {count}' if count else 'No scheduled announcements',
            'slide_index': index,
            'slide_count': count,
            'slide': slide.to_dict() if slide else None,
            'panel': {
                'page_index': self.state.panel_page_index,
                'page_count': slide_plan.panel_page_count if slide_plan else 0,
                'tiles': panel_window(tiles, self.state.panel_page_index, self.tile_cap),
            },
            'document': document,
            'live_active': self.live_status.is_active_for(self.display_category),
            'live': self.live_status.to_dict(),
            'media': self.media.snapshot(),
            'state': self.state.to_dict(),
        }

    def _broadcast(self, snapshot):
        if self.emit is None:
            return
        try:
            self.emit(STATE_EVENT, snapshot)
        except Exception as e:
            logger.error(f'Failed to push display state: {e}')
