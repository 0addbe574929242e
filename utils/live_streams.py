"""
Live Stream Resolution
Parses broadcast and announcement links into embeddable stream descriptors
"""
import logging
import re
from typing import Callable, Iterable, List, Optional
from urllib.parse import parse_qs, urlencode, urlparse

from models import LiveStatus, LiveStreamDescriptor, Slide

logger = logging.getLogger(__name__)

_YOUTUBE_ID_RE = re.compile(r'^[A-Za-z0-9_-]{6,}$')
_VIMEO_ID_RE = re.compile(r'^\d+$')
_TWITCH_NAME_RE = re.compile(r'^[A-Za-z0-9_]{2,}$')
_TWITCH_RESERVED = {'videos', 'directory', 'settings', 'p', 'downloads', 'jobs', 'search'}


def _host(parsed) -> str:
    host = (parsed.hostname or '').lower()
    for prefix in ('www.', 'm.', 'player.'):
        if host.startswith(prefix):
            host = host[len(prefix):]
    return host


def _segments(parsed) -> List[str]:
    return [segment for segment in parsed.path.split('/') if segment]


def _youtube(parsed, muted: bool, parent_host: str) -> Optional[LiveStreamDescriptor]:
    host = _host(parsed)
    segments = _segments(parsed)
    video_id = None

    if host == 'youtu.be':
        video_id = segments[0] if segments else None
    elif host in ('youtube.com', 'youtube-nocookie.com') or host.endswith('.youtube.com'):
        if segments[:1] == ['watch']:
            video_id = (parse_qs(parsed.query).get('v') or [None])[0]
        elif len(segments) >= 2 and segments[0] in ('live', 'embed', 'shorts'):
            video_id = segments[1]
    else:
        return None

    if not video_id or not _YOUTUBE_ID_RE.match(video_id):
        return None

    query = urlencode({
        'autoplay': 1,
        'mute': 1 if muted else 0,
        'controls': 1,
        'playsinline': 1,
        'rel': 0,
        'modestbranding': 1,
    })
    return LiveStreamDescriptor(
        provider='youtube',
        stream_id=video_id,
        embed_url=f'https://www.youtube.com/embed/{video_id}?{query}',
        source_url=parsed.geturl(),
    )


def _vimeo(parsed, muted: bool, parent_host: str) -> Optional[LiveStreamDescriptor]:
    if _host(parsed) != 'vimeo.com':
        return None
    segments = _segments(parsed)
    if segments[:1] == ['video']:
        segments = segments[1:]
    if not segments or not _VIMEO_ID_RE.match(segments[0]):
        return None

    video_id = segments[0]
    query = urlencode({'autoplay': 1, 'muted': 1 if muted else 0})
    return LiveStreamDescriptor(
        provider='vimeo',
        stream_id=video_id,
        embed_url=f'https://player.vimeo.com/video/{video_id}?{query}',
        source_url=parsed.geturl(),
    )


def _twitch(parsed, muted: bool, parent_host: str) -> Optional[LiveStreamDescriptor]:
    if _host(parsed) != 'twitch.tv':
        return None
    segments = _segments(parsed)
    if not segments:
        return None

    if segments[0] == 'videos':
        if len(segments) < 2 or not segments[1].isdigit():
            return None
        stream_id = f'v{segments[1]}'
        target = {'video': stream_id}
    else:
        channel = segments[0].lower()
        if channel in _TWITCH_RESERVED or not _TWITCH_NAME_RE.match(channel):
            return None
        stream_id = channel
        target = {'channel': channel}

    query = urlencode({
        **target,
        'parent': parent_host or 'localhost',
        'muted': 'true' if muted else 'false',
        'autoplay': 'true',
    })
    return LiveStreamDescriptor(
        provider='twitch',
        stream_id=stream_id,
        embed_url=f'https://player.twitch.tv/?{query}',
        source_url=parsed.geturl(),
    )


Resolver = Callable[..., Optional[LiveStreamDescriptor]]

# Evaluated in order; the first resolver that recognises the host wins
PROVIDERS: List[Resolver] = [_youtube, _vimeo, _twitch]


def resolve(url: str, muted: bool = True, parent_host: str = 'localhost') -> Optional[LiveStreamDescriptor]:
    """
    Resolve a URL into an embeddable stream

    Args:
        url: Any user-supplied link
        muted: Start the embed muted
        parent_host: Host name of the page embedding the player (Twitch requires it)

    Returns:
        LiveStreamDescriptor, or None for unrecognised links
    """
    raw = str(url or '').strip()
    if not raw:
        return None
    try:
        parsed = urlparse(raw)
    except ValueError:
        return None
    if parsed.scheme not in ('http', 'https'):
        return None

    for provider in PROVIDERS:
        descriptor = provider(parsed, muted, parent_host)
        if descriptor is not None:
            return descriptor
    logger.debug(f'Unrecognised live link dropped: {raw}')
    return None


def resolve_all(urls: Iterable[str], muted: bool = True,
                parent_host: str = 'localhost') -> List[LiveStreamDescriptor]:
    """Resolve and de-duplicate by provider and id, keeping first occurrence"""
    seen = set()
    descriptors = []
    for url in urls:
        descriptor = resolve(url, muted=muted, parent_host=parent_host)
        if descriptor is None or descriptor.key in seen:
            continue
        seen.add(descriptor.key)
        descriptors.append(descriptor)
    return descriptors


def collect_stream_tiles(live_status: Optional[LiveStatus], slide: Optional[Slide],
                         display_category: str = 'all', muted: bool = True,
                         parent_host: str = 'localhost') -> List[LiveStreamDescriptor]:
    """
    Stream tiles for the active slide

    Global broadcast links come first when the broadcast is active for this
    display; the slide's own links follow. Both lists are de-duplicated together.
    """
    urls = []
    if live_status is not None and live_status.is_active_for(display_category):
        urls.extend(live_status.links)
    if slide is not None:
        urls.extend(slide.stream_links())
    return resolve_all(urls, muted=muted, parent_host=parent_host)
