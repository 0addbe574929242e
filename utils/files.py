"""
Attachment File Helpers
Name, extension, MIME and size helpers shared by the decoder and media supervisor
"""
import ipaddress
from typing import Optional
from urllib.parse import unquote, urlparse


def file_name_from_path(value: Optional[str]) -> str:
    """Last path segment without query/fragment, URL-decoded"""
    raw = str(value or '').split('/')[-1]
    clean = raw.split('?')[0].split('#')[0]
    return unquote(clean) or 'Attached file'


def get_extension(value: Optional[str]) -> str:
    """
    Lower-cased extension of a file name, path or URL

    Returns an empty string when the name has no extension or ends in a dot.
    """
    name = file_name_from_path(value)
    index = name.rfind('.')
    if index == -1 or index == len(name) - 1:
        return ''
    return name[index + 1:].lower()


def normalize_mime_type(value: Optional[str]) -> str:
    """Strip parameters and case from a MIME type, '' when not a MIME type"""
    raw = str(value or '').strip().lower()
    if '/' not in raw:
        return ''
    return raw.split(';')[0].strip()


def format_file_size(size_bytes) -> str:
    """
    Format a byte count to a human-readable string

    Args:
        size_bytes: Size in bytes (int or numeric string)

    Returns:
        Formatted string (e.g., '512 B', '1.50 KB', '12.3 MB', '140 GB'),
        or '' for missing/negative values
    """
    try:
        size = int(size_bytes)
    except (TypeError, ValueError):
        return ''
    if size < 0:
        return ''
    if size < 1024:
        return f'{size} B'

    units = ['KB', 'MB', 'GB', 'TB']
    value = size / 1024
    unit_index = 0
    while value >= 1024 and unit_index < len(units) - 1:
        value /= 1024
        unit_index += 1

    precision = 0 if value >= 100 else 1 if value >= 10 else 2
    return f'{value:.{precision}f} {units[unit_index]}'


def is_public_http_url(url: Optional[str]) -> bool:
    """True for http(s) URLs that a third-party viewer could fetch"""
    try:
        parsed = urlparse(str(url or ''))
    except ValueError:
        return False
    if parsed.scheme not in ('http', 'https') or not parsed.hostname:
        return False

    host = parsed.hostname.lower()
    if host in ('localhost', '127.0.0.1', '::1'):
        return False

    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return True
    return not (address.is_private or address.is_loopback)
