"""
Bounded Text Pagination
Splits long text into screen-sized pages for unattended rotation
"""
from dataclasses import dataclass
from typing import List, Tuple

from models import TextPage

TRUNCATION_MARKER = '[Preview truncated]'


@dataclass(frozen=True)
class TextSplitPolicy:
    """Ceilings for one text page and for a whole document"""
    max_lines: int = 26
    max_chars: int = 2600
    max_pages: int = 300
    max_preview_chars: int = 30000

    @classmethod
    def from_config(cls, config):
        return cls(
            max_lines=config.get('TEXT_PAGE_MAX_LINES', cls.max_lines),
            max_chars=config.get('TEXT_PAGE_MAX_CHARS', cls.max_chars),
            max_pages=config.get('TEXT_MAX_PAGES', cls.max_pages),
            max_preview_chars=config.get('MAX_PREVIEW_CHARS', cls.max_preview_chars),
        )


DEFAULT_POLICY = TextSplitPolicy()


def truncate_text(text: str, max_chars: int) -> Tuple[str, bool]:
    """
    Cut text to max_chars, appending a visible truncation marker

    Returns:
        (text, truncated)
    """
    text = str(text or '')
    if len(text) <= max_chars:
        return text, False
    return f'{text[:max_chars]}\n\n{TRUNCATION_MARKER}', True


def split_text(text: str, max_lines: int = 26, max_chars: int = 2600) -> List[str]:
    """
    Split text into chunks of at most max_lines lines and max_chars characters

    Lines accumulate until adding the next one would break either ceiling,
    then the chunk is flushed. A single line longer than max_chars is broken
    into max_chars pieces. Whitespace-only chunks are dropped.
    """
    max_lines = max(1, int(max_lines))
    max_chars = max(1, int(max_chars))

    chunks = []
    current: List[str] = []
    current_chars = 0

    def flush():
        nonlocal current, current_chars
        chunk = '\n'.join(current)
        if chunk.strip():
            chunks.append(chunk)
        current = []
        current_chars = 0

    for raw_line in str(text or '').replace('\r\n', '\n').replace('\r', '\n').split('\n'):
        pieces = [raw_line[i:i + max_chars] for i in range(0, len(raw_line), max_chars)] or ['']
        for line in pieces:
            added = len(line) + (1 if current else 0)
            if current and (len(current) >= max_lines or current_chars + added > max_chars):
                flush()
                added = len(line)
            current.append(line)
            current_chars += added

    if current:
        flush()
    return chunks


def paginate_text(text: str, policy: TextSplitPolicy = DEFAULT_POLICY,
                  label: str = 'Page') -> Tuple[List[TextPage], bool]:
    """
    Turn a whole text into ordered TextPages

    Text beyond policy.max_preview_chars is cut with a visible marker, and
    pages beyond policy.max_pages are dropped; both report truncated=True so
    the caller can show a notice.

    Returns:
        (pages, truncated)
    """
    text, truncated = truncate_text(text, policy.max_preview_chars)
    chunks = split_text(text, policy.max_lines, policy.max_chars)
    if len(chunks) > policy.max_pages:
        chunks = chunks[:policy.max_pages]
        truncated = True

    pages = [
        TextPage(ordinal=index, label=f'{label} {index}', text=chunk)
        for index, chunk in enumerate(chunks, 1)
    ]
    return pages, truncated
