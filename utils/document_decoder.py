"""
Document Decoding Module
Turns an attachment's bytes into an ordered list of renderable pages.

Formats are grouped into families. Each family has one decoder registered
with @register(family); all decoders share the signature
(data: bytes, context: DecodeContext) -> DecodeResult. The family is picked
from the file extension and declared MIME type, then corrected by sniffing
the container actually present (PDF header, ZIP magic and the ZIP's internal
layout), so a mislabelled office file still decodes.
"""
import enum
import io
import logging
import re
import zipfile
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import quote

import fitz  # PyMuPDF
import mammoth
import openpyxl
import xlrd
from bs4 import BeautifulSoup
from charset_normalizer import from_bytes
from lxml import etree
from markupsafe import escape
from xlrd.compdoc import CompDocError

from models import Attachment, FramePage, HtmlPage, Page, TextPage
from utils.errors import EmptyContent, TooLarge, UnsupportedFormat
from utils.files import format_file_size, get_extension, normalize_mime_type
from utils.text_pages import DEFAULT_POLICY, TextSplitPolicy, paginate_text, split_text, truncate_text

logger = logging.getLogger(__name__)

MAX_INLINE_PARSE_BYTES = 20 * 1024 * 1024
MAX_PDF_PREVIEW_BYTES = 100 * 1024 * 1024
MAX_BINARY_PREVIEW_BYTES = 5 * 1024 * 1024
MAX_BINARY_RUNS = 1200
MIN_BINARY_RUN = 4
MAX_SHEETS = 12
MAX_SHEET_ROWS = 1000
MAX_SLIDES = 200
MAX_ARCHIVE_ENTRIES = 500
MAX_ARCHIVE_TEXT_ENTRIES = 10
MAX_ARCHIVE_ENTRY_CHARS = 5000

OFFICE_VIEWER_URL = 'https://view.officeapps.live.com/op/embed.aspx?src='
PDF_FRAME_OPTIONS = 'toolbar=0&navpanes=0&scrollbar=0&view=FitH'

TEXT_EXTENSIONS = {
    'txt', 'csv', 'md', 'markdown', 'html', 'htm', 'xhtml', 'css', 'js', 'jsx',
    'ts', 'tsx', 'py', 'java', 'c', 'cpp', 'h', 'hpp', 'sh', 'bat', 'ps1', 'json',
    'xml', 'log', 'rtf', 'yaml', 'yml', 'ini', 'conf', 'sql', 'toml',
    'properties', 'tex', 'srt', 'vtt',
}
WORD_EXTENSIONS = {'docx'}
SHEET_EXTENSIONS = {'xls', 'xlsx', 'xlsm'}
PRESENTATION_EXTENSIONS = {'pptx', 'ppsx'}
ODF_EXTENSIONS = {'odt', 'ods', 'odp'}
ARCHIVE_EXTENSIONS = {'zip'}
OFFICE_ONLINE_EXTENSIONS = {'doc', 'docx', 'ppt', 'pptx', 'pps', 'ppsx', 'xls', 'xlsx'}

PDF_MIME_TYPES = {'application/pdf'}
WORD_MIME_TYPES = {'application/vnd.openxmlformats-officedocument.wordprocessingml.document'}
SHEET_MIME_TYPES = {
    'application/vnd.ms-excel',
    'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
}
PRESENTATION_MIME_TYPES = {
    'application/vnd.ms-powerpoint',
    'application/vnd.openxmlformats-officedocument.presentationml.presentation',
    'application/vnd.openxmlformats-officedocument.presentationml.slideshow',
}
ODF_MIME_TYPES = {
    'application/vnd.oasis.opendocument.text',
    'application/vnd.oasis.opendocument.spreadsheet',
    'application/vnd.oasis.opendocument.presentation',
}
ARCHIVE_MIME_TYPES = {'application/zip', 'application/x-zip-compressed', 'application/x-zip'}
TEXT_MIME_HINTS = (
    'text/', 'application/json', 'application/xml', 'application/yaml',
    'application/x-yaml', 'application/javascript', 'application/sql',
)

OLE_MAGIC = b'\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1'

_SLIDE_PART_RE = re.compile(r'^ppt/slides/slide(\d+)\.xml$', re.IGNORECASE)
_READABLE_ENTRY_RE = re.compile(
    r'\.(txt|md|markdown|csv|json|xml|html|htm|xhtml|yaml|yml|ini|conf|log|sql)$', re.IGNORECASE
)

_DRAWING_NS = 'http://schemas.openxmlformats.org/drawingml/2006/main'
_ODF_TEXT_NS = 'urn:oasis:names:tc:opendocument:xmlns:text:1.0'
_ODF_TABLE_NS = 'urn:oasis:names:tc:opendocument:xmlns:table:1.0'
_ODF_PARAGRAPH = f'{{{_ODF_TEXT_NS}}}p'
_ODF_HEADING = f'{{{_ODF_TEXT_NS}}}h'
_ODF_CELL = f'{{{_ODF_TABLE_NS}}}table-cell'

_XML_PARSER = etree.XMLParser(recover=True, resolve_entities=False, no_network=True)

HTML_PREVIEW_TEMPLATE = (
    '<!doctype html><html><head><meta charset="utf-8"/><style>'
    'body{{font-family:Segoe UI,Inter,sans-serif;margin:0;padding:14px;line-height:1.5;'
    'color:#111827;background:#ffffff;}}'
    'table{{border-collapse:collapse;width:100%;font-size:13px;}}'
    'th,td{{border:1px solid #d1d5db;padding:6px;vertical-align:top;word-break:break-word;}}'
    'img{{max-width:100%;height:auto;}}'
    'h1,h2,h3,h4{{margin:0 0 10px;}}'
    'p{{margin:0 0 10px;}}'
    '</style></head><body>{body}</body></html>'
)


class DocumentFamily(enum.Enum):
    """Decoder families, one registered decoder each"""
    TEXT = 'text'
    PDF = 'pdf'
    WORD = 'word'
    SPREADSHEET = 'spreadsheet'
    PRESENTATION = 'presentation'
    OPENDOCUMENT = 'opendocument'
    ARCHIVE = 'archive'
    BINARY = 'binary'


ZIP_FAMILIES = {
    DocumentFamily.WORD,
    DocumentFamily.PRESENTATION,
    DocumentFamily.OPENDOCUMENT,
    DocumentFamily.ARCHIVE,
}


@dataclass(frozen=True)
class DecodeContext:
    """What a decoder may know besides the bytes"""
    declared_mime: str = ''
    file_name: str = ''
    source_url: str = ''
    policy: TextSplitPolicy = DEFAULT_POLICY


@dataclass(frozen=True)
class DecodeResult:
    """Ordered pages of one attachment version"""
    family: DocumentFamily
    pages: Tuple[Page, ...] = field(default_factory=tuple)
    truncated: bool = False

    @property
    def page_count(self) -> int:
        return len(self.pages)

    def to_dict(self):
        return {
            'family': self.family.value,
            'page_count': self.page_count,
            'truncated': self.truncated,
            'pages': [page.to_dict() for page in self.pages],
        }


Decoder = Callable[[bytes, DecodeContext], DecodeResult]
_DECODERS: Dict[DocumentFamily, Decoder] = {}


def register(family: DocumentFamily):
    """Register the decoder for a family"""
    def decorator(func: Decoder) -> Decoder:
        _DECODERS[family] = func
        return func
    return decorator


def get_decoder(family: DocumentFamily) -> Decoder:
    return _DECODERS[family]


# ============================================================================
# DETECTION
# ============================================================================

def is_text_mime(mime_type: str) -> bool:
    if not mime_type:
        return False
    return any(mime_type.startswith(hint) for hint in TEXT_MIME_HINTS)


def looks_like_zip(data: bytes) -> bool:
    """ZIP local header, empty archive or spanned archive magic"""
    return len(data) >= 4 and data[:2] == b'PK' and data[2] in (0x03, 0x05, 0x07)


def looks_like_ole(data: bytes) -> bool:
    """Compound File header used by legacy .xls/.doc/.ppt"""
    return data[:8] == OLE_MAGIC


def looks_like_pdf(data: bytes) -> bool:
    return data[:1024].lstrip().startswith(b'%PDF-')


_DECLARED_RULES: List[Tuple[DocumentFamily, set, set]] = [
    (DocumentFamily.PDF, {'pdf'}, PDF_MIME_TYPES),
    (DocumentFamily.TEXT, TEXT_EXTENSIONS, set()),
    (DocumentFamily.WORD, WORD_EXTENSIONS, WORD_MIME_TYPES),
    (DocumentFamily.SPREADSHEET, SHEET_EXTENSIONS, SHEET_MIME_TYPES),
    (DocumentFamily.PRESENTATION, PRESENTATION_EXTENSIONS, PRESENTATION_MIME_TYPES),
    (DocumentFamily.OPENDOCUMENT, ODF_EXTENSIONS, ODF_MIME_TYPES),
    (DocumentFamily.ARCHIVE, ARCHIVE_EXTENSIONS, ARCHIVE_MIME_TYPES),
]


def guess_family(declared_mime: Optional[str], file_name: Optional[str]) -> DocumentFamily:
    """Family implied by extension/MIME alone, before looking at any bytes"""
    extension = get_extension(file_name)
    mime = normalize_mime_type(declared_mime)

    for family, extensions, mime_types in _DECLARED_RULES:
        if extension in extensions or mime in mime_types:
            return family
        if family is DocumentFamily.TEXT and is_text_mime(mime):
            return family
    return DocumentFamily.BINARY


def _has_prefix(names, prefix) -> bool:
    return any(name.startswith(prefix) for name in names)


def zip_layout_family(names) -> Optional[DocumentFamily]:
    """Office family implied by a ZIP's internal layout"""
    names = set(names)
    if 'word/document.xml' in names or _has_prefix(names, 'word/'):
        return DocumentFamily.WORD
    if 'xl/workbook.xml' in names or _has_prefix(names, 'xl/'):
        return DocumentFamily.SPREADSHEET
    if 'ppt/presentation.xml' in names or _has_prefix(names, 'ppt/'):
        return DocumentFamily.PRESENTATION
    if 'content.xml' in names:
        return DocumentFamily.OPENDOCUMENT
    return None


def _zip_names(data: bytes) -> Optional[List[str]]:
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            return archive.namelist()
    except (zipfile.BadZipFile, OSError, ValueError):
        return None


def detect_family(data: bytes, declared_mime: Optional[str] = None,
                  file_name: Optional[str] = None) -> DocumentFamily:
    """
    Pick the decoder family for these bytes

    The declared family wins when the container agrees with it. A ZIP-based
    family without ZIP bytes degrades to BINARY; ZIP bytes whose layout names
    a different office family switch to that family; other ZIP bytes are
    treated as an ARCHIVE.
    """
    declared = guess_family(declared_mime, file_name)

    if looks_like_pdf(data):
        return DocumentFamily.PDF
    if declared is DocumentFamily.PDF:
        return DocumentFamily.BINARY

    if not looks_like_zip(data):
        if declared is DocumentFamily.SPREADSHEET and looks_like_ole(data):
            return declared
        if declared in ZIP_FAMILIES or declared is DocumentFamily.SPREADSHEET:
            return DocumentFamily.BINARY
        return declared

    names = _zip_names(data)
    if names is None:
        return DocumentFamily.BINARY

    layout = zip_layout_family(names)
    if layout is not None:
        if layout is not declared:
            logger.debug(f'Container layout {layout.value} overrides declared {declared.value}')
        return layout
    return DocumentFamily.ARCHIVE


def size_limit_for(family: DocumentFamily, size_limit: int = MAX_INLINE_PARSE_BYTES,
                   pdf_size_limit: int = MAX_PDF_PREVIEW_BYTES) -> int:
    """PDF pages render lazily, so PDFs get the relaxed ceiling"""
    return pdf_size_limit if family is DocumentFamily.PDF else size_limit


def ensure_within_limit(size_bytes: Optional[int], family: DocumentFamily,
                        size_limit: int = MAX_INLINE_PARSE_BYTES,
                        pdf_size_limit: int = MAX_PDF_PREVIEW_BYTES) -> None:
    """Raise TooLarge when a (declared or actual) size is over the family's ceiling"""
    if not size_bytes:
        return
    limit = size_limit_for(family, size_limit, pdf_size_limit)
    if limit and size_bytes > limit:
        raise TooLarge(
            f'File is too large for inline parsing ({format_file_size(size_bytes)}). '
            f'Use Open or Download for full view.'
        )


# ============================================================================
# ENTRY POINT
# ============================================================================

def decode(data: bytes, declared_mime: Optional[str] = None, file_name: Optional[str] = None,
           size_limit: int = MAX_INLINE_PARSE_BYTES, pdf_size_limit: int = MAX_PDF_PREVIEW_BYTES,
           policy: TextSplitPolicy = DEFAULT_POLICY, source_url: str = '') -> DecodeResult:
    """
    Decode attachment bytes into ordered pages

    Args:
        data: Raw attachment bytes
        declared_mime: MIME type stored with the announcement or sent by the server
        file_name: Original file name (or path/URL) used for the extension
        size_limit: Byte ceiling for every family except PDF
        pdf_size_limit: Relaxed byte ceiling for PDF preview
        policy: Text page ceilings
        source_url: Asset URL, used for frame sources

    Returns:
        DecodeResult with at least one page

    Raises:
        TooLarge, UnsupportedFormat, EmptyContent
    """
    if not data:
        raise EmptyContent('This file is empty.')

    family = detect_family(data, declared_mime, file_name)
    ensure_within_limit(len(data), family, size_limit, pdf_size_limit)

    context = DecodeContext(
        declared_mime=normalize_mime_type(declared_mime),
        file_name=file_name or '',
        source_url=source_url or '',
        policy=policy,
    )
    logger.debug(f'Decoding {file_name or "attachment"} as {family.value} ({len(data)} bytes)')
    return get_decoder(family)(data, context)


def office_online_page(source_url: str) -> FramePage:
    """Single frame page rendering an office file through the online viewer"""
    return FramePage(
        ordinal=1,
        label='Document',
        source=f'{OFFICE_VIEWER_URL}{quote(source_url, safe="")}',
    )


def wants_office_online(attachment: Attachment) -> bool:
    return attachment.extension in OFFICE_ONLINE_EXTENSIONS


def describe_attachment(attachment: Attachment) -> str:
    """Header label, e.g. 'PDF • application/pdf • 1.20 MB'"""
    primary = attachment.extension.upper() if attachment.extension else 'FILE'
    details = [item for item in (attachment.normalized_mime, format_file_size(attachment.size_bytes)) if item]
    if details:
        return f'{primary} • {" • ".join(details)}'
    return primary


# ============================================================================
# HELPERS
# ============================================================================

def wrap_html(body: str) -> str:
    return HTML_PREVIEW_TEMPLATE.format(body=body or '<p>No readable content found.</p>')


def decode_text_bytes(data: bytes) -> str:
    """UTF-8 first, then charset detection, then lossy UTF-8"""
    try:
        return data.decode('utf-8-sig')
    except UnicodeDecodeError:
        pass
    best = from_bytes(data).best()
    if best is not None:
        return str(best)
    return data.decode('utf-8', errors='replace')


def html_to_text(html: str) -> str:
    """Plain text of an HTML fragment, one block per line"""
    soup = BeautifulSoup(html or '', 'html.parser')
    lines = (line.strip() for line in soup.get_text('\n').split('\n'))
    return '\n'.join(line for line in lines if line)


def extract_printable_strings(data: bytes, min_length: int = MIN_BINARY_RUN,
                              max_runs: int = MAX_BINARY_RUNS,
                              max_bytes: int = MAX_BINARY_PREVIEW_BYTES) -> str:
    """
    Printable-ASCII runs of at least min_length characters, one per line

    Tab/CR/LF inside a run become line breaks and do not end the run; any
    other non-printable byte ends it.
    """
    runs = []
    buffer = []

    def push():
        value = ''.join(buffer).strip()
        if len(value) >= min_length:
            runs.append(value)
        buffer.clear()

    for code in data[:max_bytes]:
        if 32 <= code <= 126:
            buffer.append(chr(code))
            continue
        if code in (9, 10, 13):
            if buffer:
                buffer.append('\n')
            continue
        push()
        if len(runs) >= max_runs:
            break

    if len(runs) < max_runs:
        push()
    return '\n'.join(runs)


def _parse_xml(raw: bytes):
    root = etree.fromstring(raw, parser=_XML_PARSER)
    if root is None:
        raise UnsupportedFormat('Unable to read document XML.')
    return root


def _paginated(family: DocumentFamily, text: str, context: DecodeContext,
               label: str = 'Page') -> DecodeResult:
    pages, truncated = paginate_text(text, context.policy, label=label)
    if not pages:
        raise EmptyContent()
    return DecodeResult(family=family, pages=tuple(pages), truncated=truncated)


# ============================================================================
# DECODERS
# ============================================================================

@register(DocumentFamily.TEXT)
def decode_text(data: bytes, context: DecodeContext) -> DecodeResult:
    text = decode_text_bytes(data)
    if not text.strip():
        raise EmptyContent('This text file is empty.')
    return _paginated(DocumentFamily.TEXT, text, context)


@register(DocumentFamily.PDF)
def decode_pdf(data: bytes, context: DecodeContext) -> DecodeResult:
    """One frame page per PDF page; pages are rendered later by number"""
    page_count = pdf_page_count(data)
    if page_count == 0:
        raise EmptyContent('This PDF has no pages.')

    pages = []
    for number in range(1, page_count + 1):
        anchor = f'#page={number}&{PDF_FRAME_OPTIONS}'
        pages.append(FramePage(
            ordinal=number,
            label=f'Page {number}',
            source=f'{context.source_url}{anchor}',
            page_number=number,
        ))
    return DecodeResult(family=DocumentFamily.PDF, pages=tuple(pages))


def _open_pdf(data: bytes):
    try:
        return fitz.open(stream=data, filetype='pdf')
    except Exception as e:  # FileDataError, or a raw mupdf error on newer PyMuPDF
        logger.warning(f'Unreadable PDF: {e}')
        raise UnsupportedFormat('Unable to read this PDF.') from e


def pdf_page_count(data: bytes) -> int:
    with _open_pdf(data) as document:
        return document.page_count


def render_pdf_page(data: bytes, page_number: int, zoom: float = 1.5) -> bytes:
    """
    Render a single PDF page as PNG without materialising the other pages

    Raises:
        EmptyContent: If the page number is out of range
        UnsupportedFormat: If the PDF cannot be opened or the page cannot be drawn
    """
    with _open_pdf(data) as document:
        if not 1 <= page_number <= document.page_count:
            raise EmptyContent(f'Page {page_number} does not exist.')
        try:
            pixmap = document.load_page(page_number - 1).get_pixmap(matrix=fitz.Matrix(zoom, zoom))
        except Exception as e:
            logger.warning(f'Failed to render PDF page {page_number}: {e}')
            raise UnsupportedFormat('Unable to render this PDF page.') from e
        return pixmap.tobytes('png')


@register(DocumentFamily.WORD)
def decode_word(data: bytes, context: DecodeContext) -> DecodeResult:
    """
    Convert to HTML, then re-derive pages from the HTML's plain text

    Falls back to one whole-HTML page when the conversion has no text.
    """
    try:
        result = mammoth.convert_to_html(io.BytesIO(data))
    except (zipfile.BadZipFile, KeyError, ValueError) as e:
        logger.warning(f'Word conversion failed for {context.file_name}: {e}')
        raise UnsupportedFormat('Unable to read this Word document.') from e

    for message in result.messages:
        logger.debug(f'Word conversion: {message}')

    html = result.value or ''
    text = html_to_text(html)
    if text:
        return _paginated(DocumentFamily.WORD, text, context)
    if not html.strip():
        raise EmptyContent('No readable text found in this file.')
    page = HtmlPage(ordinal=1, label='Document', html=wrap_html(html))
    return DecodeResult(family=DocumentFamily.WORD, pages=(page,))


def _cell_text(value) -> str:
    if value is None:
        return ''
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _rows_to_html(rows) -> str:
    rendered_rows = []
    for index, values in enumerate(rows):
        if index >= MAX_SHEET_ROWS:
            rendered_rows.append(f'<tr><td colspan="999">{escape("Further rows omitted")}</td></tr>')
            break
        cells = [_cell_text(value) for value in values]
        while cells and not cells[-1]:
            cells.pop()
        rendered = ''.join(f'<td>{escape(cell)}</td>' for cell in cells)
        rendered_rows.append(f'<tr>{rendered}</tr>')
    return f'<table>{"".join(rendered_rows)}</table>'


def _sheet_page(index: int, title: str, rows) -> HtmlPage:
    return HtmlPage(ordinal=index, label=f'Sheet {index}: {title}', html=wrap_html(_rows_to_html(rows)))


def _legacy_workbook_pages(data: bytes, context: DecodeContext) -> List[HtmlPage]:
    """Sheets of a BIFF (.xls) workbook read through xlrd"""
    try:
        book = xlrd.open_workbook(file_contents=data, on_demand=True)
    except (xlrd.XLRDError, CompDocError, ValueError) as e:
        logger.warning(f'Legacy workbook parse failed for {context.file_name}: {e}')
        raise UnsupportedFormat('Unable to read this spreadsheet.') from e

    try:
        pages = []
        for index in range(min(book.nsheets, MAX_SHEETS)):
            sheet = book.sheet_by_index(index)
            rows = (sheet.row_values(row) for row in range(sheet.nrows))
            pages.append(_sheet_page(index + 1, sheet.name, rows))
    finally:
        book.release_resources()
    return pages


@register(DocumentFamily.SPREADSHEET)
def decode_spreadsheet(data: bytes, context: DecodeContext) -> DecodeResult:
    """One HTML table page per worksheet, up to MAX_SHEETS"""
    if looks_like_ole(data):
        pages = _legacy_workbook_pages(data, context)
    else:
        try:
            workbook = openpyxl.load_workbook(io.BytesIO(data), read_only=True, data_only=True)
        except (zipfile.BadZipFile, KeyError, ValueError, OSError) as e:
            logger.warning(f'Spreadsheet parse failed for {context.file_name}: {e}')
            raise UnsupportedFormat('Unable to read this spreadsheet.') from e

        try:
            pages = [
                _sheet_page(index, worksheet.title, worksheet.iter_rows(values_only=True))
                for index, worksheet in enumerate(workbook.worksheets[:MAX_SHEETS], 1)
            ]
        finally:
            workbook.close()

    if not pages:
        raise EmptyContent('No readable sheets found in this file.')
    return DecodeResult(family=DocumentFamily.SPREADSHEET, pages=tuple(pages))


def extract_slide_texts(archive: zipfile.ZipFile) -> List[Tuple[int, str]]:
    """(slide number, text) for slides with text, in numeric slide order"""
    numbered = []
    for name in archive.namelist():
        match = _SLIDE_PART_RE.match(name)
        if match:
            numbered.append((int(match.group(1)), name))
    numbered.sort()

    slides = []
    for number, name in numbered[:MAX_SLIDES]:
        root = _parse_xml(archive.read(name))
        parts = (str(node.text or '').strip() for node in root.iter(f'{{{_DRAWING_NS}}}t'))
        text = ' '.join(part for part in parts if part)
        if text:
            slides.append((number, text))
    return slides


@register(DocumentFamily.PRESENTATION)
def decode_presentation(data: bytes, context: DecodeContext) -> DecodeResult:
    """One or more text pages per slide that has text"""
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            slides = extract_slide_texts(archive)
    except zipfile.BadZipFile as e:
        raise UnsupportedFormat('Unable to read this presentation.') from e

    if not slides:
        raise EmptyContent('No readable slide text found in this presentation.')

    policy = context.policy
    pages = []
    truncated = False
    for number, text in slides:
        text, cut = truncate_text(text, policy.max_preview_chars)
        truncated = truncated or cut
        for part, chunk in enumerate(split_text(text, policy.max_lines, policy.max_chars)):
            label = f'Slide {number}' if part == 0 else f'Slide {number} (cont.)'
            pages.append(TextPage(ordinal=len(pages) + 1, label=label, text=chunk))
            if len(pages) >= policy.max_pages:
                break
        if len(pages) >= policy.max_pages:
            truncated = True
            break
    return DecodeResult(family=DocumentFamily.PRESENTATION, pages=tuple(pages), truncated=truncated)


def extract_odf_text(archive: zipfile.ZipFile) -> str:
    """Paragraph, heading and table-cell text in document order"""
    try:
        raw = archive.read('content.xml')
    except KeyError:
        return ''
    root = _parse_xml(raw)

    lines = []
    for element in root.iter(_ODF_PARAGRAPH, _ODF_HEADING, _ODF_CELL):
        if element.tag != _ODF_CELL and any(a.tag == _ODF_CELL for a in element.iterancestors()):
            continue
        value = ''.join(element.itertext()).strip()
        if value:
            lines.append(value)
    if lines:
        return '\n'.join(lines)

    whole = ''.join(root.itertext())
    return re.sub(r'\s+\n', '\n', whole).strip()


@register(DocumentFamily.OPENDOCUMENT)
def decode_opendocument(data: bytes, context: DecodeContext) -> DecodeResult:
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            text = extract_odf_text(archive)
    except zipfile.BadZipFile as e:
        raise UnsupportedFormat('Unable to read this document.') from e

    if not text:
        raise EmptyContent('No readable content found in this document.')
    return _paginated(DocumentFamily.OPENDOCUMENT, text, context)


def _read_entry_text(archive: zipfile.ZipFile, name: str) -> str:
    with archive.open(name) as handle:
        raw = handle.read(MAX_ARCHIVE_ENTRY_CHARS * 4)
    return raw.decode('utf-8', errors='replace').strip()


@register(DocumentFamily.ARCHIVE)
def decode_archive(data: bytes, context: DecodeContext) -> DecodeResult:
    """
    Office layouts re-dispatch to their decoder; otherwise readable text
    entries are shown, and as a last resort the entry listing
    """
    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as e:
        raise UnsupportedFormat('Unable to open this archive.') from e

    with archive:
        entries = [info.filename for info in archive.infolist() if not info.is_dir()]

        layout = zip_layout_family(entries)
        if layout is not None:
            try:
                return get_decoder(layout)(data, context)
            except (EmptyContent, UnsupportedFormat) as e:
                if layout is DocumentFamily.WORD:
                    raise
                logger.debug(f'Archive layout {layout.value} gave nothing usable: {e}')

        readable = [name for name in entries if _READABLE_ENTRY_RE.search(name)][:MAX_ARCHIVE_TEXT_ENTRIES]
        chunks = []
        for name in readable:
            cleaned = _read_entry_text(archive, name)
            if cleaned:
                cleaned, _ = truncate_text(cleaned, MAX_ARCHIVE_ENTRY_CHARS)
                chunks.append(f'[{name}]\n{cleaned}')
        if chunks:
            return _paginated(DocumentFamily.ARCHIVE, '\n\n'.join(chunks), context)

    if not entries:
        raise EmptyContent('This archive is empty.')

    listing = '\n'.join(f'{index}. {name}' for index, name in enumerate(entries[:MAX_ARCHIVE_ENTRIES], 1))
    page = TextPage(ordinal=1, label='Contents', text=listing)
    return DecodeResult(
        family=DocumentFamily.ARCHIVE,
        pages=(page,),
        truncated=len(entries) > MAX_ARCHIVE_ENTRIES,
    )


@register(DocumentFamily.BINARY)
def decode_binary(data: bytes, context: DecodeContext) -> DecodeResult:
    """Text-like MIME first, then printable-string extraction"""
    if is_text_mime(context.declared_mime):
        decoded = decode_text_bytes(data[:MAX_BINARY_PREVIEW_BYTES])
        if decoded.strip():
            return _paginated(DocumentFamily.BINARY, decoded, context)

    extracted = extract_printable_strings(data)
    if not extracted:
        raise UnsupportedFormat('No readable text could be extracted for this document.')
    return _paginated(DocumentFamily.BINARY, extracted, context)
