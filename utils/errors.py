"""
Display Error Taxonomy
Failures surfaced to the presentation layer as an inline hint plus an open/download fallback
"""


class DisplayError(Exception):
    """Base exception for display-side failures"""
    code = 'display_error'
    hint = 'Preview is not available. Use Open or Download.'

    def __init__(self, message=None):
        super().__init__(message or self.hint)
        self.message = message or self.hint

    def to_dict(self):
        return {'error': self.code, 'hint': self.message}


class DecodeError(DisplayError):
    """Attachment bytes could not be turned into pages"""
    code = 'decode_error'
    hint = 'Unable to preview this document.'


class TooLarge(DecodeError):
    """Attachment exceeds the decode ceiling"""
    code = 'too_large'
    hint = 'File is too large for inline parsing. Use Open or Download for full view.'


class UnsupportedFormat(DecodeError):
    """No decoder matched and no text could be sniffed"""
    code = 'unsupported_format'
    hint = 'No readable text could be extracted for this document.'


class EmptyContent(DecodeError):
    """Format matched but yielded nothing renderable"""
    code = 'empty_content'
    hint = 'No readable content found in this document.'


class NetworkFailure(DisplayError):
    """Attachment or feed fetch failed"""
    code = 'network_failure'
    hint = 'Unable to load document.'


class MediaLoadFailure(DisplayError):
    """Image/video element failed after the retry budget was exhausted"""
    code = 'media_load_failure'
    hint = 'This media could not be loaded. Use Open or Download.'
