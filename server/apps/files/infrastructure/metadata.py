"""Metadata extraction utilities for files.

Everything here inspects raw bytes or names only; nothing touches the
database or the object store.
"""

import hashlib
import re
import unicodedata
from pathlib import PurePosixPath
from typing import Final

from server.apps.files.models import FileContentType

_MAX_NAME_BYTES: Final = 255

# Magic number signatures, checked in table order
_SIGNATURES: Final[tuple[tuple[str, bytes], ...]] = (
    ('application/pdf', b'%PDF'),
    ('image/png', b'\x89PNG\r\n\x1a\n'),
    ('image/jpeg', b'\xff\xd8\xff\xe0'),  # JFIF
    ('image/jpeg', b'\xff\xd8\xff\xe1'),  # EXIF
    ('image/jpeg', b'\xff\xd8\xff\xe2'),
    ('image/jpeg', b'\xff\xd8\xff\xe3'),
    ('image/jpeg', b'\xff\xd8\xff\xdb'),
    ('audio/mpeg', b'ID3'),  # ID3v2 tag
    ('audio/mpeg', b'\xff\xfb'),  # MPEG sync words
    ('audio/mpeg', b'\xff\xf3'),
    ('audio/mpeg', b'\xff\xf2'),
)

_MIME_ALIASES: Final = {
    'audio/mp3': 'audio/mpeg',
    'image/jpg': 'image/jpeg',
}

MIME_TO_CONTENT_TYPE: Final = {
    'application/pdf': FileContentType.PDF,
    'image/png': FileContentType.PNG,
    'image/jpeg': FileContentType.JPG,
    'audio/mpeg': FileContentType.MP3,
}

ALLOWED_EXTENSIONS: Final = frozenset(('pdf', 'png', 'jpg', 'jpeg', 'mp3'))

_PDF_HEADER: Final = b'%PDF-'
_PDF_TRAILER: Final = b'%%EOF'
_PNG_IEND_CHUNK: Final = b'IEND\xaeB`\x82'
_JPEG_END_MARKER: Final = b'\xff\xd9'

_RESERVED_NAME: Final = re.compile(
    r'^(CON|PRN|AUX|NUL|COM[1-9]|LPT[1-9])(\.|$)',
    re.IGNORECASE,
)
_UNSAFE_CHARS: Final = re.compile(r'[<>:"|?*]')
_WHITESPACE: Final = re.compile(r'\s+')
_REPEATED_UNDERSCORES: Final = re.compile(r'_{2,}')


def detect_mime_type(content: bytes) -> str | None:
    """Detect MIME type from leading magic numbers.

    Args:
        content: Raw file bytes.

    Returns:
        Detected MIME type, or None if no signature matches.
    """
    for mime_type, signature in _SIGNATURES:
        if content.startswith(signature):
            return mime_type
    return None


def normalize_mime_type(mime_type: str) -> str:
    """Normalize a MIME type for comparison.

    Lowercases, drops parameters and resolves known aliases.

    Example: 'Image/JPG; charset=binary' -> 'image/jpeg'

    Args:
        mime_type: MIME type as claimed by the client.

    Returns:
        Canonical MIME type.
    """
    base_type = mime_type.split(';', 1)[0].strip().lower()
    return _MIME_ALIASES.get(base_type, base_type)


def check_structure(content: bytes, mime_type: str) -> str | None:
    """Run type-specific structural checks.

    Args:
        content: Raw file bytes.
        mime_type: Detected MIME type.

    Returns:
        Error message if the structure is invalid, None otherwise.
    """
    if mime_type == 'application/pdf':
        if not content.startswith(_PDF_HEADER):
            return 'Invalid PDF file: missing version header'
        if _PDF_TRAILER not in content:
            return 'Invalid PDF file: missing trailer'
    elif mime_type == 'image/png':
        if _PNG_IEND_CHUNK not in content:
            return 'Invalid PNG file: missing IEND chunk'
    elif mime_type == 'image/jpeg':
        if not content.endswith(_JPEG_END_MARKER):
            return 'Invalid JPEG file: missing end marker'
    return None


def calculate_checksum(content: bytes) -> str:
    """Calculate SHA256 checksum of file content.

    Args:
        content: Raw file bytes.

    Returns:
        Hex-encoded SHA256 hash string.
    """
    return hashlib.sha256(content).hexdigest()


def get_file_extension(filename: str) -> str:
    """Get file extension from filename.

    Args:
        filename: Filename (e.g., 'document.pdf').

    Returns:
        Extension without dot, lowercase (e.g., 'pdf').
        Returns empty string if no extension.
    """
    extension = PurePosixPath(filename).suffix
    return extension.lstrip('.').lower()


def sanitize_filename(filename: str) -> str | None:
    """Sanitize a client-supplied filename.

    Drops directory components and traversal sequences, removes control
    and unsafe characters, collapses whitespace to underscores and caps
    the UTF-8 length at 255 bytes (keeping the extension).

    Example: '../../My  Report?.PDF' -> 'My_Report.PDF'

    Args:
        filename: Name as sent by the client.

    Returns:
        Safe filename, or None if nothing usable remains, the name is a
        reserved device name, or the extension is not allowed.
    """
    if not filename or not filename.strip():
        return None

    # Keep the last path component only, for both separators
    name = PurePosixPath(filename.replace('\\', '/')).name
    name = name.replace('..', '')

    # Control, format and other non-printable characters
    name = ''.join(
        char for char in name
        if not unicodedata.category(char).startswith('C')
    )
    name = _UNSAFE_CHARS.sub('', name)
    name = name.strip().strip('.').strip()
    name = _WHITESPACE.sub('_', name)
    name = _REPEATED_UNDERSCORES.sub('_', name)
    name = _truncate_utf8(name, _MAX_NAME_BYTES)

    if not name or _RESERVED_NAME.match(name):
        return None
    if get_file_extension(name) not in ALLOWED_EXTENSIONS:
        return None
    return name


def _truncate_utf8(name: str, max_bytes: int) -> str:
    """Cap name length in UTF-8 bytes, preserving the extension.

    Args:
        name: Sanitized name.
        max_bytes: Maximum encoded length.

    Returns:
        Name that encodes to at most max_bytes bytes.
    """
    if len(name.encode()) <= max_bytes:
        return name

    path = PurePosixPath(name)
    suffix = path.suffix
    budget = max_bytes - len(suffix.encode())
    stem = path.stem.encode()[:budget].decode(errors='ignore')
    return f'{stem}{suffix}'
