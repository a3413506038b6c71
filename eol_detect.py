"""
Encoding, byte order mark and binary content detection.
"""

import codecs
import re
from enum import Enum
from typing import AnyStr, BinaryIO, Optional, Tuple

from eol_errors import BinaryDetectedError, EmptySourceError, UnsupportedEncodingError
from eol_events import BINARY_DETECTED, EventSink, emit

# Binary markers show up early; there is no point scanning megabytes of text.
BINARY_SCAN_LIMIT = 8000

# Control bytes below 0x20 except TAB, LF, FF and CR.
_CONTROL_BYTES = re.compile(rb"[\x00-\x08\x0b\x0e-\x1f]")
_CONTROL_CHARS = re.compile("[\x00-\x08\x0b\x0e-\x1f]")


class EncodingKind(Enum):
    UTF8 = ("utf-8", b"\xef\xbb\xbf")
    UTF16LE = ("utf-16-le", b"\xff\xfe")
    UTF16BE = ("utf-16-be", b"\xfe\xff")
    WINDOWS1252 = ("cp1252", b"")

    def __init__(self, codec: str, bom: bytes) -> None:
        self.codec = codec
        self.bom = bom

    @property
    def byte_oriented(self) -> bool:
        """True when CR and LF are single bytes, so content is rewritten as bytes."""
        return self in (EncodingKind.UTF8, EncodingKind.WINDOWS1252)


_BY_CODEC = {kind.codec: kind for kind in EncodingKind}

# Checked in order; the UTF-8 mark must win over the shorter UTF-16 ones.
_SIGNATURES = (
    (codecs.BOM_UTF8, EncodingKind.UTF8),
    (codecs.BOM_UTF16_LE, EncodingKind.UTF16LE),
    (codecs.BOM_UTF16_BE, EncodingKind.UTF16BE),
)


def encoding_from_name(name: str) -> EncodingKind:
    """Resolve a user supplied encoding name such as ``cp1252`` or ``UTF-16LE``."""
    try:
        codec: str = codecs.lookup(name).name
    except LookupError as e:
        raise UnsupportedEncodingError(name) from e
    if codec not in _BY_CODEC:
        raise UnsupportedEncodingError(name)
    return _BY_CODEC[codec]


def detect_encoding(
    source: BinaryIO, encoding: Optional[str] = None
) -> Tuple[EncodingKind, int]:
    """
    Return the encoding of ``source`` and the length of its BOM.

    An explicit ``encoding`` bypasses sniffing and reports no BOM. Otherwise
    the leading bytes are inspected and the read position is put back where
    it was.
    """
    if encoding is not None:
        return encoding_from_name(encoding), 0

    start: int = source.tell()
    try:
        head: bytes = source.read(4)
    finally:
        source.seek(start)

    if not head:
        raise EmptySourceError(getattr(source, "name", None))

    for signature, kind in _SIGNATURES:
        if head.startswith(signature):
            return kind, len(signature)
    return EncodingKind.UTF8, 0


def find_binary_marker(
    content: AnyStr, limit: Optional[int] = BINARY_SCAN_LIMIT, first_line: int = 1
) -> Optional[Tuple[int, int]]:
    """
    Locate the first control marker in ``content``.

    Returns ``(value, line)`` or None. ``content`` may be bytes or decoded
    text; ``limit`` bounds the scan (None scans everything). Lines are counted
    from ``first_line`` on every LF before the marker.
    """
    if limit is not None:
        content = content[:limit]
    if isinstance(content, str):
        match = _CONTROL_CHARS.search(content)
        newline = "\n"
    else:
        match = _CONTROL_BYTES.search(content)
        newline = b"\n"
    if match is None:
        return None
    value = match.group()[0]
    if isinstance(value, str):
        value = ord(value)
    return value, first_line + content.count(newline, 0, match.start())


def check_binary(
    content: AnyStr,
    force: bool,
    limit: Optional[int] = BINARY_SCAN_LIMIT,
    path: Optional[str] = None,
    sink: Optional[EventSink] = None,
) -> bool:
    """
    Gate conversion on the binary heuristic.

    Raises BinaryDetectedError when a marker is found and ``force`` is off.
    With ``force`` the detection is reported and True is returned.
    """
    marker = find_binary_marker(content, limit)
    if marker is None:
        return False
    value, line = marker
    emit(sink, BINARY_DETECTED, path, byte=value, line=line, forced=force)
    if not force:
        raise BinaryDetectedError(value, line, path)
    return True
