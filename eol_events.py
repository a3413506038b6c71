"""
Structured events reported by the conversion core.

The core never formats messages for people. It hands ``Event`` records to a
sink, a plain callable supplied by the caller.
"""

from typing import Any, Callable, Dict, NamedTuple, Optional

BINARY_DETECTED = "binary-detected"
BINARY_AFTER_FIRST_CHUNK = "binary-after-first-chunk"
BYTES_CONVERTED = "bytes-converted"
FILE_SKIPPED = "file-skipped"
BACKUP_CREATED = "backup-created"


class Event(NamedTuple):
    kind: str
    path: Optional[str]
    details: Dict[str, Any]


EventSink = Callable[[Event], None]


def emit(
    sink: Optional[EventSink], kind: str, path: Optional[str], **details: Any
) -> None:
    """Build an event and pass it to ``sink`` when one is set."""
    if sink is not None:
        sink(Event(kind, path, details))
