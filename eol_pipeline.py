"""
Conversion pipeline: options, whole-buffer and streaming strategies, and the
per-file and in-memory entry points used by the command line.
"""

import codecs
import io
import os
from dataclasses import dataclass
from enum import Enum
from typing import BinaryIO, NamedTuple, Optional, Tuple

from eol_detect import (
    BINARY_SCAN_LIMIT,
    EncodingKind,
    check_binary,
    detect_encoding,
    encoding_from_name,
    find_binary_marker,
)
from eol_errors import BinaryDetectedError, EmptySourceError, UndecodableContentError
from eol_events import (
    BINARY_AFTER_FIRST_CHUNK,
    BYTES_CONVERTED,
    FILE_SKIPPED,
    EventSink,
    emit,
)
from eol_replace import atomic_output
from eol_transcode import ConversionMode, TranscodeState, transcode

DEFAULT_STREAM_THRESHOLD = 10_000_000
DEFAULT_CHUNK_SIZE = 8192


class OutputMode(Enum):
    OVERWRITE = "overwrite"
    NEW_FILE = "new-file"


@dataclass(frozen=True)
class ConversionOptions:  # pylint: disable=too-many-instance-attributes
    """Read-only settings for a conversion run."""

    keep_bom: bool = False
    remove_bom: bool = False
    add_bom: bool = False
    force_binary: bool = False
    add_missing_eol: bool = False
    preserve_permissions: bool = True
    preserve_timestamps: bool = False
    make_backup: bool = False
    backup_suffix: str = "~"
    output_mode: OutputMode = OutputMode.OVERWRITE
    new_file_suffix: Optional[str] = None
    encoding: Optional[str] = None
    stream_threshold: int = DEFAULT_STREAM_THRESHOLD
    chunk_size: int = DEFAULT_CHUNK_SIZE

    def __post_init__(self) -> None:
        if not self.backup_suffix:
            raise ValueError("backup_suffix must not be empty")
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")
        if self.stream_threshold < 0:
            raise ValueError(
                f"stream_threshold must not be negative, got {self.stream_threshold}"
            )
        if self.new_file_suffix == "":
            raise ValueError("new_file_suffix must not be empty")
        if self.encoding is not None:
            encoding_from_name(self.encoding)

    def output_bom(self, encoding: EncodingKind, source_bom: bytes) -> bytes:
        """BOM to write at the start of the output; ``remove_bom`` always wins."""
        if self.remove_bom:
            return b""
        if self.keep_bom and source_bom:
            return source_bom
        if self.add_bom:
            return encoding.bom
        return b""

    def output_path_for(self, path: str, output_path: Optional[str] = None) -> str:
        """Resolve where the converted content of ``path`` goes."""
        if self.output_mode is OutputMode.OVERWRITE:
            if output_path is not None:
                raise ValueError("an explicit output path requires OutputMode.NEW_FILE")
            return path
        if output_path is not None:
            return output_path
        if self.new_file_suffix is None:
            raise ValueError(
                "OutputMode.NEW_FILE needs an output path or new_file_suffix"
            )
        return path + self.new_file_suffix


class ConversionResult(NamedTuple):
    path: Optional[str]
    output_path: Optional[str]
    encoding: EncodingKind
    streamed: bool
    lines_seen: int
    breaks_converted: int
    binary_forced: bool


def _decoder(encoding: EncodingKind):
    return codecs.getincrementaldecoder(encoding.codec)(errors="surrogatepass")


def _decode(
    decoder, raw: bytes, final: bool, encoding: EncodingKind, path: Optional[str]
) -> str:
    try:
        return decoder.decode(raw, final=final)
    except UnicodeDecodeError as e:
        raise UndecodableContentError(encoding.codec, path) from e


def _encode(content, encoding: EncodingKind) -> bytes:
    if isinstance(content, bytes):
        return content
    return content.encode(encoding.codec, errors="surrogatepass")


def convert_stream(  # pylint: disable=too-many-arguments,too-many-locals
    source: BinaryIO,
    destination: BinaryIO,
    mode: ConversionMode,
    options: ConversionOptions,
    encoding: EncodingKind,
    bom_length: int,
    size: Optional[int] = None,
    path: Optional[str] = None,
    sink: Optional[EventSink] = None,
) -> ConversionResult:
    """
    Convert ``source`` into ``destination``.

    ``source`` must be positioned at the start of the data, BOM included.
    When ``size`` is known and the content after the BOM reaches
    ``options.stream_threshold``, the data is processed in
    ``options.chunk_size`` pieces; otherwise it is read whole. Streaming
    mode only rejects binary content found in the first BINARY_SCAN_LIMIT
    units of the first chunk. A control byte anywhere after that is
    reported as a BINARY_AFTER_FIRST_CHUNK event and conversion goes on.
    """
    source_bom: bytes = source.read(bom_length) if bom_length else b""
    bom: bytes = options.output_bom(encoding, source_bom)
    state = TranscodeState(text=not encoding.byte_oriented)
    decoder = None if encoding.byte_oriented else _decoder(encoding)
    streamed: bool = size is not None and size - bom_length >= options.stream_threshold

    if not streamed:
        raw: bytes = source.read()
        content = raw
        if decoder is not None:
            content = _decode(decoder, raw, True, encoding, path)
        forced = check_binary(content, options.force_binary, None, path, sink)
        converted = transcode(
            content, mode, state, final=True, add_missing_eol=options.add_missing_eol
        )
        destination.write(bom)
        destination.write(_encode(converted, encoding))
        return ConversionResult(
            path,
            None,
            encoding,
            False,
            state.lines_seen,
            state.breaks_converted,
            forced,
        )

    gated = False
    forced = False
    warned = options.force_binary
    while True:
        raw = source.read(options.chunk_size)
        final = not raw
        content = raw
        if decoder is not None:
            content = _decode(decoder, raw, final, encoding, path)

        scanned = 0
        if not gated:
            # Decoding a one-byte UTF-16 chunk can yield nothing yet.
            if not content and not final:
                continue
            forced = check_binary(
                content, options.force_binary, BINARY_SCAN_LIMIT, path, sink
            )
            destination.write(bom)
            gated = True
            # A chunk larger than the gate has a tail the gate never saw.
            scanned = BINARY_SCAN_LIMIT

        if not warned and len(content) > scanned:
            first_line = state.lines_seen + 1 + content.count(state.lf, 0, scanned)
            marker = find_binary_marker(content[scanned:], None, first_line)
            if marker is not None:
                emit(
                    sink, BINARY_AFTER_FIRST_CHUNK, path, byte=marker[0], line=marker[1]
                )
                warned = True

        converted = transcode(
            content, mode, state, final=final, add_missing_eol=options.add_missing_eol
        )
        destination.write(_encode(converted, encoding))
        if final:
            break

    return ConversionResult(
        path, None, encoding, True, state.lines_seen, state.breaks_converted, forced
    )


def convert_file(
    path: str,
    mode: ConversionMode,
    options: ConversionOptions = ConversionOptions(),
    output_path: Optional[str] = None,
    sink: Optional[EventSink] = None,
) -> ConversionResult:
    """
    Convert one file and commit the result atomically.

    In OVERWRITE mode the converted content replaces ``path``; in NEW_FILE
    mode it goes to ``output_path`` (or ``path`` plus ``new_file_suffix``)
    and ``path`` is never modified. Raises ConversionError or OSError; the
    original is untouched whenever an exception escapes.
    """
    target: str = options.output_path_for(path, output_path)
    backup_suffix: Optional[str] = None
    if options.make_backup and options.output_mode is OutputMode.OVERWRITE:
        backup_suffix = options.backup_suffix

    try:
        with open(path, "rb") as source:
            size: int = os.fstat(source.fileno()).st_size
            encoding, bom_length = detect_encoding(source, options.encoding)
            with atomic_output(
                target,
                original=path,
                preserve_permissions=options.preserve_permissions,
                preserve_timestamps=options.preserve_timestamps,
                backup_suffix=backup_suffix,
                sink=sink,
            ) as destination:
                result = convert_stream(
                    source,
                    destination,
                    mode,
                    options,
                    encoding,
                    bom_length,
                    size,
                    path,
                    sink,
                )
    except EmptySourceError:
        emit(sink, FILE_SKIPPED, path, reason="empty")
        raise
    except BinaryDetectedError:
        emit(sink, FILE_SKIPPED, path, reason="binary")
        raise

    emit(
        sink,
        BYTES_CONVERTED,
        path,
        output_path=target,
        encoding=encoding.codec,
        streamed=result.streamed,
        lines_seen=result.lines_seen,
        breaks_converted=result.breaks_converted,
    )
    return result._replace(output_path=target)


def convert_bytes(
    data: bytes,
    mode: ConversionMode,
    options: ConversionOptions = ConversionOptions(),
    sink: Optional[EventSink] = None,
) -> Tuple[bytes, ConversionResult]:
    """
    Convert an in-memory buffer, as read from standard input.

    Always whole-buffer: the length of a pipe is not known up front.
    """
    source = io.BytesIO(data)
    destination = io.BytesIO()
    encoding, bom_length = detect_encoding(source, options.encoding)
    result = convert_stream(
        source, destination, mode, options, encoding, bom_length, sink=sink
    )
    emit(
        sink,
        BYTES_CONVERTED,
        None,
        output_path=None,
        encoding=encoding.codec,
        streamed=False,
        lines_seen=result.lines_seen,
        breaks_converted=result.breaks_converted,
    )
    return destination.getvalue(), result
