"""
Line ending transcoder.

``transcode`` rewrites one chunk at a time and carries what it needs about the
previous chunk in a ``TranscodeState``, so feeding a stream in pieces of any
size gives the same output as feeding it in one go.
"""

import re
from enum import Enum
from typing import AnyStr, Optional, Union

_LONE_LF_BYTES = re.compile(rb"(?<!\r)\n")
_LONE_LF_TEXT = re.compile(r"(?<!\r)\n")


class ConversionMode(Enum):
    TO_UNIX = "unix"
    TO_DOS = "dos"
    TO_MAC = "mac"


_TERMINATORS = {
    ConversionMode.TO_UNIX: "\n",
    ConversionMode.TO_DOS: "\r\n",
    ConversionMode.TO_MAC: "\r",
}


def line_terminator(mode: ConversionMode, text: bool = False) -> Union[str, bytes]:
    """Return the line terminator ``mode`` writes, as str or bytes."""
    terminator: str = _TERMINATORS[mode]
    return terminator if text else terminator.encode("ascii")


class TranscodeState:
    """
    Per-stream transcoder state.

    One instance belongs to exactly one file or stream. ``text`` selects
    whether chunks are ``str`` (decoded UTF-16) or ``bytes``.
    """

    def __init__(self, text: bool = False) -> None:
        self.text = text
        self.cr: Union[str, bytes] = "\r" if text else b"\r"
        self.lf: Union[str, bytes] = "\n" if text else b"\n"
        self.previous_byte: Optional[Union[str, bytes]] = None
        self.last_emitted: Optional[Union[str, bytes]] = None
        self.pending_cr = False
        self.lines_seen = 0
        self.breaks_converted = 0

    def empty(self) -> Union[str, bytes]:
        return "" if self.text else b""


def transcode(
    chunk: AnyStr,
    mode: ConversionMode,
    state: TranscodeState,
    final: bool = False,
    add_missing_eol: bool = False,
) -> AnyStr:
    """
    Convert the line endings of ``chunk`` to ``mode``.

    A CR at the end of a non-final chunk is held back in ``state`` under
    TO_UNIX until the next chunk shows whether an LF follows. Pass
    ``final=True`` with the last chunk (an empty one is fine) to flush it and,
    with ``add_missing_eol``, to terminate an unterminated last line.
    """
    cr, lf = state.cr, state.lf
    if state.pending_cr:
        chunk = cr + chunk
        state.pending_cr = False

    output = chunk[:0]
    if chunk:
        state.lines_seen += chunk.count(lf)
        state.previous_byte, previous = chunk[-1:], state.previous_byte

        if mode is ConversionMode.TO_UNIX:
            if not final and chunk.endswith(cr):
                chunk = chunk[:-1]
                state.pending_cr = True
            output = chunk.replace(cr + lf, lf)
            state.breaks_converted += len(chunk) - len(output)
        else:
            head = chunk[:0]
            # LF whose CR closed the previous chunk is already a CRLF pair.
            if previous == cr and chunk.startswith(lf):
                head, chunk = lf, chunk[1:]
            pattern = _LONE_LF_TEXT if state.text else _LONE_LF_BYTES
            body, converted = pattern.subn(line_terminator(mode, state.text), chunk)
            state.breaks_converted += converted
            output = head + body

    if output:
        state.last_emitted = output[-1:]

    if final and add_missing_eol and state.last_emitted not in (None, cr, lf):
        terminator = line_terminator(mode, state.text)
        output += terminator
        state.last_emitted = terminator[-1:]
        state.lines_seen += 1
    return output


def flush(
    mode: ConversionMode, state: TranscodeState, add_missing_eol: bool = False
) -> Union[str, bytes]:
    """Finish a stream: resolve a held CR and optionally add the final EOL."""
    return transcode(
        state.empty(), mode, state, final=True, add_missing_eol=add_missing_eol
    )


def transcode_all(
    content: AnyStr, mode: ConversionMode, add_missing_eol: bool = False
) -> AnyStr:
    """Convert a complete buffer in one call."""
    state = TranscodeState(text=isinstance(content, str))
    return transcode(content, mode, state, final=True, add_missing_eol=add_missing_eol)
