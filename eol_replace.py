"""
Atomic replacement of converted files.

Output goes to a uniquely named temporary file next to the target. Only when
it is completely written, and the optional metadata copy and backup have
succeeded, is it renamed over the target in a single ``os.replace`` call.
"""

import contextlib
import os
import shutil
import stat
import tempfile
import threading
from typing import BinaryIO, Iterator, Optional

from eol_errors import BackupFailedError
from eol_events import BACKUP_CREATED, EventSink, emit


_umask_lock = threading.Lock()
_umask: Optional[int] = None


def _read_umask() -> int:
    # Linux reports the mask without changing it; elsewhere it has to be swapped.
    with contextlib.suppress(OSError, ValueError):
        with open("/proc/self/status", encoding="ascii") as f:
            for line in f:
                if line.startswith("Umask:"):
                    return int(line.split()[1], 8)
    mask: int = os.umask(0)
    os.umask(mask)
    return mask


def current_umask() -> int:
    """Return the process umask, read once on first use."""
    global _umask  # pylint: disable=global-statement
    with _umask_lock:
        if _umask is None:
            _umask = _read_umask()
        return _umask


def backup_path_for(path: str, suffix: str = "~") -> str:
    """``notes.txt`` becomes ``notes.txt~`` or ``notes.txt.bak``."""
    if not suffix:
        raise ValueError("backup suffix must not be empty")
    return path + suffix


def make_backup(path: str, suffix: str = "~", sink: Optional[EventSink] = None) -> str:
    """Copy ``path`` with its metadata to its backup path and return that path."""
    backup: str = backup_path_for(path, suffix)
    try:
        shutil.copy2(path, backup)
    except OSError as e:
        raise BackupFailedError(path, backup, str(e)) from e
    emit(sink, BACKUP_CREATED, path, backup_path=backup)
    return backup


def copy_metadata(
    source: str, destination: str, permissions: bool = True, timestamps: bool = False
) -> None:
    """Copy the mode bits and/or access and modification times of ``source``."""
    info = os.stat(source)
    if permissions:
        os.chmod(destination, stat.S_IMODE(info.st_mode))
    if timestamps:
        os.utime(destination, ns=(info.st_atime_ns, info.st_mtime_ns))


@contextlib.contextmanager
def atomic_output(
    target: str,
    original: Optional[str] = None,
    preserve_permissions: bool = True,
    preserve_timestamps: bool = False,
    backup_suffix: Optional[str] = None,
    sink: Optional[EventSink] = None,
) -> Iterator[BinaryIO]:
    """
    Yield a binary handle whose contents replace ``target`` on success.

    ``original`` is the file metadata is copied from and, when
    ``backup_suffix`` is set, the file that gets backed up before the swap.
    If the body raises, or any commit step fails before the rename, the
    temporary file is removed and ``target`` is left as it was.
    """
    directory: str = os.path.dirname(os.path.abspath(target))
    fd, temp_path = tempfile.mkstemp(
        prefix=f".{os.path.basename(target)}.", suffix=".tmp", dir=directory
    )
    committed = False
    try:
        with os.fdopen(fd, "wb") as handle:
            yield handle
            handle.flush()
            os.fsync(handle.fileno())

        # mkstemp creates the file 0600
        os.chmod(temp_path, 0o666 & ~current_umask())
        if original is not None:
            copy_metadata(
                original, temp_path, preserve_permissions, preserve_timestamps
            )

        if backup_suffix is not None and original is not None:
            make_backup(original, backup_suffix, sink)

        os.replace(temp_path, target)
        committed = True
    finally:
        if not committed:
            with contextlib.suppress(FileNotFoundError):
                os.remove(temp_path)
