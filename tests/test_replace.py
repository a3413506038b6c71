#!/usr/bin/env python3
"""
Test atomic replacement, backups and metadata preservation.
"""

import importlib
import os
import shutil
import stat
import sys
import tempfile
import unittest
from pathlib import Path
from typing import List
from unittest.mock import patch

# Add parent directory to path to import the modules
sys.path.insert(0, str(Path(__file__).parent.parent))
import eol_events  # pylint: disable=wrong-import-position
import eol_replace  # pylint: disable=wrong-import-position
from eol_errors import BackupFailedError  # pylint: disable=wrong-import-position
from eol_pipeline import ConversionOptions, convert_file  # pylint: disable=wrong-import-position
from eol_replace import atomic_output, backup_path_for  # pylint: disable=wrong-import-position
from eol_transcode import ConversionMode  # pylint: disable=wrong-import-position

ORIGINAL = b"Line 1\r\nLine 2\r\n"


class TestAtomicReplacement(unittest.TestCase):
    def setUp(self) -> None:
        self.test_dir = tempfile.mkdtemp()
        self.test_file = os.path.join(self.test_dir, "test.txt")
        with open(self.test_file, "wb") as f:
            f.write(ORIGINAL)

    def tearDown(self) -> None:
        shutil.rmtree(self.test_dir)

    def read(self, path: str) -> bytes:
        with open(path, "rb") as f:
            return f.read()

    def test_atomic_output_commits(self) -> None:
        with atomic_output(self.test_file, original=self.test_file) as handle:
            handle.write(b"new content\n")
            # Nothing is visible until the block finishes
            self.assertEqual(self.read(self.test_file), ORIGINAL)
        self.assertEqual(self.read(self.test_file), b"new content\n")
        self.assertEqual(os.listdir(self.test_dir), ["test.txt"])

    def test_atomic_output_creates_new_target(self) -> None:
        target = os.path.join(self.test_dir, "fresh.txt")
        with atomic_output(target) as handle:
            handle.write(b"fresh\n")
        self.assertEqual(self.read(target), b"fresh\n")
        mode = stat.S_IMODE(os.stat(target).st_mode)
        if os.name != "nt":
            self.assertEqual(mode, 0o666 & ~eol_replace.current_umask())

    def test_error_in_body_discards_temp(self) -> None:
        with self.assertRaises(RuntimeError):
            with atomic_output(self.test_file, original=self.test_file) as handle:
                handle.write(b"partial")
                raise RuntimeError("boom")
        self.assertEqual(self.read(self.test_file), ORIGINAL)
        self.assertEqual(os.listdir(self.test_dir), ["test.txt"])

    def test_failure_before_rename_keeps_original(self) -> None:
        """An I/O error after writing the temp file leaves the original intact."""
        with patch("eol_replace.os.replace", side_effect=OSError("rename failed")):
            with self.assertRaises(OSError):
                convert_file(self.test_file, ConversionMode.TO_UNIX)
        self.assertEqual(self.read(self.test_file), ORIGINAL)
        self.assertEqual(os.listdir(self.test_dir), ["test.txt"])

    def test_failure_copying_metadata_keeps_original(self) -> None:
        with patch("eol_replace.copy_metadata", side_effect=PermissionError("denied")):
            with self.assertRaises(PermissionError):
                convert_file(self.test_file, ConversionMode.TO_UNIX)
        self.assertEqual(self.read(self.test_file), ORIGINAL)
        self.assertEqual(os.listdir(self.test_dir), ["test.txt"])

    def test_backup_created(self) -> None:
        events: List[eol_events.Event] = []
        options = ConversionOptions(make_backup=True)
        convert_file(self.test_file, ConversionMode.TO_UNIX, options, sink=events.append)
        self.assertEqual(self.read(self.test_file), b"Line 1\nLine 2\n")
        self.assertEqual(self.read(self.test_file + "~"), ORIGINAL)
        backups = [e for e in events if e.kind == eol_events.BACKUP_CREATED]
        self.assertEqual(backups[0].details, {"backup_path": self.test_file + "~"})

    def test_backup_suffix(self) -> None:
        options = ConversionOptions(make_backup=True, backup_suffix=".bak")
        convert_file(self.test_file, ConversionMode.TO_UNIX, options)
        self.assertEqual(self.read(self.test_file + ".bak"), ORIGINAL)
        self.assertEqual(backup_path_for("a.txt", ".bak"), "a.txt.bak")
        with self.assertRaises(ValueError):
            backup_path_for("a.txt", "")

    def test_backup_failure_aborts(self) -> None:
        """A failed backup stops the conversion before the original changes."""
        options = ConversionOptions(make_backup=True)
        with patch("eol_replace.shutil.copy2", side_effect=OSError("disk full")):
            with self.assertRaises(BackupFailedError) as ctx:
                convert_file(self.test_file, ConversionMode.TO_UNIX, options)
        self.assertEqual(ctx.exception.backup_path, self.test_file + "~")
        self.assertEqual(self.read(self.test_file), ORIGINAL)
        self.assertEqual(os.listdir(self.test_dir), ["test.txt"])

    def test_preserve_timestamps(self) -> None:
        os.utime(self.test_file, (1_000_000_000, 1_000_000_000))
        options = ConversionOptions(preserve_timestamps=True)
        convert_file(self.test_file, ConversionMode.TO_UNIX, options)
        info = os.stat(self.test_file)
        self.assertEqual(int(info.st_mtime), 1_000_000_000)
        self.assertEqual(self.read(self.test_file), b"Line 1\nLine 2\n")

    def test_timestamps_updated_by_default(self) -> None:
        os.utime(self.test_file, (1_000_000_000, 1_000_000_000))
        convert_file(self.test_file, ConversionMode.TO_UNIX)
        self.assertGreater(os.stat(self.test_file).st_mtime, 1_000_000_000)

    @unittest.skipIf(os.name == "nt", "POSIX permission bits")
    def test_preserve_permissions(self) -> None:
        os.chmod(self.test_file, 0o640)
        convert_file(self.test_file, ConversionMode.TO_DOS)
        self.assertEqual(stat.S_IMODE(os.stat(self.test_file).st_mode), 0o640)

    @unittest.skipIf(os.name == "nt", "POSIX permission bits")
    def test_permissions_not_preserved(self) -> None:
        os.chmod(self.test_file, 0o600)
        options = ConversionOptions(preserve_permissions=False)
        convert_file(self.test_file, ConversionMode.TO_DOS, options)
        expected = 0o666 & ~eol_replace.current_umask()
        self.assertEqual(stat.S_IMODE(os.stat(self.test_file).st_mode), expected)

    def test_temp_names_are_unique(self) -> None:
        """Concurrent conversions of the same target never share a temp file."""
        with atomic_output(self.test_file) as first:
            with atomic_output(self.test_file) as second:
                self.assertEqual(len(os.listdir(self.test_dir)), 3)
                second.write(b"second\n")
            first.write(b"first\n")
        self.assertEqual(self.read(self.test_file), b"first\n")
        self.assertEqual(os.listdir(self.test_dir), ["test.txt"])


class TestUmask(unittest.TestCase):
    def tearDown(self) -> None:
        eol_replace._umask = None  # pylint: disable=protected-access

    def test_import_leaves_umask_alone(self) -> None:
        with patch("os.umask", side_effect=AssertionError("umask changed")):
            importlib.reload(eol_replace)

    def test_umask_read_once(self) -> None:
        eol_replace._umask = None  # pylint: disable=protected-access
        with patch("eol_replace._read_umask", return_value=0o027) as read_umask:
            self.assertEqual(eol_replace.current_umask(), 0o027)
            self.assertEqual(eol_replace.current_umask(), 0o027)
        read_umask.assert_called_once_with()

    @unittest.skipUnless(os.path.exists("/proc/self/status"), "Linux /proc")
    def test_proc_status_read_without_swapping(self) -> None:
        expected = os.umask(0o022)
        os.umask(expected)
        eol_replace._umask = None  # pylint: disable=protected-access
        with patch("os.umask", side_effect=AssertionError("umask changed")):
            self.assertEqual(eol_replace.current_umask(), expected)


if __name__ == "__main__":
    unittest.main()
