"""
EolSwap - A cross-platform Python utility for converting line endings in text files.

This module provides functionality to:
- Convert line endings to LF (Unix), CRLF (DOS/Windows) or CR (classic Mac)
- Keep, remove or add byte order marks for UTF-8 and UTF-16 files
- Refuse binary files unless forced
- Stream large files in fixed-size chunks
- Replace files atomically, optionally keeping backups, permissions and dates
- Process files recursively across directories, or stdin to stdout
"""

__version__ = "1.0.0"
__author__ = "tboy1337"
