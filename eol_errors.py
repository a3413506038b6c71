"""
Errors raised by the EolSwap conversion core.

Every error is scoped to a single file. Plain I/O failures are not wrapped:
they surface as the usual ``OSError`` subclasses.
"""

from typing import Optional


class ConversionError(Exception):
    """Base class for conversion failures that leave the original untouched."""


class EmptySourceError(ConversionError):
    """The source holds zero bytes and no encoding was given."""

    def __init__(self, path: Optional[str] = None) -> None:
        self.path = path
        super().__init__(f"{path or '<stream>'}: source is empty")


class BinaryDetectedError(ConversionError):
    """A control byte outside the text allow-list was found."""

    def __init__(self, byte: int, line: int, path: Optional[str] = None) -> None:
        self.byte = byte
        self.line = line
        self.path = path
        super().__init__(
            f"{path or '<stream>'}: binary symbol 0x{byte:02X} found at line {line}"
        )


class BackupFailedError(ConversionError):
    """Copying the original to its backup path failed."""

    def __init__(self, path: str, backup_path: str, reason: str) -> None:
        self.path = path
        self.backup_path = backup_path
        super().__init__(f"{path}: could not create backup '{backup_path}': {reason}")


class UnsupportedEncodingError(ConversionError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"unsupported encoding: {name}")


class UndecodableContentError(ConversionError):
    def __init__(self, encoding: str, path: Optional[str] = None) -> None:
        self.encoding = encoding
        self.path = path
        super().__init__(f"{path or '<stream>'}: content is not valid {encoding}")
