"""
Exceptions raised while recovering and extracting damaged ZIP archives.

Structural failures derive from zipfile.BadZipFile so callers that already
handle the standard library's error keep working.
"""

import zipfile


class SalvageError(Exception):
    """Base class for every recovery and extraction failure."""

    def __init__(self, message, offset=None, name=None):
        super().__init__(message)
        self.offset = offset    # Byte offset the failure refers to
        self.name = name        # Entry name, when the failure is per-entry

    def __str__(self):
        message = super().__str__()
        details = []
        if self.name is not None:
            details.append(f"entry {self.name!r}")
        if self.offset is not None:
            details.append(f"offset 0x{self.offset:X}")
        if details:
            return f"{message} ({', '.join(details)})"
        return message


class IOFault(SalvageError, OSError):
    """Reading the archive (or writing an entry) failed."""


class RecoveryError(SalvageError, zipfile.BadZipFile):
    """The archive structure could not be recovered."""


class MalformedRecord(RecoveryError):
    """A record is shorter than its fixed-size portion."""


class EOCDNotFound(RecoveryError):
    """No End of Central Directory record at the tail of the file."""


class CentralDirectoryNotFound(RecoveryError):
    """No Central Directory Header at the stored offset or any wrap of it."""


class NoCentralDirectoryHeaders(RecoveryError):
    """The central directory span holds no decodable header."""


class LocalHeaderNotFound(RecoveryError):
    """No Local File Header at an entry's stored offset or any wrap of it."""


# Non-fatal conditions: collected as warnings, never raised out of a run

class UnsupportedCompressionMethod(SalvageError):
    """The entry uses a method other than stored or deflate; copied raw."""


class SizeCorrectionExhausted(SalvageError):
    """No wrap of the stored sizes lands on a known record boundary."""
