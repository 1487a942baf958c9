"""
Random-access readers over an archive.

Every stage above this one reads bounded windows through read(), so archives
far larger than memory (and larger than 4 GiB) never have to be buffered.
"""

import os
from abc import ABC, abstractmethod

from zipsalvage.errors import IOFault

CHUNK_SIZE = 1024 * 1024


class ByteSource(ABC):
    """Fixed-size, read-only backing store addressed by absolute offsets."""

    @abstractmethod
    def size(self):
        """Return the total number of bytes in the source."""
        pass

    @abstractmethod
    def _read(self, offset, length):
        """Return up to length bytes starting at offset."""
        pass

    def read(self, offset, length):
        """Read exactly length bytes at offset.

        Args:
            offset: Absolute byte offset, may exceed 32 bits.
            length: Number of bytes wanted.

        Returns:
            The bytes read.

        Raises:
            IOFault: The range leaves the source or the underlying read failed.
        """
        if offset < 0 or length < 0 or offset + length > self.size():
            raise IOFault(f"Read of {length} bytes outside a {self.size()}-byte archive",
                          offset=offset)
        if length == 0:
            return b""
        try:
            data = self._read(offset, length)
        except OSError as e:
            raise IOFault(f"Read failed: {e}", offset=offset) from e
        if len(data) != length:
            raise IOFault(f"Short read: wanted {length} bytes, got {len(data)}",
                          offset=offset)
        return data

    def iter_range(self, start, end, chunk_size=CHUNK_SIZE):
        """Yield the bytes of [start, end) in chunks of at most chunk_size."""
        offset = start
        while offset < end:
            length = min(chunk_size, end - offset)
            yield self.read(offset, length)
            offset += length


class FileByteSource(ByteSource):
    """ByteSource over a file on disk. Owns its handle exclusively."""

    def __init__(self, path):
        self.path = path
        self.fp = open(path, "rb")
        try:
            stat = os.fstat(self.fp.fileno())
        except OSError:
            self.fp.close()
            raise
        self._size = stat.st_size

    def size(self):
        return self._size

    def _read(self, offset, length):
        self.fp.seek(offset)
        return self.fp.read(length)

    def close(self):
        if self.fp:
            self.fp.close()
            self.fp = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()


class MemoryByteSource(ByteSource):
    """ByteSource over an in-memory buffer."""

    def __init__(self, data):
        self.data = bytes(data)

    def size(self):
        return len(self.data)

    def _read(self, offset, length):
        return self.data[offset:offset + length]
