"""
Decoders for the three fixed-layout ZIP records.

Layouts are the little-endian structures published by the standard zipfile
module. Nothing here does I/O: every decoder takes a buffer that already
holds the record and returns an owned value.
"""

import struct
import zipfile
from collections import namedtuple
from datetime import datetime

from zipsalvage.errors import MalformedRecord

# Signatures
LOCAL_FILE_HEADER_SIGNATURE = zipfile.stringFileHeader           # PK\x03\x04
CENTRAL_DIRECTORY_SIGNATURE = zipfile.stringCentralDir           # PK\x01\x02
END_OF_CENTRAL_DIRECTORY_SIGNATURE = zipfile.stringEndArchive    # PK\x05\x06

# Fixed part sizes, signature included
LFH_FIXED_SIZE = zipfile.sizeFileHeader      # 30 + name + extra
CDH_FIXED_SIZE = zipfile.sizeCentralDir      # 46 + name + extra + comment
EOCD_FIXED_SIZE = zipfile.sizeEndCentDir     # 22 + comment
MAX_COMMENT_LENGTH = 0xFFFF

# General purpose flag bits
FLAG_ENCRYPTED = 0x0001
FLAG_DATA_DESCRIPTOR = 0x0008
FLAG_UTF8 = 0x0800

# Compression methods
METHOD_STORED = 0
METHOD_DEFLATED = 8
METHOD_DEFLATE64 = 9

# Origin systems (high byte of version made by)
SYSTEM_MSDOS = 0
SYSTEM_UNIX = 3


class EndOfCentralDirectoryRecord:
    """Decoded EOCD. cd_offset and cd_size may be corrected past 32 bits."""

    def __init__(self, disk_number, cd_disk_number, disk_entries, total_entries,
                 cd_size, cd_offset, comment=b"", record_offset=None):
        self.disk_number = disk_number
        self.cd_disk_number = cd_disk_number
        self.disk_entries = disk_entries
        self.total_entries = total_entries
        self.cd_size = cd_size
        self.cd_offset = cd_offset
        self.comment = comment
        self.record_offset = record_offset      # Where the record itself sits

    @property
    def comment_length(self):
        return len(self.comment)

    def __repr__(self):
        return (f"EndOfCentralDirectoryRecord(total_entries={self.total_entries}, "
                f"cd_size={self.cd_size}, cd_offset=0x{self.cd_offset:X}, "
                f"comment_length={self.comment_length})")


class CentralDirectoryHeader:
    """Decoded Central Directory Header.

    local_header_offset, compressed_size and uncompressed_size are the only
    fields recovery rewrites; everything else stays as decoded.
    """

    def __init__(self, fields, name=b"", extra=b"", comment=b"", record_offset=None):
        (_, self.create_version, self.create_system, self.extract_version, _,
         self.flags, self.compression_method, self.last_mod_time, self.last_mod_date,
         self.crc32, self.compressed_size, self.uncompressed_size,
         self.name_length, self.extra_length, self.comment_length,
         self.disk_number_start, self.internal_attr, self.external_attr,
         self.local_header_offset) = fields
        self.name = name
        self.extra = extra
        self.comment = comment
        self.record_offset = record_offset
        self.local_header_length = None     # 30 + name + extra, read from the LFH

    @property
    def version_made_by(self):
        return (self.create_system << 8) | self.create_version

    @property
    def record_length(self):
        return CDH_FIXED_SIZE + self.name_length + self.extra_length + self.comment_length

    @property
    def is_utf8(self):
        return bool(self.flags & FLAG_UTF8)

    @property
    def has_data_descriptor(self):
        return bool(self.flags & FLAG_DATA_DESCRIPTOR)

    def __repr__(self):
        return (f"CentralDirectoryHeader(name={self.name!r}, "
                f"local_header_offset=0x{self.local_header_offset:X}, "
                f"compressed_size={self.compressed_size}, "
                f"uncompressed_size={self.uncompressed_size})")


# Only name_length and extra_length of a local header are ever trusted
LocalFileHeader = namedtuple('LocalFileHeader', [
    'extract_version', 'extract_system', 'flags', 'compression_method',
    'last_mod_time', 'last_mod_date', 'crc32', 'compressed_size',
    'uncompressed_size', 'name_length', 'extra_length', 'name', 'extra'
])


def _require(buffer, length, record):
    if len(buffer) < length:
        raise MalformedRecord(f"{record} needs {length} bytes, got {len(buffer)}")


def decode_end_of_central_directory(buffer, record_offset=None):
    """Decode an EOCD record (and its comment, as far as the buffer holds it)."""
    _require(buffer, EOCD_FIXED_SIZE, "End of central directory record")
    (_, disk_number, cd_disk_number, disk_entries, total_entries,
     cd_size, cd_offset, comment_length) = struct.unpack(
        zipfile.structEndArchive, bytes(buffer[:EOCD_FIXED_SIZE]))
    comment = bytes(buffer[EOCD_FIXED_SIZE:EOCD_FIXED_SIZE + comment_length])
    return EndOfCentralDirectoryRecord(disk_number, cd_disk_number, disk_entries,
                                       total_entries, cd_size, cd_offset,
                                       comment, record_offset)


def central_directory_header_length(buffer):
    """Full length of the CDH whose fixed part starts the buffer."""
    _require(buffer, CDH_FIXED_SIZE, "Central directory header")
    name_length, extra_length, comment_length = struct.unpack('<3H', bytes(buffer[28:34]))
    return CDH_FIXED_SIZE + name_length + extra_length + comment_length


def decode_central_directory_header(buffer, record_offset=None):
    """Decode a CDH; buffer should hold the whole variable-length record."""
    _require(buffer, CDH_FIXED_SIZE, "Central directory header")
    fields = struct.unpack(zipfile.structCentralDir, bytes(buffer[:CDH_FIXED_SIZE]))
    name_length, extra_length, comment_length = fields[12:15]
    name_end = CDH_FIXED_SIZE + name_length
    extra_end = name_end + extra_length
    comment_end = extra_end + comment_length
    return CentralDirectoryHeader(
        fields,
        name=bytes(buffer[CDH_FIXED_SIZE:name_end]),
        extra=bytes(buffer[name_end:extra_end]),
        comment=bytes(buffer[extra_end:comment_end]),
        record_offset=record_offset,
    )


def decode_local_file_header(buffer):
    """Decode an LFH; name and extra are filled as far as the buffer holds them."""
    _require(buffer, LFH_FIXED_SIZE, "Local file header")
    fields = struct.unpack(zipfile.structFileHeader, bytes(buffer[:LFH_FIXED_SIZE]))
    name_length, extra_length = fields[10:12]
    name_end = LFH_FIXED_SIZE + name_length
    extra_end = name_end + extra_length
    return LocalFileHeader(*fields[1:],
                           name=bytes(buffer[LFH_FIXED_SIZE:name_end]),
                           extra=bytes(buffer[name_end:extra_end]))


def dos_date_time_to_tuple(date, time):
    """Convert DOS date/time to a (year, month, day, hour, minute, second) tuple."""
    year = ((date >> 9) & 0x7f) + 1980
    month = (date >> 5) & 0x0f
    day = date & 0x1f
    hour = (time >> 11) & 0x1f
    minute = (time >> 5) & 0x3f
    second = (time & 0x1f) * 2
    return (year, month, day, hour, minute, second)


def dos_date_time_to_timestamp(date, time):
    """Local-time POSIX timestamp for a DOS date/time, None if the date is invalid."""
    try:
        return datetime(*dos_date_time_to_tuple(date, time)).timestamp()
    except (ValueError, OverflowError, OSError):
        return None


def describe_flags(flags):
    """Describe the meaning of ZIP general purpose bit flags."""
    descriptions = []

    if flags & FLAG_ENCRYPTED:
        descriptions.append("encrypted")
    if flags & FLAG_DATA_DESCRIPTOR:
        descriptions.append("data descriptor follows")
    if flags & 0x0020:
        descriptions.append("compressed patched data")
    if flags & 0x0040:
        descriptions.append("strong encryption")
    if flags & FLAG_UTF8:
        descriptions.append("UTF-8 encoding")
    if flags & 0x2000:
        descriptions.append("encrypted central directory")

    return ", ".join(descriptions) if descriptions else "none"


def compression_name(method):
    """Get a human-readable name for the compression method."""
    methods = {
        0: "stored",
        1: "shrunk",
        6: "imploded",
        8: "deflated",
        9: "deflate64",
        12: "bzip2",
        14: "lzma",
        93: "zstd",
        98: "ppmd",
    }
    return methods.get(method, f"unknown ({method})")
