"""
Turns recovered Central Directory Headers into entries ready for extraction.
"""

import stat
from collections import namedtuple
from datetime import datetime

from zipsalvage.config import DEBUG
from zipsalvage.records import (
    LFH_FIXED_SIZE,
    SYSTEM_MSDOS,
    compression_name,
    describe_flags,
    dos_date_time_to_timestamp,
)
from zipsalvage.recovery import read_local_file_header

# MS-DOS / FAT attribute byte (low 8 bits of the external attributes)
DOS_DIRECTORY = 0x10
DOS_ARCHIVE = 0x20

ENTRY_FILE = "file"
ENTRY_DIRECTORY = "directory"

RecoveredEntry = namedtuple('RecoveredEntry', [
    'name', 'attribute_class', 'compressed_size', 'uncompressed_size',
    'compression_method', 'modified', 'data_start', 'data_end', 'mode', 'flags'
])

Classification = namedtuple('Classification', ['files', 'directories'])


def posix_mode(header):
    """POSIX mode bits of a header made on a POSIX-family system, else None."""
    if header.create_system == SYSTEM_MSDOS:
        return None
    return (header.external_attr >> 16) & 0xFFFF


def attribute_class(header):
    """Classify a header as ENTRY_FILE, ENTRY_DIRECTORY or None (anything else).

    The external attributes are read according to the origin system: the
    POSIX file type for POSIX-family systems, the FAT attribute bits for
    MS-DOS. A POSIX header without a file type falls back to the FAT bits,
    which most packers fill in as well.
    """
    mode = posix_mode(header)
    if mode and stat.S_IFMT(mode):
        if stat.S_ISREG(mode):
            return ENTRY_FILE
        if stat.S_ISDIR(mode):
            return ENTRY_DIRECTORY
        return None     # Symlinks, devices, fifos, sockets

    attributes = header.external_attr & 0xFF
    if attributes & DOS_DIRECTORY:
        return ENTRY_DIRECTORY
    if attributes & DOS_ARCHIVE:
        return ENTRY_FILE
    return None


class ArchiveCatalog:
    """Files and directories of a recovered archive."""

    def __init__(self, source, headers, config):
        self.source = source
        self.config = config
        classification = self.classify(headers)
        self.directories = [self._directory_entry(header)
                            for header in classification.directories]
        self.files = [self.resolve_data_region(self.source, header)
                      for header in classification.files]

    def __iter__(self):
        yield from self.directories
        yield from self.files

    def __len__(self):
        return len(self.directories) + len(self.files)

    @staticmethod
    def classify(headers):
        """Partition headers into files and directories, dropping the rest."""
        files = []
        directories = []
        for header in headers:
            kind = attribute_class(header)
            if kind == ENTRY_FILE:
                files.append(header)
            elif kind == ENTRY_DIRECTORY:
                directories.append(header)
        return Classification(files, directories)

    def _directory_entry(self, header):
        return RecoveredEntry(
            name=self.config.decode_name(header.name, header.is_utf8),
            attribute_class=ENTRY_DIRECTORY,
            compressed_size=0,
            uncompressed_size=0,
            compression_method=header.compression_method,
            modified=dos_date_time_to_timestamp(header.last_mod_date, header.last_mod_time),
            data_start=None,
            data_end=None,
            mode=posix_mode(header),
            flags=header.flags,
        )

    def resolve_data_region(self, source, header):
        """Locate the compressed data of a file entry.

        Only the name and extra lengths of the local header are used; its
        sizes, CRC and times are routinely wrong in the archives this tool
        targets, so the central directory header stays authoritative.
        """
        local = read_local_file_header(source, header.local_header_offset)
        data_start = (header.local_header_offset + LFH_FIXED_SIZE
                      + local.name_length + local.extra_length)
        entry = RecoveredEntry(
            name=self.config.decode_name(header.name, header.is_utf8),
            attribute_class=ENTRY_FILE,
            compressed_size=header.compressed_size,
            uncompressed_size=header.uncompressed_size,
            compression_method=header.compression_method,
            modified=dos_date_time_to_timestamp(header.last_mod_date, header.last_mod_time),
            data_start=data_start,
            data_end=data_start + header.compressed_size,
            mode=posix_mode(header),
            flags=header.flags,
        )
        self.config.log(DEBUG, f"[{entry.name}] data 0x{entry.data_start:X}-0x{entry.data_end:X}, "
                           f"{compression_name(entry.compression_method)}, "
                           f"{entry.uncompressed_size} bytes uncompressed, "
                           f"flags: {describe_flags(entry.flags)}")
        return entry

    def list_lines(self, long=False):
        """Lines of a listing of the catalog, directories first."""
        lines = []
        if long:
            lines.append(f"{'Permissions':<12} {'Size':>14} {'Modified':>20} {'Method':<10} {'Name'}")
            lines.append(f"{'-'*12} {'-'*14} {'-'*20} {'-'*10} {'-'*30}")
        for entry in self:
            if not long:
                lines.append(entry.name)
                continue
            lines.append(f"{self.format_mode(entry):<12} {entry.uncompressed_size:>14} "
                         f"{self.format_modified(entry):>20} "
                         f"{compression_name(entry.compression_method):<10} {entry.name}")
        return lines

    @staticmethod
    def format_mode(entry):
        """Permission string like ls -l; FAT entries only show their type."""
        if entry.mode and stat.S_IFMT(entry.mode):
            return stat.filemode(entry.mode)
        return "d---------" if entry.attribute_class == ENTRY_DIRECTORY else "----------"

    @staticmethod
    def format_modified(entry):
        if entry.modified is None:
            return "INVALID_DATE"
        return datetime.fromtimestamp(entry.modified).strftime("%Y-%m-%d %H:%M:%S")
