"""
Offset recovery for archives whose 32-bit offsets and sizes wrapped.

Producers that write plain 32-bit fields for archives past 4 GiB store every
offset and size modulo 2^32. The engine re-derives the true values from what
the file actually contains:

1. find the End of Central Directory record at the tail of the file,
2. slide its central directory offset up by 2^32 steps until a Central
   Directory Header signature is found there,
3. walk the central directory and decode every header,
4. slide each header's local header offset up the same way, staying below
   the central directory,
5. grow each entry's sizes by 2^32 steps until its data ends exactly where
   the next record begins.
"""

from collections import namedtuple

from zipsalvage.config import DEBUG, INFO
from zipsalvage.errors import (
    CentralDirectoryNotFound,
    EOCDNotFound,
    LocalHeaderNotFound,
    MalformedRecord,
    NoCentralDirectoryHeaders,
    SizeCorrectionExhausted,
)
from zipsalvage.records import (
    CDH_FIXED_SIZE,
    CENTRAL_DIRECTORY_SIGNATURE,
    END_OF_CENTRAL_DIRECTORY_SIGNATURE,
    EOCD_FIXED_SIZE,
    LFH_FIXED_SIZE,
    LOCAL_FILE_HEADER_SIGNATURE,
    MAX_COMMENT_LENGTH,
    METHOD_STORED,
    central_directory_header_length,
    decode_central_directory_header,
    decode_end_of_central_directory,
    decode_local_file_header,
)
from zipsalvage.signature_scanner import (
    WRAP,
    find_signature,
    find_wrapped_offset,
    scan_buffer,
)

# A data descriptor may follow the data when flag bit 3 is set:
# CRC + two 32-bit sizes, optionally preceded by a PK\x07\x08 signature
DATA_DESCRIPTOR_LENGTHS = (0, 12, 16)

RecoveryResult = namedtuple('RecoveryResult', ['end_record', 'headers', 'skipped', 'warnings'])


def read_local_file_header(source, offset):
    """Read the Local File Header at offset, name and extra included."""
    fixed = source.read(offset, LFH_FIXED_SIZE)
    header = decode_local_file_header(fixed)
    variable = source.read(offset + LFH_FIXED_SIZE, header.name_length + header.extra_length)
    return decode_local_file_header(fixed + variable)


def format_size(size):
    """Format a byte count for log messages."""
    units = ['B', 'KB', 'MB', 'GB', 'TB', 'PB', 'EB']
    level = 0
    value = float(size)
    while value >= 1000 and level < len(units) - 1:
        value /= 1024
        level += 1
    if level == 0:
        return f"{size}B"
    return f"{value:.2f}{units[level]}"


class OffsetRecoveryEngine:
    """Reconciles stored offsets and sizes against what the file contains."""

    def __init__(self, source, config):
        self.source = source
        self.config = config
        self.warnings = []

    def _warn(self, warning):
        self.warnings.append(warning)
        self.config.warn(str(warning))

    def recover(self):
        """Run every recovery step; structural failures propagate immediately.

        Returns:
            RecoveryResult with the corrected EOCD, the corrected headers in
            central directory order, the LocalHeaderNotFound failures of
            excluded entries, and the non-fatal warnings raised on the way.
        """
        end_record = self.locate_end_of_central_directory()
        self.correct_central_directory_offset(end_record)
        headers = self.enumerate_central_directory(end_record)
        headers, skipped = self.correct_local_header_offsets(headers, end_record.cd_offset)
        self.correct_sizes(headers, end_record.cd_offset)
        return RecoveryResult(end_record, headers, skipped, self.warnings)

    def locate_end_of_central_directory(self):
        """Find and decode the EOCD record at the tail of the archive.

        The common case is an archive without a comment, so only the last
        22 bytes are read first. Otherwise the window is widened by the
        longest possible comment.

        Raises:
            EOCDNotFound: No complete EOCD record in either window.
        """
        size = self.source.size()
        if size < EOCD_FIXED_SIZE:
            raise EOCDNotFound(f"File is only {size} bytes long")

        # Assume there is no comment
        offset = size - EOCD_FIXED_SIZE
        found = find_signature(self.source, offset, EOCD_FIXED_SIZE,
                               END_OF_CENTRAL_DIRECTORY_SIGNATURE)
        if found == offset:
            record = decode_end_of_central_directory(
                self.source.read(offset, EOCD_FIXED_SIZE), record_offset=offset)
            self.config.log(DEBUG, f"Found end of central directory record at 0x{offset:X}")
            return record

        # The record carries a comment of up to 65535 bytes
        window_start = max(0, size - EOCD_FIXED_SIZE - MAX_COMMENT_LENGTH)
        window = self.source.read(window_start, size - window_start)
        candidate = None
        position = scan_buffer(window, END_OF_CENTRAL_DIRECTORY_SIGNATURE)
        while position is not None and position + EOCD_FIXED_SIZE <= len(window):
            record = decode_end_of_central_directory(window[position:],
                                                     record_offset=window_start + position)
            if position + EOCD_FIXED_SIZE + record.comment_length == len(window):
                candidate = record
                break
            if candidate is None:
                # Comment length disagrees with the file end; keep as a fallback
                candidate = record
            position = scan_buffer(window, END_OF_CENTRAL_DIRECTORY_SIGNATURE, position + 1)

        if candidate is None:
            raise EOCDNotFound("Cannot find end of central directory record, "
                               "make sure the whole file was downloaded")
        self.config.log(DEBUG, f"Found end of central directory record at "
                               f"0x{candidate.record_offset:X} "
                               f"(comment of {candidate.comment_length} bytes)")
        return candidate

    def correct_central_directory_offset(self, end_record):
        """Replace the EOCD's stored central directory offset with the true one.

        Raises:
            NoCentralDirectoryHeaders: The archive declares no entries at all.
            CentralDirectoryNotFound: No wrap of the stored offset points at a
                Central Directory Header.
        """
        if end_record.total_entries == 0 and end_record.cd_size == 0:
            raise NoCentralDirectoryHeaders("Archive declares no entries",
                                            offset=end_record.record_offset)

        stored = end_record.cd_offset
        offset = find_wrapped_offset(self.source, stored, CENTRAL_DIRECTORY_SIGNATURE,
                                     self.source.size())
        if offset is None:
            raise CentralDirectoryNotFound("Cannot find the first central directory header",
                                           offset=stored)

        self.config.log(DEBUG, f"Found central directory header at 0x{offset:X}")
        if offset != stored:
            self.config.log(INFO, f"Corrected central directory offset: "
                                  f"0x{stored:X} -> 0x{offset:X}")
            end_record.cd_offset = offset

        # The directory sits right before the EOCD; its size wraps the same way
        span = end_record.record_offset - offset
        if span > end_record.cd_size and (span - end_record.cd_size) % WRAP == 0:
            self.config.log(INFO, f"Corrected central directory size: "
                                  f"{end_record.cd_size} -> {span}")
            end_record.cd_size = span
        return end_record

    def enumerate_central_directory(self, end_record):
        """Decode every Central Directory Header in the central directory span.

        After each header the scan jumps to the end of the record, so
        signature bytes inside names, extras and comments are never mistaken
        for the next header.

        Raises:
            MalformedRecord: A header runs past the end of the span.
            NoCentralDirectoryHeaders: Nothing could be decoded.
        """
        start = end_record.cd_offset
        end = end_record.record_offset
        if end is None or end < start:
            end = start + end_record.cd_size
        span = self.source.read(start, end - start)

        headers = []
        cursor = 0
        while cursor + CDH_FIXED_SIZE <= len(span):
            position = scan_buffer(span, CENTRAL_DIRECTORY_SIGNATURE, cursor)
            if position is None or position + CDH_FIXED_SIZE > len(span):
                break
            length = central_directory_header_length(span[position:position + CDH_FIXED_SIZE])
            if position + length > len(span):
                raise MalformedRecord("Central directory header runs past the central directory",
                                      offset=start + position)
            header = decode_central_directory_header(span[position:position + length],
                                                     record_offset=start + position)
            headers.append(header)
            cursor = position + length

        if not headers:
            raise NoCentralDirectoryHeaders("Cannot find any central directory header",
                                            offset=start)

        # The 16-bit entry count wraps for very large archives just like offsets
        if len(headers) % 0x10000 != end_record.total_entries:
            self.config.warn(f"End of central directory declares {end_record.total_entries} "
                             f"entries, found {len(headers)}")
        self.config.log(DEBUG, f"Decoded {len(headers)} central directory headers")
        return headers

    def correct_local_header_offsets(self, headers, cd_offset):
        """Point every header at its real Local File Header.

        Local headers precede the central directory, so cd_offset bounds the
        search. Also records each local header's length (fixed part plus the
        local name and extra field) for size correction.

        Returns:
            (kept headers, LocalHeaderNotFound errors of excluded headers)

        Raises:
            LocalHeaderNotFound: Only when the configuration is strict.
        """
        kept = []
        skipped = []
        for index, header in enumerate(headers):
            name = self.config.decode_name(header.name, header.is_utf8)
            stored = header.local_header_offset
            offset = find_wrapped_offset(self.source, stored, LOCAL_FILE_HEADER_SIGNATURE,
                                         cd_offset)
            if offset is None:
                error = LocalHeaderNotFound("Cannot find the local header",
                                            offset=stored, name=name)
                if self.config.strict_local_headers:
                    raise error
                self.config.error(f"{error}, skipping entry #{index}")
                skipped.append(error)
                continue

            self.config.log(DEBUG, f"Found local header of [{name}] at 0x{offset:X}")
            if offset != stored:
                self.config.log(INFO, f"Corrected local header offset of [{name}]: "
                                      f"0x{stored:X} -> 0x{offset:X}")
                header.local_header_offset = offset

            local = read_local_file_header(self.source, offset)
            header.local_header_length = LFH_FIXED_SIZE + local.name_length + local.extra_length
            kept.append(header)
        return kept, skipped

    def correct_sizes(self, headers, cd_offset):
        """Grow wrapped compressed/uncompressed sizes to their true values.

        An entry's data must end exactly where another entry's local header
        starts, or where the central directory starts for the last entry.
        Sizes are increased by 2^32 until that holds, as long as the data
        still ends before the central directory. Re-running on corrected
        headers changes nothing.
        """
        anchors = {header.local_header_offset for header in headers}
        anchors.add(cd_offset)

        for header in headers:
            name = self.config.decode_name(header.name, header.is_utf8)
            data_start = header.local_header_offset + self._local_length(header)
            trailers = DATA_DESCRIPTOR_LENGTHS if header.has_data_descriptor else (0,)

            compressed = header.compressed_size
            increments = 0
            found = False
            while data_start + compressed <= cd_offset:
                data_end = data_start + compressed
                if any(data_end + trailer in anchors for trailer in trailers):
                    found = True
                    break
                compressed += WRAP
                increments += 1

            if not found:
                self._warn(SizeCorrectionExhausted(
                    "Cannot match the end of the entry data with any record, "
                    "keeping the stored size", offset=header.local_header_offset, name=name))
                continue

            self.config.log(DEBUG, f"Found end of [{name}] data at "
                                   f"0x{data_start + compressed:X}")
            if not increments:
                continue

            self.config.log(INFO, f"Corrected compressed size of [{name}]: "
                                  f"{header.compressed_size} ({format_size(header.compressed_size)}) "
                                  f"-> {compressed} ({format_size(compressed)})")
            uncompressed = header.uncompressed_size + increments * WRAP
            if header.compression_method == METHOD_STORED:
                uncompressed = compressed
            elif uncompressed < compressed:
                # Deflate only grows tiny inputs, never by gigabytes
                uncompressed += WRAP
            header.compressed_size = compressed
            header.uncompressed_size = uncompressed

    def _local_length(self, header):
        if header.local_header_length is None:
            local = read_local_file_header(self.source, header.local_header_offset)
            header.local_header_length = LFH_FIXED_SIZE + local.name_length + local.extra_length
        return header.local_header_length
