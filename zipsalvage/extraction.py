"""
Streams recovered entries out of the archive onto disk.

Entries are extracted strictly one at a time: each file's bytes flow through
a chain of generators (archive reader -> decompressor -> destination file)
and the destination is closed before the next entry is opened.
"""

import os
import time
import zlib
from collections import namedtuple

from zipsalvage.byte_source import CHUNK_SIZE
from zipsalvage.config import DEBUG, INFO, QUIET
from zipsalvage.errors import IOFault, UnsupportedCompressionMethod
from zipsalvage.records import METHOD_DEFLATE64, METHOD_DEFLATED, METHOD_STORED
from zipsalvage.recovery import format_size

ExtractionReport = namedtuple('ExtractionReport', ['directories', 'extracted', 'failed', 'warnings'])


def sanitize_path(name, output_dir):
    """Map an entry name to a path inside output_dir.

    Args:
        name: Entry name as stored in the archive.
        output_dir: The base output directory.

    Returns:
        A path within the output directory, or None when nothing of the
        name is left after dropping absolute prefixes and parent references.
    """
    # Some DOS packers store backslashes
    path = name.replace('\\', '/')
    parts = []
    for part in path.split('/'):
        if part in ('', '.', '..'):
            continue
        parts.append(part)
    if not parts:
        return None
    return os.path.join(output_dir, *parts)


def inflate(chunks, max_output=CHUNK_SIZE):
    """Raw-inflate a stream of compressed chunks, yielding bounded output blocks."""
    decompressor = zlib.decompressobj(-zlib.MAX_WBITS)
    for chunk in chunks:
        data = decompressor.decompress(chunk, max_output)
        # Drain until the decompressor has nothing more for this chunk
        while data:
            yield data
            data = decompressor.decompress(decompressor.unconsumed_tail, max_output)
    tail = decompressor.flush()
    if tail:
        yield tail


class ExtractionPipeline:
    """Writes every entry of an ArchiveCatalog below the configured output directory."""

    def __init__(self, source, catalog, config):
        self.source = source
        self.catalog = catalog
        self.config = config
        self.warnings = []

    def _warn(self, warning):
        self.warnings.append(warning)
        self.config.warn(str(warning))

    def create_directories(self):
        """Create the output directory and every directory entry.

        Runs to completion before any file is opened, so nested files always
        find their ancestors. Existing directories are fine.
        """
        created = []
        os.makedirs(self.config.output_dir, exist_ok=True)
        for entry in self.catalog.directories:
            path = sanitize_path(entry.name, self.config.output_dir)
            if path is None:
                continue
            os.makedirs(path, exist_ok=True)
            self.config.log(DEBUG, f"Created directory: {path}")
            created.append(path)
        return created

    def iter_entries(self):
        """Yield the file entries in archive order, one at a time."""
        yield from self.catalog.files

    def transform(self, entry, chunks):
        """Select the decompression transform for an entry's compression method."""
        method = entry.compression_method
        if method in (METHOD_DEFLATED, METHOD_DEFLATE64):
            return inflate(chunks)
        if method != METHOD_STORED:
            self._warn(UnsupportedCompressionMethod(
                f"Compression method {method} is not supported, writing the raw data",
                offset=entry.data_start, name=entry.name))
        return chunks

    def extract_entry(self, entry):
        """Extract one file entry.

        Returns:
            (destination path, number of bytes written), or None when the
            name maps to no usable path.
        """
        path = sanitize_path(entry.name, self.config.output_dir)
        if path is None:
            self.config.warn(f"Skipping entry with an empty name at offset 0x{entry.data_start:X}")
            return None

        data_end = entry.data_end
        if data_end > self.source.size():
            self.config.warn(f"Data of [{entry.name}] runs past the end of the archive, truncating")
            data_end = self.source.size()

        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)

        written = 0
        chunks = self.source.iter_range(entry.data_start, data_end)
        with open(path, 'wb') as f:
            for block in self.transform(entry, chunks):
                f.write(block)
                written += len(block)

        if entry.modified is not None:
            os.utime(path, (time.time(), entry.modified))
        return path, written

    def run(self):
        """Create all directories, then extract every file entry in turn.

        Reading the archive failing aborts the run. A destination that cannot
        be written, or data that does not inflate, is reported and skipped
        unless the configuration asks to stop on the first error.

        Returns:
            ExtractionReport
        """
        directories = self.create_directories()
        extracted = []
        failed = []

        for entry in self.iter_entries():
            try:
                result = self.extract_entry(entry)
            except IOFault:
                raise
            except (OSError, zlib.error) as e:
                if not self.config.keep_going:
                    raise
                self.config.error(f"Failed to extract {entry.name}: {e}")
                failed.append((entry, e))
                continue
            if result is None:
                continue

            path, written = result
            self.config.log(INFO, f"Extracted: {path} ({format_size(written)})")
            if written != entry.uncompressed_size:
                self.config.warn(f"[{entry.name}] expanded to {written} bytes, "
                                 f"central directory says {entry.uncompressed_size}")
            extracted.append(path)

        self.config.log(QUIET, f"Extraction complete: {len(extracted)} files, "
                               f"{len(directories)} directories, {len(failed)} failed")
        return ExtractionReport(directories, extracted, failed, self.warnings)
