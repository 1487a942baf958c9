"""
SalvageArchive: one recovered archive, from opening the file to extraction.
"""

from zipsalvage.byte_source import FileByteSource
from zipsalvage.catalog import ArchiveCatalog
from zipsalvage.extraction import ExtractionPipeline
from zipsalvage.recovery import OffsetRecoveryEngine


class SalvageArchive:
    """Recovered view over a damaged ZIP archive.

    Opening runs the whole recovery pass: any structural failure is raised
    from the constructor, so a catalog is only ever built from a complete
    recovery. The archive handle is shared read-only by every stage and
    closed with the archive.
    """

    def __init__(self, config, source=None):
        self.config = config
        self._owns_source = source is None
        self.source = source if source is not None else FileByteSource(config.input_path)
        try:
            self.recovery = OffsetRecoveryEngine(self.source, config).recover()
            self.catalog = ArchiveCatalog(self.source, self.recovery.headers, config)
        except BaseException:
            self.close()
            raise

    @property
    def end_record(self):
        return self.recovery.end_record

    @property
    def warnings(self):
        return list(self.recovery.warnings)

    def list_lines(self, long=False):
        return self.catalog.list_lines(long=long)

    def extract(self):
        """Extract every entry below config.output_dir; returns an ExtractionReport."""
        return ExtractionPipeline(self.source, self.catalog, self.config).run()

    def close(self):
        if self._owns_source and self.source is not None:
            self.source.close()
            self.source = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()
