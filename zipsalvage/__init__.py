"""
Recovery and extraction of ZIP archives with wrapped 32-bit offsets and sizes
"""

from zipsalvage.archive import SalvageArchive
from zipsalvage.byte_source import ByteSource, FileByteSource, MemoryByteSource
from zipsalvage.catalog import ArchiveCatalog, RecoveredEntry
from zipsalvage.config import SalvageConfig, make_name_decoder
from zipsalvage.extraction import ExtractionPipeline
from zipsalvage.recovery import OffsetRecoveryEngine

__version__ = "1.0.0"

__all__ = ['SalvageArchive', 'SalvageConfig', 'make_name_decoder', 'ByteSource',
           'FileByteSource', 'MemoryByteSource', 'OffsetRecoveryEngine',
           'ArchiveCatalog', 'RecoveredEntry', 'ExtractionPipeline']
