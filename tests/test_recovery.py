import struct

import pytest

from zipsalvage.byte_source import MemoryByteSource
from zipsalvage.config import SalvageConfig
from zipsalvage.errors import (
    CentralDirectoryNotFound,
    EOCDNotFound,
    LocalHeaderNotFound,
    NoCentralDirectoryHeaders,
    SizeCorrectionExhausted,
)
from zipsalvage.recovery import OffsetRecoveryEngine, format_size
from zipsalvage.signature_scanner import WRAP

from zip_builder import (
    UNIX_DIRECTORY,
    SparseByteSource,
    build_archive,
    create_cdh,
    create_eocd,
    create_lfh,
)


def quiet_config(**kwargs):
    return SalvageConfig("archive.zip", verbosity=0, **kwargs)


def recover(source, **kwargs):
    return OffsetRecoveryEngine(source, quiet_config(**kwargs)).recover()


ENTRIES = [
    (b"docs/", b"", {"external_attr": UNIX_DIRECTORY}),
    (b"docs/a.txt", b"alpha " * 50, {}),
    (b"docs/b.txt", b"bravo " * 50, {"deflate": True}),
]


def test_intact_archive_is_left_alone():
    data, offsets = build_archive(ENTRIES)
    result = recover(MemoryByteSource(data))
    assert [h.name for h in result.headers] == [name for name, _, _ in ENTRIES]
    assert [h.local_header_offset for h in result.headers] == offsets
    assert result.end_record.record_offset == len(data) - 22
    assert result.end_record.total_entries == len(result.headers)
    assert result.skipped == []
    assert result.warnings == []
    assert result.headers[1].uncompressed_size == 300
    assert result.headers[2].uncompressed_size == 300


def test_comment_does_not_change_the_result():
    plain, _ = build_archive(ENTRIES)
    commented, _ = build_archive(ENTRIES, comment=b"downloaded from the cloud")
    first = recover(MemoryByteSource(plain))
    second = recover(MemoryByteSource(commented))
    assert second.end_record.comment == b"downloaded from the cloud"
    assert second.end_record.cd_offset == first.end_record.cd_offset
    assert ([(h.name, h.local_header_offset, h.compressed_size) for h in first.headers]
            == [(h.name, h.local_header_offset, h.compressed_size) for h in second.headers])


def test_stray_end_record_signature_in_file_data():
    content = b"xx" + b"PK\x05\x06" + bytes(40)
    data, _ = build_archive([(b"trap.bin", content, {})], comment=b"c" * 10)
    result = recover(MemoryByteSource(data))
    assert result.end_record.record_offset == len(data) - 22 - 10
    assert result.end_record.comment == b"c" * 10


def test_signature_inside_name_is_not_a_header():
    name = b"PK\x01\x02.bin"
    data, _ = build_archive([(name, b"data", {}), (b"next.bin", b"more", {})])
    result = recover(MemoryByteSource(data))
    assert [h.name for h in result.headers] == [name, b"next.bin"]


def test_size_correction_is_idempotent():
    data, _ = build_archive(ENTRIES)
    source = MemoryByteSource(data)
    engine = OffsetRecoveryEngine(source, quiet_config())
    result = engine.recover()
    before = [(h.compressed_size, h.uncompressed_size) for h in result.headers]
    engine.correct_sizes(result.headers, result.end_record.cd_offset)
    assert [(h.compressed_size, h.uncompressed_size) for h in result.headers] == before


def wrapped_single_entry():
    """One stored entry of 2^32 + 10 bytes; every 32-bit field wrapped."""
    name = b"big.bin"
    true_size = WRAP + 10
    lfh = create_lfh(name, true_size)
    cd_offset = len(lfh) + true_size
    cdh = create_cdh(name, 0, true_size)
    eocd = create_eocd(cd_offset, len(cdh), 1)
    source = SparseByteSource(cd_offset + len(cdh) + len(eocd))
    source.place(0, lfh)
    source.place(cd_offset, cdh)
    source.place(cd_offset + len(cdh), eocd)
    return source, cd_offset


def test_wrapped_central_directory_and_size():
    source, cd_offset = wrapped_single_entry()
    assert cd_offset == 37 + WRAP + 10
    result = recover(source)
    assert result.end_record.cd_offset == cd_offset
    header, = result.headers
    assert header.local_header_offset == 0
    assert header.local_header_length == 37
    assert header.compressed_size == WRAP + 10
    assert header.uncompressed_size == WRAP + 10
    assert result.warnings == []


def test_wrapped_end_record_with_comment():
    name = b"a.bin"
    comment = b"x" * 127
    cd_offset = 5 + WRAP
    lfh = create_lfh(name, cd_offset - 35)
    cdh = create_cdh(name, 0, cd_offset - 35)
    eocd = create_eocd(cd_offset, len(cdh), 1, comment)
    size = cd_offset + len(cdh) + len(eocd)
    assert size == 5 + WRAP + 200
    source = SparseByteSource(size, {0: lfh, cd_offset: cdh, cd_offset + len(cdh): eocd})

    result = recover(source)
    assert result.end_record.record_offset == cd_offset + len(cdh)
    assert result.end_record.comment == comment
    assert result.end_record.cd_offset == cd_offset
    assert result.headers[0].compressed_size == cd_offset - 35


def test_wrapped_local_header_offsets():
    first = create_lfh(b"a", WRAP + 3)
    second_offset = len(first) + WRAP + 3
    second = create_lfh(b"b", 4)
    cd_offset = second_offset + len(second) + 4
    central = (create_cdh(b"a", 0, WRAP + 3, 1, compression=8)
               + create_cdh(b"b", second_offset, 4))
    eocd = create_eocd(cd_offset, len(central), 2)
    source = SparseByteSource(cd_offset + len(central) + len(eocd), {
        0: first,
        second_offset: second + b"data",
        cd_offset: central + eocd,
    })

    result = recover(source)
    a, b = result.headers
    assert b.local_header_offset == second_offset == 34 + WRAP
    assert a.compressed_size == WRAP + 3
    # Deflated data never shrinks below its compressed size by gigabytes
    assert a.uncompressed_size == 2 * WRAP + 1
    assert b.compressed_size == 4


def test_data_descriptor_trailer_is_an_anchor():
    lfh = create_lfh(b"dd.bin", 0, flags=0x08)
    data = lfh + b"data" + b"PK\x07\x08" + struct.pack("<3L", 0, 4, 4)
    cdh = create_cdh(b"dd.bin", 0, 4, flags=0x08)
    data += cdh + create_eocd(len(data), len(cdh), 1)
    result = recover(MemoryByteSource(data))
    assert result.warnings == []
    assert result.headers[0].compressed_size == 4


def test_unmatched_size_is_kept_with_a_warning():
    lfh = create_lfh(b"odd.bin", 5)
    data = lfh + b"123456"
    cdh = create_cdh(b"odd.bin", 0, 5)
    data += cdh + create_eocd(len(data), len(cdh), 1)
    result = recover(MemoryByteSource(data))
    warning, = result.warnings
    assert isinstance(warning, SizeCorrectionExhausted)
    assert warning.name == "odd.bin"
    assert result.headers[0].compressed_size == 5


def archive_with_lost_local_header():
    first = create_lfh(b"good.bin", 4) + b"good"
    second = create_lfh(b"lost.bin", 4) + b"lost"
    cd_offset = len(first) + len(second)
    # Points into the data of the first entry
    central = create_cdh(b"good.bin", 0, 4) + create_cdh(b"lost.bin", 3, 4)
    return first + second + central + create_eocd(cd_offset, len(central), 2)


def test_missing_local_header_skips_the_entry():
    result = recover(MemoryByteSource(archive_with_lost_local_header()))
    assert [h.name for h in result.headers] == [b"good.bin"]
    error, = result.skipped
    assert isinstance(error, LocalHeaderNotFound)
    assert error.name == "lost.bin"
    assert error.offset == 3


def test_missing_local_header_in_strict_mode():
    with pytest.raises(LocalHeaderNotFound):
        recover(MemoryByteSource(archive_with_lost_local_header()), strict_local_headers=True)


def test_not_an_archive():
    with pytest.raises(EOCDNotFound):
        recover(MemoryByteSource(b"definitely not a zip file " * 10))
    with pytest.raises(EOCDNotFound):
        recover(MemoryByteSource(b"tiny"))


def test_empty_archive():
    with pytest.raises(NoCentralDirectoryHeaders):
        recover(MemoryByteSource(create_eocd(0, 0, 0)))


def test_central_directory_missing():
    data = bytes(100) + create_eocd(0, 46, 1)
    with pytest.raises(CentralDirectoryNotFound):
        recover(MemoryByteSource(data))


def test_recovery_errors_are_bad_zip_files():
    import zipfile
    with pytest.raises(zipfile.BadZipFile):
        recover(MemoryByteSource(bytes(64)))


def test_format_size():
    assert format_size(512) == "512B"
    assert format_size(WRAP + 10) == "4.00GB"
