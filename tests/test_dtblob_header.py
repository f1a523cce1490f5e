# Copyright (c) 2023 Christophe Dufaza <chris@openmarl.org>
#
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for the dtblob.header module."""

# Relax pylint a bit for unit tests.
# pylint: disable=missing-function-docstring


import pytest

from dtblob.errors import (
    DTBTruncatedError,
    DTBBadMagicError,
    DTBUnsupportedVersionError,
    DTBBadStructureError,
)
from dtblob.header import (
    FDT_MAGIC,
    DTBHeader,
    DTBReserveEntry,
    peek_total_size,
    read_reserve_map,
)

from .dtblob_uthelpers import DTBTests, DTBWriter


def test_dtbheader_from_buffer() -> None:
    blob = DTBTests.mk_qemu_blob()
    header = DTBHeader.from_buffer(blob)

    assert FDT_MAGIC == header.magic
    assert 17 == header.version
    assert 16 == header.last_comp_version
    assert len(blob) == header.totalsize
    # Reservation map right after the header: one entry and the terminator.
    assert 40 == header.off_mem_rsvmap
    assert 40 + 2 * 16 == header.off_dt_struct
    assert header.end_dt_struct == header.off_dt_strings
    assert header.end_dt_strings == header.totalsize
    header.check_blocks()


def test_dtbheader_truncated() -> None:
    blob = DTBTests.mk_qemu_blob()

    with pytest.raises(DTBTruncatedError):
        DTBHeader.from_buffer(b"")
    with pytest.raises(DTBTruncatedError):
        DTBHeader.from_buffer(blob[:39])
    # Complete header, but shorter than the declared total size.
    with pytest.raises(DTBTruncatedError):
        DTBHeader.from_buffer(blob[:-1])
    with pytest.raises(DTBTruncatedError):
        DTBHeader.from_buffer(blob[:40])

    # Declared total size above the actual size.
    blob = DTBWriter().begin_node("").end_node().end().blob(totalsize=4096)
    with pytest.raises(DTBTruncatedError):
        DTBHeader.from_buffer(blob)


def test_dtbheader_bad_magic() -> None:
    blob = DTBWriter().begin_node("").end_node().end().blob(magic=0xEDFE0DD0)
    with pytest.raises(DTBBadMagicError):
        DTBHeader.from_buffer(blob)

    # Length is checked before the magic.
    with pytest.raises(DTBTruncatedError):
        DTBHeader.from_buffer(blob[:8])

    # Magic is checked before the total size.
    blob = DTBWriter().begin_node("").end_node().end().blob(magic=0)
    with pytest.raises(DTBBadMagicError):
        DTBHeader.from_buffer(blob[:40])


def test_dtbheader_version() -> None:
    for version in (1, 16, 18):
        blob = DTBWriter().begin_node("").end_node().end().blob(version=version)
        with pytest.raises(DTBUnsupportedVersionError):
            DTBHeader.from_buffer(blob)


def test_dtbheader_check_blocks() -> None:
    header = DTBHeader(FDT_MAGIC, 100, 56, 80, 40, 17, 16, 0, 10, 50)
    with pytest.raises(DTBBadStructureError):
        header.check_blocks()

    header = DTBHeader(FDT_MAGIC, 100, 56, 96, 40, 17, 16, 0, 10, 40)
    with pytest.raises(DTBBadStructureError):
        header.check_blocks()

    header = DTBHeader(FDT_MAGIC, 100, 56, 90, 40, 17, 16, 0, 10, 34)
    header.check_blocks()


def test_peek_total_size() -> None:
    blob = DTBTests.mk_qemu_blob()
    assert len(blob) == peek_total_size(blob)
    assert len(blob) == peek_total_size(blob[:8])

    with pytest.raises(DTBTruncatedError):
        peek_total_size(blob[:7])
    with pytest.raises(DTBBadMagicError):
        peek_total_size(b"\0" * 8)


def test_read_reserve_map() -> None:
    blob = DTBTests.mk_qemu_blob()
    header = DTBHeader.from_buffer(blob)
    assert [DTBReserveEntry(0x48000000, 0x100000)] == read_reserve_map(
        blob, header
    )

    blob = DTBTests.mk_minimal_blob()
    header = DTBHeader.from_buffer(blob)
    assert [] == read_reserve_map(blob, header)

    blob = (
        DTBWriter()
        .reserve(0x1000, 0x10)
        .reserve(0x2000, 0x20)
        .begin_node("")
        .end_node()
        .end()
        .blob()
    )
    header = DTBHeader.from_buffer(blob)
    assert [
        DTBReserveEntry(0x1000, 0x10),
        DTBReserveEntry(0x2000, 0x20),
    ] == read_reserve_map(blob, header)


def test_read_reserve_map_unterminated() -> None:
    blob = DTBTests.mk_minimal_blob()
    valid = DTBHeader.from_buffer(blob)
    # Reservation map starting 8 bytes before the end of the blob.
    header = DTBHeader(
        FDT_MAGIC,
        valid.totalsize,
        valid.off_dt_struct,
        valid.off_dt_strings,
        valid.totalsize - 8,
        17,
        16,
        0,
        valid.size_dt_strings,
        valid.size_dt_struct,
    )
    with pytest.raises(DTBBadStructureError):
        read_reserve_map(blob, header)
