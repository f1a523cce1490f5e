# Copyright (c) 2023 Christophe Dufaza <chris@openmarl.org>
#
# SPDX-License-Identifier: Apache-2.0

"""Devicetree blob header.

The header is the fixed 40 bytes prologue of a DTB (DTSpec 5.2),
ten big-endian 32-bit fields:

    magic, totalsize, off_dt_struct, off_dt_strings, off_mem_rsvmap,
    version, last_comp_version, boot_cpuid_phys,
    size_dt_strings, size_dt_struct

Validation happens before any access to the structure block.

Unit tests and examples: tests/test_dtblob_header.py
"""


from typing import List, NamedTuple, Union

import enum
import logging
import struct

from dtblob.errors import (
    DTBTruncatedError,
    DTBBadMagicError,
    DTBUnsupportedVersionError,
    DTBBadStructureError,
)


_log = logging.getLogger(__name__)

Buffer = Union[bytes, bytearray, memoryview]
"""Types of blob buffers we can decode."""

FDT_MAGIC = 0xD00DFEED
"""FDT magic, big-endian."""

FDT_VERSION = 17
"""The only supported structure version."""

FDT_HEADER_SIZE = 40
"""Size in bytes of the header."""


class DTBToken(enum.IntEnum):
    """Structure block tokens (DTSpec 5.4.1)."""

    BEGIN_NODE = 0x00000001
    END_NODE = 0x00000002
    PROP = 0x00000003
    NOP = 0x00000004
    END = 0x00000009


class DTBReserveEntry(NamedTuple):
    """Memory reservation block entry (DTSpec 5.3)."""

    address: int
    size: int


def peek_total_size(buf: Buffer) -> int:
    """Extract the declared total size of a blob from its first two words.

    This is meant for callers that must size a buffer before reading
    the rest of the blob: only the magic is checked, this is NOT
    a substitute for DTBHeader.from_buffer().

    Args:
        buf: At least the first 8 bytes of a blob.

    Returns:
        The header's totalsize field.

    Raises:
        DTBTruncatedError: Fewer than 8 bytes.
        DTBBadMagicError: Not a DTB.
    """
    if len(buf) < 8:
        raise DTBTruncatedError(
            f"need 8 bytes to peek total size, got {len(buf)}"
        )
    magic, totalsize = struct.unpack_from(">2I", buf, 0)
    if magic != FDT_MAGIC:
        raise DTBBadMagicError(f"bad magic: {magic:#010x}")
    return int(totalsize)


class DTBHeader:
    """Validated devicetree blob header."""

    _FMT = ">10I"

    _magic: int
    _totalsize: int
    _off_dt_struct: int
    _off_dt_strings: int
    _off_mem_rsvmap: int
    _version: int
    _last_comp_version: int
    _boot_cpuid_phys: int
    _size_dt_strings: int
    _size_dt_struct: int

    @classmethod
    def from_buffer(cls, buf: Buffer) -> "DTBHeader":
        """Read and validate the header of a blob.

        Checks, in order:

        - the buffer is at least as long as the header
        - the magic is 0xd00dfeed
        - the buffer is at least as long as the declared total size
        - the structure version is 17

        Args:
            buf: The whole blob.

        Returns:
            The validated header.

        Raises:
            DTBTruncatedError: Buffer too short.
            DTBBadMagicError: Wrong magic.
            DTBUnsupportedVersionError: Version is not 17.
        """
        if len(buf) < FDT_HEADER_SIZE:
            raise DTBTruncatedError(
                f"buffer too small for header: {len(buf)} bytes"
            )
        header = cls(*struct.unpack_from(cls._FMT, buf, 0))
        if header.magic != FDT_MAGIC:
            raise DTBBadMagicError(f"bad magic: {header.magic:#010x}")
        if len(buf) < header.totalsize:
            raise DTBTruncatedError(
                f"buffer ({len(buf)} bytes) shorter than total size "
                f"({header.totalsize} bytes)"
            )
        if header.version != FDT_VERSION:
            raise DTBUnsupportedVersionError(
                f"unsupported version: {header.version}"
            )
        _log.debug("%r", header)
        return header

    def __init__(
        self,
        magic: int,
        totalsize: int,
        off_dt_struct: int,
        off_dt_strings: int,
        off_mem_rsvmap: int,
        version: int,
        last_comp_version: int,
        boot_cpuid_phys: int,
        size_dt_strings: int,
        size_dt_struct: int,
    ) -> None:
        """Initialize header from raw field values.

        No validation happens here, see from_buffer().
        """
        self._magic = magic
        self._totalsize = totalsize
        self._off_dt_struct = off_dt_struct
        self._off_dt_strings = off_dt_strings
        self._off_mem_rsvmap = off_mem_rsvmap
        self._version = version
        self._last_comp_version = last_comp_version
        self._boot_cpuid_phys = boot_cpuid_phys
        self._size_dt_strings = size_dt_strings
        self._size_dt_struct = size_dt_struct

    @property
    def magic(self) -> int:
        """Blob magic."""
        return self._magic

    @property
    def totalsize(self) -> int:
        """Declared total size of the blob in bytes."""
        return self._totalsize

    @property
    def off_dt_struct(self) -> int:
        """Offset of the structure block."""
        return self._off_dt_struct

    @property
    def off_dt_strings(self) -> int:
        """Offset of the strings block."""
        return self._off_dt_strings

    @property
    def off_mem_rsvmap(self) -> int:
        """Offset of the memory reservation block."""
        return self._off_mem_rsvmap

    @property
    def version(self) -> int:
        """Structure version."""
        return self._version

    @property
    def last_comp_version(self) -> int:
        """Lowest version this blob is backwards compatible with."""
        return self._last_comp_version

    @property
    def boot_cpuid_phys(self) -> int:
        """Physical ID of the boot CPU."""
        return self._boot_cpuid_phys

    @property
    def size_dt_strings(self) -> int:
        """Size of the strings block."""
        return self._size_dt_strings

    @property
    def size_dt_struct(self) -> int:
        """Size of the structure block."""
        return self._size_dt_struct

    @property
    def end_dt_struct(self) -> int:
        """Offset right past the structure block."""
        return self._off_dt_struct + self._size_dt_struct

    @property
    def end_dt_strings(self) -> int:
        """Offset right past the strings block."""
        return self._off_dt_strings + self._size_dt_strings

    def check_blocks(self) -> None:
        """Check the structure and strings blocks lie within the blob.

        Raises:
            DTBBadStructureError: A block overflows the declared total size.
        """
        if self.end_dt_struct > self._totalsize:
            raise DTBBadStructureError(
                f"structure block [{self._off_dt_struct:#x}, "
                f"{self.end_dt_struct:#x}) overflows blob"
            )
        if self.end_dt_strings > self._totalsize:
            raise DTBBadStructureError(
                f"strings block [{self._off_dt_strings:#x}, "
                f"{self.end_dt_strings:#x}) overflows blob"
            )

    def __repr__(self) -> str:
        return (
            f"DTB v{self._version} ({self._totalsize} bytes), "
            f"struct:{self._off_dt_struct:#x}+{self._size_dt_struct:#x}, "
            f"strings:{self._off_dt_strings:#x}+{self._size_dt_strings:#x}, "
            f"rsvmap:{self._off_mem_rsvmap:#x}"
        )


def read_reserve_map(buf: Buffer, header: DTBHeader) -> List[DTBReserveEntry]:
    """Decode the memory reservation block.

    Entries are pairs of 64-bit big-endian integers (address, size),
    the list is terminated by an entry with both fields set to zero.

    Args:
        buf: The whole blob.
        header: Its validated header.

    Returns:
        The reserved memory regions, terminator excluded.

    Raises:
        DTBBadStructureError: The map is not terminated within the blob.
    """
    entries: List[DTBReserveEntry] = []
    offset = header.off_mem_rsvmap
    while True:
        if offset + 16 > header.totalsize:
            raise DTBBadStructureError(
                f"unterminated memory reservation map at {offset:#x}"
            )
        address, size = struct.unpack_from(">2Q", buf, offset)
        offset += 16
        if address == 0 and size == 0:
            return entries
        entries.append(DTBReserveEntry(address, size))
