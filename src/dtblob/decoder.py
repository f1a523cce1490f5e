# Copyright (c) 2023 Christophe Dufaza <chris@openmarl.org>
#
# SPDX-License-Identifier: Apache-2.0

"""Devicetree property decoder.

Decode raw property values into typed values, by exact property name
match against a fixed table:

- cell counts and phandles: 32-bit integers
- frequencies and I/O widths: 32-bit or 64-bit integers
- status: DTBStatus
- compatible strings and names: string lists
- pin control and clock rates: 32-bit integer lists
- reg, ranges, interrupts, clocks, assigned-clocks: DTBUnresolved,
  left to the resolver (see dtblob.resolver)

Unrecognized property names are never errors: the raw value
is preserved verbatim.

Unit tests and examples: tests/test_dtblob_decoder.py
"""


from typing import Callable, Dict, List, Union

import struct

from dtblob.errors import DTBBadStructureError, DTBBadValueError
from dtblob.model import (
    DTBProp,
    DTBPropTag,
    DTBStatus,
    DTBUnresolved,
    DTBValue,
)


RawValue = Union[bytes, bytearray, memoryview]


def decode_u32(name: str, value: RawValue) -> int:
    """Decode a 32-bit big-endian integer.

    Raises:
        DTBBadStructureError: The value is not 4 bytes long.
    """
    if len(value) != 4:
        raise DTBBadStructureError(
            f"{name}: expected 4 bytes, got {len(value)}"
        )
    return int(struct.unpack(">I", value)[0])


def decode_u32_or_u64(name: str, value: RawValue) -> int:
    """Decode a 32-bit or 64-bit big-endian integer.

    Raises:
        DTBBadStructureError: The value is neither 4 nor 8 bytes long.
    """
    if len(value) == 4:
        return int(struct.unpack(">I", value)[0])
    if len(value) == 8:
        return int(struct.unpack(">Q", value)[0])
    raise DTBBadStructureError(
        f"{name}: expected 4 or 8 bytes, got {len(value)}"
    )


def decode_u32_list(name: str, value: RawValue) -> List[int]:
    """Decode a sequence of 32-bit big-endian integers.

    Raises:
        DTBBadStructureError: The value length is not a multiple of 4.
    """
    if len(value) % 4:
        raise DTBBadStructureError(
            f"{name}: {len(value)} bytes is not a whole number of cells"
        )
    return list(struct.unpack(f">{len(value) // 4}I", value))


def decode_strings(name: str, value: RawValue) -> List[str]:
    """Decode null-terminated strings packed contiguously.

    No trailing empty string is produced for the last terminator.
    A last string without terminator is kept.

    Strings are decoded as UTF-8, bytes that are not are kept
    as surrogates ("surrogateescape"): s.encode("utf-8", "surrogateescape")
    answers the original bytes.
    """
    del name
    raw = bytes(value)
    if not raw:
        return []
    if raw.endswith(b"\0"):
        raw = raw[:-1]
    return [s.decode("utf-8", "surrogateescape") for s in raw.split(b"\0")]


def decode_status(name: str, value: RawValue) -> DTBStatus:
    """Decode a status string.

    Only the three canonical values are accepted:
    "okay", "disabled", "fail".

    Raises:
        DTBBadValueError: Any other value.
    """
    raw = bytes(value)
    for status in DTBStatus:
        if raw == status.value.encode("ascii") + b"\0":
            return status
    raise DTBBadValueError(f"{name}: invalid status: {raw!r}")


_Decoder = Callable[[str, RawValue], DTBValue]

_DECODERS: Dict[DTBPropTag, _Decoder] = {
    DTBPropTag.ADDRESS_CELLS: decode_u32,
    DTBPropTag.SIZE_CELLS: decode_u32,
    DTBPropTag.INTERRUPT_CELLS: decode_u32,
    DTBPropTag.CLOCK_CELLS: decode_u32,
    DTBPropTag.REG_SHIFT: decode_u32,
    DTBPropTag.PHANDLE: decode_u32,
    DTBPropTag.INTERRUPT_PARENT: decode_u32,
    DTBPropTag.STATUS: decode_status,
    DTBPropTag.COMPATIBLE: decode_strings,
    DTBPropTag.CLOCK_NAMES: decode_strings,
    DTBPropTag.CLOCK_OUTPUT_NAMES: decode_strings,
    DTBPropTag.INTERRUPT_NAMES: decode_strings,
    DTBPropTag.PINCTRL_NAMES: decode_strings,
    DTBPropTag.CLOCK_FREQUENCY: decode_u32_or_u64,
    DTBPropTag.REG_IO_WIDTH: decode_u32_or_u64,
    DTBPropTag.PINCTRL_0: decode_u32_list,
    DTBPropTag.PINCTRL_1: decode_u32_list,
    DTBPropTag.PINCTRL_2: decode_u32_list,
    DTBPropTag.ASSIGNED_CLOCK_RATES: decode_u32_list,
}


def get_tag(name: str) -> DTBPropTag:
    """Map a property name to its kind.

    Args:
        name: The property name.

    Returns:
        The property kind, DTBPropTag.UNKNOWN for unrecognized names.
    """
    try:
        return DTBPropTag(name)
    except ValueError:
        return DTBPropTag.UNKNOWN


def decode_prop(name: str, value: RawValue) -> DTBProp:
    """Decode a property.

    Args:
        name: The property name.
        value: The raw value (may be borrowed from the blob).

    Returns:
        A property with a decoded value, a deferred payload,
        or the raw value for unrecognized names.

    Raises:
        DTBBadStructureError: The value length does not match its type.
        DTBBadValueError: Invalid status.
    """
    tag = get_tag(name)
    if tag is DTBPropTag.UNKNOWN:
        return DTBProp(name, tag, bytes(value))
    if tag.deferred:
        return DTBProp(name, tag, DTBUnresolved(tag, bytes(value)))
    return DTBProp(name, tag, _DECODERS[tag](name, value))
