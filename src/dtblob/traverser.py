# Copyright (c) 2023 Christophe Dufaza <chris@openmarl.org>
#
# SPDX-License-Identifier: Apache-2.0

"""Devicetree blob token traverser.

A cursor over the structure block which decodes one token per call
and answers one event:

- DTBEventBeginNode: a node starts, with its name
- DTBEventEndNode: the current node ends
- DTBEventProp: a property of the current node, name and raw value
- DTBEventEnd: the structure block has been walked through

The traverser does not build anything: property values are memoryview
slices of the input buffer, and the state between calls is the byte offset
and the open nodes depth. This permits to scan a blob (e.g. for a single
property) without materializing the tree.

    trav = DTBTraverser(blob)
    for event in trav:
        if isinstance(event, DTBEventProp) and event.name == "phandle":
            ...

Unit tests and examples: tests/test_dtblob_traverser.py
"""


from typing import Iterator, Optional

import logging
import struct

from dtblob.errors import DTBError, DTBBadStructureError
from dtblob.header import Buffer, DTBHeader, DTBToken


_log = logging.getLogger(__name__)


class DTBEvent:
    """Base for structure block events."""

    def __eq__(self, other: object) -> bool:
        return type(other) is type(self)

    def __hash__(self) -> int:
        return hash(type(self))

    def __repr__(self) -> str:
        return self.__class__.__name__


class DTBEventBeginNode(DTBEvent):
    """A node begins."""

    _name: str

    def __init__(self, name: str) -> None:
        """New event.

        Args:
            name: The node name, empty for the root node.
        """
        self._name = name

    @property
    def name(self) -> str:
        """The node name, including its unit address if any."""
        return self._name

    def __eq__(self, other: object) -> bool:
        if isinstance(other, DTBEventBeginNode):
            return self._name == other._name
        return False

    def __hash__(self) -> int:
        return hash((type(self), self._name))

    def __repr__(self) -> str:
        return f"BeginNode({self._name!r})"


class DTBEventEndNode(DTBEvent):
    """The current node ends."""


class DTBEventProp(DTBEvent):
    """A property of the current node."""

    _name: str
    _value: memoryview

    def __init__(self, name: str, value: memoryview) -> None:
        """New event.

        Args:
            name: The property name, from the strings block.
            value: The raw value, borrowed from the blob.
        """
        self._name = name
        self._value = value

    @property
    def name(self) -> str:
        """The property name."""
        return self._name

    @property
    def value(self) -> memoryview:
        """The raw property value (borrowed from the blob buffer)."""
        return self._value

    def __eq__(self, other: object) -> bool:
        if isinstance(other, DTBEventProp):
            return (self._name == other._name) and (
                self._value == other._value
            )
        return False

    def __hash__(self) -> int:
        return hash((type(self), self._name, bytes(self._value)))

    def __repr__(self) -> str:
        return f"Prop({self._name!r}, {bytes(self._value)!r})"


class DTBEventEnd(DTBEvent):
    """End of the structure block."""


class DTBTraverser:
    """Pull iterator over the structure block tokens.

    Each call to next_event() decodes exactly one structural token
    (NOP tokens are skipped), nothing is buffered ahead.

    Once DTBEventEnd has been answered, next_event() keeps answering it.
    Once an error has been raised, next_event() keeps raising it.
    """

    # Blob contents: bytes-like supporting find().
    _data: Buffer

    # Zero-copy view of _data.
    _view: memoryview

    _header: DTBHeader

    # Current offset within the structure block.
    _offset: int

    # Number of open nodes.
    _depth: int

    # Whether the root node has begun.
    _started: bool

    # Whether END has been reached.
    _ended: bool

    _error: Optional[DTBError]

    def __init__(self, buf: Buffer) -> None:
        """Initialize a traverser over a blob.

        The header is validated here, before any access
        to the structure block.

        Args:
            buf: The whole blob. Bytes and bytearrays are borrowed,
              other buffers are copied once.

        Raises:
            DTBTruncatedError: Buffer too short.
            DTBBadMagicError: Not a DTB.
            DTBUnsupportedVersionError: Version is not 17.
            DTBBadStructureError: Blocks overflow the blob.
        """
        if isinstance(buf, (bytes, bytearray)):
            self._data = buf
        else:
            self._data = bytes(buf)
        self._view = memoryview(self._data)
        self._header = DTBHeader.from_buffer(self._data)
        self._header.check_blocks()
        self._offset = self._header.off_dt_struct
        self._depth = 0
        self._started = False
        self._ended = False
        self._error = None

    @property
    def header(self) -> DTBHeader:
        """The validated header."""
        return self._header

    @property
    def offset(self) -> int:
        """Offset of the next token to decode."""
        return self._offset

    @property
    def depth(self) -> int:
        """Number of nodes currently open."""
        return self._depth

    def next_event(self) -> DTBEvent:
        """Decode the next structural token.

        Returns:
            The next event.

        Raises:
            DTBBadStructureError: The token stream violates the format.
        """
        if self._error:
            raise self._error
        if self._ended:
            return DTBEventEnd()
        try:
            return self._next_event()
        except DTBError as e:
            self._error = e
            raise

    def __iter__(self) -> Iterator[DTBEvent]:
        """Iterate over the events up to, but excluding, DTBEventEnd."""
        while True:
            event = self.next_event()
            if isinstance(event, DTBEventEnd):
                return
            yield event

    def _next_event(self) -> DTBEvent:
        if self._started and self._depth == 0:
            # Root node has ended: expect END, right at the end
            # of the structure block.
            token = self._token()
            if token != DTBToken.END:
                raise DTBBadStructureError(
                    f"expected END after root node, got {token.name} "
                    f"at {self._offset - 4:#x}"
                )
            if self._offset != self._header.end_dt_struct:
                raise DTBBadStructureError(
                    f"END at {self._offset - 4:#x}, structure block ends "
                    f"at {self._header.end_dt_struct:#x}"
                )
            self._ended = True
            _log.debug("END at %#x", self._offset - 4)
            return DTBEventEnd()

        while True:
            token = self._token()

            if not self._started and token != DTBToken.BEGIN_NODE:
                raise DTBBadStructureError(
                    f"expected root BEGIN_NODE, got {token.name}"
                )

            if token == DTBToken.BEGIN_NODE:
                self._started = True
                self._depth += 1
                name = self._cstring()
                self._align()
                return DTBEventBeginNode(name)

            if token == DTBToken.END_NODE:
                self._depth -= 1
                return DTBEventEndNode()

            if token == DTBToken.PROP:
                return self._prop()

            if token == DTBToken.NOP:
                continue

            # END while nodes are still open.
            raise DTBBadStructureError(
                f"unexpected END at {self._offset - 4:#x}, depth {self._depth}"
            )

    def _prop(self) -> DTBEventProp:
        self._check_avail(8)
        length, nameoff = struct.unpack_from(">2I", self._data, self._offset)
        self._offset += 8

        name = self._strings_cstring(nameoff)

        self._check_avail(length)
        value = self._view[self._offset : self._offset + length]
        self._offset += length
        self._align()
        return DTBEventProp(name, value)

    def _token(self) -> DTBToken:
        self._check_avail(4)
        (raw,) = struct.unpack_from(">I", self._data, self._offset)
        try:
            token = DTBToken(raw)
        except ValueError as e:
            raise DTBBadStructureError(
                f"invalid token {raw:#010x} at {self._offset:#x}"
            ) from e
        self._offset += 4
        return token

    def _cstring(self) -> str:
        end = self._data.find(b"\0", self._offset, self._header.end_dt_struct)
        if end < 0:
            raise DTBBadStructureError(
                f"unterminated node name at {self._offset:#x}"
            )
        raw = self._data[self._offset : end]
        self._offset = end + 1
        return self._decode_name(raw)

    def _strings_cstring(self, nameoff: int) -> str:
        if nameoff >= self._header.size_dt_strings:
            raise DTBBadStructureError(
                f"property name offset {nameoff:#x} outside strings block"
            )
        start = self._header.off_dt_strings + nameoff
        end = self._data.find(b"\0", start, self._header.end_dt_strings)
        if end < 0:
            raise DTBBadStructureError(
                f"unterminated property name at {start:#x}"
            )
        return self._decode_name(self._data[start:end])

    def _align(self) -> None:
        self._offset = (self._offset + 3) & ~3

    def _check_avail(self, size: int) -> None:
        if self._offset + size > self._header.end_dt_struct:
            raise DTBBadStructureError(
                f"{size} bytes at {self._offset:#x} overflow structure block"
            )

    @staticmethod
    def _decode_name(raw: Buffer) -> str:
        # Lossless: bytes that are not UTF-8 are kept as surrogates.
        return bytes(raw).decode("utf-8", "surrogateescape")
