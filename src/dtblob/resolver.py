# Copyright (c) 2023 Christophe Dufaza <chris@openmarl.org>
#
# SPDX-License-Identifier: Apache-2.0

"""Devicetree deferred properties resolver.

Second pass over a built tree, which decodes the properties
the first pass could not:

- reg: (address, size) pairs, widths given by the parent's effective
  "#address-cells" and "#size-cells"
- ranges: (child address, parent address, size) triples, the child side
  and size widths given by the node's own effective cells, the parent side
  width by the parent's effective "#address-cells"
- interrupts: groups of "#interrupt-cells" words, where the cells count
  may come from an interrupt parent referred to by phandle
- clocks, assigned-clocks: (phandle, specifier...) groups, each group's
  arity given by the "#clock-cells" of the node the phandle refers to,
  which is commonly defined later in the blob

Lookups are either tree-wide (phandles) or ancestor-relative (cells),
never sibling-relative: the walk order does not matter.

Unit tests and examples: tests/test_dtblob_resolver.py
"""


from typing import List, Sequence, Tuple

import logging
import struct

from dtblob.errors import (
    DTBError,
    DTBBadStructureError,
    DTBMissingCellsError,
    DTBUnsupportedCellsError,
)
from dtblob.model import (
    DTBNode,
    DTBPropTag,
    DTBRange,
    DTBRegister,
    DTBUnresolved,
    DTBValue,
)


_log = logging.getLogger(__name__)


class DTBResolver:
    """Resolve the deferred properties of a tree."""

    MAX_CELLS_LIMIT = 4
    """Upper bound for the configurable cells per field (128-bit fields)."""

    _root: DTBNode

    # Maximum number of 32-bit cells per reg/ranges field.
    _max_cells: int

    _nresolved: int

    def __init__(self, root: DTBNode, max_cells: int = 2) -> None:
        """Initialize resolver.

        Args:
            root: The root of a tree fresh from the builder.
            max_cells: Maximum number of cells per address or size field,
              defaults to 2 (64-bit fields).

        Raises:
            ValueError: Invalid max_cells.
        """
        if not 1 <= max_cells <= DTBResolver.MAX_CELLS_LIMIT:
            raise ValueError(f"max_cells: {max_cells}")
        self._root = root
        self._max_cells = max_cells
        self._nresolved = 0

    @property
    def max_cells(self) -> int:
        """Maximum number of cells per reg/ranges field."""
        return self._max_cells

    def resolve(self) -> None:
        """Resolve all deferred properties in place.

        Raises:
            DTBBadStructureError: A value does not divide into its groups.
            DTBMissingCellsError: A cell width or phandle target is missing.
            DTBUnsupportedCellsError: A cell width exceeds max_cells.
        """
        for node in self._root.walk():
            for prop in node.props:
                unres = prop.value
                if not isinstance(unres, DTBUnresolved):
                    continue
                try:
                    prop.resolve_with(self.resolve_value(node, unres))
                except DTBError as e:
                    _log.debug("%s: %s: %s", node.path, prop.name, e.msg)
                    raise
                self._nresolved += 1
        _log.debug("resolved %d properties", self._nresolved)

    def resolve_value(self, node: DTBNode, unres: DTBUnresolved) -> DTBValue:
        """Decode a deferred payload.

        Args:
            node: The node the property belongs to.
            unres: The deferred payload.

        Returns:
            The resolved value.
        """
        if unres.tag is DTBPropTag.REG:
            return self.resolve_reg(node, unres.raw)
        if unres.tag is DTBPropTag.RANGES:
            return self.resolve_ranges(node, unres.raw)
        if unres.tag is DTBPropTag.INTERRUPTS:
            return self.resolve_interrupts(node, unres.raw)
        if unres.tag in (DTBPropTag.CLOCKS, DTBPropTag.ASSIGNED_CLOCKS):
            return self.resolve_clocks(node, unres.raw, unres.tag.value)
        raise ValueError(f"not a deferred property: {unres.tag}")

    def resolve_reg(self, node: DTBNode, raw: bytes) -> List[DTBRegister]:
        """Decode a "reg" value with the parent's cell widths."""
        if not node.parent:
            raise DTBMissingCellsError(f"{node.path}: reg on root node")
        address_cells = node.parent.address_cells
        size_cells = node.parent.size_cells
        if address_cells is None or size_cells is None:
            raise DTBMissingCellsError(
                f"{node.path}: reg: missing #address-cells or #size-cells"
            )
        return [
            DTBRegister(*fields)
            for fields in self._read_fields(
                node, "reg", raw, (address_cells, size_cells)
            )
        ]

    def resolve_ranges(self, node: DTBNode, raw: bytes) -> List[DTBRange]:
        """Decode a "ranges" value.

        Child addresses and sizes use this node's cell widths,
        parent addresses the parent's "#address-cells".
        """
        address_cells = node.address_cells
        size_cells = node.size_cells
        parent_address_cells = (
            node.parent.address_cells if node.parent else None
        )
        if (
            address_cells is None
            or size_cells is None
            or parent_address_cells is None
        ):
            raise DTBMissingCellsError(
                f"{node.path}: ranges: missing #address-cells or #size-cells"
            )
        return [
            DTBRange(*fields)
            for fields in self._read_fields(
                node,
                "ranges",
                raw,
                (address_cells, parent_address_cells, size_cells),
            )
        ]

    def resolve_interrupts(
        self, node: DTBNode, raw: bytes
    ) -> List[Tuple[int, ...]]:
        """Decode an "interrupts" value with the effective interrupt cells."""
        interrupt_cells = node.interrupt_cells
        if interrupt_cells is None:
            raise DTBMissingCellsError(
                f"{node.path}: interrupts: no #interrupt-cells "
                "through the interrupt parent chain"
            )
        cells = _read_cells(node, "interrupts", raw)
        if interrupt_cells == 0:
            if cells:
                raise DTBBadStructureError(
                    f"{node.path}: interrupts: #interrupt-cells is 0"
                )
            return []
        if len(cells) % interrupt_cells:
            raise DTBBadStructureError(
                f"{node.path}: interrupts: {len(cells)} cells is not "
                f"a multiple of #interrupt-cells ({interrupt_cells})"
            )
        return [
            tuple(cells[i : i + interrupt_cells])
            for i in range(0, len(cells), interrupt_cells)
        ]

    def resolve_clocks(
        self, node: DTBNode, raw: bytes, name: str = "clocks"
    ) -> List[Tuple[int, ...]]:
        """Decode a "clocks" or "assigned-clocks" value.

        Each group is a phandle followed by as many specifier cells
        as the "#clock-cells" of the node it refers to.
        """
        cells = _read_cells(node, name, raw)
        groups: List[Tuple[int, ...]] = []
        i = 0
        while i < len(cells):
            phandle = cells[i]
            provider = node.find_by_phandle(phandle)
            if not provider:
                raise DTBMissingCellsError(
                    f"{node.path}: {name}: unknown phandle {phandle:#x}"
                )
            clock_cells = provider.get_prop(DTBPropTag.CLOCK_CELLS)
            if not isinstance(clock_cells, int):
                raise DTBMissingCellsError(
                    f"{node.path}: {name}: {provider.path} "
                    "has no #clock-cells"
                )
            end = i + 1 + clock_cells
            if end > len(cells):
                raise DTBBadStructureError(
                    f"{node.path}: {name}: truncated specifier "
                    f"for {provider.path}"
                )
            groups.append(tuple(cells[i:end]))
            i = end
        return groups

    def _read_fields(
        self,
        node: DTBNode,
        name: str,
        raw: bytes,
        widths: Sequence[int],
    ) -> List[Tuple[int, ...]]:
        # Read tuples of big integers, one per field width (in cells).
        for width in widths:
            if width > self._max_cells:
                raise DTBUnsupportedCellsError(
                    f"{node.path}: {name}: {width} cells per field "
                    f"(max {self._max_cells})"
                )
        cells = _read_cells(node, name, raw)
        ncells = sum(widths)
        if ncells == 0:
            if cells:
                raise DTBBadStructureError(
                    f"{node.path}: {name}: zero cells per entry"
                )
            return []
        if len(cells) % ncells:
            raise DTBBadStructureError(
                f"{node.path}: {name}: {len(cells)} cells is not "
                f"a multiple of {ncells}"
            )

        tuples: List[Tuple[int, ...]] = []
        i = 0
        while i < len(cells):
            fields: List[int] = []
            for width in widths:
                field = 0
                for cell in cells[i : i + width]:
                    field = (field << 32) | cell
                fields.append(field)
                i += width
            tuples.append(tuple(fields))
        return tuples


def _read_cells(node: DTBNode, name: str, raw: bytes) -> List[int]:
    if len(raw) % 4:
        raise DTBBadStructureError(
            f"{node.path}: {name}: {len(raw)} bytes is not "
            "a whole number of cells"
        )
    return list(struct.unpack(f">{len(raw) // 4}I", raw))
