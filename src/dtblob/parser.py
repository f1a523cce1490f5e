# Copyright (c) 2023 Christophe Dufaza <chris@openmarl.org>
#
# SPDX-License-Identifier: Apache-2.0

"""Devicetree blob parser.

Decoding pipeline:

    bytes -> header -> traverser -> builder (+ decoder) -> resolver -> tree

Either the whole pipeline succeeds and answers a tree where all
properties are resolved, or it fails with a DTBError and nothing
is returned.

Unit tests and examples: tests/test_dtblob_parser.py
"""


import logging

from dtblob.header import Buffer, read_reserve_map
from dtblob.traverser import DTBTraverser
from dtblob.builder import DTBTreeBuilder
from dtblob.resolver import DTBResolver
from dtblob.model import DTBTree


_log = logging.getLogger(__name__)


def parse(buf: Buffer, max_cells: int = 2) -> DTBTree:
    """Decode a devicetree blob.

    Args:
        buf: The whole blob.
        max_cells: Maximum number of 32-bit cells per reg/ranges field.
          Defaults to 2 (64-bit addresses and sizes).

    Returns:
        The decoded tree.

    Raises:
        DTBTruncatedError: Buffer shorter than the header or total size.
        DTBBadMagicError: Not a devicetree blob.
        DTBUnsupportedVersionError: Version is not 17.
        DTBBadStructureError: Malformed structure block or value layout.
        DTBMissingCellsError: Missing cell widths or phandle targets.
        DTBUnsupportedCellsError: Cell widths above max_cells.
        DTBBadValueError: Invalid value for a recognized property.
    """
    traverser = DTBTraverser(buf)
    header = traverser.header
    reserve_map = read_reserve_map(buf, header)

    root = DTBTreeBuilder(traverser).build()
    DTBResolver(root, max_cells=max_cells).resolve()

    tree = DTBTree(header, reserve_map, root)
    _log.debug("parsed %d nodes", len(tree))
    return tree
