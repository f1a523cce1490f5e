# Copyright (c) 2023 Christophe Dufaza <chris@openmarl.org>
#
# SPDX-License-Identifier: Apache-2.0

"""Flattened devicetree blob (DTB) decoder.

    tree = dtblob.parse(blob)
    uart = tree["/pl011@9000000"]
    uart.get_prop(DTBPropTag.REG)
"""

from dtblob.errors import (
    DTBError,
    DTBTruncatedError,
    DTBBadMagicError,
    DTBUnsupportedVersionError,
    DTBBadStructureError,
    DTBMissingCellsError,
    DTBUnsupportedCellsError,
    DTBBadValueError,
)
from dtblob.header import DTBHeader, DTBReserveEntry, peek_total_size
from dtblob.traverser import (
    DTBTraverser,
    DTBEvent,
    DTBEventBeginNode,
    DTBEventEndNode,
    DTBEventProp,
    DTBEventEnd,
)
from dtblob.model import (
    DTBStatus,
    DTBPropTag,
    DTBRegister,
    DTBRange,
    DTBProp,
    DTBNode,
    DTBTree,
)
from dtblob.parser import parse

__all__ = [
    "DTBError",
    "DTBTruncatedError",
    "DTBBadMagicError",
    "DTBUnsupportedVersionError",
    "DTBBadStructureError",
    "DTBMissingCellsError",
    "DTBUnsupportedCellsError",
    "DTBBadValueError",
    "DTBHeader",
    "DTBReserveEntry",
    "peek_total_size",
    "DTBTraverser",
    "DTBEvent",
    "DTBEventBeginNode",
    "DTBEventEndNode",
    "DTBEventProp",
    "DTBEventEnd",
    "DTBStatus",
    "DTBPropTag",
    "DTBRegister",
    "DTBRange",
    "DTBProp",
    "DTBNode",
    "DTBTree",
    "parse",
]
