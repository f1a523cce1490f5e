# Copyright (c) 2023 Christophe Dufaza <chris@openmarl.org>
#
# SPDX-License-Identifier: Apache-2.0

"""Devicetree tree builder.

Recursive-descent consumer of a token traverser:
materializes the node tree in blob order, decoding properties
as they appear, and chaining each node's cell context to its parent's.

Properties that need the whole tree to be decoded are left unresolved,
see dtblob.resolver.

Unit tests and examples: tests/test_dtblob_builder.py
"""


from typing import cast, Optional

import logging

from dtblob.errors import DTBError, DTBBadStructureError
from dtblob.traverser import (
    DTBTraverser,
    DTBEventBeginNode,
    DTBEventEndNode,
    DTBEventProp,
    DTBEventEnd,
)
from dtblob.decoder import decode_prop
from dtblob.model import DTBNode, DTBPropTag


_log = logging.getLogger(__name__)


class DTBTreeBuilder:
    """Build an unresolved node tree from a token traverser."""

    MAX_DEPTH = 256
    """Nesting limit, deeper blobs are rejected as malformed."""

    _traverser: DTBTraverser

    # Number of nodes and properties built so far.
    _nnodes: int
    _nprops: int

    def __init__(self, traverser: DTBTraverser) -> None:
        """Initialize builder.

        Args:
            traverser: A traverser that has not produced any event yet.
        """
        self._traverser = traverser
        self._nnodes = 0
        self._nprops = 0

    def build(self) -> DTBNode:
        """Consume the traverser and build the tree.

        Returns:
            The root node. Deferred properties hold DTBUnresolved payloads.

        Raises:
            DTBBadStructureError: The token stream is malformed.
            DTBBadValueError: A property value is invalid.
        """
        event = self._traverser.next_event()
        if not isinstance(event, DTBEventBeginNode):
            raise DTBBadStructureError(f"expected root node, got {event!r}")

        root = self._build_node(event.name, None, 1)

        event = self._traverser.next_event()
        if isinstance(event, DTBEventEnd):
            _log.debug(
                "built %d nodes, %d properties", self._nnodes, self._nprops
            )
            return root
        raise DTBBadStructureError(f"trailing {event!r} after root node")

    def _build_node(
        self, name: str, parent: Optional[DTBNode], depth: int
    ) -> DTBNode:
        if depth > DTBTreeBuilder.MAX_DEPTH:
            raise DTBBadStructureError(f"nodes nested deeper than {depth - 1}")

        node = DTBNode(name, parent)
        self._nnodes += 1

        while True:
            event = self._traverser.next_event()

            if isinstance(event, DTBEventBeginNode):
                child = self._build_node(event.name, node, depth + 1)
                node._children.append(child)  # pylint: disable=protected-access

            elif isinstance(event, DTBEventProp):
                try:
                    prop = decode_prop(event.name, event.value)
                except DTBError:
                    _log.debug("%s: failed to decode %s", node.path, event.name)
                    raise

                # The node's own cells apply to its children,
                # the first occurrence wins as for get_prop().
                if prop.tag is DTBPropTag.ADDRESS_CELLS:
                    if node.get_prop(prop.tag) is None:
                        node.context.address_cells = cast(int, prop.value)
                elif prop.tag is DTBPropTag.SIZE_CELLS:
                    if node.get_prop(prop.tag) is None:
                        node.context.size_cells = cast(int, prop.value)

                node._props.append(prop)  # pylint: disable=protected-access
                self._nprops += 1

            elif isinstance(event, DTBEventEndNode):
                return node

            else:
                raise DTBBadStructureError(
                    f"unexpected {event!r} within node {node.path}"
                )
