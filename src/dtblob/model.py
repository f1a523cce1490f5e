# Copyright (c) 2023 Christophe Dufaza <chris@openmarl.org>
#
# SPDX-License-Identifier: Apache-2.0

"""Devicetree blob model.

Rationale:

- a tree of nodes and typed properties, created in one parse call
  and owned as a unit by a DTBTree
- property values are decoded into a closed set of variants,
  properties that depend on information only available once the whole
  tree exists are first held as DTBUnresolved payloads
- nodes know their parent and root (back-references), and expose
  the inherited cell widths and interrupt parents the resolver relies on
- the read-only query interface (find_child(), get_prop(), prop_at(),
  find_by_phandle()) is what views and other consumers use

Implementation notes:

- nodes and properties are created only by the tree builder
  (see dtblob.builder), the resolver only replaces unresolved payloads
  (see DTBProp.resolve_with())
- identity: nodes compare by identity, two trees decoded from the same blob
  are distinct

Unit tests and examples: tests/test_dtblob_model.py
"""


from typing import (
    Iterator,
    List,
    Dict,
    NamedTuple,
    Optional,
    Sequence,
    Set,
    Tuple,
    Union,
)

import enum

from dtblob.header import DTBHeader, DTBReserveEntry


class DTBStatus(enum.Enum):
    """Values of the "status" property (DTSpec 2.3.4)."""

    OKAY = "okay"
    DISABLED = "disabled"
    FAIL = "fail"


class DTBPropTag(enum.Enum):
    """Property kinds the decoder recognizes.

    Values are the property names, except for UNKNOWN which tags
    any property name the decoder does not recognize.
    """

    ADDRESS_CELLS = "#address-cells"
    SIZE_CELLS = "#size-cells"
    INTERRUPT_CELLS = "#interrupt-cells"
    CLOCK_CELLS = "#clock-cells"
    REG_SHIFT = "reg-shift"
    PHANDLE = "phandle"
    INTERRUPT_PARENT = "interrupt-parent"
    STATUS = "status"
    COMPATIBLE = "compatible"
    CLOCK_NAMES = "clock-names"
    CLOCK_OUTPUT_NAMES = "clock-output-names"
    INTERRUPT_NAMES = "interrupt-names"
    PINCTRL_NAMES = "pinctrl-names"
    CLOCK_FREQUENCY = "clock-frequency"
    REG_IO_WIDTH = "reg-io-width"
    REG = "reg"
    RANGES = "ranges"
    INTERRUPTS = "interrupts"
    CLOCKS = "clocks"
    ASSIGNED_CLOCKS = "assigned-clocks"
    PINCTRL_0 = "pinctrl-0"
    PINCTRL_1 = "pinctrl-1"
    PINCTRL_2 = "pinctrl-2"
    ASSIGNED_CLOCK_RATES = "assigned-clock-rates"
    UNKNOWN = None

    @property
    def deferred(self) -> bool:
        """Whether values with this tag are decoded by the resolver."""
        return self in _DEFERRED_TAGS


_DEFERRED_TAGS = frozenset(
    (
        DTBPropTag.REG,
        DTBPropTag.RANGES,
        DTBPropTag.INTERRUPTS,
        DTBPropTag.CLOCKS,
        DTBPropTag.ASSIGNED_CLOCKS,
    )
)


class DTBRegister(NamedTuple):
    """Address of a node resource (DTSpec 2.3.6 reg).

    A (address, size) pair, within the address space defined
    by the parent bus. The size is zero when the parent's
    "#size-cells" is zero.
    """

    address: int
    size: int

    @property
    def tail(self) -> int:
        """The last address accessible through this register."""
        if self.size > 0:
            return self.address + self.size - 1
        return self.address

    def __repr__(self) -> str:
        return f"addr:{hex(self.address)}, size:{hex(self.size)}"


class DTBRange(NamedTuple):
    """Address translation between a bus and its parent (DTSpec 2.3.8 ranges)."""

    child_addr: int
    parent_addr: int
    size: int

    def __repr__(self) -> str:
        return (
            f"child:{hex(self.child_addr)}, parent:{hex(self.parent_addr)}, "
            f"size:{hex(self.size)}"
        )


class DTBUnresolved:
    """Deferred payload of a property the resolver has to decode."""

    _tag: DTBPropTag
    _raw: bytes

    def __init__(self, tag: DTBPropTag, raw: bytes) -> None:
        """New deferred payload.

        Args:
            tag: One of the deferred property kinds.
            raw: The raw value.
        """
        self._tag = tag
        self._raw = raw

    @property
    def tag(self) -> DTBPropTag:
        """The kind of the property to resolve."""
        return self._tag

    @property
    def raw(self) -> bytes:
        """The raw value."""
        return self._raw

    def __repr__(self) -> str:
        return f"UNRESOLVED({self._tag.value}, {len(self._raw)} bytes)"


DTBValue = Union[
    int,
    DTBStatus,
    List[str],
    List[int],
    List[DTBRegister],
    List[DTBRange],
    List[Tuple[int, ...]],
    bytes,
]
"""Resolved property values."""


class DTBProp:
    """Devicetree property: a name and a decoded value."""

    _name: str
    _tag: DTBPropTag
    _value: Union[DTBValue, DTBUnresolved]

    def __init__(
        self,
        name: str,
        tag: DTBPropTag,
        value: Union[DTBValue, DTBUnresolved],
    ) -> None:
        """New property.

        Args:
            name: The property name, as found in the strings block.
            tag: The property kind.
            value: The decoded value, or the deferred payload.
        """
        self._name = name
        self._tag = tag
        self._value = value

    @property
    def name(self) -> str:
        """The property name."""
        return self._name

    @property
    def tag(self) -> DTBPropTag:
        """The property kind."""
        return self._tag

    @property
    def value(self) -> Union[DTBValue, DTBUnresolved]:
        """The decoded value.

        Only the tree builder and the resolver may observe
        DTBUnresolved payloads: a parsed tree has none.
        """
        return self._value

    @property
    def unresolved(self) -> bool:
        """Whether this property still holds a deferred payload."""
        return isinstance(self._value, DTBUnresolved)

    def resolve_with(self, value: DTBValue) -> None:
        """Replace the deferred payload with its resolved value.

        Args:
            value: The resolved value.

        Raises:
            ValueError: The property is not unresolved.
        """
        if not isinstance(self._value, DTBUnresolved):
            raise ValueError(f"{self._name}: already resolved")
        self._value = value

    def __repr__(self) -> str:
        return f"{self._name}: {self._value!r}"


class DTBCellContext:
    """Address and size cells in effect for a node.

    A context holds the "#address-cells" and "#size-cells" values
    its node defines, if any, and is chained to its parent's context.
    Effective values come from the nearest context that defines them.

    Effective values are worked out on access: once the tree is built,
    they do not depend on whether properties appear before or after
    child nodes in the blob.
    """

    _parent: Optional["DTBCellContext"]
    _address_cells: Optional[int]
    _size_cells: Optional[int]

    def __init__(self, parent: Optional["DTBCellContext"] = None) -> None:
        """New context.

        Args:
            parent: The context to inherit from, None for the root node.
        """
        self._parent = parent
        self._address_cells = None
        self._size_cells = None

    @property
    def parent(self) -> Optional["DTBCellContext"]:
        """The context this one inherits from."""
        return self._parent

    @property
    def address_cells(self) -> Optional[int]:
        """Effective "#address-cells", None if no ancestor sets it."""
        ctx: Optional[DTBCellContext] = self
        while ctx:
            if ctx._address_cells is not None:
                return ctx._address_cells
            ctx = ctx._parent
        return None

    @address_cells.setter
    def address_cells(self, cells: int) -> None:
        self._address_cells = cells

    @property
    def size_cells(self) -> Optional[int]:
        """Effective "#size-cells", None if no ancestor sets it."""
        ctx: Optional[DTBCellContext] = self
        while ctx:
            if ctx._size_cells is not None:
                return ctx._size_cells
            ctx = ctx._parent
        return None

    @size_cells.setter
    def size_cells(self, cells: int) -> None:
        self._size_cells = cells

    def __repr__(self) -> str:
        return f"cells(addr:{self.address_cells}, size:{self.size_cells})"


class DTBNode:
    """Devicetree node.

    The root node has no parent, and is its own root.
    """

    _name: str

    # Properties (blob order).
    _props: List[DTBProp]

    # Child nodes (blob order).
    _children: List["DTBNode"]

    _parent: Optional["DTBNode"]
    _root: "DTBNode"

    # Cell widths this node's children inherit.
    _context: DTBCellContext

    def __init__(self, name: str, parent: Optional["DTBNode"]) -> None:
        """Create a node, initially without properties and children.

        The node is not appended to its parent's children,
        this is the tree builder's job.

        Args:
            name: The node name.
            parent: The parent node, None when creating the root.
        """
        self._name = name
        self._props = []
        self._children = []
        self._parent = parent
        self._root = parent.root if parent else self
        self._context = DTBCellContext(parent.context if parent else None)

    @property
    def name(self) -> str:
        """The node name (DTSpec 2.2.1), empty for the root node."""
        return self._name

    @property
    def unit_name(self) -> str:
        """The unit-name component of the node name."""
        return self._name.split("@")[0]

    @property
    def unit_addr(self) -> Optional[int]:
        """The value of the unit-address component of the node name.

        None if this node has no unit address, or when it is not
        a plain hexadecimal number (e.g. "i2c@1,0").
        """
        _, at, addr = self._name.partition("@")
        if not at:
            return None
        try:
            return int(addr, 16)
        except ValueError:
            return None

    @property
    def path(self) -> str:
        """The path name (DTSpec 2.2.3)."""
        if not self._parent:
            return "/"
        parent_path = self._parent.path
        if parent_path == "/":
            return f"/{self._name}"
        return f"{parent_path}/{self._name}"

    @property
    def props(self) -> Sequence[DTBProp]:
        """The node properties, in blob order."""
        return self._props

    @property
    def children(self) -> Sequence["DTBNode"]:
        """The child nodes, in blob order."""
        return self._children

    @property
    def parent(self) -> Optional["DTBNode"]:
        """The parent node, None for the root node."""
        return self._parent

    @property
    def root(self) -> "DTBNode":
        """The root of the tree this node belongs to."""
        return self._root

    @property
    def context(self) -> DTBCellContext:
        """Cell widths this node defines for its children."""
        return self._context

    @property
    def address_cells(self) -> Optional[int]:
        """Effective "#address-cells" for this node's children."""
        return self._context.address_cells

    @property
    def size_cells(self) -> Optional[int]:
        """Effective "#size-cells" for this node's children."""
        return self._context.size_cells

    @property
    def phandle(self) -> Optional[int]:
        """The node's phandle, if any."""
        phandle = self.get_prop(DTBPropTag.PHANDLE)
        return phandle if isinstance(phandle, int) else None

    @property
    def compatibles(self) -> List[str]:
        """Compatible strings, from most specific to most general."""
        compats = self.get_prop(DTBPropTag.COMPATIBLE)
        return list(compats) if isinstance(compats, list) else []

    @property
    def status(self) -> DTBStatus:
        """The node status.

        A node without "status" property is "okay" (DTSpec 2.3.4).
        """
        status = self.get_prop(DTBPropTag.STATUS)
        return status if isinstance(status, DTBStatus) else DTBStatus.OKAY

    @property
    def enabled(self) -> bool:
        """Whether this node is enabled, according to its status."""
        return self.status is DTBStatus.OKAY

    @property
    def interrupt_parent(self) -> Optional["DTBNode"]:
        """The node this node's interrupts are routed to.

        This is the node the "interrupt-parent" phandle refers to
        if set (which may be anywhere in the tree), otherwise the tree parent.

        None if the phandle does not resolve, or for the root node
        without "interrupt-parent".
        """
        phandle = self.get_prop(DTBPropTag.INTERRUPT_PARENT)
        if isinstance(phandle, int):
            return self.find_by_phandle(phandle)
        return self._parent

    @property
    def interrupt_cells(self) -> Optional[int]:
        """Effective "#interrupt-cells".

        This is the node's own "#interrupt-cells" if set,
        otherwise its interrupt parent's, recursively.

        None if the interrupt parent chain breaks, loops back on itself,
        or reaches the root without a value.
        """
        visited: Set[int] = set()
        node: Optional[DTBNode] = self
        while node and id(node) not in visited:
            cells = node.get_prop(DTBPropTag.INTERRUPT_CELLS)
            if isinstance(cells, int):
                return cells
            visited.add(id(node))
            node = node.interrupt_parent
        return None

    def get_prop(
        self, tag: DTBPropTag
    ) -> Optional[Union[DTBValue, DTBUnresolved]]:
        """Retrieve a property value by kind.

        For DTBPropTag.UNKNOWN, answers the value of the first
        property the decoder did not recognize, see also get_raw().

        Args:
            tag: The property kind to search for.

        Returns:
            The value of the first property with this tag, or None.
        """
        for prop in self._props:
            if prop.tag is tag:
                return prop.value
        return None

    def get_raw(self, name: str) -> Optional[bytes]:
        """Retrieve the raw value of a property the decoder did not recognize.

        Args:
            name: The property name.

        Returns:
            The raw value, or None if there is no unrecognized property
            with this name.
        """
        for prop in self._props:
            if prop.tag is DTBPropTag.UNKNOWN and prop.name == name:
                return prop.value  # type: ignore[return-value]
        return None

    def find_child(self, name: str) -> Optional["DTBNode"]:
        """Search the children for a node name.

        Args:
            name: The child node name, including the unit address if any.

        Returns:
            The first child with this name, or None.
        """
        for node in self._children:
            if node.name == name:
                return node
        return None

    def get_child(self, name: str) -> "DTBNode":
        """Retrieve a child node by name.

        The requested child MUST exist.

        Args:
            name: The child node name to search for.

        Returns:
            The requested child.
        """
        child = self.find_child(name)
        if child is None:
            raise KeyError(name)
        return child

    def prop_at(
        self, path: Union[str, Sequence[str]], tag: DTBPropTag
    ) -> Optional[Union[DTBValue, DTBUnresolved]]:
        """Retrieve a property value from a node below this one.

        Args:
            path: The child node names to follow, either as a sequence
              of names or as a relative path ("cpus/cpu@0").
              An empty path designates this node.
            tag: The property kind.

        Returns:
            The property value, or None if a node on the path or
            the property does not exist.
        """
        if isinstance(path, str):
            path = [name for name in path.split("/") if name]
        node: DTBNode = self
        for name in path:
            child = node.find_child(name)
            if child is None:
                return None
            node = child
        return node.get_prop(tag)

    def find_by_phandle(self, phandle: int) -> Optional["DTBNode"]:
        """Search the whole tree for a phandle.

        This is a preorder search from the tree root, whatever node
        it's called on: there's no index.

        Args:
            phandle: The phandle to search for.

        Returns:
            The first node in preorder with this phandle, or None.
        """
        for node in self._root.walk():
            if node.phandle == phandle:
                return node
        return None

    def walk(
        self,
        /,
        reverse: bool = False,
        enabled_only: bool = False,
        fixed_depth: int = 0,
    ) -> Iterator["DTBNode"]:
        """Walk the devicetree branch under this node (preorder).

        Args:
            reverse: Whether to reverse the blob order of children.
            enabled_only: Whether to stop at disabled branches.
            fixed_depth: The depth limit.
              Defaults to 0, which means walking through to leaf nodes,
              according to enabled_only.

        Returns:
            An iterator yielding the nodes in order of traversal.
        """
        return self._walk(
            self,
            reverse=reverse,
            enabled_only=enabled_only,
            fixed_depth=fixed_depth,
        )

    def rwalk(self) -> Iterator["DTBNode"]:
        """Walk the devicetree backward from this node through to the root.

        Returns:
            An iterator yielding the nodes in order of traversal.
        """
        node: Optional[DTBNode] = self
        while node:
            yield node
            node = node.parent

    def _walk(
        self,
        node: "DTBNode",
        /,
        reverse: bool,
        enabled_only: bool,
        fixed_depth: int,
        at_depth: int = 0,
    ) -> Iterator["DTBNode"]:
        if enabled_only and not node.enabled:
            # Abort early on disabled branches when enabled_only is set.
            return

        yield node
        if fixed_depth > 0:
            if at_depth == fixed_depth:
                return
            at_depth += 1

        children: Sequence[DTBNode] = node.children
        if reverse:
            children = list(reversed(children))

        for child in children:
            yield from self._walk(
                child,
                reverse=reverse,
                enabled_only=enabled_only,
                fixed_depth=fixed_depth,
                at_depth=at_depth,
            )

    def __repr__(self) -> str:
        return self.path


class DTBTree:
    """Decoded devicetree blob.

    Owns the whole node tree, together with the blob header
    and memory reservation entries.
    """

    _header: DTBHeader
    _reserve_map: List[DTBReserveEntry]
    _root: DTBNode

    # Map path names to nodes (first node in preorder wins
    # when a malformed blob has siblings with the same name).
    _nodes: Dict[str, DTBNode]

    def __init__(
        self,
        header: DTBHeader,
        reserve_map: Sequence[DTBReserveEntry],
        root: DTBNode,
    ) -> None:
        """Initialize tree.

        Args:
            header: The validated blob header.
            reserve_map: The memory reservation entries.
            root: The root node of the resolved tree.
        """
        self._header = header
        self._reserve_map = list(reserve_map)
        self._root = root
        self._nodes = {}
        for node in root.walk():
            self._nodes.setdefault(node.path, node)

    @property
    def header(self) -> DTBHeader:
        """The blob header."""
        return self._header

    @property
    def reserve_map(self) -> Sequence[DTBReserveEntry]:
        """Memory reservation entries (DTSpec 5.3)."""
        return self._reserve_map

    @property
    def root(self) -> DTBNode:
        """The devicetree root node."""
        return self._root

    @property
    def size(self) -> int:
        """The number of nodes in this tree (including the root node)."""
        return sum(1 for _ in self._root.walk())

    def find_by_phandle(self, phandle: int) -> Optional[DTBNode]:
        """Search the tree for a phandle, see DTBNode.find_by_phandle()."""
        return self._root.find_by_phandle(phandle)

    def walk(
        self,
        /,
        reverse: bool = False,
        enabled_only: bool = False,
        fixed_depth: int = 0,
    ) -> Iterator[DTBNode]:
        """Walk the devicetree from the root node through to all leaves.

        Shortcut for root.walk().
        """
        return self._root.walk(
            reverse=reverse,
            enabled_only=enabled_only,
            fixed_depth=fixed_depth,
        )

    def __contains__(self, pathname: str) -> bool:
        return pathname in self._nodes

    def __getitem__(self, pathname: str) -> DTBNode:
        return self._nodes[pathname]

    def __len__(self) -> int:
        return self.size

    def __iter__(self) -> Iterator[DTBNode]:
        return self.walk()
