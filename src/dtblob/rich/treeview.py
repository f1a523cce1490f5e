# Copyright (c) 2023 Christophe Dufaza <chris@openmarl.org>
#
# SPDX-License-Identifier: Apache-2.0

"""Rich tree view of decoded devicetree blobs.

- DTBValueFormatter: DTS-like string representations of property values
- ViewDTBTree: rich Tree of a devicetree branch, with optional
  property lines

Unit tests and examples: tests/test_dtblob_treeview.py
"""


from typing import cast, Dict, Iterable, Generator, List, Optional, Tuple

from rich.console import RenderableType
from rich.text import Text
from rich.tree import Tree

from dtblob.config import DTBConfig
from dtblob.model import (
    DTBNode,
    DTBProp,
    DTBPropTag,
    DTBStatus,
    DTBUnresolved,
)
from dtblob.rich.text import TextUtil
from dtblob.rich.theme import DTBTheme


_dtbconf: DTBConfig = DTBConfig.getinstance()


class DTBValueFormatter:
    """Stateless string factory for decoded property values."""

    FREQ_UNITS: List[Tuple[int, str]] = [
        (1_000_000_000, "GHz"),
        (1_000_000, "MHz"),
        (1_000, "kHz"),
    ]

    @classmethod
    def mk_hex(cls, value: int) -> str:
        """Hexadecimal representation, upper case if "pref.hex_upper" is set."""
        if _dtbconf.pref_hex_upper:
            return f"0x{value:X}"
        return f"0x{value:x}"

    @classmethod
    def mk_frequency(cls, freq: int) -> str:
        """Frequency representation in Hz, kHz, MHz or GHz.

        The unit is the largest one the frequency reaches,
        the value keeps three decimal places at most (e.g. "1.5GHz").
        """
        for hz, unit in DTBValueFormatter.FREQ_UNITS:
            if freq >= hz:
                value = (freq // (hz // 1000)) / 1000
                return f"{value:g}{unit}"
        return f"{freq}Hz"

    @classmethod
    def mk_cells(cls, cells: Iterable[int]) -> str:
        """Cells group representation (e.g. "<0x1 0x2>")."""
        return f"<{' '.join(cls.mk_hex(cell) for cell in cells)}>"

    @classmethod
    def mk_printable(cls, s: str) -> str:
        """Escape the bytes a name or string value failed to decode from.

        Undecodable bytes are kept as surrogates by the decoder,
        they are rendered as "\\xNN" escapes.
        """
        return s.encode("utf-8", "surrogateescape").decode(
            "utf-8", "backslashreplace"
        )

    @classmethod
    def mk_strings(cls, strings: Iterable[str]) -> str:
        """String list representation (e.g. '"foo", "bar"')."""
        return ", ".join(f'"{cls.mk_printable(s)}"' for s in strings)

    @classmethod
    def mk_bytes(cls, raw: bytes) -> str:
        """Representation of an unrecognized value.

        Bytes are escaped, and elided past "pref.tree.unknown_max".
        """
        maxlen = _dtbconf.pref_tree_unknown_max
        escaped = repr(raw[:maxlen])[2:-1]
        if 0 < maxlen < len(raw):
            escaped += _dtbconf.wchar_ellipsis
        return f"({len(raw)} bytes) <{escaped}>"

    @classmethod
    def mk_value(cls, prop: DTBProp) -> str:
        """Representation of a property value.

        Args:
            prop: A property of a parsed tree.

        Returns:
            A DTS-like string representation of the property's value.
        """
        value = prop.value
        tag = prop.tag

        if isinstance(value, DTBUnresolved):
            return repr(value)
        if tag is DTBPropTag.UNKNOWN:
            if not value:
                # Boolean property (e.g. "interrupt-controller").
                return ""
            return cls.mk_bytes(cast(bytes, value))
        if isinstance(value, DTBStatus):
            return f'"{value.value}"'
        if tag is DTBPropTag.CLOCK_FREQUENCY:
            return cls.mk_frequency(cast(int, value))
        if isinstance(value, int):
            return cls.mk_cells([value])
        if tag is DTBPropTag.ASSIGNED_CLOCK_RATES:
            rates = cast(List[int], value)
            return f"<{' '.join(cls.mk_frequency(rate) for rate in rates)}>"

        values = cast(list, value)
        if not values:
            return ""
        val0 = values[0]
        if isinstance(val0, str):
            return cls.mk_strings(values)
        if isinstance(val0, int):
            return cls.mk_cells(values)
        if isinstance(val0, tuple):
            # Cell groups, registers and ranges.
            return ", ".join(cls.mk_cells(group) for group in values)

        return str(value)


class ViewDTBTree:
    """Rich tree view of a devicetree branch."""

    _tree: Optional[Tree]
    _branch: DTBNode
    _with_props: bool

    def __init__(
        self, branch: DTBNode, with_props: Optional[bool] = None
    ) -> None:
        """New view.

        The view will remain an empty placeholder until walk_layout() is called.

        Args:
            branch: The root of the branch to render.
            with_props: Whether to show node properties,
              defaults to "pref.tree.props".
        """
        self._branch = branch
        self._with_props = (
            with_props if with_props is not None else _dtbconf.pref_tree_props
        )
        # Initialized on walk_layout().
        self._tree = None

    @property
    def renderable(self) -> RenderableType:
        """A rich Tree."""
        return self._tree or Text()

    def walk_layout(
        self,
        reverse: bool = False,
        enabled_only: bool = False,
        fixed_depth: int = 0,
    ) -> Generator[DTBNode, None, None]:
        """Layout this tree in order of traversal.

        Args:
            reverse: Whether to reverse children order.
            enabled_only: Whether to stop at disabled branches.
            fixed_depth: The depth limit, defaults to 0,
              walking through to leaf nodes, according to enabled_only.

        Yields:
            The added nodes in order of traversal.
        """
        # Map devicetree branches (nodes) to their Tree representation.
        branch2tree: Dict[DTBNode, Tree] = {}

        walker = self._branch.walk(
            reverse=reverse,
            enabled_only=enabled_only,
            fixed_depth=fixed_depth,
        )

        try:
            root: DTBNode = next(walker)
        except StopIteration:
            # Disabled branch with enabled_only set.
            return
        self._tree = Tree(self.mk_anchor(root))
        branch2tree[root] = self._tree
        self._add_props(self._tree, root)
        yield root

        for node in walker:
            anchor = branch2tree[cast(DTBNode, node.parent)]
            branch2tree[node] = anchor.add(self.mk_label(node))
            self._add_props(branch2tree[node], node)
            yield node

    def do_layout(
        self,
        reverse: bool = False,
        enabled_only: bool = False,
        fixed_depth: int = 0,
    ) -> None:
        """Same as walk_layout(), but consuming the generator."""
        for _ in self.walk_layout(reverse, enabled_only, fixed_depth):
            pass

    def mk_anchor(self, root: DTBNode) -> Text:
        """View factory for the Tree anchor (branch root)."""
        if not root.parent:
            return TextUtil.mk_text("/", DTBTheme.STYLE_NODE_NAME)
        return self.mk_label(root)

    def mk_label(self, node: DTBNode) -> Text:
        """View factory for the Tree labels (nodes).

        Unit addresses are styled apart, disabled nodes are dimmed.
        """
        name = DTBValueFormatter.mk_printable(node.name)
        unit_name, at, unit_addr = name.partition("@")
        if at:
            label = TextUtil.assemble(
                TextUtil.mk_text(unit_name, DTBTheme.STYLE_UNIT_NAME),
                "@",
                TextUtil.mk_text(unit_addr, DTBTheme.STYLE_UNIT_ADDR),
            )
        else:
            label = TextUtil.mk_text(name, DTBTheme.STYLE_NODE_NAME)
        if not node.enabled:
            TextUtil.disabled(label)
        return label

    def mk_prop(self, prop: DTBProp) -> Text:
        """View factory for property lines ("name = value")."""
        strval = DTBValueFormatter.mk_value(prop)
        tv_name = TextUtil.mk_text(
            DTBValueFormatter.mk_printable(prop.name), DTBTheme.STYLE_PROPERTY
        )
        if not strval:
            return tv_name
        if prop.tag is DTBPropTag.UNKNOWN:
            style = DTBTheme.STYLE_VALUE_BYTES
        elif prop.tag is DTBPropTag.STATUS:
            style = (
                DTBTheme.STYLE_STATUS_OKAY
                if prop.value is DTBStatus.OKAY
                else DTBTheme.STYLE_STATUS_DISABLED
            )
        elif prop.tag in (DTBPropTag.PHANDLE, DTBPropTag.INTERRUPT_PARENT):
            style = DTBTheme.STYLE_VALUE_PHANDLE
        elif strval.startswith('"'):
            style = DTBTheme.STYLE_VALUE_STR
        else:
            style = DTBTheme.STYLE_VALUE_INT
        return TextUtil.join(
            " = ", [tv_name, TextUtil.mk_text(strval, style)]
        )

    def _add_props(self, tree: Tree, node: DTBNode) -> None:
        if not self._with_props:
            return
        for prop in node.props:
            tree.add(self.mk_prop(prop))

    def __rich__(self) -> RenderableType:
        """Rich console protocol."""
        return self.renderable
