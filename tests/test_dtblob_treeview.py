# Copyright (c) 2023 Christophe Dufaza <chris@openmarl.org>
#
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for the dtblob.rich.treeview module."""

# Relax pylint a bit for unit tests.
# pylint: disable=missing-function-docstring


import io

from rich.console import Console
from rich.theme import Theme

from dtblob.model import DTBProp, DTBPropTag, DTBStatus, DTBUnresolved
from dtblob.parser import parse
from dtblob.rich.theme import DTBTheme
from dtblob.rich.treeview import DTBValueFormatter, ViewDTBTree

from .dtblob_uthelpers import DTBTests, DTBWriter


def _render(view: ViewDTBTree) -> str:
    out = io.StringIO()
    console = Console(
        file=out,
        width=200,
        theme=Theme(DTBTheme.getinstance().styles),
        highlight=False,
    )
    console.print(view)
    return out.getvalue()


def test_dtbvalueformatter_frequency() -> None:
    assert "0Hz" == DTBValueFormatter.mk_frequency(0)
    assert "999Hz" == DTBValueFormatter.mk_frequency(999)
    assert "1kHz" == DTBValueFormatter.mk_frequency(1000)
    assert "32.768kHz" == DTBValueFormatter.mk_frequency(32768)
    assert "24MHz" == DTBValueFormatter.mk_frequency(24000000)
    assert "1.843MHz" == DTBValueFormatter.mk_frequency(1843200)
    assert "1.5GHz" == DTBValueFormatter.mk_frequency(1500000000)
    assert "8GHz" == DTBValueFormatter.mk_frequency(8000000000)


def test_dtbvalueformatter_cells() -> None:
    assert "<>" == DTBValueFormatter.mk_cells([])
    assert "<0x8000>" == DTBValueFormatter.mk_cells([0x8000])
    assert "<0x0 0x1 0x4>" == DTBValueFormatter.mk_cells((0, 1, 4))


def test_dtbvalueformatter_strings() -> None:
    assert '"arm,pl011", "arm,primecell"' == DTBValueFormatter.mk_strings(
        ["arm,pl011", "arm,primecell"]
    )
    assert '""' == DTBValueFormatter.mk_strings([""])
    # Bytes that are not UTF-8.
    assert '"acme,uart\\xe9"' == DTBValueFormatter.mk_strings(
        ["acme,uart\udce9"]
    )


def test_dtbvalueformatter_printable() -> None:
    assert "uart@0" == DTBValueFormatter.mk_printable("uart@0")
    assert "❯" == DTBValueFormatter.mk_printable("❯")
    assert "uart\\xff@0" == DTBValueFormatter.mk_printable("uart\udcff@0")


def test_dtbvalueformatter_bytes() -> None:
    assert "(0 bytes) <>" == DTBValueFormatter.mk_bytes(b"")
    assert "(4 bytes) <hvc\\x00>" == DTBValueFormatter.mk_bytes(b"hvc\0")


def test_dtbvalueformatter_value() -> None:
    tree = parse(DTBTests.mk_qemu_blob())

    def strval(path: str, name: str) -> str:
        for prop in tree[path].props:
            if prop.name == name:
                return DTBValueFormatter.mk_value(prop)
        raise KeyError(name)

    assert "<0x40000000 0x20000000>" == strval("/memory@40000000", "reg")
    assert "<0x8000000 0x10000>, <0x8010000 0x10000>" == strval(
        "/intc@8000000", "reg"
    )
    assert "<0x8000>, <0x8000>" == strval("/pl011@9000000", "clocks")
    assert "<0x0 0x1 0x4>" == strval("/pl011@9000000", "interrupts")
    assert '"uartclk", "apb_pclk"' == strval("/pl011@9000000", "clock-names")
    assert "24MHz" == strval("/apb-pclk", "clock-frequency")
    assert "<0x0>" == strval("/apb-pclk", "#clock-cells")
    assert "<0x8000>" == strval("/apb-pclk", "phandle")
    assert "(4 bytes) <hvc\\x00>" == strval("/psci", "method")
    assert "" == strval("/intc@8000000", "ranges")

    tree = parse(DTBTests.mk_rockpro64_blob())
    assert '"okay"' == strval("/serial@ff1a0000", "status")
    assert "<0xb3 0xb4>" == strval("/serial@ff1a0000", "pinctrl-0")
    assert "<400MHz 200MHz>" == strval(
        "/clock-controller@ff760000", "assigned-clock-rates"
    )

    prop = DTBProp("status", DTBPropTag.STATUS, DTBStatus.DISABLED)
    assert '"disabled"' == DTBValueFormatter.mk_value(prop)
    prop = DTBProp(
        "reg", DTBPropTag.REG, DTBUnresolved(DTBPropTag.REG, b"\0" * 4)
    )
    assert "UNRESOLVED(reg, 4 bytes)" == DTBValueFormatter.mk_value(prop)

    # Empty values of unknown properties.
    prop = DTBProp("interrupt-controller", DTBPropTag.UNKNOWN, b"")
    assert "" == DTBValueFormatter.mk_value(prop)
    assert "" == strval("/intc@8000000", "interrupt-controller")


def test_viewdtbtree() -> None:
    tree = parse(DTBTests.mk_qemu_blob())
    view = ViewDTBTree(tree.root, with_props=True)
    # Empty until layout.
    assert "" == _render(view).strip()

    nodes = list(view.walk_layout())
    assert [node.path for node in tree.walk()] == [node.path for node in nodes]

    out = _render(view)
    assert out.startswith("/")
    assert "memory@40000000" in out
    assert "cpu@0" in out
    assert "reg = <0x40000000 0x20000000>" in out
    assert "clocks = <0x8000>, <0x8000>" in out
    assert "clock-frequency = 24MHz" in out
    # Empty values: name only.
    assert "interrupt-controller\n" in out.replace(" ", "")
    # Properties before child nodes.
    assert out.index("#address-cells") < out.index("psci")


def test_viewdtbtree_no_props() -> None:
    tree = parse(DTBTests.mk_qemu_blob())
    view = ViewDTBTree(tree.root, with_props=False)
    view.do_layout()
    out = _render(view)
    assert "pl011@9000000" in out
    assert "compatible" not in out
    assert "reg" not in out


def test_viewdtbtree_fixed_depth() -> None:
    tree = parse(DTBTests.mk_qemu_blob())
    view = ViewDTBTree(tree.root, with_props=False)
    view.do_layout(fixed_depth=1)
    out = _render(view)
    assert "cpus" in out
    assert "cpu@0" not in out


def test_viewdtbtree_branch() -> None:
    tree = parse(DTBTests.mk_rockpro64_blob())

    view = ViewDTBTree(tree["/serial@ff1a0000"], with_props=False)
    view.do_layout()
    assert "serial@ff1a0000" == _render(view).strip()

    view = ViewDTBTree(tree.root, with_props=False)
    view.do_layout(enabled_only=True)
    out = _render(view)
    assert "serial@ff1a0000" in out
    assert "serial@ff1b0000" not in out

    view = ViewDTBTree(tree.root, with_props=False)
    view.do_layout(reverse=True)
    out = _render(view)
    assert out.index("clock-controller") < out.index("serial@ff1a0000")


def test_viewdtbtree_undecodable() -> None:
    blob = (
        DTBWriter()
        .begin_node("")
        .begin_node(b"uart\xff@0")
        .prop("compatible", b"acme,uart\xe9\0")
        .end_node()
        .end_node()
        .end()
        .blob()
    )
    view = ViewDTBTree(parse(blob).root, with_props=True)
    view.do_layout()
    out = _render(view)
    # Escaped as in C string literals.
    assert "uart\\xff@0" in out
    assert 'compatible = "acme,uart\\xe9"' in out
