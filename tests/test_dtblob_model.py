# Copyright (c) 2023 Christophe Dufaza <chris@openmarl.org>
#
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for the dtblob.model module."""

# Relax pylint a bit for unit tests.
# pylint: disable=missing-function-docstring
# pylint: disable=protected-access


import pytest

from dtblob.model import (
    DTBCellContext,
    DTBNode,
    DTBProp,
    DTBPropTag,
    DTBRange,
    DTBRegister,
    DTBStatus,
    DTBTree,
    DTBUnresolved,
)
from dtblob.parser import parse

from .dtblob_uthelpers import DTBTests


def _qemu_tree() -> DTBTree:
    return parse(DTBTests.mk_qemu_blob())


def test_dtbproptag() -> None:
    assert DTBPropTag.REG.deferred
    assert DTBPropTag.RANGES.deferred
    assert DTBPropTag.INTERRUPTS.deferred
    assert DTBPropTag.CLOCKS.deferred
    assert DTBPropTag.ASSIGNED_CLOCKS.deferred
    assert not DTBPropTag.COMPATIBLE.deferred
    assert not DTBPropTag.UNKNOWN.deferred
    assert "#address-cells" == DTBPropTag.ADDRESS_CELLS.value


def test_dtbregister() -> None:
    reg = DTBRegister(0x1000, 0x100)
    assert 0x10FF == reg.tail
    assert 0x1000 == DTBRegister(0x1000, 0).tail
    assert "addr:0x1000, size:0x100" == repr(reg)
    assert (0x1000, 0x100) == reg


def test_dtbrange() -> None:
    rng = DTBRange(0x0, 0xF0000000, 0x100000)
    assert 0xF0000000 == rng.parent_addr
    assert "child:0x0, parent:0xf0000000, size:0x100000" == repr(rng)


def test_dtbprop_resolve_with() -> None:
    prop = DTBProp(
        "reg", DTBPropTag.REG, DTBUnresolved(DTBPropTag.REG, b"\0" * 8)
    )
    assert prop.unresolved
    assert "reg: UNRESOLVED(reg, 8 bytes)" == repr(prop)

    prop.resolve_with([DTBRegister(0, 0)])
    assert not prop.unresolved
    assert [DTBRegister(0, 0)] == prop.value

    # Resolved once.
    with pytest.raises(ValueError):
        prop.resolve_with([])


def test_dtbcellcontext() -> None:
    root = DTBCellContext()
    assert root.parent is None
    assert root.address_cells is None
    assert root.size_cells is None

    child = DTBCellContext(root)
    grandchild = DTBCellContext(child)
    root.address_cells = 2
    root.size_cells = 1
    assert 2 == grandchild.address_cells
    assert 1 == grandchild.size_cells

    child.size_cells = 0
    assert 2 == grandchild.address_cells
    assert 0 == grandchild.size_cells
    assert 1 == root.size_cells
    assert "cells(addr:2, size:0)" == repr(grandchild)


def test_dtbnode_names() -> None:
    tree = _qemu_tree()
    root = tree.root
    assert "" == root.name
    assert "/" == root.path
    assert root.unit_addr is None

    memory = root.get_child("memory@40000000")
    assert "memory" == memory.unit_name
    assert 0x40000000 == memory.unit_addr
    assert "/memory@40000000" == memory.path
    assert "/memory@40000000" == repr(memory)

    cpus = root.get_child("cpus")
    assert "cpus" == cpus.unit_name
    assert cpus.unit_addr is None

    node = DTBNode("i2c@1,0", root)
    assert node.unit_addr is None
    assert "i2c" == node.unit_name
    # Not appended to the parent's children.
    assert node not in root.children
    assert root is node.root


def test_dtbnode_status() -> None:
    root = DTBNode("", None)
    assert DTBStatus.OKAY == root.status
    assert root.enabled

    root._props.append(DTBProp("status", DTBPropTag.STATUS, DTBStatus.FAIL))
    assert DTBStatus.FAIL == root.status
    assert not root.enabled


def test_dtbnode_children() -> None:
    root = _qemu_tree().root
    assert root.find_child("cpus")
    assert root.find_child("cpu@0") is None
    assert root.find_child("memory") is None
    with pytest.raises(KeyError):
        root.get_child("gpio")


def test_dtbnode_get_prop() -> None:
    root = _qemu_tree().root
    assert 2 == root.get_prop(DTBPropTag.ADDRESS_CELLS)
    assert root.get_prop(DTBPropTag.STATUS) is None

    psci = root.get_child("psci")
    # First unrecognized property.
    assert b"hvc\0" == psci.get_prop(DTBPropTag.UNKNOWN)
    assert psci.get_raw("compatible") is None
    assert psci.get_raw("not-a-prop") is None


def test_dtbnode_prop_at() -> None:
    root = _qemu_tree().root
    assert ["arm,cortex-a53"] == root.prop_at(
        ["cpus", "cpu@0"], DTBPropTag.COMPATIBLE
    )
    assert ["arm,cortex-a53"] == root.prop_at(
        "/cpus/cpu@0", DTBPropTag.COMPATIBLE
    )
    assert 1 == root.prop_at("cpus", DTBPropTag.ADDRESS_CELLS)
    assert 2 == root.prop_at("", DTBPropTag.ADDRESS_CELLS)
    assert 2 == root.prop_at([], DTBPropTag.ADDRESS_CELLS)
    assert root.prop_at("cpus/cpu@1", DTBPropTag.COMPATIBLE) is None
    assert root.prop_at("cpus", DTBPropTag.COMPATIBLE) is None
    # Missing intermediate node.
    assert root.prop_at(["soc", "cpu@0"], DTBPropTag.COMPATIBLE) is None

    cpus = root.get_child("cpus")
    assert ["arm,cortex-a53"] == cpus.prop_at(
        "cpu@0", DTBPropTag.COMPATIBLE
    )


def test_dtbnode_find_by_phandle() -> None:
    tree = _qemu_tree()
    cpu0 = tree["/cpus/cpu@0"]

    # From any node.
    clk = cpu0.find_by_phandle(0x8000)
    assert clk
    assert "/apb-pclk" == clk.path
    assert clk is tree.find_by_phandle(0x8000)
    assert tree.find_by_phandle(0x1234) is None


def test_dtbnode_interrupts() -> None:
    tree = _qemu_tree()
    intc = tree["/intc@8000000"]
    pl011 = tree["/pl011@9000000"]
    cpu0 = tree["/cpus/cpu@0"]

    assert intc is tree.root.interrupt_parent
    assert tree.root is pl011.interrupt_parent
    assert 3 == pl011.interrupt_cells
    assert 3 == cpu0.interrupt_cells
    assert 3 == intc.interrupt_cells


def test_dtbnode_interrupt_cells_loop() -> None:
    root = DTBNode("", None)
    node_a = DTBNode("a", root)
    node_b = DTBNode("b", root)
    root._children.extend([node_a, node_b])
    node_a._props.extend(
        [
            DTBProp("phandle", DTBPropTag.PHANDLE, 1),
            DTBProp("interrupt-parent", DTBPropTag.INTERRUPT_PARENT, 2),
        ]
    )
    node_b._props.extend(
        [
            DTBProp("phandle", DTBPropTag.PHANDLE, 2),
            DTBProp("interrupt-parent", DTBPropTag.INTERRUPT_PARENT, 1),
        ]
    )
    assert node_b is node_a.interrupt_parent
    assert node_a is node_b.interrupt_parent
    assert node_a.interrupt_cells is None

    node_b._props.append(
        DTBProp("#interrupt-cells", DTBPropTag.INTERRUPT_CELLS, 2)
    )
    assert 2 == node_a.interrupt_cells


def test_dtbnode_walk() -> None:
    tree = _qemu_tree()
    root = tree.root

    assert [
        "/",
        "/psci",
        "/memory@40000000",
        "/cpus",
        "/cpus/cpu@0",
        "/intc@8000000",
        "/timer",
        "/pl011@9000000",
        "/apb-pclk",
        "/chosen",
    ] == [node.path for node in root.walk()]

    assert [
        "/",
        "/chosen",
        "/apb-pclk",
        "/pl011@9000000",
        "/timer",
        "/intc@8000000",
        "/cpus",
        "/cpus/cpu@0",
        "/memory@40000000",
        "/psci",
    ] == [node.path for node in root.walk(reverse=True)]

    # Depth 1: the root and its children.
    assert 9 == len(list(root.walk(fixed_depth=1)))
    assert ["/cpus", "/cpus/cpu@0"] == [
        node.path for node in tree["/cpus"].walk()
    ]

    assert ["/cpus/cpu@0", "/cpus", "/"] == [
        node.path for node in tree["/cpus/cpu@0"].rwalk()
    ]


def test_dtbtree() -> None:
    tree = _qemu_tree()
    assert 10 == len(tree)
    assert 10 == tree.size
    assert "/" in tree
    assert "/cpus/cpu@0" in tree
    assert "/cpus/cpu@0/" not in tree
    assert tree.root is tree["/"]
    assert [node.path for node in tree] == [
        node.path for node in tree.walk()
    ]
