# Copyright (c) 2023 Christophe Dufaza <chris@openmarl.org>
#
# SPDX-License-Identifier: Apache-2.0

"""Devicetree blob decoder CLI.

Decode a DTB file and print either:
- a tree view of the whole devicetree, or of a branch
- the raw structure block events (--events), without building the tree

Exit status:
- 0: success
- 1: the blob could not be decoded
- 2: invalid command line, unreadable input or configuration files
"""

from typing import cast, IO, List, Optional

import argparse
import logging
import sys

from rich.console import Console
from rich.theme import Theme

from dtblob.config import DTBConfig
from dtblob.errors import DTBError
from dtblob.model import DTBTree
from dtblob.parser import parse
from dtblob.traverser import (
    DTBTraverser,
    DTBEventBeginNode,
    DTBEventEndNode,
    DTBEventProp,
    DTBEventEnd,
)
from dtblob.resolver import DTBResolver
from dtblob.rich.text import TextUtil
from dtblob.rich.theme import DTBTheme
from dtblob.rich.treeview import ViewDTBTree


class DTBCliError(DTBError):
    """Invalid command line input or configuration files."""


class DTBArgvParser(argparse.ArgumentParser):
    """Command line arguments parser."""

    @staticmethod
    def init(parser: argparse.ArgumentParser) -> None:
        """Add command line arguments to parser."""
        parser.add_argument("dtb", help="path to the DTB file", metavar="DTB")

        grp_view = parser.add_argument_group("tree view")
        grp_view.add_argument(
            "-p",
            "--path",
            help="show only the branch at PATH",
            metavar="PATH",
        )
        grp_view.add_argument(
            "-d",
            "--depth",
            help="limit the tree depth",
            type=int,
            default=0,
            metavar="DEPTH",
        )
        grp_view.add_argument(
            "--no-props",
            help="hide node properties",
            action="store_true",
        )
        grp_view.add_argument(
            "--events",
            help="print the structure block events instead of the tree",
            action="store_true",
        )

        grp_decode = parser.add_argument_group("decoding")
        grp_decode.add_argument(
            "--max-cells",
            help="maximum number of cells per address or size field (1-4)",
            type=int,
            metavar="N",
        )

        grp_user_files = parser.add_argument_group("user files")
        grp_user_files.add_argument(
            "--preferences",
            help="load additional preferences file",
            metavar="FILE",
        )
        grp_user_files.add_argument(
            "--theme",
            help="load additional styles file",
            metavar="FILE",
        )

        parser.add_argument(
            "-v",
            "--verbose",
            help="print debug messages",
            action="store_true",
        )

    def __init__(self) -> None:
        """Initialize a default parser."""
        super().__init__(
            prog="dtblob",
            description="decode and print devicetree blobs",
            allow_abbrev=False,
        )
        DTBArgvParser.init(self)


class DTBCliArgs:
    """Parsed command line arguments."""

    _args: argparse.Namespace

    def __init__(self, args: argparse.Namespace) -> None:
        """Initialize arguments.

        Args:
            args: Parsed command line arguments as defined
              by ArgumentParser.parse_args().
        """
        self._args = args

    @property
    def dtb(self) -> str:
        """Path to the DTB file."""
        return cast(str, self._args.dtb)

    @property
    def path(self) -> str:
        """Path of the branch to show."""
        if self._args.path:
            return cast(str, self._args.path)
        return "/"

    @property
    def depth(self) -> int:
        """Tree depth limit, zero for no limit."""
        return cast(int, self._args.depth)

    @property
    def with_props(self) -> Optional[bool]:
        """Whether to show properties, None for the configured default."""
        if self._args.no_props:
            return False
        return None

    @property
    def events(self) -> bool:
        """Print events instead of the tree."""
        return bool(self._args.events)

    @property
    def max_cells(self) -> Optional[int]:
        """Maximum number of cells per field, None for the configured value."""
        if self._args.max_cells is not None:
            return cast(int, self._args.max_cells)
        return None

    @property
    def preferences(self) -> Optional[str]:
        """Additional preferences file."""
        if self._args.preferences:
            return cast(str, self._args.preferences)
        return None

    @property
    def theme(self) -> Optional[str]:
        """Additional styles file."""
        if self._args.theme:
            return cast(str, self._args.theme)
        return None

    @property
    def verbose(self) -> bool:
        """Print debug messages."""
        return bool(self._args.verbose)


class DTBCli:
    """Command line interface."""

    _parser: argparse.ArgumentParser

    # Output stream, None for stdout.
    _file: Optional[IO[str]]

    @staticmethod
    def load_preference_file(path: str) -> None:
        """Load an additional preferences file above the default one.

        Raises:
            DTBCliError: Loading the preferences file has failed.
        """
        try:
            DTBConfig.getinstance().load_ini_file(path)
        except DTBConfig.Error as e:
            raise DTBCliError(f"failed to load preferences file: {path}") from e

    @staticmethod
    def load_theme_file(path: str) -> None:
        """Load an additional theme file above the default one.

        Raises:
            DTBCliError: Loading the theme file has failed.
        """
        try:
            DTBTheme.getinstance().load_theme_file(path)
        except DTBTheme.Error as e:
            raise DTBCliError(f"failed to load theme file: {path}") from e

    @staticmethod
    def read_blob(path: str) -> bytes:
        """Read a DTB file.

        Raises:
            DTBCliError: The file is not readable.
        """
        try:
            with open(path, "rb") as f:
                return f.read()
        except OSError as e:
            raise DTBCliError(f"{path}: {e.strerror}") from e

    def __init__(
        self,
        parser: Optional[argparse.ArgumentParser] = None,
        file: Optional[IO[str]] = None,
    ) -> None:
        """Initialize CLI.

        Args:
            parser: If set, specify an existing parser to configure with
              the command line arguments. If unset, the default parser is used.
            file: Output stream, defaults to stdout.
        """
        if parser:
            self._parser = parser
            DTBArgvParser.init(self._parser)
        else:
            self._parser = DTBArgvParser()
        self._file = file

    def run(self, argv: Optional[List[str]] = None) -> None:
        """Run the command line interface.

        Args:
            argv: Command line arguments, defaults to sys.argv.

        Raises:
            DTBCliError: Invalid input or configuration files.
            DTBError: The blob could not be decoded.
        """
        cli_args = DTBCliArgs(self._parser.parse_args(argv))

        if cli_args.max_cells is not None and not (
            1 <= cli_args.max_cells <= DTBResolver.MAX_CELLS_LIMIT
        ):
            self._parser.error(
                f"--max-cells: expects 1 to {DTBResolver.MAX_CELLS_LIMIT}"
            )
        if cli_args.depth < 0:
            self._parser.error("--depth: expects a positive integer")

        if cli_args.verbose:
            logging.basicConfig(level=logging.DEBUG)

        if cli_args.preferences:
            DTBCli.load_preference_file(cli_args.preferences)
        if cli_args.theme:
            DTBCli.load_theme_file(cli_args.theme)

        console = Console(
            theme=Theme(DTBTheme.getinstance().styles),
            highlight=False,
            file=self._file,
        )
        blob = DTBCli.read_blob(cli_args.dtb)

        if cli_args.events:
            self.print_events(console, blob)
            return

        max_cells = cli_args.max_cells
        if max_cells is None:
            max_cells = DTBConfig.getinstance().parse_max_cells
        tree = parse(blob, max_cells=max_cells)
        self.print_tree(console, tree, cli_args)

    def print_tree(
        self, console: Console, tree: DTBTree, cli_args: DTBCliArgs
    ) -> None:
        """Print the tree view of the requested branch.

        Raises:
            DTBCliError: No node at the requested path.
        """
        if cli_args.path not in tree:
            raise DTBCliError(f"{cli_args.path}: no such node")
        view = ViewDTBTree(tree[cli_args.path], cli_args.with_props)
        view.do_layout(fixed_depth=cli_args.depth)
        console.print(view)

    def print_events(self, console: Console, blob: bytes) -> None:
        """Print the structure block events, indented by node depth.

        Raises:
            DTBError: The blob is malformed.
        """
        trav = DTBTraverser(blob)
        console.print(
            TextUtil.mk_text(repr(trav.header), DTBTheme.STYLE_HEADER)
        )
        while True:
            offset = trav.offset
            event = trav.next_event()
            tv_event = TextUtil.mk_text(repr(event), DTBTheme.STYLE_EVENT)

            if isinstance(event, DTBEventBeginNode):
                TextUtil.bold(tv_event)
                indent = trav.depth - 1
            elif isinstance(event, (DTBEventProp, DTBEventEndNode)):
                indent = trav.depth
            else:
                # DTBEventEnd.
                indent = 0

            console.print(
                TextUtil.assemble(
                    TextUtil.dim(f"{offset:#08x} "), "  " * indent, tv_event
                )
            )
            if isinstance(event, DTBEventEnd):
                return


def run() -> None:
    """Installed entry point."""
    cli = DTBCli()

    try:
        cli.run()
    except DTBCliError as e:
        print(f"dtblob: error: {e.msg}", file=sys.stderr)
        sys.exit(2)
    except DTBError as e:
        print(f"dtblob: error: {e.msg}", file=sys.stderr)
        sys.exit(1)

    sys.exit(0)


if __name__ == "__main__":
    run()
