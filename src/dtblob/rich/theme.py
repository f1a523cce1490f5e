# Copyright (c) 2023 Christophe Dufaza <chris@openmarl.org>
#
# SPDX-License-Identifier: Apache-2.0

"""Devicetree blob views theme (aka rich styles).

Each kind of information (node names, unit addresses, property values
by type, node status) has its own named style, e.g. "dtb.unit_addr".

Styles are loaded from INI files ("styles" section) named "theme.ini":
the bundled one sets the defaults, an optional one in the per-user
configuration directory overrides them.

Unit tests and examples: tests/test_dtblob_theme.py
"""


from typing import Optional, Dict, Mapping

import configparser
import os
import sys

from rich.errors import StyleError, StyleSyntaxError
from rich.style import Style
from rich.theme import Theme

from dtblob.config import DTBConfig

_dtbconf: DTBConfig = DTBConfig.getinstance()


class DTBTheme:
    """Rich styles."""

    STYLE_DEFAULT = "dtb.default"
    STYLE_DISABLED = "dtb.disabled"

    STYLE_HEADER = "dtb.header"

    STYLE_NODE_NAME = "dtb.node_name"
    STYLE_UNIT_NAME = "dtb.unit_name"
    STYLE_UNIT_ADDR = "dtb.unit_addr"

    STYLE_PROPERTY = "dtb.property"
    STYLE_VALUE_INT = "dtb.value.int"
    STYLE_VALUE_STR = "dtb.value.string"
    STYLE_VALUE_PHANDLE = "dtb.value.phandle"
    STYLE_VALUE_BYTES = "dtb.value.bytes"
    STYLE_STATUS_OKAY = "dtb.value.status_okay"
    STYLE_STATUS_DISABLED = "dtb.value.status_disabled"

    STYLE_EVENT = "dtb.event"

    class Error(BaseException):
        """Invalid or unreadable theme file."""

    @classmethod
    def getinstance(cls) -> "DTBTheme":
        """The theme views are rendered with."""
        return _dtbtheme

    # Style names to rich styles.
    _styles: Dict[str, Style]

    def __init__(self, path: Optional[str] = None) -> None:
        """Load theme.

        Args:
            path: Load only this theme file. If unset, load the bundled
              theme, then the user's "theme.ini" if it exists.
        """
        self._styles = {}

        if path:
            self.load_theme_file(path)
            return

        # The bundled theme must load.
        self.load_theme_file(
            os.path.join(os.path.dirname(__file__), "theme.ini")
        )
        user_theme = _dtbconf.get_user_file("theme.ini")
        if os.path.isfile(user_theme):
            self.load_theme_file(user_theme, fail_early=False)

    @property
    def styles(self) -> Mapping[str, Style]:
        """Rich styles by name (e.g. "dtb.unit_addr")."""
        return self._styles

    def load_theme_file(self, path: str, fail_early: bool = True) -> None:
        """Load styles from a theme file, overriding those with the same names.

        Args:
            path: Path to an INI file with a "styles" section.
            fail_early: Whether to raise on unreadable or invalid files,
              otherwise print a message on stderr and keep the current styles.

        Raises:
            DTBTheme.Error: Unreadable or invalid theme file.
        """
        try:
            theme = Theme.read(path, encoding="utf-8")
        except OSError as e:
            msg = f"{path}: {e.strerror or e}"
        except configparser.Error as e:
            msg = f"{path}: {e.message}"
        except (StyleError, StyleSyntaxError) as e:
            msg = f"{path}: {e}"
        else:
            self._styles.update(theme.styles)
            return

        if fail_early:
            raise DTBTheme.Error(msg)
        print(f"failed to load theme file: {msg}", file=sys.stderr)


_dtbtheme = DTBTheme()
