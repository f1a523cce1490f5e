# Copyright (c) 2023 Christophe Dufaza <chris@openmarl.org>
#
# SPDX-License-Identifier: Apache-2.0

"""Devicetree blob decoder configuration.

Options are read from the "dtblob" section of INI files named "dtblob.ini":
the bundled one sets the defaults, an optional one in the per-user
application directory (see DTBConfig.app_dir) overrides them.

Unit tests and examples: tests/test_dtblob_config.py
"""


from typing import Optional

import configparser
import codecs
import os
import re
import sys


class DTBConfig:
    """Devicetree blob decoder configuration."""

    class Error(BaseException):
        """Error loading configuration file."""

    @classmethod
    def getinstance(cls) -> "DTBConfig":
        """Access the preferences configuration instance."""
        return _dtbconf

    # Parsed configuration.
    _cfg: configparser.ConfigParser

    # Path to the per-user configuration directory.
    _app_dir: str

    def __init__(self, path: Optional[str] = None) -> None:
        """Load configuration.

        Args:
            path: Load only this configuration file. If unset, load
              the bundled "dtblob.ini", then the user's one if it exists.

        Raises:
            DTBConfig.Error: Unreadable or invalid configuration file.
        """
        self._app_dir = self._init_app_dir()

        self._cfg = configparser.ConfigParser(
            interpolation=configparser.ExtendedInterpolation()
        )

        if path:
            self.load_ini_file(path)
        else:
            path = os.path.join(os.path.dirname(__file__), "dtblob.ini")
            self.load_ini_file(path)
            path = self.get_user_file("dtblob.ini")
            if os.path.isfile(path):
                self.load_ini_file(path)

    @property
    def app_dir(self) -> str:
        r"""Path to the per-user configuration directory.

        Location is platform-dependent:

        - POSIX: "$XDG_CONFIG_HOME/dtblob", or "~/.config/dtblob"
          if XDG_CONFIG_HOME is not set
        - Windows: "%LOCALAPPDATA%\DTBlob"
        - macOS: "~/Library/DTBlob"

        The directory is not granted to exist.
        """
        return self._app_dir

    @property
    def parse_max_cells(self) -> int:
        """Maximum number of 32-bit cells per reg/ranges field (1 to 4)."""
        max_cells = self.getint("parse.max_cells", 2)
        if not 1 <= max_cells <= 4:
            self._warn("parse.max_cells", f"out of range: {max_cells}")
            return 2
        return max_cells

    @property
    def wchar_ellipsis(self) -> str:
        """Ellipsis."""
        return self.getstr("wchar.ellipsis")

    @property
    def pref_hex_upper(self) -> bool:
        """Whether to print hexadecimal digits upper case."""
        return self.getbool("pref.hex_upper")

    @property
    def pref_tree_props(self) -> bool:
        """Whether tree views show node properties."""
        return self.getbool("pref.tree.props")

    @property
    def pref_tree_unknown_max(self) -> int:
        """Maximum number of bytes shown for unrecognized property values."""
        return self.getint("pref.tree.unknown_max", 16)

    def get_user_file(self, *paths: str) -> str:
        """Get path to a user file within the application directory.

        Args:
            paths: Relative path to the resource.
        """
        return os.path.join(self._app_dir, *paths)

    def getbool(self, option: str, fallback: bool = False) -> bool:
        """Access an option's value as a boolean.

        True: "1", "yes", "true", "on".
        False: "0", "no", "false", "off".

        Args:
            option: The option's name.
            fallback: Value answered for an undefined option
              or an invalid value.
        """
        val = self._get(option)
        if val is None:
            return fallback
        boolean = self._cfg.BOOLEAN_STATES.get(val.lower())
        if boolean is None:
            self._warn(option, f"not a boolean: {val}")
            return fallback
        return boolean

    def getint(self, option: str, fallback: int = 0) -> int:
        """Access an option's value as an integer.

        The base is given by the prefix, if any: "0b", "0o" or "0x".

        Args:
            option: The option's name.
            fallback: Value answered for an undefined option
              or an invalid value.
        """
        val = self._get(option)
        if val is None:
            return fallback
        try:
            return int(val, base=0)
        except ValueError:
            self._warn(option, f"not an integer: {val}")
        return fallback

    def getstr(self, option: str, fallback: str = "") -> str:
        r"""Access an option's value as a wide string.

        Wide strings may contain actual Unicode characters (e.g. "…")
        and escape sequences (e.g. "\u2026").
        Surrounding double-quotes are removed, they permit values
        with trailing spaces.

        Args:
            option: The option's name.
            fallback: Value answered for an undefined option.
        """
        val = self._get(option)
        if val is None:
            return fallback
        return _unescape(val.strip('"').replace("\n", " "))

    def load_ini_file(self, path: str) -> None:
        """Load options from configuration file (INI format).

        Overrides already loaded values with the same keys.

        Args:
            path: Path to a configuration file.

        Raises:
            DTBConfig.Error: Failed to load configuration file.
        """
        try:
            with open(path, "r", encoding="utf-8") as f:
                self._cfg.read_file(f)
        except (OSError, configparser.Error) as e:
            raise DTBConfig.Error(str(e)) from e

    def _get(self, option: str) -> Optional[str]:
        try:
            return self._cfg.get("dtblob", option)
        except configparser.Error as e:
            self._warn(option, e.message)
        return None

    def _warn(self, option: str, msg: str) -> None:
        # Option getters are fail-safe.
        print(f"configuration error: {option}: {msg}", file=sys.stderr)

    @staticmethod
    def _init_app_dir() -> str:
        if sys.platform == "darwin":
            return os.path.abspath(
                os.path.join(os.path.expanduser("~"), "Library", "DTBlob")
            )
        if os.name == "nt":
            local_app_data = os.environ.get(
                "LOCALAPPDATA",
                os.path.join(os.path.expanduser("~"), "AppData", "Local"),
            )
            return os.path.abspath(os.path.join(local_app_data, "DTBlob"))
        xdg_cfg_home = os.environ.get(
            "XDG_CONFIG_HOME",
            os.path.join(os.path.expanduser("~"), ".config"),
        )
        return os.path.abspath(os.path.join(xdg_cfg_home, "dtblob"))


# ASCII escape sequences that may appear in Python strings.
# See "unicode_escape doesn't work in general":
# https://stackoverflow.com/a/24519338
_RE_ESCAPE_SEQ: re.Pattern[str] = re.compile(
    r"""
    ( \\U........
    | \\u....
    | \\x..
    | \\[0-7]{1,3}
    | \\N\{[^}]+\}
    | \\[\\'"abfnrtv]
    )""",
    re.UNICODE | re.VERBOSE,
)


def _unescape(val: str) -> str:
    # Decode only the escape sequences: the unicode_escape codec
    # assumes non-ASCII bytes are Latin-1.
    return _RE_ESCAPE_SEQ.sub(
        lambda match: codecs.decode(match.group(0), "unicode-escape"), val
    )


_dtbconf = DTBConfig()
