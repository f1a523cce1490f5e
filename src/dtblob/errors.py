# Copyright (c) 2023 Christophe Dufaza <chris@openmarl.org>
#
# SPDX-License-Identifier: Apache-2.0

"""Devicetree blob decoding errors.

All errors abort the parse: malformed or unsupported input is never
transient, and no partial tree is returned.

Unit tests and examples: tests/test_dtblob_parser.py
"""


from typing import Optional


class DTBError(Exception):
    """Base for devicetree blob errors."""

    _msg: Optional[str]

    def __init__(self, msg: Optional[str] = None) -> None:
        """A decoding error happened.

        Args:
            msg: A message describing the error.
        """
        super().__init__(msg)
        self._msg = msg

    @property
    def msg(self) -> str:
        """A (may be empty) message describing the error."""
        return self._msg or ""


class DTBTruncatedError(DTBError):
    """Buffer shorter than the header, or than the declared total size."""


class DTBBadMagicError(DTBError):
    """The blob does not start with the FDT magic."""


class DTBUnsupportedVersionError(DTBError):
    """Structure version is not 17."""


class DTBBadStructureError(DTBError):
    """The token stream or a value layout violates the format.

    E.g. an unexpected token, trailing data in the structure block,
    a value length that does not match its type, or a cell array
    that does not divide evenly.
    """


class DTBMissingCellsError(DTBError):
    """A cell width or phandle target required to decode a value is missing.

    Raised for missing "#address-cells", "#size-cells", "#interrupt-cells"
    or "#clock-cells", and for unresolved phandle references.
    """


class DTBUnsupportedCellsError(DTBError):
    """A cell width exceeds the maximum representable field."""


class DTBBadValueError(DTBError):
    """A recognized property's value does not match its expected encoding."""
