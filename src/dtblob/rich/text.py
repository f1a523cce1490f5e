# Copyright (c) 2023 Christophe Dufaza <chris@openmarl.org>
#
# SPDX-License-Identifier: Apache-2.0

"""Text view factories.

Helpers shared by the tree view and the CLI events listing,
styles default to the theme (see dtblob.rich.theme).
"""

from typing import Optional, Union, Iterable

from rich.style import StyleType
from rich.text import Text

from dtblob.rich.theme import DTBTheme


class TextUtil:
    """Text view factories."""

    @classmethod
    def mk_text(cls, content: str, style: Optional[StyleType] = None) -> Text:
        """Text view factory.

        Args:
            content: The text.
            style: The text style, defaults to DTBTheme.STYLE_DEFAULT.

        Returns:
            A new text view.
        """
        return Text(content, style=style or DTBTheme.STYLE_DEFAULT)

    @classmethod
    def stylize(cls, text: Union[str, Text], style: StyleType) -> Text:
        """Apply a style on top of an existing text view.

        Args:
            text: A text view, or a string to create one from.
            style: The style to apply.

        Returns:
            The styled text view (the same one if a view was given).
        """
        if isinstance(text, str):
            return cls.mk_text(text, style)
        text.stylize(style)
        return text

    @classmethod
    def dim(cls, text: Union[str, Text]) -> Text:
        """Dim text."""
        return cls.stylize(text, "dim")

    @classmethod
    def bold(cls, text: Union[str, Text]) -> Text:
        """Bold text."""
        return cls.stylize(text, "bold")

    @classmethod
    def disabled(cls, text: Union[str, Text]) -> Text:
        """Text of disabled nodes."""
        return cls.stylize(text, DTBTheme.STYLE_DISABLED)

    @classmethod
    def join(cls, sep: Union[str, Text], parts: Iterable[Text]) -> Text:
        """Join text views with a separator."""
        if isinstance(sep, str):
            sep = cls.mk_text(sep)
        return sep.join(parts)

    @classmethod
    def assemble(cls, *parts: Union[Text, str]) -> Text:
        """Assemble text views into one, each keeping its own style.

        Args:
            parts: The views (or plain strings) to assemble.
        """
        return Text.assemble(*parts)
