"""
Format-preserving TOML documents, built on tomlkit.

tomlkit keeps every node's source text, so a parsed document renders back
byte for byte and an edit only rewrites the nodes it touches. This module
adds structural paths on top, e.g. ("project", "dependencies"), and the
array element removal used by the dependency editor.
"""

from collections.abc import Mapping
from typing import Any, Dict, Iterable, Optional, Tuple

import tomlkit
from tomlkit.exceptions import ParseError as TOMLKitParseError
from tomlkit.exceptions import TOMLKitError
from tomlkit.items import Array, Item
from tomlkit.toml_document import TOMLDocument

KeyPath = Tuple[str, ...]

__all__ = [
    "Array",
    "Document",
    "Item",
    "KeyPath",
    "ParseError",
    "parse",
    "parse_value",
    "remove_item",
    "serialize",
]


class ParseError(Exception):
    """Error raised for text that is not valid TOML."""

    def __init__(self, message: str, line: Optional[int] = None, col: Optional[int] = None):
        super().__init__(message)
        self.line = line
        self.col = col


def _parse_error(e: TOMLKitError) -> ParseError:
    if isinstance(e, TOMLKitParseError):
        return ParseError(str(e), e.line, e.col)
    return ParseError(str(e))


class Document:
    """A parsed TOML document addressed by key paths."""

    def __init__(self, body: TOMLDocument):
        self.body = body

    def as_string(self) -> str:
        return tomlkit.dumps(self.body)

    def __str__(self) -> str:
        return self.as_string()

    def unwrap(self) -> Dict[str, Any]:
        """The document as plain Python values."""
        return self.body.unwrap()

    def get(self, path: Iterable[str]) -> Optional[Any]:
        """
        Returns the node at `path`, or None if any part of it is missing.

        Keys inside arrays of tables are not addressable.
        """
        node: Any = self.body
        for key in path:
            if not isinstance(node, Mapping) or key not in node:
                return None
            node = node[key]
        return node

    def remove(self, path: Iterable[str]) -> bool:
        """Deletes the key at `path` together with its line. False if it is absent."""
        *parents, key = path
        parent = self.get(parents)
        if not isinstance(parent, Mapping) or key not in parent:
            return False
        del parent[key]
        return True

    def replace(self, path: Iterable[str], raw: str) -> Item:
        """
        Sets the value at `path` from TOML source `raw`, e.g. '["a", "b"]'.

        The key, its indentation and any comment after the value are kept.

        Raises:
            KeyError: If there is no value at `path`.
            ParseError: If `raw` is not a TOML value.
        """
        *parents, key = path
        parent = self.get(parents)
        if not isinstance(parent, Mapping) or key not in parent:
            raise KeyError(".".join([*parents, key]))
        value = parse_value(raw)
        parent[key] = value
        return value


def parse(text: str) -> Document:
    """
    Raises:
        ParseError: If `text` is not valid TOML.
    """
    try:
        return Document(tomlkit.parse(text))
    except TOMLKitError as e:
        raise _parse_error(e) from e


def parse_value(raw: str) -> Item:
    """Parses a single TOML value, e.g. '"click>=8"' or '[1, 2]'."""
    try:
        return tomlkit.value(raw)
    except TOMLKitError as e:
        raise _parse_error(e) from e


def serialize(document: Document) -> str:
    return document.as_string()


def remove_item(array: Array, index: int) -> Item:
    """
    Removes the element at `index` from `array` and returns it.

    The element goes with its comma and any comment on its own line. Comment
    lines around it stay. An array left with nothing but whitespace renders
    as `[]`.

    Raises:
        IndexError: If `index` is out of range.
    """
    item = array[index]
    del array[index]
    if not len(array) and not array.as_string()[1:-1].strip():
        array.clear()
    return item
