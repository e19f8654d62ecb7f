"""Bidirectional XML <-> mapping codec for BBB API responses.

Decoding rules:
- attributes are collapsed into the element's mapping (no ``@`` prefix)
- empty elements decode to ``""``
- with ``flatten=True`` (default) an element that occurs once is a plain
  value and a repeated element is a list; with ``flatten=False`` every
  child element is wrapped in a list
- names listed in ``always_list`` are lists even when they occur once
  (e.g. ``recording`` inside ``recordings``)
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

import xmltodict


class XMLCodec:
    """Parse BBB XML into nested dicts and render dicts back to XML.

    Args:
        flatten: Collapse single-occurrence children into plain values.
        always_list: Element names that always decode to a list.
    """

    def __init__(self, flatten: bool = True, always_list: Iterable[str] = ()) -> None:
        self._flatten = flatten
        self._always_list = frozenset(always_list)

    def _force_list(self, path: Any, key: str, value: Any) -> bool:
        if key in self._always_list:
            return True
        return not self._flatten

    @staticmethod
    def _postprocessor(path: Any, key: str, value: Any) -> tuple[str, Any]:
        return key, "" if value is None else value

    def decode(self, text: str | bytes, root: str | None = None) -> dict[str, Any]:
        """Parse XML text and return the contents of ``root``.

        Raises:
            xml.parsers.expat.ExpatError: on malformed XML.
            KeyError: if ``root`` is given and missing from the document.
        """
        parsed = xmltodict.parse(
            text,
            attr_prefix="",
            force_list=self._force_list,
            postprocessor=self._postprocessor,
        )
        if root is None:
            return dict(parsed)
        node = parsed[root]
        if isinstance(node, list):
            node = node[0]
        if not isinstance(node, Mapping):
            return {}
        return dict(node)

    def encode(self, data: Mapping[str, Any], root: str = "response", pretty: bool = False) -> str:
        """Render a mapping as XML under ``root``; lists become repeated elements."""
        return xmltodict.unparse({root: dict(data)}, pretty=pretty, full_document=True)


response_codec = XMLCodec(always_list=("recording", "attendee"))
