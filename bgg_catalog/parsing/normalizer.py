"""
Normalizes catalog XML into a uniform attribute/child tree.

The catalog service emits a field as a single element or as repeated
elements depending on cardinality. Repeated children are coalesced into
lists here, and every accessor that reads children flattens to a list, so
the mapper never has to branch on the shape.
"""

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, List, Optional, TypeVar, Union

from ..error_handling import MalformedWireData

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Single(Generic[T]):
    value: T


@dataclass(frozen=True)
class Many(Generic[T]):
    values: List[T]


def as_list(value: Any) -> list:
    """Flatten a Single/Many wrapper, list, scalar or None to a list."""
    if value is None:
        return []
    if isinstance(value, Single):
        return [value.value]
    if isinstance(value, Many):
        return list(value.values)
    if isinstance(value, list):
        return value
    return [value]


@dataclass
class CatalogRecord:
    """A normalized element: attributes, named children and optional text."""
    attributes: Dict[str, str] = field(default_factory=dict)
    children: Dict[str, Any] = field(default_factory=dict)
    text: Optional[str] = None
    tag: Optional[str] = None

    def attr(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.attributes.get(name, default)

    def shape(self, name: str) -> Union[Single, Many, None]:
        value = self.children.get(name)
        if value is None:
            return None
        if isinstance(value, list):
            return Many(value)
        return Single(value)

    def get_all(self, name: str) -> list:
        """All children with this name, in document order."""
        return as_list(self.shape(name))

    def get(self, name: str) -> Any:
        """First child with this name, or None."""
        values = self.get_all(name)
        return values[0] if values else None

    def records(self, name: str) -> List["CatalogRecord"]:
        """Children with this name that carry attributes or children."""
        return [v for v in self.get_all(name) if isinstance(v, CatalogRecord)]

    def value_of(self, name: str) -> Optional[str]:
        """
        Value of a child shaped like <name value="..."/>; collapsed text
        children are returned as-is.
        """
        child = self.get(name)
        if isinstance(child, CatalogRecord):
            return child.attr("value", child.text)
        return child

    def text_of(self, name: str) -> Optional[str]:
        child = self.get(name)
        if isinstance(child, CatalogRecord):
            return child.text
        return child


def _normalize_element(element: ET.Element) -> Union[CatalogRecord, str]:
    text = (element.text or "").strip() or None
    children: Dict[str, Any] = {}
    for child in element:
        name = child.tag
        value = _normalize_element(child)
        if name not in children:
            children[name] = value
        elif isinstance(children[name], list):
            children[name].append(value)
        else:
            children[name] = [children[name], value]

    if not element.attrib and not children:
        # Text-only element collapses to its scalar value
        return text if text is not None else ""
    return CatalogRecord(attributes=dict(element.attrib), children=children, text=text, tag=element.tag)


class WireFormatNormalizer:
    """
    Converts raw catalog responses into CatalogRecord trees.
    """

    def parse(self, raw: Union[bytes, str]) -> CatalogRecord:
        """
        Parse a raw response into a record rooted at the document element.

        Raises:
            MalformedWireData: if the payload is not parseable markup
        """
        if raw is None or (isinstance(raw, (bytes, str)) and not raw.strip()):
            raise MalformedWireData("Empty response from catalog service")
        if isinstance(raw, str):
            raw = raw.encode("utf-8")
        try:
            root = ET.fromstring(raw)
        except ET.ParseError as e:
            raise MalformedWireData(f"Could not parse catalog response: {e}") from e

        normalized = _normalize_element(root)
        if not isinstance(normalized, CatalogRecord):
            normalized = CatalogRecord(text=normalized or None, tag=root.tag)
        return normalized

    def items(self, raw: Union[bytes, str]) -> List[CatalogRecord]:
        """
        Parse a response and return its <item> records.

        Raises:
            MalformedWireData: if the payload is unparseable or is an error document
        """
        document = self.parse(raw)
        tag = document.tag
        if tag in ("error", "errors"):
            message = document.text_of("message")
            if message is None:
                error = document.get("error")
                if isinstance(error, CatalogRecord):
                    message = error.text_of("message")
            raise MalformedWireData(f"Catalog service returned an error document: {message}")
        if tag != "items":
            raise MalformedWireData(f"Unexpected root element <{tag}> in catalog response")

        records = document.records("item")
        logger.debug(f"Normalized {len(records)} item(s) from catalog response")
        return records
