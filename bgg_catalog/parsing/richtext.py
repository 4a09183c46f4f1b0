"""
Converts catalog description text into the structured rich-text document
stored on records.
"""

import re
import warnings
from typing import List, Optional

from bs4 import BeautifulSoup, MarkupResemblesLocatorWarning

_BLANK_RUN = re.compile(r"[ \t\xa0]+")


def decode_text(text: str) -> str:
    """Decode HTML entities and strip markup from catalog text."""
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", MarkupResemblesLocatorWarning)
        soup = BeautifulSoup(text, "html.parser")
    for br in soup.find_all("br"):
        br.replace_with("\n")
    return soup.get_text()


def split_paragraphs(text: str) -> List[str]:
    paragraphs = []
    for line in text.splitlines():
        line = _BLANK_RUN.sub(" ", line).strip()
        if line:
            paragraphs.append(line)
    return paragraphs


def _text_node(text: str) -> dict:
    return {
        "detail": 0,
        "format": 0,
        "mode": "normal",
        "style": "",
        "text": text,
        "type": "text",
        "version": 1,
    }


def _paragraph(text: str) -> dict:
    return {
        "children": [_text_node(text)],
        "direction": "ltr",
        "format": "",
        "indent": 0,
        "type": "paragraph",
        "version": 1,
    }


def format_rich_text(text: Optional[str]) -> Optional[dict]:
    """
    Format plain catalog text as a rich-text document.

    Args:
        text: Description as delivered by the catalog service

    Returns:
        Root/paragraph/text document, or None when the text is empty
    """
    if not text or not text.strip():
        return None
    paragraphs = split_paragraphs(decode_text(text))
    if not paragraphs:
        return None
    return {
        "root": {
            "children": [_paragraph(p) for p in paragraphs],
            "direction": "ltr",
            "format": "",
            "indent": 0,
            "type": "root",
            "version": 1,
        }
    }


def has_rich_text(document: Optional[dict]) -> bool:
    """True when a stored rich-text document has any content."""
    if not isinstance(document, dict):
        return False
    root = document.get("root") or {}
    return bool(root.get("children"))
