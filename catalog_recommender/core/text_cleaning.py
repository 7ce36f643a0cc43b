"""
Cleaning of historical record narratives before embedding: markup removal,
boilerplate trimming and truncation to the provider's input limit.
"""

import re
import unicodedata
from typing import Iterable, Pattern

from bs4 import BeautifulSoup

# Lines from which everything below is quoted mail or a signature
BOILERPLATE_CUTOFFS = [
    re.compile(r"^-{2,}\s*original message\s*-{2,}", re.IGNORECASE | re.MULTILINE),
    re.compile(r"^on .{1,200} wrote:\s*$", re.IGNORECASE | re.MULTILINE),
    re.compile(r"^from:\s.+$\n^sent:\s", re.IGNORECASE | re.MULTILINE),
    re.compile(r"^sent from my \w+", re.IGNORECASE | re.MULTILINE),
    re.compile(r"^-- ?$", re.MULTILINE),
]

# Fragments removed wherever they appear
BOILERPLATE_FRAGMENTS = [
    re.compile(r"this e-?mail and any attachments? (?:are|is) confidential.*?(?:\.|$)", re.IGNORECASE | re.DOTALL),
    re.compile(r"\[(?:cid|image):[^\]]*\]", re.IGNORECASE),
]


def strip_markup(raw: str) -> str:
    """Strip HTML/XML tags, keeping the text content."""
    if not raw:
        return ""
    # Fast path: no '<' means there is no markup
    if "<" not in raw:
        return raw
    soup = BeautifulSoup(raw, "html.parser")
    for element in soup(["script", "style"]):
        element.decompose()
    return soup.get_text("\n")


def trim_boilerplate(text: str, cutoffs: Iterable[Pattern] = None, fragments: Iterable[Pattern] = None) -> str:
    """Drop quoted replies, signatures and disclaimer fragments."""
    for pattern in cutoffs if cutoffs is not None else BOILERPLATE_CUTOFFS:
        match = pattern.search(text)
        if match:
            text = text[:match.start()]
    for pattern in fragments if fragments is not None else BOILERPLATE_FRAGMENTS:
        text = pattern.sub(" ", text)
    return text


def normalize_whitespace(text: str) -> str:
    """Collapse all whitespace runs into a single space and strip edges."""
    return re.sub(r"\s+", " ", text).strip()


def truncate(text: str, max_chars: int) -> str:
    """Hard cap on input size, cut back to the last word boundary when possible."""
    if len(text) <= max_chars:
        return text
    cut = text[:max_chars]
    boundary = cut.rfind(" ")
    if boundary > max_chars // 2:
        cut = cut[:boundary]
    return cut.rstrip()


def clean_text(raw: str, max_chars: int = 8000) -> str:
    """Full cleaning pipeline applied to every record before embedding."""
    if not raw:
        return ""
    text = unicodedata.normalize("NFC", raw)
    text = strip_markup(text)
    text = trim_boilerplate(text)
    text = normalize_whitespace(text)
    return truncate(text, max_chars)
