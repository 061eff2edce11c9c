"""
Normalization of raw Sefaria text and reference helpers

Section references:
Sefaria addresses a section of a text by appending a 1-based index to the
base reference, e.g. the third line of "Berakhot 2a" is "Berakhot 2a:3".
Internally sections are 0-based, so:

- section_ref("Berakhot 2a", 2) → "Berakhot 2a:3"
- parse_section_ref("Berakhot 2a:3") → ("Berakhot 2a", 2)
"""

import html
import re
from typing import Any, List, Optional, Tuple

from .schema import SourceText

_SECTION_SUFFIX = re.compile(r"^(?P<base>.+):(?P<index>\d+)$")


def decode_html(text: str) -> str:
    """Decodes HTML entities (&nbsp;, &quot;, &#1488; ...) into plain text"""
    if not text:
        return ""
    return html.unescape(text)


def _section_to_string(section: Any) -> str:
    # Complex texts may nest one more level - flatten a section into one string
    if isinstance(section, list):
        return " ".join(_section_to_string(s) for s in section if s)
    if section is None:
        return ""
    return decode_html(str(section))


def normalize_source_text(raw: Any) -> SourceText:
    """
    Normalizes the `he`/`text` field of a Sefaria response

    A string stays a string, a list stays a list (one element per section),
    anything else becomes an empty string.
    """
    if isinstance(raw, str):
        return decode_html(raw)
    if isinstance(raw, list):
        return [_section_to_string(section) for section in raw]
    return ""


def join_source_text(text: SourceText) -> str:
    """Joins a sectioned text into a single string for whole-text translation"""
    if isinstance(text, list):
        return " ".join(text)
    return text or ""


def format_reference(ref: str) -> str:
    """Clean up reference format ("Berakhot_2a" → "Berakhot 2a")"""
    return ref.replace("_", " ").strip()


def section_ref(base_ref: str, section_index: int) -> str:
    """Builds the reference of a 0-based section of `base_ref`"""
    if section_index < 0:
        raise ValueError(f"Section index must be >= 0, got {section_index}")
    return f"{base_ref}:{section_index + 1}"


def parse_section_ref(ref: str) -> Optional[Tuple[str, int]]:
    """
    Splits a section reference into (base reference, 0-based index)

    Returns None when the reference has no trailing `:digits` or the
    index is 0 (section numbers are 1-based).
    """
    match = _SECTION_SUFFIX.match(ref)
    if not match:
        return None
    index = int(match.group("index"))
    if index < 1:
        return None
    return match.group("base"), index - 1


def section_refs(base_ref: str, count: int) -> List[str]:
    """References of the first `count` sections of `base_ref`"""
    return [section_ref(base_ref, i) for i in range(count)]
