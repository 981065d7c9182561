"""HTML entity decoding for scraped page text.

Decoding is a table lookup plus numeric conversion; no HTML parser is used
on fetched markup.
"""

import re

NAMED_ENTITIES = {
    "amp": "&",
    "lt": "<",
    "gt": ">",
    "quot": '"',
    "apos": "'",
    "nbsp": "\u00a0",
    "ndash": "\u2013",
    "mdash": "\u2014",
    "lsquo": "\u2018",
    "rsquo": "\u2019",
    "ldquo": "\u201c",
    "rdquo": "\u201d",
    "hellip": "\u2026",
    "trade": "\u2122",
    "copy": "\u00a9",
    "reg": "\u00ae",
}

_NAMED_RE = re.compile(r"&([a-z]+);", re.IGNORECASE)
_DECIMAL_RE = re.compile(r"&#(\d+);")
_HEX_RE = re.compile(r"&#x([0-9a-f]+);", re.IGNORECASE)


def _codepoint(value: int, original: str) -> str:
    try:
        return chr(value)
    except (ValueError, OverflowError):
        return original


def decode_html_entities(text: str) -> str:
    """Decode named, decimal and hex HTML entities.

    Unknown named entities and out-of-range code points are left as-is.

    Example:
        "Tom &amp; Jerry &#8211; &#x27;Classic&#x27;" -> "Tom & Jerry – 'Classic'"
    """
    text = _NAMED_RE.sub(
        lambda m: NAMED_ENTITIES.get(m.group(1).lower(), m.group(0)), text
    )
    text = _DECIMAL_RE.sub(lambda m: _codepoint(int(m.group(1)), m.group(0)), text)
    text = _HEX_RE.sub(lambda m: _codepoint(int(m.group(1), 16), m.group(0)), text)
    return text
