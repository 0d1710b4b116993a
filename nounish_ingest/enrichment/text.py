"""
Cast text reconstruction and normalization.

Farcaster stores mentions out of band: the text has the handles removed
and each mention is a (UTF-8 byte offset, fid) pair. Offsets are mapped
to string positions before the `@handle` strings are put back.
"""

import re
from typing import Mapping, Sequence

from nounish_ingest.core.errors import MentionDataError

MARKDOWN_IMAGE = re.compile(r"!\[[^\]]*\]\([^)]*\)")
HEADING_MARKER = re.compile(r"^[ \t]*#{1,6}[ \t]+", re.MULTILINE)
LIST_MARKER = re.compile(r"^[ \t]*(?:[-*+]|\d+\.)[ \t]+", re.MULTILINE)
HTML_TAG = re.compile(r"<[^>]+>")
EMPHASIS_CHARS = re.compile(r"[#*]")
WHITESPACE = re.compile(r"\s+")


def byte_offset_table(text: str) -> dict[int, int]:
    """
    Map each code point boundary's UTF-8 byte offset to its string index.

    The total byte length maps to len(text), so an offset pointing at the
    end of the text is valid.
    """
    table = {}
    byte_pos = 0
    for index, char in enumerate(text):
        table[byte_pos] = index
        byte_pos += len(char.encode("utf-8"))
    table[byte_pos] = len(text)
    return table


def insert_mentions(
    text: str,
    mentions: Sequence[tuple[int, int]],
    fid_to_fname: Mapping[int, str],
) -> str:
    """
    Put `@handle` strings back into a cast's text.

    Args:
        text: Text with mentions removed
        mentions: (byte offset, fid) pairs in any order
        fid_to_fname: Handle lookup; unknown fids are rendered as the fid

    Returns:
        Text with one `@fname` (or `@fid`) inserted per mention. Mentions at
        the same offset keep their input order.

    Raises:
        MentionDataError: If an offset is out of range or inside a character
    """
    if not mentions:
        return text

    table = byte_offset_table(text)
    resolved = []
    for byte_offset, fid in mentions:
        position = table.get(byte_offset)
        if position is None:
            raise MentionDataError(
                f"Mention offset {byte_offset} for fid {fid} is not a character boundary "
                f"(text is {len(text.encode('utf-8'))} bytes)",
                positions=[m[0] for m in mentions],
                fids=[m[1] for m in mentions],
            )
        resolved.append((position, fid))

    # sorted() is stable, so equal positions keep their input order
    resolved.sort(key=lambda item: item[0])

    parts = []
    cursor = 0
    for position, fid in resolved:
        parts.append(text[cursor:position])
        parts.append(f"@{fid_to_fname.get(fid) or fid}")
        cursor = position
    parts.append(text[cursor:])
    return "".join(parts)


def clean_text_for_embedding(text: str) -> str:
    """
    Normalize text before it is embedded.

    Escaped newlines are unescaped first. Markdown images are removed,
    then heading and list markers at the start of a line. HTML tags and any
    remaining `#` and `*` go next. Whitespace, newlines included, is
    collapsed and the result is trimmed and lower-cased.

    >>> clean_text_for_embedding("Hello\\n\\nWorld  ![img](x)\\n# Title\\n")
    'hello world title'
    """
    if not text:
        return ""
    text = text.replace("\\r", "\n").replace("\\n", "\n").replace("\r", "\n")
    text = MARKDOWN_IMAGE.sub("", text)
    text = HEADING_MARKER.sub("", text)
    text = LIST_MARKER.sub("", text)
    text = HTML_TAG.sub("", text)
    text = EMPHASIS_CHARS.sub("", text)
    text = WHITESPACE.sub(" ", text)
    return text.strip().lower()
