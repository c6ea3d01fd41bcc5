"""Parse user-supplied import files into content items.

Import text is tried as strict JSON first. Files written by hand or
copied out of JavaScript source are often not valid JSON, so a second,
relaxed pass accepts:

- unquoted identifier keys (``{title: "A"}``)
- single-quoted strings
- trailing commas
- ``//`` and ``/* */`` comments
- ``undefined`` (read as null)

The relaxed pass rewrites the text into strict JSON and hands it back
to ``json.loads``; nothing in the payload is ever evaluated.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping

from storyshelf.dedupe import deduplicate
from storyshelf.models import CONTENT_TYPES, ContentItem, ContentType, new_temporary_id

logger = logging.getLogger(__name__)

_WHITESPACE = " \t\r\n"


class ImportFormatError(ValueError):
    """The import payload could not be understood."""


def _is_ident_start(ch: str) -> bool:
    return ch.isalpha() or ch in ("_", "$")


def _is_ident_char(ch: str) -> bool:
    return ch.isalnum() or ch in ("_", "$")


def _read_string(s: str, start: int) -> tuple[str, int]:
    """Read a quoted string starting at *start*; return (json_literal, end)."""
    quote = s[start]
    out: list[str] = []
    i = start + 1
    while i < len(s):
        ch = s[i]
        if ch == "\\":
            if i + 1 >= len(s):
                break
            nxt = s[i + 1]
            # \' is legal in JS single-quoted strings but not in JSON
            out.append("'" if nxt == "'" else ch + nxt)
            i += 2
            continue
        if ch == quote:
            return '"' + "".join(out) + '"', i + 1
        if ch == '"':
            out.append('\\"')
        elif ord(ch) < 0x20:
            # raw tabs and newlines are legal in hand-written files, not in JSON
            out.append(f"\\u{ord(ch):04x}")
        else:
            out.append(ch)
        i += 1
    raise ImportFormatError("Unterminated string in import data")


def _skip_comment(s: str, i: int) -> int:
    """Return the index after a comment starting at *i*, or *i* if none."""
    if s.startswith("//", i):
        end = s.find("\n", i)
        return len(s) if end == -1 else end
    if s.startswith("/*", i):
        end = s.find("*/", i + 2)
        if end == -1:
            raise ImportFormatError("Unterminated comment in import data")
        return end + 2
    return i


def _drop_trailing_comma(out: list[str]) -> None:
    j = len(out) - 1
    while j >= 0 and out[j].isspace():
        j -= 1
    if j >= 0 and out[j] == ",":
        del out[j]


def _repair(text: str) -> str:
    """Rewrite relaxed object-literal syntax into strict JSON."""
    out: list[str] = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]

        if ch in ("'", '"'):
            literal, i = _read_string(text, i)
            out.append(literal)
            continue

        if ch == "/":
            after = _skip_comment(text, i)
            if after != i:
                i = after
                continue

        if ch in ("}", "]"):
            _drop_trailing_comma(out)
            out.append(ch)
            i += 1
            continue

        if _is_ident_start(ch):
            j = i
            while j < n and _is_ident_char(text[j]):
                j += 1
            word = text[i:j]
            k = j
            while k < n and text[k] in _WHITESPACE:
                k += 1
            if k < n and text[k] == ":":
                out.append(json.dumps(word))
            elif word == "undefined":
                out.append("null")
            else:
                # true/false/null/NaN etc. pass through; json decides
                out.append(word)
            i = j
            continue

        out.append(ch)
        i += 1
    return "".join(out)


def relaxed_loads(text: str) -> object:
    """Parse relaxed JSON (see module docstring).

    Raises:
        ImportFormatError: If the text cannot be read even leniently.
    """
    repaired = _repair(text)
    try:
        return json.loads(repaired)
    except json.JSONDecodeError as exc:
        raise ImportFormatError(f"Import data is not valid JSON: {exc.msg}") from exc


def decode_import(data: bytes) -> str:
    """Decode raw import file bytes, dropping a UTF-8 byte order mark."""
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ImportFormatError("Import file is not UTF-8 text") from exc


def parse_payload(text: str) -> list[object]:
    """Decode import text into a list of raw item records.

    Accepts a bare list or an envelope ``{"version": ..., "items": [...]}``.
    """
    text = text.removeprefix("\ufeff")
    if not text or not text.strip():
        raise ImportFormatError("Import data is empty")
    try:
        data: object = json.loads(text)
    except json.JSONDecodeError:
        logger.info("Import text is not strict JSON, retrying with relaxed parser")
        data = relaxed_loads(text)

    if isinstance(data, Mapping) and isinstance(data.get("items"), list):
        data = data["items"]
    if not isinstance(data, list):
        raise ImportFormatError("Import data must be a list of items")
    return data


def expand_compact(row: list | tuple) -> dict[str, object]:
    """Expand a compact seed row ``[id, title, type_index, content]``."""
    if len(row) < 4:
        raise ImportFormatError(f"Compact seed row needs 4 fields, got {len(row)}")
    item_id, title, type_index, content = row[:4]
    try:
        type_ = CONTENT_TYPES[int(type_index)].value
    except (TypeError, ValueError, IndexError) as exc:
        raise ImportFormatError(f"Unknown type index in seed row: {type_index!r}") from exc
    return {
        "id": item_id,
        "title": title,
        "type": type_,
        "content": content,
        "readCount": 0,
        "favorite": False,
        "archived": False,
    }


def coerce_item(raw: object) -> ContentItem:
    """Apply import defaults to one raw record."""
    if isinstance(raw, (list, tuple)):
        raw = expand_compact(raw)
    if not isinstance(raw, Mapping):
        raise ImportFormatError(f"Import entry is not an object: {raw!r}")

    read_count = raw.get("readCount")
    if read_count is None:
        read_count = raw.get("read_count")

    try:
        return ContentItem(
            id=raw.get("id") or new_temporary_id(jitter=True),
            title=raw.get("title") or "",
            type=raw.get("type") or ContentType.POEM.value,
            content=raw.get("content") or "",
            read_count=read_count or 0,
            favorite=bool(raw.get("favorite") or False),
            archived=bool(raw.get("archived") or False),
        )
    except ValueError as exc:
        raise ImportFormatError(f"Invalid import entry: {exc}") from exc


def parse_import(text: str) -> list[ContentItem]:
    """Parse, default and deduplicate an import payload."""
    records = parse_payload(text)
    items = [coerce_item(raw) for raw in records]
    result = deduplicate(items)
    logger.info("Parsed %d import item(s), %d after dedupe", len(items), len(result))
    return result
