"""Frontmatter codec for content documents.

Documents start with a ``---`` delimited header holding a narrow YAML subset:
scalar ``key: value`` lines, flat block sequences and one nested ``activity``
list of mappings. This module emits exactly that subset and parses it back;
it is not a general YAML reader.

Emission rules:
    * keys in the order given
    * strings always double-quoted; backslash, quote and newline escaped
    * booleans and numbers bare
    * lists as block sequences, empty lists as ``[]``
    * ``None`` values omitted
"""

import re
from typing import Any, Iterable, NamedTuple

from capturedesk.core.exceptions import ValidationError

_DOCUMENT = re.compile(r"^---\n([\s\S]*?)\n---\n?([\s\S]*)$")
_ACTIVITY_KEY = re.compile(r"^activity:\s*(\[\])?\s*$")
_ENTRY_START = re.compile(r"^(\s*)-\s+date:\s*(.*)$")
_LIST_ITEM = re.compile(r"^(\s*)-\s+(.*)$")
_KEY_VALUE = re.compile(r"^(\s*)([A-Za-z][A-Za-z0-9_]*):\s*(.*)$")
_ESCAPE = re.compile(r'\\(["\\nt])')
_ESCAPES = {'"': '"', "\\": "\\", "n": "\n", "t": "\t"}

# Activity entry keys in emission order.
ACTIVITY_FIELDS = (
    "date",
    "title",
    "summary",
    "tags",
    "type",
    "highlights",
    "image",
    "imageAlt",
    "imageCaption",
    "actionLabel",
    "actionUrl",
    "code",
    "codeLanguage",
    "links",
)


class Document(NamedTuple):
    frontmatter: str
    body: str


def split_frontmatter(raw: str) -> Document:
    """Split a document into its header block and body.

    A document without a leading ``---`` block is all body.
    """
    text = raw.replace("\r\n", "\n")
    match = _DOCUMENT.match(text)
    if not match:
        return Document("", text)
    return Document(match.group(1), match.group(2) or "")


# ---------------------------------------------------------------------------
# Scalars
# ---------------------------------------------------------------------------


def quote(value: str) -> str:
    """Double-quote a string for the header."""
    escaped = (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\r\n", "\n")
        .replace("\n", "\\n")
        .replace("\t", "\\t")
    )
    return f'"{escaped}"'


def unquote(raw: str) -> str:
    """Strip one layer of surrounding quotes, undoing the escapes ``quote`` adds."""
    value = raw.strip()
    if len(value) >= 2 and value[0] == value[-1] == '"':
        return _ESCAPE.sub(lambda m: _ESCAPES[m.group(1)], value[1:-1])
    if len(value) >= 2 and value[0] == value[-1] == "'":
        return value[1:-1].replace("''", "'")
    return value


def format_scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return quote(str(value))


def parse_field(frontmatter: str, key: str) -> str | None:
    """Value of a top-level ``key: value`` line, unquoted. None if absent."""
    match = re.search(rf"^{re.escape(key)}:[ \t]*(.+)$", frontmatter, re.MULTILINE)
    if not match:
        return None
    return unquote(match.group(1))


def parse_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() == "true"


def _parse_inline_list(raw: str) -> list[str]:
    inner = raw.strip()[1:-1].strip()
    if not inner:
        return []
    return [unquote(part) for part in inner.split(",")]


def parse_list_field(frontmatter: str, key: str) -> list[str]:
    """Top-level sequence under ``key``, in block or inline ``[a, b]`` form."""
    lines = frontmatter.split("\n")
    for index, line in enumerate(lines):
        match = re.match(rf"^{re.escape(key)}:[ \t]*(.*)$", line)
        if not match:
            continue
        rest = match.group(1).strip()
        if rest.startswith("[") and rest.endswith("]"):
            return _parse_inline_list(rest)
        if rest:
            return [unquote(rest)]
        items = []
        for item_line in lines[index + 1 :]:
            item = _LIST_ITEM.match(item_line)
            if not item or not item.group(1):
                break
            items.append(unquote(item.group(2)))
        return items
    return []


# ---------------------------------------------------------------------------
# Emission
# ---------------------------------------------------------------------------


def _emit_list(key: str, values: list[Any], indent: str) -> list[str]:
    if not values:
        return [f"{indent}{key}: []"]
    return [f"{indent}{key}:"] + [f"{indent}  - {format_scalar(v)}" for v in values]


def serialize_frontmatter(fields: dict[str, Any]) -> str:
    """Emit header lines (without delimiters) for ``fields`` in order."""
    lines: list[str] = []
    for key, value in fields.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            lines.extend(_emit_list(key, list(value), ""))
        else:
            lines.append(f"{key}: {format_scalar(value)}")
    return "\n".join(lines)


def render_document(fields: dict[str, Any], body: str) -> str:
    """Full document text: header block, blank line, body, trailing newline."""
    return f"---\n{serialize_frontmatter(fields)}\n---\n\n{body}\n"


def serialize_activity_entry(entry: dict[str, Any], indent: str = "  ") -> list[str]:
    """Emit one activity entry as indented lines, starting with ``- date:``.

    ``entry`` uses the camelCase keys of ACTIVITY_FIELDS. ``links`` is a list
    of ``{"label", "url"}`` mappings.
    """
    field_indent = indent + "  "
    lines = [f"{indent}- date: {format_scalar(entry['date'])}"]
    for key in ACTIVITY_FIELDS[1:]:
        value = entry.get(key)
        if value is None:
            continue
        if key == "links":
            if not value:
                lines.append(f"{field_indent}links: []")
                continue
            lines.append(f"{field_indent}links:")
            for link in value:
                lines.append(f"{field_indent}  - label: {format_scalar(link['label'])}")
                lines.append(f"{field_indent}    url: {format_scalar(link['url'])}")
        elif isinstance(value, (list, tuple)):
            lines.extend(_emit_list(key, list(value), field_indent))
        else:
            lines.append(f"{field_indent}{key}: {format_scalar(value)}")
    return lines


# ---------------------------------------------------------------------------
# Activity list
# ---------------------------------------------------------------------------


def _indent_of(line: str) -> int:
    return len(line) - len(line.lstrip(" "))


def parse_activity_list(frontmatter: str) -> list[dict[str, Any]]:
    """Parse the ``activity:`` list into dicts keyed like ACTIVITY_FIELDS.

    Each ``- date:`` line starts an entry; deeper ``key: value`` lines fill it.
    Nested block sequences (``tags``, ``highlights``) and the ``links`` list of
    label/url mappings are collected too. The list ends at the first line that
    is neither blank nor indented.
    """
    entries: list[dict[str, Any]] = []
    current: dict[str, Any] | None = None
    field_indent = 0
    list_key: str | None = None
    link: dict[str, str] | None = None
    in_activity = False

    for line in frontmatter.split("\n"):
        if not in_activity:
            if _ACTIVITY_KEY.match(line):
                in_activity = True
            continue

        if not line.strip():
            continue
        if not line[0].isspace():
            break

        start = _ENTRY_START.match(line)
        if start:
            current = {"date": unquote(start.group(2))}
            entries.append(current)
            field_indent = line.index("date:")
            list_key = None
            link = None
            continue

        if current is None:
            continue

        indent = _indent_of(line)
        item = _LIST_ITEM.match(line)
        if item and list_key and indent >= field_indent:
            content = item.group(2)
            if list_key == "links":
                pair = _KEY_VALUE.match(content)
                if pair:
                    link = {pair.group(2): unquote(pair.group(3))}
                    current["links"].append(link)
            else:
                current[list_key].append(unquote(content))
            continue

        pair = _KEY_VALUE.match(line)
        if not pair:
            continue
        key, raw = pair.group(2), pair.group(3).strip()

        if indent > field_indent and list_key == "links" and link is not None:
            link[key] = unquote(raw)
            continue
        if indent != field_indent:
            continue

        link = None
        if raw == "":
            list_key = key
            current[key] = []
        elif raw.startswith("[") and raw.endswith("]"):
            list_key = None
            current[key] = _parse_inline_list(raw)
        else:
            list_key = None
            current[key] = unquote(raw)

    return entries


def merge_activity(document: str, entries: Iterable[dict[str, Any]]) -> str:
    """Prepend activity entries to a document's ``activity:`` list.

    Entries are spliced one at a time, each directly after the ``activity:``
    key, so the last entry given ends up first. Pass entries oldest first to
    get a newest-first log. When the key is missing it is created before the
    ``draft:`` field, or before the closing delimiter.

    Raises:
        ValidationError: If the document has no frontmatter block.
    """
    lines = document.split("\n")
    if not lines or lines[0].strip() != "---":
        raise ValidationError("Project document has no frontmatter")
    close = next(
        (i for i in range(1, len(lines)) if lines[i].strip() == "---"), None
    )
    if close is None:
        raise ValidationError("Project document frontmatter is not closed")

    for entry in entries:
        block = serialize_activity_entry(entry)
        activity_at = next(
            (i for i in range(1, close) if _ACTIVITY_KEY.match(lines[i])), None
        )
        if activity_at is None:
            insert_at = next(
                (i for i in range(1, close) if lines[i].startswith("draft:")), close
            )
            lines[insert_at:insert_at] = ["activity:"] + block
        else:
            lines[activity_at] = "activity:"
            lines[activity_at + 1 : activity_at + 1] = block
        close += len(block) + (1 if activity_at is None else 0)

    return "\n".join(lines)
