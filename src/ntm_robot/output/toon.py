"""
TOON renderer: a compact, indentation-based text form of JSON data.

Arrays of objects that share the same primitive fields are emitted as a
table (``key[N]{a,b}:`` followed by tab-delimited rows), primitive arrays as
``key[N]: a,b``. Keys are sorted so output is stable.
"""

import json
import math
from typing import Any

INDENT = "  "
_SPECIAL = set(",:\t\n\r\"'[]{}#")
_LITERALS = {"true", "false", "null"}


def _is_primitive(value: Any) -> bool:
    return value is None or isinstance(value, (str, int, float, bool))


def _looks_numeric(text: str) -> bool:
    try:
        float(text)
    except ValueError:
        return False
    return True


def format_scalar(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return "null"
        if value.is_integer():
            return str(int(value))
        return repr(value)
    text = str(value)
    if (
        not text
        or text != text.strip()
        or " " in text
        or any(c in _SPECIAL for c in text)
        or text.startswith("-")
        or text in _LITERALS
        or _looks_numeric(text)
    ):
        return json.dumps(text, ensure_ascii=False)
    return text


def _table_fields(items: list[Any]) -> list[str] | None:
    """Shared sorted field names when every item is a flat object."""
    if not items or not all(isinstance(item, dict) and item for item in items):
        return None
    fields = sorted(items[0])
    for item in items:
        if sorted(item) != fields:
            return None
        if not all(_is_primitive(v) for v in item.values()):
            return None
    return fields


def _encode_list(prefix: str, items: list[Any], depth: int, lines: list[str]) -> None:
    pad = INDENT * depth
    if all(_is_primitive(item) for item in items):
        values = ",".join(format_scalar(item) for item in items)
        lines.append(f"{pad}{prefix}[{len(items)}]:" + (f" {values}" if values else ""))
        return

    fields = _table_fields(items)
    if fields is not None:
        lines.append(f"{pad}{prefix}[{len(items)}]{{{','.join(fields)}}}:")
        row_pad = INDENT * (depth + 1)
        for item in items:
            lines.append(row_pad + "\t".join(format_scalar(item[f]) for f in fields))
        return

    lines.append(f"{pad}{prefix}[{len(items)}]:")
    item_pad = INDENT * (depth + 1)
    for item in items:
        if _is_primitive(item):
            lines.append(f"{item_pad}- {format_scalar(item)}")
        elif isinstance(item, list):
            _encode_list("-", item, depth + 1, lines)
        else:
            lines.append(f"{item_pad}-")
            _encode_dict(item, depth + 2, lines)


def _encode_dict(data: dict[str, Any], depth: int, lines: list[str]) -> None:
    pad = INDENT * depth
    for key in sorted(data):
        value = data[key]
        name = format_scalar(str(key))
        if _is_primitive(value):
            lines.append(f"{pad}{name}: {format_scalar(value)}")
        elif isinstance(value, dict):
            if not value:
                lines.append(f"{pad}{name}: {{}}")
                continue
            lines.append(f"{pad}{name}:")
            _encode_dict(value, depth + 1, lines)
        elif isinstance(value, (list, tuple)):
            _encode_list(name, list(value), depth, lines)
        else:
            lines.append(f"{pad}{name}: {format_scalar(str(value))}")


def encode(value: Any) -> str:
    """Render JSON-compatible data as TOON text."""
    lines: list[str] = []
    if isinstance(value, dict):
        _encode_dict(value, 0, lines)
    elif isinstance(value, (list, tuple)):
        _encode_list("", list(value), 0, lines)
    else:
        lines.append(format_scalar(value))
    return "\n".join(lines)
