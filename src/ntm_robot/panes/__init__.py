"""Pane identity: structured title codec and the pane registry."""

from .registry import PaneRegistry
from .titles import (
    PANE_TITLE_RE,
    ParsedTitle,
    format_tags,
    format_title,
    parse_tags,
    parse_title,
    strip_tags,
    validate_tags,
)

__all__ = [
    "PANE_TITLE_RE",
    "PaneRegistry",
    "ParsedTitle",
    "format_tags",
    "format_title",
    "parse_tags",
    "parse_title",
    "strip_tags",
    "validate_tags",
]
