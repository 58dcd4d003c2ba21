"""Structured pane title codec.

Titles follow ``{session}__{kind}_{index}[_{variant}][{tags}]``, for example
``proj__cc_1``, ``proj__cc_1[frontend]`` or ``proj__cc_1_opus[backend,api]``.
"""

import re
from dataclasses import dataclass, field

from ..core.enums import AgentKind
from ..utils.logging import ValidationError

PANE_TITLE_RE = re.compile(
    r"^.+__([\w-]+)_(\d+)(?:_([A-Za-z0-9._/@:+-]+))?(?:\[([^\]]*)\])?$"
)
VARIANT_RE = re.compile(r"^[A-Za-z0-9._/@:+-]+$")
KIND_TOKEN_RE = re.compile(r"^[A-Za-z-]+$")


@dataclass
class ParsedTitle:
    """Fields recovered from a pane title."""

    kind: AgentKind = AgentKind.USER
    index: int = 0
    variant: str = ""
    tags: list[str] = field(default_factory=list)
    token: str = ""

    @property
    def structured(self) -> bool:
        return bool(self.token)


def parse_tags(value: str | None) -> list[str]:
    """Split a comma-separated tag string, dropping blanks."""
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def format_tags(tags: list[str] | None) -> str:
    """Render tags as ``[a,b]``; empty input renders as an empty string."""
    if not tags:
        return ""
    return "[" + ",".join(tags) + "]"


def validate_tags(tags: list[str] | None) -> list[str]:
    """Validate tags for use inside a title."""
    for tag in tags or []:
        if not tag or not tag.strip():
            raise ValidationError("tag cannot be empty")
        if "[" in tag or "]" in tag:
            raise ValidationError(
                f"tag {tag!r} contains invalid characters '[' or ']'", {"tag": tag}
            )
        if "," in tag:
            raise ValidationError(f"tag {tag!r} cannot contain ','", {"tag": tag})
    return list(tags or [])


def validate_variant(variant: str) -> str:
    """Validate a variant token so the title parses back to the same fields.

    An all-digit variant would be read back as the index.
    """
    if not VARIANT_RE.match(variant) or variant.isdigit():
        raise ValidationError(
            f"invalid variant {variant!r}",
            {"variant": variant},
            hint="Use letters, digits and . / @ : + - with at least one non-digit",
        )
    return variant


def strip_tags(title: str) -> str:
    """Remove a trailing ``[...]`` block from a title."""
    idx = title.rfind("[")
    if idx == -1:
        return title
    if title.endswith("]") and idx < len(title) - 1:
        return title[:idx]
    return title


def format_title(
    session: str,
    kind: AgentKind | str,
    index: int,
    variant: str = "",
    tags: list[str] | None = None,
) -> str:
    """Build a structured pane title.

    Args:
        session: Session name
        kind: Agent kind or an alias for one
        index: Per-kind agent index
        variant: Optional model alias or persona name
        tags: Optional user tags

    Returns:
        The formatted title

    Raises:
        ValidationError: If the session is empty, the index is below 1, the
            variant contains characters outside the title grammar, or a tag
            is empty or contains brackets or commas
    """
    if not session:
        raise ValidationError("session name cannot be empty")
    if index < 1:
        raise ValidationError(f"agent index must be >= 1, got {index}", {"index": index})
    if not isinstance(kind, AgentKind):
        resolved = AgentKind.from_alias(kind)
        token = resolved.short if resolved is not AgentKind.UNKNOWN else kind
        if not KIND_TOKEN_RE.match(token):
            raise ValidationError(f"invalid agent kind {kind!r}", {"kind": kind})
    else:
        token = kind.short
    title = f"{session}__{token}_{index}"
    if variant:
        title += f"_{validate_variant(variant)}"
    return title + format_tags(validate_tags(tags))


def parse_title(title: str | None) -> ParsedTitle:
    """Parse a pane title, falling back to a plain user pane."""
    match = PANE_TITLE_RE.match(title or "")
    if not match:
        return ParsedTitle()

    token, index, variant, tags = match.groups()
    return ParsedTitle(
        kind=AgentKind.from_alias(token),
        index=int(index),
        variant=variant or "",
        tags=parse_tags(tags),
        token=token,
    )
