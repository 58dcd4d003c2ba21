"""Rendering of robot envelopes to stdout."""

import json
import sys
from dataclasses import dataclass
from typing import Any, TextIO

from ..utils.logging import LogContext, ValidationError, get_logger
from . import toon

logger = get_logger(__name__, LogContext.OUTPUT)

FORMATS = ("json", "toon", "auto")
VERBOSITIES = ("default", "terse", "debug")

# Short keys for --robot-verbosity=terse; values are unique so agents can invert it
TERSE_KEY_MAP = {
    "success": "ok",
    "timestamp": "ts",
    "version": "v",
    "output_format": "of",
    "error": "err",
    "error_code": "ec",
    "hint": "h",
    "_agent_hints": "ah",
    "sessions": "s",
    "panes": "p",
    "targets": "t",
    "agents": "a",
    "alerts": "al",
    "beads": "b",
    "messages": "m",
    "count": "n",
    "generated_at": "ga",
    "summary": "sum",
    "details": "d",
}


def terse_key_reverse_map() -> dict[str, str]:
    return {short: long for long, short in TERSE_KEY_MAP.items()}


@dataclass
class OutputOptions:
    """Output format and verbosity, fixed once per process."""

    format: str = "json"
    verbosity: str = "default"

    def __post_init__(self) -> None:
        self.format = (self.format or "json").lower()
        self.verbosity = (self.verbosity or "default").lower()
        if self.format not in FORMATS:
            raise ValidationError(
                f"Invalid output format: {self.format}",
                {"allowed": list(FORMATS)},
                hint="Use --robot-format=json, toon or auto",
            )
        if self.verbosity not in VERBOSITIES:
            raise ValidationError(
                f"Invalid verbosity: {self.verbosity}",
                {"allowed": list(VERBOSITIES)},
            )

    @property
    def resolved_format(self) -> str:
        # auto has no other target yet
        return "toon" if self.format == "toon" else "json"


def shorten_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {TERSE_KEY_MAP.get(k, k): shorten_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [shorten_keys(v) for v in value]
    return value


def apply_verbosity(data: dict[str, Any], verbosity: str) -> dict[str, Any]:
    if verbosity != "terse":
        return data
    trimmed = {k: v for k, v in data.items() if k != "_agent_hints"}
    return shorten_keys(trimmed)


def render(data: dict[str, Any], options: OutputOptions | None = None) -> str:
    """Render an envelope in the configured format."""
    options = options or OutputOptions()
    fmt = options.resolved_format
    if "success" in data:
        data = {**data, "output_format": fmt}
    data = apply_verbosity(data, options.verbosity)
    if fmt == "toon":
        return toon.encode(data)
    return json.dumps(data, indent=2, ensure_ascii=False, default=str)


def print_response(
    data: dict[str, Any], options: OutputOptions | None = None, stream: TextIO | None = None
) -> None:
    stream = stream or sys.stdout
    stream.write(render(data, options) + "\n")
    stream.flush()
