"""Pure helpers for building and validating tmux commands."""

import re

from ..utils.logging import ValidationError

SESSION_NAME_RE = re.compile(r"^[a-zA-Z0-9_-]+$")


def shell_quote(value: str) -> str:
    """Quote a string for POSIX shells using single quotes."""
    if value == "":
        return "''"
    return "'" + value.replace("'", "'\"'\"'") + "'"


def validate_session_name(name: str) -> str:
    """Validate a session name.

    Args:
        name: Candidate session name

    Returns:
        The name unchanged when valid

    Raises:
        ValidationError: If the name is empty or contains invalid characters
    """
    if not name:
        raise ValidationError("session name cannot be empty")
    # tmux uses ':' as a target separator and '.' as the pane separator
    if ":" in name:
        raise ValidationError("session name cannot contain ':'", {"session": name})
    if "." in name:
        raise ValidationError("session name cannot contain '.'", {"session": name})
    if not SESSION_NAME_RE.match(name):
        raise ValidationError(
            f"session name {name!r} contains invalid characters "
            "(allowed: a-z, A-Z, 0-9, _, -)",
            {"session": name},
        )
    return name


def sanitize_pane_command(command: str) -> str:
    """Reject control characters that would inject key sequences into a pane."""
    for char in command:
        if char in ("\n", "\r", "\x00"):
            raise ValidationError("command contains disallowed control characters")
        if ord(char) < 0x20 and char != "\t":
            raise ValidationError(
                f"command contains disallowed control character 0x{ord(char):02x}"
            )
    return command


def build_pane_command(directory: str, command: str) -> str:
    """Build a ``cd <dir> && <command>`` line safe to type into a pane."""
    safe_command = sanitize_pane_command(command)
    return f"cd {shell_quote(directory)} && {safe_command}"


def split_chunks(text: str, chunk_size: int = 4096) -> list[str]:
    """Split text into pieces of at most ``chunk_size`` UTF-8 bytes.

    Chunks never split a multi-byte character.
    """
    data = text.encode("utf-8")
    if len(data) <= chunk_size:
        return [text]

    chunks = []
    start = 0
    while start < len(data):
        end = min(start + chunk_size, len(data))
        # Back off to the start of a UTF-8 sequence
        while end < len(data) and end > start and (data[end] & 0xC0) == 0x80:
            end -= 1
        if end == start:
            end = min(start + chunk_size, len(data))
        chunks.append(data[start:end].decode("utf-8", errors="replace"))
        start = end
    return chunks
