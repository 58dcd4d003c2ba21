"""Path pattern matching for reservations."""

import fnmatch
import posixpath


def _normalize(value: str) -> str:
    if value.startswith("./"):
        value = value[2:]
    return posixpath.normpath(value)


def _match_segments(pattern: str, path: str) -> bool:
    pattern_parts = _normalize(pattern).split("/")
    path_parts = _normalize(path).split("/")
    if len(pattern_parts) != len(path_parts):
        return False
    return all(
        fnmatch.fnmatchcase(part, pat) for part, pat in zip(path_parts, pattern_parts)
    )


def match_pattern(pattern: str, path: str) -> bool:
    """Check whether a reservation pattern covers a path.

    Supported forms:
    - exact match: ``src/main.go``
    - recursive: ``src/**`` matches any descendant, ``src/**/test.go`` any depth
    - segment glob: ``src/*.go`` matches immediate children only
    - basename glob: ``*.go`` matches by suffix across the whole path
    - directory prefix: ``src/`` or ``src``
    """
    if path == pattern:
        return True

    if "**" in pattern:
        prefix, _, suffix = pattern.partition("**")
        suffix = suffix.lstrip("/")
        if not path.startswith(prefix):
            return False
        if not suffix:
            return True
        remaining = path[len(prefix) :]
        if any(ch in suffix for ch in "*?["):
            tail = remaining.split("/")
            depth = len(suffix.split("/"))
            return len(tail) >= depth and _match_segments(suffix, "/".join(tail[-depth:]))
        return remaining.endswith(suffix)

    if any(ch in pattern for ch in "*?["):
        if "/" in pattern:
            return _match_segments(pattern, path)
        return fnmatch.fnmatchcase(path, pattern)

    if pattern.endswith("/"):
        return path.startswith(pattern)
    return path.startswith(pattern + "/")
