"""
Response envelope shared by every robot command.

Agents check ``success`` first; failures carry ``error``, ``error_code`` and
an actionable ``hint``. Command bodies are merged into the top level of the
envelope.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, TypeVar

from ..core.enums import ErrorCode
from ..utils.logging import NtmRobotError

ENVELOPE_VERSION = "1.0.0"

T = TypeVar("T")

DEFAULT_HINTS = {
    ErrorCode.SESSION_NOT_FOUND: "Use --robot-status to see available sessions",
    ErrorCode.PANE_NOT_FOUND: "Use --robot-status to see the panes of the session",
    ErrorCode.INVALID_FLAG: "Check the flag values and try again",
    ErrorCode.TIMEOUT: "Retry with a longer --timeout",
}


def utc_timestamp(now: datetime | None = None) -> str:
    """RFC 3339 UTC timestamp with second precision."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass
class PaginationInfo:
    limit: int
    offset: int
    count: int
    total: int
    has_more: bool
    next_cursor: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "limit": self.limit,
            "offset": self.offset,
            "count": self.count,
            "total": self.total,
            "has_more": self.has_more,
        }
        if self.next_cursor is not None:
            data["next_cursor"] = self.next_cursor
        return data


def paginate(items: list[T], limit: int = 0, offset: int = 0) -> tuple[list[T], PaginationInfo | None]:
    """Slice ``items`` by limit and offset.

    No pagination info is produced when both are unset (``<= 0``). A
    non-positive limit means "the rest of the list".
    """
    if limit <= 0 and offset <= 0:
        return items, None

    total = len(items)
    offset = min(max(offset, 0), total)
    if limit <= 0:
        limit = total - offset
    end = min(offset + limit, total)

    page = items[offset:end]
    has_more = end < total
    return page, PaginationInfo(
        limit=limit,
        offset=offset,
        count=len(page),
        total=total,
        has_more=has_more,
        next_cursor=end if has_more else None,
    )


def pagination_hint_offsets(page: PaginationInfo | None) -> tuple[int | None, int | None]:
    """Next offset and number of remaining pages, or ``(None, None)``."""
    if page is None or page.limit <= 0 or not page.has_more or page.next_cursor is None:
        return None, None
    remaining = max(page.total - (page.offset + page.count), 0)
    pages = (remaining + page.limit - 1) // page.limit if remaining else 0
    return page.next_cursor, pages


@dataclass
class SuggestedAction:
    action: str
    target: str = ""
    reason: str = ""
    priority: int = 0

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"action": self.action}
        if self.target:
            data["target"] = self.target
        if self.reason:
            data["reason"] = self.reason
        if self.priority:
            data["priority"] = self.priority
        return data


@dataclass
class AgentHints:
    """Guidance for the consuming agent, emitted as ``_agent_hints``."""

    summary: str = ""
    notes: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    suggested_actions: list[SuggestedAction] = field(default_factory=list)
    next_offset: int | None = None
    pages_remaining: int | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def with_pagination(self, page: PaginationInfo | None) -> "AgentHints":
        self.next_offset, self.pages_remaining = pagination_hint_offsets(page)
        return self

    def is_empty(self) -> bool:
        return not self.to_dict()

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.summary:
            data["summary"] = self.summary
        if self.notes:
            data["notes"] = list(self.notes)
        if self.warnings:
            data["warnings"] = list(self.warnings)
        if self.suggestions:
            data["suggestions"] = list(self.suggestions)
        if self.suggested_actions:
            data["suggested_actions"] = [a.to_dict() for a in self.suggested_actions]
        if self.next_offset is not None:
            data["next_offset"] = self.next_offset
        if self.pages_remaining is not None:
            data["pages_remaining"] = self.pages_remaining
        data.update(self.extra)
        return data


@dataclass
class RobotResponse:
    """The envelope; ``body`` fields are merged into the top level."""

    success: bool = True
    body: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    error_code: ErrorCode | None = None
    hint: str | None = None
    pagination: PaginationInfo | None = None
    agent_hints: AgentHints | None = None
    output_format: str = "json"
    timestamp: str = field(default_factory=utc_timestamp)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "timestamp": self.timestamp,
            "version": ENVELOPE_VERSION,
            "output_format": self.output_format,
        }
        if self.error:
            data["error"] = self.error
        if self.error_code is not None:
            data["error_code"] = self.error_code.value
        if self.hint:
            data["hint"] = self.hint
        data.update(self.body)
        if self.pagination is not None:
            data["pagination"] = self.pagination.to_dict()
        if self.agent_hints is not None and not self.agent_hints.is_empty():
            data["_agent_hints"] = self.agent_hints.to_dict()
        return data


def success_response(
    body: dict[str, Any] | None = None,
    pagination: PaginationInfo | None = None,
    hints: AgentHints | None = None,
) -> dict[str, Any]:
    return RobotResponse(
        success=True, body=body or {}, pagination=pagination, agent_hints=hints
    ).to_dict()


def error_response(
    exc_or_message: BaseException | str,
    code: ErrorCode | None = None,
    hint: str | None = None,
    body: dict[str, Any] | None = None,
    hints: AgentHints | None = None,
) -> dict[str, Any]:
    """Failure envelope; the code and hint default from the exception."""
    if isinstance(exc_or_message, NtmRobotError):
        message = exc_or_message.message
        code = code or exc_or_message.code
        hint = hint or exc_or_message.hint
    else:
        message = str(exc_or_message)
    code = code or ErrorCode.INTERNAL_ERROR
    return RobotResponse(
        success=False,
        body=body or {},
        error=message,
        error_code=code,
        hint=hint or DEFAULT_HINTS.get(code),
        agent_hints=hints,
    ).to_dict()


def from_exception(exc: BaseException, body: dict[str, Any] | None = None) -> dict[str, Any]:
    """Map any exception to an error envelope."""
    if isinstance(exc, NtmRobotError):
        return error_response(exc, body=body)
    if isinstance(exc, asyncio.TimeoutError):
        return error_response("operation timed out", ErrorCode.TIMEOUT, body=body)
    return error_response(f"{type(exc).__name__}: {exc}", ErrorCode.INTERNAL_ERROR, body=body)
