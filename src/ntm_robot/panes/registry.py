"""Pane registry: renames panes and manages title tags."""

import asyncio
from typing import TYPE_CHECKING

from ..utils.logging import (
    LogContext,
    PaneNotFoundError,
    TmuxError,
    get_logger,
)
from .titles import format_tags, parse_title, strip_tags, validate_tags

if TYPE_CHECKING:
    from ..tmux.adapter import TmuxAdapter

logger = get_logger(__name__, LogContext.REGISTRY)

RENAME_ATTEMPTS = 5
RENAME_RETRY_DELAY = 0.05


class PaneRegistry:
    """Reads and writes pane identity through structured titles."""

    def __init__(self, tmux: "TmuxAdapter", retry_delay: float = RENAME_RETRY_DELAY):
        self.tmux = tmux
        self.retry_delay = retry_delay

    async def rename(self, pane_id: str, title: str) -> None:
        """Set a pane title and stop programs from overwriting it.

        Newly created panes can transiently fail to resolve by id on busy
        servers, so "can't find pane" is retried a few times.

        Args:
            pane_id: Target pane id (for example ``%3``)
            title: New title

        Raises:
            PaneNotFoundError: If the pane is still missing after retries
            TmuxError: For any other tmux failure
        """
        try:
            await self.tmux.set_pane_title(pane_id, title)
        except PaneNotFoundError as first_error:
            last_error: PaneNotFoundError | None = first_error
            for _ in range(RENAME_ATTEMPTS):
                await asyncio.sleep(self.retry_delay)
                try:
                    await self.tmux.set_pane_title(pane_id, title)
                except PaneNotFoundError as e:
                    last_error = e
                    continue
                last_error = None
                break
            if last_error is not None:
                raise last_error

        try:
            await self.tmux.run("set-option", "-p", "-t", pane_id, "allow-set-title", "off")
        except (TmuxError, PaneNotFoundError) as e:
            # Requires tmux 3.0+; the title is already set
            logger.debug("allow-set-title not supported", pane=pane_id, error=e.message)

        logger.debug("Pane renamed", pane=pane_id, title=title)

    async def get_title(self, pane_id: str) -> str:
        return await self.tmux.get_pane_title(pane_id)

    async def get_tags(self, pane_id: str) -> list[str] | None:
        """Return the pane's tags, or None when it has none."""
        tags = parse_title(await self.get_title(pane_id)).tags
        return tags or None

    async def set_tags(self, pane_id: str, tags: list[str]) -> None:
        """Replace the pane's tags, keeping the base title."""
        validate_tags(tags)
        title = await self.get_title(pane_id)
        await self.rename(pane_id, strip_tags(title) + format_tags(tags))

    async def add_tags(self, pane_id: str, tags: list[str]) -> None:
        """Add tags, skipping ones already present."""
        existing = await self.get_tags(pane_id) or []
        for tag in tags:
            if tag not in existing:
                existing.append(tag)
        await self.set_tags(pane_id, existing)

    async def remove_tags(self, pane_id: str, tags: list[str]) -> None:
        existing = await self.get_tags(pane_id) or []
        remove = set(tags)
        await self.set_tags(pane_id, [t for t in existing if t not in remove])

    async def has_tag(self, pane_id: str, tag: str) -> bool:
        return tag in (await self.get_tags(pane_id) or [])

    async def has_any_tag(self, pane_id: str, tags: list[str]) -> bool:
        existing = set(await self.get_tags(pane_id) or [])
        return any(tag in existing for tag in tags)
