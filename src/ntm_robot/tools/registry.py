"""Registry of tool adapters."""

import asyncio
from typing import Any

from ..utils.logging import LogContext, ValidationError, get_logger
from .adapters import BDAdapter, BVAdapter, CASSAdapter, DCGAdapter, JFPAdapter, MSAdapter
from .base import ToolAdapter, ToolName

logger = get_logger(__name__, LogContext.TOOLS)


class ToolRegistry:
    """Holds one adapter per tool name."""

    def __init__(self, adapters: list[ToolAdapter] | None = None):
        self._adapters: dict[ToolName, ToolAdapter] = {}
        for adapter in adapters or []:
            self.register(adapter)

    @classmethod
    def default(cls, timeout: float = 30.0, cache_ttl: float = 300.0) -> "ToolRegistry":
        """Registry with every built-in adapter."""
        bd = BDAdapter(timeout=timeout, cache_ttl=cache_ttl)
        return cls(
            [
                bd,
                BVAdapter(timeout=timeout, cache_ttl=cache_ttl, bd=bd),
                CASSAdapter(timeout=timeout, cache_ttl=cache_ttl),
                JFPAdapter(timeout=timeout, cache_ttl=cache_ttl),
                DCGAdapter(timeout=timeout, cache_ttl=cache_ttl),
                MSAdapter(timeout=timeout, cache_ttl=cache_ttl),
            ]
        )

    def register(self, adapter: ToolAdapter) -> None:
        self._adapters[adapter.name] = adapter

    def get(self, name: ToolName | str) -> ToolAdapter:
        """Look up an adapter by name.

        Raises:
            ValidationError: If no adapter is registered under the name
        """
        try:
            key = ToolName(name)
        except ValueError:
            raise ValidationError(f"unknown tool: {name}") from None
        adapter = self._adapters.get(key)
        if adapter is None:
            raise ValidationError(f"tool not registered: {key.value}")
        return adapter

    def names(self) -> list[str]:
        return [name.value for name in self._adapters]

    def invalidate_all(self) -> None:
        for adapter in self._adapters.values():
            adapter.invalidate_availability_cache()

    async def all_info(self) -> list[dict[str, Any]]:
        """Capability report for every registered tool."""
        infos = await asyncio.gather(*(a.info() for a in self._adapters.values()))
        logger.debug(
            "Collected tool info",
            tools=len(infos),
            installed=sum(1 for i in infos if i.installed),
        )
        return [info.to_dict() for info in infos]
