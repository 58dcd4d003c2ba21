"""Data models for tmux sessions and panes."""

from dataclasses import dataclass, field
from typing import Any

from ..core.enums import AgentKind
from ..panes.titles import parse_title


@dataclass
class Pane:
    """A tmux pane with identity fields derived from its title."""

    id: str
    index: int
    window_index: int = 0
    title: str = ""
    command: str = ""
    width: int = 0
    height: int = 0
    active: bool = False
    pid: int = 0
    kind: AgentKind = AgentKind.USER
    ntm_index: int = 0
    variant: str = ""
    tags: list[str] = field(default_factory=list)
    session: str | None = None

    def __post_init__(self) -> None:
        if self.title and self.kind is AgentKind.USER:
            parsed = parse_title(self.title)
            self.kind = parsed.kind
            self.ntm_index = parsed.index
            self.variant = parsed.variant
            self.tags = parsed.tags

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "index": self.index,
            "window_index": self.window_index,
            "title": self.title,
            "command": self.command,
            "width": self.width,
            "height": self.height,
            "active": self.active,
            "pid": self.pid,
            "type": self.kind.value,
            "ntm_index": self.ntm_index,
            "variant": self.variant,
            "tags": list(self.tags),
        }


@dataclass
class Session:
    """A tmux session."""

    name: str
    windows: int = 0
    attached: bool = False
    created: str = ""
    directory: str = ""
    panes: list[Pane] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "windows": self.windows,
            "attached": self.attached,
            "created": self.created,
        }
