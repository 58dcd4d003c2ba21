"""Ring-buffered state change tracking."""

from .tracker import (
    DEFAULT_CAPACITY,
    ChangeKind,
    CoalescedChange,
    StateChange,
    StateTracker,
)

__all__ = [
    "DEFAULT_CAPACITY",
    "ChangeKind",
    "CoalescedChange",
    "StateChange",
    "StateTracker",
]
