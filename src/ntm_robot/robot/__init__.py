"""Robot operations: each returns a JSON envelope as a dict."""

from .activity import get_activity, get_context
from .beads import get_graph, get_plan, get_triage, get_watch_bead
from .common import exit_code_for, parse_since, print_envelope
from .diff import get_diff
from .monitor import SessionMonitor, run_monitor
from .send import SendOptions, get_interrupt, get_send, select_targets
from .status import get_capabilities, get_snapshot, get_status, get_terse, get_version
from .tail import get_tail, get_wait

__all__ = [
    "SendOptions",
    "SessionMonitor",
    "exit_code_for",
    "get_activity",
    "get_capabilities",
    "get_context",
    "get_diff",
    "get_graph",
    "get_interrupt",
    "get_plan",
    "get_send",
    "get_snapshot",
    "get_status",
    "get_terse",
    "get_tail",
    "get_triage",
    "get_version",
    "get_wait",
    "get_watch_bead",
    "parse_since",
    "print_envelope",
    "run_monitor",
    "select_targets",
]
