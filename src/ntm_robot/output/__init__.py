"""Robot output: envelopes, pagination, renderers and terse state."""

from .envelope import (
    ENVELOPE_VERSION,
    AgentHints,
    PaginationInfo,
    RobotResponse,
    SuggestedAction,
    error_response,
    from_exception,
    paginate,
    pagination_hint_offsets,
    success_response,
    utc_timestamp,
)
from .formatter import (
    TERSE_KEY_MAP,
    OutputOptions,
    apply_verbosity,
    print_response,
    render,
    terse_key_reverse_map,
)
from .terse import TerseState, join_terse, parse_terse, parse_terse_lines
from .toon import encode as encode_toon

__all__ = [
    "ENVELOPE_VERSION",
    "TERSE_KEY_MAP",
    "AgentHints",
    "OutputOptions",
    "PaginationInfo",
    "RobotResponse",
    "SuggestedAction",
    "TerseState",
    "apply_verbosity",
    "encode_toon",
    "error_response",
    "from_exception",
    "join_terse",
    "paginate",
    "pagination_hint_offsets",
    "parse_terse",
    "parse_terse_lines",
    "print_response",
    "render",
    "success_response",
    "terse_key_reverse_map",
    "utc_timestamp",
]
