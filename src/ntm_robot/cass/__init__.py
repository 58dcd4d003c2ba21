"""Context injection from past agent sessions."""

from .inject import (
    CASSConfig,
    CASSHit,
    CASSQueryResult,
    FilterConfig,
    FilterResult,
    InjectConfig,
    InjectionFormat,
    InjectionMetadata,
    InjectionResult,
    ScoredHit,
    extract_keywords,
    extract_session_name,
    filter_results,
    format_context,
    format_for_agent,
    inject_context,
    injection_info,
    query_and_inject,
    query_cass,
    truncate_to_tokens,
)

__all__ = [
    "CASSConfig",
    "CASSHit",
    "CASSQueryResult",
    "FilterConfig",
    "FilterResult",
    "InjectConfig",
    "InjectionFormat",
    "InjectionMetadata",
    "InjectionResult",
    "ScoredHit",
    "extract_keywords",
    "extract_session_name",
    "filter_results",
    "format_context",
    "format_for_agent",
    "inject_context",
    "injection_info",
    "query_and_inject",
    "query_cass",
    "truncate_to_tokens",
]
