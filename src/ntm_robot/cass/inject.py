"""
CASS context injection.

Keywords extracted from a prompt are searched in past agent sessions via the
``cass`` CLI. The hits are scored for relevance and recency, formatted for
the receiving agent and prepended to the prompt within a token budget.
"""

import os
import re
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from ..core.enums import AgentKind
from ..tools.adapters import CASSAdapter
from ..utils.logging import LogContext, NtmRobotError, get_logger

logger = get_logger(__name__, LogContext.CASS)

MAX_KEYWORDS = 10
MIN_KEYWORD_LENGTH = 3
PROJECT_BONUS = 0.15
CHARS_PER_TOKEN = 4
TRUNCATION_MARKER = "[... truncated for token budget]"
PROMPT_SEPARATOR = "\n\n---\n\n"
MAX_CONTENT_LINES = 10
MAX_LINE_LENGTH = 120
MAX_SNIPPET_LENGTH = 200
MAX_SESSION_NAME = 40

STOP_WORDS = frozenset(
    """
    the a an and or but in on at to for of with by from as is was are were been be
    have has had do does did will would could should may might this that these those
    it its they them their we you your our my me him her his she he i all each every
    both few more most other some such no nor not only own same so than too very just
    also now can get got how what when where which who why new use used using make
    made like want need please help here there
    code file function method class variable add create update delete remove change
    fix bug error test write read run start stop
    """.split()
)

_FENCED = re.compile(r"```.*?```", re.DOTALL)
_INLINE = re.compile(r"`[^`]+`")
_TOKEN_SPLIT = re.compile(r"[^\w-]+")
_DATE_PATTERNS = (
    re.compile(r"/(\d{4})/(\d{2})/(\d{2})/"),
    re.compile(r"/(\d{4})-(\d{2})-(\d{2})/"),
    re.compile(r"session-(\d{4})-(\d{2})-(\d{2})"),
    re.compile(r"(\d{4})-(\d{2})-(\d{2})T"),
)
_STRUCTURED_ITEM = re.compile(r"^\d+\. Session:", re.MULTILINE)


class InjectionFormat(str, Enum):
    MARKDOWN = "markdown"
    MINIMAL = "minimal"
    STRUCTURED = "structured"


@dataclass
class CASSConfig:
    enabled: bool = True
    max_results: int = 5
    max_age_days: int = 30
    min_relevance: float = 0.0
    prefer_same_project: bool = True
    agent_filter: list[str] = field(default_factory=list)
    timeout: float = 30.0


@dataclass
class FilterConfig:
    min_relevance: float = 0.7
    max_items: int = 5
    prefer_same_project: bool = True
    current_workspace: str = ""
    max_age_days: int = 30
    recency_boost: float = 0.3


@dataclass
class InjectConfig:
    format: InjectionFormat = InjectionFormat.MARKDOWN
    max_tokens: int = 500
    skip_threshold: int = 60
    current_context_pct: int = 0
    dry_run: bool = False


@dataclass
class CASSHit:
    source_path: str = ""
    line_number: int = 0
    agent: str = ""
    content: str = ""
    score: float = 0.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CASSHit":
        return cls(
            source_path=str(data.get("source_path") or ""),
            line_number=int(data.get("line_number") or 0),
            agent=str(data.get("agent") or ""),
            content=str(data.get("content") or ""),
            score=float(data.get("score") or 0.0),
        )


@dataclass
class ScoreDetail:
    base_score: float = 0.0
    recency_bonus: float = 0.0
    project_bonus: float = 0.0
    age_penalty: float = 0.0


@dataclass
class ScoredHit:
    hit: CASSHit
    computed_score: float
    score_detail: ScoreDetail = field(default_factory=ScoreDetail)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self.hit)
        data["computed_score"] = round(self.computed_score, 4)
        data["score_detail"] = asdict(self.score_detail)
        return data


@dataclass
class CASSQueryResult:
    success: bool = False
    query: str = ""
    hits: list[CASSHit] = field(default_factory=list)
    total_matches: int = 0
    query_time_ms: int = 0
    error: str = ""
    keywords: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        if not self.error:
            data.pop("error")
        return data


@dataclass
class FilterResult:
    hits: list[ScoredHit] = field(default_factory=list)
    original_count: int = 0
    filtered_count: int = 0
    removed_by_score: int = 0
    removed_by_age: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": [h.to_dict() for h in self.hits],
            "original_count": self.original_count,
            "filtered_count": self.filtered_count,
            "removed_by_score": self.removed_by_score,
            "removed_by_age": self.removed_by_age,
        }


@dataclass
class InjectionMetadata:
    enabled: bool = True
    items_found: int = 0
    items_injected: int = 0
    tokens_added: int = 0
    skipped_reason: str = ""
    format_used: InjectionFormat = InjectionFormat.MARKDOWN

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["format_used"] = self.format_used.value
        if not self.skipped_reason:
            data.pop("skipped_reason")
        return data


@dataclass
class InjectionResult:
    success: bool
    modified_prompt: str
    injected_context: str = ""
    metadata: InjectionMetadata = field(default_factory=InjectionMetadata)
    error: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "injected_context": self.injected_context,
            "metadata": self.metadata.to_dict(),
        }
        if self.error:
            data["error"] = self.error
        return data


def remove_code_blocks(text: str) -> str:
    return _INLINE.sub(" ", _FENCED.sub(" ", text))


def tokenize(text: str) -> list[str]:
    return [word for word in _TOKEN_SPLIT.split(text) if word]


def extract_keywords(prompt: str) -> list[str]:
    """Search keywords from a prompt, deduplicated in first-seen order."""
    seen: set[str] = set()
    keywords: list[str] = []
    for word in tokenize(remove_code_blocks(prompt.lower())):
        if len(word) < MIN_KEYWORD_LENGTH or word in STOP_WORDS or word in seen:
            continue
        seen.add(word)
        keywords.append(word)
    return keywords[:MAX_KEYWORDS]


async def query_cass(
    prompt: str, config: CASSConfig | None = None, adapter: CASSAdapter | None = None
) -> CASSQueryResult:
    """Search CASS for sessions related to the prompt.

    Failures are reported in the result rather than raised; a missing
    ``cass`` binary gives ``success=False``.
    """
    config = config or CASSConfig()
    result = CASSQueryResult()
    if not config.enabled:
        result.success = True
        return result

    result.keywords = extract_keywords(prompt)
    if not result.keywords:
        result.success = True
        result.error = "no keywords extracted from prompt"
        return result

    result.query = " ".join(result.keywords)
    adapter = adapter or CASSAdapter()
    started = time.monotonic()
    try:
        data = await adapter.search(
            result.query,
            limit=config.max_results,
            days=config.max_age_days,
            agents=config.agent_filter,
            timeout=config.timeout,
        )
    except NtmRobotError as e:
        result.query_time_ms = int((time.monotonic() - started) * 1000)
        result.error = e.message
        logger.warning("CASS query failed", query=result.query, error=e.message)
        return result

    result.query_time_ms = int((time.monotonic() - started) * 1000)
    result.total_matches = int(data.get("total_matches") or 0)
    result.hits = [CASSHit.from_dict(h) for h in data.get("hits") or [] if isinstance(h, dict)]
    result.success = True
    logger.debug("CASS query complete", query=result.query, hits=len(result.hits))
    return result


def extract_session_date(path: str) -> datetime | None:
    for pattern in _DATE_PATTERNS:
        match = pattern.search(path)
        if not match:
            continue
        year, month, day = (int(g) for g in match.groups())
        if year > 0 and 1 <= month <= 12 and 1 <= day <= 31:
            try:
                return datetime(year, month, day, tzinfo=timezone.utc)
            except ValueError:
                continue
    return None


def is_same_project(session_path: str, workspace: str) -> bool:
    workspace = workspace.lower().rstrip("/")
    if not workspace:
        return False
    project = workspace.rsplit("/", 1)[-1]
    return bool(project) and project in session_path.lower()


def normalize_score(score: float) -> float:
    return score / 100.0 if score > 1.0 else score


def filter_results(
    hits: list[CASSHit], config: FilterConfig | None = None, now: datetime | None = None
) -> FilterResult:
    """Score hits by rank, recency and project, then threshold and cap them."""
    config = config or FilterConfig()
    now = now or datetime.now(timezone.utc)
    result = FilterResult(original_count=len(hits))
    if not hits:
        return result

    max_age = timedelta(days=config.max_age_days)
    scored: list[ScoredHit] = []
    for i, hit in enumerate(hits):
        session_date = extract_session_date(hit.source_path)
        if config.max_age_days > 0 and session_date is not None and session_date < now - max_age:
            result.removed_by_age += 1
            continue

        detail = ScoreDetail()
        if len(hits) > 1:
            detail.base_score = 1.0 - i * 0.5 / (len(hits) - 1)
        else:
            detail.base_score = 1.0
        if hit.score > 0:
            detail.base_score = normalize_score(hit.score)

        if session_date is not None and config.max_age_days > 0:
            age = now - session_date
            if age < max_age:
                detail.recency_bonus = (1.0 - age / max_age) * config.recency_boost

        if config.prefer_same_project and is_same_project(hit.source_path, config.current_workspace):
            detail.project_bonus = PROJECT_BONUS

        score = detail.base_score + detail.recency_bonus + detail.project_bonus - detail.age_penalty
        score = min(max(score, 0.0), 1.0)
        if score < config.min_relevance:
            result.removed_by_score += 1
            continue
        scored.append(ScoredHit(hit=hit, computed_score=score, score_detail=detail))

    scored.sort(key=lambda h: h.computed_score, reverse=True)
    if config.max_items > 0:
        scored = scored[: config.max_items]
    result.hits = scored
    result.filtered_count = len(scored)
    return result


def extract_session_name(path: str) -> str:
    name = os.path.basename(path)
    for ext in (".jsonl", ".json"):
        if name.endswith(ext):
            name = name[: -len(ext)]
            break
    if len(name) > MAX_SESSION_NAME:
        name = name[: MAX_SESSION_NAME - 3] + "..."
    return name


def clean_content(content: str) -> str:
    """Trim content to a few short lines for markdown output."""
    lines = content.strip().splitlines()
    truncated = len(lines) > MAX_CONTENT_LINES
    lines = lines[:MAX_CONTENT_LINES]
    cleaned = [
        line if len(line) <= MAX_LINE_LENGTH else line[: MAX_LINE_LENGTH - 3] + "..."
        for line in lines
    ]
    if truncated:
        cleaned.append("...")
    return "\n".join(cleaned)


def extract_code_snippets(content: str) -> str:
    blocks = re.findall(r"```[^\n]*\n(.*?)```", content, re.DOTALL)
    if blocks:
        return "\n".join(block.strip() for block in blocks)
    content = content.strip()
    if len(content) > MAX_SNIPPET_LENGTH:
        return content[:MAX_SNIPPET_LENGTH] + "..."
    return content


def _format_markdown(hits: list[ScoredHit]) -> str:
    parts = ["## Relevant Context from Past Sessions", ""]
    for scored in hits:
        name = extract_session_name(scored.hit.source_path) or "unknown"
        parts.append(f"### Session: {name} ({int(scored.computed_score * 100)}% match)")
        content = clean_content(scored.hit.content)
        if content:
            parts.append(content)
        parts.append("")
    return "\n".join(parts).rstrip() + "\n"


def _format_minimal(hits: list[ScoredHit]) -> str:
    blocks = []
    for scored in hits:
        snippet = extract_code_snippets(scored.hit.content)
        blocks.append("// Related context:\n" + snippet if snippet else "// Related context:")
    return "\n// ---\n".join(blocks) + "\n"


def _format_structured(hits: list[ScoredHit]) -> str:
    parts = ["RELEVANT CONTEXT FROM PAST SESSIONS:", ""]
    for i, scored in enumerate(hits, start=1):
        name = extract_session_name(scored.hit.source_path) or "unknown"
        parts.append(f"{i}. Session: {name}")
        parts.append(f"   Relevance: {int(scored.computed_score * 100)}%")
        if scored.hit.agent:
            parts.append(f"   Agent: {scored.hit.agent}")
        content = clean_content(scored.hit.content)
        if content:
            parts.append("   Content:")
            parts.extend(f"   {line}" for line in content.splitlines())
        parts.append("")
    return "\n".join(parts).rstrip() + "\n"


def format_context(hits: list[ScoredHit], fmt: InjectionFormat | str = InjectionFormat.MARKDOWN) -> str:
    """Render scored hits; unknown formats fall back to markdown."""
    if not hits:
        return ""
    if fmt in (InjectionFormat.MINIMAL, InjectionFormat.MINIMAL.value):
        return _format_minimal(hits)
    if fmt in (InjectionFormat.STRUCTURED, InjectionFormat.STRUCTURED.value):
        return _format_structured(hits)
    return _format_markdown(hits)


def format_for_agent(kind: AgentKind | str) -> InjectionFormat:
    """Preferred injection format for an agent type or alias."""
    if isinstance(kind, str):
        kind = AgentKind.from_alias(kind)
    if kind == AgentKind.CODEX:
        return InjectionFormat.MINIMAL
    if kind == AgentKind.GEMINI:
        return InjectionFormat.STRUCTURED
    return InjectionFormat.MARKDOWN


def truncate_to_tokens(content: str, max_tokens: int) -> str:
    """Cut content at a line boundary to fit ``max_tokens``."""
    max_chars = max(max_tokens, 0) * CHARS_PER_TOKEN
    if len(content) <= max_chars:
        return content
    cut = content[:max_chars]
    newline = cut.rfind("\n")
    if newline > 0:
        cut = cut[:newline]
    return cut + "\n\n" + TRUNCATION_MARKER


def count_injected_items(context: str, fmt: InjectionFormat | str) -> int:
    if not context:
        return 0
    if fmt in (InjectionFormat.MINIMAL, InjectionFormat.MINIMAL.value):
        return context.count("// ---") + 1
    if fmt in (InjectionFormat.STRUCTURED, InjectionFormat.STRUCTURED.value):
        return len(_STRUCTURED_ITEM.findall(context))
    return context.count("### Session:")


def inject_context(
    prompt: str, hits: list[ScoredHit], config: InjectConfig | None = None
) -> InjectionResult:
    """Prepend formatted context to a prompt within the token budget."""
    config = config or InjectConfig()
    fmt = InjectionFormat(config.format)
    metadata = InjectionMetadata(items_found=len(hits), format_used=fmt)

    if config.current_context_pct >= config.skip_threshold:
        metadata.skipped_reason = (
            f"context at {config.current_context_pct}% (threshold: {config.skip_threshold}%)"
        )
        return InjectionResult(success=True, modified_prompt=prompt, metadata=metadata)

    if not hits:
        metadata.skipped_reason = "no relevant context found"
        return InjectionResult(success=True, modified_prompt=prompt, metadata=metadata)

    context = format_context(hits, fmt)
    if len(context) > config.max_tokens * CHARS_PER_TOKEN:
        context = truncate_to_tokens(context, config.max_tokens)

    metadata.items_injected = count_injected_items(context, fmt)
    metadata.tokens_added = min(len(context) // CHARS_PER_TOKEN, config.max_tokens)

    modified = prompt if config.dry_run else context + PROMPT_SEPARATOR + prompt
    return InjectionResult(
        success=True, modified_prompt=modified, injected_context=context, metadata=metadata
    )


async def query_and_inject(
    prompt: str,
    cass_config: CASSConfig | None = None,
    filter_config: FilterConfig | None = None,
    inject_config: InjectConfig | None = None,
    adapter: CASSAdapter | None = None,
) -> tuple[InjectionResult, CASSQueryResult, FilterResult]:
    """Query CASS, filter the hits and inject them into the prompt."""
    query = await query_cass(prompt, cass_config, adapter)
    if not query.success:
        metadata = InjectionMetadata(
            format_used=InjectionFormat((inject_config or InjectConfig()).format),
            skipped_reason=f"cass query failed: {query.error}",
        )
        return (
            InjectionResult(success=False, modified_prompt=prompt, metadata=metadata, error=query.error),
            query,
            FilterResult(),
        )

    filtered = filter_results(query.hits, filter_config)
    injection = inject_context(prompt, filtered.hits, inject_config)
    if cass_config is not None and not cass_config.enabled:
        injection.metadata.enabled = False
    return injection, query, filtered


def injection_info(
    result: InjectionResult, query: str, hits: list[ScoredHit], now: datetime | None = None
) -> dict[str, Any]:
    """Summary of an injection for send responses, with per-source relevance and age."""
    now = now or datetime.now(timezone.utc)
    sources = []
    for scored in hits:
        session_date = extract_session_date(scored.hit.source_path)
        age_days = int((now - session_date).total_seconds() // 86400) if session_date else 0
        sources.append(
            {
                "session": extract_session_name(scored.hit.source_path),
                "relevance": int(scored.computed_score * 100),
                "age_days": age_days,
            }
        )
    meta = result.metadata
    return {
        "enabled": meta.enabled,
        "query": query,
        "items_found": meta.items_found,
        "items_injected": meta.items_injected,
        "tokens_added": meta.tokens_added,
        "skipped_reason": meta.skipped_reason,
        "sources": sources,
    }
