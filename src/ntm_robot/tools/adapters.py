"""Concrete adapters for the bd, bv, cass, jfp, dcg and ms tools."""

import asyncio
import json
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ..utils.logging import LogContext, NtmRobotError, ToolError, get_logger
from .base import Capability, ToolAdapter, ToolName, Version

logger = get_logger(__name__, LogContext.TOOLS)

# Search-style tools exit 1 when nothing matches
NO_RESULTS = (1,)


class BDAdapter(ToolAdapter):
    """Beads issue tracker."""

    name = ToolName.BD
    binary = "bd"
    install_hint = "Install beads (bd) and make sure it is on PATH"
    base_capabilities = (Capability.ROBOT_MODE.value,)

    async def ready(self, cwd: str | None = None) -> list[dict[str, Any]]:
        return await self.run_json(["ready", "--json"], cwd=cwd) or []

    async def list(self, status: str | None = None, cwd: str | None = None) -> list[dict[str, Any]]:
        args = ["list", "--json"]
        if status:
            args.append(f"--status={status}")
        return await self.run_json(args, cwd=cwd) or []

    async def show(self, bead_id: str, cwd: str | None = None) -> dict[str, Any]:
        return await self.run_json(["show", bead_id, "--json"], cwd=cwd) or {}

    async def stats(self, cwd: str | None = None) -> dict[str, Any]:
        return await self.run_json(["stats", "--json"], cwd=cwd) or {}


class BVAdapter(ToolAdapter):
    """Beads viewer, the graph-aware triage companion to bd."""

    name = ToolName.BV
    binary = "bv"
    install_hint = "Install beads_viewer (bv) and make sure it is on PATH"

    def __init__(self, *args: Any, bd: BDAdapter | None = None, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.bd = bd or BDAdapter()

    async def capabilities(self) -> list[str]:
        caps = [Capability.ROBOT_MODE.value]
        try:
            version = await self.version()
        except NtmRobotError:
            return caps
        if version.at_least(Version(0, 30, 0)):
            caps += ["robot_triage", "robot_plan", "robot_insights", "robot_next"]
        if version.at_least(Version(0, 31, 0)):
            caps += ["robot_alerts", "robot_graph", "robot_forecast", "robot_suggest"]
        return caps

    async def triage(self, cwd: str | None = None) -> dict[str, Any]:
        return await self.run_json(["--robot-triage"], cwd=cwd) or {}

    async def plan(self, cwd: str | None = None) -> dict[str, Any]:
        return await self.run_json(["--robot-plan"], cwd=cwd) or {}

    async def insights(self, cwd: str | None = None) -> dict[str, Any]:
        return await self.run_json(["--robot-insights"], cwd=cwd) or {}

    async def graph(self, fmt: str | None = None, cwd: str | None = None) -> dict[str, Any]:
        args = ["--robot-graph"]
        if fmt:
            args += ["--graph-format", fmt]
        return await self.run_json(args, cwd=cwd) or {}

    async def beads_summary(self, cwd: str | None = None, limit: int = 5) -> dict[str, Any]:
        """Summarize bead counts plus ready and in-progress previews.

        Never raises; an unavailable tracker is reported in the result.
        """
        project = cwd or os.getcwd()
        if not (Path(project) / ".beads").is_dir():
            return {"available": False, "reason": "no .beads/ directory"}

        try:
            stats = await self.bd.stats(cwd=cwd)
        except NtmRobotError as e:
            return {"available": False, "reason": f"bd stats failed: {e.message}"}

        summary: dict[str, Any] = {
            "available": True,
            "project": project,
            "total": stats.get("total_issues", 0),
            "open": stats.get("open_issues", 0),
            "in_progress": stats.get("in_progress_issues", 0),
            "blocked": stats.get("blocked_issues", 0),
            "ready": stats.get("ready_issues", 0),
            "closed": stats.get("closed_issues", 0),
        }

        try:
            ready = await self.bd.ready(cwd=cwd)
            summary["ready_preview"] = [
                {"id": b.get("id", ""), "title": b.get("title", ""), "priority": f"P{b.get('priority', 0)}"}
                for b in ready[:limit]
            ]
            in_progress = await self.bd.list(status="in_progress", cwd=cwd)
            summary["in_progress_list"] = [
                {"id": b.get("id", ""), "title": b.get("title", ""), "assignee": b.get("assignee", "")}
                for b in in_progress[:limit]
            ]
        except NtmRobotError as e:
            logger.debug("Bead previews unavailable", error=e.message)
        return summary


class CASSAdapter(ToolAdapter):
    """Cross-agent session search."""

    name = ToolName.CASS
    binary = "cass"
    install_hint = "Install cass and make sure it is on PATH"
    base_capabilities = (Capability.ROBOT_MODE.value, Capability.SEARCH.value)

    async def search(
        self,
        query: str,
        limit: int = 0,
        days: int = 0,
        agents: list[str] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Search past sessions; no matches yields an empty response."""
        args = ["search", query, "--json"]
        if limit > 0:
            args += ["--limit", str(limit)]
        if days > 0:
            args += ["--days", str(days)]
        for agent in agents or []:
            args += ["--agent", agent]
        data = await self.run_json(args, timeout=timeout, no_results_exit_codes=NO_RESULTS)
        return data or {"query": query, "total_matches": 0, "hits": []}


class JFPAdapter(ToolAdapter):
    """Prompt library CLI."""

    name = ToolName.JFP
    binary = "jfp"
    install_hint = "Install jfp and make sure it is on PATH"
    base_capabilities = (
        Capability.ROBOT_MODE.value,
        Capability.SEARCH.value,
        "list",
        "show",
        "suggest",
    )

    def parse_version(self, output: str) -> Version:
        # "jfp/1.0.0 linux-x64 node-v24.3.0"
        parts = output.split()
        if not parts:
            return Version(raw=output.strip())
        head = parts[0].rsplit("/", 1)[-1]
        parsed = Version.parse(head)
        return Version(parsed.major, parsed.minor, parsed.patch, raw=output.strip())

    async def list(self, category: str | None = None, tag: str | None = None) -> Any:
        args = ["list"]
        if category:
            args += ["--category", category]
        if tag:
            args += ["--tag", tag]
        return await self.run_json(args + ["--json"]) or []

    async def search(self, query: str) -> Any:
        return await self.run_json(["search", query, "--json"], no_results_exit_codes=NO_RESULTS) or []

    async def get(self, prompt_id: str) -> Any:
        return await self.run_json(["show", prompt_id, "--json"]) or {}


def _parse_json_object(text: str) -> dict[str, Any] | None:
    try:
        data = json.loads(text) if text.strip() else None
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def default_audit_path() -> Path:
    return Path.home() / ".local" / "share" / "ntm" / "dcg-audit.jsonl"


@dataclass
class BlockedCommand:
    """A command refused by the destructive command guard."""

    command: str
    reason: str = "blocked by dcg"
    rule: str | None = None
    severity: str | None = None
    suggestion: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "command": self.command,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.rule:
            data["rule_matched"] = self.rule
        if self.severity:
            data["severity"] = self.severity
        if self.suggestion:
            data["suggestion"] = self.suggestion
        return data


class DCGAdapter(ToolAdapter):
    """Destructive command guard.

    ``dcg check`` exits 1 when it blocks a command. Blocks are appended to an
    NDJSON audit log.
    """

    name = ToolName.DCG
    binary = "dcg"
    install_hint = "Install dcg and make sure it is on PATH"
    min_version = Version(0, 1, 0)

    def __init__(self, *args: Any, audit_path: str | Path | None = None, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.audit_path = Path(audit_path) if audit_path else default_audit_path()

    async def is_compatible(self) -> bool:
        if not self.is_installed():
            return False
        try:
            return (await self.version()).at_least(self.min_version)
        except NtmRobotError as e:
            logger.warning("dcg version check failed", error=e.message)
            return False

    async def check(self, command: str, session: str = "", pane: str = "") -> BlockedCommand | None:
        """Return the block details, or None when the command is allowed."""
        command = command.strip()
        result = await self.run(["check", "--json", command], no_results_exit_codes=NO_RESULTS)
        if not result.empty:
            return None

        blocked = BlockedCommand(command=command)
        # Block details are printed on stdout alongside exit code 1
        details = _parse_json_object(result.stdout)
        if details:
            blocked.reason = details.get("reason") or blocked.reason
            blocked.rule = details.get("rule_matched")
            blocked.severity = details.get("severity")
            blocked.suggestion = details.get("suggestion")

        await asyncio.to_thread(self._append_audit, blocked, session, pane)
        logger.info("Command blocked by dcg", command=command, reason=blocked.reason)
        return blocked

    def _append_audit(self, blocked: BlockedCommand, session: str, pane: str) -> None:
        entry = blocked.to_dict()
        if session:
            entry["session"] = session
        if pane:
            entry["pane"] = pane
        try:
            self.audit_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.audit_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry) + "\n")
        except OSError as e:
            logger.error("Failed to write dcg audit log", path=str(self.audit_path), error=str(e))

    async def status(self) -> dict[str, Any]:
        """Guard configuration; a missing status command reports enabled."""
        try:
            data = await self.run_json(["status", "--json"])
        except ToolError:
            return {"enabled": True}
        return data if isinstance(data, dict) else {"enabled": True}


class MSAdapter(ToolAdapter):
    """Skill search and suggestion."""

    name = ToolName.MS
    binary = "ms"
    install_hint = "Install ms and make sure it is on PATH"
    base_capabilities = (Capability.ROBOT_MODE.value, Capability.SEARCH.value, "suggest")

    async def search(self, query: str, limit: int = 0) -> Any:
        args = ["search", query, "--json"]
        if limit > 0:
            args += ["--limit", str(limit)]
        return await self.run_json(args, no_results_exit_codes=NO_RESULTS) or []

    async def suggest(self, task: str) -> Any:
        return await self.run_json(["suggest", task, "--json"], no_results_exit_codes=NO_RESULTS) or []
