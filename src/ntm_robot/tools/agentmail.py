"""
Client for the agent-mail coordination service.

The service speaks JSON-RPC over HTTP at ``{base_url}/mcp/``. Only the calls
the robot surface needs are wrapped: health, path reservations and inbox
counts.
"""

import itertools
import json
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

import httpx

from ..conflicts.models import Reservation
from ..utils.logging import LogContext, ToolError, get_logger

logger = get_logger(__name__, LogContext.TOOLS)

DEFAULT_BASE_URL = "http://127.0.0.1:8765"
DEFAULT_TIMEOUT = 30.0
FAST_TIMEOUT = 5.0


def normalize_base_url(url: str) -> str:
    """Strip a trailing ``/mcp`` path so callers can pass either form."""
    url = url.rstrip("/")
    if url.endswith("/mcp"):
        url = url[: -len("/mcp")]
    return url


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an RFC 3339 timestamp or unix seconds into an aware datetime."""
    if value in (None, ""):
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def reservation_from_dict(data: dict[str, Any]) -> Reservation | None:
    """Build a :class:`Reservation` from either service payload shape."""
    pattern = data.get("path_pattern") or data.get("pattern")
    expires_at = parse_timestamp(data.get("expires_ts") or data.get("expires_at"))
    if not pattern or expires_at is None:
        return None
    return Reservation(
        pattern=pattern,
        agent_name=data.get("agent") or data.get("agent_name") or "",
        expires_at=expires_at,
        exclusive=bool(data.get("exclusive", True)),
        released_at=parse_timestamp(data.get("released_ts") or data.get("released_at")),
        reason=data.get("reason") or None,
        id=data.get("id"),
    )


def _unwrap_tool_result(result: Any) -> Any:
    """Extract the payload from an MCP tool result.

    Results may be plain JSON, ``{"result": ...}`` or MCP content blocks whose
    text holds JSON.
    """
    if isinstance(result, dict):
        if "structuredContent" in result:
            return _unwrap_tool_result(result["structuredContent"])
        if "result" in result and len(result) == 1:
            return result["result"]
        content = result.get("content")
        if isinstance(content, list) and content and isinstance(content[0], dict):
            text = content[0].get("text", "")
            try:
                return json.loads(text) if text.strip() else None
            except json.JSONDecodeError:
                return text
    return result


class AgentMailClient:
    """Async HTTP client for the agent-mail service."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        token: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            base_url: Service root, with or without the ``/mcp`` suffix
            token: Optional bearer token
            timeout: Default request timeout in seconds
            transport: Optional httpx transport, used by tests
        """
        self.base_url = normalize_base_url(base_url)
        self.token = token
        self.timeout = timeout
        self._transport = transport
        self._ids = itertools.count(1)

    @property
    def rpc_url(self) -> str:
        return f"{self.base_url}/mcp/"

    def _client(self, timeout: float) -> httpx.AsyncClient:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else None
        return httpx.AsyncClient(timeout=timeout, headers=headers, transport=self._transport)

    async def _rpc(self, method: str, params: dict[str, Any], timeout: float | None = None) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            async with self._client(timeout or self.timeout) as client:
                response = await client.post(self.rpc_url, json=payload)
        except httpx.HTTPError as e:
            raise ToolError(
                f"agent mail unreachable: {e}",
                {"url": self.rpc_url, "method": method},
            ) from e

        if response.status_code == 401:
            raise ToolError("agent mail unauthorized", {"url": self.rpc_url, "status_code": 401})
        if response.status_code >= 400:
            raise ToolError(
                f"agent mail returned HTTP {response.status_code}",
                {"url": self.rpc_url, "status_code": response.status_code},
            )
        try:
            body = response.json()
        except ValueError as e:
            raise ToolError("agent mail returned invalid JSON", {"url": self.rpc_url}) from e

        if isinstance(body, dict) and body.get("error"):
            error = body["error"]
            message = error.get("message", "unknown error") if isinstance(error, dict) else str(error)
            raise ToolError(f"agent mail {method} failed: {message}", {"method": method})
        return body.get("result") if isinstance(body, dict) else body

    async def call_tool(
        self, name: str, arguments: dict[str, Any] | None = None, timeout: float | None = None
    ) -> Any:
        result = await self._rpc(
            "tools/call", {"name": name, "arguments": arguments or {}}, timeout
        )
        return _unwrap_tool_result(result)

    async def read_resource(self, uri: str, timeout: float | None = None) -> Any:
        return await self._rpc("resources/read", {"uri": uri}, timeout)

    async def health(self) -> bool:
        """True when the service answers its health check within the fast timeout."""
        try:
            status = await self.call_tool("health_check", timeout=FAST_TIMEOUT)
        except ToolError as e:
            logger.debug("Agent mail health check failed", error=e.message)
            return False
        if isinstance(status, dict):
            return status.get("status", "ok") in ("ok", "healthy")
        return status is not None

    async def list_reservations(
        self, project: str, agent: str | None = None
    ) -> list[Reservation]:
        """Active path reservations for a project.

        Reads the reservation resource, falling back to the legacy tool call
        on older deployments.
        """
        uri = f"resource://file_reservations/{quote(project, safe='')}?active_only=true&format=json"
        try:
            result = await self.read_resource(uri, timeout=FAST_TIMEOUT)
            raw = self._resource_items(result)
        except ToolError as resource_error:
            arguments: dict[str, Any] = {"project_key": project}
            if agent:
                arguments["agent_name"] = agent
            try:
                raw = await self.call_tool("list_file_reservations", arguments, timeout=FAST_TIMEOUT)
            except ToolError:
                raise resource_error from None

        reservations = [
            r for r in (reservation_from_dict(item) for item in raw or [] if isinstance(item, dict)) if r
        ]
        if agent:
            reservations = [r for r in reservations if r.agent_name == agent]
        return reservations

    @staticmethod
    def _resource_items(result: Any) -> list[dict[str, Any]]:
        if not isinstance(result, dict):
            return []
        contents = result.get("contents") or []
        if not contents or not str(contents[0].get("text", "")).strip():
            return []
        try:
            items = json.loads(contents[0]["text"])
        except json.JSONDecodeError as e:
            raise ToolError("invalid reservation resource payload") from e
        return items if isinstance(items, list) else []

    async def inbox_count(self, project: str, agent: str) -> int:
        """Number of messages in an agent's inbox."""
        messages = await self.call_tool(
            "fetch_inbox",
            {"project_key": project, "agent_name": agent},
            timeout=FAST_TIMEOUT,
        )
        return len(messages) if isinstance(messages, list) else 0

    def reservation_source(self, project: str):
        """Bind a project into the zero-argument callable the conflict detector expects."""

        async def _source() -> list[Reservation]:
            return await self.list_reservations(project)

        return _source
