"""
Base adapter for external ecosystem tools.

Every tool is a command-line binary found on ``PATH``. The base class handles
detection (with a TTL cache), version parsing, health checks and bounded
subprocess execution; concrete adapters add tool-specific commands.
"""

import asyncio
import json
import re
import shutil
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from ..utils.logging import (
    DependencyMissingError,
    LogContext,
    NtmRobotError,
    ToolError,
    ToolTimeoutError,
    get_logger,
)

logger = get_logger(__name__, LogContext.TOOLS)

DEFAULT_TIMEOUT = 30.0
DEFAULT_CACHE_TTL = 300.0
OUTPUT_LIMIT = 10 * 1024 * 1024
READ_CHUNK = 64 * 1024
RAW_EXCERPT = 200

VERSION_RE = re.compile(r"(\d+)\.(\d+)\.(\d+)")


class ToolName(str, Enum):
    """Identifiers of supported tools."""

    BD = "bd"
    BV = "bv"
    CASS = "cass"
    JFP = "jfp"
    DCG = "dcg"
    MS = "ms"
    AM = "am"


class Capability(str, Enum):
    ROBOT_MODE = "robot_mode"
    DAEMON_MODE = "daemon_mode"
    MACROS = "macros"
    SEARCH = "search"
    CONTEXT_PACK = "context_pack"


@dataclass(frozen=True)
class Version:
    """A parsed ``X.Y.Z`` version."""

    major: int = 0
    minor: int = 0
    patch: int = 0
    raw: str = field(default="", compare=False)

    @classmethod
    def parse(cls, output: str) -> "Version":
        """Extract the first ``X.Y.Z`` from command output.

        Output without a version yields ``0.0.0`` with the raw text preserved.
        """
        output = output.strip()
        match = VERSION_RE.search(output)
        if not match:
            return cls(raw=output)
        return cls(int(match.group(1)), int(match.group(2)), int(match.group(3)), raw=output)

    @property
    def triple(self) -> tuple[int, int, int]:
        return (self.major, self.minor, self.patch)

    def compare(self, other: "Version") -> int:
        if self.triple == other.triple:
            return 0
        return -1 if self.triple < other.triple else 1

    def at_least(self, other: "Version") -> bool:
        return self.triple >= other.triple

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"

    def to_dict(self) -> dict[str, Any]:
        return {"major": self.major, "minor": self.minor, "patch": self.patch, "raw": self.raw}


@dataclass
class HealthStatus:
    """Result of a tool health check."""

    healthy: bool
    message: str = ""
    error: str | None = None
    latency_ms: float | None = None
    last_checked: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "healthy": self.healthy,
            "message": self.message,
            "last_checked": self.last_checked.isoformat(),
        }
        if self.error:
            data["error"] = self.error
        if self.latency_ms is not None:
            data["latency_ms"] = round(self.latency_ms, 1)
        return data


@dataclass
class ToolInfo:
    """Complete metadata about a tool."""

    name: str
    installed: bool
    path: str | None = None
    version: Version | None = None
    capabilities: list[str] = field(default_factory=list)
    health: HealthStatus | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name, "installed": self.installed}
        if self.path:
            data["path"] = self.path
        if self.version is not None:
            data["version"] = str(self.version)
        if self.capabilities:
            data["capabilities"] = list(self.capabilities)
        if self.health is not None:
            data["health"] = self.health.to_dict()
        return data


@dataclass
class ToolResult:
    """Captured output of a tool invocation."""

    stdout: str
    stderr: str = ""
    exit_code: int = 0
    empty: bool = False


async def _read_limited(stream: asyncio.StreamReader | None, limit: int) -> bytes:
    if stream is None:
        return b""
    buf = bytearray()
    while True:
        chunk = await stream.read(READ_CHUNK)
        if not chunk:
            return bytes(buf)
        if len(buf) + len(chunk) > limit:
            raise ToolError("output limit exceeded", {"limit_bytes": limit})
        buf.extend(chunk)


class ToolAdapter:
    """Base class for command-line tool adapters.

    Subclasses set ``name``, ``binary`` and ``install_hint`` and add their own
    commands on top of :meth:`run` and :meth:`run_json`.
    """

    name: ToolName
    binary: str = ""
    install_hint: str = ""
    base_capabilities: tuple[str, ...] = ()

    def __init__(
        self,
        binary: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        cache_ttl: float = DEFAULT_CACHE_TTL,
        which: Callable[[str], str | None] = shutil.which,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the adapter.

        Args:
            binary: Executable name or path overriding the class default
            timeout: Default timeout for commands in seconds
            cache_ttl: How long a detection result is reused, in seconds
            which: PATH lookup function
            clock: Monotonic clock used for the detection cache
        """
        if binary:
            self.binary = binary
        self.timeout = timeout
        self.cache_ttl = cache_ttl
        self._which = which
        self._clock = clock
        self._cache_lock = threading.Lock()
        self._cached: tuple[str | None, bool] | None = None
        self._cached_at = 0.0
        self._version: Version | None = None

    # Detection

    def detect(self) -> tuple[str | None, bool]:
        """Locate the binary on PATH, reusing a recent result."""
        with self._cache_lock:
            now = self._clock()
            if self._cached is not None and now - self._cached_at < self.cache_ttl:
                return self._cached
            path = self._which(self.binary)
            self._cached = (path, path is not None)
            self._cached_at = now
            return self._cached

    def invalidate_availability_cache(self) -> None:
        with self._cache_lock:
            self._cached = None
            self._version = None

    def is_installed(self) -> bool:
        return self.detect()[1]

    def require(self) -> str:
        """Return the binary path or raise :class:`DependencyMissingError`."""
        path, installed = self.detect()
        if not installed or path is None:
            raise DependencyMissingError(
                f"{self.binary} is not installed",
                {"tool": self.name.value},
                hint=self.install_hint or f"Install {self.binary} and make sure it is on PATH",
            )
        return path

    # Metadata

    def parse_version(self, output: str) -> Version:
        return Version.parse(output)

    async def version(self) -> Version:
        """Installed version, queried once per adapter."""
        if self._version is None:
            result = await self.run(["--version"])
            self._version = self.parse_version(result.stdout)
        return self._version

    async def capabilities(self) -> list[str]:
        return list(self.base_capabilities)

    async def has_capability(self, capability: str) -> bool:
        return capability in await self.capabilities()

    async def health(self) -> HealthStatus:
        """Check the tool responds to ``--version``."""
        path, installed = self.detect()
        if not installed:
            return HealthStatus(healthy=False, message=f"{self.binary} not installed")

        start = time.perf_counter()
        try:
            await self.version()
        except NtmRobotError as e:
            return HealthStatus(
                healthy=False,
                message=f"{self.binary} at {path} not responding",
                error=e.message,
                latency_ms=(time.perf_counter() - start) * 1000,
            )
        return HealthStatus(
            healthy=True,
            message=f"{self.binary} is healthy",
            latency_ms=(time.perf_counter() - start) * 1000,
        )

    async def info(self) -> ToolInfo:
        """Gather detection, version, capabilities and health."""
        path, installed = self.detect()
        info = ToolInfo(name=self.name.value, installed=installed, path=path)
        if not installed:
            info.health = HealthStatus(healthy=False, message="Tool not installed")
            return info

        try:
            info.version = await self.version()
        except NtmRobotError as e:
            logger.debug("Version check failed", tool=self.name.value, error=e.message)
        info.capabilities = await self.capabilities()
        info.health = await self.health()
        return info

    # Execution

    async def run(
        self,
        args: list[str],
        timeout: float | None = None,
        no_results_exit_codes: tuple[int, ...] = (),
        cwd: str | None = None,
    ) -> ToolResult:
        """Run the tool with a deadline and bounded output.

        Args:
            args: Arguments passed to the binary
            timeout: Deadline in seconds, defaults to the adapter timeout
            no_results_exit_codes: Exit codes meaning "nothing found"
            cwd: Working directory for the process

        Returns:
            Captured output; ``empty`` is set for a no-results exit code

        Raises:
            DependencyMissingError: If the binary is not installed
            ToolTimeoutError: If the deadline passes
            ToolError: On output overflow or a failing exit code
        """
        path = self.require()
        deadline = timeout if timeout is not None else self.timeout
        logger.debug("Running tool", tool=self.name.value, tool_args=args)

        try:
            process = await asyncio.create_subprocess_exec(
                path,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
            )
        except FileNotFoundError as e:
            self.invalidate_availability_cache()
            raise DependencyMissingError(
                f"{self.binary} is not installed",
                {"tool": self.name.value},
                hint=self.install_hint or None,
            ) from e

        async def _collect() -> tuple[bytes, bytes]:
            stdout, stderr = await asyncio.gather(
                _read_limited(process.stdout, OUTPUT_LIMIT),
                _read_limited(process.stderr, OUTPUT_LIMIT),
            )
            await process.wait()
            return stdout, stderr

        try:
            stdout_b, stderr_b = await asyncio.wait_for(_collect(), timeout=deadline)
        except asyncio.TimeoutError as e:
            self._kill(process)
            raise ToolTimeoutError(
                f"{self.binary} timed out after {deadline:g}s",
                {"tool": self.name.value, "timeout": deadline},
            ) from e
        except (ToolError, asyncio.CancelledError):
            self._kill(process)
            raise

        stdout = stdout_b.decode("utf-8", errors="replace")
        stderr = stderr_b.decode("utf-8", errors="replace")
        code = process.returncode or 0

        if code == 0:
            return ToolResult(stdout=stdout, stderr=stderr, exit_code=0)
        if code in no_results_exit_codes:
            return ToolResult(stdout=stdout, stderr=stderr, exit_code=code, empty=True)
        raise ToolError(
            f"{self.binary} exited with code {code}: {stderr.strip()[:RAW_EXCERPT]}",
            {"tool": self.name.value, "exit_code": code, "tool_args": args},
        )

    @staticmethod
    def _kill(process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass

    async def run_json(
        self,
        args: list[str],
        timeout: float | None = None,
        no_results_exit_codes: tuple[int, ...] = (),
        cwd: str | None = None,
    ) -> Any:
        """Run the tool and decode stdout as JSON.

        Returns ``None`` for an empty result.
        """
        result = await self.run(args, timeout, no_results_exit_codes, cwd)
        if result.empty or not result.stdout.strip():
            return None
        try:
            return json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise ToolError(
                f"invalid JSON from {self.binary}: {e.msg}",
                {"tool": self.name.value, "raw": result.stdout[:RAW_EXCERPT]},
            ) from e
