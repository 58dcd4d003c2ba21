"""Alert delivery channels."""

import asyncio
import json
import shutil
import sys
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable

import httpx

from ..utils.logging import AlertDeliveryError, LogContext, get_logger
from .models import Alert, AlertKind

logger = get_logger(__name__, LogContext.ALERTS)

DEFAULT_WEBHOOK_TIMEOUT = 10.0
DEFAULT_MAX_RETRIES = 3
USER_AGENT = "ntm-robot-alerter/1.0"


class AlertChannel(ABC):
    """Abstract base class for alert channels."""

    name: str = ""

    def available(self) -> bool:
        return True

    @abstractmethod
    async def send(self, alert: Alert) -> None:
        """Deliver an alert.

        Args:
            alert: Alert to deliver

        Raises:
            AlertDeliveryError: If delivery failed
        """


class LogChannel(AlertChannel):
    """Writes alerts to the structured log as JSON."""

    name = "log"

    async def send(self, alert: Alert) -> None:
        level = "error" if alert.severity and alert.severity.value == "critical" else "warning"
        getattr(logger, level)(
            f"ALERT: {json.dumps(alert.to_dict())}",
            alert_type=alert.kind.value,
            pane=alert.pane,
            session=alert.session,
        )


def escape_applescript(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


class DesktopChannel(AlertChannel):
    """Desktop notifications via ``osascript`` or ``notify-send``."""

    name = "desktop"

    def __init__(
        self,
        urgency: str = "normal",
        platform: str | None = None,
        which: Callable[[str], str | None] = shutil.which,
    ):
        self.urgency = urgency or "normal"
        self.platform = platform or sys.platform
        self._which = which

    def _binary(self) -> str | None:
        if self.platform == "darwin":
            return "osascript"
        if self.platform.startswith("linux"):
            return "notify-send"
        return None

    def available(self) -> bool:
        binary = self._binary()
        return binary is not None and self._which(binary) is not None

    def command(self, alert: Alert) -> list[str]:
        title = f"NTM: {alert.kind.value}"
        if self.platform == "darwin":
            script = (
                f'display notification "{escape_applescript(alert.message)}" '
                f'with title "{escape_applescript(title)}"'
            )
            return ["osascript", "-e", script]
        return ["notify-send", "-u", self.urgency, title, alert.message]

    async def send(self, alert: Alert) -> None:
        if self._binary() is None:
            raise AlertDeliveryError(f"desktop notifications not supported on {self.platform}")
        process = await asyncio.create_subprocess_exec(
            *self.command(alert),
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        _, stderr = await process.communicate()
        if process.returncode != 0:
            raise AlertDeliveryError(
                f"desktop notification failed: {stderr.decode(errors='replace').strip()}",
                {"channel": self.name},
            )


class WebhookChannel(AlertChannel):
    """POSTs alerts as JSON with exponential backoff between attempts."""

    def __init__(
        self,
        url: str,
        events: list[AlertKind] | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        timeout: float = DEFAULT_WEBHOOK_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the webhook channel.

        Args:
            url: Endpoint receiving alerts
            events: Alert kinds to forward; empty forwards all
            max_retries: Retries after the first attempt
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport, used by tests
            sleep: Backoff sleep, cancellable
        """
        self.url = url
        self.events = set(events or [])
        self.max_retries = max_retries if max_retries > 0 else DEFAULT_MAX_RETRIES
        self.timeout = timeout if timeout > 0 else DEFAULT_WEBHOOK_TIMEOUT
        self._transport = transport
        self._sleep = sleep

    @property
    def name(self) -> str:  # type: ignore[override]
        return f"webhook:{self.url}"

    def available(self) -> bool:
        return bool(self.url)

    def handles(self, kind: AlertKind) -> bool:
        return not self.events or kind in self.events

    async def send(self, alert: Alert) -> None:
        if not self.handles(alert.kind):
            return

        payload = alert.to_dict()
        last_error = ""
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for attempt in range(self.max_retries + 1):
                if attempt > 0:
                    # 1s, 2s, 4s, ...
                    await self._sleep(float(1 << (attempt - 1)))
                try:
                    response = await client.post(
                        self.url, json=payload, headers={"User-Agent": USER_AGENT}
                    )
                except httpx.HTTPError as e:
                    last_error = str(e) or type(e).__name__
                    logger.debug("Webhook attempt failed", url=self.url, attempt=attempt + 1, error=last_error)
                    continue

                if 200 <= response.status_code < 300:
                    return
                last_error = f"webhook returned status {response.status_code}"
                if 400 <= response.status_code < 500:
                    raise AlertDeliveryError(last_error, {"url": self.url, "status_code": response.status_code})

        raise AlertDeliveryError(
            f"webhook failed after {self.max_retries + 1} attempts: {last_error}",
            {"url": self.url},
        )
