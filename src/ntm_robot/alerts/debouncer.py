"""
Alert fan-out with per-pane debouncing.

An alert is delivered at most once per ``debounce_interval`` for each
``(pane, kind)`` pair. The check and the update of the last-sent time happen
under one lock so concurrent senders cannot both pass.
"""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ..utils.logging import AlertDeliveryError, LogContext, get_logger
from .channels import AlertChannel, DesktopChannel, LogChannel, WebhookChannel
from .models import Alert, AlertKind, suggestion_for

if TYPE_CHECKING:
    from ..tracker.tracker import StateTracker

logger = get_logger(__name__, LogContext.ALERTS)

DEFAULT_DEBOUNCE_INTERVAL = 60.0

DEFAULT_ALERT_ON = [
    AlertKind.UNHEALTHY,
    AlertKind.RATE_LIMITED,
    AlertKind.RESTART,
    AlertKind.RESTART_FAILED,
    AlertKind.MAX_RESTARTS,
    AlertKind.STALLED,
    AlertKind.ERROR,
]

# New state -> alert kind; agent states and health states share one table
_STATE_ALERTS = {
    "unhealthy": AlertKind.UNHEALTHY,
    "degraded": AlertKind.DEGRADED,
    "rate_limited": AlertKind.RATE_LIMITED,
    "stalled": AlertKind.STALLED,
    "error": AlertKind.ERROR,
}
_PROBLEM_STATES = set(_STATE_ALERTS)
_HEALTHY_STATES = {"healthy", "generating", "waiting", "thinking"}


@dataclass
class WebhookSettings:
    url: str
    events: list[AlertKind] = field(default_factory=list)
    max_retries: int = 3
    timeout: float = 10.0


@dataclass
class AlerterConfig:
    """Runtime configuration of the alerter."""

    enabled: bool = True
    debounce_interval: float = DEFAULT_DEBOUNCE_INTERVAL
    alert_on: list[AlertKind] = field(default_factory=lambda: list(DEFAULT_ALERT_ON))
    desktop_enabled: bool = False
    desktop_urgency: str = "normal"
    log_to_stderr: bool = True
    webhooks: list[WebhookSettings] = field(default_factory=list)


def build_channels(config: AlerterConfig) -> list[AlertChannel]:
    channels: list[AlertChannel] = []
    if config.desktop_enabled:
        channels.append(DesktopChannel(config.desktop_urgency))
    if config.log_to_stderr:
        channels.append(LogChannel())
    for hook in config.webhooks:
        channels.append(
            WebhookChannel(hook.url, hook.events, hook.max_retries, hook.timeout)
        )
    return channels


class Alerter:
    """Delivers alerts to channels, suppressing repeats per pane and kind."""

    def __init__(
        self,
        config: AlerterConfig | None = None,
        channels: list[AlertChannel] | None = None,
        clock: Callable[[], float] = time.monotonic,
        tracker: "StateTracker | None" = None,
    ):
        """Initialize the alerter.

        Args:
            config: Alerter configuration, defaults when omitted
            channels: Delivery channels; built from the config when omitted
            clock: Monotonic clock used for debouncing
            tracker: Optional state tracker receiving delivered alerts
        """
        self.config = config or AlerterConfig()
        self.channels = channels if channels is not None else build_channels(self.config)
        self.tracker = tracker
        self._clock = clock
        self._lock = threading.Lock()
        self._last_sent: dict[tuple[str, AlertKind], float] = {}
        self._suppressed: dict[tuple[str, AlertKind], int] = {}

    def should_alert(self, kind: AlertKind) -> bool:
        return self.config.enabled and kind in self.config.alert_on

    def _admit(self, alert: Alert) -> bool:
        key = alert.debounce_key
        with self._lock:
            now = self._clock()
            last = self._last_sent.get(key)
            if last is not None and now - last < self.config.debounce_interval:
                self._suppressed[key] = self._suppressed.get(key, 0) + 1
                return False
            self._last_sent[key] = now
            alert.count = 1 + self._suppressed.pop(key, 0)
            return True

    async def send(self, alert: Alert) -> bool:
        """Deliver an alert unless filtered or debounced.

        Every available channel is attempted even if an earlier one fails.

        Returns:
            True if the alert was handed to the channels

        Raises:
            AlertDeliveryError: The first channel failure
        """
        if not self.should_alert(alert.kind):
            return False
        if not self._admit(alert):
            logger.debug("Alert debounced", pane=alert.pane, alert_type=alert.kind.value)
            return False

        if self.tracker is not None:
            self.tracker.record_alert(alert.session, alert.pane, alert.kind.value, alert.message)

        errors: list[AlertDeliveryError] = []
        for channel in self.channels:
            if not channel.available():
                continue
            try:
                await channel.send(alert)
            except AlertDeliveryError as e:
                logger.warning("Alert channel failed", channel=channel.name, error=e.message)
                errors.append(
                    AlertDeliveryError(f"{channel.name}: {e.message}", e.context)
                )

        if errors:
            raise errors[0]
        return True

    async def send_state_change(
        self,
        session: str,
        pane: str,
        agent_kind: str,
        prev_state: str,
        new_state: str,
        reason: str = "",
    ) -> bool:
        """Alert on a transition into a problem state or back out of one."""
        kind = _STATE_ALERTS.get(new_state)
        if kind is None:
            if new_state in _HEALTHY_STATES and prev_state in _PROBLEM_STATES:
                kind = AlertKind.RECOVERED
            else:
                return False

        alert = Alert(
            kind=kind,
            session=session,
            pane=pane,
            agent_kind=agent_kind,
            prev_state=prev_state,
            new_state=new_state,
            message=f"Agent {agent_kind} in {session}: {prev_state} -> {new_state}",
            suggestion=suggestion_for(kind),
        )
        if reason:
            alert.metadata["reason"] = reason
        return await self.send(alert)

    async def send_restart(
        self,
        session: str,
        pane: str,
        agent_kind: str,
        context_loss: bool = False,
        success: bool = True,
    ) -> bool:
        kind = AlertKind.RESTART if success else AlertKind.RESTART_FAILED
        alert = Alert(
            kind=kind,
            session=session,
            pane=pane,
            agent_kind=agent_kind,
            context_loss=context_loss,
            message=f"Agent {agent_kind} in {session} restarted",
            suggestion=suggestion_for(kind),
        )
        if context_loss:
            alert.message += " (context lost)"
            alert.suggestion = (
                "Agent lost its conversation context. You may need to re-explain the task."
            )
        return await self.send(alert)

    async def send_max_restarts(
        self, session: str, pane: str, agent_kind: str, restart_count: int
    ) -> bool:
        alert = Alert(
            kind=AlertKind.MAX_RESTARTS,
            session=session,
            pane=pane,
            agent_kind=agent_kind,
            message=f"Agent {agent_kind} in {session} exceeded max restarts ({restart_count})",
            suggestion=(
                "Agent is unstable. Consider killing and respawning, "
                "or investigating the underlying issue."
            ),
            metadata={"restart_count": restart_count},
        )
        return await self.send(alert)

    def clear_debounce(self, pane: str) -> None:
        """Forget debounce state for every alert kind of one pane."""
        with self._lock:
            for key in [k for k in self._last_sent if k[0] == pane]:
                del self._last_sent[key]
            for key in [k for k in self._suppressed if k[0] == pane]:
                del self._suppressed[key]
