"""Unit tests for alerting."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from ntm_robot.alerts.channels import (
    AlertChannel,
    DesktopChannel,
    LogChannel,
    WebhookChannel,
    escape_applescript,
)
from ntm_robot.alerts.debouncer import Alerter, AlerterConfig, WebhookSettings, build_channels
from ntm_robot.alerts.models import Alert, AlertKind, Severity, suggestion_for
from ntm_robot.utils.logging import AlertDeliveryError


class RecordingChannel(AlertChannel):
    """Channel that remembers delivered alerts."""

    name = "recording"

    def __init__(self, fail: bool = False, is_available: bool = True):
        self.sent: list[Alert] = []
        self.fail = fail
        self.is_available = is_available

    def available(self) -> bool:
        return self.is_available

    async def send(self, alert: Alert) -> None:
        if self.fail:
            raise AlertDeliveryError("boom")
        self.sent.append(alert)


def make_alert(kind=AlertKind.ERROR, pane="%1"):
    return Alert(kind=kind, session="proj", pane=pane, message="something happened", agent_kind="claude")


class TestAlertModel:
    """Test the alert model."""

    def test_default_severity(self):
        """Test severity defaults by kind."""
        assert make_alert(AlertKind.ERROR).severity is Severity.CRITICAL
        assert make_alert(AlertKind.STALLED).severity is Severity.WARNING
        assert make_alert(AlertKind.RECOVERED).severity is Severity.INFO

    def test_to_dict(self):
        """Test optional fields are only emitted when set."""
        alert = make_alert()
        alert.prev_state, alert.new_state = "generating", "error"
        data = alert.to_dict()
        assert data["type"] == "error"
        assert data["pane_id"] == "%1"
        assert data["new_state"] == "error"
        assert "context_loss" not in data
        assert alert.debounce_key == ("%1", AlertKind.ERROR)

    def test_suggestions(self):
        """Test every kind has a suggestion."""
        assert all(suggestion_for(kind) for kind in AlertKind)


class TestAlerter:
    """Test suite for Alerter."""

    @pytest.fixture
    def clock(self):
        return [0.0]

    @pytest.fixture
    def channel(self):
        return RecordingChannel()

    @pytest.fixture
    def alerter(self, channel, clock):
        return Alerter(AlerterConfig(), [channel], clock=lambda: clock[0])

    @pytest.mark.asyncio
    async def test_send(self, alerter, channel):
        """Test alerts reach the channels."""
        assert await alerter.send(make_alert())
        assert len(channel.sent) == 1

    @pytest.mark.asyncio
    async def test_filtered_kinds(self, alerter, channel):
        """Test kinds outside alert_on are dropped."""
        assert not await alerter.send(make_alert(AlertKind.DEGRADED))
        assert channel.sent == []

    @pytest.mark.asyncio
    async def test_disabled(self, channel):
        """Test a disabled alerter sends nothing."""
        alerter = Alerter(AlerterConfig(enabled=False), [channel])
        assert not await alerter.send(make_alert())

    @pytest.mark.asyncio
    async def test_debounce_counts_suppressed(self, alerter, channel, clock):
        """Test repeats are suppressed and counted into the next delivery."""
        await alerter.send(make_alert())
        clock[0] = 10
        assert not await alerter.send(make_alert())
        assert not await alerter.send(make_alert())
        assert await alerter.send(make_alert(pane="%2"))
        assert await alerter.send(make_alert(AlertKind.STALLED))
        clock[0] = 61
        assert await alerter.send(make_alert())
        assert channel.sent[-1].count == 3

    @pytest.mark.asyncio
    async def test_clear_debounce(self, alerter, channel):
        """Test clearing lets the next alert through."""
        await alerter.send(make_alert())
        alerter.clear_debounce("%1")
        assert await alerter.send(make_alert())
        assert channel.sent[-1].count == 1

    @pytest.mark.asyncio
    async def test_all_channels_attempted(self, clock):
        """Test a failing channel does not stop later ones."""
        failing, working = RecordingChannel(fail=True), RecordingChannel()
        alerter = Alerter(AlerterConfig(), [failing, working], clock=lambda: clock[0])
        with pytest.raises(AlertDeliveryError, match="recording: boom"):
            await alerter.send(make_alert())
        assert len(working.sent) == 1

    @pytest.mark.asyncio
    async def test_unavailable_channels_skipped(self):
        """Test unavailable channels are skipped."""
        channel = RecordingChannel(is_available=False)
        assert await Alerter(AlerterConfig(), [channel]).send(make_alert())
        assert channel.sent == []

    @pytest.mark.asyncio
    async def test_tracker_records(self, channel):
        """Test delivered alerts are recorded in the tracker."""
        tracker = MagicMock()
        await Alerter(AlerterConfig(), [channel], tracker=tracker).send(make_alert())
        tracker.record_alert.assert_called_once_with("proj", "%1", "error", "something happened")

    @pytest.mark.asyncio
    async def test_state_change(self, alerter, channel):
        """Test problem states alert and recoveries are announced."""
        assert await alerter.send_state_change("proj", "%1", "claude", "generating", "error", reason="exit")
        alert = channel.sent[-1]
        assert alert.kind is AlertKind.ERROR
        assert alert.metadata == {"reason": "exit"}
        assert "generating -> error" in alert.message

        config = AlerterConfig(alert_on=[AlertKind.RECOVERED])
        recovering = Alerter(config, [channel])
        assert await recovering.send_state_change("proj", "%1", "claude", "error", "waiting")
        assert channel.sent[-1].kind is AlertKind.RECOVERED

    @pytest.mark.asyncio
    async def test_state_change_ignored(self, alerter, channel):
        """Test ordinary transitions do not alert."""
        assert not await alerter.send_state_change("proj", "%1", "claude", "waiting", "generating")
        assert channel.sent == []

    @pytest.mark.asyncio
    async def test_restarts(self, alerter, channel):
        """Test restart alerts and context loss wording."""
        await alerter.send_restart("proj", "%1", "claude", context_loss=True)
        assert channel.sent[-1].message.endswith("(context lost)")
        assert channel.sent[-1].context_loss
        await alerter.send_restart("proj", "%2", "codex", success=False)
        assert channel.sent[-1].kind is AlertKind.RESTART_FAILED
        await alerter.send_max_restarts("proj", "%3", "gemini", 5)
        assert channel.sent[-1].metadata == {"restart_count": 5}


class TestBuildChannels:
    """Test channel construction from configuration."""

    def test_defaults(self):
        """Test only the log channel is on by default."""
        channels = build_channels(AlerterConfig())
        assert [c.name for c in channels] == ["log"]

    def test_all_channels(self):
        """Test desktop and webhooks are added when configured."""
        config = AlerterConfig(
            desktop_enabled=True,
            log_to_stderr=False,
            webhooks=[WebhookSettings("https://hooks.example/x", [AlertKind.ERROR])],
        )
        channels = build_channels(config)
        assert isinstance(channels[0], DesktopChannel)
        assert channels[1].name == "webhook:https://hooks.example/x"


class TestChannels:
    """Test delivery channels."""

    @pytest.mark.asyncio
    async def test_log_channel(self):
        """Test critical alerts log at error level."""
        with patch("ntm_robot.alerts.channels.logger") as mock_logger:
            await LogChannel().send(make_alert())
            await LogChannel().send(make_alert(AlertKind.STALLED))
        assert mock_logger.error.call_args.args[0].startswith("ALERT: ")
        payload = json.loads(mock_logger.warning.call_args.args[0][len("ALERT: "):])
        assert payload["type"] == "stalled"

    def test_escape_applescript(self):
        """Test quotes, backslashes and newlines are escaped."""
        assert escape_applescript('a "b"\\\nc') == 'a \\"b\\"\\\\\\nc'

    def test_desktop_commands(self):
        """Test platform-specific notification commands."""
        mac = DesktopChannel(platform="darwin", which=lambda _: "/usr/bin/osascript")
        assert mac.command(make_alert())[:2] == ["osascript", "-e"]
        linux = DesktopChannel("critical", platform="linux", which=lambda _: "/usr/bin/notify-send")
        assert linux.command(make_alert()) == [
            "notify-send", "-u", "critical", "NTM: error", "something happened"
        ]
        assert linux.available()
        assert not DesktopChannel(platform="win32").available()

    @pytest.mark.asyncio
    async def test_desktop_failure(self):
        """Test a failing notifier raises AlertDeliveryError."""
        process = MagicMock(returncode=1)
        process.communicate = AsyncMock(return_value=(b"", b"no display"))
        channel = DesktopChannel(platform="linux")
        with patch(
            "ntm_robot.alerts.channels.asyncio.create_subprocess_exec",
            AsyncMock(return_value=process),
        ):
            with pytest.raises(AlertDeliveryError, match="no display"):
                await channel.send(make_alert())

    @pytest.mark.asyncio
    async def test_desktop_unsupported(self):
        """Test unsupported platforms raise."""
        with pytest.raises(AlertDeliveryError):
            await DesktopChannel(platform="win32").send(make_alert())


class TestWebhookChannel:
    """Test suite for WebhookChannel."""

    @pytest.mark.asyncio
    async def test_posts_json(self):
        """Test the alert is posted as JSON with the user agent."""
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(204)

        channel = WebhookChannel("https://hooks.example/x", transport=httpx.MockTransport(handler))
        await channel.send(make_alert())
        assert json.loads(seen[0].content)["type"] == "error"
        assert seen[0].headers["User-Agent"] == "ntm-robot-alerter/1.0"

    @pytest.mark.asyncio
    async def test_event_filter(self):
        """Test alerts outside the event list are skipped."""
        handler = MagicMock(return_value=httpx.Response(200))
        channel = WebhookChannel(
            "https://hooks.example/x", [AlertKind.STALLED], transport=httpx.MockTransport(handler)
        )
        await channel.send(make_alert(AlertKind.ERROR))
        handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_retries_with_backoff(self):
        """Test server errors are retried with 1, 2, 4 second backoff."""
        responses = iter([httpx.Response(500), httpx.Response(502), httpx.Response(503), httpx.Response(200)])
        sleep = AsyncMock()
        channel = WebhookChannel(
            "https://hooks.example/x",
            transport=httpx.MockTransport(lambda r: next(responses)),
            sleep=sleep,
        )
        await channel.send(make_alert())
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0, 4.0]

    @pytest.mark.asyncio
    async def test_gives_up(self):
        """Test delivery fails after all attempts."""
        sleep = AsyncMock()

        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        channel = WebhookChannel(
            "https://hooks.example/x", max_retries=2, transport=httpx.MockTransport(handler), sleep=sleep
        )
        with pytest.raises(AlertDeliveryError, match="after 3 attempts"):
            await channel.send(make_alert())
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        """Test 4xx responses fail immediately."""
        sleep = AsyncMock()
        channel = WebhookChannel(
            "https://hooks.example/x",
            transport=httpx.MockTransport(lambda r: httpx.Response(404)),
            sleep=sleep,
        )
        with pytest.raises(AlertDeliveryError, match="404"):
            await channel.send(make_alert())
        sleep.assert_not_awaited()
