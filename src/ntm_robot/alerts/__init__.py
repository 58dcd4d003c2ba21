"""Alert delivery with debouncing."""

from .channels import AlertChannel, DesktopChannel, LogChannel, WebhookChannel
from .debouncer import (
    DEFAULT_ALERT_ON,
    Alerter,
    AlerterConfig,
    WebhookSettings,
    build_channels,
)
from .models import Alert, AlertKind, Severity, suggestion_for

__all__ = [
    "DEFAULT_ALERT_ON",
    "Alert",
    "AlertChannel",
    "AlertKind",
    "Alerter",
    "AlerterConfig",
    "DesktopChannel",
    "LogChannel",
    "Severity",
    "WebhookChannel",
    "WebhookSettings",
    "build_channels",
    "suggestion_for",
]
