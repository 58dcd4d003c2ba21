"""Configuration loading and management."""

import os
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError
from pydantic import field_validator, model_validator

from ..activity.indicators import (
    COLOR_ACTIVE,
    COLOR_IDLE,
    COLOR_STALLED,
    MIN_POLL_INTERVAL,
    IndicatorConfig,
)
from ..alerts.debouncer import AlerterConfig, WebhookSettings
from ..alerts.models import AlertKind
from ..cass import inject as cass_inject
from ..utils.logging import ConfigurationError, LogContext, get_logger

logger = get_logger(__name__, LogContext.CONFIG)

ENV_PREFIX = "NTM_ROBOT_"

_TRUE_VALUES = ("true", "1", "yes", "on")


class ActivityConfig(BaseModel):
    """Activity classification and pane indicator settings (seconds)."""

    poll_interval: float = Field(default=10.0, description="Indicator poll interval")
    active_threshold: float = Field(default=30.0, gt=0, description="Idle time before a pane is idle")
    stalled_threshold: float = Field(default=120.0, gt=0, description="Idle time before a pane is stalled")
    lines_captured: int = Field(default=20, ge=1, description="Scrollback lines captured per poll")
    panes: list[int] = Field(default_factory=list, description="Pane indices to watch")
    color_active: str = COLOR_ACTIVE
    color_idle: str = COLOR_IDLE
    color_stalled: str = COLOR_STALLED

    @field_validator("poll_interval")
    @classmethod
    def _check_poll_interval(cls, value: float) -> float:
        if value < MIN_POLL_INTERVAL:
            raise ValueError(f"poll_interval must be at least {MIN_POLL_INTERVAL} seconds")
        return value

    @model_validator(mode="after")
    def _order_thresholds(self) -> "ActivityConfig":
        if self.active_threshold >= self.stalled_threshold:
            self.stalled_threshold = self.active_threshold + 60.0
        return self

    def to_indicator_config(self, session: str) -> IndicatorConfig:
        return IndicatorConfig(
            session=session,
            poll_interval=self.poll_interval,
            active_threshold=self.active_threshold,
            stalled_threshold=self.stalled_threshold,
            color_active=self.color_active,
            color_idle=self.color_idle,
            color_stalled=self.color_stalled,
            lines_captured=self.lines_captured,
            panes=list(self.panes),
        )


class ConflictConfig(BaseModel):
    repo_path: str | None = Field(default=None, description="Repository root, defaults to cwd")
    tolerance_seconds: float = Field(default=5.0, ge=0)
    retention_seconds: float = Field(default=3600.0, gt=0)
    min_confidence: float = Field(default=0.5, ge=0.0, le=1.0)

    @property
    def tolerance(self) -> timedelta:
        return timedelta(seconds=self.tolerance_seconds)

    @property
    def retention(self) -> timedelta:
        return timedelta(seconds=self.retention_seconds)


class WebhookConfig(BaseModel):
    url: str = Field(description="Webhook endpoint")
    events: list[str] = Field(default_factory=list, description="Alert kinds to deliver, all if empty")
    max_retries: int = Field(default=3, ge=0)
    timeout: float = Field(default=10.0, gt=0)

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("webhook url is required")
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"webhook url must be http or https: {value}")
        return value

    @field_validator("events")
    @classmethod
    def _check_events(cls, value: list[str]) -> list[str]:
        return [_alert_kind(v).value for v in value]


def _alert_kind(value: str) -> AlertKind:
    try:
        return AlertKind(value)
    except ValueError:
        allowed = ", ".join(k.value for k in AlertKind)
        raise ValueError(f"unknown alert kind {value!r} (allowed: {allowed})") from None


class AlertsConfig(BaseModel):
    enabled: bool = True
    debounce_interval: float = Field(default=60.0, ge=0)
    alert_on: list[str] = Field(
        default_factory=lambda: [k.value for k in AlerterConfig().alert_on]
    )
    desktop_enabled: bool = False
    desktop_urgency: str = "normal"
    log_to_stderr: bool = True
    webhooks: list[WebhookConfig] = Field(default_factory=list)

    @field_validator("alert_on")
    @classmethod
    def _check_alert_on(cls, value: list[str]) -> list[str]:
        return [_alert_kind(v).value for v in value]

    @field_validator("desktop_urgency")
    @classmethod
    def _check_urgency(cls, value: str) -> str:
        if value not in ("low", "normal", "critical"):
            raise ValueError("desktop_urgency must be low, normal or critical")
        return value

    def to_alerter_config(self) -> AlerterConfig:
        return AlerterConfig(
            enabled=self.enabled,
            debounce_interval=self.debounce_interval,
            alert_on=[AlertKind(k) for k in self.alert_on],
            desktop_enabled=self.desktop_enabled,
            desktop_urgency=self.desktop_urgency,
            log_to_stderr=self.log_to_stderr,
            webhooks=[
                WebhookSettings(
                    url=hook.url,
                    events=[AlertKind(e) for e in hook.events],
                    max_retries=hook.max_retries,
                    timeout=hook.timeout,
                )
                for hook in self.webhooks
            ],
        )


class ToolsConfig(BaseModel):
    timeout: float = Field(default=30.0, gt=0, description="Default tool timeout in seconds")
    cache_ttl: float = Field(default=300.0, ge=0, description="Availability cache lifetime")
    agent_mail_url: str = "http://127.0.0.1:8765"
    agent_mail_token: str | None = None
    project: str | None = Field(default=None, description="Agent-mail project key, defaults to cwd")
    dcg_audit_path: str | None = None


class CASSConfig(BaseModel):
    enabled: bool = True
    max_results: int = Field(default=5, ge=0)
    max_age_days: int = Field(default=30, ge=0)
    min_relevance: float = Field(default=0.0, ge=0.0, le=1.0)
    prefer_same_project: bool = True
    agent_filter: list[str] = Field(default_factory=list)
    timeout: float = Field(default=30.0, gt=0)

    def to_runtime(self) -> cass_inject.CASSConfig:
        return cass_inject.CASSConfig(**self.model_dump())


class FilterConfig(BaseModel):
    min_relevance: float = Field(default=0.7, ge=0.0, le=1.0)
    max_items: int = Field(default=5, ge=0)
    prefer_same_project: bool = True
    max_age_days: int = Field(default=30, ge=0)
    recency_boost: float = Field(default=0.3, ge=0.0, le=1.0)

    def to_runtime(self, workspace: str = "") -> cass_inject.FilterConfig:
        return cass_inject.FilterConfig(current_workspace=workspace, **self.model_dump())


class InjectConfig(BaseModel):
    format: str = "markdown"
    max_tokens: int = Field(default=500, ge=0)
    skip_threshold: int = Field(default=60, ge=0, le=100)
    dry_run: bool = False

    @field_validator("format")
    @classmethod
    def _check_format(cls, value: str) -> str:
        try:
            return cass_inject.InjectionFormat(value).value
        except ValueError:
            raise ValueError("format must be markdown, minimal or structured") from None

    def to_runtime(self, fmt: str | None = None, context_pct: int = 0) -> cass_inject.InjectConfig:
        return cass_inject.InjectConfig(
            format=cass_inject.InjectionFormat(fmt or self.format),
            max_tokens=self.max_tokens,
            skip_threshold=self.skip_threshold,
            current_context_pct=context_pct,
            dry_run=self.dry_run,
        )


class ContextConfig(BaseModel):
    overhead: float = Field(default=2.5, gt=0)
    lines: int = Field(default=1000, ge=1)


class OutputConfig(BaseModel):
    format: str = "json"
    verbosity: str = "default"

    @field_validator("format")
    @classmethod
    def _check_format(cls, value: str) -> str:
        value = value.lower()
        if value not in ("json", "toon", "auto"):
            raise ValueError("format must be json, toon or auto")
        return value

    @field_validator("verbosity")
    @classmethod
    def _check_verbosity(cls, value: str) -> str:
        value = value.lower()
        if value not in ("default", "terse", "debug"):
            raise ValueError("verbosity must be default, terse or debug")
        return value


class TrackerConfig(BaseModel):
    capacity: int = Field(default=4096, ge=1)
    max_age_seconds: float | None = Field(default=None, gt=0)

    @property
    def max_age(self) -> timedelta | None:
        if self.max_age_seconds is None:
            return None
        return timedelta(seconds=self.max_age_seconds)


class LoggingConfig(BaseModel):
    level: str = "WARNING"
    file: str | None = None
    structured: bool = False
    console: bool = True

    @field_validator("level")
    @classmethod
    def _check_level(cls, value: str) -> str:
        value = value.upper()
        if value not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"invalid log level: {value}")
        return value


class RobotConfig(BaseModel):
    """Configuration model for ntm-robot."""

    remote: str | None = Field(default=None, description="SSH host running the tmux server")
    activity: ActivityConfig = Field(default_factory=ActivityConfig)
    conflicts: ConflictConfig = Field(default_factory=ConflictConfig)
    alerts: AlertsConfig = Field(default_factory=AlertsConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    cass: CASSConfig = Field(default_factory=CASSConfig)
    filter: FilterConfig = Field(default_factory=FilterConfig)
    inject: InjectConfig = Field(default_factory=InjectConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    tracker: TrackerConfig = Field(default_factory=TrackerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def find_config_file(custom_path: str | None = None) -> Path | None:
    """Find configuration file in standard locations."""
    if custom_path:
        path = Path(custom_path).expanduser()
        if path.exists():
            return path
        raise ConfigurationError(f"Config file not found: {custom_path}", {"path": custom_path})

    search_paths = [
        Path.cwd() / "ntm-robot.yaml",
        Path.cwd() / "ntm-robot.yml",
        Path.home() / ".config" / "ntm" / "robot.yaml",
        Path.home() / ".ntm-robot.yaml",
    ]

    for path in search_paths:
        if path.exists():
            return path

    return None


def load_config_file(config_path: Path) -> dict[str, Any]:
    """Load configuration from YAML file."""
    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in config file {config_path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Failed to read config file {config_path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a mapping")
    return data


def _set_path(target: dict[str, Any], path: tuple[str, ...], value: Any) -> None:
    for key in path[:-1]:
        target = target.setdefault(key, {})
    target[path[-1]] = value


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge ``override`` into a copy of ``base``; nested mappings merge."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_env_vars(environ: dict[str, str] | None = None) -> dict[str, Any]:
    """Load configuration from environment variables."""
    environ = os.environ if environ is None else environ
    config: dict[str, Any] = {}
    prefix = ENV_PREFIX

    # Map environment variables to config paths
    env_mappings = {
        f"{prefix}REMOTE": ("remote",),
        f"{prefix}LOG_LEVEL": ("logging", "level"),
        f"{prefix}LOG_FILE": ("logging", "file"),
        f"{prefix}OUTPUT_FORMAT": ("output", "format"),
        f"{prefix}VERBOSITY": ("output", "verbosity"),
        f"{prefix}TOOL_TIMEOUT": ("tools", "timeout"),
        f"{prefix}AGENT_MAIL_URL": ("tools", "agent_mail_url"),
        f"{prefix}AGENT_MAIL_TOKEN": ("tools", "agent_mail_token"),
        f"{prefix}PROJECT": ("tools", "project"),
        f"{prefix}ALERTS_ENABLED": ("alerts", "enabled"),
        f"{prefix}DEBOUNCE_INTERVAL": ("alerts", "debounce_interval"),
        f"{prefix}CASS_ENABLED": ("cass", "enabled"),
        f"{prefix}ACTIVE_THRESHOLD": ("activity", "active_threshold"),
        f"{prefix}STALLED_THRESHOLD": ("activity", "stalled_threshold"),
        f"{prefix}REPO_PATH": ("conflicts", "repo_path"),
    }
    float_keys = {
        "timeout",
        "debounce_interval",
        "active_threshold",
        "stalled_threshold",
    }
    bool_keys = {"enabled"}

    for env_var, path in env_mappings.items():
        if env_var not in environ:
            continue
        env_value = environ[env_var]
        key = path[-1]
        if key in float_keys:
            try:
                value: Any = float(env_value)
            except ValueError:
                logger.warning("Ignoring non-numeric environment value", variable=env_var)
                continue
        elif key in bool_keys:
            value = env_value.lower() in _TRUE_VALUES
        else:
            value = env_value
        _set_path(config, path, value)

    return config


def load_config(
    config_path: str | None = None,
    profile: str | None = None,
    cli_overrides: dict[str, Any] | None = None,
) -> RobotConfig:
    """Load configuration from file and environment variables.

    Precedence order (highest to lowest):
    1. CLI flag overrides
    2. Environment variables
    3. Configuration file (with profile support)
    4. Default values
    """
    config_data: dict[str, Any] = {}

    config_file = find_config_file(config_path)
    if config_file:
        file_data = load_config_file(config_file)
        profiles = file_data.get("profiles") or {}
        config_data = {k: v for k, v in file_data.items() if k != "profiles"}
        if profile:
            if profile not in profiles:
                raise ConfigurationError(
                    f"Unknown profile: {profile}",
                    {"file": str(config_file), "profiles": sorted(profiles)},
                )
            config_data = deep_merge(config_data, profiles[profile])
        logger.debug("Loaded config file", path=str(config_file), profile=profile)

    config_data = deep_merge(config_data, load_env_vars())

    if cli_overrides:
        config_data = deep_merge(config_data, cli_overrides)

    try:
        return RobotConfig(**config_data)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def save_config(config: RobotConfig, config_path: str | None = None) -> Path:
    """Save configuration to file."""
    if config_path:
        path = Path(config_path).expanduser()
    else:
        config_dir = Path.home() / ".config" / "ntm"
        config_dir.mkdir(parents=True, exist_ok=True)
        path = config_dir / "robot.yaml"

    with open(path, "w") as f:
        yaml.safe_dump(config.model_dump(), f, default_flow_style=False, sort_keys=True)

    return path
