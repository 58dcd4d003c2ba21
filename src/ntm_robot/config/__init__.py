"""Configuration management for ntm-robot."""

from .loader import (
    ActivityConfig,
    AlertsConfig,
    CASSConfig,
    ConflictConfig,
    ContextConfig,
    FilterConfig,
    InjectConfig,
    LoggingConfig,
    OutputConfig,
    RobotConfig,
    ToolsConfig,
    TrackerConfig,
    WebhookConfig,
    find_config_file,
    load_config,
    load_config_file,
    load_env_vars,
    save_config,
)

__all__ = [
    "ActivityConfig",
    "AlertsConfig",
    "CASSConfig",
    "ConflictConfig",
    "ContextConfig",
    "FilterConfig",
    "InjectConfig",
    "LoggingConfig",
    "OutputConfig",
    "RobotConfig",
    "ToolsConfig",
    "TrackerConfig",
    "WebhookConfig",
    "find_config_file",
    "load_config",
    "load_config_file",
    "load_env_vars",
    "save_config",
]
