"""ntm-robot: machine-readable orchestration layer for agents running in tmux panes."""

__version__ = "0.1.0"

from .app import RobotApp, create_app
from .config.loader import RobotConfig, load_config

__all__ = ["RobotApp", "RobotConfig", "create_app", "load_config", "__version__"]
