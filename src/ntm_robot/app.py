"""Application container wiring the robot services together."""

import os
from pathlib import Path

from .alerts.debouncer import Alerter
from .conflicts.detector import ConflictDetector
from .config.loader import RobotConfig
from .context.estimator import ContextEstimator
from .output.formatter import OutputOptions
from .panes.registry import PaneRegistry
from .tmux.adapter import TmuxAdapter
from .tools.adapters import DCGAdapter
from .tools.agentmail import AgentMailClient
from .tools.registry import ToolRegistry
from .tracker.tracker import StateTracker
from .utils.logging import LogContext, get_logger

logger = get_logger(__name__, LogContext.ROBOT)


class RobotApp:
    """Holds configuration and lazily built services for one process."""

    def __init__(
        self,
        config: RobotConfig | None = None,
        tmux: TmuxAdapter | None = None,
        tools: ToolRegistry | None = None,
        agent_mail: AgentMailClient | None = None,
    ):
        """Initialize the container.

        Args:
            config: Loaded configuration, defaults when omitted
            tmux: Pre-built multiplexer adapter, used by tests
            tools: Pre-built tool registry, used by tests
            agent_mail: Pre-built agent-mail client, used by tests
        """
        self.config = config or RobotConfig()
        self.output = OutputOptions(
            format=self.config.output.format, verbosity=self.config.output.verbosity
        )
        self._tmux = tmux
        self._tools = tools
        self._agent_mail = agent_mail
        self._registry: PaneRegistry | None = None
        self._tracker: StateTracker | None = None
        self._alerter: Alerter | None = None
        self._conflicts: ConflictDetector | None = None
        self._context: ContextEstimator | None = None

    @property
    def project(self) -> str:
        return self.config.tools.project or os.getcwd()

    @property
    def tmux(self) -> TmuxAdapter:
        if self._tmux is None:
            self._tmux = TmuxAdapter(remote=self.config.remote)
        return self._tmux

    @property
    def registry(self) -> PaneRegistry:
        if self._registry is None:
            self._registry = PaneRegistry(self.tmux)
        return self._registry

    @property
    def tracker(self) -> StateTracker:
        if self._tracker is None:
            self._tracker = StateTracker(
                capacity=self.config.tracker.capacity, max_age=self.config.tracker.max_age
            )
        return self._tracker

    @property
    def alerter(self) -> Alerter:
        if self._alerter is None:
            self._alerter = Alerter(self.config.alerts.to_alerter_config(), tracker=self.tracker)
        return self._alerter

    @property
    def tools(self) -> ToolRegistry:
        if self._tools is None:
            tools_config = self.config.tools
            self._tools = ToolRegistry.default(
                timeout=tools_config.timeout, cache_ttl=tools_config.cache_ttl
            )
            if tools_config.dcg_audit_path:
                self._tools.register(
                    DCGAdapter(
                        timeout=tools_config.timeout,
                        cache_ttl=tools_config.cache_ttl,
                        audit_path=Path(tools_config.dcg_audit_path).expanduser(),
                    )
                )
        return self._tools

    @property
    def agent_mail(self) -> AgentMailClient:
        if self._agent_mail is None:
            self._agent_mail = AgentMailClient(
                base_url=self.config.tools.agent_mail_url,
                token=self.config.tools.agent_mail_token,
            )
        return self._agent_mail

    @property
    def conflicts(self) -> ConflictDetector:
        if self._conflicts is None:
            conflict_config = self.config.conflicts
            self._conflicts = ConflictDetector(
                repo_path=conflict_config.repo_path,
                reservation_source=self.agent_mail.reservation_source(self.project),
                tolerance=conflict_config.tolerance,
                retention=conflict_config.retention,
            )
        return self._conflicts

    @property
    def context(self) -> ContextEstimator:
        if self._context is None:
            self._context = ContextEstimator(self.tmux, overhead=self.config.context.overhead)
        return self._context


def create_app(config: RobotConfig | None = None, **services) -> RobotApp:
    """Build a new container."""
    app = RobotApp(config, **services)
    logger.debug("Created robot app", remote=app.config.remote, output_format=app.output.format)
    return app


_app: RobotApp | None = None


def get_app() -> RobotApp:
    """Get the global robot app instance."""
    global _app
    if _app is None:
        _app = create_app()
    return _app


def set_app(app: RobotApp) -> None:
    global _app
    _app = app


def reset_app() -> None:
    """Forget the global instance."""
    global _app
    _app = None
