"""CLI utilities shared by the command modules."""

import asyncio
import json
import sys
from collections.abc import Awaitable, Callable
from functools import wraps
from pathlib import Path
from typing import Any

import click

from ..app import RobotApp, create_app
from ..config.loader import RobotConfig, load_config
from ..output.envelope import from_exception
from ..output.formatter import OutputOptions, print_response
from ..robot.common import exit_code_for
from ..utils.logging import LogContext, NtmRobotError, get_logger, setup_logging

logger = get_logger(__name__, LogContext.CLI)


class CliError(Exception):
    """Exception for CLI errors."""

    def __init__(self, message: str, exit_code: int = 1):
        """Initialize CLI error.

        Args:
            message: Error message
            exit_code: Exit code for the CLI
        """
        super().__init__(message)
        self.message = message
        self.exit_code = exit_code


def error_handler(func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator for handling errors of human-facing commands."""

    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except CliError as e:
            click.echo(click.style(f"Error: {e.message}", fg="red"), err=True)
            sys.exit(e.exit_code)
        except NtmRobotError as e:
            click.echo(click.style(f"Error: {e.message}", fg="red"), err=True)
            if e.hint:
                click.echo(f"Hint: {e.hint}", err=True)
            sys.exit(1)

    return wrapper


def output_json(data: dict[str, Any]) -> None:
    """Output data as JSON."""
    click.echo(json.dumps(data, indent=2, default=str))


def verbose_echo(ctx: click.Context, message: str) -> None:
    """Echo message to stderr only if verbose mode is enabled."""
    if ctx.obj and ctx.obj.get("verbose"):
        click.echo(click.style(f"[VERBOSE] {message}", fg="blue"), err=True)


def load_ctx_config(ctx: click.Context) -> RobotConfig:
    """Load configuration from the options stored on the click context."""
    obj = ctx.obj or {}
    return load_config(obj.get("config"), obj.get("profile"), obj.get("cli_overrides"))


def configure_logging(ctx: click.Context, config: RobotConfig) -> None:
    """Apply logging settings; ``--verbose`` forces DEBUG."""
    settings = config.logging
    level = "DEBUG" if ctx.obj and ctx.obj.get("verbose") else settings.level
    setup_logging(
        log_level=level,
        log_file=Path(settings.file).expanduser() if settings.file else None,
        enable_structured=settings.structured,
        enable_console=settings.console,
    )


def build_app(ctx: click.Context) -> RobotApp:
    """Load configuration, set up logging and create the application container."""
    config = load_ctx_config(ctx)
    configure_logging(ctx, config)
    return create_app(config)


def run_robot(ctx: click.Context, operation: Callable[[RobotApp], Awaitable[dict[str, Any]]]) -> None:
    """Run one robot operation, print its envelope and exit with its code.

    Configuration errors and unexpected exceptions still produce an envelope
    on stdout.
    """
    options = OutputOptions()
    try:
        app = build_app(ctx)
        options = app.output
        envelope = asyncio.run(operation(app))
    except NtmRobotError as e:
        envelope = from_exception(e)
    except Exception as e:
        logger.critical("Robot command failed", exception=e)
        envelope = from_exception(e)
    print_response(envelope, options)
    sys.exit(int(exit_code_for(envelope)))
