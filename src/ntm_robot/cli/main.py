"""Main CLI entry point for ntm-robot."""

import asyncio
import sys
from collections.abc import Awaitable, Callable
from typing import Any

import click

from .. import __version__
from ..app import RobotApp
from ..config.loader import RobotConfig, find_config_file, save_config
from ..output.envelope import from_exception
from ..output.formatter import print_response
from ..robot import (
    SendOptions,
    get_activity,
    get_capabilities,
    get_context,
    get_diff,
    get_graph,
    get_interrupt,
    get_plan,
    get_send,
    get_snapshot,
    get_status,
    get_tail,
    get_terse,
    get_triage,
    get_version,
    get_wait,
    get_watch_bead,
    run_monitor,
)
from ..robot.common import split_list
from ..utils.logging import NtmRobotError, ValidationError
from .utils import build_app, error_handler, load_ctx_config, output_json, run_robot, verbose_echo

Operation = Callable[[RobotApp], Awaitable[dict[str, Any]]]

GLOBAL_FLAGS = (
    "robot_status",
    "robot_version",
    "robot_capabilities",
    "robot_snapshot",
    "robot_terse",
    "robot_triage",
    "robot_plan",
    "robot_graph",
)
SESSION_FLAGS = (
    "robot_send",
    "robot_tail",
    "robot_interrupt",
    "robot_wait",
    "robot_context",
    "robot_activity",
    "robot_diff",
    "robot_watch_bead",
)


@click.group()
@click.version_option(version=__version__, prog_name="ntm-robot")
@click.option("--config", "-c", help="Configuration file path")
@click.option("--profile", "-p", help="Configuration profile to use")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging on stderr")
@click.option(
    "--robot-format",
    type=click.Choice(["json", "toon", "auto"], case_sensitive=False),
    help="Output format for robot envelopes",
)
@click.option(
    "--robot-verbosity",
    type=click.Choice(["default", "terse", "debug"], case_sensitive=False),
    help="Envelope verbosity",
)
@click.option("--remote", help="SSH host running the tmux server")
@click.option("--log-level", help="Override logging level")
@click.option("--log-file", help="Also write logs to this file")
@click.pass_context
def main(
    ctx: click.Context,
    config: str | None,
    profile: str | None,
    verbose: bool,
    robot_format: str | None,
    robot_verbosity: str | None,
    remote: str | None,
    log_level: str | None,
    log_file: str | None,
) -> None:
    """Machine-readable control surface for agents running in tmux panes.

    Every robot command prints a JSON (or TOON) envelope on stdout and
    exits 0 on success, 1 on failure and 2 when a required tool is missing.
    Logs go to stderr.
    """
    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["profile"] = profile
    ctx.obj["verbose"] = verbose

    overrides: dict[str, Any] = {}
    if remote:
        overrides["remote"] = remote
    output = {"format": robot_format, "verbosity": robot_verbosity}
    output = {k: v for k, v in output.items() if v is not None}
    if output:
        overrides["output"] = output
    logging_overrides = {"level": log_level, "file": log_file}
    logging_overrides = {k: v for k, v in logging_overrides.items() if v is not None}
    if logging_overrides:
        overrides["logging"] = logging_overrides
    ctx.obj["cli_overrides"] = overrides


def _pane_indices(values: list[str]) -> list[int]:
    try:
        return [int(v) for v in values]
    except ValueError:
        raise ValidationError(
            "--panes must be pane indices for this command", {"panes": values}
        ) from None


def select_operation(params: dict[str, Any]) -> Operation:
    """Map the chosen ``--robot-*`` flag and its modifiers to an operation.

    Raises:
        ValidationError: If no flag or more than one flag is given, or a
            required modifier is missing
    """
    chosen = [f for f in GLOBAL_FLAGS if params.get(f)]
    chosen += [f for f in SESSION_FLAGS if params.get(f) is not None]
    if not chosen:
        raise ValidationError(
            "no robot command given", hint="Use one of --robot-status, --robot-send=SESSION, ..."
        )
    if len(chosen) > 1:
        flags = ", ".join("--" + f.replace("_", "-") for f in chosen)
        raise ValidationError(f"only one robot command allowed, got {flags}")

    flag = chosen[0]
    panes = split_list(params.get("panes") or ())
    types = split_list(params.get("agent_type") or ())
    limit, offset = params.get("limit") or 0, params.get("offset") or 0
    since = params.get("since")
    lines = params.get("lines") or 0
    session = params.get(flag)

    if flag == "robot_status":
        return lambda app: get_status(app, limit=limit, offset=offset)
    if flag == "robot_version":
        return get_version
    if flag == "robot_capabilities":
        return get_capabilities
    if flag == "robot_snapshot":
        return lambda app: get_snapshot(app, since=since, limit=limit, offset=offset)
    if flag == "robot_terse":
        return get_terse
    if flag == "robot_triage":
        return get_triage
    if flag == "robot_plan":
        return get_plan
    if flag == "robot_graph":
        return lambda app: get_graph(app, fmt=params.get("graph_format"))
    if flag == "robot_send":
        message = params.get("msg")
        if message is None:
            raise ValidationError("--msg is required with --robot-send", hint="Provide --msg=TEXT")
        options = SendOptions(
            session=session,
            message=message,
            send_all=bool(params.get("send_all")),
            panes=panes,
            agent_types=types,
            exclude=split_list(params.get("exclude") or ()),
            delay_ms=params.get("delay_ms") or 0,
            dry_run=bool(params.get("dry_run")),
            enter=not params.get("no_enter"),
            with_cass=bool(params.get("with_cass")),
        )
        return lambda app: get_send(app, options)
    if flag == "robot_tail":
        return lambda app: get_tail(app, session, lines=lines, panes=panes)
    if flag == "robot_interrupt":
        return lambda app: get_interrupt(
            app, session, panes=panes, agent_types=types, send_all=bool(params.get("send_all"))
        )
    if flag == "robot_wait":
        timeout = params.get("timeout")
        return lambda app: get_wait(app, session, timeout=timeout or 300.0, panes=panes)
    if flag == "robot_context":
        return lambda app: get_context(app, session, lines=lines)
    if flag == "robot_activity":
        return lambda app: get_activity(app, session, panes=panes, agent_types=types)
    if flag == "robot_diff":
        return lambda app: get_diff(app, session, since=since, limit=limit, offset=offset)

    bead = params.get("bead")
    if not bead:
        raise ValidationError(
            "bead ID is required", hint="Provide --bead=<id> with --robot-watch-bead"
        )
    indices = _pane_indices(panes)
    return lambda app: get_watch_bead(app, session, bead, panes=indices, lines=lines or 200)


@main.command()
@click.option("--robot-status", is_flag=True, help="Sessions, panes and agent states")
@click.option("--robot-version", is_flag=True, help="Version information")
@click.option("--robot-capabilities", is_flag=True, help="Installed tools and capabilities")
@click.option("--robot-snapshot", is_flag=True, help="Status plus changes since --since")
@click.option("--robot-terse", is_flag=True, help="Single-line state summary")
@click.option("--robot-triage", is_flag=True, help="Bead triage from bv")
@click.option("--robot-plan", is_flag=True, help="Execution plan from bv")
@click.option("--robot-graph", is_flag=True, help="Dependency graph from bv")
@click.option("--robot-send", metavar="SESSION", help="Send --msg to agents in SESSION")
@click.option("--robot-tail", metavar="SESSION", help="Recent output of SESSION's panes")
@click.option("--robot-interrupt", metavar="SESSION", help="Send Ctrl-C to agents in SESSION")
@click.option("--robot-wait", metavar="SESSION", help="Wait until agents in SESSION are idle")
@click.option("--robot-context", metavar="SESSION", help="Context usage of SESSION's agents")
@click.option("--robot-activity", metavar="SESSION", help="Agent state classification")
@click.option("--robot-diff", metavar="SESSION", help="File changes and conflicts")
@click.option("--robot-watch-bead", metavar="SESSION", help="Mentions of --bead in SESSION")
@click.option("--msg", help="Message text for --robot-send")
@click.option("--panes", multiple=True, help="Pane indices or ids (repeatable, comma-separated)")
@click.option("--type", "agent_type", multiple=True, help="Agent types to target")
@click.option("--exclude", multiple=True, help="Pane indices or ids to skip")
@click.option("--all", "send_all", is_flag=True, help="Include user panes")
@click.option("--dry-run", is_flag=True, help="Show targets without sending")
@click.option("--with-cass", is_flag=True, help="Inject related context from past sessions")
@click.option("--delay-ms", type=int, default=0, help="Delay between sends")
@click.option("--no-enter", is_flag=True, help="Do not press Enter after sending")
@click.option("--lines", type=int, help="Scrollback lines to capture")
@click.option("--timeout", type=float, help="Seconds to wait for --robot-wait")
@click.option("--bead", help="Bead id for --robot-watch-bead")
@click.option("--graph-format", help="Graph format for --robot-graph (json, dot, mermaid)")
@click.option("--limit", type=int, default=0, help="Maximum items to return")
@click.option("--offset", type=int, default=0, help="Items to skip")
@click.option("--since", help="Duration like 5m or an ISO-8601 timestamp")
@click.pass_context
def robot(ctx: click.Context, **params: Any) -> None:
    """Run one --robot-* operation and print its envelope."""
    try:
        operation = select_operation(params)
    except NtmRobotError as e:
        print_response(from_exception(e))
        sys.exit(1)
    run_robot(ctx, operation)


@main.command()
@click.argument("session")
@click.option("--iterations", type=int, help="Stop after this many polls")
@click.pass_context
def watch(ctx: click.Context, session: str, iterations: int | None) -> None:
    """Monitor SESSION: colour pane borders, classify agents and raise alerts.

    Prints one envelope per poll until interrupted.
    """

    async def _watch(app: RobotApp) -> None:
        async for envelope in run_monitor(app, session, iterations):
            print_response(envelope, app.output)

    try:
        app = build_app(ctx)
        asyncio.run(_watch(app))
    except KeyboardInterrupt:
        verbose_echo(ctx, "Monitor interrupted")
    except NtmRobotError as e:
        print_response(from_exception(e))
        sys.exit(1)


@main.group()
def config() -> None:
    """Manage configuration settings."""
    pass


@config.command()
@click.pass_context
@error_handler
def show(ctx: click.Context) -> None:
    """Show the effective configuration."""
    output_json({"configuration": load_ctx_config(ctx).model_dump()})


@config.command()
@click.pass_context
@error_handler
def path(ctx: click.Context) -> None:
    """Show which configuration file is used."""
    found = find_config_file(ctx.obj.get("config") if ctx.obj else None)
    output_json({"config_file": str(found) if found else None})


@config.command()
@click.option("--output", "-o", help="Where to write the file")
@error_handler
def init(output: str | None) -> None:
    """Write a configuration file with default values."""
    written = save_config(RobotConfig(), output)
    click.echo(f"Wrote {written}")


if __name__ == "__main__":
    main()
