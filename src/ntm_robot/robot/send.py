"""``--robot-send`` and ``--robot-interrupt``."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from ..cass.inject import format_for_agent, injection_info, query_and_inject
from ..core.enums import AgentKind, ErrorCode
from ..output.envelope import AgentHints, error_response, success_response
from ..tmux.adapter import DEFAULT_ENTER_DELAY, SHELL_ENTER_DELAY
from ..tools.adapters import CASSAdapter
from ..utils.logging import LogContext, NtmRobotError, ValidationError, get_logger
from .common import (
    DetectedPane,
    matches_pane,
    parse_kinds,
    require_session,
    robot_operation,
    session_panes,
    truncate_message,
)

if TYPE_CHECKING:
    from ..app import RobotApp

logger = get_logger(__name__, LogContext.ROBOT)


@dataclass
class SendOptions:
    """Targeting and delivery options for a send."""

    session: str
    message: str
    send_all: bool = False
    panes: list[str] = field(default_factory=list)
    agent_types: list[str] = field(default_factory=list)
    exclude: list[str] = field(default_factory=list)
    delay_ms: int = 0
    dry_run: bool = False
    enter: bool = True
    with_cass: bool = False


def select_targets(
    panes: list[DetectedPane],
    send_all: bool = False,
    pane_filter: list[str] | None = None,
    agent_types: list[str] | None = None,
    exclude: list[str] | None = None,
) -> list[DetectedPane]:
    """Choose the panes a message goes to.

    Exclusions win over everything. Without ``send_all`` and without any
    filter, the session's user pane is skipped: pane index 0 when it is not
    a detected agent, and any pane detected as user.
    """
    excluded = set(exclude or [])
    wanted = set(pane_filter or [])
    kinds = parse_kinds(agent_types or [])

    targets = []
    for detected in panes:
        pane = detected.pane
        if matches_pane(pane, excluded):
            continue
        if wanted and not matches_pane(pane, wanted):
            continue
        if kinds and detected.kind not in kinds:
            continue
        if not send_all and not wanted and not kinds:
            if pane.index == 0 and not detected.kind.is_agent:
                continue
            if detected.kind is AgentKind.USER:
                continue
        targets.append(detected)
    return targets


def enter_delay_for(kind: AgentKind) -> float:
    """Shells need a longer pause before Enter than agent TUIs."""
    return DEFAULT_ENTER_DELAY if kind.is_agent else SHELL_ENTER_DELAY


def send_hints(targets: list[str], successful: list[str], failed: list[dict[str, str]]) -> AgentHints | None:
    if successful and not failed:
        return AgentHints(
            summary=f"Sent to {len(successful)} agent(s) successfully",
            suggestions=["Wait for agent acknowledgment using --robot-tail"],
        )
    if successful and failed:
        return AgentHints(
            summary=f"Partial success: {len(successful)} sent, {len(failed)} failed",
            suggestions=[
                "Retry failed panes individually: "
                + ", ".join(f"--panes={f['pane']}" for f in failed)
            ],
        )
    if failed:
        return AgentHints(
            summary=f"All {len(failed)} sends failed",
            suggestions=[
                "Check agent states with --robot-tail",
                "Verify session and pane existence",
            ],
        )
    if not targets:
        return AgentHints(
            summary="No target panes matched the filter criteria",
            suggestions=["Check --all, --panes, or --type flags"],
        )
    return None


async def _inject(app: "RobotApp", message: str, targets: list[DetectedPane]) -> tuple[str, dict[str, Any]]:
    config = app.config
    fmt = format_for_agent(targets[0].kind).value if targets else None
    injection, query, filtered = await query_and_inject(
        message,
        config.cass.to_runtime(),
        config.filter.to_runtime(workspace=app.project),
        config.inject.to_runtime(fmt=fmt),
        adapter=CASSAdapter(timeout=config.cass.timeout),
    )
    info = injection_info(injection, query.query, filtered.hits)
    if injection.success and injection.modified_prompt:
        return injection.modified_prompt, info
    return message, info


@robot_operation
async def get_send(app: "RobotApp", options: SendOptions) -> dict[str, Any]:
    """Send one message to the selected panes of a session.

    Args:
        app: Application container
        options: Targeting and delivery options

    Returns:
        Envelope with ``targets``, ``successful``, ``failed`` and the message preview
    """
    if not options.session.strip():
        raise ValidationError("session name is required", hint="Provide a session name")
    session = await require_session(app, options.session)

    sent_at = datetime.now(timezone.utc)
    targets = select_targets(
        await session_panes(app, session),
        send_all=options.send_all,
        pane_filter=options.panes,
        agent_types=options.agent_types,
        exclude=options.exclude,
    )
    target_keys = [t.key for t in targets]
    body: dict[str, Any] = {
        "session": session,
        "sent_at": sent_at.isoformat(),
        "targets": target_keys,
        "successful": [],
        "failed": [],
        "message_preview": truncate_message(options.message),
    }

    message = options.message
    if options.with_cass:
        message, body["cass_injection"] = await _inject(app, message, targets)

    if options.dry_run:
        body["dry_run"] = True
        body["would_send_to"] = list(target_keys)
        if not target_keys:
            return error_response(
                "no target panes matched the filter criteria",
                ErrorCode.INVALID_FLAG,
                body=body,
            )
        return success_response(body)

    for position, target in enumerate(targets):
        if position > 0 and options.delay_ms > 0:
            await asyncio.sleep(options.delay_ms / 1000)
        try:
            await app.tmux.send_to_agent(
                target.pane.id,
                target.kind,
                message,
                enter=options.enter,
                enter_delay=enter_delay_for(target.kind),
            )
        except NtmRobotError as e:
            logger.warning("Send failed", session=session, pane=target.pane.id, error=e.message)
            body["failed"].append({"pane": target.key, "error": e.message})
        else:
            body["successful"].append(target.key)

    hints = send_hints(target_keys, body["successful"], body["failed"])
    logger.info(
        "Message sent",
        session=session,
        target_count=len(target_keys),
        failed_count=len(body["failed"]),
    )
    if body["failed"]:
        return error_response(
            f"{len(body['failed'])} of {len(target_keys)} sends failed",
            ErrorCode.INTERNAL_ERROR,
            hint=hints.suggestions[0] if hints else None,
            body=body,
            hints=hints,
        )
    if not body["successful"]:
        return error_response(
            "no target panes matched the filter criteria",
            ErrorCode.INVALID_FLAG,
            body=body,
            hints=hints,
        )
    return success_response(body, hints=hints)


@robot_operation
async def get_interrupt(
    app: "RobotApp",
    session: str,
    panes: list[str] | None = None,
    agent_types: list[str] | None = None,
    send_all: bool = False,
) -> dict[str, Any]:
    """Send Ctrl-C to the selected panes, using the same targeting as send."""
    session = await require_session(app, session)
    targets = select_targets(
        await session_panes(app, session),
        send_all=send_all,
        pane_filter=panes,
        agent_types=agent_types,
    )
    interrupted: list[str] = []
    failed: list[dict[str, str]] = []
    for target in targets:
        try:
            await app.tmux.send_interrupt(target.pane.id)
        except NtmRobotError as e:
            failed.append({"pane": target.key, "error": e.message})
        else:
            interrupted.append(target.key)

    body = {
        "session": session,
        "interrupted_at": datetime.now(timezone.utc).isoformat(),
        "targets": [t.key for t in targets],
        "interrupted": interrupted,
        "failed": failed,
    }
    if failed:
        return error_response(
            f"{len(failed)} of {len(targets)} interrupts failed",
            ErrorCode.INTERNAL_ERROR,
            body=body,
        )
    hints = AgentHints(
        summary=f"Interrupted {len(interrupted)} pane(s)",
        suggestions=[f"Check the panes settle with --robot-wait={session}"] if interrupted else [],
    )
    return success_response(body, hints=hints)
