"""Build a handle's tmux window from the configured pane layout."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from workmux.core.config import AGENT_PLACEHOLDER, PaneConfig, SplitDirection
from workmux.core.result import Err, Ok, ProbeError, Result
from workmux.tmux import PANE_ROLE_OPTION, TmuxClient
from workmux.workflow.panes import AGENT_ROLE, is_agent_command

logger = logging.getLogger(__name__)


@dataclass
class WindowLayout:
    window_id: str
    pane_ids: list[str] = field(default_factory=list)
    agent_pane: str | None = None
    focus_pane: str | None = None


def pane_command(pane: PaneConfig, agent: str) -> str | None:
    if not pane.command:
        return None
    return pane.command.replace(AGENT_PLACEHOLDER, agent)


def has_agent_pane(panes: list[PaneConfig], agent: str) -> bool:
    return any(pane.is_agent or is_agent_command(pane_command(pane, agent), agent) for pane in panes)


async def _build(
    tmux: TmuxClient, layout: WindowLayout, panes: list[PaneConfig], cwd: Path, agent: str
) -> Result[None, ProbeError]:
    for index, pane in enumerate(panes):
        if index == 0:
            pane_id = layout.pane_ids[0]
        else:
            target = layout.pane_ids[pane.target] if pane.target is not None else layout.pane_ids[-1]
            match await tmux.split_window(
                target,
                cwd,
                horizontal=pane.split == SplitDirection.HORIZONTAL,
                size=pane.size,
                percentage=pane.percentage,
            ):
                case Err(err):
                    return Err(err)
                case Ok(pane_id):
                    layout.pane_ids.append(pane_id)

        command = pane_command(pane, agent)
        if command:
            match await tmux.send_keys(pane_id, command, enter=True):
                case Err(err):
                    return Err(err)
                case Ok(_):
                    pass

        if layout.agent_pane is None and (pane.is_agent or is_agent_command(command, agent)):
            layout.agent_pane = pane_id
            match await tmux.set_pane_option(pane_id, PANE_ROLE_OPTION, AGENT_ROLE):
                case Err(err):
                    logger.debug("Could not tag agent pane %s: %s", pane_id, err)
                case Ok(_):
                    pass

        if pane.focus and layout.focus_pane is None:
            layout.focus_pane = pane_id

    if layout.focus_pane:
        return await tmux.select_pane(layout.focus_pane)
    return Ok(None)


async def create_window(
    tmux: TmuxClient,
    *,
    title: str,
    cwd: Path,
    panes: list[PaneConfig],
    agent: str,
) -> Result[WindowLayout, ProbeError]:
    """Create a detached window laid out per `panes`.

    A window that fails half-way through is killed again, so the caller sees
    either a complete window or none.
    """
    match await tmux.new_window(title, cwd):
        case Err(err):
            return Err(err)
        case Ok((window_id, first_pane)):
            layout = WindowLayout(window_id=window_id, pane_ids=[first_pane])

    match await _build(tmux, layout, panes or [PaneConfig()], cwd, agent):
        case Ok(_):
            return Ok(layout)
        case Err(err):
            logger.debug("Layout of %s failed, killing %s: %s", title, window_id, err)
            match await tmux.kill_window(window_id):
                case Err(kill_err):
                    logger.warning("Could not kill half-built window %s: %s", window_id, kill_err)
                case Ok(_):
                    pass
            return Err(err)


__all__ = ["WindowLayout", "create_window", "has_agent_pane", "pane_command"]
