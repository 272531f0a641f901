"""Pane I/O bridge: send text into a pane and read its scrollback."""

from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass

from workmux.core.result import (
    AmbiguousPaneError,
    Err,
    Ok,
    PaneNotFoundError,
    ProbeError,
    ProbeErrorKind,
    Result,
    ValidationError,
    WorkmuxError,
)
from workmux.tmux import TmuxClient, TmuxPane
from workmux.workflow.handles import Handle

logger = logging.getLogger(__name__)

AGENT_ROLE = "agent"

_MISSING_PANE_MARKERS = ("can't find pane", "can't find window", "no such pane")


def agent_binary(agent: str) -> str:
    words = shlex.split(agent) if agent else []
    return words[0].rsplit("/", 1)[-1] if words else ""


def is_agent_command(command: str | None, agent: str) -> bool:
    """True when a pane command launches the configured agent."""
    if not command:
        return False
    words = shlex.split(command)
    return bool(words) and words[0].rsplit("/", 1)[-1] == agent_binary(agent)


def trim_lines(output: str, lines: int) -> str:
    """Last `lines` lines of `output`, ignoring the blank padding below the cursor."""
    if lines <= 0:
        return ""
    rows = output.rstrip("\n").split("\n")
    while rows and not rows[-1].strip():
        rows.pop()
    if not rows:
        return ""
    return "\n".join(rows[-lines:]) + "\n"


@dataclass(frozen=True)
class PaneTarget:
    pane_id: str
    agent: bool = False


def _pane_error(pane_id: str, err: ProbeError) -> WorkmuxError:
    if err.kind == ProbeErrorKind.NO_SESSION or any(
        marker in err.message.lower() for marker in _MISSING_PANE_MARKERS
    ):
        return PaneNotFoundError(f"Pane {pane_id} no longer exists", context={"pane": pane_id})
    return err


class PaneBridge:
    """Writes literal text into panes and captures their recent output."""

    def __init__(self, tmux: TmuxClient, agent: str) -> None:
        self.tmux = tmux
        self.agent = agent

    async def _window_panes(self, handle: Handle) -> Result[list[TmuxPane], WorkmuxError]:
        if handle.window_id is None:
            return Err(
                PaneNotFoundError(
                    f"'{handle.name}' has no tmux window; run `workmux open {handle.name}`",
                    context={"handle": handle.name},
                )
            )
        match await self.tmux.list_panes(handle.window_id):
            case Ok(panes):
                return Ok(panes)
            case Err(err):
                return Err(_pane_error(handle.window_id, err))

    async def resolve_agent_pane(
        self, handle: Handle, pane_id: str | None = None
    ) -> Result[PaneTarget, WorkmuxError]:
        """Pick the pane to talk to: the explicit one, else the single agent candidate."""
        if pane_id:
            match await self.tmux.list_panes():
                case Err(err):
                    return Err(_pane_error(pane_id, err))
                case Ok(panes):
                    for pane in panes:
                        if pane.pane_id == pane_id:
                            return Ok(PaneTarget(pane_id=pane_id, agent=pane.role == AGENT_ROLE))
            return Err(PaneNotFoundError(f"Pane {pane_id} not found", context={"pane": pane_id}))

        match await self._window_panes(handle):
            case Err(err):
                return Err(err)
            case Ok(panes):
                pass

        candidates = [
            pane
            for pane in panes
            if pane.role == AGENT_ROLE or is_agent_command(pane.current_command, self.agent)
        ]
        if len(candidates) == 1:
            return Ok(PaneTarget(pane_id=candidates[0].pane_id, agent=True))
        if not candidates and len(panes) == 1:
            return Ok(PaneTarget(pane_id=panes[0].pane_id))
        if not panes:
            return Err(PaneNotFoundError(f"No panes found for '{handle.name}'", context={"handle": handle.name}))

        listed = candidates or panes
        ids = ", ".join(pane.pane_id for pane in listed)
        return Err(
            AmbiguousPaneError(
                f"Several candidate panes in '{handle.name}' ({ids}); pass --pane-id",
                context={"handle": handle.name},
            )
        )

    async def send(
        self, pane_id: str, payload: str, *, as_command: bool = False, enter: bool = False
    ) -> Result[None, WorkmuxError]:
        """Write `payload` into a pane.

        `as_command` sends a single line followed by Enter. Otherwise multi-line
        text goes through a bracketed paste and single lines through literal
        keystrokes; `enter` submits either.
        """
        if not payload.strip():
            return Err(ValidationError("Message is empty"))

        if as_command:
            line = payload.rstrip("\r\n")
            if "\n" in line:
                return Err(
                    ValidationError(
                        "--command only supports single-line input; remove newlines or use without --command"
                    )
                )
            result = await self.tmux.send_keys(pane_id, line, enter=True)
        elif "\n" in payload:
            result = await self.tmux.paste_text(pane_id, payload)
            if result.is_ok() and enter:
                result = await self.tmux.send_keys(pane_id, "", enter=True)
        else:
            result = await self.tmux.send_keys(pane_id, payload, enter=enter)

        match result:
            case Err(err):
                return Err(_pane_error(pane_id, err))
            case Ok(_):
                logger.debug("Sent %d chars to %s", len(payload), pane_id)
                return Ok(None)

    async def capture(self, pane_id: str, lines: int, *, ansi: bool = False) -> Result[str, WorkmuxError]:
        """Most recent `lines` lines of a pane; shorter output is returned as-is."""
        if lines <= 0:
            return Ok("")
        match await self.tmux.capture_pane(pane_id, lines, ansi=ansi):
            case Err(err):
                return Err(_pane_error(pane_id, err))
            case Ok(output):
                return Ok(trim_lines(output, lines))


__all__ = ["AGENT_ROLE", "PaneBridge", "PaneTarget", "agent_binary", "is_agent_command", "trim_lines"]
