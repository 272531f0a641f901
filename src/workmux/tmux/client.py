from __future__ import annotations

import logging
import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path

from workmux.core.process import DEFAULT_TIMEOUT, CommandResult, run_command
from workmux.core.result import Err, Ok, ProbeError, ProbeErrorKind, Result

logger = logging.getLogger(__name__)

STATUS_OPTION = "@workmux_status"
PANE_ROLE_OPTION = "@workmux_pane_role"
FOCUS_HOOK = "pane-focus-in"

_FIELD_SEP = "\t"
_NO_SESSION_MARKERS = (
    "no server running",
    "can't find session",
    "no sessions",
    "error connecting to",
    "server exited unexpectedly",
)

_WINDOW_FORMAT = _FIELD_SEP.join(
    ["#{session_name}", "#{window_id}", "#{window_name}", f"#{{{STATUS_OPTION}}}"]
)
_PANE_FORMAT = _FIELD_SEP.join(
    [
        "#{pane_id}",
        "#{window_id}",
        "#{window_name}",
        "#{session_name}",
        "#{pane_current_command}",
        "#{pane_current_path}",
        f"#{{{PANE_ROLE_OPTION}}}",
    ]
)


@dataclass
class TmuxWindow:
    window_id: str
    name: str
    session: str
    status: str = ""
    pane_ids: list[str] = field(default_factory=list)


@dataclass
class TmuxPane:
    pane_id: str
    window_id: str
    window_name: str
    session: str
    current_command: str
    current_path: str
    role: str = ""


def status_format(fmt: str) -> str:
    """Append the status annotation to a window-status format string once."""
    marker = f"#{{{STATUS_OPTION}}}"
    if marker in fmt:
        return fmt
    return f"{fmt}#{{?{STATUS_OPTION}, {marker},}}"


def focus_clear_hook(icon: str) -> str:
    """Hook command that unsets the annotation only while it still shows `icon`."""
    return (
        f'if-shell -F "#{{==:#{{{STATUS_OPTION}}},{icon}}}" '
        f'"set-option -uw {STATUS_OPTION}"'
    )


def _parse_windows(output: str) -> list[TmuxWindow]:
    windows: list[TmuxWindow] = []
    for line in output.splitlines():
        if not line.strip():
            continue
        parts = line.split(_FIELD_SEP)
        if len(parts) < 3:
            continue
        session, window_id, name = parts[0], parts[1], parts[2]
        status = parts[3] if len(parts) > 3 else ""
        windows.append(TmuxWindow(window_id=window_id, name=name, session=session, status=status))
    return windows


def _parse_panes(output: str) -> list[TmuxPane]:
    panes: list[TmuxPane] = []
    for line in output.splitlines():
        if not line.strip():
            continue
        parts = line.split(_FIELD_SEP)
        if len(parts) < 6:
            continue
        panes.append(
            TmuxPane(
                pane_id=parts[0],
                window_id=parts[1],
                window_name=parts[2],
                session=parts[3],
                current_command=parts[4],
                current_path=parts[5],
                role=parts[6] if len(parts) > 6 else "",
            )
        )
    return panes


class TmuxClient:
    """Async wrapper around the tmux command surface.

    Every call is a short-lived `tmux` subprocess. An absent server or
    session is reported as `ProbeErrorKind.NO_SESSION` so callers can treat
    it as "zero windows".
    """

    def __init__(
        self,
        *,
        socket: str | None = None,
        session: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.socket = socket
        self.session = session
        self._timeout = timeout

    def _base(self) -> list[str]:
        cmd = ["tmux"]
        if self.socket:
            cmd.extend(["-S", self.socket])
        return cmd

    async def _raw(self, *args: str, stdin: bytes | None = None) -> Result[CommandResult, ProbeError]:
        return await run_command([*self._base(), *args], timeout=self._timeout, stdin=stdin)

    async def _run(self, *args: str, stdin: bytes | None = None) -> Result[str, ProbeError]:
        match await self._raw(*args, stdin=stdin):
            case Err(err):
                return Err(err)
            case Ok(result) if result.ok:
                return Ok(result.stdout)
            case Ok(result):
                detail = result.detail() or f"tmux {args[0]} failed"
                kind = ProbeErrorKind.COMMAND_FAILED
                if any(marker in detail.lower() for marker in _NO_SESSION_MARKERS):
                    kind = ProbeErrorKind.NO_SESSION
                return Err(
                    ProbeError(
                        detail,
                        tool="tmux",
                        kind=kind,
                        exit_code=result.returncode,
                        stderr=result.stderr.strip(),
                        context={"args": " ".join(args)},
                    )
                )

    async def _ok(self, *args: str, stdin: bytes | None = None) -> Result[None, ProbeError]:
        return (await self._run(*args, stdin=stdin)).map(lambda _: None)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @staticmethod
    def inside_tmux() -> bool:
        return bool(os.environ.get("TMUX"))

    async def is_running(self) -> bool:
        match await self._raw("list-sessions"):
            case Ok(result):
                return result.ok
            case Err(_):
                return False

    async def list_windows(self) -> Result[list[TmuxWindow], ProbeError]:
        args = ["list-windows", "-F", _WINDOW_FORMAT]
        args.extend(["-t", self.session] if self.session else ["-a"])
        match await self._run(*args):
            case Ok(output):
                return Ok(_parse_windows(output))
            case Err(err):
                return Err(err)

    async def list_panes(self, target: str | None = None) -> Result[list[TmuxPane], ProbeError]:
        """List panes of one window (`target`) or of every window in scope."""
        args = ["list-panes", "-F", _PANE_FORMAT]
        if target:
            args.extend(["-t", target])
        elif self.session:
            args.extend(["-s", "-t", self.session])
        else:
            args.append("-a")
        match await self._run(*args):
            case Ok(output):
                return Ok(_parse_panes(output))
            case Err(err):
                return Err(err)

    async def current_window_id(self) -> str | None:
        """Window hosting this process, or None outside tmux."""
        pane = os.environ.get("TMUX_PANE")
        if not self.inside_tmux() or not pane:
            return None
        match await self._run("display-message", "-p", "-t", pane, "#{window_id}"):
            case Ok(output):
                return output.strip() or None
            case Err(err):
                logger.debug("Could not resolve current window: %s", err)
                return None

    async def window_of(self, target: str) -> Result[str, ProbeError]:
        """Resolve a pane or window target to its window id."""
        return (await self._run("display-message", "-p", "-t", target, "#{window_id}")).map(
            str.strip
        )

    async def show_window_option(self, target: str, option: str) -> Result[str | None, ProbeError]:
        match await self._raw("show-options", "-w", "-v", "-t", target, option):
            case Err(err):
                return Err(err)
            case Ok(result) if result.ok:
                return Ok(result.stdout.rstrip("\n") or None)
            case Ok(_):
                return Ok(None)

    # -------------------------------------------------------------------------
    # Windows and panes
    # -------------------------------------------------------------------------

    async def new_window(self, name: str, cwd: Path) -> Result[tuple[str, str], ProbeError]:
        """Create a detached window and return (window_id, first pane_id)."""
        args = ["new-window", "-d", "-P", "-F", f"#{{window_id}}{_FIELD_SEP}#{{pane_id}}"]
        if self.session:
            args.extend(["-t", f"{self.session}:"])
        args.extend(["-n", name, "-c", str(cwd)])
        match await self._run(*args):
            case Ok(output):
                window_id, _, pane_id = output.strip().partition(_FIELD_SEP)
                return Ok((window_id, pane_id))
            case Err(err):
                return Err(err)

    async def split_window(
        self,
        target: str,
        cwd: Path,
        *,
        horizontal: bool,
        size: int | None = None,
        percentage: int | None = None,
    ) -> Result[str, ProbeError]:
        args = ["split-window", "-d", "-P", "-F", "#{pane_id}", "-t", target, "-c", str(cwd)]
        args.append("-h" if horizontal else "-v")
        if percentage is not None:
            args.extend(["-l", f"{percentage}%"])
        elif size is not None:
            args.extend(["-l", str(size)])
        return (await self._run(*args)).map(str.strip)

    async def select_window(self, target: str) -> Result[None, ProbeError]:
        return await self._ok("select-window", "-t", target)

    async def switch_client(self, target: str) -> Result[None, ProbeError]:
        return await self._ok("switch-client", "-t", target)

    async def select_pane(self, target: str) -> Result[None, ProbeError]:
        return await self._ok("select-pane", "-t", target)

    async def kill_window(self, target: str) -> Result[None, ProbeError]:
        return await self._ok("kill-window", "-t", target)

    async def schedule_kill_window(self, target: str, delay: float = 0.5) -> Result[None, ProbeError]:
        """Kill `target` from the tmux server after a delay, so the caller can exit first."""
        kill = shlex.join([*self._base(), "kill-window", "-t", target])
        return await self._ok("run-shell", "-b", f"sleep {delay:g}; {kill}")

    async def send_keys(self, target: str, text: str, *, enter: bool = False) -> Result[None, ProbeError]:
        if text:
            match await self._ok("send-keys", "-t", target, "-l", text):
                case Err(err):
                    return Err(err)
                case Ok(_):
                    pass
        if enter:
            return await self._ok("send-keys", "-t", target, "Enter")
        return Ok(None)

    async def paste_text(self, target: str, text: str) -> Result[None, ProbeError]:
        """Paste through a named buffer with bracketed paste, then drop the buffer."""
        buffer = f"workmux-{target.lstrip('%')}"
        match await self._ok("load-buffer", "-b", buffer, "-", stdin=text.encode("utf-8")):
            case Err(err):
                return Err(err)
            case Ok(_):
                pass
        return await self._ok("paste-buffer", "-p", "-d", "-b", buffer, "-t", target)

    async def capture_pane(self, target: str, lines: int, *, ansi: bool = False) -> Result[str, ProbeError]:
        args = ["capture-pane", "-p", "-J", "-t", target, "-S", f"-{lines}"]
        if ansi:
            args.append("-e")
        return await self._run(*args)

    # -------------------------------------------------------------------------
    # Options and hooks
    # -------------------------------------------------------------------------

    async def set_window_option(self, target: str, option: str, value: str) -> Result[None, ProbeError]:
        return await self._ok("set-option", "-w", "-t", target, option, value)

    async def unset_window_option(self, target: str, option: str) -> Result[None, ProbeError]:
        return await self._ok("set-option", "-uw", "-t", target, option)

    async def set_pane_option(self, target: str, option: str, value: str) -> Result[None, ProbeError]:
        return await self._ok("set-option", "-p", "-t", target, option, value)

    async def set_hook(self, target: str, hook: str, command: str) -> Result[None, ProbeError]:
        return await self._ok("set-hook", "-w", "-t", target, hook, command)

    async def ensure_status_format(self, target: str) -> Result[None, ProbeError]:
        """Make window-status formats render the annotation for `target`'s window."""
        for option in ("window-status-format", "window-status-current-format"):
            match await self._raw("show-options", "-wv", "-t", target, option):
                case Err(err):
                    return Err(err)
                case Ok(result) if result.ok and result.stdout.strip():
                    current = result.stdout.rstrip("\n")
                case Ok(_):
                    match await self._run("show-options", "-gwv", option):
                        case Ok(output):
                            current = output.rstrip("\n")
                        case Err(err):
                            return Err(err)
            updated = status_format(current)
            if updated != current:
                match await self.set_window_option(target, option, updated):
                    case Err(err):
                        return Err(err)
                    case Ok(_):
                        pass
        return Ok(None)


__all__ = [
    "FOCUS_HOOK",
    "PANE_ROLE_OPTION",
    "STATUS_OPTION",
    "TmuxClient",
    "TmuxPane",
    "TmuxWindow",
    "focus_clear_hook",
    "status_format",
]
