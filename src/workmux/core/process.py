"""Process adapter for external tools.

Every git, tmux, gh and hook invocation goes through `run_command`, which
captures stdout/stderr/exit status, enforces a timeout and never raises on
a non-zero exit. Failing to start the process or running past the timeout
is reported as an `Err(ProbeError)`.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

from workmux.core.result import Err, Ok, ProbeError, ProbeErrorKind, Result

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def detail(self) -> str:
        return self.stderr.strip() or self.stdout.strip()


async def run_command(
    tokens: list[str],
    *,
    cwd: Path | None = None,
    env: dict[str, str] | None = None,
    timeout: float = DEFAULT_TIMEOUT,
    stdin: bytes | None = None,
) -> Result[CommandResult, ProbeError]:
    """Run a command and capture its output.

    A non-zero exit status is still an `Ok`; callers decide what it means.
    """
    tool = tokens[0]
    logger.debug("exec: %s (cwd=%s)", " ".join(tokens), cwd)
    try:
        proc = await asyncio.create_subprocess_exec(
            *tokens,
            cwd=cwd,
            env=env,
            stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError:
        return Err(
            ProbeError(
                f"{tool} executable not found on PATH",
                tool=tool,
                kind=ProbeErrorKind.MISSING_TOOL,
            )
        )
    except OSError as exc:
        return Err(
            ProbeError(
                f"Failed to start {tool}",
                tool=tool,
                context={"cmd": tokens, "error": str(exc)},
            )
        )

    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(proc.communicate(stdin), timeout=timeout)
    except TimeoutError:
        proc.kill()
        await proc.communicate()
        return Err(
            ProbeError(
                f"{tool} timed out after {timeout:g}s",
                tool=tool,
                kind=ProbeErrorKind.TIMEOUT,
                context={"cmd": tokens},
            )
        )

    return Ok(
        CommandResult(
            returncode=proc.returncode or 0,
            stdout=stdout_bytes.decode("utf-8", errors="replace"),
            stderr=stderr_bytes.decode("utf-8", errors="replace"),
        )
    )


async def run_checked(
    tokens: list[str],
    *,
    cwd: Path | None = None,
    env: dict[str, str] | None = None,
    timeout: float = DEFAULT_TIMEOUT,
    stdin: bytes | None = None,
) -> Result[CommandResult, ProbeError]:
    """Like `run_command`, but a non-zero exit becomes `Err(ProbeError)`."""
    match await run_command(tokens, cwd=cwd, env=env, timeout=timeout, stdin=stdin):
        case Err(err):
            return Err(err)
        case Ok(result):
            if result.ok:
                return Ok(result)
            return Err(
                ProbeError(
                    result.detail() or f"{' '.join(tokens)} failed",
                    tool=tokens[0],
                    exit_code=result.returncode,
                    stderr=result.stderr.strip(),
                )
            )


__all__ = ["DEFAULT_TIMEOUT", "CommandResult", "run_checked", "run_command"]
