"""
Unified Result types and error hierarchy for workmux.

This module provides:
1. Result[T, E] type for explicit error handling
2. Domain-specific exception hierarchy
3. Helper functions for Result operations

Usage:
    from workmux.core.result import Ok, Err, Result, NotFoundError

    def resolve(name: str) -> Result[Handle, NotFoundError]:
        if name not in handles:
            return Err(NotFoundError(f"No worktree found with name '{name}'"))
        return Ok(handles[name])

    match resolve("user-auth"):
        case Ok(handle):
            print(handle.worktree_path)
        case Err(err):
            print(err)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Callable, Generic, TypeVar

T = TypeVar("T")
U = TypeVar("U")
E = TypeVar("E", bound=Exception)
F = TypeVar("F", bound=Exception)


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Represents a successful result containing a value."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        """Return the contained value."""
        return self.value

    def unwrap_or(self, default: T) -> T:
        """Return the contained value (ignores default for Ok)."""
        return self.value

    def map(self, fn: Callable[[T], U]) -> Ok[U]:
        """Apply a function to the contained value."""
        return Ok(fn(self.value))

    def map_err(self, fn: Callable[[E], F]) -> Ok[T]:
        """No-op for Ok - returns self unchanged."""
        return self

    def and_then(self, fn: Callable[[T], Result[U, E]]) -> Result[U, E]:
        """Chain operations that may fail."""
        return fn(self.value)


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """Represents a failed result containing an error."""

    error: E

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> T:
        """Raise the contained error."""
        raise self.error

    def unwrap_or(self, default: T) -> T:
        """Return the default value."""
        return default

    def map(self, fn: Callable[[T], U]) -> Err[E]:
        """No-op for Err - returns self unchanged."""
        return self

    def map_err(self, fn: Callable[[E], F]) -> Err[F]:
        """Apply a function to the contained error."""
        return Err(fn(self.error))

    def and_then(self, fn: Callable[[T], Result[U, E]]) -> Err[E]:
        """Short-circuit for Err - returns self unchanged."""
        return self


# Type alias for Result
Result = Ok[T] | Err[E]


# ---------------------------------------------------------------------------
# Domain-specific error hierarchy
# ---------------------------------------------------------------------------


class WorkmuxError(Exception):
    """Base exception for all workmux errors.

    All custom exceptions inherit from this class so the CLI can present
    them uniformly and exit with a non-zero status.
    """

    def __init__(self, message: str, *, context: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} [{ctx_str}]"
        return self.message


class ConfigurationError(WorkmuxError):
    """Raised for configuration issues.

    Examples:
    - Config file parse errors
    - Invalid pane layout
    """


class ValidationError(WorkmuxError):
    """Raised for invalid user input detected before any side effect."""


class ProbeErrorKind(StrEnum):
    COMMAND_FAILED = "command-failed"
    MISSING_TOOL = "missing-tool"
    TIMEOUT = "timeout"
    NOT_A_REPO = "not-a-repo"
    NO_SESSION = "no-session"


class ProbeError(WorkmuxError):
    """An external tool (git, tmux, gh, a hook shell) was missing, failed or timed out."""

    def __init__(
        self,
        message: str,
        *,
        tool: str,
        kind: ProbeErrorKind = ProbeErrorKind.COMMAND_FAILED,
        exit_code: int | None = None,
        stderr: str = "",
        context: dict | None = None,
    ) -> None:
        super().__init__(message, context=context)
        self.tool = tool
        self.kind = kind
        self.exit_code = exit_code
        self.stderr = stderr


class NotFoundError(WorkmuxError):
    """A handle, branch, window or worktree does not exist."""


class AlreadyExistsError(WorkmuxError):
    """A handle, branch or worktree path is already taken."""


class AmbiguousHandleError(WorkmuxError):
    """A handle name matched more than one repository."""


class DirtyWorktreeError(WorkmuxError):
    """A worktree has uncommitted changes and the operation was not forced."""


class AmbiguousPaneError(WorkmuxError):
    """More than one candidate pane and none was specified."""


class PaneNotFoundError(WorkmuxError):
    """The target pane no longer exists."""


class HookError(WorkmuxError):
    """A configured shell hook exited with a non-zero status."""


class MergeConflictError(WorkmuxError):
    """A merge or rebase stopped on conflicts; the handle stays in `merging`.

    The repository is left exactly as git left it so the user can resolve
    the conflict and re-run the merge.
    """

    def __init__(
        self,
        message: str,
        *,
        location: str,
        conflicts: list[str] | None = None,
        context: dict | None = None,
    ) -> None:
        super().__init__(message, context=context)
        self.location = location
        self.conflicts = conflicts or []


@dataclass
class StepFailure:
    step: str
    error: WorkmuxError


class PartialFailureError(WorkmuxError):
    """One or more steps failed after an external mutation had already committed."""

    def __init__(
        self,
        message: str,
        *,
        failures: list[StepFailure],
        completed: list[str] | None = None,
        state: str | None = None,
        warnings: list[str] | None = None,
        context: dict | None = None,
    ) -> None:
        super().__init__(message, context=context)
        self.failures = failures
        self.completed = completed or []
        self.state = state
        self.warnings = warnings or []

    def report_lines(self) -> list[str]:
        lines = [f"completed: {step}" for step in self.completed]
        lines.extend(f"failed: {failure.step}: {failure.error}" for failure in self.failures)
        lines.extend(f"warning: {warning}" for warning in self.warnings)
        if self.state:
            lines.append(f"state: {self.state}")
        return lines


@dataclass
class StepLog:
    """Ordered record of the steps one lifecycle invocation completed or failed."""

    completed: list[str] = field(default_factory=list)
    failures: list[StepFailure] = field(default_factory=list)

    def done(self, step: str) -> None:
        self.completed.append(step)

    def failed(self, step: str, error: WorkmuxError) -> None:
        self.failures.append(StepFailure(step=step, error=error))

    @property
    def ok(self) -> bool:
        return not self.failures


# ---------------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------------


def try_result(fn: Callable[[], T], error_type: type[E] = WorkmuxError) -> Result[T, E]:
    """Execute a function and wrap the result in Ok/Err."""
    try:
        return Ok(fn())
    except error_type as exc:
        return Err(exc)


def collect_results(results: list[Result[T, E]]) -> Result[list[T], E]:
    """Collect a list of Results into a Result of list.

    Returns Err on first error, Ok(list) if all succeed.
    """
    values: list[T] = []
    for result in results:
        if result.is_err():
            return result  # type: ignore[return-value]
        values.append(result.unwrap())
    return Ok(values)


__all__ = [
    # Result types
    "Ok",
    "Err",
    "Result",
    # Error hierarchy
    "WorkmuxError",
    "ConfigurationError",
    "ValidationError",
    "ProbeError",
    "ProbeErrorKind",
    "NotFoundError",
    "AlreadyExistsError",
    "AmbiguousHandleError",
    "DirtyWorktreeError",
    "AmbiguousPaneError",
    "PaneNotFoundError",
    "HookError",
    "MergeConflictError",
    "PartialFailureError",
    "StepFailure",
    "StepLog",
    # Helpers
    "try_result",
    "collect_results",
]
