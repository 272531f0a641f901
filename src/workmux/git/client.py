from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

from workmux.core.process import DEFAULT_TIMEOUT, CommandResult, run_command
from workmux.core.result import (
    Err,
    MergeConflictError,
    Ok,
    ProbeError,
    ProbeErrorKind,
    Result,
    WorkmuxError,
)

logger = logging.getLogger(__name__)


@dataclass
class BranchStatus:
    path: Path
    branch: str
    upstream: str | None
    ahead: int
    behind: int
    staged: int
    unstaged: int
    untracked: int
    dirty: bool


@dataclass
class WorktreeInfo:
    """Information about a git worktree."""

    path: Path
    branch: str | None
    commit: str
    is_main: bool
    is_locked: bool = False
    prunable: bool = False
    detached: bool = False


_NOT_A_REPO_MARKERS = ("not a git repository", "not a git repo")


def _probe_error(cwd: Path, args: tuple[str, ...], result: CommandResult) -> ProbeError:
    detail = result.detail() or f"git {' '.join(args)} failed"
    kind = ProbeErrorKind.COMMAND_FAILED
    if any(marker in detail.lower() for marker in _NOT_A_REPO_MARKERS):
        kind = ProbeErrorKind.NOT_A_REPO
    return ProbeError(
        detail,
        tool="git",
        kind=kind,
        exit_code=result.returncode,
        stderr=result.stderr.strip(),
        context={"cwd": str(cwd), "args": " ".join(args)},
    )


async def _run_git_raw(
    cwd: Path, *args: str, timeout: float = DEFAULT_TIMEOUT
) -> Result[CommandResult, ProbeError]:
    if not cwd.exists():
        return Err(
            ProbeError(
                "Repository path does not exist",
                tool="git",
                kind=ProbeErrorKind.NOT_A_REPO,
                context={"cwd": str(cwd)},
            )
        )
    return await run_command(["git", *args], cwd=cwd, timeout=timeout)


async def _run_git(cwd: Path, *args: str, timeout: float = DEFAULT_TIMEOUT) -> Result[str, ProbeError]:
    """Run git with asyncio and return stdout as text, wrapping failures."""
    match await _run_git_raw(cwd, *args, timeout=timeout):
        case Err(err):
            return Err(err)
        case Ok(result) if result.ok:
            return Ok(result.stdout)
        case Ok(result):
            return Err(_probe_error(cwd, args, result))


def _safe_int(value: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _parse_status_output(raw: str, repo_path: Path) -> BranchStatus:
    branch = "(unknown)"
    upstream: str | None = None
    ahead = behind = staged = unstaged = untracked = 0

    entries = [item for item in raw.split("\0") if item]
    for entry in entries:
        if entry.startswith("#"):
            parts = entry.split()
            if len(parts) >= 3 and parts[1] == "branch.head":
                branch = parts[2]
            elif len(parts) >= 3 and parts[1] == "branch.upstream":
                upstream = parts[2]
            elif len(parts) >= 4 and parts[1] == "branch.ab":
                ahead = _safe_int(parts[2].lstrip("+"))
                behind = _safe_int(parts[3].lstrip("-"))
            continue

        kind = entry[0]
        if kind in {"1", "2", "u"}:
            parts = entry.split()
            if len(parts) < 2:
                continue
            xy = parts[1]
            if len(xy) >= 1 and xy[0] != ".":
                staged += 1
            if len(xy) >= 2 and xy[1] != ".":
                unstaged += 1
        elif kind == "?":
            untracked += 1

    return BranchStatus(
        path=repo_path,
        branch=branch,
        upstream=upstream,
        ahead=ahead,
        behind=behind,
        staged=staged,
        unstaged=unstaged,
        untracked=untracked,
        dirty=bool(staged or unstaged or untracked),
    )


def _parse_worktree_list(output: str) -> list[WorktreeInfo]:
    """Parse `git worktree list --porcelain` output. The first entry is the main worktree."""
    worktrees: list[WorktreeInfo] = []
    current: dict[str, str] = {}

    def flush() -> None:
        if not current:
            return
        branch = current.get("branch")
        worktrees.append(
            WorktreeInfo(
                path=Path(current.get("worktree", "")),
                branch=branch.removeprefix("refs/heads/") if branch else None,
                commit=current.get("HEAD", ""),
                is_main=not worktrees,
                is_locked="locked" in current,
                prunable="prunable" in current,
                detached="detached" in current,
            )
        )
        current.clear()

    for line in output.splitlines():
        if not line.strip():
            flush()
            continue

        key, _, value = line.partition(" ")
        if key in {"worktree", "HEAD", "branch"}:
            current[key] = value
        elif key in {"locked", "prunable", "detached", "bare"}:
            current[key] = value or "true"

    # Handle last entry if no trailing newline
    flush()
    return worktrees


def resolve_git_dir(path: Path) -> Path:
    """Return the git directory of a worktree, following a `.git` file's `gitdir:` pointer."""
    git_dir = path / ".git"
    if git_dir.is_file():
        try:
            content = git_dir.read_text(encoding="utf-8").strip()
        except OSError:
            return git_dir
        if content.startswith("gitdir:"):
            target = content.partition(":")[2].strip()
            if target:
                return (path / target).resolve()
    return git_dir


def find_repo_root(start: Path) -> Path | None:
    """Locate the main worktree root for `start` without running git.

    Linked worktrees are followed back through their `commondir` so that the
    project configuration of the main checkout applies inside every worktree.
    """
    current = start.expanduser().resolve()
    for candidate in (current, *current.parents):
        marker = candidate / ".git"
        if marker.is_dir():
            return candidate
        if marker.is_file():
            git_dir = resolve_git_dir(candidate)
            commondir_file = git_dir / "commondir"
            try:
                common = commondir_file.read_text(encoding="utf-8").strip()
            except OSError:
                return candidate
            common_dir = (git_dir / common).resolve()
            return common_dir.parent if common_dir.name == ".git" else candidate
    return None


def operation_in_progress(worktree: Path) -> str | None:
    """Report an unfinished rebase or merge left on disk in `worktree`."""
    git_dir = resolve_git_dir(worktree)
    if (git_dir / "rebase-merge").exists() or (git_dir / "rebase-apply").exists():
        return "rebase"
    if (git_dir / "MERGE_HEAD").exists():
        return "merge"
    return None


async def _resolve_worktree(path: Path, timeout: float) -> Result[Path, ProbeError]:
    match await _run_git(path, "rev-parse", "--show-toplevel", timeout=timeout):
        case Ok(raw):
            return Ok(Path(raw.strip()).resolve())
        case Err(err):
            return Err(err)


class AsyncRepo:
    """Async git wrapper built on subprocess plumbing."""

    def __init__(self, root: Path, *, timeout: float = DEFAULT_TIMEOUT) -> None:
        self._root = root
        self._timeout = timeout

    @property
    def path(self) -> Path:
        return self._root

    @classmethod
    async def open(
        cls, path: Path | str = ".", *, timeout: float = DEFAULT_TIMEOUT
    ) -> Result[AsyncRepo, ProbeError]:
        root = Path(path).expanduser()
        match await _resolve_worktree(root, timeout):
            case Ok(resolved_root):
                return Ok(cls(resolved_root, timeout=timeout))
            case Err(err):
                return Err(err)

    async def run_git(self, *args: str, cwd: Path | None = None) -> Result[str, ProbeError]:
        """Public wrapper around git subprocess execution."""
        return await _run_git(cwd or self._root, *args, timeout=self._timeout)

    async def _git(self, *args: str, cwd: Path | None = None) -> Result[None, ProbeError]:
        result = await _run_git(cwd or self._root, *args, timeout=self._timeout)
        return result.map(lambda _: None)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def status(self, path: Path | None = None) -> Result[BranchStatus, ProbeError]:
        target = path or self._root
        match await self.run_git("status", "--porcelain=v2", "--branch", "-z", cwd=target):
            case Ok(output):
                return Ok(_parse_status_output(output, target))
            case Err(err):
                return Err(err)

    async def has_uncommitted_changes(self, path: Path | None = None) -> Result[bool, ProbeError]:
        return (await self.status(path)).map(lambda status: status.dirty)

    async def head(self, short: bool = True, *, cwd: Path | None = None) -> Result[str, ProbeError]:
        args = ["rev-parse", "--short", "HEAD"] if short else ["rev-parse", "HEAD"]
        return (await self.run_git(*args, cwd=cwd)).map(str.strip)

    async def current_branch(self, path: Path | None = None) -> Result[str | None, ProbeError]:
        """Branch checked out at `path`; None when HEAD is detached."""
        match await self.run_git("branch", "--show-current", cwd=path):
            case Ok(output):
                return Ok(output.strip() or None)
            case Err(err):
                return Err(err)

    async def branch_exists(self, branch: str) -> Result[bool, ProbeError]:
        match await _run_git_raw(
            self._root,
            "show-ref",
            "--verify",
            "--quiet",
            f"refs/heads/{branch}",
            timeout=self._timeout,
        ):
            case Ok(result):
                return Ok(result.ok)
            case Err(err):
                return Err(err)

    async def list_branches(self) -> Result[list[str], ProbeError]:
        match await self.run_git("for-each-ref", "--format=%(refname:short)", "refs/heads/"):
            case Ok(output):
                return Ok([line.strip() for line in output.splitlines() if line.strip()])
            case Err(err):
                return Err(err)

    async def default_branch(self, configured: str | None = None) -> Result[str, ProbeError]:
        """Branch that merges land on.

        Order: configured value, origin/HEAD, a local main/master, the main worktree's branch.
        """
        if configured:
            return Ok(configured)

        match await _run_git_raw(
            self._root,
            "symbolic-ref",
            "--quiet",
            "--short",
            "refs/remotes/origin/HEAD",
            timeout=self._timeout,
        ):
            case Err(err):
                return Err(err)
            case Ok(result) if result.ok and result.stdout.strip():
                return Ok(result.stdout.strip().removeprefix("origin/"))
            case Ok(_):
                pass

        for candidate in ("main", "master"):
            match await self.branch_exists(candidate):
                case Err(err):
                    return Err(err)
                case Ok(True):
                    return Ok(candidate)
                case Ok(False):
                    pass

        match await self.current_branch():
            case Ok(branch) if branch:
                return Ok(branch)
            case Ok(_):
                return Err(
                    ProbeError(
                        "Could not determine the main branch; set 'main_branch' in config",
                        tool="git",
                        context={"cwd": str(self._root)},
                    )
                )
            case Err(err):
                return Err(err)

    async def commits_ahead(self, branch: str, target: str) -> Result[int, ProbeError]:
        """Number of commits on `branch` that are not reachable from `target`."""
        match await self.run_git("rev-list", "--count", f"{target}..{branch}"):
            case Ok(output):
                return Ok(_safe_int(output.strip()))
            case Err(err):
                return Err(err)

    async def get_conflict_files(self, path: Path | None = None) -> Result[list[Path], ProbeError]:
        target = path or self._root
        match await self.run_git("diff", "--name-only", "--diff-filter=U", cwd=target):
            case Ok(output):
                return Ok([target / line.strip() for line in output.splitlines() if line.strip()])
            case Err(err):
                return Err(err)

    # -------------------------------------------------------------------------
    # Worktree operations
    # -------------------------------------------------------------------------

    async def worktree_list(self) -> Result[list[WorktreeInfo], ProbeError]:
        match await self.run_git("worktree", "list", "--porcelain"):
            case Ok(output):
                return Ok(_parse_worktree_list(output))
            case Err(err):
                return Err(err)

    async def worktree_add(
        self,
        path: Path,
        branch: str,
        *,
        new_branch: bool = True,
        start_point: str | None = None,
    ) -> Result[Path, ProbeError]:
        """Create a new worktree, creating `branch` from `start_point` when `new_branch` is set."""
        args: list[str] = ["worktree", "add"]
        if new_branch:
            args.extend(["-b", branch, str(path)])
            if start_point:
                args.append(start_point)
        else:
            args.extend([str(path), branch])

        match await self.run_git(*args):
            case Ok(_):
                return Ok(path.resolve())
            case Err(err):
                return Err(err)

    async def worktree_remove(self, path: Path, *, force: bool = False) -> Result[None, ProbeError]:
        args = ["worktree", "remove"]
        if force:
            args.append("--force")
        args.append(str(path))
        return await self._git(*args)

    async def worktree_prune(self) -> Result[None, ProbeError]:
        return await self._git("worktree", "prune")

    # -------------------------------------------------------------------------
    # Merge operations
    # -------------------------------------------------------------------------

    async def _conflict_or_error(
        self, location: Path, action: str, err: ProbeError
    ) -> Err[WorkmuxError]:
        match await self.get_conflict_files(location):
            case Ok(files) if files:
                return Err(
                    MergeConflictError(
                        f"{action} stopped on conflicts; resolve them in {location} and re-run",
                        location=str(location),
                        conflicts=[str(f) for f in files],
                    )
                )
            case _:
                return Err(err)

    async def merge(self, branch: str, *, no_ff: bool = False) -> Result[str, WorkmuxError]:
        """Merge `branch` into the branch checked out at the repository root."""
        args = ["merge", "--no-edit"]
        if no_ff:
            args.append("--no-ff")
        args.append(branch)

        match await self.run_git(*args):
            case Ok(_):
                return await self.head(short=False)
            case Err(err):
                return await self._conflict_or_error(self._root, f"Merge of '{branch}'", err)

    async def merge_squash(self, branch: str) -> Result[str, WorkmuxError]:
        match await self.run_git("merge", "--squash", branch):
            case Err(err):
                return await self._conflict_or_error(self._root, f"Squash of '{branch}'", err)
            case Ok(_):
                pass

        match await _run_git_raw(
            self._root, "diff", "--cached", "--quiet", timeout=self._timeout
        ):
            case Err(err):
                return Err(err)
            case Ok(result) if result.ok:
                # Nothing staged: the branch was already part of the target.
                return await self.head(short=False)
            case Ok(_):
                pass

        match await self.run_git("commit", "--no-edit"):
            case Ok(_):
                return await self.head(short=False)
            case Err(err):
                return Err(err)

    async def rebase(self, worktree: Path, onto: str) -> Result[None, WorkmuxError]:
        """Rebase the branch checked out in `worktree` onto `onto`."""
        match await self.run_git("rebase", onto, cwd=worktree):
            case Ok(_):
                return Ok(None)
            case Err(err):
                return await self._conflict_or_error(worktree, f"Rebase onto '{onto}'", err)

    async def merge_ff_only(self, branch: str) -> Result[str, ProbeError]:
        match await self.run_git("merge", "--ff-only", branch):
            case Ok(_):
                return await self.head(short=False)
            case Err(err):
                return Err(err)

    async def merge_abort(self) -> Result[None, ProbeError]:
        return await self._git("merge", "--abort")

    # -------------------------------------------------------------------------
    # Branch operations
    # -------------------------------------------------------------------------

    async def delete_branch(self, branch: str, *, force: bool = False) -> Result[None, ProbeError]:
        flag = "-D" if force else "-d"
        return await self._git("branch", flag, branch)


async def is_repo(path: Path | str = ".", *, timeout: float = DEFAULT_TIMEOUT) -> bool:
    target = Path(path).expanduser()
    if not target.exists():
        return False
    match await _run_git_raw(target, "rev-parse", "--is-inside-work-tree", timeout=timeout):
        case Ok(result):
            return result.ok and result.stdout.strip() == "true"
        case Err(_):
            return False


async def iter_git_repos(patterns: list[str], *, timeout: float = DEFAULT_TIMEOUT) -> list[Path]:
    """Expand `repo_paths` entries (paths or globs) into main worktree roots."""

    def _expand() -> list[Path]:
        found: list[Path] = []
        for pattern in patterns:
            expanded = Path(pattern).expanduser()
            if any(ch in pattern for ch in "*?["):
                anchor = Path(expanded.anchor or ".")
                parts = expanded.relative_to(anchor).as_posix() if expanded.is_absolute() else str(expanded)
                found.extend(sorted(anchor.glob(parts)))
            else:
                found.append(expanded)
        return found

    candidates = await asyncio.to_thread(_expand)
    roots: list[Path] = []
    seen: set[Path] = set()
    for candidate in candidates:
        if not candidate.is_dir() or not await is_repo(candidate, timeout=timeout):
            logger.debug("Skipping repo path %s: not a git repository", candidate)
            continue
        root = find_repo_root(candidate) or candidate.resolve()
        if root not in seen:
            seen.add(root)
            roots.append(root)
    return roots
