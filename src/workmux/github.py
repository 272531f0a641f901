"""Pull request lookups through the GitHub CLI (`gh`)."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from workmux.core.process import run_command
from workmux.core.result import Err, Ok

logger = logging.getLogger(__name__)

_PR_FIELDS = "number,title,state,isDraft,headRefName"


class PrSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    number: int
    title: str
    state: str
    is_draft: bool = Field(default=False, alias="isDraft")
    head_ref_name: str = Field(default="", alias="headRefName")

    def label(self) -> str:
        match self.state:
            case "OPEN" if self.is_draft:
                state = "draft"
            case "OPEN" | "MERGED" | "CLOSED":
                state = self.state.lower()
            case _:
                state = "unknown"
        return f"#{self.number} {state}"


async def list_prs(repo_root: Path, *, timeout: float) -> dict[str, PrSummary]:
    """Open/closed/merged PRs of the repository keyed by head branch.

    `gh` being absent, unauthenticated or failing yields an empty mapping.
    """
    cmd = ["gh", "pr", "list", "--state", "all", "--json", _PR_FIELDS, "--limit", "200"]
    match await run_command(cmd, cwd=repo_root, timeout=timeout):
        case Err(err):
            logger.debug("Skipping PR lookup: %s", err)
            return {}
        case Ok(result) if not result.ok:
            logger.debug("gh pr list failed: %s", result.detail())
            return {}
        case Ok(result):
            raw = result.stdout

    try:
        items = json.loads(raw or "[]")
        prs = [PrSummary.model_validate(item) for item in items]
    except (json.JSONDecodeError, ValidationError, TypeError) as exc:
        logger.debug("Could not parse gh output: %s", exc)
        return {}

    by_branch: dict[str, PrSummary] = {}
    for pr in prs:
        # gh lists newest first; keep the most recent PR per branch.
        by_branch.setdefault(pr.head_ref_name, pr)
    return by_branch


__all__ = ["PrSummary", "list_prs"]
