from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import secrets

import httpx

from repoweaver.core.errors import PublishError
from repoweaver.merge.planner import ResolvedDecision
from repoweaver.schemas.weaver import FileRule
from repoweaver.services.github import GitHubClient, GitHubError

logger = logging.getLogger(__name__)

BRANCH_PREFIX = "repoweaver/update"


@dataclass(frozen=True, slots=True)
class TargetRepository:
    owner: str
    name: str
    default_branch: str = "main"

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass(slots=True)
class PublishedPullRequest:
    number: int
    url: str
    branch: str
    files_written: int
    files_failed: int


def make_branch_name(now: datetime | None = None) -> str:
    moment = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return f"{BRANCH_PREFIX}-{moment.strftime('%Y%m%dT%H%M%SZ')}-{secrets.token_hex(3)}"


def commit_message(decision: ResolvedDecision) -> str:
    return (
        f"Update {decision.path} from template {decision.source_template} "
        f"using {decision.strategy} strategy"
    )


def summarize(decisions: Sequence[ResolvedDecision]) -> dict[str, int]:
    counts = {"added": 0, "modified": 0, "skipped": 0, "failed": 0}
    for decision in decisions:
        if decision.error is not None:
            counts["failed"] += 1
        elif decision.action == "add":
            counts["added"] += 1
        elif decision.action == "modify":
            counts["modified"] += 1
        else:
            counts["skipped"] += 1
    return counts


def build_pull_request_body(
    decisions: Sequence[ResolvedDecision],
    templates: Sequence[str],
    rules: Sequence[FileRule] = (),
) -> str:
    counts = summarize(decisions)
    lines = [
        "## Template update",
        "",
        "Templates applied:",
        *[f"- `{name}`" for name in templates],
        "",
        "| added | modified | skipped | failed |",
        "|---|---|---|---|",
        f"| {counts['added']} | {counts['modified']} | {counts['skipped']} | {counts['failed']} |",
    ]

    changed = [decision for decision in decisions if decision.action in {"add", "modify"} and decision.error is None]
    if changed:
        lines += ["", "### Files", ""]
        lines += [
            f"- `{decision.path}` ({decision.action}, {decision.strategy} from `{decision.source_template}`)"
            for decision in changed
        ]

    conflicts = [(decision.path, conflict) for decision in decisions for conflict in decision.conflicts]
    if conflicts:
        lines += ["", "### Conflicts", ""]
        lines += [f"- `{path}`: {conflict}" for path, conflict in conflicts]

    warnings = [(decision.path, warning) for decision in decisions for warning in decision.warnings]
    if warnings:
        lines += ["", "### Warnings", ""]
        lines += [f"- `{path}`: {warning}" for path, warning in warnings]

    failures = [decision for decision in decisions if decision.error is not None]
    if failures:
        lines += ["", "### Failed files", ""]
        lines += [f"- `{decision.path}`: {decision.error}" for decision in failures]

    primaries = [rule for rule in rules if rule.primary_source]
    if primaries:
        lines += ["", "### Primary sources", ""]
        for rule in primaries:
            selector = ", ".join(rule.patterns) if rule.patterns else f"category:{rule.category}"
            lines.append(f"- {selector} → `{rule.primary_source}`")

    lines += ["", "_Opened automatically by repoweaver._"]
    return "\n".join(lines)


class PullRequestPublisher:
    def __init__(
        self,
        client: GitHubClient,
        *,
        branch_namer: Callable[[], str] = make_branch_name,
    ) -> None:
        self._client = client
        self._branch_namer = branch_namer

    async def publish(
        self,
        decisions: Sequence[ResolvedDecision],
        target: TargetRepository,
        templates: Sequence[str],
        rules: Sequence[FileRule] = (),
    ) -> PublishedPullRequest | None:
        """Write every add/modify decision to a fresh branch and open one pull request.

        Returns ``None`` when no decision needed a write. A failed write is
        recorded on its decision; if every write failed, ``PublishError`` is raised.
        """
        pending = [decision for decision in decisions if decision.needs_write]
        if not pending:
            logger.info("publish skipped repo=%s reason=no_changes", target.full_name)
            return None

        branch: str | None = None
        written = 0
        failed = 0
        for decision in pending:
            if branch is None:
                branch = self._branch_namer()
                await self._client.create_branch(target.owner, target.name, branch, target.default_branch)
                logger.info("update branch created repo=%s branch=%s", target.full_name, branch)
            try:
                await self._client.create_or_update_file(
                    target.owner,
                    target.name,
                    decision.path,
                    decision.content or "",
                    commit_message(decision),
                    branch,
                )
            except (GitHubError, httpx.HTTPError) as exc:
                decision.error = f"write failed: {exc}"
                failed += 1
                logger.warning(
                    "file write failed repo=%s path=%s error=%s",
                    target.full_name,
                    decision.path,
                    exc,
                )
                continue
            written += 1

        if written == 0 or branch is None:
            raise PublishError(f"no files could be written to {target.full_name} ({failed} failed)")

        title = f"Update from templates: {', '.join(templates)}"
        pull = await self._client.create_pull_request(
            target.owner,
            target.name,
            title=title,
            head=branch,
            base=target.default_branch,
            body=build_pull_request_body(decisions, templates, rules),
        )
        published = PublishedPullRequest(
            number=int(pull["number"]),
            url=str(pull.get("html_url") or pull.get("url") or ""),
            branch=branch,
            files_written=written,
            files_failed=failed,
        )
        logger.info(
            "pull request opened repo=%s number=%s written=%s failed=%s",
            target.full_name,
            published.number,
            written,
            failed,
        )
        return published
