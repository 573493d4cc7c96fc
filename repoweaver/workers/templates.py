from __future__ import annotations

from collections.abc import Mapping, Sequence
from pathlib import Path
import logging
import tempfile
from typing import Any

from repoweaver.core.errors import MissingRepositoryConfigError, TemplateFetchError
from repoweaver.core.patterns import CATEGORY_TABLE_VERSION
from repoweaver.merge.planner import MergePlanner, ResolvedDecision
from repoweaver.merge.plugins import MergePlugin
from repoweaver.merge.registry import MergeStrategyRegistry
from repoweaver.schemas.jobs import ApplyTemplatesPayload, PreviewTemplatesPayload
from repoweaver.schemas.weaver import TemplateSource, WeaverConfig, load_weaver_config
from repoweaver.services.github import GitHubClient
from repoweaver.services.publisher import PullRequestPublisher, TargetRepository, summarize
from repoweaver.services.repository import RepositoryNotFoundError
from repoweaver.services.sources import (
    LocalCloneTemplateFetcher,
    RemoteTemplateFetcher,
    TemplateFetcher,
    files_by_path,
)

logger = logging.getLogger(__name__)

TemplatePayload = ApplyTemplatesPayload | PreviewTemplatesPayload


class TemplateJobHandler:
    """Runs apply and preview jobs: fetch templates, plan every file, publish when applying."""

    def __init__(
        self,
        repository: Any,
        github: GitHubClient,
        *,
        fetch_mode: str = "api",
        plugin_catalog: Mapping[str, MergePlugin] | None = None,
        publisher: PullRequestPublisher | None = None,
    ) -> None:
        self._repository = repository
        self._github = github
        self._fetch_mode = fetch_mode
        self._plugin_catalog = plugin_catalog
        self._publisher = publisher or PullRequestPublisher(github)

    async def run(self, job: dict[str, Any], payload: TemplatePayload) -> dict[str, Any]:
        config_row = await self._load_config_row(job["repo_id"])
        config = load_weaver_config(config_row["config"])
        owner, name = payload.repository.owner, payload.repository.name
        repo_info = await self._github.get_repository(owner, name)
        target = TargetRepository(owner=owner, name=name, default_branch=repo_info.get("default_branch") or "main")
        template_names = [template.name for template in config.templates]

        registry = MergeStrategyRegistry(self._plugin_catalog)
        try:
            for plugin_name in config.plugins:
                registry.load_plugin(plugin_name)
            decisions = await self._plan(registry, config, target)
            if decisions and all(decision.error is not None for decision in decisions):
                raise TemplateFetchError(
                    f"no template files could be planned for {target.full_name}: {decisions[0].error}"
                )

            result: dict[str, Any] = {
                "repository": target.full_name,
                "templates": template_names,
                "preview": payload.type == "preview_templates",
                "category_table_version": CATEGORY_TABLE_VERSION,
                "pull_request": None,
            }
            if payload.type == "apply_templates":
                published = await self._publisher.publish(decisions, target, template_names, config.merge_strategies)
                if published is not None:
                    await self._repository.create_pr_record(
                        repo_id=job["repo_id"],
                        job_id=job["id"],
                        pr_number=published.number,
                        pr_url=published.url,
                        templates_applied=template_names,
                    )
                    result["pull_request"] = {
                        "number": published.number,
                        "url": published.url,
                        "branch": published.branch,
                    }
        finally:
            registry.cleanup()

        result["summary"] = summarize(decisions)
        result["decisions"] = [decision.to_dict() for decision in decisions]
        logger.info(
            "template job finished job_id=%s repo=%s type=%s decisions=%s",
            job["id"],
            target.full_name,
            payload.type,
            len(decisions),
        )
        return result

    async def _plan(
        self,
        registry: MergeStrategyRegistry,
        config: WeaverConfig,
        target: TargetRepository,
    ) -> list[ResolvedDecision]:
        template_files = await self._fetch_templates(config.templates)

        async def existing_lookup(path: str) -> str | None:
            return await self._github.get_file_content(target.owner, target.name, path, target.default_branch)

        return await MergePlanner(registry).plan(
            template_files,
            existing_lookup,
            config.merge_strategies,
            config.merge_strategy,
            config.exclude_patterns,
        )

    async def _fetch_templates(self, templates: Sequence[TemplateSource]) -> dict[str, dict[str, str]]:
        if self._fetch_mode == "clone":
            with tempfile.TemporaryDirectory(prefix="repoweaver-") as scratch:
                return await _collect(LocalCloneTemplateFetcher(Path(scratch)), templates)
        return await _collect(RemoteTemplateFetcher(self._github), templates)

    async def _load_config_row(self, repo_id: str) -> dict[str, Any]:
        try:
            return await self._repository.get_repository_config(repo_id)
        except RepositoryNotFoundError as exc:
            raise MissingRepositoryConfigError(f"no repository config for id={repo_id}") from exc


async def _collect(fetcher: TemplateFetcher, templates: Sequence[TemplateSource]) -> dict[str, dict[str, str]]:
    collected: dict[str, dict[str, str]] = {}
    for template in templates:
        collected[template.name] = files_by_path(await fetcher.fetch(template))
    return collected
