from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import asdict, dataclass, field
import logging
from typing import Any, Literal

from repoweaver.core.patterns import matches_any
from repoweaver.merge.registry import DEFAULT_STRATEGY, MergeStrategyRegistry
from repoweaver.merge.strategies import MergeContext
from repoweaver.schemas.weaver import FileRule, StrategyConfig

logger = logging.getLogger(__name__)

DecisionAction = Literal["add", "modify", "skip"]
ExistingLookup = Callable[[str], Awaitable[str | None]]


@dataclass(slots=True)
class ResolvedDecision:
    path: str
    content: str | None
    source_template: str
    strategy: str
    action: DecisionAction
    conflicts: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def needs_write(self) -> bool:
        return self.action in {"add", "modify"} and self.error is None and self.content is not None

    def to_dict(self, *, include_content: bool = False) -> dict[str, Any]:
        data = asdict(self)
        if not include_content:
            data.pop("content")
        return data


@dataclass(slots=True)
class SourceSelection:
    content: str | None
    source: str | None
    warning: str | None = None


def select_source(
    file_path: str,
    template_files: Mapping[str, Mapping[str, str]],
    rule: FileRule | None,
) -> SourceSelection:
    """Pick the template whose copy of ``file_path`` wins.

    Templates are consulted in configuration order. A rule's primary source is
    preferred; when it lacks the file the first provider wins and a warning is
    attached.
    """
    primary = rule.primary_source if rule is not None else None
    if primary:
        primary_files = template_files.get(primary)
        if primary_files is not None and file_path in primary_files:
            return SourceSelection(content=primary_files[file_path], source=primary)

    for name, files in template_files.items():
        if file_path in files:
            warning = None
            if primary:
                warning = (
                    f"primary source '{primary}' does not provide '{file_path}', using '{name}' instead"
                )
            return SourceSelection(content=files[file_path], source=name, warning=warning)

    warning = None
    if primary:
        warning = f"primary source '{primary}' does not provide '{file_path}', and no other template provides it"
    return SourceSelection(content=None, source=None, warning=warning)


def strategy_label(config: StrategyConfig) -> str:
    if config.type in {"custom", "plugin"} and config.implementation:
        return config.implementation
    return config.type


class MergePlanner:
    def __init__(self, registry: MergeStrategyRegistry) -> None:
        self._registry = registry

    async def plan(
        self,
        template_files: Mapping[str, Mapping[str, str]],
        existing_lookup: ExistingLookup,
        rules: Sequence[FileRule],
        default_strategy: StrategyConfig | None = None,
        exclude_patterns: Sequence[str] = (),
    ) -> list[ResolvedDecision]:
        paths = sorted({path for files in template_files.values() for path in files})
        decisions: list[ResolvedDecision] = []
        for path in paths:
            if exclude_patterns and matches_any(path, exclude_patterns):
                logger.debug("template file excluded path=%s", path)
                continue
            decision = await self._plan_file(path, template_files, existing_lookup, rules, default_strategy)
            if decision is not None:
                decisions.append(decision)
        return decisions

    async def _plan_file(
        self,
        path: str,
        template_files: Mapping[str, Mapping[str, str]],
        existing_lookup: ExistingLookup,
        rules: Sequence[FileRule],
        default_strategy: StrategyConfig | None,
    ) -> ResolvedDecision | None:
        rule = self._registry.resolve_rule(path, rules)
        selection = select_source(path, template_files, rule)
        if selection.content is None or selection.source is None:
            if selection.warning:
                logger.warning("template file dropped path=%s reason=%s", path, selection.warning)
            return None

        config = rule.strategy if rule is not None else (default_strategy or DEFAULT_STRATEGY)
        strategy = self._registry.resolve_strategy(config)
        decision = ResolvedDecision(
            path=path,
            content=selection.content,
            source_template=selection.source,
            strategy=strategy_label(config),
            action="add",
        )
        if selection.warning:
            decision.warnings.append(selection.warning)

        try:
            existing = await existing_lookup(path)
        except Exception as exc:
            logger.warning("existing file lookup failed path=%s error=%s", path, exc)
            decision.action = "skip"
            decision.content = None
            decision.error = f"could not read existing file: {exc}"
            return decision

        if existing is None:
            return decision

        if config.type == "skip":
            decision.action = "skip"
            decision.content = existing
            return decision

        result = strategy.merge(
            MergeContext(
                file_path=path,
                existing_content=existing,
                new_content=selection.content,
                template_name=selection.source,
                options=dict(config.options),
            )
        )
        decision.action = "modify"
        decision.content = result.content
        decision.conflicts.extend(result.conflicts)
        decision.warnings.extend(result.warnings)
        if not result.success:
            decision.conflicts.append(f"{strategy.name} merge did not succeed for {path}")
        if result.content == existing:
            decision.action = "skip"
            decision.warnings.append("content unchanged")
        return decision
