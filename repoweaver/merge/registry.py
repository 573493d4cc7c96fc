from __future__ import annotations

from collections.abc import Mapping, Sequence
import logging

from repoweaver.core.errors import PluginLoadError, UnknownStrategyError
from repoweaver.merge.plugins import PLUGIN_CATALOG, MergePlugin
from repoweaver.merge.strategies import MergeStrategy, builtin_strategies, content_strategies
from repoweaver.schemas.weaver import FileRule, StrategyConfig

logger = logging.getLogger(__name__)

DEFAULT_STRATEGY = StrategyConfig(type="merge")


class MergeStrategyRegistry:
    """Per-job strategy lookup; plugins load lazily and are released by ``cleanup``."""

    def __init__(self, catalog: Mapping[str, MergePlugin] | None = None) -> None:
        self._catalog = PLUGIN_CATALOG if catalog is None else catalog
        self._strategies: dict[str, MergeStrategy] = {}
        self._plugins: dict[str, MergePlugin] = {}
        for strategy in [*builtin_strategies(), *content_strategies()]:
            self._strategies[strategy.name] = strategy

    def get_strategy(self, name: str) -> MergeStrategy | None:
        return self._strategies.get(name)

    def list_strategies(self) -> list[str]:
        return sorted(self._strategies)

    def loaded_plugins(self) -> list[str]:
        return sorted(self._plugins)

    def register_strategy(self, strategy: MergeStrategy, name: str | None = None) -> None:
        key = name or strategy.name
        if not key:
            raise UnknownStrategyError("strategy must have a name")
        self._strategies[key] = strategy

    def load_plugin(self, name: str) -> None:
        if name in self._plugins:
            return
        plugin = self._catalog.get(name)
        if plugin is None:
            raise PluginLoadError(f"plugin {name} is not registered")
        try:
            if plugin.initialize is not None:
                plugin.initialize()
            strategies = plugin.build_strategies()
        except Exception as exc:
            raise PluginLoadError(f"plugin {name} could not be loaded: {exc}") from exc

        for strategy in strategies:
            self._strategies[f"{name}:{strategy.name}"] = strategy
        self._plugins[name] = plugin
        logger.info("merge plugin loaded name=%s version=%s strategies=%s", name, plugin.version, len(strategies))

    def resolve_rule(self, file_path: str, rules: Sequence[FileRule]) -> FileRule | None:
        """Return the highest-priority matching rule; ties go to the earliest rule."""
        winner: FileRule | None = None
        winner_key: tuple[int, int] | None = None
        for index, rule in enumerate(rules):
            if not rule.matches(file_path):
                continue
            key = (rule.priority, -index)
            if winner_key is None or key > winner_key:
                winner, winner_key = rule, key
        return winner

    def resolve_strategy_config(
        self,
        file_path: str,
        rules: Sequence[FileRule],
        default: StrategyConfig | None = None,
    ) -> StrategyConfig:
        rule = self.resolve_rule(file_path, rules)
        if rule is not None:
            return rule.strategy
        return default or DEFAULT_STRATEGY

    def resolve_strategy_for_file(
        self,
        file_path: str,
        rules: Sequence[FileRule],
        default: StrategyConfig | None = None,
    ) -> MergeStrategy:
        return self.resolve_strategy(self.resolve_strategy_config(file_path, rules, default))

    def resolve_strategy(self, config: StrategyConfig) -> MergeStrategy:
        if config.type in {"overwrite", "merge", "skip"}:
            return self._require(config.type)

        implementation = config.implementation or ""
        if config.type == "custom":
            return self._require(implementation)

        if config.type == "plugin":
            plugin_name, _, _ = implementation.partition(":")
            self.load_plugin(plugin_name)
            return self._require(implementation)

        raise UnknownStrategyError(f"unknown strategy type: {config.type}")

    def cleanup(self) -> None:
        for name, plugin in self._plugins.items():
            if plugin.cleanup is None:
                continue
            try:
                plugin.cleanup()
            except Exception:
                logger.exception("merge plugin cleanup failed name=%s", name)
        for key in [key for key in self._strategies if ":" in key]:
            del self._strategies[key]
        self._plugins.clear()

    def _require(self, name: str) -> MergeStrategy:
        strategy = self._strategies.get(name)
        if strategy is None:
            raise UnknownStrategyError(f"merge strategy {name!r} is not registered")
        return strategy
