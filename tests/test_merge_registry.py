import pytest

from repoweaver.core.errors import PluginLoadError, UnknownCategoryError, UnknownStrategyError
from repoweaver.merge.plugins import PLUGIN_CATALOG, MergePlugin
from repoweaver.merge.registry import MergeStrategyRegistry
from repoweaver.merge.strategies import (
    AppendMergeStrategy,
    JsonMergeStrategy,
    MergeContext,
    MergeResult,
    MergeStrategy,
    OverwriteMergeStrategy,
    SkipMergeStrategy,
    YamlMergeStrategy,
)
from repoweaver.schemas.weaver import FileRule, StrategyConfig


def _rule(patterns: list[str], strategy: str, priority: int = 0) -> FileRule:
    return FileRule(patterns=patterns, strategy=StrategyConfig(type=strategy), priority=priority)


class UpperStrategy(MergeStrategy):
    name = "upper"

    def merge(self, context: MergeContext) -> MergeResult:
        return MergeResult(success=True, content=context.new_content.upper())


def test_highest_priority_matching_rule_wins() -> None:
    registry = MergeStrategyRegistry()
    rules = [_rule(["*.json"], "overwrite"), _rule(["package.json"], "skip", priority=5)]

    assert isinstance(registry.resolve_strategy_for_file("package.json", rules), SkipMergeStrategy)
    assert isinstance(registry.resolve_strategy_for_file("tsconfig.json", rules), OverwriteMergeStrategy)


def test_priority_ties_go_to_the_earliest_rule() -> None:
    registry = MergeStrategyRegistry()
    rules = [_rule(["*.json"], "skip", priority=1), _rule(["package.json"], "overwrite", priority=1)]

    assert registry.resolve_rule("package.json", rules) is rules[0]


def test_resolution_is_deterministic() -> None:
    registry = MergeStrategyRegistry()
    rules = [_rule(["*.md"], "skip"), _rule(["README.md"], "overwrite"), _rule(["docs/**"], "merge")]

    first = [registry.resolve_strategy_for_file("README.md", rules) for _ in range(5)]

    assert all(strategy is first[0] for strategy in first)


def test_no_match_falls_back_to_default_then_merge() -> None:
    registry = MergeStrategyRegistry()
    rules = [_rule(["*.json"], "overwrite")]

    assert isinstance(
        registry.resolve_strategy_for_file("README.md", rules, StrategyConfig(type="skip")), SkipMergeStrategy
    )
    assert isinstance(registry.resolve_strategy_for_file("README.md", rules), AppendMergeStrategy)
    assert registry.resolve_rule("README.md", []) is None


def test_custom_strategy_resolves_registered_name() -> None:
    registry = MergeStrategyRegistry()

    assert isinstance(
        registry.resolve_strategy(StrategyConfig(type="custom", implementation="json")), JsonMergeStrategy
    )

    registry.register_strategy(UpperStrategy())
    assert isinstance(registry.resolve_strategy(StrategyConfig(type="custom", implementation="upper")), UpperStrategy)

    with pytest.raises(UnknownStrategyError):
        registry.resolve_strategy(StrategyConfig(type="custom", implementation="./strategies/mine.js"))


def test_bundled_plugin_loads_on_demand() -> None:
    registry = MergeStrategyRegistry()

    strategy = registry.resolve_strategy(StrategyConfig(type="plugin", implementation="structured:yaml"))

    assert isinstance(strategy, YamlMergeStrategy)
    assert registry.loaded_plugins() == ["structured"]
    assert "structured:toml" in registry.list_strategies()


def test_unknown_plugin_is_a_load_error() -> None:
    registry = MergeStrategyRegistry()

    with pytest.raises(PluginLoadError):
        registry.resolve_strategy(StrategyConfig(type="plugin", implementation="missing:thing"))


def test_plugin_without_requested_strategy_is_unknown() -> None:
    registry = MergeStrategyRegistry()

    with pytest.raises(UnknownStrategyError):
        registry.resolve_strategy(StrategyConfig(type="plugin", implementation="docs:json"))


def test_load_plugin_is_idempotent_and_cleanup_releases_it() -> None:
    calls = {"initialize": 0, "cleanup": 0}

    def initialize() -> None:
        calls["initialize"] += 1

    def cleanup() -> None:
        calls["cleanup"] += 1

    catalog = {
        "shout": MergePlugin(
            name="shout",
            version="0.1.0",
            strategy_factory=lambda: [UpperStrategy()],
            initialize=initialize,
            cleanup=cleanup,
        )
    }
    registry = MergeStrategyRegistry(catalog)

    registry.load_plugin("shout")
    registry.load_plugin("shout")
    assert calls["initialize"] == 1
    assert registry.get_strategy("shout:upper") is not None

    registry.cleanup()
    assert calls["cleanup"] == 1
    assert registry.get_strategy("shout:upper") is None
    assert registry.loaded_plugins() == []


def test_failing_plugin_initialization_is_a_load_error() -> None:
    def explode() -> None:
        raise RuntimeError("no credentials")

    registry = MergeStrategyRegistry(
        {"broken": MergePlugin(name="broken", version="0.0.1", strategy_factory=list, initialize=explode)}
    )

    with pytest.raises(PluginLoadError, match="no credentials"):
        registry.load_plugin("broken")


def test_bundled_catalog_entries() -> None:
    assert {"structured", "docs"} <= set(PLUGIN_CATALOG)


def test_unknown_category_raises_at_match_time() -> None:
    registry = MergeStrategyRegistry()
    rule = FileRule.model_construct(
        patterns=(),
        category="cobol",
        strategy=StrategyConfig(type="skip"),
        priority=0,
        primary_source=None,
    )

    with pytest.raises(UnknownCategoryError):
        registry.resolve_rule("main.cbl", [rule])
