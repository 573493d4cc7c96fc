from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
import logging

from repoweaver.merge.strategies import (
    JsonMergeStrategy,
    MarkdownMergeStrategy,
    MergeStrategy,
    PackageJsonMergeStrategy,
    TomlMergeStrategy,
    YamlMergeStrategy,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class MergePlugin:
    """A named bundle of strategies, addressed as ``<plugin>:<strategy>``."""

    name: str
    version: str
    strategy_factory: Callable[[], list[MergeStrategy]]
    initialize: Callable[[], None] | None = None
    cleanup: Callable[[], None] | None = None
    description: str = ""
    metadata: dict[str, str] = field(default_factory=dict)

    def build_strategies(self) -> list[MergeStrategy]:
        return self.strategy_factory()


PLUGIN_CATALOG: dict[str, MergePlugin] = {}


def register_plugin(plugin: MergePlugin, *, replace: bool = False) -> MergePlugin:
    if plugin.name in PLUGIN_CATALOG and not replace:
        raise ValueError(f"plugin already registered: {plugin.name}")
    PLUGIN_CATALOG[plugin.name] = plugin
    logger.debug("merge plugin registered name=%s version=%s", plugin.name, plugin.version)
    return plugin


register_plugin(
    MergePlugin(
        name="structured",
        version="1.0.0",
        description="Structured data merges for JSON, YAML, TOML and package.json",
        strategy_factory=lambda: [
            JsonMergeStrategy(),
            YamlMergeStrategy(),
            TomlMergeStrategy(),
            PackageJsonMergeStrategy(),
        ],
    )
)
register_plugin(
    MergePlugin(
        name="docs",
        version="1.0.0",
        description="Documentation merges; pass a separator option to change the section break",
        strategy_factory=lambda: [MarkdownMergeStrategy()],
    )
)
