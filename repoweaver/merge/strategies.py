from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
import json
from pathlib import PurePosixPath
from typing import Any

import tomlkit
from tomlkit import TOMLDocument
from tomlkit.exceptions import TOMLKitError
from tomlkit.items import InlineTable, Table
import yaml

DEFAULT_APPEND_SEPARATOR = "\n\n# --- Template Update ---\n\n"
DEFAULT_MARKDOWN_SEPARATOR = "\n\n---\n\n"


@dataclass(slots=True)
class MergeContext:
    file_path: str
    existing_content: str
    new_content: str
    template_name: str
    options: dict[str, Any] = field(default_factory=dict)

    def separator(self, default: str) -> str:
        value = self.options.get("separator")
        return value if isinstance(value, str) and value else default


@dataclass(slots=True)
class MergeResult:
    success: bool
    content: str
    conflicts: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)


class MergeStrategy(ABC):
    name: str = ""
    description: str = ""

    @abstractmethod
    def merge(self, context: MergeContext) -> MergeResult:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class OverwriteMergeStrategy(MergeStrategy):
    name = "overwrite"
    description = "Replace existing content with the template content"

    def merge(self, context: MergeContext) -> MergeResult:
        return MergeResult(success=True, content=context.new_content)


class SkipMergeStrategy(MergeStrategy):
    name = "skip"
    description = "Keep existing content untouched"

    def merge(self, context: MergeContext) -> MergeResult:
        return MergeResult(success=True, content=context.existing_content)


class AppendMergeStrategy(MergeStrategy):
    name = "merge"
    description = "Append template content after existing content"

    def merge(self, context: MergeContext) -> MergeResult:
        if _is_blank(context.existing_content):
            return MergeResult(success=True, content=context.new_content)
        separator = context.separator(DEFAULT_APPEND_SEPARATOR)
        return MergeResult(
            success=True,
            content=context.existing_content + separator + context.new_content,
            warnings=["Content was appended with separator"],
        )


class JsonMergeStrategy(MergeStrategy):
    name = "json"
    description = "Deep merge JSON objects"

    def merge(self, context: MergeContext) -> MergeResult:
        try:
            existing = json.loads(context.existing_content)
            incoming = json.loads(context.new_content)
        except json.JSONDecodeError as exc:
            return MergeResult(
                success=False,
                content=context.existing_content,
                warnings=[f"JSON merge failed: {exc}. Using existing content."],
            )
        merged = deep_merge(existing, incoming)
        metadata = {"merged_keys": list(merged)} if isinstance(merged, dict) else {}
        return MergeResult(success=True, content=_dump_json(merged), metadata=metadata)


class PackageJsonMergeStrategy(MergeStrategy):
    name = "package-json"
    description = "Merge package.json keeping dependency and script maps from both sides"

    merged_sections = ("dependencies", "devDependencies", "peerDependencies", "scripts")

    def merge(self, context: MergeContext) -> MergeResult:
        try:
            existing = json.loads(context.existing_content)
            incoming = json.loads(context.new_content)
        except json.JSONDecodeError as exc:
            return MergeResult(
                success=False,
                content=context.existing_content,
                warnings=[f"package.json merge failed: {exc}"],
            )
        if not isinstance(existing, dict) or not isinstance(incoming, dict):
            return MergeResult(
                success=False,
                content=context.existing_content,
                warnings=["package.json merge failed: both documents must be objects"],
            )

        merged = {**existing, **incoming}
        for section in self.merged_sections:
            left = existing.get(section)
            right = incoming.get(section)
            if isinstance(left, dict) or isinstance(right, dict):
                merged[section] = {**(left if isinstance(left, dict) else {}), **(right if isinstance(right, dict) else {})}

        return MergeResult(
            success=True,
            content=_dump_json(merged),
            metadata={
                "dependencies_added": sorted(incoming.get("dependencies") or {}),
                "scripts_added": sorted(incoming.get("scripts") or {}),
            },
        )


class MarkdownMergeStrategy(MergeStrategy):
    name = "markdown"
    description = "Append Markdown sections"

    def merge(self, context: MergeContext) -> MergeResult:
        if _is_blank(context.existing_content):
            return MergeResult(success=True, content=context.new_content)
        separator = context.separator(DEFAULT_MARKDOWN_SEPARATOR)
        return MergeResult(
            success=True,
            content=context.existing_content + separator + context.new_content,
            warnings=["Markdown content was appended with separator"],
        )


class YamlMergeStrategy(MergeStrategy):
    name = "yaml"
    description = "Deep merge YAML mappings"

    def merge(self, context: MergeContext) -> MergeResult:
        if _is_blank(context.existing_content):
            return MergeResult(success=True, content=context.new_content)
        try:
            existing = yaml.safe_load(context.existing_content)
            incoming = yaml.safe_load(context.new_content)
        except yaml.YAMLError:
            separator = context.separator(DEFAULT_APPEND_SEPARATOR)
            return MergeResult(
                success=True,
                content=context.existing_content + separator + context.new_content,
                warnings=["YAML merge failed, used simple merge instead"],
            )
        merged = deep_merge(existing, incoming)
        return MergeResult(
            success=True,
            content=yaml.safe_dump(merged, sort_keys=False, default_flow_style=False, indent=2),
        )


class TomlMergeStrategy(MergeStrategy):
    name = "toml"
    description = "Merge TOML tables, template values win"

    def merge(self, context: MergeContext) -> MergeResult:
        if _is_blank(context.existing_content):
            return MergeResult(success=True, content=context.new_content)
        try:
            existing = tomlkit.parse(context.existing_content)
            incoming = tomlkit.parse(context.new_content)
        except TOMLKitError:
            separator = context.separator(DEFAULT_APPEND_SEPARATOR)
            return MergeResult(
                success=True,
                content=context.existing_content + separator + context.new_content,
                warnings=["TOML merge failed, used simple merge instead"],
            )
        _merge_toml_tables(existing, incoming)
        return MergeResult(success=True, content=tomlkit.dumps(existing))


class ConfigMergeStrategy(MergeStrategy):
    name = "config"
    description = "Merge configuration files by extension (JSON, YAML, TOML)"

    def __init__(self) -> None:
        self._by_suffix: dict[str, MergeStrategy] = {
            ".json": JsonMergeStrategy(),
            ".yaml": YamlMergeStrategy(),
            ".yml": YamlMergeStrategy(),
            ".toml": TomlMergeStrategy(),
        }
        self._fallback = AppendMergeStrategy()

    def merge(self, context: MergeContext) -> MergeResult:
        suffix = PurePosixPath(context.file_path).suffix.lower()
        return self._by_suffix.get(suffix, self._fallback).merge(context)


def deep_merge(target: Any, source: Any) -> Any:
    """Recursively merge mappings; any non-mapping value from ``source`` wins."""
    if not isinstance(target, dict) or not isinstance(source, dict):
        return source
    result = dict(target)
    for key, value in source.items():
        if isinstance(value, dict):
            result[key] = deep_merge(result.get(key) if isinstance(result.get(key), dict) else {}, value)
        else:
            result[key] = value
    return result


def builtin_strategies() -> list[MergeStrategy]:
    return [OverwriteMergeStrategy(), SkipMergeStrategy(), AppendMergeStrategy()]


def content_strategies() -> list[MergeStrategy]:
    return [
        JsonMergeStrategy(),
        PackageJsonMergeStrategy(),
        MarkdownMergeStrategy(),
        YamlMergeStrategy(),
        TomlMergeStrategy(),
        ConfigMergeStrategy(),
    ]


def _dump_json(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False)


def _merge_toml_tables(target: Any, source: Any) -> None:
    for key, value in source.items():
        current = target.get(key)
        if _is_table(current) and _is_table(value):
            _merge_toml_tables(current, value)
        else:
            target[key] = value.unwrap() if hasattr(value, "unwrap") else value


def _is_table(value: Any) -> bool:
    return isinstance(value, (Table, InlineTable, TOMLDocument))


def _is_blank(content: str) -> bool:
    return not content.strip()
