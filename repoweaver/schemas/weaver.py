from __future__ import annotations

import json
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from repoweaver.core.errors import ConfigurationError, UnknownCategoryError
from repoweaver.core.github_urls import repo_name_from_url
from repoweaver.core.patterns import category_patterns, matches_any

StrategyType = Literal["overwrite", "merge", "skip", "custom", "plugin"]


class StrategyConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: StrategyType
    implementation: str | None = None
    options: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _coerce_shorthand(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = {"type": value}
        if isinstance(value, dict) and value.get("type") == "skip-existing":
            value = {**value, "type": "skip"}
        return value

    @model_validator(mode="after")
    def _require_implementation(self) -> StrategyConfig:
        if self.type in {"custom", "plugin"} and not self.implementation:
            raise ValueError(f"{self.type} strategy requires an implementation")
        if self.type == "plugin" and ":" not in (self.implementation or ""):
            raise ValueError("plugin strategy implementation must look like '<plugin>:<strategy>'")
        return self


class TemplateSource(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    url: str
    name: str
    branch: str | None = None
    sub_directory: str | None = Field(default=None, alias="subDirectory")

    @model_validator(mode="before")
    @classmethod
    def _coerce_url(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"url": value, "name": repo_name_from_url(value)}
        if isinstance(value, dict) and value.get("url") and not value.get("name"):
            return {**value, "name": repo_name_from_url(value["url"])}
        return value

    @field_validator("sub_directory")
    @classmethod
    def _strip_sub_directory(cls, value: str | None) -> str | None:
        if value is None:
            return None
        stripped = value.strip().strip("/")
        return stripped or None


class FileRule(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    patterns: tuple[str, ...] = ()
    category: str | None = None
    strategy: StrategyConfig
    priority: int = 0
    primary_source: str | None = Field(default=None, alias="primarySource")

    @field_validator("patterns", mode="before")
    @classmethod
    def _coerce_patterns(cls, value: Any) -> Any:
        if value is None:
            return ()
        if isinstance(value, str):
            return (value,)
        return value

    @field_validator("category")
    @classmethod
    def _known_category(cls, value: str | None) -> str | None:
        if value is None:
            return None
        try:
            category_patterns(value)
        except UnknownCategoryError as exc:
            raise ValueError(str(exc)) from exc
        return value

    def matches(self, path: str) -> bool:
        if self.patterns and matches_any(path, self.patterns):
            return True
        if self.category:
            return matches_any(path, category_patterns(self.category))
        return False


class WeaverConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str | None = None
    description: str | None = None
    templates: list[TemplateSource] = Field(default_factory=list)
    merge_strategy: StrategyConfig = Field(default_factory=lambda: StrategyConfig(type="merge"), alias="mergeStrategy")
    merge_strategies: list[FileRule] = Field(default_factory=list, alias="mergeStrategies")
    exclude_patterns: list[str] = Field(default_factory=list, alias="excludePatterns")
    plugins: list[str] = Field(default_factory=list)
    auto_update: bool = Field(default=True, alias="autoUpdate")

    @model_validator(mode="after")
    def _unique_template_names(self) -> WeaverConfig:
        seen: set[str] = set()
        for template in self.templates:
            if template.name in seen:
                raise ValueError(f"duplicate template name: {template.name}")
            seen.add(template.name)
        return self


def load_weaver_config(raw: Any) -> WeaverConfig:
    """Parse stored configuration, turning schema failures into ConfigurationError."""
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"repository config is not valid JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigurationError("repository config must be a JSON object")
    try:
        return WeaverConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigurationError(f"invalid repository config: {exc.errors(include_url=False)}") from exc
