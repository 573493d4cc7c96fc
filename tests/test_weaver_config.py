import pytest

from repoweaver.core.errors import ConfigurationError
from repoweaver.schemas.weaver import FileRule, StrategyConfig, TemplateSource, WeaverConfig, load_weaver_config


def test_bare_string_template_becomes_source_with_repo_name() -> None:
    config = WeaverConfig.model_validate({"templates": ["https://github.com/acme/base-template.git"]})

    assert config.templates == [
        TemplateSource(url="https://github.com/acme/base-template.git", name="base-template")
    ]


def test_camel_case_fields_are_accepted() -> None:
    config = load_weaver_config(
        {
            "templates": [
                {"url": "git@github.com:acme/ts-base.git", "name": "ts", "branch": "v2", "subDirectory": "/web/"}
            ],
            "mergeStrategy": "overwrite",
            "mergeStrategies": [
                {"category": "typescript", "strategy": {"type": "skip-existing"}, "priority": 3, "primarySource": "ts"}
            ],
            "excludePatterns": ["*.lock"],
            "autoUpdate": False,
        }
    )

    template = config.templates[0]
    rule = config.merge_strategies[0]
    assert template.sub_directory == "web"
    assert template.branch == "v2"
    assert config.merge_strategy == StrategyConfig(type="overwrite")
    assert rule.strategy.type == "skip"
    assert rule.priority == 3
    assert rule.primary_source == "ts"
    assert config.exclude_patterns == ["*.lock"]
    assert config.auto_update is False


def test_default_strategy_is_merge() -> None:
    assert WeaverConfig().merge_strategy.type == "merge"


def test_duplicate_template_names_are_rejected() -> None:
    with pytest.raises(ConfigurationError):
        load_weaver_config(
            {
                "templates": [
                    "https://github.com/acme/base",
                    "https://github.com/other/base",
                ]
            }
        )


def test_unknown_category_is_rejected_when_parsing() -> None:
    with pytest.raises(ConfigurationError):
        load_weaver_config({"mergeStrategies": [{"category": "cobol", "strategy": "overwrite"}]})


@pytest.mark.parametrize(
    "strategy",
    [
        {"type": "custom"},
        {"type": "plugin", "implementation": "structured"},
        {"type": "rebase"},
    ],
)
def test_invalid_strategies_are_rejected(strategy: dict) -> None:
    with pytest.raises(ConfigurationError):
        load_weaver_config({"mergeStrategy": strategy})


def test_rule_without_selector_never_matches() -> None:
    rule = FileRule(strategy=StrategyConfig(type="overwrite"))

    assert not rule.matches("README.md")


def test_rule_matches_patterns_or_category() -> None:
    rule = FileRule(patterns="*.yml", category="typescript", strategy=StrategyConfig(type="overwrite"))

    assert rule.patterns == ("*.yml",)
    assert rule.matches("ci.yml")
    assert rule.matches("tsconfig.json")
    assert not rule.matches("README.md")


def test_stored_config_must_be_a_json_object() -> None:
    with pytest.raises(ConfigurationError):
        load_weaver_config("[1, 2]")
    with pytest.raises(ConfigurationError):
        load_weaver_config("{not json")

    assert load_weaver_config('{"templates": ["acme/base"]}').templates[0].name == "base"
