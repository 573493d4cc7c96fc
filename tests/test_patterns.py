import pytest

from repoweaver.core.errors import ConfigurationError, UnknownCategoryError
from repoweaver.core.patterns import CATEGORY_PATTERNS, category_patterns, compile_pattern, matches_any


def test_single_star_stays_within_a_segment() -> None:
    matcher = compile_pattern("src/*.ts")

    assert matcher.test("src/index.ts")
    assert not matcher.test("src/nested/index.ts")


def test_double_star_crosses_directories_and_matches_zero_of_them() -> None:
    matcher = compile_pattern("**/*.ts")

    assert matcher.test("index.ts")
    assert matcher.test("packages/core/src/index.ts")
    assert not matcher.test("index.tsx")


def test_trailing_double_star_matches_everything_below() -> None:
    matcher = compile_pattern(".github/workflows/**")

    assert matcher.test(".github/workflows/ci.yml")
    assert matcher.test(".github/workflows/nested/deploy.yml")
    assert not matcher.test(".github/dependabot.yml")


def test_dots_are_literal_and_matching_is_anchored() -> None:
    matcher = compile_pattern("tsconfig.*.json")

    assert matcher.test("tsconfig.build.json")
    assert not matcher.test("tsconfig.json")
    assert not matcher.test("tsconfigXbuildXjson")
    assert not compile_pattern("README.md").test("README.md.bak")
    assert not compile_pattern("README.md").test("OLD_README.md")


def test_patterns_without_slash_match_file_name_at_any_depth() -> None:
    assert compile_pattern("*.md").test("docs/guide/intro.md")
    assert compile_pattern("*.test.*").test("src/sum.test.ts")
    assert not compile_pattern("docs/*.md").test("docs/guide/intro.md")


def test_paths_are_normalized_before_matching() -> None:
    assert compile_pattern("src/*.ts").test("./src/app.ts")
    assert compile_pattern("src/*.ts").test("src\\app.ts")


def test_compiled_matchers_are_memoized() -> None:
    assert compile_pattern("docs/**") is compile_pattern("docs/**")


def test_matches_any() -> None:
    assert matches_any("package.json", ["*.md", "package.json"])
    assert not matches_any("package.json", [])


@pytest.mark.parametrize(
    ("category", "path"),
    [
        ("typescript", "tsconfig.json"),
        ("ci-workflows", ".github/workflows/release.yml"),
        ("documentation", "docs/setup.md"),
        ("agent-instructions", "AGENTS.md"),
        ("git", ".gitattributes"),
        ("code-quality", "eslint.config.mjs"),
        ("package-management", "pnpm-lock.yaml"),
        ("vscode-settings", ".vscode/settings.json"),
        ("testing", ".github/workflows/test-unit.yml"),
        ("building", "vite.config.ts"),
    ],
)
def test_category_table(category: str, path: str) -> None:
    assert matches_any(path, category_patterns(category))


def test_category_table_covers_known_names() -> None:
    assert set(CATEGORY_PATTERNS) == {
        "typescript",
        "ci-workflows",
        "documentation",
        "agent-instructions",
        "git",
        "code-quality",
        "package-management",
        "vscode-settings",
        "testing",
        "building",
    }


def test_unknown_category_is_a_configuration_error() -> None:
    with pytest.raises(UnknownCategoryError) as exc_info:
        category_patterns("cobol")

    assert isinstance(exc_info.value, ConfigurationError)
