from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from functools import lru_cache

from repoweaver.core.errors import UnknownCategoryError

CATEGORY_TABLE_VERSION = 1
CATEGORY_PATTERNS: dict[str, tuple[str, ...]] = {
    "typescript": ("tsconfig.json", "tsconfig.*.json"),
    "ci-workflows": (".github/workflows/**",),
    "documentation": ("README.md", "docs/**", "*.md"),
    "agent-instructions": ("AGENTS.md",),
    "git": (".gitignore", ".gitattributes", ".gitmodules"),
    "code-quality": (".eslintrc*", "eslint.config.*", ".prettierrc*", ".editorconfig"),
    "package-management": ("package.json", "pnpm-lock.yaml", "yarn.lock", "package-lock.json", ".npmrc"),
    "vscode-settings": (".vscode/**",),
    "testing": ("jest.config.*", "vitest.config.*", "*.test.*", "*.spec.*", "tests/**", ".github/workflows/test*"),
    "building": (
        "webpack.*",
        "rollup.config.*",
        "vite.config.*",
        "tsup.config.*",
        "esbuild.*",
        "babel.config.*",
        ".github/workflows/build*",
        "dist/**",
        "build/**",
    ),
}


@dataclass(frozen=True, slots=True)
class Matcher:
    pattern: str
    regex: re.Pattern[str]
    basename_only: bool

    def test(self, path: str) -> bool:
        candidate = normalize_path(path)
        if self.basename_only:
            candidate = candidate.rsplit("/", maxsplit=1)[-1]
        return self.regex.fullmatch(candidate) is not None


def normalize_path(path: str) -> str:
    normalized = path.replace("\\", "/").strip()
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized.lstrip("/")


@lru_cache(maxsize=1024)
def compile_pattern(pattern: str) -> Matcher:
    """Compile a glob into an anchored matcher.

    ``*`` stays within one path segment, ``**`` crosses separators and ``**/``
    also matches zero directories. Patterns without a ``/`` are matched against
    the file name only, so ``*.md`` applies at any depth.
    """
    normalized = normalize_path(pattern)
    return Matcher(
        pattern=pattern,
        regex=re.compile(_translate(normalized)),
        basename_only="/" not in normalized,
    )


def matches_any(path: str, patterns: Iterable[str]) -> bool:
    return any(compile_pattern(pattern).test(path) for pattern in patterns)


def category_patterns(category: str) -> tuple[str, ...]:
    try:
        return CATEGORY_PATTERNS[category]
    except KeyError as exc:
        raise UnknownCategoryError(f"unknown file category: {category}") from exc


def _translate(pattern: str) -> str:
    parts: list[str] = []
    index = 0
    while index < len(pattern):
        if pattern.startswith("**/", index):
            parts.append("(?:.*/)?")
            index += 3
        elif pattern.startswith("**", index):
            parts.append(".*")
            index += 2
        elif pattern[index] == "*":
            parts.append("[^/]*")
            index += 1
        else:
            parts.append(re.escape(pattern[index]))
            index += 1
    return "".join(parts)
