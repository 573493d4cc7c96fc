import re
from dataclasses import dataclass

from repoweaver.core.errors import InvalidSourceUrlError

DEFAULT_REF = "main"

_GITHUB_URL_RE = re.compile(
    r"^(?:https?://(?:www\.)?github\.com/|git@github\.com:|ssh://git@github\.com/)"
    r"(?P<owner>[A-Za-z0-9_.-]+)/(?P<repo>[A-Za-z0-9_.-]+?)(?:\.git)?"
    r"(?:/tree/(?P<ref>[^?#]+?))?/?$"
)
_SHORTHAND_RE = re.compile(r"^(?P<owner>[A-Za-z0-9_.-]+)/(?P<repo>[A-Za-z0-9_.-]+?)(?:\.git)?$")


@dataclass(frozen=True, slots=True)
class SourceLocation:
    owner: str
    repo: str
    ref: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def clone_url(self) -> str:
        return f"https://github.com/{self.owner}/{self.repo}.git"


def parse_source_url(url: str) -> SourceLocation:
    """Parse https, ssh, ``/tree/<ref>`` and ``owner/repo`` forms."""
    candidate = url.strip()
    match = _GITHUB_URL_RE.match(candidate) or _SHORTHAND_RE.match(candidate)
    if not match:
        raise InvalidSourceUrlError(f"invalid GitHub repository URL: {url!r}")
    ref = match.groupdict().get("ref")
    return SourceLocation(owner=match["owner"], repo=match["repo"], ref=ref or None)


def repo_name_from_url(url: str) -> str:
    try:
        return parse_source_url(url).repo
    except InvalidSourceUrlError:
        tail = url.rstrip("/").rsplit("/", maxsplit=1)[-1]
        return tail.removesuffix(".git") or "unknown"


def same_repository(url: str, full_name: str) -> bool:
    try:
        location = parse_source_url(url)
    except InvalidSourceUrlError:
        return False
    return location.full_name.lower() == full_name.strip().lower().removesuffix(".git")
