from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from pathlib import Path
from typing import Protocol
from uuid import uuid4

from repoweaver.core.errors import SubdirectoryNotFoundError, TemplateFetchError
from repoweaver.core.github_urls import DEFAULT_REF, SourceLocation, parse_source_url
from repoweaver.schemas.weaver import TemplateSource
from repoweaver.services.github import GitHubClient, GitHubError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TemplateFile:
    path: str
    content: str


class TemplateFetcher(Protocol):
    async def fetch(self, source: TemplateSource) -> list[TemplateFile]: ...


def effective_ref(source: TemplateSource, location: SourceLocation) -> str:
    return source.branch or location.ref or DEFAULT_REF


def is_git_metadata(path: str) -> bool:
    return path == ".git" or path.startswith(".git/")


def scope_to_subdirectory(files: list[TemplateFile], sub_directory: str | None, *, source_name: str) -> list[TemplateFile]:
    if not sub_directory:
        return files
    prefix = f"{sub_directory.strip('/')}/"
    scoped = [
        TemplateFile(path=item.path[len(prefix) :], content=item.content)
        for item in files
        if item.path.startswith(prefix)
    ]
    if not scoped:
        raise SubdirectoryNotFoundError(f"template {source_name} has no files under {sub_directory!r}")
    return scoped


def files_by_path(files: list[TemplateFile]) -> dict[str, str]:
    return {item.path: item.content for item in files}


class RemoteTemplateFetcher:
    """Reads a template through the contents API, one request per directory and file."""

    def __init__(self, client: GitHubClient) -> None:
        self._client = client

    async def fetch(self, source: TemplateSource) -> list[TemplateFile]:
        location = parse_source_url(source.url)
        ref = effective_ref(source, location)
        root = source.sub_directory or ""
        try:
            files = await self._walk(location, root, ref)
        except GitHubError as exc:
            if exc.status_code == 404 and root:
                raise SubdirectoryNotFoundError(
                    f"template {source.name} has no directory {root!r} at {ref}"
                ) from exc
            raise

        files.sort(key=lambda item: item.path)
        logger.info(
            "template fetched mode=api source=%s repo=%s ref=%s files=%s",
            source.name,
            location.full_name,
            ref,
            len(files),
        )
        return scope_to_subdirectory(files, root or None, source_name=source.name)

    async def _walk(self, location: SourceLocation, path: str, ref: str) -> list[TemplateFile]:
        collected: list[TemplateFile] = []
        entries = await self._client.get_repository_contents(location.owner, location.repo, path, ref)
        for entry in entries:
            entry_path = str(entry.get("path") or "")
            if not entry_path or is_git_metadata(entry_path):
                continue
            entry_type = entry.get("type")
            if entry_type == "dir":
                collected.extend(await self._walk(location, entry_path, ref))
            elif entry_type == "file":
                try:
                    content = await self._client.get_file_content(location.owner, location.repo, entry_path, ref)
                except UnicodeDecodeError:
                    logger.info("template file skipped path=%s reason=non_utf8", entry_path)
                    continue
                if content is not None:
                    collected.append(TemplateFile(path=entry_path, content=content))
        return collected


class LocalCloneTemplateFetcher:
    """Shallow-clones a template into a scratch directory owned by the caller."""

    def __init__(self, scratch_dir: Path, *, git_executable: str = "git") -> None:
        self._scratch_dir = scratch_dir
        self._git_executable = git_executable

    async def fetch(self, source: TemplateSource) -> list[TemplateFile]:
        location = parse_source_url(source.url)
        ref = effective_ref(source, location)
        destination = self._scratch_dir / f"{location.repo}-{uuid4().hex[:8]}"
        await self._clone(location.clone_url, ref, destination)
        files = await asyncio.to_thread(_read_tree, destination)
        logger.info(
            "template fetched mode=clone source=%s repo=%s ref=%s files=%s",
            source.name,
            location.full_name,
            ref,
            len(files),
        )
        return scope_to_subdirectory(files, source.sub_directory, source_name=source.name)

    async def _clone(self, url: str, ref: str, destination: Path) -> None:
        process = await asyncio.create_subprocess_exec(
            self._git_executable,
            "clone",
            "--depth",
            "1",
            "--branch",
            ref,
            url,
            str(destination),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        _, stderr = await process.communicate()
        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            raise TemplateFetchError(f"git clone failed url={url} ref={ref}: {message}")


def _read_tree(root: Path) -> list[TemplateFile]:
    files: list[TemplateFile] = []
    for candidate in root.rglob("*"):
        if not candidate.is_file():
            continue
        relative = candidate.relative_to(root).as_posix()
        if is_git_metadata(relative):
            continue
        try:
            content = candidate.read_bytes().decode("utf-8")
        except UnicodeDecodeError:
            logger.info("template file skipped path=%s reason=non_utf8", relative)
            continue
        files.append(TemplateFile(path=relative, content=content))
    files.sort(key=lambda item: item.path)
    return files
