from __future__ import annotations

import asyncio
import base64
from collections.abc import Awaitable, Callable
import logging
import time
from typing import Any
from urllib.parse import quote

import httpx

from repoweaver.core.config import Settings
from repoweaver.core.errors import WeaverError

logger = logging.getLogger(__name__)

GITHUB_API_VERSION = "2022-11-28"
RAW_MEDIA_TYPE = "application/vnd.github.raw"
RETRYABLE_STATUS_CODES = {500, 502, 503, 504}
MAX_RETRY_DELAY_SECONDS = 60.0


class GitHubError(WeaverError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class GitHubClient:
    """Thin async client over the GitHub REST API with retry on 5xx and rate limits."""

    def __init__(
        self,
        *,
        base_url: str = "https://api.github.com",
        token: str | None = None,
        timeout_seconds: float = 30.0,
        max_retries: int = 3,
        retry_base_seconds: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
            "User-Agent": "repoweaver",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout_seconds,
            transport=transport,
        )
        self._max_retries = max(0, max_retries)
        self._retry_base_seconds = retry_base_seconds
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> GitHubClient:
        token = settings.github_token.get_secret_value() if settings.github_token else None
        return cls(
            base_url=settings.github_api_url,
            token=token,
            timeout_seconds=settings.github_timeout_seconds,
            max_retries=settings.github_max_retries,
            retry_base_seconds=settings.github_retry_base_seconds,
            **kwargs,
        )

    async def __aenter__(self) -> GitHubClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def get_repository(self, owner: str, repo: str) -> dict[str, Any]:
        return await self._request_json("GET", f"/repos/{owner}/{repo}")

    async def get_repository_contents(
        self,
        owner: str,
        repo: str,
        path: str = "",
        ref: str | None = None,
    ) -> list[dict[str, Any]]:
        params = {"ref": ref} if ref else None
        payload = await self._request_json("GET", _contents_path(owner, repo, path), params=params)
        if isinstance(payload, dict):
            return [payload]
        return list(payload)

    async def get_file_content(self, owner: str, repo: str, path: str, ref: str | None = None) -> str | None:
        """Return decoded file text, or ``None`` when the path does not exist or is not a file."""
        entry = await self._get_file_entry(owner, repo, path, ref)
        if entry is None:
            return None
        if entry.get("encoding", "base64") != "base64":
            # files over 1 MB come back with encoding "none" and no inline content
            return await self._get_raw_file(owner, repo, path, ref)
        return decode_content(entry)

    async def create_or_update_file(
        self,
        owner: str,
        repo: str,
        path: str,
        content: str,
        message: str,
        branch: str,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            "branch": branch,
        }
        existing = await self._get_file_entry(owner, repo, path, branch)
        if existing is not None and existing.get("sha"):
            body["sha"] = existing["sha"]
        return await self._request_json("PUT", _contents_path(owner, repo, path), json=body)

    async def create_branch(self, owner: str, repo: str, branch: str, from_ref: str) -> dict[str, Any]:
        ref = await self._request_json("GET", f"/repos/{owner}/{repo}/git/ref/heads/{quote(from_ref, safe='/')}")
        sha = ref.get("object", {}).get("sha")
        if not sha:
            raise GitHubError(f"could not resolve {owner}/{repo}@{from_ref}")
        return await self._request_json(
            "POST",
            f"/repos/{owner}/{repo}/git/refs",
            json={"ref": f"refs/heads/{branch}", "sha": sha},
        )

    async def create_pull_request(
        self,
        owner: str,
        repo: str,
        *,
        title: str,
        head: str,
        base: str,
        body: str,
    ) -> dict[str, Any]:
        return await self._request_json(
            "POST",
            f"/repos/{owner}/{repo}/pulls",
            json={"title": title, "head": head, "base": base, "body": body},
        )

    async def get_rate_limit_status(self) -> dict[str, Any]:
        payload = await self._request_json("GET", "/rate_limit")
        core = payload.get("resources", {}).get("core") or payload.get("rate") or {}
        return {
            "limit": core.get("limit"),
            "remaining": core.get("remaining"),
            "reset": core.get("reset"),
            "used": core.get("used"),
        }

    async def _get_file_entry(self, owner: str, repo: str, path: str, ref: str | None) -> dict[str, Any] | None:
        params = {"ref": ref} if ref else None
        response = await self._request("GET", _contents_path(owner, repo, path), params=params, allow_not_found=True)
        if response.status_code == 404:
            return None
        payload = response.json()
        if not isinstance(payload, dict) or payload.get("type") != "file":
            return None
        return payload

    async def _get_raw_file(self, owner: str, repo: str, path: str, ref: str | None) -> str:
        params = {"ref": ref} if ref else None
        response = await self._request(
            "GET",
            _contents_path(owner, repo, path),
            params=params,
            headers={"Accept": RAW_MEDIA_TYPE},
        )
        return response.content.decode("utf-8")

    async def _request_json(self, method: str, url: str, **kwargs: Any) -> Any:
        response = await self._request(method, url, **kwargs)
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    async def _request(
        self,
        method: str,
        url: str,
        *,
        allow_not_found: bool = False,
        **kwargs: Any,
    ) -> httpx.Response:
        attempt = 0
        while True:
            try:
                response = await self._client.request(method, url, **kwargs)
            except httpx.TransportError as exc:
                if attempt >= self._max_retries:
                    raise GitHubError(f"GitHub request failed method={method} url={url}: {exc}") from exc
                delay = self._backoff_delay(attempt)
                logger.warning(
                    "github transport error method=%s url=%s attempt=%s retry_in=%.2fs error=%s",
                    method,
                    url,
                    attempt + 1,
                    delay,
                    exc,
                )
                attempt += 1
                await self._sleep(delay)
                continue

            if response.status_code == 404 and allow_not_found:
                return response
            if response.is_success:
                return response

            retry_delay = self._retry_delay(response, attempt)
            if retry_delay is not None and attempt < self._max_retries:
                logger.warning(
                    "github request retry method=%s url=%s status=%s attempt=%s retry_in=%.2fs",
                    method,
                    url,
                    response.status_code,
                    attempt + 1,
                    retry_delay,
                )
                attempt += 1
                await self._sleep(retry_delay)
                continue

            raise GitHubError(
                f"GitHub API error method={method} url={url} status={response.status_code}: {_error_message(response)}",
                status_code=response.status_code,
            )

    def _retry_delay(self, response: httpx.Response, attempt: int) -> float | None:
        if response.status_code in RETRYABLE_STATUS_CODES:
            return self._backoff_delay(attempt)
        if response.status_code == 429 or (
            response.status_code == 403 and response.headers.get("x-ratelimit-remaining") == "0"
        ):
            return self._rate_limit_delay(response, attempt)
        return None

    def _backoff_delay(self, attempt: int) -> float:
        return min(self._retry_base_seconds * (2**attempt), MAX_RETRY_DELAY_SECONDS)

    def _rate_limit_delay(self, response: httpx.Response, attempt: int) -> float:
        retry_after = _parse_float(response.headers.get("retry-after"))
        if retry_after is not None:
            return min(max(retry_after, 0.0), MAX_RETRY_DELAY_SECONDS)
        reset_at = _parse_float(response.headers.get("x-ratelimit-reset"))
        if reset_at is not None:
            return min(max(reset_at - time.time(), 0.0), MAX_RETRY_DELAY_SECONDS)
        return self._backoff_delay(attempt)


def decode_content(entry: dict[str, Any]) -> str:
    raw = entry.get("content") or ""
    return base64.b64decode(raw).decode("utf-8")


def _contents_path(owner: str, repo: str, path: str) -> str:
    cleaned = quote(path.strip("/"), safe="/")
    if not cleaned:
        return f"/repos/{owner}/{repo}/contents"
    return f"/repos/{owner}/{repo}/contents/{cleaned}"


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(payload, dict) and isinstance(payload.get("message"), str):
        return payload["message"]
    return response.text[:200]


def _parse_float(raw: str | None) -> float | None:
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError:
        return None
