from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx

from .config import DEFAULT_GITHUB_API_URL, DEFAULT_TIMEOUT_S

logger = logging.getLogger(__name__)

DEFAULT_BRANCH_CANDIDATES = ("main", "master")


class SkillStudioError(RuntimeError):
    pass


@dataclass(frozen=True)
class SkillStudioHTTPError(SkillStudioError):
    status_code: int
    body: str

    def __str__(self) -> str:  # pragma: no cover
        return f"HTTP {self.status_code}: {self.body}"


class GitHubClient:
    """
    Minimal GitHub REST client. Only used for metadata lookups (branch discovery);
    repository content always travels through git.
    """

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_GITHUB_API_URL,
        token: str | None = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        default_headers: dict[str, str] | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout_s = timeout_s
        self._default_headers = {"Accept": "application/vnd.github+json"}
        self._default_headers.update(default_headers or {})

        self._http = httpx.Client(timeout=timeout_s, follow_redirects=True)

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "GitHubClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def request(
        self,
        *,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        auth: bool = True,
    ) -> httpx.Response:
        if path.startswith(("http://", "https://")):
            url = path
        else:
            if not path.startswith("/"):
                path = "/" + path
            url = f"{self.base_url}{path}"

        req_headers = dict(self._default_headers)
        if headers:
            req_headers.update(headers)
        if auth and self.token:
            req_headers["Authorization"] = f"Bearer {self.token}"

        try:
            resp = self._http.request(method.upper(), url, params=params, headers=req_headers)
        except httpx.HTTPError as e:
            raise SkillStudioError(f"Request failed: {e}") from e

        if resp.status_code >= 400:
            raise SkillStudioHTTPError(resp.status_code, resp.text)
        return resp

    def branch_exists(self, owner: str, repo: str, branch: str) -> bool:
        path = f"/repos/{quote(owner, safe='')}/{quote(repo, safe='')}/branches/{quote(branch, safe='')}"
        try:
            self.request(method="GET", path=path)
        except SkillStudioHTTPError as e:
            if e.status_code == 404:
                return False
            raise
        return True

    def resolve_branch(
        self,
        owner: str,
        repo: str,
        candidates: tuple[str, ...] = DEFAULT_BRANCH_CANDIDATES,
    ) -> str | None:
        """Return the first candidate branch that exists on the remote, or None when none does."""
        for branch in candidates:
            if self.branch_exists(owner, repo, branch):
                return branch
        return None
