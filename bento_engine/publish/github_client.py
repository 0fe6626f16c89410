"""
GitHub REST client for the publish pipeline.

Only the calls the pipeline needs are implemented: repository info, contents
read/upsert, commit listing, Pages deployments and their statuses, and the rate
limit. Every non-2xx answer becomes a RepositoryApiError carrying the status.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping
from urllib.parse import quote, urlencode, urlparse

from ..errors import RepositoryApiError
from ..http import HttpResponse, HttpTransport, UrllibTransport

logger = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com"
PAGES_ENVIRONMENT = "github-pages"


@dataclass(frozen=True, slots=True)
class RepositoryRef:
    """An ``owner/repo`` pair."""

    owner: str
    repo: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


def parse_repository(value: str) -> RepositoryRef:
    """
    Parse a repository reference.

    Accepted forms: ``owner/repo``, ``https://github.com/owner/repo[...]`` and
    ``https://owner.github.io`` (which maps to ``owner/owner.github.io``).

    Raises
    ------
    ValueError
        If no owner and repository can be derived.
    """
    text = value.strip()
    parsed = urlparse(text)
    if parsed.scheme in {"http", "https"} and parsed.hostname:
        host = parsed.hostname.lower()
        if host.endswith(".github.io"):
            owner = host[: -len(".github.io")]
            return RepositoryRef(owner=owner, repo=f"{owner}.github.io")
        if host == "github.com":
            parts = [p for p in parsed.path.split("/") if p]
            if len(parts) >= 2:
                repo = parts[1][:-4] if parts[1].endswith(".git") else parts[1]
                return RepositoryRef(owner=parts[0], repo=repo)
    else:
        parts = text.split("/")
        if len(parts) == 2 and all(parts):
            return RepositoryRef(owner=parts[0], repo=parts[1])
    raise ValueError(
        "Invalid GitHub repository. Use: https://github.com/owner/repo or owner/repo"
    )


def pages_url(ref: RepositoryRef) -> str:
    """Return the public GitHub Pages URL of a repository."""
    if ref.repo.lower() == f"{ref.owner.lower()}.github.io":
        return f"https://{ref.owner}.github.io/"
    return f"https://{ref.owner}.github.io/{ref.repo}/"


@dataclass(frozen=True, slots=True)
class CommitInfo:
    """A commit as listed by the repository history."""

    sha: str
    message: str
    date: str
    author: str

    @property
    def short_sha(self) -> str:
        return self.sha[:7]


@dataclass(frozen=True, slots=True)
class GitHubClient:
    """
    Authenticated client for one repository.

    Parameters
    ----------
    ref:
        Target repository.
    token:
        Personal access token. Never logged or persisted.
    branch:
        Branch that receives the snapshot commit.
    transport:
        HTTP transport (urllib by default).
    """

    ref: RepositoryRef
    token: str = field(repr=False)
    branch: str = "main"
    transport: HttpTransport = field(default_factory=UrllibTransport)
    base_url: str = GITHUB_API_BASE

    @property
    def _repo_path(self) -> str:
        return f"/repos/{self.ref.owner}/{self.ref.repo}"

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"token {self.token}",
            "Accept": "application/vnd.github.v3+json",
        }

    def _request(self, method: str, endpoint: str, *, json_body: Any = None) -> Any:
        response: HttpResponse = self.transport.request(
            method, f"{self.base_url}{endpoint}", headers=self._headers(), json_body=json_body
        )
        if not response.ok:
            detail = ""
            if isinstance(response.body, Mapping):
                detail = str(response.body.get("message", ""))
            raise RepositoryApiError(
                f"GitHub API error ({response.status}): {detail or response.text[:200]}",
                status=response.status,
            )
        return response.body

    def get_repository(self) -> dict[str, Any]:
        """Return repository info (also validates the token)."""
        return dict(self._request("GET", self._repo_path) or {})

    def get_default_branch(self) -> str:
        return str(self.get_repository().get("default_branch") or "main")

    def get_file(self, path: str) -> dict[str, Any]:
        """
        Return the contents entry of a file on the configured branch.

        Raises
        ------
        RepositoryApiError
            With status 404 if the file does not exist.
        """
        query = urlencode({"ref": self.branch})
        return dict(self._request("GET", f"{self._repo_path}/contents/{quote(path)}?{query}") or {})

    def put_file(self, path: str, content: str, message: str, sha: str | None = None) -> dict[str, Any]:
        """Create or update a file. ``sha`` must match the current blob when updating."""
        body: dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            "branch": self.branch,
        }
        if sha:
            body["sha"] = sha
        return dict(self._request("PUT", f"{self._repo_path}/contents/{quote(path)}", json_body=body) or {})

    def upsert_file(self, path: str, content: str, message: str) -> dict[str, Any]:
        """
        Create ``path`` if absent, otherwise update it with the matching blob sha.

        Returns
        -------
        dict[str, Any]
            The provider response, including ``commit.sha``.
        """
        try:
            existing = self.get_file(path)
        except RepositoryApiError as exc:
            if exc.status != 404:
                raise
            logger.info("%s not present in %s; creating it", path, self.ref.full_name)
            return self.put_file(path, content, message)
        return self.put_file(path, content, message, sha=str(existing.get("sha") or "") or None)

    def list_commits(self, path: str | None = None, limit: int = 10) -> list[CommitInfo]:
        """List recent commits, optionally only those touching ``path``."""
        params: dict[str, Any] = {"per_page": limit, "sha": self.branch}
        if path:
            params["path"] = path
        raw = self._request("GET", f"{self._repo_path}/commits?{urlencode(params)}") or []
        commits: list[CommitInfo] = []
        for entry in raw:
            commit = entry.get("commit") or {}
            author = commit.get("author") or {}
            commits.append(
                CommitInfo(
                    sha=str(entry.get("sha", "")),
                    message=str(commit.get("message", "")),
                    date=str(author.get("date", "")),
                    author=str(author.get("name", "")),
                )
            )
        return commits

    def list_deployments(self, environment: str = PAGES_ENVIRONMENT, limit: int = 5) -> list[dict[str, Any]]:
        """List the most recent deployments of an environment."""
        query = urlencode({"environment": environment, "per_page": limit})
        return list(self._request("GET", f"{self._repo_path}/deployments?{query}") or [])

    def list_deployment_statuses(self, deployment_id: int | str) -> list[dict[str, Any]]:
        """List statuses of one deployment, newest first."""
        return list(self._request("GET", f"{self._repo_path}/deployments/{deployment_id}/statuses") or [])

    def get_rate_limit(self) -> dict[str, Any]:
        return dict(self._request("GET", "/rate_limit") or {})
