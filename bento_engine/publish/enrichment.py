"""
Repository metadata enrichment.

Before a snapshot is published, every repository card is refreshed from its
hosting platform so the static site never has to call an API. Requests run
strictly one after another. A card whose refresh fails keeps its current data.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Sequence
from urllib.parse import quote

from ..data_models import BentoItem, ItemType
from ..errors import PublishError
from ..http import HttpTransport

logger = logging.getLogger(__name__)

LANGUAGE_COLORS: dict[str, str] = {
    "JavaScript": "#f1e05a",
    "TypeScript": "#3178c6",
    "Python": "#3572A5",
    "Java": "#b07219",
    "C++": "#f34b7d",
    "C": "#555555",
    "Ruby": "#701516",
    "PHP": "#4F5D95",
    "Swift": "#ffac45",
    "Go": "#00ADD8",
    "Rust": "#dea584",
    "HTML": "#e34c26",
    "CSS": "#563d7c",
    "Shell": "#89e051",
    "Vue": "#41b883",
    "React": "#61dafb",
    "C#": "#178600",
    "Kotlin": "#A97BFF",
    "Dart": "#00B4AB",
    "Other": "#ededed",
}

GITHUB_REPO_URL = "https://api.github.com/repos/{owner}/{repo}"
HUGGINGFACE_URL = "https://huggingface.co/api/{kind}/{id}"

# Called with (index, total, "owner/repo") before each fetch.
ProgressCallback = Callable[[int, int, str], None]


def language_color(language: str | None) -> str:
    """Return the display color of a language (the ``Other`` color when unknown)."""
    return LANGUAGE_COLORS.get(language or "", LANGUAGE_COLORS["Other"])


@dataclass(frozen=True, slots=True)
class EnrichmentSummary:
    """Counts of a completed enrichment pass."""

    attempted: int
    refreshed: int
    failed: int


def is_enrichable(item: BentoItem) -> bool:
    """Return True for repository cards that name an owner and a repository."""
    return (
        item.type is ItemType.REPOSITORY
        and bool(item.content.get("owner"))
        and bool(item.content.get("repo"))
    )


def _github_fields(data: Mapping[str, Any], content: Mapping[str, Any]) -> dict[str, Any]:
    language = data.get("language") or ""
    return {
        "savedDescription": data.get("description") or content.get("savedDescription") or "",
        "language": language,
        "languageColor": language_color(language),
        "stars": data.get("stargazers_count", content.get("stars")),
        "topics": data.get("topics") or content.get("topics") or [],
    }


def _huggingface_fields(data: Mapping[str, Any], content: Mapping[str, Any]) -> dict[str, Any]:
    downloads = data.get("downloads")
    likes = data.get("likes")
    return {
        "savedDescription": data.get("description") or content.get("savedDescription") or "",
        "downloads": content.get("downloads") if downloads is None else downloads,
        "likes": content.get("likes") if likes is None else likes,
    }


def fetch_repository_fields(
    item: BentoItem,
    *,
    token: str,
    transport: HttpTransport,
) -> dict[str, Any] | None:
    """
    Fetch fresh metadata for one repository card.

    Returns
    -------
    dict[str, Any] | None
        Content fields to merge, or None when the platform answered with an
        error status.

    Raises
    ------
    PublishError
        If the platform could not be reached.
    """
    owner = str(item.content["owner"])
    repo = str(item.content["repo"])
    platform = str(item.content.get("platform") or "github")

    if platform == "huggingface":
        kind = "datasets" if item.content.get("category") == "dataset" else "models"
        url = HUGGINGFACE_URL.format(kind=kind, id=quote(f"{owner}/{repo}", safe=""))
        response = transport.request("GET", url)
        if not response.ok or not isinstance(response.body, Mapping):
            logger.debug("HuggingFace answered %s for %s/%s", response.status, owner, repo)
            return None
        return _huggingface_fields(response.body, item.content)

    url = GITHUB_REPO_URL.format(owner=quote(owner), repo=quote(repo))
    response = transport.request(
        "GET",
        url,
        headers={"Authorization": f"token {token}", "Accept": "application/vnd.github.v3+json"},
    )
    if not response.ok or not isinstance(response.body, Mapping):
        logger.debug("GitHub answered %s for %s/%s", response.status, owner, repo)
        return None
    return _github_fields(response.body, item.content)


def enrich_items(
    items: Sequence[BentoItem],
    *,
    token: str,
    transport: HttpTransport,
    on_progress: ProgressCallback | None = None,
) -> tuple[list[BentoItem], EnrichmentSummary]:
    """
    Refresh the metadata of every repository card, sequentially.

    Parameters
    ----------
    items:
        Items in snapshot order.
    token:
        GitHub token used for authenticated (higher rate limit) requests.
    transport:
        HTTP transport.
    on_progress:
        Optional progress callback.

    Returns
    -------
    tuple[list[BentoItem], EnrichmentSummary]
        Items in the same order (refreshed where possible) and the counts.
    """
    targets = [index for index, item in enumerate(items) if is_enrichable(item)]
    result = list(items)
    refreshed = 0
    failed = 0
    for position, index in enumerate(targets, start=1):
        item = result[index]
        name = f"{item.content['owner']}/{item.content['repo']}"
        if on_progress is not None:
            on_progress(position, len(targets), name)
        try:
            fields = fetch_repository_fields(item, token=token, transport=transport)
        except PublishError as exc:
            logger.warning("Failed to fetch metadata for %s: %s", name, exc)
            failed += 1
            continue
        if fields is None:
            failed += 1
            continue
        result[index] = item.with_content(fields)
        refreshed += 1
    return result, EnrichmentSummary(attempted=len(targets), refreshed=refreshed, failed=failed)
