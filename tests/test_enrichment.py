from __future__ import annotations

from fakes import FakeTransport, ok, unreachable

from bento_engine.data_models import BentoItem, DualLayout, GridRect, ItemType
from bento_engine.publish.enrichment import enrich_items, language_color

GITHUB_REPO = "https://api.github.com/repos/ada/engine"


def _repo(owner: str, repo: str, **extra: object) -> BentoItem:
    return BentoItem(
        id=f"{owner}-{repo}",
        type=ItemType.REPOSITORY,
        content={"owner": owner, "repo": repo, "stars": 1, **extra},
        layout=DualLayout.from_wide(GridRect(0, 0, 2, 2)),
    )


def test_github_repository_is_refreshed() -> None:
    transport = FakeTransport()
    transport.add(
        "GET",
        GITHUB_REPO,
        ok({"description": "Analytical engine", "language": "Python", "stargazers_count": 42, "topics": ["math"]}),
    )
    progress: list[tuple[int, int, str]] = []
    text = BentoItem(
        id="t", type=ItemType.TEXT, content={"text": "hi"}, layout=DualLayout.from_wide(GridRect(2, 0, 1, 2))
    )

    items, summary = enrich_items(
        [text, _repo("ada", "engine")],
        token="secret",
        transport=transport,
        on_progress=lambda i, n, name: progress.append((i, n, name)),
    )

    assert items[0] is text
    content = items[1].content
    assert content["savedDescription"] == "Analytical engine"
    assert content["stars"] == 42
    assert content["languageColor"] == "#3572A5"
    assert content["topics"] == ["math"]
    assert (summary.attempted, summary.refreshed, summary.failed) == (1, 1, 0)
    assert progress == [(1, 1, "ada/engine")]
    assert transport.calls[0][2]["Authorization"] == "token secret"


def test_huggingface_dataset_uses_dataset_endpoint() -> None:
    url = "https://huggingface.co/api/datasets/ada%2Fnotes"
    transport = FakeTransport()
    transport.add("GET", url, ok({"downloads": 7, "likes": 3}))

    items, summary = enrich_items(
        [_repo("ada", "notes", platform="huggingface", category="dataset", savedDescription="kept")],
        token="t",
        transport=transport,
    )

    assert items[0].content["downloads"] == 7
    assert items[0].content["likes"] == 3
    assert items[0].content["savedDescription"] == "kept"
    assert summary.refreshed == 1
    assert transport.urls() == [url]


def test_failures_keep_existing_content() -> None:
    transport = FakeTransport()
    transport.add("GET", "https://api.github.com/repos/ada/gone", ok({}, status=404))
    transport.add("GET", "https://api.github.com/repos/ada/offline", unreachable("offline"))
    original = [_repo("ada", "gone"), _repo("ada", "offline")]

    items, summary = enrich_items(original, token="t", transport=transport)

    assert items == original
    assert (summary.attempted, summary.refreshed, summary.failed) == (2, 0, 2)


def test_language_color_fallback() -> None:
    assert language_color("Rust") == "#dea584"
    assert language_color("Brainfuck") == "#ededed"
    assert language_color(None) == "#ededed"
