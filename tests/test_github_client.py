from __future__ import annotations

import base64

import pytest

from fakes import FakeTransport, ok

from bento_engine.errors import RepositoryApiError
from bento_engine.http import HttpResponse
from bento_engine.publish.github_client import GitHubClient, RepositoryRef, pages_url, parse_repository

API = "https://api.github.com/repos/ada/site"
CONTENTS = f"{API}/contents/profile-config.json"


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("ada/site", RepositoryRef("ada", "site")),
        ("https://github.com/ada/site", RepositoryRef("ada", "site")),
        ("https://github.com/ada/site.git", RepositoryRef("ada", "site")),
        ("https://github.com/ada/site/tree/main", RepositoryRef("ada", "site")),
        ("https://ada.github.io", RepositoryRef("ada", "ada.github.io")),
    ],
)
def test_parse_repository(value: str, expected: RepositoryRef) -> None:
    assert parse_repository(value) == expected


@pytest.mark.parametrize("value", ["", "ada", "a/b/c", "https://gitlab.com/ada/site"])
def test_parse_repository_rejects_garbage(value: str) -> None:
    with pytest.raises(ValueError, match="Invalid GitHub repository"):
        parse_repository(value)


def test_pages_url_for_user_and_project_sites() -> None:
    assert pages_url(RepositoryRef("ada", "ada.github.io")) == "https://ada.github.io/"
    assert pages_url(RepositoryRef("ada", "site")) == "https://ada.github.io/site/"


def test_upsert_creates_missing_file() -> None:
    transport = FakeTransport()
    transport.add("PUT", CONTENTS, ok({"commit": {"sha": "c1"}}, status=201))
    client = GitHubClient(RepositoryRef("ada", "site"), token="secret", transport=transport)

    response = client.upsert_file("profile-config.json", '{"a": 1}', "msg")

    assert response["commit"]["sha"] == "c1"
    method, url, headers, body = transport.calls[-1]
    assert (method, url) == ("PUT", CONTENTS)
    assert headers["Authorization"] == "token secret"
    assert "sha" not in body
    assert body["branch"] == "main"
    assert base64.b64decode(body["content"]).decode("utf-8") == '{"a": 1}'


def test_upsert_updates_with_existing_blob_sha() -> None:
    transport = FakeTransport()
    transport.add("GET", f"{CONTENTS}?ref=gh-pages", ok({"sha": "blob-1"}))
    transport.add("PUT", CONTENTS, ok({"commit": {"sha": "c2"}}))
    client = GitHubClient(RepositoryRef("ada", "site"), token="t", branch="gh-pages", transport=transport)

    client.upsert_file("profile-config.json", "{}", "msg")

    body = transport.calls[-1][3]
    assert body["sha"] == "blob-1"
    assert body["branch"] == "gh-pages"


def test_error_status_becomes_repository_api_error() -> None:
    transport = FakeTransport()
    transport.add("GET", API, HttpResponse(status=401, body={"message": "Bad credentials"}))
    client = GitHubClient(RepositoryRef("ada", "site"), token="t", transport=transport)

    with pytest.raises(RepositoryApiError, match="Bad credentials") as excinfo:
        client.get_repository()
    assert excinfo.value.status == 401

    with pytest.raises(RepositoryApiError):
        client.upsert_file("profile-config.json", "{}", "msg")


def test_list_commits_for_path() -> None:
    transport = FakeTransport()
    transport.add(
        "GET",
        f"{API}/commits?per_page=2&sha=main&path=profile-config.json",
        ok(
            [
                {
                    "sha": "abcdef123456",
                    "commit": {"message": "publish", "author": {"name": "Ada", "date": "2025-01-01T00:00:00Z"}},
                }
            ]
        ),
    )
    client = GitHubClient(RepositoryRef("ada", "site"), token="t", transport=transport)

    (commit,) = client.list_commits("profile-config.json", limit=2)
    assert commit.short_sha == "abcdef1"
    assert commit.author == "Ada"
    assert commit.message == "publish"


def test_rate_limit_introspection() -> None:
    transport = FakeTransport()
    transport.add("GET", "https://api.github.com/rate_limit", ok({"rate": {"remaining": 4999}}))
    client = GitHubClient(RepositoryRef("ada", "site"), token="t", transport=transport)

    assert client.get_rate_limit()["rate"]["remaining"] == 4999
