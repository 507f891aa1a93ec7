import pytest
import requests

from rnpatch.core.errors import DownloadFailure
from rnpatch.core.releases import GithubReleases, Release, ReleaseAsset, latest_release


class FakeResponse:
    def __init__(self, data, status=200):
        self.data = data
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")

    def json(self):
        return self.data


class FakeSession:
    def __init__(self, response):
        self.response = response
        self.urls = []

    def get(self, url, **kwargs):
        self.urls.append(url)
        return self.response


RELEASES = [
    {
        "tag_name": "v1",
        "created_at": "2023-01-01T00:00:00Z",
        "assets": [{"name": "classes.dex", "browser_download_url": "https://example.invalid/v1/classes.dex"}],
    },
    {
        "tag_name": "v3",
        "created_at": "2024-02-01T12:00:00Z",
        "assets": [{"name": "classes.dex", "browser_download_url": "https://example.invalid/v3/classes.dex"}],
    },
    {"tag_name": "v2", "created_at": "2023-07-01T00:00:00Z"},
]


def test_list_releases():
    session = FakeSession(FakeResponse(RELEASES))
    releases = GithubReleases(session=session).list_releases("owner/repo")

    assert session.urls == ["https://api.github.com/repos/owner/repo/releases"]
    assert [r.tag_name for r in releases] == ["v1", "v3", "v2"]
    assert releases[2].assets == []

    latest = latest_release(releases)
    assert latest.tag_name == "v3"
    assert latest.find_asset("classes.dex").url == "https://example.invalid/v3/classes.dex"


def test_list_releases_http_error():
    client = GithubReleases(session=FakeSession(FakeResponse({}, status=404)))
    with pytest.raises(DownloadFailure, match="owner/repo"):
        client.list_releases("owner/repo")


def test_list_releases_unexpected_payload():
    client = GithubReleases(session=FakeSession(FakeResponse([{"name": "no tag"}])))
    with pytest.raises(DownloadFailure):
        client.list_releases("owner/repo")


def test_latest_release_empty():
    with pytest.raises(DownloadFailure):
        latest_release([])


def test_missing_asset():
    release = Release("v1", "2023-01-01T00:00:00Z", [ReleaseAsset("other.aar", "https://x")])
    with pytest.raises(DownloadFailure, match="classes.dex"):
        release.find_asset("classes.dex")
