import pytest
import requests

from rnpatch.core import downloader as downloader_module
from rnpatch.core.downloader import Downloader
from rnpatch.core.errors import DownloadFailure


class FakeResponse:
    def __init__(self, chunks, status=200):
        self.chunks = chunks
        self.status = status
        self.headers = {"content-length": str(sum(len(c) for c in chunks))}

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")

    def iter_content(self, chunk_size):
        yield from self.chunks


class FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def get(self, url, **kwargs):
        self.requests.append((url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr(downloader_module.time, "sleep", lambda seconds: None)


def make_downloader(tmp_path, responses, **kwargs):
    session = FakeSession(responses)
    return Downloader(tmp_path / "cache", "https://example.invalid/app?v={version}", session=session, **kwargs)


def test_download(tmp_path):
    downloader = make_downloader(tmp_path, [FakeResponse([b"abc", b"", b"def"])], timeout=5)

    path = downloader.download("https://example.invalid/file", "file.bin")

    assert path == tmp_path / "cache" / "file.bin"
    assert path.read_bytes() == b"abcdef"
    url, kwargs = downloader.session.requests[0]
    assert url == "https://example.invalid/file"
    assert kwargs["stream"] is True
    assert kwargs["timeout"] == 5


def test_download_apk_urls(tmp_path):
    downloader = make_downloader(tmp_path, [FakeResponse([b"base"]), FakeResponse([b"split"])])

    base = downloader.download_apk("126021")
    split = downloader.download_apk("126021", "config.en")

    assert base.name == "base-126021.apk"
    assert split.name == "config.en-126021.apk"
    assert [url for url, _ in downloader.session.requests] == [
        "https://example.invalid/app?v=126021",
        "https://example.invalid/app?v=126021&split=config.en",
    ]


def test_download_retries(tmp_path):
    downloader = make_downloader(tmp_path, [
        requests.ConnectionError("reset"),
        FakeResponse([], status=503),
        FakeResponse([b"ok"]),
    ])

    assert downloader.download("https://example.invalid/file", "file.bin").read_bytes() == b"ok"
    assert len(downloader.session.requests) == 3


def test_download_gives_up(tmp_path):
    downloader = make_downloader(tmp_path, [requests.ConnectionError("reset")] * 2, max_retries=2)

    with pytest.raises(DownloadFailure, match="file.bin"):
        downloader.download("https://example.invalid/file", "file.bin")
    assert list((tmp_path / "cache").iterdir()) == []
