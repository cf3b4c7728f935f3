"""HTTP 归档下载与重试测试。"""

import pytest
import requests

from nvx.core.fetcher import HttpArchiveFetcher
from nvx.errors import FetchError
from nvx.utils.retry import RetryHandler


class FakeResponse:
    def __init__(self, status_code=200, body=b"", content_length=None, fail_after=None):
        self.status_code = status_code
        self._body = body
        self.headers = {}
        if content_length is not None:
            self.headers["content-length"] = str(content_length)
        self._fail_after = fail_after
        self.closed = False

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self._body), chunk_size):
            if self._fail_after is not None and i >= self._fail_after:
                raise requests.exceptions.ChunkedEncodingError("connection reset")
            yield self._body[i:i + chunk_size]

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} error", response=self)

    def close(self):
        self.closed = True


class FakeSession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def get(self, url, stream=False, timeout=None):
        self.requests.append((url, stream, timeout))
        result = self.responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def _fetcher(tmp_path, session, retry_count=2):
    fetcher = HttpArchiveFetcher(
        str(tmp_path / "downloads"),
        mirror_url="https://mirror.example/dist",
        timeout=30,
        retry_count=retry_count,
        arch="x64",
        session=session,
    )
    fetcher.retry_handler = RetryHandler(max_retries=retry_count, sleep=lambda delay: None)
    return fetcher


def test_build_url(tmp_path):
    fetcher = _fetcher(tmp_path, FakeSession())

    assert fetcher.build_url("20.11.1", "linux", "tarxz") == (
        "https://mirror.example/dist/v20.11.1/node-v20.11.1-linux-x64.tar.xz"
    )
    assert fetcher.build_url("18.20.0", "win", "zip") == (
        "https://mirror.example/dist/v18.20.0/node-v18.20.0-win-x64.zip"
    )


def test_open_stream_returns_response_and_length(tmp_path):
    response = FakeResponse(body=b"abc", content_length=3)
    session = FakeSession(response)

    stream, length = _fetcher(tmp_path, session).open_stream("20.11.1", "darwin", "tarxz")

    assert stream is response
    assert length == 3
    assert session.requests == [
        ("https://mirror.example/dist/v20.11.1/node-v20.11.1-darwin-x64.tar.xz", True, 30)
    ]


def test_open_stream_unknown_length(tmp_path):
    _, length = _fetcher(tmp_path, FakeSession(FakeResponse(body=b"abc"))).open_stream("1.2.3", "linux", "tarxz")
    assert length == 0


def test_not_found_fails_without_retry(tmp_path):
    session = FakeSession(FakeResponse(status_code=404))

    with pytest.raises(FetchError) as exc_info:
        _fetcher(tmp_path, session).open_stream("99.0.0", "linux", "tarxz")

    assert "404" in str(exc_info.value)
    assert len(session.requests) == 1


def test_server_error_is_retried(tmp_path):
    session = FakeSession(
        FakeResponse(status_code=503),
        requests.exceptions.ConnectionError("refused"),
        FakeResponse(body=b"ok", content_length=2),
    )

    stream, length = _fetcher(tmp_path, session).open_stream("20.11.1", "linux", "tarxz")

    assert length == 2
    assert len(session.requests) == 3


def test_retries_exhausted(tmp_path):
    session = FakeSession(*[FakeResponse(status_code=502) for _ in range(3)])

    with pytest.raises(FetchError):
        _fetcher(tmp_path, session, retry_count=2).open_stream("20.11.1", "linux", "tarxz")
    assert len(session.requests) == 3


def test_download_writes_archive(tmp_path):
    body = b"x" * 200_000
    progress = []
    session = FakeSession(FakeResponse(body=body, content_length=len(body)))

    path = _fetcher(tmp_path, session).download(
        "20.11.1", "linux", "tarxz", lambda done, total: progress.append((done, total))
    )

    assert path == str(tmp_path / "downloads" / "node-v20.11.1-linux-x64.tar.xz")
    with open(path, "rb") as f:
        assert f.read() == body
    assert progress[-1] == (len(body), len(body))
    assert not (tmp_path / "downloads" / "node-v20.11.1-linux-x64.tar.xz.part").exists()


def test_download_truncated_body_fails(tmp_path):
    session = FakeSession(FakeResponse(body=b"x" * 10, content_length=100))

    with pytest.raises(FetchError):
        _fetcher(tmp_path, session).download("20.11.1", "linux", "tarxz")

    assert list((tmp_path / "downloads").iterdir()) == []


def test_download_interrupted_stream_fails(tmp_path):
    response = FakeResponse(body=b"x" * 200_000, content_length=200_000, fail_after=65536)

    with pytest.raises(FetchError):
        _fetcher(tmp_path, FakeSession(response)).download("20.11.1", "linux", "tarxz")

    assert response.closed
    assert not (tmp_path / "downloads" / "node-v20.11.1-linux-x64.tar.xz").exists()


def test_retry_handler_does_not_retry_programming_errors():
    calls = []

    def boom():
        calls.append(1)
        raise ValueError("bad")

    with pytest.raises(ValueError):
        RetryHandler(max_retries=5, sleep=lambda delay: None).execute(boom)
    assert len(calls) == 1


def test_retry_delay_is_capped():
    handler = RetryHandler(base_delay=1.0, max_delay=5.0, backoff_factor=2.0, jitter=False)

    assert handler._calculate_delay(0) == 1.0
    assert handler._calculate_delay(2) == 4.0
    assert handler._calculate_delay(10) == 5.0
