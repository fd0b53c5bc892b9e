"""Tests for the Cloud Storage download client"""

import json

import httpx
import pytest
from google.auth.exceptions import RefreshError
from google.oauth2.credentials import Credentials

from apt_gcs.gcs.storage import (
    FetchError,
    GcsBucketClient,
    ObjectDownload,
    ObjectNotFoundError,
)


def make_client(handler, credentials=None):
    http = httpx.Client(transport=httpx.MockTransport(handler))
    credentials = credentials if credentials is not None else Credentials(token="test-token")
    return GcsBucketClient(credentials, base_url="https://storage.example.com", http_client=http)


class ExpiredCredentials:
    valid = False

    def refresh(self, request):
        raise RefreshError("token revoked")

    def apply(self, headers):
        raise AssertionError("apply called without a valid token")


# TEST120: Test fetch requests the media endpoint with a bearer token
def test_fetch_request_shape():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, content=b"hello", headers={"Last-Modified": "Mon, 01 Jan 2024 00:00:00 GMT"})

    client = make_client(handler)

    with client.fetch("bucket1", "path/to/object") as download:
        body = b"".join(download.iter_bytes())

    request = seen[0]
    assert request.method == "GET"
    assert request.url.host == "storage.example.com"
    assert request.url.raw_path.startswith(b"/storage/v1/b/bucket1/o/path%2Fto%2Fobject")
    assert request.url.params["alt"] == "media"
    assert request.headers["authorization"] == "Bearer test-token"
    assert body == b"hello"
    assert download.size == 5
    assert download.last_modified == "Mon, 01 Jan 2024 00:00:00 GMT"


# TEST121: Test a missing Last-Modified header yields an empty string
def test_fetch_without_last_modified():
    client = make_client(lambda request: httpx.Response(200, content=b"", headers={"Content-Length": "0"}))

    download = client.fetch("b", "k")

    assert download.last_modified == ""
    assert download.size == 0
    download.close()


# TEST122: Test HTTP 404 raises ObjectNotFoundError with the API message
def test_fetch_not_found():
    error = {"error": {"code": 404, "message": "No such object: bucket1/missing"}}
    client = make_client(lambda request: httpx.Response(404, content=json.dumps(error).encode()))

    with pytest.raises(ObjectNotFoundError) as exc_info:
        client.fetch("bucket1", "missing")

    assert "No such object: bucket1/missing" in str(exc_info.value)


# TEST123: Test other HTTP errors raise FetchError with the status code
def test_fetch_forbidden():
    client = make_client(lambda request: httpx.Response(403, content=b"Access denied."))

    with pytest.raises(FetchError) as exc_info:
        client.fetch("bucket1", "key")

    assert not isinstance(exc_info.value, ObjectNotFoundError)
    assert "403" in str(exc_info.value)
    assert "Access denied." in str(exc_info.value)


# TEST124: Test transport errors raise FetchError
def test_fetch_transport_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(handler)

    with pytest.raises(FetchError):
        client.fetch("bucket1", "key")


# TEST125: Test token refresh failure is a FetchError, not a crash
def test_fetch_refresh_failure():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, content=b"")

    client = make_client(handler, credentials=ExpiredCredentials())
    client.auth_request = object()

    with pytest.raises(FetchError):
        client.fetch("bucket1", "key")

    assert calls == []


# TEST126: Test ObjectDownload.from_bytes reports its size and closes once
def test_object_download_from_bytes():
    closed = []
    download = ObjectDownload.from_bytes(b"abc", "Tue")
    download.on_close = lambda: closed.append(True)

    with download:
        assert list(download.iter_bytes()) == [b"abc"]

    download.close()
    assert download.size == 3
    assert download.last_modified == "Tue"
    assert closed == [True]


# TEST127: Test a response without Content-Length has an unknown size
def test_fetch_without_content_length():
    client = make_client(lambda request: httpx.Response(200, content=iter([b"ab", b"c"])))

    with client.fetch("b", "k") as download:
        body = b"".join(download.iter_bytes())

    assert download.size is None
    assert body == b"abc"


# TEST128: Test an HTML error body is folded onto one line
def test_fetch_error_body_single_line():
    client = make_client(lambda request: httpx.Response(502, content=b"<html>\n<body>Bad Gateway</body>\n</html>"))

    with pytest.raises(FetchError) as exc_info:
        client.fetch("b", "k")

    assert "\n" not in str(exc_info.value)
    assert "<html> <body>Bad Gateway</body> </html>" in str(exc_info.value)
