"""Cloud Storage object download

Objects are downloaded through the JSON API media endpoint:

    GET {base_url}/storage/v1/b/{bucket}/o/{object}?alt=media

The response is streamed; nothing is buffered here beyond what httpx holds.
"""

import json
from typing import Any, Callable, Iterable, Iterator, Optional, Protocol
from urllib.parse import quote as url_encode

import httpx
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request as AuthRequest

from apt_gcs.config import DEFAULT_STORAGE_BASE_URL, DEFAULT_TIMEOUT
from apt_gcs.method.message import single_line


class FetchError(Exception):
    """Object could not be fetched. Reported for the request, not fatal."""
    pass


class ObjectNotFoundError(FetchError):
    """Bucket or object does not exist"""
    pass


class ObjectDownload:
    """An object body being downloaded, with its metadata"""

    def __init__(
        self,
        size: Optional[int],
        last_modified: str,
        chunks: Iterable[bytes],
        on_close: Optional[Callable[[], None]] = None,
    ):
        """Create a download

        Args:
            size: Content length, None when the server did not send one
            last_modified: Last-Modified header value, empty if absent
            chunks: Body chunks, consumed once
            on_close: Releases the underlying connection
        """
        self.size = size
        self.last_modified = last_modified
        self.chunks = chunks
        self.on_close = on_close

    @classmethod
    def from_bytes(cls, data: bytes, last_modified: str = "") -> "ObjectDownload":
        """Create a download of an in-memory body"""
        return cls(len(data), last_modified, [data])

    def iter_bytes(self) -> Iterator[bytes]:
        """Yield body chunks

        Raises:
            FetchError: If the transfer breaks off
        """
        for chunk in self.chunks:
            if chunk:
                yield chunk

    def close(self) -> None:
        if self.on_close is not None:
            self.on_close()
            self.on_close = None

    def __enter__(self) -> "ObjectDownload":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class BucketClient(Protocol):
    """Fetch capability bound to one set of credentials"""

    def fetch(self, bucket: str, key: str) -> ObjectDownload:
        """Start downloading an object.

        Raises: FetchError if the object cannot be fetched."""
        ...


def _error_detail(response: httpx.Response) -> str:
    """Best description of a failed response: the API error message if any"""
    text = response.text.strip()
    try:
        payload = json.loads(text)
        message = payload["error"]["message"]
        if isinstance(message, str) and message:
            return message
    except (ValueError, KeyError, TypeError):
        pass
    return single_line(text) or response.reason_phrase


class GcsBucketClient:
    """Downloads objects from Cloud Storage with google-auth credentials"""

    def __init__(
        self,
        credentials: Any,
        base_url: str = DEFAULT_STORAGE_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        http_client: Optional[httpx.Client] = None,
        auth_request: Optional[Any] = None,
    ):
        """Create a client

        Args:
            credentials: google.auth credentials
            base_url: Storage endpoint
            timeout: HTTP timeout in seconds (ignored when http_client is given)
            http_client: HTTP client to use
            auth_request: google.auth transport used to refresh tokens
        """
        self.credentials = credentials
        self.base_url = base_url.rstrip("/")
        self.http = http_client if http_client is not None else httpx.Client(timeout=timeout, follow_redirects=True)
        self.auth_request = auth_request

    def object_url(self, bucket: str, key: str) -> str:
        return f"{self.base_url}/storage/v1/b/{url_encode(bucket, safe='')}/o/{url_encode(key, safe='')}"

    def _auth_headers(self) -> dict:
        headers: dict = {}
        try:
            if not self.credentials.valid:
                if self.auth_request is None:
                    self.auth_request = AuthRequest()
                self.credentials.refresh(self.auth_request)
            self.credentials.apply(headers)
        except GoogleAuthError as e:
            raise FetchError(f"Authentication failed: {e}")
        return headers

    def fetch(self, bucket: str, key: str) -> ObjectDownload:
        """Start downloading gs://bucket/key

        Raises:
            ObjectNotFoundError: On HTTP 404
            FetchError: On any other failure
        """
        headers = self._auth_headers()
        request = self.http.build_request("GET", self.object_url(bucket, key), params={"alt": "media"}, headers=headers)

        try:
            response = self.http.send(request, stream=True)
        except httpx.HTTPError as e:
            raise FetchError(f"Request for gs://{bucket}/{key} failed: {e}")

        if not response.is_success:
            try:
                response.read()
                detail = _error_detail(response)
            except httpx.HTTPError as e:
                detail = str(e)
            finally:
                response.close()

            if response.status_code == 404:
                raise ObjectNotFoundError(f"gs://{bucket}/{key}: {detail}")
            raise FetchError(f"HTTP {response.status_code} for gs://{bucket}/{key}: {detail}")

        content_length = response.headers.get("content-length")
        size = int(content_length) if content_length is not None and content_length.isdigit() else None

        return ObjectDownload(
            size=size,
            last_modified=response.headers.get("last-modified", ""),
            chunks=self._stream(response, bucket, key),
            on_close=response.close,
        )

    def _stream(self, response: httpx.Response, bucket: str, key: str) -> Iterator[bytes]:
        try:
            for chunk in response.iter_bytes():
                yield chunk
        except httpx.HTTPError as e:
            raise FetchError(f"Download of gs://{bucket}/{key} interrupted: {e}")

    def close(self) -> None:
        self.http.close()


def gcs_client_factory(base_url: str = DEFAULT_STORAGE_BASE_URL, timeout: float = DEFAULT_TIMEOUT) -> Callable[[Any], GcsBucketClient]:
    """Client factory for ClientRegistry"""
    def factory(credentials: Any) -> GcsBucketClient:
        return GcsBucketClient(credentials, base_url=base_url, timeout=timeout)
    return factory
