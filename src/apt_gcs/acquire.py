"""URI Acquire handling

One URI Acquire (600) message becomes:

    Status -> URI Start -> URI Done      (object fetched and written)
    Status -> URI Failure                (bad request or fetch failed)

Status goes out before any network call so APT sees progress even while the
connection is being set up. Hashes are computed over the file as written, not
over the network stream.
"""

import hashlib
import os
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Optional, Tuple

from apt_gcs.gcs.registry import ClientRegistry
from apt_gcs.gcs.storage import FetchError
from apt_gcs.method.message import Message


WAITING_FOR_HEADERS = "Waiting for headers"

# Chunk size for hashing the written file
HASH_CHUNK_SIZE = 1024 * 1024

DIGEST_ALGORITHMS = ("md5", "sha1", "sha256", "sha512")


class RequestError(Exception):
    """Request cannot be served. Reported as URI Failure."""
    pass


class MissingFieldError(RequestError):
    """Required header missing from the request"""
    pass


class InvalidUriError(RequestError):
    """URI is not of the form scheme://bucket/key"""
    pass


@dataclass
class AcquisitionRequest:
    """A parsed URI Acquire message"""
    uri: str
    filename: str

    @classmethod
    def from_message(cls, message: Message) -> "AcquisitionRequest":
        """Parse a URI Acquire message

        Raises:
            MissingFieldError: If URI or Filename is missing
        """
        uri = message.get_field("URI")
        if uri is None:
            raise MissingFieldError("URI Acquire message has no URI")
        filename = message.get_field("Filename")
        if filename is None:
            raise MissingFieldError(f"URI Acquire message for {uri} has no Filename")
        return cls(uri=uri, filename=filename)

    def bucket_and_key(self) -> Tuple[str, str]:
        """Split scheme://bucket/key into (bucket, key)

        Raises:
            InvalidUriError: If there are fewer than 4 parts, or the bucket or
                key is empty
        """
        parts = self.uri.split("/", 3)
        if len(parts) < 4:
            raise InvalidUriError(f"Invalid URI {self.uri}: expected <scheme>://<bucket>/<object>")
        bucket, key = parts[2], parts[3]
        if not bucket or not key:
            raise InvalidUriError(f"Invalid URI {self.uri}: empty bucket or object name")
        return bucket, key


@dataclass
class AcquisitionResult:
    """Outcome of one acquisition"""
    uri: str
    size: int = 0
    last_modified: str = ""
    digests: Dict[str, str] = field(default_factory=dict)
    message: Optional[str] = None  # set on failure

    @property
    def succeeded(self) -> bool:
        return self.message is None

    @classmethod
    def failure(cls, uri: str, message: str) -> "AcquisitionResult":
        return cls(uri=uri, message=message)


def compute_digests(chunks: Iterable[bytes]) -> Dict[str, str]:
    """MD5, SHA-1, SHA-256 and SHA-512 of the concatenated chunks

    Returns:
        Lowercase hex digests keyed md5, md5sum, sha1, sha256, sha512.
        md5sum is the same value as md5.
    """
    hashers = {name: hashlib.new(name) for name in DIGEST_ALGORITHMS}
    for chunk in chunks:
        for hasher in hashers.values():
            hasher.update(chunk)

    digests = {name: hasher.hexdigest() for name, hasher in hashers.items()}
    digests["md5sum"] = digests["md5"]
    return digests


def _read_chunks(path: str) -> Iterable[bytes]:
    with open(path, "rb") as f:
        while True:
            chunk = f.read(HASH_CHUNK_SIZE)
            if not chunk:
                return
            yield chunk


def hash_file(path: str) -> Tuple[int, Dict[str, str]]:
    """Size and digests of a file on disk"""
    size = 0

    def counted():
        nonlocal size
        for chunk in _read_chunks(path):
            size += len(chunk)
            yield chunk

    digests = compute_digests(counted())
    return size, digests


class AcquisitionEngine:
    """Turns URI Acquire messages into reply sequences

    Holds no per-request state: every call to acquire() starts from scratch.
    """

    def __init__(
        self,
        registry: ClientRegistry,
        send: Callable[[Message], None],
        debug: Optional[Callable[[str], None]] = None,
    ):
        """Create an engine

        Args:
            registry: Lends a client per bucket
            send: Writes a reply message to APT
            debug: Receives diagnostic text
        """
        self.registry = registry
        self.send = send
        self.debug = debug if debug is not None else (lambda _text: None)

    def acquire(self, message: Message) -> AcquisitionResult:
        """Serve one URI Acquire message

        Request-level problems are reported with URI Failure and returned as a
        failed result.

        Raises:
            CredentialsError: If the bucket client cannot be created
        """
        uri = message.get_field("URI")
        if uri is not None:
            self.send(Message.status(uri, WAITING_FOR_HEADERS))

        try:
            request = AcquisitionRequest.from_message(message)
        except MissingFieldError as e:
            self.send(Message.uri_failure(uri, str(e)))
            return AcquisitionResult.failure(uri or "", str(e))

        try:
            bucket, key = request.bucket_and_key()
        except InvalidUriError as e:
            return self._fail(request, str(e))

        client = self.registry.get(bucket)

        try:
            download = client.fetch(bucket, key)
        except FetchError as e:
            return self._fail(request, str(e))

        with download:
            self.send(Message.uri_start(request.uri, download.size, download.last_modified))
            try:
                self._write(download, request.filename)
                size, digests = hash_file(request.filename)
            except FetchError as e:
                self._discard(request.filename)
                return self._fail(request, str(e))
            except OSError as e:
                self._discard(request.filename)
                return self._fail(request, f"Unable to write {request.filename}: {e}")

        self.debug(f"Fetched {request.uri} -> {request.filename} ({size} bytes)")
        self.send(Message.uri_done(request.uri, request.filename, size, download.last_modified, digests))
        return AcquisitionResult(
            uri=request.uri,
            size=size,
            last_modified=download.last_modified,
            digests=digests,
        )

    def _discard(self, filename: str) -> None:
        """Remove a partially written file"""
        try:
            os.unlink(filename)
        except FileNotFoundError:
            pass
        except OSError as e:
            self.debug(f"Unable to remove partial file {filename}: {e}")

    def _write(self, download, filename: str) -> None:
        with open(filename, "wb") as f:
            for chunk in download.iter_bytes():
                f.write(chunk)
            f.flush()
            os.fsync(f.fileno())

    def _fail(self, request: AcquisitionRequest, reason: str) -> AcquisitionResult:
        self.debug(f"Failed {request.uri}: {reason}")
        self.send(Message.uri_failure(request.uri, reason))
        return AcquisitionResult.failure(request.uri, reason)
