"""apt-gcs - APT acquire method for Google Cloud Storage

This library implements the method side of APT's acquire protocol: APT starts
the method, exchanges line-oriented messages with it over stdin/stdout, and
the method downloads `gcs://bucket/object` URIs from Cloud Storage, writing
each object to the requested file and reporting its size and hashes.
"""

from apt_gcs.method.message import (
    Message,
    MessageCode,
    PROTOCOL_VERSION,
)

from apt_gcs.method.io import (
    MessageError,
    EncodeError,
    DecodeError,
    MalformedHeaderError,
    MalformedStatusLineError,
    encode_message,
    decode_message,
    read_message,
    write_message,
    MessageReader,
    MessageWriter,
)

from apt_gcs.config import ConfigState, ConfigStore, MethodSettings, parse_bool

from apt_gcs.gcs.auth import CredentialResolver, CredentialSource, CredentialsError
from apt_gcs.gcs.registry import ClientRegistry
from apt_gcs.gcs.storage import (
    BucketClient,
    FetchError,
    GcsBucketClient,
    ObjectDownload,
    ObjectNotFoundError,
)

from apt_gcs.acquire import (
    AcquisitionEngine,
    AcquisitionRequest,
    AcquisitionResult,
    InvalidUriError,
    MissingFieldError,
    RequestError,
    compute_digests,
)

from apt_gcs.method.runtime import (
    MethodRuntime,
    EXIT_OK,
    EXIT_CREDENTIALS_FAILURE,
    EXIT_UNSUPPORTED_MESSAGE,
)

__version__ = "0.1.0"

__all__ = [
    "Message",
    "MessageCode",
    "PROTOCOL_VERSION",
    "MessageError",
    "EncodeError",
    "DecodeError",
    "MalformedHeaderError",
    "MalformedStatusLineError",
    "encode_message",
    "decode_message",
    "read_message",
    "write_message",
    "MessageReader",
    "MessageWriter",
    "ConfigState",
    "ConfigStore",
    "MethodSettings",
    "parse_bool",
    "CredentialResolver",
    "CredentialSource",
    "CredentialsError",
    "ClientRegistry",
    "BucketClient",
    "FetchError",
    "GcsBucketClient",
    "ObjectDownload",
    "ObjectNotFoundError",
    "AcquisitionEngine",
    "AcquisitionRequest",
    "AcquisitionResult",
    "InvalidUriError",
    "MissingFieldError",
    "RequestError",
    "compute_digests",
    "MethodRuntime",
    "EXIT_OK",
    "EXIT_CREDENTIALS_FAILURE",
    "EXIT_UNSUPPORTED_MESSAGE",
]
