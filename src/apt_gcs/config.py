"""Method configuration

Two layers:

- `MethodSettings`: process-level settings (URI scheme, well-known credential
  file locations, storage endpoint), taken from arguments, then environment
  variables, then defaults.
- `ConfigStore`: the protocol-level configuration APT pushes with a
  Configuration (601) message.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Optional

from apt_gcs.method.message import Message


DEFAULT_SCHEME = "gcs"
DEFAULT_ACCESS_TOKEN_FILE = "/etc/apt/gcs_access_token"
DEFAULT_SERVICE_ACCOUNT_FILE = "/etc/apt/gcs_sa_json"
DEFAULT_STORAGE_BASE_URL = "https://storage.googleapis.com"
DEFAULT_TIMEOUT = 60.0

TRUE_TOKENS = frozenset({"yes", "true", "with", "on", "enable", "1"})
FALSE_TOKENS = frozenset({"no", "false", "without", "off", "disable", "0"})


def parse_bool(token: str) -> Optional[bool]:
    """Parse an APT boolean token, None if the token is not recognized"""
    if token in TRUE_TOKENS:
        return True
    if token in FALSE_TOKENS:
        return False
    return None


class MethodSettings:
    """Settings for the method process

    Supports configuration via:
    1. Constructor arguments and builder methods (highest priority)
    2. Environment variables (APT_GCS_SCHEME, APT_GCS_ACCESS_TOKEN_FILE,
       APT_GCS_SERVICE_ACCOUNT_FILE, APT_GCS_STORAGE_URL, APT_GCS_TIMEOUT)
    3. Default values
    """

    def __init__(
        self,
        scheme: Optional[str] = None,
        access_token_file: Optional[str] = None,
        service_account_file: Optional[str] = None,
        storage_base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        """Create method settings

        Args:
            scheme: URI scheme APT routes to this method (Acquire::<scheme>::...)
            access_token_file: Well-known file holding a bearer token
            service_account_file: Well-known service account JSON key
            storage_base_url: Cloud Storage endpoint
            timeout: HTTP timeout in seconds
        """
        if scheme is None:
            scheme = os.getenv("APT_GCS_SCHEME", DEFAULT_SCHEME)

        if access_token_file is None:
            access_token_file = os.getenv("APT_GCS_ACCESS_TOKEN_FILE", DEFAULT_ACCESS_TOKEN_FILE)

        if service_account_file is None:
            service_account_file = os.getenv("APT_GCS_SERVICE_ACCOUNT_FILE", DEFAULT_SERVICE_ACCOUNT_FILE)

        if storage_base_url is None:
            storage_base_url = os.getenv("APT_GCS_STORAGE_URL", DEFAULT_STORAGE_BASE_URL)

        if timeout is None:
            timeout = float(os.getenv("APT_GCS_TIMEOUT", DEFAULT_TIMEOUT))

        self.scheme = scheme
        self.access_token_file = access_token_file
        self.service_account_file = service_account_file
        self.storage_base_url = storage_base_url.rstrip("/")
        self.timeout = timeout

    def with_scheme(self, scheme: str) -> "MethodSettings":
        """Set the URI scheme"""
        self.scheme = scheme
        return self

    def with_access_token_file(self, path: str) -> "MethodSettings":
        """Set the well-known access token file"""
        self.access_token_file = path
        return self

    def with_service_account_file(self, path: str) -> "MethodSettings":
        """Set the well-known service account key file"""
        self.service_account_file = path
        return self

    def with_storage_base_url(self, url: str) -> "MethodSettings":
        """Set the Cloud Storage endpoint"""
        self.storage_base_url = url.rstrip("/")
        return self

    def with_timeout(self, timeout: float) -> "MethodSettings":
        """Set the HTTP timeout in seconds"""
        self.timeout = timeout
        return self


@dataclass
class ConfigState:
    """Protocol configuration for the rest of the session"""
    debugging: bool = False
    credentials: Dict[str, str] = field(default_factory=dict)  # bucket -> credentials file


class ConfigStore:
    """Interprets Configuration messages

    Each Configuration message is a complete snapshot: the credentials mapping
    is replaced, never merged. The debug flag carries over when a message does
    not set it to a recognized value.
    """

    def __init__(self, scheme: str = DEFAULT_SCHEME):
        self.scheme = scheme
        self.state = ConfigState()

    @property
    def debugging(self) -> bool:
        return self.state.debugging

    @property
    def credentials(self) -> Dict[str, str]:
        return self.state.credentials

    def apply(self, message: Message) -> ConfigState:
        """Apply the Config-Item headers of a Configuration message

        Recognized items:
        - Debug::Acquire::<scheme>=<bool>
        - Acquire::<scheme>::<bucket>::CredentialsFile=<path>

        Anything else, including items without '=', is skipped.

        Returns:
            The new state
        """
        debug_prefix = f"Debug::Acquire::{self.scheme}"
        acquire_prefix = f"Acquire::{self.scheme}::"

        debugging = self.state.debugging
        credentials: Dict[str, str] = {}

        for item in message.get_fields("Config-Item"):
            key, sep, value = item.partition("=")
            if not sep:
                continue

            if key.startswith(debug_prefix):
                parsed = parse_bool(value)
                if parsed is not None:
                    debugging = parsed

            if key.startswith(acquire_prefix):
                # Acquire::<scheme>::<bucket>::CredentialsFile
                parts = key.split("::")[2:]
                if len(parts) == 2 and parts[1] == "CredentialsFile":
                    credentials[parts[0]] = value

        self.state = ConfigState(debugging=debugging, credentials=credentials)
        return self.state
