"""Credential sources for Cloud Storage clients

Sources are tried in a fixed order and the first one available wins:

1. CONFIGURED_FILE: Acquire::<scheme>::<bucket>::CredentialsFile, if the file exists
2. ACCESS_TOKEN_FILE: the well-known bearer token file, if it exists
3. SERVICE_ACCOUNT_FILE: the well-known service account key, if it exists
4. APPLICATION_DEFAULT: whatever google.auth.default() finds

The existence check and the loaders are injectable so tests never touch the
real filesystem or metadata server.
"""

import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional

import google.auth
from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account
from google.oauth2.credentials import Credentials as TokenCredentials

from apt_gcs.config import MethodSettings


READ_ONLY_SCOPE = "https://www.googleapis.com/auth/devstorage.read_only"


class CredentialsError(Exception):
    """No usable credentials could be produced

    Fatal for the session: without credentials no later request can succeed.
    """
    pass


class CredentialSource(Enum):
    """Where credentials come from, in priority order"""
    CONFIGURED_FILE = "configured-file"
    ACCESS_TOKEN_FILE = "access-token-file"
    SERVICE_ACCOUNT_FILE = "service-account-file"
    APPLICATION_DEFAULT = "application-default"


@dataclass
class ResolvedSource:
    """The selected credential source"""
    source: CredentialSource
    path: Optional[str] = None

    def describe(self) -> str:
        if self.path is None:
            return self.source.value
        return f"{self.source.value} ({self.path})"


def load_service_account(path: Optional[str]) -> Any:
    """Load a service account JSON key"""
    try:
        return service_account.Credentials.from_service_account_file(path, scopes=[READ_ONLY_SCOPE])
    except (OSError, ValueError, GoogleAuthError) as e:
        raise CredentialsError(f"Invalid credentials file {path}: {e}")


def load_access_token(path: Optional[str]) -> Any:
    """Load a bearer token from a file"""
    try:
        with open(path, "r") as f:
            token = f.read().strip()
    except OSError as e:
        raise CredentialsError(f"Unable to read access token file {path}: {e}")

    if not token:
        raise CredentialsError(f"Access token file {path} is empty")

    return TokenCredentials(token=token)


def load_application_default(path: Optional[str] = None) -> Any:
    """Load application default credentials"""
    try:
        credentials, _project = google.auth.default(scopes=[READ_ONLY_SCOPE])
    except GoogleAuthError as e:
        raise CredentialsError(f"Unable to get default credentials: {e}")
    return credentials


DEFAULT_LOADERS: Dict[CredentialSource, Callable[[Optional[str]], Any]] = {
    CredentialSource.CONFIGURED_FILE: load_service_account,
    CredentialSource.ACCESS_TOKEN_FILE: load_access_token,
    CredentialSource.SERVICE_ACCOUNT_FILE: load_service_account,
    CredentialSource.APPLICATION_DEFAULT: load_application_default,
}


class CredentialResolver:
    """Selects and loads the credential source for a bucket"""

    def __init__(
        self,
        settings: Optional[MethodSettings] = None,
        exists: Optional[Callable[[str], bool]] = None,
        loaders: Optional[Mapping[CredentialSource, Callable[[Optional[str]], Any]]] = None,
    ):
        """Create a resolver

        Args:
            settings: Supplies the well-known file locations
            exists: File existence check (defaults to os.path.isfile)
            loaders: Per-source loaders, merged over DEFAULT_LOADERS
        """
        self.settings = settings if settings is not None else MethodSettings()
        self.exists = exists if exists is not None else os.path.isfile
        self.loaders = dict(DEFAULT_LOADERS)
        if loaders is not None:
            self.loaders.update(loaders)

    def select(self, bucket: str, credentials: Mapping[str, str]) -> ResolvedSource:
        """Pick the first available source for a bucket"""
        configured = credentials.get(bucket)
        if configured and self.exists(configured):
            return ResolvedSource(CredentialSource.CONFIGURED_FILE, configured)

        if self.settings.access_token_file and self.exists(self.settings.access_token_file):
            return ResolvedSource(CredentialSource.ACCESS_TOKEN_FILE, self.settings.access_token_file)

        if self.settings.service_account_file and self.exists(self.settings.service_account_file):
            return ResolvedSource(CredentialSource.SERVICE_ACCOUNT_FILE, self.settings.service_account_file)

        return ResolvedSource(CredentialSource.APPLICATION_DEFAULT)

    def load(self, resolved: ResolvedSource) -> Any:
        """Load credentials from the selected source

        Raises:
            CredentialsError: If the source cannot produce credentials
        """
        loader = self.loaders[resolved.source]
        return loader(resolved.path)
