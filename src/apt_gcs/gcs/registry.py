"""Per-bucket client registry

One authenticated client is built per bucket and reused for the rest of the
session. The registry is owned by the method runtime and lent to the
acquisition engine.
"""

from typing import Any, Callable, Dict, Optional

from apt_gcs.config import ConfigStore
from apt_gcs.gcs.auth import CredentialResolver
from apt_gcs.gcs.storage import BucketClient


class ClientRegistry:
    """Memoized bucket clients"""

    def __init__(
        self,
        resolver: CredentialResolver,
        config: ConfigStore,
        client_factory: Callable[[Any], BucketClient],
        debug: Optional[Callable[[str], None]] = None,
    ):
        """Create a registry

        Args:
            resolver: Picks and loads credentials for a bucket
            config: Current protocol configuration (per-bucket credential files)
            client_factory: Builds a client from loaded credentials
            debug: Receives diagnostic text
        """
        self.resolver = resolver
        self.config = config
        self.client_factory = client_factory
        self.debug = debug if debug is not None else (lambda _text: None)
        self.clients: Dict[str, BucketClient] = {}

    def get(self, bucket: str) -> BucketClient:
        """Get the client for a bucket, creating it on first use

        Raises:
            CredentialsError: If no credentials can be loaded. Not caught here;
                the runtime decides what that means for the session.
        """
        client = self.clients.get(bucket)
        if client is not None:
            return client

        resolved = self.resolver.select(bucket, self.config.credentials)
        self.debug(f"Using {resolved.describe()} credentials for bucket {bucket}")

        credentials = self.resolver.load(resolved)
        client = self.client_factory(credentials)
        self.clients[bucket] = client
        return client

    def __contains__(self, bucket: str) -> bool:
        return bucket in self.clients

    def close(self) -> None:
        """Close every client that holds resources"""
        for client in self.clients.values():
            close = getattr(client, "close", None)
            if close is not None:
                close()
        self.clients.clear()
