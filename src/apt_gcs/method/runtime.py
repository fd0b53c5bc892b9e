"""Method Runtime - the stdin/stdout session with APT

The MethodRuntime announces its capabilities, then reads messages until APT
closes stdin:

- Configuration (601): handed to the ConfigStore
- URI Acquire (600): handed to the AcquisitionEngine
- anything else: protocol violation, the method exits

# Example

```python
from apt_gcs import MethodRuntime

def main():
    runtime = MethodRuntime.from_environment()
    sys.exit(runtime.run())
```

Requests are served one at a time; the method declares Single-Instance so APT
never sends a second URI Acquire before the first is answered.
"""

import sys
from typing import Any, Callable, Optional, TextIO

from apt_gcs.acquire import AcquisitionEngine
from apt_gcs.config import ConfigStore, MethodSettings
from apt_gcs.gcs.auth import CredentialResolver, CredentialsError
from apt_gcs.gcs.registry import ClientRegistry
from apt_gcs.gcs.storage import BucketClient, gcs_client_factory
from apt_gcs.method.io import (
    MalformedHeaderError,
    MalformedStatusLineError,
    MessageReader,
    MessageWriter,
)
from apt_gcs.method.message import Message, MessageCode


# Exit statuses
EXIT_OK = 0
EXIT_CREDENTIALS_FAILURE = 1
EXIT_UNSUPPORTED_MESSAGE = 100


class MethodRuntime:
    """Runs one method session

    Owns the configuration, the client registry and the acquisition engine;
    nothing is shared between sessions.
    """

    def __init__(
        self,
        reader: TextIO,
        writer: TextIO,
        settings: Optional[MethodSettings] = None,
        resolver: Optional[CredentialResolver] = None,
        client_factory: Optional[Callable[[Any], BucketClient]] = None,
        diagnostics: Optional[TextIO] = None,
    ):
        """Create a runtime

        Args:
            reader: Stream APT writes messages to
            writer: Stream APT reads replies from
            settings: Method settings (defaults from the environment)
            resolver: Credential resolver (defaults to the real sources)
            client_factory: Builds bucket clients from credentials
            diagnostics: Stream for diagnostic text (defaults to stderr)
        """
        self.settings = settings if settings is not None else MethodSettings()
        self.reader = MessageReader(reader)
        self.writer = MessageWriter(writer)
        self.diagnostics = diagnostics if diagnostics is not None else sys.stderr

        if resolver is None:
            resolver = CredentialResolver(self.settings)
        if client_factory is None:
            client_factory = gcs_client_factory(self.settings.storage_base_url, self.settings.timeout)

        self.config = ConfigStore(self.settings.scheme)
        self.registry = ClientRegistry(resolver, self.config, client_factory, debug=self.debug)
        self.engine = AcquisitionEngine(self.registry, self.send, debug=self.debug)

    @classmethod
    def from_environment(cls) -> "MethodRuntime":
        """Create a runtime on the process stdio"""
        return cls(sys.stdin, sys.stdout)

    def send(self, message: Message) -> None:
        """Write a message to APT"""
        self.writer.write(message)

    def log(self, text: str) -> None:
        """Write a diagnostic line regardless of the debug setting"""
        print(f"[MethodRuntime] {text}", file=self.diagnostics)

    def debug(self, text: str) -> None:
        """Write a diagnostic line if Debug::Acquire::<scheme> is on"""
        if self.config.debugging:
            self.log(text)

    def run(self) -> int:
        """Run the session

        Returns:
            EXIT_OK when APT closes stdin,
            EXIT_UNSUPPORTED_MESSAGE on an unknown or unparseable message code,
            EXIT_CREDENTIALS_FAILURE when no client can be built for a bucket
        """
        self.send(Message.capabilities())

        try:
            while True:
                try:
                    message = self.reader.read()
                except MalformedStatusLineError as e:
                    self.log(f"{e}")
                    return EXIT_UNSUPPORTED_MESSAGE
                except MalformedHeaderError as e:
                    self._reject_malformed(e)
                    continue

                if message is None:
                    # EOF - stdin closed, exit cleanly
                    return EXIT_OK

                self.debug(f"Got message: {message!r}")

                if message.code == MessageCode.CONFIGURATION:
                    state = self.config.apply(message)
                    self.debug(f"Cloud Storage credentials: {state.credentials}")
                elif message.code == MessageCode.URI_ACQUIRE:
                    try:
                        self.engine.acquire(message)
                    except CredentialsError as e:
                        self.log(f"{e}")
                        self.send(Message.uri_failure(message.get_field("URI"), str(e)))
                        return EXIT_CREDENTIALS_FAILURE
                else:
                    self.log(f"Unsupported message code {message.code}")
                    return EXIT_UNSUPPORTED_MESSAGE
        finally:
            self.registry.close()

    def _reject_malformed(self, error: MalformedHeaderError) -> None:
        """Report a message with a bad header line and carry on"""
        self.log(f"{error}")
        uri = error.message.get_field("URI")
        if uri is not None:
            self.send(Message.uri_failure(uri, f"Malformed message: {error}"))
