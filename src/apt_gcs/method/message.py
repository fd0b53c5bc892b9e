"""APT Method Message Types

This module defines the textual message format exchanged between APT and an
acquire method over stdin/stdout.

## Message Format

```
600 URI Acquire
URI: gcs://bucket/dists/stable/Release
Filename: /var/lib/apt/lists/partial/Release

```

- First line: numeric code, a space, and a human readable description
- Header lines: `Name: value`, names may repeat
- A blank line terminates the message

## Message Codes

- CAPABILITIES (100): Method announces what it supports
- STATUS (102): Progress note for a URI
- URI_START (200): Transfer started, size and mtime known
- URI_DONE (201): Transfer complete, with hashes
- URI_FAILURE (400): Transfer failed
- URI_ACQUIRE (600): APT asks for a URI
- CONFIGURATION (601): APT sends its configuration tree
"""

from typing import Dict, List, Optional
from enum import IntEnum


# Method protocol version announced in the Capabilities message
PROTOCOL_VERSION = "1.0"


class MessageCode(IntEnum):
    """Message code discriminator"""
    CAPABILITIES = 100
    STATUS = 102
    URI_START = 200
    URI_DONE = 201
    URI_FAILURE = 400
    URI_ACQUIRE = 600
    CONFIGURATION = 601

    @classmethod
    def from_int(cls, v: int) -> Optional["MessageCode"]:
        """Convert int to MessageCode, returns None if unknown"""
        try:
            return cls(v)
        except ValueError:
            return None


MESSAGE_DESCRIPTIONS: Dict[int, str] = {
    MessageCode.CAPABILITIES: "Capabilities",
    MessageCode.STATUS: "Status",
    MessageCode.URI_START: "URI Start",
    MessageCode.URI_DONE: "URI Done",
    MessageCode.URI_FAILURE: "URI Failure",
    MessageCode.URI_ACQUIRE: "URI Acquire",
    MessageCode.CONFIGURATION: "Configuration",
}


def description_for(code: int) -> str:
    """Description for a code, empty for codes outside the table"""
    return MESSAGE_DESCRIPTIONS.get(code, "")


def single_line(text: str) -> str:
    """Collapse text onto one line so it fits in a header value"""
    return " ".join(line.strip() for line in text.splitlines() if line.strip())


class Message:
    """A method protocol message"""

    def __init__(
        self,
        code: int,
        text: Optional[str] = None,
        headers: Optional[Dict[str, List[str]]] = None,
    ):
        """Create a new message

        Args:
            code: Numeric message code
            text: Description text from the status line (defaults to the table entry)
            headers: Header multimap, values kept in arrival order
        """
        self.code = code
        self.text = text if text is not None else description_for(code)
        self.headers: Dict[str, List[str]] = headers if headers is not None else {}

    def add_header(self, name: str, value: str) -> "Message":
        """Append a header value, keeping earlier values of the same name"""
        self.headers.setdefault(name, []).append(value)
        return self

    def get_field(self, name: str) -> Optional[str]:
        """First value of a header, None if absent"""
        values = self.headers.get(name)
        if not values:
            return None
        return values[0]

    def get_fields(self, name: str) -> List[str]:
        """All values of a header in arrival order"""
        return list(self.headers.get(name, []))

    def message_code(self) -> Optional[MessageCode]:
        """The code as a MessageCode, None if it is not a known code"""
        return MessageCode.from_int(self.code)

    @classmethod
    def with_headers(cls, code: int, *pairs) -> "Message":
        """Create a message from (name, value) pairs"""
        message = cls(code)
        for name, value in pairs:
            message.add_header(name, value)
        return message

    @classmethod
    def capabilities(cls) -> "Message":
        """Create the Capabilities message sent once at startup"""
        return cls.with_headers(
            MessageCode.CAPABILITIES,
            ("Version", PROTOCOL_VERSION),
            ("Single-Instance", "true"),
            ("Send-Config", "true"),
        )

    @classmethod
    def status(cls, uri: str, note: str) -> "Message":
        """Create a Status message for a URI"""
        return cls.with_headers(MessageCode.STATUS, ("URI", uri), ("Message", single_line(note)))

    @classmethod
    def uri_start(cls, uri: str, size: Optional[int], last_modified: str) -> "Message":
        """Create a URI Start message. Size is omitted when unknown."""
        message = cls.with_headers(MessageCode.URI_START, ("URI", uri))
        if size is not None:
            message.add_header("Size", str(size))
        message.add_header("Last-Modified", last_modified)
        return message

    @classmethod
    def uri_done(
        cls,
        uri: str,
        filename: str,
        size: int,
        last_modified: str,
        digests: Dict[str, str],
    ) -> "Message":
        """Create a URI Done message

        MD5 is reported under both MD5-Hash and MD5Sum-Hash, APT versions differ
        in which one they read.
        """
        return cls.with_headers(
            MessageCode.URI_DONE,
            ("URI", uri),
            ("Filename", filename),
            ("Size", str(size)),
            ("Last-Modified", last_modified),
            ("MD5-Hash", digests["md5"]),
            ("MD5Sum-Hash", digests["md5sum"]),
            ("SHA1-Hash", digests["sha1"]),
            ("SHA256-Hash", digests["sha256"]),
            ("SHA512-Hash", digests["sha512"]),
        )

    @classmethod
    def uri_failure(cls, uri: Optional[str], reason: str) -> "Message":
        """Create a URI Failure message. Multi-line reasons are joined into one line."""
        message = cls(MessageCode.URI_FAILURE)
        if uri is not None:
            message.add_header("URI", uri)
        message.add_header("Message", single_line(reason))
        return message

    def __eq__(self, other):
        if not isinstance(other, Message):
            return False
        return self.code == other.code and self.headers == other.headers

    def __repr__(self):
        return f"Message({self.code} {self.text!r}, headers={self.headers!r})"
