"""Method I/O - Reading and Writing Method Messages

This module provides message encoding/decoding over the stdio pipes shared
with APT.

## Wire Format

```
┌─────────────────────────────────────────────────────────┐
│  <code> <description>\\n                                 │
├─────────────────────────────────────────────────────────┤
│  <Name>: <value>\\n        (zero or more, names repeat)  │
├─────────────────────────────────────────────────────────┤
│  \\n                       (blank line ends the message) │
└─────────────────────────────────────────────────────────┘
```

Header values have `%` written as `%%`; the decoder undoes it.
"""

from typing import Iterable, List, Optional, TextIO

from apt_gcs.method.message import Message, description_for


class MessageError(Exception):
    """Base message I/O error"""
    pass


class EncodeError(MessageError):
    """Message encoding error"""
    pass


class DecodeError(MessageError):
    """Message decoding error"""
    pass


class MalformedStatusLineError(DecodeError):
    """The first line of a message does not start with a numeric code"""
    def __init__(self, line: str):
        super().__init__(f"Malformed status line: {line!r}")
        self.line = line


class MalformedHeaderError(DecodeError):
    """A header line has no colon

    Raised only after the rest of the message has been consumed, so the reader
    is positioned at the next message. `message` holds the well-formed part.
    """
    def __init__(self, line: str, message: Message):
        super().__init__(f"Malformed header line: {line!r}")
        self.line = line
        self.message = message


def escape_value(value: str) -> str:
    """Escape a header value for the wire"""
    return value.replace("%", "%%")


def unescape_value(value: str) -> str:
    """Undo escape_value"""
    return value.replace("%%", "%")


def encode_message(message: Message) -> str:
    """Encode a message to its wire text

    Args:
        message: Message to encode

    Returns:
        Status line, one line per header value, and the terminating blank line

    Raises:
        EncodeError: If a header name or value would break the framing
    """
    lines = [f"{int(message.code)} {description_for(message.code)}\n"]

    for name, values in message.headers.items():
        if not name or ":" in name or "\n" in name:
            raise EncodeError(f"Invalid header name: {name!r}")
        for value in values:
            if "\n" in value:
                raise EncodeError(f"Header {name} value contains a newline")
            lines.append(f"{name}: {escape_value(value)}\n")

    lines.append("\n")
    return "".join(lines)


def _is_blank(line: str) -> bool:
    return line.strip() == ""


def decode_message(lines: Iterable[str]) -> Optional[Message]:
    """Decode one message from an iterable of lines

    Pass an iterator to decode several messages from the same source.

    Leading blank lines are skipped. Returns None when the input ends before a
    message starts, which is how the end of the session is signalled.

    Args:
        lines: Lines, with or without trailing newlines

    Returns:
        Decoded Message or None on EOF

    Raises:
        MalformedStatusLineError: If the code is not an integer
        MalformedHeaderError: If a header line has no colon
    """
    lines = iter(lines)
    status_line = None
    for line in lines:
        if not _is_blank(line):
            status_line = line
            break

    if status_line is None:
        return None

    parts = status_line.strip().split(" ", 1)
    try:
        code = int(parts[0])
    except ValueError:
        # Drain the block so the next read starts on a fresh message
        for line in lines:
            if _is_blank(line):
                break
        raise MalformedStatusLineError(status_line.rstrip("\n"))

    text = parts[1].strip() if len(parts) > 1 else ""
    message = Message(code, text)

    bad_lines: List[str] = []
    for line in lines:
        if _is_blank(line):
            break
        name, sep, value = line.rstrip("\r\n").partition(":")
        if not sep:
            bad_lines.append(line.rstrip("\r\n"))
            continue
        message.add_header(name, unescape_value(value.strip()))

    if bad_lines:
        raise MalformedHeaderError(bad_lines[0], message)

    return message


def read_message(reader: TextIO) -> Optional[Message]:
    """Read one message from a text stream

    Returns:
        Message or None on EOF

    Raises:
        DecodeError: If the message is malformed
    """
    return decode_message(iter(reader.readline, ""))


def write_message(writer: TextIO, message: Message) -> None:
    """Write one message and flush

    APT reads line by line and waits on our output, so every message is
    flushed as soon as it is written.

    Raises:
        MessageError: If the write fails
    """
    data = encode_message(message)
    try:
        writer.write(data)
        writer.flush()
    except (OSError, ValueError) as e:
        raise MessageError(f"Write failed: {e}")


class MessageReader:
    """Method message reader"""

    def __init__(self, reader: TextIO):
        self.reader = reader

    def read(self) -> Optional[Message]:
        """Read the next message

        Returns:
            Message or None on EOF

        Raises:
            DecodeError: If the message is malformed
        """
        return read_message(self.reader)


class MessageWriter:
    """Method message writer"""

    def __init__(self, writer: TextIO):
        self.writer = writer

    def write(self, message: Message) -> None:
        """Write a message

        Raises:
            MessageError: If write fails
        """
        write_message(self.writer, message)
