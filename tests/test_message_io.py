"""Tests for method message encoding/decoding"""

import io

import pytest

from apt_gcs.method.io import (
    EncodeError,
    MalformedHeaderError,
    MalformedStatusLineError,
    MessageReader,
    MessageWriter,
    decode_message,
    encode_message,
    read_message,
    write_message,
)
from apt_gcs.method.message import Message, MessageCode, description_for


class FlushCountingIO(io.StringIO):
    def __init__(self):
        super().__init__()
        self.flushes = 0

    def flush(self):
        self.flushes += 1
        super().flush()


# TEST001: Test encode_message writes status line, headers and blank line
def test_encode_message_layout():
    message = Message.status("gcs://bucket/key", "Waiting for headers")

    assert encode_message(message) == (
        "102 Status\n"
        "URI: gcs://bucket/key\n"
        "Message: Waiting for headers\n"
        "\n"
    )


# TEST002: Test encode_message uses an empty description for unknown codes
def test_encode_unknown_code_has_empty_description():
    message = Message(999).add_header("Message", "x")

    assert encode_message(message).startswith("999 \n")
    assert description_for(999) == ""


# TEST003: Test encode_message keeps repeated header values in insertion order
def test_encode_repeated_headers_in_order():
    message = Message(MessageCode.CONFIGURATION)
    message.add_header("Config-Item", "A=1")
    message.add_header("Config-Item", "B=2")

    lines = encode_message(message).splitlines()
    assert lines[1:3] == ["Config-Item: A=1", "Config-Item: B=2"]


# TEST004: Test encode_message doubles percent signs in values
def test_encode_escapes_percent():
    message = Message.uri_failure("gcs://b/a%2Bb", "100% broken")

    data = encode_message(message)
    assert "URI: gcs://b/a%%2Bb\n" in data
    assert "Message: 100%% broken\n" in data


# TEST005: Test values containing percent signs survive encode then decode
@pytest.mark.parametrize("value", ["%", "%%", "a%b", "100%", "%2F%2f", "no percent"])
def test_percent_values_survive_round_trip(value):
    message = Message(MessageCode.STATUS).add_header("Message", value)

    decoded = decode_message(encode_message(message).splitlines(True))
    assert decoded.get_field("Message") == value


# TEST006: Test encode_message rejects values that would break framing
def test_encode_rejects_newline_in_value():
    message = Message(MessageCode.STATUS).add_header("Message", "two\nlines")

    with pytest.raises(EncodeError):
        encode_message(message)


# TEST007: Test decode_message returns None on empty input
def test_decode_returns_none_on_eof():
    assert decode_message([]) is None
    assert decode_message(["\n", "\n"]) is None


# TEST008: Test decode_message skips leading blank lines and parses code and text
def test_decode_skips_blank_lines():
    message = decode_message(["\n", "\n", "600 URI Acquire\n", "URI: gcs://b/k\n", "\n"])

    assert message.code == 600
    assert message.text == "URI Acquire"
    assert message.message_code() == MessageCode.URI_ACQUIRE
    assert message.get_field("URI") == "gcs://b/k"


# TEST009: Test decode_message splits headers at the first colon and trims values
def test_decode_splits_at_first_colon():
    message = decode_message([
        "201 URI Done\n",
        "URI:   gcs://bucket/path/to/object  \n",
        "Last-Modified: Mon, 01 Jan 2024 10:00:00 GMT\n",
        "\n",
    ])

    assert message.get_field("URI") == "gcs://bucket/path/to/object"
    assert message.get_field("Last-Modified") == "Mon, 01 Jan 2024 10:00:00 GMT"


# TEST010: Test decode_message accumulates repeated header names
def test_decode_accumulates_repeated_headers():
    message = decode_message([
        "601 Configuration\n",
        "Config-Item: Acquire::gcs::a::CredentialsFile=/a\n",
        "Config-Item: Debug::Acquire::gcs=yes\n",
        "\n",
    ])

    assert message.get_fields("Config-Item") == [
        "Acquire::gcs::a::CredentialsFile=/a",
        "Debug::Acquire::gcs=yes",
    ]
    assert message.get_field("Missing") is None
    assert message.get_fields("Missing") == []


# TEST011: Test decode_message ends a message at end of input without a blank line
def test_decode_message_ends_at_eof():
    message = decode_message(["600 URI Acquire\n", "URI: gcs://b/k\n"])

    assert message.get_field("URI") == "gcs://b/k"


# TEST012: Test header line without colon raises after consuming the block
def test_decode_malformed_header_consumes_block():
    lines = iter([
        "600 URI Acquire\n",
        "URI: gcs://b/k\n",
        "garbage line\n",
        "Filename: /tmp/x\n",
        "\n",
        "601 Configuration\n",
        "\n",
    ])

    with pytest.raises(MalformedHeaderError) as exc_info:
        decode_message(lines)

    assert exc_info.value.line == "garbage line"
    assert exc_info.value.message.get_field("URI") == "gcs://b/k"
    assert exc_info.value.message.get_field("Filename") == "/tmp/x"

    following = decode_message(lines)
    assert following.code == 601


# TEST013: Test non-numeric status line raises MalformedStatusLineError
def test_decode_malformed_status_line():
    with pytest.raises(MalformedStatusLineError):
        decode_message(["hello world\n", "URI: x\n", "\n"])


# TEST014: Test read_message reads consecutive messages from a stream
def test_read_message_from_stream():
    stream = io.StringIO(
        "601 Configuration\n"
        "Config-Item: Debug::Acquire::gcs=1\n"
        "\n"
        "600 URI Acquire\n"
        "URI: gcs://b/k\n"
        "Filename: /tmp/out\n"
        "\n"
    )

    first = read_message(stream)
    second = read_message(stream)
    third = read_message(stream)

    assert first.code == 601
    assert second.code == 600
    assert second.get_field("Filename") == "/tmp/out"
    assert third is None


# TEST015: Test write_message flushes after every message
def test_write_message_flushes():
    output = FlushCountingIO()
    writer = MessageWriter(output)

    writer.write(Message.capabilities())
    writer.write(Message.status("gcs://b/k", "Waiting for headers"))

    assert output.flushes == 2
    assert output.getvalue().count("\n\n") == 2


# TEST016: Test MessageReader and MessageWriter agree on the wire format
def test_reader_reads_what_writer_writes():
    output = io.StringIO()
    write_message(output, Message.uri_start("gcs://b/k", 5, "Mon"))

    reader = MessageReader(io.StringIO(output.getvalue()))
    message = reader.read()

    assert message == Message.uri_start("gcs://b/k", 5, "Mon")
    assert reader.read() is None


# TEST017: Test Capabilities message advertises version and single instance
def test_capabilities_message():
    message = Message.capabilities()

    assert message.code == MessageCode.CAPABILITIES
    assert message.get_field("Version") == "1.0"
    assert message.get_field("Single-Instance") == "true"
    assert message.get_field("Send-Config") == "true"


# TEST018: Test URI Start omits Size when it is unknown
def test_uri_start_without_size():
    message = Message.uri_start("gcs://b/k", None, "Mon")

    assert message.get_field("Size") is None
    assert message.get_field("Last-Modified") == "Mon"


# TEST019: Test URI Failure folds a multi-line reason so it can be encoded
def test_uri_failure_multiline_reason():
    message = Message.uri_failure("gcs://b/k", "Bad Gateway\n\n  try again later\n")

    assert message.get_field("Message") == "Bad Gateway try again later"
    assert "Message: Bad Gateway try again later\n" in encode_message(message)
