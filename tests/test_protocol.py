"""Tests for the binary content-mode CloudEvents decoder."""

import asyncio
from datetime import datetime, timezone

import pytest

from eventfn.context import RequestContext, get_event_id
from eventfn.errors import (
    BodyReadError,
    ProtocolError,
    StructuredModeUnsupportedError,
    TimestampParseError,
)
from eventfn.protocol import decode, decode_binary_attributes, is_structured_mode


BINARY_HEADERS = {
    "Content-Type": "application/json",
    "CE-CloudEventsVersion": "0.1",
    "CE-EventType": "com.example.created",
    "CE-EventTypeVersion": "1.0",
    "CE-Source": "/orders",
    "CE-EventID": "abc-123",
    "CE-EventTime": "2020-01-01T00:00:00Z",
    "CE-SchemaURL": "https://example.com/schema",
}


class TestStructuredModeDetection:
    """Test detection of structured content mode."""

    @pytest.mark.parametrize(
        "content_type",
        [
            "application/cloudevents+json",
            "application/cloudevents",
            "Application/CloudEvents+JSON; charset=utf-8",
        ],
    )
    def test_structured_content_types(self, content_type):
        """Test that application/cloudevents media types are structured."""
        assert is_structured_mode({"Content-Type": content_type}) is True

    @pytest.mark.parametrize("content_type", ["application/json", "text/plain", ""])
    def test_binary_content_types(self, content_type):
        """Test that other media types are binary mode."""
        assert is_structured_mode({"Content-Type": content_type}) is False

    def test_header_name_is_case_insensitive(self):
        """Test that the Content-Type header name is matched in any case."""
        assert is_structured_mode({"content-type": "application/cloudevents+json"})

    def test_missing_content_type(self):
        """Test that a request without Content-Type is binary mode."""
        assert is_structured_mode({}) is False


class TestBinaryAttributes:
    """Test extraction of CloudEvents attributes from headers."""

    def test_all_attributes(self):
        """Test that every CE-* header populates its attribute."""
        event = decode_binary_attributes(BINARY_HEADERS)

        assert event.event_type == "com.example.created"
        assert event.event_type_version == "1.0"
        assert event.cloud_events_version == "0.1"
        assert event.source == "/orders"
        assert event.event_id == "abc-123"
        assert event.event_time == datetime(2020, 1, 1, tzinfo=timezone.utc)
        assert event.schema_url == "https://example.com/schema"
        assert event.content_type == "application/json"
        assert event.extensions == {}

    def test_absent_headers_are_empty(self):
        """Test that absent headers become empty attributes."""
        event = decode_binary_attributes({})

        assert event.event_id == ""
        assert event.source == ""
        assert event.event_time is None

    def test_empty_event_time_is_absent(self):
        """Test that an empty CE-EventTime is treated as absent."""
        assert decode_binary_attributes({"CE-EventTime": ""}).event_time is None

    def test_lowercase_header_names(self):
        """Test that header names are matched case-insensitively."""
        event = decode_binary_attributes({"ce-eventid": "abc", "ce-eventtype": "t"})

        assert event.event_id == "abc"
        assert event.event_type == "t"

    def test_malformed_event_time(self):
        """Test that a malformed CE-EventTime fails."""
        with pytest.raises(TimestampParseError):
            decode_binary_attributes({"CE-EventTime": "not a time"})


class TestDecode:
    """Test decoding of complete requests."""

    @pytest.mark.asyncio
    async def test_payload_is_unmodified(self):
        """Test that the body is returned byte for byte."""
        body = b'{"name": "Ada"}\n\x00\xff'

        payload, ctx = await decode(BINARY_HEADERS, body)

        assert payload == body
        assert ctx.cloud_event.event_id == "abc-123"
        assert get_event_id(ctx) == "abc-123"

    @pytest.mark.asyncio
    async def test_bytearray_body(self):
        """Test that a bytearray body is returned as bytes."""
        payload, _ = await decode({}, bytearray(b"abc"))

        assert payload == b"abc"
        assert isinstance(payload, bytes)

    @pytest.mark.asyncio
    async def test_body_reader_is_awaited(self):
        """Test that a coroutine function body source is read."""

        async def read_body():
            return b"streamed"

        payload, _ = await decode({}, read_body)

        assert payload == b"streamed"

    @pytest.mark.asyncio
    async def test_structured_mode_rejected(self):
        """Test that structured mode fails before the body is read."""
        read = []

        async def read_body():
            read.append(True)
            return b"{}"

        with pytest.raises(StructuredModeUnsupportedError) as exc_info:
            await decode({"Content-Type": "application/cloudevents+json"}, read_body)

        assert str(exc_info.value) == "structured content mode not supported"
        assert read == []

    @pytest.mark.asyncio
    async def test_malformed_event_time_skips_body(self):
        """Test that a bad CE-EventTime fails before the body is read."""
        read = []

        async def read_body():
            read.append(True)
            return b"{}"

        with pytest.raises(TimestampParseError):
            await decode({"CE-EventTime": "yesterday"}, read_body)

        assert read == []

    @pytest.mark.asyncio
    async def test_body_read_failure(self):
        """Test that I/O errors while reading become BodyReadError."""

        async def read_body():
            raise OSError("connection reset")

        with pytest.raises(BodyReadError) as exc_info:
            await decode({}, read_body)

        assert "connection reset" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_incomplete_read(self):
        """Test that a truncated body becomes BodyReadError."""

        async def read_body():
            raise asyncio.IncompleteReadError(b"par", 10)

        with pytest.raises(BodyReadError):
            await decode({}, read_body)

    @pytest.mark.asyncio
    async def test_failures_are_protocol_errors(self):
        """Test that all decode failures share the ProtocolError base."""
        with pytest.raises(ProtocolError):
            await decode({"Content-Type": "application/cloudevents"}, b"")

    @pytest.mark.asyncio
    async def test_context_derives_from_parent(self):
        """Test that the parent's cancellation and request ID carry over."""
        parent = RequestContext.with_timeout(10, request_id="req-1")

        _, ctx = await decode(BINARY_HEADERS, b"", parent)

        assert ctx is not parent
        assert ctx.request_id == "req-1"
        assert ctx.deadline() == parent.deadline()
        parent.cancel()
        assert ctx.cancelled() is True

    @pytest.mark.asyncio
    async def test_raw_headers_are_kept(self):
        """Test that the raw headers are available on the context."""
        headers = dict(BINARY_HEADERS, **{"X-Custom": "value"})

        _, ctx = await decode(headers, b"")

        assert ctx.headers["x-custom"] == "value"
