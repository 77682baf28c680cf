"""CloudEvents HTTP transport binding (v0.1) decoder.

Only binary content mode is supported: event attributes travel in ``CE-*``
headers and the body is the event payload. Structured content mode
(``Content-Type: application/cloudevents...``) is always rejected.

See https://github.com/cloudevents/spec/blob/v0.1/http-transport-binding.md
"""

import asyncio
import logging
from typing import Awaitable, Callable, Mapping, Optional, Tuple, Union

from multidict import CIMultiDict

from eventfn.context import (
    EVENT_ID_HEADER,
    EVENT_TIME_HEADER,
    CloudEventContext,
    RequestContext,
    parse_rfc3339,
)
from eventfn.errors import BodyReadError, StructuredModeUnsupportedError

logger = logging.getLogger(__name__)

STRUCTURED_CONTENT_TYPE_PREFIX = "application/cloudevents"

CONTENT_TYPE_HEADER = "Content-Type"
EVENT_TYPE_HEADER = "CE-EventType"
EVENT_TYPE_VERSION_HEADER = "CE-EventTypeVersion"
CLOUD_EVENTS_VERSION_HEADER = "CE-CloudEventsVersion"
SOURCE_HEADER = "CE-Source"
SCHEMA_URL_HEADER = "CE-SchemaURL"

# Either the complete body or a coroutine function that reads it
BodySource = Union[bytes, bytearray, Callable[[], Awaitable[bytes]]]


def is_structured_mode(headers: Mapping[str, str]) -> bool:
    content_type = CIMultiDict(headers).get(CONTENT_TYPE_HEADER, "")
    return content_type.lower().startswith(STRUCTURED_CONTENT_TYPE_PREFIX)


def decode_binary_attributes(headers: Mapping[str, str]) -> CloudEventContext:
    """Build a CloudEventContext from binary-mode headers.

    Absent headers become empty strings. Extension attributes are not
    extracted.

    Raises:
        TimestampParseError: If ``CE-EventTime`` is present but not RFC 3339
    """
    headers = CIMultiDict(headers)
    event_time = None
    raw_event_time = headers.get(EVENT_TIME_HEADER, "")
    if raw_event_time:
        event_time = parse_rfc3339(raw_event_time)

    return CloudEventContext(
        event_type=headers.get(EVENT_TYPE_HEADER, ""),
        event_type_version=headers.get(EVENT_TYPE_VERSION_HEADER, ""),
        cloud_events_version=headers.get(CLOUD_EVENTS_VERSION_HEADER, ""),
        source=headers.get(SOURCE_HEADER, ""),
        event_id=headers.get(EVENT_ID_HEADER, ""),
        schema_url=headers.get(SCHEMA_URL_HEADER, ""),
        content_type=headers.get(CONTENT_TYPE_HEADER, ""),
        event_time=event_time,
    )


async def read_body(body: BodySource) -> bytes:
    """Read the complete request body.

    Raises:
        BodyReadError: If reading the body fails
    """
    if isinstance(body, (bytes, bytearray)):
        return bytes(body)

    try:
        return await body()
    except BodyReadError:
        raise
    except (OSError, asyncio.IncompleteReadError) as e:
        raise BodyReadError(f"Unable to read request body: {e}") from e


async def decode(
    headers: Mapping[str, str],
    body: BodySource,
    parent: Optional[RequestContext] = None,
) -> Tuple[bytes, RequestContext]:
    """Decode a binary-mode CloudEvents HTTP request.

    Args:
        headers: Request headers (looked up case-insensitively)
        body: Request body, or a coroutine function returning it
        parent: Context of the underlying request; its cancellation and
            deadline carry over to the returned context

    Returns:
        Tuple of (payload, context). The payload is returned unmodified.

    Raises:
        StructuredModeUnsupportedError: If the request uses structured mode
        TimestampParseError: If ``CE-EventTime`` is malformed
        BodyReadError: If the body cannot be read
    """
    if is_structured_mode(headers):
        raise StructuredModeUnsupportedError()

    cloud_event = decode_binary_attributes(headers)
    payload = await read_body(body)

    if parent is None:
        parent = RequestContext()
    ctx = parent.derive(cloud_event=cloud_event, headers=headers)

    logger.debug(
        "Decoded binary-mode CloudEvent",
        extra={
            "request_id": ctx.request_id,
            "event_id": cloud_event.event_id,
            "event_type": cloud_event.event_type,
            "payload_size": len(payload),
        },
    )
    return payload, ctx
