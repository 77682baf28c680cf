"""Request-scoped context for event functions.

A ``RequestContext`` is created for every request and passed explicitly
through the decoder, the invoker and, when the function asks for it, the
function itself. It carries the decoded ``CloudEventContext``, a read-only
view of the raw request headers, and the cancellation/deadline state of the
request it was derived from.
"""

import re
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Mapping, Optional, Protocol, Tuple, runtime_checkable

from multidict import CIMultiDict, CIMultiDictProxy
from pydantic import BaseModel, ConfigDict, Field

from eventfn.errors import TimestampParseError

EVENT_ID_HEADER = "CE-EventID"
EVENT_TIME_HEADER = "CE-EventTime"

_RFC3339_PATTERN = re.compile(
    r"^([0-9]{4})-([0-9]{2})-([0-9]{2})[Tt]([0-9]{2}):([0-9]{2}):([0-9]{2})"
    r"(?:\.([0-9]+))?([Zz]|[+-][0-9]{2}:[0-9]{2})$"
)


def parse_rfc3339(value: str) -> datetime:
    """Parse an RFC 3339 timestamp into an aware datetime.

    Args:
        value: Timestamp such as ``2020-01-01T00:00:00Z``

    Returns:
        Timezone-aware datetime

    Raises:
        TimestampParseError: If the value is not a valid RFC 3339 timestamp
    """
    match = _RFC3339_PATTERN.match(value)
    if match is None:
        raise TimestampParseError(
            f'parsing time "{value}" as RFC 3339: invalid format'
        )

    year, month, day, hour, minute, second, fraction, offset = match.groups()
    # datetime only keeps microseconds
    microsecond = int((fraction or "0")[:6].ljust(6, "0"))

    try:
        if offset in ("Z", "z"):
            tz = timezone.utc
        else:
            sign = 1 if offset[0] == "+" else -1
            offset_hours, offset_minutes = int(offset[1:3]), int(offset[4:6])
            if offset_hours > 23 or offset_minutes > 59:
                raise ValueError("time zone offset out of range")
            tz = timezone(sign * timedelta(hours=offset_hours, minutes=offset_minutes))

        return datetime(
            int(year),
            int(month),
            int(day),
            int(hour),
            int(minute),
            int(second),
            microsecond,
            tzinfo=tz,
        )
    except ValueError as e:
        raise TimestampParseError(f'parsing time "{value}" as RFC 3339: {e}') from e


class CloudEventContext(BaseModel):
    """CloudEvents (v0.1) context attributes decoded from one request.

    Attributes that were absent from the request are empty strings;
    ``event_time`` is ``None`` when no ``CE-EventTime`` header was sent.

    ``extensions`` is reserved for CloudEvents extension attributes. Binary
    mode does not extract extensions, so it is always empty when decoded
    from a request.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    event_type: str = Field(default="", alias="eventType")
    event_type_version: str = Field(default="", alias="eventTypeVersion")
    cloud_events_version: str = Field(default="", alias="cloudEventsVersion")
    source: str = Field(default="", alias="source")
    event_id: str = Field(default="", alias="eventID")
    event_time: Optional[datetime] = Field(default=None, alias="eventTime")
    schema_url: str = Field(default="", alias="schemaURL")
    content_type: str = Field(default="", alias="contentType")
    extensions: Dict[str, Any] = Field(default_factory=dict, alias="extensions")


@runtime_checkable
class Context(Protocol):
    """Capability a parameter type must satisfy to receive the request context.

    Any class providing these methods qualifies; ``RequestContext`` is the
    implementation the server passes in.
    """

    def deadline(self) -> Optional[float]:
        ...

    def cancelled(self) -> bool:
        ...

    def wait(self, timeout: Optional[float] = None) -> bool:
        ...


class RequestContext:
    """Per-request context carrier.

    Contexts are immutable once built. ``derive()`` returns a new context
    carrying event data that shares its parent's cancellation signal and
    deadline, so cancelling the parent is visible from every derived
    context.
    """

    __slots__ = ("_done", "_deadline", "_request_id", "_cloud_event", "_headers")

    def __init__(
        self,
        deadline: Optional[float] = None,
        request_id: Optional[str] = None,
    ) -> None:
        """Create a root context.

        Args:
            deadline: Absolute ``time.monotonic()`` value after which the
                request counts as cancelled, or None for no deadline
            request_id: Optional request ID for logging/tracing
        """
        self._done = threading.Event()
        self._deadline = deadline
        self._request_id = request_id
        self._cloud_event: Optional[CloudEventContext] = None
        self._headers: CIMultiDictProxy = CIMultiDictProxy(CIMultiDict())

    @classmethod
    def with_timeout(
        cls, timeout: Optional[float], request_id: Optional[str] = None
    ) -> "RequestContext":
        """Create a root context whose deadline is ``timeout`` seconds from now."""
        deadline = time.monotonic() + timeout if timeout is not None else None
        return cls(deadline=deadline, request_id=request_id)

    def derive(
        self,
        cloud_event: Optional[CloudEventContext] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> "RequestContext":
        """Return a child context carrying event data.

        Args:
            cloud_event: Decoded CloudEvents attributes
            headers: Raw request headers

        Returns:
            New RequestContext sharing this context's cancellation and deadline
        """
        child = RequestContext.__new__(RequestContext)
        child._done = self._done
        child._deadline = self._deadline
        child._request_id = self._request_id
        child._cloud_event = cloud_event if cloud_event is not None else self._cloud_event
        if headers is not None:
            child._headers = CIMultiDictProxy(CIMultiDict(headers))
        else:
            child._headers = self._headers
        return child

    @property
    def cloud_event(self) -> Optional[CloudEventContext]:
        return self._cloud_event

    @property
    def headers(self) -> CIMultiDictProxy:
        return self._headers

    @property
    def request_id(self) -> Optional[str]:
        return self._request_id

    def deadline(self) -> Optional[float]:
        return self._deadline

    def remaining(self) -> Optional[float]:
        """Seconds left until the deadline, or None if there is none."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def cancel(self) -> None:
        self._done.set()

    def cancelled(self) -> bool:
        if self._done.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the context is cancelled or its deadline passes.

        Args:
            timeout: Maximum number of seconds to wait

        Returns:
            True if the context is cancelled, False if the wait timed out
        """
        remaining = self.remaining()
        if remaining is not None and (timeout is None or remaining < timeout):
            timeout = remaining
        self._done.wait(timeout)
        return self.cancelled()

    def __repr__(self) -> str:
        event_id = self._cloud_event.event_id if self._cloud_event else None
        return f"RequestContext(request_id={self._request_id!r}, event_id={event_id!r})"


def get_cloud_event_context(ctx: Any) -> Tuple[CloudEventContext, bool]:
    """Return the CloudEventContext attached to a request context.

    Args:
        ctx: Context passed to the function

    Returns:
        Tuple of (cloud_event_context, found). When nothing is attached,
        an empty CloudEventContext is returned with found set to False.
    """
    cloud_event = getattr(ctx, "cloud_event", None)
    if isinstance(cloud_event, CloudEventContext):
        return cloud_event, True
    return CloudEventContext(), False


def _get_header(ctx: Any, name: str) -> str:
    headers = getattr(ctx, "headers", None)
    if headers is None:
        return ""
    return headers.get(name, "")


def get_event_time(ctx: Any) -> datetime:
    """Parse the ``CE-EventTime`` header of the current request.

    Raises:
        TimestampParseError: If the header is absent or not RFC 3339
    """
    value = _get_header(ctx, EVENT_TIME_HEADER)
    if not value:
        raise TimestampParseError(f"{EVENT_TIME_HEADER} header not present")
    return parse_rfc3339(value)


def get_event_id(ctx: Any) -> str:
    """Return the ``CE-EventID`` header of the current request, or ""."""
    return _get_header(ctx, EVENT_ID_HEADER)
