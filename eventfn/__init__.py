"""Serve plain Python functions as CloudEvents (binary content mode) endpoints.

Typical usage::

    from eventfn import RequestContext, get_event_id
    from server.http_server import start

    def handle(ctx: RequestContext, order: Order) -> Tuple[Receipt, Optional[Exception]]:
        ...

    start(handle)
"""

from eventfn.context import (
    CloudEventContext,
    Context,
    RequestContext,
    get_cloud_event_context,
    get_event_id,
    get_event_time,
)
from eventfn.errors import (
    EventFunctionError,
    InvocationError,
    ProtocolError,
    SignatureError,
)
from eventfn.signature import Binding, DataKind, analyze

__all__ = [
    "Binding",
    "CloudEventContext",
    "Context",
    "DataKind",
    "EventFunctionError",
    "InvocationError",
    "ProtocolError",
    "RequestContext",
    "SignatureError",
    "analyze",
    "get_cloud_event_context",
    "get_event_id",
    "get_event_time",
]
