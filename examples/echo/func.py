"""Example event function.

Run it locally with:

    PORT=8080 python local_server.py examples.echo.func:main

and send an event:

    curl -X POST http://localhost:8080/ \\
        -H 'Content-Type: application/json' \\
        -H 'CE-EventType: com.example.greeting' \\
        -H 'CE-EventID: abc-123' \\
        -H 'CE-EventTime: 2020-01-01T00:00:00Z' \\
        -d '{"name": "Ada"}'
"""

from typing import Optional, Tuple

from pydantic import BaseModel

from eventfn import RequestContext, get_cloud_event_context


class Greeting(BaseModel):
    name: str


class Reply(BaseModel):
    message: str
    event_id: str
    event_type: str


def main(ctx: RequestContext, greeting: Greeting) -> Tuple[Reply, Optional[Exception]]:
    """Greet the sender, echoing the event's ID and type."""
    if not greeting.name:
        return Reply(message="", event_id="", event_type=""), ValueError("name must not be empty")

    event, _ = get_cloud_event_context(ctx)
    reply = Reply(
        message=f"Hello, {greeting.name}!",
        event_id=event.event_id,
        event_type=event.event_type,
    )
    return reply, None
