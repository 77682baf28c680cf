"""Command-line client for event function endpoints.

Reads one payload per line from stdin and posts each as a binary-mode
CloudEvent to the endpoint, writing the response status and body to stdout.
"""

import asyncio
import os
import sys
import uuid
from datetime import datetime, timezone
from typing import Dict, Optional

import httpx

CLOUD_EVENTS_VERSION = "0.1"


def build_binary_headers(
    event_type: str,
    source: str,
    event_id: Optional[str] = None,
    event_time: Optional[datetime] = None,
    content_type: str = "application/json",
    event_type_version: Optional[str] = None,
    schema_url: Optional[str] = None,
    cloud_events_version: str = CLOUD_EVENTS_VERSION,
) -> Dict[str, str]:
    """Build the headers of a binary-mode CloudEvents request.

    Args:
        event_type: Value of CE-EventType
        source: Value of CE-Source
        event_id: Value of CE-EventID; a random UUID when omitted
        event_time: Value of CE-EventTime; the current time when omitted
        content_type: Media type of the payload
        event_type_version: Optional CE-EventTypeVersion
        schema_url: Optional CE-SchemaURL
        cloud_events_version: Value of CE-CloudEventsVersion

    Returns:
        Header dictionary
    """
    if event_time is None:
        event_time = datetime.now(timezone.utc)
    if event_time.tzinfo is None:
        event_time = event_time.replace(tzinfo=timezone.utc)

    headers = {
        "Content-Type": content_type,
        "CE-CloudEventsVersion": cloud_events_version,
        "CE-EventType": event_type,
        "CE-Source": source,
        "CE-EventID": event_id or str(uuid.uuid4()),
        "CE-EventTime": event_time.isoformat().replace("+00:00", "Z"),
    }
    if event_type_version:
        headers["CE-EventTypeVersion"] = event_type_version
    if schema_url:
        headers["CE-SchemaURL"] = schema_url
    return headers


class EventClient:
    """Posts binary-mode CloudEvents to a function endpoint."""

    def __init__(
        self,
        url: str,
        event_type: str,
        source: str,
        timeout: int = 30,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize client.

        Args:
            url: Endpoint URL
            event_type: CE-EventType for every event sent
            source: CE-Source for every event sent
            timeout: HTTP request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.url = url
        self.event_type = event_type
        self.source = source
        self.timeout = timeout
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def send(
        self,
        payload: bytes,
        content_type: str = "application/json",
        event_id: Optional[str] = None,
    ) -> httpx.Response:
        """Send one event.

        Args:
            payload: Event payload (request body)
            content_type: Media type of the payload
            event_id: Optional event ID; generated when omitted

        Returns:
            The endpoint's response; non-2xx responses are returned, not raised
        """
        headers = build_binary_headers(
            event_type=self.event_type,
            source=self.source,
            event_id=event_id,
            content_type=content_type,
        )
        return await self.client.post(self.url, content=payload, headers=headers)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def run(self) -> None:
        """Run the client, sending each stdin line as an event."""
        try:
            while True:
                line = await asyncio.to_thread(sys.stdin.readline)
                if not line:
                    break

                line = line.strip()
                if not line:
                    continue

                try:
                    response = await self.send(line.encode("utf-8"))
                except httpx.HTTPError as e:
                    print(f"HTTP error: {e}", file=sys.stderr, flush=True)
                    continue

                print(f"{response.status_code} {response.text}", flush=True)

        except KeyboardInterrupt:
            pass
        finally:
            await self.aclose()


def main() -> None:
    """Main entry point."""
    if len(sys.argv) > 1:
        url = sys.argv[1]
    else:
        url = os.environ.get("EVENTFN_URL")

    if not url:
        print(
            "Error: endpoint URL required\n"
            "Usage: eventfn-send <url>\n"
            "Or set EVENTFN_URL environment variable",
            file=sys.stderr,
        )
        sys.exit(1)

    event_type = os.environ.get("EVENTFN_EVENT_TYPE", "com.example.event")
    source = os.environ.get("EVENTFN_SOURCE", "eventfn-send")

    timeout_str = os.environ.get("EVENTFN_TIMEOUT", "30")
    try:
        timeout = int(timeout_str)
        if timeout <= 0:
            raise ValueError("Timeout must be positive")
    except ValueError as e:
        print(
            f"Error: Invalid EVENTFN_TIMEOUT value '{timeout_str}'. "
            f"Must be a positive integer. {e}",
            file=sys.stderr,
        )
        sys.exit(1)

    client = EventClient(url, event_type, source, timeout)
    asyncio.run(client.run())


if __name__ == "__main__":
    main()
