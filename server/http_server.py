"""aiohttp server for event functions.

Every path on the server is routed to the same FunctionHandler. Each request
runs in its own aiohttp task; synchronous functions are executed on a worker
thread so one slow function never blocks other requests.
"""

import asyncio
import logging
import uuid
from typing import Any, Optional

import aiohttp
from aiohttp import web

from eventfn.config import ServerConfig, get_logging_config, load_config
from eventfn.context import RequestContext
from eventfn.errors import BodyReadError
from eventfn.logging_utils import configure_json_logging
from server.http_handler import FunctionHandler

logger = logging.getLogger(__name__)

HANDLER_KEY = web.AppKey("handler", FunctionHandler)
REQUEST_TIMEOUT_KEY = web.AppKey("request_timeout", object)


async def handle_event_request(request: web.Request) -> web.Response:
    """Route an aiohttp request through the FunctionHandler."""
    handler = request.app[HANDLER_KEY]
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    context = RequestContext.with_timeout(
        request.app[REQUEST_TIMEOUT_KEY], request_id=request_id
    )

    async def read_body() -> bytes:
        try:
            return await request.read()
        except (web.HTTPRequestEntityTooLarge, aiohttp.ClientPayloadError) as e:
            raise BodyReadError(f"Unable to read request body: {e}") from e

    try:
        status_code, headers, body = await handler.handle_request(
            method=request.method,
            headers=request.headers,
            body=read_body,
            request_id=request_id,
            context=context,
        )
    except asyncio.CancelledError:
        # Client went away; let the function observe it through its context
        context.cancel()
        raise

    return web.Response(body=body, status=status_code, headers=headers)


def create_app(
    handler: FunctionHandler, config: Optional[ServerConfig] = None
) -> web.Application:
    """Create the aiohttp application serving ``handler`` on every path.

    Args:
        handler: Handler for the function
        config: Server configuration; only body size limit and request
            timeout are used here

    Returns:
        aiohttp Application
    """
    client_max_size = config.client_max_size if config else 1024**2
    app = web.Application(client_max_size=client_max_size)
    app[HANDLER_KEY] = handler
    app[REQUEST_TIMEOUT_KEY] = config.request_timeout if config else None
    app.router.add_route("*", "/{tail:.*}", handle_event_request)
    return app


async def serve(handler: FunctionHandler, config: ServerConfig) -> None:
    """Serve ``handler`` until cancelled."""
    app = create_app(handler, config)

    # Cancel the handler task when the client disconnects
    runner = web.AppRunner(app, handler_cancellation=True)
    await runner.setup()
    site = web.TCPSite(runner, config.host, config.port)
    await site.start()

    logger.info(f"Listening on {config.host}:{config.port}")

    try:
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()


def start(function: Any, config: Optional[ServerConfig] = None) -> None:
    """Serve ``function`` over HTTP, blocking until interrupted.

    The function is analyzed before the server starts listening; an
    unsupported signature aborts startup.

    Args:
        function: Function to serve
        config: Server configuration; loaded from the environment when omitted

    Raises:
        ConfigurationError: If configuration is missing or invalid
        SignatureError: If the function cannot be adapted
    """
    if config is None:
        config = load_config()

    logging_config = get_logging_config(config)
    configure_json_logging(level=logging_config.level, pretty=logging_config.pretty)

    handler = FunctionHandler(function)

    try:
        asyncio.run(serve(handler, config))
    except KeyboardInterrupt:
        logger.info("Shutting down")
