"""Tests for the aiohttp server."""

import asyncio
import threading
from typing import Optional
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from aiohttp.streams import EMPTY_PAYLOAD
from aiohttp.test_utils import TestClient, TestServer, make_mocked_request
from pydantic import BaseModel

from eventfn.config import ServerConfig
from eventfn.context import RequestContext, get_cloud_event_context
from eventfn.errors import TooManyArgumentsError
from server.http_handler import FunctionHandler
from server.http_server import create_app, handle_event_request, serve, start


class Greeting(BaseModel):
    name: str


def echo(ctx: RequestContext, greeting: Greeting) -> Greeting:
    event, _ = get_cloud_event_context(ctx)
    return Greeting(name=f"{greeting.name} ({event.event_id})")


HEADERS = {"Content-Type": "application/json", "CE-EventID": "abc-123"}


class TestServerRouting:
    """Test requests against a running application."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["/", "/events", "/a/b/c"])
    async def test_any_path_is_served(self, path):
        """Test that every path reaches the function."""
        app = create_app(FunctionHandler(echo))

        async with TestClient(TestServer(app)) as client:
            resp = await client.post(path, data=b'{"name": "Ada"}', headers=HEADERS)

            assert resp.status == 200
            assert resp.headers["Content-Type"].startswith("application/json")
            assert await resp.json() == {"name": "Ada (abc-123)"}

    @pytest.mark.asyncio
    async def test_get_returns_405(self):
        """Test that GET is rejected."""
        app = create_app(FunctionHandler(echo))

        async with TestClient(TestServer(app)) as client:
            resp = await client.get("/")

            assert resp.status == 405
            assert resp.headers["Allow"] == "POST"
            assert await resp.read() == b""

    @pytest.mark.asyncio
    async def test_structured_mode_returns_417(self):
        """Test that structured-mode requests are rejected."""
        app = create_app(FunctionHandler(echo))

        async with TestClient(TestServer(app)) as client:
            resp = await client.post(
                "/",
                data=b"{}",
                headers={"Content-Type": "application/cloudevents+json"},
            )

            assert resp.status == 417
            assert await resp.text() == "structured content mode not supported"

    @pytest.mark.asyncio
    async def test_oversized_body_returns_417(self):
        """Test that a body above the size limit cannot be read."""
        config = ServerConfig(port=8080, client_max_size=8)
        app = create_app(FunctionHandler(echo), config)

        async with TestClient(TestServer(app)) as client:
            resp = await client.post("/", data=b'{"name": "' + b"x" * 64 + b'"}', headers=HEADERS)

            assert resp.status == 417

    @pytest.mark.asyncio
    async def test_request_id_is_echoed(self):
        """Test that an incoming X-Request-ID is returned."""
        app = create_app(FunctionHandler(echo))

        async with TestClient(TestServer(app)) as client:
            resp = await client.post(
                "/",
                data=b'{"name": "Ada"}',
                headers=dict(HEADERS, **{"X-Request-ID": "req-9"}),
            )

            assert resp.headers["X-Request-ID"] == "req-9"

    @pytest.mark.asyncio
    async def test_request_timeout_sets_deadline(self):
        """Test that the configured request timeout becomes the context deadline."""
        deadlines = []

        def handle(ctx: RequestContext) -> None:
            deadlines.append(ctx.deadline())

        config = ServerConfig(port=8080, request_timeout=5)
        app = create_app(FunctionHandler(handle), config)

        async with TestClient(TestServer(app)) as client:
            resp = await client.post("/")

            assert resp.status == 200
        assert deadlines and deadlines[0] is not None

    @pytest.mark.asyncio
    async def test_no_deadline_by_default(self):
        """Test that contexts have no deadline without a request timeout."""
        deadlines = []

        def handle(ctx: RequestContext) -> Optional[Exception]:
            deadlines.append(ctx.deadline())
            return None

        app = create_app(FunctionHandler(handle))

        async with TestClient(TestServer(app)) as client:
            await client.post("/")

        assert deadlines == [None]

    @pytest.mark.asyncio
    async def test_concurrent_requests(self):
        """Test that a blocking function does not serialize requests."""
        started = []

        def handle(ctx: RequestContext) -> None:
            started.append(True)
            ctx.wait(timeout=0.2)

        app = create_app(FunctionHandler(handle))

        async with TestClient(TestServer(app)) as client:
            responses = await asyncio.gather(*(client.post("/") for _ in range(3)))

        assert [r.status for r in responses] == [200, 200, 200]
        assert len(started) == 3


class TestClientDisconnect:
    """Test that abandoned requests cancel the function's context."""

    @pytest.mark.asyncio
    async def test_cancelled_request_cancels_context(self):
        """Test that cancelling the request task cancels the running function's context."""
        contexts = []
        started = threading.Event()

        def handle(ctx: RequestContext) -> None:
            contexts.append(ctx)
            started.set()
            ctx.wait(timeout=5)

        app = create_app(FunctionHandler(handle))
        request = make_mocked_request("POST", "/", app=app, payload=EMPTY_PAYLOAD)

        task = asyncio.create_task(handle_event_request(request))
        assert await asyncio.to_thread(started.wait, 5)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert contexts[0].cancelled() is True

    @pytest.mark.asyncio
    async def test_serve_enables_handler_cancellation(self):
        """Test that the runner cancels handlers when clients disconnect."""
        with patch("server.http_server.web.AppRunner") as mock_runner_cls, \
             patch("server.http_server.web.TCPSite") as mock_site_cls:
            runner = mock_runner_cls.return_value
            runner.setup = AsyncMock()
            runner.cleanup = AsyncMock()
            mock_site_cls.return_value.start = AsyncMock()

            task = asyncio.create_task(
                serve(FunctionHandler(echo), ServerConfig(port=9000))
            )
            for _ in range(5):
                await asyncio.sleep(0)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        assert mock_runner_cls.call_args.kwargs["handler_cancellation"] is True
        runner.cleanup.assert_awaited_once()


class TestStart:
    """Test the blocking start() entry point."""

    def test_start_runs_server(self):
        """Test that start() configures logging and runs the server."""
        config = ServerConfig(port=9000)

        with patch("server.http_server.configure_json_logging") as mock_logging, \
             patch("server.http_server.serve", new=MagicMock()) as mock_serve, \
             patch("server.http_server.asyncio.run") as mock_run:
            start(echo, config)

        mock_logging.assert_called_once_with(level="INFO", pretty=False)
        mock_run.assert_called_once()
        handler, passed_config = mock_serve.call_args.args
        assert isinstance(handler, FunctionHandler)
        assert passed_config is config

    def test_start_loads_config_when_omitted(self):
        """Test that configuration is loaded from the environment by default."""
        config = ServerConfig(port=9000)

        with patch("server.http_server.load_config", return_value=config) as mock_load, \
             patch("server.http_server.configure_json_logging"), \
             patch("server.http_server.serve", new=MagicMock()), \
             patch("server.http_server.asyncio.run"):
            start(echo)

        mock_load.assert_called_once_with()

    def test_start_rejects_unsupported_function(self):
        """Test that an unsupported signature aborts startup before serving."""

        def handle(a: bytes, b: bytes, c: bytes) -> None:
            pass

        with patch("server.http_server.configure_json_logging"), \
             patch("server.http_server.asyncio.run") as mock_run:
            with pytest.raises(TooManyArgumentsError):
                start(handle, ServerConfig(port=9000))

        mock_run.assert_not_called()

    def test_keyboard_interrupt_stops_cleanly(self):
        """Test that Ctrl-C ends start() without raising."""
        with patch("server.http_server.configure_json_logging"), \
             patch("server.http_server.serve", new=MagicMock()), \
             patch("server.http_server.asyncio.run", side_effect=KeyboardInterrupt):
            start(echo, ServerConfig(port=9000))
