"""Universal HTTP handler for event functions.

This handler provides transport-agnostic request processing that can be
used by any server or cloud provider adapter (aiohttp, AWS Lambda, etc.).
Each request makes a single pass through::

    IDLE -> METHOD_CHECKED -> DECODED -> INVOKED -> RESPONDED

and ends in exactly one of: 405 (not a POST), 417 (request could not be
decoded), 500 (invocation failed) or 200.
"""

import logging
import time
import uuid
from concurrent.futures import Executor
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from eventfn.context import RequestContext
from eventfn.errors import InvocationError, ProtocolError, SignatureError
from eventfn.invoker import ainvoke
from eventfn.logging_utils import format_request_log, format_response_log
from eventfn.protocol import BodySource, decode
from eventfn.signature import Binding, DataKind, analyze

logger = logging.getLogger(__name__)

Response = Tuple[int, Dict[str, str], bytes]


class RequestState(str, Enum):
    """Stages of a single request."""

    IDLE = "idle"
    METHOD_CHECKED = "method_checked"
    DECODED = "decoded"
    INVOKED = "invoked"
    RESPONDED = "responded"


class FunctionHandler:
    """Serves one function as a CloudEvents binary-mode HTTP endpoint."""

    def __init__(self, function: Any, executor: Optional[Executor] = None) -> None:
        """Analyze the function and prepare the handler.

        Args:
            function: Function to serve
            executor: Executor for synchronous functions; defaults to the
                event loop's default executor

        Raises:
            SignatureError: If the function's signature is not supported
        """
        try:
            self.binding: Binding = analyze(function)
        except SignatureError as e:
            logger.error(f"Cannot serve function: {e}", extra={"error_type": type(e).__name__})
            raise

        self._executor = executor
        logger.info(
            "FunctionHandler initialized",
            extra={
                "function": getattr(function, "__qualname__", repr(function)),
                "shape": self.binding.describe(),
            },
        )

    def _respond(
        self,
        request_id: str,
        state: RequestState,
        status_code: int,
        headers: Dict[str, str],
        body: bytes,
        start_time: float,
    ) -> Response:
        headers["X-Request-ID"] = request_id
        duration_ms = (time.perf_counter() - start_time) * 1000

        response_log_data = format_response_log(
            request_id=request_id,
            status_code=status_code,
            headers=headers,
            body_size=len(body),
            duration_ms=duration_ms,
            success=status_code == 200,
        )
        # The state the request left the machine from
        response_log_data["request_state"] = state.value
        logger.info("HTTP request processed", extra=response_log_data)

        return (status_code, headers, body)

    async def handle_request(
        self,
        method: str,
        headers: Mapping[str, str],
        body: BodySource,
        request_id: Optional[str] = None,
        context: Optional[RequestContext] = None,
    ) -> Response:
        """Handle a universal HTTP request.

        Args:
            method: HTTP method (e.g., "POST", "GET")
            headers: Request headers
            body: Request body, or a coroutine function that reads it
            request_id: Optional request ID for logging/tracing
            context: Context of the underlying request; a fresh one is
                created when omitted

        Returns:
            Tuple of (status_code, response_headers, response_body)
        """
        start_time = time.perf_counter()
        if request_id is None and context is not None:
            request_id = context.request_id
        request_id = request_id or str(uuid.uuid4())

        logger.info(
            "Incoming HTTP request",
            extra=format_request_log(
                request_id=request_id,
                http_method=method,
                headers=headers,
            ),
        )

        state = RequestState.IDLE
        if method != "POST":
            logger.warning(
                f"405 error: Method '{method}' not allowed",
                extra={"request_id": request_id, "http_method": method},
            )
            return self._respond(
                request_id, state, 405, {"Allow": "POST"}, b"", start_time
            )
        state = RequestState.METHOD_CHECKED

        if context is None:
            context = RequestContext(request_id=request_id)

        try:
            payload, ctx = await decode(headers, body, context)
        except ProtocolError as e:
            logger.warning(
                f"417 error: Unable to decode request: {e}",
                extra={"request_id": request_id, "error_type": type(e).__name__},
            )
            return self._respond(
                request_id,
                state,
                417,
                {"Content-Type": "text/plain"},
                str(e).encode("utf-8"),
                start_time,
            )
        state = RequestState.DECODED

        try:
            out = await ainvoke(self.binding, ctx, payload, self._executor)
        except InvocationError as e:
            logger.warning(
                f"500 error: Invocation failed: {e}",
                extra={"request_id": request_id, "error_type": type(e).__name__},
            )
            return self._respond(
                request_id,
                state,
                500,
                {"Content-Type": "text/plain"},
                str(e).encode("utf-8"),
                start_time,
            )
        except Exception as e:
            logger.error(
                f"Error processing request {request_id}: {e}",
                extra={"request_id": request_id, "error_type": type(e).__name__},
                exc_info=True,
            )
            return self._respond(
                request_id,
                state,
                500,
                {"Content-Type": "text/plain"},
                str(e).encode("utf-8"),
                start_time,
            )
        state = RequestState.INVOKED

        response_headers: Dict[str, str] = {}
        if self.binding.output_kind == DataKind.STRUCTURED:
            response_headers["Content-Type"] = "application/json"
        return self._respond(request_id, state, 200, response_headers, out, start_time)
