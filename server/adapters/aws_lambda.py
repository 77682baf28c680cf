"""AWS Lambda adapter for event functions.

This adapter transforms AWS Lambda events (from Function URL or API Gateway)
into the universal HTTP format expected by FunctionHandler.

Usage::

    from server.adapters.aws_lambda import make_lambda_handler

    lambda_handler = make_lambda_handler(handle)
"""

import asyncio
import base64
import binascii
import json
import logging
import time
from concurrent.futures import Executor
from typing import Any, Callable, Dict, Optional, Protocol

from eventfn.context import RequestContext
from eventfn.errors import BodyReadError
from server.http_handler import FunctionHandler


class LambdaContext(Protocol):
    """Protocol for AWS Lambda context object.

    This defines the expected interface for Lambda context objects,
    which provide runtime information about the Lambda execution environment.
    """

    aws_request_id: str
    function_name: Optional[str]
    memory_limit_in_mb: Optional[int]

    def get_remaining_time_in_millis(self) -> int:
        ...


logger = logging.getLogger(__name__)

LambdaHandler = Callable[[Dict[str, Any], Optional[LambdaContext]], Dict[str, Any]]


def _request_context(context: Optional[LambdaContext], request_id: str) -> RequestContext:
    """Build a RequestContext whose deadline is the invocation's remaining time."""
    remaining = getattr(context, "get_remaining_time_in_millis", None)
    if not callable(remaining):
        return RequestContext(request_id=request_id)
    return RequestContext(
        deadline=time.monotonic() + remaining() / 1000.0,
        request_id=request_id,
    )


def _body_reader(event: Dict[str, Any]) -> Callable[[], Any]:
    body = event.get("body") or ""
    is_base64 = event.get("isBase64Encoded", False)

    async def read_body() -> bytes:
        if isinstance(body, dict):
            return json.dumps(body).encode("utf-8")
        if is_base64:
            try:
                return base64.b64decode(body, validate=True)
            except (binascii.Error, ValueError) as e:
                raise BodyReadError(f"Invalid base64-encoded body: {e}") from e
        return body.encode("utf-8")

    return read_body


def _to_lambda_response(
    status_code: int, headers: Dict[str, str], body: bytes
) -> Dict[str, Any]:
    """Transform a universal response to Lambda format.

    Binary bodies are base64 encoded since Lambda responses are JSON.
    """
    try:
        return {
            "statusCode": status_code,
            "headers": headers,
            "body": body.decode("utf-8"),
            "isBase64Encoded": False,
        }
    except UnicodeDecodeError:
        return {
            "statusCode": status_code,
            "headers": headers,
            "body": base64.b64encode(body).decode("ascii"),
            "isBase64Encoded": True,
        }


def handle_lambda_event(
    handler: FunctionHandler,
    event: Dict[str, Any],
    context: Optional[LambdaContext],
) -> Dict[str, Any]:
    """Process one Lambda event with ``handler``.

    Supports both Lambda Function URL and API Gateway event formats.

    Args:
        handler: FunctionHandler for the function
        event: Lambda event (HTTP request from Function URL or API Gateway)
        context: Lambda context object

    Returns:
        HTTP response dictionary with statusCode, headers, and body
    """
    request_id = context.aws_request_id if context else "unknown"

    try:
        logger.info(
            "Lambda invocation started",
            extra={
                "request_id": request_id,
                "function_name": getattr(context, "function_name", None),
                "memory_limit": getattr(context, "memory_limit_in_mb", None),
            },
        )

        # Extract HTTP method (supports both formats)
        http_method = event.get("requestContext", {}).get("http", {}).get(
            "method"
        ) or event.get("httpMethod", "POST")

        headers = event.get("headers") or {}
        if not isinstance(headers, dict):
            headers = {}

        status_code, response_headers, response_body = asyncio.run(
            handler.handle_request(
                method=http_method,
                headers=headers,
                body=_body_reader(event),
                request_id=request_id,
                context=_request_context(context, request_id),
            )
        )

        lambda_response = _to_lambda_response(status_code, response_headers, response_body)

        logger.info(
            "Lambda invocation completed",
            extra={
                "request_id": request_id,
                "status_code": status_code,
            },
        )

        return lambda_response

    except Exception as e:
        logger.error(
            f"Error in Lambda handler: {e}",
            extra={
                "request_id": request_id,
                "error_type": type(e).__name__,
            },
            exc_info=True,
        )

        return {
            "statusCode": 500,
            "headers": {"Content-Type": "text/plain", "X-Request-ID": request_id},
            "body": str(e),
            "isBase64Encoded": False,
        }


def make_lambda_handler(
    function: Any, executor: Optional[Executor] = None
) -> LambdaHandler:
    """Create an AWS Lambda handler serving ``function``.

    The function is analyzed immediately, so an unsupported signature fails
    the Lambda cold start rather than individual invocations.

    Args:
        function: Function to serve
        executor: Executor for synchronous functions

    Returns:
        Lambda handler callable

    Raises:
        SignatureError: If the function cannot be adapted
    """
    handler = FunctionHandler(function, executor)

    def lambda_handler(
        event: Dict[str, Any], context: Optional[LambdaContext]
    ) -> Dict[str, Any]:
        return handle_lambda_event(handler, event, context)

    return lambda_handler
