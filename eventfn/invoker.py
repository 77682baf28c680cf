"""Invocation of analyzed event functions.

Each supported shape has its own argument builder and result extractor,
picked from the tables below by the Binding's fields. Builders decode the
payload, extractors encode the return value and surface reported errors.
"""

import asyncio
import logging
from concurrent.futures import Executor
from typing import Any, Callable, Dict, Optional, Tuple

from pydantic import ValidationError
from pydantic_core import PydanticSerializationError

from eventfn.context import RequestContext
from eventfn.errors import FunctionError, PayloadDecodeError, ResponseEncodeError
from eventfn.signature import Binding, DataKind

logger = logging.getLogger(__name__)

ArgumentBuilder = Callable[[Binding, RequestContext, bytes], Tuple[Any, ...]]
ResultExtractor = Callable[[Binding, Any], bytes]


def _type_name(tp: Any) -> str:
    return getattr(tp, "__name__", None) or repr(tp)


def _decode_input(binding: Binding, payload: bytes) -> Any:
    if binding.input_kind == DataKind.RAW_BYTES:
        if binding.input_type is bytearray:
            return bytearray(payload)
        return payload

    try:
        return binding.input_adapter.validate_json(payload, strict=True)
    except ValidationError as e:
        raise PayloadDecodeError(
            f"Unable to decode payload as {_type_name(binding.input_type)}: {e}"
        ) from e


def _encode_output(binding: Binding, value: Any) -> bytes:
    if binding.output_kind == DataKind.RAW_BYTES:
        if value is None:
            return b""
        if isinstance(value, (bytes, bytearray, memoryview)):
            return bytes(value)
        raise ResponseEncodeError(
            f"Unable to encode response: expected bytes, got {type(value).__name__}"
        )

    try:
        return binding.output_adapter.dump_json(value, by_alias=True, warnings=False)
    except PydanticSerializationError as e:
        raise ResponseEncodeError(
            f"Unable to encode response as {_type_name(binding.output_type)}: {e}"
        ) from e


def _raise_reported_error(error: Any) -> None:
    if error is not None:
        raise FunctionError(str(error))


def _no_arguments(binding: Binding, ctx: RequestContext, payload: bytes) -> Tuple[Any, ...]:
    return ()


def _context_argument(binding: Binding, ctx: RequestContext, payload: bytes) -> Tuple[Any, ...]:
    return (ctx,)


def _data_argument(binding: Binding, ctx: RequestContext, payload: bytes) -> Tuple[Any, ...]:
    return (_decode_input(binding, payload),)


def _context_and_data_arguments(
    binding: Binding, ctx: RequestContext, payload: bytes
) -> Tuple[Any, ...]:
    return (ctx, _decode_input(binding, payload))


def _empty_result(binding: Binding, result: Any) -> bytes:
    return b""


def _error_result(binding: Binding, result: Any) -> bytes:
    _raise_reported_error(result)
    return b""


def _data_result(binding: Binding, result: Any) -> bytes:
    return _encode_output(binding, result)


def _data_and_error_result(binding: Binding, result: Any) -> bytes:
    if not isinstance(result, tuple) or len(result) != 2:
        raise ResponseEncodeError(
            f"Unable to encode response: expected a (data, error) tuple, "
            f"got {type(result).__name__}"
        )
    data, error = result
    # A reported error discards the data
    _raise_reported_error(error)
    return _encode_output(binding, data)


# (needs_context, has_input) -> builder
_ARGUMENT_BUILDERS: Dict[Tuple[bool, bool], ArgumentBuilder] = {
    (False, False): _no_arguments,
    (True, False): _context_argument,
    (False, True): _data_argument,
    (True, True): _context_and_data_arguments,
}

# (has_output, has_error) -> extractor
_RESULT_EXTRACTORS: Dict[Tuple[bool, bool], ResultExtractor] = {
    (False, False): _empty_result,
    (False, True): _error_result,
    (True, False): _data_result,
    (True, True): _data_and_error_result,
}


def build_arguments(binding: Binding, ctx: RequestContext, payload: bytes) -> Tuple[Any, ...]:
    """Build the positional arguments for a call.

    Raises:
        PayloadDecodeError: If a structured payload is not valid JSON for the
            declared type
    """
    builder = _ARGUMENT_BUILDERS[(binding.needs_context, binding.input_kind != DataKind.NONE)]
    return builder(binding, ctx, payload)


def extract_result(binding: Binding, result: Any) -> bytes:
    """Turn a function's return value into response bytes.

    Raises:
        FunctionError: If the function returned a non-None error
        ResponseEncodeError: If the return value cannot be encoded
    """
    extractor = _RESULT_EXTRACTORS[(binding.output_kind != DataKind.NONE, binding.has_error)]
    return extractor(binding, result)


def _log_raised(binding: Binding, ctx: RequestContext, error: Exception) -> None:
    logger.error(
        f"Function raised {type(error).__name__}: {error}",
        extra={"request_id": ctx.request_id, "shape": binding.describe()},
        exc_info=True,
    )


def invoke(binding: Binding, ctx: RequestContext, payload: bytes) -> bytes:
    """Invoke a synchronous function.

    Args:
        binding: Binding of the function to call
        ctx: Request context
        payload: Raw request body

    Returns:
        Response body

    Raises:
        InvocationError: If decoding, the call itself, or encoding fails
    """
    if binding.is_coroutine:
        raise TypeError("Coroutine functions must be invoked with ainvoke()")

    args = build_arguments(binding, ctx, payload)
    try:
        result = binding.function(*args)
    except Exception as e:
        _log_raised(binding, ctx, e)
        raise FunctionError(str(e)) from e
    return extract_result(binding, result)


async def ainvoke(
    binding: Binding,
    ctx: RequestContext,
    payload: bytes,
    executor: Optional[Executor] = None,
) -> bytes:
    """Invoke a function from the event loop.

    Coroutine functions are awaited directly. Synchronous functions run on
    ``executor`` (the loop's default executor when None) so that a blocking
    function only holds its own worker thread.

    Raises:
        InvocationError: If decoding, the call itself, or encoding fails
    """
    if not binding.is_coroutine:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(executor, invoke, binding, ctx, payload)

    args = build_arguments(binding, ctx, payload)
    try:
        result = await binding.function(*args)
    except Exception as e:
        _log_raised(binding, ctx, e)
        raise FunctionError(str(e)) from e
    return extract_result(binding, result)
