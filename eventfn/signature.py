"""Signature analysis for event functions.

Inspects a function once, at startup, and describes how its parameters and
return values map onto request and response data. Only a closed set of
shapes is accepted:

    parameters: (), (ctx), (data), (ctx, data)
    returns:    None, error, data, Tuple[data, error]

where ``ctx`` is annotated with a type satisfying ``eventfn.context.Context``,
``data`` is ``bytes``/``bytearray`` or a record type (pydantic model,
dataclass, TypedDict or dict), and ``error`` is an exception type, usually
``Optional[Exception]``.
"""

import collections.abc
import dataclasses
import functools
import inspect
import logging
import types
import typing
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple, Union, get_args, get_origin

from pydantic import BaseModel, ConfigDict, PydanticUserError, TypeAdapter
from typing_extensions import is_typeddict

from eventfn.context import Context
from eventfn.errors import (
    ContextMustBeFirstError,
    InvalidErrorPositionError,
    NotAFunctionError,
    TooManyArgumentsError,
    TooManyReturnValuesError,
    UnsupportedTypeError,
)

logger = logging.getLogger(__name__)

_MISSING = inspect.Parameter.empty
_NONE_TYPE = type(None)
_RAW_BYTES_TYPES = (bytes, bytearray)
_POSITIONAL_KINDS = (
    inspect.Parameter.POSITIONAL_ONLY,
    inspect.Parameter.POSITIONAL_OR_KEYWORD,
)


class DataKind(str, Enum):
    """How a data parameter or return value is marshaled."""

    NONE = "none"
    RAW_BYTES = "raw_bytes"
    STRUCTURED = "structured"


class Binding(BaseModel):
    """Immutable description of how a function maps to requests and responses."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    function: Callable[..., Any]
    needs_context: bool = False
    input_kind: DataKind = DataKind.NONE
    input_type: Optional[Any] = None
    output_kind: DataKind = DataKind.NONE
    output_type: Optional[Any] = None
    has_error: bool = False
    is_coroutine: bool = False
    # pydantic TypeAdapters for STRUCTURED data, built once during analysis
    input_adapter: Optional[Any] = None
    output_adapter: Optional[Any] = None

    def describe(self) -> str:
        """Render the shape, e.g. ``(ctx, structured) -> (structured, error)``."""
        params = []
        if self.needs_context:
            params.append("ctx")
        if self.input_kind != DataKind.NONE:
            params.append(self.input_kind.value)
        returns = []
        if self.output_kind != DataKind.NONE:
            returns.append(self.output_kind.value)
        if self.has_error:
            returns.append("error")
        return f"({', '.join(params)}) -> ({', '.join(returns)})"


def _function_name(function: Any) -> str:
    return getattr(function, "__qualname__", None) or repr(function)


def _resolve_hints(function: Any) -> Dict[str, Any]:
    """Resolve the annotations of a function, callable object or partial."""
    target = function
    if isinstance(target, functools.partial):
        target = target.func
    if not (inspect.isfunction(target) or inspect.ismethod(target)):
        call = getattr(type(target), "__call__", None)
        if inspect.isfunction(call):
            target = call

    try:
        return typing.get_type_hints(target)
    except (NameError, TypeError) as e:
        raise UnsupportedTypeError(
            f"Unable to resolve type annotations of {_function_name(function)}: {e}"
        ) from e


def _is_context_type(annotation: Any) -> bool:
    if not inspect.isclass(annotation):
        return False
    try:
        return issubclass(annotation, Context)
    except TypeError:
        return False


def _is_error_type(annotation: Any) -> bool:
    if get_origin(annotation) in (Union, types.UnionType):
        members = [a for a in get_args(annotation) if a is not _NONE_TYPE]
        return bool(members) and all(_is_error_type(m) for m in members)
    return inspect.isclass(annotation) and issubclass(annotation, BaseException)


def _is_record_type(annotation: Any) -> bool:
    origin = get_origin(annotation) or annotation
    if origin in (dict, collections.abc.Mapping):
        return True
    if not inspect.isclass(annotation):
        return False
    return (
        issubclass(annotation, BaseModel)
        or dataclasses.is_dataclass(annotation)
        or is_typeddict(annotation)
    )


def _return_values(annotation: Any) -> Tuple[Any, ...]:
    """Split a return annotation into the values it declares."""
    if annotation is _MISSING or annotation is None or annotation is _NONE_TYPE:
        return ()
    if annotation in (tuple, typing.Tuple):
        return (annotation,)
    if get_origin(annotation) is tuple:
        args = get_args(annotation)
        if args in ((), ((),)):
            return ()
        if len(args) == 2 and args[1] is Ellipsis:
            return (annotation,)
        return args
    return (annotation,)


def _classify_data(
    annotation: Any, where: str
) -> Tuple[DataKind, Any, Optional[TypeAdapter]]:
    """Decide how a data annotation is marshaled.

    Args:
        annotation: Parameter or return annotation
        where: Description used in error messages

    Returns:
        Tuple of (kind, type, adapter); adapter is None for raw bytes

    Raises:
        UnsupportedTypeError: If the annotation is missing or not marshalable
    """
    if annotation is _MISSING:
        raise UnsupportedTypeError(f"{where} has no type annotation")

    if annotation in _RAW_BYTES_TYPES:
        return DataKind.RAW_BYTES, annotation, None

    if _is_record_type(annotation):
        try:
            adapter = TypeAdapter(annotation)
        except PydanticUserError as e:
            raise UnsupportedTypeError(
                f"{where} type {annotation!r} cannot be decoded from JSON: {e}"
            ) from e
        return DataKind.STRUCTURED, annotation, adapter

    raise UnsupportedTypeError(
        f"{where} has unsupported type {annotation!r}; expected bytes, bytearray "
        f"or a record type (pydantic model, dataclass, TypedDict or dict)"
    )


def analyze(function: Any) -> Binding:
    """Analyze a function and build its Binding.

    Args:
        function: Function to adapt

    Returns:
        Binding describing the function's shape

    Raises:
        NotAFunctionError: If ``function`` is not a function
        TooManyArgumentsError: If it takes more than two parameters
        ContextMustBeFirstError: If it takes two parameters and the first
            is not a context
        TooManyReturnValuesError: If it declares more than two return values
        InvalidErrorPositionError: If it declares two return values and the
            second is not an error, or the first is
        UnsupportedTypeError: If a parameter or return type cannot be marshaled
    """
    if not callable(function) or inspect.isclass(function):
        raise NotAFunctionError(f"{function!r} is not a function")

    name = _function_name(function)
    try:
        signature = inspect.signature(function)
    except (TypeError, ValueError) as e:
        raise NotAFunctionError(f"{name} has no inspectable signature: {e}") from e

    parameters = list(signature.parameters.values())
    if len(parameters) > 2:
        raise TooManyArgumentsError(f"{name}{signature} takes too many arguments")

    for parameter in parameters:
        if parameter.kind not in _POSITIONAL_KINDS:
            raise UnsupportedTypeError(
                f"{name}{signature}: parameter '{parameter.name}' must be positional"
            )

    hints = _resolve_hints(function)
    annotations = [hints.get(p.name, _MISSING) for p in parameters]

    needs_context = False
    input_param: Optional[Tuple[str, Any]] = None
    if annotations:
        if _is_context_type(annotations[0]):
            needs_context = True
        elif len(annotations) == 2:
            raise ContextMustBeFirstError(
                f"First argument must satisfy the Context protocol: {name}{signature}"
            )
        else:
            input_param = (parameters[0].name, annotations[0])
    if len(annotations) == 2:
        input_param = (parameters[1].name, annotations[1])

    returns = _return_values(hints.get("return", _MISSING))
    if len(returns) > 2:
        raise TooManyReturnValuesError(f"{name}{signature} returns too many outputs")

    has_error = False
    output_annotation: Any = _MISSING
    if len(returns) == 1:
        if _is_error_type(returns[0]):
            has_error = True
        else:
            output_annotation = returns[0]
    elif len(returns) == 2:
        if _is_error_type(returns[0]) or not _is_error_type(returns[1]):
            raise InvalidErrorPositionError(
                f"Must return Tuple[data, error] with two return values: {name}{signature}"
            )
        has_error = True
        output_annotation = returns[0]

    input_kind, input_type, input_adapter = DataKind.NONE, None, None
    if input_param is not None:
        param_name, annotation = input_param
        input_kind, input_type, input_adapter = _classify_data(
            annotation, f"{name}: parameter '{param_name}'"
        )

    output_kind, output_type, output_adapter = DataKind.NONE, None, None
    if output_annotation is not _MISSING:
        output_kind, output_type, output_adapter = _classify_data(
            output_annotation, f"{name}: return value"
        )

    binding = Binding(
        function=function,
        needs_context=needs_context,
        input_kind=input_kind,
        input_type=input_type,
        output_kind=output_kind,
        output_type=output_type,
        has_error=has_error,
        is_coroutine=(
            inspect.iscoroutinefunction(function)
            or inspect.iscoroutinefunction(getattr(function, "__call__", None))
        ),
        input_adapter=input_adapter,
        output_adapter=output_adapter,
    )
    logger.debug(f"Analyzed {name}: {binding.describe()}")
    return binding
