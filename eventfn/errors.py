"""Exception hierarchy for eventfn.

Errors fall into three families, each mapped to one outcome:

- ``SignatureError``: the function cannot be adapted. Raised once, at
  startup, and fatal to process initialization.
- ``ProtocolError``: the request could not be decoded. Reported as 417.
- ``InvocationError``: the call could not be made or its result could not
  be encoded, or the function reported an error. Reported as 500.
"""


class EventFunctionError(Exception):
    """Base class for all eventfn errors."""

    pass


class SignatureError(EventFunctionError):
    """Raised when a function's signature is not one of the supported shapes."""

    pass


class NotAFunctionError(SignatureError):
    pass


class TooManyArgumentsError(SignatureError):
    pass


class ContextMustBeFirstError(SignatureError):
    pass


class TooManyReturnValuesError(SignatureError):
    pass


class InvalidErrorPositionError(SignatureError):
    pass


class UnsupportedTypeError(SignatureError):
    """Raised when a parameter or return annotation cannot be marshaled."""

    pass


class ProtocolError(EventFunctionError):
    """Raised when an HTTP request cannot be decoded into an event."""

    pass


class StructuredModeUnsupportedError(ProtocolError):
    def __init__(self, message: str = "structured content mode not supported") -> None:
        super().__init__(message)


class TimestampParseError(ProtocolError):
    pass


class BodyReadError(ProtocolError):
    pass


class InvocationError(EventFunctionError):
    """Raised when invoking the function fails."""

    pass


class PayloadDecodeError(InvocationError):
    pass


class ResponseEncodeError(InvocationError):
    pass


class FunctionError(InvocationError):
    """The function itself reported (returned or raised) an error."""

    pass
