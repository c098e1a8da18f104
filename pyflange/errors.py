"""Exception hierarchy for pyflange.

Every error raised by the marshalling layer derives from :class:`FlangeCloudError`
so callers can separate protocol problems from failures of the remote service
itself, which surface as :class:`RemoteMethodError`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any


class FlangeCloudError(Exception):
    """Base error for cloud infrastructure problems: marshalling, transport, dispatch."""


class MarshalError(FlangeCloudError):
    """Serialization, deserialization or data conversion failed."""


class MarshalParseError(MarshalError):
    """The payload was not syntactically valid JSON."""


class ConversionError(MarshalError):
    """A decoded value could not be coerced to the requested type."""

    def __init__(self, message: str, value: Any = None, target: str | None = None) -> None:
        super().__init__(message)
        self.value = value
        self.target = target


class InvalidTypeTokenError(FlangeCloudError, TypeError):
    """A type expression cannot be represented by a TypeDescriptor."""


class InvocationRequestError(FlangeCloudError, ValueError):
    """The caller sent a malformed invocation; never marshalled as a remote failure."""


class InvalidEnvelopeError(InvocationRequestError):
    """The request payload is not a valid invocation envelope."""


class NoSuchMethodError(InvocationRequestError):
    """No service method has the requested name."""


class AmbiguousMethodError(InvocationRequestError):
    """More than one service method has the requested name."""


class ArgumentCountError(InvocationRequestError):
    """The envelope carries a different number of arguments than the method declares."""


class MarshalledError(FlangeCloudError):
    """Wrapper a service may raise to marshal an exception explicitly.

    The wrapped exception is available as ``__cause__``; the caller side
    unwraps it so only the original exception is reported.
    """

    def __init__(self, cause: BaseException, message: str | None = None) -> None:
        if cause is None:
            raise TypeError("MarshalledError requires a cause")
        super().__init__(message if message is not None else str(cause))
        self.__cause__ = cause


class RemoteMethodError(FlangeCloudError):
    """The remote service implementation raised an exception.

    The reconstructed exception (the original type when it could be rebuilt,
    otherwise an :class:`UnavailableMarshalledError`) is ``remote_exception``
    and is also chained as ``__cause__``.
    """

    def __init__(self, method_name: str, remote_exception: BaseException) -> None:
        super().__init__(
            f"Remote method `{method_name}` raised "
            f"{type(remote_exception).__name__}: {remote_exception}"
        )
        self.method_name = method_name
        self.remote_exception = remote_exception
        self.__cause__ = remote_exception


class RemoteInvocationError(FlangeCloudError):
    """The transport reported a failure unrelated to the service's own exceptions."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        function_error: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.function_error = function_error


# ---------------------------------------------------------------------------
# Placeholder for exceptions that cannot be rebuilt locally
# ---------------------------------------------------------------------------

_INVALID_CLASS_NAME_CHARACTER = ")"
_MESSAGE_PATTERN = re.compile(r"\(([^)]*)\)(?: (.*))?", re.DOTALL)


@dataclass(frozen=True)
class MarshalledThrowableDescription:
    """Class name and optional message of an exception that was marshalled.

    Encodes to ``(<class_name>)`` or ``(<class_name>) <message>`` so the
    description survives being marshalled again as a plain message.
    """

    class_name: str
    message: str | None = None

    def __post_init__(self) -> None:
        if self.class_name is None:
            raise TypeError("class_name must not be None")
        if _INVALID_CLASS_NAME_CHARACTER in self.class_name:
            raise ValueError(
                f"Marshalled class name `{self.class_name}` cannot contain "
                f"`{_INVALID_CLASS_NAME_CHARACTER}`."
            )

    @classmethod
    def from_message(cls, message: str) -> MarshalledThrowableDescription:
        """Parse a description from a message produced by :meth:`to_message`.

        Raises:
            ValueError: if the message does not have the compact form.
        """
        if message is None:
            raise ValueError("Marshalled throwable description message must not be None.")
        match = _MESSAGE_PATTERN.fullmatch(message)
        if match is None:
            raise ValueError(
                f"Marshalled class name and marshalled message could not be parsed from message `{message}`."
            )
        return cls(match.group(1), match.group(2))

    def to_message(self) -> str:
        if self.message is None:
            return f"({self.class_name})"
        return f"({self.class_name}) {self.message}"


class UnavailableMarshalledError(MarshalError):
    """Placeholder for a marshalled exception that could not be instantiated.

    Used when the original type is not importable here, is not an exception
    type, or has no usable constructor. The message keeps the compact
    ``(<class_name>) <message>`` form so the placeholder can itself be
    marshalled and later unwrapped where the original type is available.
    """

    def __init__(
        self,
        class_name: str | MarshalledThrowableDescription,
        message: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        if isinstance(class_name, MarshalledThrowableDescription):
            description = class_name
        else:
            description = MarshalledThrowableDescription(class_name, message)
        super().__init__(description.to_message())
        self.description = description
        if cause is not None:
            self.__cause__ = cause

    @classmethod
    def from_message(cls, message: str, cause: BaseException | None = None) -> UnavailableMarshalledError:
        """Rebuild a placeholder from its own full message.

        Raises:
            ValueError: if the message is not in the compact form.
        """
        return cls(MarshalledThrowableDescription.from_message(message), cause=cause)

    @property
    def marshalled_class_name(self) -> str:
        return self.description.class_name

    @property
    def marshalled_message(self) -> str | None:
        return self.description.message
