"""
Marshalling of exceptions raised by a remote service implementation.

An :class:`UnhandledError` is the structured form of an exception and its
cause chain, as sent back to the caller in the failure payload::

    {"errorType": "builtins.ValueError", "errorMessage": "bad input",
     "stackTrace": ["File \\"svc.py\\", line 12, in find_user"], "cause": null}

Unmarshalling rebuilds the original exception type where possible and falls
back to :class:`~pyflange.errors.UnavailableMarshalledError` otherwise, so no
diagnostic information is dropped when a type is missing on the caller side.
"""

from __future__ import annotations

import logging
import re
import traceback
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from ..errors import MarshalError, MarshalledThrowableDescription, UnavailableMarshalledError
from .exception_registry import qualified_name
from .value_codec import CodecConfig, ValueCodec

logger = logging.getLogger(__name__)

PLACEHOLDER_ERROR_TYPE = qualified_name(UnavailableMarshalledError)
MAX_UNWRAP_DEPTH = 8

# Attribute holding the parsed remote frames of a reconstructed exception
REMOTE_STACK_ATTRIBUTE = "__flange_remote_stack__"

_FRAME_PATTERN = re.compile(r'\s*File "(?P<filename>[^"]*)", line (?P<lineno>\d+), in (?P<name>.+?)\s*')


def format_frame(frame: traceback.FrameSummary) -> str:
    """Format a frame as a single parseable line."""
    return f'File "{frame.filename}", line {frame.lineno or 0}, in {frame.name}'


def parse_frame(line: str) -> traceback.FrameSummary:
    """Parse a line produced by :func:`format_frame`.

    Raises:
        ValueError: if the line is not in the expected form.
    """
    match = _FRAME_PATTERN.fullmatch(line)
    if match is None:
        raise ValueError(f"Unparsable stack frame `{line}`")
    return traceback.FrameSummary(
        match.group("filename"), int(match.group("lineno")), match.group("name"), lookup_line=False, line=""
    )


def unparsable_frame() -> traceback.FrameSummary:
    return traceback.FrameSummary("<unparsable>", 0, "see log", lookup_line=False, line="")


def _cause_of(exc: BaseException) -> BaseException | None:
    if exc.__cause__ is not None:
        return exc.__cause__
    if exc.__context__ is not None and not exc.__suppress_context__:
        return exc.__context__
    return None


@dataclass(frozen=True)
class UnhandledError:
    """Structured, serializable representation of an exception and its causes."""

    error_type: str
    error_message: str | None = None
    stack_trace: tuple[str, ...] = field(default_factory=tuple)
    cause: UnhandledError | None = None

    def __post_init__(self) -> None:
        if not self.error_type:
            raise ValueError("error_type must be a non-empty type name")
        if self.stack_trace is None:
            object.__setattr__(self, "stack_trace", ())
        elif not isinstance(self.stack_trace, tuple):
            object.__setattr__(self, "stack_trace", tuple(self.stack_trace))

    # ------------------------------------------------------------------
    # Marshalling
    # ------------------------------------------------------------------

    @classmethod
    def from_exception(
        cls,
        exc: BaseException,
        *,
        include_stack_trace: bool = True,
        max_depth: int = 32,
    ) -> UnhandledError:
        """Encode an exception and its cause chain.

        Frames of an exception that was itself reconstructed from a remote
        failure are taken from the remote stack, so nothing is lost when an
        error is marshalled across more than one hop.
        """
        chain: list[BaseException] = []
        seen: set[int] = set()
        current: BaseException | None = exc
        while current is not None and id(current) not in seen and len(chain) < max_depth:
            seen.add(id(current))
            chain.append(current)
            current = _cause_of(current)

        result: UnhandledError | None = None
        for link in reversed(chain):
            result = cls(
                error_type=qualified_name(type(link)),
                error_message=_message_of(link),
                stack_trace=_stack_lines(link) if include_stack_trace else (),
                cause=result,
            )
        assert result is not None
        return result

    def to_dict(self) -> dict[str, Any]:
        return {
            "errorType": self.error_type,
            "errorMessage": self.error_message,
            "stackTrace": list(self.stack_trace),
            "cause": self.cause.to_dict() if self.cause is not None else None,
        }

    def to_payload(self, codec: ValueCodec | None = None) -> bytes:
        return (codec or ValueCodec()).dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Any, max_depth: int = 32) -> UnhandledError:
        """Validate and decode a failure payload object.

        Raises:
            MarshalError: if the object is not a valid unhandled error.
        """
        links: list[dict[str, Any]] = []
        current = data
        while current is not None:
            if len(links) >= max_depth:
                raise MarshalError(f"Unhandled error cause chain exceeds {max_depth} levels")
            if not isinstance(current, dict):
                raise MarshalError(f"Unhandled error must be an object, got {type(current).__name__}")
            links.append(current)
            current = current.get("cause")

        result: UnhandledError | None = None
        for link in reversed(links):
            error_type = link.get("errorType")
            if not isinstance(error_type, str) or not error_type:
                raise MarshalError(f"Unhandled error is missing `errorType`: {link!r}")
            error_message = link.get("errorMessage")
            if error_message is not None and not isinstance(error_message, str):
                raise MarshalError(f"Unhandled error `errorMessage` must be a string: {error_message!r}")
            stack_trace = link.get("stackTrace") or []
            if not isinstance(stack_trace, list) or not all(isinstance(line, str) for line in stack_trace):
                raise MarshalError(f"Unhandled error `stackTrace` must be a list of strings: {stack_trace!r}")
            result = cls(error_type, error_message, tuple(stack_trace), result)
        assert result is not None
        return result

    @classmethod
    def parse(cls, data: bytes | str, codec: ValueCodec | None = None) -> UnhandledError:
        """Parse a failure payload."""
        codec = codec or ValueCodec()
        return cls.from_dict(codec.loads(data), codec.config.max_cause_depth)

    # ------------------------------------------------------------------
    # Unmarshalling
    # ------------------------------------------------------------------

    def to_exception(self, config: CodecConfig | None = None) -> BaseException:
        """Rebuild the exception tree, attaching the parsed remote frames to each node."""
        exc = self.create_exception(config)
        frames = []
        warned = False
        for line in self.stack_trace:
            try:
                frames.append(parse_frame(line))
            except ValueError:
                # one warning per node; a garbled trace usually fails on every line
                if not warned:
                    logger.warning("Unable to parse marshalled stack trace line `%s`.", line)
                    warned = True
                frames.append(unparsable_frame())
        stack = traceback.StackSummary.from_list(frames)
        setattr(exc, REMOTE_STACK_ATTRIBUTE, stack)
        if frames:
            exc.add_note("Remote traceback (most recent call last):\n" + "".join(stack.format()).rstrip())
        return exc

    def create_exception(self, config: CodecConfig | None = None) -> BaseException:
        """Construct the bare exception (with cause, without frames).

        Never raises for an unknown or unconstructable type; those become an
        :class:`UnavailableMarshalledError` carrying the original type name,
        message and cause.
        """
        config = config or CodecConfig.default()
        cause = self.cause.to_exception(config) if self.cause is not None else None
        error_type, error_message = _unwrap_placeholder(self.error_type, self.error_message)

        factory = config.exception_registry.resolve(error_type, allowed_modules=config.exception_modules)
        if factory is None:
            return _placeholder(error_type, error_message, cause)
        try:
            exc = factory(error_message, cause)
        except Exception:
            logger.warning(
                "Marshalled error type `%s` could not be created; using placeholder `%s`.",
                error_type,
                UnavailableMarshalledError.__name__,
            )
            return _placeholder(error_type, error_message, cause)
        if not isinstance(exc, BaseException):
            logger.warning("Factory for `%s` did not produce an exception; using placeholder.", error_type)
            return _placeholder(error_type, error_message, cause)
        if cause is not None and exc.__cause__ is None:
            exc.__cause__ = cause
        return exc


def _stack_lines(exc: BaseException) -> tuple[str, ...]:
    remote_stack = getattr(exc, REMOTE_STACK_ATTRIBUTE, None)
    frames: Iterable[traceback.FrameSummary]
    if remote_stack is not None:
        frames = remote_stack
    else:
        frames = traceback.extract_tb(exc.__traceback__)
    return tuple(format_frame(frame) for frame in frames)


def _unwrap_placeholder(error_type: str, error_message: str | None) -> tuple[str, str | None]:
    """Recover the type and message represented by a marshalled placeholder."""
    for _ in range(MAX_UNWRAP_DEPTH):
        if error_type != PLACEHOLDER_ERROR_TYPE:
            break
        if error_message is None:
            logger.warning(
                "Marshalled placeholder is missing its description; wrapping in another placeholder layer."
            )
            break
        try:
            description = MarshalledThrowableDescription.from_message(error_message)
        except ValueError:
            logger.warning(
                "Marshalled placeholder description cannot be parsed from message `%s`; "
                "wrapping in another placeholder layer.",
                error_message,
            )
            break
        error_type, error_message = description.class_name, description.message
    return error_type, error_message


def _placeholder(error_type: str, error_message: str | None, cause: BaseException | None) -> UnavailableMarshalledError:
    return UnavailableMarshalledError(error_type.replace(")", "]"), error_message, cause)


def _message_of(exc: BaseException) -> str | None:
    if not exc.args:
        return None
    if len(exc.args) == 1 and isinstance(exc.args[0], str):
        return exc.args[0]
    return str(exc)
