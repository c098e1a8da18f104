"""
Invocation wire format.

This module contains:
1. Wire constants: envelope keys, success status, function error flag
2. InvocationEnvelope: the request sent for a single method call
3. InvocationResponse: the transport-level outcome of a call
4. debugprint: payload tracing behind FLANGE_DEBUG_MARSHALLING
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from ..config import is_debug_marshalling
from ..errors import InvalidEnvelopeError, MarshalParseError
from .value_codec import ValueCodec

logger = logging.getLogger(__name__)

METHOD_NAME_KEY = "flange-methodName"
METHOD_ARGS_KEY = "flange-methodArgs"

STATUS_OK = 200
FUNCTION_ERROR_UNHANDLED = "Unhandled"

# ---------------------------------------------------------------------------
# Debug Logic
# ---------------------------------------------------------------------------

# Debug flag for verbose payload logging (set via FLANGE_DEBUG_MARSHALLING=1)
debug_all_messages = is_debug_marshalling()


def debugprint(*args: Any) -> None:
    if debug_all_messages:
        logger.debug(" ".join(str(arg) for arg in args))


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InvocationEnvelope:
    """A method name and its positional arguments.

    On the caller side ``args`` holds typed values; after decoding on the
    callee side it holds plain JSON values that are converted once the
    target method, and so the parameter types, are known.
    """

    method_name: str
    args: list[Any] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {METHOD_NAME_KEY: self.method_name, METHOD_ARGS_KEY: list(self.args)}

    def to_payload(self, codec: ValueCodec | None = None) -> bytes:
        return (codec or ValueCodec()).dumps(self.to_dict())

    @classmethod
    def from_payload(cls, data: bytes | str, codec: ValueCodec | None = None) -> InvocationEnvelope:
        """Decode a request payload.

        Raises:
            InvalidEnvelopeError: if the payload is not JSON, not an object, or
                lacks a string method name or an argument array.
        """
        codec = codec or ValueCodec()
        try:
            raw = codec.loads(data)
        except MarshalParseError as exc:
            raise InvalidEnvelopeError(f"Invocation request is not valid JSON: {exc}") from exc
        if not isinstance(raw, dict):
            raise InvalidEnvelopeError(
                f"Invocation request must be a JSON object, got {type(raw).__name__}"
            )
        method_name = raw.get(METHOD_NAME_KEY)
        if not isinstance(method_name, str) or not method_name:
            raise InvalidEnvelopeError(f"Invocation request is missing a string `{METHOD_NAME_KEY}`")
        args = raw.get(METHOD_ARGS_KEY)
        if not isinstance(args, list):
            raise InvalidEnvelopeError(
                f"Invocation request for `{method_name}` is missing an array `{METHOD_ARGS_KEY}`"
            )
        return cls(method_name, args)


@dataclass(frozen=True)
class InvocationResponse:
    """Status code, function error flag and body returned by a transport."""

    status_code: int
    function_error: str | None = None
    payload: bytes = b"null"

    @classmethod
    def success(cls, payload: bytes) -> InvocationResponse:
        return cls(STATUS_OK, None, payload)

    @classmethod
    def unhandled(cls, payload: bytes) -> InvocationResponse:
        return cls(STATUS_OK, FUNCTION_ERROR_UNHANDLED, payload)

    @property
    def is_success(self) -> bool:
        return self.status_code == STATUS_OK and self.function_error is None

    @property
    def is_unhandled(self) -> bool:
        return self.status_code == STATUS_OK and self.function_error == FUNCTION_ERROR_UNHANDLED
