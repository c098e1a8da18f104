"""Public structural protocols for pyflange.

Generated stubs and skeletons depend on these interfaces rather than on the
concrete codec and dispatcher classes, so alternative implementations can be
substituted without inheriting from them.
"""

from __future__ import annotations

from typing import IO, Any, Protocol, runtime_checkable

from ._internal.envelope import InvocationResponse
from ._internal.transports import FaasTransport

__all__ = ["CodecProtocol", "FaasTransport", "ServiceSkeletonProtocol"]


@runtime_checkable
class CodecProtocol(Protocol):
    """Interface for the JSON value codec."""

    def loads(self, data: bytes | str) -> Any:
        """Parse JSON text into plain values."""

    def convert(self, raw: Any, target: Any) -> Any:
        """Coerce a decoded JSON value into a value of *target*."""

    def deserialize_as(self, data: bytes | str, target: Any) -> Any:
        """Parse *data* and convert the result to *target*."""

    def dumps(self, value: Any) -> bytes:
        """Encode a value as UTF-8 JSON bytes."""

    def serialize(self, value: Any, sink: IO[bytes]) -> IO[bytes]:
        """Write the encoding of *value* to *sink*."""


@runtime_checkable
class ServiceSkeletonProtocol(Protocol):
    """Interface for callee-side dispatchers hosted by a function runtime."""

    def handle(self, request_payload: bytes | str) -> InvocationResponse:
        """Handle one request and return the response to send."""

    async def handle_async(self, request_payload: bytes | str) -> InvocationResponse:
        """Handle one request on the running event loop."""

    def handle_stream(self, input_stream: IO[bytes], output_stream: IO[bytes]) -> str | None:
        """Read a request from *input_stream*, write the response body, return the function error."""
