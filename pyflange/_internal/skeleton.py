"""
Callee-side dispatcher.

A :class:`ServiceSkeleton` turns one request payload into one response:
decode the envelope, resolve the method, convert the arguments, invoke the
service, and encode either the return value or the raised exception.

Caller-input problems (bad envelope, unknown or ambiguous method, wrong
argument count, unconvertible arguments) are raised to the host runtime and
never encoded as a remote failure; only exceptions raised by the service
implementation itself are marshalled back to the caller.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import inspect
import logging
from collections.abc import Awaitable, Sequence
from typing import IO, Any

from ..errors import ArgumentCountError, ConversionError, MarshalError
from .envelope import InvocationEnvelope, InvocationResponse, debugprint
from .method_registry import MethodRegistry, ServiceMethod, get_api_registry
from .type_descriptor import TypeDescriptor
from .unhandled_error import UnhandledError
from .value_codec import ValueCodec

logger = logging.getLogger(__name__)

_CANCELLED_ERRORS = (concurrent.futures.CancelledError, asyncio.CancelledError)


def unmarshal_method_args(
    args: Sequence[Any],
    param_types: Sequence[TypeDescriptor],
    codec: ValueCodec,
    method_name: str = "<unknown>",
) -> list[Any]:
    """Convert decoded JSON arguments to the declared parameter types.

    Raises:
        ArgumentCountError: if the argument and parameter counts differ.
        MarshalError: if an argument cannot be converted.
    """
    if len(args) != len(param_types):
        raise ArgumentCountError(
            f"Method `{method_name}` expects {len(param_types)} argument(s), got {len(args)}"
        )
    converted = []
    for index, (raw, param_type) in enumerate(zip(args, param_types)):
        try:
            converted.append(codec.convert(raw, param_type))
        except ConversionError as exc:
            raise MarshalError(
                f"Cannot unmarshal argument {index} of `{method_name}` as `{param_type.describe()}`: {exc}"
            ) from exc
    return converted


def _cancelled_error(method: ServiceMethod) -> RuntimeError:
    return RuntimeError(f"Service operation cancelled while invoking `{method.name}`.")


async def _await(awaitable: Awaitable[Any]) -> Any:
    return await awaitable


class ServiceSkeleton:
    """Dispatches invocation requests to a service implementation."""

    def __init__(self, registry: MethodRegistry, service: Any, codec: ValueCodec | None = None) -> None:
        self.registry = registry
        self.service = service
        self.codec = codec or ValueCodec()

    @classmethod
    def for_api(cls, api: type, service: Any, codec: ValueCodec | None = None) -> ServiceSkeleton:
        return cls(get_api_registry(api), service, codec)

    def handle(self, request_payload: bytes | str) -> InvocationResponse:
        """Handle one request synchronously, blocking on asynchronous results.

        Raises:
            InvocationRequestError: for caller-input errors.
            MarshalError: if an argument or the return value cannot be converted.
        """
        method, args = self._prepare(request_payload)
        try:
            result = self.invoke_service(method, args)
        except Exception as exc:
            return self._failure(method, exc)
        return self._success(method, result)

    async def handle_async(self, request_payload: bytes | str) -> InvocationResponse:
        """Handle one request, awaiting asynchronous results on the running loop."""
        method, args = self._prepare(request_payload)
        try:
            result = method.invoke(self.service, args)
            if isinstance(result, concurrent.futures.Future):
                result = asyncio.wrap_future(result)
            if inspect.isawaitable(result):
                try:
                    result = await result
                except asyncio.CancelledError as exc:
                    task = asyncio.current_task()
                    if task is not None and task.cancelling():
                        raise
                    raise _cancelled_error(method) from exc
        except Exception as exc:
            return self._failure(method, exc)
        return self._success(method, result)

    def handle_stream(self, input_stream: IO[bytes], output_stream: IO[bytes]) -> str | None:
        """Stream-handler entry point: read the request, write the response body.

        Returns the function error flag for the host runtime to report.
        """
        response = self.handle(input_stream.read())
        output_stream.write(response.payload)
        return response.function_error

    def invoke_service(self, method: ServiceMethod, args: Sequence[Any]) -> Any:
        """Invoke the implementation and wait for an asynchronous result."""
        result = method.invoke(self.service, args)
        if isinstance(result, concurrent.futures.Future) or inspect.isawaitable(result):
            return self._wait_for(method, result)
        return result

    def _wait_for(self, method: ServiceMethod, result: Any) -> Any:
        try:
            if isinstance(result, concurrent.futures.Future):
                return result.result()
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                return asyncio.run(_await(result))
            # Called from inside an event loop: run the awaitable on its own loop
            with concurrent.futures.ThreadPoolExecutor(max_workers=1) as executor:
                return executor.submit(asyncio.run, _await(result)).result()
        except _CANCELLED_ERRORS as exc:
            raise _cancelled_error(method) from exc

    def _prepare(self, request_payload: bytes | str) -> tuple[ServiceMethod, list[Any]]:
        debugprint("Handling request", request_payload)
        envelope = InvocationEnvelope.from_payload(request_payload, self.codec)
        method = self.registry.resolve(envelope.method_name)
        args = unmarshal_method_args(envelope.args, method.param_types, self.codec, method.name)
        return method, args

    def _success(self, method: ServiceMethod, result: Any) -> InvocationResponse:
        if method.result_type.is_no_value:
            payload = b"null"
        else:
            payload = self.codec.dumps(result)
        debugprint("Method", method.name, "returned", payload)
        return InvocationResponse.success(payload)

    def _failure(self, method: ServiceMethod, exc: BaseException) -> InvocationResponse:
        logger.exception("Service method `%s` raised an unhandled exception", method.name)
        error = UnhandledError.from_exception(exc, max_depth=self.codec.config.max_cause_depth)
        return InvocationResponse.unhandled(error.to_payload(self.codec))
