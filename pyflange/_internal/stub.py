"""
Caller-side invoker.

A :class:`ServiceStub` sends one invocation envelope per call through a
:class:`~pyflange._internal.transports.FaasTransport` and turns the response
back into a return value or a raised :class:`~pyflange.errors.RemoteMethodError`.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import inspect
import logging
import threading
from typing import Any, TypeVar, cast

from ..config import StubConfig, function_name_for, get_env
from ..errors import MarshalledError, RemoteInvocationError, RemoteMethodError
from .envelope import InvocationEnvelope, debugprint
from .method_registry import get_api_registry
from .transports import FaasTransport
from .type_descriptor import TypeDescriptor
from .unhandled_error import UnhandledError
from .value_codec import ValueCodec

logger = logging.getLogger(__name__)

proxied_type = TypeVar("proxied_type", bound=object)

_PAYLOAD_EXCERPT_LENGTH = 512

# ---------------------------------------------------------------------------
# Shared executor for invoke_async
# ---------------------------------------------------------------------------

_shared_executor: concurrent.futures.ThreadPoolExecutor | None = None
_shared_executor_lock = threading.Lock()


def get_shared_executor() -> concurrent.futures.ThreadPoolExecutor:
    """Return the process-wide thread pool used by stubs without their own executor."""
    global _shared_executor
    if _shared_executor is None:
        with _shared_executor_lock:
            if _shared_executor is None:
                _shared_executor = concurrent.futures.ThreadPoolExecutor(thread_name_prefix="pyflange-stub")
    return _shared_executor


def _excerpt(payload: bytes) -> str:
    text = payload.decode("utf-8", errors="replace")
    if len(text) > _PAYLOAD_EXCERPT_LENGTH:
        return text[:_PAYLOAD_EXCERPT_LENGTH] + "..."
    return text


class ServiceStub:
    """Invokes methods of a remote service deployed as a single function."""

    def __init__(
        self,
        transport: FaasTransport,
        function_name: str,
        codec: ValueCodec | None = None,
        executor: concurrent.futures.Executor | None = None,
    ) -> None:
        self.transport = transport
        self.function_name = function_name
        self.codec = codec or ValueCodec()
        self._executor = executor
        self._owns_executor = False

    @classmethod
    def for_api(
        cls,
        api: type,
        transport: FaasTransport,
        config: StubConfig | None = None,
        codec: ValueCodec | None = None,
    ) -> ServiceStub:
        """Build a stub for the function serving *api*, named by convention unless configured."""
        config = config or {}
        function_name = config.get("function_name") or function_name_for(api, config.get("env") or get_env())
        stub = cls(transport, function_name, codec)
        max_workers = config.get("max_workers")
        if max_workers is not None:
            stub._executor = concurrent.futures.ThreadPoolExecutor(
                max_workers=max_workers, thread_name_prefix=f"pyflange-{api.__name__}"
            )
            stub._owns_executor = True
        return stub

    @property
    def executor(self) -> concurrent.futures.Executor:
        return self._executor if self._executor is not None else get_shared_executor()

    def invoke(self, method_name: str, return_type: Any, *args: Any) -> Any:
        """Invoke a remote method and wait for its result.

        Raises:
            RemoteMethodError: if the remote implementation raised an exception.
            RemoteInvocationError: if the transport failed or reported a non-success status.
            MarshalError: if the request or response could not be marshalled.
        """
        descriptor = TypeDescriptor.resolve(return_type)
        if descriptor.is_future:
            descriptor = descriptor.value_type
        payload = InvocationEnvelope(method_name, list(args)).to_payload(self.codec)
        debugprint("Invoking", self.function_name, method_name, payload)

        try:
            response = self.transport.invoke(self.function_name, payload)
        except RemoteInvocationError:
            raise
        except Exception as exc:
            raise RemoteInvocationError(
                f"Transport failed invoking `{method_name}` on function `{self.function_name}`: {exc}"
            ) from exc
        debugprint("Response", response.status_code, response.function_error, response.payload)

        if response.is_success:
            return self.codec.deserialize_as(response.payload, descriptor)
        if response.is_unhandled:
            error = UnhandledError.parse(response.payload, self.codec)
            remote_exception = error.to_exception(self.codec.config)
            if isinstance(remote_exception, MarshalledError) and remote_exception.__cause__ is not None:
                remote_exception = remote_exception.__cause__
            raise RemoteMethodError(method_name, remote_exception)
        raise RemoteInvocationError(
            f"Invocation of `{method_name}` on function `{self.function_name}` failed with status "
            f"{response.status_code} and function error {response.function_error!r}: {_excerpt(response.payload)}",
            status_code=response.status_code,
            function_error=response.function_error,
        )

    def invoke_async(self, method_name: str, return_type: Any, *args: Any) -> concurrent.futures.Future[Any]:
        """Schedule :meth:`invoke` on the stub's executor.

        Never raises: every failure, including a failure to schedule the
        call, is delivered through the returned future.
        """
        try:
            return self.executor.submit(self.invoke, method_name, return_type, *args)
        except Exception as exc:
            logger.debug("Could not schedule `%s` on function `%s`: %s", method_name, self.function_name, exc)
            future: concurrent.futures.Future[Any] = concurrent.futures.Future()
            future.set_exception(exc)
            return future

    def create_proxy(self, api: type[proxied_type]) -> proxied_type:
        """Return an object whose public methods of *api* invoke this stub.

        Coroutine methods of *api* become coroutine methods awaiting
        :meth:`invoke_async`. Methods declared to return a future return the
        future from :meth:`invoke_async`; all others call :meth:`invoke`
        directly.
        """
        this = self
        registry = get_api_registry(api)

        class CallWrapper:
            def __getattr__(self, name: str) -> Any:
                attr = getattr(api, name, None)
                if not callable(attr) or name.startswith("_"):
                    raise AttributeError(f"{name} is not a valid method")

                service_method = registry.resolve(name)
                signature = inspect.signature(attr)

                def positional(args: tuple[Any, ...], kwargs: dict[str, Any]) -> list[Any]:
                    bound = signature.bind(None, *args, **kwargs)
                    bound.apply_defaults()
                    return list(bound.args[1:])

                if inspect.iscoroutinefunction(attr):

                    async def async_method(*args: Any, **kwargs: Any) -> Any:
                        future = this.invoke_async(name, service_method.result_type, *positional(args, kwargs))
                        return await asyncio.wrap_future(future)

                    return async_method

                if service_method.returns_future:

                    def deferred_method(*args: Any, **kwargs: Any) -> concurrent.futures.Future[Any]:
                        return this.invoke_async(name, service_method.result_type, *positional(args, kwargs))

                    return deferred_method

                def method(*args: Any, **kwargs: Any) -> Any:
                    return this.invoke(name, service_method.result_type, *positional(args, kwargs))

                return method

        return cast(proxied_type, CallWrapper())

    def close(self) -> None:
        """Shut down an executor created for this stub. The transport is left open."""
        if self._owns_executor and self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
            self._owns_executor = False

    def __enter__(self) -> ServiceStub:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
