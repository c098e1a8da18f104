"""
Function invocation transports.

This module contains:
- FaasTransport Protocol
- LocalTransport (in-process, for local development and tests)
- LambdaTransport (AWS Lambda request/response invocation via boto3)
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from ..config import get_aws_profile
from ..errors import InvocationRequestError, MarshalError
from .envelope import InvocationResponse
from .exception_registry import qualified_name
from .value_codec import ValueCodec

if TYPE_CHECKING:
    from .skeleton import ServiceSkeleton

logger = logging.getLogger(__name__)

STATUS_BAD_REQUEST = 400
STATUS_NOT_FOUND = 404


@runtime_checkable
class FaasTransport(Protocol):
    """Protocol for function-as-a-service invocation channels.

    Implementations must be safe to call from several threads at once.
    """

    def invoke(self, function_name: str, payload: bytes) -> InvocationResponse:
        """Send a request payload to a function and wait for its response."""
        ...

    def close(self) -> None:
        """Release any resources held by the transport."""
        ...


class LocalTransport:
    """Transport dispatching to skeletons registered in this process.

    Reports caller-input and marshalling errors raised by a skeleton the way
    a hosted function runtime reports a crashed handler: a non-success
    status with the error type as function error.
    """

    def __init__(self, skeletons: Mapping[str, ServiceSkeleton] | None = None) -> None:
        self._skeletons: dict[str, ServiceSkeleton] = dict(skeletons or {})
        self._lock = threading.Lock()
        self._codec = ValueCodec()

    def register(self, function_name: str, skeleton: ServiceSkeleton) -> None:
        with self._lock:
            if function_name in self._skeletons:
                raise ValueError(f"Function `{function_name}` already registered")
            self._skeletons[function_name] = skeleton

    def invoke(self, function_name: str, payload: bytes) -> InvocationResponse:
        with self._lock:
            skeleton = self._skeletons.get(function_name)
        if skeleton is None:
            return self._error_response(STATUS_NOT_FOUND, None, f"Function not found: {function_name}")
        try:
            return skeleton.handle(payload)
        except (InvocationRequestError, MarshalError) as exc:
            logger.warning("Function `%s` rejected the request: %s", function_name, exc)
            return self._error_response(STATUS_BAD_REQUEST, qualified_name(type(exc)), str(exc))

    def close(self) -> None:
        with self._lock:
            self._skeletons.clear()

    def _error_response(self, status_code: int, error_type: str | None, message: str) -> InvocationResponse:
        body = {"errorType": error_type, "errorMessage": message}
        return InvocationResponse(status_code, error_type, self._codec.dumps(body))


class LambdaTransport:
    """Synchronous AWS Lambda invocation.

    ``boto3`` is imported on first use so it is only required when this
    transport is actually constructed without an explicit client.
    """

    def __init__(
        self,
        client: Any = None,
        *,
        profile_name: str | None = None,
        region_name: str | None = None,
    ) -> None:
        self._client = client if client is not None else _create_lambda_client(profile_name, region_name)

    @classmethod
    def from_config(cls, config: Mapping[str, Any] | None = None) -> LambdaTransport:
        config = config or {}
        return cls(
            profile_name=config.get("profile_name") or get_aws_profile(),
            region_name=config.get("region_name"),
        )

    def invoke(self, function_name: str, payload: bytes) -> InvocationResponse:
        response = self._client.invoke(
            FunctionName=function_name,
            InvocationType="RequestResponse",
            Payload=payload,
        )
        body = response.get("Payload")
        data = body.read() if body is not None else b""
        return InvocationResponse(response["StatusCode"], response.get("FunctionError"), data)

    def close(self) -> None:
        close = getattr(self._client, "close", None)
        if callable(close):
            close()


def _create_lambda_client(profile_name: str | None, region_name: str | None) -> Any:
    try:
        import boto3
    except ImportError as exc:
        raise RuntimeError(
            "LambdaTransport requires boto3. Install it with `pip install pyflange[aws]`."
        ) from exc
    session = boto3.Session(profile_name=profile_name, region_name=region_name)
    return session.client("lambda")
