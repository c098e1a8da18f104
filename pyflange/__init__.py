"""
pyflange - Invoke methods of a service deployed as a cloud function as if it were local.

A generated (or hand-written) stub marshals each call into a JSON invocation
envelope and sends it through a function-as-a-service transport; the matching
skeleton on the function side decodes the arguments, calls the service
implementation and marshals back either the return value or the raised
exception, which the caller sees rebuilt as its original type when that type
is registered with the codec configuration.

Key Features:
    - Type-directed JSON argument and return value conversion
    - Remote exceptions rebuilt with their type, message, cause chain and stack
    - Graceful degradation to a placeholder for exception types unknown locally
    - Synchronous, future-based and coroutine-based invocation
    - AWS Lambda transport (optional ``aws`` extra) and an in-process transport

Basic Usage:
    >>> import pyflange
    >>> class Greeter:
    ...     def greet(self, name: str) -> str: ...
    >>> class GreeterImpl(Greeter):
    ...     def greet(self, name: str) -> str:
    ...         return f"Hello, {name}!"
    >>> transport = pyflange.LocalTransport()
    >>> transport.register(
    ...     pyflange.function_name_for(Greeter),
    ...     pyflange.ServiceSkeleton.for_api(Greeter, GreeterImpl()),
    ... )
    >>> greeter = pyflange.ServiceStub.for_api(Greeter, transport).create_proxy(Greeter)
    >>> greeter.greet("world")
    'Hello, world!'
"""

from ._internal.envelope import InvocationEnvelope, InvocationResponse
from ._internal.exception_registry import ExceptionRegistry
from ._internal.language_tag import LanguageTag
from ._internal.method_registry import MethodRegistry, ServiceMethod, get_api_registry
from ._internal.skeleton import ServiceSkeleton, unmarshal_method_args
from ._internal.stub import ServiceStub
from ._internal.transports import FaasTransport, LambdaTransport, LocalTransport
from ._internal.type_descriptor import TypeDescriptor
from ._internal.unhandled_error import UnhandledError
from ._internal.value_codec import ValueCodec
from .config import CodecConfig, LambdaConfig, ScalarCodec, StubConfig, function_name_for, get_env
from .errors import (
    AmbiguousMethodError,
    ArgumentCountError,
    ConversionError,
    FlangeCloudError,
    InvalidEnvelopeError,
    InvalidTypeTokenError,
    InvocationRequestError,
    MarshalError,
    MarshalledError,
    MarshalledThrowableDescription,
    MarshalParseError,
    NoSuchMethodError,
    RemoteInvocationError,
    RemoteMethodError,
    UnavailableMarshalledError,
)

__version__ = "0.1.0"

__all__ = [
    "AmbiguousMethodError",
    "ArgumentCountError",
    "CodecConfig",
    "ConversionError",
    "ExceptionRegistry",
    "FaasTransport",
    "FlangeCloudError",
    "InvalidEnvelopeError",
    "InvalidTypeTokenError",
    "InvocationEnvelope",
    "InvocationRequestError",
    "InvocationResponse",
    "LambdaConfig",
    "LambdaTransport",
    "LanguageTag",
    "LocalTransport",
    "MarshalError",
    "MarshalledError",
    "MarshalledThrowableDescription",
    "MarshalParseError",
    "MethodRegistry",
    "NoSuchMethodError",
    "RemoteInvocationError",
    "RemoteMethodError",
    "ScalarCodec",
    "ServiceMethod",
    "ServiceSkeleton",
    "ServiceStub",
    "StubConfig",
    "TypeDescriptor",
    "UnavailableMarshalledError",
    "UnhandledError",
    "ValueCodec",
    "function_name_for",
    "get_api_registry",
    "get_env",
    "unmarshal_method_args",
]
