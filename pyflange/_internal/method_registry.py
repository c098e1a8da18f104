"""
Explicit registry of the methods a service exposes.

Generated skeletons register each method with its parameter and return
descriptors; hand-written services can derive the same registry once from
an API class with :meth:`MethodRegistry.from_api`.
"""

from __future__ import annotations

import functools
import inspect
import logging
import threading
import typing
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any, get_type_hints

from ..errors import AmbiguousMethodError, InvalidTypeTokenError, NoSuchMethodError
from .type_descriptor import TypeDescriptor

logger = logging.getLogger(__name__)

MethodInvoker = Callable[[Any, Sequence[Any]], Any]


@dataclass(frozen=True)
class ServiceMethod:
    """A remotely invocable method: name, parameter descriptors, return descriptor."""

    name: str
    param_types: tuple[TypeDescriptor, ...]
    return_type: TypeDescriptor
    invoker: MethodInvoker | None = None

    @property
    def returns_future(self) -> bool:
        return self.return_type.is_future

    @property
    def result_type(self) -> TypeDescriptor:
        """Type of the value sent back: the future's value type for asynchronous methods."""
        if self.returns_future:
            return self.return_type.value_type
        return self.return_type

    def invoke(self, service: Any, args: Sequence[Any]) -> Any:
        if self.invoker is not None:
            return self.invoker(service, args)
        return getattr(service, self.name)(*args)


class MethodRegistry:
    """Method name to :class:`ServiceMethod` lookup for a single service API.

    Built once at startup and frozen; a name registered more than once
    (an overloaded method) stays registered and is reported as ambiguous
    when invoked.
    """

    def __init__(self, methods: Iterable[ServiceMethod] = ()) -> None:
        self._methods: dict[str, list[ServiceMethod]] = {}
        self._lock = threading.Lock()
        self._frozen = False
        for method in methods:
            self.add(method)

    def register(
        self,
        name: str,
        param_types: Sequence[Any],
        return_type: Any = None,
        invoker: MethodInvoker | None = None,
    ) -> ServiceMethod:
        """Register a method; parameter and return types may be descriptors or type expressions."""
        method = ServiceMethod(
            name,
            tuple(TypeDescriptor.resolve(param_type) for param_type in param_types),
            TypeDescriptor.resolve(return_type),
            invoker,
        )
        self.add(method)
        return method

    def add(self, method: ServiceMethod) -> None:
        with self._lock:
            if self._frozen:
                raise RuntimeError(f"Method registry is frozen; cannot register `{method.name}`")
            overloads = self._methods.setdefault(method.name, [])
            if overloads:
                logger.debug("Method `%s` is overloaded; invocations of it will be rejected", method.name)
            overloads.append(method)

    def freeze(self) -> MethodRegistry:
        with self._lock:
            self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def resolve(self, name: str) -> ServiceMethod:
        """Return the single method registered under *name*.

        Raises:
            NoSuchMethodError: if no method has that name.
            AmbiguousMethodError: if more than one method has that name.
        """
        overloads = self._methods.get(name)
        if not overloads:
            raise NoSuchMethodError(f"No service method named `{name}`")
        if len(overloads) > 1:
            raise AmbiguousMethodError(
                f"Service method name `{name}` is ambiguous: {len(overloads)} overloads are registered"
            )
        return overloads[0]

    def names(self) -> list[str]:
        return sorted(self._methods)

    def __contains__(self, name: object) -> bool:
        return name in self._methods

    def __len__(self) -> int:
        return sum(len(overloads) for overloads in self._methods.values())

    @classmethod
    def from_api(cls, api: type) -> MethodRegistry:
        """Build a frozen registry from the public methods of an API class.

        Parameter and return descriptors come from the type hints of each
        method; a missing annotation means any JSON value. Coroutine
        functions are registered as returning an awaitable of their declared
        return type. Each ``typing.overload`` signature is registered
        separately.
        """
        registry = cls()
        for name, func in inspect.getmembers(api, predicate=inspect.isfunction):
            if name.startswith("_"):
                continue
            if isinstance(inspect.getattr_static(api, name), (staticmethod, classmethod)):
                continue
            signatures = typing.get_overloads(func) or [func]
            for signature_func in signatures:
                registry.add(_describe_method(name, signature_func))
        return registry.freeze()


def _describe_method(name: str, func: Callable[..., Any]) -> ServiceMethod:
    try:
        hints = get_type_hints(func)
    except NameError as exc:
        raise InvalidTypeTokenError(f"Cannot resolve type hints of `{name}`: {exc}") from exc
    parameters = list(inspect.signature(func).parameters.values())[1:]
    param_types = []
    for parameter in parameters:
        if parameter.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            raise InvalidTypeTokenError(
                f"Method `{name}` has variadic parameter `{parameter.name}`; only fixed parameters are supported"
            )
        if parameter.kind is inspect.Parameter.KEYWORD_ONLY:
            raise InvalidTypeTokenError(
                f"Method `{name}` has keyword-only parameter `{parameter.name}`; arguments travel positionally"
            )
        param_types.append(TypeDescriptor.resolve(hints.get(parameter.name, Any)))
    return_type = TypeDescriptor.resolve(hints.get("return", Any))
    if inspect.iscoroutinefunction(func):
        return_type = TypeDescriptor(Awaitable, (return_type,))
    return ServiceMethod(name, tuple(param_types), return_type)


@functools.lru_cache(maxsize=None)
def get_api_registry(api: type) -> MethodRegistry:
    """Shared, frozen registry for an API class."""
    return MethodRegistry.from_api(api)
