"""Registry of exception factories keyed by fully-qualified type name."""

from __future__ import annotations

import builtins
import importlib
import inspect
import logging
import threading
from collections.abc import Callable, Collection

from .. import errors

logger = logging.getLogger(__name__)

ExceptionFactory = Callable[[str | None, BaseException | None], BaseException]


def qualified_name(exc_type: type) -> str:
    """Return the ``module.qualname`` identifier used on the wire."""
    return f"{exc_type.__module__}.{exc_type.__qualname__}"


def factory_for(exc_type: type[BaseException]) -> ExceptionFactory:
    """Derive a ``(message, cause)`` factory from an exception class constructor.

    Classes whose constructor accepts ``message`` and ``cause`` keywords get
    both. Everything else is constructed from the message alone and has the
    cause attached as ``__cause__`` afterwards.
    """
    try:
        parameters = inspect.signature(exc_type).parameters
    except (TypeError, ValueError):
        parameters = {}

    if "message" in parameters and "cause" in parameters:

        def message_cause_factory(message: str | None, cause: BaseException | None) -> BaseException:
            return exc_type(message=message, cause=cause)  # type: ignore[call-arg]

        return message_cause_factory

    def message_factory(message: str | None, cause: BaseException | None) -> BaseException:
        exc = exc_type() if message is None else exc_type(message)
        if cause is not None:
            exc.__cause__ = cause
        return exc

    return message_factory


class ExceptionRegistry:
    """Explicit mapping from error type identifiers to exception factories.

    Populated at startup and frozen before use; lookups happen on every
    unmarshalled failure. Types missing from the registry may optionally be
    resolved by importing their module.
    """

    def __init__(self) -> None:
        self._factories: dict[str, ExceptionFactory] = {}
        self._lock = threading.Lock()
        self._frozen = False

    @classmethod
    def with_defaults(cls) -> ExceptionRegistry:
        """Registry pre-populated with builtin and pyflange exception types."""
        registry = cls()
        for value in vars(builtins).values():
            if isinstance(value, type) and issubclass(value, BaseException):
                registry.register(value)
        registry.register(
            errors.UnavailableMarshalledError,
            lambda message, cause: errors.UnavailableMarshalledError.from_message(message, cause),  # type: ignore[arg-type]
        )
        registry.register(
            errors.MarshalledError,
            lambda message, cause: errors.MarshalledError(cause, message),  # type: ignore[arg-type]
        )
        for exc_type in (
            errors.FlangeCloudError,
            errors.MarshalError,
            errors.MarshalParseError,
            errors.ConversionError,
            errors.InvalidTypeTokenError,
            errors.InvocationRequestError,
            errors.InvalidEnvelopeError,
            errors.NoSuchMethodError,
            errors.AmbiguousMethodError,
            errors.ArgumentCountError,
            errors.RemoteInvocationError,
        ):
            registry.register(exc_type)
        return registry

    def register(self, exc_type: type[BaseException] | str, factory: ExceptionFactory | None = None) -> None:
        """Register a factory for an exception type or a type identifier."""
        if isinstance(exc_type, str):
            if factory is None:
                raise TypeError(f"A factory is required to register type name `{exc_type}`")
            name = exc_type
        else:
            name = qualified_name(exc_type)
            factory = factory or factory_for(exc_type)
        with self._lock:
            if self._frozen:
                raise RuntimeError(f"Exception registry is frozen; cannot register `{name}`")
            if name in self._factories:
                logger.debug("Overwriting existing exception factory for %s", name)
            self._factories[name] = factory
        logger.debug("Registered exception factory for type: %s", name)

    def freeze(self) -> ExceptionRegistry:
        with self._lock:
            self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get_factory(self, error_type: str) -> ExceptionFactory | None:
        factory = self._factories.get(error_type)
        if factory is None and "." not in error_type:
            factory = self._factories.get(f"builtins.{error_type}")
        return factory

    def has_factory(self, error_type: str) -> bool:
        return self.get_factory(error_type) is not None

    def resolve(self, error_type: str, allowed_modules: Collection[str] = ()) -> ExceptionFactory | None:
        """Return the factory for *error_type*, or None if it cannot be resolved.

        Registered factories win. Otherwise the longest importable module
        prefix of the name is imported, provided it lies within one of
        *allowed_modules*, and the rest of the name looked up as attributes;
        the result must be an exception class. Nothing is imported when
        *allowed_modules* is empty.
        """
        factory = self.get_factory(error_type)
        if factory is not None or not allowed_modules:
            return factory
        exc_type = _import_type(error_type, allowed_modules)
        if exc_type is None:
            return None
        if not (isinstance(exc_type, type) and issubclass(exc_type, BaseException)):
            logger.warning("Marshalled error type `%s` is not an exception type; using placeholder.", error_type)
            return None
        return factory_for(exc_type)

    def clear(self) -> None:
        """Remove all registered factories (useful for tests)."""
        with self._lock:
            self._factories.clear()
            self._frozen = False


def _module_allowed(module_name: str, allowed_modules: Collection[str]) -> bool:
    return any(module_name == prefix or module_name.startswith(prefix + ".") for prefix in allowed_modules)


def _import_type(name: str, allowed_modules: Collection[str]) -> object | None:
    parts = name.split(".")
    for split in range(len(parts) - 1, 0, -1):
        module_name = ".".join(parts[:split])
        if not _module_allowed(module_name, allowed_modules):
            continue
        try:
            target: object = importlib.import_module(module_name)
        except (ImportError, ValueError):
            continue
        try:
            for attribute in parts[split:]:
                target = getattr(target, attribute)
        except AttributeError:
            return None
        return target
    return None
