"""Reified type information for the value codec.

A :class:`TypeDescriptor` is either a concrete nominal type (``int``,
``LanguageTag``, a dataclass) or that type parameterized with exactly one
descriptor argument (``list[LanguageTag]``, an optional ``str``). Call sites
build descriptors directly, or resolve them once from the annotations of a
service API.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import types
from collections.abc import Awaitable, Coroutine
from dataclasses import dataclass
from typing import Any, ClassVar, Optional, TypeVar, Union, get_args, get_origin

from ..errors import InvalidTypeTokenError

NoneType = type(None)

# Origins treated as asynchronous result handles.
FUTURE_ORIGINS: tuple[Any, ...] = (concurrent.futures.Future, asyncio.Future, Awaitable, Coroutine)


@dataclass(frozen=True)
class TypeDescriptor:
    """A concrete runtime type plus at most one type argument."""

    origin: Any
    args: tuple[TypeDescriptor, ...] = ()

    ANY: ClassVar[TypeDescriptor]
    NO_VALUE: ClassVar[TypeDescriptor]

    def __post_init__(self) -> None:
        if len(self.args) > 1:
            raise InvalidTypeTokenError(
                f"Type `{_name_of(self.origin)}` has {len(self.args)} type arguments; "
                "only a single type argument is supported."
            )
        if self.origin is not Optional and not isinstance(self.origin, type):
            raise InvalidTypeTokenError(f"Type descriptor origin `{self.origin!r}` is not a concrete type.")

    @classmethod
    def of(cls, origin: Any, argument: Any = None) -> TypeDescriptor:
        """Build a descriptor from an origin and an optional single argument."""
        if argument is None:
            return cls(origin)
        return cls(origin, (cls.resolve(argument),))

    @classmethod
    def optional(cls, argument: Any) -> TypeDescriptor:
        return cls(Optional, (cls.resolve(argument),))

    @classmethod
    def resolve(cls, type_expression: Any) -> TypeDescriptor:
        """Resolve a Python type expression into a descriptor.

        ``None`` means "no value", ``Any`` and ``object`` mean "any JSON value",
        ``X | None`` and ``Optional[X]`` are the optional of ``X``.

        Raises:
            InvalidTypeTokenError: for unions other than optionals, type
                variables, and parameterized types with more than one argument.
        """
        if isinstance(type_expression, TypeDescriptor):
            return type_expression
        if type_expression is None or type_expression is NoneType:
            return cls.NO_VALUE
        if type_expression is Any or type_expression is object:
            return cls.ANY
        if isinstance(type_expression, TypeVar):
            raise InvalidTypeTokenError(f"Unbound type variable `{type_expression}` cannot be resolved.")

        origin = get_origin(type_expression)
        if origin is None:
            if isinstance(type_expression, type):
                return cls(type_expression)
            raise InvalidTypeTokenError(f"`{type_expression!r}` is not a type.")

        args = get_args(type_expression)
        if origin is Union or origin is types.UnionType:
            present = [arg for arg in args if arg is not NoneType]
            if len(present) == 1 and len(args) == 2:
                return cls.optional(present[0])
            raise InvalidTypeTokenError(f"Union type `{type_expression}` is not supported; only optionals are.")
        if not args:
            return cls(origin)
        if len(args) != 1:
            raise InvalidTypeTokenError(
                f"Parameterized type `{type_expression}` has {len(args)} type arguments; "
                "only a single type argument is supported."
            )
        return cls(origin, (cls.resolve(args[0]),))

    def parameter_at(self, index: int) -> TypeDescriptor:
        try:
            return self.args[index]
        except IndexError:
            raise InvalidTypeTokenError(f"Type `{self.describe()}` has no type argument at index {index}.") from None

    @property
    def value_type(self) -> TypeDescriptor:
        """The single type argument, or ANY for a bare generic type."""
        return self.args[0] if self.args else TypeDescriptor.ANY

    @property
    def is_optional(self) -> bool:
        return self.origin is Optional

    @property
    def is_no_value(self) -> bool:
        return self.origin is NoneType

    @property
    def is_any(self) -> bool:
        return self.origin is object

    @property
    def is_future(self) -> bool:
        return isinstance(self.origin, type) and issubclass(self.origin, FUTURE_ORIGINS)

    def describe(self) -> str:
        if self.is_optional:
            return f"{self.value_type.describe()} | None"
        if self.is_no_value:
            return "None"
        name = _name_of(self.origin)
        if not self.args:
            return name
        return f"{name}[{', '.join(arg.describe() for arg in self.args)}]"

    def __str__(self) -> str:
        return self.describe()


def _name_of(origin: Any) -> str:
    return getattr(origin, "__qualname__", None) or repr(origin)


TypeDescriptor.ANY = TypeDescriptor(object)
TypeDescriptor.NO_VALUE = TypeDescriptor(NoneType)
