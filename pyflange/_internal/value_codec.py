"""
Value codec: JSON marshalling driven by TypeDescriptors.

This module contains:
1. CodecConfig: the immutable, process-wide codec configuration
2. ValueCodec: conversion of decoded JSON into typed values, and of typed
   values into JSON bytes
"""

from __future__ import annotations

import dataclasses
import datetime
import enum
import functools
import json
import logging
import uuid
from collections.abc import Callable, Collection, Iterable, Mapping, MutableSequence, Sequence
from collections.abc import Set as AbstractSet
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import IO, Any, get_type_hints

from ..errors import ConversionError, MarshalParseError
from .exception_registry import ExceptionRegistry
from .language_tag import LanguageTag
from .type_descriptor import TypeDescriptor

logger = logging.getLogger(__name__)

JSON = Any


@dataclass(frozen=True)
class ScalarCodec:
    """String form of a structured scalar type.

    ``encode`` may return None to mark the value as absent; ``absent`` is
    then the value that null decodes to for a non-optional target.
    """

    decode: Callable[[str], Any]
    encode: Callable[[Any], str | None]
    absent: Any = None


def _encode_language_tag(tag: LanguageTag) -> str | None:
    return None if tag.is_root else tag.to_tag()


DEFAULT_SCALARS: Mapping[type, ScalarCodec] = MappingProxyType({
    LanguageTag: ScalarCodec(LanguageTag.parse, _encode_language_tag, LanguageTag.ROOT),
    datetime.datetime: ScalarCodec(datetime.datetime.fromisoformat, datetime.datetime.isoformat),
    datetime.date: ScalarCodec(datetime.date.fromisoformat, datetime.date.isoformat),
    uuid.UUID: ScalarCodec(uuid.UUID, str),
})


@dataclass(frozen=True)
class CodecConfig:
    """Immutable codec configuration, built once and shared by stubs and skeletons."""

    scalars: Mapping[type, ScalarCodec] = field(default_factory=lambda: DEFAULT_SCALARS)
    exception_registry: ExceptionRegistry = field(
        default_factory=lambda: ExceptionRegistry.with_defaults().freeze()
    )
    exception_modules: tuple[str, ...] = ()
    """Module prefixes from which exception types missing from the registry may be imported.

    Empty by default: only registered exception types are reconstructed.
    """
    max_cause_depth: int = 32
    """Deepest cause chain accepted when marshalling or unmarshalling errors."""

    def __post_init__(self) -> None:
        modules = self.exception_modules
        object.__setattr__(self, "exception_modules", (modules,) if isinstance(modules, str) else tuple(modules))
        if not isinstance(self.scalars, MappingProxyType):
            object.__setattr__(self, "scalars", MappingProxyType(dict(self.scalars)))

    @classmethod
    def default(cls) -> CodecConfig:
        return _default_config()

    def with_scalar(self, scalar_type: type, scalar_codec: ScalarCodec) -> CodecConfig:
        """Return a copy with an additional structured scalar type."""
        return dataclasses.replace(self, scalars={**self.scalars, scalar_type: scalar_codec})

    def scalar_for(self, value_type: type) -> ScalarCodec | None:
        codec = self.scalars.get(value_type)
        if codec is None:
            for base in value_type.__mro__[1:]:
                codec = self.scalars.get(base)
                if codec is not None:
                    break
        return codec


@functools.lru_cache(maxsize=1)
def _default_config() -> CodecConfig:
    return CodecConfig()


@functools.lru_cache(maxsize=None)
def _record_fields(record_type: type) -> tuple[tuple[str, TypeDescriptor, bool], ...]:
    """(name, descriptor, required) for each init field of a dataclass."""
    hints = get_type_hints(record_type)
    result = []
    for record_field in dataclasses.fields(record_type):
        if not record_field.init:
            continue
        required = (
            record_field.default is dataclasses.MISSING
            and record_field.default_factory is dataclasses.MISSING
        )
        result.append((record_field.name, TypeDescriptor.resolve(hints[record_field.name]), required))
    return tuple(result)


@functools.lru_cache(maxsize=None)
def _omittable_fields(record_type: type) -> frozenset[str]:
    """Optional fields left off the wire when absent: those that decode back to None."""
    defaults = {record_field.name: record_field.default for record_field in dataclasses.fields(record_type)}
    return frozenset(
        name
        for name, field_type, required in _record_fields(record_type)
        if field_type.is_optional and (required or defaults[name] is None)
    )


class ValueCodec:
    """Converts between decoded JSON and values described by TypeDescriptors."""

    def __init__(self, config: CodecConfig | None = None) -> None:
        self.config = config if config is not None else CodecConfig.default()

    # ------------------------------------------------------------------
    # Decoding
    # ------------------------------------------------------------------

    def loads(self, data: bytes | bytearray | memoryview | str) -> JSON:
        """Parse JSON text into plain Python values."""
        try:
            if isinstance(data, (bytearray, memoryview)):
                data = bytes(data)
            return json.loads(data)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise MarshalParseError(f"Malformed JSON payload: {exc}") from exc
        except TypeError as exc:
            raise MarshalParseError(f"Cannot parse payload of type {type(data).__name__}") from exc

    def deserialize_as(self, data: bytes | bytearray | memoryview | str, target: Any) -> Any:
        """Parse *data* and convert the result to *target*.

        A "no value" target yields None for any well-formed JSON.
        """
        descriptor = TypeDescriptor.resolve(target)
        raw = self.loads(data)
        return self.convert(raw, descriptor)

    def convert(self, raw: JSON, target: Any) -> Any:
        """Coerce a decoded JSON value into a value of *target*.

        Raises:
            ConversionError: if the value does not fit the target type.
        """
        return self._convert(raw, TypeDescriptor.resolve(target), "$")

    def _convert(self, raw: JSON, target: TypeDescriptor, path: str) -> Any:
        if target.is_no_value:
            return None
        if target.is_optional:
            if raw is None:
                return None
            return self._convert(raw, target.value_type, path)
        if target.is_any:
            return raw
        if raw is None:
            scalar = self.config.scalar_for(target.origin)
            if scalar is not None and scalar.absent is not None:
                return scalar.absent
            raise self._error(raw, target, path, "null is only allowed for optional types")

        origin = target.origin
        scalar = self.config.scalar_for(origin)
        if scalar is not None:
            if isinstance(raw, origin):
                return raw
            if not isinstance(raw, str):
                raise self._error(raw, target, path, "expected a string")
            try:
                return scalar.decode(raw)
            except (TypeError, ValueError) as exc:
                raise self._error(raw, target, path, str(exc)) from exc

        if origin is bool:
            if isinstance(raw, bool):
                return raw
            raise self._error(raw, target, path)
        if issubclass(origin, enum.Enum):
            try:
                return origin(raw)
            except ValueError as exc:
                raise self._error(raw, target, path, str(exc)) from exc
        if issubclass(origin, int):
            if isinstance(raw, bool):
                raise self._error(raw, target, path)
            if isinstance(raw, int) or isinstance(raw, float) and raw.is_integer():
                return origin(raw)
            raise self._error(raw, target, path)
        if issubclass(origin, float):
            if isinstance(raw, (int, float)) and not isinstance(raw, bool):
                return origin(raw)
            raise self._error(raw, target, path)
        if issubclass(origin, str):
            if isinstance(raw, str):
                return raw
            raise self._error(raw, target, path)
        if dataclasses.is_dataclass(origin):
            return self._convert_record(raw, target, path)
        if issubclass(origin, (str, bytes, bytearray)):
            raise self._error(raw, target, path)
        if issubclass(origin, Mapping):
            if not isinstance(raw, dict):
                raise self._error(raw, target, path, "expected an object")
            return dict(raw) if origin in (dict, Mapping) else origin(raw)
        if issubclass(origin, Iterable):
            if not isinstance(raw, list):
                raise self._error(raw, target, path, "expected an array")
            element_type = target.value_type
            items = [self._convert(item, element_type, f"{path}[{index}]") for index, item in enumerate(raw)]
            return self._collection(origin, items, target, path)
        if isinstance(raw, origin):
            return raw
        raise self._error(raw, target, path)

    def _convert_record(self, raw: JSON, target: TypeDescriptor, path: str) -> Any:
        record_type = target.origin
        if not isinstance(raw, dict):
            raise self._error(raw, target, path, "expected an object")
        fields = _record_fields(record_type)
        unknown = set(raw) - {name for name, _, _ in fields}
        if unknown:
            raise self._error(raw, target, path, f"unknown field(s) {sorted(unknown)}")
        values = {}
        for name, field_type, required in fields:
            if name in raw:
                values[name] = self._convert(raw[name], field_type, f"{path}.{name}")
            elif field_type.is_optional and required:
                # absent optionals are omitted on the wire
                values[name] = None
            elif required:
                raise self._error(raw, target, path, f"missing field `{name}`")
        return record_type(**values)

    def _collection(self, origin: type, items: list[Any], target: TypeDescriptor, path: str) -> Any:
        if origin in (list, MutableSequence, Sequence, Collection, Iterable):
            return items
        if origin is AbstractSet:
            return frozenset(items)
        try:
            return origin(items)
        except TypeError as exc:
            raise self._error(items, target, path, str(exc)) from exc

    def _error(self, raw: JSON, target: TypeDescriptor, path: str, detail: str | None = None) -> ConversionError:
        message = f"Cannot convert {raw!r} at `{path}` to `{target.describe()}`"
        if detail:
            message = f"{message}: {detail}"
        return ConversionError(message, raw, target.describe())

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    def to_json(self, value: Any) -> JSON:
        """Recursively prepare a value for JSON encoding.

        None (an absent optional) stays None; any other value is encoded
        directly, so a present optional is its bare inner value. Dataclass
        fields holding None are omitted.
        """
        if value is None or isinstance(value, (str, bool, int, float)):
            return value
        scalar = self.config.scalar_for(type(value))
        if scalar is not None:
            return scalar.encode(value)
        if isinstance(value, enum.Enum):
            return self.to_json(value.value)
        if dataclasses.is_dataclass(value) and not isinstance(value, type):
            omittable = _omittable_fields(type(value))
            result = {}
            for name, _, _ in _record_fields(type(value)):
                field_value = self.to_json(getattr(value, name))
                if field_value is None and name in omittable:
                    continue
                result[name] = field_value
            return result
        if isinstance(value, Mapping):
            result = {}
            for key, item in value.items():
                json_key = self._to_json_key(key)
                if json_key is not None:
                    result[json_key] = self.to_json(item)
            return result
        if isinstance(value, (list, tuple, set, frozenset)):
            return [self.to_json(item) for item in value]
        raise ConversionError(
            f"Object of type {type(value).__name__} is not JSON serializable. "
            "Register a scalar codec via CodecConfig.with_scalar()",
            value,
            type(value).__qualname__,
        )

    def _to_json_key(self, key: Any) -> str | None:
        if isinstance(key, str):
            return key
        if isinstance(key, enum.Enum):
            key = key.value
        if isinstance(key, (bool, int, float)):
            return json.dumps(key)
        scalar = self.config.scalar_for(type(key))
        if scalar is not None:
            return scalar.encode(key)
        raise ConversionError(f"Mapping key of type {type(key).__name__} is not supported", key, "str")

    def dumps(self, value: Any) -> bytes:
        """Encode a value as UTF-8 JSON bytes."""
        try:
            return json.dumps(self.to_json(value), ensure_ascii=False, allow_nan=False).encode("utf-8")
        except ValueError as exc:
            raise ConversionError(f"Cannot encode value as JSON: {exc}", value) from exc

    def serialize(self, value: Any, sink: IO[bytes]) -> IO[bytes]:
        """Write the JSON encoding of *value* to a binary *sink* and return the sink."""
        sink.write(self.dumps(value))
        return sink
