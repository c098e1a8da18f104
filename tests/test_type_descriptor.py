"""Tests for TypeDescriptor resolution and accessors."""

import asyncio
import concurrent.futures
from collections.abc import Awaitable
from typing import Any, Optional, TypeVar

import pytest

from pyflange import InvalidTypeTokenError, LanguageTag, TypeDescriptor

T = TypeVar("T")


class TestResolve:
    """Python type expressions resolve to at most one type argument."""

    def test_plain_type_has_no_arguments(self):
        descriptor = TypeDescriptor.resolve(LanguageTag)
        assert descriptor.origin is LanguageTag
        assert descriptor.args == ()

    def test_single_argument_generic(self):
        descriptor = TypeDescriptor.resolve(list[LanguageTag])
        assert descriptor.origin is list
        assert descriptor.parameter_at(0) == TypeDescriptor(LanguageTag)

    def test_nested_generic(self):
        descriptor = TypeDescriptor.resolve(list[set[int]])
        assert descriptor.parameter_at(0).parameter_at(0).origin is int

    def test_bare_generic_value_type_is_any(self):
        descriptor = TypeDescriptor.resolve(list)
        assert descriptor.value_type.is_any

    @pytest.mark.parametrize("expression", [Optional[str], str | None, None | str])
    def test_optional_forms(self, expression):
        descriptor = TypeDescriptor.resolve(expression)
        assert descriptor.is_optional
        assert descriptor.value_type == TypeDescriptor(str)

    @pytest.mark.parametrize("expression", [None, type(None)])
    def test_no_value(self, expression):
        assert TypeDescriptor.resolve(expression).is_no_value

    @pytest.mark.parametrize("expression", [Any, object])
    def test_any(self, expression):
        assert TypeDescriptor.resolve(expression) is TypeDescriptor.ANY

    def test_descriptor_resolves_to_itself(self):
        descriptor = TypeDescriptor.of(list, int)
        assert TypeDescriptor.resolve(descriptor) is descriptor

    @pytest.mark.parametrize(
        "expression",
        [dict[str, int], tuple[int, str], int | str, int | str | None, T, "int"],
    )
    def test_unsupported_expressions(self, expression):
        with pytest.raises(InvalidTypeTokenError):
            TypeDescriptor.resolve(expression)

    def test_invalid_type_token_is_type_error(self):
        with pytest.raises(TypeError):
            TypeDescriptor.resolve(dict[str, int])


class TestConstruction:
    """Descriptors built directly by call sites."""

    def test_of_with_argument(self):
        descriptor = TypeDescriptor.of(list, TypeDescriptor.of(LanguageTag))
        assert descriptor == TypeDescriptor.resolve(list[LanguageTag])

    def test_more_than_one_argument_rejected(self):
        with pytest.raises(InvalidTypeTokenError):
            TypeDescriptor(dict, (TypeDescriptor(str), TypeDescriptor(int)))

    def test_non_type_origin_rejected(self):
        with pytest.raises(InvalidTypeTokenError):
            TypeDescriptor("list")

    def test_parameter_out_of_range(self):
        with pytest.raises(InvalidTypeTokenError, match="no type argument at index 1"):
            TypeDescriptor.resolve(list[int]).parameter_at(1)

    def test_descriptors_are_hashable(self):
        assert len({TypeDescriptor.resolve(list[int]), TypeDescriptor.of(list, int)}) == 1


class TestPredicates:
    @pytest.mark.parametrize(
        "expression",
        [concurrent.futures.Future[int], asyncio.Future[int], Awaitable[int]],
    )
    def test_future_types(self, expression):
        descriptor = TypeDescriptor.resolve(expression)
        assert descriptor.is_future
        assert descriptor.value_type == TypeDescriptor(int)

    def test_plain_type_is_not_future(self):
        assert not TypeDescriptor.resolve(int).is_future
        assert not TypeDescriptor.resolve(int | None).is_future

    def test_describe(self):
        assert TypeDescriptor.resolve(list[LanguageTag]).describe() == "list[LanguageTag]"
        assert str(TypeDescriptor.resolve(str | None)) == "str | None"
        assert TypeDescriptor.NO_VALUE.describe() == "None"
