"""Tests for marshalling exceptions as UnhandledError payloads.

These tests verify:
1. Exceptions round trip with their type, message and cause chain
2. Unknown or unconstructable types degrade to UnavailableMarshalledError
3. Placeholders are unwrapped when the original type is available
4. Stack trace lines are parsed, with unparsable lines kept as markers
"""

import json
import logging
import sys
import traceback

import pytest

from pyflange import (
    CodecConfig,
    ExceptionRegistry,
    MarshalError,
    UnavailableMarshalledError,
    UnhandledError,
)
from pyflange._internal.unhandled_error import (
    MAX_UNWRAP_DEPTH,
    REMOTE_STACK_ATTRIBUTE,
    format_frame,
    parse_frame,
)

from .fixtures.services import CATALOG_CODEC_CONFIG, CatalogCauseError, CatalogError, NoArgumentError


def raise_and_catch(exc):
    try:
        raise exc
    except BaseException as caught:
        return caught


def nested_failure():
    try:
        try:
            raise KeyError("innermost")
        except KeyError as exc:
            raise CatalogError("middle") from exc
    except CatalogError as exc:
        return _outer(exc)


def _outer(cause):
    try:
        raise RuntimeError("outer") from cause
    except RuntimeError as exc:
        return exc


class TestFromException:
    def test_type_message_and_frames(self):
        exc = raise_and_catch(ValueError("bad input"))
        error = UnhandledError.from_exception(exc)
        assert error.error_type == "builtins.ValueError"
        assert error.error_message == "bad input"
        assert error.cause is None
        assert len(error.stack_trace) == 1
        assert error.stack_trace[0].endswith("in raise_and_catch")

    def test_no_args_means_no_message(self):
        assert UnhandledError.from_exception(CatalogError()).error_message is None

    def test_key_error_message_is_its_argument(self):
        assert UnhandledError.from_exception(KeyError("k")).error_message == "k"

    def test_cause_chain(self):
        error = UnhandledError.from_exception(nested_failure())
        assert [error.error_type, error.cause.error_type, error.cause.cause.error_type] == [
            "builtins.RuntimeError",
            "tests.fixtures.services.CatalogError",
            "builtins.KeyError",
        ]
        assert error.cause.cause.cause is None

    def test_implicit_context_is_used_as_cause(self):
        try:
            try:
                raise KeyError("first")
            except KeyError:
                raise ValueError("second")
        except ValueError as exc:
            error = UnhandledError.from_exception(exc)
        assert error.cause.error_type == "builtins.KeyError"

    def test_cycle_is_cut(self):
        first, second = ValueError("a"), ValueError("b")
        first.__cause__, second.__cause__ = second, first
        error = UnhandledError.from_exception(first)
        assert error.cause.error_message == "b"
        assert error.cause.cause is None

    def test_depth_is_bounded(self):
        exc = ValueError("0")
        for index in range(1, 50):
            outer = ValueError(str(index))
            outer.__cause__ = exc
            exc = outer
        error = UnhandledError.from_exception(exc, max_depth=5)
        depth = 0
        while error is not None:
            depth += 1
            error = error.cause
        assert depth == 5

    def test_empty_error_type_rejected(self):
        with pytest.raises(ValueError):
            UnhandledError("")


class TestWireFormat:
    def test_payload_field_names(self):
        error = UnhandledError("builtins.ValueError", "x", ("frame",), UnhandledError("builtins.KeyError"))
        assert json.loads(error.to_payload()) == {
            "errorType": "builtins.ValueError",
            "errorMessage": "x",
            "stackTrace": ["frame"],
            "cause": {"errorType": "builtins.KeyError", "errorMessage": None, "stackTrace": [], "cause": None},
        }

    def test_parse(self):
        payload = (
            b'{"errorType": "builtins.ValueError", "errorMessage": "x", '
            b'"stackTrace": ["File \\"svc.py\\", line 3, in run"], '
            b'"cause": {"errorType": "builtins.KeyError", "errorMessage": "k"}}'
        )
        error = UnhandledError.parse(payload)
        assert error == UnhandledError(
            "builtins.ValueError", "x", ('File "svc.py", line 3, in run',), UnhandledError("builtins.KeyError", "k")
        )

    def test_null_stack_trace_is_empty(self):
        error = UnhandledError.from_dict({"errorType": "builtins.ValueError", "stackTrace": None})
        assert error.stack_trace == ()

    @pytest.mark.parametrize(
        "data",
        [
            {"errorMessage": "x"},
            {"errorType": ""},
            {"errorType": 1},
            {"errorType": "builtins.ValueError", "errorMessage": 1},
            {"errorType": "builtins.ValueError", "stackTrace": "line"},
            {"errorType": "builtins.ValueError", "cause": "nope"},
            [1, 2],
        ],
    )
    def test_invalid_payloads(self, data):
        with pytest.raises(MarshalError):
            UnhandledError.from_dict(data)


class TestReconstruction:
    def test_round_trip(self):
        original = raise_and_catch(CatalogError("boom"))
        payload = UnhandledError.from_exception(original).to_payload()
        rebuilt = UnhandledError.parse(payload).to_exception(CATALOG_CODEC_CONFIG)
        assert type(rebuilt) is CatalogError
        assert str(rebuilt) == "boom"

    def test_three_level_nested_causes(self):
        rebuilt = UnhandledError.from_exception(nested_failure()).to_exception(CATALOG_CODEC_CONFIG)
        assert type(rebuilt) is RuntimeError
        assert type(rebuilt.__cause__) is CatalogError
        assert str(rebuilt.__cause__) == "middle"
        assert type(rebuilt.__cause__.__cause__) is KeyError
        assert rebuilt.__cause__.__cause__.args == ("innermost",)
        assert rebuilt.__cause__.__cause__.__cause__ is None

    def test_message_and_cause_constructor(self):
        error = UnhandledError(
            "tests.fixtures.services.CatalogCauseError", "outer", (), UnhandledError("builtins.KeyError", "k")
        )
        rebuilt = error.to_exception(CATALOG_CODEC_CONFIG)
        assert type(rebuilt) is CatalogCauseError
        assert type(rebuilt.cause) is KeyError
        assert rebuilt.__cause__ is rebuilt.cause

    def test_nonexistent_type_degrades_to_placeholder(self):
        error = UnhandledError("com.example.DoesNotExist", "The message.", (), UnhandledError("builtins.KeyError"))
        rebuilt = error.to_exception()
        assert type(rebuilt) is UnavailableMarshalledError
        assert rebuilt.marshalled_class_name == "com.example.DoesNotExist"
        assert rebuilt.marshalled_message == "The message."
        assert type(rebuilt.__cause__) is KeyError

    def test_non_exception_type_degrades_to_placeholder(self):
        config = CodecConfig(exception_modules=("tests.fixtures",))
        rebuilt = UnhandledError("tests.fixtures.services.Foo", "x").to_exception(config)
        assert type(rebuilt) is UnavailableMarshalledError

    def test_unconstructable_builtin_degrades_to_placeholder(self, caplog):
        try:
            b"\xff".decode("utf-8")
        except UnicodeDecodeError as exc:
            error = UnhandledError.from_exception(exc)
        with caplog.at_level(logging.WARNING):
            rebuilt = error.to_exception()
        assert type(rebuilt) is UnavailableMarshalledError
        assert rebuilt.marshalled_class_name == "builtins.UnicodeDecodeError"
        assert "invalid start byte" in rebuilt.marshalled_message
        assert "could not be created" in caplog.text

    def test_constructor_without_message_degrades_to_placeholder(self):
        rebuilt = UnhandledError("tests.fixtures.services.NoArgumentError", "unexpected").to_exception(
            CATALOG_CODEC_CONFIG
        )
        assert type(rebuilt) is UnavailableMarshalledError

    def test_constructor_without_message_and_no_message(self):
        rebuilt = UnhandledError("tests.fixtures.services.NoArgumentError").to_exception(CATALOG_CODEC_CONFIG)
        assert type(rebuilt) is NoArgumentError

    def test_unregistered_type_degrades_to_placeholder(self):
        rebuilt = UnhandledError("tests.fixtures.services.CatalogError", "x").to_exception()
        assert type(rebuilt) is UnavailableMarshalledError

    def test_unregistered_type_is_not_imported(self, monkeypatch, capsys):
        monkeypatch.delitem(sys.modules, "this", raising=False)
        rebuilt = UnhandledError("this.NoSuchError", "x").to_exception()
        assert type(rebuilt) is UnavailableMarshalledError
        assert "this" not in sys.modules
        assert capsys.readouterr().out == ""

    def test_type_from_allowed_module_is_imported(self):
        config = CodecConfig(exception_modules="tests.fixtures")
        rebuilt = UnhandledError("tests.fixtures.services.CatalogError", "x").to_exception(config)
        assert type(rebuilt) is CatalogError

    def test_registered_factory_wins(self):
        registry = ExceptionRegistry.with_defaults()
        registry.register("com.example.Foo", lambda message, cause: CatalogError(f"foo: {message}"))
        config = CodecConfig(exception_registry=registry.freeze())
        rebuilt = UnhandledError("com.example.Foo", "x").to_exception(config)
        assert type(rebuilt) is CatalogError
        assert str(rebuilt) == "foo: x"

    def test_closing_parenthesis_in_type_name(self):
        rebuilt = UnhandledError("com.example.Foo)", "x").to_exception()
        assert type(rebuilt) is UnavailableMarshalledError
        assert rebuilt.marshalled_class_name == "com.example.Foo]"


class TestPlaceholderUnwrapping:
    PLACEHOLDER = "pyflange.errors.UnavailableMarshalledError"

    def test_placeholder_for_available_type_is_unwrapped(self):
        rebuilt = UnhandledError(self.PLACEHOLDER, "(builtins.ValueError) bad").to_exception()
        assert type(rebuilt) is ValueError
        assert str(rebuilt) == "bad"

    def test_placeholder_survives_a_second_hop(self):
        first = UnhandledError("com.example.Foo", "The message.").to_exception()
        second = UnhandledError.from_exception(first).to_exception()
        assert type(second) is UnavailableMarshalledError
        assert second.marshalled_class_name == "com.example.Foo"
        assert second.marshalled_message == "The message."

    def test_nested_placeholders_are_unwrapped(self):
        message = "(builtins.ValueError) bad"
        for _ in range(3):
            message = f"({self.PLACEHOLDER}) {message}"
        rebuilt = UnhandledError(self.PLACEHOLDER, message).to_exception()
        assert type(rebuilt) is ValueError

    def test_unwrapping_is_bounded(self):
        message = "(builtins.ValueError) bad"
        for _ in range(MAX_UNWRAP_DEPTH + 2):
            message = f"({self.PLACEHOLDER}) {message}"
        rebuilt = UnhandledError(self.PLACEHOLDER, message).to_exception()
        assert type(rebuilt) is UnavailableMarshalledError

    def test_unparsable_placeholder_message_is_wrapped_again(self):
        rebuilt = UnhandledError(self.PLACEHOLDER, "not compact").to_exception()
        assert type(rebuilt) is UnavailableMarshalledError
        assert rebuilt.marshalled_class_name == self.PLACEHOLDER
        assert rebuilt.marshalled_message == "not compact"


class TestStackTrace:
    def test_frame_format_round_trip(self):
        frame = traceback.FrameSummary("svc.py", 12, "find_user", lookup_line=False)
        line = format_frame(frame)
        assert line == 'File "svc.py", line 12, in find_user'
        parsed = parse_frame(line)
        assert (parsed.filename, parsed.lineno, parsed.name) == ("svc.py", 12, "find_user")

    def test_parse_rejects_other_forms(self):
        with pytest.raises(ValueError):
            parse_frame("at com.example.Foo.bar(Foo.java:12)")

    def test_remote_stack_is_attached(self):
        error = UnhandledError("builtins.ValueError", "x", ('File "svc.py", line 3, in run',))
        rebuilt = error.to_exception()
        stack = getattr(rebuilt, REMOTE_STACK_ATTRIBUTE)
        assert [(frame.filename, frame.lineno, frame.name) for frame in stack] == [("svc.py", 3, "run")]
        assert any("svc.py" in note for note in rebuilt.__notes__)

    def test_unparsable_lines_warn_once_per_node(self, caplog):
        error = UnhandledError(
            "builtins.ValueError",
            "x",
            ("garbage one", 'File "svc.py", line 3, in run', "garbage two"),
            UnhandledError("builtins.KeyError", None, ("garbage three",)),
        )
        with caplog.at_level(logging.WARNING):
            rebuilt = error.to_exception()
        stack = getattr(rebuilt, REMOTE_STACK_ATTRIBUTE)
        assert [frame.filename for frame in stack] == ["<unparsable>", "svc.py", "<unparsable>"]
        assert stack[0].name == "see log"
        warnings = [record for record in caplog.records if "Unable to parse" in record.getMessage()]
        assert len(warnings) == 2

    def test_remote_stack_is_kept_when_marshalled_again(self):
        error = UnhandledError("builtins.ValueError", "x", ('File "svc.py", line 3, in run',))
        again = UnhandledError.from_exception(error.to_exception())
        assert again.stack_trace == ('File "svc.py", line 3, in run',)
