"""Tests for FailureDescription, ErrorCode and FailureError."""

from types import MappingProxyType

import pytest

from railway import ErrorCode, FailureDescription, FailureError


class TestErrorCode:
    def test_all_12_error_codes_exist(self):
        codes = list(ErrorCode)
        assert len(codes) == 12

    def test_pre_flight_error_codes(self):
        pre_flight = {
            ErrorCode.PARSE_ERROR,
            ErrorCode.CONFIGURATION_ERROR,
            ErrorCode.UNSUPPORTED_OPERATION,
            ErrorCode.NOT_IMPLEMENTED,
        }
        assert len(pre_flight) == 4

    def test_error_code_values_match_names(self):
        for code in ErrorCode:
            assert code.value == code.name


class TestFailureDescription:
    def test_creation_with_code_and_message(self):
        desc = FailureDescription(ErrorCode.CONFIGURATION_ERROR, "config `domain` is required")
        assert desc.code == ErrorCode.CONFIGURATION_ERROR
        assert desc.message == "config `domain` is required"
        assert desc.exception is None
        assert desc.causes == ()
        assert dict(desc.details) == {}
        assert desc.timestamp is not None

    def test_creation_with_exception(self):
        ex = ValueError("bad")
        desc = FailureDescription(ErrorCode.PARSE_ERROR, "Failed to parse PEM certificate", ex)
        assert desc.exception is ex

    def test_factory_method_with_details(self):
        desc = FailureDescription.create(
            ErrorCode.EXTERNAL_SERVICE_ERROR, "failed", None, operation="bind", attempt=2
        )
        assert desc.details["operation"] == "bind"
        assert desc.details["attempt"] == 2
        assert isinstance(desc.details, MappingProxyType)

    def test_details_are_read_only(self):
        desc = FailureDescription.create(ErrorCode.JOB_FAILED, "failed", total=8)
        with pytest.raises(TypeError):
            desc.details["total"] = 9  # type: ignore[index]

    def test_immutability(self):
        desc = FailureDescription(ErrorCode.PARSE_ERROR, "test")
        with pytest.raises(AttributeError):
            desc.message = "changed"  # type: ignore

    def test_timestamp_is_utc(self):
        desc = FailureDescription(ErrorCode.PARSE_ERROR, "test")
        assert desc.timestamp.tzinfo is not None

    def test_equality_ignores_timestamp(self):
        a = FailureDescription(ErrorCode.NOT_FOUND, "x")
        b = FailureDescription(ErrorCode.NOT_FOUND, "x")
        assert a == b

    def test_str_renders_code_and_message(self):
        desc = FailureDescription(ErrorCode.NOT_FOUND, "no domains")
        assert str(desc) == "NOT_FOUND: no domains"

    def test_full_stack_trace_without_exception(self):
        desc = FailureDescription(ErrorCode.PARSE_ERROR, "just a message")
        assert desc.full_stack_trace() == "just a message"

    def test_full_stack_trace_with_exception(self):
        try:
            raise ValueError("boom")
        except ValueError as e:
            desc = FailureDescription(ErrorCode.PARSE_ERROR, "parse failed", e)
            trace = desc.full_stack_trace()
            assert "parse failed" in trace
            assert "ValueError" in trace
            assert "boom" in trace


class TestJoinAndPrefix:
    def test_join_enumerates_causes(self):
        """
        GIVEN two per-target failures
        WHEN joined under PARTIAL_FAILURE
        THEN the message lists each cause and the causes are kept.
        """
        causes = [
            FailureDescription(ErrorCode.EXTERNAL_SERVICE_ERROR, "[a.example.com] HTTP 500"),
            FailureDescription(ErrorCode.EXTERNAL_SERVICE_ERROR, "[b.example.com] HTTP 403"),
        ]

        joined = FailureDescription.join(ErrorCode.PARTIAL_FAILURE, "2 of 5 targets failed", causes)

        assert joined.code == ErrorCode.PARTIAL_FAILURE
        assert joined.message == (
            "2 of 5 targets failed\n  - [a.example.com] HTTP 500\n  - [b.example.com] HTTP 403"
        )
        assert joined.causes == tuple(causes)
        assert joined.details["failure_count"] == 2

    def test_with_prefix_keeps_code_and_details(self):
        desc = FailureDescription.create(ErrorCode.EXTERNAL_SERVICE_ERROR, "HTTP 500", operation="bind")

        prefixed = desc.with_prefix("[a.example.com]")

        assert prefixed.message == "[a.example.com] HTTP 500"
        assert prefixed.code == ErrorCode.EXTERNAL_SERVICE_ERROR
        assert prefixed.details["operation"] == "bind"


class TestFailureError:
    def test_carries_failure(self):
        desc = FailureDescription(ErrorCode.CANCELLED, "context canceled")

        error = FailureError(desc)

        assert error.failure is desc
        assert str(error) == "context canceled"
