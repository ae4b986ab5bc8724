"""
Tests for the railway kit — Result, FailureDescription and HTTP status mapping.

Tests cover:
  - Success/Failure creation and introspection
  - map, flat_map, ensure, map_failure transformations
  - Side effects and recovery
  - Static factories (from_computation, from_optional)
  - Error body rendering
"""

from __future__ import annotations

import pytest

from pubstore.railway import ErrorCode, Failure, FailureDescription, Result, Success
from pubstore.railway.http_support import HttpStatusMapper, build_error_response, error_body


class TestCreation:
    def test_success_wraps_value(self):
        result = Result.success(42)
        assert result.is_success()
        assert result.value() == 42
        assert bool(result)

    def test_success_rejects_none(self):
        with pytest.raises(TypeError, match="must not be None"):
            Success(None)

    def test_failure_carries_details(self):
        result = Result.failure(ErrorCode.REMOTE_CLIENT_ERROR, "rejected", status_code=422)
        assert result.is_failure()
        assert not result
        assert result.error().details == {"status_code": 422}

    def test_value_of_failure_raises(self):
        with pytest.raises(ValueError, match="Cannot get value"):
            Result.failure(ErrorCode.NOT_FOUND, "missing").value()

    def test_pattern_matching(self):
        match Result.failure(ErrorCode.PARSE_ERROR, "bad"):
            case Failure(err):
                assert err.code is ErrorCode.PARSE_ERROR
            case _:
                pytest.fail("expected a failure")


class TestTransformations:
    def test_flat_map_short_circuits(self):
        calls = []
        result = Result.failure(ErrorCode.TRANSPORT_ERROR, "down").flat_map(
            lambda v: calls.append(v) or Result.success(v)
        )
        assert result.error().code is ErrorCode.TRANSPORT_ERROR
        assert calls == []

    def test_ensure_turns_success_into_failure(self):
        result = Result.success(0).ensure(lambda n: n > 0, ErrorCode.NOT_FOUND, "no rows")
        assert result.error().message == "no rows"

    def test_map_failure_adds_context(self):
        result = Result.failure(ErrorCode.PARSE_ERROR, "bad").map_failure(
            lambda err: err.with_details(publication_id="p-1")
        )
        assert result.error().details == {"publication_id": "p-1"}

    def test_with_details_keeps_timestamp(self):
        original = FailureDescription(ErrorCode.BUILD_ERROR, "x", details={"a": 1})
        extended = original.with_details(b=2)
        assert extended.details == {"a": 1, "b": 2}
        assert extended.timestamp == original.timestamp

    def test_get_or_else_and_recover(self):
        failed = Result.failure(ErrorCode.REMOTE_SERVER_ERROR, "down")
        assert failed.get_or_else("fallback") == "fallback"
        assert failed.recover(lambda err: err.code.value).value() == "REMOTE_SERVER_ERROR"

    def test_peek_failure_runs_only_on_failure(self):
        seen = []
        Result.success(1).peek_failure(seen.append)
        Result.failure(ErrorCode.CANCELLED, "gone").peek_failure(seen.append)
        assert [err.code for err in seen] == [ErrorCode.CANCELLED]


class TestFactories:
    def test_from_computation_captures_exception(self):
        result = Result.from_computation(
            lambda: int("nope"), ErrorCode.VALIDATION_ERROR, "not a number"
        )
        assert result.error().code is ErrorCode.VALIDATION_ERROR
        assert isinstance(result.error().exception, ValueError)
        assert "not a number" in result.error().full_stack_trace()

    def test_from_optional(self):
        assert Result.from_optional(5, "missing").value() == 5
        assert Result.from_optional(None, "missing").error().code is ErrorCode.NOT_FOUND


class TestHttpSupport:
    @pytest.mark.parametrize(
        "code,expected_status",
        [
            (ErrorCode.VALIDATION_ERROR, 400),
            (ErrorCode.NOT_FOUND, 404),
            (ErrorCode.NOT_ENTITLED, 404),
            (ErrorCode.CANCELLED, 499),
            (ErrorCode.BUILD_ERROR, 500),
            (ErrorCode.DATABASE_ERROR, 500),
            (ErrorCode.REMOTE_CLIENT_ERROR, 502),
            (ErrorCode.REMOTE_SERVER_ERROR, 502),
            (ErrorCode.PARSE_ERROR, 502),
            (ErrorCode.TRANSPORT_ERROR, 503),
        ],
    )
    def test_error_code_to_http_status(self, code, expected_status):
        assert HttpStatusMapper.map_error_code(code) == expected_status

    def test_error_body(self):
        failure = FailureDescription(
            ErrorCode.NOT_ENTITLED, "No license", details={"publication_id": "p-1"}
        )
        body = error_body(failure)
        assert body["error_code"] == "NOT_ENTITLED"
        assert body["details"] == {"publication_id": "p-1"}
        assert body["timestamp"] == failure.timestamp.isoformat()

    def test_build_error_response_status(self):
        response = build_error_response(FailureDescription(ErrorCode.TRANSPORT_ERROR, "down"))
        assert response.status_code == 503
