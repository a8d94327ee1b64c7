"""
Unit tests for outcome classification.
"""

import httpx
import pytest

from frontdesk.retry.outcome import (
    FailureClass,
    PermanentEffectError,
    PermanentFailure,
    PolicyBlocked,
    PolicyBlockedError,
    Success,
    TransientEffectError,
    TransientFailure,
    classify_exception,
    classify_http_status,
    describe,
    is_success,
)


def _status_error(status_code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://api.example.com/call")
    response = httpx.Response(status_code, request=request)
    return httpx.HTTPStatusError("failed", request=request, response=response)


class TestClassifyException:
    """Tests for mapping handler exceptions onto outcomes."""

    def test_effect_errors_carry_their_class(self) -> None:
        assert classify_exception(PermanentEffectError("bad input")) == PermanentFailure("bad input")
        assert classify_exception(PolicyBlockedError("opted out")) == PolicyBlocked("opted out")
        assert classify_exception(TransientEffectError("busy")) == TransientFailure("busy")

    def test_empty_message_falls_back_to_type_name(self) -> None:
        assert classify_exception(TransientEffectError()) == TransientFailure("TransientEffectError")

    @pytest.mark.parametrize("status_code", [400, 401, 404, 422])
    def test_client_errors_are_permanent(self, status_code: int) -> None:
        outcome = classify_exception(_status_error(status_code))
        assert isinstance(outcome, PermanentFailure)
        assert outcome.reason == f"HTTP {status_code} from api.example.com"

    @pytest.mark.parametrize("status_code", [408, 429, 500, 503])
    def test_server_errors_and_rate_limits_are_transient(self, status_code: int) -> None:
        assert isinstance(classify_exception(_status_error(status_code)), TransientFailure)

    def test_timeouts_are_transient(self) -> None:
        outcome = classify_exception(httpx.ConnectTimeout("timed out"))
        assert isinstance(outcome, TransientFailure)
        assert outcome.reason.startswith("timeout")

        assert classify_exception(TimeoutError()) == TransientFailure("effect timed out")

    def test_transport_errors_are_transient(self) -> None:
        outcome = classify_exception(httpx.ConnectError("connection refused"))
        assert isinstance(outcome, TransientFailure)
        assert "ConnectError" in outcome.reason

    def test_unknown_exceptions_are_transient(self) -> None:
        assert classify_exception(ValueError("odd")) == TransientFailure("ValueError: odd")


class TestClassifyHttpStatus:
    def test_table(self) -> None:
        assert classify_http_status(400) is FailureClass.PERMANENT
        assert classify_http_status(409) is FailureClass.TRANSIENT
        assert classify_http_status(429) is FailureClass.TRANSIENT
        assert classify_http_status(502) is FailureClass.TRANSIENT


class TestDescribe:
    def test_labels(self) -> None:
        assert describe(Success()) == "success"
        assert describe(TransientFailure("busy")) == "transient: busy"
        assert describe(PolicyBlocked("dnc")) == "policy_blocked: dnc"

    def test_is_success(self) -> None:
        assert is_success(Success({"id": 1}))
        assert not is_success(PermanentFailure("no"))
