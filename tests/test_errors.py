"""
Unit tests for the provider error taxonomy.
"""
import pytest

from multimodal.core.errors import ErrorCode, ProviderError, is_retryable_status, service_unavailable


@pytest.mark.parametrize(
    "status_code,expected",
    [(400, False), (401, False), (404, False), (429, True), (500, True), (503, True)],
)
def test_is_retryable_status(status_code, expected):
    assert is_retryable_status(status_code) is expected


def test_provider_error_to_dict():
    error = ProviderError(ErrorCode.NETWORK_ERROR, "connection reset", retryable=True)

    assert error.to_dict() == {
        "code": "NETWORK_ERROR",
        "message": "connection reset",
        "retryable": True,
    }
    assert str(error) == "connection reset"


def test_service_unavailable_is_not_retryable():
    error = service_unavailable("Web search")

    assert error.code == ErrorCode.SERVICE_UNAVAILABLE
    assert error.retryable is False
    assert "Web search" in error.message
