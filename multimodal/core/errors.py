"""
Error taxonomy shared by every provider client and the orchestrator.

All failures surface as a single exception type carrying:
- code: stable machine-readable kind (see ErrorCode)
- message: human-readable description
- retryable: whether the caller may offer a retry affordance

Callers are expected to branch on `retryable`, not on the concrete class.
"""
from typing import Any, Dict, Optional


class ErrorCode:
    """Known error kinds."""

    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    CHAT_API_ERROR = "CHAT_API_ERROR"
    SERPER_API_ERROR = "SERPER_API_ERROR"
    BRAVE_API_ERROR = "BRAVE_API_ERROR"
    UNSPLASH_API_ERROR = "UNSPLASH_API_ERROR"
    IMAGE_GENERATION_API_ERROR = "IMAGE_GENERATION_API_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    GENERATION_TIMEOUT = "GENERATION_TIMEOUT"
    NO_IMAGE_GENERATED = "NO_IMAGE_GENERATED"
    STREAM_ERROR = "STREAM_ERROR"
    UNSUPPORTED_PROVIDER = "UNSUPPORTED_PROVIDER"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    ORCHESTRATION_ERROR = "ORCHESTRATION_ERROR"


class ProviderError(Exception):
    """Raised by provider clients and the orchestrator."""

    def __init__(
        self,
        code: str,
        message: str,
        retryable: bool = False,
        status_code: Optional[int] = None,
        retry_after_seconds: Optional[float] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.retryable = retryable
        self.status_code = status_code
        self.retry_after_seconds = retry_after_seconds

    def to_dict(self) -> Dict[str, Any]:
        """Caller-facing representation."""
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }

    def __repr__(self) -> str:
        return (
            f"ProviderError(code={self.code!r}, message={self.message!r}, "
            f"retryable={self.retryable!r})"
        )


def is_retryable_status(status_code: int) -> bool:
    """429 and every 5xx are worth retrying."""
    return status_code == 429 or status_code >= 500


def service_unavailable(service: str) -> ProviderError:
    """Error for a client that was never constructed (missing credentials)."""
    return ProviderError(
        ErrorCode.SERVICE_UNAVAILABLE,
        f"{service} service is not configured",
        retryable=False,
    )
