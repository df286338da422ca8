"""
Core modules.
Contains configuration, errors, logging, metrics, tracing, caching and rate limiting.
"""
from .errors import ErrorCode, ProviderError

__all__ = ["ErrorCode", "ProviderError"]
