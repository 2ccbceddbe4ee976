"""
Error taxonomy for the trust engine.

Transport-level errors (``NetworkError``, ``ServerError``) are retryable.
``ApiError`` is an application-level failure carrying a machine readable
code. ``CircuitOpenError`` is raised without any network attempt while a
circuit breaker is open.
"""

from __future__ import annotations


class TrustEngineError(Exception):
    """Base class for all trust engine errors."""


class NetworkError(TrustEngineError):
    """Raised on transport failures (connection errors, timeouts)."""


class ServerError(TrustEngineError):
    """Raised when the upstream service answers with a 5xx status."""

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class ApiError(TrustEngineError):
    """Non-retryable application error.

    Args:
        message: Human readable description.
        code: Machine readable error code (e.g. ``VERIFICATION_FAILED``).
        status_code: HTTP status of the response that caused it, if any.
        cause: The underlying error, if this one wraps another.
    """

    def __init__(
        self,
        message: str,
        code: str = "API_ERROR",
        status_code: int | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status_code = status_code
        self.cause = cause

    def __str__(self) -> str:
        return f"[{self.code}] {super().__str__()}"


class CircuitOpenError(TrustEngineError):
    """Raised when a call is rejected by an open circuit breaker."""


class DIDResolutionError(TrustEngineError):
    """Raised when DID resolution fails."""
