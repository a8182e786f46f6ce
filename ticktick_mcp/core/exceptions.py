"""Custom exceptions for the TickTick MCP server."""

from typing import Any

import pydantic

AUTH_REQUIRED_MESSAGE = (
    "TickTick authorization required — please re-authorize via your MCP client"
)


# ========================================
# Base Exceptions
# ========================================


class TickTickMCPError(Exception):
    """Base exception for all TickTick MCP errors.

    Carries a stable machine-readable ``code``, the HTTP-equivalent ``status``
    and optional structured ``details`` that are returned to tool callers.
    """

    code: str = "INTERNAL_ERROR"
    status: int = 500

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        if code is not None:
            self.code = code
        if status is not None:
            self.status = status
        self.details = details
        super().__init__(message)


# ========================================
# Tool-Facing Exceptions
# ========================================


class AuthRequired(TickTickMCPError):
    """The user has no usable TickTick grant and must re-authorize."""

    code = "TICKTICK_AUTH_REQUIRED"
    status = 401

    def __init__(self, message: str = AUTH_REQUIRED_MESSAGE, **kwargs: Any):
        super().__init__(message, **kwargs)


class RateLimited(TickTickMCPError):
    """Caller exceeded the local per-user tool rate limit."""

    code = "MCP_RATE_LIMITED"
    status = 429

    def __init__(self, message: str = "MCP request rate limit exceeded", **kwargs: Any):
        super().__init__(message, **kwargs)


class UpstreamRateLimited(TickTickMCPError):
    """TickTick kept answering 429 after all retries."""

    code = "TICKTICK_RATE_LIMITED"
    status = 429

    def __init__(self, message: str = "TickTick API rate limit exceeded", **kwargs: Any):
        super().__init__(message, **kwargs)


class UpstreamApiError(TickTickMCPError):
    """TickTick answered with a non-retryable error or an unusable body."""

    code = "TICKTICK_API_ERROR"
    status = 502


class UpstreamNetworkError(UpstreamApiError):
    """TickTick could not be reached."""

    status = 502


class UpstreamTimeoutError(UpstreamApiError):
    """TickTick did not answer within the request timeout."""

    status = 504


class TokenExchangeFailed(UpstreamApiError):
    """The TickTick token endpoint rejected an authorization code."""


class TokenRefreshFailed(UpstreamApiError):
    """The TickTick token endpoint rejected a refresh token."""

    def is_invalid_grant(self) -> bool:
        """Check whether the upstream reported an unusable refresh token."""
        details = self.details or {}
        body = details.get("body")
        if isinstance(body, dict) and body.get("error") == "invalid_grant":
            return True
        raw = details.get("responseBody")
        return isinstance(raw, str) and "invalid_grant" in raw


class TaskNotFound(TickTickMCPError):
    """The task does not exist or is no longer active."""

    code = "TASK_NOT_FOUND"
    status = 404

    def __init__(self, message: str = "Task not found", **kwargs: Any):
        super().__init__(message, **kwargs)


class ValidationError(TickTickMCPError):
    """Tool input failed validation."""

    code = "VALIDATION_ERROR"
    status = 400


class DuplicateIdempotencyKey(ValidationError):
    """A mutation with the same idempotency key was already admitted."""

    def __init__(
        self,
        message: str = "Duplicate idempotency key for mutating operation",
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)


class InternalError(TickTickMCPError):
    """Unexpected failure."""

    code = "INTERNAL_ERROR"
    status = 500


# ========================================
# Authorization Flow Exceptions
# ========================================


class AuthorizationFlowError(TickTickMCPError):
    """Base exception for the OAuth bridge; rendered as plain text."""

    code = "AUTHORIZATION_FAILED"
    status = 400


class InvalidRequest(AuthorizationFlowError):
    """The client's authorization request could not be parsed."""

    def __init__(self, message: str = "Invalid OAuth authorization request", **kwargs: Any):
        super().__init__(message, **kwargs)


class UnknownClient(AuthorizationFlowError):
    """The client id is not registered."""

    def __init__(self, message: str = "Unknown OAuth client", **kwargs: Any):
        super().__init__(message, **kwargs)


class RedirectMismatch(AuthorizationFlowError):
    """The redirect URI is not allow-listed for the client."""

    def __init__(
        self,
        message: str = "OAuth redirect_uri is not registered for this client",
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)


class UpstreamDenied(AuthorizationFlowError):
    """TickTick redirected back with an error instead of a code."""

    def __init__(self, error: str, **kwargs: Any):
        super().__init__(f"TickTick authorization failed: {error}", **kwargs)


class MissingCallbackParameters(AuthorizationFlowError):
    """The callback lacks ``state`` or ``code``."""

    def __init__(self, message: str = "Missing authorization callback parameters", **kwargs: Any):
        super().__init__(message, **kwargs)


class InvalidOrExpiredState(AuthorizationFlowError):
    """No pending authorization matches the callback state."""

    def __init__(self, message: str = "Invalid or expired OAuth state", **kwargs: Any):
        super().__init__(message, **kwargs)


class UpstreamTokenError(AuthorizationFlowError):
    """The upstream exchange did not yield a usable grant."""

    status = 502


# ========================================
# Infrastructure Exceptions
# ========================================


class ConfigurationError(TickTickMCPError):
    """Configuration is missing or invalid."""


class StorageError(TickTickMCPError):
    """A storage backend operation failed."""


def to_app_error(error: BaseException) -> TickTickMCPError:
    """Map any exception to the tool-facing error family."""
    if isinstance(error, TickTickMCPError):
        return error

    if isinstance(error, pydantic.ValidationError):
        return ValidationError(
            "Invalid tool input",
            details={
                "issues": [
                    {
                        "path": ".".join(str(part) for part in issue["loc"]),
                        "type": issue["type"],
                        "message": issue["msg"],
                    }
                    for issue in error.errors()
                ],
            },
        )

    message = str(error) or "Unexpected internal error"
    return InternalError(message)
