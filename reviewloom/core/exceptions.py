"""Domain exceptions for ReviewLoom.

Every error that can reach an API caller derives from ReviewLoomError and
carries the HTTP status it maps to. Adapters translate upstream failures
(GitHub, the LLM provider, the database) into these types so callers never
see provider-specific shapes.
"""

from typing import Optional


class ReviewLoomError(Exception):
    """Base class for all ReviewLoom errors."""

    status_code = 500
    error_type = "INTERNAL_ERROR"

    def __init__(self, message: str = "Internal server error", status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def __str__(self) -> str:
        return self.message


class ValidationError(ReviewLoomError):
    status_code = 400
    error_type = "VALIDATION_ERROR"

    def __init__(self, message: str = "Invalid request"):
        super().__init__(message)


class AuthenticationError(ReviewLoomError):
    status_code = 401
    error_type = "AUTHENTICATION_ERROR"

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message)


class AuthorizationError(ReviewLoomError):
    status_code = 403
    error_type = "AUTHORIZATION_ERROR"

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class NotFoundError(ReviewLoomError):
    status_code = 404
    error_type = "NOT_FOUND"

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message)


class ConflictError(ReviewLoomError):
    status_code = 409
    error_type = "CONFLICT"

    def __init__(self, message: str = "Resource conflict"):
        super().__init__(message)


class RateLimitError(ReviewLoomError):
    status_code = 429
    error_type = "RATE_LIMIT_EXCEEDED"

    def __init__(self, message: str = "Too many requests", retry_after: Optional[int] = None):
        super().__init__(message)
        self.retry_after = retry_after


class DiffFetchError(ReviewLoomError):
    """Generic failure talking to the diff source."""

    status_code = 502
    error_type = "DIFF_FETCH_FAILED"

    def __init__(self, message: str = "Failed to fetch pull request diff"):
        super().__init__(message)


class SuggestionEngineError(ReviewLoomError):
    """Unrecoverable failure of the suggestion engine call."""

    status_code = 502
    error_type = "SUGGESTION_ENGINE_FAILED"

    def __init__(self, message: str = "Failed to generate suggestions"):
        super().__init__(message)
