"""API Core - Shared utilities for API routes.

This package provides:
- Unified response builders (success_response, error_response)
- Exception handlers mapping ReviewLoomError to the envelope

Usage:
    from reviewloom.api.core import success_response
"""

from .response import (
    error_response,
    register_exception_handlers,
    success_response,
)

__all__ = [
    "error_response",
    "register_exception_handlers",
    "success_response",
]
