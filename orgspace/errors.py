"""
orgspace/errors.py

Error types raised by pipeline stages and core operations.

Every error that should reach the client carries its HTTP status so the
pipeline's error boundary can answer without guessing. HookConfigurationError
is raised at startup only.
"""

from __future__ import annotations

from typing import Optional


class OperationError(Exception):
    """An error surfaced to the client with a specific status code."""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class AuthenticationError(OperationError):
    status_code = 401


class PermissionDenied(OperationError):
    status_code = 403


class ConfigurationDisabled(OperationError):
    """A method or sub-operation was switched off in server.api.userAPI."""
    status_code = 403


class NotFound(OperationError):
    status_code = 404


class HookFailure(OperationError):
    """
    A pre- or post-hook raised.

    If the hook raised an OperationError its status and message pass through
    unchanged; anything else becomes a 500 with a generic message.
    """

    def __init__(self, endpoint: str, phase: str, hook_name: str, cause: BaseException):
        if isinstance(cause, OperationError):
            message, status_code = cause.message, cause.status_code
        else:
            message, status_code = "Internal Server Error", 500
        super().__init__(message, status_code)
        self.endpoint = endpoint
        self.phase = phase
        self.hook_name = hook_name
        self.cause = cause


class HookConfigurationError(RuntimeError):
    """Plugins are enabled but the hook table is missing or incomplete."""


class BadRequest(OperationError):
    status_code = 400
