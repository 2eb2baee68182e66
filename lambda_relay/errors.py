"""errors.py — Exception taxonomy shared by the invoker and the dispatcher.

Every error carries a numeric ``code`` taken from ``RelayError.codes`` so
callers can branch on the failure without parsing messages.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class RelayError(Exception):
    """Base class for every error raised by lambda_relay."""

    codes: Dict[str, int] = {
        "NO_FUNCTION": 1,
        "INVALID_FUNCTION": 2,
        "NO_SESSION": 3,
        "INVALID_SESSION": 4,
        "INVALID_ORGANIZATION": 5,
        "NO_PAYLOAD": 6,
        "INVALID_PAYLOAD": 7,
        "NO_USER": 8,
        "INVALID_USER": 9,
        "NO_FUNCTION_NAME": 10,
        "INVALID_FUNCTION_NAME": 11,
        "INVALID_TASK_TOKEN": 12,
        "INVALID_WORKFLOW_CONTEXT": 13,
        "INVALID_ARN": 14,
        "INVALID_EXECUTION_NAME": 15,
        "NO_SERVICE": 16,
        "ACCOUNTS_SECRET_MISSING": 17,
        "NO_ROUTE": 18,
        "ASSUME_ROLE_ERROR": 19,
        "TRANSPORT_ERROR": 20,
        "REMOTE_FAILURE": 21,
        "TARGET_EXECUTION": 22,
    }

    def __init__(self, message: str, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code

    @property
    def name(self) -> str:
        return type(self).__name__


class ValidationError(RelayError, ValueError):
    """Raised before any I/O when a function name, session, body or token is malformed."""


class CredentialBrokerError(RelayError):
    """Raised when the STS exchange fails or returns no credentials."""

    def __init__(self, message: str) -> None:
        super().__init__(message, RelayError.codes["ASSUME_ROLE_ERROR"])


class NotFoundError(RelayError, LookupError):
    """Raised when a target cannot be resolved into an invocable address."""


class TransportError(RelayError):
    """Raised when the invoke call itself could not be completed."""

    def __init__(self, message: str) -> None:
        super().__init__(message, RelayError.codes["TRANSPORT_ERROR"])


class RemoteFailureStatus(RelayError):
    """Raised by non-safe calls when the remote answered with a status >= 400."""

    def __init__(self, status_code: int, payload: Any = None) -> None:
        super().__init__(
            f"Remote function responded with status {status_code}",
            RelayError.codes["REMOTE_FAILURE"],
        )
        self.status_code = status_code
        self.payload = payload


class TargetExecutionError(RelayError):
    """Wraps an exception raised by a target function's validate/process hook."""

    def __init__(self, original: BaseException) -> None:
        super().__init__(str(original), RelayError.codes["TARGET_EXECUTION"])
        self.original = original

    @property
    def kind(self) -> str:
        return type(self.original).__name__


def format_error(error: BaseException) -> Dict[str, str]:
    """Render an error as the structured ``{errorKind, message}`` result."""
    if isinstance(error, TargetExecutionError):
        return {"errorKind": error.kind, "message": error.message}
    return {"errorKind": type(error).__name__, "message": str(error)}
