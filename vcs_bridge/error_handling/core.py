# vcs_bridge/error_handling/core.py

"""
Core error handling types and exceptions.

This module contains the error taxonomy raised by every provider client,
the enum used to classify vendor failures, and the retry configuration.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class ErrorType(Enum):
    """Classification of vendor failures."""

    # Retryable when the provider predicate agrees
    RATE_LIMIT_ERROR = "rate_limit_error"
    NETWORK_ERROR = "network_error"
    SERVER_ERROR = "server_error"

    # Never retried
    NOT_FOUND_ERROR = "not_found_error"
    AUTHENTICATION_ERROR = "authentication_error"
    AUTHORIZATION_ERROR = "authorization_error"
    VALIDATION_ERROR = "validation_error"
    API_ERROR = "api_error"

    UNKNOWN_ERROR = "unknown_error"


@dataclass
class ErrorClassification:
    """Classification of an error."""

    error_type: ErrorType
    status_code: int | None = None
    retry_after: float | None = None
    details: dict[str, Any] | None = None


@dataclass
class RetryConfig:
    """Configuration for the retry executor: a bounded count and a fixed delay."""

    max_retries: int = 5
    retry_interval: float = 60.0


class VcsClientError(Exception):
    """Base class for every error raised by vcs_bridge."""


class ValidationError(VcsClientError, ValueError):
    """One or more required parameters are blank."""

    def __init__(self, missing_parameters: list[str]) -> None:
        self.missing_parameters = list(missing_parameters)
        super().__init__(
            "\n".join(
                f"required parameter '{name}' is missing"
                for name in self.missing_parameters
            )
        )


class InvalidIdentifierError(VcsClientError, ValueError):
    """An id could not be converted to the provider's native id type."""

    def __init__(self, name: str, value: str, expected: str) -> None:
        self.name = name
        self.value = value
        self.expected = expected
        super().__init__(f"invalid {name} '{value}': expected {expected}")


class UnsupportedCapabilityError(VcsClientError):
    """The provider has no equivalent for the requested operation."""

    def __init__(self, provider: str, capability: str) -> None:
        self.provider = provider
        self.capability = capability
        super().__init__(f"{capability} is not supported on {provider}")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, UnsupportedCapabilityError):
            return NotImplemented
        return (self.provider, self.capability) == (other.provider, other.capability)

    def __hash__(self) -> int:
        return hash((self.provider, self.capability))


class RemoteOperationError(VcsClientError):
    """A remote call failed. The vendor exception is kept as ``__cause__``."""

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        owner: str | None = None,
        repository: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.message = message
        self.operation = operation
        self.owner = owner
        self.repository = repository
        self.status_code = status_code
        super().__init__(message)

    def __str__(self) -> str:
        if not self.operation:
            return self.message
        target = "/".join(part for part in (self.owner, self.repository) if part)
        if target:
            return f"{self.operation} failed for <{target}>: {self.message}"
        return f"{self.operation} failed: {self.message}"


class NotFoundError(RemoteOperationError):
    """The remote resource does not exist (HTTP 404)."""


class RateLimitError(RemoteOperationError):
    """The provider throttled the request and retries did not absorb it."""

    def __init__(self, message: str, retry_after: float | None = None, **kwargs: Any) -> None:
        self.retry_after = retry_after
        super().__init__(message, **kwargs)


class ResponseStatusError(RemoteOperationError):
    """The server answered with an unexpected HTTP status."""


class OperationCancelledError(VcsClientError):
    """The caller's cancel signal fired while an operation was in flight."""


class OperationTimeoutError(VcsClientError, TimeoutError):
    """The caller's deadline passed while an operation was in flight."""


class IllegalArchivePathError(VcsClientError):
    """An archive member would be extracted outside the destination."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"{path}: illegal file path")
