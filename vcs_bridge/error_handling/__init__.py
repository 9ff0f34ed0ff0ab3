# vcs_bridge/error_handling/__init__.py

"""
Error handling and retry package.

This package provides the error taxonomy shared by every provider client,
vendor error classification, named unsupported-capability errors and the
bounded retry executor.
"""

from .core import (
    ErrorClassification,
    ErrorType,
    IllegalArchivePathError,
    InvalidIdentifierError,
    NotFoundError,
    OperationCancelledError,
    OperationTimeoutError,
    RateLimitError,
    RemoteOperationError,
    ResponseStatusError,
    RetryConfig,
    UnsupportedCapabilityError,
    ValidationError,
    VcsClientError,
)
from .error_classification import (
    ErrorClassifier,
    error_body_text,
    error_headers,
    error_status_code,
    translate_error,
)
from .retry_manager import (
    RetryExecutor,
    RetryPredicate,
    http_too_many_requests_predicate,
    never_retry,
)
from .unsupported import Capability, unsupported

__all__ = [
    "Capability",
    "ErrorClassification",
    "ErrorClassifier",
    "ErrorType",
    "IllegalArchivePathError",
    "InvalidIdentifierError",
    "NotFoundError",
    "OperationCancelledError",
    "OperationTimeoutError",
    "RateLimitError",
    "RemoteOperationError",
    "ResponseStatusError",
    "RetryConfig",
    "RetryExecutor",
    "RetryPredicate",
    "UnsupportedCapabilityError",
    "ValidationError",
    "VcsClientError",
    "error_body_text",
    "error_headers",
    "error_status_code",
    "http_too_many_requests_predicate",
    "never_retry",
    "translate_error",
    "unsupported",
]
