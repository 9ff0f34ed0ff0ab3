# vcs_bridge/error_handling/error_classification.py

"""
Error classification for vendor failures.

Vendor SDKs report failures with their own exception types. This module reads
the status code, body and headers those exceptions carry, classifies them
into an ``ErrorType`` and translates them into the vcs_bridge taxonomy.
"""

import json
import logging

from github import GithubException, RateLimitExceededException
from gitlab.exceptions import GitlabError
import httpx

from .core import (
    ErrorClassification,
    ErrorType,
    NotFoundError,
    RateLimitError,
    RemoteOperationError,
    VcsClientError,
)

logger = logging.getLogger(__name__)


def error_status_code(error: BaseException) -> int | None:
    """Return the HTTP status a vendor exception carries, if any."""
    if isinstance(error, GithubException):
        return error.status
    if isinstance(error, GitlabError):
        return error.response_code
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    if isinstance(error, RemoteOperationError):
        return error.status_code
    return None


def error_body_text(error: BaseException) -> str:
    """Return the response body a vendor exception carries as text."""
    if isinstance(error, GithubException):
        data = error.data
        if isinstance(data, (dict, list)):
            return json.dumps(data)
        return str(data or "")
    if isinstance(error, GitlabError):
        body = error.response_body
        if isinstance(body, bytes):
            return body.decode("utf-8", errors="replace")
        return str(body or error.error_message or "")
    if isinstance(error, httpx.HTTPStatusError):
        try:
            return error.response.text
        except httpx.ResponseNotRead:
            return ""
    return ""


def error_headers(error: BaseException) -> dict[str, str]:
    """Return the response headers a vendor exception carries, lower-cased."""
    headers = None
    if isinstance(error, GithubException):
        headers = error.headers
    elif isinstance(error, httpx.HTTPStatusError):
        headers = error.response.headers
    if not headers:
        return {}
    return {str(key).lower(): str(value) for key, value in headers.items()}


def _retry_after(error: BaseException) -> float | None:
    value = error_headers(error).get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class ErrorClassifier:
    """Classifies vendor exceptions by status code and body."""

    def __init__(self) -> None:
        self.logger = logging.getLogger("ErrorClassifier")

    def classify_error(self, error: BaseException) -> ErrorClassification:
        """Classify a vendor exception."""
        if isinstance(error, httpx.TransportError):
            return ErrorClassification(ErrorType.NETWORK_ERROR)

        status = error_status_code(error)
        retry_after = _retry_after(error)

        if isinstance(error, RateLimitExceededException):
            return ErrorClassification(ErrorType.RATE_LIMIT_ERROR, status, retry_after)
        if status is None:
            return ErrorClassification(ErrorType.UNKNOWN_ERROR)
        if status == 404:
            error_type = ErrorType.NOT_FOUND_ERROR
        elif status == 401:
            error_type = ErrorType.AUTHENTICATION_ERROR
        elif status == 429:
            error_type = ErrorType.RATE_LIMIT_ERROR
        elif status == 403:
            if "rate limit" in error_body_text(error).lower():
                error_type = ErrorType.RATE_LIMIT_ERROR
            else:
                error_type = ErrorType.AUTHORIZATION_ERROR
        elif status >= 500:
            error_type = ErrorType.SERVER_ERROR
        elif status >= 400:
            error_type = ErrorType.API_ERROR
        else:
            error_type = ErrorType.UNKNOWN_ERROR
        return ErrorClassification(error_type, status, retry_after)


_classifier = ErrorClassifier()


def translate_error(
    error: BaseException,
    operation: str,
    owner: str | None = None,
    repository: str | None = None,
) -> VcsClientError:
    """
    Translate a vendor exception into the vcs_bridge taxonomy.

    Errors that already belong to the taxonomy are returned unchanged. The
    caller is expected to ``raise translated from error`` so that the vendor
    exception stays reachable as ``__cause__``.
    """
    if isinstance(error, VcsClientError):
        return error

    classification = _classifier.classify_error(error)
    message = str(error) or error.__class__.__name__
    context = {
        "operation": operation,
        "owner": owner,
        "repository": repository,
        "status_code": classification.status_code,
    }
    if classification.error_type == ErrorType.NOT_FOUND_ERROR:
        return NotFoundError(message, **context)
    if classification.error_type == ErrorType.RATE_LIMIT_ERROR:
        return RateLimitError(message, retry_after=classification.retry_after, **context)
    return RemoteOperationError(message, **context)
