# vcs_bridge/utils.py

"""
Utility functions shared by the provider clients.
"""

from collections.abc import Iterable, Mapping
from datetime import datetime
import json
import re
import secrets

import httpx

from .error_handling.core import InvalidIdentifierError, ResponseStatusError, ValidationError
from .models import PullRequestState

BRANCH_PREFIX = "refs/heads/"
REMOTE_NAME = "origin"

_INT_RANGES = {
    32: (-(2**31), 2**31 - 1),
    64: (-(2**63), 2**63 - 1),
}
_DECIMAL_ID = re.compile(r"-?[0-9]+")


def validate_parameters_not_blank(parameters: Mapping[str, str | None]) -> None:
    """
    Check that every required parameter is non-blank.

    Args:
        parameters: Parameter names mapped to their values, in reporting order

    Raises:
        ValidationError: Listing every blank parameter, not just the first
    """
    missing = [
        name for name, value in parameters.items() if value is None or not str(value).strip()
    ]
    if missing:
        raise ValidationError(missing)


def create_token() -> str:
    """Create an unguessable webhook secret (256 bits of entropy)."""
    return secrets.token_hex(32)


def add_branch_prefix(branch: str) -> str:
    """Prefix a branch name with ``refs/heads/`` unless it already is."""
    if branch and not branch.startswith(BRANCH_PREFIX):
        return f"{BRANCH_PREFIX}{branch}"
    return branch


def parse_int_id(name: str, value: str | int, bits: int = 64) -> int:
    """
    Convert a caller-supplied id to the provider's native integer id.

    Only an optional minus sign followed by decimal digits is accepted.

    Raises:
        InvalidIdentifierError: If the value is not an integer in range
    """
    low, high = _INT_RANGES[bits]
    text = str(value)
    if not _DECIMAL_ID.fullmatch(text):
        raise InvalidIdentifierError(name, text, f"a {bits}-bit integer")
    parsed = int(text)
    if not low <= parsed <= high:
        raise InvalidIdentifierError(name, text, f"a {bits}-bit integer")
    return parsed


def map_pull_request_state(state: PullRequestState | None) -> str | None:
    if state == PullRequestState.OPEN:
        return "open"
    if state == PullRequestState.CLOSED:
        return "closed"
    return None


def format_response_body(body: bytes | str) -> str:
    """Pretty-print a JSON body, falling back to the raw text."""
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    if not body:
        return ""
    try:
        return json.dumps(json.loads(body), indent=2)
    except ValueError:
        return body


def check_response_status_with_body(
    response: httpx.Response,
    *expected_status_codes: int,
    operation: str | None = None,
    owner: str | None = None,
    repository: str | None = None,
) -> None:
    """
    Raise ``ResponseStatusError`` unless the response has an expected status.

    The body must already be read (the default for non-streaming requests).
    """
    if response.status_code in expected_status_codes:
        return

    status_line = f"{response.status_code} {response.reason_phrase}".strip()
    message = f"server response: {status_line}"
    body = format_response_body(response.content)
    if body:
        message = f"{message}\n{body}"
    raise ResponseStatusError(
        message,
        operation=operation,
        owner=owner,
        repository=repository,
        status_code=response.status_code,
    )


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse an RFC 3339 / ISO 8601 timestamp; None when absent or malformed."""
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def sorted_unique_paths(paths: Iterable[str | None]) -> list[str]:
    """Return the non-blank paths sorted and de-duplicated."""
    return sorted({path for path in paths if path})
