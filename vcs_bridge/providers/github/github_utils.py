# vcs_bridge/providers/github/github_utils.py

"""
GitHub provider utilities module.

This module contains the GitHub rate-limit retry predicate, Link header
pagination helpers and the mappers from PyGithub objects to the shared models.
"""

import base64
import gzip
import re
from typing import Any
from urllib.parse import parse_qs, urlparse

from github import GithubException
from github.Commit import Commit
from github.CommitStatus import CommitStatus as GithubCommitStatus
from github.Environment import Environment
from github.IssueComment import IssueComment
from github.PullRequest import PullRequest
from github.PullRequestComment import PullRequestComment as GithubPullRequestComment

from ...error_handling.core import RemoteOperationError
from ...error_handling.error_classification import error_body_text
from ...models import (
    BranchInfo,
    CommentInfo,
    CommitInfo,
    CommitStatusInfo,
    PullRequestInfo,
    RepositoryEnvironmentInfo,
)
from ...vocabulary import commit_status_from_provider

RATE_LIMIT_RETRY_STATUSES = (403, 429)

_SECONDARY_RATE_LIMIT_MARKERS = ("secondary rate limit", "abuse")
_LINK_LAST_PATTERN = re.compile(r'<([^>]+)>;\s*rel="last"')


def github_rate_limit_predicate(error: BaseException) -> bool:
    """
    Retry GitHub 403/429 responses that report an ordinary rate limit.

    Secondary (abuse) limits need a longer cool-down than the retry interval
    and are surfaced at once. The "rate limit" body check is a best-effort
    signal; replace this predicate if GitHub changes its wording.
    """
    if not isinstance(error, GithubException):
        return False
    if error.status not in RATE_LIMIT_RETRY_STATUSES:
        return False

    body = error_body_text(error).lower()
    if any(marker in body for marker in _SECONDARY_RATE_LIMIT_MARKERS):
        return False
    return "rate limit" in body


def last_page_from_headers(headers: dict[str, Any] | None) -> int:
    """Read the last page number from a Link header; 0 when there is none."""
    if not headers:
        return 0
    link = {str(k).lower(): v for k, v in headers.items()}.get("link")
    if not link:
        return 0
    match = _LINK_LAST_PATTERN.search(link)
    if not match:
        return 0
    pages = parse_qs(urlparse(match.group(1)).query).get("page")
    if not pages:
        return 0
    try:
        return int(pages[0])
    except ValueError:
        return 0


def extract_branch_from_label(label: str | None) -> str:
    """Extract the branch from a ``owner:branch`` head/base label."""
    parts = (label or "").split(":")
    if len(parts) <= 1:
        raise RemoteOperationError(f"bad label format {label or ''}")
    return parts[1]


def map_commit(commit: Commit) -> CommitInfo:
    details = commit.commit
    author = details.author
    committer = details.committer
    timestamp = 0
    if committer is not None and committer.date is not None:
        timestamp = int(committer.date.timestamp())
    return CommitInfo(
        hash=commit.sha,
        author_name=(author.name if author else "") or "",
        committer_name=(committer.name if committer else "") or "",
        url=commit.html_url or "",
        timestamp=timestamp,
        message=details.message or "",
        parent_hashes=tuple(parent.sha for parent in commit.parents),
        author_email=(author.email if author else "") or "",
    )


def map_commit_status(status: GithubCommitStatus) -> CommitStatusInfo:
    return CommitStatusInfo(
        state=commit_status_from_provider(status.state),
        description=status.description or "",
        details_url=status.target_url or "",
        creator=status.creator.login if status.creator else "",
        created_at=status.created_at,
        last_updated_at=status.updated_at,
    )


def map_pull_request(pull_request: PullRequest, with_body: bool) -> PullRequestInfo:
    """
    Map a PyGithub pull request.

    Source and target ownership must be known; a missing repository or
    owner is an error rather than a partial result.
    """
    source_branch = extract_branch_from_label(pull_request.head.label)
    target_branch = extract_branch_from_label(pull_request.base.label)

    source_repo = pull_request.head.repo
    if source_repo is None:
        raise RemoteOperationError(
            "the source repository information is missing when fetching the pull request details"
        )
    if source_repo.owner is None:
        raise RemoteOperationError(
            "the source repository owner name is missing when fetching the pull request details"
        )

    target_repo = pull_request.base.repo
    if target_repo is None:
        raise RemoteOperationError(
            "the target repository information is missing when fetching the pull request details"
        )
    if target_repo.owner is None:
        raise RemoteOperationError(
            "the target repository owner name is missing when fetching the pull request details"
        )

    return PullRequestInfo(
        id=pull_request.number,
        title=pull_request.title or "",
        body=(pull_request.body or "") if with_body else "",
        url=pull_request.html_url or "",
        author=pull_request.user.login if pull_request.user else "",
        source=BranchInfo(
            name=source_branch,
            repository=source_repo.name,
            owner=source_repo.owner.login,
        ),
        target=BranchInfo(
            name=target_branch,
            repository=target_repo.name,
            owner=target_repo.owner.login,
        ),
        status=pull_request.state or "",
    )


def map_issue_comment(comment: IssueComment) -> CommentInfo:
    return CommentInfo(
        id=comment.id,
        content=comment.body or "",
        created=comment.created_at,
    )


def map_review_comment(comment: GithubPullRequestComment) -> CommentInfo:
    """Replies share the id of the comment that opened their thread."""
    return CommentInfo(
        id=comment.id,
        content=comment.body or "",
        created=comment.created_at,
        thread_id=str(comment.in_reply_to_id or comment.id),
    )


def map_environment(environment: Environment) -> RepositoryEnvironmentInfo:
    reviewers: list[str] = []
    for rule in environment.protection_rules or []:
        for reviewer in rule.reviewers or []:
            entity = reviewer.reviewer
            login = getattr(entity, "login", None) or getattr(entity, "slug", None)
            if login:
                reviewers.append(login)
    return RepositoryEnvironmentInfo(
        name=environment.name,
        url=environment.url or "",
        reviewers=tuple(reviewers),
    )


def encode_sarif(sarif_content: str) -> str:
    """Gzip and base64 encode a SARIF report for the code scanning API."""
    return base64.b64encode(gzip.compress(sarif_content.encode("utf-8"), compresslevel=6)).decode(
        "ascii"
    )
