# vcs_bridge/vocabulary.py

"""
Cross-provider vocabulary mapping.

Pure, total functions translating the shared enums (commit status, webhook
event, deploy-key permission, visibility) to and from each provider's own
vocabulary. Every function accepts any value of its input type and never
raises: unmapped values fold to an empty string or a documented default.
"""

from collections.abc import Iterable

from .models import CommitStatus, Permission, RepositoryVisibility, VcsProvider, WebhookEvent

_PULL_REQUEST_EVENTS = (
    WebhookEvent.PR_OPENED,
    WebhookEvent.PR_EDITED,
    WebhookEvent.PR_MERGED,
    WebhookEvent.PR_REJECTED,
)
_PUSH_AND_TAG_EVENTS = (WebhookEvent.PUSH, WebhookEvent.TAG_PUSHED, WebhookEvent.TAG_REMOVED)
_TAG_EVENTS = (WebhookEvent.TAG_PUSHED, WebhookEvent.TAG_REMOVED)

# Fail and Error share one provider state where the provider has no "error".
_COMMIT_STATES: dict[VcsProvider, dict[CommitStatus, str]] = {
    VcsProvider.GITHUB: {
        CommitStatus.PASS: "success",
        CommitStatus.FAIL: "failure",
        CommitStatus.ERROR: "error",
        CommitStatus.IN_PROGRESS: "pending",
    },
    VcsProvider.GITLAB: {
        CommitStatus.PASS: "success",
        CommitStatus.FAIL: "failed",
        CommitStatus.ERROR: "failed",
        CommitStatus.IN_PROGRESS: "running",
    },
    VcsProvider.BITBUCKET_SERVER: {
        CommitStatus.PASS: "SUCCESSFUL",
        CommitStatus.FAIL: "FAILED",
        CommitStatus.ERROR: "FAILED",
        CommitStatus.IN_PROGRESS: "INPROGRESS",
    },
    VcsProvider.BITBUCKET_CLOUD: {
        CommitStatus.PASS: "SUCCESSFUL",
        CommitStatus.FAIL: "FAILED",
        CommitStatus.ERROR: "FAILED",
        CommitStatus.IN_PROGRESS: "INPROGRESS",
    },
}

_STATUS_FROM_PROVIDER: dict[str, CommitStatus] = {
    "success": CommitStatus.PASS,
    "successful": CommitStatus.PASS,
    "failure": CommitStatus.FAIL,
    "failed": CommitStatus.FAIL,
    "error": CommitStatus.ERROR,
    "pending": CommitStatus.IN_PROGRESS,
    "running": CommitStatus.IN_PROGRESS,
    "inprogress": CommitStatus.IN_PROGRESS,
}

_BITBUCKET_SERVER_EVENTS: dict[WebhookEvent, tuple[str, ...]] = {
    WebhookEvent.PR_OPENED: ("pr:opened",),
    WebhookEvent.PR_EDITED: ("pr:from_ref_updated",),
    WebhookEvent.PR_MERGED: ("pr:merged",),
    WebhookEvent.PR_REJECTED: ("pr:declined", "pr:deleted"),
    WebhookEvent.PUSH: ("repo:refs_changed",),
}

_BITBUCKET_CLOUD_EVENTS: dict[WebhookEvent, tuple[str, ...]] = {
    WebhookEvent.PR_OPENED: ("pullrequest:created",),
    WebhookEvent.PR_EDITED: ("pullrequest:updated",),
    WebhookEvent.PR_REJECTED: ("pullrequest:rejected",),
    WebhookEvent.PR_MERGED: ("pullrequest:fulfilled",),
    WebhookEvent.PUSH: ("repo:push",),
    WebhookEvent.TAG_PUSHED: ("repo:push",),
    WebhookEvent.TAG_REMOVED: ("repo:push",),
}


def commit_status_to_provider(provider: VcsProvider, status: CommitStatus | int) -> str:
    """Map a commit status to the provider's state string; unmapped values give ''."""
    try:
        status = CommitStatus(status)
    except ValueError:
        return ""
    return _COMMIT_STATES[provider].get(status, "")


def commit_status_from_provider(state: str | None) -> CommitStatus:
    """
    Map a provider state string back to a commit status.

    Matching ignores case. A provider "failed" resolves to FAIL even when it
    was written for ERROR, and unknown strings fold to ERROR.
    """
    return _STATUS_FROM_PROVIDER.get((state or "").strip().lower(), CommitStatus.ERROR)


def _unique(values: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(values))


def github_webhook_events(events: Iterable[WebhookEvent]) -> list[str]:
    def _events() -> Iterable[str]:
        for event in events:
            if event in _PULL_REQUEST_EVENTS:
                yield "pull_request"
            elif event in _PUSH_AND_TAG_EVENTS:
                yield "push"

    return _unique(_events())


def gitlab_hook_options(events: Iterable[WebhookEvent], branch: str) -> dict[str, object]:
    """Translate events into python-gitlab project hook flags."""
    options: dict[str, object] = {}
    for event in events:
        if event in _PULL_REQUEST_EVENTS:
            options["merge_requests_events"] = True
        elif event == WebhookEvent.PUSH:
            options["push_events"] = True
            options["push_events_branch_filter"] = branch
        elif event in _TAG_EVENTS:
            options["tag_push_events"] = True
    return options


def bitbucket_server_webhook_events(events: Iterable[WebhookEvent]) -> list[str]:
    return _unique(
        name for event in events for name in _BITBUCKET_SERVER_EVENTS.get(event, ())
    )


def bitbucket_cloud_webhook_events(events: Iterable[WebhookEvent]) -> list[str]:
    return _unique(
        name for event in events for name in _BITBUCKET_CLOUD_EVENTS.get(event, ())
    )


def webhook_events_to_provider(
    provider: VcsProvider, events: Iterable[WebhookEvent]
) -> list[str]:
    """
    Map requested events to provider event identifiers without duplicates.

    GitLab configures hooks through boolean flags instead, so the names of the
    enabled flags are returned for it.
    """
    if provider == VcsProvider.GITHUB:
        return github_webhook_events(events)
    if provider == VcsProvider.GITLAB:
        options = gitlab_hook_options(events, branch="")
        return [name for name, value in options.items() if value is True]
    if provider == VcsProvider.BITBUCKET_SERVER:
        return bitbucket_server_webhook_events(events)
    return bitbucket_cloud_webhook_events(events)


def github_visibility(value: str | None) -> RepositoryVisibility:
    if value == "public":
        return RepositoryVisibility.PUBLIC
    if value == "internal":
        return RepositoryVisibility.INTERNAL
    return RepositoryVisibility.PRIVATE


# GitLab uses the same three level names.
gitlab_visibility = github_visibility


def bitbucket_server_visibility(public: bool) -> RepositoryVisibility:
    return RepositoryVisibility.PUBLIC if public else RepositoryVisibility.PRIVATE


def bitbucket_cloud_visibility(is_private: bool) -> RepositoryVisibility:
    return RepositoryVisibility.PRIVATE if is_private else RepositoryVisibility.PUBLIC


def visibility_to_bitbucket_public(visibility: RepositoryVisibility) -> bool:
    """Two-level providers never receive INTERNAL; it is requested as private."""
    return visibility == RepositoryVisibility.PUBLIC


def is_read_only(permission: Permission) -> bool:
    return permission != Permission.READ_WRITE


def bitbucket_server_key_permission(permission: Permission) -> str:
    return "REPO_WRITE" if permission == Permission.READ_WRITE else "REPO_READ"
