from __future__ import annotations

from collections.abc import Sequence
import logging
import time
from typing import Literal

from ownergate.github_gateway import GitHubGateway
from ownergate.models import IssueComment
from ownergate.observability import log_event, log_warning_event
from ownergate.signals import MANAGED_COMMENT_MARKER, EventSignals


LOGGER = logging.getLogger("ownergate.comments")
UpsertResult = Literal["created", "updated", "unchanged"]

_GREETING = "Thanks for the PR! :rocket:"
_USAGE = "Approve using `/lgtm` and mark for automatic merge by using `/merge`."


def owners_reviewing_message(
    *, assignee: str | None = None, assignment_attempted: bool = False
) -> str:
    message = f"{_GREETING}\n\nOwners will be reviewing this PR."
    if assignee:
        return f"{message} Assigned reviewer: {assignee}\n\n{_USAGE}"
    if assignment_attempted:
        return f"{message} No automatic reviewer could be found.\n\n{_USAGE}"
    return message


def sole_owner_message() -> str:
    return (
        f"{_GREETING}\n\n"
        "Seems you are the only owner of the changes on this PR. "
        "Any user can use `/merge` or `/lgtm` to merge or approve."
    )


def no_owners_message() -> str:
    return "No owners for changes found. No automatic merge is possible."


def acknowledgement_message(sender: str, signals: EventSignals) -> str | None:
    if signals.approval and signals.merge_request:
        return f"Approval and merge request received from @{sender}! :white_check_mark:"
    if signals.approval:
        return f"Approval received from @{sender}! :white_check_mark:"
    if signals.merge_request:
        return f"Merge request received from @{sender}! :white_check_mark:"
    return None


def merged_message(approvers: Sequence[str]) -> str:
    if not approvers:
        return "Merged by its sole owner once checks passed - thanks for the contribution! :tada:"
    credited = _format_list(approvers)
    return f"Merged with approvals from {credited} - thanks for the contribution! :tada:"


def with_marker(message: str) -> str:
    return f"{message}{MANAGED_COMMENT_MARKER}"


def find_managed_comment(comments: Sequence[IssueComment]) -> IssueComment | None:
    for comment in comments:
        if MANAGED_COMMENT_MARKER in comment.body:
            return comment
    return None


def contains_message(body: str, message: str) -> bool:
    return _normalize_message(message) in _normalize_message(body)


def upsert_managed_comment(github: GitHubGateway, issue_number: int, message: str) -> UpsertResult:
    """Create or update the single marker-tagged status comment on a PR.

    A comment that already contains ``message`` (ignoring case and whitespace)
    is left untouched.
    """
    existing = find_managed_comment(github.list_issue_comments(issue_number))
    if existing is None:
        github.post_issue_comment(issue_number, with_marker(message))
        result: UpsertResult = "created"
    elif contains_message(existing.body, message):
        result = "unchanged"
    else:
        github.update_issue_comment(existing.comment_id, with_marker(message))
        result = "updated"
    log_event(LOGGER, "managed_comment_upserted", issue_number=issue_number, result=result)
    return result


def wait_for_managed_comment(
    github: GitHubGateway,
    issue_number: int,
    message: str,
    *,
    timeout_seconds: float,
    interval_seconds: float = 1.0,
) -> bool:
    """Wait until the managed comment carrying ``message`` is readable back.

    This narrows the window where a freshly written comment is not yet returned by
    the comments API. Returning False only means the bound elapsed; callers carry on.
    """
    deadline = time.monotonic() + timeout_seconds
    attempts = 0
    while True:
        attempts += 1
        existing = find_managed_comment(github.list_issue_comments(issue_number))
        if existing is not None and contains_message(existing.body, message):
            log_event(
                LOGGER,
                "managed_comment_visible",
                issue_number=issue_number,
                attempts=attempts,
            )
            return True
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            log_warning_event(
                LOGGER,
                "managed_comment_not_visible",
                issue_number=issue_number,
                attempts=attempts,
                timeout_seconds=timeout_seconds,
            )
            return False
        time.sleep(min(interval_seconds, remaining))


def _normalize_message(text: str) -> str:
    return "".join(text.lower().split())


def _format_list(items: Sequence[str]) -> str:
    if len(items) == 1:
        return items[0]
    if len(items) == 2:
        return f"{items[0]} and {items[1]}"
    return f"{', '.join(items[:-1])}, and {items[-1]}"
