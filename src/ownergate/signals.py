from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
import logging
import re

from ownergate.models import (
    IssueComment,
    PullRequestReview,
    Signal,
    SignalKind,
    as_principal,
)
from ownergate.observability import log_event


LOGGER = logging.getLogger("ownergate.signals")
MANAGED_COMMENT_MARKER = "<!-- Message About Merging -->"
APPROVED_REVIEW_STATE = "approved"
_COMMAND_PATTERNS: dict[SignalKind, re.Pattern[str]] = {
    "approval": re.compile(r"/lgtm", re.IGNORECASE),
    "merge_request": re.compile(r"/merge", re.IGNORECASE),
}


@dataclass(frozen=True)
class EventSignals:
    approval: bool
    merge_request: bool


def is_valid_signal(
    body: str,
    author: str,
    kind: SignalKind,
    *,
    owners: Iterable[str],
    pr_author: str,
    implicit_approval: bool = False,
) -> bool:
    """Decide whether a comment or review body counts as a command.

    ``owners`` holds canonical ``@login`` principals; when empty any author except
    the PR author qualifies. ``implicit_approval`` marks a native approving review,
    which counts as ``/lgtm`` regardless of its text.
    """
    if MANAGED_COMMENT_MARKER in body:
        return False
    commanded = _COMMAND_PATTERNS[kind].search(body) is not None
    if kind == "approval" and implicit_approval:
        commanded = True
    if not commanded:
        return False
    owner_set = frozenset(owners)
    if owner_set and as_principal(author) not in owner_set:
        return False
    return author != pr_author


def extract_signals(
    comments: Sequence[IssueComment],
    reviews: Sequence[PullRequestReview],
    kind: SignalKind,
    *,
    owners: Iterable[str],
    pr_author: str,
) -> tuple[Signal, ...]:
    owner_set = frozenset(owners)
    signals: list[Signal] = []
    for comment in comments:
        if is_valid_signal(
            comment.body, comment.user_login, kind, owners=owner_set, pr_author=pr_author
        ):
            signals.append(
                Signal(
                    principal=as_principal(comment.user_login),
                    kind=kind,
                    source="comment",
                    timestamp=comment.created_at,
                )
            )
    for review in reviews:
        if is_valid_signal(
            review.body,
            review.user_login,
            kind,
            owners=owner_set,
            pr_author=pr_author,
            implicit_approval=_is_approved_review(review),
        ):
            signals.append(
                Signal(
                    principal=as_principal(review.user_login),
                    kind=kind,
                    source="review",
                    timestamp=review.submitted_at,
                )
            )
    for signal in signals:
        log_event(
            LOGGER,
            "signal_found",
            kind=signal.kind,
            principal=signal.principal,
            source=signal.source,
        )
    return tuple(signals)


def extract_approvals(
    comments: Sequence[IssueComment],
    reviews: Sequence[PullRequestReview],
    *,
    owners: Iterable[str],
    pr_author: str,
) -> tuple[str, ...]:
    signals = extract_signals(comments, reviews, "approval", owners=owners, pr_author=pr_author)
    return tuple(signal.principal for signal in signals)


def has_merge_request(
    comments: Sequence[IssueComment],
    reviews: Sequence[PullRequestReview],
    *,
    owners: Iterable[str],
    pr_author: str,
) -> bool:
    signals = extract_signals(
        comments, reviews, "merge_request", owners=owners, pr_author=pr_author
    )
    return bool(signals)


def classify_event(
    body: str,
    sender: str,
    *,
    owners: Iterable[str],
    pr_author: str,
    approved_review: bool = False,
) -> EventSignals:
    owner_set = frozenset(owners)
    return EventSignals(
        approval=is_valid_signal(
            body,
            sender,
            "approval",
            owners=owner_set,
            pr_author=pr_author,
            implicit_approval=approved_review,
        ),
        merge_request=is_valid_signal(
            body, sender, "merge_request", owners=owner_set, pr_author=pr_author
        ),
    )


def _is_approved_review(review: PullRequestReview) -> bool:
    return review.state.strip().lower() == APPROVED_REVIEW_STATE
