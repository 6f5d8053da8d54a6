from __future__ import annotations

from hypothesis import given
from hypothesis import strategies as st
import pytest

from ownergate.models import IssueComment, PullRequestReview
from ownergate.signals import (
    MANAGED_COMMENT_MARKER,
    EventSignals,
    classify_event,
    extract_approvals,
    extract_signals,
    has_merge_request,
    is_valid_signal,
)


OWNERS = frozenset({"@alice", "@bob"})


def _comment(body: str, user: str, comment_id: int = 1) -> IssueComment:
    return IssueComment(
        comment_id=comment_id,
        body=body,
        user_login=user,
        created_at="2024-01-01T00:00:00Z",
        updated_at="2024-01-01T00:00:00Z",
    )


def _review(body: str, user: str, state: str = "commented") -> PullRequestReview:
    return PullRequestReview(
        review_id=1,
        body=body,
        state=state,
        user_login=user,
        submitted_at="2024-01-02T00:00:00Z",
    )


@pytest.mark.parametrize(
    "body",
    ["/lgtm", "/LGTM", "Looks good /Lgtm thanks", "please/lgtmx"],
)
def test_approval_is_case_insensitive_substring(body: str) -> None:
    assert is_valid_signal(body, "alice", "approval", owners=OWNERS, pr_author="carol")


def test_merge_command_does_not_count_as_approval() -> None:
    assert not is_valid_signal("/merge", "alice", "approval", owners=OWNERS, pr_author="carol")
    assert is_valid_signal("/MERGE", "alice", "merge_request", owners=OWNERS, pr_author="carol")


def test_marker_disqualifies_bot_comments() -> None:
    body = f"Use /lgtm and /merge{MANAGED_COMMENT_MARKER}"
    assert not is_valid_signal(body, "alice", "approval", owners=OWNERS, pr_author="carol")
    assert not is_valid_signal(body, "alice", "merge_request", owners=OWNERS, pr_author="carol")


def test_non_owner_is_ignored() -> None:
    assert not is_valid_signal("/lgtm", "mallory", "approval", owners=OWNERS, pr_author="carol")


def test_pr_author_cannot_signal_even_as_owner() -> None:
    assert not is_valid_signal("/lgtm", "alice", "approval", owners=OWNERS, pr_author="alice")


def test_empty_owner_set_accepts_anyone_but_author() -> None:
    assert is_valid_signal("/merge", "mallory", "merge_request", owners=(), pr_author="carol")
    assert not is_valid_signal("/merge", "carol", "merge_request", owners=(), pr_author="carol")


def test_implicit_approval_only_applies_to_approval_kind() -> None:
    assert is_valid_signal(
        "", "alice", "approval", owners=OWNERS, pr_author="carol", implicit_approval=True
    )
    assert not is_valid_signal(
        "", "alice", "merge_request", owners=OWNERS, pr_author="carol", implicit_approval=True
    )


def test_extract_signals_reads_comments_then_reviews() -> None:
    comments = [
        _comment("/lgtm", "alice"),
        _comment("/lgtm", "carol", comment_id=2),
        _comment("nice work", "bob", comment_id=3),
    ]
    reviews = [_review("", "bob", state="approved"), _review("/lgtm", "mallory")]

    signals = extract_signals(comments, reviews, "approval", owners=OWNERS, pr_author="carol")

    assert [(signal.principal, signal.source) for signal in signals] == [
        ("@alice", "comment"),
        ("@bob", "review"),
    ]
    assert signals[1].timestamp == "2024-01-02T00:00:00Z"


def test_extract_approvals_and_merge_request() -> None:
    comments = [_comment("/lgtm /merge", "alice")]
    reviews = [_review("", "bob", state="APPROVED")]
    assert extract_approvals(comments, reviews, owners=OWNERS, pr_author="carol") == (
        "@alice",
        "@bob",
    )
    assert has_merge_request(comments, reviews, owners=OWNERS, pr_author="carol")
    assert not has_merge_request([], reviews, owners=OWNERS, pr_author="carol")


def test_changes_requested_review_is_not_an_approval() -> None:
    reviews = [_review("", "alice", state="changes_requested")]
    assert extract_approvals([], reviews, owners=OWNERS, pr_author="carol") == ()


def test_classify_event() -> None:
    assert classify_event(
        "/lgtm /merge", "alice", owners=OWNERS, pr_author="carol"
    ) == EventSignals(approval=True, merge_request=True)
    assert classify_event("/merge", "bob", owners=OWNERS, pr_author="carol") == EventSignals(
        approval=False, merge_request=True
    )
    assert classify_event(
        "", "bob", owners=OWNERS, pr_author="carol", approved_review=True
    ) == EventSignals(approval=True, merge_request=False)
    assert classify_event("/lgtm", "carol", owners=OWNERS, pr_author="carol") == EventSignals(
        approval=False, merge_request=False
    )


@given(st.text(max_size=40), st.text(max_size=40))
def test_marker_always_disqualifies(prefix: str, suffix: str) -> None:
    body = f"{prefix}/lgtm{MANAGED_COMMENT_MARKER}{suffix}"
    assert not is_valid_signal(body, "alice", "approval", owners=OWNERS, pr_author="carol")


@given(st.sampled_from(["alice", "bob", "carol", "mallory"]))
def test_author_never_signals(login: str) -> None:
    assert not is_valid_signal("/lgtm", login, "approval", owners=(), pr_author=login)
