from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


EventKind = Literal["pull_request_target", "pull_request", "issue_comment", "pull_request_review"]
MergeMethod = Literal["merge", "squash", "rebase"]
SignalKind = Literal["approval", "merge_request"]
SignalSource = Literal["comment", "review"]
CheckGateState = Literal["polling", "blocked", "ready", "timed_out"]
EligibilityReason = Literal[
    "no_approvals",
    "missing_owner_approval",
    "coverage_gap_tolerated",
    "approved",
    "sole_owner_waiver",
]
RunOutcome = Literal[
    "no_owners",
    "needs_lgtm",
    "needs_merge",
    "checks_failed",
    "checks_timed_out",
    "needs_manual_merge",
    "merged",
]


@dataclass(frozen=True)
class PullRequestRef:
    number: int
    author_login: str
    base_ref: str
    html_url: str = ""

    @property
    def author_principal(self) -> str:
        return as_principal(self.author_login)

    @property
    def head_ref(self) -> str:
        return f"pull/{self.number}/head"


@dataclass(frozen=True)
class IssueComment:
    comment_id: int
    body: str
    user_login: str
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class PullRequestReview:
    review_id: int
    body: str
    state: str
    user_login: str
    submitted_at: str


@dataclass(frozen=True)
class CheckRun:
    check_run_id: int
    name: str
    status: str
    conclusion: str | None
    title: str


@dataclass(frozen=True)
class RepoLabel:
    name: str
    color: str
    description: str


@dataclass(frozen=True)
class LabelSpec:
    name: str
    color: str
    description: str = ""


@dataclass(frozen=True)
class OwnerResolution:
    owners: frozenset[str]
    labels: frozenset[str]


@dataclass(frozen=True)
class Signal:
    principal: str
    kind: SignalKind
    source: SignalSource
    timestamp: str


@dataclass(frozen=True)
class EligibilityVerdict:
    approved: bool
    approvers: tuple[str, ...]
    unapproved_files: frozenset[str]
    missing_owners: frozenset[str]
    reason: EligibilityReason


@dataclass(frozen=True)
class RunContext:
    pr: PullRequestRef
    event_kind: EventKind
    sender: str
    changed_files: tuple[str, ...]
    owners: frozenset[str]
    labels: frozenset[str]
    approver_owners: frozenset[str]

    @property
    def sole_owner(self) -> bool:
        return not self.approver_owners


@dataclass(frozen=True)
class MergeResult:
    merged: bool
    needs_manual_merge: bool
    detail: str


def as_principal(login: str) -> str:
    stripped = login.strip()
    if stripped.startswith("@"):
        return stripped
    return f"@{stripped}"


def dedupe(items: tuple[str, ...] | list[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(items))
