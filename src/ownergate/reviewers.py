from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
import logging
import random

from ownergate.github_gateway import GitHubGateway
from ownergate.models import PullRequestRef
from ownergate.observability import log_event


LOGGER = logging.getLogger("ownergate.reviewers")


def eligible_reviewers(owners: Iterable[str], pr: PullRequestRef) -> tuple[str, ...]:
    # Team principals (@org/team) cannot be issue assignees.
    return tuple(
        sorted(owner for owner in set(owners) if owner != pr.author_principal and "/" not in owner)
    )


def pick_reviewer(
    candidates: tuple[str, ...],
    assignment_counts: Counter[str],
    *,
    rng: random.Random,
) -> str | None:
    """Pick the least-assigned candidate, breaking ties randomly."""
    if not candidates:
        return None
    shuffled = list(candidates)
    rng.shuffle(shuffled)
    return min(shuffled, key=lambda principal: assignment_counts[principal.lstrip("@")])


def assign_reviewer(
    github: GitHubGateway,
    pr: PullRequestRef,
    owners: Iterable[str],
    *,
    rng: random.Random | None = None,
) -> str | None:
    candidates = eligible_reviewers(owners, pr)
    log_event(LOGGER, "reviewer_candidates", pr_number=pr.number, candidates=candidates)
    if not candidates:
        return None

    counts: Counter[str] = Counter()
    for _number, assignees in github.list_open_pull_requests(base=pr.base_ref or None):
        counts.update(assignees)

    assignee = pick_reviewer(candidates, counts, rng=rng or random.Random())
    if assignee is None:
        return None
    github.add_assignees(pr.number, (assignee.lstrip("@"),))
    log_event(
        LOGGER,
        "reviewer_assigned",
        pr_number=pr.number,
        assignee=assignee,
        open_assignments=counts[assignee.lstrip("@")],
    )
    return assignee
