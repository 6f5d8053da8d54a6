from __future__ import annotations

from collections.abc import Iterable
import hashlib
import logging

from ownergate.github_gateway import GitHubGateway
from ownergate.models import LabelSpec
from ownergate.observability import log_event


LOGGER = logging.getLogger("ownergate.status")

NEEDS_LGTM = LabelSpec("needs-lgtm", "FFA500", "Waiting for /lgtm from an owner")
LGTM = LabelSpec("lgtm", "00FFFF", "Approved by the owners of every changed file")
NEEDS_MERGE = LabelSpec("needs-merge", "FFA500", "Waiting for /merge from an owner")
MERGE_READY = LabelSpec("merge-ready", "00FF00", "Will merge once checks are green")
NEEDS_MANUAL_MERGE = LabelSpec(
    "needs-manual-merge", "D93F0B", "Touches workflow files; a maintainer must merge"
)
STATUS_LABELS: tuple[LabelSpec, ...] = (
    NEEDS_LGTM,
    LGTM,
    NEEDS_MERGE,
    MERGE_READY,
    NEEDS_MANUAL_MERGE,
)
STATUS_LABEL_NAMES: frozenset[str] = frozenset(label.name for label in STATUS_LABELS)


def target_status_labels(
    *, approved: bool, merge_requested: bool, manual_merge: bool = False
) -> tuple[LabelSpec, ...]:
    if not approved:
        return (NEEDS_LGTM,)
    if not merge_requested:
        return (LGTM, NEEDS_MERGE)
    if manual_merge:
        return (LGTM, MERGE_READY, NEEDS_MANUAL_MERGE)
    return (LGTM, MERGE_READY)


def ownership_label_specs(names: Iterable[str]) -> tuple[LabelSpec, ...]:
    return tuple(LabelSpec(name, stable_label_color(name)) for name in sorted(set(names)))


def stable_label_color(name: str) -> str:
    return hashlib.sha256(name.encode("utf-8")).hexdigest()[:6].upper()


def merge_label_sets(
    current: Iterable[str],
    target: Iterable[LabelSpec],
    ownership: Iterable[LabelSpec] = (),
) -> tuple[str, ...]:
    """Labels to leave on the PR: current non-status labels, then ownership, then target."""
    result: list[str] = [name for name in current if name not in STATUS_LABEL_NAMES]
    for label in (*ownership, *target):
        if label.name not in result:
            result.append(label.name)
    return tuple(result)


def ensure_repo_labels(github: GitHubGateway, specs: Iterable[LabelSpec]) -> None:
    existing = {label.name for label in github.list_repo_labels()}
    for label in specs:
        if label.name in existing:
            continue
        github.create_label(label.name, label.color, label.description)
        existing.add(label.name)


def reconcile_labels(
    github: GitHubGateway,
    pr_number: int,
    target: tuple[LabelSpec, ...],
    ownership: tuple[LabelSpec, ...] = (),
) -> tuple[str, ...]:
    ensure_repo_labels(github, (*ownership, *target))
    current = github.list_issue_labels(pr_number)
    desired = merge_label_sets(current, target, ownership)
    removed = tuple(name for name in current if name not in desired)
    github.set_issue_labels(pr_number, desired)
    log_event(
        LOGGER,
        "status_labels_set",
        pr_number=pr_number,
        status=tuple(label.name for label in target),
        removed=removed,
        labels=desired,
    )
    return desired
