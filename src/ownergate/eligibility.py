from __future__ import annotations

from collections.abc import Sequence
import logging

from ownergate.models import EligibilityVerdict, as_principal, dedupe
from ownergate.observability import log_event
from ownergate.ownership import OwnershipManifest


LOGGER = logging.getLogger("ownergate.eligibility")


def evaluate(
    changed_files: Sequence[str],
    manifest: OwnershipManifest,
    approvers: Sequence[str],
    pr_author: str,
) -> EligibilityVerdict:
    """Decide whether the collected approvals cover every owned changed file.

    One owning approver is enough for a file. Files the PR author owns need no
    further approval, and files without any declared owner never block.
    """
    unique_approvers = dedupe(tuple(approvers))
    if not unique_approvers:
        verdict = EligibilityVerdict(
            approved=False,
            approvers=(),
            unapproved_files=frozenset(changed_files),
            missing_owners=frozenset(),
            reason="no_approvals",
        )
        _log_verdict(verdict)
        return verdict

    remaining: tuple[str, ...] = tuple(changed_files)
    for approver in unique_approvers:
        remaining = manifest.files_not_owned_by(approver, remaining)
    remaining = manifest.files_not_owned_by(as_principal(pr_author), remaining)

    missing_owners = manifest.resolve_for_set(remaining).owners
    if remaining and missing_owners:
        verdict = EligibilityVerdict(
            approved=False,
            approvers=unique_approvers,
            unapproved_files=frozenset(remaining),
            missing_owners=missing_owners,
            reason="missing_owner_approval",
        )
    elif remaining:
        verdict = EligibilityVerdict(
            approved=True,
            approvers=unique_approvers,
            unapproved_files=frozenset(remaining),
            missing_owners=frozenset(),
            reason="coverage_gap_tolerated",
        )
    else:
        verdict = EligibilityVerdict(
            approved=True,
            approvers=unique_approvers,
            unapproved_files=frozenset(),
            missing_owners=frozenset(),
            reason="approved",
        )
    _log_verdict(verdict)
    return verdict


def waived_verdict(approvers: Sequence[str]) -> EligibilityVerdict:
    """Verdict for a PR whose author is the only owner of every changed file."""
    verdict = EligibilityVerdict(
        approved=True,
        approvers=dedupe(tuple(approvers)),
        unapproved_files=frozenset(),
        missing_owners=frozenset(),
        reason="sole_owner_waiver",
    )
    _log_verdict(verdict)
    return verdict


def _log_verdict(verdict: EligibilityVerdict) -> None:
    log_event(
        LOGGER,
        "eligibility_evaluated",
        approved=verdict.approved,
        reason=verdict.reason,
        approvers=verdict.approvers,
        unapproved_files=verdict.unapproved_files,
        missing_owners=verdict.missing_owners,
    )
