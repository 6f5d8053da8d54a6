from __future__ import annotations

import logging
import random

from ownergate.comments import (
    acknowledgement_message,
    find_managed_comment,
    no_owners_message,
    owners_reviewing_message,
    sole_owner_message,
    upsert_managed_comment,
    wait_for_managed_comment,
)
from ownergate.config import ActionConfig
from ownergate.eligibility import evaluate, waived_verdict
from ownergate.event import ActionEvent
from ownergate.github_gateway import GitHubGateway
from ownergate.merge_gate import MergeGate
from ownergate.models import EligibilityVerdict, RunContext, RunOutcome
from ownergate.observability import log_event
from ownergate.ownership import OwnershipManifest
from ownergate.reviewers import assign_reviewer
from ownergate.signals import classify_event, extract_approvals, has_merge_request
from ownergate.status import ownership_label_specs, reconcile_labels, target_status_labels


LOGGER = logging.getLogger("ownergate.engine")
SUCCESS_OUTCOMES: frozenset[RunOutcome] = frozenset({"merged", "no_owners"})


class MergeEngine:
    """Runs one evaluation of a pull request, from ownership to merge."""

    def __init__(
        self,
        config: ActionConfig,
        *,
        github: GitHubGateway,
        manifest: OwnershipManifest,
        merge_gate: MergeGate | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._config = config
        self._github = github
        self._manifest = manifest
        self._merge_gate = merge_gate or MergeGate(
            github,
            merge_method=config.merge_method,
            poll_interval_seconds=config.poll_interval_seconds,
            check_timeout_seconds=config.check_timeout_seconds,
            job_name=config.job_name,
        )
        self._rng = rng

    def build_context(self, event: ActionEvent) -> RunContext:
        changed_files = self._github.list_pull_request_files(event.pr.number)
        resolution = self._manifest.resolve_for_set(changed_files)
        context = RunContext(
            pr=event.pr,
            event_kind=event.kind,
            sender=event.sender_login,
            changed_files=changed_files,
            owners=resolution.owners,
            labels=resolution.labels,
            approver_owners=resolution.owners - {event.pr.author_principal},
        )
        log_event(
            LOGGER,
            "owners_resolved",
            pr_number=event.pr.number,
            changed_file_count=len(changed_files),
            owners=context.owners,
            labels=context.labels,
        )
        return context

    def run(self, event: ActionEvent) -> RunOutcome:
        log_event(
            LOGGER,
            "run_started",
            event_kind=event.kind,
            pr_number=event.pr.number,
            sender=event.sender_login,
        )
        context = self.build_context(event)
        if event.is_pull_request_opened:
            self._welcome(context)
        else:
            self._acknowledge(event, context)
        outcome = self._evaluate(context)
        log_event(LOGGER, "run_finished", pr_number=context.pr.number, outcome=outcome)
        return outcome

    def _welcome(self, context: RunContext) -> None:
        pr_number = context.pr.number
        if not context.owners:
            return
        if find_managed_comment(self._github.list_issue_comments(pr_number)) is not None:
            log_event(LOGGER, "welcome_skipped", pr_number=pr_number, reason="already_welcomed")
            return
        assignee: str | None = None
        if self._config.assign_reviewer:
            assignee = assign_reviewer(self._github, context.pr, context.owners, rng=self._rng)
        message = (
            sole_owner_message()
            if context.sole_owner
            else owners_reviewing_message(
                assignee=assignee, assignment_attempted=self._config.assign_reviewer
            )
        )
        self._post_status(pr_number, message)

    def _acknowledge(self, event: ActionEvent, context: RunContext) -> None:
        signals = classify_event(
            event.command_body(),
            event.sender_login,
            owners=context.approver_owners,
            pr_author=context.pr.author_login,
            approved_review=event.is_approved_review,
        )
        message = acknowledgement_message(event.sender_login, signals)
        if message is not None:
            self._github.post_issue_comment(context.pr.number, message)

    def _evaluate(self, context: RunContext) -> RunOutcome:
        pr = context.pr
        if not context.owners:
            log_event(
                LOGGER,
                "no_owners",
                pr_number=pr.number,
                hint="consider adding root owners to CODEOWNERS",
            )
            self._post_status(pr.number, no_owners_message())
            return "no_owners"

        status_message = (
            sole_owner_message() if context.sole_owner else owners_reviewing_message()
        )
        self._post_status(pr.number, status_message)

        comments = self._github.list_issue_comments(pr.number)
        reviews = self._github.list_pull_request_reviews(pr.number)
        approvals = extract_approvals(
            comments, reviews, owners=context.approver_owners, pr_author=pr.author_login
        )
        verdict: EligibilityVerdict
        if context.sole_owner:
            verdict = waived_verdict(approvals)
            merge_requested = True
        else:
            verdict = evaluate(context.changed_files, self._manifest, approvals, pr.author_login)
            merge_requested = verdict.approved and has_merge_request(
                comments, reviews, owners=context.approver_owners, pr_author=pr.author_login
            )

        ownership = ownership_label_specs(context.labels)
        if not verdict.approved:
            target = target_status_labels(approved=False, merge_requested=False)
            reconcile_labels(self._github, pr.number, target, ownership)
            return "needs_lgtm"
        if not merge_requested:
            log_event(
                LOGGER,
                "merge_command_missing",
                pr_number=pr.number,
                owners=context.approver_owners,
            )
            target = target_status_labels(approved=True, merge_requested=False)
            reconcile_labels(self._github, pr.number, target, ownership)
            return "needs_merge"

        target = target_status_labels(approved=True, merge_requested=True)
        reconcile_labels(self._github, pr.number, target, ownership)
        gate_state = self._merge_gate.wait_for_checks(pr)
        if gate_state == "blocked":
            return "checks_failed"
        if gate_state == "timed_out":
            return "checks_timed_out"

        result = self._merge_gate.merge(pr, context.changed_files, verdict.approvers)
        if result.needs_manual_merge:
            reconcile_labels(
                self._github,
                pr.number,
                target_status_labels(approved=True, merge_requested=True, manual_merge=True),
                ownership,
            )
            return "needs_manual_merge"
        return "merged"

    def _post_status(self, pr_number: int, message: str) -> None:
        result = upsert_managed_comment(self._github, pr_number, message)
        if result == "unchanged" or self._config.consistency_wait_seconds <= 0:
            return
        wait_for_managed_comment(
            self._github,
            pr_number,
            message,
            timeout_seconds=self._config.consistency_wait_seconds,
        )
