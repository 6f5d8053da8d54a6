from __future__ import annotations

from collections.abc import Iterable, Sequence
import logging
import time

from ownergate.comments import merged_message
from ownergate.github_gateway import GitHubGateway, GitHubMergeError
from ownergate.models import CheckGateState, CheckRun, MergeMethod, MergeResult, PullRequestRef
from ownergate.observability import log_event, log_warning_event


LOGGER = logging.getLogger("ownergate.merge_gate")
WORKFLOWS_DIR = ".github/workflows/"
_FAILING_CONCLUSIONS = frozenset(
    {"failure", "timed_out", "cancelled", "action_required", "startup_failure"}
)


def evaluate_check_runs(
    runs: Iterable[CheckRun], *, exclude_name: str | None
) -> tuple[CheckGateState, CheckRun | None]:
    """Classify one snapshot of check runs.

    A failed run blocks immediately, even while others are still running.
    """
    relevant = [check_run for check_run in runs if check_run.name != exclude_name]
    for check_run in relevant:
        if check_run.status == "completed" and check_run.conclusion in _FAILING_CONCLUSIONS:
            return "blocked", check_run
    for check_run in relevant:
        if check_run.status != "completed":
            return "polling", check_run
    return "ready", None


def wait_for_checks(
    github: GitHubGateway,
    ref: str,
    *,
    exclude_name: str | None,
    interval_seconds: float = 5,
    timeout_seconds: float | None = None,
) -> CheckGateState:
    started = time.monotonic()
    polls = 0
    while True:
        polls += 1
        state, check_run = evaluate_check_runs(
            github.list_check_runs_for_ref(ref), exclude_name=exclude_name
        )
        if state != "polling":
            log_event(
                LOGGER,
                "check_gate_resolved",
                ref=ref,
                state=state,
                polls=polls,
                check_name=check_run.name if check_run else None,
                check_title=check_run.title if check_run else None,
            )
            return state

        assert check_run is not None
        elapsed = time.monotonic() - started
        if timeout_seconds is not None and elapsed >= timeout_seconds:
            log_warning_event(
                LOGGER,
                "check_gate_timed_out",
                ref=ref,
                polls=polls,
                elapsed_seconds=round(elapsed, 1),
                check_name=check_run.name,
            )
            return "timed_out"
        log_event(
            LOGGER,
            "check_gate_waiting",
            ref=ref,
            check_name=check_run.name,
            check_status=check_run.status,
            check_title=check_run.title,
            sleep_seconds=interval_seconds,
        )
        time.sleep(interval_seconds)


def touches_workflow_files(paths: Iterable[str]) -> bool:
    return any(path.lstrip("/").startswith(WORKFLOWS_DIR) for path in paths)


class MergeGate:
    def __init__(
        self,
        github: GitHubGateway,
        *,
        merge_method: MergeMethod,
        poll_interval_seconds: float = 5,
        check_timeout_seconds: float | None = None,
        job_name: str | None = None,
    ) -> None:
        self._github = github
        self._merge_method = merge_method
        self._poll_interval_seconds = poll_interval_seconds
        self._check_timeout_seconds = check_timeout_seconds
        self._job_name = job_name

    def wait_for_checks(self, pr: PullRequestRef) -> CheckGateState:
        return wait_for_checks(
            self._github,
            pr.head_ref,
            exclude_name=self._job_name,
            interval_seconds=self._poll_interval_seconds,
            timeout_seconds=self._check_timeout_seconds,
        )

    def merge(
        self,
        pr: PullRequestRef,
        changed_files: Sequence[str],
        approvers: Sequence[str],
    ) -> MergeResult:
        """Merge ``pr`` and credit ``approvers``.

        Failures on a PR that edits workflow definitions come back as
        ``needs_manual_merge``; any other merge failure is raised.
        """
        log_event(LOGGER, "merge_started", pr_number=pr.number, merge_method=self._merge_method)
        try:
            sha = self._github.merge_pull_request(pr.number, self._merge_method)
        except GitHubMergeError as exc:
            if touches_workflow_files(changed_files):
                log_warning_event(
                    LOGGER,
                    "merge_needs_manual_merge",
                    pr_number=pr.number,
                    reason="workflow_files_changed",
                    error=str(exc),
                )
                return MergeResult(merged=False, needs_manual_merge=True, detail=str(exc))
            LOGGER.error(
                "event=merge_failed pr_number=%s merge_method=%s",
                pr.number,
                self._merge_method,
                exc_info=True,
            )
            raise

        self._github.post_issue_comment(pr.number, merged_message(approvers))
        log_event(
            LOGGER,
            "pull_request_merged",
            pr_number=pr.number,
            sha=sha,
            approvers=tuple(approvers),
        )
        return MergeResult(merged=True, needs_manual_merge=False, detail=sha)
