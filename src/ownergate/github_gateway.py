from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
from typing import cast
from urllib.parse import quote, urlencode

from ownergate.models import (
    CheckRun,
    IssueComment,
    MergeMethod,
    PullRequestReview,
    RepoLabel,
)
from ownergate.observability import log_event
from ownergate.shell import CommandError, run


LOGGER = logging.getLogger("ownergate.github_gateway")
_PAGE_SIZE = 100


class GitHubPollingError(RuntimeError):
    """A GitHub read failed; the run cannot continue on stale data."""


class GitHubMergeError(RuntimeError):
    """GitHub refused or failed the merge request."""


@dataclass(frozen=True)
class GitHubGateway:
    owner: str
    name: str
    _etags_by_path: dict[str, str] = field(
        default_factory=dict,
        init=False,
        repr=False,
        compare=False,
    )
    _cached_get_payload_by_path: dict[str, object] = field(
        default_factory=dict,
        init=False,
        repr=False,
        compare=False,
    )

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def list_pull_request_files(self, pr_number: int) -> tuple[str, ...]:
        items = self._get_paged_list(
            f"/repos/{self.owner}/{self.name}/pulls/{pr_number}/files",
            what="pull request files",
        )
        files: list[str] = []
        for item_obj in items:
            filename = item_obj.get("filename")
            if isinstance(filename, str) and filename:
                files.append(filename)
        log_event(
            LOGGER,
            "github_read",
            endpoint="pull_request_files",
            pr_number=pr_number,
            count=len(files),
        )
        return tuple(files)

    def list_issue_comments(self, issue_number: int) -> list[IssueComment]:
        items = self._get_paged_list(
            f"/repos/{self.owner}/{self.name}/issues/{issue_number}/comments",
            what="issue comments",
        )
        comments = [
            IssueComment(
                comment_id=_as_int(item_obj.get("id"), field="id"),
                body=_as_string(item_obj.get("body")),
                user_login=_user_login(item_obj),
                created_at=_as_string(item_obj.get("created_at")),
                updated_at=_as_string(item_obj.get("updated_at")),
            )
            for item_obj in items
        ]
        log_event(
            LOGGER,
            "github_read",
            endpoint="issue_comments",
            issue_number=issue_number,
            count=len(comments),
        )
        return comments

    def list_pull_request_reviews(self, pr_number: int) -> list[PullRequestReview]:
        items = self._get_paged_list(
            f"/repos/{self.owner}/{self.name}/pulls/{pr_number}/reviews",
            what="pull request reviews",
        )
        reviews = [
            PullRequestReview(
                review_id=_as_int(item_obj.get("id"), field="id"),
                body=_as_string(item_obj.get("body")),
                state=_as_string(item_obj.get("state")).strip().lower(),
                user_login=_user_login(item_obj),
                submitted_at=_as_string(item_obj.get("submitted_at")),
            )
            for item_obj in items
        ]
        log_event(
            LOGGER,
            "github_read",
            endpoint="pull_request_reviews",
            pr_number=pr_number,
            count=len(reviews),
        )
        return reviews

    def post_issue_comment(self, issue_number: int, body: str) -> int:
        path = f"/repos/{self.owner}/{self.name}/issues/{issue_number}/comments"
        try:
            payload = self._api_json("POST", path, payload={"body": body})
            payload_obj = _as_object_dict(payload)
            if payload_obj is None:
                raise RuntimeError("Unexpected GitHub response: expected object for comment")
            comment_id = _as_int(payload_obj.get("id"), field="id")
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "github_issue_comment_failed",
                repo_full_name=self.full_name,
                issue_number=issue_number,
                error_type=type(exc).__name__,
            )
            raise
        log_event(
            LOGGER,
            "github_issue_comment_posted",
            issue_number=issue_number,
            comment_id=comment_id,
        )
        return comment_id

    def update_issue_comment(self, comment_id: int, body: str) -> None:
        path = f"/repos/{self.owner}/{self.name}/issues/comments/{comment_id}"
        try:
            self._api_json("PATCH", path, payload={"body": body})
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "github_issue_comment_failed",
                repo_full_name=self.full_name,
                comment_id=comment_id,
                error_type=type(exc).__name__,
            )
            raise
        log_event(LOGGER, "github_issue_comment_updated", comment_id=comment_id)

    def list_repo_labels(self) -> list[RepoLabel]:
        items = self._get_paged_list(
            f"/repos/{self.owner}/{self.name}/labels",
            what="repository labels",
        )
        labels = [_parse_label(item_obj) for item_obj in items]
        log_event(LOGGER, "github_read", endpoint="repo_labels", count=len(labels))
        return labels

    def create_label(self, name: str, color: str, description: str = "") -> None:
        path = f"/repos/{self.owner}/{self.name}/labels"
        self._api_json(
            "POST",
            path,
            payload={"name": name, "color": color, "description": description},
        )
        log_event(LOGGER, "github_label_created", label=name, color=color)

    def list_issue_labels(self, issue_number: int) -> tuple[str, ...]:
        items = self._get_paged_list(
            f"/repos/{self.owner}/{self.name}/issues/{issue_number}/labels",
            what="issue labels",
        )
        names = tuple(_parse_label(item_obj).name for item_obj in items)
        log_event(
            LOGGER,
            "github_read",
            endpoint="issue_labels",
            issue_number=issue_number,
            count=len(names),
        )
        return names

    def set_issue_labels(self, issue_number: int, labels: tuple[str, ...]) -> None:
        path = f"/repos/{self.owner}/{self.name}/issues/{issue_number}/labels"
        self._api_json("PUT", path, payload={"labels": list(labels)})
        log_event(LOGGER, "github_labels_replaced", issue_number=issue_number, labels=labels)

    def list_check_runs_for_ref(self, ref: str) -> tuple[CheckRun, ...]:
        encoded_ref = quote(ref, safe="")
        path = (
            f"/repos/{self.owner}/{self.name}/commits/{encoded_ref}/check-runs?"
            f"{urlencode({'per_page': _PAGE_SIZE})}"
        )
        payload = self._api_json("GET", path)
        payload_obj = _as_object_dict(payload)
        if payload_obj is None:
            raise RuntimeError("Unexpected GitHub response: expected object for check runs")
        runs_payload = payload_obj.get("check_runs")
        if not isinstance(runs_payload, list):
            raise RuntimeError("Unexpected GitHub response: expected check_runs list")

        runs: list[CheckRun] = []
        for item in runs_payload:
            item_obj = _as_object_dict(item)
            if item_obj is None:
                continue
            output_obj = _as_object_dict(item_obj.get("output"))
            runs.append(
                CheckRun(
                    check_run_id=_as_int(item_obj.get("id"), field="id"),
                    name=_as_string(item_obj.get("name")),
                    status=_as_string(item_obj.get("status")).strip().lower(),
                    conclusion=_normalize_optional_lower_str(item_obj.get("conclusion")),
                    title=_as_string(output_obj.get("title") if output_obj else None),
                )
            )
        log_event(LOGGER, "github_read", endpoint="check_runs", ref=ref, count=len(runs))
        return tuple(sorted(runs, key=lambda check_run: check_run.check_run_id))

    def merge_pull_request(self, pr_number: int, merge_method: MergeMethod) -> str:
        path = f"/repos/{self.owner}/{self.name}/pulls/{pr_number}/merge"
        try:
            payload = self._api_json("PUT", path, payload={"merge_method": merge_method})
        except CommandError as exc:
            log_event(
                LOGGER,
                "github_merge_failed",
                repo_full_name=self.full_name,
                pr_number=pr_number,
                merge_method=merge_method,
                exit_code=exc.exit_code,
                stderr=exc.stderr,
            )
            raise GitHubMergeError(
                f"Merging PR #{pr_number} with method {merge_method!r} failed: "
                f"{exc.stderr.strip() or exc.stdout.strip() or '<no output>'}"
            ) from exc
        payload_obj = _as_object_dict(payload) or {}
        if payload_obj.get("merged") is False:
            message = _as_string(payload_obj.get("message"))
            raise GitHubMergeError(f"GitHub did not merge PR #{pr_number}: {message}")
        sha = _as_string(payload_obj.get("sha"))
        log_event(
            LOGGER,
            "github_pr_merged",
            pr_number=pr_number,
            merge_method=merge_method,
            sha=sha,
        )
        return sha

    def list_open_pull_requests(
        self, *, base: str | None = None
    ) -> list[tuple[int, tuple[str, ...]]]:
        """Return ``(number, assignee logins)`` for every open pull request."""
        query: dict[str, object] = {"state": "open"}
        if base:
            query["base"] = base
        items = self._get_paged_list(
            f"/repos/{self.owner}/{self.name}/pulls",
            what="open pull requests",
            query=query,
        )
        pulls: list[tuple[int, tuple[str, ...]]] = []
        for item_obj in items:
            assignees_payload = item_obj.get("assignees")
            logins: list[str] = []
            if isinstance(assignees_payload, list):
                for entry in assignees_payload:
                    entry_obj = _as_object_dict(entry)
                    login = entry_obj.get("login") if entry_obj is not None else None
                    if isinstance(login, str) and login:
                        logins.append(login)
            pulls.append((_as_int(item_obj.get("number"), field="number"), tuple(logins)))
        log_event(LOGGER, "github_read", endpoint="open_pull_requests", base=base, count=len(pulls))
        return pulls

    def add_assignees(self, issue_number: int, logins: tuple[str, ...]) -> None:
        path = f"/repos/{self.owner}/{self.name}/issues/{issue_number}/assignees"
        self._api_json("POST", path, payload={"assignees": list(logins)})
        log_event(LOGGER, "github_assignees_added", issue_number=issue_number, assignees=logins)

    def _get_paged_list(
        self,
        base_path: str,
        *,
        what: str,
        query: dict[str, object] | None = None,
    ) -> list[dict[str, object]]:
        items: list[dict[str, object]] = []
        page = 1
        while True:
            query_items: dict[str, object] = dict(query or {})
            query_items["per_page"] = _PAGE_SIZE
            query_items["page"] = page
            payload = self._api_json("GET", f"{base_path}?{urlencode(query_items)}")
            if not isinstance(payload, list):
                raise RuntimeError(f"Unexpected GitHub response: expected list of {what}")
            for item in payload:
                item_obj = _as_object_dict(item)
                if item_obj is not None:
                    items.append(item_obj)
            if len(payload) < _PAGE_SIZE:
                return items
            page += 1

    def _api_json(self, method: str, path: str, payload: dict[str, object] | None = None) -> object:
        method_upper = method.upper()
        if method_upper == "GET":
            cmd = ["gh", "api", "--method", method_upper]
            etag = self._etags_by_path.get(path)
            if etag:
                cmd.extend(["--header", f"If-None-Match: {etag}"])
            cmd.extend(["--include", path])

            raw = run(cmd, check=False)
            try:
                status_code, headers, body = _parse_http_response(raw)

                if status_code == 304:
                    cached_payload = self._cached_get_payload_by_path.get(path)
                    if cached_payload is None:
                        raise RuntimeError(f"GitHub returned 304 for uncached path: {path}")
                    return cached_payload

                if status_code < 200 or status_code >= 300:
                    message = body.strip() or "<empty>"
                    raise RuntimeError(
                        f"GitHub API request failed with status {status_code}: {message}"
                    )

                payload_obj = json.loads(body)
                etag = headers.get("etag")
                if etag:
                    self._etags_by_path[path] = etag
                    self._cached_get_payload_by_path[path] = payload_obj
                return payload_obj
            except Exception as exc:
                log_event(
                    LOGGER,
                    "github_get_failed",
                    path=path,
                    error_type=type(exc).__name__,
                    error=str(exc),
                    raw_preview=_preview_for_log(raw),
                )
                raise GitHubPollingError(f"GitHub GET failed for path {path}: {exc}") from exc

        cmd = ["gh", "api", "--method", method_upper, path]
        stdin_payload: str | None = None
        if payload is not None:
            cmd.extend(["--input", "-"])
            stdin_payload = json.dumps(payload)
        raw = run(cmd, input_text=stdin_payload)
        if not raw.strip():
            return None
        return json.loads(raw)


def _parse_http_response(raw: str) -> tuple[int, dict[str, str], str]:
    normalized = raw.replace("\r\n", "\n")
    lines = normalized.split("\n")

    status_line_index = -1
    for index, line in enumerate(lines):
        if line.startswith("HTTP/"):
            status_line_index = index

    if status_line_index < 0:
        raise RuntimeError("Unexpected GitHub response: missing HTTP status line")

    status_line = lines[status_line_index]
    status_parts = status_line.split(" ", 2)
    if len(status_parts) < 2:
        raise RuntimeError(f"Unexpected GitHub response status line: {status_line!r}")

    try:
        status_code = int(status_parts[1])
    except ValueError as exc:
        raise RuntimeError(f"Unexpected GitHub response status line: {status_line!r}") from exc

    headers: dict[str, str] = {}
    body_start = len(lines)
    for index in range(status_line_index + 1, len(lines)):
        line = lines[index]
        if line == "":
            body_start = index + 1
            break
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        headers[key.strip().lower()] = value.strip()

    body = "\n".join(lines[body_start:])
    return status_code, headers, body


def _parse_label(item_obj: dict[str, object]) -> RepoLabel:
    return RepoLabel(
        name=_as_string(item_obj.get("name")),
        color=_as_string(item_obj.get("color")),
        description=_as_string(item_obj.get("description")),
    )


def _user_login(item_obj: dict[str, object]) -> str:
    user_obj = _as_object_dict(item_obj.get("user"))
    return _as_string(user_obj.get("login") if user_obj else None).strip()


def _preview_for_log(text: str, *, limit: int = 240) -> str:
    compact = text.replace("\n", "\\n").strip()
    if not compact:
        return "<empty>"
    if len(compact) <= limit:
        return compact
    return f"{compact[:limit]}..."


def _normalize_optional_lower_str(value: object) -> str | None:
    if value is None:
        return None
    normalized = _as_string(value).strip().lower()
    return normalized or None


def _as_object_dict(value: object) -> dict[str, object] | None:
    if not isinstance(value, dict):
        return None
    if not all(isinstance(key, str) for key in value.keys()):
        return None
    return cast(dict[str, object], value)


def _as_string(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


def _as_int(value: object, *, field: str) -> int:
    if isinstance(value, bool):
        raise RuntimeError(f"Unexpected GitHub response type for {field}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError as exc:
            raise RuntimeError(f"Unexpected GitHub response value for {field}: {value}") from exc
    raise RuntimeError(f"Unexpected GitHub response type for {field}")
