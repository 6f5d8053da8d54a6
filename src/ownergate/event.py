from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
import json
from pathlib import Path
from typing import cast

from ownergate.models import EventKind, PullRequestRef


_SUPPORTED_EVENTS: tuple[EventKind, ...] = (
    "pull_request_target",
    "pull_request",
    "issue_comment",
    "pull_request_review",
)
_OPEN_EVENTS: frozenset[str] = frozenset({"pull_request_target", "pull_request"})


class EventPayloadError(ValueError):
    pass


@dataclass(frozen=True)
class ActionEvent:
    kind: EventKind
    repo_owner: str
    repo_name: str
    pr: PullRequestRef
    sender_login: str
    body: str | None
    review_state: str | None

    @property
    def is_pull_request_opened(self) -> bool:
        return self.kind in _OPEN_EVENTS

    @property
    def is_approved_review(self) -> bool:
        return self.review_state == "approved"

    def command_body(self) -> str:
        if self.body is not None:
            return self.body
        # Approving reviews are allowed to carry no text at all.
        if self.is_approved_review:
            return ""
        raise EventPayloadError(
            f"No comment or review body found in {self.kind} payload for PR #{self.pr.number}"
        )


def load_event(environ: Mapping[str, str]) -> ActionEvent:
    event_name = environ.get("GITHUB_EVENT_NAME", "").strip()
    if not event_name:
        raise EventPayloadError("GITHUB_EVENT_NAME is not set")
    event_path = environ.get("GITHUB_EVENT_PATH", "").strip()
    if not event_path:
        raise EventPayloadError("GITHUB_EVENT_PATH is not set")
    repository = environ.get("GITHUB_REPOSITORY", "").strip()
    if not repository:
        raise EventPayloadError("GITHUB_REPOSITORY is not set")

    try:
        payload = json.loads(Path(event_path).read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise EventPayloadError(f"Event payload file not found: {event_path}") from exc
    except json.JSONDecodeError as exc:
        raise EventPayloadError(f"Event payload is not valid JSON: {exc}") from exc
    return parse_event(event_name, payload, repository=repository)


def parse_event(event_name: str, payload: object, *, repository: str) -> ActionEvent:
    if event_name not in _SUPPORTED_EVENTS:
        raise EventPayloadError(
            f"Unsupported event {event_name!r}; expected one of: {', '.join(_SUPPORTED_EVENTS)}"
        )
    payload_obj = _as_object_dict(payload)
    if payload_obj is None:
        raise EventPayloadError("Event payload must be a JSON object")
    owner, sep, name = repository.partition("/")
    if not sep or not owner or not name:
        raise EventPayloadError(f"GITHUB_REPOSITORY must look like owner/name, got {repository!r}")

    pr_obj = _as_object_dict(payload_obj.get("pull_request"))
    if pr_obj is None:
        issue_obj = _as_object_dict(payload_obj.get("issue"))
        if issue_obj is None:
            raise EventPayloadError(f"{event_name} payload has neither pull_request nor issue")
        if "pull_request" not in issue_obj:
            raise EventPayloadError(
                f"Issue #{issue_obj.get('number')} is not a pull request; nothing to merge"
            )
        pr_obj = issue_obj

    body: str | None = None
    review_state: str | None = None
    comment_obj = _as_object_dict(payload_obj.get("comment"))
    review_obj = _as_object_dict(payload_obj.get("review"))
    if comment_obj is not None:
        body = _as_optional_str(comment_obj.get("body"))
    elif review_obj is not None:
        body = _as_optional_str(review_obj.get("body"))
        state = _as_optional_str(review_obj.get("state"))
        review_state = state.strip().lower() if state else None

    return ActionEvent(
        kind=cast(EventKind, event_name),
        repo_owner=owner,
        repo_name=name,
        pr=_parse_pull_request(pr_obj),
        sender_login=_login_of(payload_obj.get("sender")),
        body=body,
        review_state=review_state,
    )


def _parse_pull_request(pr_obj: dict[str, object]) -> PullRequestRef:
    number = pr_obj.get("number")
    if isinstance(number, bool) or not isinstance(number, int):
        raise EventPayloadError("Pull request payload is missing an integer number")
    author = _login_of(pr_obj.get("user"))
    if not author:
        raise EventPayloadError(f"Pull request #{number} payload is missing user.login")
    base_obj = _as_object_dict(pr_obj.get("base"))
    base_ref = _as_optional_str(base_obj.get("ref")) if base_obj is not None else None
    return PullRequestRef(
        number=number,
        author_login=author,
        base_ref=base_ref or "",
        html_url=_as_optional_str(pr_obj.get("html_url")) or "",
    )


def _login_of(value: object) -> str:
    user_obj = _as_object_dict(value)
    if user_obj is None:
        return ""
    login = user_obj.get("login")
    if not isinstance(login, str):
        return ""
    return login.strip()


def _as_object_dict(value: object) -> dict[str, object] | None:
    if not isinstance(value, dict):
        return None
    if not all(isinstance(key, str) for key in value.keys()):
        return None
    return cast(dict[str, object], value)


def _as_optional_str(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return str(value)
