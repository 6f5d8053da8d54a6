from __future__ import annotations

import argparse
from collections.abc import Mapping
import logging
import os
from pathlib import Path
import sys

from ownergate.config import ActionConfig, load_config
from ownergate.engine import SUCCESS_OUTCOMES, MergeEngine
from ownergate.event import load_event
from ownergate.github_gateway import GitHubGateway
from ownergate.models import RunOutcome
from ownergate.observability import configure_logging, log_event
from ownergate.ownership import load_manifest


LOGGER = logging.getLogger("ownergate.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ownergate")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser(
        "run",
        help="Evaluate the pull request of the current GitHub Actions event and merge it if ready",
    )
    run_parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional TOML file with an [action] table; INPUT_* variables override it",
    )
    run_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose runtime logging to stderr",
    )

    owners_parser = subparsers.add_parser(
        "owners", help="Print the owners and labels CODEOWNERS assigns to paths"
    )
    owners_parser.add_argument("paths", nargs="+", help="Repository-relative paths")
    owners_parser.add_argument(
        "--cwd",
        type=Path,
        default=Path("."),
        help="Directory to start searching for CODEOWNERS from",
    )
    owners_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose runtime logging to stderr",
    )

    return parser


def main() -> None:
    args = build_parser().parse_args()
    configure_logging(bool(getattr(args, "verbose", False)))

    try:
        if args.command == "run":
            config = load_config(args.config, environ=os.environ)
            outcome = _cmd_run(config, environ=os.environ)
            raise SystemExit(exit_code_for(outcome))
        if args.command == "owners":
            _cmd_owners(args.cwd, tuple(args.paths))
            return
    except Exception as exc:  # noqa: BLE001
        LOGGER.error("event=run_failed error_type=%s", type(exc).__name__, exc_info=True)
        print(f"ownergate: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc

    raise RuntimeError(f"Unknown command: {args.command}")


def exit_code_for(outcome: RunOutcome) -> int:
    return 0 if outcome in SUCCESS_OUTCOMES else 1


def _cmd_run(config: ActionConfig, *, environ: Mapping[str, str]) -> RunOutcome:
    event = load_event(environ)
    manifest = load_manifest(config.cwd)
    github = GitHubGateway(event.repo_owner, event.repo_name)
    engine = MergeEngine(config, github=github, manifest=manifest)
    outcome = engine.run(event)
    if outcome not in SUCCESS_OUTCOMES:
        log_event(LOGGER, "pull_request_not_merged", pr_number=event.pr.number, outcome=outcome)
    return outcome


def _cmd_owners(cwd: Path, paths: tuple[str, ...]) -> None:
    manifest = load_manifest(cwd)
    print(f"CODEOWNERS: {manifest.source}")
    for path in paths:
        rule = manifest.rule_for(path)
        if rule is None:
            print(f"{path}: <no owners>")
            continue
        owners = " ".join(rule.principals) or "<no owners>"
        labels = " ".join(f"[{label}]" for label in rule.labels)
        line = f"{path}: {owners}"
        if labels:
            line = f"{line} {labels}"
        print(f"{line}  (line {rule.line_number}: {rule.pattern})")
