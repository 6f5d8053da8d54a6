from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
import logging
from pathlib import Path
import re

from ownergate.models import OwnerResolution
from ownergate.observability import log_event


LOGGER = logging.getLogger("ownergate.ownership")
MANIFEST_LOCATIONS: tuple[str, ...] = ("CODEOWNERS", ".github/CODEOWNERS", "docs/CODEOWNERS")
_INLINE_COMMENT = re.compile(r"\s#.*$")
_EMPTY_RESOLUTION = OwnerResolution(owners=frozenset(), labels=frozenset())


class ManifestNotFoundError(FileNotFoundError):
    pass


@dataclass(frozen=True)
class OwnershipRule:
    pattern: str
    principals: tuple[str, ...]
    labels: tuple[str, ...]
    line_number: int
    regex: re.Pattern[str] = field(repr=False, compare=False)

    @classmethod
    def build(
        cls,
        pattern: str,
        principals: tuple[str, ...] = (),
        labels: tuple[str, ...] = (),
        *,
        line_number: int = 0,
    ) -> OwnershipRule:
        return cls(
            pattern=pattern,
            principals=principals,
            labels=labels,
            line_number=line_number,
            regex=re.compile(_glob_to_regex(pattern)),
        )

    def matches(self, path: str) -> bool:
        return self.regex.match(_normalize_path(path)) is not None

    @property
    def resolution(self) -> OwnerResolution:
        return OwnerResolution(owners=frozenset(self.principals), labels=frozenset(self.labels))


@dataclass(frozen=True)
class OwnershipManifest:
    """Ordered CODEOWNERS rules; the last rule matching a path decides its owners."""

    rules: tuple[OwnershipRule, ...]
    source: Path | None = None

    @classmethod
    def parse(cls, text: str, *, source: Path | None = None) -> OwnershipManifest:
        rules: list[OwnershipRule] = []
        for line_number, raw_line in enumerate(text.splitlines(), 1):
            rule = _parse_line(raw_line, line_number)
            if rule is not None:
                rules.append(rule)
        return cls(rules=tuple(rules), source=source)

    def rule_for(self, path: str) -> OwnershipRule | None:
        selected: OwnershipRule | None = None
        for rule in self.rules:
            if rule.matches(path):
                selected = rule
        return selected

    def resolve_owners(self, path: str) -> OwnerResolution:
        rule = self.rule_for(path)
        if rule is None:
            return _EMPTY_RESOLUTION
        return rule.resolution

    def resolve_for_set(self, paths: Iterable[str]) -> OwnerResolution:
        owners: set[str] = set()
        labels: set[str] = set()
        for path in paths:
            resolution = self.resolve_owners(path)
            owners.update(resolution.owners)
            labels.update(resolution.labels)
        return OwnerResolution(owners=frozenset(owners), labels=frozenset(labels))

    def files_not_owned_by(self, principal: str, paths: Iterable[str]) -> tuple[str, ...]:
        return tuple(path for path in paths if principal not in self.resolve_owners(path).owners)


def find_manifest(cwd: Path) -> Path | None:
    directory = cwd.resolve()
    while True:
        for location in MANIFEST_LOCATIONS:
            candidate = directory / location
            if candidate.is_file():
                return candidate
        if directory.parent == directory:
            return None
        directory = directory.parent


def load_manifest(cwd: Path) -> OwnershipManifest:
    path = find_manifest(cwd)
    if path is None:
        raise ManifestNotFoundError(
            f"No CODEOWNERS file found in {cwd} or its parents "
            f"(looked for {', '.join(MANIFEST_LOCATIONS)})"
        )
    manifest = OwnershipManifest.parse(path.read_text(encoding="utf-8"), source=path)
    log_event(LOGGER, "manifest_loaded", path=str(path), rule_count=len(manifest.rules))
    return manifest


def _parse_line(raw_line: str, line_number: int) -> OwnershipRule | None:
    line = raw_line.strip()
    if not line or line.startswith("#"):
        return None
    line = _INLINE_COMMENT.sub("", line)
    tokens = line.split()
    pattern, entries = tokens[0], tokens[1:]
    principals: list[str] = []
    labels: list[str] = []
    for entry in entries:
        if entry.startswith("@") and len(entry) > 1:
            principals.append(entry)
        elif entry.startswith("[") and entry.endswith("]") and len(entry) > 2:
            labels.append(entry[1:-1])
    return OwnershipRule.build(
        pattern,
        tuple(principals),
        tuple(labels),
        line_number=line_number,
    )


def _normalize_path(path: str) -> str:
    return path.lstrip("/")


def _glob_to_regex(pattern: str) -> str:
    anchored = pattern.startswith("/")
    body = pattern.lstrip("/")
    directory_only = body.endswith("/")
    body = body.rstrip("/")
    if "/" in body:
        anchored = True
    # "docs/*" owns direct children only; any other pattern also owns what lies below a match.
    owns_descendants = not (body.endswith("*") and not body.endswith("**"))

    out: list[str] = []
    i = 0
    while i < len(body):
        char = body[i]
        if body.startswith("**", i):
            if body.startswith("**/", i):
                out.append("(?:.*/)?")
                i += 3
            else:
                out.append(".*")
                i += 2
            continue
        if char == "*":
            out.append("[^/]*")
        elif char == "?":
            out.append("[^/]")
        else:
            out.append(re.escape(char))
        i += 1

    prefix = "^" if anchored else "^(?:.*/)?"
    if directory_only:
        suffix = "/.*$"
    elif owns_descendants:
        suffix = "(?:/.*)?$"
    else:
        suffix = "$"
    return prefix + "".join(out) + suffix
