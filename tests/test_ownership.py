from __future__ import annotations

from pathlib import Path

from hypothesis import given
from hypothesis import strategies as st
import pytest

from ownergate.ownership import (
    ManifestNotFoundError,
    OwnershipManifest,
    OwnershipRule,
    _glob_to_regex,
    find_manifest,
    load_manifest,
)


MANIFEST_TEXT = """\
# Default owners
*                     @root-owner

# Docs are owned by the writers
docs/                 @writer [documentation]
*.md                  @writer @editor   # trailing comment
/src/api/             @api-team [api] [backend]
src/**/generated/**   @bot
scripts/*             @ops
/build/logs/          @ops
.github/workflows/    @org/infra
vendor/                                 # explicitly unowned
"""


@pytest.fixture
def manifest() -> OwnershipManifest:
    return OwnershipManifest.parse(MANIFEST_TEXT)


def test_parse_skips_comments_and_reads_tokens(manifest: OwnershipManifest) -> None:
    assert [rule.pattern for rule in manifest.rules] == [
        "*",
        "docs/",
        "*.md",
        "/src/api/",
        "src/**/generated/**",
        "scripts/*",
        "/build/logs/",
        ".github/workflows/",
        "vendor/",
    ]
    md_rule = manifest.rules[2]
    assert md_rule.principals == ("@writer", "@editor")
    assert md_rule.labels == ()
    assert md_rule.line_number == 6
    api_rule = manifest.rules[3]
    assert api_rule.principals == ("@api-team",)
    assert api_rule.labels == ("api", "backend")
    assert manifest.rules[-1].principals == ()


def test_parse_ignores_unknown_tokens() -> None:
    manifest = OwnershipManifest.parse("src/ @alice user@example.com [] @ [infra]\n")
    rule = manifest.rules[0]
    assert rule.principals == ("@alice",)
    assert rule.labels == ("infra",)


@pytest.mark.parametrize(
    ("path", "owners", "labels"),
    [
        ("setup.py", {"@root-owner"}, set()),
        ("docs/index.rst", {"@writer"}, {"documentation"}),
        ("docs/guide/intro.rst", {"@writer"}, {"documentation"}),
        ("README.md", {"@writer", "@editor"}, set()),
        ("docs/README.md", {"@writer", "@editor"}, set()),
        ("src/api/handlers.py", {"@api-team"}, {"api", "backend"}),
        ("lib/src/api/handlers.py", {"@root-owner"}, set()),
        ("src/core/generated/models.py", {"@bot"}, set()),
        ("src/generated/models.py", {"@bot"}, set()),
        ("scripts/deploy.sh", {"@ops"}, set()),
        ("scripts/nested/deploy.sh", {"@root-owner"}, set()),
        ("build/logs/out.txt", {"@ops"}, set()),
        (".github/workflows/ci.yml", {"@org/infra"}, set()),
        ("vendor/lib.py", set(), set()),
        ("/src/api/handlers.py", {"@api-team"}, {"api", "backend"}),
    ],
)
def test_resolve_owners_last_match_wins(
    manifest: OwnershipManifest, path: str, owners: set[str], labels: set[str]
) -> None:
    resolution = manifest.resolve_owners(path)
    assert resolution.owners == frozenset(owners)
    assert resolution.labels == frozenset(labels)


def test_rule_for_returns_none_without_match() -> None:
    manifest = OwnershipManifest.parse("docs/ @writer\n")
    assert manifest.rule_for("src/app.py") is None
    resolution = manifest.resolve_owners("src/app.py")
    assert resolution.owners == frozenset()
    assert resolution.labels == frozenset()


def test_directory_pattern_does_not_match_file_with_same_name() -> None:
    manifest = OwnershipManifest.parse("docs/ @writer\n")
    assert manifest.rule_for("docs") is None
    assert manifest.rule_for("docs/a.md") is not None


def test_plain_name_matches_file_or_directory_anywhere() -> None:
    rule = OwnershipRule.build("Makefile", ("@build",))
    assert rule.matches("Makefile")
    assert rule.matches("sub/Makefile")
    assert rule.matches("Makefile/inner.mk")
    assert not rule.matches("Makefile.bak")


def test_question_mark_matches_single_non_slash_char() -> None:
    rule = OwnershipRule.build("file?.txt")
    assert rule.matches("file1.txt")
    assert not rule.matches("file12.txt")
    assert not rule.matches("file/.txt")


def test_glob_to_regex_escapes_literals() -> None:
    assert _glob_to_regex("a.b") == r"^(?:.*/)?a\.b(?:/.*)?$"
    assert _glob_to_regex("/docs/*") == r"^docs/[^/]*$"
    assert _glob_to_regex("logs/") == r"^(?:.*/)?logs/.*$"


def test_resolve_for_set_unions_owners_and_labels(manifest: OwnershipManifest) -> None:
    resolution = manifest.resolve_for_set(
        ["docs/index.rst", "src/api/x.py", "vendor/lib.py", "setup.py"]
    )
    assert resolution.owners == frozenset({"@writer", "@api-team", "@root-owner"})
    assert resolution.labels == frozenset({"documentation", "api", "backend"})


def test_resolve_for_empty_set(manifest: OwnershipManifest) -> None:
    resolution = manifest.resolve_for_set([])
    assert resolution.owners == frozenset()
    assert resolution.labels == frozenset()


def test_files_not_owned_by(manifest: OwnershipManifest) -> None:
    files = ("docs/a.rst", "README.md", "setup.py", "vendor/x.py")
    assert manifest.files_not_owned_by("@writer", files) == ("setup.py", "vendor/x.py")
    assert manifest.files_not_owned_by("@nobody", ()) == ()


@given(
    st.lists(
        st.sampled_from(["@a", "@b", "@c", "@d"]),
        min_size=1,
        max_size=4,
        unique=True,
    ),
    st.lists(st.sampled_from(["@a", "@b", "@c", "@d"]), min_size=1, max_size=4, unique=True),
)
def test_later_rule_overrides_earlier_for_same_pattern(
    first: list[str], second: list[str]
) -> None:
    text = f"src/ {' '.join(first)}\nsrc/ {' '.join(second)}\n"
    manifest = OwnershipManifest.parse(text)
    assert manifest.resolve_owners("src/main.py").owners == frozenset(second)


@given(st.permutations(["*.py @py", "src/ @src", "src/app/ @app"]))
def test_last_matching_line_decides(lines: list[str]) -> None:
    manifest = OwnershipManifest.parse("\n".join(lines))
    expected = lines[-1].split()[1]
    assert manifest.resolve_owners("src/app/main.py").owners == frozenset({expected})


def test_find_manifest_prefers_root_then_github_then_docs(tmp_path: Path) -> None:
    (tmp_path / "docs").mkdir()
    (tmp_path / "docs" / "CODEOWNERS").write_text("* @docs\n", encoding="utf-8")
    assert find_manifest(tmp_path) == (tmp_path / "docs" / "CODEOWNERS").resolve()

    (tmp_path / ".github").mkdir()
    (tmp_path / ".github" / "CODEOWNERS").write_text("* @gh\n", encoding="utf-8")
    assert find_manifest(tmp_path) == (tmp_path / ".github" / "CODEOWNERS").resolve()

    (tmp_path / "CODEOWNERS").write_text("* @root\n", encoding="utf-8")
    assert find_manifest(tmp_path) == (tmp_path / "CODEOWNERS").resolve()


def test_find_manifest_walks_up_parent_directories(tmp_path: Path) -> None:
    (tmp_path / "CODEOWNERS").write_text("* @root\n", encoding="utf-8")
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    assert find_manifest(nested) == (tmp_path / "CODEOWNERS").resolve()


def test_load_manifest_reads_file(tmp_path: Path) -> None:
    (tmp_path / ".github").mkdir()
    path = tmp_path / ".github" / "CODEOWNERS"
    path.write_text("* @root\n", encoding="utf-8")
    manifest = load_manifest(tmp_path)
    assert manifest.source == path.resolve()
    assert manifest.resolve_owners("x").owners == frozenset({"@root"})


def test_load_manifest_raises_when_missing(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr("ownergate.ownership.find_manifest", lambda cwd: None)
    with pytest.raises(ManifestNotFoundError, match="No CODEOWNERS file found"):
        load_manifest(tmp_path)
