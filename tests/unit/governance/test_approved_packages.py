"""Unit tests for the approved packages reducer, renderer, and persistence."""

from __future__ import annotations

from pathlib import Path

import pytest
from hypothesis import given
from hypothesis import strategies as st

from monorail.errors import ConfigError
from monorail.governance import (
    ApprovedPackageEntry,
    apply_approved_packages,
    find_inconsistent_versions,
    load_approved_packages,
    observe_usage,
    reduce_approved_packages,
    render_approved_packages,
)
from monorail.graph import build_graph
from monorail.registry import Project, ProjectRegistry


def _registry() -> ProjectRegistry:
    root = Path("/repo")
    return ProjectRegistry(
        repo_root=root,
        projects=(
            Project(
                name="web",
                version="1.0.0",
                folder=root / "web",
                dependencies=(("react", "^18.0.0"), ("@internal/tooling", "^1.0.0")),
            ),
            Project(
                name="scripts",
                version="1.0.0",
                folder=root / "scripts",
                dependencies=(("react", "^18.2.0"), ("web", "^1.0.0"), ("eslint", "^8.0.0")),
                review_category="tools",
            ),
        ),
    )


def test_observe_usage_collects_categories_and_skips_internal_and_ignored() -> None:
    registry = _registry()

    observed = observe_usage(registry, build_graph(registry), ignored_scopes=["@internal"])

    assert observed == {
        "eslint": frozenset({"tools"}),
        "react": frozenset({"production", "tools"}),
    }


def test_reducer_only_adds_and_reports_changes() -> None:
    existing = (
        ApprovedPackageEntry("react", ("production",)),
        ApprovedPackageEntry("retired", ("tools",)),
    )
    observed = {"react": frozenset({"production", "tools"}), "eslint": frozenset({"tools"})}

    entries, changes = reduce_approved_packages(existing, observed)

    assert entries == (
        ApprovedPackageEntry("eslint", ("tools",)),
        ApprovedPackageEntry("react", ("production", "tools")),
        ApprovedPackageEntry("retired", ("tools",)),
    )
    assert [(c.name, c.added_categories, c.is_new) for c in changes] == [
        ("eslint", ("tools",), True),
        ("react", ("tools",), False),
    ]


def test_reducer_folds_duplicate_existing_entries() -> None:
    existing = (
        ApprovedPackageEntry("react", ("tools",)),
        ApprovedPackageEntry("react", ("production",)),
    )

    entries, changes = reduce_approved_packages(existing, {})

    assert entries == (ApprovedPackageEntry("react", ("production", "tools")),)
    assert changes == ()


def test_render_is_canonical_yaml() -> None:
    rendered = render_approved_packages(
        (ApprovedPackageEntry("left-pad", ("production",)),)
    )

    assert rendered == "packages:\n- name: left-pad\n  allowedCategories:\n  - production\n"


def test_apply_writes_once_then_leaves_file_byte_identical(tmp_path: Path) -> None:
    path = tmp_path / "common" / "config" / "approved-packages.yaml"
    observed = {"react": frozenset({"production"})}

    first = apply_approved_packages(path, observed)
    content = path.read_bytes()
    mtime = path.stat().st_mtime_ns
    second = apply_approved_packages(path, observed)

    assert first.written and first.changed and not first.up_to_date
    assert not second.written and not second.changed and second.up_to_date
    assert path.read_bytes() == content
    assert path.stat().st_mtime_ns == mtime


def test_check_only_never_writes(tmp_path: Path) -> None:
    path = tmp_path / "approved-packages.yaml"

    result = apply_approved_packages(path, {"react": frozenset({"production"})}, check_only=True)

    assert not path.exists()
    assert not result.written
    assert not result.up_to_date
    assert [change.name for change in result.changes] == ["react"]


def test_load_round_trips_rendered_entries(tmp_path: Path) -> None:
    path = tmp_path / "approved-packages.yaml"
    entries = (
        ApprovedPackageEntry("a", ("production",)),
        ApprovedPackageEntry("@scope/b", ("production", "tools")),
    )
    path.write_text(render_approved_packages(entries), encoding="utf-8")

    assert load_approved_packages(path) == entries


def test_missing_and_empty_files_load_as_empty(tmp_path: Path) -> None:
    empty = tmp_path / "empty.yaml"
    empty.write_text("", encoding="utf-8")

    assert load_approved_packages(tmp_path / "missing.yaml") == ()
    assert load_approved_packages(empty) == ()


@pytest.mark.parametrize(
    "content",
    [
        "packages: [\n",
        "- just\n- a list\n",
        "packages:\n- 3\n",
        "packages:\n- name: ''\n",
        "packages:\n- name: a\n  allowedCategories: tools\n",
    ],
)
def test_malformed_files_are_config_errors(tmp_path: Path, content: str) -> None:
    path = tmp_path / "approved-packages.yaml"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(ConfigError):
        load_approved_packages(path)


def test_inconsistent_versions_report_every_declaration() -> None:
    registry = _registry()

    inconsistent = find_inconsistent_versions(build_graph(registry))

    assert [item.name for item in inconsistent] == ["react"]
    assert inconsistent[0].ranges == ("^18.0.0", "^18.2.0")
    assert [(r.project, r.range) for r in inconsistent[0].requests] == [
        ("scripts", "^18.2.0"),
        ("web", "^18.0.0"),
    ]


_PACKAGE_NAMES = st.sampled_from(["react", "eslint", "left-pad", "@types/node", "@acme/ui"])
_CATEGORIES = st.frozensets(st.sampled_from(["production", "tools", "prototypes"]), max_size=3)


@given(
    existing=st.lists(
        st.builds(
            ApprovedPackageEntry,
            name=_PACKAGE_NAMES,
            allowed_categories=_CATEGORIES.map(lambda items: tuple(sorted(items))),
        ),
        max_size=6,
    ),
    observed=st.dictionaries(_PACKAGE_NAMES, _CATEGORIES, max_size=5),
)
def test_reducing_twice_with_the_same_usage_changes_nothing(
    existing: list[ApprovedPackageEntry], observed: dict[str, frozenset[str]]
) -> None:
    once, _ = reduce_approved_packages(existing, observed)
    twice, changes = reduce_approved_packages(once, observed)

    assert changes == ()
    assert twice == once
    assert render_approved_packages(twice) == render_approved_packages(once)
    assert [entry.name for entry in once] == sorted({entry.name for entry in once})
    for entry in existing:
        kept = next(item for item in once if item.name == entry.name)
        assert set(entry.allowed_categories) <= set(kept.allowed_categories)
