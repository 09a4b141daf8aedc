from __future__ import annotations

from pathlib import Path

from monorail.build import BuildStateStore
from monorail.build.state import compute_input_fingerprint


def _fingerprint(folder: Path, **overrides: object) -> str:
    arguments: dict[str, object] = {
        "project": "app",
        "folder": folder,
        "command": "tsc",
        "upstream": {"lib": "abc"},
        "ignored_folders": ("node_modules", "dist"),
    }
    arguments.update(overrides)
    return compute_input_fingerprint(**arguments)  # type: ignore[arg-type]


def test_fingerprint_tracks_sources_command_and_upstream(tmp_path: Path) -> None:
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "index.ts").write_text("export {}\n", encoding="utf-8")
    baseline = _fingerprint(tmp_path)

    assert _fingerprint(tmp_path) == baseline
    assert _fingerprint(tmp_path, command="tsc -b") != baseline
    assert _fingerprint(tmp_path, upstream={"lib": "def"}) != baseline

    (tmp_path / "src" / "index.ts").write_text("export const x = 1\n", encoding="utf-8")
    assert _fingerprint(tmp_path) != baseline


def test_fingerprint_ignores_output_and_link_folders(tmp_path: Path) -> None:
    (tmp_path / "index.ts").write_text("export {}\n", encoding="utf-8")
    baseline = _fingerprint(tmp_path)

    (tmp_path / "dist").mkdir()
    (tmp_path / "dist" / "index.js").write_text("exports = {}\n", encoding="utf-8")
    (tmp_path / "node_modules").mkdir()
    (tmp_path / "node_modules" / ".monorail-link.json").write_text("{}\n", encoding="utf-8")

    assert _fingerprint(tmp_path) == baseline


def test_fingerprint_of_missing_folder_is_stable(tmp_path: Path) -> None:
    assert _fingerprint(tmp_path / "absent") == _fingerprint(tmp_path / "absent")


def test_state_store_records_and_forgets(tmp_path: Path) -> None:
    store = BuildStateStore(tmp_path / "build-state")

    assert store.last_success("@scope/app") is None
    store.record_success("@scope/app", "f1")
    assert store.last_success("@scope/app") == "f1"
    assert (tmp_path / "build-state" / "@scope__app.json").is_file()

    store.forget("@scope/app")
    store.forget("@scope/app")
    assert store.last_success("@scope/app") is None


def test_state_store_ignores_unreadable_or_foreign_records(tmp_path: Path) -> None:
    store = BuildStateStore(tmp_path)
    (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")
    (tmp_path / "old.json").write_text('{"schema_version": 0, "fingerprint": "x"}', encoding="utf-8")

    assert store.last_success("broken") is None
    assert store.last_success("old") is None
