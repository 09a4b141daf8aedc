"""Shared fixtures: on-disk monorepos and a scriptable fake package manager."""

from __future__ import annotations

import json
import shlex
import sys
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path
from typing import Any

import pytest

FAKE_PACKAGE_MANAGER = '''
import json
import os
import sys
from pathlib import Path

args = sys.argv[1:]
cwd = Path.cwd()

log_path = os.environ.get("FAKE_PM_LOG")
if log_path:
    with open(log_path, "a", encoding="utf-8") as handle:
        handle.write(" ".join(args) + "\\n")

if args and args[0] == os.environ.get("FAKE_PM_FAIL"):
    sys.stderr.write(args[0] + " exploded\\n")
    sys.exit(7)

if args[:1] == ["install"]:
    manifest = json.loads((cwd / "package.json").read_text(encoding="utf-8"))
    for name, spec in manifest.get("dependencies", {}).items():
        target = cwd / "node_modules" / name
        target.mkdir(parents=True, exist_ok=True)
        (target / "package.json").write_text(
            json.dumps({"name": name, "version": spec}), encoding="utf-8"
        )
elif args[:1] == ["shrinkwrap"]:
    manifest = json.loads((cwd / "package.json").read_text(encoding="utf-8"))
    if os.environ.get("FAKE_PM_SKIP_LOCK") != "1":
        (cwd / "npm-shrinkwrap.json").write_text(
            json.dumps({"dependencies": manifest.get("dependencies", {})}, sort_keys=True) + "\\n",
            encoding="utf-8",
        )
    if os.environ.get("FAKE_PM_DROP_MARKER") == "1":
        (cwd / "node_modules" / ".monorail-install").unlink()
'''


def write_manifest(
    folder: Path,
    *,
    name: str,
    version: str = "1.0.0",
    dependencies: Mapping[str, str] | None = None,
    dev_dependencies: Mapping[str, str] | None = None,
    build: str | None = None,
) -> Path:
    folder.mkdir(parents=True, exist_ok=True)
    payload: dict[str, Any] = {"name": name, "version": version}
    if dependencies:
        payload["dependencies"] = dict(dependencies)
    if dev_dependencies:
        payload["devDependencies"] = dict(dev_dependencies)
    if build is not None:
        payload["scripts"] = {"build": build}
    path = folder / "package.json"
    path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
    return path


def _toml_string(value: str) -> str:
    return json.dumps(value)


def render_config(
    projects: Sequence[Mapping[str, Any]],
    *,
    package_manager: str | None = None,
    extra: str = "",
) -> str:
    lines: list[str] = []
    if package_manager is not None:
        lines += [
            "[package_manager]",
            f"command = {_toml_string(package_manager)}",
            "timeout_seconds = 60.0",
            "",
        ]
    if extra:
        lines += [extra.strip(), ""]
    for project in projects:
        lines += [
            "[[projects]]",
            f"name = {_toml_string(project['name'])}",
            f"folder = {_toml_string(project.get('folder', project['name'].split('/')[-1]))}",
        ]
        if "review_category" in project:
            lines.append(f"review_category = {_toml_string(project['review_category'])}")
        lines.append("")
    return "\n".join(lines)


MakeRepo = Callable[..., Path]


@pytest.fixture
def fake_package_manager(tmp_path: Path) -> str:
    """Shell-quoted command line for a Python script standing in for npm."""

    script = tmp_path / "fake_pm.py"
    script.write_text(FAKE_PACKAGE_MANAGER, encoding="utf-8")
    return f"{shlex.quote(sys.executable)} {shlex.quote(str(script))}"


@pytest.fixture
def make_repo(tmp_path: Path, fake_package_manager: str) -> MakeRepo:
    """Create ``tmp_path/repo`` with one folder per project; return the config path.

    Each project is a mapping with ``name`` and optional ``folder``, ``version``,
    ``dependencies``, ``dev_dependencies``, ``build``, and ``review_category``.
    """

    def factory(projects: Sequence[Mapping[str, Any]], *, extra: str = "") -> Path:
        root = tmp_path / "repo"
        root.mkdir(exist_ok=True)
        for project in projects:
            write_manifest(
                root / project.get("folder", project["name"].split("/")[-1]),
                name=project["name"],
                version=project.get("version", "1.0.0"),
                dependencies=project.get("dependencies"),
                dev_dependencies=project.get("dev_dependencies"),
                build=project.get("build"),
            )
        config_path = root / "monorail.toml"
        config_path.write_text(
            render_config(projects, package_manager=fake_package_manager, extra=extra),
            encoding="utf-8",
        )
        return config_path

    return factory
