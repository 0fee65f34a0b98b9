#!/usr/bin/env python3
"""Check that pyproject.toml and the click CLI agree with each other.

Reads the console script entry, the project name used for ``--version`` and
the set of registered subcommands straight from the source, so it runs
without installing the package.
"""

from __future__ import annotations

import ast
import sys
import tomllib
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
PYPROJECT_PATH = REPO_ROOT / "pyproject.toml"
CLI_MODULE = "scenario_harness.cli"
CLI_PATH = REPO_ROOT / "src" / Path(*CLI_MODULE.split(".")).with_suffix(".py")
EXPECTED_COMMANDS = {"run", "analyze", "extract", "verify", "history", "export", "import", "loop"}


def _load_project() -> dict:
    data = tomllib.loads(PYPROJECT_PATH.read_text(encoding="utf-8"))
    project = data.get("project", {})
    if not project.get("name") or not project.get("version"):
        raise ValueError(f"Missing [project] name or version in {PYPROJECT_PATH}")
    return project


def _check_entry_point(project: dict) -> str:
    """The console script must point at the click group in the CLI module."""
    scripts = project.get("scripts", {})
    target = scripts.get(project["name"])
    if target != f"{CLI_MODULE}:main":
        raise ValueError(
            f"[project.scripts] {project['name']!r} must be '{CLI_MODULE}:main', got {target!r}"
        )
    return target.split(":", 1)[1]


def _decorator_call(decorators: list[ast.expr], attr: str) -> ast.Call | None:
    for deco in decorators:
        if (
            isinstance(deco, ast.Call)
            and isinstance(deco.func, ast.Attribute)
            and deco.func.attr == attr
        ):
            return deco
    return None


def _keyword(call: ast.Call, name: str) -> ast.expr | None:
    return next((kw.value for kw in call.keywords if kw.arg == name), None)


def _check_version_option(group: ast.FunctionDef, package_name: str) -> None:
    option = _decorator_call(group.decorator_list, "version_option")
    if option is None:
        raise ValueError(f"{group.name}() is missing click.version_option in {CLI_PATH}")
    if _keyword(option, "version") is not None:
        raise ValueError("click.version_option must read the version from package metadata")
    value = _keyword(option, "package_name")
    if not isinstance(value, ast.Constant) or value.value != package_name:
        raise ValueError(f"click.version_option package_name must be {package_name!r}")


def _registered_commands(module: ast.Module, group_name: str) -> set[str]:
    """Subcommand names registered with ``@<group>.command(...)``."""
    names: set[str] = set()
    for node in module.body:
        if not isinstance(node, ast.FunctionDef):
            continue
        call = _decorator_call(node.decorator_list, "command")
        if call is None or not isinstance(call.func.value, ast.Name):
            continue
        if call.func.value.id != group_name:
            continue
        explicit = _keyword(call, "name")
        if isinstance(explicit, ast.Constant):
            names.add(explicit.value)
        else:
            names.add(node.name.replace("_", "-"))
    return names


def main() -> int:
    project = _load_project()
    group_name = _check_entry_point(project)

    module = ast.parse(CLI_PATH.read_text(encoding="utf-8"), filename=str(CLI_PATH))
    group = next(
        (n for n in module.body if isinstance(n, ast.FunctionDef) and n.name == group_name),
        None,
    )
    if group is None:
        raise ValueError(f"Could not locate {group_name}() in {CLI_PATH}")
    _check_version_option(group, project["name"])

    missing = EXPECTED_COMMANDS - _registered_commands(module, group_name)
    if missing:
        raise ValueError(f"CLI is missing subcommands: {', '.join(sorted(missing))}")

    print(f"CLI wiring check passed ({project['name']} {project['version']})")
    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except ValueError as exc:
        print(f"CLI wiring check failed: {exc}", file=sys.stderr)
        raise SystemExit(1) from None
