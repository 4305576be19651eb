"""
Classify an extracted template tree and place it into a project.

Three archive shapes are understood:

* unified - top-level purpose directories (commands, templates, tools)
* mixed   - at least one agent hidden folder such as ``.claude``
* legacy  - anything else, copied through unchanged

A top-level ``memory`` directory always lands at the project root, rendered
with the same placeholders as the agent files.
"""

import os
from enum import Enum
from pathlib import Path

from .agents import agent_folder_name, known_agent_folders
from .filesystem import copy_file, create_directory, merge_directories
from .templating import render_tree, template_context

UNIFIED_DIRECTORIES = frozenset({"commands", "templates", "tools"})
MEMORY_DIRECTORY = "memory"


class TemplateLayout(str, Enum):
    UNIFIED = "unified"
    MIXED = "mixed"
    LEGACY = "legacy"


def _top_level(root: Path, ignore: frozenset[str]) -> list[Path]:
    return sorted(p for p in root.iterdir() if p.name not in ignore)


def classify_layout(root: Path, agent: str | None = None, ignore: frozenset[str] = frozenset()) -> TemplateLayout:
    """Decide which of the three archive shapes root uses."""
    agent_folders = known_agent_folders(agent)
    has_agent_folder = False
    has_unified = False
    for entry in _top_level(root, ignore):
        if not entry.is_dir():
            continue
        if entry.name in agent_folders:
            has_agent_folder = True
        elif entry.name in UNIFIED_DIRECTORIES:
            has_unified = True

    if has_agent_folder:
        return TemplateLayout.MIXED
    if has_unified:
        return TemplateLayout.UNIFIED
    return TemplateLayout.LEGACY


def place_template(
    source: Path,
    target: Path,
    agent: str,
    *,
    layout: TemplateLayout | None = None,
    ignore: frozenset[str] = frozenset(),
) -> TemplateLayout:
    """Copy an extracted template tree into target for the given agent.

    ``ignore`` lists top-level names in source that are never placed.
    Returns the layout that was applied.
    """
    if layout is None:
        layout = classify_layout(source, agent, ignore)

    create_directory(target)
    if layout is TemplateLayout.UNIFIED:
        _place_unified(source, target, agent, ignore)
    elif layout is TemplateLayout.MIXED:
        _place_mixed(source, target, agent, ignore)
    else:
        merge_directories(source, target, skip=ignore)
    return layout


def _place_unified(source: Path, target: Path, agent: str, ignore: frozenset[str]) -> None:
    agent_dir = target / agent_folder_name(agent)
    context = template_context(agent)
    for entry in _top_level(source, ignore):
        if not entry.is_dir():
            continue
        if entry.name == MEMORY_DIRECTORY:
            render_tree(entry, target / MEMORY_DIRECTORY, context)
        else:
            render_tree(entry, agent_dir / entry.name, context)


def _place_mixed(source: Path, target: Path, agent: str, ignore: frozenset[str]) -> None:
    own_folder = agent_folder_name(agent)
    other_folders = known_agent_folders() - {own_folder}
    agent_dir = target / own_folder
    context = template_context(agent)

    for entry in _top_level(source, ignore):
        if entry.is_dir() and entry.name == own_folder:
            render_tree(entry, agent_dir, context)
        elif entry.is_dir() and entry.name in UNIFIED_DIRECTORIES:
            render_tree(entry, agent_dir / entry.name, context)
        elif entry.is_dir() and entry.name == MEMORY_DIRECTORY:
            render_tree(entry, target / MEMORY_DIRECTORY, context)
        elif entry.is_dir() and entry.name in other_folders:
            # folders belonging to other agents are not placed
            continue
        elif entry.is_dir():
            merge_directories(entry, target / entry.name)
        else:
            copy_file(entry, target / entry.name)


def ensure_executable_scripts(project_path: Path, agent: str) -> tuple[int, list[str]]:
    """Ensure shebang scripts under the agent's tools/scripts folders are executable.

    Returns (updated_count, failures). No-op on Windows.
    """
    if os.name == "nt":
        return 0, []

    agent_dir = project_path / agent_folder_name(agent)
    failures: list[str] = []
    updated = 0
    for sub in ("tools", "scripts"):
        scripts_root = agent_dir / sub
        if not scripts_root.is_dir():
            continue
        for script in scripts_root.rglob("*"):
            if script.is_symlink() or not script.is_file():
                continue
            try:
                with script.open("rb") as f:
                    if f.read(2) != b"#!":
                        continue
                mode = script.stat().st_mode
                if mode & 0o111:
                    continue
                new_mode = mode | 0o100
                if mode & 0o040:
                    new_mode |= 0o010
                if mode & 0o004:
                    new_mode |= 0o001
                os.chmod(script, new_mode)
                updated += 1
            except OSError as e:
                failures.append(f"{script.relative_to(agent_dir)}: {e}")
    return updated, failures
