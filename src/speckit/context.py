"""Generated agent context documents (AGENTS.md and CLAUDE.md)."""

from pathlib import Path
from typing import Optional

from .agents import AGENT_CONFIG, agent_folder_name
from .sections import DocumentTemplate, create_or_update

AGENTS_FILE = "AGENTS.md"
CLAUDE_FILE = "CLAUDE.md"

AGENTS_TEMPLATE = DocumentTemplate(
    title="Agent Instructions",
    intro="This file contains instructions for AI agents working with the spec-kit project.",
)

CLAUDE_TEMPLATE = DocumentTemplate(
    title="Claude Instructions",
    intro="This file contains specific instructions for Claude Code.",
)

CLAUDE_POINTER = "you MUST follow the RULES in AGENTS.md"

SPECIFY_COMMANDS = [
    ("specify", "Create a feature specification from a natural language description"),
    ("plan", "Generate an implementation plan for the current feature"),
    ("tasks", "Break the plan into an ordered task list"),
]


def agents_section(agent: str, project_context: Optional[str] = None) -> str:
    """Section body for AGENTS.md, pointing at the agent's command files."""
    folder = agent_folder_name(agent)
    name = AGENT_CONFIG.get(agent, {}).get("name", agent)
    lines = [
        "",
        "## Spec-Driven Development",
        "",
        f"This project uses spec-kit with {name}. Command definitions live in `{folder}/commands/`.",
        "",
        "### Commands",
        "",
    ]
    for command, description in SPECIFY_COMMANDS:
        lines.append(f"- `/{command}`: {description}. Follow `{folder}/commands/{command}.md`.")
    lines += [
        "",
        "### Workflow",
        "",
        "1. Run `/specify` to write `specs/NNN-feature/spec.md` on a new feature branch.",
        "2. Run `/plan` to produce `plan.md` and its supporting documents.",
        "3. Run `/tasks` to produce `tasks.md`, then implement the tasks in order.",
        "",
    ]
    if project_context:
        lines += ["## Project Context", "", project_context.strip(), ""]
    return "\n".join(lines)


def write_agents_md(project_path: Path, agent: str, project_context: Optional[str] = None) -> tuple[Path, bool]:
    path = project_path / AGENTS_FILE
    created = create_or_update(path, agents_section(agent, project_context), AGENTS_TEMPLATE)
    return path, created


def write_claude_md(project_path: Path) -> tuple[Path, bool]:
    path = project_path / CLAUDE_FILE
    created = create_or_update(path, CLAUDE_POINTER, CLAUDE_TEMPLATE)
    return path, created


def write_agent_context(project_path: Path, agent: str) -> list[tuple[Path, bool]]:
    """Create or refresh the context documents for agent. Returns (path, created) pairs."""
    results = [write_agents_md(project_path, agent)]
    if agent == "claude":
        results.append(write_claude_md(project_path))
    return results
