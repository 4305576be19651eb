"""Supported AI assistants and where their files live."""

from pathlib import Path

# Agent configuration with display name, install URL, CLI requirement and context file
AGENT_CONFIG = {
    "claude": {
        "name": "Claude Code",
        "install_url": "https://docs.anthropic.com/en/docs/claude-code/setup",
        "requires_cli": True,
        "context_file": "CLAUDE.md",
    },
    "gemini": {
        "name": "Gemini CLI",
        "install_url": "https://github.com/google-gemini/gemini-cli",
        "requires_cli": True,
        "context_file": "GEMINI.md",
    },
    "copilot": {
        "name": "GitHub Copilot",
        "install_url": None,  # IDE-based, no CLI check needed
        "requires_cli": False,
        "context_file": ".github/copilot-instructions.md",
    },
    "codex": {
        "name": "OpenAI Codex",
        "install_url": "https://github.com/openai/codex",
        "requires_cli": True,
        "context_file": "AGENTS.md",
    },
}

CLAUDE_LOCAL_PATH = Path.home() / ".claude" / "local" / "claude"


def agent_folder_name(agent: str) -> str:
    """Hidden per-agent folder name inside a project, e.g. '.claude'."""
    return f".{agent}"


def known_agent_folders(extra: str | None = None) -> set[str]:
    folders = {agent_folder_name(key) for key in AGENT_CONFIG}
    if extra:
        folders.add(agent_folder_name(extra))
    return folders


def detect_agent(project_path: Path) -> str | None:
    """Return the first agent whose hidden folder exists in project_path."""
    for key in AGENT_CONFIG:
        if (project_path / agent_folder_name(key)).is_dir():
            return key
    return None
