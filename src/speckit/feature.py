"""
Feature workflow: numbered feature branches and their ``specs/NNN-name``
directories, plan setup, prerequisite checks and agent context refresh.
"""

import re
from dataclasses import asdict, dataclass, field
from datetime import date
from pathlib import Path
from typing import Callable, List, Optional, Protocol

from .agents import AGENT_CONFIG, agent_folder_name, detect_agent
from .context import write_agents_md
from .errors import FeatureError, ProjectAccessDeniedError, ProjectPathError
from .filesystem import copy_file, create_directory, write_file_atomic

FEATURE_BRANCH_RE = re.compile(r"^\d{3}-")
FEATURE_DIR_RE = re.compile(r"^(\d{3})")

LANGUAGE_RE = re.compile(r"\*\*Language/Version\*\*: (.+)")
DEPENDENCIES_RE = re.compile(r"\*\*Primary Dependencies\*\*: (.+)")
TESTING_RE = re.compile(r"\*\*Testing\*\*: (.+)")
STORAGE_RE = re.compile(r"\*\*Storage\*\*: (.+)")
PROJECT_TYPE_RE = re.compile(r"\*\*Project Type\*\*: (.+)")
ACTIVE_TECH_RE = re.compile(r"(## Active Technologies\n)(.*?)(\n\n|\n?\Z)", re.S)
RECENT_CHANGES_RE = re.compile(r"(## Recent Changes\n)(.*?)(\n\n|\n?\Z)", re.S)
LAST_UPDATED_RE = re.compile(r"Last updated: \d{4}-\d{2}-\d{2}")

NEEDS_CLARIFICATION = "NEEDS CLARIFICATION"
MAX_RECENT_CHANGES = 3

LANGUAGE_COMMANDS = {
    "Python": "cd src && pytest && ruff check .",
    "Rust": "cargo test && cargo clippy",
    "JavaScript": "npm test && npm run lint",
    "TypeScript": "npm test && npm run lint",
    "Go": "go test ./... && golangci-lint run",
}

SPEC_STUB = "# Feature Specification\n\nTODO: Add feature specification\n"

BASIC_AGENT_TEMPLATE = """# [PROJECT NAME]

Last updated: [DATE]

## Active Technologies
[EXTRACTED FROM ALL PLAN.MD FILES]

## Project Structure
```
[ACTUAL STRUCTURE FROM PLANS]
```

## Commands
```bash
[ONLY COMMANDS FOR ACTIVE TECHNOLOGIES]
```

## Code Style
[LANGUAGE-SPECIFIC, ONLY FOR LANGUAGES IN USE]

## Recent Changes
[LAST 3 FEATURES AND WHAT THEY ADDED]
"""

OPTIONAL_DOCS = ["research.md", "data-model.md", "quickstart.md"]


class Repository(Protocol):
    def root(self) -> Path: ...
    def current_branch(self) -> str: ...
    def create_branch(self, name: str) -> None: ...


@dataclass
class TechInfo:
    language: str = ""
    framework: str = ""
    testing: str = ""
    database: str = ""
    project_type: str = ""

    @property
    def stack(self) -> str:
        return " + ".join(part for part in (self.language, self.framework) if part)


@dataclass
class FeatureCreateResult:
    branch_name: str
    spec_file: str
    feature_num: str


@dataclass
class FeaturePlanResult:
    feature_spec: str
    impl_plan: str
    specs_dir: str
    branch: str
    template_used: bool = False


@dataclass
class FeatureCheckResult:
    feature_dir: str
    available_docs: List[str] = field(default_factory=list)


@dataclass
class ContextUpdate:
    agent: str
    file: str
    created: bool


@dataclass
class FeatureContextResult:
    branch: str
    updates: List[ContextUpdate] = field(default_factory=list)
    summary: List[str] = field(default_factory=list)


@dataclass
class FeaturePathsResult:
    repo_root: str
    branch: str
    feature_dir: str
    feature_spec: str
    impl_plan: str
    tasks: str


def to_dict(result) -> dict:
    return asdict(result)


def is_feature_branch(branch: str) -> bool:
    return bool(FEATURE_BRANCH_RE.match(branch))


def branch_name_for(description: str, feature_num: str) -> str:
    """'001' + 'Add User Auth system!' -> '001-add-user-auth'."""
    name = re.sub(r"[^a-z0-9]+", "-", description.lower()).strip("-")
    words = [w for w in name.split("-") if w][:3]
    return f"{feature_num}-{'-'.join(words)}"


def highest_feature_number(specs_dir: Path) -> int:
    highest = 0
    if not specs_dir.is_dir():
        return highest
    for entry in specs_dir.iterdir():
        match = FEATURE_DIR_RE.match(entry.name)
        if entry.is_dir() and match:
            highest = max(highest, int(match.group(1)))
    return highest


def _clean(value: str, *skip_markers: str) -> str:
    value = value.strip()
    if any(marker in value for marker in skip_markers):
        return ""
    return value


def extract_tech_info(plan: str) -> TechInfo:
    """Pull technology fields out of a plan's Technical Context block."""
    info = TechInfo()
    if m := LANGUAGE_RE.search(plan):
        info.language = _clean(m.group(1), NEEDS_CLARIFICATION)
    if m := DEPENDENCIES_RE.search(plan):
        info.framework = _clean(m.group(1), NEEDS_CLARIFICATION)
    if m := TESTING_RE.search(plan):
        info.testing = _clean(m.group(1), NEEDS_CLARIFICATION)
    if m := STORAGE_RE.search(plan):
        info.database = _clean(m.group(1), NEEDS_CLARIFICATION, "N/A")
    if m := PROJECT_TYPE_RE.search(plan):
        info.project_type = m.group(1).strip()
    return info


def commands_for_language(language: str) -> str:
    for lang, commands in LANGUAGE_COMMANDS.items():
        if lang in language:
            return commands
    return f"# Add commands for {language}"


def render_agent_file(template: str, project_name: str, tech: TechInfo, branch: str, today: date) -> str:
    """Fill the agent-file template placeholders."""
    content = template.replace("[PROJECT NAME]", project_name)
    content = content.replace("[DATE]", today.isoformat())

    if tech.language and tech.framework:
        content = content.replace("[EXTRACTED FROM ALL PLAN.MD FILES]", f"- {tech.stack} ({branch})")
        content = content.replace("[LAST 3 FEATURES AND WHAT THEY ADDED]", f"- {branch}: Added {tech.stack}")

    if "web" in tech.project_type:
        content = content.replace("[ACTUAL STRUCTURE FROM PLANS]", "backend/\nfrontend/\ntests/")
    else:
        content = content.replace("[ACTUAL STRUCTURE FROM PLANS]", "src/\ntests/")

    content = content.replace("[ONLY COMMANDS FOR ACTIVE TECHNOLOGIES]", commands_for_language(tech.language))
    if tech.language:
        content = content.replace(
            "[LANGUAGE-SPECIFIC, ONLY FOR LANGUAGES IN USE]",
            f"{tech.language}: Follow standard conventions",
        )
    return content


def update_agent_file_content(content: str, tech: TechInfo, branch: str, today: date) -> str:
    """Add the feature's stack to Active Technologies and Recent Changes, bump the date."""
    if tech.language:
        new_tech = f"- {tech.stack} ({branch})"
        new_change = f"- {branch}: Added {tech.stack}"

        if "## Active Technologies" in content:
            if new_tech not in content:
                content = ACTIVE_TECH_RE.sub(
                    lambda m: m.group(1) + (m.group(2) + "\n" if m.group(2) else "") + new_tech + (m.group(3) or "\n"),
                    content,
                    count=1,
                )
        else:
            if not content.endswith("\n"):
                content += "\n"
            content += f"\n## Active Technologies\n{new_tech}\n"

        if "## Recent Changes" in content:
            def _recent(m: re.Match) -> str:
                changes = [line for line in m.group(2).strip().split("\n") if line.strip() and line != new_change]
                changes = [new_change] + changes
                return m.group(1) + "\n".join(changes[:MAX_RECENT_CHANGES]) + (m.group(3) or "\n")
            content = RECENT_CHANGES_RE.sub(_recent, content, count=1)
        else:
            if not content.endswith("\n"):
                content += "\n"
            content += f"\n## Recent Changes\n{new_change}\n"

    return LAST_UPDATED_RE.sub(f"Last updated: {today.isoformat()}", content)


def project_context_summary(tech: TechInfo, branch: str) -> str:
    lines = []
    if tech.language:
        lines.append(f"- Language: {tech.language}")
    if tech.framework:
        lines.append(f"- Dependencies: {tech.framework}")
    if tech.testing:
        lines.append(f"- Testing: {tech.testing}")
    if tech.database:
        lines.append(f"- Storage: {tech.database}")
    if tech.project_type:
        lines.append(f"- Project type: {tech.project_type}")
    lines.append(f"- Current feature: {branch}")
    return "\n".join(lines)


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except PermissionError as e:
        raise ProjectAccessDeniedError(f"permission denied reading {path}", path=path) from e
    except (OSError, UnicodeDecodeError) as e:
        raise ProjectPathError(f"failed to read {path}: {e}", path=path) from e


class FeatureService:
    """Feature operations for one git repository."""

    def __init__(self, repo: Repository, today: Callable[[], date] = date.today):
        self.repo = repo
        self.today = today

    def _feature_branch(self) -> str:
        branch = self.repo.current_branch()
        if not is_feature_branch(branch):
            raise FeatureError(
                f"not on a feature branch. Current branch: {branch}. "
                "Feature branches should be named like: 001-feature-name"
            )
        return branch

    def _find_template(self, root: Path, name: str) -> Optional[Path]:
        candidates = []
        agent = detect_agent(root)
        if agent:
            candidates.append(root / agent_folder_name(agent) / "templates" / name)
        candidates.append(root / "templates" / name)
        for candidate in candidates:
            if candidate.is_file():
                return candidate
        return None

    def create_feature(self, description: str) -> FeatureCreateResult:
        if not description.strip():
            raise FeatureError("feature description cannot be empty")

        root = self.repo.root()
        specs_dir = root / "specs"
        create_directory(specs_dir)

        feature_num = f"{highest_feature_number(specs_dir) + 1:03d}"
        branch_name = branch_name_for(description, feature_num)
        if branch_name == f"{feature_num}-":
            raise FeatureError(f"feature description has no usable words: {description!r}")

        self.repo.create_branch(branch_name)

        feature_dir = specs_dir / branch_name
        create_directory(feature_dir)
        spec_file = feature_dir / "spec.md"
        template = self._find_template(root, "spec-template.md")
        if template:
            copy_file(template, spec_file)
        else:
            write_file_atomic(spec_file, SPEC_STUB)

        return FeatureCreateResult(branch_name=branch_name, spec_file=str(spec_file), feature_num=feature_num)

    def setup_plan(self) -> FeaturePlanResult:
        root = self.repo.root()
        branch = self._feature_branch()
        feature_dir = root / "specs" / branch
        create_directory(feature_dir)

        agent = detect_agent(root)
        if agent is None:
            folders = ", ".join(agent_folder_name(a) for a in AGENT_CONFIG)
            raise FeatureError(f"no AI assistant directory found (looking for {folders})")

        plan_file = feature_dir / "plan.md"
        template = root / agent_folder_name(agent) / "templates" / "plan-template.md"
        template_used = template.is_file()
        if template_used:
            content = _read_text(template).replace("$SPECS_DIR", str(feature_dir))
            write_file_atomic(plan_file, content)

        return FeaturePlanResult(
            feature_spec=str(feature_dir / "spec.md"),
            impl_plan=str(plan_file),
            specs_dir=str(feature_dir),
            branch=branch,
            template_used=template_used,
        )

    def check_prerequisites(self) -> FeatureCheckResult:
        root = self.repo.root()
        branch = self._feature_branch()
        feature_dir = root / "specs" / branch

        if not feature_dir.is_dir():
            raise FeatureError(
                f"feature directory not found: {feature_dir}. "
                "Run 'specify feature plan' first to create the feature structure"
            )
        if not (feature_dir / "plan.md").is_file():
            raise FeatureError(
                f"plan.md not found in {feature_dir}. Run 'specify feature plan' first to create the plan"
            )

        docs = [name for name in OPTIONAL_DOCS if (feature_dir / name).is_file()]
        contracts = feature_dir / "contracts"
        if contracts.is_dir() and any(contracts.iterdir()):
            docs.append("contracts/")
        return FeatureCheckResult(feature_dir=str(feature_dir), available_docs=docs)

    def get_paths(self) -> FeaturePathsResult:
        root = self.repo.root()
        branch = self._feature_branch()
        feature_dir = root / "specs" / branch
        return FeaturePathsResult(
            repo_root=str(root),
            branch=branch,
            feature_dir=str(feature_dir),
            feature_spec=str(feature_dir / "spec.md"),
            impl_plan=str(feature_dir / "plan.md"),
            tasks=str(feature_dir / "tasks.md"),
        )

    def update_context(self, agent: Optional[str] = None) -> FeatureContextResult:
        """Refresh agent context files from the current feature's plan.md.

        With no agent, every existing context file is updated; CLAUDE.md is
        created when none exist.
        """
        if agent and agent not in AGENT_CONFIG:
            raise FeatureError(f"invalid agent type '{agent}', must be one of: {', '.join(AGENT_CONFIG)}")

        root = self.repo.root()
        branch = self._feature_branch()
        plan_file = root / "specs" / branch / "plan.md"
        if not plan_file.is_file():
            raise FeatureError(f"no plan.md found at {plan_file}")
        tech = extract_tech_info(_read_text(plan_file))

        if agent:
            targets = [agent]
        else:
            targets = [key for key, cfg in AGENT_CONFIG.items() if (root / cfg["context_file"]).is_file()]
            if not targets:
                targets = ["claude"]

        result = FeatureContextResult(branch=branch)
        for key in targets:
            path, created = self._update_agent_file(root, key, tech, branch)
            result.updates.append(ContextUpdate(agent=AGENT_CONFIG[key]["name"], file=str(path), created=created))

        if tech.language:
            result.summary.append(f"Added language: {tech.language}")
        if tech.framework:
            result.summary.append(f"Added framework: {tech.framework}")
        if tech.database:
            result.summary.append(f"Added database: {tech.database}")
        return result

    def _update_agent_file(self, root: Path, agent: str, tech: TechInfo, branch: str) -> tuple[Path, bool]:
        path = root / AGENT_CONFIG[agent]["context_file"]
        if path.name == "AGENTS.md":
            return write_agents_md(root, agent, project_context_summary(tech, branch))

        today = self.today()
        if path.is_file():
            content = update_agent_file_content(_read_text(path), tech, branch, today)
            write_file_atomic(path, content)
            return path, False

        template_path = self._find_template(root, "agent-file-template.md")
        template = _read_text(template_path) if template_path else BASIC_AGENT_TEMPLATE
        write_file_atomic(path, render_agent_file(template, root.name, tech, branch, today))
        return path, True
