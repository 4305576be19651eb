"""
Template substitution applied while placing files into a project.

Text files may reference ``{{.AIAssistant}}``; binary files (by extension)
are copied byte-for-byte.
"""

import os
import re
import shutil
from pathlib import Path

from .errors import ProjectAccessDeniedError, ProjectPathError, TemplateSubstitutionError
from .filesystem import copy_file, create_directory

BINARY_EXTENSIONS = frozenset({
    ".exe", ".dll", ".so", ".dylib",
    ".jpg", ".jpeg", ".png", ".gif", ".bmp", ".ico",
    ".mp3", ".mp4", ".avi", ".mov", ".wav",
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
    ".zip", ".tar", ".gz", ".7z", ".rar",
    ".bin", ".dat", ".db", ".sqlite",
})

_PLACEHOLDER_RE = re.compile(r"\{\{\s*\.([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


def should_process_as_template(path: Path) -> bool:
    return path.suffix.lower() not in BINARY_EXTENSIONS


def template_context(agent: str) -> dict[str, str]:
    return {"AIAssistant": agent}


def render_template(text: str, context: dict[str, str]) -> str:
    """Replace ``{{.Name}}`` placeholders; unknown names raise KeyError."""
    def _sub(match: re.Match) -> str:
        name = match.group(1)
        if name not in context:
            raise KeyError(name)
        return context[name]

    return _PLACEHOLDER_RE.sub(_sub, text)


def render_file(source: Path, dest: Path, context: dict[str, str]) -> None:
    """Render one file to dest, keeping the source mode bits."""
    if not should_process_as_template(source):
        copy_file(source, dest)
        return

    try:
        text = source.read_text(encoding="utf-8")
        rendered = render_template(text, context)
    except UnicodeDecodeError as e:
        raise TemplateSubstitutionError(f"{source.name} is not valid UTF-8 text", path=source) from e
    except KeyError as e:
        raise TemplateSubstitutionError(f"unknown template field {e.args[0]} in {source.name}", path=source) from e

    create_directory(dest.parent)
    try:
        with open(dest, "w", encoding="utf-8", newline="") as f:
            f.write(rendered)
        shutil.copymode(source, dest)
    except PermissionError as e:
        raise ProjectAccessDeniedError(f"permission denied writing {dest}", path=dest) from e
    except OSError as e:
        raise ProjectPathError(f"failed to write {dest}: {e}", path=dest) from e


def render_tree(source: Path, dest: Path, context: dict[str, str]) -> int:
    """Render every file under source into dest.

    A file that fails to render is recorded and skipped so the rest of the
    tree is still placed; the failures are raised together at the end.
    """
    failures: list[tuple[Path, str]] = []
    rendered = 0
    for dirpath, dirnames, filenames in os.walk(source):
        current = Path(dirpath)
        rel_dir = current.relative_to(source)
        dirnames.sort()
        create_directory(dest / rel_dir)
        for name in sorted(filenames):
            try:
                render_file(current / name, dest / rel_dir / name, context)
                rendered += 1
            except TemplateSubstitutionError as e:
                failures.append(((rel_dir / name), str(e)))

    if failures:
        names = ", ".join(p.as_posix() for p, _ in failures)
        raise TemplateSubstitutionError(
            f"failed to process {len(failures)} template file(s): {names}",
            failures=failures,
            path=source,
        )
    return rendered
