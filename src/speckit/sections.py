"""
Create or refresh generated documents that hold one delimited section.

Only the text between ``<specify>`` and ``</specify>`` belongs to Specify;
everything outside the markers is user-owned and preserved byte-for-byte.
"""

from dataclasses import dataclass
from pathlib import Path

from .errors import MalformedSectionError, ProjectAccessDeniedError, ProjectPathError
from .filesystem import write_file_atomic

OPEN_MARKER = "<specify>"
CLOSE_MARKER = "</specify>"


@dataclass
class DocumentTemplate:
    """Boilerplate used when the document does not exist yet."""
    title: str
    intro: str

    def render(self, block: str) -> str:
        return f"# {self.title}\n\n{self.intro}\n\n{block}\n"


def build_block(content: str) -> str:
    if OPEN_MARKER in content or CLOSE_MARKER in content:
        raise MalformedSectionError("generated content must not contain section markers")
    return f"{OPEN_MARKER}{content}{CLOSE_MARKER}"


def find_section(document: str) -> tuple[int, int] | None:
    """Return the (start, end) span of the delimited section, markers included.

    Raises MalformedSectionError for duplicated, unpaired or reversed markers.
    """
    opens = document.count(OPEN_MARKER)
    closes = document.count(CLOSE_MARKER)
    if opens > 1 or closes > 1:
        raise MalformedSectionError("malformed delimited section: multiple delimited sections found")
    if opens != closes:
        raise MalformedSectionError("malformed delimited section: mismatched opening and closing tags")
    if opens == 0:
        return None

    start = document.index(OPEN_MARKER)
    close = document.index(CLOSE_MARKER)
    if close < start:
        raise MalformedSectionError("malformed delimited section: closing tag before opening tag")
    return start, close + len(CLOSE_MARKER)


def merge_section(document: str, content: str) -> str:
    """Replace the delimited section in document, or append one."""
    block = build_block(content)
    span = find_section(document)
    if span is not None:
        start, end = span
        return document[:start] + block + document[end:]

    # exactly one blank line separates existing content from the new section
    body = document.rstrip("\n")
    if not body:
        return block + "\n"
    return body + "\n\n" + block + "\n"


def extract_section(document: str) -> str | None:
    """Return the text inside the markers, or None when absent."""
    span = find_section(document)
    if span is None:
        return None
    start, end = span
    return document[start + len(OPEN_MARKER):end - len(CLOSE_MARKER)]


def create_or_update(path: Path, content: str, template: DocumentTemplate) -> bool:
    """Write content into the document's delimited section.

    Returns True when the file was created. A malformed existing document is
    left untouched.
    """
    if path.exists() and not path.is_file():
        raise ProjectPathError(f"{path} exists and is not a file", path=path)

    if not path.exists():
        write_file_atomic(path, template.render(build_block(content)))
        return True

    try:
        existing = path.read_text(encoding="utf-8")
    except PermissionError as e:
        raise ProjectAccessDeniedError(f"permission denied reading {path}", path=path) from e
    except (OSError, UnicodeDecodeError) as e:
        raise ProjectPathError(f"failed to read {path}: {e}", path=path) from e

    try:
        updated = merge_section(existing, content)
    except MalformedSectionError as e:
        raise MalformedSectionError(f"{path.name}: {e}", path=path) from e

    if updated != existing:
        write_file_atomic(path, updated)
    return False
