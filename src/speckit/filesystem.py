"""
Filesystem primitives: safe ZIP extraction, non-destructive directory merge,
atomic writes and scoped scratch directories.
"""

import os
import shutil
import stat
import tempfile
import zipfile
from contextlib import contextmanager
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import Callable, Iterator, Optional

from .errors import (
    ProjectAccessDeniedError,
    ProjectPathError,
    TemplateExtractionError,
)

DEFAULT_DIR_MODE = 0o755
DEFAULT_FILE_MODE = 0o644

FileCallback = Callable[[str, Path], None]


@contextmanager
def scratch_directory(prefix: str = "specify-") -> Iterator[Path]:
    """Yield a temporary directory that is removed on every exit path."""
    with tempfile.TemporaryDirectory(prefix=prefix) as temp_dir:
        yield Path(temp_dir)


def create_directory(path: Path, mode: int = DEFAULT_DIR_MODE) -> None:
    try:
        path.mkdir(mode=mode, parents=True, exist_ok=True)
    except PermissionError as e:
        raise ProjectAccessDeniedError(f"permission denied creating {path}", path=path) from e
    except OSError as e:
        raise ProjectPathError(f"failed to create directory {path}: {e}", path=path) from e


def is_effectively_empty(path: Path, ignore: frozenset[str] = frozenset()) -> bool:
    """True when the tree under path holds no files other than ignored top-level names."""
    if not path.is_dir():
        return True
    for item in path.rglob("*"):
        if not item.is_file():
            continue
        if item.parent == path and item.name in ignore:
            continue
        return False
    return True


def copy_file(source: Path, dest: Path) -> None:
    """Copy a single file, preserving mode bits and creating parent directories."""
    create_directory(dest.parent)
    try:
        shutil.copy2(source, dest)
    except PermissionError as e:
        raise ProjectAccessDeniedError(f"permission denied writing {dest}", path=dest) from e
    except OSError as e:
        raise ProjectPathError(f"failed to copy {source} to {dest}: {e}", path=dest) from e


def merge_directories(
    source: Path,
    dest: Path,
    *,
    skip: frozenset[str] = frozenset(),
    on_file: Optional[FileCallback] = None,
) -> int:
    """Copy source into dest without deleting anything already in dest.

    Files present in both are overwritten. ``skip`` names top-level entries of
    source to leave out. ``on_file`` is called with the POSIX relative path and
    destination path of every copied file. Returns the number of files copied.
    """
    if not source.is_dir():
        raise ProjectPathError(f"source directory does not exist: {source}", path=source)

    create_directory(dest)
    copied = 0
    for dirpath, dirnames, filenames in os.walk(source):
        current = Path(dirpath)
        rel_dir = current.relative_to(source)
        if rel_dir == Path("."):
            dirnames[:] = [d for d in dirnames if d not in skip]
            filenames = [f for f in filenames if f not in skip]
        dirnames.sort()

        for name in dirnames:
            create_directory(dest / rel_dir / name)

        for name in sorted(filenames):
            src_file = current / name
            dest_file = dest / rel_dir / name
            copy_file(src_file, dest_file)
            copied += 1
            if on_file:
                on_file((rel_dir / name).as_posix(), dest_file)
    return copied


def write_file_atomic(path: Path, content: str, mode: Optional[int] = None) -> None:
    """Write text to a unique temp file beside path, then rename it over path.

    An existing file keeps its permission bits unless mode is given; new files
    get DEFAULT_FILE_MODE.
    """
    create_directory(path.parent)
    tmp_path: Optional[Path] = None
    try:
        if mode is None:
            mode = stat.S_IMODE(path.stat().st_mode) if path.exists() else DEFAULT_FILE_MODE
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        tmp_path = Path(tmp_name)
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except PermissionError as e:
        if tmp_path:
            tmp_path.unlink(missing_ok=True)
        raise ProjectAccessDeniedError(f"permission denied writing {path}", path=path) from e
    except OSError as e:
        if tmp_path:
            tmp_path.unlink(missing_ok=True)
        raise ProjectPathError(f"failed to write {path}: {e}", path=path) from e


def _is_unsafe_member(name: str) -> bool:
    if not name:
        return True
    if PurePosixPath(name).is_absolute() or PureWindowsPath(name).is_absolute():
        return True
    if name.startswith(("/", "\\")) or PureWindowsPath(name).drive:
        return True
    parts = name.replace("\\", "/").split("/")
    return ".." in parts


def _member_mode(info: zipfile.ZipInfo) -> int:
    return (info.external_attr >> 16) & 0o777


def extract_zip(zip_path: Path, dest: Path) -> int:
    """Extract every archive entry under dest, preserving declared modes.

    All entry names are checked before anything is written: a single absolute
    or parent-traversing name fails the whole extraction.
    Returns the number of files written.
    """
    try:
        with zipfile.ZipFile(zip_path, "r") as zip_ref:
            members = zip_ref.infolist()
            for info in members:
                if _is_unsafe_member(info.filename):
                    raise TemplateExtractionError(
                        f"invalid file path in archive: {info.filename}", path=zip_path
                    )

            create_directory(dest)
            dest_root = dest.resolve()
            written = 0
            for info in members:
                target = (dest / info.filename).resolve()
                if target != dest_root and dest_root not in target.parents:
                    raise TemplateExtractionError(
                        f"archive entry escapes destination: {info.filename}", path=zip_path
                    )

                mode = _member_mode(info)
                if info.is_dir():
                    create_directory(target, (mode or DEFAULT_DIR_MODE) | 0o700)
                    continue

                create_directory(target.parent)
                with zip_ref.open(info) as src, open(target, "wb") as out:
                    shutil.copyfileobj(src, out)
                if mode and not stat.S_ISLNK(info.external_attr >> 16):
                    os.chmod(target, mode)
                written += 1
            return written
    except zipfile.BadZipFile as e:
        raise TemplateExtractionError(f"invalid archive {zip_path.name}: {e}", path=zip_path) from e
    except OSError as e:
        raise TemplateExtractionError(f"failed to extract {zip_path.name}: {e}", path=zip_path) from e


def flatten_root(path: Path) -> Path:
    """Return the single wrapper directory under path, or path itself."""
    children = list(path.iterdir())
    if len(children) == 1 and children[0].is_dir():
        return children[0]
    return path


def extract_zip_with_flatten(
    zip_path: Path,
    dest: Path,
    *,
    skip: frozenset[str] = frozenset(),
    on_file: Optional[FileCallback] = None,
) -> int:
    """Extract into scratch space, drop a lone wrapper directory, merge into dest."""
    with scratch_directory("specify-extract-") as temp_path:
        extract_zip(zip_path, temp_path)
        payload = flatten_root(temp_path)
        return merge_directories(payload, dest, skip=skip, on_file=on_file)
