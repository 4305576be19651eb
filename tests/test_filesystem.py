"""Tests for archive extraction and directory merging."""

import os
from pathlib import Path

import pytest

from conftest import make_zip
from speckit.errors import TemplateExtractionError
from speckit.filesystem import (
    extract_zip,
    extract_zip_with_flatten,
    flatten_root,
    is_effectively_empty,
    merge_directories,
    scratch_directory,
    write_file_atomic,
)


def _snapshot(root: Path) -> dict:
    return {p.relative_to(root).as_posix(): p.read_bytes() for p in root.rglob("*") if p.is_file()}


class TestMergeDirectories:
    def test_never_deletes_destination_files(self, tmp_path: Path):
        src = tmp_path / "src"
        dest = tmp_path / "dest"
        (src / "docs").mkdir(parents=True)
        (src / "docs" / "a.md").write_text("new a")
        (src / "b.md").write_text("new b")
        (dest / "docs").mkdir(parents=True)
        (dest / "docs" / "a.md").write_text("old a")
        (dest / "docs" / "keep.md").write_text("keep")
        (dest / "unrelated.txt").write_bytes(b"\x00\x01")

        copied = merge_directories(src, dest)

        assert copied == 2
        assert (dest / "docs" / "a.md").read_text() == "new a"
        assert (dest / "b.md").read_text() == "new b"
        assert (dest / "docs" / "keep.md").read_text() == "keep"
        assert (dest / "unrelated.txt").read_bytes() == b"\x00\x01"

    @pytest.mark.skipif(os.name == "nt", reason="POSIX mode bits")
    def test_preserves_mode_bits(self, tmp_path: Path):
        src = tmp_path / "src"
        src.mkdir()
        script = src / "run.sh"
        script.write_text("#!/bin/sh\n")
        script.chmod(0o755)

        merge_directories(src, tmp_path / "dest")

        assert (tmp_path / "dest" / "run.sh").stat().st_mode & 0o777 == 0o755

    def test_skip_and_callback(self, tmp_path: Path):
        src = tmp_path / "src"
        (src / "nested").mkdir(parents=True)
        (src / ".manifest.json").write_text("{}")
        (src / "nested" / ".manifest.json").write_text("{}")
        seen = []

        merge_directories(src, tmp_path / "dest", skip=frozenset({".manifest.json"}), on_file=lambda rel, _: seen.append(rel))

        assert seen == ["nested/.manifest.json"]
        assert not (tmp_path / "dest" / ".manifest.json").exists()


class TestExtractZip:
    def test_extracts_with_modes(self, tmp_path: Path):
        archive = make_zip(
            tmp_path / "t.zip",
            {"tools/run.sh": "#!/bin/sh\n", "README.md": "hi"},
            modes={"tools/run.sh": 0o755},
        )
        dest = tmp_path / "out"

        assert extract_zip(archive, dest) == 2
        assert (dest / "README.md").read_text() == "hi"
        if os.name != "nt":
            assert (dest / "tools" / "run.sh").stat().st_mode & 0o777 == 0o755

    @pytest.mark.parametrize("bad_name", ["../evil.txt", "safe/../../evil.txt", "/etc/evil.txt", "..\\evil.txt"])
    def test_traversal_fails_closed(self, tmp_path: Path, bad_name: str):
        archive = make_zip(tmp_path / "bad.zip", {"good.txt": "ok", bad_name: "pwned"})
        dest = tmp_path / "out"
        dest.mkdir()
        (dest / "existing.txt").write_text("before")
        before = _snapshot(dest)

        with pytest.raises(TemplateExtractionError):
            extract_zip(archive, dest)

        assert _snapshot(dest) == before
        assert not (tmp_path / "evil.txt").exists()

    def test_flatten_traversal_writes_nothing(self, tmp_path: Path):
        archive = make_zip(tmp_path / "bad.zip", {"wrap/ok.txt": "ok", "wrap/../../x.txt": "no"})
        dest = tmp_path / "out"

        with pytest.raises(TemplateExtractionError):
            extract_zip_with_flatten(archive, dest)

        assert not dest.exists() or _snapshot(dest) == {}

    def test_bad_archive(self, tmp_path: Path):
        bogus = tmp_path / "bogus.zip"
        bogus.write_bytes(b"not a zip")
        with pytest.raises(TemplateExtractionError, match="invalid archive"):
            extract_zip(bogus, tmp_path / "out")


def test_flatten_single_wrapper(tmp_path: Path):
    archive = make_zip(tmp_path / "t.zip", {"wrapper/file1.txt": "1", "wrapper/subdir/file2.txt": "2"})
    dest = tmp_path / "dest"

    extract_zip_with_flatten(archive, dest)

    assert (dest / "file1.txt").read_text() == "1"
    assert (dest / "subdir" / "file2.txt").read_text() == "2"
    assert not (dest / "wrapper").exists()


def test_flatten_root_keeps_multiple_entries(tmp_path: Path):
    (tmp_path / "a").mkdir()
    (tmp_path / "b.txt").write_text("b")
    assert flatten_root(tmp_path) == tmp_path


def test_flatten_root_keeps_single_file(tmp_path: Path):
    (tmp_path / "only.txt").write_text("x")
    assert flatten_root(tmp_path) == tmp_path


def test_scratch_directory_removed_on_error():
    with pytest.raises(RuntimeError):
        with scratch_directory() as temp_path:
            (temp_path / "f").write_text("x")
            raise RuntimeError("boom")
    assert not temp_path.exists()


def test_write_file_atomic(tmp_path: Path):
    target = tmp_path / "deep" / "AGENTS.md"
    write_file_atomic(target, "one")
    write_file_atomic(target, "two")
    assert target.read_text() == "two"
    assert [p.name for p in target.parent.iterdir()] == ["AGENTS.md"]


@pytest.mark.skipif(os.name == "nt", reason="POSIX permission bits")
def test_write_file_atomic_keeps_existing_mode(tmp_path: Path):
    target = tmp_path / "CLAUDE.md"
    target.write_text("old")
    os.chmod(target, 0o600)
    write_file_atomic(target, "new")
    assert target.read_text() == "new"
    assert target.stat().st_mode & 0o777 == 0o600


@pytest.mark.skipif(os.name == "nt", reason="POSIX permission bits")
def test_write_file_atomic_new_file_mode(tmp_path: Path):
    target = tmp_path / "AGENTS.md"
    write_file_atomic(target, "x")
    assert target.stat().st_mode & 0o777 == 0o644


def test_write_file_atomic_leaves_sibling_tmp_file_alone(tmp_path: Path):
    target = tmp_path / "AGENTS.md"
    user_file = tmp_path / "AGENTS.md.tmp"
    user_file.write_text("mine")
    write_file_atomic(target, "generated")
    assert target.read_text() == "generated"
    assert user_file.read_text() == "mine"
    assert sorted(p.name for p in tmp_path.iterdir()) == ["AGENTS.md", "AGENTS.md.tmp"]


def test_effectively_empty_ignores_named_files(tmp_path: Path):
    (tmp_path / ".manifest.json").write_text("{}")
    (tmp_path / "emptydir").mkdir()
    assert is_effectively_empty(tmp_path, frozenset({".manifest.json"}))
    (tmp_path / "emptydir" / "x").write_text("x")
    assert not is_effectively_empty(tmp_path, frozenset({".manifest.json"}))

