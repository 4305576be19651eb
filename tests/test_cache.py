"""Tests for the template cache resolver."""

import json
from pathlib import Path

import pytest

from conftest import FakeSource
from speckit.cache import TemplateCache
from speckit.errors import TemplateCacheError, TemplateDownloadError
from speckit.placement import TemplateLayout
from speckit.ui import StepTracker


def test_missing_root_is_empty(cache_dir: Path):
    assert TemplateCache(cache_dir, version="1.0.0").is_empty()


def test_manifest_only_is_empty(cache_dir: Path):
    cache_dir.mkdir()
    (cache_dir / ".manifest.json").write_text(json.dumps({
        "spec_kit_version": "1.0.0", "last_sync": "2025-01-01T00:00:00Z", "templates": {},
    }))
    (cache_dir / "commands").mkdir()
    assert TemplateCache(cache_dir, version="1.0.0").is_empty()


def test_files_without_manifest_is_empty(cache_dir: Path):
    (cache_dir / "commands").mkdir(parents=True)
    (cache_dir / "commands" / "a.md").write_text("a")
    assert TemplateCache(cache_dir, version="1.0.0").is_empty()


def test_sync_flattens_wrapper_into_cache_root(cache_dir: Path):
    source = FakeSource({"wrapper/file1.txt": "one", "wrapper/subdir/file2.txt": "two"})
    cache = TemplateCache(cache_dir, version="1.0.0")

    manifest = cache.sync(source)

    assert (cache_dir / "file1.txt").read_text() == "one"
    assert (cache_dir / "subdir" / "file2.txt").read_text() == "two"
    assert not (cache_dir / "wrapper").exists()
    assert sorted(manifest.templates) == ["file1.txt", "subdir/file2.txt"]
    assert not cache.is_empty()
    assert cache.validate().spec_kit_version == "1.0.0"


def test_sync_keeps_unrelated_cache_files(populated_cache: TemplateCache):
    extra = populated_cache.root / "local-notes.md"
    extra.write_text("mine")

    populated_cache.sync(FakeSource({"t/commands/new.md": "new"}))

    assert extra.read_text() == "mine"
    assert (populated_cache.root / "commands" / "specify.md").is_file()
    assert list(populated_cache.load_manifest().templates) == ["commands/new.md"]


def test_sync_ignores_archive_manifest(cache_dir: Path):
    source = FakeSource({"t/.manifest.json": "{}", "t/commands/a.md": "a"})
    manifest = TemplateCache(cache_dir, version="2.0.0").sync(source)
    assert list(manifest.templates) == ["commands/a.md"]
    assert json.loads((cache_dir / ".manifest.json").read_text())["spec_kit_version"] == "2.0.0"


def test_cache_hit_does_not_download(populated_cache: TemplateCache, tmp_path: Path):
    source = FakeSource(error=AssertionError("should not download"))
    project = tmp_path / "project"

    result = populated_cache.resolve_and_extract(source, project, "claude")

    assert source.calls == 0
    assert result.synced is False
    assert result.layout is TemplateLayout.UNIFIED
    assert (project / ".claude" / "commands" / "specify.md").read_text() == "Run the specify flow for claude.\n"
    assert (project / ".claude" / "templates" / "plan-template.md").is_file()
    assert (project / "memory" / "constitution.md").is_file()
    assert not (project / ".manifest.json").exists()


def test_empty_cache_syncs_then_extracts(cache_dir: Path, unified_source: FakeSource, tmp_path: Path):
    cache = TemplateCache(cache_dir, version="1.0.0")
    tracker = StepTracker("test")

    result = cache.resolve_and_extract(unified_source, tmp_path / "p", "codex", tracker=tracker)

    assert unified_source.calls == 1
    assert result.synced is True
    assert (tmp_path / "p" / ".codex" / "commands" / "plan.md").is_file()
    assert tracker.status_of("cache") == "done"
    assert tracker.status_of("sync") == "done"
    assert tracker.status_of("extract") == "done"


def test_corrupted_cache_is_resynced(populated_cache: TemplateCache, unified_source: FakeSource, tmp_path: Path):
    (populated_cache.root / "commands" / "plan.md").write_text("tampered")

    result = populated_cache.resolve_and_extract(unified_source, tmp_path / "p", "claude")

    assert result.synced is True
    assert "hash mismatch for commands/plan.md" in result.cache_error
    assert (populated_cache.root / "commands" / "plan.md").read_text() == "# Plan\n"


def test_version_mismatch_triggers_sync(populated_cache: TemplateCache, unified_source: FakeSource, tmp_path: Path):
    newer = TemplateCache(populated_cache.root, version="2.0.0")

    result = newer.resolve_and_extract(unified_source, tmp_path / "p", "claude")

    assert result.synced is True
    assert "version mismatch" in result.cache_error
    assert newer.load_manifest().spec_kit_version == "2.0.0"


def test_dev_version_accepts_any_cache(populated_cache: TemplateCache, tmp_path: Path):
    dev = TemplateCache(populated_cache.root, version="dev")
    source = FakeSource(error=AssertionError("should not download"))

    assert dev.resolve_and_extract(source, tmp_path / "p", "claude").synced is False


def test_sync_failure_asks_for_manual_sync(cache_dir: Path, failing_source: FakeSource, tmp_path: Path):
    cache = TemplateCache(cache_dir, version="1.0.0")

    with pytest.raises(TemplateCacheError) as exc:
        cache.resolve_and_extract(failing_source, tmp_path / "p", "claude")

    message = str(exc.value)
    assert "failed to sync templates automatically" in message
    assert "specify templates sync" in message
    assert isinstance(exc.value.__cause__, TemplateDownloadError)
    assert failing_source.calls == 1


def test_memory_files_are_rendered_for_agent(cache_dir: Path, tmp_path: Path):
    source = FakeSource({
        "t/commands/a.md": "a",
        "t/memory/constitution.md": "Agent: {{.AIAssistant}}\n",
    })
    project = tmp_path / "p"

    TemplateCache(cache_dir, version="1.0.0").resolve_and_extract(source, project, "claude")

    assert (project / "memory" / "constitution.md").read_text() == "Agent: claude\n"
    assert (cache_dir / "memory" / "constitution.md").read_text() == "Agent: {{.AIAssistant}}\n"


def test_retry_happens_once(cache_dir: Path, tmp_path: Path):
    # archive content that cannot be rendered fails extraction even after sync
    source = FakeSource({"t/commands/bad.md": "{{.Nope}}", "t/memory/m.md": "m"})
    cache = TemplateCache(cache_dir, version="1.0.0")

    with pytest.raises(TemplateCacheError, match="specify templates sync"):
        cache.resolve_and_extract(source, tmp_path / "p", "claude")

    assert source.calls == 1


def test_empty_archive_is_rejected(cache_dir: Path):
    source = FakeSource({"wrapper/": ""})
    with pytest.raises(TemplateCacheError, match="no files"):
        TemplateCache(cache_dir, version="1.0.0").sync(source)


def test_is_up_to_date(populated_cache: TemplateCache):
    assert populated_cache.is_up_to_date()
    assert not TemplateCache(populated_cache.root, version="9.9.9").is_up_to_date()
