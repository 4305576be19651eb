"""Shared fixtures: in-memory template archives and a fake release source."""

import stat
import zipfile
from pathlib import Path

import pytest

from speckit.cache import TemplateCache
from speckit.errors import TemplateDownloadError


def make_zip(path: Path, entries: dict, modes: dict | None = None) -> Path:
    """Write a ZIP at path. entries maps archive names to str/bytes content."""
    modes = modes or {}
    with zipfile.ZipFile(path, "w") as zf:
        for name, content in entries.items():
            info = zipfile.ZipInfo(name)
            if name.endswith("/"):
                info.external_attr = (stat.S_IFDIR | modes.get(name, 0o755)) << 16
            else:
                info.external_attr = (stat.S_IFREG | modes.get(name, 0o644)) << 16
            data = content.encode("utf-8") if isinstance(content, str) else content
            zf.writestr(info, data)
    return path


class FakeSource:
    """Stands in for GitHubClient.fetch_release_asset."""

    def __init__(self, entries: dict | None = None, error: Exception | None = None):
        self.entries = entries or {}
        self.error = error
        self.calls = 0

    def fetch_release_asset(self, pattern, dest_dir, *, show_progress=False):
        self.calls += 1
        if self.error is not None:
            raise self.error
        zip_path = make_zip(Path(dest_dir) / pattern, self.entries)
        return zip_path, {"filename": pattern, "size": zip_path.stat().st_size, "release": "v0.0.1"}


UNIFIED_ARCHIVE = {
    "spec-kit-templates/commands/specify.md": "Run the specify flow for {{.AIAssistant}}.\n",
    "spec-kit-templates/commands/plan.md": "# Plan\n",
    "spec-kit-templates/templates/spec-template.md": "# Spec\n",
    "spec-kit-templates/templates/plan-template.md": "# Plan for $SPECS_DIR\n",
    "spec-kit-templates/memory/constitution.md": "# Constitution\n",
}


@pytest.fixture
def unified_source() -> FakeSource:
    return FakeSource(UNIFIED_ARCHIVE)


@pytest.fixture
def failing_source() -> FakeSource:
    return FakeSource(error=TemplateDownloadError("network unreachable"))


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    return tmp_path / "cache"


@pytest.fixture
def populated_cache(cache_dir: Path, unified_source: FakeSource) -> TemplateCache:
    cache = TemplateCache(cache_dir, version="1.0.0")
    cache.sync(unified_source)
    return cache
