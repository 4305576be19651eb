import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from conftest import UNIFIED_ARCHIVE, FakeSource
from speckit import app
from speckit.cache import TemplateCache
from speckit.errors import TemplateDownloadError

runner = CliRunner()


class ClosableSource(FakeSource):
    def close(self):
        pass


class FakeRepo:
    def __init__(self, root: Path, branch: str):
        self._root = root
        self.branch = branch

    def root(self):
        return self._root

    def current_branch(self):
        return self.branch

    def create_branch(self, name):
        self.branch = name


@pytest.fixture(autouse=True)
def isolated_cache(tmp_path, monkeypatch):
    cache_root = tmp_path / "cache"
    monkeypatch.setenv("SPECIFY_CACHE_DIR", str(cache_root))
    monkeypatch.setattr("speckit.cache.get_speckit_version", lambda: "1.0.0")
    return cache_root


@pytest.fixture
def no_network(monkeypatch):
    def refuse(*args, **kwargs):
        raise AssertionError("network client should not be created")

    monkeypatch.setattr("speckit.make_github_client", refuse)


def _populate(cache_root: Path, version: str = "1.0.0") -> TemplateCache:
    cache = TemplateCache(cache_root, version=version)
    cache.sync(FakeSource(UNIFIED_ARCHIVE))
    return cache


def test_init_from_cache(tmp_path, monkeypatch, isolated_cache):
    _populate(isolated_cache)
    monkeypatch.chdir(tmp_path)
    source = ClosableSource(error=AssertionError("should not download"))
    monkeypatch.setattr("speckit.make_github_client", lambda *a, **k: source)

    result = runner.invoke(app, ["init", "demo", "--ai", "claude", "--ignore-agent-tools", "--no-git"])

    assert result.exit_code == 0, result.output
    project = tmp_path / "demo"
    assert (project / ".claude" / "commands" / "specify.md").read_text() == "Run the specify flow for claude.\n"
    assert (project / "memory" / "constitution.md").is_file()
    assert "<specify>" in (project / "AGENTS.md").read_text()
    assert "AGENTS.md" in (project / "CLAUDE.md").read_text()
    assert source.calls == 0


def test_init_failure_removes_new_project(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    source = ClosableSource(error=TemplateDownloadError("offline"))
    monkeypatch.setattr("speckit.make_github_client", lambda *a, **k: source)

    result = runner.invoke(app, ["init", "demo", "--ai", "codex", "--ignore-agent-tools", "--no-git"])

    assert result.exit_code == 1
    assert source.calls == 1
    assert not (tmp_path / "demo").exists()


@pytest.mark.parametrize("args", [
    ["init", "bad/name", "--ai", "claude"],
    ["init", "taken", "--ai", "claude"],
    ["init", "demo", "--here"],
    ["init"],
])
def test_init_rejects_bad_targets(tmp_path, monkeypatch, no_network, args):
    (tmp_path / "taken").mkdir()
    monkeypatch.chdir(tmp_path)

    result = runner.invoke(app, args)

    assert result.exit_code == 1


def test_init_rejects_unknown_agent(tmp_path, monkeypatch, no_network):
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(app, ["init", "demo", "--ai", "emacs", "--no-git"])
    assert result.exit_code == 1
    assert not (tmp_path / "demo").exists()


def test_templates_status_empty(no_network):
    result = runner.invoke(app, ["templates", "status"])
    assert result.exit_code == 0
    assert "empty" in result.output


def test_templates_status_valid(isolated_cache, no_network):
    _populate(isolated_cache)
    result = runner.invoke(app, ["templates", "status"])
    assert result.exit_code == 0, result.output
    assert "valid" in result.output


def test_templates_status_stale(isolated_cache, no_network):
    _populate(isolated_cache, version="0.9.0")
    result = runner.invoke(app, ["templates", "status"])
    assert result.exit_code == 1
    assert "stale" in result.output


def test_templates_sync_skips_when_up_to_date(isolated_cache, no_network):
    _populate(isolated_cache)
    result = runner.invoke(app, ["templates", "sync"])
    assert result.exit_code == 0
    assert "up to date" in result.output


def test_templates_sync_force_downloads(isolated_cache, monkeypatch):
    _populate(isolated_cache)
    source = ClosableSource({"t/commands/fresh.md": "fresh", "t/memory/m.md": "m"})
    monkeypatch.setattr("speckit.make_github_client", lambda *a, **k: source)

    result = runner.invoke(app, ["templates", "sync", "--force", "--verbose"])

    assert result.exit_code == 0, result.output
    assert source.calls == 1
    assert "commands/fresh.md" in result.output
    assert (isolated_cache / "commands" / "fresh.md").read_text() == "fresh"


def test_feature_paths_json(tmp_path, monkeypatch):
    monkeypatch.setattr("speckit.GitRepository", lambda cwd: FakeRepo(tmp_path, "003-search"))

    result = runner.invoke(app, ["feature", "paths", "--json"])

    assert result.exit_code == 0, result.output
    data = json.loads(result.stdout)
    assert data["branch"] == "003-search"
    assert data["impl_plan"] == str(tmp_path / "specs" / "003-search" / "plan.md")


def test_feature_create_json(tmp_path, monkeypatch):
    repo = FakeRepo(tmp_path, "main")
    monkeypatch.setattr("speckit.GitRepository", lambda cwd: repo)

    result = runner.invoke(app, ["feature", "create", "Add search", "--json"])

    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout)["branch_name"] == "001-add-search"
    assert repo.branch == "001-add-search"


def test_feature_plan_off_feature_branch(tmp_path, monkeypatch):
    monkeypatch.setattr("speckit.GitRepository", lambda cwd: FakeRepo(tmp_path, "main"))

    result = runner.invoke(app, ["feature", "plan"])

    assert result.exit_code == 1
    assert "not on a feature branch" in result.output
