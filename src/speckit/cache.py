"""
Template cache: a persistent directory of synced templates plus a manifest.

Resolution runs once per invocation:

    START    -> cache non-empty? extract from cache (CACHE_HIT) -> SUCCESS
    CACHE_HIT failure or empty cache -> SYNCING (download, flatten, merge, manifest)
    SYNCING  -> extract again (RETRY) -> SUCCESS or FAILURE

There is exactly one automatic retry. No locking is done on the cache root;
concurrent writers race on the manifest and the last one wins.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

from .config import CACHE_ASSET_NAME, MANIFEST_NAME, cache_root, get_speckit_version
from .errors import SpecifyError, TemplateCacheError
from .filesystem import (
    create_directory,
    extract_zip_with_flatten,
    is_effectively_empty,
    merge_directories,
    scratch_directory,
)
from .manifest import (
    CacheManifest,
    calculate_file_hash,
    is_version_compatible,
    load_manifest,
    save_manifest,
    validate_cache,
)
from .placement import TemplateLayout, classify_layout, place_template
from .ui import StepTracker

MANUAL_SYNC_HINT = "Please run 'specify templates sync' manually"


class ArchiveSource(Protocol):
    def fetch_release_asset(self, pattern: str, dest_dir: Path, *, show_progress: bool = False) -> tuple[Path, dict]:
        ...


@dataclass
class ResolveResult:
    """Outcome of a successful resolve_and_extract call."""
    synced: bool
    layout: TemplateLayout
    manifest: CacheManifest
    cache_error: Optional[str] = None


class TemplateCache:
    """Template cache rooted at a directory (SPECIFY_CACHE_DIR or the user cache dir)."""

    def __init__(self, root: Optional[Path] = None, *, version: Optional[str] = None):
        self.root = root or cache_root()
        self.version = version or get_speckit_version()

    def is_empty(self) -> bool:
        """Empty means the manifest is absent or no other file exists."""
        if not (self.root / MANIFEST_NAME).is_file():
            return True
        return is_effectively_empty(self.root, frozenset({MANIFEST_NAME}))

    def load_manifest(self) -> CacheManifest:
        return load_manifest(self.root)

    def is_up_to_date(self) -> bool:
        """True when a readable manifest records the running tool version."""
        try:
            manifest = self.load_manifest()
        except SpecifyError:
            return False
        return manifest.spec_kit_version == self.version

    def validate(self) -> CacheManifest:
        """Load the manifest and check version and every digest."""
        manifest = self.load_manifest()
        if not is_version_compatible(manifest.spec_kit_version, self.version):
            raise TemplateCacheError(
                f"cache version mismatch: cache has {manifest.spec_kit_version}, current version is {self.version}"
            )
        validate_cache(self.root, manifest)
        return manifest

    def extract_into(self, project_path: Path, agent: str) -> tuple[TemplateLayout, CacheManifest]:
        """Place validated cache content into project_path for agent."""
        manifest = self.validate()
        ignore = frozenset({MANIFEST_NAME})
        layout = classify_layout(self.root, agent, ignore)
        if layout is TemplateLayout.LEGACY:
            # the cache is populated from unified archives; a bare tree is still unified
            layout = TemplateLayout.UNIFIED
        create_directory(project_path)
        place_template(self.root, project_path, agent, layout=layout, ignore=ignore)
        return layout, manifest

    def sync(self, source: ArchiveSource, *, show_progress: bool = False) -> CacheManifest:
        """Download the cache archive and merge it into the cache root.

        Files already in the cache but absent from the archive are kept. The
        manifest is rewritten from the files copied in this sync.
        """
        create_directory(self.root)
        manifest = CacheManifest(spec_kit_version=self.version)

        def record(rel_path: str, dest: Path) -> None:
            manifest.add_template(rel_path, calculate_file_hash(dest))

        with scratch_directory("specify-sync-") as temp_path:
            zip_path, _ = source.fetch_release_asset(CACHE_ASSET_NAME, temp_path, show_progress=show_progress)
            extract_dir = temp_path / "extracted"
            extract_zip_with_flatten(zip_path, extract_dir)
            merge_directories(extract_dir, self.root, skip=frozenset({MANIFEST_NAME}), on_file=record)

        if not manifest.templates:
            raise TemplateCacheError("template archive contained no files", path=self.root)
        save_manifest(self.root, manifest)
        return manifest

    def resolve_and_extract(
        self,
        source: ArchiveSource,
        project_path: Path,
        agent: str,
        *,
        tracker: StepTracker | None = None,
    ) -> ResolveResult:
        """Extract templates into project_path, syncing once if the cache is unusable."""
        cache_error = None

        if tracker:
            tracker.start("cache", str(self.root))
        if not self.is_empty():
            try:
                layout, manifest = self.extract_into(project_path, agent)
                if tracker:
                    tracker.complete("cache", f"hit ({len(manifest.templates)} files)")
                    tracker.skip("sync", "cache valid")
                    tracker.complete("extract", f"{layout.value} layout")
                return ResolveResult(synced=False, layout=layout, manifest=manifest)
            except (SpecifyError, OSError) as e:
                cache_error = str(e)
                if tracker:
                    tracker.error("cache", cache_error)
        elif tracker:
            tracker.complete("cache", "empty")

        if tracker:
            tracker.start("sync", "downloading templates")
        try:
            self.sync(source)
        except (SpecifyError, OSError) as e:
            if tracker:
                tracker.error("sync", str(e))
            raise TemplateCacheError(f"failed to sync templates automatically. {MANUAL_SYNC_HINT}: {e}") from e
        if tracker:
            tracker.complete("sync", "cache updated")
            tracker.start("extract")

        try:
            layout, manifest = self.extract_into(project_path, agent)
        except (SpecifyError, OSError) as e:
            if tracker:
                tracker.error("extract", str(e))
            raise TemplateCacheError(
                f"failed to extract templates after sync. {MANUAL_SYNC_HINT}: {e}"
            ) from e
        if tracker:
            tracker.complete("extract", f"{layout.value} layout")
        return ResolveResult(synced=True, layout=layout, manifest=manifest, cache_error=cache_error)
