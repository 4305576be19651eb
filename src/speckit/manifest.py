"""
Template cache manifest: per-file SHA-256 digests plus the tool version that
produced the cache.
"""

import hashlib
import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

from .config import DEV_VERSION, MANIFEST_NAME
from .errors import TemplateCacheError, TemplateCorruptedError
from .filesystem import write_file_atomic

DIGEST_LENGTH = 64
_HEX_RE = re.compile(r"^[a-fA-F0-9]+$")


def calculate_file_hash(path: Path) -> str:
    """Return the lowercase hex SHA-256 of a file."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


def is_valid_digest(value: str) -> bool:
    return len(value) == DIGEST_LENGTH and bool(_HEX_RE.match(value))


def is_version_compatible(cache_version: str, current_version: str) -> bool:
    """Exact match, except the development sentinel matches anything."""
    if cache_version == DEV_VERSION or current_version == DEV_VERSION:
        return True
    return cache_version == current_version


def _format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@dataclass
class CacheManifest:
    spec_kit_version: str
    last_sync: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    templates: Dict[str, str] = field(default_factory=dict)

    def add_template(self, rel_path: str, digest: str) -> None:
        if not rel_path:
            raise ValueError("template path cannot be empty")
        if not is_valid_digest(digest):
            raise ValueError(f"invalid digest for {rel_path}: {digest!r}")
        self.templates[rel_path] = digest.lower()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "spec_kit_version": self.spec_kit_version,
            "last_sync": _format_timestamp(self.last_sync),
            "templates": dict(sorted(self.templates.items())),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheManifest":
        if not isinstance(data, dict):
            raise TemplateCorruptedError("manifest must be a JSON object")
        version = data.get("spec_kit_version")
        if not isinstance(version, str) or not version:
            raise TemplateCorruptedError("manifest is missing spec_kit_version")
        templates = data.get("templates") or {}
        if not isinstance(templates, dict):
            raise TemplateCorruptedError("manifest templates must be an object")

        try:
            last_sync = _parse_timestamp(str(data.get("last_sync", "")))
        except ValueError as e:
            raise TemplateCorruptedError(f"invalid last_sync in manifest: {e}") from e

        manifest = cls(spec_kit_version=version, last_sync=last_sync)
        for rel_path, digest in templates.items():
            if not isinstance(digest, str) or not is_valid_digest(digest):
                raise TemplateCorruptedError(f"invalid digest for {rel_path} in manifest")
            manifest.templates[rel_path] = digest.lower()
        return manifest


def manifest_path(cache_root: Path) -> Path:
    return cache_root / MANIFEST_NAME


def load_manifest(cache_root: Path) -> CacheManifest:
    path = manifest_path(cache_root)
    if not path.is_file():
        raise TemplateCacheError("manifest file does not exist", path=path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError) as e:
        raise TemplateCacheError(f"failed to read manifest: {e}", path=path) from e
    except json.JSONDecodeError as e:
        raise TemplateCorruptedError(f"failed to parse manifest: {e}", path=path) from e
    return CacheManifest.from_dict(data)


def save_manifest(cache_root: Path, manifest: CacheManifest) -> Path:
    path = manifest_path(cache_root)
    write_file_atomic(path, json.dumps(manifest.to_dict(), indent=2) + "\n")
    return path


def validate_cache(cache_root: Path, manifest: CacheManifest) -> None:
    """Check every manifest entry exists under cache_root with a matching digest.

    Raises TemplateCorruptedError naming the first missing file or mismatch.
    """
    for rel_path, expected in sorted(manifest.templates.items()):
        parts = rel_path.split("/")
        if rel_path.startswith("/") or ".." in parts:
            raise TemplateCorruptedError(f"invalid path in manifest: {rel_path}")

        full_path = cache_root.joinpath(*parts)
        if not full_path.is_file():
            raise TemplateCorruptedError(f"cached file missing: {rel_path}", path=full_path)

        try:
            actual = calculate_file_hash(full_path)
        except OSError as e:
            raise TemplateCorruptedError(f"failed to hash {rel_path}: {e}", path=full_path) from e
        if actual.lower() != expected.lower():
            raise TemplateCorruptedError(
                f"hash mismatch for {rel_path}: expected {expected}, got {actual}",
                path=full_path,
            )
