"""Runtime settings resolved from the environment."""

import importlib.metadata
import os
from pathlib import Path

import platformdirs

DEFAULT_TEMPLATE_REPO = "euforicio/spec-kit"
CACHE_ASSET_NAME = "spec-kit-cache-template.zip"
MANIFEST_NAME = ".manifest.json"
DEV_VERSION = "dev"

API_TIMEOUT = 30
DOWNLOAD_TIMEOUT = 60
PROBE_TIMEOUT = 10

CACHE_DIR_ENV = "SPECIFY_CACHE_DIR"
TEMPLATE_REPO_ENV = "SPECIFY_TEMPLATE_REPO"


def github_token(cli_token: str | None = None) -> str | None:
    """Return sanitized GitHub token (cli arg takes precedence) or None."""
    return ((cli_token or os.getenv("GH_TOKEN") or os.getenv("GITHUB_TOKEN") or "").strip()) or None


def template_repo() -> tuple[str, str]:
    """Return (owner, name) of the repository publishing template releases."""
    value = (os.getenv(TEMPLATE_REPO_ENV) or "").strip() or DEFAULT_TEMPLATE_REPO
    owner, sep, name = value.partition("/")
    if not sep or not owner or not name or "/" in name:
        raise ValueError(f"{TEMPLATE_REPO_ENV} must look like 'owner/name', got '{value}'")
    return owner, name


def cache_root() -> Path:
    """Return the template cache root, honouring SPECIFY_CACHE_DIR."""
    override = (os.getenv(CACHE_DIR_ENV) or "").strip()
    if override:
        return Path(override).expanduser()
    return platformdirs.user_cache_path("spec-kit") / "templates"


def get_speckit_version() -> str:
    """Get current spec-kit version, or the development sentinel."""
    try:
        return importlib.metadata.version("speckit-cli")
    except importlib.metadata.PackageNotFoundError:
        # Running from source: try pyproject.toml
        try:
            import tomllib
            pyproject_path = Path(__file__).parent.parent.parent / "pyproject.toml"
            if pyproject_path.exists():
                with open(pyproject_path, "rb") as f:
                    data = tomllib.load(f)
                    return data.get("project", {}).get("version", DEV_VERSION)
        except (OSError, ValueError):
            pass
    return DEV_VERSION
