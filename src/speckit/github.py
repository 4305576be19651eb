"""
GitHub release client used as the remote template source.
"""

import ssl
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import httpx
import truststore
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn

from .config import API_TIMEOUT, DOWNLOAD_TIMEOUT, PROBE_TIMEOUT, github_token
from .errors import TemplateDownloadError, TemplateNotFoundError, TemplateCorruptedError

ssl_context = truststore.SSLContext(ssl.PROTOCOL_TLS_CLIENT)

API_BASE = "https://api.github.com"
CHUNK_SIZE = 8192


def _github_auth_headers(cli_token: str | None = None) -> dict:
    """Return Authorization header dict only when a non-empty token exists."""
    token = github_token(cli_token)
    return {"Authorization": f"Bearer {token}"} if token else {}


def _header_int(headers: httpx.Headers, name: str) -> Optional[int]:
    try:
        return int(headers[name])
    except (KeyError, ValueError):
        return None


def _parse_rate_limit_headers(headers: httpx.Headers) -> Dict[str, Any]:
    """Rate-limit fields GitHub sent, keyed by meaning. Absent headers are left out."""
    info: Dict[str, Any] = {}
    for key, header in (("limit", "X-RateLimit-Limit"), ("remaining", "X-RateLimit-Remaining")):
        if header in headers:
            info[key] = headers[header]

    reset_epoch = _header_int(headers, "X-RateLimit-Reset")
    if reset_epoch:
        info["reset_local"] = datetime.fromtimestamp(reset_epoch, tz=timezone.utc).astimezone()

    # Retry-After is either delta-seconds or an HTTP-date
    if "Retry-After" in headers:
        seconds = _header_int(headers, "Retry-After")
        info["retry_after"] = seconds if seconds is not None else headers["Retry-After"]
    return info


RATE_LIMIT_TIPS = [
    "  • Shared CI runners and corporate egress IPs often exhaust the anonymous quota.",
    "  • Pass --github-token, or set GH_TOKEN or GITHUB_TOKEN, to use an authenticated quota.",
]


def _format_rate_limit_error(status_code: int, headers: httpx.Headers, url: str) -> str:
    """Plain-text error for a failed API call, with any rate-limit details."""
    info = _parse_rate_limit_headers(headers)
    details = []
    if "limit" in info:
        details.append(f"  • Rate Limit: {info['limit']} requests/hour")
    if "remaining" in info:
        details.append(f"  • Remaining: {info['remaining']}")
    if "reset_local" in info:
        details.append(f"  • Resets at: {info['reset_local']:%Y-%m-%d %H:%M:%S %Z}")
    if isinstance(info.get("retry_after"), int):
        details.append(f"  • Retry after: {info['retry_after']} seconds")
    elif "retry_after" in info:
        details.append(f"  • Retry after: {info['retry_after']}")

    lines = [f"GitHub API returned status {status_code} for {url}"]
    if details:
        lines += ["", "Rate Limit Information:", *details]
    if status_code in (403, 429):
        lines += ["", "Troubleshooting Tips:", *RATE_LIMIT_TIPS]
    return "\n".join(lines)


class GitHubClient:
    """Fetches release metadata and assets for one repository."""

    def __init__(
        self,
        owner: str,
        repo: str,
        *,
        token: Optional[str] = None,
        skip_tls: bool = False,
        client: Optional[httpx.Client] = None,
        console: Optional[Console] = None,
    ):
        self.owner = owner
        self.repo = repo
        self.token = token
        self.console = console
        self.client = client or httpx.Client(verify=False if skip_tls else ssl_context)

    @property
    def latest_release_url(self) -> str:
        return f"{API_BASE}/repos/{self.owner}/{self.repo}/releases/latest"

    def get_latest_release(self) -> Dict[str, Any]:
        url = self.latest_release_url
        try:
            response = self.client.get(
                url,
                timeout=API_TIMEOUT,
                follow_redirects=True,
                headers=_github_auth_headers(self.token),
            )
        except httpx.HTTPError as e:
            raise TemplateDownloadError(f"failed to fetch release information: {e}") from e

        if response.status_code != 200:
            raise TemplateNotFoundError(_format_rate_limit_error(response.status_code, response.headers, url))
        try:
            release = response.json()
        except ValueError as e:
            raise TemplateCorruptedError(f"failed to parse release JSON: {e}") from e
        if not isinstance(release, dict):
            raise TemplateCorruptedError("release JSON is not an object")
        return release

    def find_asset(self, release: Dict[str, Any], pattern: str) -> Dict[str, Any]:
        """Return the ZIP asset named pattern, or the first containing it."""
        assets = release.get("assets") or []
        zips = [a for a in assets if str(a.get("name", "")).endswith(".zip")]
        for asset in zips:
            if asset.get("name") == pattern:
                return asset
        for asset in zips:
            if pattern in asset.get("name", ""):
                return asset

        names = ", ".join(a.get("name", "?") for a in assets) or "(no assets)"
        raise TemplateNotFoundError(
            f"no release asset matching '{pattern}' in {release.get('tag_name', 'latest release')} (available: {names})"
        )

    def download_asset(self, asset: Dict[str, Any], dest_dir: Path, *, show_progress: bool = False) -> Path:
        download_url = asset.get("browser_download_url")
        filename = asset.get("name")
        if not download_url or not filename:
            raise TemplateCorruptedError("release asset is missing name or download URL")

        zip_path = dest_dir / Path(filename).name
        try:
            with self.client.stream(
                "GET",
                download_url,
                timeout=DOWNLOAD_TIMEOUT,
                follow_redirects=True,
                headers=_github_auth_headers(self.token),
            ) as response:
                if response.status_code != 200:
                    raise TemplateDownloadError(
                        _format_rate_limit_error(response.status_code, response.headers, download_url)
                    )
                total = int(response.headers.get("content-length", 0))
                with open(zip_path, "wb") as f:
                    if total and show_progress and self.console is not None:
                        self._copy_with_progress(response, f, total, filename)
                    else:
                        for chunk in response.iter_bytes(chunk_size=CHUNK_SIZE):
                            f.write(chunk)
        except httpx.HTTPError as e:
            zip_path.unlink(missing_ok=True)
            raise TemplateDownloadError(f"failed to download {filename}: {e}") from e
        except TemplateDownloadError:
            zip_path.unlink(missing_ok=True)
            raise
        except OSError as e:
            zip_path.unlink(missing_ok=True)
            raise TemplateDownloadError(f"failed to write {zip_path}: {e}") from e
        return zip_path

    def _copy_with_progress(self, response: httpx.Response, out, total: int, label: str) -> None:
        columns = (
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        )
        with Progress(*columns, console=self.console) as progress:
            task = progress.add_task(f"Downloading {label}", total=total)
            for chunk in response.iter_bytes(chunk_size=CHUNK_SIZE):
                out.write(chunk)
                progress.advance(task, len(chunk))

    def fetch_release_asset(self, pattern: str, dest_dir: Path, *, show_progress: bool = False) -> tuple[Path, dict]:
        """Download the latest release asset matching pattern into dest_dir."""
        release = self.get_latest_release()
        asset = self.find_asset(release, pattern)
        zip_path = self.download_asset(asset, dest_dir, show_progress=show_progress)
        metadata = {
            "filename": asset["name"],
            "size": asset.get("size", 0),
            "release": release.get("tag_name", "unknown"),
            "asset_url": asset["browser_download_url"],
        }
        return zip_path, metadata

    def check_connectivity(self) -> None:
        """Raise TemplateDownloadError unless GitHub answers below 500."""
        try:
            response = self.client.get(API_BASE, timeout=PROBE_TIMEOUT, follow_redirects=True)
        except httpx.HTTPError as e:
            raise TemplateDownloadError(f"no internet connection available: {e}") from e
        if response.status_code >= 500:
            raise TemplateDownloadError(f"GitHub API returned status {response.status_code}")

    def close(self) -> None:
        self.client.close()
