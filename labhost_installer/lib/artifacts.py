"""Remote artifact resolution.

Two tiers: discover the latest release (vendor page or release API), validate
the candidate strictly, and fall back to a pinned, known-good URL whenever
discovery fails or yields something that does not look like the artifact.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Callable, List, Optional, Sequence
from urllib.parse import unquote, urlsplit

import httpx

from ..errors import ArtifactResolutionError

logger = logging.getLogger(__name__)


Discover = Callable[[], Sequence[str]]
Validate = Callable[[Sequence[str]], Optional[str]]

_DATA_LINK_RE = re.compile(r'data-link="([^"]+)"')
_HREF_RE = re.compile(r'href="([^"]+)"')


def resolve_artifact(*, name: str, discover: Discover, validate: Validate, pinned: str) -> str:
    """Return the discovered URL when it validates, otherwise `pinned`."""

    logger.info("Attempting to autoresolve the latest version of %s...", name)
    try:
        candidates = list(discover())
    except (httpx.HTTPError, ValueError, KeyError) as e:
        logger.warning("Discovery of %s failed: %s", name, e)
        candidates = []

    url = validate(candidates)
    if url is not None:
        logger.info("The URL to the latest %s version was automatically resolved as: %s", name, url)
        return url

    logger.warning("Unable to auto-resolve the latest %s version. Falling back to pinned URL %s", name, pinned)
    return pinned


def expect_single(*, scheme: str = "https:", suffix: str) -> Validate:
    """Exactly one candidate, starting with `scheme` and ending with `suffix`."""

    def _validate(candidates: Sequence[str]) -> Optional[str]:
        if len(candidates) != 1:
            return None
        url = candidates[0].strip()
        if url.startswith(scheme) and url.endswith(suffix):
            return url
        return None

    return _validate


def expect_first(*, scheme: str = "https:", suffix: str) -> Validate:
    """First candidate, provided it starts with `scheme` and ends with `suffix`."""

    def _validate(candidates: Sequence[str]) -> Optional[str]:
        if not candidates:
            return None
        return expect_single(scheme=scheme, suffix=suffix)(candidates[:1])

    return _validate


# -- discoverers --------------------------------------------------------------


def splunk_page_links(client: httpx.Client, page_url: str) -> Discover:
    """`data-link` targets on lines of the Splunk download page mentioning a .deb."""

    def _discover() -> List[str]:
        r = client.get(page_url, follow_redirects=True)
        r.raise_for_status()
        links: List[str] = []
        for line in r.text.splitlines():
            if "deb" not in line.lower():
                continue
            links.extend(_DATA_LINK_RE.findall(line))
        return links

    return _discover


def github_release_assets(
    client: httpx.Client,
    api_url: str,
    *,
    name_pattern: str,
    exclude: str | None = None,
) -> Discover:
    """browser_download_url of assets whose name matches `name_pattern` in the latest release."""

    pattern = re.compile(name_pattern)
    excluded = re.compile(exclude) if exclude else None

    def _discover() -> List[str]:
        r = client.get(api_url, follow_redirects=True)
        r.raise_for_status()
        urls: List[str] = []
        for asset in r.json().get("assets") or []:
            asset_name = str(asset.get("name") or "")
            if not pattern.search(asset_name):
                continue
            if excluded is not None and excluded.search(asset_name):
                continue
            urls.append(str(asset["browser_download_url"]))
        return urls

    return _discover


def github_releases_page_links(client: httpx.Client, page_url: str, *, needle: str) -> Discover:
    """Absolute download links on a GitHub releases HTML page containing `needle`."""

    def _discover() -> List[str]:
        r = client.get(page_url, follow_redirects=True)
        r.raise_for_status()
        links: List[str] = []
        for line in r.text.splitlines():
            if needle not in line or "href" not in line:
                continue
            for href in _HREF_RE.findall(line):
                if needle in href:
                    links.append(href if href.startswith("http") else "https://github.com" + href)
        return links

    return _discover


# -- download / checks ------------------------------------------------------------


def filename_from_url(url: str) -> str:
    path = urlsplit(url).path
    # Splunk links carry "&wget=true" in the path.
    name = unquote(path.rsplit("/", 1)[-1]).split("&", 1)[0]
    if not name:
        raise ArtifactResolutionError(f"Cannot derive a file name from {url}")
    return name


def download(
    client: httpx.Client,
    url: str,
    dest: Path,
    *,
    dry_run: bool = False,
) -> Path:
    """Stream `url` to `dest`. When `dest` is a directory the URL's file name is used."""

    target = dest / filename_from_url(url) if dest.is_dir() else dest
    logger.info("Downloading %s -> %s", url, target)
    if dry_run:
        return target

    target.parent.mkdir(parents=True, exist_ok=True)
    try:
        with client.stream("GET", url, follow_redirects=True) as r:
            r.raise_for_status()
            with target.open("wb") as f:
                for chunk in r.iter_bytes():
                    f.write(chunk)
    except httpx.HTTPError as e:
        raise ArtifactResolutionError(f"Download of {url} failed: {e}") from e

    if not target.exists() or target.stat().st_size == 0:
        raise ArtifactResolutionError(f"Something went wrong while downloading {url}")
    return target


def is_elf_executable(path: Path) -> bool:
    """64-bit little-endian ELF executable (plain or position independent)."""

    try:
        with path.open("rb") as f:
            header = f.read(18)
    except OSError:
        return False
    if len(header) < 18 or header[:4] != b"\x7fELF":
        return False
    ei_class, ei_data = header[4], header[5]
    e_type = int.from_bytes(header[16:18], "little")
    return ei_class == 2 and ei_data == 1 and e_type in (2, 3)
