"""Existence oracle: "does this asset exist?" under deployment constraints.

Two strategies, chosen once at startup by ``select_strategy``:

- ``ProbingStrategy`` (local/dev server): HTTP GET against the asset URL.
  2xx and 403 (directory exists, listing disabled) mean present; 404, other
  statuses, network errors and timeouts mean absent.
- ``ManifestStrategy`` (static hosting): answers from a build-time
  ``StaticManifest`` without touching the network.

Existence checks never raise.  Absence is the ordinary "no" answer, not an
error.

Directory existence can only be inferred indirectly.  The prober asks for the
directory URL first; when that yields nothing it looks for a fixed set of
marker file names inside the directory.  A directory that exists but holds
none of the markers is reported absent.
"""

from __future__ import annotations

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Sequence
from urllib.parse import urlparse

import httpx

from chartpair.catalog import CANDIDATE_IMAGE_NAMES, DIRECTORY_MARKERS, image_sort_key
from chartpair.config import ChartpairSettings
from chartpair.manifest import (
    BUILTIN_MANIFEST,
    LOOSE_IMAGES_KEY,
    StaticManifest,
    build_static_manifest,
    load_static_manifest,
)

logger = logging.getLogger(__name__)

# One record per HTTP probe; setup_logging keeps these out unless verbose
probe_logger = logging.getLogger(f"{__name__}.probe")

MODE_PROBE = "probe"
MODE_STATIC = "static"

_PAIR_DIR_RE = re.compile(r"^pair(\d+)$")


def join_path(*parts: str) -> str:
    """Join resource path segments with single slashes."""
    return "/".join(p.strip("/") for p in parts if p and p.strip("/"))


class ExistenceStrategy(ABC):
    """Answers existence questions about the asset tree.

    Paths are relative to the asset root:
    ``<dataset>/<summary_set>/<pair_dir>/<image>``.
    """

    mode: str = ""

    @abstractmethod
    async def exists(self, resource_path: str) -> bool:
        """True if the resource can be fetched.  Never raises."""

    @abstractmethod
    async def directory_exists(self, dir_path: str) -> bool:
        """True if the directory is known or inferred to exist."""

    @abstractmethod
    async def list_images(self, dir_path: str) -> list[str]:
        """Names of the images found directly inside *dir_path*."""

    async def list_pair_dirs(self, summary_path: str) -> list[str] | None:
        """Known pair directory names, or None when they must be probed."""
        return None

    async def aclose(self) -> None:
        """Release network resources."""


# ---------------------------------------------------------------------------
# Probing (dev server)
# ---------------------------------------------------------------------------


class ProbingStrategy(ExistenceStrategy):
    """HTTP probing against a server that serves the asset tree.

    At most *concurrency* probes are in flight at once; sibling probes are
    fanned out with ``asyncio.gather`` and read back in candidate order.
    """

    mode = MODE_PROBE

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 1.0,
        concurrency: int = 8,
        client: httpx.AsyncClient | None = None,
        candidates: Sequence[str] = CANDIDATE_IMAGE_NAMES,
        markers: Sequence[str] = DIRECTORY_MARKERS,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.candidates = tuple(candidates)
        self.markers = tuple(markers)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)
        self._semaphore = asyncio.Semaphore(concurrency)

    def url_for(self, resource_path: str) -> str:
        return f"{self.base_url}/{resource_path.lstrip('/')}"

    async def _status(self, url: str) -> int:
        async with self._client.stream("GET", url) as response:
            return response.status_code

    async def exists(self, resource_path: str) -> bool:
        url = self.url_for(resource_path)
        async with self._semaphore:
            try:
                status = await asyncio.wait_for(self._status(url), timeout=self.timeout)
            except (httpx.HTTPError, asyncio.TimeoutError, OSError) as exc:
                probe_logger.debug("%s failed: %s", url, exc)
                return False
        if 200 <= status < 300 or status == 403:
            return True
        if status != 404:
            probe_logger.debug("%s: HTTP %d", url, status)
        return False

    async def _any_exists(self, paths: Sequence[str]) -> bool:
        results = await asyncio.gather(*(self.exists(p) for p in paths))
        return any(results)

    async def directory_exists(self, dir_path: str) -> bool:
        if await self.exists(dir_path.rstrip("/") + "/"):
            return True
        return await self._any_exists([join_path(dir_path, m) for m in self.markers])

    async def list_images(self, dir_path: str) -> list[str]:
        results = await asyncio.gather(
            *(self.exists(join_path(dir_path, name)) for name in self.candidates)
        )
        return [name for name, found in zip(self.candidates, results) if found]

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


# ---------------------------------------------------------------------------
# Static manifest (no directory listing available)
# ---------------------------------------------------------------------------


class ManifestStrategy(ExistenceStrategy):
    """Answers from a compiled manifest; performs no I/O."""

    mode = MODE_STATIC

    def __init__(self, manifest: StaticManifest = BUILTIN_MANIFEST) -> None:
        self.manifest = manifest

    def _lookup(self, path: str) -> tuple[str, ...]:
        return tuple(p for p in path.strip("/").split("/") if p)

    def _summary(self, dataset: str, summary_set: str) -> dict[str, list[str]] | None:
        return self.manifest.summary_table(dataset, summary_set)

    async def exists(self, resource_path: str) -> bool:
        parts = self._lookup(resource_path)
        if not parts:
            return False
        if len(parts) == 1:
            return parts[0] in self.manifest.datasets
        table = self._summary(parts[0], parts[1])
        if table is None:
            return False
        if len(parts) == 2:
            return True
        if len(parts) == 3:
            return parts[2] in table or parts[2] in table.get(LOOSE_IMAGES_KEY, [])
        if len(parts) == 4:
            return parts[3] in table.get(parts[2], [])
        return False

    async def directory_exists(self, dir_path: str) -> bool:
        parts = self._lookup(dir_path)
        if len(parts) == 3:
            table = self._summary(parts[0], parts[1]) or {}
            return parts[2] != LOOSE_IMAGES_KEY and parts[2] in table
        return len(parts) in (1, 2) and await self.exists(dir_path)

    async def list_images(self, dir_path: str) -> list[str]:
        parts = self._lookup(dir_path)
        if len(parts) not in (2, 3):
            return []
        table = self._summary(parts[0], parts[1]) or {}
        key = parts[2] if len(parts) == 3 else LOOSE_IMAGES_KEY
        return list(table.get(key, []))

    async def list_pair_dirs(self, summary_path: str) -> list[str] | None:
        parts = self._lookup(summary_path)
        if len(parts) != 2:
            return []
        table = self._summary(parts[0], parts[1]) or {}
        names = [k for k in table if _PAIR_DIR_RE.match(k)]
        return sorted(names, key=image_sort_key)


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


def _looks_static(base_url: str) -> bool:
    host = urlparse(base_url).hostname or ""
    return host.endswith("github.io")


def select_strategy(
    settings: ChartpairSettings,
    *,
    client: httpx.AsyncClient | None = None,
) -> ExistenceStrategy:
    """Pick the existence strategy for this deployment, once.

    ``auto`` means static when a manifest file or a local asset directory is
    configured, or the assets are served from GitHub Pages; probing otherwise.
    """
    mode = settings.deployment_mode
    if mode == "auto":
        static = (
            settings.manifest_path is not None
            or settings.asset_dir is not None
            or _looks_static(settings.asset_base_url)
        )
        mode = MODE_STATIC if static else MODE_PROBE

    if mode == MODE_STATIC:
        if settings.manifest_path is not None:
            manifest = load_static_manifest(settings.manifest_path)
            logger.info("Static mode: manifest %s", settings.manifest_path)
        elif settings.asset_dir is not None:
            manifest = build_static_manifest(settings.asset_dir)
            logger.info("Static mode: manifest built from %s", settings.asset_dir)
        else:
            manifest = BUILTIN_MANIFEST
            logger.info("Static mode: built-in manifest")
        return ManifestStrategy(manifest)

    logger.info("Probe mode: %s (timeout %.1fs)", settings.asset_base_url, settings.probe_timeout)
    return ProbingStrategy(
        settings.asset_base_url,
        timeout=settings.probe_timeout,
        concurrency=settings.probe_concurrency,
        client=client,
    )
