"""Static asset manifest: the build-time table used when hosting has no listing.

Static hosts (GitHub Pages, CDNs) cannot answer "what is in this directory",
and probing hundreds of candidate URLs against them is slow.  Instead the
build writes a manifest of the asset tree::

    {dataset: {summary_set: {pair_dir: [image names]}}}

Loose images that sit directly in a summary-set directory (datasets authored
without pair subdirectories) are listed under the reserved key ``"."``.

Keeping the manifest in step with the asset layout is the build's job:
run ``chartpair manifest <asset-root>`` whenever images change.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, Field

from chartpair.catalog import image_sort_key, is_image_name

logger = logging.getLogger(__name__)

LOOSE_IMAGES_KEY = "."

MANIFEST_FILENAME = "asset-manifest.json"

_PAIR_DIR_RE = re.compile(r"^pair(\d+)$")

DatasetTable = dict[str, dict[str, list[str]]]


class StaticManifest(BaseModel):
    """Asset listing for static deployments."""

    schema_version: int = 1
    generated_at: str | None = None
    datasets: dict[str, DatasetTable] = Field(default_factory=dict)

    def summary_table(self, dataset: str, summary_set: str) -> dict[str, list[str]] | None:
        return self.datasets.get(dataset, {}).get(summary_set)


# ---------------------------------------------------------------------------
# Compiled-in table for the hosted survey
# ---------------------------------------------------------------------------

BUILTIN_MANIFEST = StaticManifest(
    datasets={
        "Inc500Charts": {
            "sum1_ques1": {
                "pair1": ["5.png", "7.png"],
                "pair2": ["10.png", "8.png"],
            },
            "sum3_ques1": {
                "pair1": ["6.png", "7.png"],
                "pair2": ["12.png", "13.png"],
                "pair3": ["10.png", "11.png"],
            },
            "sum3_ques2": {
                "pair1": ["1.png", "2.png"],
                "pair2": ["10.png", "8.png"],
                "pair3": ["14.png", "15.png"],
            },
        },
        "fifa18_rendered_charts": {
            "sum1_ques1": {},
            "sum1_ques2": {
                "pair1": ["15.png", "17.png"],
                "pair2": ["10.png", "20.png"],
            },
            "sum3_ques1": {
                "pair1": ["2.png", "4.png"],
                "pair2": ["1.png", "7.png"],
                "pair3": ["7.png", "9.png"],
                "pair4": ["12.png", "16.png"],
                "pair5": ["18.png", "20.png"],
                "pair6": ["19.png", "25.png"],
            },
            "sum3_ques2": {
                "pair1": ["14.png", "5.png"],
                "pair2": ["15.png", "3.png"],
                "pair3": ["16.png", "18.png"],
            },
        },
        "ATP_rendered_charts": {
            "sum1_ques3": {
                "pair1": ["11.png", "9.png"],
                "pair2": ["6.png", "7.png"],
                "pair3": ["1.png", "6.png"],
                "pair4": ["10.png", "4.png"],
            },
            "sum3_ques2": {
                "pair1": ["6.png", "8.png"],
            },
        },
    }
)


# ---------------------------------------------------------------------------
# Build / read / write
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


def _images_in(directory: Path) -> list[str]:
    names = [p.name for p in directory.iterdir() if p.is_file() and is_image_name(p.name)]
    return sorted(names, key=image_sort_key)


def build_static_manifest(asset_root: Path) -> StaticManifest:
    """Walk a local asset tree and record every pair directory and image.

    Layout: ``<asset_root>/<dataset>/<summary_set>/pair<N>/<image>``.
    Hidden directories are skipped.
    """
    if not asset_root.is_dir():
        raise FileNotFoundError(f"Asset root not found: {asset_root}")

    datasets: dict[str, DatasetTable] = {}
    for dataset_dir in sorted(asset_root.iterdir()):
        if not dataset_dir.is_dir() or dataset_dir.name.startswith("."):
            continue
        summaries: DatasetTable = {}
        for summary_dir in sorted(dataset_dir.iterdir()):
            if not summary_dir.is_dir() or summary_dir.name.startswith("."):
                continue
            table: dict[str, list[str]] = {}
            pair_dirs = [
                d for d in summary_dir.iterdir() if d.is_dir() and _PAIR_DIR_RE.match(d.name)
            ]
            pair_dirs.sort(key=lambda d: int(_PAIR_DIR_RE.match(d.name).group(1)))  # type: ignore[union-attr]
            for pair_dir in pair_dirs:
                table[pair_dir.name] = _images_in(pair_dir)
            loose = _images_in(summary_dir)
            if loose:
                table[LOOSE_IMAGES_KEY] = loose
            summaries[summary_dir.name] = table
        datasets[dataset_dir.name] = summaries
        logger.debug("Manifest: %s has %d summary sets", dataset_dir.name, len(summaries))

    return StaticManifest(generated_at=_now_iso(), datasets=datasets)


def load_static_manifest(path: Path) -> StaticManifest:
    """Read a manifest written by ``write_static_manifest``."""
    return StaticManifest.model_validate_json(path.read_text(encoding="utf-8"))


def write_static_manifest(manifest: StaticManifest, path: Path) -> None:
    """Write the manifest to disk (atomic: write tmp then rename)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".tmp")
    tmp.write_text(manifest.model_dump_json(indent=2), encoding="utf-8")
    tmp.replace(path)
