"""Pair discovery across the dataset / summary-set / pair / image hierarchy.

The resolver walks the static catalogue (datasets and their summary sets),
asks the existence strategy which pair directories and images are present,
and returns a flat, ordered list of ``Pair`` records.

Ordering is dataset order, then configured summary-set order, then pair
number.  Probes for siblings run concurrently, but results are gathered back
by index, so the order never depends on which probe answered first.

A failure anywhere below the top level is logged and contained: the broken
dataset, summary set or pair contributes no pairs and the scan carries on.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from chartpair.catalog import (
    DATASETS,
    SUMMARY_SETS,
    VIRTUAL_PAIR_PREFIX,
    dataset_display_name,
    image_sort_key,
    pair_dir_name,
    parse_summary_set,
)
from chartpair.models import Image, Pair, PairFilter, PairMetadata
from chartpair.oracle import ExistenceStrategy, join_path

logger = logging.getLogger(__name__)

_PAIR_NUMBER_RE = re.compile(r"(\d+)$")


@dataclass
class PairStatistics:
    """Counts shown on the survey landing page."""

    total_pairs: int = 0
    total_images: int = 0
    by_dataset: dict[str, int] = field(default_factory=dict)  # display name -> pairs
    by_summary_set: dict[str, int] = field(default_factory=dict)  # "sum1_ques1" -> pairs


class PairResolver:
    """Builds the pair list once at startup.

    Args:
        strategy: Existence strategy for the deployment.
        datasets: Dataset keys to scan, in order.  Defaults to the catalogue.
        summary_sets: Per-dataset summary-set keys, in order.
        max_pairs: Highest ``pair<N>`` directory probed when the strategy
            cannot list pair directories.
        base_url: Prefix for image presentation URLs.
        cache_bust: When set, appended to image URLs as ``?v=<token>``.
    """

    def __init__(
        self,
        strategy: ExistenceStrategy,
        *,
        datasets: Sequence[str] | None = None,
        summary_sets: Mapping[str, Sequence[str]] | None = None,
        max_pairs: int = 20,
        base_url: str = "",
        cache_bust: str | None = None,
    ) -> None:
        self.strategy = strategy
        self.datasets = list(datasets) if datasets is not None else list(DATASETS)
        self.summary_sets = dict(summary_sets) if summary_sets is not None else dict(SUMMARY_SETS)
        self.max_pairs = max_pairs
        self.base_url = base_url.rstrip("/")
        self.cache_bust = cache_bust

    async def resolve_all(self, pair_filter: PairFilter | None = None) -> list[Pair]:
        """Resolve every pair matching *pair_filter* (all pairs when None)."""
        pair_filter = pair_filter or PairFilter()
        pairs: list[Pair] = []

        for dataset in self.datasets:
            if pair_filter.dataset is not None and dataset != pair_filter.dataset:
                continue
            try:
                found = await self._resolve_dataset(dataset, pair_filter)
            except Exception as exc:
                logger.warning("%s: dataset scan failed: %s", dataset, exc, exc_info=True)
                continue
            logger.info("%s: %d pairs", dataset, len(found))
            pairs.extend(found)

        logger.info("Resolved %d pairs", len(pairs))
        return pairs

    # ------------------------------------------------------------------
    # Levels
    # ------------------------------------------------------------------

    def _selected_summary_sets(self, dataset: str, pair_filter: PairFilter) -> list[str]:
        selected: list[str] = []
        for key in self.summary_sets.get(dataset, []):
            try:
                summary, question = parse_summary_set(key)
            except ValueError:
                logger.warning("%s: skipping malformed summary set %r", dataset, key)
                continue
            if pair_filter.summary is not None and summary != pair_filter.summary:
                continue
            if pair_filter.question is not None and question != pair_filter.question:
                continue
            selected.append(key)
        return selected

    async def _resolve_dataset(self, dataset: str, pair_filter: PairFilter) -> list[Pair]:
        summary_sets = self._selected_summary_sets(dataset, pair_filter)
        results = await asyncio.gather(
            *(self._resolve_summary_set(dataset, s) for s in summary_sets),
            return_exceptions=True,
        )
        pairs: list[Pair] = []
        for summary_set, result in zip(summary_sets, results):
            if isinstance(result, Exception):
                logger.warning("%s/%s: scan failed: %s", dataset, summary_set, result)
                continue
            if isinstance(result, BaseException):
                raise result
            pairs.extend(result)
        return pairs

    async def _resolve_summary_set(self, dataset: str, summary_set: str) -> list[Pair]:
        summary_path = join_path(dataset, summary_set)
        pair_dirs = await self._pair_dirs(summary_path)

        if not pair_dirs:
            return await self._virtual_pairs(dataset, summary_set, summary_path)

        results = await asyncio.gather(
            *(self._resolve_pair(dataset, summary_set, d) for d in pair_dirs),
            return_exceptions=True,
        )
        pairs: list[Pair] = []
        for pair_dir, result in zip(pair_dirs, results):
            if isinstance(result, Exception):
                logger.warning("%s/%s: %s", summary_path, pair_dir, result)
                continue
            if isinstance(result, BaseException):
                raise result
            if result is not None:
                pairs.append(result)
        logger.debug("%s: %d of %d pair dirs usable", summary_path, len(pairs), len(pair_dirs))
        return pairs

    async def _pair_dirs(self, summary_path: str) -> list[str]:
        known = await self.strategy.list_pair_dirs(summary_path)
        if known is not None:
            return known

        candidates = [pair_dir_name(n) for n in range(1, self.max_pairs + 1)]
        present = await asyncio.gather(
            *(self.strategy.directory_exists(join_path(summary_path, c)) for c in candidates)
        )
        return [c for c, ok in zip(candidates, present) if ok]

    async def _resolve_pair(self, dataset: str, summary_set: str, pair_dir: str) -> Pair | None:
        pair_path = join_path(dataset, summary_set, pair_dir)
        names = await self.strategy.list_images(pair_path)
        match = _PAIR_NUMBER_RE.search(pair_dir)
        number = int(match.group(1)) if match else None
        return self._build_pair(dataset, summary_set, pair_dir, pair_path, names, number)

    async def _virtual_pairs(
        self, dataset: str, summary_set: str, summary_path: str
    ) -> list[Pair]:
        """Group loose images in a summary-set directory two at a time.

        Only used when the summary set has no pair directories.  A trailing
        odd image is left out.
        """
        names = sorted(await self.strategy.list_images(summary_path), key=image_sort_key)
        if len(names) < 2:
            return []

        logger.info("%s: no pair dirs, building virtual pairs from %d images",
                    summary_path, len(names))
        pairs: list[Pair] = []
        for index in range(0, len(names) - 1, 2):
            number = index // 2 + 1
            pair = self._build_pair(
                dataset,
                summary_set,
                f"{VIRTUAL_PAIR_PREFIX}{number}",
                summary_path,
                names[index:index + 2],
                number,
                virtual=True,
            )
            if pair is not None:
                pairs.append(pair)
        return pairs

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def image_url(self, path: str) -> str:
        url = f"{self.base_url}/{path}" if self.base_url else path
        if self.cache_bust:
            url = f"{url}?v={self.cache_bust}"
        return url

    def _build_pair(
        self,
        dataset: str,
        summary_set: str,
        pair_dir: str,
        dir_path: str,
        names: Sequence[str],
        pair_number: int | None,
        *,
        virtual: bool = False,
    ) -> Pair | None:
        ordered = sorted(names, key=image_sort_key)
        if len(ordered) < 2:
            logger.info("%s: %d image(s), need 2, skipped", dir_path, len(ordered))
            return None

        images = []
        for name in ordered[:2]:
            path = join_path(dir_path, name)
            images.append(Image(name=name, path=path, url=self.image_url(path)))
        summary, question = parse_summary_set(summary_set)
        return Pair(
            pair_id=f"{dataset}_{summary_set}_{pair_dir}",
            dataset=dataset,
            summary_set=summary_set,
            pair_dir=pair_dir,
            path=dir_path,
            images=(images[0], images[1]),
            metadata=PairMetadata(
                dataset=dataset_display_name(dataset),
                dataset_key=dataset,
                summary_set=summary_set,
                summary=summary,
                question=question,
                pair_number=pair_number,
            ),
            virtual=virtual,
        )


def pair_statistics(pairs: Sequence[Pair]) -> PairStatistics:
    """Totals and per-dataset / per-summary-set breakdown of *pairs*."""
    stats = PairStatistics()
    for pair in pairs:
        stats.total_pairs += 1
        stats.total_images += len(pair.images)
        name = pair.metadata.dataset
        stats.by_dataset[name] = stats.by_dataset.get(name, 0) + 1
        stats.by_summary_set[pair.summary_set] = stats.by_summary_set.get(pair.summary_set, 0) + 1
    return stats
