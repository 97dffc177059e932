"""Rating session context: current pair, current category, save-and-submit.

A ``SurveySession`` replaces the page-level globals of a browser survey.  It
owns the navigation pointers and routes saves through the store and the
gateway.  One session serves one rater.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

import httpx

from chartpair.catalog import CATEGORY_ORDER
from chartpair.config import ChartpairSettings
from chartpair.gateway import SubmissionGateway, load_rater_id
from chartpair.models import (
    Category,
    Pair,
    PairEvaluation,
    PairFilter,
    ResponseBundle,
    SubmissionOutcome,
)
from chartpair.oracle import select_strategy
from chartpair.resolver import PairResolver
from chartpair.store import EvaluationStore, PairProgress

logger = logging.getLogger(__name__)


@dataclass
class SaveResult:
    """What the rater sees after saving a category."""

    pair_id: str
    category: Category
    pair_complete: bool
    submission: SubmissionOutcome
    message: str


@dataclass
class SessionSummary:
    pairs_total: int
    pairs_complete: int
    pairs_submitted: int

    @property
    def all_complete(self) -> bool:
        return self.pairs_total > 0 and self.pairs_complete == self.pairs_total


class SurveySession:
    def __init__(
        self,
        pairs: Sequence[Pair],
        store: EvaluationStore,
        gateway: SubmissionGateway,
    ) -> None:
        self.pairs = list(pairs)
        self.store = store
        self.gateway = gateway
        self.index = 0
        self.category: Category = CATEGORY_ORDER[0]
        self._by_id = {p.pair_id: i for i, p in enumerate(self.pairs)}
        if self.pairs:
            self._open(self.pairs[0])

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    @property
    def current_pair(self) -> Pair | None:
        if not self.pairs:
            return None
        return self.pairs[self.index]

    @property
    def current_evaluation(self) -> PairEvaluation | None:
        pair = self.current_pair
        return self.store.get(pair.pair_id) if pair is not None else None

    def _open(self, pair: Pair) -> Pair:
        self.store.get_or_create(pair.pair_id, pair.metadata)
        self.category = CATEGORY_ORDER[0]
        return pair

    def jump_to(self, index: int) -> Pair | None:
        """Make pair *index* current.  Out-of-range indexes change nothing."""
        if not 0 <= index < len(self.pairs):
            return None
        self.index = index
        return self._open(self.pairs[index])

    def open_pair(self, pair_id: str) -> Pair | None:
        index = self._by_id.get(pair_id)
        return self.jump_to(index) if index is not None else None

    def next_pair(self) -> Pair | None:
        return self.jump_to(self.index + 1)

    def previous_pair(self) -> Pair | None:
        return self.jump_to(self.index - 1)

    def select_category(self, category: Category | str) -> Category:
        self.category = Category(category)
        return self.category

    # ------------------------------------------------------------------
    # Saving
    # ------------------------------------------------------------------

    async def save(
        self,
        responses: ResponseBundle | Mapping[str, object],
        category: Category | str | None = None,
    ) -> SaveResult:
        """Record the current (or given) category and submit the pair if done.

        Raises:
            LookupError: no pair is loaded.
            ResponseValidationError: the form is incomplete.
        """
        pair = self.current_pair
        if pair is None:
            raise LookupError("No pair loaded for evaluation")
        category = Category(category) if category is not None else self.category

        complete = self.store.record_category_result(pair.pair_id, category, responses)
        outcome = await self.gateway.submit_if_complete(pair.pair_id)

        if outcome == SubmissionOutcome.SENT:
            message = "Pair evaluation submitted."
        elif outcome == SubmissionOutcome.FAILED:
            message = "Saved locally. Submission failed and will be retried."
        else:
            message = "Responses saved."
        return SaveResult(
            pair_id=pair.pair_id,
            category=category,
            pair_complete=complete,
            submission=outcome,
            message=message,
        )

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    def progress(self, pair_id: str | None = None) -> PairProgress:
        if pair_id is None:
            pair = self.current_pair
            if pair is None:
                raise LookupError("No pair loaded")
            pair_id = pair.pair_id
        return self.store.progress(pair_id)

    def summary(self) -> SessionSummary:
        complete = 0
        submitted = 0
        for pair in self.pairs:
            evaluation = self.store.get(pair.pair_id)
            if evaluation is None:
                continue
            if evaluation.is_complete:
                complete += 1
            if evaluation.submitted:
                submitted += 1
        return SessionSummary(
            pairs_total=len(self.pairs),
            pairs_complete=complete,
            pairs_submitted=submitted,
        )


async def start_session(
    settings: ChartpairSettings,
    pair_filter: PairFilter | None = None,
    *,
    http_client: httpx.AsyncClient | None = None,
) -> SurveySession:
    """Resolve pairs, restore saved state and wire up a session.

    *http_client*, when given, is shared by the prober and the gateway.
    """
    strategy = select_strategy(settings, client=http_client)
    resolver = PairResolver(
        strategy,
        max_pairs=settings.max_pairs,
        base_url=settings.asset_base_url,
        cache_bust=str(int(time.time())) if settings.cache_bust else None,
    )
    try:
        pairs = await resolver.resolve_all(pair_filter)
    finally:
        await strategy.aclose()

    store = EvaluationStore.for_state_dir(settings.state_dir)
    store.restore()

    gateway = SubmissionGateway(
        store,
        settings.submit_url,
        client=http_client,
        timeout=settings.submit_timeout,
        rater_id=load_rater_id(settings.state_dir),
    )
    logger.info("Session %s (rater %s): %d pairs, %d saved evaluations",
                gateway.session_id, gateway.rater_id, len(pairs), len(store))
    return SurveySession(pairs, store, gateway)
