"""Evaluation state store: per-pair, per-category answers with durable persistence.

The whole state map is one JSON document at
``<state_dir>/.chartpair/evaluations.json``, rewritten atomically after every
mutation.  Its shape is::

    {pairId: {pairId, metadata, evaluations: {category: {completed,
      responses, timestamp}}, startedAt, completedAt,
      completionStatus: {category: bool}, submitted, submittedAt}}

A single writer (the active rater's session) mutates the map, so there is no
locking; the invariant is that the file on disk is never older than the last
save the rater saw confirmed.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from chartpair.catalog import CATEGORY_LABELS, required_fields
from chartpair.models import (
    Category,
    CategoryResult,
    EvaluationMap,
    PairEvaluation,
    PairMetadata,
    ResponseBundle,
)

logger = logging.getLogger(__name__)

STATE_FILENAME = "evaluations.json"


def _now_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


def state_path(state_dir: Path) -> Path:
    return state_dir / ".chartpair" / STATE_FILENAME


class ResponseValidationError(ValueError):
    """A response bundle is missing required fields or has bad values.

    ``missing`` and ``invalid`` name the offending fields; ``str(exc)`` is a
    message that can be shown to the rater as is.
    """

    def __init__(
        self,
        category: Category,
        missing: list[str] | None = None,
        invalid: list[str] | None = None,
    ) -> None:
        self.category = category
        self.missing = missing or []
        self.invalid = invalid or []
        parts: list[str] = []
        if self.missing:
            parts.append(f"missing {', '.join(self.missing)}")
        if self.invalid:
            parts.append(f"invalid {', '.join(self.invalid)}")
        label = CATEGORY_LABELS.get(category, category.value)
        super().__init__(f"{label}: please complete the form ({'; '.join(parts)})")


@dataclass
class PairProgress:
    """How far a rater has got with one pair."""

    pair_id: str
    completed: int
    total: int
    completed_categories: list[Category] = field(default_factory=list)
    submitted: bool = False

    @property
    def is_complete(self) -> bool:
        return self.completed == self.total


def validate_responses(
    category: Category | str,
    responses: ResponseBundle | Mapping[str, object],
) -> ResponseBundle:
    """Check *responses* against the rules for *category*.

    Returns the parsed bundle.

    Raises:
        ResponseValidationError: listing missing or out-of-range fields.
    """
    category = Category(category)
    if isinstance(responses, ResponseBundle):
        bundle = responses
    else:
        try:
            bundle = ResponseBundle.model_validate(dict(responses))
        except ValidationError as exc:
            invalid = sorted({str(err["loc"][0]) for err in exc.errors() if err["loc"]})
            raise ResponseValidationError(category, invalid=invalid) from exc

    missing = bundle.missing(required_fields(category))
    if missing:
        raise ResponseValidationError(category, missing=missing)
    return bundle


class EvaluationStore:
    """Owns the evaluation map and its file.

    Args:
        path: JSON file the map is persisted to.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._evaluations: dict[str, PairEvaluation] = {}

    @classmethod
    def for_state_dir(cls, state_dir: Path) -> EvaluationStore:
        return cls(state_path(state_dir))

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def restore(self) -> None:
        """Reload the map from disk, replacing anything in memory.

        A missing file means a fresh session.  A corrupt file is logged and
        discarded: the session starts empty rather than failing.
        """
        if not self.path.exists():
            self._evaluations = {}
            return
        try:
            raw = self.path.read_text(encoding="utf-8")
            self._evaluations = dict(EvaluationMap.model_validate_json(raw).root)
        except (OSError, ValidationError, ValueError) as exc:
            logger.warning("Discarding unreadable evaluation state %s: %s", self.path, exc)
            self._evaluations = {}
            return
        logger.info("Restored %d pair evaluations from %s", len(self._evaluations), self.path)

    def persist(self) -> None:
        """Write the whole map to disk (atomic: write tmp then rename)."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(self.dump_json(), encoding="utf-8")
        tmp.replace(self.path)

    def dump_json(self, indent: int | None = 2) -> str:
        return EvaluationMap(root=self._evaluations).model_dump_json(by_alias=True, indent=indent)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def __contains__(self, pair_id: object) -> bool:
        return pair_id in self._evaluations

    def __len__(self) -> int:
        return len(self._evaluations)

    def get(self, pair_id: str) -> PairEvaluation | None:
        return self._evaluations.get(pair_id)

    def all(self) -> dict[str, PairEvaluation]:
        return dict(self._evaluations)

    def _require(self, pair_id: str) -> PairEvaluation:
        try:
            return self._evaluations[pair_id]
        except KeyError:
            raise KeyError(f"No evaluation started for pair {pair_id!r}") from None

    def is_pair_complete(self, pair_id: str) -> bool:
        """True iff every category of the pair has been saved."""
        evaluation = self._evaluations.get(pair_id)
        return evaluation is not None and evaluation.is_complete

    def progress(self, pair_id: str) -> PairProgress:
        evaluation = self._evaluations.get(pair_id)
        total = len(Category)
        if evaluation is None:
            return PairProgress(pair_id=pair_id, completed=0, total=total)
        done = evaluation.completed_categories
        return PairProgress(
            pair_id=pair_id,
            completed=len(done),
            total=total,
            completed_categories=done,
            submitted=evaluation.submitted,
        )

    def pending_submission(self) -> list[str]:
        """Pair ids that are complete but not (successfully) submitted."""
        return [
            pid for pid, ev in self._evaluations.items() if ev.is_complete and not ev.submitted
        ]

    # ------------------------------------------------------------------
    # Mutations (each one persists before returning)
    # ------------------------------------------------------------------

    def get_or_create(self, pair_id: str, metadata: PairMetadata | None = None) -> PairEvaluation:
        """Return the pair's evaluation, starting a blank one on first use."""
        evaluation = self._evaluations.get(pair_id)
        if evaluation is not None:
            return evaluation

        evaluation = PairEvaluation(
            pair_id=pair_id,
            metadata=metadata or PairMetadata(),
            started_at=_now_iso(),
        )
        self._evaluations[pair_id] = evaluation
        self.persist()
        logger.debug("%s: evaluation started", pair_id)
        return evaluation

    def record_category_result(
        self,
        pair_id: str,
        category: Category | str,
        responses: ResponseBundle | Mapping[str, object],
    ) -> bool:
        """Save one category's answers and return whether the pair is complete.

        A later save of the same category replaces the earlier one.  The map
        is persisted before completion is evaluated, so a crash in between
        loses nothing that was saved.

        Raises:
            KeyError: no evaluation has been started for *pair_id*.
            ResponseValidationError: required fields missing or invalid;
                state is left untouched.
        """
        category = Category(category)
        evaluation = self._require(pair_id)
        bundle = validate_responses(category, responses)

        now = _now_iso()
        evaluation.evaluations[category.value] = CategoryResult(
            completed=True,
            responses=bundle,
            timestamp=now,
        )
        evaluation.completion_status[category.value] = True
        if evaluation.is_complete and evaluation.completed_at is None:
            evaluation.completed_at = now

        self.persist()
        logger.info("%s: saved %s", pair_id, category.value)

        return self.is_pair_complete(pair_id)

    def mark_submitted(self, pair_id: str) -> None:
        evaluation = self._require(pair_id)
        evaluation.submitted = True
        evaluation.submitted_at = _now_iso()
        self.persist()

    def clear_submitted(self, pair_id: str) -> None:
        evaluation = self._require(pair_id)
        evaluation.submitted = False
        evaluation.submitted_at = None
        self.persist()

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export_evaluations(self, path: Path, *, client: Mapping[str, str] | None = None) -> int:
        """Write every evaluation to *path* as a standalone JSON export.

        Returns the number of pairs written.
        """
        payload = {
            "exportedAt": _now_iso(),
            "totalPairs": len(self._evaluations),
            "pairEvaluations": json.loads(self.dump_json(indent=None)),
            "metadata": dict(client or {}),
        }
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        return len(self._evaluations)
