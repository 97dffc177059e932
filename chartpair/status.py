"""Survey status: reads the saved evaluation state and summarises progress.

Pure logic module.  It reads the state file and returns a data structure for
the CLI to print.  It resolves no pairs and makes no network calls.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from chartpair.catalog import CATEGORY_LABELS
from chartpair.models import Category
from chartpair.store import EvaluationStore, state_path


@dataclass
class PairStatusInfo:
    """Progress of one pair for display."""

    pair_id: str
    dataset: str  # display name
    summary_set: str
    completed: int
    total: int
    submitted: bool
    missing: list[str] = field(default_factory=list)  # category labels still to do
    started_at: str = ""
    submitted_at: str | None = None

    @property
    def is_complete(self) -> bool:
        return self.completed == self.total


@dataclass
class StateStatus:
    state_file: Path
    pairs: list[PairStatusInfo] = field(default_factory=list)

    @property
    def pairs_complete(self) -> int:
        return sum(1 for p in self.pairs if p.is_complete)

    @property
    def pairs_submitted(self) -> int:
        return sum(1 for p in self.pairs if p.submitted)

    @property
    def pending(self) -> list[str]:
        """Complete pairs whose submission has not gone through."""
        return [p.pair_id for p in self.pairs if p.is_complete and not p.submitted]


def get_state_status(state_dir: Path) -> StateStatus | None:
    """Summarise the state saved under *state_dir*.

    Returns None when no state file exists.
    """
    path = state_path(state_dir)
    if not path.exists():
        return None

    store = EvaluationStore(path)
    store.restore()

    status = StateStatus(state_file=path)
    for pair_id, evaluation in sorted(store.all().items(), key=lambda kv: kv[1].started_at):
        done = evaluation.completed_categories
        status.pairs.append(
            PairStatusInfo(
                pair_id=pair_id,
                dataset=evaluation.metadata.dataset,
                summary_set=evaluation.metadata.summary_set,
                completed=len(done),
                total=len(Category),
                submitted=evaluation.submitted,
                missing=[CATEGORY_LABELS[c] for c in Category if c not in done],
                started_at=evaluation.started_at,
                submitted_at=evaluation.submitted_at,
            )
        )
    return status
