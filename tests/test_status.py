"""Tests for chartpair.status: summarising saved evaluation state."""

from __future__ import annotations

from pathlib import Path

from chartpair.models import Category, PairMetadata
from chartpair.status import get_state_status
from chartpair.store import EvaluationStore, state_path


def test_no_state_file(tmp_path: Path) -> None:
    assert get_state_status(tmp_path) is None


def test_summarises_pairs(tmp_path: Path, complete_responses: dict) -> None:
    store = EvaluationStore.for_state_dir(tmp_path)
    store.get_or_create("done", PairMetadata(dataset="FIFA 18 Dataset", summary_set="sum3_ques1"))
    for category in Category:
        store.record_category_result("done", category, complete_responses)
    store.get_or_create("sent")
    for category in Category:
        store.record_category_result("sent", category, complete_responses)
    store.mark_submitted("sent")
    store.get_or_create("started")
    store.record_category_result("started", Category.STYLE, complete_responses)

    status = get_state_status(tmp_path)

    assert status is not None
    assert status.state_file == state_path(tmp_path)
    assert [p.pair_id for p in status.pairs] == ["done", "sent", "started"]
    assert status.pairs_complete == 2
    assert status.pairs_submitted == 1
    assert status.pending == ["done"]

    done = status.pairs[0]
    assert done.dataset == "FIFA 18 Dataset"
    assert done.summary_set == "sum3_ques1"
    assert done.missing == []

    started = status.pairs[2]
    assert (started.completed, started.total) == (1, 4)
    assert started.missing == ["Visual Clutter", "Cognitive Load", "Interpretability"]
