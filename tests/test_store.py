"""Tests for chartpair.store: recording answers, completion and persistence."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from chartpair.models import Category, PairMetadata
from chartpair.store import (
    EvaluationStore,
    ResponseValidationError,
    state_path,
    validate_responses,
)

PAIR = "Inc500Charts_sum3_ques2_pair2"


def _complete_all(store: EvaluationStore, responses: dict, pair_id: str = PAIR) -> list[bool]:
    return [store.record_category_result(pair_id, c, responses) for c in Category]


class TestValidation:
    def test_missing_required_fields(self) -> None:
        with pytest.raises(ResponseValidationError) as excinfo:
            validate_responses(Category.CLUTTER, {"primary": "Chart A", "chart_a": ""})
        assert excinfo.value.missing == ["chart_a", "chart_b"]
        assert "Visual Clutter" in str(excinfo.value)

    def test_invalid_values(self) -> None:
        with pytest.raises(ResponseValidationError) as excinfo:
            validate_responses(
                "style", {"primary": "Chart A", "chart_a": 9, "chart_b": 2, "confidence": 0}
            )
        assert excinfo.value.invalid == ["chart_a", "confidence"]
        assert excinfo.value.category == Category.STYLE

    def test_optional_fields_may_be_blank(self, complete_responses: dict) -> None:
        bundle = validate_responses(
            Category.STYLE, {**complete_responses, "confidence": "", "rationale": ""}
        )
        assert bundle.confidence is None
        assert bundle.rationale == ""


class TestGetOrCreate:
    def test_creates_blank_evaluation_and_persists(self, store: EvaluationStore) -> None:
        ev = store.get_or_create(PAIR, PairMetadata(dataset_key="Inc500Charts", pair_number=2))

        assert ev.pair_id == PAIR
        assert ev.started_at
        assert not ev.is_complete
        assert store.path.exists()
        data = json.loads(store.path.read_text())
        assert data[PAIR]["metadata"]["pairNumber"] == 2

    def test_returns_existing(self, store: EvaluationStore, complete_responses: dict) -> None:
        first = store.get_or_create(PAIR)
        store.record_category_result(PAIR, Category.CLUTTER, complete_responses)
        again = store.get_or_create(PAIR)
        assert again is first
        assert again.completion_status["clutter"] is True


class TestRecordCategoryResult:
    def test_complete_only_after_all_four(
        self, store: EvaluationStore, complete_responses: dict
    ) -> None:
        store.get_or_create(PAIR)
        assert _complete_all(store, complete_responses) == [False, False, False, True]
        ev = store.get(PAIR)
        assert ev is not None
        assert ev.completed_at is not None
        assert store.is_pair_complete(PAIR)

    def test_any_order(self, store: EvaluationStore, complete_responses: dict) -> None:
        store.get_or_create(PAIR)
        for category in reversed(list(Category)):
            complete = store.record_category_result(PAIR, category, complete_responses)
        assert complete is True

    def test_resave_overwrites(self, store: EvaluationStore, complete_responses: dict) -> None:
        store.get_or_create(PAIR)
        store.record_category_result(PAIR, Category.CLUTTER, complete_responses)
        store.record_category_result(
            PAIR, Category.CLUTTER, {**complete_responses, "primary": "Chart B", "chart_a": 2}
        )

        ev = store.get(PAIR)
        assert ev is not None
        result = ev.evaluations["clutter"]
        assert result.responses.primary == "Chart B"
        assert result.responses.chart_a == 2
        assert ev.completed_categories == [Category.CLUTTER]

    def test_rejected_save_leaves_state_untouched(
        self, store: EvaluationStore, complete_responses: dict
    ) -> None:
        store.get_or_create(PAIR)
        store.record_category_result(PAIR, Category.CLUTTER, complete_responses)
        before = store.path.read_text()

        with pytest.raises(ResponseValidationError):
            store.record_category_result(PAIR, Category.CLUTTER, {"primary": "Chart B"})
        with pytest.raises(ResponseValidationError):
            store.record_category_result(PAIR, Category.STYLE, {})

        assert store.path.read_text() == before
        ev = store.get(PAIR)
        assert ev is not None
        assert ev.evaluations["clutter"].responses.primary == "Chart A"
        assert ev.completion_status["style"] is False

    def test_unknown_pair(self, store: EvaluationStore, complete_responses: dict) -> None:
        with pytest.raises(KeyError):
            store.record_category_result("nope", Category.CLUTTER, complete_responses)

    def test_persisted_before_completion_returned(
        self, store: EvaluationStore, complete_responses: dict
    ) -> None:
        store.get_or_create(PAIR)
        for category in list(Category)[:3]:
            store.record_category_result(PAIR, category, complete_responses)

        calls: list[bool] = []
        original = store.is_pair_complete

        def spy(pair_id: str) -> bool:
            on_disk = json.loads(store.path.read_text())[pair_id]["completionStatus"]
            calls.append(all(on_disk.values()))
            return original(pair_id)

        store.is_pair_complete = spy  # type: ignore[method-assign]
        assert store.record_category_result(PAIR, Category.STYLE, complete_responses) is True
        assert calls == [True]


class TestPersistence:
    def test_restore_round_trip(self, tmp_path: Path, complete_responses: dict) -> None:
        store = EvaluationStore.for_state_dir(tmp_path)
        store.get_or_create(PAIR)
        store.record_category_result(PAIR, Category.COGNITIVE_LOAD, complete_responses)
        store.mark_submitted(PAIR)

        reopened = EvaluationStore.for_state_dir(tmp_path)
        reopened.restore()
        ev = reopened.get(PAIR)
        assert ev is not None
        assert ev.completion_status["cognitive_load"] is True
        assert ev.evaluations["cognitive_load"].responses.rationale == "Fewer gridlines."
        assert ev.submitted is True
        assert ev.submitted_at is not None
        assert reopened.all() == store.all()

    def test_missing_file_is_fresh_session(self, tmp_path: Path) -> None:
        store = EvaluationStore.for_state_dir(tmp_path)
        store.restore()
        assert len(store) == 0

    def test_corrupt_file_starts_empty(self, tmp_path: Path, caplog) -> None:
        path = state_path(tmp_path)
        path.parent.mkdir(parents=True)
        path.write_text("{not json")

        store = EvaluationStore(path)
        with caplog.at_level("WARNING", logger="chartpair.store"):
            store.restore()
        assert len(store) == 0
        assert "unreadable" in caplog.text

    def test_wrong_shape_starts_empty(self, tmp_path: Path) -> None:
        path = state_path(tmp_path)
        path.parent.mkdir(parents=True)
        path.write_text(json.dumps({"p": {"pairId": "p"}}))

        store = EvaluationStore(path)
        store.restore()
        assert "p" not in store

    def test_persist_writes_atomically(self, store: EvaluationStore) -> None:
        store.get_or_create(PAIR)
        assert store.path.exists()
        assert not store.path.with_suffix(".tmp").exists()


class TestSubmissionFlags:
    def test_pending_submission(self, store: EvaluationStore, complete_responses: dict) -> None:
        store.get_or_create(PAIR)
        store.get_or_create("other")
        _complete_all(store, complete_responses)
        assert store.pending_submission() == [PAIR]

        store.mark_submitted(PAIR)
        assert store.pending_submission() == []

        store.clear_submitted(PAIR)
        ev = store.get(PAIR)
        assert ev is not None
        assert ev.submitted is False
        assert ev.submitted_at is None
        assert store.pending_submission() == [PAIR]

    def test_progress(self, store: EvaluationStore, complete_responses: dict) -> None:
        assert store.progress(PAIR).completed == 0
        store.get_or_create(PAIR)
        store.record_category_result(PAIR, Category.STYLE, complete_responses)
        progress = store.progress(PAIR)
        assert (progress.completed, progress.total) == (1, 4)
        assert progress.completed_categories == [Category.STYLE]
        assert not progress.is_complete


def test_export(store: EvaluationStore, complete_responses: dict, tmp_path: Path) -> None:
    store.get_or_create(PAIR)
    _complete_all(store, complete_responses)
    target = tmp_path / "exports" / "all.json"

    count = store.export_evaluations(target, client={"userAgent": "test"})

    assert count == 1
    data = json.loads(target.read_text())
    assert data["totalPairs"] == 1
    assert data["metadata"] == {"userAgent": "test"}
    assert data["pairEvaluations"][PAIR]["completionStatus"]["style"] is True
    assert "exportedAt" in data
