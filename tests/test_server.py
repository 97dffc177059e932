"""Tests for the FastAPI server: health, pairs, evaluations and statistics."""

from __future__ import annotations

from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

from chartpair import __version__
from chartpair.config import load_settings
from chartpair.gateway import SubmissionGateway
from chartpair.models import Category
from chartpair.server.app import create_app
from chartpair.session import SurveySession
from chartpair.store import EvaluationStore
from conftest import COMPLETE_RESPONSES

PAIR2 = "Inc500Charts_sum3_ques2_pair2"


class _Sink:
    def __init__(self, status: int = 200) -> None:
        self.status = status
        self.count = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.count += 1
        return httpx.Response(self.status)


@pytest.fixture()
def sink() -> _Sink:
    return _Sink()


@pytest.fixture()
def session(sample_pairs, store: EvaluationStore, sink: _Sink) -> SurveySession:
    client = httpx.AsyncClient(transport=httpx.MockTransport(sink.handler))
    gateway = SubmissionGateway(store, "https://collect.test/submit", client=client)
    return SurveySession(sample_pairs, store, gateway)


@pytest.fixture()
def client(session: SurveySession, tmp_path: Path) -> TestClient:
    settings = load_settings(deployment_mode="static", state_dir=tmp_path)
    return TestClient(create_app(settings, session=session))


def _save(client: TestClient, category: str, body: dict | None = None):
    return client.put(
        f"/api/pairs/{PAIR2}/evaluations/{category}",
        json=body if body is not None else COMPLETE_RESPONSES,
    )


class TestHealth:
    def test_ok(self, client: TestClient) -> None:
        data = client.get("/api/health").json()
        assert data == {"status": "ok", "version": __version__, "mode": "static"}


class TestPairs:
    def test_list(self, client: TestClient) -> None:
        data = client.get("/api/pairs").json()
        assert data["total"] == 3
        assert [row["index"] for row in data["pairs"]] == [0, 1, 2]
        assert data["pairs"][1]["pair_id"] == PAIR2
        assert data["pairs"][1]["completed_categories"] == []

    def test_list_filtered(self, client: TestClient) -> None:
        assert client.get("/api/pairs", params={"dataset": "ATP_rendered_charts"}).json()["total"] == 0
        assert client.get("/api/pairs", params={"summary": 3, "question": 2}).json()["total"] == 3

    def test_detail(self, client: TestClient) -> None:
        resp = client.get(f"/api/pairs/{PAIR2}")
        assert resp.status_code == 200
        data = resp.json()
        assert data["index"] == 1
        assert [img["name"] for img in data["images"]] == ["8.png", "10.png"]
        assert data["categories"] == [c.value for c in Category]
        assert data["evaluations"]["clutter"]["completed"] is False
        assert data["complete"] is False

    def test_unknown_pair(self, client: TestClient) -> None:
        assert client.get("/api/pairs/nope").status_code == 404
        assert _save_unknown(client).status_code == 404


def _save_unknown(client: TestClient):
    return client.put("/api/pairs/nope/evaluations/clutter", json=COMPLETE_RESPONSES)


class TestEvaluations:
    def test_save_category(self, client: TestClient) -> None:
        resp = _save(client, "interpretability")
        assert resp.status_code == 200
        data = resp.json()
        assert data["pair_complete"] is False
        assert data["submission"] == "incomplete"

        detail = client.get(f"/api/pairs/{PAIR2}").json()
        assert detail["evaluations"]["interpretability"]["responses"]["chart_a"] == 6

    def test_incomplete_form_rejected(self, client: TestClient) -> None:
        resp = _save(client, "clutter", {"primary": "Chart A", "chart_a": 9})
        assert resp.status_code == 422
        detail = resp.json()["detail"]
        assert detail["invalid"] == ["chart_a"]
        assert "Visual Clutter" in detail["message"]

    def test_unknown_category(self, client: TestClient) -> None:
        assert _save(client, "colour").status_code == 422

    def test_fourth_save_submits_once(self, client: TestClient, sink: _Sink) -> None:
        outcomes = [_save(client, c.value).json()["submission"] for c in Category]
        assert outcomes == ["incomplete", "incomplete", "incomplete", "sent"]
        assert sink.count == 1

        resp = client.post(f"/api/pairs/{PAIR2}/submit")
        assert resp.json()["submission"] == "already_submitted"
        assert sink.count == 1

    def test_manual_retry_after_failure(self, client: TestClient, sink: _Sink) -> None:
        sink.status = 500
        last = [_save(client, c.value).json() for c in Category][-1]
        assert last["submission"] == "failed"
        assert "retried" in last["message"]

        failed = client.post(f"/api/pairs/{PAIR2}/submit").json()
        assert failed["error"] == "HTTP 500"

        sink.status = 200
        resp = client.post(f"/api/pairs/{PAIR2}/submit").json()
        assert resp == {"pair_id": PAIR2, "submission": "sent", "error": None}
        assert sink.count == 3

    def test_bad_submit_url_keeps_pair_retryable(
        self, session: SurveySession, store: EvaluationStore, tmp_path: Path
    ) -> None:
        session.gateway.submit_url = "https://"
        settings = load_settings(deployment_mode="static", state_dir=tmp_path)
        client = TestClient(create_app(settings, session=session))

        last = [_save(client, c.value) for c in Category][-1]

        assert last.status_code == 200
        assert last.json()["submission"] == "failed"
        assert store.pending_submission() == [PAIR2]
        failed = client.post(f"/api/pairs/{PAIR2}/submit").json()
        assert failed["submission"] == "failed"
        assert failed["error"]


def test_statistics(client: TestClient) -> None:
    for category in Category:
        _save(client, category.value)
    data = client.get("/api/statistics").json()
    assert data["total_pairs"] == 3
    assert data["total_images"] == 6
    assert data["by_summary_set"] == {"sum3_ques2": 3}
    assert data["pairs_complete"] == 1
    assert data["pairs_submitted"] == 1
    assert data["all_complete"] is False


def test_startup_resolves_pairs(tmp_path: Path) -> None:
    settings = load_settings(deployment_mode="static", state_dir=tmp_path)
    app = create_app(settings)
    with TestClient(app) as client:
        assert client.get("/api/health").json()["status"] == "ok"
        assert client.get("/api/pairs").json()["total"] == 24


def test_asset_dir_mounted(tmp_path: Path, session: SurveySession) -> None:
    image = tmp_path / "assets" / "ds" / "sum1_ques1" / "pair1" / "1.png"
    image.parent.mkdir(parents=True)
    image.write_bytes(b"\x89PNG")
    settings = load_settings(asset_dir=tmp_path / "assets", state_dir=tmp_path)

    client = TestClient(create_app(settings, session=session))
    resp = client.get("/pairs/ds/sum1_ques1/pair1/1.png")
    assert resp.status_code == 200
    assert resp.content == b"\x89PNG"
