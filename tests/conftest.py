"""Shared test fixtures for chartpair tests."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from pathlib import Path

import httpx
import pytest

from chartpair.models import Image, Pair, PairMetadata
from chartpair.store import EvaluationStore

BASE_URL = "http://assets.test/pairs"

COMPLETE_RESPONSES = {
    "primary": "Chart A",
    "chart_a": 6,
    "chart_b": 3,
    "confidence": 4,
    "rationale": "Fewer gridlines.",
}


def make_pair(
    dataset: str = "Inc500Charts",
    summary_set: str = "sum3_ques2",
    pair_dir: str = "pair2",
    names: tuple[str, str] = ("8.png", "10.png"),
) -> Pair:
    """Build a Pair without going through the resolver."""
    path = f"{dataset}/{summary_set}/{pair_dir}"
    images = tuple(
        Image(name=n, path=f"{path}/{n}", url=f"{BASE_URL}/{path}/{n}") for n in names
    )
    return Pair(
        pair_id=f"{dataset}_{summary_set}_{pair_dir}",
        dataset=dataset,
        summary_set=summary_set,
        pair_dir=pair_dir,
        path=path,
        images=images,  # type: ignore[arg-type]
        metadata=PairMetadata(
            dataset="Inc5000 Company List 2014",
            dataset_key=dataset,
            summary_set=summary_set,
            summary=3,
            question=2,
            pair_number=int(pair_dir.removeprefix("pair")),
        ),
    )


class AssetServer:
    """In-memory asset host for ``httpx.MockTransport``.

    ``files`` are resource paths relative to the asset root.  A directory URL
    (trailing slash) answers *dir_status* when the directory has files,
    404 otherwise.  Every requested path is recorded in ``requests``.
    """

    def __init__(
        self,
        files: Iterable[str],
        *,
        dir_status: int = 404,
        fail: Callable[[str], bool] | None = None,
    ) -> None:
        self.files = set(files)
        self.dir_status = dir_status
        self.fail = fail
        self.requests: list[str] = []

    def _path(self, request: httpx.Request) -> str:
        prefix = httpx.URL(BASE_URL).path
        return request.url.path[len(prefix):].lstrip("/")

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = self._path(request)
        self.requests.append(path)
        if self.fail is not None and self.fail(path):
            raise httpx.ConnectError("connection refused", request=request)
        if path.endswith("/"):
            if any(f.startswith(path) for f in self.files):
                return httpx.Response(self.dir_status)
            return httpx.Response(404)
        if path in self.files:
            return httpx.Response(200, content=b"\x89PNG")
        return httpx.Response(404)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture(autouse=True)
def _reset_logging():
    """Drop handlers installed by setup_logging so later tests start clean."""
    yield
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    logging.getLogger("chartpair.oracle.probe").setLevel(logging.NOTSET)
    logging.basicConfig(level=logging.WARNING, force=True)


@pytest.fixture
def sample_pair() -> Pair:
    return make_pair()


@pytest.fixture
def sample_pairs() -> list[Pair]:
    return [make_pair(pair_dir=f"pair{n}") for n in (1, 2, 3)]


@pytest.fixture
def store(tmp_path: Path) -> EvaluationStore:
    """An empty store persisting under a temporary state dir."""
    return EvaluationStore.for_state_dir(tmp_path)


@pytest.fixture
def complete_responses() -> dict[str, object]:
    return dict(COMPLETE_RESPONSES)
