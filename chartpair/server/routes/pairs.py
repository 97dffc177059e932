"""Pairs and evaluations API endpoints.

The browser front-end renders forms and images; these endpoints hand it the
resolved pairs and record what the rater saves.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from pydantic import BaseModel

from chartpair.catalog import CATEGORY_ORDER
from chartpair.models import Category, Image, PairFilter, PairMetadata, SubmissionOutcome
from chartpair.resolver import pair_statistics
from chartpair.session import SurveySession
from chartpair.store import ResponseValidationError

router = APIRouter(prefix="/api")


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class PairSummaryResponse(BaseModel):
    """One row of the pair list."""

    index: int
    pair_id: str
    dataset: str
    summary_set: str
    pair_dir: str
    metadata: PairMetadata
    completed_categories: list[Category]
    submitted: bool


class PairsListResponse(BaseModel):
    pairs: list[PairSummaryResponse]
    total: int


class CategoryStateResponse(BaseModel):
    completed: bool
    responses: dict[str, Any]
    timestamp: str | None


class PairDetailResponse(BaseModel):
    """A pair with its images and the rater's saved answers."""

    index: int
    total: int
    pair_id: str
    images: list[Image]
    metadata: PairMetadata
    categories: list[Category]
    evaluations: dict[str, CategoryStateResponse]
    complete: bool
    submitted: bool
    submitted_at: str | None


class SaveResponse(BaseModel):
    pair_id: str
    category: Category
    pair_complete: bool
    submission: SubmissionOutcome
    message: str


class SubmitResponse(BaseModel):
    pair_id: str
    submission: SubmissionOutcome
    error: str | None = None


class StatisticsResponse(BaseModel):
    total_pairs: int
    total_images: int
    by_dataset: dict[str, int]
    by_summary_set: dict[str, int]
    pairs_complete: int
    pairs_submitted: int
    all_complete: bool


# ---------------------------------------------------------------------------
# Session dependency
# ---------------------------------------------------------------------------


def _get_session(request: Request) -> SurveySession:
    session = getattr(request.app.state, "session", None)
    if session is None:
        raise HTTPException(status_code=503, detail="Pairs are still being resolved")
    return session


def _open(session: SurveySession, pair_id: str) -> int:
    if session.open_pair(pair_id) is None:
        raise HTTPException(status_code=404, detail="Pair not found")
    return session.index


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/pairs", response_model=PairsListResponse)
def list_pairs(
    dataset: str | None = None,
    summary: int | None = None,
    question: int | None = None,
    session: SurveySession = Depends(_get_session),
) -> PairsListResponse:
    """Resolved pairs in navigation order, optionally filtered."""
    pair_filter = PairFilter(dataset=dataset, summary=summary, question=question)
    rows: list[PairSummaryResponse] = []
    for index, pair in enumerate(session.pairs):
        if not pair_filter.matches(pair):
            continue
        progress = session.store.progress(pair.pair_id)
        rows.append(
            PairSummaryResponse(
                index=index,
                pair_id=pair.pair_id,
                dataset=pair.dataset,
                summary_set=pair.summary_set,
                pair_dir=pair.pair_dir,
                metadata=pair.metadata,
                completed_categories=progress.completed_categories,
                submitted=progress.submitted,
            )
        )
    return PairsListResponse(pairs=rows, total=len(rows))


@router.get("/pairs/{pair_id}", response_model=PairDetailResponse)
def get_pair(
    pair_id: str,
    session: SurveySession = Depends(_get_session),
) -> PairDetailResponse:
    """Open a pair (starting its evaluation if new) and return its state."""
    index = _open(session, pair_id)
    pair = session.pairs[index]
    evaluation = session.current_evaluation
    assert evaluation is not None

    return PairDetailResponse(
        index=index,
        total=len(session.pairs),
        pair_id=pair.pair_id,
        images=list(pair.images),
        metadata=pair.metadata,
        categories=CATEGORY_ORDER,
        evaluations={
            name: CategoryStateResponse(
                completed=result.completed,
                responses=result.responses.model_dump(),
                timestamp=result.timestamp,
            )
            for name, result in evaluation.evaluations.items()
        },
        complete=evaluation.is_complete,
        submitted=evaluation.submitted,
        submitted_at=evaluation.submitted_at,
    )


@router.put("/pairs/{pair_id}/evaluations/{category}", response_model=SaveResponse)
async def save_category(
    pair_id: str,
    category: Category,
    responses: dict[str, Any] = Body(...),
    session: SurveySession = Depends(_get_session),
) -> SaveResponse:
    """Save one category's answers; submits the pair once all four are in."""
    _open(session, pair_id)
    try:
        result = await session.save(responses, category)
    except ResponseValidationError as exc:
        raise HTTPException(
            status_code=422,
            detail={"message": str(exc), "missing": exc.missing, "invalid": exc.invalid},
        ) from exc
    return SaveResponse(
        pair_id=result.pair_id,
        category=result.category,
        pair_complete=result.pair_complete,
        submission=result.submission,
        message=result.message,
    )


@router.post("/pairs/{pair_id}/submit", response_model=SubmitResponse)
async def submit_pair(
    pair_id: str,
    session: SurveySession = Depends(_get_session),
) -> SubmitResponse:
    """Manually retry delivery of a complete pair."""
    _open(session, pair_id)
    outcome = await session.gateway.submit_if_complete(pair_id)
    error = session.gateway.errors.get(pair_id) if outcome == SubmissionOutcome.FAILED else None
    return SubmitResponse(pair_id=pair_id, submission=outcome, error=error)


@router.get("/statistics", response_model=StatisticsResponse)
def get_statistics(
    session: SurveySession = Depends(_get_session),
) -> StatisticsResponse:
    stats = pair_statistics(session.pairs)
    summary = session.summary()
    return StatisticsResponse(
        total_pairs=stats.total_pairs,
        total_images=stats.total_images,
        by_dataset=stats.by_dataset,
        by_summary_set=stats.by_summary_set,
        pairs_complete=summary.pairs_complete,
        pairs_submitted=summary.pairs_submitted,
        all_complete=summary.all_complete,
    )
