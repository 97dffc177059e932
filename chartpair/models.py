"""Pydantic data models for pairs, responses and evaluation state.

Pair records are immutable reference data built once by the resolver.
Evaluation records are the unit of persistence: they are written with
camelCase keys (``pairId``, ``completionStatus`` ...) so that state saved by
earlier browser-only versions of the survey restores unchanged.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, RootModel, field_validator, model_validator
from pydantic.alias_generators import to_camel


class Category(str, Enum):
    """Rating dimension scored for every pair.

    The values are stored verbatim in state files and submission payloads.
    """

    CLUTTER = "clutter"
    COGNITIVE_LOAD = "cognitive_load"
    INTERPRETABILITY = "interpretability"
    STYLE = "style"


class SubmissionOutcome(str, Enum):
    """Result of one ``submit_if_complete`` call."""

    SENT = "sent"
    ALREADY_SUBMITTED = "already_submitted"
    FAILED = "failed"
    INCOMPLETE = "incomplete"  # nothing to send yet


PRIMARY_CHOICES = ("Chart A", "Chart B", "About the same")

PrimaryChoice = Literal["Chart A", "Chart B", "About the same"]

RATIONALE_MAX_CHARS = 500


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Pairs
# ---------------------------------------------------------------------------


class Image(BaseModel):
    """One chart image inside a pair."""

    model_config = ConfigDict(frozen=True)

    name: str  # file name, e.g. "8.png"
    path: str  # resource path relative to the asset root
    url: str  # presentation URL (may carry a ?v= cache-buster)


class PairMetadata(_CamelModel):
    """Descriptive metadata carried by a pair and copied into its evaluation."""

    dataset: str = "unknown"  # display name
    dataset_key: str = ""
    summary_set: str = ""
    summary: int | None = None
    question: int | None = None
    pair_number: int | None = None


class Pair(BaseModel):
    """Two images presented side by side as Chart A and Chart B."""

    model_config = ConfigDict(frozen=True)

    pair_id: str
    dataset: str
    summary_set: str
    pair_dir: str  # "pair3" or "virtual_pair_1"
    path: str
    images: tuple[Image, Image]
    metadata: PairMetadata
    virtual: bool = False

    @property
    def chart_a(self) -> Image:
        return self.images[0]

    @property
    def chart_b(self) -> Image:
        return self.images[1]


class PairFilter(BaseModel):
    """Optional narrowing of the pair scan.  Provided fields are ANDed."""

    dataset: str | None = None
    summary: int | None = None
    question: int | None = None

    @classmethod
    def from_query(cls, params: Mapping[str, str | None]) -> PairFilter:
        """Build a filter from query-string style parameters.

        Empty values are treated as absent.
        """
        values = {k: params.get(k) or None for k in ("dataset", "summary", "question")}
        return cls.model_validate(values)

    @property
    def is_empty(self) -> bool:
        return self.dataset is None and self.summary is None and self.question is None

    def matches(self, pair: Pair) -> bool:
        if self.dataset is not None and pair.dataset != self.dataset:
            return False
        if self.summary is not None and pair.metadata.summary != self.summary:
            return False
        if self.question is not None and pair.metadata.question != self.question:
            return False
        return True


# ---------------------------------------------------------------------------
# Responses and evaluation state
# ---------------------------------------------------------------------------


class ResponseBundle(BaseModel):
    """A rater's answers for one category of one pair.

    Every field is optional at the type level.  Which fields must be filled
    in before saving is decided by ``catalog.required_fields``.
    """

    model_config = ConfigDict(extra="ignore")

    primary: PrimaryChoice | None = None
    chart_a: int | None = Field(default=None, ge=1, le=7)
    chart_b: int | None = Field(default=None, ge=1, le=7)
    confidence: int | None = Field(default=None, ge=1, le=5)
    rationale: str = Field(default="", max_length=RATIONALE_MAX_CHARS)

    @field_validator("primary", "chart_a", "chart_b", "confidence", mode="before")
    @classmethod
    def _blank_is_unset(cls, value: object) -> object:
        # Unanswered form controls arrive as empty strings
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("rationale", mode="before")
    @classmethod
    def _strip_rationale(cls, value: object) -> object:
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
        return value

    def missing(self, fields: tuple[str, ...]) -> list[str]:
        """Names from *fields* that are unset or blank."""
        out: list[str] = []
        for name in fields:
            value = getattr(self, name)
            if value is None or (isinstance(value, str) and not value):
                out.append(name)
        return out


class CategoryResult(BaseModel):
    """Completion flag, answers and save time for one category."""

    completed: bool = False
    responses: ResponseBundle = Field(default_factory=ResponseBundle)
    timestamp: str | None = None


def _blank_evaluations() -> dict[str, CategoryResult]:
    return {c.value: CategoryResult() for c in Category}


def _blank_status() -> dict[str, bool]:
    return {c.value: False for c in Category}


class PairEvaluation(_CamelModel):
    """Evaluation state of one pair across all categories."""

    pair_id: str
    metadata: PairMetadata = Field(default_factory=PairMetadata)
    evaluations: dict[str, CategoryResult] = Field(default_factory=_blank_evaluations)
    started_at: str
    completed_at: str | None = None
    completion_status: dict[str, bool] = Field(default_factory=_blank_status)
    submitted: bool = False
    submitted_at: str | None = None

    @model_validator(mode="after")
    def _fill_categories(self) -> PairEvaluation:
        # Older state files may predate a category; treat it as not started
        for category in Category:
            self.evaluations.setdefault(category.value, CategoryResult())
            self.completion_status.setdefault(category.value, False)
        return self

    @property
    def is_complete(self) -> bool:
        return all(self.completion_status.get(c.value, False) for c in Category)

    @property
    def completed_categories(self) -> list[Category]:
        return [c for c in Category if self.completion_status.get(c.value, False)]


class EvaluationMap(RootModel[dict[str, PairEvaluation]]):
    """The whole persisted state: pair id → evaluation."""

    root: dict[str, PairEvaluation] = Field(default_factory=dict)
