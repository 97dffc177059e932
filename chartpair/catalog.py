"""Static survey catalogue: datasets, summary sets, image names, categories.

Everything here is fixed configuration.  Hosts without directory listing
cannot discover summary sets at runtime, so the per-dataset lists below are
the source of truth for every deployment mode.
"""

from __future__ import annotations

import re

from chartpair.models import PRIMARY_CHOICES, Category  # noqa: F401 (re-exported)

# ---------------------------------------------------------------------------
# Datasets (iteration order is the pair order shown to raters)
# ---------------------------------------------------------------------------

DATASETS: dict[str, str] = {
    "ATP_rendered_charts": "ATP Number 1 Rankings",
    "fifa18_rendered_charts": "FIFA 18 Dataset",
    "Inc500Charts": "Inc5000 Company List 2014",
}

SUMMARY_SETS: dict[str, list[str]] = {
    "ATP_rendered_charts": ["sum1_ques3", "sum3_ques2"],
    "fifa18_rendered_charts": ["sum1_ques1", "sum1_ques2", "sum3_ques1", "sum3_ques2"],
    "Inc500Charts": ["sum1_ques1", "sum3_ques1", "sum3_ques2"],
}


def dataset_display_name(dataset: str) -> str:
    """Human-readable dataset name, or the key itself when unknown."""
    return DATASETS.get(dataset, dataset)


# ---------------------------------------------------------------------------
# Summary-set keys
# ---------------------------------------------------------------------------

_SUMMARY_SET_RE = re.compile(r"^sum(\d+)_ques(\d+)")


def parse_summary_set(key: str) -> tuple[int, int]:
    """Split ``sum{N}_ques{M}`` into ``(N, M)``.

    Trailing suffixes (``sum1_ques1_25``) are tolerated.

    Raises:
        ValueError: if the key does not start with ``sum{N}_ques{M}``.
    """
    match = _SUMMARY_SET_RE.match(key)
    if match is None:
        raise ValueError(f"Not a summary-set key: {key!r}")
    return int(match.group(1)), int(match.group(2))


def summary_set_key(summary: int, question: int) -> str:
    return f"sum{summary}_ques{question}"


# ---------------------------------------------------------------------------
# Pair directories and image names
# ---------------------------------------------------------------------------

PAIR_DIR_PREFIX = "pair"
VIRTUAL_PAIR_PREFIX = "virtual_pair_"

IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".gif", ".svg")


def pair_dir_name(number: int) -> str:
    return f"{PAIR_DIR_PREFIX}{number}"


def _candidate_image_names() -> tuple[str, ...]:
    names: list[str] = []
    for i in range(1, 31):
        for ext in IMAGE_EXTENSIONS:
            names.append(f"{i}{ext}")
    for i in range(1, 16):
        for ext in IMAGE_EXTENSIONS:
            names.append(f"chart{i}{ext}")
            names.append(f"image{i}{ext}")
    return tuple(names)


# Bounded enumeration of file names an existence probe may look for.  Images
# with other names are invisible to the probing strategy.
CANDIDATE_IMAGE_NAMES = _candidate_image_names()

# Marker files checked when a directory URL itself gives no answer.  A
# directory holding none of these is reported absent even if it exists.
DIRECTORY_MARKERS = tuple(f"{i}.png" for i in range(1, 31))

_LEADING_INT_RE = re.compile(r"\d+")


def image_sort_key(name: str) -> tuple[int, str]:
    """Sort key for image file names: first integer in the name, then the name.

    ``"8.png"`` sorts before ``"10.png"``.  Names without digits sort as 0.
    """
    match = _LEADING_INT_RE.search(name)
    number = int(match.group(0)) if match else 0
    return number, name


def is_image_name(name: str) -> bool:
    return name.lower().endswith(IMAGE_EXTENSIONS)


# ---------------------------------------------------------------------------
# Categories and response rules
# ---------------------------------------------------------------------------

CATEGORY_ORDER: list[Category] = [
    Category.CLUTTER,
    Category.COGNITIVE_LOAD,
    Category.INTERPRETABILITY,
    Category.STYLE,
]

CATEGORY_LABELS: dict[Category, str] = {
    Category.CLUTTER: "Visual Clutter",
    Category.COGNITIVE_LOAD: "Cognitive Load",
    Category.INTERPRETABILITY: "Interpretability",
    Category.STYLE: "Style",
}

_REQUIRED_FIELDS = ("primary", "chart_a", "chart_b")


def required_fields(category: Category | str) -> tuple[str, ...]:
    """Response fields that must be present before a category can be saved.

    The same three fields are mandatory for every category; confidence and
    rationale are always optional.
    """
    Category(category)  # ValueError for unknown categories
    return _REQUIRED_FIELDS
