"""
Request complexity classification.

Scores a free-text request from lexical heuristics and buckets it into
simple, medium or complex. Pure and deterministic.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Tuple


class Complexity(Enum):
    """Complexity buckets used for model routing."""
    SIMPLE = "simple"
    MEDIUM = "medium"
    COMPLEX = "complex"


ANALYTICAL_KEYWORDS = (
    "analyze",
    "compare",
    "contrast",
    "evaluate",
    "assess",
    "explain why",
    "reasoning",
    "pros and cons",
    "advantages",
    "disadvantages",
    "trade-offs",
    "implications",
    "consequences",
)

MULTI_STEP_KEYWORDS = (
    "step by step",
    "multiple steps",
    "workflow",
    "process",
    "breakdown",
    "detailed",
    "comprehensive",
    "in-depth",
    "complete",
    "entire",
    "architecture",
    "system design",
    "state machine",
    "sequence diagram",
    "flowchart",
    "integration",
    "microservices",
    "database",
    "authentication",
    "distributed",
    "multi-tier",
)

SIMPLICITY_KEYWORDS = (
    "basic",
    "simple",
    "quick",
    "small",
    "minimal",
    "org chart",
    "hierarchy",
    "list",
    "table",
    "bar chart",
    "pie chart",
    "timeline",
)

_DIGIT_PATTERN = re.compile(r"\d")
_QUOTED_PATTERN = re.compile(r"\"[^\"]+\"")
_BRAND_PATTERN = re.compile(
    r"\b(google|apple|microsoft|amazon|facebook|meta|tesla|netflix|openai)\b",
    re.IGNORECASE,
)

MAX_LENGTH_FACTOR = 0.3
MAX_ANALYTICAL_FACTOR = 0.4
MAX_MULTI_STEP_FACTOR = 0.2
SPECIFICITY_FACTOR = 0.1

COMPLEX_SCORE_THRESHOLD = 0.6
SIMPLE_SCORE_CEILING = 0.4
COMPLEX_MIN_KEYWORD_HITS = 2
LONG_REQUEST_CHARS = 200
SHORT_REQUEST_CHARS = 50


@dataclass(frozen=True)
class ComplexityAnalysis:
    """Score breakdown for one request."""
    score: float
    factors: Dict[str, float]
    indicators: Tuple[str, ...]
    keyword_hits: int
    simplicity_hits: int
    length: int


def _matches(text: str, keywords: Tuple[str, ...]) -> Tuple[str, ...]:
    return tuple(keyword for keyword in keywords if keyword in text)


def analyze_complexity(text: str) -> ComplexityAnalysis:
    """Compute the complexity score of a request.

    Four factors are clipped individually, summed, and the sum is clipped
    to 1.0:
    - length: len / 300, at most 0.3
    - analytical keywords: 0.2 per hit, at most 0.4
    - multi-step keywords: 0.1 per hit, at most 0.2
    - specificity: 0.1 when the text has no digit, quoted phrase or brand

    Args:
        text: Free-text request

    Returns:
        ComplexityAnalysis with score, per-factor values and indicators
    """
    lowered = text.lower()
    length = len(text)
    indicators = []

    length_factor = min(length / 300, MAX_LENGTH_FACTOR)
    if length > 100:
        indicators.append(f"long request ({length} chars)")

    analytical = _matches(lowered, ANALYTICAL_KEYWORDS)
    analytical_factor = min(0.2 * len(analytical), MAX_ANALYTICAL_FACTOR)
    if analytical:
        indicators.append(f"analytical: {', '.join(analytical)}")

    multi_step = _matches(lowered, MULTI_STEP_KEYWORDS)
    multi_step_factor = min(0.1 * len(multi_step), MAX_MULTI_STEP_FACTOR)
    if multi_step:
        indicators.append(f"multi-step: {', '.join(multi_step)}")

    is_specific = bool(
        _DIGIT_PATTERN.search(text)
        or _QUOTED_PATTERN.search(text)
        or _BRAND_PATTERN.search(text)
    )
    specificity_factor = 0.0 if is_specific else SPECIFICITY_FACTOR
    if not is_specific:
        indicators.append("general request")

    # Round away float noise so saturated factors reach exactly 1.0
    score = min(round(length_factor + analytical_factor + multi_step_factor + specificity_factor, 6), 1.0)

    return ComplexityAnalysis(
        score=score,
        factors={
            "length": length_factor,
            "analytical": analytical_factor,
            "multi_step": multi_step_factor,
            "specificity": specificity_factor,
        },
        indicators=tuple(indicators) or ("simple request",),
        keyword_hits=len(analytical) + len(multi_step),
        simplicity_hits=len(_matches(lowered, SIMPLICITY_KEYWORDS)),
        length=length,
    )


def classify_complexity(text: str) -> Complexity:
    """Bucket a request into simple, medium or complex.

    Complex needs a high score driven by at least two complexity keywords
    or a long request. Simple needs a low score plus an explicit simplicity
    keyword or a short request. Everything else is medium.
    """
    analysis = analyze_complexity(text)

    if analysis.score > COMPLEX_SCORE_THRESHOLD and (
        analysis.keyword_hits >= COMPLEX_MIN_KEYWORD_HITS
        or analysis.length > LONG_REQUEST_CHARS
    ):
        return Complexity.COMPLEX

    if analysis.score <= SIMPLE_SCORE_CEILING and (
        analysis.simplicity_hits >= 1 or analysis.length < SHORT_REQUEST_CHARS
    ):
        return Complexity.SIMPLE

    return Complexity.MEDIUM
