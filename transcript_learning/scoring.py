"""
Transcript Learning: Scoring Engine

Pure functions. No storage access, no logging, no clock.

SCALES:
- Effectiveness: integer 0-100, blended with the prior stored score
- Satisfaction: 1-5 with one decimal (finer grained on purpose)
- Trend: improving / declining / stable / insufficient_data

The constants below are heuristic placeholders. They are not derived
from any statistical model.
"""

import math
from typing import Any, Mapping, Optional, Sequence

from .learning_model import EffectivenessLevel, TrendClass, SCORE_MIN, SCORE_MAX, validate_number


# -----------------------------------------------------------------------------
# Constants (heuristic)
# -----------------------------------------------------------------------------
BASE_SCORE = 50
SUCCESS_BONUS = 30
CONFIDENCE_WEIGHT = 20
SATISFACTION_HIGH = 0.8
SATISFACTION_HIGH_BONUS = 20
SATISFACTION_GOOD = 0.6
SATISFACTION_GOOD_BONUS = 10
SATISFACTION_LOW = 0.4
SATISFACTION_LOW_PENALTY = 20

SATISFACTION_BASE = 3.0
SATISFACTION_STEP = 0.5
RICH_CONTENT_CHARS = 500

TREND_MIN_SAMPLES = 6
TREND_THRESHOLD = 0.2

LEVEL_EXCELLENT = 80
LEVEL_GOOD = 60
LEVEL_AVERAGE = 40


def round_half_up(value: float, digits: int = 0) -> float:
    """Round halves away from zero for non-negative values (not banker's rounding)."""
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def _get(data: Optional[Mapping[str, Any]], *keys: str) -> Any:
    if not data:
        return None
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _non_empty(value: Any) -> bool:
    return value is not None and hasattr(value, "__len__") and len(value) > 0


# -----------------------------------------------------------------------------
# Effectiveness
# -----------------------------------------------------------------------------
def raw_effectiveness_score(
    outcome: Optional[Mapping[str, Any]],
    feedback: Optional[Mapping[str, Any]] = None,
) -> float:
    """
    Unclamped, unrounded score before any blending.

    Raises:
        ValidationError: confidence or satisfaction is not a number in [0, 1]
    """
    score = float(BASE_SCORE)
    if _get(outcome, "success"):
        score += SUCCESS_BONUS

    confidence = _get(outcome, "confidence")
    if confidence is not None:
        confidence = validate_number(confidence, "confidence", 0.0, 1.0)
        score += confidence * CONFIDENCE_WEIGHT

    satisfaction = _get(feedback, "satisfaction")
    if satisfaction is not None:
        satisfaction = validate_number(satisfaction, "satisfaction", 0.0, 1.0)
        if satisfaction > SATISFACTION_HIGH:
            score += SATISFACTION_HIGH_BONUS
        elif satisfaction > SATISFACTION_GOOD:
            score += SATISFACTION_GOOD_BONUS
        elif satisfaction < SATISFACTION_LOW:
            score -= SATISFACTION_LOW_PENALTY
    return score


def compute_effectiveness_score(
    outcome: Optional[Mapping[str, Any]],
    feedback: Optional[Mapping[str, Any]] = None,
    prior_score: Optional[float] = None,
) -> int:
    """
    Effectiveness score in [0, 100].

    A prior score (including 0) is averaged with the new total before
    clamping, which halves the weight of each new observation.
    """
    score = raw_effectiveness_score(outcome, feedback)
    if prior_score is not None:
        score = (score + prior_score) / 2
    score = min(max(score, SCORE_MIN), SCORE_MAX)
    return int(round_half_up(score))


def generate_optimization_notes(
    outcome: Optional[Mapping[str, Any]],
    feedback: Optional[Mapping[str, Any]] = None,
) -> str:
    notes = []
    execution_time = _get(outcome, "execution_time", "executionTime")
    if execution_time:
        notes.append(f"execution time: {execution_time}ms")

    accuracy = _get(outcome, "accuracy")
    if accuracy:
        accuracy = validate_number(accuracy, "accuracy", float("-inf"), float("inf"))
        notes.append(f"accuracy: {accuracy * 100:.1f}%")

    improvements = _get(feedback, "improvements")
    if improvements:
        if isinstance(improvements, (list, tuple)):
            improvements = ", ".join(str(i) for i in improvements)
        notes.append(f"suggested improvements: {improvements}")
    return "; ".join(notes)


def effectiveness_level(score: float) -> EffectivenessLevel:
    if score >= LEVEL_EXCELLENT:
        return EffectivenessLevel.EXCELLENT
    if score >= LEVEL_GOOD:
        return EffectivenessLevel.GOOD
    if score >= LEVEL_AVERAGE:
        return EffectivenessLevel.AVERAGE
    return EffectivenessLevel.POOR


# -----------------------------------------------------------------------------
# Satisfaction
# -----------------------------------------------------------------------------
def compute_satisfaction_score(
    result: Optional[Mapping[str, Any]],
    feedback: Optional[Mapping[str, Any]] = None,
) -> float:
    """
    Satisfaction in [1, 5].

    An explicit rating must be a finite number; it is clamped and
    returned unrounded. Otherwise the score is estimated from how much
    structure the analysis produced.

    Raises:
        ValidationError: rating is not a finite number
    """
    rating = _get(feedback, "rating")
    if rating is not None:
        rating = validate_number(rating, "rating", float("-inf"), float("inf"))
        return min(max(float(rating), 1.0), 5.0)

    score = SATISFACTION_BASE
    if _non_empty(_get(result, "participants")):
        score += SATISFACTION_STEP
    if _non_empty(_get(result, "decisions")):
        score += SATISFACTION_STEP
    if _non_empty(_get(result, "action_items", "actionItems")):
        score += SATISFACTION_STEP
    if _non_empty(_get(result, "insights")):
        score += SATISFACTION_STEP
    content = _get(result, "content")
    if isinstance(content, str) and len(content) > RICH_CONTENT_CHARS:
        score += SATISFACTION_STEP
    return min(round_half_up(score, 1), 5.0)


def average_score(values: Sequence[float]) -> float:
    """Mean rounded to one decimal; 0 for an empty sequence."""
    if not values:
        return 0.0
    return round_half_up(sum(values) / len(values), 1)


# -----------------------------------------------------------------------------
# Trend
# -----------------------------------------------------------------------------
def classify_trend(
    scores: Sequence[float],
    min_samples: int = TREND_MIN_SAMPLES,
    threshold: float = TREND_THRESHOLD,
) -> TrendClass:
    """
    Compare the newer half of a chronological series against the older half.

    With an odd count the extra sample belongs to the older half. Each
    half is averaged to one decimal before comparing, so the trend agrees
    with the averages reported next to it. The difference is rounded to
    6 decimals so that exactly +/-threshold is stable despite float noise.
    """
    if len(scores) < max(min_samples, 2):
        return TrendClass.INSUFFICIENT_DATA

    split = math.ceil(len(scores) / 2)
    older = scores[:split]
    newer = scores[split:]
    difference = round(average_score(newer) - average_score(older), 6)

    if difference > threshold:
        return TrendClass.IMPROVING
    if difference < -threshold:
        return TrendClass.DECLINING
    return TrendClass.STABLE
