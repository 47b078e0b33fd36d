"""
Transcript Learning: Recommendation Layer

Turns search hits and aggregates into suggested analysis approaches.

RULES:
- With no patterns and no method feedback for a context, a canned
  three-step approach is returned (one per known file type, the
  unknown template otherwise)
- Otherwise the most reinforced pattern is the primary approach, the
  next two are alternatives, and a highly rated method (>= 4) is
  offered as an adaptation
- Confidence is a heuristic placeholder:
  (sum of success counts + sum of satisfaction scores)
  / max(evidence count * 10, 1), capped at 1
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from .aggregation import AggregationEngine
from .learning_model import (
    ApproachRecommendation,
    FileType,
    RecordKind,
    SearchOptions,
    SearchResults,
    timestamp_now,
)
from .learning_store import LearningStore
from .scoring import average_score
from .search_engine import SearchEngine

logger = logging.getLogger("learning_recommendation")


# -----------------------------------------------------------------------------
# Default Approaches
# -----------------------------------------------------------------------------
DEFAULT_APPROACHES = {
    FileType.MEETING.value: (
        "Extract the participants",
        "Analyze what each participant said",
        "Organize the decisions",
    ),
    FileType.PERSONAL.value: (
        "Extract the main themes",
        "Analyze feelings and insights",
        "Suggest next actions",
    ),
    FileType.PROPOSAL.value: (
        "Summarize the proposal",
        "Organize the stakeholders",
        "Clarify the next steps",
    ),
    FileType.UNKNOWN.value: (
        "Classify the content",
        "Extract the main elements",
        "Suggest a suitable analysis method",
    ),
}

ALTERNATIVE_COUNT = 2
ADAPTATION_MIN_SATISFACTION = 4.0

METHOD_RECOMMENDATION_WINDOW_DAYS = 60
METHOD_RECOMMENDATION_MIN_AVG = 4.0
METHOD_EXCELLENT_AVG = 4.5
EXTENSIVE_USAGE = 10
SUFFICIENT_USAGE = 5

LOW_FEEDBACK_RATIO = 0.1
LOW_METHOD_SATISFACTION = 3.0

REFERENCE_PATTERN_LIMIT = 5
REFERENCE_METHOD_LIMIT = 5
REFERENCE_CONTEXT_LIMIT = 3
REFERENCE_EXAMPLE_LIMIT = 3


def _numbered(steps: Sequence[str]) -> str:
    return "\n".join(f"{i}. {step}" for i, step in enumerate(steps, start=1))


def default_approach(context: Optional[str]) -> ApproachRecommendation:
    key = context if context in DEFAULT_APPROACHES else FileType.UNKNOWN.value
    steps = DEFAULT_APPROACHES[key]
    return ApproachRecommendation(
        primary=_numbered(steps),
        reasoning=f"standard approach for {key} analysis",
        confidence=0.0,
        steps=steps,
    )


def approach_confidence(patterns: Sequence[Any], methods: Sequence[Any]) -> float:
    pattern_weight = sum(p.success_count for p in patterns)
    method_weight = sum(m.user_satisfaction_score or 0 for m in methods)
    evidence = len(patterns) + len(methods)
    return min((pattern_weight + method_weight) / max(evidence * 10, 1), 1.0)


def recommend_approach(context: Optional[str], search_results: SearchResults) -> ApproachRecommendation:
    """
    Recommend an approach from pattern hits and method feedback hits.
    """
    patterns = sorted(
        (h.record for h in search_results.patterns),
        key=lambda p: (-p.success_count, p.id),
    )
    methods = [h.record for h in search_results.feedback]
    if not patterns and not methods:
        return default_approach(context)

    fallback = default_approach(context)
    top = patterns[0] if patterns else None
    rated = [m for m in methods if m.user_satisfaction_score >= ADAPTATION_MIN_SATISFACTION]
    adaptation = None
    if rated:
        best = max(rated, key=lambda m: (m.user_satisfaction_score, m.created_at))
        adaptation = {
            "suggestion": best.analysis_method,
            "reason": f"user satisfaction {best.user_satisfaction_score}/5",
            "feedback": best.specific_feedback,
        }

    return ApproachRecommendation(
        primary=top.description if top else fallback.primary,
        reasoning=f"based on the most successful past pattern (used {top.success_count if top else 0} times)",
        confidence=approach_confidence(patterns, methods),
        alternatives=tuple(
            {"alternative": p.description, "context": p.context, "success_count": p.success_count}
            for p in patterns[1:1 + ALTERNATIVE_COUNT]
        ),
        adaptations=adaptation,
        steps=() if top else fallback.steps,
    )


def method_reason(avg: float, count: int) -> str:
    reasons = []
    if avg >= METHOD_EXCELLENT_AVG:
        reasons.append("very high satisfaction")
    elif avg >= METHOD_RECOMMENDATION_MIN_AVG:
        reasons.append("high satisfaction")
    if count >= EXTENSIVE_USAGE:
        reasons.append("extensive track record")
    elif count >= SUFFICIENT_USAGE:
        reasons.append("sufficient track record")
    return ", ".join(reasons) if reasons else "stable performance"


# -----------------------------------------------------------------------------
# Recommendation Engine
# -----------------------------------------------------------------------------
class RecommendationEngine:
    """Recommendations backed by the search and aggregation engines."""

    def __init__(
        self,
        store: LearningStore,
        search: Optional[SearchEngine] = None,
        aggregation: Optional[AggregationEngine] = None,
    ):
        self._store = store
        self._search = search or SearchEngine(store)
        self._aggregation = aggregation or AggregationEngine(store)

    def recommend_for(self, file_type: str, analysis_context: str = "") -> ApproachRecommendation:
        """Search the evidence for a file type, then recommend."""
        options = SearchOptions(
            category=file_type,
            kinds=(RecordKind.PATTERNS, RecordKind.FEEDBACK),
            limit=self._store.settings.default_search_limit,
        )
        results = self._search.search(analysis_context, options)
        recommendation = recommend_approach(file_type, results)
        logger.info(f"Recommended approach for {file_type}: confidence={recommendation.confidence:.2f}")
        return recommendation

    def method_recommendations(
        self,
        file_type: str,
        window_days: int = METHOD_RECOMMENDATION_WINDOW_DAYS,
    ) -> List[Dict[str, Any]]:
        orm = self._store.table(RecordKind.FEEDBACK)
        rows = self._store.query(
            RecordKind.FEEDBACK,
            orm.file_type == file_type,
            orm.created_at >= self._store.cutoff(window_days),
        )
        grouped: Dict[str, List[float]] = {}
        for fb in rows:
            grouped.setdefault(fb.analysis_method, []).append(fb.user_satisfaction_score)

        recommendations = []
        for method, scores in grouped.items():
            avg = average_score(scores)
            if avg < METHOD_RECOMMENDATION_MIN_AVG:
                continue
            recommendations.append({
                "method": method,
                "avg_satisfaction": avg,
                "usage_count": len(scores),
                "level": "excellent" if avg >= METHOD_EXCELLENT_AVG else "good",
                "reason": method_reason(avg, len(scores)),
            })
        recommendations.sort(key=lambda r: (-r["avg_satisfaction"], -r["usage_count"], r["method"]))
        return recommendations

    def reference_patterns(self, file_type: str, analysis_context: str = "") -> Dict[str, Any]:
        """Everything a caller needs to prime an analysis of this file type."""
        successful = self._search.successful_patterns(file_type, REFERENCE_PATTERN_LIMIT)
        methods = self._search.search_feedback(
            "", SearchOptions(category=file_type, limit=REFERENCE_METHOD_LIMIT)
        )
        contextual = []
        if analysis_context.strip():
            contextual = self._search.search_patterns(
                analysis_context, SearchOptions(category=file_type, limit=REFERENCE_CONTEXT_LIMIT)
            )
        examples = self._search.search_judgments(
            "", SearchOptions(category=file_type, limit=REFERENCE_EXAMPLE_LIMIT)
        )
        results = SearchResults(
            patterns=tuple(self._search.search_patterns(
                "", SearchOptions(category=file_type, limit=REFERENCE_PATTERN_LIMIT)
            )),
            feedback=tuple(methods),
        )
        return {
            "file_type": file_type,
            "analysis_context": analysis_context,
            "success_patterns": successful,
            "method_feedback": [h.to_dict() for h in methods],
            "contextual_patterns": [h.to_dict() for h in contextual],
            "learning_examples": [h.to_dict() for h in examples if h.record.is_correct],
            "recommended_approach": recommend_approach(file_type, results).to_dict(),
            "generated_at": timestamp_now(self._store.settings.utc_offset_hours),
        }

    def analyze_learning_history(self, days: int = 7) -> Dict[str, Any]:
        cutoff = self._store.cutoff(days)
        totals = {}
        for kind in RecordKind:
            orm = self._store.table(kind)
            column = orm.last_used if kind == RecordKind.METHODS else orm.created_at
            totals[kind.value] = self._store.count(kind, column >= cutoff)

        patterns = self._store.table(RecordKind.PATTERNS)
        categories: Dict[str, int] = {}
        for p in self._store.query(RecordKind.PATTERNS, patterns.created_at >= cutoff):
            key = p.context or ""
            categories[key] = categories.get(key, 0) + 1

        accuracy = self._aggregation.accuracy_stats(days)
        breakdown = self._aggregation.method_breakdown(days)
        return {
            "days": days,
            "totals": totals,
            "accuracy": accuracy,
            "category_activity": categories,
            "improvement_areas": self._improvement_areas(totals, accuracy, breakdown),
        }

    @staticmethod
    def _improvement_areas(
        totals: Dict[str, int],
        accuracy: Dict[str, Any],
        breakdown: List[Dict[str, Any]],
    ) -> List[Dict[str, Any]]:
        areas = []
        misjudged = accuracy["confirmed"] - accuracy["correct"]
        if misjudged > 0:
            areas.append({
                "area": "judgment_accuracy",
                "detail": f"{misjudged} misjudgment(s) in the period",
            })
        patterns = totals.get(RecordKind.PATTERNS.value, 0)
        feedback = totals.get(RecordKind.FEEDBACK.value, 0)
        if patterns and feedback < patterns * LOW_FEEDBACK_RATIO:
            areas.append({
                "area": "feedback_collection",
                "detail": f"only {feedback} feedback entries for {patterns} patterns",
            })
        weak = [m["analysis_method"] for m in breakdown if m["avg_satisfaction"] < LOW_METHOD_SATISFACTION]
        if weak:
            areas.append({
                "area": "method_quality",
                "detail": f"low satisfaction methods: {', '.join(sorted(weak))}",
            })
        return areas
