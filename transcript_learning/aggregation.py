"""
Transcript Learning: Aggregation & Trend Engine

Windowed rollups over stored learning records.

AGGREGATES:
- aggregate(kind, window_days): count, avg, max, min, distribution, trend
  for method effectiveness (0-100, 10-point bands) or feedback
  satisfaction (1-5, integer bands)
- top performers, effectiveness level distribution, per-method trends
- statistical recommendation flags with fixed priorities
- judgment accuracy and feedback-based improvement suggestions
- effectiveness prediction and pairwise method comparison

Everything here is re-derivable from the Record Store. The report cache
is a convenience only: losing it, or failing to refresh it, never
affects stored data.
"""

import logging
import math
import threading
from collections import OrderedDict
from typing import Any, Dict, List, Optional, Sequence

from cachetools import TTLCache

from .errors import ValidationError
from .learning_model import (
    EffectivenessLevel,
    Priority,
    RecordKind,
    StatisticalFlag,
    TrendClass,
    timestamp_now,
    validate_kind,
)
from .learning_store import LearningStore
from .scoring import TREND_MIN_SAMPLES, average_score, classify_trend, effectiveness_level, round_half_up

logger = logging.getLogger("learning_aggregation")


# -----------------------------------------------------------------------------
# Thresholds
# -----------------------------------------------------------------------------
LOW_AVERAGE_EFFECTIVENESS = 60
LOW_TOTAL_USAGE = 50
LOW_METHOD_DIVERSITY = 5

LOW_OVERALL_SATISFACTION = 3.5
LOW_METHOD_SATISFACTION = 3.0
LOW_METHOD_MIN_SAMPLES = 3
BEST_METHOD_SATISFACTION = 4.0
BEST_METHOD_MIN_SAMPLES = 2

ACCURACY_TARGET = 0.9
TYPE_ACCURACY_TARGET = 0.8

PREDICTION_DEFAULT = 50
PREDICTION_DEFAULT_CONFIDENCE = 0.1
PREDICTION_FULL_CONFIDENCE_USES = 10
PREDICTION_CONTEXT_BONUS = 10
COMPARISON_EQUAL_MARGIN = 5

CACHE_MAX_ENTRIES = 64

AGGREGATABLE = {
    RecordKind.METHODS: ("effectiveness_score", "last_used"),
    RecordKind.FEEDBACK: ("user_satisfaction_score", "created_at"),
}


def effectiveness_bands() -> "OrderedDict[str, int]":
    bands: "OrderedDict[str, int]" = OrderedDict()
    bands["90-100"] = 0
    for low in range(80, -1, -10):
        bands[f"{low}-{low + 9}"] = 0
    return bands


def effectiveness_band(score: float) -> str:
    if score >= 90:
        return "90-100"
    low = max(int(score // 10) * 10, 0)
    return f"{low}-{low + 9}"


def satisfaction_band(score: float) -> str:
    return str(min(max(int(math.floor(score)), 1), 5))


def _summary(values: Sequence[float]) -> Dict[str, Any]:
    if not values:
        return {"count": 0, "avg": 0.0, "max": None, "min": None}
    return {
        "count": len(values),
        "avg": average_score(values),
        "max": max(values),
        "min": min(values),
    }


# -----------------------------------------------------------------------------
# Statistical Recommendations (pure)
# -----------------------------------------------------------------------------
def statistical_recommendations(stats: Dict[str, Any], trend_counts: Dict[str, int]) -> List[StatisticalFlag]:
    """
    Flags raised from aggregate numbers. Priorities are fixed per flag.

    stats needs avg_effectiveness, total_usage, total_methods;
    trend_counts needs improving and declining.
    """
    flags = []
    avg = stats.get("avg_effectiveness") or 0
    if avg < LOW_AVERAGE_EFFECTIVENESS:
        flags.append(StatisticalFlag(
            type="effectiveness",
            priority=Priority.HIGH.value,
            message=f"Average effectiveness is low ({avg})",
            action="Review and improve the analysis methods",
        ))
    usage = stats.get("total_usage") or 0
    if usage < LOW_TOTAL_USAGE:
        flags.append(StatisticalFlag(
            type="usage",
            priority=Priority.MEDIUM.value,
            message=f"Total method usage is low ({usage})",
            action="Use the analysis methods more actively",
        ))
    methods = stats.get("total_methods") or 0
    if methods < LOW_METHOD_DIVERSITY:
        flags.append(StatisticalFlag(
            type="diversity",
            priority=Priority.MEDIUM.value,
            message=f"Few distinct analysis methods in use ({methods})",
            action="Try additional analysis methods",
        ))
    improving = trend_counts.get(TrendClass.IMPROVING.value, 0)
    declining = trend_counts.get(TrendClass.DECLINING.value, 0)
    if declining > improving:
        flags.append(StatisticalFlag(
            type="trends",
            priority=Priority.HIGH.value,
            message=f"Declining methods ({declining}) outnumber improving ones ({improving})",
            action="Investigate why method performance is dropping",
        ))
    return flags


def judgment_improvement_suggestions(accuracy: Dict[str, Any]) -> List[Dict[str, Any]]:
    suggestions = []
    if accuracy["total"] == 0:
        return suggestions
    if accuracy["accuracy"] < ACCURACY_TARGET:
        suggestions.append({
            "type": "overall_accuracy",
            "priority": Priority.HIGH.value,
            "message": f"Overall judgment accuracy is {accuracy['accuracy'] * 100:.1f}%",
            "action": "Refine the classification prompt and reasoning",
        })
    for judgment, stats in accuracy["by_type"].items():
        if stats["total"] and stats["accuracy"] < TYPE_ACCURACY_TARGET:
            suggestions.append({
                "type": "type_accuracy",
                "priority": Priority.MEDIUM.value,
                "message": f"Accuracy for '{judgment}' is {stats['accuracy'] * 100:.1f}%",
                "action": f"Add reference examples for '{judgment}' transcripts",
            })
    if accuracy["trend"] == TrendClass.DECLINING.value:
        suggestions.append({
            "type": "accuracy_trend",
            "priority": Priority.HIGH.value,
            "message": "Judgment accuracy is declining",
            "action": "Review recent misjudgments",
        })
    return suggestions


# -----------------------------------------------------------------------------
# Aggregation Engine
# -----------------------------------------------------------------------------
class AggregationEngine:
    """
    Windowed statistics over a LearningStore.

    The effectiveness report is cached for stats_cache_ttl_seconds and
    dropped by invalidate_cache() after writes.
    """

    def __init__(self, store: LearningStore, cache: Optional[TTLCache] = None):
        self._store = store
        self._cache = cache if cache is not None else TTLCache(
            maxsize=CACHE_MAX_ENTRIES,
            ttl=store.settings.stats_cache_ttl_seconds,
        )
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Core Rollups
    # -------------------------------------------------------------------------

    def _window_rows(self, kind: RecordKind, window_days: int, column: str) -> List[Any]:
        orm = self._store.table(kind)
        time_col = getattr(orm, column)
        return self._store.query(
            kind,
            time_col >= self._store.cutoff(window_days),
            order_by=(time_col, orm.id),
        )

    def aggregate(self, kind, window_days: int = 30, min_trend_samples: int = TREND_MIN_SAMPLES) -> Dict[str, Any]:
        """
        Summarize scores observed within the window.

        Raises:
            ValidationError: kind has no score to aggregate
        """
        kind = validate_kind(kind)
        if kind not in AGGREGATABLE:
            raise ValidationError("kind", f"cannot aggregate {kind.value}; use methods or feedback")
        score_field, time_field = AGGREGATABLE[kind]
        rows = self._window_rows(kind, window_days, time_field)
        scores = [getattr(r, score_field) for r in rows]

        if kind == RecordKind.METHODS:
            distribution = effectiveness_bands()
            for score in scores:
                distribution[effectiveness_band(score)] += 1
        else:
            distribution = OrderedDict((str(b), 0) for b in range(5, 0, -1))
            for score in scores:
                distribution[satisfaction_band(score)] += 1

        result = {"kind": kind.value, "window_days": window_days}
        result.update(_summary(scores))
        result["distribution"] = dict(distribution)
        result["trend"] = classify_trend(scores, min_samples=min_trend_samples).value
        return result

    def top_performers(self, kind, window_days: int = 30, n: int = 5) -> List[Dict[str, Any]]:
        """Top-n rows by score within the window, ties broken by usage/success count."""
        kind = validate_kind(kind)
        if n < 0:
            raise ValidationError("n", f"must be non-negative, got {n}")
        orm = self._store.table(kind)
        cutoff = self._store.cutoff(window_days)
        if kind == RecordKind.METHODS:
            criteria = orm.last_used >= cutoff
            order = (orm.effectiveness_score.desc(), orm.usage_count.desc(), orm.id)
        elif kind == RecordKind.PATTERNS:
            criteria = orm.last_used >= cutoff
            order = (orm.success_count.desc(), orm.last_used.desc(), orm.id)
        elif kind == RecordKind.FEEDBACK:
            criteria = orm.created_at >= cutoff
            order = (orm.user_satisfaction_score.desc(), orm.created_at.desc(), orm.id)
        else:
            raise ValidationError("kind", "judgments have no score to rank")
        return [r.to_dict() for r in self._store.query(kind, criteria, order_by=order, limit=n)]

    def basic_statistics(self, window_days: int = 30) -> Dict[str, Any]:
        methods = self._window_rows(RecordKind.METHODS, window_days, "last_used")
        scores = [m.effectiveness_score for m in methods]
        return {
            "total_methods": len(methods),
            "avg_effectiveness": average_score(scores),
            "max_effectiveness": max(scores) if scores else None,
            "min_effectiveness": min(scores) if scores else None,
            "total_usage": sum(m.usage_count for m in methods),
        }

    def level_distribution(self, window_days: int = 30) -> Dict[str, int]:
        counts = {level.value: 0 for level in EffectivenessLevel}
        for method in self._window_rows(RecordKind.METHODS, window_days, "last_used"):
            counts[effectiveness_level(method.effectiveness_score).value] += 1
        return counts

    def method_trend_counts(self, window_days: int = 30, min_samples: int = TREND_MIN_SAMPLES) -> Dict[str, int]:
        """Classify each analysis method's satisfaction series and count the classes."""
        series: Dict[str, List[float]] = {}
        for fb in self._window_rows(RecordKind.FEEDBACK, window_days, "created_at"):
            series.setdefault(fb.analysis_method, []).append(fb.user_satisfaction_score)
        counts = {t.value: 0 for t in TrendClass}
        for scores in series.values():
            counts[classify_trend(scores, min_samples=min_samples).value] += 1
        return counts

    # -------------------------------------------------------------------------
    # Report (cached)
    # -------------------------------------------------------------------------

    def effectiveness_report(self, window_days: int = 30) -> Dict[str, Any]:
        key = f"report:{window_days}"
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return cached

        stats = self.basic_statistics(window_days)
        trend_counts = self.method_trend_counts(window_days)
        report = {
            "window_days": window_days,
            "basic_statistics": stats,
            "trend_counts": trend_counts,
            "top_methods": self.top_performers(RecordKind.METHODS, window_days, 5),
            "distribution": self.aggregate(RecordKind.METHODS, window_days)["distribution"],
            "levels": self.level_distribution(window_days),
            "recommendations": [f.to_dict() for f in statistical_recommendations(stats, trend_counts)],
            "generated_at": timestamp_now(self._store.settings.utc_offset_hours),
        }
        with self._lock:
            self._cache[key] = report
        return report

    def invalidate_cache(self) -> None:
        with self._lock:
            self._cache.clear()
        logger.debug("Statistics cache cleared")

    # -------------------------------------------------------------------------
    # Prediction / Comparison
    # -------------------------------------------------------------------------

    def predict_effectiveness(self, method_name: str, file_type: Optional[str] = None) -> Dict[str, Any]:
        """
        Predict a method's effectiveness from its live row.

        The stored score already blends every observation, so confidence
        grows with usage_count and reaches 1.0 at PREDICTION_FULL_CONFIDENCE_USES.
        """
        method = self._store.find_method(method_name)
        if method is None:
            return {
                "method_name": method_name,
                "prediction": PREDICTION_DEFAULT,
                "confidence": PREDICTION_DEFAULT_CONFIDENCE,
                "reason": "no history",
            }
        prediction = method.effectiveness_score
        if file_type and file_type in method.success_contexts:
            prediction += PREDICTION_CONTEXT_BONUS
        return {
            "method_name": method_name,
            "prediction": int(min(max(prediction, 0), 100)),
            "confidence": round_half_up(min(method.usage_count / PREDICTION_FULL_CONFIDENCE_USES, 1.0), 2),
            "reason": f"based on {method.usage_count} use(s)",
        }

    def compare_methods(self, method_a: str, method_b: str) -> Dict[str, Any]:
        def describe(name):
            method = self._store.find_method(name)
            return {
                "name": name,
                "avg_effectiveness": method.effectiveness_score if method else 0,
                "usage_count": method.usage_count if method else 0,
            }

        a, b = describe(method_a), describe(method_b)
        difference = a["avg_effectiveness"] - b["avg_effectiveness"]
        if abs(difference) < COMPARISON_EQUAL_MARGIN:
            verdict = "comparable"
            better = None
        else:
            better = method_a if difference > 0 else method_b
            verdict = f"{better} is more effective (+{abs(difference)})"
        return {
            "method_a": a,
            "method_b": b,
            "effectiveness_difference": difference,
            "usage_difference": a["usage_count"] - b["usage_count"],
            "better": better,
            "recommendation": verdict,
        }

    # -------------------------------------------------------------------------
    # Feedback Analytics
    # -------------------------------------------------------------------------

    def method_breakdown(self, window_days: int = 30) -> List[Dict[str, Any]]:
        grouped: Dict[str, List[float]] = {}
        for fb in self._window_rows(RecordKind.FEEDBACK, window_days, "created_at"):
            grouped.setdefault(fb.analysis_method, []).append(fb.user_satisfaction_score)
        breakdown = [
            {
                "analysis_method": method,
                "count": len(scores),
                "avg_satisfaction": average_score(scores),
                "max_satisfaction": max(scores),
                "min_satisfaction": min(scores),
            }
            for method, scores in grouped.items()
        ]
        breakdown.sort(key=lambda m: (-m["avg_satisfaction"], -m["count"], m["analysis_method"]))
        return breakdown

    def improvement_suggestions(self, window_days: int = 30) -> List[Dict[str, Any]]:
        feedback = self._window_rows(RecordKind.FEEDBACK, window_days, "created_at")
        if not feedback:
            return []
        suggestions = []
        overall = average_score([fb.user_satisfaction_score for fb in feedback])
        if overall < LOW_OVERALL_SATISFACTION:
            suggestions.append({
                "type": "overall_satisfaction",
                "priority": Priority.HIGH.value,
                "message": f"Overall satisfaction is low ({overall})",
                "action": "Revisit the analysis approach as a whole",
            })
        breakdown = self.method_breakdown(window_days)
        for method in breakdown:
            if method["avg_satisfaction"] < LOW_METHOD_SATISFACTION and method["count"] >= LOW_METHOD_MIN_SAMPLES:
                suggestions.append({
                    "type": "method_improvement",
                    "priority": Priority.MEDIUM.value,
                    "message": f"'{method['analysis_method']}' satisfaction is low ({method['avg_satisfaction']})",
                    "action": f"Improve or replace '{method['analysis_method']}'",
                })
        best = breakdown[0]
        if best["avg_satisfaction"] >= BEST_METHOD_SATISFACTION and best["count"] >= BEST_METHOD_MIN_SAMPLES:
            suggestions.append({
                "type": "best_practice",
                "priority": Priority.LOW.value,
                "message": f"'{best['analysis_method']}' performs well ({best['avg_satisfaction']})",
                "action": f"Apply '{best['analysis_method']}' more widely",
            })
        return suggestions

    # -------------------------------------------------------------------------
    # Judgment Accuracy
    # -------------------------------------------------------------------------

    def accuracy_stats(self, window_days: int = 30, min_trend_samples: int = TREND_MIN_SAMPLES) -> Dict[str, Any]:
        """Accuracy is count(is_correct) / count(*) over every judgment in the window."""
        judgments = self._window_rows(RecordKind.JUDGMENTS, window_days, "created_at")
        correctness = [1.0 if j.is_correct else 0.0 for j in judgments]

        by_type: Dict[str, Dict[str, Any]] = {}
        for j in judgments:
            entry = by_type.setdefault(j.judgment, {"total": 0, "correct": 0})
            entry["total"] += 1
            entry["correct"] += 1 if j.is_correct else 0
        for entry in by_type.values():
            entry["accuracy"] = round(entry["correct"] / entry["total"], 4)

        total = len(judgments)
        correct = int(sum(correctness))
        return {
            "window_days": window_days,
            "total": total,
            "correct": correct,
            "confirmed": sum(1 for j in judgments if j.is_correct is not None),
            "accuracy": round(correct / total, 4) if total else 0.0,
            "by_type": by_type,
            "trend": classify_trend(correctness, min_samples=min_trend_samples).value,
        }
