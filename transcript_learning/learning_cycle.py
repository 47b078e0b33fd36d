"""
Transcript Learning: Learning Cycle

Records everything learned from one confirmed analysis in a single call.

STEPS:
1. Store the judgment, confirmed as correct for the file type
2. Reinforce the "<file_type> judgment success pattern" pattern
3. When the analysis names its method, store satisfaction feedback
   and fold the outcome into the method's effectiveness
4. Drop cached statistics and mark the full-text index stale

Steps 1-3 are the source of truth. Step 4 only touches derived state,
so its failures are logged and never undo the earlier writes.
"""

import json
import logging
from typing import Any, Dict, Mapping, Optional

from .aggregation import AggregationEngine
from .learning_model import RecordKind, validate_file_type, validate_number
from .learning_store import LearningStore
from .scoring import compute_satisfaction_score, raw_effectiveness_score
from .search_engine import SearchEngine

logger = logging.getLogger("learning_cycle")

SAMPLE_FALLBACK_CHARS = 200


def _effectiveness_feedback(user_feedback: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
    """Express user feedback on the 0-1 satisfaction scale used by the effectiveness scorer."""
    if not user_feedback:
        return None
    feedback = dict(user_feedback)
    if feedback.get("satisfaction") is None and feedback.get("rating") is not None:
        rating = validate_number(feedback["rating"], "rating", float("-inf"), float("inf"))
        feedback["satisfaction"] = min(max(float(rating), 1.0), 5.0) / 5.0
    return feedback


class LearningCycle:
    """Composite write path used after each confirmed analysis."""

    def __init__(
        self,
        store: LearningStore,
        aggregation: Optional[AggregationEngine] = None,
        search: Optional[SearchEngine] = None,
    ):
        self._store = store
        self._aggregation = aggregation or AggregationEngine(store)
        self._search = search or SearchEngine(store)

    def capture_analysis_experience(
        self,
        file_type: str,
        analysis_result: Mapping[str, Any],
        user_feedback: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Record a confirmed analysis.

        Returns ids/records written: judgment_id, pattern, feedback, method.
        """
        file_type = validate_file_type(file_type, "file_type")
        sample = analysis_result.get("content_sample") or (analysis_result.get("content") or "")[:SAMPLE_FALLBACK_CHARS]

        # Malformed numbers are rejected before anything is written
        analysis_method = analysis_result.get("analysis_method")
        outcome = {
            "success": analysis_result.get("success", True),
            "confidence": analysis_result.get("confidence"),
            "execution_time": analysis_result.get("execution_time"),
            "accuracy": analysis_result.get("accuracy"),
        }
        method_feedback = _effectiveness_feedback(user_feedback)
        if analysis_method:
            raw_effectiveness_score(outcome, method_feedback)
            compute_satisfaction_score(analysis_result, user_feedback)

        judgment_id = self._store.insert(RecordKind.JUDGMENTS, {
            "content_sample": sample or f"({file_type} analysis)",
            "judgment": analysis_result.get("judgment") or file_type,
            "reasoning": analysis_result.get("reasoning"),
            "user_feedback": json.dumps(dict(user_feedback), ensure_ascii=False) if user_feedback else None,
            "correct_type": file_type,
            "is_correct": True,
        })

        pattern = self._store.reinforce_pattern(
            f"{file_type} judgment success pattern",
            context=file_type,
            details=dict(analysis_result),
        )

        feedback = method = None
        if analysis_method:
            feedback = self._store.record_feedback(file_type, analysis_method, analysis_result, user_feedback)
            method = self._store.track_method(analysis_method, outcome, method_feedback, context=file_type)

        self.refresh_derived_state()
        logger.info(f"Captured {file_type} analysis experience: judgment={judgment_id}, pattern={pattern.id}")
        return {
            "judgment_id": judgment_id,
            "pattern": pattern.to_dict(),
            "feedback": feedback.to_dict() if feedback else None,
            "method": method.to_dict() if method else None,
        }

    def refresh_derived_state(self) -> None:
        try:
            self._aggregation.invalidate_cache()
            self._search.index.mark_stale()
        except Exception as e:
            logger.warning(f"Derived state refresh failed (stored records unaffected): {e}")
