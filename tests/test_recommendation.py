"""
Recommendation Layer Tests

Test Categories:
1. Default approaches
2. Evidence-based approaches
3. Method recommendations
4. Reference material and learning history
"""

import pytest

from transcript_learning.learning_model import RecordKind, SearchResults
from transcript_learning.recommendation_engine import (
    DEFAULT_APPROACHES,
    default_approach,
    method_reason,
    recommend_approach,
)


def _pattern(store, description, success_count, context="meeting"):
    return store.insert(RecordKind.PATTERNS, {
        "description": description,
        "success_count": success_count,
        "context": context,
    })


def _feedback(store, method, score, file_type="meeting", comment=None):
    return store.insert(RecordKind.FEEDBACK, {
        "file_type": file_type,
        "analysis_method": method,
        "user_satisfaction_score": score,
        "specific_feedback": comment,
    })


# =============================================================================
# 1. Default Approaches
# =============================================================================

class TestDefaultApproach:

    @pytest.mark.parametrize("file_type", ["meeting", "personal", "proposal", "unknown"])
    def test_default_for_each_file_type(self, recommendation, file_type):
        result = recommendation.recommend_for(file_type)
        assert result.confidence == 0.0
        assert result.steps == DEFAULT_APPROACHES[file_type]
        assert result.primary.startswith("1. ")
        assert result.primary.count("\n") == 2
        assert result.alternatives == ()
        assert result.adaptations is None

    def test_meeting_steps(self):
        assert default_approach("meeting").primary == (
            "1. Extract the participants\n"
            "2. Analyze what each participant said\n"
            "3. Organize the decisions"
        )

    def test_unrecognized_context_uses_unknown_template(self):
        assert default_approach("diary").steps == DEFAULT_APPROACHES["unknown"]
        assert default_approach(None).steps == DEFAULT_APPROACHES["unknown"]

    def test_empty_results(self):
        assert recommend_approach("proposal", SearchResults()).confidence == 0.0


# =============================================================================
# 2. Evidence-Based Approaches
# =============================================================================

class TestEvidenceBasedApproach:

    def test_most_reinforced_pattern_is_primary(self, store, recommendation):
        _pattern(store, "timeline first", 3)
        _pattern(store, "decisions first", 7)
        _pattern(store, "participants first", 2)
        _pattern(store, "topics first", 1)
        _pattern(store, "diary pattern", 50, context="personal")
        _feedback(store, "structured", 4.5, comment="clear")
        _feedback(store, "plain", 3.0)

        result = recommendation.recommend_for("meeting")
        assert result.primary == "decisions first"
        assert [a["alternative"] for a in result.alternatives] == ["timeline first", "participants first"]
        assert result.alternatives[0]["success_count"] == 3
        assert result.adaptations["suggestion"] == "structured"
        assert result.adaptations["feedback"] == "clear"
        # (7 + 3 + 2 + 1 + 4.5 + 3.0) / (6 * 10)
        assert result.confidence == pytest.approx(20.5 / 60)

    def test_feedback_only_keeps_default_steps(self, store, recommendation):
        _feedback(store, "structured", 4.0)
        result = recommendation.recommend_for("meeting")
        assert result.steps == DEFAULT_APPROACHES["meeting"]
        assert result.adaptations["suggestion"] == "structured"
        assert 0 < result.confidence <= 1

    def test_low_rated_feedback_is_not_an_adaptation(self, store, recommendation):
        _pattern(store, "decisions first", 2)
        _feedback(store, "plain", 3.9)
        assert recommendation.recommend_for("meeting").adaptations is None

    def test_confidence_capped(self, store, recommendation):
        _pattern(store, "proven", 50)
        assert recommendation.recommend_for("meeting").confidence == 1.0

    def test_analysis_context_narrows_patterns(self, store, recommendation):
        _pattern(store, "decisions first", 9)
        _pattern(store, "budget table first", 2)
        assert recommendation.recommend_for("meeting", "budget").primary == "budget table first"

    def test_to_dict(self, store, recommendation):
        _pattern(store, "decisions first", 2)
        data = recommendation.recommend_for("meeting").to_dict()
        assert set(data) == {"primary", "reasoning", "confidence", "alternatives", "adaptations", "steps"}


# =============================================================================
# 3. Method Recommendations
# =============================================================================

class TestMethodRecommendations:

    def test_highly_rated_methods_only(self, store, recommendation):
        _feedback(store, "a", 5.0)
        _feedback(store, "a", 4.6)
        _feedback(store, "b", 4.0)
        _feedback(store, "b", 4.2)
        _feedback(store, "c", 3.0)
        _feedback(store, "d", 5.0, file_type="personal")

        methods = recommendation.method_recommendations("meeting")
        assert [m["method"] for m in methods] == ["a", "b"]
        assert methods[0]["level"] == "excellent"
        assert methods[0]["avg_satisfaction"] == 4.8
        assert methods[1]["level"] == "good"
        assert methods[1]["avg_satisfaction"] == 4.1

    def test_no_feedback(self, recommendation):
        assert recommendation.method_recommendations("proposal") == []

    def test_reasons(self):
        assert method_reason(4.6, 12) == "very high satisfaction, extensive track record"
        assert method_reason(4.1, 5) == "high satisfaction, sufficient track record"
        assert method_reason(3.0, 1) == "stable performance"


# =============================================================================
# 4. Reference Material and Learning History
# =============================================================================

class TestReferenceAndHistory:

    def test_reference_patterns(self, store, recommendation):
        _pattern(store, "decisions first", 4)
        _pattern(store, "budget table first", 1)
        _feedback(store, "structured", 4.5)
        confirmed = store.record_judgment("議事録", "meeting", None)
        store.confirm_judgment(confirmed, "meeting", True)
        store.record_judgment("未確認の議事録", "meeting", None)

        refs = recommendation.reference_patterns("meeting", "budget")
        assert [p["description"] for p in refs["success_patterns"]] == ["decisions first"]
        assert [h["analysis_method"] for h in refs["method_feedback"]] == ["structured"]
        assert [h["description"] for h in refs["contextual_patterns"]] == ["budget table first"]
        assert [h["id"] for h in refs["learning_examples"]] == [confirmed]
        assert refs["recommended_approach"]["primary"] == "decisions first"

    def test_reference_without_context(self, recommendation):
        refs = recommendation.reference_patterns("personal")
        assert refs["contextual_patterns"] == []
        assert refs["recommended_approach"]["confidence"] == 0.0

    def test_learning_history(self, store, recommendation):
        for i in range(20):
            _pattern(store, f"p{i}", 1, context="meeting" if i % 2 else "proposal")
        _feedback(store, "weak", 2.0)
        wrong = store.record_judgment("sample", "personal", None)
        store.confirm_judgment(wrong, "meeting", False)

        history = recommendation.analyze_learning_history(7)
        assert history["totals"] == {"patterns": 20, "methods": 0, "judgments": 1, "feedback": 1}
        assert history["category_activity"] == {"proposal": 10, "meeting": 10}
        areas = [a["area"] for a in history["improvement_areas"]]
        assert areas == ["judgment_accuracy", "feedback_collection", "method_quality"]

    def test_quiet_history(self, recommendation):
        history = recommendation.analyze_learning_history(7)
        assert history["improvement_areas"] == []
        assert history["accuracy"]["total"] == 0
