"""
Search & Relevance Engine Tests

Test Categories:
1. Keyword search and ordering
2. Category / date filters
3. Relevance scoring
4. Hybrid (full-text + relational) search
5. Pattern views and category statistics
"""

import pytest

from transcript_learning.errors import ValidationError
from transcript_learning.learning_model import RecordKind, SearchOptions
from transcript_learning.search_engine import FullTextIndex, calculate_relevance


PATTERNS_ONLY = (RecordKind.PATTERNS,)


def _pattern(store, description, success_count=1, context=None, created_at=None, details=None):
    record = {"description": description, "success_count": success_count, "context": context, "details": details}
    if created_at:
        record["created_at"] = created_at
    return store.insert(RecordKind.PATTERNS, record)


# =============================================================================
# 1. Keyword Search and Ordering
# =============================================================================

class TestKeywordSearch:
    """Test substring matching and per-kind ordering."""

    def test_empty_query_with_limit(self, store, search, ago):
        for i in range(10):
            _pattern(store, f"pattern {i}", success_count=i, created_at=ago(days=i))

        results = search.search("", SearchOptions(limit=5))
        assert len(results.patterns) == 5
        assert [h.record.success_count for h in results.patterns] == [9, 8, 7, 6, 5]
        assert all(h.relevance_score == 0 for h in results.patterns)

    def test_ties_ordered_newest_first(self, store, search, ago):
        older = _pattern(store, "same strength", success_count=3, created_at=ago(days=5))
        newer = _pattern(store, "same strength", success_count=3, created_at=ago(days=1))
        hits = search.search_patterns("")
        assert [h.record.id for h in hits] == [newer, older]

    def test_case_insensitive_match(self, store, search):
        _pattern(store, "Extract Decisions First")
        _pattern(store, "list participants")
        hits = search.search_patterns("decisions")
        assert [h.record.description for h in hits] == ["Extract Decisions First"]

    def test_japanese_substring_match(self, store, search):
        store.record_judgment("本日の会議の議事録です。参加者は佐藤、鈴木。", "meeting", None)
        store.record_judgment("今日の日記", "personal", None)
        hits = search.search_judgments("議事録")
        assert len(hits) == 1
        assert hits[0].record.judgment == "meeting"

    def test_full_width_latin_is_case_insensitive(self, store, search):
        _pattern(store, "ＡＩ会議の要約")
        _pattern(store, "週次の振り返り")
        assert [h.record.description for h in search.search_patterns("ａｉ")] == ["ＡＩ会議の要約"]
        assert [h.record.description for h in search.search_patterns("ＡＩ")] == ["ＡＩ会議の要約"]

    def test_accented_latin_is_case_insensitive(self, store, search):
        _pattern(store, "Élan review checklist")
        assert len(search.search_patterns("élan")) == 1
        assert len(search.search_patterns("ÉLAN REVIEW")) == 1

    def test_wildcards_are_literal(self, store, search):
        _pattern(store, "100% coverage of action items")
        _pattern(store, "other pattern")
        hits = search.search_patterns("%")
        assert len(hits) == 1

    def test_matches_details_and_context(self, store, search):
        _pattern(store, "plain", details={"hint": "timeline"})
        _pattern(store, "plain", context="proposal")
        assert len(search.search_patterns("timeline")) == 1
        assert len(search.search_patterns("proposal")) == 1

    def test_methods_ordered_by_effectiveness(self, store, search):
        store.insert(RecordKind.METHODS, {"method_name": "weak", "effectiveness_score": 40})
        store.insert(RecordKind.METHODS, {"method_name": "strong", "effectiveness_score": 90})
        hits = search.search_methods("")
        assert [h.record.method_name for h in hits] == ["strong", "weak"]

    def test_no_match_returns_empty_collections(self, store, search):
        _pattern(store, "something")
        results = search.search("nothing like this")
        assert results.total_results == 0
        assert results.to_dict()["patterns"] == []

    def test_kinds_restricts_search(self, store, search):
        _pattern(store, "meeting notes")
        store.record_judgment("meeting notes", "meeting", None)
        results = search.search("meeting", SearchOptions(kinds=PATTERNS_ONLY))
        assert len(results.patterns) == 1
        assert results.judgments == ()

    def test_result_dict_shape(self, store, search):
        _pattern(store, "summary first")
        data = search.search("summary").to_dict()
        assert data["total_results"] == 1
        assert data["patterns"][0]["description"] == "summary first"
        assert "relevance_score" in data["patterns"][0]
        assert set(data) == {"patterns", "feedback", "judgments", "method_stats", "total_results"}

    def test_negative_limit_rejected(self):
        with pytest.raises(ValidationError) as exc:
            SearchOptions(limit=-1)
        assert exc.value.field == "limit"

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            SearchOptions(kinds=("notes",))


# =============================================================================
# 2. Category / Date Filters
# =============================================================================

class TestFilters:

    def test_category_filters_judgments(self, store, search):
        store.record_judgment("sample a", "meeting", None)
        store.record_judgment("sample b", "personal", None)
        results = search.search("", SearchOptions(category="meeting"))
        assert [h.record.judgment for h in results.judgments] == ["meeting"]

    def test_category_filters_patterns_by_context(self, store, search):
        _pattern(store, "p1", context="meeting")
        _pattern(store, "p2", context="proposal")
        hits = search.search_patterns("", SearchOptions(category="meeting"))
        assert [h.record.description for h in hits] == ["p1"]

    def test_category_filters_methods_by_context(self, store, search):
        store.track_method("summary", {"success": True}, context="meeting")
        store.track_method("diary", {"success": True}, context="personal")
        hits = search.search_methods("", SearchOptions(category="meeting"))
        assert [h.record.method_name for h in hits] == ["summary"]

    def test_category_folds_non_ascii_case(self, store, search):
        _pattern(store, "p1", context="Réunion")
        _pattern(store, "p2", context="proposal")
        hits = search.search_patterns("", SearchOptions(category="RÉUNION"))
        assert [h.record.description for h in hits] == ["p1"]

    def test_date_from(self, store, search, ago):
        store.insert(RecordKind.JUDGMENTS, {"content_sample": "old", "judgment": "meeting", "created_at": ago(10)})
        store.insert(RecordKind.JUDGMENTS, {"content_sample": "new", "judgment": "meeting", "created_at": ago(2)})
        hits = search.search_judgments("", SearchOptions(date_from=ago(5)))
        assert [h.record.content_sample for h in hits] == ["new"]

    def test_date_only_upper_bound_covers_whole_day(self, store, search):
        store.insert(RecordKind.PATTERNS, {"description": "evening", "created_at": "2024-03-10 18:00:00"})
        store.insert(RecordKind.PATTERNS, {"description": "next day", "created_at": "2024-03-11 00:00:01"})
        hits = search.search_patterns("", SearchOptions(date_from="2024-03-10", date_to="2024-03-10"))
        assert [h.record.description for h in hits] == ["evening"]

    def test_malformed_date_rejected(self, store, search):
        with pytest.raises(ValidationError) as exc:
            search.search("", SearchOptions(date_from="last week"))
        assert exc.value.field == "date_from"

    def test_impossible_date_rejected(self, store, search):
        with pytest.raises(ValidationError):
            search.search("", SearchOptions(date_to="2024-02-31"))


# =============================================================================
# 3. Relevance Scoring
# =============================================================================

class TestRelevance:

    def test_empty_query_is_zero(self):
        assert calculate_relevance("", ["anything"]) == 0.0
        assert calculate_relevance(None, ["anything"]) == 0.0

    def test_no_text_is_zero(self):
        assert calculate_relevance("summary", [None, ""]) == 0.0

    def test_bounded(self):
        assert calculate_relevance("a", ["a"]) <= 1.0
        assert 0.0 <= calculate_relevance("summary", ["meeting summary notes"]) <= 1.0

    def test_denser_match_scores_higher(self):
        sparse = calculate_relevance("summary", ["summary of a very long meeting about many topics"])
        dense = calculate_relevance("summary", ["summary summary"])
        assert dense > sparse

    def test_hits_carry_relevance(self, store, search):
        _pattern(store, "summary")
        hit = search.search_patterns("summary")[0]
        assert hit.relevance_score > 0
        assert hit.key == f"patterns_{hit.record.id}"


# =============================================================================
# 4. Hybrid Search
# =============================================================================

class TestHybridSearch:

    @pytest.fixture(autouse=True)
    def _require_fts(self, search):
        if not search.index.available:
            pytest.skip("SQLite build lacks FTS5")

    def test_proven_pattern_ranks_first(self, store, search):
        weak = _pattern(store, "meeting summary alpha", success_count=1)
        proven = _pattern(store, "meeting summary bravo", success_count=7)
        results = search.hybrid_search("summary")
        assert [r["key"] for r in results[:2]] == [f"patterns_{proven}", f"patterns_{weak}"]
        assert results[0]["record"]["description"] == "meeting summary bravo"

    def test_recent_pattern_boosted_by_one_fifth(self, store, search, ago):
        fresh = _pattern(store, "meeting summary alpha")
        stale = store.insert(RecordKind.PATTERNS, {
            "description": "meeting summary bravo",
            "created_at": ago(10),
            "last_used": ago(10),
        })
        scores = {r["key"]: r["score"] for r in search.hybrid_search("summary")}
        assert scores[f"patterns_{fresh}"] / scores[f"patterns_{stale}"] == pytest.approx(1.2)

    def test_success_boost_starts_above_five(self, store, search):
        once = _pattern(store, "meeting summary alpha", success_count=1)
        five = _pattern(store, "meeting summary bravo", success_count=5)
        six = _pattern(store, "meeting summary delta", success_count=6)
        scores = {r["key"]: r["score"] for r in search.hybrid_search("summary")}
        assert scores[f"patterns_{five}"] == pytest.approx(scores[f"patterns_{once}"])
        assert scores[f"patterns_{six}"] / scores[f"patterns_{five}"] == pytest.approx(1.5)

    def test_category_filter_applies_to_full_text_hits(self, store, search):
        _pattern(store, "summary of decisions", context="meeting")
        _pattern(store, "summary of the day", context="personal")
        results = search.hybrid_search("summary", SearchOptions(category="meeting", kinds=PATTERNS_ONLY))
        assert [r["record"]["context"] for r in results] == ["meeting"]

    def test_date_filter_applies_to_full_text_hits(self, store, search, ago):
        _pattern(store, "summary old", created_at=ago(10))
        _pattern(store, "summary new", created_at=ago(1))
        results = search.hybrid_search("summary", SearchOptions(date_from=ago(5)))
        assert [r["record"]["description"] for r in results] == ["summary new"]

    def test_sorted_unique_and_limited(self, store, search):
        for i in range(6):
            _pattern(store, f"summary variant {i}")
        store.record_judgment("summary of the weekly meeting", "meeting", None)
        results = search.hybrid_search("summary", SearchOptions(limit=4))
        assert len(results) == 4
        keys = [r["key"] for r in results]
        assert len(set(keys)) == len(keys)
        scores = [r["score"] for r in results]
        assert scores == sorted(scores, reverse=True)

    def test_stale_index_is_rebuilt(self, store, search):
        _pattern(store, "first entry")
        assert search.build_index() == 1
        _pattern(store, "timeline extraction")
        search.index.mark_stale()
        results = search.hybrid_search("timeline")
        assert [r["record"]["description"] for r in results] == ["timeline extraction"]

    def test_kind_filter(self, store, search):
        _pattern(store, "summary pattern")
        store.record_judgment("summary judgment", "meeting", None)
        results = search.hybrid_search("summary", SearchOptions(kinds=(RecordKind.JUDGMENTS,)))
        assert [r["kind"] for r in results] == ["judgments"]

    def test_match_expression_quotes_tokens(self):
        assert FullTextIndex.match_expression('say "hi" NEAR') == '"say" OR """hi""" OR "NEAR"'


# =============================================================================
# 5. Pattern Views and Category Statistics
# =============================================================================

class TestPatternViews:

    def test_successful_patterns(self, store, search):
        _pattern(store, "once", success_count=1, context="meeting")
        _pattern(store, "often", success_count=4, context="meeting")
        _pattern(store, "elsewhere", success_count=9, context="personal")

        assert [p["description"] for p in search.successful_patterns()] == ["elsewhere", "often"]
        assert [p["description"] for p in search.successful_patterns("meeting")] == ["often"]

    def test_find_related_patterns_by_relevance(self, store, search):
        _pattern(store, "decisions and a lot of other unrelated words here", success_count=5)
        _pattern(store, "decisions decisions", success_count=1)
        hits = search.find_related_patterns("decisions", limit=1)
        assert [h.record.description for h in hits] == ["decisions decisions"]

    def test_category_stats(self, store, search):
        _pattern(store, "a", success_count=2, context="meeting")
        _pattern(store, "b", success_count=4, context="meeting")
        _pattern(store, "c", success_count=1, context="personal")
        store.record_judgment("x", "meeting", None)

        stats = search.category_stats()
        assert stats["categories"][0] == {
            "category": "meeting",
            "pattern_count": 2,
            "avg_success": 3.0,
            "last_updated": stats["categories"][0]["last_updated"],
        }
        assert stats["totals"] == {"patterns": 3, "methods": 0, "judgments": 1, "feedback": 0}
