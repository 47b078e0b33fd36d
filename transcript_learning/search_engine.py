"""
Transcript Learning: Search & Relevance Engine

Keyword, category, and date-range search across the four record kinds,
with a term-overlap relevance score and an optional hybrid ranking that
adds an SQLite FTS5 full-text index.

SEARCH RULES:
- A record matches when any of its searchable fields contains the whole
  query as a case-insensitive substring; an empty query matches all
- category is a substring filter on the kind's category column
- date_from / date_to bound created_at inclusively; a date-only
  date_to covers the whole day
- Default order per kind, then truncate to limit:
    patterns:  success_count DESC, created_at DESC
    methods:   effectiveness_score DESC, usage_count DESC
    others:    created_at DESC
- Relevance is in [0, 1] and 0 for an empty query
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import Text, cast, func, or_, select, text
from sqlalchemy.exc import OperationalError

from .db import session_scope
from .learning_model import (
    RecordKind,
    SearchHit,
    SearchOptions,
    SearchResults,
    parse_date_bound,
    validate_text,
)
from .learning_store import LearningStore

logger = logging.getLogger("learning_search")


# -----------------------------------------------------------------------------
# Constants
# -----------------------------------------------------------------------------
# Full-text column weights: content, description, context
FTS_WEIGHTS = (1.0, 2.0, 1.5)
FTS_SCORE_WEIGHT = 2.0
DEFAULT_RELEVANCE = 0.5
SUCCESS_BOOST_MIN_COUNT = 5
SUCCESS_BOOST = 1.5
RECENT_BOOST_DAYS = 7
RECENT_BOOST = 1.2
SUCCESSFUL_PATTERN_MIN_COUNT = 1

FTS_TABLE = "learning_fts"


def searchable_columns(orm, kind: RecordKind) -> Tuple[Any, ...]:
    if kind == RecordKind.PATTERNS:
        return (orm.description, orm.details, orm.context)
    if kind == RecordKind.METHODS:
        return (orm.method_name, cast(orm.success_contexts, Text), orm.optimization_notes)
    if kind == RecordKind.JUDGMENTS:
        return (orm.content_sample, orm.reasoning, orm.user_feedback)
    return (orm.analysis_method, orm.specific_feedback, orm.file_type)


def category_column(orm, kind: RecordKind):
    if kind == RecordKind.PATTERNS:
        return orm.context
    if kind == RecordKind.METHODS:
        return cast(orm.success_contexts, Text)
    if kind == RecordKind.JUDGMENTS:
        return orm.judgment
    return orm.file_type


def category_text(record, kind: RecordKind) -> str:
    if kind == RecordKind.PATTERNS:
        return record.context or ""
    if kind == RecordKind.METHODS:
        return " ".join(record.success_contexts)
    if kind == RecordKind.JUDGMENTS:
        return record.judgment or ""
    return record.file_type or ""


def matches_filters(
    record,
    kind: RecordKind,
    category: Optional[str],
    date_from: Optional[str],
    date_to: Optional[str],
) -> bool:
    """Python twin of the category/date criteria applied in SQL."""
    if category and category.lower() not in category_text(record, kind).lower():
        return False
    if date_from and record.created_at < date_from:
        return False
    if date_to and record.created_at > date_to:
        return False
    return True


def default_order(orm, kind: RecordKind) -> Tuple[Any, ...]:
    if kind == RecordKind.PATTERNS:
        return (orm.success_count.desc(), orm.created_at.desc(), orm.id.desc())
    if kind == RecordKind.METHODS:
        return (orm.effectiveness_score.desc(), orm.usage_count.desc(), orm.id)
    return (orm.created_at.desc(), orm.id.desc())


def searchable_text(record, kind: RecordKind) -> List[str]:
    if kind == RecordKind.PATTERNS:
        return [record.description, record.details, record.context]
    if kind == RecordKind.METHODS:
        return [record.method_name, " ".join(record.success_contexts), record.optimization_notes]
    if kind == RecordKind.JUDGMENTS:
        return [record.content_sample, record.reasoning, record.user_feedback]
    return [record.analysis_method, record.specific_feedback, record.file_type]


# -----------------------------------------------------------------------------
# Relevance
# -----------------------------------------------------------------------------
def calculate_relevance(query: Optional[str], texts: Sequence[Optional[str]]) -> float:
    """
    Term-overlap relevance in [0, 1].

    Heuristic placeholder: each whitespace token contributes
    occurrences * len(token) / len(text), and the sum is divided by
    token_count * 3. Monotonic in match density, nothing more.
    """
    tokens = (query or "").lower().split()
    if not tokens:
        return 0.0
    haystack = " ".join(t for t in texts if t).lower()
    if not haystack:
        return 0.0

    score = 0.0
    for token in tokens:
        score += haystack.count(token) * len(token) / len(haystack)
    return min(score / (len(tokens) * 3), 1.0)


# -----------------------------------------------------------------------------
# Full-Text Index (SQLite FTS5)
# -----------------------------------------------------------------------------
class FullTextIndex:
    """
    FTS5 shadow index over all record kinds.

    The relational tables remain the source of truth; the index is
    rebuilt from them and may be dropped at any time.
    """

    def __init__(self, store: LearningStore):
        self._store = store
        self._available: Optional[bool] = None
        self._stale = True

    @property
    def available(self) -> bool:
        if self._available is None:
            self._available = self._create()
        return self._available

    def _create(self) -> bool:
        try:
            with session_scope(self._store.session_maker) as s:
                s.execute(text(
                    f"CREATE VIRTUAL TABLE IF NOT EXISTS {FTS_TABLE} USING fts5("
                    "kind UNINDEXED, record_id UNINDEXED, content, description, context, "
                    "tokenize='unicode61')"
                ))
            return True
        except OperationalError as e:
            logger.warning(f"Full-text index unavailable, using relational ranking only: {e.orig}")
            return False

    def mark_stale(self) -> None:
        self._stale = True

    def rebuild(self) -> int:
        """Repopulate the index from the relational tables. Returns document count."""
        if not self.available:
            return 0
        documents = []
        for kind in RecordKind:
            for record in self._store.query(kind):
                content, description, context = self._fields(kind, record)
                documents.append({
                    "kind": kind.value,
                    "record_id": record.id,
                    "content": content or "",
                    "description": description or "",
                    "context": context or "",
                })

        def op(s):
            s.execute(text(f"DELETE FROM {FTS_TABLE}"))
            if documents:
                s.execute(
                    text(
                        f"INSERT INTO {FTS_TABLE} (kind, record_id, content, description, context) "
                        "VALUES (:kind, :record_id, :content, :description, :context)"
                    ),
                    documents,
                )

        self._store.run(op)
        self._stale = False
        logger.info(f"Full-text index rebuilt: {len(documents)} documents")
        return len(documents)

    def ensure_fresh(self) -> None:
        if self._stale:
            self.rebuild()

    @staticmethod
    def _fields(kind: RecordKind, record) -> Tuple[Optional[str], Optional[str], Optional[str]]:
        if kind == RecordKind.PATTERNS:
            return record.details, record.description, record.context
        if kind == RecordKind.METHODS:
            return record.optimization_notes, record.method_name, " ".join(record.success_contexts)
        if kind == RecordKind.JUDGMENTS:
            return record.content_sample, record.reasoning, record.judgment
        return record.specific_feedback, record.analysis_method, record.file_type

    @staticmethod
    def match_expression(query: str) -> str:
        """Quote every token so user text is never parsed as FTS syntax."""
        tokens = query.split()
        return " OR ".join('"' + t.replace('"', '""') + '"' for t in tokens)

    def search(self, query: str, limit: int = 50) -> List[Tuple[RecordKind, int, float]]:
        """
        Return (kind, record_id, score) with score normalized to (0, 1].
        """
        if not query or not query.strip() or not self.available:
            return []
        self.ensure_fresh()
        weights = ", ".join(str(w) for w in (0.0, 0.0) + FTS_WEIGHTS)
        stmt = text(
            f"SELECT kind, record_id, -bm25({FTS_TABLE}, {weights}) AS score "
            f"FROM {FTS_TABLE} WHERE {FTS_TABLE} MATCH :match "
            "ORDER BY score DESC LIMIT :limit"
        )
        params = {"match": self.match_expression(query), "limit": limit}
        rows = self._store.run(lambda s: s.execute(stmt, params).all())
        if not rows:
            return []
        top = max(row.score for row in rows) or 1.0
        return [(RecordKind(row.kind), int(row.record_id), max(row.score, 0.0) / top) for row in rows]


# -----------------------------------------------------------------------------
# Search Engine
# -----------------------------------------------------------------------------
class SearchEngine:
    """
    Relational search with relevance scoring, plus hybrid full-text ranking.
    """

    def __init__(self, store: LearningStore, full_text_index: Optional[FullTextIndex] = None):
        self._store = store
        self._index = full_text_index or FullTextIndex(store)

    @property
    def index(self) -> FullTextIndex:
        return self._index

    # -------------------------------------------------------------------------
    # Relational Search
    # -------------------------------------------------------------------------

    def search(self, query: Optional[str] = "", options: Optional[SearchOptions] = None) -> SearchResults:
        """
        Search every requested kind.

        Raises:
            ValidationError: malformed date filter or bad limit
        """
        options = options or SearchOptions(limit=self._store.settings.default_search_limit)
        query = validate_text(query, "query") or ""
        hits = {kind: self._search_kind(kind, query, options) for kind in options.kinds}
        results = SearchResults(
            patterns=tuple(hits.get(RecordKind.PATTERNS, ())),
            feedback=tuple(hits.get(RecordKind.FEEDBACK, ())),
            judgments=tuple(hits.get(RecordKind.JUDGMENTS, ())),
            method_stats=tuple(hits.get(RecordKind.METHODS, ())),
        )
        logger.info(f"Search '{query}': {results.total_results} results")
        return results

    def search_patterns(self, query: str = "", options: Optional[SearchOptions] = None) -> List[SearchHit]:
        return self._search_kind(RecordKind.PATTERNS, query, options or SearchOptions())

    def search_feedback(self, query: str = "", options: Optional[SearchOptions] = None) -> List[SearchHit]:
        return self._search_kind(RecordKind.FEEDBACK, query, options or SearchOptions())

    def search_judgments(self, query: str = "", options: Optional[SearchOptions] = None) -> List[SearchHit]:
        return self._search_kind(RecordKind.JUDGMENTS, query, options or SearchOptions())

    def search_methods(self, query: str = "", options: Optional[SearchOptions] = None) -> List[SearchHit]:
        return self._search_kind(RecordKind.METHODS, query, options or SearchOptions())

    def _search_kind(self, kind: RecordKind, query: str, options: SearchOptions) -> List[SearchHit]:
        date_from = parse_date_bound(options.date_from, "date_from")
        date_to = parse_date_bound(options.date_to, "date_to", end=True)
        orm = self._store.table(kind)
        criteria = []

        needle = (query or "").strip().lower()
        if needle:
            criteria.append(or_(*(
                func.py_lower(func.coalesce(col, ""), type_=Text).contains(needle, autoescape=True)
                for col in searchable_columns(orm, kind)
            )))
        if options.category:
            criteria.append(
                func.py_lower(func.coalesce(category_column(orm, kind), ""), type_=Text)
                .contains(options.category.lower(), autoescape=True)
            )
        if date_from:
            criteria.append(orm.created_at >= date_from)
        if date_to:
            criteria.append(orm.created_at <= date_to)

        records = self._store.query(kind, *criteria, order_by=default_order(orm, kind), limit=options.limit)
        return [
            SearchHit(kind=kind, record=r, relevance_score=calculate_relevance(query, searchable_text(r, kind)))
            for r in records
        ]

    # -------------------------------------------------------------------------
    # Hybrid Search
    # -------------------------------------------------------------------------

    def build_index(self) -> int:
        return self._index.rebuild()

    def hybrid_search(self, query: str, options: Optional[SearchOptions] = None) -> List[Dict[str, Any]]:
        """
        Merge full-text and relational hits, then boost proven and recent patterns.

        Each entry: {key, kind, score, record}. Sorted by score descending
        and truncated to options.limit. Category and date filters bind
        full-text hits the same way they bind relational ones.
        """
        options = options or SearchOptions(limit=self._store.settings.default_search_limit)
        date_from = parse_date_bound(options.date_from, "date_from")
        date_to = parse_date_bound(options.date_to, "date_to", end=True)
        merged: Dict[str, Dict[str, Any]] = {}

        fts_hits = self._index.search(query, limit=max(options.limit * 3, options.limit))
        for kind, record_id, score in fts_hits:
            if kind not in options.kinds:
                continue
            record = self._load(kind, record_id)
            if record is None:
                continue
            if not matches_filters(record, kind, options.category, date_from, date_to):
                continue
            key = f"{kind.value}_{record_id}"
            merged[key] = {"key": key, "kind": kind.value, "score": score * FTS_SCORE_WEIGHT, "record": record}

        relational = self.search(query, options)
        for hit in relational.patterns + relational.feedback + relational.judgments + relational.method_stats:
            bonus = hit.relevance_score or DEFAULT_RELEVANCE
            if hit.key in merged:
                merged[hit.key]["score"] += bonus
            else:
                merged[hit.key] = {"key": hit.key, "kind": hit.kind.value, "score": bonus, "record": hit.record}

        recent_cutoff = self._store.cutoff(RECENT_BOOST_DAYS)
        for entry in merged.values():
            if entry["kind"] != RecordKind.PATTERNS.value:
                continue
            pattern = entry["record"]
            if pattern.success_count > SUCCESS_BOOST_MIN_COUNT:
                entry["score"] *= SUCCESS_BOOST
            if pattern.last_used and pattern.last_used >= recent_cutoff:
                entry["score"] *= RECENT_BOOST

        ranked = sorted(merged.values(), key=lambda e: (-e["score"], e["key"]))[:options.limit]
        return [dict(e, record=e["record"].to_dict()) for e in ranked]

    def _load(self, kind: RecordKind, record_id: int):
        orm = self._store.table(kind)
        rows = self._store.query(kind, orm.id == record_id)
        if not rows:
            logger.debug(f"Full-text hit {kind.value}_{record_id} no longer exists")
            self._index.mark_stale()
            return None
        return rows[0]

    # -------------------------------------------------------------------------
    # Pattern Views
    # -------------------------------------------------------------------------

    def successful_patterns(self, file_type: Optional[str] = None, limit: int = 10) -> List[Dict[str, Any]]:
        """Patterns reinforced more than once, most proven first."""
        orm = self._store.table(RecordKind.PATTERNS)
        criteria = [orm.success_count > SUCCESSFUL_PATTERN_MIN_COUNT]
        if file_type:
            criteria.append(func.coalesce(orm.context, "").contains(file_type, autoescape=True))
        patterns = self._store.query(
            RecordKind.PATTERNS,
            *criteria,
            order_by=(orm.success_count.desc(), orm.last_used.desc(), orm.id),
            limit=limit,
        )
        return [p.to_dict() for p in patterns]

    def find_related_patterns(self, keyword: str, limit: int = 10) -> List[SearchHit]:
        hits = self.search_patterns(keyword, SearchOptions(limit=max(limit * 5, limit)))
        hits.sort(key=lambda h: -h.relevance_score)
        return hits[:limit]

    def category_stats(self) -> Dict[str, Any]:
        """Pattern activity per context plus record totals per kind."""
        orm = self._store.table(RecordKind.PATTERNS)

        def op(s):
            rows = s.execute(
                select(
                    orm.context,
                    func.count(orm.id).label("pattern_count"),
                    func.avg(orm.success_count).label("avg_success"),
                    func.max(orm.last_used).label("last_updated"),
                )
                .group_by(orm.context)
                .order_by(func.count(orm.id).desc(), orm.context)
            ).all()
            return [
                {
                    "category": row.context or "",
                    "pattern_count": int(row.pattern_count),
                    "avg_success": round(float(row.avg_success or 0), 2),
                    "last_updated": row.last_updated,
                }
                for row in rows
            ]

        categories = self._store.run(op)
        totals = {kind.value: self._store.count(kind) for kind in RecordKind}
        return {"categories": categories, "totals": totals}
