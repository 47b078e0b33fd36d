"""
Transcript Learning: Record Store

Durable storage for the four learning record kinds over SQLAlchemy.

GUARANTEES:
- Every operation runs in its own short-lived session (see db.session_scope)
- Records violating per-kind invariants are rejected with ValidationError
  before any SQL is issued
- MethodEffectiveness has at most one row per method_name; repeat
  observations are blended by a single INSERT ... ON CONFLICT statement,
  so concurrent writers cannot lose an increment
- LearningPattern reinforcement is a single UPDATE ... success_count + 1
  against the oldest exact (description, context) match, falling back to
  an insert. Two writers racing on a brand new pattern may both insert;
  duplicate patterns are tolerated.
- All SQL is parameterized
- Rows are only removed by the explicit archival path (delete_older_than)
"""

import json
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from sqlalchemy import delete, func, select, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import aliased, sessionmaker

from .config import Settings
from .db import (
    FileTypeJudgmentORM,
    LearningPatternORM,
    MethodEffectivenessORM,
    MethodFeedbackORM,
    create_session_maker,
    retry,
    session_scope,
)
from .errors import NotFoundError, ValidationError
from .learning_model import (
    RECORD_TYPES,
    SATISFACTION_MAX,
    SATISFACTION_MIN,
    SCORE_MAX,
    SCORE_MIN,
    FileTypeJudgment,
    LearningPattern,
    MethodEffectiveness,
    MethodFeedback,
    RecordKind,
    parse_date_bound,
    timestamp_now,
    truncate_sample,
    validate_file_type,
    validate_kind,
    validate_number,
    validate_text,
    window_cutoff,
)
from .scoring import (
    compute_satisfaction_score,
    generate_optimization_notes,
    raw_effectiveness_score,
    round_half_up,
)

logger = logging.getLogger("learning_store")


KIND_TABLES = {
    RecordKind.PATTERNS: LearningPatternORM,
    RecordKind.METHODS: MethodEffectivenessORM,
    RecordKind.JUDGMENTS: FileTypeJudgmentORM,
    RecordKind.FEEDBACK: MethodFeedbackORM,
}

# Column used for the time window of each kind
KIND_TIME_COLUMNS = {
    RecordKind.PATTERNS: "created_at",
    RecordKind.METHODS: "last_used",
    RecordKind.JUDGMENTS: "created_at",
    RecordKind.FEEDBACK: "created_at",
}


# -----------------------------------------------------------------------------
# Field Validation
# -----------------------------------------------------------------------------
def _details_text(value: Any, field_name: str) -> Optional[str]:
    if value is None or isinstance(value, str):
        return value
    try:
        return json.dumps(value, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        raise ValidationError(field_name, "must be text or JSON-serializable")


def _contexts(value: Any, field_name: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        raise ValidationError(field_name, "must be a list of strings")
    result: List[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ValidationError(field_name, f"must contain strings only, got {item!r}")
        if item not in result:
            result.append(item)
    return result


def _bool_or_none(value: Any, field_name: str) -> Optional[bool]:
    if value is None or isinstance(value, bool):
        return value
    raise ValidationError(field_name, f"must be a boolean, got {value!r}")


def _timestamp(value: Any, field_name: str) -> str:
    return parse_date_bound(validate_text(value, field_name, required=True), field_name)


def _optional_file_type(value: Any, field_name: str) -> Optional[str]:
    return None if value is None else validate_file_type(value, field_name)


# field -> validator(value, field_name) per kind; id is never writable
FIELD_RULES: Dict[RecordKind, Dict[str, Callable[[Any, str], Any]]] = {
    RecordKind.PATTERNS: {
        "description": lambda v, f: validate_text(v, f, required=True),
        "details": _details_text,
        "context": validate_text,
        "success_count": lambda v, f: validate_number(v, f, 0, float("inf"), integer=True),
        "created_at": _timestamp,
        "last_used": _timestamp,
    },
    RecordKind.METHODS: {
        "method_name": lambda v, f: validate_text(v, f, required=True),
        "effectiveness_score": lambda v, f: validate_number(v, f, SCORE_MIN, SCORE_MAX, integer=True),
        "usage_count": lambda v, f: validate_number(v, f, 1, float("inf"), integer=True),
        "success_contexts": _contexts,
        "optimization_notes": validate_text,
        "created_at": _timestamp,
        "last_used": _timestamp,
    },
    RecordKind.JUDGMENTS: {
        "content_sample": lambda v, f: truncate_sample(validate_text(v, f, required=True)),
        "judgment": validate_file_type,
        "reasoning": validate_text,
        "user_feedback": validate_text,
        "correct_type": _optional_file_type,
        "is_correct": _bool_or_none,
        "created_at": _timestamp,
    },
    RecordKind.FEEDBACK: {
        "file_type": validate_file_type,
        "analysis_method": lambda v, f: validate_text(v, f, required=True),
        "user_satisfaction_score": lambda v, f: validate_number(v, f, SATISFACTION_MIN, SATISFACTION_MAX),
        "specific_feedback": validate_text,
        "created_at": _timestamp,
    },
}

REQUIRED_FIELDS = {
    RecordKind.PATTERNS: ("description",),
    RecordKind.METHODS: ("method_name", "effectiveness_score"),
    RecordKind.JUDGMENTS: ("content_sample", "judgment"),
    RecordKind.FEEDBACK: ("file_type", "analysis_method", "user_satisfaction_score"),
}

IMMUTABLE_FIELDS = ("id", "created_at")


def validate_record(kind: RecordKind, record: Mapping[str, Any], partial: bool = False) -> Dict[str, Any]:
    """
    Validate and normalize record fields for a kind.

    Raises:
        ValidationError: unknown field, missing required field, or bad value
    """
    rules = FIELD_RULES[kind]
    clean: Dict[str, Any] = {}
    for name, value in record.items():
        if name not in rules:
            raise ValidationError(name, f"unknown field for {kind.value}")
        clean[name] = rules[name](value, name)
    if not partial:
        for name in REQUIRED_FIELDS[kind]:
            if clean.get(name) is None:
                raise ValidationError(name, "is required")
    return clean


# SQLite upsert for method effectiveness. The blend, clamp, usage
# increment, and context merge all happen inside one statement.
METHOD_UPSERT_SQL = """
INSERT INTO method_effectiveness
    (method_name, effectiveness_score, usage_count, success_contexts,
     optimization_notes, created_at, last_used)
VALUES
    (:method_name, :score, 1, :contexts, :notes, :now, :now)
ON CONFLICT(method_name) DO UPDATE SET
    effectiveness_score = MAX(0, MIN(100, CAST(
        ROUND((:raw_score + method_effectiveness.effectiveness_score) / 2.0) AS INTEGER))),
    usage_count = method_effectiveness.usage_count + 1,
    success_contexts = CASE
        WHEN :context IS NULL THEN method_effectiveness.success_contexts
        WHEN EXISTS (
            SELECT 1 FROM json_each(COALESCE(method_effectiveness.success_contexts, '[]'))
            WHERE json_each.value = :context
        ) THEN method_effectiveness.success_contexts
        ELSE json_insert(COALESCE(method_effectiveness.success_contexts, '[]'), '$[#]', :context)
    END,
    optimization_notes = COALESCE(NULLIF(:notes, ''), method_effectiveness.optimization_notes),
    last_used = :now
"""


# -----------------------------------------------------------------------------
# Learning Store
# -----------------------------------------------------------------------------
class LearningStore:
    """
    Record Store for patterns, method effectiveness, judgments, and feedback.

    Construct one per process (or per test) and pass it to the engines.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        session_maker: Optional[sessionmaker] = None,
    ):
        """
        Initialize store.

        Args:
            settings: Runtime settings (defaults if omitted)
            session_maker: Pre-built session factory (optional, for testing).
                Its engine must install db.register_functions on connect.
        """
        self._settings = settings or Settings()
        if session_maker is None:
            self._engine, self._session_maker = create_session_maker(self._settings)
        else:
            self._engine, self._session_maker = session_maker.kw.get("bind"), session_maker

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def session_maker(self) -> sessionmaker:
        return self._session_maker

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()

    def now(self) -> str:
        return timestamp_now(self._settings.utc_offset_hours)

    def cutoff(self, days: int) -> str:
        return window_cutoff(days, self._settings.utc_offset_hours)

    def table(self, kind) -> Any:
        """ORM class backing a record kind; use it to build query criteria."""
        return KIND_TABLES[validate_kind(kind)]

    def run(self, fn: Callable[[Any], Any]):
        def op():
            with session_scope(self._session_maker) as s:
                return fn(s)
        # An in-memory database lives in its one pooled connection
        engine = None if self._settings.db_path == ":memory:" else self._engine
        return retry(
            op,
            tries=self._settings.retry_attempts,
            backoff_seconds=self._settings.retry_backoff_seconds,
            engine=engine,
        )

    @staticmethod
    def _to_record(kind: RecordKind, row) -> Any:
        return RECORD_TYPES[kind].from_dict(row.to_dict())

    # -------------------------------------------------------------------------
    # Generic Operations
    # -------------------------------------------------------------------------

    def insert(self, kind, record: Mapping[str, Any]) -> int:
        """
        Insert a new record and return its id.

        Patterns are always inserted as new rows here; use
        reinforce_pattern for find-and-increment.
        """
        kind = validate_kind(kind)
        values = validate_record(kind, record)
        now = self.now()
        values.setdefault("created_at", now)
        if kind in (RecordKind.PATTERNS, RecordKind.METHODS):
            values.setdefault("last_used", values["created_at"])
        if kind == RecordKind.PATTERNS:
            values.setdefault("success_count", 1)
        if kind == RecordKind.METHODS:
            values.setdefault("usage_count", 1)
            values.setdefault("success_contexts", [])

        orm = KIND_TABLES[kind]

        def op(s):
            row = orm(**values)
            s.add(row)
            s.flush()
            return row.id

        try:
            record_id = self.run(op)
        except IntegrityError as e:
            if kind == RecordKind.METHODS:
                raise ValidationError("method_name", f"{values['method_name']!r} already exists")
            raise ValidationError("record", f"constraint violated: {e.orig}")
        logger.info(f"Inserted {kind.value} record {record_id}")
        return record_id

    def find_by_id(self, kind, record_id: int):
        """
        Fetch one record.

        Raises:
            NotFoundError: no record with that id
        """
        kind = validate_kind(kind)
        orm = KIND_TABLES[kind]

        def op(s):
            row = s.get(orm, record_id)
            return None if row is None else self._to_record(kind, row)

        record = self.run(op)
        if record is None:
            raise NotFoundError(kind.value, record_id)
        return record

    def query(
        self,
        kind,
        *criteria,
        order_by: Sequence[Any] = (),
        limit: Optional[int] = None,
    ) -> List[Any]:
        """
        Return records matching all criteria (SQLAlchemy expressions built
        from self.table(kind)). Empty list when nothing matches.
        """
        kind = validate_kind(kind)
        orm = KIND_TABLES[kind]

        def op(s):
            stmt = select(orm)
            for criterion in criteria:
                stmt = stmt.where(criterion)
            if order_by:
                stmt = stmt.order_by(*order_by)
            else:
                stmt = stmt.order_by(orm.id)
            if limit is not None:
                stmt = stmt.limit(limit)
            return [self._to_record(kind, row) for row in s.scalars(stmt)]

        return self.run(op)

    def update(self, kind, record_id: int, fields: Mapping[str, Any]):
        """
        Apply a partial update and return the updated record.

        Raises:
            ValidationError: immutable/unknown field or bad value
            NotFoundError: no record with that id
        """
        kind = validate_kind(kind)
        for name in IMMUTABLE_FIELDS:
            if name in fields:
                raise ValidationError(name, "is immutable")
        values = validate_record(kind, fields, partial=True)
        if not values:
            return self.find_by_id(kind, record_id)
        orm = KIND_TABLES[kind]

        def op(s):
            row = s.get(orm, record_id)
            if row is None:
                return None
            for name, value in values.items():
                setattr(row, name, value)
            s.flush()
            return self._to_record(kind, row)

        try:
            record = self.run(op)
        except IntegrityError as e:
            raise ValidationError("record", f"constraint violated: {e.orig}")
        if record is None:
            raise NotFoundError(kind.value, record_id)
        logger.info(f"Updated {kind.value} record {record_id}: {sorted(values)}")
        return record

    def count(self, kind, *criteria) -> int:
        kind = validate_kind(kind)
        orm = KIND_TABLES[kind]

        def op(s):
            stmt = select(func.count()).select_from(orm)
            for criterion in criteria:
                stmt = stmt.where(criterion)
            return int(s.scalar(stmt) or 0)

        return self.run(op)

    def delete_older_than(self, kind, days: int) -> int:
        """Archival cleanup: remove rows whose timestamp predates the window."""
        kind = validate_kind(kind)
        orm = KIND_TABLES[kind]
        cutoff = self.cutoff(days)
        column = getattr(orm, KIND_TIME_COLUMNS[kind])

        deleted = self.run(lambda s: s.execute(delete(orm).where(column < cutoff)).rowcount)
        logger.info(f"Archived {deleted} {kind.value} records older than {cutoff}")
        return deleted

    # -------------------------------------------------------------------------
    # Judgment Boundary
    # -------------------------------------------------------------------------

    def record_judgment(self, content_sample: str, judgment: str, reasoning: Optional[str] = None) -> int:
        """Store what the external classifier decided. Returns the new id."""
        return self.insert(
            RecordKind.JUDGMENTS,
            {"content_sample": content_sample, "judgment": judgment, "reasoning": reasoning},
        )

    def confirm_judgment(
        self,
        record_id: int,
        correct_type: str,
        is_correct: bool,
        user_feedback: Optional[str] = None,
    ) -> FileTypeJudgment:
        """Attach ground truth; id and every other field are preserved."""
        if not isinstance(is_correct, bool):
            raise ValidationError("is_correct", f"must be a boolean, got {is_correct!r}")
        fields: Dict[str, Any] = {"correct_type": correct_type, "is_correct": is_correct}
        if user_feedback is not None:
            fields["user_feedback"] = user_feedback
        return self.update(RecordKind.JUDGMENTS, record_id, fields)

    # -------------------------------------------------------------------------
    # Patterns
    # -------------------------------------------------------------------------

    def reinforce_pattern(
        self,
        description: str,
        context: Optional[str] = None,
        details: Any = None,
    ) -> LearningPattern:
        """
        Increment the oldest exact (description, context) match, or insert.
        """
        values = validate_record(
            RecordKind.PATTERNS,
            {"description": description, "context": context, "details": details},
        )
        now = self.now()
        orm = LearningPatternORM
        # aliased so the subquery is not correlated to the UPDATE target
        match = aliased(orm)

        def op(s):
            same_context = match.context.is_(None) if context is None else match.context == context
            target = (
                select(func.min(match.id))
                .where(match.description == description, same_context)
                .scalar_subquery()
            )
            result = s.execute(
                update(orm)
                .where(orm.id == target)
                .values(success_count=orm.success_count + 1, last_used=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount:
                row = s.scalars(select(orm).where(orm.id == target)).one()
                return self._to_record(RecordKind.PATTERNS, row), False
            row = orm(
                description=values["description"],
                details=values.get("details"),
                context=values.get("context"),
                success_count=1,
                created_at=now,
                last_used=now,
            )
            s.add(row)
            s.flush()
            return self._to_record(RecordKind.PATTERNS, row), True

        pattern, created = self.run(op)
        action = "Created" if created else "Reinforced"
        logger.info(f"{action} pattern {pattern.id} ({pattern.context}): success_count={pattern.success_count}")
        return pattern

    # -------------------------------------------------------------------------
    # Method Effectiveness
    # -------------------------------------------------------------------------

    def upsert_method(
        self,
        method_name: str,
        raw_score: float,
        context: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> MethodEffectiveness:
        """
        Insert or blend the effectiveness of a method in one atomic statement.

        raw_score is the unclamped score of the new observation. A new row
        stores it clamped; an existing row stores round((raw + prior) / 2)
        clamped to [0, 100].
        """
        validate_text(method_name, "method_name", required=True)
        if isinstance(raw_score, bool) or not isinstance(raw_score, (int, float)):
            raise ValidationError("raw_score", f"must be a number, got {raw_score!r}")
        validate_text(context, "context")
        validate_text(notes, "optimization_notes")

        params = {
            "method_name": method_name,
            "score": int(min(max(round_half_up(raw_score), SCORE_MIN), SCORE_MAX)),
            "raw_score": float(raw_score),
            "contexts": json.dumps([context] if context else [], ensure_ascii=False),
            "context": context or None,
            "notes": notes or None,
            "now": self.now(),
        }

        def op(s):
            s.execute(text(METHOD_UPSERT_SQL).bindparams(**params))
            row = s.scalars(
                select(MethodEffectivenessORM).where(MethodEffectivenessORM.method_name == method_name)
            ).one()
            return self._to_record(RecordKind.METHODS, row)

        method = self.run(op)
        logger.info(
            f"Tracked method {method_name}: score={method.effectiveness_score}, "
            f"usage={method.usage_count}"
        )
        return method

    def track_method(
        self,
        method_name: str,
        outcome: Optional[Mapping[str, Any]],
        feedback: Optional[Mapping[str, Any]] = None,
        context: Optional[str] = None,
    ) -> MethodEffectiveness:
        """Score an outcome and fold it into the method's blended effectiveness."""
        return self.upsert_method(
            method_name,
            raw_effectiveness_score(outcome, feedback),
            context=context,
            notes=generate_optimization_notes(outcome, feedback),
        )

    def find_method(self, method_name: str) -> Optional[MethodEffectiveness]:
        orm = MethodEffectivenessORM
        rows = self.query(RecordKind.METHODS, orm.method_name == method_name)
        return rows[0] if rows else None

    # -------------------------------------------------------------------------
    # Feedback
    # -------------------------------------------------------------------------

    def record_feedback(
        self,
        file_type: str,
        analysis_method: str,
        result: Optional[Mapping[str, Any]] = None,
        feedback: Optional[Mapping[str, Any]] = None,
        specific_feedback: Optional[str] = None,
    ) -> MethodFeedback:
        """Store satisfaction with one analysis run, estimated when no rating is given."""
        score = compute_satisfaction_score(result or {}, feedback)
        if specific_feedback is None and feedback:
            specific_feedback = feedback.get("comments") or feedback.get("comment")
        record_id = self.insert(
            RecordKind.FEEDBACK,
            {
                "file_type": file_type,
                "analysis_method": analysis_method,
                "user_satisfaction_score": score,
                "specific_feedback": specific_feedback,
            },
        )
        return self.find_by_id(RecordKind.FEEDBACK, record_id)
