"""
Transcript Learning: Relational Storage

ORM tables, engine/session construction, and the short-lived session
discipline used by every store operation.

SESSION RULES:
- One session per logical operation, opened and closed by session_scope
- Commit on success, rollback on error, close in every case
- Lock waits are bounded by the SQLite busy timeout (store timeout)
- OperationalError is translated to StorageUnavailableError /
  StorageTimeoutError and retried a bounded number of times
"""

import json
import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Optional, Tuple

from sqlalchemy import (
    Boolean,
    Column,
    Float,
    Index,
    Integer,
    JSON,
    String,
    Text,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import Settings
from .errors import StorageTimeoutError, StorageUnavailableError

logger = logging.getLogger("learning_db")

Base = declarative_base()


# -----------------------------------------------------------------------------
# ORM Tables
# -----------------------------------------------------------------------------
class LearningPatternORM(Base):
    __tablename__ = "learning_patterns"

    id = Column(Integer, primary_key=True, autoincrement=True)
    description = Column(Text, nullable=False)
    details = Column(Text, nullable=True)
    context = Column(Text, nullable=True)
    success_count = Column(Integer, nullable=False, default=1)
    created_at = Column(String(19), nullable=False)
    last_used = Column(String(19), nullable=False)

    __table_args__ = (
        Index("idx_learning_patterns_context", "context"),
        Index("idx_learning_patterns_created_at", "created_at"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "description": self.description,
            "details": self.details,
            "context": self.context,
            "success_count": self.success_count,
            "created_at": self.created_at,
            "last_used": self.last_used,
        }


class MethodEffectivenessORM(Base):
    __tablename__ = "method_effectiveness"

    id = Column(Integer, primary_key=True, autoincrement=True)
    method_name = Column(String, nullable=False, unique=True)
    effectiveness_score = Column(Integer, nullable=False, default=50)
    usage_count = Column(Integer, nullable=False, default=1)
    success_contexts = Column(JSON, nullable=False, default=list)
    optimization_notes = Column(Text, nullable=True)
    created_at = Column(String(19), nullable=False)
    last_used = Column(String(19), nullable=False)

    __table_args__ = (
        Index("idx_method_effectiveness_last_used", "last_used"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "method_name": self.method_name,
            "effectiveness_score": self.effectiveness_score,
            "usage_count": self.usage_count,
            "success_contexts": list(self.success_contexts or []),
            "optimization_notes": self.optimization_notes,
            "created_at": self.created_at,
            "last_used": self.last_used,
        }


class FileTypeJudgmentORM(Base):
    __tablename__ = "file_type_learning"

    id = Column(Integer, primary_key=True, autoincrement=True)
    content_sample = Column(Text, nullable=False)
    judgment = Column(String(16), nullable=False)
    reasoning = Column(Text, nullable=True)
    user_feedback = Column(Text, nullable=True)
    correct_type = Column(String(16), nullable=True)
    is_correct = Column(Boolean, nullable=True)
    created_at = Column(String(19), nullable=False)

    __table_args__ = (
        Index("idx_file_type_learning_judgment", "judgment"),
        Index("idx_file_type_learning_created_at", "created_at"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "content_sample": self.content_sample,
            "judgment": self.judgment,
            "reasoning": self.reasoning,
            "user_feedback": self.user_feedback,
            "correct_type": self.correct_type,
            "is_correct": self.is_correct,
            "created_at": self.created_at,
        }


class MethodFeedbackORM(Base):
    __tablename__ = "analysis_method_effectiveness"

    id = Column(Integer, primary_key=True, autoincrement=True)
    file_type = Column(String(16), nullable=False)
    analysis_method = Column(String, nullable=False)
    user_satisfaction_score = Column(Float, nullable=False)
    specific_feedback = Column(Text, nullable=True)
    created_at = Column(String(19), nullable=False)

    __table_args__ = (
        Index("idx_method_feedback_file_type", "file_type", "analysis_method"),
        Index("idx_method_feedback_created_at", "created_at"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "file_type": self.file_type,
            "analysis_method": self.analysis_method,
            "user_satisfaction_score": self.user_satisfaction_score,
            "specific_feedback": self.specific_feedback,
            "created_at": self.created_at,
        }


# -----------------------------------------------------------------------------
# Engine / Sessions
# -----------------------------------------------------------------------------
def _json_dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


def _py_lower(value: Any) -> Any:
    # SQLite's lower() only folds ASCII; full-width and accented text needs str.lower
    return value.lower() if isinstance(value, str) else value


def register_functions(dbapi_conn, _record=None) -> None:
    """Install py_lower() on a raw sqlite3 connection."""
    dbapi_conn.create_function("py_lower", 1, _py_lower, deterministic=True)


def create_session_maker(settings: Settings) -> Tuple[Engine, sessionmaker]:
    """
    Build the engine and session factory, creating tables if missing.

    Raises:
        StorageUnavailableError: the database file cannot be opened
    """
    connect_args = {
        "timeout": settings.store_timeout_seconds,
        "check_same_thread": False,
    }
    # Keep Japanese text readable in JSON columns so LIKE filters can see it
    options = {"connect_args": connect_args, "json_serializer": _json_dumps}
    if settings.db_path == ":memory:":
        engine = create_engine(settings.db_url, poolclass=StaticPool, **options)
    else:
        Path(settings.db_path).parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(settings.db_url, **options)
    event.listen(engine, "connect", register_functions)

    try:
        Base.metadata.create_all(engine)
    except OperationalError as e:
        engine.dispose()
        raise translate_operational_error(e)

    logger.info(f"Learning store ready: {settings.db_path}")
    return engine, sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(session_maker):
    s = session_maker()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()


def translate_operational_error(error: OperationalError) -> StorageUnavailableError:
    message = str(error.orig) if error.orig is not None else str(error)
    lowered = message.lower()
    if "locked" in lowered or "busy" in lowered or "timeout" in lowered:
        return StorageTimeoutError(f"store operation timed out: {message}", cause=error)
    return StorageUnavailableError(f"store unavailable: {message}", cause=error)


def retry(
    op: Callable[[], Any],
    tries: int = 3,
    backoff_seconds: float = 0.2,
    engine: Optional[Engine] = None,
):
    """
    Run op, retrying OperationalError with exponential backoff.

    Raises the translated storage error once attempts are exhausted.
    """
    last = None
    for attempt in range(tries):
        try:
            return op()
        except OperationalError as e:
            last = translate_operational_error(e)
            logger.warning(f"Store operation failed (attempt {attempt + 1}/{tries}): {last}")
            if engine is not None:
                engine.dispose()  # drop dead pooled conns
            if attempt + 1 < tries:
                time.sleep(backoff_seconds * (2 ** attempt))
    raise last
