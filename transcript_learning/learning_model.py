"""
Transcript Learning: Data Models

Frozen dataclasses and LOCKED enums for the four learning record kinds.

RECORD KINDS:
- LearningPattern: a (description, context) observation with a
  reinforcement counter
- MethodEffectiveness: one live row per analysis method, 0-100 score
- FileTypeJudgment: what the external classifier said about a transcript,
  and later whether it was right
- MethodFeedback: user satisfaction (1-5) with one analysis run

CONSTRAINTS:
- Records are plain facts joined only by soft correlation on
  context / file_type strings
- Timestamps are "YYYY-MM-DD HH:MM:SS" wall-clock strings at a fixed
  UTC offset (UTC+9 by default) and compare lexicographically
"""

import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Dict, Any, Tuple

from .errors import ValidationError


# -----------------------------------------------------------------------------
# File Type Enum (LOCKED - EXACTLY 4 VALUES)
# -----------------------------------------------------------------------------
class FileType(str, Enum):
    """
    Transcript categories produced by the external classifier.

    This enum is LOCKED - EXACTLY 4 values.
    """
    MEETING = "meeting"
    PERSONAL = "personal"
    PROPOSAL = "proposal"
    UNKNOWN = "unknown"


# -----------------------------------------------------------------------------
# Trend Class Enum (LOCKED)
# -----------------------------------------------------------------------------
class TrendClass(str, Enum):
    """
    Result of comparing an older and a newer half of a score series.

    INSUFFICIENT_DATA is distinct from STABLE and must never be coerced.
    """
    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"
    INSUFFICIENT_DATA = "insufficient_data"


# -----------------------------------------------------------------------------
# Record Kind Enum (LOCKED)
# -----------------------------------------------------------------------------
class RecordKind(str, Enum):
    """The four stored record kinds."""
    PATTERNS = "patterns"
    METHODS = "methods"
    JUDGMENTS = "judgments"
    FEEDBACK = "feedback"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class EffectivenessLevel(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    AVERAGE = "average"
    POOR = "poor"


# -----------------------------------------------------------------------------
# Limits
# -----------------------------------------------------------------------------
CONTENT_SAMPLE_MAX_CHARS = 500
SCORE_MIN = 0
SCORE_MAX = 100
SATISFACTION_MIN = 1.0
SATISFACTION_MAX = 5.0

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
DATE_FORMAT = "%Y-%m-%d"
_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")


# -----------------------------------------------------------------------------
# Clock
# -----------------------------------------------------------------------------
def local_now(utc_offset_hours: int = 9) -> datetime:
    """Current wall-clock time at the store's fixed offset (naive)."""
    tz = timezone(timedelta(hours=utc_offset_hours))
    return datetime.now(tz).replace(tzinfo=None, microsecond=0)


def format_timestamp(value: datetime) -> str:
    return value.strftime(TIMESTAMP_FORMAT)


def timestamp_now(utc_offset_hours: int = 9) -> str:
    return format_timestamp(local_now(utc_offset_hours))


def window_cutoff(days: int, utc_offset_hours: int = 9) -> str:
    """Timestamp string `days` before now; rows at or after it are in the window."""
    if days is None or days < 0:
        raise ValidationError("window_days", f"must be a non-negative integer, got {days!r}")
    return format_timestamp(local_now(utc_offset_hours) - timedelta(days=days))


def parse_date_bound(value: Optional[str], field_name: str, end: bool = False) -> Optional[str]:
    """
    Normalize a date filter to a comparable timestamp string.

    Accepts "YYYY-MM-DD" or "YYYY-MM-DD HH:MM:SS" (a "T" separator is
    tolerated). A date-only upper bound covers the whole day.
    """
    if value is None or value == "":
        return None
    text = str(value).strip().replace("T", " ")
    if _DATE_ONLY.match(text):
        try:
            day = datetime.strptime(text, DATE_FORMAT)
        except ValueError:
            raise ValidationError(field_name, f"malformed date: {value!r}")
        if end:
            day = day.replace(hour=23, minute=59, second=59)
        return format_timestamp(day)
    try:
        return format_timestamp(datetime.strptime(text[:19], TIMESTAMP_FORMAT))
    except ValueError:
        raise ValidationError(field_name, f"malformed date: {value!r}")


# -----------------------------------------------------------------------------
# Validation Helpers
# -----------------------------------------------------------------------------
def validate_file_type(value: Any, field_name: str) -> str:
    """Return the enum value string or raise ValidationError."""
    if isinstance(value, FileType):
        return value.value
    try:
        return FileType(value).value
    except ValueError:
        allowed = ", ".join(t.value for t in FileType)
        raise ValidationError(field_name, f"must be one of {allowed}, got {value!r}")


def validate_kind(value: Any, field_name: str = "kind") -> RecordKind:
    if isinstance(value, RecordKind):
        return value
    try:
        return RecordKind(value)
    except ValueError:
        allowed = ", ".join(k.value for k in RecordKind)
        raise ValidationError(field_name, f"must be one of {allowed}, got {value!r}")


def validate_number(value: Any, field_name: str, low: float, high: float, integer: bool = False):
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(field_name, f"must be a number, got {value!r}")
    if not math.isfinite(value):
        raise ValidationError(field_name, f"must be finite, got {value!r}")
    if integer and int(value) != value:
        raise ValidationError(field_name, f"must be an integer, got {value!r}")
    if value < low or value > high:
        raise ValidationError(field_name, f"must be within [{low}, {high}], got {value!r}")
    return int(value) if integer else value


def validate_text(value: Any, field_name: str, required: bool = False) -> Optional[str]:
    if value is None:
        if required:
            raise ValidationError(field_name, "is required")
        return None
    if not isinstance(value, str):
        raise ValidationError(field_name, f"must be a string, got {type(value).__name__}")
    if required and not value.strip():
        raise ValidationError(field_name, "must not be empty")
    return value


def truncate_sample(text: str) -> str:
    return text[:CONTENT_SAMPLE_MAX_CHARS]


# -----------------------------------------------------------------------------
# Learning Pattern (Frozen)
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class LearningPattern:
    """
    A recorded (description, context) observation.

    success_count is incremented on reinforcement, never decremented.
    """
    id: int
    description: str
    details: Optional[str]
    context: Optional[str]
    success_count: int
    created_at: str
    last_used: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "details": self.details,
            "context": self.context,
            "success_count": self.success_count,
            "created_at": self.created_at,
            "last_used": self.last_used,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LearningPattern":
        return cls(
            id=data["id"],
            description=data["description"],
            details=data.get("details"),
            context=data.get("context"),
            success_count=data.get("success_count", 1),
            created_at=data["created_at"],
            last_used=data.get("last_used") or data["created_at"],
        )


# -----------------------------------------------------------------------------
# Method Effectiveness (Frozen)
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class MethodEffectiveness:
    """
    Blended effectiveness of one analysis method.

    At most one live row per method_name; score always within [0, 100].
    """
    id: int
    method_name: str
    effectiveness_score: int
    usage_count: int
    success_contexts: Tuple[str, ...]
    optimization_notes: Optional[str]
    created_at: str
    last_used: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "method_name": self.method_name,
            "effectiveness_score": self.effectiveness_score,
            "usage_count": self.usage_count,
            "success_contexts": list(self.success_contexts),
            "optimization_notes": self.optimization_notes,
            "created_at": self.created_at,
            "last_used": self.last_used,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MethodEffectiveness":
        return cls(
            id=data["id"],
            method_name=data["method_name"],
            effectiveness_score=data["effectiveness_score"],
            usage_count=data.get("usage_count", 1),
            success_contexts=tuple(data.get("success_contexts") or ()),
            optimization_notes=data.get("optimization_notes"),
            created_at=data["created_at"],
            last_used=data.get("last_used") or data["created_at"],
        )


# -----------------------------------------------------------------------------
# File Type Judgment (Frozen)
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class FileTypeJudgment:
    """
    A classification recorded at the external judgment boundary.

    correct_type / is_correct stay None until confirmed.
    """
    id: int
    content_sample: str
    judgment: str  # FileType value
    reasoning: Optional[str]
    user_feedback: Optional[str]
    correct_type: Optional[str]  # FileType value
    is_correct: Optional[bool]
    created_at: str

    def to_dict(self) -> Dict[str, Any]:
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

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FileTypeJudgment":
        is_correct = data.get("is_correct")
        return cls(
            id=data["id"],
            content_sample=data.get("content_sample") or "",
            judgment=data["judgment"],
            reasoning=data.get("reasoning"),
            user_feedback=data.get("user_feedback"),
            correct_type=data.get("correct_type"),
            is_correct=None if is_correct is None else bool(is_correct),
            created_at=data["created_at"],
        )


# -----------------------------------------------------------------------------
# Method Feedback (Frozen)
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class MethodFeedback:
    """User satisfaction with one analysis run (1-5, one decimal)."""
    id: int
    file_type: str
    analysis_method: str
    user_satisfaction_score: float
    specific_feedback: Optional[str]
    created_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "file_type": self.file_type,
            "analysis_method": self.analysis_method,
            "user_satisfaction_score": self.user_satisfaction_score,
            "specific_feedback": self.specific_feedback,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MethodFeedback":
        return cls(
            id=data["id"],
            file_type=data["file_type"],
            analysis_method=data["analysis_method"],
            user_satisfaction_score=data["user_satisfaction_score"],
            specific_feedback=data.get("specific_feedback"),
            created_at=data["created_at"],
        )


RECORD_TYPES = {
    RecordKind.PATTERNS: LearningPattern,
    RecordKind.METHODS: MethodEffectiveness,
    RecordKind.JUDGMENTS: FileTypeJudgment,
    RecordKind.FEEDBACK: MethodFeedback,
}


# -----------------------------------------------------------------------------
# Search Options / Results (Frozen)
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class SearchOptions:
    """Filters shared by every searched kind."""
    category: Optional[str] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    limit: int = 20
    kinds: Tuple[RecordKind, ...] = tuple(RecordKind)

    def __post_init__(self):
        if isinstance(self.limit, bool) or not isinstance(self.limit, int) or self.limit < 0:
            raise ValidationError("limit", f"must be a non-negative integer, got {self.limit!r}")
        object.__setattr__(self, "kinds", tuple(validate_kind(k, "kinds") for k in self.kinds))


@dataclass(frozen=True)
class SearchHit:
    """One matching record plus its relevance in [0, 1]."""
    kind: RecordKind
    record: Any  # one of RECORD_TYPES values
    relevance_score: float

    @property
    def key(self) -> str:
        return f"{self.kind.value}_{self.record.id}"

    def to_dict(self) -> Dict[str, Any]:
        data = self.record.to_dict()
        data["relevance_score"] = self.relevance_score
        return data


@dataclass(frozen=True)
class SearchResults:
    patterns: Tuple[SearchHit, ...] = ()
    feedback: Tuple[SearchHit, ...] = ()
    judgments: Tuple[SearchHit, ...] = ()
    method_stats: Tuple[SearchHit, ...] = ()

    @property
    def total_results(self) -> int:
        return len(self.patterns) + len(self.feedback) + len(self.judgments) + len(self.method_stats)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "patterns": [h.to_dict() for h in self.patterns],
            "feedback": [h.to_dict() for h in self.feedback],
            "judgments": [h.to_dict() for h in self.judgments],
            "method_stats": [h.to_dict() for h in self.method_stats],
            "total_results": self.total_results,
        }


# -----------------------------------------------------------------------------
# Recommendation Output (Frozen)
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class StatisticalFlag:
    """A flag raised from aggregate numbers; priority is fixed per flag type."""
    type: str
    priority: str  # Priority value
    message: str
    action: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "priority": self.priority,
            "message": self.message,
            "action": self.action,
        }


@dataclass(frozen=True)
class ApproachRecommendation:
    primary: str
    reasoning: str
    confidence: float
    alternatives: Tuple[Dict[str, Any], ...] = ()
    adaptations: Optional[Dict[str, Any]] = None
    steps: Tuple[str, ...] = field(default=())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "primary": self.primary,
            "reasoning": self.reasoning,
            "confidence": self.confidence,
            "alternatives": [dict(a) for a in self.alternatives],
            "adaptations": self.adaptations,
            "steps": list(self.steps),
        }
