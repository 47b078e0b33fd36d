"""
Transcript Learning - FastAPI Application

HTTP surface over the learning core. Read endpoints return plain
structured data; rendering is left to callers.

ENDPOINTS:
- GET  /health
- GET  /learning/search, /learning/search/hybrid
- GET  /learning/aggregate/{kind}, /learning/top/{kind}
- GET  /learning/report, /learning/accuracy, /learning/categories
- GET  /learning/recommendations/{file_type}
- POST /learning/judgments, /learning/judgments/{id}/confirm
- POST /learning/methods/track, /learning/experiences

Error mapping: ValidationError -> 422, NotFoundError -> 404,
StorageUnavailableError -> 503, anything else -> 500.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, FastAPI, HTTPException, Query, Request
from pydantic import BaseModel, Field

from . import __version__
from .aggregation import AggregationEngine, judgment_improvement_suggestions
from .config import Settings, load_settings
from .errors import NotFoundError, StorageUnavailableError, ValidationError
from .learning_cycle import LearningCycle
from .learning_model import RecordKind, SearchOptions
from .learning_store import LearningStore
from .recommendation_engine import RecommendationEngine
from .search_engine import SearchEngine

logger = logging.getLogger("learning_api")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


# -----------------------------------------------------------------------------
# Services
# -----------------------------------------------------------------------------
@dataclass
class LearningServices:
    """Engines sharing one store, built once per application."""
    store: LearningStore
    search: SearchEngine
    aggregation: AggregationEngine
    recommendation: RecommendationEngine
    cycle: LearningCycle


def build_services(settings: Optional[Settings] = None, store: Optional[LearningStore] = None) -> LearningServices:
    store = store or LearningStore(settings or load_settings())
    search = SearchEngine(store)
    aggregation = AggregationEngine(store)
    return LearningServices(
        store=store,
        search=search,
        aggregation=aggregation,
        recommendation=RecommendationEngine(store, search, aggregation),
        cycle=LearningCycle(store, aggregation, search),
    )


# -----------------------------------------------------------------------------
# Request Models
# -----------------------------------------------------------------------------
class JudgmentRequest(BaseModel):
    content_sample: str = Field(..., min_length=1)
    judgment: str
    reasoning: Optional[str] = None


class ConfirmJudgmentRequest(BaseModel):
    correct_type: str
    is_correct: bool
    user_feedback: Optional[str] = None


class TrackMethodRequest(BaseModel):
    method_name: str = Field(..., min_length=1)
    outcome: Dict[str, Any] = Field(default_factory=dict)
    feedback: Optional[Dict[str, Any]] = None
    context: Optional[str] = None


class ExperienceRequest(BaseModel):
    file_type: str
    analysis_result: Dict[str, Any]
    user_feedback: Optional[Dict[str, Any]] = None


# -----------------------------------------------------------------------------
# Router
# -----------------------------------------------------------------------------
router = APIRouter(prefix="/learning", tags=["learning"])


def _services(request: Request) -> LearningServices:
    return request.app.state.services


def _http_error(action: str, error: Exception) -> HTTPException:
    if isinstance(error, ValidationError):
        return HTTPException(status_code=422, detail={"field": error.field, "message": error.message})
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, StorageUnavailableError):
        logger.error(f"Failed to {action}: {error}")
        return HTTPException(status_code=503, detail=f"Learning store unavailable: {error}")
    logger.error(f"Failed to {action}: {error}")
    return HTTPException(status_code=500, detail=f"Failed to {action}: {str(error)}")


def _kinds(kinds: Optional[List[str]]):
    if not kinds:
        return tuple(RecordKind)
    return tuple(kinds)


@router.get("/search")
def search_endpoint(
    request: Request,
    q: str = Query("", description="Substring to search for"),
    category: Optional[str] = Query(None),
    date_from: Optional[str] = Query(None),
    date_to: Optional[str] = Query(None),
    limit: int = Query(20, ge=0, le=500),
    kinds: Optional[List[str]] = Query(None),
):
    """Keyword / category / date search across record kinds."""
    try:
        options = SearchOptions(
            category=category, date_from=date_from, date_to=date_to, limit=limit, kinds=_kinds(kinds)
        )
        return _services(request).search.search(q, options).to_dict()
    except Exception as e:
        raise _http_error("search learning data", e)


@router.get("/search/hybrid")
def hybrid_search_endpoint(
    request: Request,
    q: str = Query(..., min_length=1),
    category: Optional[str] = Query(None),
    limit: int = Query(20, ge=0, le=500),
):
    try:
        options = SearchOptions(category=category, limit=limit)
        results = _services(request).search.hybrid_search(q, options)
        return {"query": q, "results": results, "total_results": len(results)}
    except Exception as e:
        raise _http_error("run hybrid search", e)


@router.get("/aggregate/{kind}")
def aggregate_endpoint(request: Request, kind: str, window_days: int = Query(30, ge=0)):
    try:
        return _services(request).aggregation.aggregate(kind, window_days)
    except Exception as e:
        raise _http_error("aggregate learning data", e)


@router.get("/top/{kind}")
def top_performers_endpoint(
    request: Request,
    kind: str,
    window_days: int = Query(30, ge=0),
    n: int = Query(5, ge=0, le=100),
):
    try:
        return {"kind": kind, "top": _services(request).aggregation.top_performers(kind, window_days, n)}
    except Exception as e:
        raise _http_error("rank top performers", e)


@router.get("/report")
def report_endpoint(request: Request, window_days: int = Query(30, ge=0)):
    """Effectiveness report (cached)."""
    try:
        services = _services(request)
        report = dict(services.aggregation.effectiveness_report(window_days))
        report["improvement_suggestions"] = services.aggregation.improvement_suggestions(window_days)
        return report
    except Exception as e:
        raise _http_error("build effectiveness report", e)


@router.get("/accuracy")
def accuracy_endpoint(request: Request, window_days: int = Query(30, ge=0)):
    try:
        stats = _services(request).aggregation.accuracy_stats(window_days)
        return {"accuracy": stats, "suggestions": judgment_improvement_suggestions(stats)}
    except Exception as e:
        raise _http_error("compute judgment accuracy", e)


@router.get("/categories")
def categories_endpoint(request: Request):
    try:
        return _services(request).search.category_stats()
    except Exception as e:
        raise _http_error("compute category statistics", e)


@router.get("/recommendations/{file_type}")
def recommendations_endpoint(
    request: Request,
    file_type: str,
    analysis_context: str = Query(""),
):
    """Recommended approach plus reference material for a file type."""
    try:
        services = _services(request)
        return {
            "file_type": file_type,
            "approach": services.recommendation.recommend_for(file_type, analysis_context).to_dict(),
            "methods": services.recommendation.method_recommendations(file_type),
            "references": services.recommendation.reference_patterns(file_type, analysis_context),
        }
    except Exception as e:
        raise _http_error("build recommendations", e)


@router.post("/judgments", status_code=201)
def record_judgment_endpoint(request: Request, body: JudgmentRequest):
    try:
        services = _services(request)
        record_id = services.store.record_judgment(body.content_sample, body.judgment, body.reasoning)
        services.cycle.refresh_derived_state()
        return {"id": record_id}
    except Exception as e:
        raise _http_error("record judgment", e)


@router.post("/judgments/{record_id}/confirm")
def confirm_judgment_endpoint(request: Request, record_id: int, body: ConfirmJudgmentRequest):
    try:
        services = _services(request)
        judgment = services.store.confirm_judgment(
            record_id, body.correct_type, body.is_correct, body.user_feedback
        )
        services.cycle.refresh_derived_state()
        return judgment.to_dict()
    except Exception as e:
        raise _http_error("confirm judgment", e)


@router.post("/methods/track")
def track_method_endpoint(request: Request, body: TrackMethodRequest):
    try:
        services = _services(request)
        method = services.store.track_method(body.method_name, body.outcome, body.feedback, body.context)
        services.cycle.refresh_derived_state()
        return method.to_dict()
    except Exception as e:
        raise _http_error("track method", e)


@router.post("/experiences", status_code=201)
def capture_experience_endpoint(request: Request, body: ExperienceRequest):
    try:
        return _services(request).cycle.capture_analysis_experience(
            body.file_type, body.analysis_result, body.user_feedback
        )
    except Exception as e:
        raise _http_error("capture analysis experience", e)


# -----------------------------------------------------------------------------
# Application Factory
# -----------------------------------------------------------------------------
def create_app(settings: Optional[Settings] = None, services: Optional[LearningServices] = None) -> FastAPI:
    services = services or build_services(settings)
    app = FastAPI(
        title="Transcript Learning",
        description="Learning data storage, search and analytics for transcript analysis",
        version=__version__,
    )
    app.state.services = services
    app.include_router(router)

    @app.get("/health")
    def health():
        return {"status": "ok", "version": __version__}

    return app


def main() -> None:
    import uvicorn

    settings = load_settings()
    configure_logging(settings.log_level)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
