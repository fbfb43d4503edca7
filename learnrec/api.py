"""
FastAPI Model Hub and Recommendation Service.

Endpoints:
- GET /health: Model health, memory and cache usage
- GET /models, /models/loaded, /models/updates, /models/{id}
- POST /models/{id}/load, /models/{id}/unload, /models/{id}/update
- GET /cache/stats; POST /cache/clear_lru, /cache/clear_old
- POST /interactions, /interactions/batch
- POST /recommend/next, /recommend/similar, /recommend/difficulty,
  /recommend/exam, /recommend/gaps, /recommend/cold_start
- GET /recommend/trending, /recommend/dashboard/{user_id}, /recommend/feed/{user_id}

Usage:
    uvicorn learnrec.api:app --host 0.0.0.0 --port 8000
"""

from typing import Dict, List, Optional, Any, Literal
from datetime import datetime
from contextlib import asynccontextmanager
import logging
import time
import os

from fastapi import FastAPI, HTTPException, Request, Depends
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, ConfigDict
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from modelhub.errors import (
    NotRegisteredError,
    UnsupportedFormatError,
    LoadFailureError,
    LoadTimeoutError,
)
from modelhub.registry import LoadConfig
from .container import ServiceContainer
from .entities import LearningGap, UserProfile

# ============================================================================
# Logging Setup
# ============================================================================

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("learnrec_service")

ENV = os.getenv("ENV", "development")
ALLOWED_ORIGINS = os.getenv(
    "ALLOWED_ORIGINS",
    "http://localhost:3000,http://localhost:8000,http://127.0.0.1:3000"
).split(",")

limiter = Limiter(key_func=get_remote_address)


# ============================================================================
# Request/Response Models
# ============================================================================

class APIBaseModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class HealthResponse(APIBaseModel):
    status: str
    models: Dict[str, int]
    memory: Dict[str, Any]
    cache: Dict[str, float]
    loaded_models: List[str]
    timestamp: str


class ModelInfo(APIBaseModel):
    metadata: Dict[str, Any]
    status: Optional[Dict[str, Any]] = None


class LoadRequest(APIBaseModel):
    enable_offline: bool = Field(default=True, description="Persist to cache after download")
    priority: Literal['low', 'medium', 'high'] = 'medium'
    max_cache_age_seconds: Optional[float] = Field(default=None, ge=0)


class ClearLRURequest(APIBaseModel):
    target_size_bytes: int = Field(..., ge=0)


class ClearOldRequest(APIBaseModel):
    max_age_seconds: Optional[float] = Field(default=None, ge=0)


class InteractionRequest(APIBaseModel):
    user_id: str
    content_id: str
    action: Literal['view', 'complete', 'like', 'bookmark', 'skip']
    score: Optional[float] = Field(default=None, ge=0, le=100)
    time_spent: float = Field(default=0.0, ge=0)
    timestamp: Optional[datetime] = None


class BatchInteractionRequest(APIBaseModel):
    interactions: List[InteractionRequest] = Field(..., max_length=1000)


class NextRequest(APIBaseModel):
    user_id: str
    content_id: Optional[str] = Field(default=None, description="Current item; latest interaction if omitted")
    limit: int = Field(default=5, ge=1, le=50)


class SimilarRequest(APIBaseModel):
    content_id: str
    limit: int = Field(default=5, ge=1, le=50)


class DifficultyRequest(APIBaseModel):
    content_id: str
    performance_history: List[float] = Field(default_factory=list)
    limit: int = Field(default=5, ge=1, le=50)


class ExamRequest(APIBaseModel):
    user_id: str
    subject: str
    topics: List[str] = Field(default_factory=list)
    time_available_minutes: Optional[float] = Field(default=None, ge=0)
    limit: int = Field(default=5, ge=1, le=50)


class GapPayload(APIBaseModel):
    topic: str
    subject: str
    severity: Literal['low', 'medium', 'high']
    priority: int = Field(..., ge=1, le=10)
    remedial_content: List[str] = Field(default_factory=list)
    estimated_minutes: float = 0.0


class GapRequest(APIBaseModel):
    user_id: str
    gaps: Optional[List[GapPayload]] = Field(default=None, description="Use the gap provider if omitted")
    limit: int = Field(default=5, ge=1, le=50)


class ColdStartRequest(APIBaseModel):
    user_id: str
    grade: Optional[int] = None
    board: Optional[str] = None
    subjects: List[str] = Field(default_factory=list)
    learning_style: str = 'visual'
    limit: int = Field(default=5, ge=1, le=50)


class RecommendationResponse(APIBaseModel):
    recommendations: List[Dict[str, Any]]
    count: int
    latency_ms: float


# ============================================================================
# Helpers
# ============================================================================

def get_container(request: Request) -> ServiceContainer:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return container


def _raise_http(error: Exception, action: str) -> None:
    """Map hub errors onto HTTP status codes."""
    if isinstance(error, NotRegisteredError):
        raise HTTPException(status_code=404, detail=str(error))
    if isinstance(error, UnsupportedFormatError):
        raise HTTPException(status_code=422, detail=str(error))
    if isinstance(error, LoadTimeoutError):
        raise HTTPException(status_code=504, detail=str(error))
    if isinstance(error, LoadFailureError):
        raise HTTPException(status_code=502, detail=str(error))
    logger.error(f"{action} failed: {error}", exc_info=True)
    detail = f"{action} failed" if ENV == "production" else f"{action} failed: {error}"
    raise HTTPException(status_code=500, detail=detail)


def _respond(recommendations, start_time: float) -> RecommendationResponse:
    return RecommendationResponse(
        recommendations=[rec.to_dict() for rec in recommendations],
        count=len(recommendations),
        latency_ms=(time.perf_counter() - start_time) * 1000,
    )


def _model_info(container: ServiceContainer, artifact_id: str) -> ModelInfo:
    metadata = container.manager.get_model_metadata(artifact_id)
    if metadata is None:
        raise HTTPException(status_code=404, detail=f"Model {artifact_id} not registered")
    status = container.manager.get_model_status(artifact_id)
    return ModelInfo(metadata=metadata.to_dict(), status=status.to_dict() if status else None)


# ============================================================================
# Application
# ============================================================================

def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        container: Pre-built services; built from the environment at startup
            when omitted
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting model hub and recommendation service...")
        if app.state.container is None:
            app.state.container = ServiceContainer.from_env()
        await app.state.container.startup()

        health = app.state.container.manager.get_health_status()
        logger.info(f"Registered models: {health['total']}, loaded: {health['healthy']}")

        yield

        logger.info("Shutting down model hub and recommendation service...")
        await app.state.container.shutdown()

    app = FastAPI(
        title="Model Hub & Content Recommendation Service",
        description="Model lifecycle management and hybrid content recommendations",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.container = container
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS if ENV == "production" else ["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    # ------------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------------

    @app.get("/health", response_model=HealthResponse)
    async def health(container: ServiceContainer = Depends(get_container)):
        models = container.manager.get_health_status()
        cache_usage = await container.cache.get_cache_usage()
        return HealthResponse(
            status="degraded" if models['failed'] else "healthy",
            models=models,
            memory=container.manager.get_memory_usage(),
            cache=cache_usage,
            loaded_models=container.manager.get_loaded_models(),
            timestamp=datetime.now().isoformat(),
        )

    # ------------------------------------------------------------------------
    # Models
    # ------------------------------------------------------------------------

    @app.get("/models", response_model=List[ModelInfo])
    async def list_models(container: ServiceContainer = Depends(get_container)):
        return [_model_info(container, m.id) for m in container.manager.get_all_models()]

    @app.get("/models/loaded")
    async def loaded_models(container: ServiceContainer = Depends(get_container)):
        return {"loaded": container.manager.get_loaded_models()}

    @app.get("/models/updates")
    async def model_updates(container: ServiceContainer = Depends(get_container)):
        updates = await container.manager.check_for_updates()
        return {"updates": [m.to_dict() for m in updates], "count": len(updates)}

    @app.get("/models/{artifact_id}", response_model=ModelInfo)
    async def get_model(artifact_id: str, container: ServiceContainer = Depends(get_container)):
        return _model_info(container, artifact_id)

    @app.post("/models/{artifact_id}/load", response_model=ModelInfo)
    async def load_model(
        artifact_id: str,
        load_request: Optional[LoadRequest] = None,
        container: ServiceContainer = Depends(get_container)
    ):
        options = load_request or LoadRequest()
        try:
            await container.manager.load_model(artifact_id, LoadConfig(
                enable_offline=options.enable_offline,
                priority=options.priority,
                max_cache_age_seconds=options.max_cache_age_seconds,
            ))
        except Exception as e:
            _raise_http(e, f"Load of {artifact_id}")
        return _model_info(container, artifact_id)

    @app.post("/models/{artifact_id}/unload", response_model=ModelInfo)
    async def unload_model(artifact_id: str, container: ServiceContainer = Depends(get_container)):
        try:
            await container.manager.unload_model(artifact_id)
        except Exception as e:
            _raise_http(e, f"Unload of {artifact_id}")
        return _model_info(container, artifact_id)

    @app.post("/models/{artifact_id}/update", response_model=ModelInfo)
    async def update_model(artifact_id: str, container: ServiceContainer = Depends(get_container)):
        try:
            await container.manager.update_model(artifact_id)
        except Exception as e:
            _raise_http(e, f"Update of {artifact_id}")
        return _model_info(container, artifact_id)

    # ------------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------------

    @app.get("/cache/stats")
    async def cache_stats(container: ServiceContainer = Depends(get_container)):
        stats = await container.cache.get_stats()
        return {
            "total_models": stats['total_models'],
            "total_size": stats['total_size'],
            "oldest_cache": stats['oldest_cache'].isoformat() if stats['oldest_cache'] else None,
            "newest_cache": stats['newest_cache'].isoformat() if stats['newest_cache'] else None,
            "keys": await container.cache.get_all_keys(),
            "usage": await container.cache.get_cache_usage(),
        }

    @app.post("/cache/clear_lru")
    async def cache_clear_lru(body: ClearLRURequest, container: ServiceContainer = Depends(get_container)):
        removed = await container.cache.clear_lru(body.target_size_bytes)
        return {"removed": removed}

    @app.post("/cache/clear_old")
    async def cache_clear_old(body: ClearOldRequest, container: ServiceContainer = Depends(get_container)):
        max_age = body.max_age_seconds
        if max_age is None:
            max_age = container.hub_config.cache_max_age_seconds
        removed = await container.cache.clear_old(max_age)
        return {"removed": removed}

    # ------------------------------------------------------------------------
    # Interactions
    # ------------------------------------------------------------------------

    @app.post("/interactions")
    @limiter.limit("300/minute")
    async def track_interaction(
        request: Request,
        body: InteractionRequest,
        container: ServiceContainer = Depends(get_container)
    ):
        tracked = container.service.track_interaction(**body.model_dump())
        if not tracked:
            raise HTTPException(status_code=500, detail="Failed to track interaction")
        return {"tracked": 1}

    @app.post("/interactions/batch")
    @limiter.limit("30/minute")
    async def track_interactions_batch(
        request: Request,
        body: BatchInteractionRequest,
        container: ServiceContainer = Depends(get_container)
    ):
        tracked = container.service.batch_track_interactions(i.model_dump() for i in body.interactions)
        return {"tracked": tracked, "submitted": len(body.interactions)}

    # ------------------------------------------------------------------------
    # Recommendations
    # ------------------------------------------------------------------------

    @app.post("/recommend/next", response_model=RecommendationResponse)
    @limiter.limit("60/minute")
    async def recommend_next(
        request: Request,
        body: NextRequest,
        container: ServiceContainer = Depends(get_container)
    ):
        start_time = time.perf_counter()
        if body.content_id is None:
            return _respond(container.service.get_next_content(body.user_id, body.limit), start_time)

        if container.catalog.get(body.content_id) is None:
            raise HTTPException(status_code=404, detail=f"Content {body.content_id} not found")
        recs = container.service.get_next_after(body.user_id, body.content_id, body.limit)
        return _respond(recs, start_time)

    @app.post("/recommend/similar", response_model=RecommendationResponse)
    @limiter.limit("60/minute")
    async def recommend_similar(
        request: Request,
        body: SimilarRequest,
        container: ServiceContainer = Depends(get_container)
    ):
        start_time = time.perf_counter()
        return _respond(container.service.get_similar_content(body.content_id, body.limit), start_time)

    @app.post("/recommend/difficulty", response_model=RecommendationResponse)
    @limiter.limit("60/minute")
    async def recommend_difficulty(
        request: Request,
        body: DifficultyRequest,
        container: ServiceContainer = Depends(get_container)
    ):
        start_time = time.perf_counter()
        current = container.catalog.get(body.content_id)
        if current is None:
            raise HTTPException(status_code=404, detail=f"Content {body.content_id} not found")
        recs = container.recommender.recommend_difficulty_adjusted(
            current, body.performance_history, limit=body.limit
        )
        return _respond(recs, start_time)

    @app.post("/recommend/exam", response_model=RecommendationResponse)
    @limiter.limit("60/minute")
    async def recommend_exam(
        request: Request,
        body: ExamRequest,
        container: ServiceContainer = Depends(get_container)
    ):
        start_time = time.perf_counter()
        recs = container.service.get_exam_prep(
            body.user_id, body.subject, body.topics, body.time_available_minutes, limit=body.limit
        )
        return _respond(recs, start_time)

    @app.post("/recommend/gaps", response_model=RecommendationResponse)
    @limiter.limit("60/minute")
    async def recommend_gaps(
        request: Request,
        body: GapRequest,
        container: ServiceContainer = Depends(get_container)
    ):
        start_time = time.perf_counter()
        if body.gaps is None:
            return _respond(container.service.get_gap_filling(body.user_id, body.limit), start_time)
        gaps = [LearningGap(**gap.model_dump()) for gap in body.gaps]
        return _respond(container.recommender.recommend_for_gaps(gaps, limit=body.limit), start_time)

    @app.post("/recommend/cold_start", response_model=RecommendationResponse)
    @limiter.limit("60/minute")
    async def recommend_cold_start(
        request: Request,
        body: ColdStartRequest,
        container: ServiceContainer = Depends(get_container)
    ):
        start_time = time.perf_counter()
        profile = UserProfile(
            user_id=body.user_id,
            grade=body.grade,
            board=body.board,
            subjects=body.subjects,
            learning_style=body.learning_style,
        )
        return _respond(container.recommender.recommend_cold_start(profile, limit=body.limit), start_time)

    @app.get("/recommend/trending", response_model=RecommendationResponse)
    async def recommend_trending(
        subject: Optional[str] = None,
        limit: int = 10,
        container: ServiceContainer = Depends(get_container)
    ):
        start_time = time.perf_counter()
        return _respond(container.service.get_trending(subject=subject, limit=limit), start_time)

    @app.get("/recommend/dashboard/{user_id}")
    async def recommend_dashboard(user_id: str, container: ServiceContainer = Depends(get_container)):
        dashboard = container.service.get_dashboard(user_id)
        return {section: [rec.to_dict() for rec in recs] for section, recs in dashboard.items()}

    @app.get("/recommend/feed/{user_id}")
    async def recommend_feed(
        user_id: str,
        page: int = 1,
        page_size: int = 20,
        container: ServiceContainer = Depends(get_container)
    ):
        feed = container.service.get_personalized_feed(user_id, page=page, page_size=page_size)
        feed['items'] = [rec.to_dict() for rec in feed['items']]
        return feed

    return app


app = create_app()
