"""
Learning Content Recommendation Package.

Hybrid recommendations for learners, combining:
- Collaborative filtering over a time-decayed interaction matrix
- Content-based similarity over catalog metadata
- Model-based scoring through a loaded model hub artifact

Submodules:
    entities: Content, interaction, profile and recommendation types
    catalog: ContentCatalog interface and pandas-backed implementation
    recommender: HybridRecommender intents
    service: RecommendationService facade
    container: ServiceContainer composition root
    api: FastAPI application (import explicitly; configures logging)
"""

from .entities import (
    ContentItem,
    Difficulty,
    ExamTarget,
    InteractionAction,
    InteractionEvent,
    LearningGap,
    GapSeverity,
    Recommendation,
    RecommendationType,
    UserProfile,
)
from .catalog import ContentCatalog, DataFrameCatalog
from .rerank import BlendConfig
from .recommender import HybridRecommender
from .service import RecommendationService
from .container import ServiceContainer

__all__ = [
    'ContentItem',
    'Difficulty',
    'ExamTarget',
    'InteractionAction',
    'InteractionEvent',
    'LearningGap',
    'GapSeverity',
    'Recommendation',
    'RecommendationType',
    'UserProfile',
    'ContentCatalog',
    'DataFrameCatalog',
    'BlendConfig',
    'HybridRecommender',
    'RecommendationService',
    'ServiceContainer',
]
