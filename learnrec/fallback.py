"""
Cold-Start Fallback Strategies.

Users with no interaction history get no collaborative signal at all.
They are ranked by catalog popularity scaled by how well the item fits the
profile:

    score = popularity * (0.5 + 0.3 * subject_match + 0.2 * grade_match)

Also provides plain popularity ranking for trending lists.

Example:
    >>> fallback = ColdStartRecommender(catalog)
    >>> recs = fallback.recommend(profile, limit=5)
"""

from typing import List, Optional, Iterable
import logging

from .catalog import ContentCatalog
from .entities import (
    ContentItem,
    UserProfile,
    Recommendation,
    RecommendationFactor,
    RecommendationReason,
    RecommendationType,
)
from .rerank import rank

logger = logging.getLogger(__name__)

POPULARITY_WEIGHT = 0.5
CURRICULUM_WEIGHT = 0.3
GRADE_WEIGHT = 0.2
COLD_START_CONFIDENCE = 0.6


def profile_overlap(item: ContentItem, profile: UserProfile) -> float:
    """Multiplier in [0.5, 1.0] for how well an item fits the profile."""
    overlap = POPULARITY_WEIGHT
    if item.subject in profile.subjects:
        overlap += CURRICULUM_WEIGHT
    if profile.grade is not None and item.grade == profile.grade:
        overlap += GRADE_WEIGHT
    return overlap


class ColdStartRecommender:
    """Popularity x profile-overlap ranking for users without history."""

    def __init__(self, catalog: ContentCatalog, collaborative_weight: float = 0.4):
        self.catalog = catalog
        self.collaborative_weight = collaborative_weight

    def recommend(
        self,
        profile: UserProfile,
        limit: int = 5,
        exclude_ids: Optional[Iterable[str]] = None
    ) -> List[Recommendation]:
        """
        Rank the catalog for a new user.

        Raises:
            CatalogQueryError: propagated to the caller, which decides how
                to degrade
        """
        candidates = self.catalog.query(exclude_ids=exclude_ids)

        recommendations = []
        for item in candidates:
            subject_match = item.subject in profile.subjects
            grade_match = profile.grade is not None and item.grade == profile.grade
            score = item.popularity * profile_overlap(item, profile)

            recommendations.append(Recommendation(
                content=item,
                score=score,
                reasoning=RecommendationReason(
                    primary='Popular content for your grade and subjects',
                    factors=[
                        RecommendationFactor('Popularity', POPULARITY_WEIGHT, item.popularity * POPULARITY_WEIGHT),
                        RecommendationFactor('Curriculum alignment', CURRICULUM_WEIGHT, CURRICULUM_WEIGHT if subject_match else 0.0),
                        RecommendationFactor('Grade match', GRADE_WEIGHT, GRADE_WEIGHT if grade_match else 0.0),
                        # No history: collaborative filtering never contributes
                        RecommendationFactor('Collaborative filtering', self.collaborative_weight, 0.0),
                    ],
                ),
                type=RecommendationType.NEXT_CONTENT,
                confidence=COLD_START_CONFIDENCE,
            ))

        logger.debug(f"Cold start for {profile.user_id}: {len(recommendations)} candidates")
        return rank(recommendations, limit)

    def trending(self, subject: Optional[str] = None, limit: int = 10) -> List[Recommendation]:
        items = self.catalog.query(subject=subject, limit=limit)
        label = f"Trending in {subject}" if subject else 'Trending now'
        return rank([
            Recommendation(
                content=item,
                score=item.popularity,
                reasoning=RecommendationReason(
                    primary=label,
                    factors=[RecommendationFactor('Popularity', 1.0, item.popularity)],
                ),
                type=RecommendationType.NEXT_CONTENT,
                confidence=COLD_START_CONFIDENCE,
            )
            for item in items
        ], limit)
