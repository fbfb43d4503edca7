"""
Recommendation Service facade.

Wires the hybrid recommender to its external collaborators (profile store,
learning-gap source, catalog) and exposes user-level operations for the API:
next content, similar, difficulty-adjusted, exam prep, gap filling,
dashboard, personalized feed, trending, by-topic and interaction tracking.

Every method degrades to an empty result instead of raising.

Example:
    >>> service = RecommendationService(recommender)
    >>> service.track_interaction("u1", "c1", "complete", score=92)
    >>> service.get_dashboard("u1")
"""

from typing import Dict, List, Optional, Any, Callable, Iterable
from collections import defaultdict, deque
from datetime import datetime
import logging

from .entities import (
    ExamTarget,
    InteractionEvent,
    LearningGap,
    Recommendation,
    UserProfile,
)
from .recommender import HybridRecommender

logger = logging.getLogger(__name__)

PERFORMANCE_WINDOW = 10

ProfileProvider = Callable[[str], UserProfile]
GapProvider = Callable[[str], List[LearningGap]]


def default_profile(user_id: str) -> UserProfile:
    """Profile used when no profile store is wired in."""
    return UserProfile(
        user_id=user_id,
        grade=10,
        board='CBSE',
        subjects=['Mathematics', 'Science', 'English'],
        learning_style='visual',
        strengths=['Algebra', 'Physics'],
        weaknesses=['Geometry', 'Chemistry'],
        interests=['Technology', 'Space'],
        goals=['JEE Preparation', 'Board Exams'],
        study_time_minutes=120,
    )


def no_gaps(user_id: str) -> List[LearningGap]:
    return []


class RecommendationService:
    """User-facing recommendation operations."""

    def __init__(
        self,
        recommender: HybridRecommender,
        profile_provider: ProfileProvider = default_profile,
        gap_provider: GapProvider = no_gaps,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.recommender = recommender
        self.catalog = recommender.catalog
        self.profile_provider = profile_provider
        self.gap_provider = gap_provider
        self.clock = clock
        self._performance: Dict[str, deque] = defaultdict(lambda: deque(maxlen=PERFORMANCE_WINDOW))

    def _profile(self, user_id: str) -> UserProfile:
        try:
            return self.profile_provider(user_id)
        except Exception as e:
            logger.warning(f"Profile lookup failed for {user_id}, using default: {e}")
            return default_profile(user_id)

    def _current_item(self, user_id: str):
        content_id = self.recommender.interactions.most_recent(user_id)
        return self.catalog.get(content_id) if content_id else None

    # ------------------------------------------------------------------------
    # Recommendation Intents
    # ------------------------------------------------------------------------

    def get_next_content(self, user_id: str, limit: int = 5) -> List[Recommendation]:
        try:
            profile = self._profile(user_id)
            current = self._current_item(user_id)
            if current is None:
                return self.recommender.recommend_cold_start(profile, limit=limit)
            return self.recommender.recommend_next(user_id, current, profile=profile, limit=limit)
        except Exception as e:
            logger.error(f"Error getting next content for {user_id}: {e}")
            return []

    def get_next_after(self, user_id: str, content_id: str, limit: int = 5) -> List[Recommendation]:
        """Next content after an explicitly given current item."""
        try:
            current = self.catalog.get(content_id)
            if current is None:
                logger.info(f"Unknown content id {content_id}, no next content")
                return []
            return self.recommender.recommend_next(user_id, current, profile=self._profile(user_id), limit=limit)
        except Exception as e:
            logger.error(f"Error getting next content after {content_id} for {user_id}: {e}")
            return []

    def get_similar_content(self, content_id: str, limit: int = 5) -> List[Recommendation]:
        try:
            content = self.catalog.get(content_id)
            if content is None:
                logger.info(f"Unknown content id {content_id}, no similar content")
                return []
            return self.recommender.recommend_similar(content, count=limit)
        except Exception as e:
            logger.error(f"Error getting similar content for {content_id}: {e}")
            return []

    def get_difficulty_adjusted(self, user_id: str, limit: int = 5) -> List[Recommendation]:
        try:
            current = self._current_item(user_id)
            if current is None:
                return []
            history = list(self._performance.get(user_id, ()))
            return self.recommender.recommend_difficulty_adjusted(current, history, limit=limit)
        except Exception as e:
            logger.error(f"Error getting difficulty-adjusted content for {user_id}: {e}")
            return []

    def get_exam_prep(
        self,
        user_id: str,
        subject: str,
        topics: Optional[List[str]] = None,
        time_available_minutes: Optional[float] = None,
        limit: int = 5
    ) -> List[Recommendation]:
        try:
            if time_available_minutes is None:
                time_available_minutes = self._profile(user_id).study_time_minutes
            exam = ExamTarget(subject=subject, topics=list(topics or []))
            return self.recommender.recommend_for_exam(user_id, exam, time_available_minutes, limit=limit)
        except Exception as e:
            logger.error(f"Error getting exam prep for {user_id}: {e}")
            return []

    def get_gap_filling(self, user_id: str, limit: int = 5) -> List[Recommendation]:
        """Gap-filling content, or next content when the user has no gaps."""
        try:
            gaps = self.gap_provider(user_id)
            if not gaps:
                return self.get_next_content(user_id, limit)
            return self.recommender.recommend_for_gaps(gaps, limit=limit)
        except Exception as e:
            logger.error(f"Error getting gap-filling content for {user_id}: {e}")
            return []

    def get_trending(self, subject: Optional[str] = None, limit: int = 10) -> List[Recommendation]:
        return self.recommender.recommend_trending(subject=subject, limit=limit)

    def get_by_topic(self, user_id: str, topic: str, limit: int = 5) -> List[Recommendation]:
        return self.recommender.recommend_by_topic(user_id, topic, limit=limit)

    def get_dashboard(self, user_id: str) -> Dict[str, List[Recommendation]]:
        profile = self._profile(user_id)
        exam_subject = profile.subjects[0] if profile.subjects else 'Mathematics'
        return {
            'next_content': self.get_next_content(user_id, 3),
            'gap_filling': self.get_gap_filling(user_id, 3),
            'exam_prep': self.get_exam_prep(user_id, exam_subject, limit=3),
            'trending': self.get_trending(limit=5),
        }

    def get_personalized_feed(self, user_id: str, page: int = 1, page_size: int = 20) -> Dict[str, Any]:
        page = max(page, 1)
        items = self.get_next_content(user_id, limit=page_size * page)
        start = (page - 1) * page_size
        return {
            'items': items[start:start + page_size],
            'total': len(items),
            'page': page,
            'page_size': page_size,
        }

    # ------------------------------------------------------------------------
    # Interactions
    # ------------------------------------------------------------------------

    def track_interaction(
        self,
        user_id: str,
        content_id: str,
        action: str,
        score: Optional[float] = None,
        time_spent: float = 0.0,
        timestamp: Optional[datetime] = None
    ) -> bool:
        try:
            event = InteractionEvent(
                user_id=user_id,
                content_id=content_id,
                action=action,
                timestamp=timestamp or self.clock(),
                score=score,
                time_spent=time_spent,
            )
            self.recommender.track_interaction(event)
            if score is not None:
                self._performance[user_id].append(float(score))
            return True
        except Exception as e:
            logger.error(f"Error tracking interaction {user_id}/{content_id}: {e}")
            return False

    def batch_track_interactions(self, interactions: Iterable[Dict[str, Any]]) -> int:
        """
        Track several interactions.

        Returns:
            Number tracked successfully
        """
        tracked = 0
        for interaction in interactions:
            try:
                ok = self.track_interaction(**interaction)
            except TypeError as e:
                logger.warning(f"Malformed interaction {interaction}: {e}")
                continue
            if ok:
                tracked += 1
        return tracked
