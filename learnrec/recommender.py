"""
Hybrid Content Recommender.

Blends three signals into ranked, explained recommendations:
- Collaborative: user-based neighbourhood over the decayed interaction matrix
- Content-based: metadata similarity to a reference item (memoised)
- Model-based: a loaded artifact read through the lifecycle manager, only
  when one is loaded

Intents: next content, similar content, difficulty-adjusted, exam
preparation, gap filling and cold start (plus trending and by-topic lists).
Every intent returns [] instead of raising; a failed catalog query or
scoring step means "no recommendations".

Example:
    >>> recommender = HybridRecommender(catalog, manager=manager)
    >>> recommender.track_interaction(event)
    >>> recs = recommender.recommend_next("user-1", current_item)
"""

from typing import Dict, List, Optional, Any, Sequence, Set, Union, Callable, TYPE_CHECKING
from datetime import datetime
import logging
import time

import numpy as np

from .catalog import ContentCatalog
from .entities import (
    ContentItem,
    Difficulty,
    ExamTarget,
    GapSeverity,
    InteractionEvent,
    LearningGap,
    Recommendation,
    RecommendationFactor,
    RecommendationReason,
    RecommendationType,
    UserProfile,
)
from .fallback import ColdStartRecommender
from .interactions import InteractionMatrix
from .model_scoring import score_with_model
from .rerank import BlendConfig, combine_signals, rank
from .similarity import SimilarityCache, tag_overlap

if TYPE_CHECKING:
    from modelhub.registry.manager import ModelLifecycleManager

logger = logging.getLogger(__name__)

HIGH_PERFORMANCE = 85
LOW_PERFORMANCE = 60

GAPS_CONSIDERED = 3
ITEMS_PER_GAP = 2


def target_difficulty(current: Difficulty, scores: Sequence[float]) -> Difficulty:
    """
    Difficulty tier for the next item given recent performance (0-100).

    Average >= 85 moves up a tier, < 60 moves down, otherwise stays; an
    empty history keeps the current tier.
    """
    current = Difficulty(current)
    if not scores:
        return current
    average = sum(scores) / len(scores)
    if average >= HIGH_PERFORMANCE:
        return current.step(1)
    if average < LOW_PERFORMANCE:
        return current.step(-1)
    return current


def _with_type(rec: Recommendation, rec_type: RecommendationType, primary: Optional[str] = None) -> Recommendation:
    return Recommendation(
        content=rec.content,
        score=rec.score,
        reasoning=RecommendationReason(
            primary=primary or rec.reasoning.primary,
            factors=list(rec.reasoning.factors),
        ),
        type=rec_type,
        confidence=rec.confidence,
    )


class HybridRecommender:
    """
    Hybrid recommendation engine.

    Only reads lifecycle state, through ``manager.get_model``; it never loads
    or unloads models itself.
    """

    def __init__(
        self,
        catalog: ContentCatalog,
        manager: Optional["ModelLifecycleManager"] = None,
        config: Optional[BlendConfig] = None,
        interactions: Optional[InteractionMatrix] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        """
        Initialize recommender.

        Args:
            catalog: Content catalog
            manager: Lifecycle manager consulted for the model-based signal
            config: Blend weights and candidate settings
            interactions: Interaction matrix (created if omitted)
            clock: Returns the current time (tests inject a fake)
        """
        self.catalog = catalog
        self.manager = manager
        self.config = config or BlendConfig()
        self.clock = clock
        self.interactions = interactions or InteractionMatrix(
            half_life_seconds=self.config.half_life_seconds, clock=clock
        )
        self.similarity_cache = SimilarityCache(max_size=self.config.similarity_cache_size)
        self.cold_start = ColdStartRecommender(
            catalog, collaborative_weight=self.config.weights.get('collaborative', 0.0)
        )

    # ------------------------------------------------------------------------
    # Interactions
    # ------------------------------------------------------------------------

    def track_interaction(self, event: InteractionEvent) -> None:
        """Record an event; visible to the very next recommendation call."""
        self.interactions.record(event)
        self.similarity_cache.invalidate(event.content_id)
        logger.debug(f"Tracked {event.action.value} by {event.user_id} on {event.content_id}")

    def clear_user(self, user_id: str) -> bool:
        return self.interactions.clear_user(user_id)

    # ------------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------------

    def _collaborative(self, user_id: str, exclude_ids: Set[str], count: int) -> List[Recommendation]:
        """Cosine user-user neighbourhood prediction for unseen content."""
        matrix, user_ids, content_ids = self.interactions.to_dense(self.clock())
        if user_id not in user_ids or matrix.shape[0] < 2:
            return []

        u = user_ids.index(user_id)
        norms = np.linalg.norm(matrix, axis=1)
        if norms[u] == 0:
            return []

        denom = norms * norms[u]
        sims = np.divide(matrix @ matrix[u], denom, out=np.zeros_like(norms), where=denom > 0)
        sims[u] = 0.0
        sims = np.clip(sims, 0.0, None)

        neighbors = [i for i in np.argsort(-sims, kind='stable')[:self.config.neighbor_count] if sims[i] > 0]
        if not neighbors:
            return []

        weights = sims[neighbors]
        predicted = np.clip(weights @ matrix[neighbors] / weights.sum(), 0.0, 1.0)
        seen = set(self.interactions.interacted_ids(user_id))
        top_similarity = float(weights.max())

        recommendations = []
        for j, content_id in enumerate(content_ids):
            score = float(predicted[j])
            if score <= 0 or content_id in seen or content_id in exclude_ids:
                continue
            item = self.catalog.get(content_id)
            if item is None:
                continue
            recommendations.append(Recommendation(
                content=item,
                score=score,
                reasoning=RecommendationReason(
                    primary='Users with similar interests enjoyed this',
                    factors=[
                        RecommendationFactor('User similarity', 0.6, 0.6 * top_similarity),
                        RecommendationFactor('Content popularity', 0.4, 0.4 * item.popularity),
                    ],
                ),
                type=RecommendationType.NEXT_CONTENT,
                confidence=top_similarity,
            ))
        return rank(recommendations, count)

    def _content_based(
        self,
        reference: ContentItem,
        count: int,
        exclude_ids: Optional[Set[str]] = None
    ) -> List[Recommendation]:
        """Catalog items similar to ``reference`` above the similarity threshold."""
        exclude = set(exclude_ids or ()) | {reference.id}
        candidates = self.catalog.query(exclude_ids=exclude)

        recommendations = []
        for candidate in candidates:
            similarity = self.similarity_cache.similarity(reference, candidate)
            if similarity <= self.config.similarity_threshold:
                continue
            recommendations.append(Recommendation(
                content=candidate,
                score=similarity,
                reasoning=RecommendationReason(
                    primary='Similar to content you viewed',
                    factors=[
                        RecommendationFactor('Subject match', 0.4, 0.4 if candidate.subject == reference.subject else 0.0),
                        RecommendationFactor('Topic similarity', 0.3, 0.3 if candidate.topic == reference.topic else 0.0),
                        RecommendationFactor('Difficulty match', 0.2, 0.2 if candidate.difficulty == reference.difficulty else 0.0),
                        RecommendationFactor('Tag overlap', 0.1, 0.1 * tag_overlap(reference.tags, candidate.tags)),
                    ],
                ),
                type=RecommendationType.SIMILAR_CONTENT,
                confidence=similarity,
            ))
        return rank(recommendations, count)

    def _model_based(self, user_id: str, exclude_ids: Set[str], count: int) -> List[Recommendation]:
        if self.manager is None:
            return []
        handle = self.manager.get_model(self.config.model_artifact_id)
        if handle is None:
            return []

        candidates = self.catalog.query(exclude_ids=exclude_ids, limit=self.config.model_candidate_pool)
        scores = score_with_model(handle.payload, user_id, candidates)
        by_id = {item.id: item for item in candidates}

        recommendations = [
            Recommendation(
                content=by_id[content_id],
                score=score,
                reasoning=RecommendationReason(
                    primary='Predicted by the recommendation model',
                    factors=[RecommendationFactor('Learned preference', 1.0, score)],
                ),
                type=RecommendationType.NEXT_CONTENT,
                confidence=score,
            )
            for content_id, score in scores.items() if score > 0
        ]
        return rank(recommendations, count)

    # ------------------------------------------------------------------------
    # Intents
    # ------------------------------------------------------------------------

    def recommend_next(
        self,
        user_id: str,
        current_content: ContentItem,
        profile: Optional[UserProfile] = None,
        limit: int = 5
    ) -> List[Recommendation]:
        """
        Next content after ``current_content``.

        Users without history go through the cold-start path.
        """
        start_time = time.perf_counter()
        try:
            if not self.interactions.has_history(user_id):
                return self.recommend_cold_start(
                    profile or UserProfile(user_id=user_id),
                    limit=limit,
                    exclude_ids={current_content.id},
                )

            count = self.config.candidate_count
            exclude = {current_content.id}
            blended = combine_signals({
                'collaborative': self._collaborative(user_id, exclude, count),
                'content': self._content_based(current_content, count),
                'model': self._model_based(user_id, exclude, count),
            }, self.config.weights)

            results = [
                _with_type(rec, RecommendationType.NEXT_CONTENT)
                for rec in rank(blended)
                if rec.content.id != current_content.id
            ][:limit]

            latency = (time.perf_counter() - start_time) * 1000
            logger.info(f"recommend_next user={user_id}, count={len(results)}, latency={latency:.1f}ms")
            return results
        except Exception as e:
            logger.error(f"Next content recommendation error for {user_id}: {e}", exc_info=True)
            return []

    def recommend_similar(self, content: ContentItem, count: int = 5) -> List[Recommendation]:
        try:
            similar = self._content_based(content, count * 2)
            return [_with_type(rec, RecommendationType.SIMILAR_CONTENT) for rec in similar[:count]]
        except Exception as e:
            logger.error(f"Similar content recommendation error for {content.id}: {e}", exc_info=True)
            return []

    def recommend_difficulty_adjusted(
        self,
        current_content: ContentItem,
        performance_history: Sequence[Union[float, Dict[str, Any]]],
        limit: int = 5
    ) -> List[Recommendation]:
        """
        Similar content at the tier the user's recent scores call for.

        Args:
            current_content: Item the user just worked on
            performance_history: Scores 0-100, or dicts with a ``score`` key
            limit: Max results
        """
        try:
            scores = [
                float(p['score']) if isinstance(p, dict) else float(p)
                for p in performance_history
            ]
            target = target_difficulty(current_content.difficulty, scores)

            similar = self._content_based(current_content, 20)
            primary = f"Adjusted to {target.value} difficulty based on your performance"
            return [
                _with_type(rec, RecommendationType.DIFFICULTY_ADJUSTED, primary)
                for rec in similar if rec.content.difficulty == target
            ][:limit]
        except Exception as e:
            logger.error(f"Difficulty-adjusted recommendation error for {current_content.id}: {e}", exc_info=True)
            return []

    def recommend_for_exam(
        self,
        user_id: str,
        exam: ExamTarget,
        time_available_minutes: float,
        limit: int = 5
    ) -> List[Recommendation]:
        """Exam topics, favouring uncovered topics and items that fit the time budget."""
        try:
            history = self.interactions.interacted_ids(user_id)
            covered_topics = {item.topic for item in self.catalog.get_many(history)}
            candidates = self.catalog.query(subject=exam.subject, topics=exam.topics or None)

            recommendations = []
            for item in candidates:
                uncovered = item.topic not in covered_topics
                fits = item.duration_minutes <= time_available_minutes
                score = 0.5 + (0.3 if uncovered else 0.0) + (0.2 if fits else 0.0)
                recommendations.append(Recommendation(
                    content=item,
                    score=score,
                    reasoning=RecommendationReason(
                        primary='Recommended for exam preparation',
                        factors=[
                            RecommendationFactor('Exam relevance', 0.5, 0.5),
                            RecommendationFactor('Topic coverage', 0.3, 0.3 if uncovered else 0.0),
                            RecommendationFactor('Time available', 0.2, 0.2 if fits else 0.0),
                        ],
                    ),
                    type=RecommendationType.EXAM_PREP,
                    confidence=0.8,
                ))
            return rank(recommendations, limit)
        except Exception as e:
            logger.error(f"Exam prep recommendation error for {user_id}: {e}", exc_info=True)
            return []

    def recommend_for_gaps(self, gaps: Sequence[LearningGap], limit: int = 5) -> List[Recommendation]:
        """
        Remedial content for the top 3 gaps (input is already priority-ordered).

        Each gap contributes at most 2 items: its remedial ids first, then the
        most popular catalog items for the gap's topic.
        """
        try:
            recommendations = []
            chosen: Set[str] = set()

            for gap in list(gaps)[:GAPS_CONSIDERED]:
                items = [item for item in self.catalog.get_many(gap.remedial_content) if item.id not in chosen]
                items = items[:ITEMS_PER_GAP]
                if len(items) < ITEMS_PER_GAP:
                    items += self.catalog.query(
                        subject=gap.subject,
                        topics=[gap.topic],
                        exclude_ids=chosen | {item.id for item in items},
                        limit=ITEMS_PER_GAP - len(items),
                    )

                score = 0.9 - (gap.priority / 10) * 0.2
                severity = 0.5 if gap.severity == GapSeverity.HIGH else 0.3
                for item in items:
                    chosen.add(item.id)
                    recommendations.append(Recommendation(
                        content=item,
                        score=score,
                        reasoning=RecommendationReason(
                            primary=f"Addresses learning gap in {gap.topic}",
                            factors=[
                                RecommendationFactor('Gap severity', 0.5, severity),
                                RecommendationFactor('Topic relevance', 0.3, 0.3),
                                RecommendationFactor('Difficulty match', 0.2, 0.2),
                            ],
                        ),
                        type=RecommendationType.GAP_FILLING,
                        confidence=0.85,
                    ))

            return rank(recommendations, limit)
        except Exception as e:
            logger.error(f"Gap-filling recommendation error: {e}", exc_info=True)
            return []

    def recommend_cold_start(
        self,
        profile: UserProfile,
        limit: int = 5,
        exclude_ids: Optional[Set[str]] = None
    ) -> List[Recommendation]:
        try:
            return self.cold_start.recommend(profile, limit=limit, exclude_ids=exclude_ids)
        except Exception as e:
            logger.error(f"Cold start recommendation error for {profile.user_id}: {e}", exc_info=True)
            return []

    def recommend_trending(self, subject: Optional[str] = None, limit: int = 10) -> List[Recommendation]:
        try:
            return self.cold_start.trending(subject=subject, limit=limit)
        except Exception as e:
            logger.error(f"Trending recommendation error: {e}", exc_info=True)
            return []

    def recommend_by_topic(self, user_id: str, topic: str, limit: int = 5) -> List[Recommendation]:
        """Unseen items on one topic, most popular first."""
        try:
            seen = set(self.interactions.interacted_ids(user_id))
            items = self.catalog.query(topics=[topic], exclude_ids=seen, limit=limit)
            return [
                Recommendation(
                    content=item,
                    score=item.popularity,
                    reasoning=RecommendationReason(
                        primary=f"More on {topic}",
                        factors=[RecommendationFactor('Popularity', 1.0, item.popularity)],
                    ),
                    type=RecommendationType.NEXT_CONTENT,
                    confidence=0.6,
                )
                for item in items
            ]
        except Exception as e:
            logger.error(f"Topic recommendation error for {user_id}: {e}", exc_info=True)
            return []

    def get_stats(self) -> Dict[str, Any]:
        model_loaded = bool(self.manager and self.manager.is_model_loaded(self.config.model_artifact_id))
        return {
            'users': len(self.interactions.users()),
            'interactions': len(self.interactions),
            'catalog_size': len(self.catalog) if hasattr(self.catalog, '__len__') else None,
            'model_artifact_id': self.config.model_artifact_id,
            'model_loaded': model_loaded,
            'weights': dict(self.config.weights),
            'similarity_cache': self.similarity_cache.stats(),
        }
