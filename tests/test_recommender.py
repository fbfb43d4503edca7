"""
Unit tests for the hybrid recommender intents.
"""

from types import SimpleNamespace
from unittest.mock import Mock

import pytest

from modelhub.errors import CatalogQueryError
from learnrec.entities import (
    Difficulty,
    ExamTarget,
    InteractionEvent,
    LearningGap,
    RecommendationType,
    UserProfile,
)
from learnrec.recommender import HybridRecommender, target_difficulty


@pytest.fixture
def recommender(catalog, clock):
    return HybridRecommender(catalog, manager=None, clock=clock)


def track(recommender, clock, user_id, content_id, action, score=None):
    recommender.track_interaction(InteractionEvent(user_id, content_id, action, clock(), score=score))


def ids(recommendations):
    return [r.content.id for r in recommendations]


class TestTargetDifficulty:

    @pytest.mark.parametrize("current,scores,expected", [
        (Difficulty.MEDIUM, [90, 95], Difficulty.HARD),
        (Difficulty.MEDIUM, [85], Difficulty.HARD),
        (Difficulty.MEDIUM, [40, 70], Difficulty.EASY),
        (Difficulty.MEDIUM, [60], Difficulty.MEDIUM),
        (Difficulty.HARD, [99], Difficulty.HARD),
        (Difficulty.EASY, [10], Difficulty.EASY),
        (Difficulty.HARD, [], Difficulty.HARD),
    ])
    def test_tiers(self, current, scores, expected):
        assert target_difficulty(current, scores) is expected


class TestNextContent:

    def test_cold_start_without_history(self, recommender, catalog):
        profile = UserProfile(user_id="u9", grade=10, subjects=["Mathematics"])

        recs = recommender.recommend_next("u9", catalog.get("m1"), profile=profile, limit=3)

        assert ids(recs) == ["m2", "m4", "s1"]
        assert all(r.confidence == 0.6 for r in recs)
        collaborative = [f for f in recs[0].reasoning.factors if f.factor == "Collaborative filtering"]
        assert collaborative[0].contribution == 0.0

    def test_blends_collaborative_and_content(self, recommender, catalog, clock):
        track(recommender, clock, "u1", "m1", "complete")
        track(recommender, clock, "u2", "m1", "complete")
        track(recommender, clock, "u2", "m2", "like")
        track(recommender, clock, "u2", "s1", "view")

        recs = recommender.recommend_next("u1", catalog.get("m1"), limit=5)

        assert ids(recs) == ["m2", "m3", "s1"]
        assert recs[0].score == pytest.approx(0.4 * 0.8 + 0.3 * 0.8)
        assert recs[1].score == pytest.approx(0.3 * 0.75)
        assert recs[2].score == pytest.approx(0.4 * 0.5)
        assert all(r.type is RecommendationType.NEXT_CONTENT for r in recs)
        assert all(0.0 <= r.score <= 1.0 for r in recs)

    def test_current_item_is_never_recommended(self, recommender, catalog, clock):
        track(recommender, clock, "u1", "m2", "view")
        track(recommender, clock, "u2", "m2", "view")
        track(recommender, clock, "u2", "m1", "complete")

        recs = recommender.recommend_next("u1", catalog.get("m1"), limit=10)

        assert "m1" not in ids(recs)

    def test_model_signal_from_loaded_artifact(self, catalog, clock, factor_payload):
        manager = Mock()
        manager.get_model.return_value = SimpleNamespace(payload=factor_payload)
        recommender = HybridRecommender(catalog, manager=manager, clock=clock)
        track(recommender, clock, "u1", "m1", "complete")

        recs = recommender.recommend_next("u1", catalog.get("m1"), limit=5)
        by_id = {r.content.id: r for r in recs}

        manager.get_model.assert_called_with("content-recommender-model")
        assert by_id["m4"].score == pytest.approx(0.3 * 1.0)
        assert by_id["m2"].score == pytest.approx(0.3 * 0.8)
        assert by_id["m3"].score == pytest.approx(0.3 * 0.75 + 0.3 * 0.125)

    def test_model_not_loaded_contributes_nothing(self, catalog, clock):
        manager = Mock()
        manager.get_model.return_value = None
        recommender = HybridRecommender(catalog, manager=manager, clock=clock)
        track(recommender, clock, "u1", "m1", "complete")

        recs = recommender.recommend_next("u1", catalog.get("m1"))

        assert ids(recs) == ["m2", "m3"]
        manager.load_model.assert_not_called()

    def test_catalog_failure_yields_empty_list(self, recommender, catalog, clock):
        track(recommender, clock, "u1", "m1", "complete")
        current = catalog.get("m1")
        recommender.catalog = Mock()
        recommender.catalog.query.side_effect = CatalogQueryError("database down")

        assert recommender.recommend_next("u1", current) == []

    def test_stale_interactions_lose_weight(self, recommender, catalog, clock):
        track(recommender, clock, "u1", "m1", "complete")
        track(recommender, clock, "u2", "m1", "complete")
        track(recommender, clock, "u2", "s1", "complete")
        fresh = recommender.recommend_next("u1", catalog.get("m1"))

        clock.advance(14 * 24 * 3600)
        stale = recommender.recommend_next("u1", catalog.get("m1"))

        def score(recs, content_id):
            return next(r.score for r in recs if r.content.id == content_id)

        assert score(stale, "s1") < score(fresh, "s1")


class TestSimilarAndDifficulty:

    def test_similar_content(self, recommender, catalog):
        recs = recommender.recommend_similar(catalog.get("m1"), count=5)

        assert ids(recs) == ["m2", "m3"]
        assert all(r.type is RecommendationType.SIMILAR_CONTENT for r in recs)
        assert recs[0].reasoning.primary == "Similar to content you viewed"

    def test_threshold_filters_weak_matches(self, catalog, clock):
        recommender = HybridRecommender(catalog, clock=clock)
        recommender.config.similarity_threshold = 0.76

        assert ids(recommender.recommend_similar(catalog.get("m1"))) == ["m2"]

    @pytest.mark.parametrize("history,expected", [
        ([90, 95], ["m3"]),
        ([{"score": 30}, {"score": 50}], ["m1"]),
        ([70], ["m4"]),
    ])
    def test_difficulty_adjusted(self, recommender, catalog, history, expected):
        recs = recommender.recommend_difficulty_adjusted(catalog.get("m2"), history)

        assert ids(recs) == expected
        target = recs[0].content.difficulty.value
        assert recs[0].reasoning.primary == f"Adjusted to {target} difficulty based on your performance"
        assert recs[0].type is RecommendationType.DIFFICULTY_ADJUSTED


class TestExamAndGaps:

    def test_exam_prep_prefers_uncovered_topics_that_fit(self, recommender, clock):
        track(recommender, clock, "u1", "m1", "complete")

        recs = recommender.recommend_for_exam("u1", ExamTarget(subject="Mathematics"), 30, limit=5)

        assert ids(recs) == ["m4", "m1", "m2", "m3"]
        assert [r.score for r in recs] == pytest.approx([1.0, 0.7, 0.7, 0.5])
        assert all(r.confidence == 0.8 for r in recs)

    def test_exam_prep_topic_filter(self, recommender):
        exam = ExamTarget(subject="Science", topics=["Chemistry"])

        assert ids(recommender.recommend_for_exam("u1", exam, 60)) == ["s2"]

    def test_gap_filling(self, recommender):
        gaps = [
            LearningGap("Geometry", "Mathematics", "high", priority=1, remedial_content=["m4"]),
            LearningGap("Chemistry", "Science", "medium", priority=3),
            LearningGap("Physics", "Science", "low", priority=5, remedial_content=["missing-id"]),
            LearningGap("Grammar", "English", "low", priority=9),
        ]

        recs = recommender.recommend_for_gaps(gaps, limit=10)

        assert ids(recs) == ["m4", "s2", "s1"]
        assert [r.score for r in recs] == pytest.approx([0.88, 0.84, 0.8])
        assert recs[0].reasoning.primary == "Addresses learning gap in Geometry"
        assert all(r.confidence == 0.85 for r in recs)

    def test_at_most_two_items_per_gap(self, recommender):
        gaps = [LearningGap("Algebra", "Mathematics", "high", priority=2)]

        assert ids(recommender.recommend_for_gaps(gaps)) == ["m1", "m2"]

    def test_no_gaps(self, recommender):
        assert recommender.recommend_for_gaps([]) == []


class TestColdStartAndLists:

    def test_cold_start_scores(self, recommender, math_profile):
        recs = recommender.recommend_cold_start(math_profile, limit=7)

        assert ids(recs)[:4] == ["m1", "m2", "m4", "s1"]
        assert recs[0].score == pytest.approx(0.9)
        assert recs[3].score == pytest.approx(0.95 * 0.7)

    def test_cold_start_empty_catalog(self, clock, math_profile):
        from learnrec.catalog import DataFrameCatalog
        recommender = HybridRecommender(DataFrameCatalog.empty(), clock=clock)

        assert recommender.recommend_cold_start(math_profile) == []

    def test_trending(self, recommender):
        assert ids(recommender.recommend_trending(limit=3)) == ["s1", "m1", "m2"]
        assert ids(recommender.recommend_trending(subject="Science")) == ["s1", "s2"]

    def test_by_topic_excludes_seen(self, recommender, clock):
        track(recommender, clock, "u1", "m1", "view")

        assert ids(recommender.recommend_by_topic("u1", "Algebra")) == ["m2", "m3"]

    def test_interaction_invalidates_similarity(self, recommender, catalog, clock):
        recommender.recommend_similar(catalog.get("m1"))
        assert recommender.similarity_cache.stats()["size"] > 0

        track(recommender, clock, "u1", "m1", "view")

        assert recommender.get_stats()["similarity_cache"]["size"] == 0
        assert recommender.get_stats()["interactions"] == 1
