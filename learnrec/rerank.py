"""
Hybrid Blend Module.

Combines the three recommendation signals with fixed weights:

    score = 0.4 * collaborative + 0.3 * content + 0.3 * model

A signal that produced nothing for a content id contributes 0. Weights are
not rescaled when a signal is absent, so without a loaded model the blended
score is at most 0.7 times the larger of the two remaining signals.

Example:
    >>> config = BlendConfig.from_yaml("config/recommender.yaml")
    >>> blended = combine_signals(
    ...     {'collaborative': collab_recs, 'content': content_recs, 'model': []},
    ...     config.weights
    ... )
    >>> top = rank(blended, limit=5)
"""

from typing import Dict, List, Optional, Any
from dataclasses import dataclass, field, fields
from pathlib import Path
import logging

import numpy as np
import yaml

from .entities import (
    Recommendation,
    RecommendationFactor,
    RecommendationReason,
    RecommendationType,
)

logger = logging.getLogger(__name__)

SIGNALS = ('collaborative', 'content', 'model')

SIGNAL_LABELS = {
    'collaborative': 'Collaborative filtering',
    'content': 'Content similarity',
    'model': 'Model prediction',
}


# ============================================================================
# Configuration
# ============================================================================

@dataclass
class BlendConfig:
    """Configuration for the hybrid recommender."""

    weights: Dict[str, float] = field(default_factory=lambda: {
        'collaborative': 0.4,
        'content': 0.3,
        'model': 0.3,
    })

    # Content-based candidates must score strictly above this
    similarity_threshold: float = 0.5

    # Interaction decay
    half_life_seconds: float = 7 * 24 * 3600

    # Candidates per signal before blending
    candidate_count: int = 10
    neighbor_count: int = 20
    model_candidate_pool: int = 200

    # Artifact consulted for the model-based signal
    model_artifact_id: str = 'content-recommender-model'

    similarity_cache_size: int = 5000

    @classmethod
    def from_yaml(cls, config_path: str) -> "BlendConfig":
        """Load the ``recommender`` section of a YAML file; defaults on failure."""
        if not Path(config_path).exists():
            logger.warning(f"Config file not found at {config_path}, using default blend")
            return cls()
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
            section = data.get('recommender', {}) or {}
            known = {f.name for f in fields(cls)}
            config = cls(**{k: v for k, v in section.items() if k in known and k != 'weights'})
            if 'weights' in section:
                config.weights = {**config.weights, **section['weights']}
            return config
        except Exception as e:
            logger.warning(f"Failed to load config from {config_path}: {e}")
            return cls()


# ============================================================================
# Combining
# ============================================================================

def combine_signals(
    signals: Dict[str, List[Recommendation]],
    weights: Dict[str, float]
) -> List[Recommendation]:
    """
    Weighted sum over the union of candidate ids.

    Args:
        signals: signal name -> recommendations produced by that signal
        weights: signal name -> blend weight

    Returns:
        One recommendation per distinct content id (unordered). Its factors
        start with one blend factor per signal (contribution 0 when the
        signal did not score the item) followed by the per-signal factors.
    """
    entries: Dict[str, Dict[str, Any]] = {}

    for name in SIGNALS:
        for rec in signals.get(name, []):
            entry = entries.setdefault(rec.content.id, {
                'content': rec.content,
                'scores': {},
                'factors': [],
            })
            entry['scores'][name] = rec.score
            entry['factors'].extend(rec.reasoning.factors)

    combined = []
    for content_id, entry in entries.items():
        scores = entry['scores']
        hybrid_score = sum(scores.get(name, 0.0) * weights.get(name, 0.0) for name in SIGNALS)

        blend_factors = [
            RecommendationFactor(
                factor=SIGNAL_LABELS[name],
                weight=weights.get(name, 0.0),
                contribution=scores.get(name, 0.0) * weights.get(name, 0.0),
            )
            for name in SIGNALS
        ]
        positive = [s for s in scores.values() if s > 0]

        combined.append(Recommendation(
            content=entry['content'],
            score=hybrid_score,
            reasoning=RecommendationReason(
                primary='Recommended based on multiple factors',
                factors=blend_factors + entry['factors'],
            ),
            type=RecommendationType.NEXT_CONTENT,
            confidence=min(positive) if positive else 0.0,
        ))

    return combined


def rank(recommendations: List[Recommendation], limit: Optional[int] = None) -> List[Recommendation]:
    """Sort by score descending, ties by content id."""
    ordered = sorted(recommendations, key=lambda r: (-r.score, r.content.id))
    return ordered[:limit] if limit is not None else ordered


def min_max_normalize(values: List[float]) -> List[float]:
    """
    Normalize values to [0, 1] using min-max scaling.

    Returns 0.5 for every value when they are all equal.
    """
    if not values:
        return []

    arr = np.array(values, dtype=np.float64)
    v_min, v_max = arr.min(), arr.max()

    if v_max > v_min:
        return ((arr - v_min) / (v_max - v_min)).tolist()

    return [0.5] * len(values)
