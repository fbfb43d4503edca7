"""
Model-based scoring signal.

Reads the payload of a loaded artifact and scores candidate content for a
user. Supported payload shapes:

- an object exposing ``score(user_id, content_ids)`` returning a sequence
  aligned with ``content_ids`` or a ``{content_id: score}`` mapping
- a factor-model mapping (typically an ``npz`` artifact) with arrays
  ``U`` (users x k), ``V`` (items x k), ``user_ids`` and ``item_ids``;
  scores are ``V @ U[user]`` min-max scaled to [0, 1]

Anything else yields no signal.
"""

from typing import Dict, List, Any, Mapping
import logging

import numpy as np

from .entities import ContentItem
from .rerank import min_max_normalize

logger = logging.getLogger(__name__)

FACTOR_KEYS = ('U', 'V', 'user_ids', 'item_ids')


def _clip(value: float) -> float:
    return float(min(max(value, 0.0), 1.0))


def _score_with_callable(payload: Any, user_id: str, content_ids: List[str]) -> Dict[str, float]:
    result = payload.score(user_id, content_ids)
    if isinstance(result, Mapping):
        return {cid: _clip(result[cid]) for cid in content_ids if cid in result}
    values = list(result)
    if len(values) != len(content_ids):
        raise ValueError(f"Model returned {len(values)} scores for {len(content_ids)} items")
    return {cid: _clip(v) for cid, v in zip(content_ids, values)}


def _score_with_factors(payload: Mapping, user_id: str, content_ids: List[str]) -> Dict[str, float]:
    user_ids = [str(u) for u in np.asarray(payload['user_ids']).tolist()]
    item_ids = [str(i) for i in np.asarray(payload['item_ids']).tolist()]
    if user_id not in user_ids:
        return {}

    item_index = {iid: idx for idx, iid in enumerate(item_ids)}
    known = [cid for cid in content_ids if cid in item_index]
    if not known:
        return {}

    U = np.asarray(payload['U'], dtype=np.float64)
    V = np.asarray(payload['V'], dtype=np.float64)
    user_vec = U[user_ids.index(user_id)]
    raw = V[[item_index[cid] for cid in known]] @ user_vec

    return dict(zip(known, min_max_normalize(raw.tolist())))


def score_with_model(payload: Any, user_id: str, candidates: List[ContentItem]) -> Dict[str, float]:
    """
    Score candidates with a loaded model payload.

    Returns:
        content_id -> score in [0, 1]; empty if the payload cannot score
    """
    content_ids = [item.id for item in candidates]
    if not content_ids or payload is None:
        return {}

    try:
        if callable(getattr(payload, 'score', None)):
            return _score_with_callable(payload, user_id, content_ids)
        if isinstance(payload, Mapping) and all(key in payload for key in FACTOR_KEYS):
            return _score_with_factors(payload, user_id, content_ids)
    except Exception as e:
        logger.warning(f"Model scoring failed, skipping model signal: {e}")
        return {}

    logger.debug(f"Model payload of type {type(payload).__name__} cannot score content")
    return {}
