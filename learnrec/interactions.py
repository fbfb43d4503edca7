"""
User-content interaction matrix with exponential decay.

Each (user, content) pair keeps the raw score and timestamp of the most
recent event; a new event for the same pair replaces the old one. Decay is
applied when the matrix is read, relative to each entry's own timestamp, so
the same history read at the same time always yields the same values.

Example:
    >>> matrix = InteractionMatrix()
    >>> matrix.record(InteractionEvent("u1", "c1", "complete", datetime.now()))
    >>> matrix.decayed_row("u1")
    {'c1': 0.99...}
"""

from typing import Dict, List, Optional, Tuple, Callable
from datetime import datetime
import math
import threading
import logging

import numpy as np

from .entities import InteractionEvent, InteractionAction

logger = logging.getLogger(__name__)

DEFAULT_HALF_LIFE_SECONDS = 7 * 24 * 3600   # 7 days

ACTION_SCORES: Dict[InteractionAction, float] = {
    InteractionAction.COMPLETE: 1.0,
    InteractionAction.LIKE: 0.8,
    InteractionAction.VIEW: 0.5,
    InteractionAction.SKIP: -0.3,
}


def interaction_score(event: InteractionEvent) -> float:
    """Raw score for an event; actions outside the table score 0."""
    score = ACTION_SCORES.get(event.action, 0.0)
    if event.score is not None:
        score *= event.score / 100
    return score


def apply_decay(
    score: float,
    timestamp: datetime,
    now: datetime,
    half_life_seconds: float = DEFAULT_HALF_LIFE_SECONDS
) -> float:
    """``score * exp(-age / half_life)``; future timestamps count as age 0."""
    age = max((now - timestamp).total_seconds(), 0.0)
    return score * math.exp(-age / half_life_seconds)


class InteractionMatrix:
    """Sparse user -> content -> (raw score, timestamp) table."""

    def __init__(
        self,
        half_life_seconds: float = DEFAULT_HALF_LIFE_SECONDS,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.half_life_seconds = half_life_seconds
        self.clock = clock
        self._rows: Dict[str, Dict[str, Tuple[float, datetime]]] = {}
        self._lock = threading.Lock()

    def record(self, event: InteractionEvent) -> float:
        """
        Store an event, overwriting the previous entry for the pair.

        Returns:
            The raw (undecayed) score stored
        """
        raw = interaction_score(event)
        with self._lock:
            self._rows.setdefault(event.user_id, {})[event.content_id] = (raw, event.timestamp)
        return raw

    def has_history(self, user_id: str) -> bool:
        return bool(self._rows.get(user_id))

    def interacted_ids(self, user_id: str) -> List[str]:
        return sorted(self._rows.get(user_id, {}))

    def most_recent(self, user_id: str) -> Optional[str]:
        """Content id of the user's latest event (ties by id)."""
        entries = self._rows.get(user_id)
        if not entries:
            return None
        return max(entries.items(), key=lambda kv: (kv[1][1], kv[0]))[0]

    def users(self) -> List[str]:
        return sorted(self._rows)

    def clear_user(self, user_id: str) -> bool:
        with self._lock:
            return self._rows.pop(user_id, None) is not None

    def decayed_row(self, user_id: str, now: Optional[datetime] = None) -> Dict[str, float]:
        now = now or self.clock()
        return {
            content_id: apply_decay(raw, ts, now, self.half_life_seconds)
            for content_id, (raw, ts) in self._rows.get(user_id, {}).items()
        }

    def to_dense(self, now: Optional[datetime] = None) -> Tuple[np.ndarray, List[str], List[str]]:
        """
        Decayed dense matrix.

        Returns:
            (matrix of shape [n_users, n_items], user_ids, content_ids), ids sorted
        """
        now = now or self.clock()
        with self._lock:
            rows = {user: dict(entries) for user, entries in self._rows.items()}

        user_ids = sorted(rows)
        content_ids = sorted({cid for entries in rows.values() for cid in entries})
        col_index = {cid: i for i, cid in enumerate(content_ids)}

        matrix = np.zeros((len(user_ids), len(content_ids)), dtype=np.float64)
        for u, user in enumerate(user_ids):
            for content_id, (raw, ts) in rows[user].items():
                matrix[u, col_index[content_id]] = apply_decay(raw, ts, now, self.half_life_seconds)
        return matrix, user_ids, content_ids

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._rows.values())
