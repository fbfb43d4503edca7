"""
Content similarity and its memo cache.

Similarity between two catalog items is a weighted metadata match:

    subject 0.4 + topic 0.3 + difficulty 0.2 + tag overlap ratio * 0.1

Pairwise values are memoised in a thread-safe LRU cache; tracking an
interaction invalidates every cached pair involving that content id.

Example:
    >>> cache = SimilarityCache(max_size=5000)
    >>> cache.similarity(item_a, item_b)
    0.95
    >>> cache.invalidate(item_a.id)
"""

from typing import Dict, Any, Optional, Tuple, Hashable
from collections import OrderedDict
import threading
import logging

from .entities import ContentItem

logger = logging.getLogger(__name__)

SUBJECT_WEIGHT = 0.4
TOPIC_WEIGHT = 0.3
DIFFICULTY_WEIGHT = 0.2
TAG_WEIGHT = 0.1


def tag_overlap(tags_a, tags_b) -> float:
    """Common tags over the longer tag list; 0 when both are empty."""
    longest = max(len(tags_a), len(tags_b))
    if longest == 0:
        return 0.0
    common = sum(1 for tag in tags_a if tag in tags_b)
    return common / longest


def content_similarity(a: ContentItem, b: ContentItem) -> float:
    similarity = 0.0
    if a.subject == b.subject:
        similarity += SUBJECT_WEIGHT
    if a.topic == b.topic:
        similarity += TOPIC_WEIGHT
    if a.difficulty == b.difficulty:
        similarity += DIFFICULTY_WEIGHT
    similarity += tag_overlap(a.tags, b.tags) * TAG_WEIGHT
    return similarity


# ============================================================================
# LRU Cache Implementation
# ============================================================================

class LRUCache:
    """Bounded, thread-safe mapping that evicts the least recently read key."""

    def __init__(self, max_size: int = 10000, name: str = "cache"):
        self.max_size = max_size
        self.name = name

        self._cache: "OrderedDict[Hashable, Any]" = OrderedDict()
        self._lock = threading.Lock()

        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def get(self, key: Hashable) -> Optional[Any]:
        with self._lock:
            if key not in self._cache:
                self.misses += 1
                return None
            self._cache.move_to_end(key)
            self.hits += 1
            return self._cache[key]

    def put(self, key: Hashable, value: Any) -> None:
        with self._lock:
            self._cache[key] = value
            self._cache.move_to_end(key)
            while len(self._cache) > self.max_size:
                self._cache.popitem(last=False)
                self.evictions += 1

    def delete_where(self, predicate) -> int:
        """Remove every key for which ``predicate(key)`` is true."""
        with self._lock:
            doomed = [key for key in self._cache if predicate(key)]
            for key in doomed:
                del self._cache[key]
            return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)

    def stats(self) -> Dict[str, Any]:
        lookups = self.hits + self.misses
        return {
            "name": self.name,
            "size": len(self._cache),
            "max_size": self.max_size,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hits / lookups if lookups else 0.0,
            "evictions": self.evictions,
        }


class SimilarityCache:
    """Memoised ``content_similarity`` keyed by unordered id pair."""

    def __init__(self, max_size: int = 5000):
        self._cache = LRUCache(max_size=max_size, name="content_similarity")

    @staticmethod
    def _key(a_id: str, b_id: str) -> Tuple[str, str]:
        return (a_id, b_id) if a_id <= b_id else (b_id, a_id)

    def similarity(self, a: ContentItem, b: ContentItem) -> float:
        key = self._key(a.id, b.id)
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        value = content_similarity(a, b)
        self._cache.put(key, value)
        return value

    def invalidate(self, content_id: str) -> int:
        removed = self._cache.delete_where(lambda key: content_id in key)
        if removed:
            logger.debug(f"Invalidated {removed} similarity entries for {content_id}")
        return removed

    def clear(self) -> None:
        self._cache.clear()

    def stats(self) -> Dict[str, Any]:
        return self._cache.stats()
