"""
Persistent Model Cache.

SQLite-backed store for loaded artifacts so a fresh process can serve models
without re-downloading them:
- One record per artifact id (last writer wins)
- Access tracking (last_accessed, access_count) for LRU eviction
- Age-based and size-based eviction
- Storage usage estimate against a quota

All SQLite work runs in the default executor; every public method is a
coroutine.

Example:
    >>> cache = ModelCache("artifacts/cache/model_cache.db", quota_bytes=2 * 1024**3)
    >>> await cache.set(artifact.artifact_id, artifact, metadata)
    >>> cached = await cache.get("content-recommender-model")
    >>> cached.access_count
    1
"""

from typing import Dict, List, Optional, Any, Callable
from dataclasses import dataclass
from contextlib import contextmanager
from datetime import datetime
from functools import partial
from pathlib import Path
import asyncio
import json
import logging
import os
import pickle
import sqlite3
import threading

import psutil

from modelhub.errors import CacheWriteError
from modelhub.config import DEFAULT_CACHE_DB_PATH, DEFAULT_CACHE_MAX_AGE_SECONDS
from .utils import ensure_directory
from .registry import ArtifactMetadata

logger = logging.getLogger(__name__)


@dataclass
class CachedArtifact:
    """A persisted artifact together with its access bookkeeping."""
    artifact_id: str
    artifact: Any
    metadata: ArtifactMetadata
    cached_at: datetime
    last_accessed: datetime
    access_count: int


class ModelCache:
    """
    Persistent artifact cache backed by a single SQLite file.
    """

    def __init__(
        self,
        db_path: str = DEFAULT_CACHE_DB_PATH,
        quota_bytes: Optional[int] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        """
        Initialize cache.

        Args:
            db_path: SQLite database file
            quota_bytes: Optional size budget; set() evicts LRU records above it
            clock: Returns the current time (tests inject a fake)
        """
        self.db_path = str(db_path)
        self.quota_bytes = quota_bytes
        self.clock = clock
        self._lock = threading.Lock()

        ensure_directory(Path(self.db_path).parent)
        self._create_tables()

    @contextmanager
    def _get_connection(self):
        """Get database connection with context manager."""
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def _create_tables(self):
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS model_cache (
                    artifact_id TEXT PRIMARY KEY,
                    artifact BLOB NOT NULL,
                    metadata TEXT NOT NULL,
                    size_bytes INTEGER NOT NULL,
                    cached_at REAL NOT NULL,
                    last_accessed REAL NOT NULL,
                    access_count INTEGER NOT NULL DEFAULT 0
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_cache_last_accessed
                ON model_cache(last_accessed)
            """)

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args))

    def _now(self) -> float:
        return self.clock().timestamp()

    # ------------------------------------------------------------------------
    # Record Operations
    # ------------------------------------------------------------------------

    async def get(self, artifact_id: str, max_age_seconds: Optional[float] = None) -> Optional[CachedArtifact]:
        """
        Get a cached artifact, updating its access bookkeeping.

        Args:
            artifact_id: Artifact id
            max_age_seconds: Records cached longer ago than this are deleted
                and reported as a miss

        Returns:
            CachedArtifact or None on miss or read error
        """
        try:
            return await self._run(self._get_sync, artifact_id, max_age_seconds)
        except Exception as e:
            logger.error(f"Failed to read cached model {artifact_id}: {e}")
            return None

    def _get_sync(self, artifact_id: str, max_age_seconds: Optional[float]) -> Optional[CachedArtifact]:
        now = self._now()
        with self._lock, self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM model_cache WHERE artifact_id = ?", (artifact_id,)
            ).fetchone()
            if row is None:
                return None

            if max_age_seconds is not None and now - row['cached_at'] > max_age_seconds:
                conn.execute("DELETE FROM model_cache WHERE artifact_id = ?", (artifact_id,))
                logger.info(f"Cached model {artifact_id} expired, removed")
                return None

            try:
                artifact = pickle.loads(row['artifact'])
                metadata = ArtifactMetadata.from_dict(json.loads(row['metadata']))
            except Exception as e:
                conn.execute("DELETE FROM model_cache WHERE artifact_id = ?", (artifact_id,))
                logger.warning(f"Corrupt cache record for {artifact_id} removed: {e}")
                return None

            access_count = row['access_count'] + 1
            conn.execute(
                "UPDATE model_cache SET last_accessed = ?, access_count = ? WHERE artifact_id = ?",
                (now, access_count, artifact_id)
            )

        logger.debug(f"Cache hit for {artifact_id} (access #{access_count})")
        return CachedArtifact(
            artifact_id=artifact_id,
            artifact=artifact,
            metadata=metadata,
            cached_at=datetime.fromtimestamp(row['cached_at']),
            last_accessed=datetime.fromtimestamp(now),
            access_count=access_count,
        )

    async def set(self, artifact_id: str, artifact: Any, metadata: ArtifactMetadata) -> bool:
        """
        Store an artifact, overwriting any previous record.

        Failures are logged and never raised.

        Returns:
            True if the record was written
        """
        try:
            await self._run(self._set_sync, artifact_id, artifact, metadata)
        except Exception as e:
            error = e if isinstance(e, CacheWriteError) else CacheWriteError(f"Failed to cache model {artifact_id}: {e}")
            logger.error(str(error))
            return False

        logger.info(f"Model {artifact_id} cached")

        if self.quota_bytes is not None:
            try:
                await self.clear_lru(self.quota_bytes)
            except Exception as e:
                logger.error(f"Quota eviction after caching {artifact_id} failed: {e}")
        return True

    def _set_sync(self, artifact_id: str, artifact: Any, metadata: ArtifactMetadata) -> None:
        try:
            blob = pickle.dumps(artifact, protocol=pickle.HIGHEST_PROTOCOL)
        except (pickle.PicklingError, TypeError, AttributeError) as e:
            raise CacheWriteError(f"Model {artifact_id} is not serializable: {e}") from e

        size_bytes = metadata.size_bytes or len(blob)
        now = self._now()
        with self._lock, self._get_connection() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO model_cache
                (artifact_id, artifact, metadata, size_bytes, cached_at, last_accessed, access_count)
                VALUES (?, ?, ?, ?, ?, ?, 0)
            """, (
                artifact_id, sqlite3.Binary(blob), json.dumps(metadata.to_dict()),
                size_bytes, now, now
            ))

    async def delete(self, artifact_id: str) -> bool:
        def _delete():
            with self._lock, self._get_connection() as conn:
                cursor = conn.execute("DELETE FROM model_cache WHERE artifact_id = ?", (artifact_id,))
                return cursor.rowcount > 0

        deleted = await self._run(_delete)
        if deleted:
            logger.info(f"Model {artifact_id} removed from cache")
        return deleted

    async def has(self, artifact_id: str) -> bool:
        def _has():
            with self._get_connection() as conn:
                row = conn.execute(
                    "SELECT 1 FROM model_cache WHERE artifact_id = ?", (artifact_id,)
                ).fetchone()
                return row is not None

        return await self._run(_has)

    async def get_all_keys(self) -> List[str]:
        def _keys():
            with self._get_connection() as conn:
                rows = conn.execute("SELECT artifact_id FROM model_cache ORDER BY artifact_id").fetchall()
                return [row['artifact_id'] for row in rows]

        return await self._run(_keys)

    async def get_stats(self) -> Dict[str, Any]:
        """
        Summary of cache contents.

        Returns:
            Dict with total_models, total_size, oldest_cache, newest_cache
            (datetimes, None when empty)
        """
        def _stats():
            with self._get_connection() as conn:
                row = conn.execute("""
                    SELECT COUNT(*) AS total_models,
                           COALESCE(SUM(size_bytes), 0) AS total_size,
                           MIN(cached_at) AS oldest,
                           MAX(cached_at) AS newest
                    FROM model_cache
                """).fetchone()
            return {
                'total_models': row['total_models'],
                'total_size': row['total_size'],
                'oldest_cache': datetime.fromtimestamp(row['oldest']) if row['oldest'] is not None else None,
                'newest_cache': datetime.fromtimestamp(row['newest']) if row['newest'] is not None else None,
            }

        return await self._run(_stats)

    # ------------------------------------------------------------------------
    # Eviction
    # ------------------------------------------------------------------------

    async def clear_old(self, max_age_seconds: float = DEFAULT_CACHE_MAX_AGE_SECONDS) -> int:
        """
        Delete records cached more than ``max_age_seconds`` ago.

        Returns:
            Number of records removed
        """
        cutoff = self._now() - max_age_seconds

        def _clear():
            with self._lock, self._get_connection() as conn:
                cursor = conn.execute("DELETE FROM model_cache WHERE cached_at < ?", (cutoff,))
                return cursor.rowcount

        removed = await self._run(_clear)
        if removed:
            logger.info(f"Cleared {removed} models older than {max_age_seconds:.0f}s from cache")
        return removed

    async def clear_lru(self, target_size_bytes: int) -> int:
        """
        Evict least recently accessed records until total size <= target.

        Ties on last_accessed are broken by artifact id so eviction order is
        deterministic.

        Returns:
            Number of records removed
        """
        def _clear():
            removed = []
            with self._lock, self._get_connection() as conn:
                rows = conn.execute("""
                    SELECT artifact_id, size_bytes FROM model_cache
                    ORDER BY last_accessed ASC, artifact_id ASC
                """).fetchall()
                total = sum(row['size_bytes'] for row in rows)

                for row in rows:
                    if total <= target_size_bytes:
                        break
                    conn.execute("DELETE FROM model_cache WHERE artifact_id = ?", (row['artifact_id'],))
                    total -= row['size_bytes']
                    removed.append(row['artifact_id'])
            return removed

        removed = await self._run(_clear)
        if removed:
            logger.info(f"LRU eviction removed {len(removed)} models: {removed}")
        return len(removed)

    async def clear_all(self) -> None:
        def _clear():
            with self._lock, self._get_connection() as conn:
                conn.execute("DELETE FROM model_cache")

        await self._run(_clear)
        logger.info("Model cache cleared")

    async def get_cache_usage(self) -> Dict[str, float]:
        """
        Storage used by the cache file against its quota.

        The quota is the configured quota_bytes, or used plus free disk space
        when no quota is configured.

        Returns:
            Dict with used, quota, percentage; all zero on error
        """
        def _usage():
            used = 0
            for suffix in ('', '-wal', '-journal'):
                path = self.db_path + suffix
                if os.path.exists(path):
                    used += os.path.getsize(path)

            if self.quota_bytes is not None:
                quota = self.quota_bytes
            else:
                directory = os.path.dirname(os.path.abspath(self.db_path))
                quota = used + psutil.disk_usage(directory).free

            percentage = (used / quota * 100) if quota > 0 else 0.0
            return {'used': used, 'quota': quota, 'percentage': percentage}

        try:
            return await self._run(_usage)
        except Exception as e:
            logger.warning(f"Failed to estimate cache usage: {e}")
            return {'used': 0, 'quota': 0, 'percentage': 0.0}
