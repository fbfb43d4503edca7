"""
Model Lifecycle Manager.

Owns the live tables for every registered artifact (metadata, status and
in-memory handle, all keyed by artifact id) and drives the lifecycle:

    Unregistered -> Registered -> Loading -> Loaded | Failed
    Loaded -> Unloaded -> Loading
    Loaded -> Updating -> Loading

Loads try the persistent cache first, then the loader. Concurrent loads of
the same id share one task; every caller sees the same result or the same
exception.

Example:
    >>> manager = ModelLifecycleManager(loader, cache, registry)
    >>> await manager.initialize()
    >>> artifact = await manager.load_model("content-recommender-model")
    >>> manager.get_health_status()
    {'healthy': 1, 'loading': 0, 'failed': 0, 'total': 4}
"""

from typing import Dict, List, Optional, Any, Callable, Union
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from functools import partial
import asyncio
import logging

from modelhub.config import ModelHubConfig
from modelhub.errors import (
    NotRegisteredError,
    LoadFailureError,
    LoadCancelledError,
    LoadTimeoutError,
)
from modelhub.logging_utils import format_size
from .registry import ArtifactRegistry, ArtifactMetadata, ArtifactFormat
from .model_loader import ModelLoader, LoadedArtifact
from .model_cache import ModelCache
from .utils import compare_versions

logger = logging.getLogger(__name__)


# ============================================================================
# Data Classes
# ============================================================================

@dataclass(frozen=True)
class ArtifactStatus:
    """Runtime status of one artifact. Replaced, never mutated."""
    artifact_id: str
    is_loaded: bool = False
    is_loading: bool = False
    load_progress: float = 0.0
    error: Optional[str] = None
    last_used: Optional[datetime] = None
    memory_usage: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'artifact_id': self.artifact_id,
            'is_loaded': self.is_loaded,
            'is_loading': self.is_loading,
            'load_progress': self.load_progress,
            'error': self.error,
            'last_used': self.last_used.isoformat() if self.last_used else None,
            'memory_usage': self.memory_usage,
        }


@dataclass
class LoadConfig:
    """Per-call load options."""
    enable_offline: bool = True          # persist to cache after download
    priority: str = 'medium'             # 'low' | 'medium' | 'high'
    max_cache_age_seconds: Optional[float] = None


# ============================================================================
# Lifecycle Manager
# ============================================================================

class ModelLifecycleManager:
    """
    Registry table, status table and in-memory handles for all artifacts.
    """

    def __init__(
        self,
        loader: ModelLoader,
        cache: ModelCache,
        registry: Optional[ArtifactRegistry] = None,
        config: Optional[ModelHubConfig] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        """
        Initialize manager.

        Args:
            loader: Artifact loader
            cache: Persistent artifact cache
            registry: Registry file and update feed (None disables both)
            config: Hub configuration
            clock: Returns the current time (tests inject a fake)
        """
        self.loader = loader
        self.cache = cache
        self.registry = registry
        self.config = config or ModelHubConfig()
        self.clock = clock

        self._metadata: Dict[str, ArtifactMetadata] = {}
        self._status: Dict[str, ArtifactStatus] = {}
        self._loaded: Dict[str, LoadedArtifact] = {}
        self._inflight: Dict[str, asyncio.Task] = {}
        self._cancel_requested: set = set()
        self._initialized = False

    # ------------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------------

    async def initialize(self) -> None:
        """Register the local registry (or defaults) and report cached models."""
        if self._initialized:
            return

        if self.registry is not None:
            loop = asyncio.get_running_loop()
            entries = await loop.run_in_executor(None, self.registry.load)
            for metadata in entries:
                self.register_model(metadata)

        cached = await self.cache.get_all_keys()
        logger.info(
            f"Model manager initialized: {len(self._metadata)} registered, "
            f"{len(cached)} in persistent cache"
        )
        self._initialized = True

    async def shutdown(self) -> None:
        """Cancel pending loads and wait for them to settle."""
        pending = list(self._inflight.items())
        for artifact_id, _ in pending:
            self._cancel_requested.add(artifact_id)
            self.loader.cancel(artifact_id)
        if pending:
            await asyncio.gather(*(task for _, task in pending), return_exceptions=True)
            logger.info(f"Cancelled {len(pending)} pending loads on shutdown")

    # ------------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------------

    def register_model(self, metadata: Union[ArtifactMetadata, Dict[str, Any]]) -> None:
        """
        Register or replace an artifact's metadata.

        Resets status. A previously loaded handle is dropped so status and
        memory agree. If a load is in flight it keeps running and picks up
        the new metadata before it finishes.

        Raises:
            UnsupportedFormatError: unknown format tag
        """
        if isinstance(metadata, dict):
            metadata = ArtifactMetadata.from_dict(metadata)
        # Rejects anything outside the closed format set
        ArtifactFormat.parse(metadata.format)

        artifact_id = metadata.id
        self._metadata[artifact_id] = metadata
        if self._loaded.pop(artifact_id, None) is not None:
            logger.info(f"Dropped in-memory handle for re-registered model {artifact_id}")

        self._status[artifact_id] = ArtifactStatus(
            artifact_id=artifact_id,
            is_loading=artifact_id in self._inflight,
        )
        logger.info(f"Model registered: {artifact_id} v{metadata.version}")

    def _require(self, artifact_id: str) -> ArtifactMetadata:
        metadata = self._metadata.get(artifact_id)
        if metadata is None:
            raise NotRegisteredError(artifact_id)
        return metadata

    def _update_status(self, artifact_id: str, **changes) -> None:
        current = self._status.get(artifact_id)
        if current is not None:
            self._status[artifact_id] = replace(current, **changes)

    def _touch(self, artifact_id: str) -> None:
        self._update_status(artifact_id, last_used=self.clock())

    # ------------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------------

    async def load_model(self, artifact_id: str, config: Optional[LoadConfig] = None) -> LoadedArtifact:
        """
        Load an artifact into memory.

        Returns the in-memory handle if already loaded, joins an in-flight
        load if one exists, otherwise tries the persistent cache and then the
        loader.

        Args:
            artifact_id: Registered artifact id
            config: Load options

        Returns:
            LoadedArtifact

        Raises:
            NotRegisteredError: id not registered
            UnsupportedFormatError: no load strategy for the format
            LoadFailureError: load failed
            LoadTimeoutError: load exceeded load_timeout_seconds
        """
        self._require(artifact_id)

        loaded = self._loaded.get(artifact_id)
        if loaded is not None:
            self._touch(artifact_id)
            return loaded

        task = self._inflight.get(artifact_id)
        if task is None:
            self._cancel_requested.discard(artifact_id)
            self._update_status(artifact_id, is_loading=True, load_progress=0.0, error=None)
            task = asyncio.get_running_loop().create_task(
                self._load(artifact_id, config or LoadConfig())
            )
            self._inflight[artifact_id] = task
            task.add_done_callback(partial(self._on_load_done, artifact_id))
        else:
            logger.debug(f"Joining in-flight load for {artifact_id}")

        return await asyncio.shield(task)

    def _on_load_done(self, artifact_id: str, task: asyncio.Task) -> None:
        if self._inflight.get(artifact_id) is task:
            del self._inflight[artifact_id]
        if not task.cancelled():
            task.exception()

    async def _load(self, artifact_id: str, config: LoadConfig) -> LoadedArtifact:
        timeout = self.config.load_timeout_seconds
        try:
            metadata, artifact = await asyncio.wait_for(
                self._load_current(artifact_id, config), timeout=timeout
            )
        except asyncio.TimeoutError:
            self.loader.cancel(artifact_id)
            error = LoadTimeoutError(f"Loading {artifact_id} timed out after {timeout}s")
            self._update_status(artifact_id, is_loading=False, load_progress=0.0, error=str(error))
            logger.error(str(error))
            raise error
        except Exception as e:
            self._update_status(artifact_id, is_loading=False, load_progress=0.0, error=str(e))
            logger.error(f"Failed to load model {artifact_id}: {e}")
            raise

        self._loaded[artifact_id] = artifact
        self._update_status(
            artifact_id,
            is_loaded=True,
            is_loading=False,
            load_progress=1.0,
            error=None,
            last_used=self.clock(),
            memory_usage=metadata.size_bytes,
        )
        logger.info(f"Model {artifact_id} v{metadata.version} loaded ({format_size(metadata.size_bytes)})")
        return artifact

    async def _load_current(self, artifact_id: str, config: LoadConfig):
        # Retry if the model was re-registered while this load was running
        while True:
            metadata = self._metadata[artifact_id]
            artifact = await self._fetch(metadata, config)
            if self._metadata.get(artifact_id) is metadata:
                return metadata, artifact
            logger.info(f"Metadata for {artifact_id} changed during load, reloading")

    async def _fetch(self, metadata: ArtifactMetadata, config: LoadConfig) -> LoadedArtifact:
        artifact_id = metadata.id
        max_age = config.max_cache_age_seconds
        if max_age is None:
            max_age = self.config.cache_max_age_seconds

        cached = await self.cache.get(artifact_id, max_age_seconds=max_age)
        if cached is not None:
            artifact = cached.artifact
            if isinstance(artifact, LoadedArtifact) and artifact.version == metadata.version:
                logger.info(f"Model {artifact_id} loaded from cache")
                self._update_status(artifact_id, load_progress=1.0)
                return artifact
            logger.info(f"Cached copy of {artifact_id} is stale, downloading v{metadata.version}")

        if artifact_id in self._cancel_requested:
            raise LoadCancelledError(f"Load of {artifact_id} was cancelled")

        def on_progress(progress: float) -> None:
            status = self._status.get(artifact_id)
            if status is not None and status.is_loading:
                self._update_status(artifact_id, load_progress=progress)

        artifact = await self.loader.load(metadata, on_progress=on_progress)

        if config.enable_offline and self.config.enable_offline:
            await self.cache.set(artifact_id, artifact, metadata)
        return artifact

    async def wait_for_model_load(
        self,
        artifact_id: str,
        timeout_seconds: Optional[float] = None
    ) -> LoadedArtifact:
        """
        Wait for an in-flight load to complete.

        Args:
            artifact_id: Artifact id
            timeout_seconds: Budget, defaults to load_timeout_seconds

        Raises:
            NotRegisteredError: id not registered
            LoadTimeoutError: budget exceeded (the load itself keeps running)
            LoadFailureError: the load failed or no load is in progress
        """
        self._require(artifact_id)
        timeout = self.config.load_timeout_seconds if timeout_seconds is None else timeout_seconds

        loaded = self._loaded.get(artifact_id)
        if loaded is not None:
            return loaded

        task = self._inflight.get(artifact_id)
        if task is None:
            status = self._status[artifact_id]
            raise LoadFailureError(status.error or f"Model {artifact_id} is not loading")

        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        except LoadTimeoutError:
            raise
        except asyncio.TimeoutError:
            raise LoadTimeoutError(f"Timed out after {timeout}s waiting for {artifact_id}")

    async def cancel_load(self, artifact_id: str) -> bool:
        """
        Cancel an in-flight load; its awaiters receive LoadCancelledError.

        Returns:
            True if a load was in flight
        """
        self._require(artifact_id)
        task = self._inflight.get(artifact_id)
        if task is None:
            return False

        self._cancel_requested.add(artifact_id)
        self.loader.cancel(artifact_id)
        try:
            await asyncio.shield(task)
        except Exception as e:
            logger.info(f"Load of {artifact_id} ended after cancel: {e}")
        return True

    async def preload_models(self, artifact_ids: List[str]) -> int:
        """
        Load several models concurrently. Failures are logged, not raised.

        Returns:
            Number of models loaded
        """
        results = await asyncio.gather(
            *(self.load_model(artifact_id) for artifact_id in artifact_ids),
            return_exceptions=True
        )
        loaded = 0
        for artifact_id, result in zip(artifact_ids, results):
            if isinstance(result, BaseException):
                logger.warning(f"Failed to preload model {artifact_id}: {result}")
            else:
                loaded += 1
        logger.info(f"Preloaded {loaded}/{len(artifact_ids)} models")
        return loaded

    # ------------------------------------------------------------------------
    # Unloading and Maintenance
    # ------------------------------------------------------------------------

    async def unload_model(self, artifact_id: str) -> None:
        """Drop the in-memory handle. The persistent cache is untouched."""
        self._require(artifact_id)
        if self._loaded.pop(artifact_id, None) is None:
            logger.info(f"Model {artifact_id} is not loaded, nothing to unload")
            return

        self._update_status(artifact_id, is_loaded=False, load_progress=0.0, memory_usage=0)
        logger.info(f"Model {artifact_id} unloaded from memory")

    async def cleanup_unused_models(self, max_age_seconds: Optional[float] = None) -> List[str]:
        """
        Unload models not used within ``max_age_seconds``.

        Returns:
            Ids of the unloaded models
        """
        if max_age_seconds is None:
            max_age_seconds = self.config.memory_max_idle_seconds
        cutoff = self.clock() - timedelta(seconds=max_age_seconds)

        stale = [
            artifact_id for artifact_id in list(self._loaded)
            if (self._status[artifact_id].last_used or datetime.min) < cutoff
        ]
        for artifact_id in stale:
            await self.unload_model(artifact_id)

        if stale:
            logger.info(f"Cleaned up {len(stale)} unused models: {stale}")
        return stale

    # ------------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------------

    async def check_for_updates(self) -> List[ArtifactMetadata]:
        """
        Compare the remote registry feed with the local table.

        Returns:
            Feed entries whose version differs from the registered one, or
            that are not registered; [] if the feed is unreachable
        """
        if self.registry is None:
            return []

        loop = asyncio.get_running_loop()
        latest = await loop.run_in_executor(None, self.registry.fetch_latest)

        updates = []
        for metadata in latest:
            current = self._metadata.get(metadata.id)
            if current is None or current.version != metadata.version:
                updates.append(metadata)

        if updates:
            logger.info(f"Model updates available: {[m.id for m in updates]}")
        return updates

    async def update_model(self, artifact_id: str) -> LoadedArtifact:
        """
        Replace a model with the latest version from the feed and reload it.

        Unloads, deletes the cached record, re-registers (latest metadata if
        the feed has it, else the current metadata) and loads again.
        """
        current = self._require(artifact_id)
        logger.info(f"Updating model {artifact_id}")

        if artifact_id in self._inflight:
            await self.cancel_load(artifact_id)

        await self.unload_model(artifact_id)
        await self.cache.delete(artifact_id)

        latest = None
        if self.registry is not None:
            loop = asyncio.get_running_loop()
            latest = await loop.run_in_executor(None, self.registry.find_latest, artifact_id)

        if latest is not None and compare_versions(latest.version, current.version) < 0:
            logger.warning(f"Feed version {latest.version} of {artifact_id} is older than {current.version}, rolling back")
        self.register_model(latest or current)
        return await self.load_model(artifact_id)

    # ------------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------------

    def get_model(self, artifact_id: str) -> Optional[LoadedArtifact]:
        """In-memory lookup only. Never raises, never loads and never changes status."""
        return self._loaded.get(artifact_id)

    def mark_used(self, artifact_id: str) -> bool:
        """
        Refresh ``last_used`` for a loaded model so idle cleanup keeps it.

        Returns:
            False if the model is not loaded
        """
        if artifact_id not in self._loaded:
            return False
        self._touch(artifact_id)
        return True

    def is_model_loaded(self, artifact_id: str) -> bool:
        return artifact_id in self._loaded

    def get_model_status(self, artifact_id: str) -> Optional[ArtifactStatus]:
        return self._status.get(artifact_id)

    def get_model_metadata(self, artifact_id: str) -> Optional[ArtifactMetadata]:
        return self._metadata.get(artifact_id)

    def get_all_models(self) -> List[ArtifactMetadata]:
        return [self._metadata[k] for k in sorted(self._metadata)]

    def get_loaded_models(self) -> List[str]:
        return sorted(self._loaded)

    def get_health_status(self) -> Dict[str, int]:
        statuses = list(self._status.values())
        return {
            'healthy': sum(1 for s in statuses if s.is_loaded and s.error is None),
            'loading': sum(1 for s in statuses if s.is_loading),
            'failed': sum(1 for s in statuses if s.error is not None and not s.is_loading),
            'total': len(statuses),
        }

    def get_memory_usage(self) -> Dict[str, Any]:
        by_model = {
            artifact_id: self._status[artifact_id].memory_usage
            for artifact_id in sorted(self._loaded)
        }
        return {'total': sum(by_model.values()), 'by_model': by_model}
