"""
Artifact Registry Module.

Modules:
    registry: ArtifactMetadata, closed format enums, ArtifactRegistry
    model_loader: ModelLoader (transport, checksum, decode, coalescing)
    model_cache: ModelCache (persistent SQLite store)
    manager: ModelLifecycleManager (status table and in-memory handles)
    utils: Hashing, version comparison, path helpers

Example:
    >>> from modelhub.registry import (
    ...     ArtifactRegistry, ModelLoader, ModelCache, ModelLifecycleManager
    ... )
    >>> manager = ModelLifecycleManager(
    ...     loader=ModelLoader(), cache=ModelCache(), registry=ArtifactRegistry()
    ... )
    >>> await manager.initialize()
    >>> await manager.load_model("content-recommender-model")
"""

from .registry import (
    ArtifactId,
    ArtifactFormat,
    Quantization,
    DeploymentTag,
    ArtifactMetadata,
    ArtifactRegistry,
    DEFAULT_ARTIFACTS,
    parse_registry_entries,
)

from .model_loader import (
    ModelLoader,
    LoadedArtifact,
    LoaderStats,
    ProgressReporter,
)

from .model_cache import (
    ModelCache,
    CachedArtifact,
)

from .manager import (
    ModelLifecycleManager,
    ArtifactStatus,
    LoadConfig,
)

from .utils import (
    compute_bytes_hash,
    compare_versions,
    ensure_directory,
)

__all__ = [
    'ArtifactId',
    'ArtifactFormat',
    'Quantization',
    'DeploymentTag',
    'ArtifactMetadata',
    'ArtifactRegistry',
    'DEFAULT_ARTIFACTS',
    'parse_registry_entries',
    'ModelLoader',
    'LoadedArtifact',
    'LoaderStats',
    'ProgressReporter',
    'ModelCache',
    'CachedArtifact',
    'ModelLifecycleManager',
    'ArtifactStatus',
    'LoadConfig',
    'compute_bytes_hash',
    'compare_versions',
    'ensure_directory',
]
