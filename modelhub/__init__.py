"""
Model Hub Package.

Lifecycle management for on-device inference artifacts:
- Registry of versioned, checksummed artifacts
- Async loading with progress and load coalescing
- Persistent SQLite cache with LRU/age eviction
- Lifecycle manager owning status and in-memory handles

Submodules:
    config: ModelHubConfig (defaults, env and YAML overrides)
    errors: Error taxonomy
    logging_utils: Service logger setup and formatting helpers
    registry: Registry, loader, cache and lifecycle manager
"""

from .config import ModelHubConfig
from .errors import (
    ModelHubError,
    NotRegisteredError,
    UnsupportedFormatError,
    LoadFailureError,
    ChecksumMismatchError,
    LoadCancelledError,
    CacheWriteError,
    CatalogQueryError,
    LoadTimeoutError,
)

__all__ = [
    'ModelHubConfig',
    'ModelHubError',
    'NotRegisteredError',
    'UnsupportedFormatError',
    'LoadFailureError',
    'ChecksumMismatchError',
    'LoadCancelledError',
    'CacheWriteError',
    'CatalogQueryError',
    'LoadTimeoutError',
]
