"""
Model hub configuration.

Defaults live in module constants and can be overridden from environment
variables or from the ``modelhub`` section of a YAML file.

Example:
    >>> from modelhub.config import ModelHubConfig
    >>> config = ModelHubConfig.from_yaml("config/modelhub.yaml")
    >>> config.load_timeout_seconds
    30.0
"""

from typing import Dict, Any, Optional
from dataclasses import dataclass, fields
from pathlib import Path
import os
import logging

import yaml

logger = logging.getLogger(__name__)


# ============================================================================
# Defaults
# ============================================================================

DEFAULT_REGISTRY_PATH = "artifacts/models/registry.json"
DEFAULT_ARTIFACT_DIR = "artifacts/models"
DEFAULT_CACHE_DB_PATH = "artifacts/cache/model_cache.db"
DEFAULT_REGISTRY_URL = "http://localhost:8000/api/ai/models/registry"

DEFAULT_CACHE_MAX_AGE_SECONDS = 30 * 24 * 3600   # 30 days
DEFAULT_MEMORY_MAX_IDLE_SECONDS = 3600           # 1 hour
DEFAULT_LOAD_TIMEOUT_SECONDS = 30.0


@dataclass
class ModelHubConfig:
    """Tunables for registry, loader, cache, manager and scheduler."""
    registry_path: str = DEFAULT_REGISTRY_PATH
    registry_url: Optional[str] = DEFAULT_REGISTRY_URL
    artifact_dir: str = DEFAULT_ARTIFACT_DIR
    cache_db_path: str = DEFAULT_CACHE_DB_PATH
    cache_quota_bytes: Optional[int] = None
    cache_max_age_seconds: float = DEFAULT_CACHE_MAX_AGE_SECONDS
    memory_max_idle_seconds: float = DEFAULT_MEMORY_MAX_IDLE_SECONDS
    load_timeout_seconds: float = DEFAULT_LOAD_TIMEOUT_SECONDS
    download_chunk_size: int = 64 * 1024
    request_timeout_seconds: float = 10.0
    verify_checksums: bool = True
    enable_offline: bool = True
    log_dir: str = "logs/modelhub"

    # Scheduler
    scheduler_timezone: str = "UTC"
    memory_cleanup_interval_minutes: int = 10
    cache_cleanup_interval_hours: int = 24
    update_check_interval_hours: int = 6

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModelHubConfig":
        """Build config from a dict, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {sorted(unknown)}")
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_yaml(cls, config_path: str) -> "ModelHubConfig":
        """
        Load config from YAML, falling back to defaults on failure.

        Args:
            config_path: Path to YAML file with a ``modelhub`` section

        Returns:
            ModelHubConfig
        """
        path = Path(config_path)
        if not path.exists():
            logger.warning(f"Config file not found at {config_path}, using defaults")
            return cls()

        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
            return cls.from_dict(data.get('modelhub', {}))
        except (yaml.YAMLError, TypeError, AttributeError) as e:
            logger.warning(f"Failed to load config from {config_path}: {e}, using defaults")
            return cls()

    @classmethod
    def from_env(cls, base: Optional["ModelHubConfig"] = None) -> "ModelHubConfig":
        """Apply ``MODELHUB_*`` environment overrides on top of ``base``."""
        config = base or cls()
        for f in fields(cls):
            raw = os.environ.get(f"MODELHUB_{f.name.upper()}")
            if raw is None:
                continue
            current = getattr(config, f.name)
            try:
                setattr(config, f.name, _coerce(raw, current, f.name))
            except ValueError as e:
                logger.warning(f"Invalid value for MODELHUB_{f.name.upper()}: {e}")
        return config


def _coerce(raw: str, current: Any, name: str) -> Any:
    if isinstance(current, bool):
        return raw.strip().lower() in ('1', 'true', 'yes', 'on')
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    if current is None and name.endswith('_bytes'):
        return int(raw)
    return raw
