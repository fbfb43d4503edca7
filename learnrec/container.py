"""
Composition root.

Builds every service once, in dependency order, and hands them to consumers
by reference:

    config -> cache -> loader -> registry -> manager
           -> catalog -> recommender -> service facade -> scheduler

Example:
    >>> container = ServiceContainer.from_env()
    >>> await container.startup()
    >>> container.service.get_next_content("user-1")
    >>> await container.shutdown()
"""

from typing import Optional, Callable, Sequence
from datetime import datetime
import os
import logging

from modelhub.config import ModelHubConfig
from modelhub.logging_utils import setup_service_logger
from modelhub.registry import ArtifactRegistry, ModelCache, ModelLoader, ModelLifecycleManager
from automation.scheduler import MaintenanceScheduler

from .catalog import ContentCatalog, DataFrameCatalog
from .recommender import HybridRecommender
from .rerank import BlendConfig
from .service import RecommendationService, ProfileProvider, GapProvider, default_profile, no_gaps

logger = logging.getLogger(__name__)


class ServiceContainer:
    """Owns the hub, recommender and scheduler for one process."""

    def __init__(
        self,
        hub_config: Optional[ModelHubConfig] = None,
        blend_config: Optional[BlendConfig] = None,
        catalog: Optional[ContentCatalog] = None,
        profile_provider: ProfileProvider = default_profile,
        gap_provider: GapProvider = no_gaps,
        preload: Sequence[str] = (),
        enable_scheduler: bool = True,
        loader: Optional[ModelLoader] = None,
        registry: Optional[ArtifactRegistry] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.hub_config = hub_config or ModelHubConfig()
        self.blend_config = blend_config or BlendConfig()
        self.preload = list(preload)
        self.enable_scheduler = enable_scheduler

        config = self.hub_config
        self.cache = ModelCache(
            db_path=config.cache_db_path,
            quota_bytes=config.cache_quota_bytes,
            clock=clock,
        )
        self.loader = loader or ModelLoader(
            artifact_dir=config.artifact_dir,
            chunk_size=config.download_chunk_size,
            request_timeout=config.request_timeout_seconds,
            verify_checksums=config.verify_checksums,
            clock=clock,
        )
        self.registry = registry or ArtifactRegistry(
            registry_path=config.registry_path,
            registry_url=config.registry_url,
            request_timeout=config.request_timeout_seconds,
        )
        self.manager = ModelLifecycleManager(
            loader=self.loader,
            cache=self.cache,
            registry=self.registry,
            config=config,
            clock=clock,
        )

        self.catalog = catalog if catalog is not None else DataFrameCatalog.empty()
        self.recommender = HybridRecommender(
            catalog=self.catalog,
            manager=self.manager,
            config=self.blend_config,
            clock=clock,
        )
        self.service = RecommendationService(
            self.recommender,
            profile_provider=profile_provider,
            gap_provider=gap_provider,
            clock=clock,
        )
        self.scheduler = MaintenanceScheduler(
            self.manager,
            self.cache,
            config,
            status_file=os.path.join(config.log_dir, "task_status.json"),
        )

    @classmethod
    def from_env(cls, **overrides) -> "ServiceContainer":
        """
        Build from environment variables.

        LEARNREC_CONFIG: YAML with ``modelhub`` and ``recommender`` sections
        LEARNREC_CATALOG: JSON array of content records
        LEARNREC_PRELOAD: comma-separated artifact ids to load at startup
        MODELHUB_*: individual ModelHubConfig overrides
        """
        config_path = os.environ.get("LEARNREC_CONFIG")
        if config_path:
            hub_config = ModelHubConfig.from_yaml(config_path)
            blend_config = BlendConfig.from_yaml(config_path)
        else:
            hub_config, blend_config = ModelHubConfig(), BlendConfig()
        hub_config = ModelHubConfig.from_env(hub_config)
        for name in ("modelhub", "learnrec", "automation"):
            setup_service_logger(name, log_dir=hub_config.log_dir, console=False)

        catalog = None
        catalog_path = os.environ.get("LEARNREC_CATALOG")
        if catalog_path:
            try:
                catalog = DataFrameCatalog.from_json(catalog_path)
            except (OSError, ValueError) as e:
                logger.warning(f"Failed to load catalog from {catalog_path}: {e}, starting with empty catalog")

        preload = [p.strip() for p in os.environ.get("LEARNREC_PRELOAD", "").split(",") if p.strip()]

        kwargs = dict(hub_config=hub_config, blend_config=blend_config, catalog=catalog, preload=preload)
        kwargs.update(overrides)
        return cls(**kwargs)

    async def startup(self) -> None:
        await self.manager.initialize()
        if self.preload:
            await self.manager.preload_models(self.preload)
        if self.enable_scheduler:
            self.scheduler.start()
        logger.info("Service container started")

    async def shutdown(self) -> None:
        self.scheduler.shutdown(wait=False)
        await self.manager.shutdown()
        logger.info("Service container stopped")
