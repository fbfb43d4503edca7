"""
Model Hub Maintenance Scheduler.

Runs periodic maintenance for the lifecycle manager and persistent cache on
the service's event loop:
- memory_cleanup: unload models idle longer than memory_max_idle_seconds
- cache_age_cleanup: drop cache records older than cache_max_age_seconds
- cache_quota_cleanup: LRU-evict the cache down to its quota
- update_check: poll the registry feed and log available updates

The host owns the scheduler: start() it inside a running loop and
shutdown() it before the manager goes away. tick() runs every job once,
for hosts that drive maintenance themselves.

Usage:
    scheduler = MaintenanceScheduler(manager, cache, config)
    scheduler.start()
    ...
    scheduler.shutdown()
"""

import json
import logging
from pathlib import Path
from datetime import datetime
from typing import Dict, Any, Optional, Callable, Awaitable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
import pytz

from modelhub.config import ModelHubConfig
from modelhub.registry.manager import ModelLifecycleManager
from modelhub.registry.model_cache import ModelCache

logger = logging.getLogger(__name__)


class MaintenanceScheduler:
    """
    APScheduler-backed maintenance jobs with explicit start/shutdown.
    """

    def __init__(
        self,
        manager: ModelLifecycleManager,
        cache: ModelCache,
        config: Optional[ModelHubConfig] = None,
        status_file: Optional[str] = None
    ):
        """
        Initialize scheduler.

        Args:
            manager: Lifecycle manager to clean up and update-check
            cache: Persistent cache to evict from
            config: Intervals, ages, quota and timezone
            status_file: Optional JSON file mirroring task status
        """
        self.manager = manager
        self.cache = cache
        self.config = config or ModelHubConfig()
        self.status_file = Path(status_file) if status_file else None
        self.timezone = pytz.timezone(self.config.scheduler_timezone)

        self.task_status: Dict[str, Dict[str, Any]] = {}
        self.jobs = self._build_jobs()
        self._scheduler: Optional[AsyncIOScheduler] = None

    def _build_jobs(self) -> Dict[str, Dict[str, Any]]:
        config = self.config
        return {
            "memory_cleanup": {
                "enabled": True,
                "description": "Unload idle models from memory",
                "schedule": {"minutes": config.memory_cleanup_interval_minutes},
                "func": self._memory_cleanup,
            },
            "cache_age_cleanup": {
                "enabled": True,
                "description": "Remove expired models from persistent cache",
                "schedule": {"hours": config.cache_cleanup_interval_hours},
                "func": self._cache_age_cleanup,
            },
            "cache_quota_cleanup": {
                "enabled": self.cache.quota_bytes is not None,
                "description": "Evict least recently used cache records above quota",
                "schedule": {"hours": config.cache_cleanup_interval_hours},
                "func": self._cache_quota_cleanup,
            },
            "update_check": {
                "enabled": bool(config.registry_url),
                "description": "Check registry feed for model updates",
                "schedule": {"hours": config.update_check_interval_hours},
                "func": self._update_check,
            },
        }

    # ------------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------------

    async def _memory_cleanup(self) -> Dict[str, Any]:
        unloaded = await self.manager.cleanup_unused_models(self.config.memory_max_idle_seconds)
        return {"unloaded": unloaded}

    async def _cache_age_cleanup(self) -> Dict[str, Any]:
        removed = await self.cache.clear_old(self.config.cache_max_age_seconds)
        return {"removed": removed}

    async def _cache_quota_cleanup(self) -> Dict[str, Any]:
        removed = await self.cache.clear_lru(self.cache.quota_bytes)
        return {"removed": removed}

    async def _update_check(self) -> Dict[str, Any]:
        updates = await self.manager.check_for_updates()
        return {"updates": [f"{m.id}@{m.version}" for m in updates]}

    # ------------------------------------------------------------------------
    # Task Execution
    # ------------------------------------------------------------------------

    def update_task_status(self, task_name: str, status: str, detail: Optional[Dict[str, Any]] = None,
                           error: Optional[str] = None) -> None:
        """Record task status in memory and, if configured, in the JSON status file."""
        self.task_status[task_name] = {
            "status": status,
            "timestamp": datetime.now().isoformat(),
            "detail": detail,
            "error": error,
        }

        if self.status_file is None:
            return
        try:
            self.status_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.status_file, "w", encoding="utf-8") as f:
                json.dump(self.task_status, f, indent=2, ensure_ascii=False, default=str)
        except OSError as e:
            logger.warning(f"Failed to write task status file {self.status_file}: {e}")

    async def run_task(self, task_name: str) -> Dict[str, Any]:
        """
        Execute one maintenance job.

        Returns:
            Task result dict with task, status, detail/error
        """
        job = self.jobs[task_name]
        logger.info(f"Starting task: {task_name} ({job['description']})")

        result: Dict[str, Any] = {"task": task_name, "status": "running"}
        try:
            result["detail"] = await job["func"]()
            result["status"] = "success"
            logger.info(f"Task completed: {task_name} {result['detail']}")
        except Exception as e:
            result["status"] = "error"
            result["error"] = str(e)
            logger.error(f"Task error: {task_name} - {e}")

        self.update_task_status(task_name, result["status"], result.get("detail"), result.get("error"))
        return result

    def _task_wrapper(self, task_name: str) -> Callable[[], Awaitable[None]]:
        async def wrapper() -> None:
            await self.run_task(task_name)
        return wrapper

    async def tick(self) -> Dict[str, Dict[str, Any]]:
        """Run every enabled job once, sequentially."""
        results = {}
        for task_name, job in self.jobs.items():
            if job["enabled"]:
                results[task_name] = await self.run_task(task_name)
        return results

    # ------------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------------

    def start(self) -> None:
        """Register jobs and start. Must be called with a running event loop."""
        if self.running:
            return

        self._scheduler = AsyncIOScheduler(timezone=self.timezone)
        for task_name, job in self.jobs.items():
            if not job["enabled"]:
                logger.info(f"Skipping disabled task: {task_name}")
                continue
            self._scheduler.add_job(
                self._task_wrapper(task_name),
                trigger=IntervalTrigger(**job["schedule"], timezone=self.timezone),
                id=task_name,
                name=job["description"],
                replace_existing=True,
                coalesce=True,
                max_instances=1,
            )
            logger.info(f"Registered job: {task_name} every {job['schedule']}")

        self._scheduler.start()
        logger.info("Maintenance scheduler started")

    def shutdown(self, wait: bool = False) -> None:
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
            logger.info("Maintenance scheduler stopped")
        self._scheduler = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def get_jobs(self) -> Dict[str, Dict[str, Any]]:
        """Job overview for monitoring: schedule, enabled flag, next run and last status."""
        overview = {}
        for task_name, job in self.jobs.items():
            scheduled = self._scheduler.get_job(task_name) if self._scheduler else None
            next_run = getattr(scheduled, "next_run_time", None) if scheduled else None
            overview[task_name] = {
                "description": job["description"],
                "enabled": job["enabled"],
                "schedule": job["schedule"],
                "next_run": next_run.isoformat() if next_run else None,
                "last_status": self.task_status.get(task_name),
            }
        return overview
