"""
Automation package for the model hub.

Periodic maintenance run inside the service process:
- Idle model unloading
- Persistent cache age and quota eviction
- Registry update checks

See automation.scheduler.MaintenanceScheduler.
"""

__all__ = [
    "scheduler",
]
