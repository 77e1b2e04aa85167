"""
Maintenance jobs: expired-artifact cleanup and the interval scheduler.
"""

from clipit.core.maintenance.cleanup import (
    CLEANUP_JOB_NAME,
    CleanupStats,
    cleanup_expired_artifacts,
    register_cleanup_job,
)
from clipit.core.maintenance.scheduler import JobSpec, Scheduler

__all__ = [
    "CLEANUP_JOB_NAME",
    "CleanupStats",
    "JobSpec",
    "Scheduler",
    "cleanup_expired_artifacts",
    "register_cleanup_job",
]
