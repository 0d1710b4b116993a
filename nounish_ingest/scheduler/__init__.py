"""
Job scheduling.
"""

from .jobs import GuardedJob, JobState, build_jobs, build_scheduler

__all__ = ["GuardedJob", "JobState", "build_jobs", "build_scheduler"]
