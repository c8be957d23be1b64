"""Scheduling utilities for recurring jobs."""

from .config import JobDefinition, load_job_definitions
from .runner import JobScheduler

__all__ = ["JobScheduler", "JobDefinition", "load_job_definitions"]
