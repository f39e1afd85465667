"""Scheduling utilities for the membership maintenance sweeps."""

from .config import JobDefinition, load_job_definitions
from .runner import MembershipJobScheduler

__all__ = ["JobDefinition", "MembershipJobScheduler", "load_job_definitions"]
