"""Periodic jobs and the scheduler that fires them."""

from bakerd.jobs.price import PriceRefresher
from bakerd.jobs.scheduler import Job, Scheduler
from bakerd.jobs.status import StatusChecker

__all__ = ["Job", "PriceRefresher", "Scheduler", "StatusChecker"]
