"""
Job scheduling.

Pipeline code never sleeps for a retry or a deferral; it asks the
scheduler to run a worker function later. ``ArqScheduler`` does that by
enqueueing an arq job with ``_defer_by``.
"""

from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any

import structlog
from arq import ArqRedis

logger = structlog.get_logger()


class Scheduler(ABC):
    @abstractmethod
    async def run_after(self, delay_ms: int, function: str, *args: Any) -> None:
        """Run the worker function ``function(*args)`` after ``delay_ms``."""


class ArqScheduler(Scheduler):
    """Scheduler backed by the arq Redis queue."""

    def __init__(self, redis: ArqRedis):
        self.redis = redis

    async def run_after(self, delay_ms: int, function: str, *args: Any) -> None:
        job = await self.redis.enqueue_job(
            function,
            *args,
            _defer_by=timedelta(milliseconds=max(delay_ms, 0)),
        )
        logger.debug(
            "job_scheduled",
            function=function,
            delay_ms=delay_ms,
            job_id=job.job_id if job else None,
        )
