"""
Jobs layer for ARQ worker orchestration.

This package contains the ARQ worker configuration and job functions
that drive cards through the enrichment pipeline.
"""

import structlog
from arq import cron
from arq.connections import RedisSettings

from cardflow.core.config import settings
from cardflow.core.logging import configure_logging
from cardflow.db import close_db, init_db
from cardflow.db.store import SqlCardStore
from cardflow.jobs.backfill_job import run_ai_backfill
from cardflow.jobs.card_processing_job import extract_link_metadata, process_card
from cardflow.jobs.context import PipelineContext
from cardflow.services.ai.gateway import AIGateway
from cardflow.services.html_fetcher import HtmlFetcher
from cardflow.services.scheduler import ArqScheduler
from cardflow.services.storage import LocalBlobStorage

logger = structlog.get_logger()


async def startup(ctx):
    """Initialize the worker context."""
    configure_logging(json_logs=settings.json_logs, log_level=settings.log_level)
    logger.info("Starting up worker...")
    await init_db()
    ctx["pipeline"] = PipelineContext.build(
        store=SqlCardStore(),
        scheduler=ArqScheduler(ctx["redis"]),
        gateway=AIGateway.from_settings(settings),
        fetcher=HtmlFetcher(),
        storage=LocalBlobStorage(),
    )
    logger.info("Worker startup complete.")


async def shutdown(ctx):
    """Cleanup the worker context."""
    logger.info("Shutting down worker...")
    pipeline: PipelineContext | None = ctx.get("pipeline")
    if pipeline is not None:
        await pipeline.fetcher.close()
    await close_db()
    logger.info("Worker shutdown complete.")


class WorkerSettings:
    """ARQ worker settings."""

    functions = [
        process_card,
        extract_link_metadata,
        run_ai_backfill,
    ]
    cron_jobs = [
        cron(run_ai_backfill, minute={0, 15, 30, 45}, run_at_startup=False),
    ]
    redis_settings = RedisSettings.from_dsn(str(settings.redis_url))
    on_startup = startup
    on_shutdown = shutdown
    handle_signals = False
