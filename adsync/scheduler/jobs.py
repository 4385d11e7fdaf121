"""ADSYNC — Scheduler Jobs.

APScheduler jobs driving the orchestrator: a periodic refresh of the current
month and week for every tenant/platform, and a daily re-collection of the
periods that just closed, followed by the retention purge.
"""

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from adsync.analyzer.orchestrator import FetchOrchestrator
from adsync.config import settings
from adsync.core.logging import get_logger
from adsync.core.periods import Granularity, previous_period

logger = get_logger("scheduler")

scheduler = AsyncIOScheduler()


def _describe(e: Exception) -> str:
    return f"{getattr(e, 'code', type(e).__name__)}: {e}"


async def refresh_current_job(orchestrator: FetchOrchestrator) -> int:
    """Force-refresh the current month and week. Returns the success count."""
    refreshed = 0
    for tenant_id, platform in orchestrator.tenants.pairs():
        for granularity in Granularity:
            try:
                await orchestrator.refresh_current(tenant_id, platform, granularity)
                refreshed += 1
            except Exception as e:
                logger.error(
                    f"Refresh of current {granularity.value} failed for "
                    f"{tenant_id}/{platform.value}: {_describe(e)}",
                    extra={"tenant_id": tenant_id, "platform": platform.value},
                )
    logger.info(f"Scheduled refresh complete: {refreshed} periods refreshed")
    return refreshed


async def recollection_job(orchestrator: FetchOrchestrator) -> int:
    """Re-collect the month and week that closed most recently, then purge."""
    today = orchestrator.now().date()
    recollected = 0
    for tenant_id, platform in orchestrator.tenants.pairs():
        for granularity in Granularity:
            period = previous_period(today, granularity)
            try:
                await orchestrator.recollect_period(
                    tenant_id, platform, granularity, period.start
                )
                recollected += 1
            except Exception as e:
                logger.error(
                    f"Re-collection of {period.period_id} failed for "
                    f"{tenant_id}/{platform.value}: {_describe(e)}",
                    extra={
                        "tenant_id": tenant_id,
                        "platform": platform.value,
                        "period_id": period.period_id,
                    },
                )
    try:
        purged = orchestrator.purge_expired()
        logger.info(f"Retention purge: {purged}")
    except Exception as e:
        logger.error(f"Retention purge failed: {e}")
    logger.info(f"Daily re-collection complete: {recollected} periods")
    return recollected


def start_scheduler(orchestrator: FetchOrchestrator):
    """Configure and start the scheduler."""
    if not settings.scheduler_enabled:
        logger.info("Scheduler disabled via config")
        return

    scheduler.add_job(
        refresh_current_job,
        "interval",
        hours=settings.refresh_interval_hours,
        args=[orchestrator],
        id="refresh_current",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        recollection_job,
        "cron",
        hour=settings.recollection_hour,
        minute=0,
        args=[orchestrator],
        id="daily_recollection",
        replace_existing=True,
        misfire_grace_time=3600,
    )
    scheduler.start()
    logger.info(
        f"Scheduler started. Refresh every {settings.refresh_interval_hours}h, "
        f"re-collection at {settings.recollection_hour}:00 UTC"
    )


def stop_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
