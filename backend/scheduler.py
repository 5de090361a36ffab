# /backend/scheduler.py

import asyncio
import logging
from datetime import datetime, timezone
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from convoflow.config.settings import settings
from convoflow.jobs.stale_flow_job import expire_stale_flows
from convoflow.services.cache_service import cache_service
from convoflow.services.db_service import db_service
from convoflow.utils.lifecycle import build_automation, start_automation
from convoflow.utils.logging import setup_logging

logger = logging.getLogger("SchedulerService")


async def main():
    setup_logging()

    components = build_automation(db_service.db, cache_service.redis)
    await start_automation(components)
    orchestrator = components.orchestrator

    scheduler = AsyncIOScheduler(timezone=settings.business_timezone)

    async def run_stale_flow_sweep():
        await expire_stale_flows(orchestrator, datetime.now(timezone.utc))

    # Job 1: Abandon flows whose customer stopped replying
    scheduler.add_job(
        run_stale_flow_sweep,
        'interval',
        minutes=settings.stale_sweep_interval_minutes,
        id="stale_flow_sweep_job",
        replace_existing=True,
        max_instances=1,
    )
    logger.info(f"Scheduled job: stale_flow_sweep (every {settings.stale_sweep_interval_minutes} minutes).")

    scheduler.start()
    logger.info("Scheduler started successfully. Press Ctrl+C to exit.")

    # This loop keeps the script running forever
    try:
        while True:
            await asyncio.sleep(3600)
    except (KeyboardInterrupt, SystemExit):
        scheduler.shutdown()
    finally:
        if components.webhook_sink:
            await components.webhook_sink.cleanup()
        await cache_service.close()
        db_service.close()

if __name__ == "__main__":
    asyncio.run(main())
