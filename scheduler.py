"""
scheduler.py
Runs the daily member status reconciliation.
Run: python scheduler.py
"""

from __future__ import annotations

import signal
import sys

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

import db
from config import settings
from logging_config import get_logger, setup_logging
from sweep import run_daily_reconciliation

logger = get_logger("scheduler")


def build_scheduler() -> BlockingScheduler:
    scheduler = BlockingScheduler(timezone=settings.SCHEDULER_TIMEZONE)
    scheduler.add_job(
        run_daily_reconciliation,
        CronTrigger(hour=settings.SWEEP_HOUR, minute=settings.SWEEP_MINUTE, timezone=settings.SCHEDULER_TIMEZONE),
        id="daily_reconciliation",
        max_instances=1,
        coalesce=True,
        misfire_grace_time=3600,
    )
    return scheduler


def main() -> None:
    setup_logging(debug=settings.DEBUG, json_output=settings.LOG_JSON)
    db.init_db()

    scheduler = build_scheduler()

    def stop(sig, frame):
        logger.info("Scheduler received signal %s, stopping", sig)
        scheduler.shutdown(wait=False)
        sys.exit(0)

    signal.signal(signal.SIGTERM, stop)
    signal.signal(signal.SIGINT, stop)

    logger.info(
        "Scheduler started: reconciliation daily at %02d:%02d %s",
        settings.SWEEP_HOUR,
        settings.SWEEP_MINUTE,
        settings.SCHEDULER_TIMEZONE,
    )
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Scheduler stopped")


if __name__ == "__main__":
    main()
