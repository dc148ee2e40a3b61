#!/usr/bin/env python3
"""
Sweep for due reminder jobs and finished sessions
Run this via cron every minute: * * * * * /path/to/venv/bin/python /path/to/run_reminder_sweep.py
or keep it running with --loop, which repeats the sweep every REMINDER_SWEEP_INTERVAL_SECONDS.
"""

import sys
import os
import argparse
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from apscheduler.schedulers.blocking import BlockingScheduler
from coachcal.services.booking_service import BookingService
from coachcal.utils.logger import get_logger
from coachcal.database import init_db
from config.config import Config
from datetime import datetime

logger = get_logger('reminder_sweep')


def sweep(booking_service: BookingService):
    """One pass: fire due reminders, then complete elapsed sessions"""
    logger.info(f"Starting reminder sweep at {datetime.utcnow()}")

    stats = booking_service.reminder_service.process_due_jobs()
    completed = booking_service.complete_elapsed()

    logger.info(f"Reminder sweep finished: {stats}, {completed} session(s) completed")
    return stats, completed


def main(argv=None):
    parser = argparse.ArgumentParser(description='Fire due reminders and complete finished sessions')
    parser.add_argument('--loop', action='store_true', help='keep running on an interval')
    args = parser.parse_args(argv)

    try:
        init_db()
        booking_service = BookingService()

        if not args.loop:
            sweep(booking_service)
            return

        scheduler = BlockingScheduler()
        scheduler.add_job(
            func=sweep,
            trigger='interval',
            seconds=Config.REMINDER_SWEEP_INTERVAL_SECONDS,
            args=[booking_service],
            id='reminder_sweep',
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now()
        )
        logger.info(f"Reminder sweep scheduled every {Config.REMINDER_SWEEP_INTERVAL_SECONDS}s")
        scheduler.start()

    except (KeyboardInterrupt, SystemExit):
        logger.info("Reminder sweep stopped")
    except Exception as e:
        logger.error(f"Error in reminder sweep: {str(e)}")
        raise


if __name__ == "__main__":
    main()
