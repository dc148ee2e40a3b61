from datetime import timedelta
from typing import Dict, List, Tuple
from coachcal.database import get_db
from coachcal.errors import ValidationError
from coachcal.models import ReminderJob, SchedulableEvent
from coachcal.models.event import SchedulingStatus
from coachcal.services.notification_service import NotificationService
from coachcal.utils.clock import Clock, SystemClock
from config.config import Config
from coachcal.utils.logger import get_logger

logger = get_logger(__name__)

CHANNELS = ('email', 'sms')


def parse_reminder_schedule(value: str) -> List[Tuple[str, int]]:
    """Parse "email:1440,sms:10" into [(channel, minutes_before), ...]"""
    schedule = []
    for part in (value or '').split(','):
        part = part.strip()
        if not part:
            continue
        channel, _, minutes = part.partition(':')
        channel = channel.strip().lower()
        if channel not in CHANNELS or not minutes.strip().isdigit():
            raise ValidationError(f"Invalid reminder entry '{part}'. Use channel:minutes")
        entry = (channel, int(minutes))
        if entry not in schedule:
            schedule.append(entry)
    return schedule


class ReminderService:
    """Deferred reminder rows tied to a confirmed event.

    Jobs are created inside the confirming transaction and deleted inside
    the cancelling one. Firing them is the sweep's job: an external
    trigger calls ``process_due_jobs`` periodically.
    """

    def __init__(self, clock: Clock = None, notification_service: NotificationService = None,
                 schedule: List[Tuple[str, int]] = None):
        self.clock = clock or SystemClock()
        self.notification_service = notification_service or NotificationService()
        self.schedule = schedule if schedule is not None else parse_reminder_schedule(Config.REMINDER_SCHEDULE)

    def schedule_for(self, event: SchedulableEvent, db=None) -> List[ReminderJob]:
        """Create the reminder jobs for a confirmed event.

        Offsets whose run time has already passed are skipped. Calling this
        again for the same start time returns the existing jobs.
        """
        if db is None:
            with get_db() as db:
                return self.schedule_for(event, db=db)

        now = self.clock.now()
        jobs = []
        for channel, minutes in self.schedule:
            run_at = event.start_date_time - timedelta(minutes=minutes)
            if run_at <= now:
                continue

            kind = f"{channel}_{minutes}m"
            job_id = f"{event.id}_{kind}"
            job = db.get(ReminderJob, job_id)
            if job is None:
                job = ReminderJob(id=job_id, event_id=event.id, kind=kind, channel=channel,
                                  offset_minutes=minutes, run_at=run_at,
                                  event_start=event.start_date_time, executed=False)
                db.add(job)
            elif not job.executed or job.event_start != event.start_date_time:
                # A job that fired for an earlier start is due again for the new one
                job.run_at = run_at
                job.event_start = event.start_date_time
                job.executed = False
                job.executed_at = None
                job.error = None
            jobs.append(job)

        db.flush()
        logger.info(f"Scheduled {len(jobs)} reminder job(s) for event {event.id}")
        return jobs

    def cancel_all_for(self, event_id: int, db=None) -> int:
        """Delete every pending job of an event; returns how many were deleted"""
        if db is None:
            with get_db() as db:
                return self.cancel_all_for(event_id, db=db)

        deleted = db.query(ReminderJob).filter(
            ReminderJob.event_id == event_id,
            ReminderJob.executed == False  # noqa: E712
        ).delete(synchronize_session=False)

        if deleted:
            logger.info(f"Deleted {deleted} pending reminder job(s) for event {event_id}")
        return deleted

    def jobs_for(self, event_id: int) -> List[ReminderJob]:
        with get_db() as db:
            return db.query(ReminderJob).filter_by(event_id=event_id).order_by(ReminderJob.run_at).all()

    def process_due_jobs(self, limit: int = None) -> Dict[str, int]:
        """Fire due reminders. Called by the periodic sweep.

        A job is marked executed in the same transaction that re-checks its
        event, before delivery, so a job is delivered at most once and never
        after its event's cancellation has committed.
        """
        stats = {'processed': 0, 'executed': 0, 'skipped': 0, 'errors': 0}
        now = self.clock.now()

        with get_db() as db:
            due_ids = [row[0] for row in db.query(ReminderJob.id).filter(
                ReminderJob.executed == False,  # noqa: E712
                ReminderJob.run_at <= now
            ).order_by(ReminderJob.run_at).limit(limit or Config.REMINDER_BATCH_SIZE).all()]

        for job_id in due_ids:
            stats['processed'] += 1
            try:
                with get_db() as db:
                    job = db.get(ReminderJob, job_id)
                    if job is None or job.executed:
                        stats['skipped'] += 1
                        continue

                    event = db.query(SchedulableEvent).filter_by(id=job.event_id).with_for_update().first()
                    if not self._job_still_valid(job, event):
                        db.delete(job)
                        stats['skipped'] += 1
                        logger.info(f"Dropped stale reminder job {job_id}")
                        continue

                    job.executed = True
                    job.executed_at = now

                delivered = self.notification_service.send_reminder(event, job)
                if delivered:
                    stats['executed'] += 1
                else:
                    stats['errors'] += 1
                    self._record_error(job_id, 'No recipient could be reached')

            except Exception as e:
                logger.error(f"Error processing reminder job {job_id}: {str(e)}")
                stats['errors'] += 1
                self._record_error(job_id, str(e))

        if stats['processed']:
            logger.info(f"Reminder sweep completed: {stats}")
        return stats

    def _job_still_valid(self, job: ReminderJob, event: SchedulableEvent) -> bool:
        if event is None:
            return False
        if event.scheduling_status != SchedulingStatus.CONFIRMED:
            return False
        return event.start_date_time == job.event_start

    def _record_error(self, job_id: str, message: str):
        try:
            with get_db() as db:
                job = db.get(ReminderJob, job_id)
                if job:
                    job.error = message[:500]
        except Exception as e:
            logger.error(f"Could not record error on reminder job {job_id}: {str(e)}")
