import pytest
from datetime import datetime
from coachcal.database import get_db
from coachcal.errors import ValidationError
from coachcal.models import ReminderJob, SchedulableEvent
from coachcal.services.reminder_service import ReminderService, parse_reminder_schedule

WEDNESDAY_0900 = datetime(2024, 3, 6, 9, 0)


class TestParseReminderSchedule:
    def test_parses_entries(self):
        assert parse_reminder_schedule('email:1440, sms:10') == [('email', 1440), ('sms', 10)]

    def test_drops_duplicates_and_blanks(self):
        assert parse_reminder_schedule('email:60,,EMAIL:60') == [('email', 60)]

    def test_empty_schedule(self):
        assert parse_reminder_schedule('') == []

    @pytest.mark.parametrize('value', ['pager:10', 'email', 'sms:-5', 'email:soon'])
    def test_rejects_bad_entries(self, value):
        with pytest.raises(ValidationError):
            parse_reminder_schedule(value)


@pytest.fixture
def booked(booking_service, coach, client_user):
    event, _ = booking_service.book(client_user.id, coach.id, [client_user.id], WEDNESDAY_0900)
    return event


class TestScheduling:
    def test_job_ids_are_deterministic(self, booking_service, booked):
        jobs = booking_service.reminder_service.jobs_for(booked.id)

        assert sorted(job.id for job in jobs) == sorted([
            f"{booked.id}_email_1440m", f"{booked.id}_email_60m", f"{booked.id}_sms_10m"
        ])
        sms = [job for job in jobs if job.channel == 'sms'][0]
        assert sms.run_at == datetime(2024, 3, 6, 8, 50)
        assert sms.event_start == WEDNESDAY_0900

    def test_scheduling_twice_does_not_duplicate(self, booking_service, booked):
        reminders = booking_service.reminder_service
        reminders.schedule_for(booked)
        reminders.schedule_for(booked)

        assert len(reminders.jobs_for(booked.id)) == 3

    def test_custom_schedule(self, clock, notifications, booked):
        reminders = ReminderService(clock, notifications, schedule=[('sms', 30)])
        reminders.cancel_all_for(booked.id)

        jobs = reminders.schedule_for(booked)

        assert [job.kind for job in jobs] == ['sms_30m']

    def test_sent_reminder_is_rearmed_after_rebook(self, booking_service, booked, coach, clock, notifications):
        reminders = booking_service.reminder_service
        clock.set(datetime(2024, 3, 5, 9, 1))
        assert reminders.process_due_jobs()['executed'] == 1

        friday = datetime(2024, 3, 8, 9, 0)
        booking_service.rebook(booked.id, coach.id, friday)

        jobs = reminders.jobs_for(booked.id)
        assert [job.kind for job in jobs if not job.executed] == ['email_1440m', 'email_60m', 'sms_10m']
        assert all(job.event_start == friday for job in jobs)
        assert jobs[0].run_at == datetime(2024, 3, 7, 9, 0)
        assert jobs[0].executed_at is None

        clock.set(datetime(2024, 3, 7, 9, 0))
        assert reminders.process_due_jobs()['executed'] == 1
        assert notifications.send_reminder.call_count == 2

    def test_cancel_all_for_counts(self, booking_service, booked):
        reminders = booking_service.reminder_service
        assert reminders.cancel_all_for(booked.id) == 3
        assert reminders.cancel_all_for(booked.id) == 0


class TestProcessDueJobs:
    def test_nothing_due(self, booking_service, booked, notifications):
        stats = booking_service.reminder_service.process_due_jobs()

        assert stats == {'processed': 0, 'executed': 0, 'skipped': 0, 'errors': 0}
        notifications.send_reminder.assert_not_called()

    def test_due_job_runs_once(self, booking_service, booked, clock, notifications):
        reminders = booking_service.reminder_service
        clock.set(datetime(2024, 3, 5, 9, 0))

        stats = reminders.process_due_jobs()
        assert stats['executed'] == 1

        event, job = notifications.send_reminder.call_args[0]
        assert event.id == booked.id
        assert job.kind == 'email_1440m'
        assert job.executed and job.executed_at == clock.now()

        # A second sweep finds nothing new
        assert reminders.process_due_jobs()['processed'] == 0
        assert notifications.send_reminder.call_count == 1

    def test_all_due_jobs_in_run_order(self, booking_service, booked, clock, notifications):
        clock.set(datetime(2024, 3, 6, 8, 55))

        stats = booking_service.reminder_service.process_due_jobs()

        assert stats['executed'] == 3
        kinds = [c[0][1].kind for c in notifications.send_reminder.call_args_list]
        assert kinds == ['email_1440m', 'email_60m', 'sms_10m']

    def test_batch_limit(self, booking_service, booked, clock):
        clock.set(datetime(2024, 3, 6, 8, 55))
        assert booking_service.reminder_service.process_due_jobs(limit=2)['processed'] == 2

    def test_cancelled_event_is_never_reminded(self, booking_service, booked, client_user, clock, notifications):
        reminders = booking_service.reminder_service
        booking_service.cancel(booked.id, client_user.id)
        # A job left behind by a cancellation racing the sweep
        with get_db() as db:
            db.add(ReminderJob(id=f"{booked.id}_sms_10m", event_id=booked.id, kind='sms_10m',
                               channel='sms', offset_minutes=10, run_at=datetime(2024, 3, 6, 8, 50),
                               event_start=WEDNESDAY_0900, executed=False))

        clock.set(datetime(2024, 3, 6, 8, 55))
        stats = reminders.process_due_jobs()

        assert stats['skipped'] == 1
        notifications.send_reminder.assert_not_called()
        assert reminders.jobs_for(booked.id) == []

    def test_job_for_moved_event_is_dropped(self, booking_service, booked, clock, notifications):
        reminders = booking_service.reminder_service
        with get_db() as db:
            event = db.get(SchedulableEvent, booked.id)
            event.start_date_time = datetime(2024, 3, 6, 11, 0)
            event.end_date_time = datetime(2024, 3, 6, 11, 30)

        clock.set(datetime(2024, 3, 6, 8, 55))
        stats = reminders.process_due_jobs()

        assert stats['skipped'] == 3
        notifications.send_reminder.assert_not_called()

    def test_undelivered_reminder_records_error(self, booking_service, booked, clock, notifications):
        notifications.send_reminder.return_value = 0
        clock.set(datetime(2024, 3, 5, 9, 0))

        stats = booking_service.reminder_service.process_due_jobs()

        assert stats['errors'] == 1
        job = [j for j in booking_service.reminder_service.jobs_for(booked.id) if j.kind == 'email_1440m'][0]
        assert job.executed
        assert job.error == 'No recipient could be reached'

    def test_delivery_failure_is_not_retried(self, booking_service, booked, clock, notifications):
        reminders = booking_service.reminder_service
        notifications.send_reminder.side_effect = RuntimeError('smtp down')
        clock.set(datetime(2024, 3, 5, 9, 0))

        assert reminders.process_due_jobs()['errors'] == 1
        assert reminders.process_due_jobs()['processed'] == 0
        assert notifications.send_reminder.call_count == 1


class TestSweep:
    def test_sweep_fires_reminders_then_completes_sessions(self, booking_service, booked, clock, notifications):
        from scripts.run_reminder_sweep import sweep
        clock.set(datetime(2024, 3, 6, 9, 45))

        stats, completed = sweep(booking_service)

        assert stats['executed'] == 3
        assert completed == 1
        assert notifications.send_reminder.call_count == 3
