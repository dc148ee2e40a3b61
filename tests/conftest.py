import os

os.environ['DATABASE_URL'] = 'sqlite:///test_coachcal.db'
os.environ.setdefault('LOG_FILE', 'logs/test_coachcal.log')

import pytest
from concurrent.futures import Executor, Future
from datetime import datetime
from unittest.mock import Mock
from coachcal.database import drop_db, init_db, DatabaseManager
from coachcal.models import User
from coachcal.models.user import UserRole
from coachcal.services.availability_service import AvailabilityService
from coachcal.services.booking_service import BookingService
from coachcal.services.calendar_sync_service import CalendarSyncAdapter
from coachcal.services.integration_store import IntegrationStore
from coachcal.services.reminder_service import ReminderService
from coachcal.utils.clock import FixedClock

# Monday
MONDAY_0800 = datetime(2024, 3, 4, 8, 0)

MORNINGS_UTC = {
    'monday': [{'start': '09:00', 'end': '12:00'}],
    'tuesday': [{'start': '09:00', 'end': '12:00'}],
    'wednesday': [{'start': '09:00', 'end': '12:00'}],
    'thursday': [{'start': '09:00', 'end': '12:00'}],
    'friday': [{'start': '09:00', 'end': '12:00'}],
    'saturday': [],
    'sunday': []
}


@pytest.fixture
def database():
    """Fresh tables for every test"""
    drop_db()
    init_db()
    yield
    drop_db()


@pytest.fixture
def clock():
    return FixedClock(MONDAY_0800)


@pytest.fixture
def make_user(database):
    user_db = DatabaseManager(User)
    counter = {'n': 0}

    def _make(role=UserRole.CLIENT, first_name='Test', timezone='UTC', **kwargs):
        counter['n'] += 1
        values = dict(
            email=f"user{counter['n']}@test.com",
            phone=f"+1555000{counter['n']:04d}",
            first_name=first_name,
            last_name=f"User{counter['n']}",
            role=role,
            organization_id='org_test',
            timezone=timezone,
            is_active=True
        )
        values.update(kwargs)
        return user_db.create(**values)

    return _make


@pytest.fixture
def coach(make_user):
    """Coach with Mon-Fri 09:00-12:00 UTC, 30 minute slots, 60 minutes notice"""
    user = make_user(role=UserRole.COACH, first_name='Coach')
    AvailabilityService().update_profile(user.id, {
        'timezone': 'UTC',
        'weekly_schedule': MORNINGS_UTC,
        'minimum_notice_minutes': 60,
        'default_slot_duration_minutes': 30
    })
    return user


@pytest.fixture
def client_user(make_user):
    return make_user(role=UserRole.CLIENT, first_name='Client')


@pytest.fixture
def notifications():
    notification_service = Mock()
    notification_service.send_reminder.return_value = 1
    return notification_service


class InlineExecutor(Executor):
    """Runs submitted work on the calling thread and keeps the futures"""

    def __init__(self):
        self.futures = []

    def submit(self, fn, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        self.futures.append(future)
        return future


@pytest.fixture
def booking_service(database, clock, notifications):
    return BookingService(
        clock=clock,
        notification_service=notifications,
        reminder_service=ReminderService(clock, notifications),
        sync_adapter=CalendarSyncAdapter(store=IntegrationStore(), clock=clock),
        sync_executor=InlineExecutor()
    )
