from .user import User
from .availability import AvailabilityProfile, BlockedSlot
from .event import SchedulableEvent, SchedulingNote
from .booking_token import BookingToken
from .reminder_job import ReminderJob
from .coach_timeline import CoachTimeline
from .integration import CalendarIntegration, CalendarSyncRecord

__all__ = [
    'User', 'AvailabilityProfile', 'BlockedSlot',
    'SchedulableEvent', 'SchedulingNote', 'BookingToken',
    'ReminderJob', 'CoachTimeline',
    'CalendarIntegration', 'CalendarSyncRecord'
]
