from datetime import datetime
from typing import Dict, List, Optional
import pytz
from coachcal.database import get_db
from coachcal.integrations import TwilioClient, SendGridClient
from coachcal.models import ReminderJob, SchedulableEvent, User
from config.config import Config
from coachcal.utils.logger import get_logger

logger = get_logger(__name__)


def format_local(instant: datetime, timezone: str) -> str:
    """Render a naive UTC instant in ``timezone`` for humans"""
    try:
        tz = pytz.timezone(timezone or Config.DEFAULT_TIMEZONE)
    except pytz.UnknownTimeZoneError:
        tz = pytz.utc
    local = pytz.utc.localize(instant).astimezone(tz)
    return local.strftime('%A, %B %d at %I:%M %p %Z')


def describe_offset(minutes: int) -> str:
    if minutes >= 1440 and minutes % 1440 == 0:
        days = minutes // 1440
        return 'tomorrow' if days == 1 else f'in {days} days'
    if minutes >= 60 and minutes % 60 == 0:
        hours = minutes // 60
        return f"in {hours} hour{'s' if hours != 1 else ''}"
    return f"in {minutes} minute{'s' if minutes != 1 else ''}"


class NotificationService:
    """Reminder and booking emails/SMS for the people on an event"""

    def __init__(self):
        self.twilio = TwilioClient()
        self.sendgrid = SendGridClient()

    def send_reminder(self, event: SchedulableEvent, job: ReminderJob) -> int:
        """Deliver one reminder to the host and every attendee; returns deliveries made"""
        recipients = self._participants(event)
        delivered = 0

        for user in recipients:
            meeting = self._meeting_details(event, user, recipients)
            meeting['starts_in'] = describe_offset(job.offset_minutes)

            if job.channel == 'sms':
                if not user.phone or not user.sms_opt_in:
                    continue
                result = self.twilio.send_session_reminder(user.phone, meeting)
            else:
                result = self.sendgrid.send_reminder_email(user.email, user.first_name, meeting)

            if result:
                delivered += 1
            else:
                logger.warning(f"Reminder {job.id} could not be delivered to user {user.id}")

        logger.info(f"Reminder {job.id} delivered to {delivered} of {len(recipients)} participant(s)")
        return delivered

    def send_booking_confirmation(self, event_id: int, manage_link: Optional[str] = None):
        """Email every participant that the session is confirmed"""
        try:
            with get_db() as db:
                event = db.get(SchedulableEvent, event_id)
                if not event:
                    return
                recipients = self._participants(event, db=db)

            for user in recipients:
                link = manage_link if user.id != event.host_user_id else None
                meeting = self._meeting_details(event, user, recipients)
                self.sendgrid.send_booking_confirmation(user.email, user.first_name, meeting, link)

            logger.info(f"Sent booking confirmation for event {event_id}")
        except Exception as e:
            logger.error(f"Error sending booking confirmation for event {event_id}: {str(e)}")

    def _participants(self, event: SchedulableEvent, db=None) -> List[User]:
        if db is None:
            with get_db() as db:
                return self._participants(event, db=db)
        ids = event.participant_ids()
        return db.query(User).filter(User.id.in_(ids)).order_by(User.id).all()

    def _meeting_details(self, event: SchedulableEvent, user: User, participants: List[User]) -> Dict:
        others = [p.full_name for p in participants if p.id != user.id]
        return {
            'title': event.title or 'Coaching session',
            'when': format_local(event.start_date_time, user.timezone or event.timezone),
            'with': ', '.join(others) or 'your coach',
            'meeting_link': event.meeting_link
        }
