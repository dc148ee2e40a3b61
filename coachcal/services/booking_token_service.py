from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple
from coachcal.database import get_db
from coachcal.errors import NotFound, TokenExpired, Unauthorized, ValidationError
from coachcal.models import BookingToken, SchedulableEvent, User
from coachcal.models.event import SchedulingStatus
from coachcal.utils.clock import Clock, SystemClock
from coachcal.utils.security import generate_secure_token
from config.config import Config
from coachcal.utils.logger import get_logger

logger = get_logger(__name__)


def issue_token(db, event: SchedulableEvent, issued_to: int, now: datetime,
                allow_cancellation: bool = True, allow_reschedule: bool = True) -> BookingToken:
    """Create a management link for ``issued_to``; valid until a while after the call ends"""
    token = BookingToken(
        id=generate_secure_token(),
        event_id=event.id,
        issued_to=issued_to,
        expires_at=event.end_date_time + timedelta(hours=Config.BOOKING_TOKEN_TTL_HOURS),
        allow_cancellation=allow_cancellation,
        allow_reschedule=allow_reschedule,
        created_at=now
    )
    db.add(token)
    db.flush()
    logger.info(f"Issued booking token for event {event.id} to user {issued_to}")
    return token


class BookingTokenService:
    """Public, unauthenticated access to one booking through its token"""

    def __init__(self, booking_service, clock: Clock = None):
        self.booking_service = booking_service
        self.clock = clock or booking_service.clock or SystemClock()

    def issue(self, event_id: int, issued_to: int, allow_cancellation: bool = True,
              allow_reschedule: bool = True) -> BookingToken:
        with get_db() as db:
            event = db.get(SchedulableEvent, event_id)
            if event is None or not event.is_participant(issued_to):
                raise NotFound('Booking not found')
            return issue_token(db, event, issued_to, self.clock.now(),
                               allow_cancellation=allow_cancellation,
                               allow_reschedule=allow_reschedule)

    def get_summary(self, token_id: str) -> Dict:
        """Read-only view of the booking, its coach and organization"""
        with get_db() as db:
            token = self._valid_token(db, token_id)
            event = db.get(SchedulableEvent, token.event_id)
            coach = db.get(User, event.host_user_id)

            return {
                'event': {
                    'id': event.id,
                    'title': event.title,
                    'start': event.start_date_time.isoformat() + 'Z',
                    'end': event.end_date_time.isoformat() + 'Z',
                    'duration_minutes': event.duration_minutes,
                    'timezone': event.timezone,
                    'status': event.scheduling_status.value,
                    'meeting_provider': event.meeting_provider.value,
                    'meeting_link': event.meeting_link
                },
                'coach': {
                    'name': coach.full_name if coach else None,
                    'timezone': event.timezone
                },
                'organization_id': event.organization_id,
                'allow_cancellation': token.allow_cancellation,
                'allow_reschedule': token.allow_reschedule,
                'can_change': self._can_change(event),
                'expires_at': token.expires_at.isoformat() + 'Z'
            }

    def cancel(self, token_id: str, reason: Optional[str] = None) -> SchedulableEvent:
        with get_db() as db:
            token = self._valid_token(db, token_id)
            if not token.allow_cancellation:
                raise Unauthorized('This link does not allow cancellation')
            event = db.get(SchedulableEvent, token.event_id)

        if event.scheduling_status == SchedulingStatus.CANCELLED:
            return event
        self._require_before_deadline(event)

        logger.info(f"Event {event.id} cancelled through booking link")
        return self.booking_service.cancel(event.id, token.issued_to, reason=reason or 'Cancelled via booking link')

    def reschedule(self, token_id: str, start: datetime,
                   end: datetime = None) -> Tuple[SchedulableEvent, BookingToken]:
        """Move the booking and hand back a fresh token for the new time"""
        with get_db() as db:
            token = self._valid_token(db, token_id)
            if not token.allow_reschedule:
                raise Unauthorized('This link does not allow rescheduling')
            event = db.get(SchedulableEvent, token.event_id)

        self._require_before_deadline(event)

        event, new_token = self.booking_service.rebook(
            event.id, token.issued_to, start, end,
            note='Rescheduled via booking link', issue_booking_token=True
        )
        logger.info(f"Event {event.id} rescheduled through booking link")
        return event, new_token

    def _valid_token(self, db, token_id: str) -> BookingToken:
        token = db.get(BookingToken, token_id) if token_id else None
        if token is None:
            raise NotFound('Booking link not found')
        if self.clock.now() >= token.expires_at:
            raise TokenExpired()
        return token

    def _can_change(self, event: SchedulableEvent) -> bool:
        if event.scheduling_status != SchedulingStatus.CONFIRMED:
            return False
        deadline = event.start_date_time - timedelta(hours=Config.TOKEN_CHANGE_DEADLINE_HOURS)
        return self.clock.now() <= deadline

    def _require_before_deadline(self, event: SchedulableEvent):
        deadline = event.start_date_time - timedelta(hours=Config.TOKEN_CHANGE_DEADLINE_HOURS)
        if self.clock.now() > deadline:
            raise ValidationError(
                f"Changes must be made at least {Config.TOKEN_CHANGE_DEADLINE_HOURS} hours before the session"
            )
