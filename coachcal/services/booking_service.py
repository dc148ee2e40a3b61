"""
Booking state machine

    proposed -> pending_response -> confirmed | counter_proposed | cancelled
    counter_proposed -> confirmed | counter_proposed | cancelled
    confirmed -> cancelled | proposed (reschedule) | completed
    cancelled, completed: terminal

Every transition re-reads the event inside its own transaction and appends
one ``SchedulingNote``. Reaching ``confirmed`` claims the coach's timeline
first; a lost claim raises ``SlotConflictError`` and nothing is written.
Emails run after commit and never fail a transition. Calendar sync is
handed to a background executor after commit.
"""

import time
from concurrent.futures import Executor, ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional, Tuple
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError
from coachcal.database import get_db
from coachcal.errors import (
    InvalidTransition, NotFound, SlotConflictError, Unauthorized, ValidationError
)
from coachcal.models import BookingToken, SchedulableEvent, SchedulingNote, User
from coachcal.models.event import MeetingProvider, SchedulingStatus
from coachcal.services.availability_service import AvailabilityService
from coachcal.services.booking_token_service import issue_token
from coachcal.services.calendar_sync_service import CalendarSyncAdapter
from coachcal.services.claim_coordinator import SlotClaimCoordinator
from coachcal.services.notification_service import NotificationService, format_local
from coachcal.services.reminder_service import ReminderService
from coachcal.services.slot_resolver import SlotResolver
from coachcal.utils.clock import Clock, SystemClock
from coachcal.utils.validators import validate_positive_minutes, validate_time_range
from config.config import Config
from coachcal.utils.logger import get_logger

logger = get_logger(__name__)

S = SchedulingStatus

TRANSITIONS = {
    S.PROPOSED: {S.PENDING_RESPONSE, S.COUNTER_PROPOSED, S.CONFIRMED, S.CANCELLED},
    S.PENDING_RESPONSE: {S.COUNTER_PROPOSED, S.CONFIRMED, S.CANCELLED},
    S.COUNTER_PROPOSED: {S.COUNTER_PROPOSED, S.CONFIRMED, S.CANCELLED},
    S.CONFIRMED: {S.CANCELLED, S.PROPOSED, S.COMPLETED},
    S.CANCELLED: set(),
    S.COMPLETED: set(),
}

NEGOTIATING = (S.PROPOSED, S.PENDING_RESPONSE, S.COUNTER_PROPOSED)

RESPONSE_ACTIONS = ('accept', 'counter', 'decline')

# Shared by every BookingService that is not given its own executor
_sync_executor = ThreadPoolExecutor(max_workers=Config.SYNC_WORKERS, thread_name_prefix='calendar-sync')

# Marks "use the event's status as the from-state" in _move and _confirm
_CURRENT = object()


def can_transition(from_state: SchedulingStatus, to_state: SchedulingStatus) -> bool:
    return to_state in TRANSITIONS.get(from_state, set())


def _is_lock_error(error: OperationalError) -> bool:
    text = str(getattr(error, 'orig', error)).lower()
    return 'locked' in text or 'deadlock' in text or 'could not serialize' in text


class BookingService:
    def __init__(self, clock: Clock = None,
                 availability_service: AvailabilityService = None,
                 slot_resolver: SlotResolver = None,
                 claim_coordinator: SlotClaimCoordinator = None,
                 reminder_service: ReminderService = None,
                 sync_adapter: CalendarSyncAdapter = None,
                 notification_service: NotificationService = None,
                 sync_executor: Executor = None,
                 max_attempts: int = 3):
        self.clock = clock or SystemClock()
        self.availability_service = availability_service or AvailabilityService()
        self.slot_resolver = slot_resolver or SlotResolver(self.clock, self.availability_service)
        self.claim_coordinator = claim_coordinator or SlotClaimCoordinator(self.clock)
        self.notification_service = notification_service or NotificationService()
        self.reminder_service = reminder_service or ReminderService(self.clock, self.notification_service)
        self.sync_adapter = sync_adapter or CalendarSyncAdapter(clock=self.clock)
        self.sync_executor = sync_executor or _sync_executor
        self.max_attempts = max_attempts

    # Negotiation

    def propose(self, actor_id: int, host_user_id: int, attendee_ids: Iterable[int],
                start: datetime, end: datetime = None, duration_minutes: int = None,
                title: str = None, organization_id: str = None,
                meeting_provider: MeetingProvider = None, meeting_link: str = None,
                note: str = None) -> SchedulableEvent:
        """Create an event in ``proposed`` with ``actor_id``'s suggested time"""
        attendees = self._validate_attendees(attendee_ids, host_user_id)
        if actor_id != host_user_id and actor_id not in attendees:
            raise Unauthorized()
        profile = self.availability_service.get_profile(host_user_id)
        start, end = self._resolve_range(start, end, duration_minutes or profile.default_slot_duration_minutes)
        self._require_future(start)

        with get_db() as db:
            host = db.get(User, host_user_id)
            event = SchedulableEvent(
                host_user_id=host_user_id,
                attendee_ids=attendees,
                organization_id=organization_id or host.organization_id,
                title=title,
                start_date_time=start,
                end_date_time=end,
                duration_minutes=self._minutes_between(start, end),
                timezone=profile.timezone,
                scheduling_status=S.PROPOSED,
                proposed_by=actor_id,
                meeting_provider=meeting_provider or MeetingProvider.NATIVE,
                meeting_link=meeting_link,
                notes=[]
            )
            db.add(event)
            db.flush()
            self._log(db, event, actor_id, None, S.PROPOSED,
                      f"proposed {format_local(start, event.timezone)}", note)

        logger.info(f"Event {event.id} proposed by user {actor_id} for coach {host_user_id}")
        return event

    def acknowledge(self, event_id: int, actor_id: int) -> SchedulableEvent:
        """Counterpart has seen the proposal: ``proposed -> pending_response``"""
        def apply(db, event):
            if event.scheduling_status == S.PENDING_RESPONSE:
                return event
            self._require_transition(event, S.PENDING_RESPONSE)
            self._require_counterpart(event, actor_id)
            self._move(db, event, actor_id, S.PENDING_RESPONSE, 'acknowledged the proposal')
            return event

        return self._transact(event_id, actor_id, apply)

    def respond(self, event_id: int, actor_id: int, action: str, start: datetime = None,
                end: datetime = None, note: str = None) -> SchedulableEvent:
        """Answer an outstanding proposal with accept, counter or decline"""
        if action == 'accept':
            return self.accept(event_id, actor_id, note=note)
        if action == 'counter':
            return self.counter_propose(event_id, actor_id, start, end, note=note)
        if action == 'decline':
            return self.decline(event_id, actor_id, reason=note)
        raise ValidationError(f"Action must be one of: {', '.join(RESPONSE_ACTIONS)}")

    def accept(self, event_id: int, actor_id: int, note: str = None) -> SchedulableEvent:
        host_user_id = self._host_of(event_id, actor_id)

        def apply(db, event):
            self._require_transition(event, S.CONFIRMED)
            self._require_counterpart(event, actor_id)
            self._confirm(db, event, actor_id, event.start_date_time, event.end_date_time,
                          'accepted', note)
            return event

        event = self._transact(event_id, actor_id, apply, coach_id=host_user_id)
        self._after_confirm(event)
        return event

    def counter_propose(self, event_id: int, actor_id: int, start: datetime,
                        end: datetime = None, note: str = None) -> SchedulableEvent:
        def apply(db, event):
            self._require_transition(event, S.COUNTER_PROPOSED)
            self._require_counterpart(event, actor_id)
            new_start, new_end = self._resolve_range(start, end, event.duration_minutes)
            self._require_future(new_start)
            self._set_times(event, new_start, new_end)
            event.proposed_by = actor_id
            self._move(db, event, actor_id, S.COUNTER_PROPOSED,
                       f"counter-proposed {format_local(new_start, event.timezone)}", note)
            return event

        return self._transact(event_id, actor_id, apply)

    def decline(self, event_id: int, actor_id: int, reason: str = None) -> SchedulableEvent:
        """Counterpart turns the proposal down; the event is cancelled"""
        def apply(db, event):
            self._require_transition(event, S.CANCELLED)
            if event.scheduling_status not in NEGOTIATING:
                raise InvalidTransition()
            self._require_counterpart(event, actor_id)
            self._move(db, event, actor_id, S.CANCELLED, 'declined', reason)
            self.reminder_service.cancel_all_for(event.id, db=db)
            return event

        return self._transact(event_id, actor_id, apply)

    def cancel(self, event_id: int, actor_id: int, reason: str = None) -> SchedulableEvent:
        """Cancel from any non-terminal state; cancelling twice is a no-op"""
        was_confirmed = []

        def apply(db, event):
            if event.scheduling_status == S.CANCELLED:
                return event
            self._require_transition(event, S.CANCELLED)
            was_confirmed.append(event.scheduling_status == S.CONFIRMED)
            self._move(db, event, actor_id, S.CANCELLED, 'cancelled', reason)
            self.reminder_service.cancel_all_for(event.id, db=db)
            return event

        event = self._transact(event_id, actor_id, apply)
        if was_confirmed and was_confirmed[-1]:
            self._after_release(event)
        return event

    def reschedule(self, event_id: int, actor_id: int, start: datetime = None,
                   end: datetime = None, note: str = None) -> SchedulableEvent:
        """Re-open a confirmed event for negotiation, optionally at a new time"""
        def apply(db, event):
            self._require_transition(event, S.PROPOSED)
            if start is not None:
                new_start, new_end = self._resolve_range(start, end, event.duration_minutes)
                self._require_future(new_start)
                self._set_times(event, new_start, new_end)
            event.proposed_by = actor_id
            self.reminder_service.cancel_all_for(event.id, db=db)
            self._move(db, event, actor_id, S.PROPOSED,
                       f"asked to reschedule to {format_local(event.start_date_time, event.timezone)}", note)
            return event

        event = self._transact(event_id, actor_id, apply)
        self._after_release(event)
        return event

    # Direct bookings

    def book(self, actor_id: int, host_user_id: int, attendee_ids: Iterable[int],
             start: datetime, end: datetime = None, duration_minutes: int = None,
             title: str = None, organization_id: str = None,
             meeting_provider: MeetingProvider = None, meeting_link: str = None,
             note: str = None, issue_booking_token: bool = False
             ) -> Tuple[SchedulableEvent, Optional[BookingToken]]:
        """Create an event straight in ``confirmed``.

        Runs the same guards and claim as accepting a proposal. With
        ``issue_booking_token`` the first attendee also gets a management
        link.
        """
        attendees = self._validate_attendees(attendee_ids, host_user_id)
        if actor_id != host_user_id and actor_id not in attendees:
            raise Unauthorized()
        profile = self.availability_service.get_profile(host_user_id)
        start, end = self._resolve_range(start, end, duration_minutes or profile.default_slot_duration_minutes)

        def attempt():
            with get_db() as db:
                host = db.get(User, host_user_id)
                event = SchedulableEvent(
                    host_user_id=host_user_id,
                    attendee_ids=attendees,
                    organization_id=organization_id or host.organization_id,
                    title=title,
                    start_date_time=start,
                    end_date_time=end,
                    duration_minutes=self._minutes_between(start, end),
                    timezone=profile.timezone,
                    scheduling_status=S.PROPOSED,
                    proposed_by=actor_id,
                    meeting_provider=meeting_provider or MeetingProvider.NATIVE,
                    meeting_link=meeting_link,
                    notes=[]
                )
                self._check_confirmable(db, event, actor_id, start, end)
                db.add(event)
                db.flush()
                self._confirm(db, event, actor_id, start, end, 'booked', note,
                              from_state=None, checked=True)
                token = None
                if issue_booking_token:
                    token = issue_token(db, event, attendees[0], self.clock.now())
                return event, token

        event, token = self._retrying(attempt, coach_id=host_user_id)
        logger.info(f"Event {event.id} booked by user {actor_id} with coach {host_user_id}")
        self._after_confirm(event, token)
        return event, token

    def rebook(self, event_id: int, actor_id: int, start: datetime, end: datetime = None,
               note: str = None, issue_booking_token: bool = False
               ) -> Tuple[SchedulableEvent, Optional[BookingToken]]:
        """Move a confirmed event to a new time in one transaction.

        Goes through ``proposed`` and back to ``confirmed``; if the new time
        cannot be claimed the event keeps its old confirmed time.
        """
        host_user_id = self._host_of(event_id, actor_id)
        issued = []

        def apply(db, event):
            if event.scheduling_status != S.CONFIRMED:
                raise InvalidTransition()
            new_start, new_end = self._resolve_range(start, end, event.duration_minutes)
            self._require_future(new_start)
            self.reminder_service.cancel_all_for(event.id, db=db)
            self._move(db, event, actor_id, S.PROPOSED,
                       f"asked to reschedule to {format_local(new_start, event.timezone)}", note)
            event.proposed_by = actor_id
            self._confirm(db, event, actor_id, new_start, new_end, 'rescheduled')
            if issue_booking_token:
                issued.append(issue_token(db, event, actor_id, self.clock.now()))
            return event

        event = self._transact(event_id, actor_id, apply, coach_id=host_user_id)
        token = issued[-1] if issued else None
        self._after_confirm(event, token)
        return event, token

    # Sweeps and reads

    def complete_elapsed(self, now: datetime = None) -> int:
        """Move confirmed events whose end has passed to ``completed``"""
        now = now or self.clock.now()
        with get_db() as db:
            event_ids = [row[0] for row in db.query(SchedulableEvent.id).filter(
                SchedulableEvent.scheduling_status == S.CONFIRMED,
                SchedulableEvent.end_date_time <= now
            ).all()]

        completed = 0
        for event_id in event_ids:
            try:
                with get_db() as db:
                    event = db.get(SchedulableEvent, event_id)
                    if event is None or event.scheduling_status != S.CONFIRMED:
                        continue
                    self._move(db, event, None, S.COMPLETED, 'completed')
                    self.reminder_service.cancel_all_for(event.id, db=db)
                completed += 1
            except StaleDataError:
                logger.info(f"Event {event_id} changed during completion sweep, skipping")

        if completed:
            logger.info(f"Marked {completed} event(s) completed")
        return completed

    def get_event(self, event_id: int, actor_id: int) -> SchedulableEvent:
        with get_db() as db:
            return self._load(db, event_id, actor_id)

    # Internals

    def _transact(self, event_id: int, actor_id: int, apply: Callable, coach_id: int = None):
        def attempt():
            with get_db() as db:
                event = self._load(db, event_id, actor_id)
                return apply(db, event)

        return self._retrying(attempt, coach_id=coach_id)

    def _retrying(self, attempt: Callable, coach_id: int = None):
        """Run ``attempt`` again when a concurrent writer got there first.

        The retry re-reads and re-validates, so a stale change to an event
        that has since been cancelled fails with ``InvalidTransition``.
        """
        if coach_id is not None:
            self.claim_coordinator.ensure_timeline(coach_id)

        for number in range(1, self.max_attempts + 1):
            try:
                return attempt()
            except StaleDataError:
                logger.info(f"Event changed concurrently (attempt {number}), re-validating")
                if number == self.max_attempts:
                    raise InvalidTransition('The booking was changed by someone else, please reload')
            except OperationalError as e:
                if not _is_lock_error(e) or number == self.max_attempts:
                    raise
                logger.info(f"Database busy (attempt {number}), retrying")
                time.sleep(0.05 * number)

    def _load(self, db, event_id: int, actor_id: int) -> SchedulableEvent:
        event = db.query(SchedulableEvent).options(
            selectinload(SchedulableEvent.notes)
        ).filter(SchedulableEvent.id == event_id).first()
        if event is None:
            raise NotFound('Booking not found')
        if actor_id is not None and not event.is_participant(actor_id):
            raise Unauthorized()
        return event

    def _host_of(self, event_id: int, actor_id: int) -> int:
        return self.get_event(event_id, actor_id).host_user_id

    def _confirm(self, db, event: SchedulableEvent, actor_id: int, start: datetime,
                 end: datetime, verb: str, note: str = None, from_state=_CURRENT, checked=False):
        if not checked:
            self._check_confirmable(db, event, actor_id, start, end)

        profile = self.availability_service.get_profile(event.host_user_id, db=db)
        result = self.claim_coordinator.claim(
            db, event.host_user_id, start, end,
            event_id=event.id, buffer_minutes=profile.buffer_minutes
        )
        if not result.claimed:
            raise SlotConflictError(conflicting_event_id=result.conflicting_event_id)

        previous = event.scheduling_status if from_state is _CURRENT else from_state
        self._set_times(event, start, end)
        event.proposed_by = None
        self._move(db, event, actor_id, S.CONFIRMED,
                   f"{verb} {format_local(start, event.timezone)}", note, from_state=previous)
        self.reminder_service.schedule_for(event, db=db)

    def _check_confirmable(self, db, event: SchedulableEvent, actor_id: int,
                           start: datetime, end: datetime):
        """Confirmation guards: future, notice for non-coaches, free time"""
        profile = self.availability_service.get_profile(event.host_user_id, db=db)
        now = self.clock.now()
        self._require_future(start)

        if actor_id != event.host_user_id:
            earliest = now + timedelta(minutes=profile.minimum_notice_minutes)
            if start < earliest:
                raise ValidationError(
                    f"Bookings need at least {profile.minimum_notice_minutes} minutes notice"
                )

        if not self.slot_resolver.is_range_free(db, profile, start, end, exclude_event_id=event.id):
            raise SlotConflictError()

    def _move(self, db, event: SchedulableEvent, actor_id: Optional[int], to_state: SchedulingStatus,
              description: str, note: str = None, from_state=_CURRENT):
        previous = event.scheduling_status if from_state is _CURRENT else from_state
        if previous is not None and not can_transition(previous, to_state):
            raise InvalidTransition()
        event.scheduling_status = to_state
        self._log(db, event, actor_id, previous, to_state, description, note)
        logger.info(f"Event {event.id}: {previous.value if previous else 'new'} -> {to_state.value}"
                    f" by user {actor_id}")

    def _log(self, db, event: SchedulableEvent, actor_id: Optional[int], from_state,
             to_state: SchedulingStatus, description: str, note: str = None):
        actor = db.get(User, actor_id) if actor_id is not None else None
        who = actor.full_name if actor else 'System'
        text = f"{who} {description}"
        if note:
            text += f": {note.strip()}"
        event.notes.append(SchedulingNote(
            actor_id=actor_id, from_state=from_state, to_state=to_state,
            note=text, created_at=self.clock.now()
        ))

    def _require_transition(self, event: SchedulableEvent, to_state: SchedulingStatus):
        if not can_transition(event.scheduling_status, to_state):
            raise InvalidTransition(
                f"Cannot move a {event.scheduling_status.value} booking to {to_state.value}"
            )

    def _require_counterpart(self, event: SchedulableEvent, actor_id: int):
        if event.proposed_by is not None and event.proposed_by == actor_id:
            raise InvalidTransition('You cannot respond to your own proposal')

    def _require_future(self, start: datetime):
        if start < self.clock.now():
            raise ValidationError('Start time must be in the future')

    def _validate_attendees(self, attendee_ids, host_user_id: int) -> List[int]:
        try:
            attendees = [int(a) for a in (attendee_ids or [])]
        except (TypeError, ValueError):
            raise ValidationError('attendee_ids must be a list of user ids')
        attendees = [a for a in dict.fromkeys(attendees) if a != host_user_id]
        if not attendees:
            raise ValidationError('At least one attendee other than the coach is required')
        return attendees

    def _resolve_range(self, start: datetime, end: Optional[datetime],
                       duration_minutes: int) -> Tuple[datetime, datetime]:
        if start is None:
            raise ValidationError('Start time is required')
        if end is None:
            end = start + timedelta(minutes=validate_positive_minutes(duration_minutes, 'duration'))
        return validate_time_range(start, end)

    def _set_times(self, event: SchedulableEvent, start: datetime, end: datetime):
        event.start_date_time = start
        event.end_date_time = end
        event.duration_minutes = self._minutes_between(start, end)

    @staticmethod
    def _minutes_between(start: datetime, end: datetime) -> int:
        return int((end - start).total_seconds() // 60)

    def _after_confirm(self, event: SchedulableEvent, token: BookingToken = None):
        self.sync_executor.submit(self._sync, self.sync_adapter.sync_confirmed, event.id)
        manage_link = f"{Config.APP_URL}/bookings/manage/{token.id}" if token else None
        self.notification_service.send_booking_confirmation(event.id, manage_link)

    def _after_release(self, event: SchedulableEvent):
        self.sync_executor.submit(self._sync, self.sync_adapter.sync_cancelled, event.id)

    def _sync(self, operation: Callable, event_id: int) -> List[str]:
        """Run one sync operation; returns the per-provider failures"""
        try:
            results = operation(event_id)
        except Exception as e:
            logger.error(f"Calendar sync for event {event_id} failed: {str(e)}")
            return [str(e)]
        return [f"{r.provider}: {r.error}" for r in results if not r.success]
