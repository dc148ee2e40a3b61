"""
Slot resolution

Turns a coach's weekly template, blocked periods and existing events into
bookable slots. The module-level functions are pure: they take plain
values and return new lists, so they can be called repeatedly and
concurrently. ``SlotResolver`` only loads those values from storage.

All instants are naive UTC datetimes. Template times are wall-clock times
in the profile's timezone and are converted per calendar day, so a DST
change moves the UTC instants rather than the local hours.
"""

from datetime import date, datetime, time, timedelta
from typing import Dict, Iterable, List, NamedTuple, Optional
import pytz
from coachcal.database import get_db
from coachcal.errors import ValidationError
from coachcal.models import SchedulableEvent
from coachcal.models.availability import WEEKDAYS
from coachcal.models.event import HOLDING_STATUSES, SchedulingStatus
from coachcal.services.availability_service import AvailabilityService
from coachcal.utils.clock import Clock, SystemClock
from coachcal.utils.validators import parse_hhmm, validate_positive_minutes
from config.config import Config
from coachcal.utils.logger import get_logger

logger = get_logger(__name__)


class TimeWindow(NamedTuple):
    start: datetime
    end: datetime

    def overlaps(self, other: 'TimeWindow') -> bool:
        return self.start < other.end and other.start < self.end

    def contains(self, start: datetime, end: datetime) -> bool:
        return self.start <= start and end <= self.end

    def duration_minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60

    def to_dict(self) -> Dict[str, str]:
        return {
            'start': self.start.isoformat() + 'Z',
            'end': self.end.isoformat() + 'Z'
        }


def local_to_utc(day: date, minutes: int, tz) -> datetime:
    """Wall-clock ``minutes`` after midnight on ``day`` in ``tz``, as naive UTC.

    Times that do not exist (spring-forward gap) land just after the gap.
    """
    if minutes >= 24 * 60:
        day = day + timedelta(days=1)
        minutes -= 24 * 60
    naive = datetime.combine(day, time(minutes // 60, minutes % 60))
    localized = tz.normalize(tz.localize(naive, is_dst=False))
    return localized.astimezone(pytz.utc).replace(tzinfo=None)


def expand_weekly_schedule(weekly_schedule: Dict, timezone: str,
                           start_date: date, end_date: date) -> List[TimeWindow]:
    """Concrete UTC windows for every local day in [start_date, end_date]"""
    tz = pytz.timezone(timezone)
    windows = []
    day = start_date
    while day <= end_date:
        for entry in weekly_schedule.get(WEEKDAYS[day.weekday()]) or []:
            start = local_to_utc(day, parse_hhmm(entry['start']), tz)
            end = local_to_utc(day, parse_hhmm(entry['end']), tz)
            if start < end:
                windows.append(TimeWindow(start, end))
        day += timedelta(days=1)
    return merge_windows(windows)


def merge_windows(windows: Iterable[TimeWindow]) -> List[TimeWindow]:
    """Sorted windows with touching or overlapping ones joined"""
    merged = []
    for window in sorted(windows):
        if merged and window.start <= merged[-1].end:
            if window.end > merged[-1].end:
                merged[-1] = TimeWindow(merged[-1].start, window.end)
            continue
        merged.append(window)
    return merged


def subtract_ranges(windows: Iterable[TimeWindow], busy: Iterable[TimeWindow]) -> List[TimeWindow]:
    """Remove every busy range from every window, keeping the remainders"""
    busy = sorted(b for b in busy if b.start < b.end)
    result = []
    for window in windows:
        pieces = [window]
        for blocked in busy:
            if blocked.start >= window.end:
                break
            remaining = []
            for piece in pieces:
                if not piece.overlaps(blocked):
                    remaining.append(piece)
                    continue
                if piece.start < blocked.start:
                    remaining.append(TimeWindow(piece.start, blocked.start))
                if blocked.end < piece.end:
                    remaining.append(TimeWindow(blocked.end, piece.end))
            pieces = remaining
        result.extend(pieces)
    return sorted(result)


def pad_ranges(ranges: Iterable[TimeWindow], buffer_minutes: int) -> List[TimeWindow]:
    if not buffer_minutes:
        return list(ranges)
    pad = timedelta(minutes=buffer_minutes)
    return [TimeWindow(r.start - pad, r.end + pad) for r in ranges]


def free_windows(windows: Iterable[TimeWindow], blocked: Iterable[TimeWindow] = (),
                 busy: Iterable[TimeWindow] = (), buffer_minutes: int = 0) -> List[TimeWindow]:
    """Template windows minus blocked periods and buffered busy events"""
    taken = list(blocked) + pad_ranges(busy, buffer_minutes)
    return subtract_ranges(windows, taken)


def tile(windows: Iterable[TimeWindow], duration_minutes: int, buffer_minutes: int = 0) -> List[TimeWindow]:
    """Cut each window into back-to-back slots from its start.

    A slot never runs past its window's end.
    """
    duration = timedelta(minutes=duration_minutes)
    step = timedelta(minutes=duration_minutes + buffer_minutes)
    slots = []
    for window in windows:
        cursor = window.start
        while cursor + duration <= window.end:
            slots.append(TimeWindow(cursor, cursor + duration))
            cursor += step
    return slots


def resolve_slots(weekly_schedule: Dict, timezone: str, start_date: date, end_date: date,
                  duration_minutes: int, blocked: Iterable[TimeWindow] = (),
                  busy: Iterable[TimeWindow] = (), buffer_minutes: int = 0,
                  now: Optional[datetime] = None, minimum_notice_minutes: int = 0,
                  is_coach: bool = False) -> List[TimeWindow]:
    """Bookable slots, ascending by start and free of duplicates.

    Slots starting before ``now`` are dropped. Non-coach callers only get
    slots starting at or after ``now + minimum_notice_minutes``.
    """
    windows = expand_weekly_schedule(weekly_schedule, timezone, start_date, end_date)
    available = free_windows(windows, blocked, busy, buffer_minutes)
    slots = tile(available, duration_minutes, buffer_minutes)

    if now is not None:
        earliest = now if is_coach else now + timedelta(minutes=minimum_notice_minutes)
        slots = [slot for slot in slots if slot.start >= earliest]

    return sorted(set(slots))


def local_date_span(start: datetime, end: datetime, timezone: str, pad_days: int = 1):
    """Local calendar dates touching the UTC instants [start, end], padded"""
    tz = pytz.timezone(timezone)
    first = pytz.utc.localize(start).astimezone(tz).date() - timedelta(days=pad_days)
    last = pytz.utc.localize(end).astimezone(tz).date() + timedelta(days=pad_days)
    return first, last


class SlotResolver:
    """Loads availability inputs from storage and resolves them into slots"""

    def __init__(self, clock: Clock = None, availability_service: AvailabilityService = None):
        self.clock = clock or SystemClock()
        self.availability_service = availability_service or AvailabilityService()

    def get_available_slots(self, coach_id: int, start_date: date, end_date: date,
                            duration_minutes: int = None, is_coach: bool = False) -> Dict:
        """Bookable slots for a coach over an inclusive local date range"""
        if start_date > end_date:
            raise ValidationError('start_date must not be after end_date')
        if (end_date - start_date).days > Config.MAX_AVAILABILITY_RANGE_DAYS:
            raise ValidationError(
                f'Date range cannot exceed {Config.MAX_AVAILABILITY_RANGE_DAYS} days'
            )

        with get_db() as db:
            profile = self.availability_service.get_profile(coach_id, db=db)
            duration = validate_positive_minutes(
                duration_minutes or profile.default_slot_duration_minutes, 'duration'
            )

            windows = expand_weekly_schedule(
                profile.weekly_schedule, profile.timezone, start_date, end_date
            )
            slots = []
            if windows:
                span_start, span_end = windows[0].start, max(w.end for w in windows)
                blocked = self._blocked_ranges(db, coach_id, span_start, span_end)
                busy = self._busy_ranges(db, coach_id, span_start, span_end, HOLDING_STATUSES,
                                         buffer_minutes=profile.buffer_minutes)
                slots = resolve_slots(
                    profile.weekly_schedule, profile.timezone, start_date, end_date, duration,
                    blocked=blocked, busy=busy, buffer_minutes=profile.buffer_minutes,
                    now=self.clock.now(), minimum_notice_minutes=profile.minimum_notice_minutes,
                    is_coach=is_coach
                )

            logger.debug(f"Resolved {len(slots)} slots for coach {coach_id} "
                         f"between {start_date} and {end_date}")
            return {
                'slots': slots,
                'timezone': profile.timezone,
                'duration_minutes': duration,
                'buffer_minutes': profile.buffer_minutes
            }

    def is_range_free(self, db, profile, start: datetime, end: datetime,
                      exclude_event_id: int = None,
                      statuses=(SchedulingStatus.CONFIRMED,)) -> bool:
        """Whether [start, end) fits inside one free template window.

        Only events in ``statuses`` (other than ``exclude_event_id``) count
        as busy.
        """
        first_day, last_day = local_date_span(start, end, profile.timezone)
        windows = expand_weekly_schedule(profile.weekly_schedule, profile.timezone, first_day, last_day)
        if not windows:
            return False

        span_start, span_end = windows[0].start, max(w.end for w in windows)
        blocked = self._blocked_ranges(db, profile.coach_id, span_start, span_end)
        busy = self._busy_ranges(db, profile.coach_id, span_start, span_end, statuses,
                                 exclude_event_id=exclude_event_id,
                                 buffer_minutes=profile.buffer_minutes)
        available = free_windows(windows, blocked, busy, profile.buffer_minutes)
        return any(window.contains(start, end) for window in available)

    def _blocked_ranges(self, db, coach_id, span_start, span_end) -> List[TimeWindow]:
        slots = self.availability_service.list_blocked_slots(coach_id, span_start, span_end, db=db)
        return [TimeWindow(slot.start, slot.end) for slot in slots]

    def _busy_ranges(self, db, coach_id, span_start, span_end, statuses,
                     exclude_event_id=None, buffer_minutes=0) -> List[TimeWindow]:
        pad = timedelta(minutes=buffer_minutes or 0)
        query = db.query(SchedulableEvent.start_date_time, SchedulableEvent.end_date_time).filter(
            SchedulableEvent.host_user_id == coach_id,
            SchedulableEvent.scheduling_status.in_(list(statuses)),
            SchedulableEvent.start_date_time < span_end + pad,
            SchedulableEvent.end_date_time > span_start - pad
        )
        if exclude_event_id is not None:
            query = query.filter(SchedulableEvent.id != exclude_event_id)
        return [TimeWindow(start, end) for start, end in query.all()]
