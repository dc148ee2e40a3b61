import pytest
import pytz
from datetime import date, datetime, timedelta
from coachcal.errors import ValidationError
from coachcal.services.availability_service import AvailabilityService
from coachcal.services.slot_resolver import (
    SlotResolver, TimeWindow, expand_weekly_schedule, local_to_utc, resolve_slots,
    subtract_ranges, tile
)
from tests.conftest import MONDAY_0800, MORNINGS_UTC

MONDAY = date(2024, 3, 4)


def at(hour, minute=0, day=MONDAY):
    return datetime(day.year, day.month, day.day, hour, minute)


def starts(slots):
    return [(s.start.hour, s.start.minute) for s in slots]


class TestResolveSlots:
    """Pure slot computation"""

    def test_morning_window_tiles_into_half_hours(self):
        slots = resolve_slots(MORNINGS_UTC, 'UTC', MONDAY, MONDAY, 30,
                              now=MONDAY_0800, minimum_notice_minutes=60)

        assert starts(slots) == [(9, 0), (9, 30), (10, 0), (10, 30), (11, 0), (11, 30)]
        assert all(s.end - s.start == timedelta(minutes=30) for s in slots)

    def test_notice_boundary_is_inclusive(self):
        slots = resolve_slots(MORNINGS_UTC, 'UTC', MONDAY, MONDAY, 30,
                              now=at(8, 0), minimum_notice_minutes=60)
        assert slots[0].start == at(9, 0)

        slots = resolve_slots(MORNINGS_UTC, 'UTC', MONDAY, MONDAY, 30,
                              now=at(8, 1), minimum_notice_minutes=60)
        assert slots[0].start == at(9, 30)

    def test_coach_bypasses_notice(self):
        slots = resolve_slots(MORNINGS_UTC, 'UTC', MONDAY, MONDAY, 30,
                              now=at(8, 30), minimum_notice_minutes=60, is_coach=True)
        assert slots[0].start == at(9, 0)

    def test_coach_never_gets_slots_that_already_started(self):
        slots = resolve_slots(MORNINGS_UTC, 'UTC', MONDAY, MONDAY, 30,
                              now=at(10, 45), minimum_notice_minutes=60, is_coach=True)
        assert starts(slots) == [(11, 0), (11, 30)]

    def test_touching_template_ranges_form_one_window(self):
        schedule = {'monday': [{'start': '09:00', 'end': '10:00'},
                               {'start': '10:00', 'end': '11:00'}]}
        blocked = [TimeWindow(at(9, 0), at(9, 30))]

        slots = resolve_slots(schedule, 'UTC', MONDAY, MONDAY, 60, blocked=blocked)

        assert starts(slots) == [(9, 30)]
        assert expand_weekly_schedule(schedule, 'UTC', MONDAY, MONDAY) == [TimeWindow(at(9), at(11))]

    def test_blocked_slot_is_removed(self):
        blocked = [TimeWindow(at(10, 0), at(10, 45))]
        slots = resolve_slots(MORNINGS_UTC, 'UTC', MONDAY, MONDAY, 30, blocked=blocked)

        assert starts(slots) == [(9, 0), (9, 30), (10, 45), (11, 15)]
        assert not any(s.overlaps(blocked[0]) for s in slots)

    def test_busy_event_with_buffer(self):
        busy = [TimeWindow(at(10, 0), at(10, 30))]
        slots = resolve_slots(MORNINGS_UTC, 'UTC', MONDAY, MONDAY, 30, busy=busy, buffer_minutes=15)

        assert starts(slots) == [(9, 0), (10, 45), (11, 30)]

    def test_slots_never_run_past_window(self):
        for duration in (15, 25, 40, 60, 90, 180):
            windows = expand_weekly_schedule(MORNINGS_UTC, 'UTC', MONDAY, MONDAY + timedelta(days=6))
            slots = resolve_slots(MORNINGS_UTC, 'UTC', MONDAY, MONDAY + timedelta(days=6), duration)

            for slot in slots:
                assert slot.end - slot.start == timedelta(minutes=duration)
                assert any(w.contains(slot.start, slot.end) for w in windows)

    def test_window_shorter_than_duration_yields_nothing(self):
        assert resolve_slots(MORNINGS_UTC, 'UTC', MONDAY, MONDAY, 240) == []

    def test_output_sorted_and_unique(self):
        schedule = dict(MORNINGS_UTC, monday=[
            {'start': '13:00', 'end': '14:00'}, {'start': '09:00', 'end': '10:00'}
        ])
        slots = resolve_slots(schedule, 'UTC', MONDAY, MONDAY + timedelta(days=1), 30)

        assert slots == sorted(set(slots))
        assert slots[0].start == at(9, 0)

    def test_weekend_is_empty(self):
        saturday = MONDAY + timedelta(days=5)
        assert resolve_slots(MORNINGS_UTC, 'UTC', saturday, saturday + timedelta(days=1), 30) == []


class TestTimezones:
    """Wall-clock templates across DST changes"""

    def test_dst_start_moves_utc_instants(self):
        schedule = {'monday': [{'start': '09:00', 'end': '10:00'}]}
        windows = expand_weekly_schedule(schedule, 'America/New_York', MONDAY, date(2024, 3, 11))

        # EST before March 10, EDT after
        assert windows == [
            TimeWindow(datetime(2024, 3, 4, 14, 0), datetime(2024, 3, 4, 15, 0)),
            TimeWindow(datetime(2024, 3, 11, 13, 0), datetime(2024, 3, 11, 14, 0)),
        ]

    def test_dst_end_moves_utc_instants(self):
        schedule = {'friday': [{'start': '09:00', 'end': '10:00'}],
                    'monday': [{'start': '09:00', 'end': '10:00'}]}
        windows = expand_weekly_schedule(schedule, 'America/New_York', date(2024, 11, 1), date(2024, 11, 4))

        assert [w.start for w in windows] == [datetime(2024, 11, 1, 13, 0), datetime(2024, 11, 4, 14, 0)]

    def test_nonexistent_local_time_lands_after_gap(self):
        tz = pytz.timezone('America/New_York')
        # 02:30 does not exist on 2024-03-10; it becomes 03:30 EDT
        assert local_to_utc(date(2024, 3, 10), 150, tz) == datetime(2024, 3, 10, 7, 30)

    def test_ambiguous_local_time_uses_standard_time(self):
        tz = pytz.timezone('America/New_York')
        assert local_to_utc(date(2024, 11, 3), 90, tz) == datetime(2024, 11, 3, 6, 30)

    def test_end_of_day_is_next_midnight(self):
        assert local_to_utc(MONDAY, 24 * 60, pytz.utc) == datetime(2024, 3, 5, 0, 0)

    def test_window_across_dst_day_keeps_local_length(self):
        schedule = {'sunday': [{'start': '00:00', 'end': '04:00'}]}
        windows = expand_weekly_schedule(schedule, 'America/New_York', date(2024, 3, 10), date(2024, 3, 10))

        # Four local hours minus the skipped hour
        assert windows[0].duration_minutes() == 180


class TestRangeHelpers:
    def test_subtract_splits_window(self):
        window = TimeWindow(at(9), at(12))
        result = subtract_ranges([window], [TimeWindow(at(10), at(11))])
        assert result == [TimeWindow(at(9), at(10)), TimeWindow(at(11), at(12))]

    def test_subtract_multiple_busy_ranges(self):
        window = TimeWindow(at(9), at(12))
        result = subtract_ranges([window], [
            TimeWindow(at(11, 30), at(13)), TimeWindow(at(8), at(9, 15)), TimeWindow(at(10), at(10, 30))
        ])
        assert result == [TimeWindow(at(9, 15), at(10)), TimeWindow(at(10, 30), at(11, 30))]

    def test_tile_steps_by_duration_plus_buffer(self):
        slots = tile([TimeWindow(at(9), at(11))], 30, buffer_minutes=10)
        assert starts(slots) == [(9, 0), (9, 40), (10, 20)]


class TestSlotResolverService:
    """Slots resolved against stored profiles and events"""

    def test_query_uses_profile_defaults(self, booking_service, coach):
        result = booking_service.slot_resolver.get_available_slots(coach.id, MONDAY, MONDAY)

        assert result['timezone'] == 'UTC'
        assert result['duration_minutes'] == 30
        assert len(result['slots']) == 6

    def test_held_and_confirmed_events_block_slots(self, booking_service, coach, client_user):
        resolver = booking_service.slot_resolver
        booking_service.propose(client_user.id, coach.id, [client_user.id], at(9, 0))
        booking_service.book(coach.id, coach.id, [client_user.id], at(10, 0))

        slots = resolver.get_available_slots(coach.id, MONDAY, MONDAY)['slots']

        assert starts(slots) == [(9, 30), (10, 30), (11, 0), (11, 30)]

    def test_cancelled_events_do_not_block(self, booking_service, coach, client_user):
        event = booking_service.propose(client_user.id, coach.id, [client_user.id], at(9, 0))
        booking_service.cancel(event.id, client_user.id)

        slots = booking_service.slot_resolver.get_available_slots(coach.id, MONDAY, MONDAY)['slots']
        assert slots[0].start == at(9, 0)

    def test_blocked_slots_from_store(self, booking_service, coach):
        AvailabilityService().add_blocked_slot(coach.id, at(9, 0), at(11, 0), reason='Dentist')

        slots = booking_service.slot_resolver.get_available_slots(coach.id, MONDAY, MONDAY)['slots']
        assert starts(slots) == [(11, 0), (11, 30)]

    def test_custom_duration(self, booking_service, coach):
        slots = booking_service.slot_resolver.get_available_slots(
            coach.id, MONDAY, MONDAY, duration_minutes=60
        )['slots']
        assert starts(slots) == [(9, 0), (10, 0), (11, 0)]

    def test_coach_flag_bypasses_notice(self, booking_service, coach, clock):
        clock.set(at(8, 30))
        resolver = booking_service.slot_resolver

        public = resolver.get_available_slots(coach.id, MONDAY, MONDAY)['slots']
        own = resolver.get_available_slots(coach.id, MONDAY, MONDAY, is_coach=True)['slots']

        assert public[0].start == at(9, 30)
        assert own[0].start == at(9, 0)

    def test_coach_slots_are_all_bookable(self, booking_service, coach, client_user, clock):
        clock.set(at(10, 45))
        now = clock.now()

        slots = booking_service.slot_resolver.get_available_slots(coach.id, MONDAY, MONDAY, is_coach=True)['slots']

        assert all(s.start >= now for s in slots)
        event, _ = booking_service.book(coach.id, coach.id, [client_user.id], slots[0].start)
        assert event.start_date_time == at(11, 0)

    def test_touching_ranges_accept_a_booking_across_them(self, booking_service, coach, client_user):
        from coachcal.database import get_db
        AvailabilityService().update_profile(coach.id, {'weekly_schedule': {
            'monday': [{'start': '09:00', 'end': '10:00'}, {'start': '10:00', 'end': '11:00'}]
        }})
        AvailabilityService().add_blocked_slot(coach.id, at(9, 0), at(9, 30))

        with get_db() as db:
            profile = AvailabilityService().get_profile(coach.id, db=db)
            assert booking_service.slot_resolver.is_range_free(db, profile, at(9, 30), at(10, 30))

        event, _ = booking_service.book(client_user.id, coach.id, [client_user.id], at(9, 30), at(10, 30))
        assert event.end_date_time == at(10, 30)

    def test_inverted_range_rejected(self, booking_service, coach):
        with pytest.raises(ValidationError):
            booking_service.slot_resolver.get_available_slots(coach.id, MONDAY, MONDAY - timedelta(days=1))

    def test_range_too_long_rejected(self, booking_service, coach):
        with pytest.raises(ValidationError):
            booking_service.slot_resolver.get_available_slots(coach.id, MONDAY, MONDAY + timedelta(days=90))

    def test_resolver_is_repeatable(self, booking_service, coach):
        resolver = SlotResolver(booking_service.clock)
        first = resolver.get_available_slots(coach.id, MONDAY, MONDAY + timedelta(days=6))
        second = resolver.get_available_slots(coach.id, MONDAY, MONDAY + timedelta(days=6))
        assert first['slots'] == second['slots']

    def test_is_range_free(self, booking_service, coach, client_user):
        from coachcal.database import get_db
        resolver = booking_service.slot_resolver
        event, _ = booking_service.book(coach.id, coach.id, [client_user.id], at(10, 0))

        with get_db() as db:
            profile = AvailabilityService().get_profile(coach.id, db=db)

            assert resolver.is_range_free(db, profile, at(9, 0), at(9, 30))
            assert not resolver.is_range_free(db, profile, at(10, 0), at(10, 30))
            assert resolver.is_range_free(db, profile, at(10, 0), at(10, 30), exclude_event_id=event.id)
            # Outside the template
            assert not resolver.is_range_free(db, profile, at(12, 0), at(12, 30))
            # Straddles the end of the window
            assert not resolver.is_range_free(db, profile, at(11, 45), at(12, 15))
