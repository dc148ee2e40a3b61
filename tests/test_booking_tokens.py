import pytest
from datetime import datetime, timedelta
from coachcal.errors import (
    InvalidTransition, NotFound, SlotConflictError, TokenExpired, Unauthorized, ValidationError
)
from coachcal.models.event import SchedulingStatus
from coachcal.services.booking_token_service import BookingTokenService
from config.config import Config

WEDNESDAY_0900 = datetime(2024, 3, 6, 9, 0)


@pytest.fixture
def token_service(booking_service):
    return BookingTokenService(booking_service)


@pytest.fixture
def booked(booking_service, coach, client_user):
    event, token = booking_service.book(client_user.id, coach.id, [client_user.id], WEDNESDAY_0900,
                                        title='Intro call', issue_booking_token=True)
    return event, token


class TestIssue:
    def test_token_expires_after_the_session(self, booked):
        event, token = booked
        assert token.expires_at == event.end_date_time + timedelta(hours=Config.BOOKING_TOKEN_TTL_HOURS)
        assert token.allow_cancellation and token.allow_reschedule
        assert len(token.id) >= 32

    def test_issue_for_participant(self, token_service, booked, coach):
        event, _ = booked
        token = token_service.issue(event.id, coach.id, allow_reschedule=False)

        assert token.issued_to == coach.id
        assert not token.allow_reschedule

    def test_issue_for_outsider(self, token_service, booked, make_user):
        event, _ = booked
        with pytest.raises(NotFound):
            token_service.issue(event.id, make_user().id)


class TestSummary:
    def test_summary(self, token_service, booked, coach):
        event, token = booked

        summary = token_service.get_summary(token.id)

        assert summary['event']['id'] == event.id
        assert summary['event']['title'] == 'Intro call'
        assert summary['event']['start'] == '2024-03-06T09:00:00Z'
        assert summary['event']['status'] == 'confirmed'
        assert summary['coach']['name'] == coach.full_name
        assert summary['organization_id'] == 'org_test'
        assert summary['can_change'] is True

    def test_unknown_token(self, token_service, database):
        with pytest.raises(NotFound):
            token_service.get_summary('nope')

    def test_expired_token(self, token_service, booked, clock):
        _, token = booked
        clock.set(token.expires_at)

        with pytest.raises(TokenExpired):
            token_service.get_summary(token.id)

    def test_cannot_change_close_to_start(self, token_service, booked, clock):
        _, token = booked
        clock.set(WEDNESDAY_0900 - timedelta(hours=2))

        assert token_service.get_summary(token.id)['can_change'] is False


class TestCancel:
    def test_cancel(self, token_service, booked, client_user):
        event, token = booked

        cancelled = token_service.cancel(token.id)

        assert cancelled.scheduling_status == SchedulingStatus.CANCELLED
        assert cancelled.notes[-1].actor_id == client_user.id
        assert cancelled.notes[-1].note.endswith(': Cancelled via booking link')

    def test_cancel_twice(self, token_service, booked):
        _, token = booked
        token_service.cancel(token.id, reason='Sick')

        event = token_service.cancel(token.id)
        assert event.scheduling_status == SchedulingStatus.CANCELLED

    def test_cancel_after_deadline(self, token_service, booked, clock):
        _, token = booked
        clock.set(WEDNESDAY_0900 - timedelta(hours=Config.TOKEN_CHANGE_DEADLINE_HOURS, minutes=-1))

        with pytest.raises(ValidationError):
            token_service.cancel(token.id)

    def test_cancellation_not_allowed(self, token_service, booked, client_user):
        event, _ = booked
        token = token_service.issue(event.id, client_user.id, allow_cancellation=False)

        with pytest.raises(Unauthorized):
            token_service.cancel(token.id)


class TestReschedule:
    def test_reschedule_issues_new_token(self, token_service, booked, booking_service):
        event, token = booked
        new_start = datetime(2024, 3, 7, 10, 0)

        moved, new_token = token_service.reschedule(token.id, new_start)

        assert moved.id == event.id
        assert moved.scheduling_status == SchedulingStatus.CONFIRMED
        assert moved.start_date_time == new_start
        assert moved.end_date_time == new_start + timedelta(minutes=30)
        assert new_token.id != token.id
        assert new_token.expires_at == moved.end_date_time + timedelta(hours=Config.BOOKING_TOKEN_TTL_HOURS)
        assert len(booking_service.reminder_service.jobs_for(event.id)) == 3

        # The old link still points at the same booking
        assert token_service.get_summary(token.id)['event']['start'] == '2024-03-07T10:00:00Z'

    def test_reschedule_into_taken_time(self, token_service, booked, booking_service, coach, make_user):
        event, token = booked
        other = make_user()
        booking_service.book(other.id, coach.id, [other.id], datetime(2024, 3, 7, 10, 0))

        with pytest.raises(SlotConflictError):
            token_service.reschedule(token.id, datetime(2024, 3, 7, 10, 0))

        assert booking_service.get_event(event.id, coach.id).start_date_time == WEDNESDAY_0900

    def test_reschedule_cancelled_booking(self, token_service, booked):
        _, token = booked
        token_service.cancel(token.id)

        with pytest.raises(InvalidTransition):
            token_service.reschedule(token.id, datetime(2024, 3, 7, 10, 0))

    def test_reschedule_not_allowed(self, token_service, booked, client_user):
        event, _ = booked
        token = token_service.issue(event.id, client_user.id, allow_reschedule=False)

        with pytest.raises(Unauthorized):
            token_service.reschedule(token.id, datetime(2024, 3, 7, 10, 0))
