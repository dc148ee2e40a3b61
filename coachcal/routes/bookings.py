from flask import Blueprint, request, jsonify
from coachcal.errors import SchedulingError, ValidationError
from coachcal.middleware.auth import require_auth
from coachcal.models.event import MeetingProvider
from coachcal.routes.errors import error_response
from coachcal.services.booking_service import BookingService
from coachcal.utils.validators import parse_iso_datetime
from coachcal.utils.logger import get_logger

bp = Blueprint('bookings', __name__)
logger = get_logger(__name__)
booking_service = BookingService()


def serialize_event(event, include_notes=True):
    result = {
        'id': event.id,
        'host_user_id': event.host_user_id,
        'attendee_ids': event.attendee_ids,
        'organization_id': event.organization_id,
        'title': event.title,
        'start': event.start_date_time.isoformat() + 'Z',
        'end': event.end_date_time.isoformat() + 'Z',
        'duration_minutes': event.duration_minutes,
        'timezone': event.timezone,
        'status': event.scheduling_status.value,
        'proposed_by': event.proposed_by,
        'meeting_provider': event.meeting_provider.value,
        'meeting_link': event.meeting_link
    }
    if include_notes:
        result['notes'] = [{
            'at': note.created_at.isoformat() + 'Z',
            'actor_id': note.actor_id,
            'from': note.from_state.value if note.from_state else None,
            'to': note.to_state.value,
            'note': note.note
        } for note in event.notes]
    return result


def _optional_datetime(data, field):
    value = data.get(field)
    return parse_iso_datetime(value, field) if value else None


def _meeting_provider(data):
    value = data.get('meeting_provider')
    if not value:
        return None
    try:
        return MeetingProvider(value)
    except ValueError:
        raise ValidationError(f"Unknown meeting provider '{value}'")


def _booking_arguments(data, current_user):
    coach_id = data.get('coach_id')
    if not coach_id:
        raise ValidationError('coach_id is required')
    try:
        coach_id = int(coach_id)
    except (TypeError, ValueError):
        raise ValidationError('coach_id must be a user id')
    return {
        'actor_id': current_user['user_id'],
        'host_user_id': coach_id,
        'attendee_ids': data.get('attendee_ids') or [current_user['user_id']],
        'start': parse_iso_datetime(data.get('start'), 'start'),
        'end': _optional_datetime(data, 'end'),
        'duration_minutes': data.get('duration_minutes'),
        'title': data.get('title'),
        'organization_id': data.get('organization_id'),
        'meeting_provider': _meeting_provider(data),
        'meeting_link': data.get('meeting_link'),
        'note': data.get('note')
    }


@bp.route('', methods=['POST'])
@require_auth
def propose_booking(current_user):
    """Propose a time; the other party answers through /respond"""
    try:
        data = request.get_json() or {}
        event = booking_service.propose(**_booking_arguments(data, current_user))
        return jsonify(serialize_event(event)), 201

    except SchedulingError as e:
        return error_response(e, hide_missing=True)
    except Exception as e:
        logger.error(f"Error proposing booking: {str(e)}")
        return jsonify({'error': 'Failed to propose booking'}), 500


@bp.route('/book', methods=['POST'])
@require_auth
def book(current_user):
    """Book a published slot straight away"""
    try:
        data = request.get_json() or {}
        arguments = _booking_arguments(data, current_user)
        event, token = booking_service.book(
            issue_booking_token=bool(data.get('issue_token')), **arguments
        )
        result = serialize_event(event)
        if token:
            result['booking_token'] = {
                'id': token.id,
                'expires_at': token.expires_at.isoformat() + 'Z'
            }
        return jsonify(result), 201

    except SchedulingError as e:
        return error_response(e, hide_missing=True)
    except Exception as e:
        logger.error(f"Error booking session: {str(e)}")
        return jsonify({'error': 'Failed to book session'}), 500


@bp.route('/<int:event_id>', methods=['GET'])
@require_auth
def get_booking(event_id, current_user):
    try:
        event = booking_service.get_event(event_id, current_user['user_id'])
        return jsonify(serialize_event(event)), 200

    except SchedulingError as e:
        return error_response(e, hide_missing=True)
    except Exception as e:
        logger.error(f"Error getting booking {event_id}: {str(e)}")
        return jsonify({'error': 'Failed to get booking'}), 500


@bp.route('/<int:event_id>/acknowledge', methods=['POST'])
@require_auth
def acknowledge_booking(event_id, current_user):
    try:
        event = booking_service.acknowledge(event_id, current_user['user_id'])
        return jsonify(serialize_event(event)), 200

    except SchedulingError as e:
        return error_response(e, hide_missing=True)
    except Exception as e:
        logger.error(f"Error acknowledging booking {event_id}: {str(e)}")
        return jsonify({'error': 'Failed to update booking'}), 500


@bp.route('/<int:event_id>/respond', methods=['POST'])
@require_auth
def respond_to_booking(event_id, current_user):
    """Accept, counter-propose or decline the outstanding proposal"""
    try:
        data = request.get_json() or {}
        event = booking_service.respond(
            event_id, current_user['user_id'], data.get('action'),
            start=_optional_datetime(data, 'start'),
            end=_optional_datetime(data, 'end'),
            note=data.get('note')
        )
        return jsonify(serialize_event(event)), 200

    except SchedulingError as e:
        return error_response(e, hide_missing=True)
    except Exception as e:
        logger.error(f"Error responding to booking {event_id}: {str(e)}")
        return jsonify({'error': 'Failed to update booking'}), 500


@bp.route('/<int:event_id>/cancel', methods=['POST'])
@require_auth
def cancel_booking(event_id, current_user):
    try:
        data = request.get_json(silent=True) or {}
        event = booking_service.cancel(event_id, current_user['user_id'], reason=data.get('reason'))
        return jsonify(serialize_event(event)), 200

    except SchedulingError as e:
        return error_response(e, hide_missing=True)
    except Exception as e:
        logger.error(f"Error cancelling booking {event_id}: {str(e)}")
        return jsonify({'error': 'Failed to cancel booking'}), 500


@bp.route('/<int:event_id>/reschedule', methods=['POST'])
@require_auth
def reschedule_booking(event_id, current_user):
    """Re-open a confirmed booking with a new proposed time"""
    try:
        data = request.get_json(silent=True) or {}
        event = booking_service.reschedule(
            event_id, current_user['user_id'],
            start=_optional_datetime(data, 'start'),
            end=_optional_datetime(data, 'end'),
            note=data.get('note')
        )
        return jsonify(serialize_event(event)), 200

    except SchedulingError as e:
        return error_response(e, hide_missing=True)
    except Exception as e:
        logger.error(f"Error rescheduling booking {event_id}: {str(e)}")
        return jsonify({'error': 'Failed to reschedule booking'}), 500
