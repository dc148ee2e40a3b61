from flask import Blueprint, request, jsonify
from coachcal.errors import SchedulingError
from coachcal.middleware.auth import require_auth, require_coach, optional_auth
from coachcal.routes.errors import error_response
from coachcal.services.availability_service import AvailabilityService
from coachcal.services.slot_resolver import SlotResolver
from coachcal.utils.validators import parse_iso_date, parse_iso_datetime
from coachcal.utils.logger import get_logger

bp = Blueprint('availability', __name__)
logger = get_logger(__name__)
availability_service = AvailabilityService()
slot_resolver = SlotResolver(availability_service=availability_service)


def serialize_profile(profile):
    return {
        'coach_id': profile.coach_id,
        'timezone': profile.timezone,
        'weekly_schedule': profile.weekly_schedule,
        'minimum_notice_minutes': profile.minimum_notice_minutes,
        'default_slot_duration_minutes': profile.default_slot_duration_minutes,
        'buffer_minutes': profile.buffer_minutes,
        'revision': profile.revision
    }


def serialize_blocked_slot(slot):
    return {
        'id': slot.id,
        'start': slot.start.isoformat() + 'Z',
        'end': slot.end.isoformat() + 'Z',
        'reason': slot.reason
    }


@bp.route('/<int:coach_id>/slots', methods=['GET'])
@optional_auth
def get_slots(coach_id, current_user):
    """Bookable slots for a coach; the coach sees slots inside the notice window too"""
    try:
        start_date = parse_iso_date(request.args.get('start_date'), 'start_date')
        end_date = parse_iso_date(request.args.get('end_date', request.args.get('start_date')), 'end_date')
        duration = request.args.get('duration', type=int)

        is_coach = bool(current_user and current_user.get('user_id') == coach_id)
        result = slot_resolver.get_available_slots(
            coach_id, start_date, end_date, duration_minutes=duration, is_coach=is_coach
        )

        return jsonify({
            'coach_id': coach_id,
            'timezone': result['timezone'],
            'duration_minutes': result['duration_minutes'],
            'slots': [slot.to_dict() for slot in result['slots']]
        }), 200

    except SchedulingError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error getting slots for coach {coach_id}: {str(e)}")
        return jsonify({'error': 'Failed to get available slots'}), 500


@bp.route('/profile', methods=['GET'])
@require_auth
@require_coach
def get_profile(current_user):
    try:
        profile = availability_service.get_profile(current_user['user_id'])
        return jsonify(serialize_profile(profile)), 200

    except SchedulingError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error getting availability profile: {str(e)}")
        return jsonify({'error': 'Failed to get availability'}), 500


@bp.route('/profile', methods=['PUT'])
@require_auth
@require_coach
def update_profile(current_user):
    try:
        data = request.get_json() or {}
        profile = availability_service.update_profile(current_user['user_id'], data)
        return jsonify(serialize_profile(profile)), 200

    except SchedulingError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error updating availability profile: {str(e)}")
        return jsonify({'error': 'Failed to update availability'}), 500


@bp.route('/blocked-slots', methods=['GET'])
@require_auth
@require_coach
def list_blocked_slots(current_user):
    try:
        start = request.args.get('start')
        end = request.args.get('end')
        slots = availability_service.list_blocked_slots(
            current_user['user_id'],
            parse_iso_datetime(start, 'start') if start else None,
            parse_iso_datetime(end, 'end') if end else None
        )
        return jsonify({'blocked_slots': [serialize_blocked_slot(s) for s in slots]}), 200

    except SchedulingError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error listing blocked slots: {str(e)}")
        return jsonify({'error': 'Failed to list blocked slots'}), 500


@bp.route('/blocked-slots', methods=['POST'])
@require_auth
@require_coach
def add_blocked_slot(current_user):
    try:
        data = request.get_json() or {}
        slot = availability_service.add_blocked_slot(
            current_user['user_id'],
            parse_iso_datetime(data.get('start'), 'start'),
            parse_iso_datetime(data.get('end'), 'end'),
            reason=data.get('reason')
        )
        return jsonify(serialize_blocked_slot(slot)), 201

    except SchedulingError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error adding blocked slot: {str(e)}")
        return jsonify({'error': 'Failed to block time'}), 500


@bp.route('/blocked-slots/<int:slot_id>', methods=['DELETE'])
@require_auth
@require_coach
def remove_blocked_slot(slot_id, current_user):
    try:
        removed = availability_service.remove_blocked_slot(current_user['user_id'], slot_id)
        return jsonify({'removed': removed}), 200

    except SchedulingError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error removing blocked slot {slot_id}: {str(e)}")
        return jsonify({'error': 'Failed to remove blocked slot'}), 500
