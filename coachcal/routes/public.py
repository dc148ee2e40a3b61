from flask import Blueprint, request, jsonify
from coachcal.errors import SchedulingError
from coachcal.routes.bookings import booking_service, serialize_event
from coachcal.routes.errors import error_response
from coachcal.services.booking_token_service import BookingTokenService
from coachcal.utils.validators import parse_iso_datetime
from coachcal.utils.logger import get_logger

bp = Blueprint('public', __name__)
logger = get_logger(__name__)
token_service = BookingTokenService(booking_service)


@bp.route('/bookings/<token_id>', methods=['GET'])
def get_booking(token_id):
    """Booking summary for the holder of a management link"""
    try:
        return jsonify(token_service.get_summary(token_id)), 200

    except SchedulingError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error reading booking link: {str(e)}")
        return jsonify({'error': 'Failed to load booking'}), 500


@bp.route('/bookings/<token_id>/cancel', methods=['POST'])
def cancel_booking(token_id):
    try:
        data = request.get_json(silent=True) or {}
        event = token_service.cancel(token_id, reason=data.get('reason'))
        return jsonify(serialize_event(event, include_notes=False)), 200

    except SchedulingError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error cancelling through booking link: {str(e)}")
        return jsonify({'error': 'Failed to cancel booking'}), 500


@bp.route('/bookings/<token_id>/reschedule', methods=['POST'])
def reschedule_booking(token_id):
    try:
        data = request.get_json() or {}
        end = data.get('end')
        event, new_token = token_service.reschedule(
            token_id,
            parse_iso_datetime(data.get('start'), 'start'),
            parse_iso_datetime(end, 'end') if end else None
        )
        result = serialize_event(event, include_notes=False)
        result['booking_token'] = {
            'id': new_token.id,
            'expires_at': new_token.expires_at.isoformat() + 'Z'
        }
        return jsonify(result), 200

    except SchedulingError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error rescheduling through booking link: {str(e)}")
        return jsonify({'error': 'Failed to reschedule booking'}), 500
