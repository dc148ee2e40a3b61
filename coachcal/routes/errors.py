from flask import jsonify
from coachcal.errors import (
    InvalidTransition, NotFound, SchedulingError, SlotConflictError, TokenExpired,
    Unauthorized, ValidationError
)
from coachcal.utils.logger import get_logger

logger = get_logger(__name__)

STATUS_CODES = (
    (TokenExpired, 410),
    (NotFound, 404),
    (ValidationError, 400),
    (Unauthorized, 403),
    (SlotConflictError, 409),
    (InvalidTransition, 409),
)


def error_response(error: SchedulingError, hide_missing: bool = False):
    """JSON error body and status for an engine error.

    With ``hide_missing`` an unknown id answers like a permission failure,
    so callers cannot probe which bookings exist.
    """
    if hide_missing and isinstance(error, NotFound) and not isinstance(error, TokenExpired):
        return jsonify({'error': Unauthorized.message}), 403

    for error_class, status in STATUS_CODES:
        if isinstance(error, error_class):
            body = {'error': error.message}
            if isinstance(error, SlotConflictError):
                body['code'] = 'slot_conflict'
            return jsonify(body), status

    logger.error(f"Unmapped scheduling error: {error.message}")
    return jsonify({'error': error.message}), 500
