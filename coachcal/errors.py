"""Typed failures raised by the scheduling engine.

Routes translate these into HTTP responses; services never swallow the
ones that decide whether a call exists (claims, transitions, auth).
"""


class SchedulingError(Exception):
    """Base class for every engine error"""
    message = 'Scheduling error'

    def __init__(self, message=None, **details):
        super().__init__(message or self.message)
        self.message = message or self.message
        self.details = details


class ValidationError(SchedulingError):
    message = 'Invalid input'


class Unauthorized(SchedulingError):
    message = 'Permission denied'


class InvalidTransition(SchedulingError):
    message = 'This change is not allowed in the booking\'s current state'


class SlotConflictError(SchedulingError):
    message = 'That time is no longer available'


class NotFound(SchedulingError):
    message = 'Not found'


class TokenExpired(NotFound):
    message = 'This link has expired'


class ProviderSyncError(SchedulingError):
    """One external calendar failed; recovered locally, never a booking failure"""
    message = 'Calendar sync failed'

    def __init__(self, message=None, provider=None, **details):
        super().__init__(message, **details)
        self.provider = provider


class ProviderAuthError(ProviderSyncError):
    message = 'Calendar credentials expired or revoked'
