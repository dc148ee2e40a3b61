from .logger import setup_logger, get_logger
from .clock import Clock, SystemClock, FixedClock
from .security import generate_token, verify_token, generate_secure_token

__all__ = [
    'setup_logger', 'get_logger',
    'Clock', 'SystemClock', 'FixedClock',
    'generate_token', 'verify_token', 'generate_secure_token'
]
