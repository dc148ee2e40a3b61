import logging
import os
from logging.handlers import RotatingFileHandler
from config.config import Config


def setup_logger(name='coachcal'):
    """Set up application logger with file and console handlers"""
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, Config.LOG_LEVEL))
    
    # Create logs directory if it doesn't exist
    log_dir = os.path.dirname(Config.LOG_FILE)
    if log_dir and not os.path.exists(log_dir):
        os.makedirs(log_dir)
    
    # File handler with rotation
    file_handler = RotatingFileHandler(
        Config.LOG_FILE,
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=10
    )
    file_handler.setLevel(logging.INFO)
    
    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG)
    
    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    
    file_handler.setFormatter(formatter)
    console_handler.setFormatter(formatter)
    
    logger.addHandler(file_handler)
    logger.addHandler(console_handler)
    
    return logger


def get_logger(name=None):
    """Get logger instance.

    Module loggers are named ``coachcal.<module>`` so they inherit the
    handlers installed on the root ``coachcal`` logger.
    """
    if name and not name.startswith('coachcal'):
        name = f'coachcal.{name}'
    return logging.getLogger(name or 'coachcal')


# Create default logger
logger = setup_logger()
