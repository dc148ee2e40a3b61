import os
from dotenv import load_dotenv

load_dotenv()


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'
    DATABASE_URL = os.environ.get('DATABASE_URL') or 'sqlite:///coachcal.db'
    SQLALCHEMY_DATABASE_URI = DATABASE_URL

    # Calendar provider OAuth apps (used only to refresh access tokens)
    GOOGLE_OAUTH_CLIENT_ID = os.environ.get('GOOGLE_OAUTH_CLIENT_ID')
    GOOGLE_OAUTH_CLIENT_SECRET = os.environ.get('GOOGLE_OAUTH_CLIENT_SECRET')
    MICROSOFT_OAUTH_CLIENT_ID = os.environ.get('MICROSOFT_OAUTH_CLIENT_ID')
    MICROSOFT_OAUTH_CLIENT_SECRET = os.environ.get('MICROSOFT_OAUTH_CLIENT_SECRET')

    # Messaging
    TWILIO_ACCOUNT_SID = os.environ.get('TWILIO_ACCOUNT_SID')
    TWILIO_AUTH_TOKEN = os.environ.get('TWILIO_AUTH_TOKEN')
    TWILIO_PHONE_NUMBER = os.environ.get('TWILIO_PHONE_NUMBER')
    SENDGRID_API_KEY = os.environ.get('SENDGRID_API_KEY')
    SENDGRID_FROM_EMAIL = os.environ.get('SENDGRID_FROM_EMAIL', 'noreply@coachcal.app')

    # Application Settings
    APP_URL = os.environ.get('APP_URL', 'http://localhost:5000')
    DEFAULT_TIMEZONE = os.environ.get('DEFAULT_TIMEZONE', 'America/New_York')
    DEFAULT_SLOT_DURATION_MINUTES = int(os.environ.get('DEFAULT_SLOT_DURATION_MINUTES', '60'))
    DEFAULT_MINIMUM_NOTICE_MINUTES = int(os.environ.get('DEFAULT_MINIMUM_NOTICE_MINUTES', '1440'))
    DEFAULT_BUFFER_MINUTES = int(os.environ.get('DEFAULT_BUFFER_MINUTES', '0'))
    MAX_AVAILABILITY_RANGE_DAYS = int(os.environ.get('MAX_AVAILABILITY_RANGE_DAYS', '60'))

    # Business hours Mon-Fri, weekends off
    DEFAULT_WEEKLY_SCHEDULE = {
        'monday': [{'start': '09:00', 'end': '17:00'}],
        'tuesday': [{'start': '09:00', 'end': '17:00'}],
        'wednesday': [{'start': '09:00', 'end': '17:00'}],
        'thursday': [{'start': '09:00', 'end': '17:00'}],
        'friday': [{'start': '09:00', 'end': '17:00'}],
        'saturday': [],
        'sunday': []
    }

    # Reminders: comma separated "channel:minutes_before_start"
    REMINDER_SCHEDULE = os.environ.get('REMINDER_SCHEDULE', 'email:1440,email:60,sms:10')
    REMINDER_BATCH_SIZE = int(os.environ.get('REMINDER_BATCH_SIZE', '100'))
    REMINDER_SWEEP_INTERVAL_SECONDS = int(os.environ.get('REMINDER_SWEEP_INTERVAL_SECONDS', '60'))

    # Booking tokens
    BOOKING_TOKEN_TTL_HOURS = int(os.environ.get('BOOKING_TOKEN_TTL_HOURS', '24'))
    TOKEN_CHANGE_DEADLINE_HOURS = int(os.environ.get('TOKEN_CHANGE_DEADLINE_HOURS', '24'))

    # External calendar sync
    SYNC_WORKERS = int(os.environ.get('SYNC_WORKERS', '4'))
    PROVIDER_TIMEOUT_SECONDS = float(os.environ.get('PROVIDER_TIMEOUT_SECONDS', '10'))
    TOKEN_REFRESH_MARGIN_MINUTES = int(os.environ.get('TOKEN_REFRESH_MARGIN_MINUTES', '5'))

    # Claim coordinator compare-and-set attempts before reporting a conflict
    CLAIM_MAX_ATTEMPTS = int(os.environ.get('CLAIM_MAX_ATTEMPTS', '3'))

    # Token Settings
    ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24  # 24 hours

    # Logging
    LOG_FILE = os.environ.get('LOG_FILE', 'logs/coachcal.log')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


class DevelopmentConfig(Config):
    DEBUG = True
    TESTING = False


class TestingConfig(Config):
    DEBUG = True
    TESTING = True
    DATABASE_URL = 'sqlite:///test_coachcal.db'
    SQLALCHEMY_DATABASE_URI = DATABASE_URL


class ProductionConfig(Config):
    DEBUG = False
    TESTING = False


config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}
