from .twilio_client import TwilioClient
from .sendgrid_client import SendGridClient
from .calendar_client import CalendarClient
from .google_calendar_client import GoogleCalendarClient
from .outlook_calendar_client import OutlookCalendarClient

__all__ = [
    'TwilioClient', 'SendGridClient',
    'CalendarClient', 'GoogleCalendarClient', 'OutlookCalendarClient'
]
