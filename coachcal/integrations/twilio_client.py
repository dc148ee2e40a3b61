from twilio.rest import Client
from twilio.base.exceptions import TwilioRestException
from typing import Optional, Dict
from config.config import Config
from coachcal.utils.logger import get_logger

logger = get_logger(__name__)


class TwilioClient:
    """Wrapper for Twilio SMS operations"""

    def __init__(self):
        self.account_sid = Config.TWILIO_ACCOUNT_SID
        self.auth_token = Config.TWILIO_AUTH_TOKEN
        self.phone_number = Config.TWILIO_PHONE_NUMBER

        if self.account_sid and self.auth_token:
            self.client = Client(self.account_sid, self.auth_token)
        else:
            self.client = None
            logger.warning("Twilio credentials not configured")

    def send_sms(self, to_number: str, message: str) -> Optional[Dict]:
        """Send SMS message"""
        if not self.client:
            logger.error("Twilio client not initialized")
            return None

        try:
            message = self.client.messages.create(
                body=message,
                from_=self.phone_number,
                to=to_number
            )

            return {
                'sid': message.sid,
                'status': message.status,
                'to': message.to
            }
        except TwilioRestException as e:
            logger.error(f"Error sending SMS to {to_number}: {str(e)}")
            return None

    def send_session_reminder(self, to_number: str, meeting: Dict) -> Optional[Dict]:
        message = (
            f"CoachCal: {meeting['title']} starts {meeting['starts_in']} ({meeting['when']})."
        )
        if meeting.get('meeting_link'):
            message += f"\nJoin: {meeting['meeting_link']}"
        return self.send_sms(to_number, message)
