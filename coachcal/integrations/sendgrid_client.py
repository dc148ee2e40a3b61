import sendgrid
from sendgrid.helpers.mail import Mail, Email, To, Content
from typing import Dict, Optional
from config.config import Config
from coachcal.utils.logger import get_logger

logger = get_logger(__name__)


class SendGridClient:
    """Wrapper for SendGrid email operations"""

    def __init__(self):
        self.api_key = Config.SENDGRID_API_KEY
        self.from_email = Config.SENDGRID_FROM_EMAIL

        if self.api_key:
            self.client = sendgrid.SendGridAPIClient(api_key=self.api_key)
        else:
            self.client = None
            logger.warning("SendGrid API key not configured")

    def send_email(self, to_email: str, subject: str, html_content: str,
                   plain_content: str = None) -> Optional[Dict]:
        """Send email via SendGrid"""
        if not self.client:
            logger.error("SendGrid client not initialized")
            return None

        try:
            message = Mail(
                from_email=Email(self.from_email, "CoachCal"),
                to_emails=To(to_email),
                subject=subject,
                html_content=Content("text/html", html_content)
            )

            if plain_content:
                message.plain_text_content = Content("text/plain", plain_content)

            response = self.client.send(message)

            return {
                'status_code': response.status_code,
                'message_id': response.headers.get('X-Message-Id')
            }
        except Exception as e:
            logger.error(f"Error sending email to {to_email}: {str(e)}")
            return None

    def send_reminder_email(self, to_email: str, name: str, meeting: Dict) -> Optional[Dict]:
        """Send upcoming session reminder"""
        subject = f"Reminder: {meeting['title']} starts {meeting['starts_in']}"
        link_html = ''
        if meeting.get('meeting_link'):
            link_html = f"""
                <p style="margin: 30px 0;">
                    <a href="{meeting['meeting_link']}"
                       style="background-color: #2196F3; color: white; padding: 14px 28px;
                              text-decoration: none; border-radius: 4px; display: inline-block;">
                        Join Session
                    </a>
                </p>
            """
        html_content = f"""
        <html>
            <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
                <h2>Upcoming Session</h2>
                <p>Hi {name},</p>
                <p>This is a reminder that <strong>{meeting['title']}</strong> starts {meeting['starts_in']}.</p>
                <div style="background-color: #f5f5f5; padding: 20px; border-radius: 8px; margin: 20px 0;">
                    <p><strong>When:</strong> {meeting['when']}</p>
                    <p><strong>With:</strong> {meeting['with']}</p>
                </div>
                {link_html}
            </body>
        </html>
        """
        plain_content = (
            f"Hi {name},\n\n"
            f"{meeting['title']} starts {meeting['starts_in']}.\n"
            f"When: {meeting['when']}\n"
            f"With: {meeting['with']}\n"
        )
        if meeting.get('meeting_link'):
            plain_content += f"Join: {meeting['meeting_link']}\n"

        return self.send_email(to_email, subject, html_content, plain_content)

    def send_booking_confirmation(self, to_email: str, name: str, meeting: Dict,
                                  manage_link: str = None) -> Optional[Dict]:
        """Send booking confirmation, optionally with a self-service link"""
        subject = f"Confirmed: {meeting['title']} on {meeting['when']}"
        manage_html = ''
        if manage_link:
            manage_html = f"""
                <p>Need to change plans? You can cancel or reschedule here:</p>
                <p style="margin: 30px 0;">
                    <a href="{manage_link}"
                       style="background-color: #4CAF50; color: white; padding: 14px 28px;
                              text-decoration: none; border-radius: 4px; display: inline-block;">
                        Manage Booking
                    </a>
                </p>
            """
        html_content = f"""
        <html>
            <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
                <h2>Your session is confirmed</h2>
                <p>Hi {name},</p>
                <div style="background-color: #f5f5f5; padding: 20px; border-radius: 8px; margin: 20px 0;">
                    <p><strong>Session:</strong> {meeting['title']}</p>
                    <p><strong>When:</strong> {meeting['when']}</p>
                    <p><strong>With:</strong> {meeting['with']}</p>
                </div>
                {manage_html}
            </body>
        </html>
        """

        return self.send_email(to_email, subject, html_content)
