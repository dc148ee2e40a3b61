from typing import Dict
from coachcal.integrations.calendar_client import CalendarClient
from config.config import Config

GRAPH_BASE = 'https://graph.microsoft.com/v1.0'


class OutlookCalendarClient(CalendarClient):
    """Microsoft Graph calendar events"""

    provider = 'outlook_calendar'
    token_url = 'https://login.microsoftonline.com/common/oauth2/v2.0/token'
    update_method = 'PATCH'

    def oauth_credentials(self):
        return Config.MICROSOFT_OAUTH_CLIENT_ID, Config.MICROSOFT_OAUTH_CLIENT_SECRET

    def create_url(self) -> str:
        if self.calendar_id == 'primary':
            return f"{GRAPH_BASE}/me/events"
        return f"{GRAPH_BASE}/me/calendars/{self.calendar_id}/events"

    def event_url(self, external_event_id: str, calendar_id: str) -> str:
        return f"{GRAPH_BASE}/me/events/{external_event_id}"

    def event_body(self, meeting: Dict) -> Dict:
        body = {
            'subject': self.title_for(meeting),
            'body': {'contentType': 'text', 'content': meeting.get('description') or ''},
            'start': {'dateTime': meeting['start'].isoformat(), 'timeZone': 'UTC'},
            'end': {'dateTime': meeting['end'].isoformat(), 'timeZone': 'UTC'}
        }
        if meeting.get('meeting_link'):
            body['location'] = {'displayName': meeting['meeting_link']}
            body['isOnlineMeeting'] = False

        reminder_minutes = self.settings.get('reminder_minutes')
        if reminder_minutes:
            body['isReminderOn'] = True
            body['reminderMinutesBeforeStart'] = int(reminder_minutes)
        return body
