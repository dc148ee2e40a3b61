from typing import Dict
from urllib.parse import quote
from coachcal.integrations.calendar_client import CalendarClient
from config.config import Config

API_BASE = 'https://www.googleapis.com/calendar/v3'


class GoogleCalendarClient(CalendarClient):
    """Google Calendar v3 events"""

    provider = 'google_calendar'
    token_url = 'https://oauth2.googleapis.com/token'
    update_method = 'PUT'

    def oauth_credentials(self):
        return Config.GOOGLE_OAUTH_CLIENT_ID, Config.GOOGLE_OAUTH_CLIENT_SECRET

    def create_url(self) -> str:
        return f"{API_BASE}/calendars/{quote(self.calendar_id, safe='')}/events"

    def event_url(self, external_event_id: str, calendar_id: str) -> str:
        return (f"{API_BASE}/calendars/{quote(calendar_id, safe='')}"
                f"/events/{quote(external_event_id, safe='')}")

    def event_body(self, meeting: Dict) -> Dict:
        body = {
            'summary': self.title_for(meeting),
            'description': meeting.get('description') or '',
            'start': {'dateTime': meeting['start'].isoformat() + 'Z', 'timeZone': meeting['timezone']},
            'end': {'dateTime': meeting['end'].isoformat() + 'Z', 'timeZone': meeting['timezone']},
            'extendedProperties': {'private': {'coachcalEventId': str(meeting['event_id'])}}
        }
        if meeting.get('meeting_link'):
            body['location'] = meeting['meeting_link']

        reminder_minutes = self.settings.get('reminder_minutes')
        if reminder_minutes:
            body['reminders'] = {
                'useDefault': False,
                'overrides': [{'method': 'popup', 'minutes': int(reminder_minutes)}]
            }
        return body
