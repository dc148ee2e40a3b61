from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Tuple
import requests
from coachcal.errors import ProviderAuthError, ProviderSyncError
from config.config import Config
from coachcal.utils.logger import get_logger

logger = get_logger(__name__)


class CalendarClient:
    """Shared plumbing for provider calendar APIs.

    Subclasses supply the endpoints, the token refresh request and the
    event body. Every call is bounded by ``timeout``; auth failures raise
    ``ProviderAuthError`` and anything else ``ProviderSyncError``.
    """

    provider = None
    token_url = None
    update_method = 'PUT'

    def __init__(self, access_token: str, refresh_token: str = None,
                 expires_at: datetime = None, settings: Dict = None,
                 on_tokens_refreshed: Callable = None, timeout: float = None):
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.expires_at = expires_at
        self.settings = settings or {}
        self.on_tokens_refreshed = on_tokens_refreshed
        self.timeout = timeout or Config.PROVIDER_TIMEOUT_SECONDS
        self.session = requests.Session()

    @property
    def calendar_id(self) -> str:
        return self.settings.get('calendar_id') or 'primary'

    def ensure_fresh_token(self, now: datetime):
        """Refresh the access token when it expires within the refresh margin"""
        margin = timedelta(minutes=Config.TOKEN_REFRESH_MARGIN_MINUTES)
        if self.access_token and (self.expires_at is None or self.expires_at > now + margin):
            return
        if not self.refresh_token:
            raise ProviderAuthError('Access token expired and no refresh token is available',
                                    provider=self.provider)
        self.refresh(now)

    def refresh(self, now: datetime):
        client_id, client_secret = self.oauth_credentials()
        if not client_id or not client_secret:
            raise ProviderAuthError('OAuth client credentials not configured', provider=self.provider)

        try:
            response = self.session.post(self.token_url, data={
                'client_id': client_id,
                'client_secret': client_secret,
                'refresh_token': self.refresh_token,
                'grant_type': 'refresh_token'
            }, timeout=self.timeout)
        except requests.RequestException as e:
            raise ProviderSyncError(f'Token refresh failed: {str(e)}', provider=self.provider)

        if response.status_code != 200:
            raise ProviderAuthError(f'Token refresh rejected ({response.status_code})', provider=self.provider)

        tokens = response.json()
        self.access_token = tokens['access_token']
        self.refresh_token = tokens.get('refresh_token') or self.refresh_token
        self.expires_at = now + timedelta(seconds=int(tokens.get('expires_in', 3600)))
        logger.info(f"Refreshed {self.provider} access token")

        if self.on_tokens_refreshed:
            self.on_tokens_refreshed(self.access_token, self.refresh_token, self.expires_at)

    def create_event(self, meeting: Dict) -> Tuple[str, str]:
        """Create the external event; returns (external_event_id, calendar_id)"""
        response = self._request('POST', self.create_url(), json=self.event_body(meeting))
        return response.json()['id'], self.calendar_id

    def update_event(self, external_event_id: str, calendar_id: str, meeting: Dict) -> Tuple[str, str]:
        """Update the external event, recreating it if the provider lost it"""
        response = self._request(self.update_method, self.event_url(external_event_id, calendar_id),
                                 json=self.event_body(meeting), allow=(404, 410))
        if response.status_code in (404, 410):
            logger.info(f"{self.provider} event {external_event_id} is gone, creating a new one")
            return self.create_event(meeting)
        return external_event_id, calendar_id

    def delete_event(self, external_event_id: str, calendar_id: str):
        """Delete the external event; an already missing event counts as deleted"""
        self._request('DELETE', self.event_url(external_event_id, calendar_id), allow=(404, 410))

    def _request(self, method: str, url: str, json: Dict = None, allow=()) -> requests.Response:
        headers = {
            'Authorization': f'Bearer {self.access_token}',
            'Content-Type': 'application/json'
        }
        try:
            response = self.session.request(method, url, json=json, headers=headers, timeout=self.timeout)
        except requests.Timeout:
            raise ProviderSyncError(f'{self.provider} did not answer within {self.timeout}s',
                                    provider=self.provider)
        except requests.RequestException as e:
            raise ProviderSyncError(f'{self.provider} request failed: {str(e)}', provider=self.provider)

        if response.status_code in allow:
            return response
        if response.status_code in (401, 403):
            raise ProviderAuthError(f'{self.provider} rejected credentials ({response.status_code})',
                                    provider=self.provider)
        if response.status_code >= 400:
            raise ProviderSyncError(f'{self.provider} returned {response.status_code}: {response.text[:200]}',
                                    provider=self.provider)
        return response

    def title_for(self, meeting: Dict) -> str:
        prefix = self.settings.get('event_prefix')
        return f"{prefix} {meeting['title']}" if prefix else meeting['title']

    def oauth_credentials(self) -> Tuple[Optional[str], Optional[str]]:
        raise NotImplementedError

    def create_url(self) -> str:
        raise NotImplementedError

    def event_url(self, external_event_id: str, calendar_id: str) -> str:
        raise NotImplementedError

    def event_body(self, meeting: Dict) -> Dict:
        raise NotImplementedError
