"""
External calendar sync

Mirrors confirmed events into every calendar the event's organization has
connected, and retracts them on cancellation. Each provider runs as its
own task and reports its own ``ProviderSyncResult``; nothing here raises
into the booking path.
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, NamedTuple, Optional
from coachcal.database import get_db
from coachcal.errors import ProviderAuthError, ProviderSyncError
from coachcal.integrations import GoogleCalendarClient, OutlookCalendarClient
from coachcal.models import CalendarIntegration, SchedulableEvent
from coachcal.models.integration import CalendarProvider
from coachcal.services.integration_store import IntegrationStore
from coachcal.utils.clock import Clock, SystemClock
from coachcal.utils.logger import get_logger

logger = get_logger(__name__)

CLIENTS = {
    CalendarProvider.GOOGLE: GoogleCalendarClient,
    CalendarProvider.OUTLOOK: OutlookCalendarClient,
}


class ProviderSyncResult(NamedTuple):
    provider: str
    success: bool
    external_event_id: Optional[str] = None
    error: Optional[str] = None
    auth_failure: bool = False

    def to_dict(self) -> Dict:
        return self._asdict()


class CalendarSyncAdapter:
    def __init__(self, store: IntegrationStore = None, clock: Clock = None,
                 max_workers: int = 4, clients: Dict = None):
        self.store = store or IntegrationStore()
        self.clock = clock or SystemClock()
        self.max_workers = max_workers
        self.clients = clients or CLIENTS

    def sync_confirmed(self, event_id: int) -> List[ProviderSyncResult]:
        """Create or update the event's mirror in every connected calendar"""
        meeting = self._snapshot(event_id)
        if meeting is None:
            return []
        return self._fan_out(meeting, self._push)

    def sync_cancelled(self, event_id: int) -> List[ProviderSyncResult]:
        """Delete the event's mirror from every connected calendar"""
        meeting = self._snapshot(event_id)
        if meeting is None:
            return []
        return self._fan_out(meeting, self._retract)

    def _fan_out(self, meeting: Dict, action) -> List[ProviderSyncResult]:
        integrations = self.store.connected_integrations(meeting['organization_id'])
        if not integrations:
            return []

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(integrations))) as executor:
            futures = [
                (integration, executor.submit(self._run_one, integration, meeting, action))
                for integration in integrations
            ]
            results = []
            for integration, future in futures:
                try:
                    results.append(future.result())
                except Exception as e:
                    logger.error(f"Unexpected error syncing event {meeting['event_id']} "
                                 f"to {integration.provider.value}: {str(e)}")
                    results.append(ProviderSyncResult(integration.provider.value, False, error=str(e)))

        failed = [r.provider for r in results if not r.success]
        if failed:
            logger.warning(f"Calendar sync for event {meeting['event_id']} failed for: {', '.join(failed)}")
        return results

    def _run_one(self, integration: CalendarIntegration, meeting: Dict, action) -> ProviderSyncResult:
        provider = integration.provider.value
        now = self.clock.now()
        try:
            client = self._client_for(integration)
            client.ensure_fresh_token(now)
            external_id = action(client, integration, meeting)
        except ProviderAuthError as e:
            self.store.mark_sync(integration.id, now, 'auth_error', e.message)
            return ProviderSyncResult(provider, False, error=e.message, auth_failure=True)
        except ProviderSyncError as e:
            self.store.mark_sync(integration.id, now, 'error', e.message)
            return ProviderSyncResult(provider, False, error=e.message)
        except Exception as e:
            logger.error(f"Unexpected error syncing event {meeting['event_id']} to {provider}: {str(e)}")
            self.store.mark_sync(integration.id, now, 'error', str(e))
            return ProviderSyncResult(provider, False, error=str(e))

        self.store.mark_sync(integration.id, now, 'success')
        logger.info(f"Synced event {meeting['event_id']} to {provider}")
        return ProviderSyncResult(provider, True, external_event_id=external_id)

    def _push(self, client, integration: CalendarIntegration, meeting: Dict) -> str:
        record = self.store.get_record(integration.id, meeting['event_id'])
        if record:
            external_id, calendar_id = client.update_event(
                record.external_event_id, record.external_calendar_id, meeting
            )
        else:
            external_id, calendar_id = client.create_event(meeting)
        self.store.save_record(integration.id, meeting['event_id'], external_id, calendar_id,
                               self.clock.now())
        return external_id

    def _retract(self, client, integration: CalendarIntegration, meeting: Dict) -> Optional[str]:
        record = self.store.get_record(integration.id, meeting['event_id'])
        if not record:
            return None
        client.delete_event(record.external_event_id, record.external_calendar_id)
        self.store.delete_record(integration.id, meeting['event_id'])
        return record.external_event_id

    def _client_for(self, integration: CalendarIntegration):
        client_class = self.clients.get(integration.provider)
        if client_class is None:
            raise ProviderSyncError(f'Unsupported provider {integration.provider.value}')

        integration_id = integration.id

        def on_tokens_refreshed(access_token, refresh_token, expires_at):
            self.store.update_tokens(integration_id, access_token, refresh_token, expires_at)

        return client_class(
            access_token=integration.access_token,
            refresh_token=integration.refresh_token,
            expires_at=integration.expires_at,
            settings=integration.settings,
            on_tokens_refreshed=on_tokens_refreshed
        )

    def _snapshot(self, event_id: int) -> Optional[Dict]:
        with get_db() as db:
            event = db.get(SchedulableEvent, event_id)
            if not event:
                logger.warning(f"Cannot sync unknown event {event_id}")
                return None
            return {
                'event_id': event.id,
                'organization_id': event.organization_id,
                'title': event.title or 'Coaching session',
                'description': f"Booked via CoachCal (event {event.id})",
                'start': event.start_date_time,
                'end': event.end_date_time,
                'timezone': event.timezone or 'UTC',
                'meeting_link': event.meeting_link
            }
