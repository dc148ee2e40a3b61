from datetime import datetime
from typing import List, Optional
from coachcal.database import get_db
from coachcal.models import CalendarIntegration, CalendarSyncRecord
from coachcal.models.integration import IntegrationStatus
from coachcal.utils.logger import get_logger

logger = get_logger(__name__)


class IntegrationStore:
    """Organization calendar credentials and the event mirrors they own.

    The sync adapter reads credentials from here and hands refreshed tokens
    back through ``update_tokens``; it never writes tokens itself.
    """

    def connected_integrations(self, organization_id: str) -> List[CalendarIntegration]:
        if not organization_id:
            return []
        with get_db() as db:
            return db.query(CalendarIntegration).filter(
                CalendarIntegration.organization_id == organization_id,
                CalendarIntegration.status.in_([IntegrationStatus.CONNECTED, IntegrationStatus.EXPIRED])
            ).order_by(CalendarIntegration.id).all()

    def update_tokens(self, integration_id: int, access_token: str, refresh_token: str,
                      expires_at: datetime):
        with get_db() as db:
            integration = db.get(CalendarIntegration, integration_id)
            if not integration:
                return
            integration.access_token = access_token
            integration.refresh_token = refresh_token
            integration.expires_at = expires_at
            integration.status = IntegrationStatus.CONNECTED
            integration.last_error = None

    def mark_sync(self, integration_id: int, at: datetime, status: str, error: str = None):
        with get_db() as db:
            integration = db.get(CalendarIntegration, integration_id)
            if not integration:
                return
            integration.last_sync_at = at
            integration.last_sync_status = status
            integration.last_error = error[:500] if error else None
            if status == 'auth_error':
                integration.status = IntegrationStatus.EXPIRED
                logger.warning(f"Calendar integration {integration_id} marked expired: {error}")

    def get_record(self, integration_id: int, event_id: int) -> Optional[CalendarSyncRecord]:
        with get_db() as db:
            return db.query(CalendarSyncRecord).filter_by(
                integration_id=integration_id, event_id=event_id
            ).first()

    def save_record(self, integration_id: int, event_id: int, external_event_id: str,
                    external_calendar_id: str, at: datetime) -> CalendarSyncRecord:
        with get_db() as db:
            record = db.query(CalendarSyncRecord).filter_by(
                integration_id=integration_id, event_id=event_id
            ).first()
            if record is None:
                record = CalendarSyncRecord(integration_id=integration_id, event_id=event_id)
                db.add(record)
            record.external_event_id = external_event_id
            record.external_calendar_id = external_calendar_id
            record.last_synced_at = at
            db.flush()
            return record

    def delete_record(self, integration_id: int, event_id: int) -> bool:
        with get_db() as db:
            deleted = db.query(CalendarSyncRecord).filter_by(
                integration_id=integration_id, event_id=event_id
            ).delete(synchronize_session=False)
            return deleted > 0
