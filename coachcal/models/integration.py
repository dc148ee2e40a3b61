from sqlalchemy import Column, String, Integer, ForeignKey, DateTime, Enum, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
import enum
from .base import BaseModel


class CalendarProvider(enum.Enum):
    GOOGLE = "google_calendar"
    OUTLOOK = "outlook_calendar"


class IntegrationStatus(enum.Enum):
    CONNECTED = "connected"
    EXPIRED = "expired"
    ERROR = "error"
    DISCONNECTED = "disconnected"


class CalendarIntegration(BaseModel):
    """Per organization, per provider credentials owned by the integration store"""
    __tablename__ = 'calendar_integrations'
    
    organization_id = Column(String(64), nullable=False, index=True)
    provider = Column(Enum(CalendarProvider), nullable=False)
    status = Column(Enum(IntegrationStatus), nullable=False, default=IntegrationStatus.CONNECTED)
    
    access_token = Column(String(2048))
    refresh_token = Column(String(2048))
    expires_at = Column(DateTime)
    
    # e.g. {"calendar_id": "primary", "event_prefix": "[Coaching]", "reminder_minutes": 10}
    settings = Column(JSON, default=dict)
    
    last_sync_at = Column(DateTime)
    last_sync_status = Column(String(20))
    last_error = Column(String(500))
    
    sync_records = relationship("CalendarSyncRecord", back_populates="integration", lazy='dynamic')
    
    __table_args__ = (UniqueConstraint('organization_id', 'provider', name='uq_integration_org_provider'),)


class CalendarSyncRecord(BaseModel):
    """Maps one of our events to its mirror in one provider calendar"""
    __tablename__ = 'calendar_sync_records'
    
    integration_id = Column(Integer, ForeignKey('calendar_integrations.id'), nullable=False, index=True)
    event_id = Column(Integer, ForeignKey('schedulable_events.id'), nullable=False, index=True)
    external_event_id = Column(String(1024), nullable=False)
    external_calendar_id = Column(String(1024), nullable=False)
    last_synced_at = Column(DateTime)
    
    integration = relationship("CalendarIntegration", back_populates="sync_records")
    
    __table_args__ = (UniqueConstraint('integration_id', 'event_id', name='uq_sync_integration_event'),)
