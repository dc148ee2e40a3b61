from sqlalchemy import Column, String, Integer, ForeignKey, DateTime, Boolean
from .base import BaseModel


class ReminderJob(BaseModel):
    __tablename__ = 'reminder_jobs'
    
    # "<event_id>_<kind>", so re-scheduling an event never duplicates a job
    id = Column(String(100), primary_key=True)
    event_id = Column(Integer, ForeignKey('schedulable_events.id'), nullable=False, index=True)
    kind = Column(String(50), nullable=False)  # e.g. email_1440m, sms_10m
    channel = Column(String(20), nullable=False)
    offset_minutes = Column(Integer, nullable=False)
    run_at = Column(DateTime, nullable=False, index=True)
    
    # Start time the job was computed from; a moved event makes the job stale
    event_start = Column(DateTime, nullable=False)
    
    executed = Column(Boolean, nullable=False, default=False, index=True)
    executed_at = Column(DateTime)
    error = Column(String(500))
