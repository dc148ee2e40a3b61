from sqlalchemy import Column, String, Integer, ForeignKey, DateTime, Boolean
from .base import BaseModel


class BookingToken(BaseModel):
    """Capability link for an unauthenticated prospect; never mutated"""
    __tablename__ = 'booking_tokens'
    
    id = Column(String(64), primary_key=True)
    event_id = Column(Integer, ForeignKey('schedulable_events.id'), nullable=False, index=True)
    issued_to = Column(Integer, ForeignKey('users.id'), nullable=False)
    expires_at = Column(DateTime, nullable=False)
    allow_cancellation = Column(Boolean, nullable=False, default=True)
    allow_reschedule = Column(Boolean, nullable=False, default=True)
