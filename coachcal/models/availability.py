from sqlalchemy import Column, String, Integer, ForeignKey, DateTime, JSON
from sqlalchemy.orm import relationship
from .base import BaseModel


WEEKDAYS = ('monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday')


class AvailabilityProfile(BaseModel):
    __tablename__ = 'availability_profiles'
    
    coach_id = Column(Integer, ForeignKey('users.id'), nullable=False, unique=True, index=True)
    timezone = Column(String(64), nullable=False)
    
    # Local wall-clock ranges per weekday
    # Format: {"monday": [{"start": "09:00", "end": "12:00"}, ...], ...}
    weekly_schedule = Column(JSON, nullable=False)
    
    minimum_notice_minutes = Column(Integer, nullable=False, default=0)
    default_slot_duration_minutes = Column(Integer, nullable=False, default=60)
    buffer_minutes = Column(Integer, nullable=False, default=0)
    
    # Bumped on every update; profiles are superseded, never deleted
    revision = Column(Integer, nullable=False, default=1)
    
    # Relationships
    coach = relationship("User", back_populates="availability_profile")
    blocked_slots = relationship("BlockedSlot", back_populates="profile", lazy='dynamic')


class BlockedSlot(BaseModel):
    __tablename__ = 'blocked_slots'
    
    profile_id = Column(Integer, ForeignKey('availability_profiles.id'), nullable=False, index=True)
    start = Column(DateTime, nullable=False, index=True)
    end = Column(DateTime, nullable=False)
    reason = Column(String(500))
    
    profile = relationship("AvailabilityProfile", back_populates="blocked_slots")
