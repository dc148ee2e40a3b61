from sqlalchemy import Column, Integer, ForeignKey, DateTime
from .base import BaseModel


class CoachTimeline(BaseModel):
    """Compare-and-set target guarding one coach's confirmed time ranges"""
    __tablename__ = 'coach_timelines'
    
    coach_id = Column(Integer, ForeignKey('users.id'), nullable=False, unique=True, index=True)
    version = Column(Integer, nullable=False, default=0)
    last_claimed_at = Column(DateTime)
    last_claimed_event_id = Column(Integer)
