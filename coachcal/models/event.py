from sqlalchemy import Column, String, Integer, ForeignKey, DateTime, Enum, JSON, Text
from sqlalchemy.orm import relationship
import enum
from .base import BaseModel


class SchedulingStatus(enum.Enum):
    PROPOSED = "proposed"
    PENDING_RESPONSE = "pending_response"
    COUNTER_PROPOSED = "counter_proposed"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


# Statuses that keep a coach's time from being offered to anyone else
HOLDING_STATUSES = (
    SchedulingStatus.PROPOSED,
    SchedulingStatus.PENDING_RESPONSE,
    SchedulingStatus.COUNTER_PROPOSED,
    SchedulingStatus.CONFIRMED,
)

TERMINAL_STATUSES = (SchedulingStatus.CANCELLED, SchedulingStatus.COMPLETED)


class MeetingProvider(enum.Enum):
    NATIVE = "native"
    ZOOM = "zoom"
    GOOGLE_MEET = "google_meet"
    OTHER = "other"


class SchedulableEvent(BaseModel):
    __tablename__ = 'schedulable_events'
    
    host_user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    attendee_ids = Column(JSON, nullable=False)  # list of user ids, never empty
    organization_id = Column(String(64), index=True)
    
    title = Column(String(255))
    start_date_time = Column(DateTime, nullable=False, index=True)
    end_date_time = Column(DateTime, nullable=False, index=True)
    duration_minutes = Column(Integer, nullable=False)
    timezone = Column(String(64))
    
    scheduling_status = Column(Enum(SchedulingStatus), nullable=False, index=True)
    proposed_by = Column(Integer)  # party whose proposal awaits an answer
    
    meeting_provider = Column(Enum(MeetingProvider), default=MeetingProvider.NATIVE, nullable=False)
    meeting_link = Column(String(512))
    
    # Optimistic lock; concurrent writers on the same row raise StaleDataError
    version = Column(Integer, nullable=False, default=1)
    
    notes = relationship(
        "SchedulingNote", back_populates="event",
        order_by="SchedulingNote.id", cascade="all, delete-orphan"
    )

    __mapper_args__ = {'version_id_col': version}

    def participant_ids(self):
        return [self.host_user_id] + [a for a in self.attendee_ids if a != self.host_user_id]

    def is_participant(self, user_id):
        return user_id == self.host_user_id or user_id in (self.attendee_ids or [])


class SchedulingNote(BaseModel):
    """One append-only entry of an event's negotiation log"""
    __tablename__ = 'scheduling_notes'
    
    event_id = Column(Integer, ForeignKey('schedulable_events.id'), nullable=False, index=True)
    actor_id = Column(Integer)
    from_state = Column(Enum(SchedulingStatus))
    to_state = Column(Enum(SchedulingStatus), nullable=False)
    note = Column(Text, nullable=False)
    
    event = relationship("SchedulableEvent", back_populates="notes")
