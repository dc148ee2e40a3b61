from sqlalchemy import Column, String, Boolean, Enum
from sqlalchemy.orm import relationship
import enum
from .base import BaseModel


class UserRole(enum.Enum):
    COACH = "coach"
    CLIENT = "client"
    PROSPECT = "prospect"
    ADMIN = "admin"


class User(BaseModel):
    """Identity record mirrored from the account system; read-only here."""
    __tablename__ = 'users'
    
    email = Column(String(255), unique=True, nullable=False, index=True)
    phone = Column(String(20))
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    role = Column(Enum(UserRole), nullable=False)
    organization_id = Column(String(64), index=True)
    
    # IANA name detected from the user's browser at signup
    timezone = Column(String(64))
    
    is_active = Column(Boolean, default=True)
    sms_opt_in = Column(Boolean, default=False)
    
    availability_profile = relationship("AvailabilityProfile", back_populates="coach", uselist=False)

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip()
