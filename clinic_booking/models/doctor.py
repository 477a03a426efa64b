from sqlalchemy import Column, Integer, String, DateTime, Text
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from ..core.database import Base

class Doctor(Base):
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True, index=True)

    # Profile
    name = Column(String(150), nullable=False, index=True)
    specialty = Column(String(100), nullable=False, index=True)
    description = Column(Text, nullable=True)
    profile_image_url = Column(String(500), nullable=True)

    # Timestamps
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    time_slots = relationship(
        "TimeSlot",
        back_populates="doctor",
        cascade="all, delete-orphan",
    )
    appointments = relationship("Appointment", back_populates="doctor")

    def __repr__(self):
        return f"<Doctor(id={self.id}, name='{self.name}', specialty='{self.specialty}')>"
