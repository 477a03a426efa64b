from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Index, Enum as SQLEnum, text
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum

from ..core.database import Base

class AppointmentStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"

# Enum members are persisted by name, hence 'CANCELLED'
_ACTIVE_ONLY = text("status != 'CANCELLED'")

class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        # At most one non-cancelled appointment per time slot
        Index(
            "uq_appointments_active_slot",
            "time_slot_id",
            unique=True,
            sqlite_where=_ACTIVE_ONLY,
            postgresql_where=_ACTIVE_ONLY,
        ),
    )

    id = Column(Integer, primary_key=True, index=True)

    # Relationships
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)
    time_slot_id = Column(Integer, ForeignKey("time_slots.id"), nullable=False)

    # Patient details as submitted
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False, index=True)
    phone_number = Column(String(30), nullable=False)
    education_level = Column(String(100), nullable=False)

    status = Column(
        SQLEnum(AppointmentStatus),
        nullable=False,
        default=AppointmentStatus.PENDING,
        index=True,
    )

    # Tracking
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    doctor = relationship("Doctor", back_populates="appointments")
    time_slot = relationship("TimeSlot", back_populates="appointments")

    @property
    def patient_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self):
        return f"<Appointment(id={self.id}, time_slot_id={self.time_slot_id}, status='{self.status}')>"
