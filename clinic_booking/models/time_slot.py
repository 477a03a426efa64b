from sqlalchemy import Column, Integer, ForeignKey, Date, Time, DateTime, Boolean, CheckConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from ..core.database import Base

class TimeSlot(Base):
    __tablename__ = "time_slots"
    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_time_slots_start_before_end"),
    )

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)

    # Interval
    date = Column(Date, nullable=False, index=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    # Only ever changed through conditional writes keyed on the prior value
    is_available = Column(Boolean, nullable=False, default=True)

    # Timestamps
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    doctor = relationship("Doctor", back_populates="time_slots")
    appointments = relationship("Appointment", back_populates="time_slot")

    @property
    def time_range(self) -> str:
        return f"{self.start_time.strftime('%H:%M')} - {self.end_time.strftime('%H:%M')}"

    def __repr__(self):
        return f"<TimeSlot(id={self.id}, doctor_id={self.doctor_id}, date='{self.date}', available={self.is_available})>"
