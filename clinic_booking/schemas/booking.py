from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from ..models.appointment import AppointmentStatus
from .directory import DoctorResponse, TimeSlotResponse


class PatientDetails(BaseModel):
    first_name: str = Field(..., max_length=100)
    last_name: str = Field(..., max_length=100)
    email: EmailStr
    phone_number: str = Field(..., max_length=30)
    education_level: str = Field(..., max_length=100)

    @field_validator("first_name", "last_name", "phone_number", "education_level", mode="before")
    @classmethod
    def strip_required(cls, value):
        if isinstance(value, str):
            value = value.strip()
        if not value:
            raise ValueError("This field is required")
        return value


class BookingRequest(BaseModel):
    """Booking form as submitted.

    Patient fields are taken as-is and validated by the booking service, so a
    bad form is answered with a ``validation_error`` detail.
    """
    time_slot_id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None
    education_level: Optional[str] = None

    def patient_fields(self) -> dict:
        return self.model_dump(exclude={"time_slot_id"})


class AppointmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    doctor_id: int
    time_slot_id: int
    first_name: str
    last_name: str
    email: str
    phone_number: str
    education_level: str
    status: AppointmentStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AppointmentDetail(AppointmentResponse):
    doctor: Optional[DoctorResponse] = None
    time_slot: Optional[TimeSlotResponse] = None


class BookingResponse(BaseModel):
    message: str
    appointment: AppointmentDetail
