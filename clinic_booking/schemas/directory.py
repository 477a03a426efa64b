import datetime as dt
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator


class DoctorBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    specialty: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None


class DoctorCreate(DoctorBase):
    pass


class DoctorUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=150)
    specialty: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None


class DoctorResponse(DoctorBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    profile_image_url: Optional[str] = None
    created_at: Optional[dt.datetime] = None


class TimeSlotInterval(BaseModel):
    date: dt.date
    start_time: dt.time
    end_time: dt.time

    @model_validator(mode="after")
    def check_interval(self):
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self


class TimeSlotCreate(TimeSlotInterval):
    is_available: bool = True


class TimeSlotUpdate(TimeSlotInterval):
    pass


class AvailabilityUpdate(BaseModel):
    """Toggle request; ``expected`` is the value the caller last saw."""
    is_available: bool
    expected: Optional[bool] = None


class TimeSlotResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    doctor_id: int
    date: dt.date
    start_time: dt.time
    end_time: dt.time
    is_available: bool


class SlotCheckResponse(BaseModel):
    slot_id: int
    available: bool = True
