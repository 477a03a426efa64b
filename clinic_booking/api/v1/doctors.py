from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List, Optional

from ...core.database import get_db
from ...api.deps import booking_rate_limit, get_publisher
from ...services.booking_service import BookingService
from ...services.directory_service import DirectoryService
from ...services.notifications import Publisher
from ...schemas.booking import AppointmentDetail, BookingRequest, BookingResponse
from ...schemas.directory import DoctorResponse, SlotCheckResponse, TimeSlotResponse

router = APIRouter(prefix="/doctors", tags=["Doctors & Booking"])

@router.get("", response_model=List[DoctorResponse])
async def list_doctors(
    specialty: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db)
):
    """List doctor profiles."""
    return DirectoryService(db).list_doctors(specialty=specialty, skip=skip, limit=limit)

@router.get("/{doctor_id}", response_model=DoctorResponse)
async def get_doctor(doctor_id: int, db: Session = Depends(get_db)):
    """Get a doctor profile."""
    return DirectoryService(db).get_doctor(doctor_id)

@router.get("/{doctor_id}/slots", response_model=List[TimeSlotResponse])
async def list_available_slots(doctor_id: int, db: Session = Depends(get_db)):
    """List the doctor's open slots from today onwards."""
    return DirectoryService(db).list_available_slots(doctor_id)

@router.get("/{doctor_id}/slots/{slot_id}/check", response_model=SlotCheckResponse)
async def check_slot(doctor_id: int, slot_id: int, db: Session = Depends(get_db)):
    """Re-check a slot when the patient selects it.

    Responds 409 with code ``stale_selection`` if it has been taken since the
    list was fetched.
    """
    BookingService(db).check_slot(slot_id, doctor_id=doctor_id)
    return SlotCheckResponse(slot_id=slot_id, available=True)

@router.post(
    "/{doctor_id}/appointments",
    response_model=BookingResponse,
    status_code=status.HTTP_201_CREATED,
)
async def book_appointment(
    doctor_id: int,
    booking: BookingRequest,
    db: Session = Depends(get_db),
    publish: Publisher = Depends(get_publisher),
    _: None = Depends(booking_rate_limit)
):
    """Book a time slot.

    Responds 422 with code ``validation_error`` when patient fields are
    missing or invalid, and 409 with code ``lost_race`` if another patient
    booked the slot first; the client should fetch the open slots again.
    """
    appointment = BookingService(db, publish=publish).reserve(
        booking.time_slot_id, booking.patient_fields(), doctor_id=doctor_id
    )

    return BookingResponse(
        message="Appointment booked successfully! You will receive a confirmation email shortly.",
        appointment=AppointmentDetail.model_validate(appointment)
    )
