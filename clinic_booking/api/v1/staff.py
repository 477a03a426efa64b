from fastapi import APIRouter, Depends, File, UploadFile, status
from sqlalchemy.orm import Session
from typing import List, Optional

from ...core.database import get_db
from ...api.deps import get_publisher, get_staff_member
from ...models.appointment import AppointmentStatus
from ...models.staff import StaffAccount
from ...services.directory_service import DirectoryService
from ...services.notifications import Publisher
from ...services.reconciliation import ReconciliationService
from ...services.status_service import StatusTransitionService
from ...services.storage import LocalBlobStore, get_blob_store
from ...schemas.booking import AppointmentDetail
from ...schemas.directory import (
    AvailabilityUpdate, DoctorCreate, DoctorResponse, DoctorUpdate,
    TimeSlotCreate, TimeSlotResponse, TimeSlotUpdate
)
from ...schemas.staff import ReconciliationResponse

router = APIRouter(
    prefix="/staff",
    tags=["Staff"],
    dependencies=[Depends(get_staff_member)]
)

# Doctors

@router.post("/doctors", response_model=DoctorResponse, status_code=status.HTTP_201_CREATED)
async def create_doctor(data: DoctorCreate, db: Session = Depends(get_db)):
    """Create a doctor profile."""
    return DirectoryService(db).create_doctor(data)

@router.put("/doctors/{doctor_id}", response_model=DoctorResponse)
async def update_doctor(doctor_id: int, data: DoctorUpdate, db: Session = Depends(get_db)):
    """Update a doctor profile."""
    return DirectoryService(db).update_doctor(doctor_id, data)

@router.post("/doctors/{doctor_id}/image", response_model=DoctorResponse)
async def upload_doctor_image(
    doctor_id: int,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    blob_store: LocalBlobStore = Depends(get_blob_store)
):
    """Upload a profile image for a doctor."""
    directory = DirectoryService(db)
    directory.get_doctor(doctor_id)
    image_url = blob_store.upload(file)
    return directory.set_doctor_image(doctor_id, image_url)

@router.delete("/doctors/{doctor_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_doctor(doctor_id: int, db: Session = Depends(get_db)):
    """Delete a doctor and its time slots."""
    DirectoryService(db).delete_doctor(doctor_id)

# Time slots

@router.get("/doctors/{doctor_id}/slots", response_model=List[TimeSlotResponse])
async def list_doctor_slots(doctor_id: int, db: Session = Depends(get_db)):
    """List all of a doctor's slots, booked or not."""
    return DirectoryService(db).list_slots(doctor_id)

@router.post(
    "/doctors/{doctor_id}/slots",
    response_model=TimeSlotResponse,
    status_code=status.HTTP_201_CREATED
)
async def create_slot(doctor_id: int, data: TimeSlotCreate, db: Session = Depends(get_db)):
    """Add a time slot."""
    return DirectoryService(db).create_slot(doctor_id, data)

@router.put("/slots/{slot_id}", response_model=TimeSlotResponse)
async def update_slot(slot_id: int, data: TimeSlotUpdate, db: Session = Depends(get_db)):
    """Move an unbooked time slot."""
    return DirectoryService(db).update_slot(slot_id, data)

@router.patch("/slots/{slot_id}/availability", response_model=TimeSlotResponse)
async def set_slot_availability(
    slot_id: int,
    data: AvailabilityUpdate,
    db: Session = Depends(get_db)
):
    """Mark a slot available or unavailable."""
    return DirectoryService(db).set_slot_availability(
        slot_id, data.is_available, expected=data.expected
    )

@router.delete("/slots/{slot_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_slot(slot_id: int, db: Session = Depends(get_db)):
    """Delete an unbooked time slot."""
    DirectoryService(db).delete_slot(slot_id)

# Appointments

@router.get("/appointments", response_model=List[AppointmentDetail])
async def list_appointments(
    status: Optional[AppointmentStatus] = None,
    doctor_id: Optional[int] = None,
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db)
):
    """List appointments, newest first."""
    return DirectoryService(db).list_appointments(
        status=status, doctor_id=doctor_id, skip=skip, limit=limit
    )

@router.post("/appointments/{appointment_id}/confirm", response_model=AppointmentDetail)
async def confirm_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_staff: StaffAccount = Depends(get_staff_member),
    publish: Publisher = Depends(get_publisher)
):
    """Confirm a pending appointment and email the patient."""
    service = StatusTransitionService(db, publish=publish)
    return service.confirm(appointment_id, current_staff)

@router.post("/appointments/{appointment_id}/cancel", response_model=AppointmentDetail)
async def cancel_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_staff: StaffAccount = Depends(get_staff_member)
):
    """Cancel an appointment and release its time slot."""
    service = StatusTransitionService(db)
    return service.cancel(appointment_id, current_staff)

# Reconciliation

@router.get("/reconciliation", response_model=List[ReconciliationResponse])
async def list_reconciliation(db: Session = Depends(get_db)):
    """List slot writes that still need reconciling."""
    return ReconciliationService(db).list_open()

@router.post("/reconciliation/{record_id}/resolve", response_model=ReconciliationResponse)
async def resolve_reconciliation(record_id: int, db: Session = Depends(get_db)):
    """Re-derive the slot's availability from its appointments."""
    return ReconciliationService(db).resolve(record_id)
