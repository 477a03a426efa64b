from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List

from ...core.database import get_db
from ...api.deps import get_admin
from ...models.staff import StaffAccount
from ...services.staff_service import StaffService
from ...schemas.auth import StaffResponse
from ...schemas.staff import StaffCreate, StaffStatusUpdate, StaffUpdate

router = APIRouter(prefix="/admin", tags=["Admin"])

@router.get("/staff", response_model=List[StaffResponse])
async def list_staff(
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
    _: StaffAccount = Depends(get_admin)
):
    """List staff accounts."""
    return StaffService(db).list_staff(skip=skip, limit=limit)

@router.post("/staff", response_model=StaffResponse, status_code=status.HTTP_201_CREATED)
async def create_staff(
    data: StaffCreate,
    db: Session = Depends(get_db),
    _: StaffAccount = Depends(get_admin)
):
    """Create a staff account."""
    return StaffService(db).create_staff(data)

@router.put("/staff/{staff_id}", response_model=StaffResponse)
async def update_staff(
    staff_id: int,
    data: StaffUpdate,
    db: Session = Depends(get_db),
    current_admin: StaffAccount = Depends(get_admin)
):
    """Update a staff account's role, status or password."""
    return StaffService(db).update_staff(staff_id, data, current_admin)

@router.patch("/staff/{staff_id}/status", response_model=StaffResponse)
async def update_staff_status(
    staff_id: int,
    data: StaffStatusUpdate,
    db: Session = Depends(get_db),
    current_admin: StaffAccount = Depends(get_admin)
):
    """Activate or deactivate a staff account."""
    return StaffService(db).set_active(staff_id, data.is_active, current_admin)

@router.delete("/staff/{staff_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_staff(
    staff_id: int,
    db: Session = Depends(get_db),
    current_admin: StaffAccount = Depends(get_admin)
):
    """Delete a staff account. Admins cannot delete themselves."""
    StaffService(db).delete_staff(staff_id, current_admin)
