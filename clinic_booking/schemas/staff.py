from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, EmailStr, Field

from ..core.security import StaffRole
from ..models.reconciliation import ReconciliationAction


class StaffCreate(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)
    role: StaffRole = StaffRole.STAFF
    is_active: bool = True


class StaffUpdate(BaseModel):
    role: Optional[StaffRole] = None
    is_active: Optional[bool] = None
    password: Optional[str] = Field(None, min_length=8)


class StaffStatusUpdate(BaseModel):
    is_active: bool


class ReconciliationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    appointment_id: Optional[int] = None
    time_slot_id: Optional[int] = None
    action: ReconciliationAction
    reason: Optional[str] = None
    resolved: bool
    created_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
